"""Operator API routes."""

from fastapi import APIRouter, Depends, Query

from ...app import IApplication
from ...models import ImagePayload, Party
from ..dependencies import operator_party
from ..schemas import (
    ConversationListResponse,
    MessagePageResponse,
    OkResponse,
    OperatorReplyRequest,
    ReactionRequest,
    ReactionResponse,
    SendMessageResponse,
    TypingRequest,
    conversation_to_wire,
    message_to_wire,
    page_to_wire,
)


def create_operator_router(app: IApplication) -> APIRouter:
    """Create operator router."""
    router = APIRouter(prefix="/api/operator", tags=["operator"])
    current_party = operator_party(app)

    @router.get("/conversations", response_model=ConversationListResponse)
    async def list_conversations(party: Party = Depends(current_party)) -> dict:
        """Inbox ordered by most recent activity."""
        conversations = await app.sync.list_conversations(party)
        return {
            "conversations": [conversation_to_wire(c) for c in conversations],
            "operatorOnline": await app.sync.operator_online(),
        }

    @router.get("/messages", response_model=MessagePageResponse)
    async def get_messages(
        conversation_id: str = Query(..., alias="conversationId"),
        limit: int | None = Query(None),
        before: str | None = Query(None),
        after: str | None = Query(None),
        party: Party = Depends(current_party),
    ) -> dict:
        page = await app.sync.get_messages(
            party, conversation_id, limit=limit, before=before, after=after
        )
        return page_to_wire(page)

    @router.post("/reply", response_model=SendMessageResponse)
    async def reply(
        request: OperatorReplyRequest, party: Party = Depends(current_party)
    ) -> dict:
        """Reply with text or an image."""
        image = None
        if request.image_data:
            image = ImagePayload(
                data_url=request.image_data,
                width=request.width or 0,
                height=request.height or 0,
            )
        view = await app.sync.send_message(
            party,
            request.conversation_id,
            content=request.content,
            image=image,
            reply_to_id=request.reply_to_id,
        )
        return {"message": message_to_wire(view)}

    @router.post("/reactions", response_model=ReactionResponse)
    async def toggle_reaction(
        request: ReactionRequest, party: Party = Depends(current_party)
    ) -> dict:
        result = await app.sync.toggle_reaction(party, request.message_id, request.emoji)
        return {"action": result.action, "emoji": result.emoji}

    @router.post("/typing", response_model=OkResponse)
    async def set_typing(
        request: TypingRequest, party: Party = Depends(current_party)
    ) -> dict:
        await app.sync.set_typing(party, request.conversation_id, request.is_typing)
        return {"ok": True}

    return router
