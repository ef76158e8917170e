"""Visitor chat API routes."""

from fastapi import APIRouter, Depends, Query

from ...app import IApplication
from ...models import ImagePayload, Party
from ..dependencies import visitor_party
from ..schemas import (
    BootstrapResponse,
    MessagePageResponse,
    OkResponse,
    ReactionRequest,
    ReactionResponse,
    SendMessageRequest,
    SendMessageResponse,
    TypingRequest,
    UploadImageRequest,
    message_to_wire,
    page_to_wire,
)


def create_chat_router(app: IApplication) -> APIRouter:
    """Create visitor chat router."""
    router = APIRouter(prefix="/api/chat", tags=["chat"])
    current_party = visitor_party(app)

    @router.post("/bootstrap", response_model=BootstrapResponse)
    async def bootstrap(party: Party = Depends(current_party)) -> dict:
        """Get-or-create the visitor's conversation with its latest page."""
        result = await app.sync.bootstrap(party)
        page = page_to_wire(result.page)
        return {
            "conversationId": result.conversation_id,
            "messages": page["messages"],
            "hasMore": page["hasMore"],
        }

    @router.get("/messages", response_model=MessagePageResponse)
    async def get_messages(
        conversation_id: str = Query(..., alias="conversationId"),
        limit: int | None = Query(None),
        before: str | None = Query(None),
        after: str | None = Query(None),
        party: Party = Depends(current_party),
    ) -> dict:
        """Latest page, older page (before) or new messages (after)."""
        page = await app.sync.get_messages(
            party, conversation_id, limit=limit, before=before, after=after
        )
        return page_to_wire(page)

    @router.post("/messages", response_model=SendMessageResponse)
    async def send_message(
        request: SendMessageRequest, party: Party = Depends(current_party)
    ) -> dict:
        """Send a text message."""
        view = await app.sync.send_message(
            party,
            request.conversation_id,
            content=request.content,
            reply_to_id=request.reply_to_id,
        )
        return {"message": message_to_wire(view)}

    @router.post("/upload", response_model=SendMessageResponse)
    async def upload_image(
        request: UploadImageRequest, party: Party = Depends(current_party)
    ) -> dict:
        """Send an image message."""
        view = await app.sync.send_message(
            party,
            request.conversation_id,
            image=ImagePayload(
                data_url=request.image_data,
                width=request.width,
                height=request.height,
            ),
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
