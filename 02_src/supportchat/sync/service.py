"""Sync protocol: cursor reads, message writes, reactions and typing."""

import asyncio
import math
import uuid
from dataclasses import dataclass
from typing import Literal, Protocol

from ..clock import Clock, utc_now
from ..errors import (
    InvalidContent,
    InvalidCursor,
    InvalidReplyTarget,
    NotFound,
    RateLimited,
    Unauthorized,
)
from ..logging_config import get_logger
from ..models import (
    IMAGE_PLACEHOLDER,
    Conversation,
    ImagePayload,
    Message,
    MessagePage,
    MessageView,
    Party,
    ReplyPreview,
)
from ..presence import IPresenceLedger
from ..push import INotifier
from ..ratelimit import IRateLimiter
from ..storage import IStorage
from .validation import (
    MAX_MESSAGE_LENGTH,
    MAX_OPERATOR_MESSAGE_LENGTH,
    validate_content,
    validate_emoji,
    validate_image,
)

logger = get_logger(__name__)

PAGE_SIZE = 25
MAX_PAGE_SIZE = 50
REPLY_PREVIEW_LENGTH = 100


@dataclass
class BootstrapResult:
    """Conversation id plus its initial page."""

    conversation_id: str
    page: MessagePage


@dataclass
class ReactionResult:
    action: Literal["added", "removed"]
    emoji: str


class ISyncService(Protocol):
    """Request contract behind every chat endpoint."""

    async def bootstrap(self, party: Party) -> BootstrapResult:
        """Get-or-create the visitor's conversation and load the latest page."""
        ...

    async def get_messages(
        self,
        party: Party,
        conversation_id: str,
        limit: int | None = None,
        before: str | None = None,
        after: str | None = None,
    ) -> MessagePage:
        """Default, backward or forward read selected by the cursor given."""
        ...

    async def send_message(
        self,
        party: Party,
        conversation_id: str,
        content: str | None = None,
        image: ImagePayload | None = None,
        reply_to_id: str | None = None,
    ) -> MessageView:
        """Validate, persist and announce a new message."""
        ...

    async def toggle_reaction(
        self, party: Party, message_id: str, emoji: str | None
    ) -> ReactionResult:
        """Toggle-and-replace the party's reaction on a message."""
        ...

    async def set_typing(
        self, party: Party, conversation_id: str, is_typing: bool
    ) -> None:
        """Record or clear the party's typing state."""
        ...

    async def list_conversations(self, party: Party) -> list[Conversation]:
        """Operator inbox, most recent activity first."""
        ...

    async def operator_online(self) -> bool:
        """Whether the operator is currently around."""
        ...


class SyncService:
    """Server side of the sync protocol."""

    def __init__(
        self,
        storage: IStorage,
        presence: IPresenceLedger,
        limiter: IRateLimiter,
        notifier: INotifier,
        clock: Clock = utc_now,
        page_size: int = PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self._storage = storage
        self._presence = presence
        self._limiter = limiter
        self._notifier = notifier
        self._clock = clock
        self._page_size = page_size
        self._max_page_size = max_page_size

    # Reads
    async def bootstrap(self, party: Party) -> BootstrapResult:
        """Get-or-create the visitor's conversation and load the latest page."""
        if party.is_operator or not party.user_id:
            raise Unauthorized("Visitor session required")

        user = await self._storage.get_user(party.user_id)
        if not user:
            raise Unauthorized()

        conversation = await self._storage.get_or_create_conversation(
            user, self._clock()
        )
        page = await self.get_messages(party, conversation.id)
        logger.info(
            "Bootstrapped conversation",
            extra={"context": {"conversation_id": conversation.id, "party": party.key}},
        )
        return BootstrapResult(conversation_id=conversation.id, page=page)

    async def get_messages(
        self,
        party: Party,
        conversation_id: str,
        limit: int | None = None,
        before: str | None = None,
        after: str | None = None,
    ) -> MessagePage:
        """Default, backward or forward read selected by the cursor given."""
        await self._require_conversation(party, conversation_id)
        limit = min(max(1, limit or self._page_size), self._max_page_size)

        has_more = False
        if before:
            cursor = await self._storage.get_message(conversation_id, before)
            if not cursor:
                raise InvalidCursor()
            rows = await self._storage.get_messages_before(
                conversation_id, cursor, limit + 1
            )
            has_more = len(rows) > limit
            messages = list(reversed(rows[:limit]))
        elif after:
            cursor = await self._storage.get_message(conversation_id, after)
            if cursor:
                messages = await self._storage.get_messages_after(
                    conversation_id, cursor, self._max_page_size
                )
            else:
                messages = []
        else:
            rows = await self._storage.get_latest_messages(conversation_id, limit + 1)
            has_more = len(rows) > limit
            messages = list(reversed(rows[:limit]))

        views, counterpart_typing = await asyncio.gather(
            self._decorate(messages),
            self._presence.is_typing(conversation_id, not party.is_operator),
        )
        return MessagePage(
            messages=views,
            has_more=has_more,
            counterpart_typing=counterpart_typing,
        )

    async def list_conversations(self, party: Party) -> list[Conversation]:
        """Operator inbox, most recent activity first."""
        if not party.is_operator:
            raise Unauthorized()
        return await self._storage.list_conversations()

    async def operator_online(self) -> bool:
        return await self._presence.is_operator_online()

    # Writes
    async def send_message(
        self,
        party: Party,
        conversation_id: str,
        content: str | None = None,
        image: ImagePayload | None = None,
        reply_to_id: str | None = None,
    ) -> MessageView:
        """Validate, persist and announce a new message."""
        await self._consume(party, "message")

        if image is not None:
            if content and content.strip():
                raise InvalidContent("Send text and an image as separate messages")
            image = validate_image(image.data_url, image.width, image.height)
            text = IMAGE_PLACEHOLDER
        elif content is not None:
            text = validate_content(
                content,
                MAX_OPERATOR_MESSAGE_LENGTH if party.is_operator else MAX_MESSAGE_LENGTH,
            )
        else:
            raise InvalidContent("Message cannot be empty")

        conversation = await self._require_conversation(party, conversation_id)

        reply_target = None
        if reply_to_id:
            reply_target = await self._storage.get_message(conversation_id, reply_to_id)
            if not reply_target:
                raise InvalidReplyTarget()

        now = self._clock()
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            is_operator=party.is_operator,
            content=text,
            created_at=now,
            image=image,
            reply_to_id=reply_to_id or None,
        )
        await self._storage.save_message(message)
        await self._storage.touch_conversation(conversation_id, now)
        await self._presence.set_typing(conversation_id, party.is_operator, False)

        logger.info(
            "Message stored",
            extra={
                "context": {
                    "conversation_id": conversation_id,
                    "message_id": message.id,
                    "party": party.key,
                    "image": image is not None,
                }
            },
        )

        # Push is an enhancement only; failures stay inside the notifier
        try:
            self._notifier.notify_other_party(
                party,
                "📷 Sent an image" if image is not None else text,
                conversation_id,
                conversation.user_id,
            )
        except Exception as e:
            logger.warning("Push dispatch failed for %s: %s", conversation_id, e)

        return MessageView(
            message=message,
            reactions=[],
            reply_to=_preview(reply_target) if reply_target else None,
        )

    async def toggle_reaction(
        self, party: Party, message_id: str, emoji: str | None
    ) -> ReactionResult:
        """Toggle-and-replace the party's reaction on a message."""
        await self._consume(party, "reaction")
        emoji = validate_emoji(emoji)

        message = await self._storage.get_message_by_id(message_id)
        if not message:
            raise NotFound("Message not found")
        await self._require_conversation(party, message.conversation_id)

        action = await self._storage.toggle_reaction(
            message_id=message_id,
            party_key=party.key,
            user_id=party.user_id,
            is_operator=party.is_operator,
            emoji=emoji,
            now=self._clock(),
        )
        logger.debug("Reaction %s %s on %s by %s", action, emoji, message_id, party.key)
        return ReactionResult(action=action, emoji=emoji)

    async def set_typing(
        self, party: Party, conversation_id: str, is_typing: bool
    ) -> None:
        """Record or clear the party's typing state."""
        if is_typing:
            await self._consume(party, "typing")
        await self._require_conversation(party, conversation_id)
        await self._presence.set_typing(conversation_id, party.is_operator, is_typing)

    # Helpers
    async def _require_conversation(
        self, party: Party, conversation_id: str
    ) -> Conversation:
        conversation = await self._storage.get_conversation(conversation_id)
        if not conversation:
            raise NotFound()
        if not party.is_operator and conversation.user_id != party.user_id:
            raise NotFound()
        return conversation

    async def _consume(self, party: Party, action: str) -> None:
        decision = await self._limiter.check_and_consume(party.key, action)
        if not decision.allowed:
            retry_after = decision.retry_after or 60.0
            raise RateLimited(
                retry_after,
                f"Too many requests. Please wait {math.ceil(retry_after)} seconds.",
            )

    async def _decorate(self, messages: list[Message]) -> list[MessageView]:
        ids = [m.id for m in messages]
        reactions, replies = await asyncio.gather(
            self._storage.get_reactions(ids),
            self._storage.get_reply_previews(ids),
        )
        views = []
        for message in messages:
            preview = replies.get(message.id)
            if preview:
                preview = ReplyPreview(
                    id=preview.id,
                    content=preview.content[:REPLY_PREVIEW_LENGTH],
                    is_operator=preview.is_operator,
                )
            views.append(
                MessageView(
                    message=message,
                    reactions=reactions.get(message.id, []),
                    reply_to=preview,
                )
            )
        return views


def _preview(message: Message) -> ReplyPreview:
    return ReplyPreview(
        id=message.id,
        content=message.content[:REPLY_PREVIEW_LENGTH],
        is_operator=message.is_operator,
    )
