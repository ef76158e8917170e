"""Client synchronization engine for one open conversation."""

import asyncio
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Protocol

from ..errors import ChatError, NotFound, RateLimited
from ..logging_config import get_logger
from ..models import IMAGE_PLACEHOLDER, ImagePayload, ReplyPreview
from .merge import (
    apply_reaction_toggle,
    confirm_pending,
    latest_confirmed_id,
    merge_incoming,
    oldest_confirmed_id,
)
from .models import ChatMessage
from .transport import IChatTransport
from .typing import TypingHeartbeat

logger = get_logger(__name__)

POLL_INTERVAL = 2.0
SUPPRESSION_WINDOW = 3.0
LOAD_OLDER_THRESHOLD = 100.0


class EngineState(str, Enum):
    """Lifecycle of an open conversation."""

    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"
    STEADY = "steady"
    PAGINATING = "paginating"
    CLOSED = "closed"


class IViewport(Protocol):
    """Scroll container rendering the message list."""

    scroll_top: float

    @property
    def scroll_height(self) -> float: ...


ChangeListener = Callable[[list[ChatMessage]], None]


class SyncEngine:
    """Owns the merged in-memory message list of one conversation.

    Every state-mutating continuation after an await checks that the
    engine's generation has not moved on (conversation switch or close).
    """

    def __init__(
        self,
        transport: IChatTransport,
        conversation_id: str | None = None,
        is_operator: bool = False,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = POLL_INTERVAL,
        suppression_window: float = SUPPRESSION_WINDOW,
        page_size: int | None = None,
        on_change: ChangeListener | None = None,
        heartbeat: TypingHeartbeat | None = None,
    ):
        self._transport = transport
        self._conversation_id = conversation_id
        self._is_operator = is_operator
        self._clock = clock
        self._poll_interval = poll_interval
        self._suppression_window = suppression_window
        self._page_size = page_size
        self._on_change = on_change

        self._state = EngineState.UNINITIALIZED
        self._generation = 0
        self._messages: list[ChatMessage] = []
        self._has_more = False
        self._counterpart_typing = False
        self._reply_target: ChatMessage | None = None
        self._last_optimistic_at: float | None = None
        self._rate_limited_until: float | None = None
        self._poll_task: asyncio.Task | None = None
        self._heartbeat = heartbeat or TypingHeartbeat(self._send_typing)

    # State
    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def counterpart_typing(self) -> bool:
        return self._counterpart_typing

    @property
    def reply_target(self) -> ChatMessage | None:
        return self._reply_target

    def retry_seconds_remaining(self) -> float:
        """Countdown while input is disabled after a 429."""
        if self._rate_limited_until is None:
            return 0.0
        remaining = self._rate_limited_until - self._clock()
        if remaining <= 0:
            self._rate_limited_until = None
            return 0.0
        return remaining

    # Lifecycle
    async def open(self) -> None:
        """Bootstrap (visitor) or load the default page (operator)."""
        if self._state is EngineState.CLOSED:
            raise RuntimeError("SyncEngine is closed")

        self._generation += 1
        generation = self._generation
        self._state = EngineState.BOOTSTRAPPING

        try:
            if self._conversation_id is None:
                payload = await self._transport.bootstrap()
                conversation_id = payload.conversation_id
                messages, has_more, typing = payload.messages, payload.has_more, False
            else:
                conversation_id = self._conversation_id
                page = await self._transport.fetch_messages(
                    conversation_id, limit=self._page_size
                )
                messages, has_more, typing = (
                    page.messages,
                    page.has_more,
                    page.counterpart_typing,
                )
        except ChatError:
            if generation == self._generation:
                self._state = EngineState.UNINITIALIZED
            raise

        if generation != self._generation:
            return

        self._conversation_id = conversation_id
        self._has_more = has_more
        self._counterpart_typing = typing
        self._state = EngineState.STEADY
        self._commit(list(messages))
        logger.info("Conversation %s opened with %d messages", conversation_id, len(messages))

    def start_polling(self) -> None:
        """Spawn the polling loop."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def switch(self, conversation_id: str) -> None:
        """Drop everything from the current conversation and open another."""
        polling = self._poll_task is not None
        await self._reset()
        self._conversation_id = conversation_id
        self._state = EngineState.UNINITIALIZED
        await self.open()
        if polling:
            self.start_polling()

    async def close(self) -> None:
        """Invalidate in-flight work and clear in-memory state."""
        await self._reset()
        self._state = EngineState.CLOSED

    async def _reset(self) -> None:
        self._generation += 1
        await self.stop_polling()
        await self._heartbeat.aclose()
        self._messages = []
        self._has_more = False
        self._counterpart_typing = False
        self._reply_target = None
        self._last_optimistic_at = None

    # Polling
    async def _poll_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._poll_interval)
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Poll loop error: %s", e, exc_info=True)

    async def poll_once(self) -> bool:
        """One poll cycle; returns True if the message list changed."""
        if self._state not in (EngineState.STEADY, EngineState.PAGINATING):
            return False

        generation = self._generation
        conversation_id = self._conversation_id
        cursor = latest_confirmed_id(self._messages)
        # Only a list without server ids is replaced wholesale
        anchored = any(m.id is not None for m in self._messages)

        if not anchored and self._in_suppression_window():
            return False

        try:
            page = await self._transport.fetch_messages(conversation_id, after=cursor)
        except ChatError as e:
            # Polling failures are silent; the next cycle retries
            logger.debug("Poll skipped for %s: %s", conversation_id, e)
            return False

        if generation != self._generation:
            return False

        self._counterpart_typing = page.counterpart_typing

        if not anchored:
            if _same_entries(self._messages, page.messages):
                return False
            self._has_more = page.has_more
            self._commit(list(page.messages))
            return True

        merged = merge_incoming(self._messages, page.messages)
        if merged is None:
            return False
        self._commit(merged)
        return True

    # Pagination
    async def maybe_load_older(
        self, viewport: IViewport, threshold: float = LOAD_OLDER_THRESHOLD
    ) -> bool:
        """Load older messages when scrolled near the top."""
        if viewport.scroll_top > threshold:
            return False
        return await self.load_older(viewport)

    async def load_older(self, viewport: IViewport | None = None) -> bool:
        """Prepend the previous page, keeping the viewport anchored."""
        if self._state is not EngineState.STEADY or not self._has_more:
            return False

        cursor = oldest_confirmed_id(self._messages)
        if cursor is None:
            self._has_more = False
            return False

        generation = self._generation
        self._state = EngineState.PAGINATING
        try:
            page = await self._transport.fetch_messages(
                self._conversation_id, before=cursor, limit=self._page_size
            )
        except ChatError as e:
            # Fail closed: stop paginating instead of retrying
            logger.warning("Pagination stopped for %s: %s", self._conversation_id, e)
            if generation == self._generation:
                self._has_more = False
                self._state = EngineState.STEADY
            return False

        if generation != self._generation:
            return False

        self._state = EngineState.STEADY
        self._has_more = page.has_more

        known = {m.id for m in self._messages if m.id is not None}
        older = [m for m in page.messages if m.id not in known]
        if not older:
            return False

        previous_height = viewport.scroll_height if viewport else 0.0
        previous_top = viewport.scroll_top if viewport else 0.0
        self._commit(older + self._messages)
        if viewport is not None:
            viewport.scroll_top = previous_top + (viewport.scroll_height - previous_height)
        return True

    # Replies
    def stage_reply(self, message: ChatMessage) -> None:
        if message.id is None:
            raise ValueError("Cannot reply to a message that is not confirmed yet")
        self._reply_target = message

    def clear_reply(self) -> None:
        self._reply_target = None

    # Sending
    async def send_message(self, text: str) -> ChatMessage | None:
        """Optimistically append a text message and deliver it."""
        content = text.strip()
        if not content:
            return None
        self._ensure_not_rate_limited()

        reply = self._take_reply()
        pending = self._pending(content, reply)
        conversation_id = self._conversation_id
        return await self._deliver(
            pending,
            lambda: self._transport.send_message(
                conversation_id, content, reply.id if reply else None
            ),
        )

    async def send_image(self, image: ImagePayload) -> ChatMessage | None:
        """Optimistically append an image message and deliver it."""
        self._ensure_not_rate_limited()

        reply = self._take_reply()
        pending = self._pending(IMAGE_PLACEHOLDER, reply)
        pending.image_url = image.data_url
        pending.image_width = image.width
        pending.image_height = image.height
        conversation_id = self._conversation_id
        return await self._deliver(
            pending,
            lambda: self._transport.send_image(
                conversation_id, image, reply.id if reply else None
            ),
        )

    async def _deliver(
        self,
        pending: ChatMessage,
        call: Callable[[], Awaitable[ChatMessage]],
    ) -> ChatMessage:
        generation = self._generation
        self._mark_optimistic()
        self._commit(self._messages + [pending])
        await self._heartbeat.stop_now()

        try:
            confirmed = await call()
        except ChatError as e:
            if generation == self._generation:
                if isinstance(e, RateLimited):
                    self._rate_limited_until = self._clock() + e.retry_after
                await self.resync()
            raise

        if generation == self._generation:
            updated = confirm_pending(self._messages, pending.local_id, confirmed)
            if updated is not None:
                self._commit(updated)
        return confirmed

    # Reactions
    async def toggle_reaction(self, message_id: str, emoji: str) -> str:
        """Apply the toggle locally, then confirm it with the server."""
        index = next(
            (i for i, m in enumerate(self._messages) if m.id == message_id), None
        )
        if index is None:
            raise NotFound("Message not found")

        generation = self._generation
        target = self._messages[index]
        updated = replace(
            target,
            reactions=apply_reaction_toggle(target.reactions, emoji, self._is_operator),
        )
        self._mark_optimistic()
        self._commit(self._messages[:index] + [updated] + self._messages[index + 1 :])

        try:
            return await self._transport.toggle_reaction(message_id, emoji)
        except ChatError:
            if generation == self._generation:
                await self.resync()
            raise

    # Typing
    async def on_keystroke(self) -> None:
        await self._heartbeat.keystroke()

    async def _send_typing(self, is_typing: bool) -> None:
        if self._conversation_id is None or self._state is EngineState.CLOSED:
            return
        await self._transport.set_typing(self._conversation_id, is_typing)

    # Recovery
    async def resync(self) -> None:
        """Replace local state with the server's canonical latest page."""
        generation = self._generation
        try:
            page = await self._transport.fetch_messages(
                self._conversation_id, limit=self._page_size
            )
        except ChatError as e:
            logger.warning("Resync failed for %s: %s", self._conversation_id, e)
            return

        if generation != self._generation:
            return
        self._has_more = page.has_more
        self._counterpart_typing = page.counterpart_typing
        self._commit(list(page.messages))

    # Internals
    def _commit(self, messages: list[ChatMessage]) -> None:
        self._messages = messages
        if self._on_change is not None:
            self._on_change(list(messages))

    def _mark_optimistic(self) -> None:
        self._last_optimistic_at = self._clock()

    def _in_suppression_window(self) -> bool:
        if self._last_optimistic_at is None:
            return False
        return self._clock() - self._last_optimistic_at < self._suppression_window

    def _ensure_not_rate_limited(self) -> None:
        remaining = self.retry_seconds_remaining()
        if remaining > 0:
            raise RateLimited(remaining, "Please wait before sending again")

    def _take_reply(self) -> ChatMessage | None:
        reply, self._reply_target = self._reply_target, None
        return reply

    def _pending(self, content: str, reply: ChatMessage | None) -> ChatMessage:
        return ChatMessage(
            id=None,
            local_id=uuid.uuid4().hex,
            content=content,
            is_operator=self._is_operator,
            created_at=datetime.now(timezone.utc).isoformat(),
            reply_to_id=reply.id if reply else None,
            reply_to=(
                ReplyPreview(
                    id=reply.id,
                    content=reply.content,
                    is_operator=reply.is_operator,
                )
                if reply
                else None
            ),
        )


def _same_entries(local: list[ChatMessage], incoming: list[ChatMessage]) -> bool:
    if len(local) != len(incoming):
        return False
    return all(a.id == b.id for a, b in zip(local, incoming))
