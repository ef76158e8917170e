"""Tests for the client synchronization engine."""

import asyncio
import base64
from dataclasses import replace

import pytest

from supportchat.client import (
    BootstrapPayload,
    ChatMessage,
    EngineState,
    PagePayload,
    SyncEngine,
    TypingHeartbeat,
)
from supportchat.errors import (
    InvalidContent,
    InvalidCursor,
    NotFound,
    RateLimited,
    TransportError,
)
from supportchat.models import ImagePayload, ReactionGroup


class FakeTransport:
    """In-memory stand-in for the HTTP transport."""

    def __init__(self, page_size: int = 25):
        self.page_size = page_size
        self.conversations: dict[str, list[ChatMessage]] = {"conv1": [], "conv2": []}
        self.counterpart_typing = False
        self.failures: dict[str, Exception] = {}
        self.holds: dict[str, asyncio.Event] = {}
        self.fetches: list[dict] = []
        self.sent: list[dict] = []
        self.typing: list[bool] = []
        self.reactions: list[tuple[str, str]] = []
        self._seq = 0

    def add(self, content: str, is_operator: bool = False, conversation_id: str = "conv1"):
        self._seq += 1
        message = ChatMessage(
            id=f"s{self._seq:03d}",
            content=content,
            is_operator=is_operator,
            created_at=f"2024-01-01T12:00:00.{self._seq:06d}+00:00",
        )
        self.conversations[conversation_id].append(message)
        return message

    def hold(self, call: str) -> asyncio.Event:
        """Block the next ``call`` until the returned event is set."""
        event = asyncio.Event()
        self.holds[call] = event
        return event

    async def _enter(self, call: str) -> None:
        event = self.holds.pop(call, None)
        if event is not None:
            await event.wait()
        error = self.failures.pop(call, None)
        if error is not None:
            raise error

    def _copy(self, messages):
        return [replace(m) for m in messages]

    async def bootstrap(self) -> BootstrapPayload:
        await self._enter("bootstrap")
        messages = self.conversations["conv1"]
        return BootstrapPayload(
            conversation_id="conv1",
            messages=self._copy(messages[-self.page_size :]),
            has_more=len(messages) > self.page_size,
        )

    async def fetch_messages(self, conversation_id, limit=None, before=None, after=None):
        self.fetches.append({"conversation_id": conversation_id, "before": before, "after": after})
        await self._enter("fetch")
        messages = self.conversations[conversation_id]
        ids = [m.id for m in messages]
        limit = limit or self.page_size

        if before:
            if before not in ids:
                raise InvalidCursor()
            older = messages[: ids.index(before)]
            page, has_more = older[-limit:], len(older) > limit
        elif after:
            page = messages[ids.index(after) + 1 :] if after in ids else []
            has_more = False
        else:
            page, has_more = messages[-limit:], len(messages) > limit

        return PagePayload(
            messages=self._copy(page),
            has_more=has_more,
            counterpart_typing=self.counterpart_typing,
        )

    async def send_message(self, conversation_id, content, reply_to_id=None):
        self.sent.append({"content": content, "reply_to_id": reply_to_id})
        error = self.failures.pop("send", None)
        if error is not None:
            raise error
        # Stored before the response so a concurrent poll can see it
        message = self.add(content, conversation_id=conversation_id)
        await self._enter("send")
        return replace(message, reply_to_id=reply_to_id)

    async def send_image(self, conversation_id, image, reply_to_id=None):
        self.sent.append({"image": image, "reply_to_id": reply_to_id})
        await self._enter("send")
        message = self.add("📷 Image", conversation_id=conversation_id)
        message.image_url = image.data_url
        return replace(message)

    async def toggle_reaction(self, message_id, emoji):
        self.reactions.append((message_id, emoji))
        await self._enter("react")
        return "added"

    async def set_typing(self, conversation_id, is_typing):
        self.typing.append(is_typing)


class FakeViewport:
    """Scroll container whose content height follows the message count."""

    ROW_HEIGHT = 50

    def __init__(self, engine: SyncEngine, scroll_top: float = 0.0):
        self.engine = engine
        self.scroll_top = scroll_top

    @property
    def scroll_height(self) -> float:
        return len(self.engine.messages) * self.ROW_HEIGHT


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def changes():
    return []


@pytest.fixture
async def engine(transport, monotonic, changes):
    engine = SyncEngine(
        transport,
        clock=monotonic,
        poll_interval=0.01,
        on_change=changes.append,
        heartbeat=TypingHeartbeat(
            transport.set_typing, clock=monotonic, quiet_period=0.01
        ),
    )
    yield engine
    await engine.close()


async def opened(engine: SyncEngine) -> SyncEngine:
    await engine.open()
    return engine


class TestOpen:
    """Tests for opening a conversation."""

    async def test_visitor_bootstrap(self, engine, transport):
        transport.add("welcome", is_operator=True)

        await engine.open()

        assert engine.state is EngineState.STEADY
        assert engine.conversation_id == "conv1"
        assert [m.content for m in engine.messages] == ["welcome"]
        assert engine.has_more is False

    async def test_operator_loads_default_page(self, transport, monotonic):
        transport.add("hello", conversation_id="conv2")
        transport.counterpart_typing = True
        engine = SyncEngine(transport, conversation_id="conv2", is_operator=True, clock=monotonic)

        await engine.open()

        assert [m.content for m in engine.messages] == ["hello"]
        assert engine.counterpart_typing is True

    async def test_failed_open_resets_state(self, engine, transport):
        transport.failures["bootstrap"] = TransportError()

        with pytest.raises(TransportError):
            await engine.open()
        assert engine.state is EngineState.UNINITIALIZED

    async def test_closed_engine_cannot_open(self, engine):
        await engine.close()
        with pytest.raises(RuntimeError):
            await engine.open()


class TestPolling:
    """Tests for the polling cycle."""

    async def test_appends_new_messages(self, engine, transport):
        transport.add("one")
        await opened(engine)
        transport.add("two", is_operator=True)

        assert await engine.poll_once() is True
        assert [m.content for m in engine.messages] == ["one", "two"]
        assert transport.fetches[-1]["after"] == "s001"

    async def test_nothing_new_triggers_no_update(self, engine, transport, changes):
        transport.add("one")
        await opened(engine)
        changes.clear()

        assert await engine.poll_once() is False
        assert await engine.poll_once() is False
        assert changes == []

    async def test_typing_flag_follows_response(self, engine, transport):
        transport.add("one")
        await opened(engine)

        transport.counterpart_typing = True
        await engine.poll_once()
        assert engine.counterpart_typing is True

        transport.counterpart_typing = False
        await engine.poll_once()
        assert engine.counterpart_typing is False

    async def test_errors_are_swallowed(self, engine, transport):
        transport.add("one")
        await opened(engine)
        transport.failures["fetch"] = TransportError("offline")

        assert await engine.poll_once() is False
        assert [m.content for m in engine.messages] == ["one"]

    async def test_empty_conversation_uses_default_read(self, engine, transport):
        await opened(engine)
        transport.add("first", is_operator=True)

        assert await engine.poll_once() is True
        assert transport.fetches[-1]["after"] is None
        assert [m.content for m in engine.messages] == ["first"]

    async def test_poll_loop_runs_until_stopped(self, engine, transport):
        await opened(engine)
        engine.start_polling()
        transport.add("pushed", is_operator=True)

        for _ in range(100):
            if engine.messages:
                break
            await asyncio.sleep(0.01)
        await engine.stop_polling()

        assert [m.content for m in engine.messages] == ["pushed"]


class TestOptimisticSend:
    """Tests for optimistic sends and their reconciliation."""

    async def test_send_confirms_in_place(self, engine, transport):
        await opened(engine)

        confirmed = await engine.send_message("  hello  ")

        assert confirmed.id == "s001"
        assert [(m.id, m.content) for m in engine.messages] == [("s001", "hello")]
        assert transport.sent == [{"content": "hello", "reply_to_id": None}]

    async def test_blank_text_is_ignored(self, engine, transport):
        await opened(engine)

        assert await engine.send_message("   ") is None
        assert transport.sent == []

    async def test_poll_during_send_collapses_echo(self, engine, transport):
        """The persisted copy arrives by poll before the POST returns."""
        transport.add("earlier")
        await opened(engine)
        release = transport.hold("send")

        send = asyncio.create_task(engine.send_message("hello"))
        await asyncio.sleep(0)
        assert [m.id for m in engine.messages] == ["s001", None]

        await engine.poll_once()
        release.set()
        await send

        hellos = [m for m in engine.messages if m.content == "hello"]
        assert len(hellos) == 1
        assert hellos[0].id == "s002"

    async def test_suppression_window_skips_path_replacing_load(
        self, engine, transport, monotonic
    ):
        await opened(engine)
        release = transport.hold("send")
        send = asyncio.create_task(engine.send_message("first!"))
        await asyncio.sleep(0)
        fetches = len(transport.fetches)

        assert await engine.poll_once() is False
        assert len(transport.fetches) == fetches
        assert [m.content for m in engine.messages] == ["first!"]

        release.set()
        await send
        assert engine.messages[0].awaiting_poll

        monotonic.advance(5)
        await engine.poll_once()
        assert [m.id for m in engine.messages] == ["s001"]
        assert not engine.messages[0].awaiting_poll

    async def test_counterpart_message_stored_before_send_returns(self, engine, transport):
        """A reply stored between our last poll and our send still arrives."""
        transport.add("hello")
        await opened(engine)
        transport.add("operator reply", is_operator=True)

        await engine.send_message("my message")
        assert await engine.poll_once() is True

        assert [m.content for m in engine.messages] == [
            "hello",
            "operator reply",
            "my message",
        ]
        assert transport.fetches[-1]["after"] == "s001"

        assert await engine.poll_once() is False
        assert transport.fetches[-1]["after"] == "s003"

    async def test_failed_send_reverts_to_server_truth(self, engine, transport):
        transport.add("kept")
        await opened(engine)
        transport.failures["send"] = InvalidContent("Message contains invalid characters")
        transport.add("from operator", is_operator=True)

        with pytest.raises(InvalidContent):
            await engine.send_message("bad")

        assert [m.content for m in engine.messages] == ["kept", "from operator"]
        assert all(m.id for m in engine.messages)

    async def test_rate_limit_countdown(self, engine, transport, monotonic):
        await opened(engine)
        transport.failures["send"] = RateLimited(30)

        with pytest.raises(RateLimited):
            await engine.send_message("too fast")
        assert engine.retry_seconds_remaining() == 30

        sent = len(transport.sent)
        with pytest.raises(RateLimited):
            await engine.send_message("still too fast")
        assert len(transport.sent) == sent

        monotonic.advance(31)
        assert engine.retry_seconds_remaining() == 0
        await engine.send_message("ok now")

    async def test_reply_staging(self, engine, transport):
        transport.add("question?")
        await opened(engine)
        [question] = engine.messages

        engine.stage_reply(question)
        assert engine.reply_target is question
        release = transport.hold("send")
        send = asyncio.create_task(engine.send_message("answer"))
        await asyncio.sleep(0)

        pending = engine.messages[-1]
        assert pending.id is None
        assert pending.reply_to.id == question.id
        assert pending.reply_to.content == "question?"
        assert engine.reply_target is None

        release.set()
        await send
        assert transport.sent[-1]["reply_to_id"] == question.id
        assert engine.messages[-1].reply_to.id == question.id

    async def test_cannot_reply_to_pending(self, engine):
        await opened(engine)
        with pytest.raises(ValueError):
            engine.stage_reply(ChatMessage(content="x", is_operator=False, created_at=""))

    async def test_send_image(self, engine, transport):
        await opened(engine)
        data_url = "data:image/png;base64," + base64.b64encode(b"\x00" * 200).decode()

        confirmed = await engine.send_image(ImagePayload(data_url, 10, 10))

        assert confirmed.image_url == data_url
        assert [m.content for m in engine.messages] == ["📷 Image"]


class TestReactions:
    """Tests for optimistic reaction toggles."""

    async def test_optimistic_toggle(self, engine, transport):
        transport.add("hi", is_operator=True)
        await opened(engine)

        action = await engine.toggle_reaction("s001", "👍")

        assert action == "added"
        [group] = engine.messages[0].reactions
        assert (group.emoji, group.count, group.has_visitor) == ("👍", 1, True)

    async def test_failed_toggle_resyncs(self, engine, transport):
        message = transport.add("hi", is_operator=True)
        message.reactions = [ReactionGroup("❤️", 1, has_operator=True, has_visitor=False)]
        await opened(engine)
        transport.failures["react"] = TransportError()

        with pytest.raises(TransportError):
            await engine.toggle_reaction("s001", "👍")

        assert [g.emoji for g in engine.messages[0].reactions] == ["❤️"]

    async def test_unknown_message(self, engine):
        await opened(engine)
        with pytest.raises(NotFound):
            await engine.toggle_reaction("missing", "👍")


class TestPagination:
    """Tests for backward pagination."""

    async def test_prepends_and_keeps_viewport_anchored(self, engine, transport):
        for i in range(30):
            transport.add(f"msg {i}")
        await opened(engine)
        assert engine.has_more is True
        viewport = FakeViewport(engine, scroll_top=20)

        assert await engine.maybe_load_older(viewport) is True

        assert len(engine.messages) == 30
        assert engine.messages[0].content == "msg 0"
        assert engine.has_more is False
        assert viewport.scroll_top == 20 + 5 * FakeViewport.ROW_HEIGHT
        assert engine.state is EngineState.STEADY

    async def test_not_near_top(self, engine, transport):
        for i in range(30):
            transport.add(f"msg {i}")
        await opened(engine)

        assert await engine.maybe_load_older(FakeViewport(engine, scroll_top=500)) is False

    async def test_failure_fails_closed(self, engine, transport):
        for i in range(30):
            transport.add(f"msg {i}")
        await opened(engine)
        transport.failures["fetch"] = TransportError()

        assert await engine.load_older() is False
        assert engine.has_more is False
        assert engine.state is EngineState.STEADY
        assert await engine.load_older() is False

    async def test_no_request_without_more(self, engine, transport):
        transport.add("only")
        await opened(engine)
        fetches = len(transport.fetches)

        assert await engine.load_older() is False
        assert len(transport.fetches) == fetches


class TestGenerations:
    """Stale responses are never applied."""

    async def test_poll_after_close_is_dropped(self, engine, transport):
        transport.add("one")
        await opened(engine)
        release = transport.hold("fetch")

        poll = asyncio.create_task(engine.poll_once())
        await asyncio.sleep(0)
        await engine.close()
        transport.add("late")
        release.set()

        assert await poll is False
        assert engine.messages == []
        assert engine.state is EngineState.CLOSED

    async def test_switch_discards_previous_conversation(self, engine, transport):
        transport.add("visitor one")
        transport.add("other conversation", conversation_id="conv2")
        await opened(engine)
        release = transport.hold("fetch")

        poll = asyncio.create_task(engine.poll_once())
        await asyncio.sleep(0)
        transport.add("late for conv1")
        switch = asyncio.create_task(engine.switch("conv2"))
        await asyncio.sleep(0)
        release.set()
        await poll
        await switch

        assert engine.conversation_id == "conv2"
        assert [m.content for m in engine.messages] == ["other conversation"]

    async def test_pagination_after_switch_is_dropped(self, engine, transport):
        for i in range(30):
            transport.add(f"msg {i}")
        await opened(engine)
        release = transport.hold("fetch")

        page = asyncio.create_task(engine.load_older())
        await asyncio.sleep(0)
        await engine.close()
        release.set()

        assert await page is False
        assert engine.messages == []


class TestTyping:
    """Tests for the typing heartbeat."""

    async def test_keystrokes_are_debounced(self, engine, transport, monotonic):
        await opened(engine)

        await engine.on_keystroke()
        await engine.on_keystroke()
        monotonic.advance(0.5)
        await engine.on_keystroke()
        assert transport.typing == [True]

        monotonic.advance(0.6)
        await engine.on_keystroke()
        assert transport.typing == [True, True]

    async def test_quiet_period_sends_stop(self, engine, transport):
        await opened(engine)

        await engine.on_keystroke()
        await asyncio.sleep(0.05)

        assert transport.typing == [True, False]

    async def test_send_stops_typing_immediately(self, transport, monotonic):
        engine = SyncEngine(
            transport,
            clock=monotonic,
            heartbeat=TypingHeartbeat(transport.set_typing, clock=monotonic, quiet_period=10),
        )
        await engine.open()

        await engine.on_keystroke()
        await engine.send_message("hi")

        assert transport.typing == [True, False]
        await engine.close()


class TestTypingHeartbeat:
    """Tests for TypingHeartbeat on its own."""

    async def test_send_errors_are_dropped(self, monotonic):
        async def failing(is_typing):
            raise TransportError("offline")

        heartbeat = TypingHeartbeat(failing, clock=monotonic, quiet_period=10)
        await heartbeat.keystroke()
        assert heartbeat.active
        await heartbeat.aclose()
        assert not heartbeat.active

    async def test_stop_now_without_typing_sends_nothing(self, monotonic):
        sent = []

        async def record(is_typing):
            sent.append(is_typing)

        heartbeat = TypingHeartbeat(record, clock=monotonic)
        await heartbeat.stop_now()
        assert sent == []
