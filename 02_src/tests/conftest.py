"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Monotonic clock for client-side timers."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Notifier that records calls instead of delivering."""

    def __init__(self):
        self.calls = []

    def notify_other_party(self, sender, summary, conversation_id, recipient_user_id):
        self.calls.append((sender, summary, conversation_id, recipient_user_id))

    async def aclose(self):
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture(autouse=True)
def limits_time(monkeypatch, clock):
    """Run the limits memory backend on the fake clock."""
    import limits.aio.storage.memory as memory_backend

    monkeypatch.setattr(
        memory_backend, "time", SimpleNamespace(time=lambda: clock().timestamp())
    )


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from supportchat.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def presence(storage, clock):
    from supportchat.presence import PresenceLedger

    return PresenceLedger(storage, clock=clock)


@pytest.fixture
def limiter(clock):
    from supportchat.ratelimit import RateLimiter

    return RateLimiter(clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(storage, presence, limiter, notifier, clock):
    """SyncService wired to in-memory collaborators."""
    from supportchat.sync import SyncService

    return SyncService(storage, presence, limiter, notifier, clock=clock)


@pytest_asyncio.fixture
async def visitor(storage):
    """A stored visitor and its party."""
    from supportchat.models import Party, User

    user = User(id="user1", username="alice", display_name="Alice")
    await storage.save_user(user)
    return Party.visitor(user.id, user.name)


@pytest_asyncio.fixture
async def other_visitor(storage):
    from supportchat.models import Party, User

    user = User(id="user2", username="bob", display_name="Bob")
    await storage.save_user(user)
    return Party.visitor(user.id, user.name)


@pytest.fixture
def operator():
    from supportchat.models import Party

    return Party.operator("Support")


@pytest_asyncio.fixture
async def conversation_id(service, visitor):
    """Conversation of the default visitor."""
    result = await service.bootstrap(visitor)
    return result.conversation_id


async def seed_messages(storage, conversation_id, count, clock, is_operator=False):
    """Store ``count`` messages one second apart, oldest first."""
    from supportchat.models import Message

    messages = []
    for i in range(count):
        message = Message(
            id=f"m{i:03d}",
            conversation_id=conversation_id,
            is_operator=is_operator,
            content=f"message {i}",
            created_at=clock(),
        )
        await storage.save_message(message)
        messages.append(message)
        clock.advance(1)
    return messages


@pytest_asyncio.fixture
async def application(clock):
    """Started application on an in-memory database."""
    from supportchat.app import Application
    from supportchat.config import Settings

    app = Application(
        settings=Settings(push_enabled=False, operator_name="Support", control_enabled=True),
        db_path=":memory:",
        clock=clock,
    )
    await app.start()
    yield app
    await app.stop()


@pytest.fixture
def fastapi_app(application):
    from supportchat.api import create_fastapi_app

    return create_fastapi_app(application)


@pytest.fixture
def make_client(fastapi_app):
    """Factory for HTTP clients bound to the ASGI app with given cookies."""
    def factory(cookies: dict | None = None) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=fastapi_app),
            base_url="http://test",
            cookies=cookies,
        )
        return client

    return factory


@pytest_asyncio.fixture
async def visitor_client(application, make_client):
    """HTTP client carrying a valid visitor session."""
    from supportchat.models import User

    user = User(id="visitor1", username="alice", display_name="Alice")
    await application.storage.save_user(user)
    token = await application.auth.issue_visitor_session(user)
    async with make_client({"session": token}) as client:
        yield client


@pytest_asyncio.fixture
async def operator_client(application, make_client):
    """HTTP client carrying a valid operator session."""
    token = await application.auth.issue_operator_session()
    async with make_client({"admin_session": token}) as client:
        yield client
