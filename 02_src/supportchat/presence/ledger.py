"""Ephemeral typing and online-presence ledger."""

from datetime import datetime, timedelta
from typing import Protocol

from ..clock import Clock, utc_now
from ..logging_config import get_logger
from ..models import TypingStatus

logger = get_logger(__name__)

# Typing must disappear quickly after the other party stops;
# online presence tolerates gaps matching the poll cadence.
TYPING_FRESHNESS = timedelta(seconds=3)
ONLINE_FRESHNESS = timedelta(seconds=30)


def is_fresh(last_seen: datetime | None, now: datetime, window: timedelta) -> bool:
    """True if the last signal is younger than the window."""
    if last_seen is None:
        return False
    return now - last_seen < window


class IPresenceStore(Protocol):
    """Backing rows for the ledger (implemented by Storage)."""

    async def upsert_typing(
        self, conversation_id: str, is_operator: bool, at: datetime
    ) -> None: ...

    async def delete_typing(self, conversation_id: str, is_operator: bool) -> None: ...

    async def get_typing(
        self, conversation_id: str, is_operator: bool
    ) -> TypingStatus | None: ...

    async def touch_operator_session(self, token_hash: str, at: datetime) -> None: ...

    async def get_operator_last_seen(self, now: datetime) -> datetime | None: ...


class IPresenceLedger(Protocol):
    """Per-conversation, per-party activity with read-time freshness."""

    async def set_typing(
        self, conversation_id: str, is_operator: bool, is_typing: bool
    ) -> None:
        """Upsert a heartbeat or delete the record."""
        ...

    async def is_typing(self, conversation_id: str, is_operator: bool) -> bool:
        """Whether the party typed within the freshness window."""
        ...

    async def touch_operator(self, token_hash: str) -> None:
        """Record operator activity."""
        ...

    async def is_operator_online(self) -> bool:
        """Whether the operator was active within the online window."""
        ...


class PresenceLedger:
    """Presence ledger with freshness computed at read time (no sweeper)."""

    def __init__(
        self,
        store: IPresenceStore,
        clock: Clock = utc_now,
        typing_window: timedelta = TYPING_FRESHNESS,
        online_window: timedelta = ONLINE_FRESHNESS,
    ):
        self._store = store
        self._clock = clock
        self._typing_window = typing_window
        self._online_window = online_window

    async def set_typing(
        self, conversation_id: str, is_operator: bool, is_typing: bool
    ) -> None:
        """Upsert a heartbeat or delete the record (last write wins)."""
        if is_typing:
            await self._store.upsert_typing(conversation_id, is_operator, self._clock())
        else:
            await self._store.delete_typing(conversation_id, is_operator)

    async def is_typing(self, conversation_id: str, is_operator: bool) -> bool:
        status = await self._store.get_typing(conversation_id, is_operator)
        if status is None:
            return False
        return is_fresh(status.updated_at, self._clock(), self._typing_window)

    async def touch_operator(self, token_hash: str) -> None:
        await self._store.touch_operator_session(token_hash, self._clock())

    async def is_operator_online(self) -> bool:
        now = self._clock()
        last_seen = await self._store.get_operator_last_seen(now)
        return is_fresh(last_seen, now, self._online_window)
