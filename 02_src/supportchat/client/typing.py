"""Debounced typing heartbeat."""

import asyncio
import time
from typing import Awaitable, Callable

from ..errors import ChatError
from ..logging_config import get_logger

logger = get_logger(__name__)

TYPING_DEBOUNCE = 1.0
TYPING_QUIET_PERIOD = 2.0


class TypingHeartbeat:
    """Sends ``True`` at most once per debounce interval and ``False`` after a quiet period."""

    def __init__(
        self,
        send: Callable[[bool], Awaitable[None]],
        clock: Callable[[], float] = time.monotonic,
        debounce: float = TYPING_DEBOUNCE,
        quiet_period: float = TYPING_QUIET_PERIOD,
    ):
        self._send = send
        self._clock = clock
        self._debounce = debounce
        self._quiet_period = quiet_period
        self._last_sent: float | None = None
        self._active = False
        self._stop_task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._active

    async def keystroke(self) -> None:
        now = self._clock()
        if self._last_sent is None or now - self._last_sent >= self._debounce:
            self._last_sent = now
            self._active = True
            await self._safe_send(True)
        self._schedule_stop()

    async def stop_now(self) -> None:
        """Cancel the pending stop and clear immediately (used on send)."""
        self._cancel_stop()
        if self._active:
            await self._send_stop()

    async def aclose(self) -> None:
        self._cancel_stop()
        self._active = False
        self._last_sent = None

    def _schedule_stop(self) -> None:
        self._cancel_stop()
        self._stop_task = asyncio.create_task(self._stop_later())

    def _cancel_stop(self) -> None:
        if self._stop_task is not None and not self._stop_task.done():
            self._stop_task.cancel()
        self._stop_task = None

    async def _stop_later(self) -> None:
        try:
            await asyncio.sleep(self._quiet_period)
        except asyncio.CancelledError:
            return
        self._stop_task = None
        await self._send_stop()

    async def _send_stop(self) -> None:
        self._active = False
        self._last_sent = None
        await self._safe_send(False)

    async def _safe_send(self, is_typing: bool) -> None:
        try:
            await self._send(is_typing)
        except ChatError as e:
            logger.debug("Typing signal %s dropped: %s", is_typing, e)
