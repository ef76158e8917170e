"""Per-party, per-action rate limiting on top of ``limits``."""

from dataclasses import dataclass
from typing import Protocol

from limits import RateLimitItem, RateLimitItemPerMinute
from limits.aio.storage import Storage
from limits.aio.strategies import MovingWindowRateLimiter
from limits.storage import storage_from_string

from ..clock import Clock, utc_now
from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_STORAGE_URI = "async+memory://"
NAMESPACE = "supportchat"


@dataclass
class RateDecision:
    """Outcome of a check; retry_after is in seconds."""

    allowed: bool
    retry_after: float | None = None


DEFAULT_LIMITS: dict[str, RateLimitItem] = {
    "message": RateLimitItemPerMinute(15, namespace=NAMESPACE),
    "reaction": RateLimitItemPerMinute(30, namespace=NAMESPACE),
    "typing": RateLimitItemPerMinute(20, namespace=NAMESPACE),
}


class IRateLimiter(Protocol):
    """Per-party, per-action admission control."""

    async def check_and_consume(self, party_id: str, action: str) -> RateDecision:
        """Admit and record the action, or report when to retry."""
        ...


class RateLimiter:
    """Moving windows keyed by (action, party) in a ``limits`` storage backend."""

    def __init__(
        self,
        storage: Storage | None = None,
        rules: dict[str, RateLimitItem] | None = None,
        clock: Clock = utc_now,
    ):
        self._storage = (
            storage if storage is not None else storage_from_string(DEFAULT_STORAGE_URI)
        )
        self._rules = rules if rules is not None else DEFAULT_LIMITS
        self._clock = clock
        self._strategy = MovingWindowRateLimiter(self._storage)

    @classmethod
    def from_uri(cls, uri: str, clock: Clock = utc_now) -> "RateLimiter":
        """Build a limiter on any ``limits`` async storage URI."""
        return cls(storage=storage_from_string(uri), clock=clock)

    async def check_and_consume(self, party_id: str, action: str) -> RateDecision:
        """Admit and record the action, or report when to retry."""
        item = self._rules.get(action)
        if item is None:
            return RateDecision(allowed=True)

        if await self._strategy.hit(item, action, party_id):
            return RateDecision(allowed=True)

        stats = await self._strategy.get_window_stats(item, action, party_id)
        retry_after = max(0.0, stats.reset_time - self._clock().timestamp())
        logger.info(
            "Rate limit hit",
            extra={"context": {"action": action, "party": party_id}},
        )
        return RateDecision(allowed=False, retry_after=retry_after)

    async def reset(self) -> None:
        """Forget every window."""
        await self._storage.reset()
