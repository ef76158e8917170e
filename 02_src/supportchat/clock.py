"""Clock helpers."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)
