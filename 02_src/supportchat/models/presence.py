"""Presence and push data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TypingStatus:
    """Last typing heartbeat of one party in a conversation."""

    conversation_id: str
    is_operator: bool
    updated_at: datetime


@dataclass
class PushSubscription:
    """A delivery endpoint registered by a party."""

    endpoint: str
    p256dh: str
    auth: str
    user_id: str | None = None
    is_operator: bool = False
