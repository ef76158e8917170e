"""Conversation and message data models."""

from dataclasses import dataclass, field
from datetime import datetime

IMAGE_PLACEHOLDER = "📷 Image"


@dataclass
class Conversation:
    """A 1:1 channel between one visitor and the operator."""

    id: str
    user_id: str
    visitor_name: str | None
    created_at: datetime
    updated_at: datetime


@dataclass
class ImagePayload:
    """An encoded image attached to a message."""

    data_url: str
    width: int
    height: int


@dataclass
class Message:
    """A single immutable message in a conversation."""

    id: str
    conversation_id: str
    is_operator: bool
    content: str
    created_at: datetime
    image: ImagePayload | None = None
    reply_to_id: str | None = None
    seq: int | None = None  # assigned by storage


@dataclass
class ReplyPreview:
    """Denormalized summary of a reply target."""

    id: str
    content: str
    is_operator: bool


@dataclass
class ReactionGroup:
    """Reactions on one message summarized per emoji."""

    emoji: str
    count: int
    has_operator: bool
    has_visitor: bool


@dataclass
class MessageView:
    """A message decorated with its reactions and reply preview."""

    message: Message
    reactions: list[ReactionGroup] = field(default_factory=list)
    reply_to: ReplyPreview | None = None


@dataclass
class MessagePage:
    """One page of a conversation read."""

    messages: list[MessageView]
    has_more: bool = False
    counterpart_typing: bool = False
