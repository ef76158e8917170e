"""Core data models for the support chat."""

from .messages import (
    IMAGE_PLACEHOLDER,
    Conversation,
    ImagePayload,
    Message,
    MessagePage,
    MessageView,
    ReactionGroup,
    ReplyPreview,
)
from .parties import OPERATOR_PARTY_KEY, Party, User
from .presence import PushSubscription, TypingStatus

__all__ = [
    # Parties
    "OPERATOR_PARTY_KEY",
    "Party",
    "User",
    # Messages
    "IMAGE_PLACEHOLDER",
    "Conversation",
    "ImagePayload",
    "Message",
    "MessagePage",
    "MessageView",
    "ReactionGroup",
    "ReplyPreview",
    # Presence
    "PushSubscription",
    "TypingStatus",
]
