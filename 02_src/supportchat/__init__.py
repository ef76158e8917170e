"""Support chat sync core."""

from .app import Application, IApplication
from .auth import IPartyResolver, SessionResolver
from .client import ChatTransport, IChatTransport, SyncEngine
from .errors import (
    ChatError,
    InvalidContent,
    InvalidCursor,
    InvalidEmoji,
    InvalidImage,
    InvalidReplyTarget,
    NotFound,
    RateLimited,
    TransportError,
    Unauthorized,
    ValidationError,
)
from .models import (
    Conversation,
    ImagePayload,
    Message,
    MessagePage,
    MessageView,
    Party,
    ReactionGroup,
    ReplyPreview,
    User,
)
from .presence import IPresenceLedger, PresenceLedger
from .push import INotifier, PushNotifier
from .ratelimit import IRateLimiter, RateLimiter
from .storage import IStorage, Storage
from .sync import ISyncService, SyncService

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Models
    "Party",
    "User",
    "Conversation",
    "ImagePayload",
    "Message",
    "MessagePage",
    "MessageView",
    "ReactionGroup",
    "ReplyPreview",
    # Errors
    "ChatError",
    "Unauthorized",
    "NotFound",
    "ValidationError",
    "InvalidContent",
    "InvalidImage",
    "InvalidReplyTarget",
    "InvalidEmoji",
    "InvalidCursor",
    "RateLimited",
    "TransportError",
    # Components
    "IStorage",
    "Storage",
    "IPresenceLedger",
    "PresenceLedger",
    "IRateLimiter",
    "RateLimiter",
    "INotifier",
    "PushNotifier",
    "ISyncService",
    "SyncService",
    "IPartyResolver",
    "SessionResolver",
    # Client
    "IChatTransport",
    "ChatTransport",
    "SyncEngine",
]
