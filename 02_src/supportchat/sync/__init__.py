"""Server side of the sync protocol."""

from .service import (
    MAX_PAGE_SIZE,
    PAGE_SIZE,
    REPLY_PREVIEW_LENGTH,
    BootstrapResult,
    ISyncService,
    ReactionResult,
    SyncService,
)
from .validation import (
    ALLOWED_EMOJIS,
    MAX_MESSAGE_LENGTH,
    MAX_OPERATOR_MESSAGE_LENGTH,
    validate_content,
    validate_emoji,
    validate_image,
)

__all__ = [
    "ALLOWED_EMOJIS",
    "MAX_MESSAGE_LENGTH",
    "MAX_OPERATOR_MESSAGE_LENGTH",
    "MAX_PAGE_SIZE",
    "PAGE_SIZE",
    "REPLY_PREVIEW_LENGTH",
    "BootstrapResult",
    "ISyncService",
    "ReactionResult",
    "SyncService",
    "validate_content",
    "validate_emoji",
    "validate_image",
]
