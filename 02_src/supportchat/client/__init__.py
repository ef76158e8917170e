from .engine import EngineState, IViewport, SyncEngine
from .merge import (
    apply_reaction_toggle,
    confirm_pending,
    latest_confirmed_id,
    merge_incoming,
    oldest_confirmed_id,
)
from .models import BootstrapPayload, ChatMessage, PagePayload
from .transport import ChatTransport, IChatTransport, raise_for_response
from .typing import TypingHeartbeat

__all__ = [
    "EngineState",
    "IViewport",
    "SyncEngine",
    "apply_reaction_toggle",
    "confirm_pending",
    "latest_confirmed_id",
    "merge_incoming",
    "oldest_confirmed_id",
    "BootstrapPayload",
    "ChatMessage",
    "PagePayload",
    "ChatTransport",
    "IChatTransport",
    "raise_for_response",
    "TypingHeartbeat",
]
