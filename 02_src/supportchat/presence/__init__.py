"""Presence and typing ledger."""

from .ledger import (
    ONLINE_FRESHNESS,
    TYPING_FRESHNESS,
    IPresenceLedger,
    IPresenceStore,
    PresenceLedger,
    is_fresh,
)

__all__ = [
    "ONLINE_FRESHNESS",
    "TYPING_FRESHNESS",
    "IPresenceLedger",
    "IPresenceStore",
    "PresenceLedger",
    "is_fresh",
]
