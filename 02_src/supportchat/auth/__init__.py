"""Party resolution from session credentials."""

from .sessions import (
    OPERATOR_COOKIE,
    SESSION_COOKIE,
    IPartyResolver,
    SessionCredentials,
    SessionResolver,
    hash_token,
    new_token,
)

__all__ = [
    "OPERATOR_COOKIE",
    "SESSION_COOKIE",
    "IPartyResolver",
    "SessionCredentials",
    "SessionResolver",
    "hash_token",
    "new_token",
]
