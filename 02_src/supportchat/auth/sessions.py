"""Session-token party resolver."""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from ..clock import Clock, utc_now
from ..logging_config import get_logger
from ..models import Party, User
from ..presence import IPresenceLedger
from ..storage import IStorage

logger = get_logger(__name__)

SESSION_COOKIE = "session"
OPERATOR_COOKIE = "admin_session"


def hash_token(token: str) -> str:
    """Sessions are stored by SHA-256 of the raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def new_token() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class SessionCredentials:
    """Raw credentials taken from a request."""

    session_token: str | None = None
    operator_token: str | None = None


class IPartyResolver(Protocol):
    """Resolve request credentials to a validated party."""

    async def resolve_party(
        self, credentials: SessionCredentials, operator: bool = False
    ) -> Party | None:
        """Return the party, or None when credentials are missing or invalid."""
        ...


class SessionResolver:
    """Resolves parties from visitor and operator session tables."""

    def __init__(
        self,
        storage: IStorage,
        presence: IPresenceLedger,
        clock: Clock = utc_now,
        operator_name: str = "Operator",
        session_ttl: timedelta = timedelta(days=30),
    ):
        self._storage = storage
        self._presence = presence
        self._clock = clock
        self._operator_name = operator_name
        self._session_ttl = session_ttl

    async def resolve_party(
        self, credentials: SessionCredentials, operator: bool = False
    ) -> Party | None:
        """Return the party, or None when credentials are missing or invalid."""
        now = self._clock()

        if operator:
            if not credentials.operator_token:
                return None
            token_hash = hash_token(credentials.operator_token)
            if not await self._storage.has_operator_session(token_hash, now):
                return None
            await self._presence.touch_operator(token_hash)
            return Party.operator(self._operator_name)

        if not credentials.session_token:
            return None
        user = await self._storage.get_session_user(
            hash_token(credentials.session_token), now
        )
        if not user:
            return None
        return Party.visitor(user.id, user.name)

    async def issue_visitor_session(self, user: User) -> str:
        """Create a session for an existing visitor and return its raw token."""
        token = new_token()
        await self._storage.create_session(
            hash_token(token), user.id, self._clock() + self._session_ttl
        )
        logger.info("Visitor session issued for %s", user.id)
        return token

    async def issue_operator_session(self) -> str:
        """Create an operator session and return its raw token."""
        token = new_token()
        now = self._clock()
        await self._storage.create_operator_session(
            hash_token(token), now + self._session_ttl, now
        )
        logger.info("Operator session issued")
        return token
