"""Request dependencies resolving the calling party from session cookies."""

from typing import Awaitable, Callable

from fastapi import Cookie

from ..app import IApplication
from ..auth import OPERATOR_COOKIE, SESSION_COOKIE, SessionCredentials
from ..errors import Unauthorized
from ..models import Party

PartyDependency = Callable[..., Awaitable[Party]]


def visitor_party(app: IApplication) -> PartyDependency:
    """Dependency resolving the visitor from the ``session`` cookie."""

    async def resolve(
        session: str | None = Cookie(default=None, alias=SESSION_COOKIE),
    ) -> Party:
        party = await app.auth.resolve_party(SessionCredentials(session_token=session))
        if party is None:
            raise Unauthorized()
        return party

    return resolve


def operator_party(app: IApplication) -> PartyDependency:
    """Dependency resolving the operator from the ``admin_session`` cookie."""

    async def resolve(
        admin_session: str | None = Cookie(default=None, alias=OPERATOR_COOKIE),
    ) -> Party:
        party = await app.auth.resolve_party(
            SessionCredentials(operator_token=admin_session), operator=True
        )
        if party is None:
            raise Unauthorized()
        return party

    return resolve
