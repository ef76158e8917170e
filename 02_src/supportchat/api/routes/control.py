"""Control API routes (development only)."""

import uuid
from typing import Any

from fastapi import APIRouter, HTTPException, Response

from ...app import IApplication
from ...auth import OPERATOR_COOKIE, SESSION_COOKIE
from ...logging_config import get_logger
from ...models import User
from ..schemas import SessionResponse, StatusResponse, VisitorSessionRequest

logger = get_logger(__name__)


# Global SIM instance (will be set by main app)
_sim_instance: Any = None


def set_sim_instance(sim: Any) -> None:
    """Set the global SIM instance."""
    global _sim_instance
    _sim_instance = sim


def get_sim_instance() -> Any:
    """Get the global SIM instance."""
    return _sim_instance


def create_control_router(app: IApplication) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=StatusResponse)
    async def reset_system() -> dict:
        """Reset system data between test runs."""
        await app.reset()
        return {"status": "ok"}

    @router.post("/sessions/visitor", response_model=SessionResponse)
    async def create_visitor_session(
        request: VisitorSessionRequest, response: Response
    ) -> dict:
        """Create a visitor account with a session; signup stays external."""
        user = User(
            id=str(uuid.uuid4()),
            username=request.username,
            display_name=request.display_name,
        )
        await app.storage.save_user(user)
        token = await app.auth.issue_visitor_session(user)
        response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
        return {"token": token, "userId": user.id}

    @router.post("/sessions/operator", response_model=SessionResponse)
    async def create_operator_session(response: Response) -> dict:
        token = await app.auth.issue_operator_session()
        response.set_cookie(OPERATOR_COOKIE, token, httponly=True, samesite="lax")
        return {"token": token}

    @router.post("/sim/start", response_model=StatusResponse)
    async def start_sim() -> dict:
        """Start SIM simulation."""
        if not _sim_instance:
            raise HTTPException(status_code=404, detail="SIM not configured")
        await _sim_instance.start()
        return {"status": "ok"}

    @router.post("/sim/stop", response_model=StatusResponse)
    async def stop_sim() -> dict:
        """Stop SIM simulation."""
        if not _sim_instance:
            raise HTTPException(status_code=404, detail="SIM not configured")
        await _sim_instance.stop()
        return {"status": "ok"}

    return router
