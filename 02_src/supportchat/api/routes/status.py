"""Public status routes."""

from fastapi import APIRouter

from ...app import IApplication
from ..schemas import OnlineResponse


def create_status_router(app: IApplication) -> APIRouter:
    """Create status router."""
    router = APIRouter(prefix="/api", tags=["status"])

    @router.get("/status", response_model=OnlineResponse)
    async def get_status() -> dict:
        """Whether the operator is currently online."""
        return {"online": await app.sync.operator_online()}

    return router
