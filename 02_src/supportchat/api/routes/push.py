"""Push subscription routes for both parties."""

from fastapi import APIRouter, Depends

from ...app import IApplication
from ...logging_config import get_logger
from ...models import Party, PushSubscription
from ..dependencies import PartyDependency, operator_party, visitor_party
from ..schemas import OkResponse, PushSubscribeRequest, PushUnsubscribeRequest

logger = get_logger(__name__)


def _add_subscription_routes(
    router: APIRouter, path: str, app: IApplication, current_party: PartyDependency
) -> None:
    @router.post(path, response_model=OkResponse)
    async def subscribe(
        request: PushSubscribeRequest, party: Party = Depends(current_party)
    ) -> dict:
        """Register (or refresh) a delivery endpoint for the caller."""
        await app.storage.save_push_subscription(
            PushSubscription(
                endpoint=request.endpoint,
                p256dh=request.keys.p256dh,
                auth=request.keys.auth,
                user_id=party.user_id,
                is_operator=party.is_operator,
            ),
            app.clock(),
        )
        logger.info("Push subscription saved for %s", party.key)
        return {"ok": True}

    @router.delete(path, response_model=OkResponse)
    async def unsubscribe(
        request: PushUnsubscribeRequest, party: Party = Depends(current_party)
    ) -> dict:
        await app.storage.delete_push_subscription(request.endpoint)
        logger.info("Push subscription removed for %s", party.key)
        return {"ok": True}


def create_push_router(app: IApplication) -> APIRouter:
    """Create push subscription router."""
    router = APIRouter(prefix="/api", tags=["push"])
    _add_subscription_routes(router, "/push/subscribe", app, visitor_party(app))
    _add_subscription_routes(
        router, "/operator/push/subscribe", app, operator_party(app)
    )
    return router
