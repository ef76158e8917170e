"""Best-effort push notifications to the other party."""

import asyncio
from typing import Protocol

import httpx

from ..logging_config import get_logger
from ..models import Party, PushSubscription
from ..storage import IStorage

logger = get_logger(__name__)

PUSH_TTL_SECONDS = 60 * 5
BODY_LIMIT = 100


def truncate_body(text: str, limit: int = BODY_LIMIT) -> str:
    """Shorten a message for a notification body."""
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class INotifier(Protocol):
    """Fire-and-forget delivery to the party that did not send the message."""

    def notify_other_party(
        self,
        sender: Party,
        summary: str,
        conversation_id: str,
        recipient_user_id: str | None,
    ) -> None:
        """Schedule delivery; never blocks or raises."""
        ...

    async def aclose(self) -> None:
        """Wait for pending deliveries and release resources."""
        ...


class NullNotifier:
    """Notifier that drops everything (push disabled)."""

    def notify_other_party(
        self,
        sender: Party,
        summary: str,
        conversation_id: str,
        recipient_user_id: str | None,
    ) -> None:
        return None

    async def aclose(self) -> None:
        return None


class PushNotifier:
    """Posts JSON notifications to every subscription of the recipient.

    Subscription endpoints are expected to be a push relay; payload
    encryption and VAPID signing happen there.
    """

    def __init__(
        self,
        storage: IStorage,
        client: httpx.AsyncClient | None = None,
        operator_name: str = "Operator",
    ):
        self._storage = storage
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._owns_client = client is None
        self._operator_name = operator_name
        self._tasks: set[asyncio.Task] = set()

    def notify_other_party(
        self,
        sender: Party,
        summary: str,
        conversation_id: str,
        recipient_user_id: str | None,
    ) -> None:
        """Schedule delivery as a background task."""
        task = asyncio.create_task(
            self._deliver(sender, summary, conversation_id, recipient_user_id)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(
        self,
        sender: Party,
        summary: str,
        conversation_id: str,
        recipient_user_id: str | None,
    ) -> None:
        try:
            if sender.is_operator:
                subscriptions = await self._storage.get_push_subscriptions(
                    user_id=recipient_user_id
                )
                payload = {
                    "title": f"{self._operator_name} replied",
                    "body": truncate_body(summary),
                    "tag": f"conv-{conversation_id}",
                    "url": "/",
                    "conversationId": conversation_id,
                }
            else:
                subscriptions = await self._storage.get_push_subscriptions(
                    is_operator=True
                )
                payload = {
                    "title": f"New message from {sender.display_name or 'Someone'}",
                    "body": truncate_body(summary),
                    "tag": f"conv-{conversation_id}",
                    "url": "/operator",
                    "conversationId": conversation_id,
                }

            if not subscriptions:
                logger.debug("No push subscriptions for conversation %s", conversation_id)
                return

            await asyncio.gather(
                *[self._send(sub, payload) for sub in subscriptions]
            )
        except Exception as e:
            logger.error("Push delivery failed for %s: %s", conversation_id, e)

    async def _send(self, subscription: PushSubscription, payload: dict) -> bool:
        try:
            response = await self._client.post(
                subscription.endpoint,
                json=payload,
                headers={"TTL": str(PUSH_TTL_SECONDS), "Urgency": "high"},
            )
        except httpx.HTTPError as e:
            logger.error("Failed to send notification: %s", e)
            return False

        if response.status_code in (404, 410):
            logger.info("Subscription expired, removing: %s", subscription.endpoint[:50])
            await self._storage.delete_push_subscription(subscription.endpoint)
            return False
        if response.status_code >= 400:
            logger.error(
                "Push endpoint rejected notification: %s", response.status_code
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait for in-flight deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()
