"""HTTP transport for the sync engine."""

from typing import Any, Protocol

import httpx

from .. import errors
from ..logging_config import get_logger
from ..models import ImagePayload
from .models import BootstrapPayload, ChatMessage, PagePayload

logger = get_logger(__name__)

_ERROR_CODES: dict[str, type[errors.ChatError]] = {
    cls.__name__: cls
    for cls in (
        errors.Unauthorized,
        errors.NotFound,
        errors.ValidationError,
        errors.InvalidContent,
        errors.InvalidImage,
        errors.InvalidReplyTarget,
        errors.InvalidEmoji,
        errors.InvalidCursor,
    )
}


class IChatTransport(Protocol):
    """Calls the engine makes against the sync protocol."""

    async def bootstrap(self) -> BootstrapPayload:
        """Get-or-create the caller's conversation."""
        ...

    async def fetch_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        before: str | None = None,
        after: str | None = None,
    ) -> PagePayload:
        """Read a page of messages."""
        ...

    async def send_message(
        self, conversation_id: str, content: str, reply_to_id: str | None = None
    ) -> ChatMessage:
        """Send a text message."""
        ...

    async def send_image(
        self,
        conversation_id: str,
        image: ImagePayload,
        reply_to_id: str | None = None,
    ) -> ChatMessage:
        """Send an image message."""
        ...

    async def toggle_reaction(self, message_id: str, emoji: str) -> str:
        """Toggle a reaction; returns "added" or "removed"."""
        ...

    async def set_typing(self, conversation_id: str, is_typing: bool) -> None:
        """Send a typing heartbeat or clear it."""
        ...


def _retry_after(response: httpx.Response) -> float:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else 60.0
    except ValueError:
        return 60.0


def raise_for_response(response: httpx.Response) -> None:
    """Translate a non-2xx response into the error taxonomy."""
    if response.is_success:
        return

    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error") if isinstance(body, dict) else None

    if response.status_code == 429:
        raise errors.RateLimited(_retry_after(response), message)

    error_cls = _ERROR_CODES.get(body.get("code", "") if isinstance(body, dict) else "")
    if error_cls is None:
        error_cls = {
            400: errors.ValidationError,
            401: errors.Unauthorized,
            404: errors.NotFound,
        }.get(response.status_code, errors.TransportError)
    raise error_cls(message or f"HTTP {response.status_code}")


class ChatTransport:
    """Sync protocol over HTTP, for either the visitor or the operator."""

    def __init__(self, client: httpx.AsyncClient, operator: bool = False):
        self._client = client
        self._operator = operator
        self._prefix = "/api/operator" if operator else "/api/chat"

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            response = await self._client.request(method, f"{self._prefix}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise errors.TransportError(str(e) or type(e).__name__) from e

        raise_for_response(response)
        return response.json()

    async def bootstrap(self) -> BootstrapPayload:
        if self._operator:
            raise errors.Unauthorized("Operator has no bootstrap conversation")
        data = await self._request("POST", "/bootstrap")
        return BootstrapPayload(
            conversation_id=data["conversationId"],
            messages=[ChatMessage.from_wire(m) for m in data.get("messages", [])],
            has_more=bool(data.get("hasMore")),
        )

    async def fetch_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        before: str | None = None,
        after: str | None = None,
    ) -> PagePayload:
        params: dict[str, Any] = {"conversationId": conversation_id}
        if limit is not None:
            params["limit"] = limit
        if before:
            params["before"] = before
        if after:
            params["after"] = after

        data = await self._request("GET", "/messages", params=params)
        return PagePayload(
            messages=[ChatMessage.from_wire(m) for m in data.get("messages", [])],
            has_more=bool(data.get("hasMore")),
            counterpart_typing=bool(data.get("counterpartTyping")),
        )

    async def send_message(
        self, conversation_id: str, content: str, reply_to_id: str | None = None
    ) -> ChatMessage:
        path = "/reply" if self._operator else "/messages"
        data = await self._request(
            "POST",
            path,
            json={
                "conversationId": conversation_id,
                "content": content,
                "replyToId": reply_to_id,
            },
        )
        return ChatMessage.from_wire(data["message"])

    async def send_image(
        self,
        conversation_id: str,
        image: ImagePayload,
        reply_to_id: str | None = None,
    ) -> ChatMessage:
        path = "/reply" if self._operator else "/upload"
        data = await self._request(
            "POST",
            path,
            json={
                "conversationId": conversation_id,
                "imageData": image.data_url,
                "width": image.width,
                "height": image.height,
                "replyToId": reply_to_id,
            },
        )
        return ChatMessage.from_wire(data["message"])

    async def toggle_reaction(self, message_id: str, emoji: str) -> str:
        data = await self._request(
            "POST", "/reactions", json={"messageId": message_id, "emoji": emoji}
        )
        return data["action"]

    async def set_typing(self, conversation_id: str, is_typing: bool) -> None:
        await self._request(
            "POST",
            "/typing",
            json={"conversationId": conversation_id, "isTyping": is_typing},
        )
