"""Client-side view of messages as they arrive over the wire."""

from dataclasses import dataclass, field

from ..models import ReactionGroup, ReplyPreview


@dataclass
class ChatMessage:
    """A message in the engine's list.

    Confirmed entries carry the server id; optimistic entries have
    ``id=None`` and a ``local_id`` until the server echoes them back.
    """

    content: str
    is_operator: bool
    created_at: str
    id: str | None = None
    local_id: str | None = None
    image_url: str | None = None
    image_width: int | None = None
    image_height: int | None = None
    reply_to_id: str | None = None
    reactions: list[ReactionGroup] = field(default_factory=list)
    reply_to: ReplyPreview | None = None
    # Confirmed by our own POST but not yet seen in a poll; never a poll cursor
    awaiting_poll: bool = False

    @property
    def is_pending(self) -> bool:
        return self.id is None

    @classmethod
    def from_wire(cls, data: dict) -> "ChatMessage":
        reply = data.get("reply_to")
        return cls(
            id=data.get("id"),
            content=data.get("content") or "",
            is_operator=bool(data.get("is_admin")),
            created_at=data.get("created_at") or "",
            image_url=data.get("image_url"),
            image_width=data.get("image_width"),
            image_height=data.get("image_height"),
            reply_to_id=data.get("reply_to_id"),
            reactions=[
                ReactionGroup(
                    emoji=r["emoji"],
                    count=int(r["count"]),
                    has_operator=bool(r.get("hasAdmin")),
                    has_visitor=bool(r.get("hasUser")),
                )
                for r in data.get("reactions") or []
            ],
            reply_to=(
                ReplyPreview(
                    id=reply["id"],
                    content=reply.get("content") or "",
                    is_operator=bool(reply.get("is_admin")),
                )
                if reply
                else None
            ),
        )


@dataclass
class PagePayload:
    """Decoded response of a messages read."""

    messages: list[ChatMessage]
    has_more: bool = False
    counterpart_typing: bool = False


@dataclass
class BootstrapPayload:
    conversation_id: str
    messages: list[ChatMessage]
    has_more: bool = False
