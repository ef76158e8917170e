"""Request and response models for the HTTP surface.

Field aliases carry the camelCase names used on the wire; message rows keep
their snake_case column names.
"""

from pydantic import BaseModel, ConfigDict, Field

from ..models import Conversation, MessagePage, MessageView
from ..storage.storage import to_db_timestamp


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Responses
class ReactionGroupSchema(WireModel):
    emoji: str
    count: int
    has_admin: bool = Field(alias="hasAdmin")
    has_user: bool = Field(alias="hasUser")


class ReplyPreviewSchema(WireModel):
    id: str
    content: str
    is_admin: bool


class MessageSchema(WireModel):
    """A message with its reactions and reply preview."""

    id: str
    content: str
    is_admin: bool
    created_at: str
    image_url: str | None = None
    image_width: int | None = None
    image_height: int | None = None
    reply_to_id: str | None = None
    reactions: list[ReactionGroupSchema] = []
    reply_to: ReplyPreviewSchema | None = None


class MessagePageResponse(WireModel):
    messages: list[MessageSchema]
    has_more: bool = Field(alias="hasMore")
    counterpart_typing: bool = Field(alias="counterpartTyping")


class BootstrapResponse(WireModel):
    conversation_id: str = Field(alias="conversationId")
    messages: list[MessageSchema]
    has_more: bool = Field(alias="hasMore")


class SendMessageResponse(WireModel):
    message: MessageSchema


class ReactionResponse(WireModel):
    action: str
    emoji: str


class OkResponse(WireModel):
    ok: bool = True


class StatusResponse(WireModel):
    status: str


class OnlineResponse(WireModel):
    online: bool


class ConversationSchema(WireModel):
    id: str
    user_id: str
    visitor_name: str | None = None
    created_at: str
    updated_at: str


class ConversationListResponse(WireModel):
    conversations: list[ConversationSchema]
    operator_online: bool = Field(alias="operatorOnline")


class SessionResponse(WireModel):
    token: str
    user_id: str | None = Field(default=None, alias="userId")


# Requests
class SendMessageRequest(WireModel):
    conversation_id: str = Field(alias="conversationId")
    content: str | None = None
    reply_to_id: str | None = Field(default=None, alias="replyToId")


class UploadImageRequest(WireModel):
    conversation_id: str = Field(alias="conversationId")
    image_data: str = Field(alias="imageData")
    width: int
    height: int
    reply_to_id: str | None = Field(default=None, alias="replyToId")


class OperatorReplyRequest(WireModel):
    """Operator replies carry either text or an image."""

    conversation_id: str = Field(alias="conversationId")
    content: str | None = None
    image_data: str | None = Field(default=None, alias="imageData")
    width: int | None = None
    height: int | None = None
    reply_to_id: str | None = Field(default=None, alias="replyToId")


class ReactionRequest(WireModel):
    message_id: str = Field(alias="messageId")
    emoji: str | None = None


class TypingRequest(WireModel):
    conversation_id: str = Field(alias="conversationId")
    is_typing: bool = Field(alias="isTyping")


class PushKeys(WireModel):
    p256dh: str
    auth: str


class PushSubscribeRequest(WireModel):
    """Browser PushSubscription JSON."""

    endpoint: str
    keys: PushKeys


class PushUnsubscribeRequest(WireModel):
    endpoint: str


class VisitorSessionRequest(WireModel):
    username: str
    display_name: str | None = Field(default=None, alias="displayName")


# Conversions
def message_to_wire(view: MessageView) -> dict:
    """Serialize a decorated message using wire field names."""
    message = view.message
    image = message.image
    return {
        "id": message.id,
        "content": message.content,
        "is_admin": message.is_operator,
        "created_at": to_db_timestamp(message.created_at),
        "image_url": image.data_url if image else None,
        "image_width": image.width if image else None,
        "image_height": image.height if image else None,
        "reply_to_id": message.reply_to_id,
        "reactions": [
            {
                "emoji": group.emoji,
                "count": group.count,
                "hasAdmin": group.has_operator,
                "hasUser": group.has_visitor,
            }
            for group in view.reactions
        ],
        "reply_to": (
            {
                "id": view.reply_to.id,
                "content": view.reply_to.content,
                "is_admin": view.reply_to.is_operator,
            }
            if view.reply_to
            else None
        ),
    }


def page_to_wire(page: MessagePage) -> dict:
    return {
        "messages": [message_to_wire(view) for view in page.messages],
        "hasMore": page.has_more,
        "counterpartTyping": page.counterpart_typing,
    }


def conversation_to_wire(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "user_id": conversation.user_id,
        "visitor_name": conversation.visitor_name,
        "created_at": to_db_timestamp(conversation.created_at),
        "updated_at": to_db_timestamp(conversation.updated_at),
    }
