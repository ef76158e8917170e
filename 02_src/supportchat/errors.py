"""Error taxonomy shared by the server and the client engine."""


class ChatError(Exception):
    """Base class for all support chat errors."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthorized(ChatError):
    """No or invalid party credentials."""

    status_code = 401
    default_message = "Unauthorized"


class NotFound(ChatError):
    """Conversation or message does not exist for the caller."""

    status_code = 404
    default_message = "Not found"


class ValidationError(ChatError):
    """Bad input; the message is shown to the user verbatim."""

    status_code = 400
    default_message = "Invalid request"


class InvalidContent(ValidationError):
    default_message = "Invalid message content"


class InvalidImage(ValidationError):
    default_message = "Invalid image"


class InvalidReplyTarget(ValidationError):
    default_message = "Reply target not found"


class InvalidEmoji(ValidationError):
    default_message = "Invalid emoji"


class InvalidCursor(ValidationError):
    default_message = "Invalid cursor"


class RateLimited(ChatError):
    """Too many actions of one kind in the current window."""

    status_code = 429
    default_message = "Too many requests"

    def __init__(self, retry_after: float, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransportError(ChatError):
    """Network failure or unexpected response seen by the client."""

    status_code = 502
    default_message = "Transport error"
