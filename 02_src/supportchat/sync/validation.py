"""Boundary validation for message content, images and emoji."""

import re
import unicodedata

from ..errors import InvalidContent, InvalidEmoji, InvalidImage
from ..models import ImagePayload

MAX_MESSAGE_LENGTH = 500
MAX_OPERATOR_MESSAGE_LENGTH = 5000

ALLOWED_EMOJIS = ("👍", "❤️", "😂", "😮", "😢")

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_IMAGE_DIMENSION = 4096
MAX_IMAGE_SIZE_KB = 500
MIN_BASE64_LENGTH = 100

_DATA_URL_RE = re.compile(r"^data:(image/[a-z]+);base64,")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

# Letters, marks, numbers, punctuation, symbols, separators
_ALLOWED_CATEGORIES = ("L", "M", "N", "P", "S", "Z")
_ALLOWED_WHITESPACE = {"\n", "\t", "\r"}
_ZERO_WIDTH_JOINER = "\u200d"


def _is_allowed_char(ch: str) -> bool:
    if ch in _ALLOWED_WHITESPACE or ch == _ZERO_WIDTH_JOINER:
        return True
    # Emoji tag sequences (subdivision flags)
    if 0xE0020 <= ord(ch) <= 0xE007F:
        return True
    return unicodedata.category(ch)[0] in _ALLOWED_CATEGORIES


def validate_content(content: str | None, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Return the trimmed message or raise InvalidContent."""
    trimmed = (content or "").strip()
    if not trimmed:
        raise InvalidContent("Message cannot be empty")

    if len(trimmed) > max_length:
        raise InvalidContent(f"Message exceeds {max_length} character limit")

    if not all(_is_allowed_char(ch) for ch in trimmed):
        raise InvalidContent("Message contains invalid characters")

    return trimmed


def validate_image(data_url: str | None, width: int, height: int) -> ImagePayload:
    """Validate a base64 data URL and its declared dimensions."""
    if not data_url or not data_url.startswith("data:image/"):
        raise InvalidImage("Invalid image format")

    match = _DATA_URL_RE.match(data_url)
    if not match:
        raise InvalidImage("Invalid image data format")

    if match.group(1) not in ALLOWED_IMAGE_TYPES:
        raise InvalidImage("Only JPEG, PNG, and WebP images are allowed")

    encoded = data_url.split(",", 1)[1]
    if not encoded:
        raise InvalidImage("Invalid image data")

    if not _BASE64_RE.match(encoded):
        raise InvalidImage("Invalid base64 encoding")

    if len(encoded) < MIN_BASE64_LENGTH:
        raise InvalidImage("Image data too small")

    # base64 is ~33% larger than the binary it encodes
    estimated_kb = (len(encoded) * 0.73) / 1024
    max_allowed_kb = MAX_IMAGE_SIZE_KB * 1.5
    if estimated_kb > max_allowed_kb:
        raise InvalidImage(
            f"Image too large ({round(estimated_kb)}KB > {max_allowed_kb:g}KB max)"
        )

    if not (0 < width <= MAX_IMAGE_DIMENSION and 0 < height <= MAX_IMAGE_DIMENSION):
        raise InvalidImage("Invalid image dimensions")

    return ImagePayload(data_url=data_url, width=width, height=height)


def validate_emoji(emoji: str | None) -> str:
    if not emoji or emoji not in ALLOWED_EMOJIS:
        raise InvalidEmoji("Invalid emoji")
    return emoji
