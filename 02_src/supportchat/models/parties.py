"""Party-related data models."""

from dataclasses import dataclass

OPERATOR_PARTY_KEY = "operator"


@dataclass(frozen=True)
class Party:
    """Either the single implicit operator or a specific visitor."""

    is_operator: bool
    user_id: str | None = None
    display_name: str | None = None

    @classmethod
    def operator(cls, display_name: str | None = None) -> "Party":
        return cls(is_operator=True, user_id=None, display_name=display_name)

    @classmethod
    def visitor(cls, user_id: str, display_name: str | None = None) -> "Party":
        return cls(is_operator=False, user_id=user_id, display_name=display_name)

    @property
    def key(self) -> str:
        """Stable identity used for reactions and rate limiting."""
        if self.is_operator:
            return OPERATOR_PARTY_KEY
        return f"user:{self.user_id}"


@dataclass
class User:
    """A visitor account."""

    id: str
    username: str
    display_name: str | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.username
