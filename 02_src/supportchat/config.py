"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "supportchat.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings read from the environment."""

    database_url: str | None = None
    api_host: str = "localhost"
    api_port: int = 8000
    operator_name: str = "Operator"
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:5174"]
    )
    push_enabled: bool = True
    session_ttl_hours: int = 24 * 30
    ratelimit_storage_uri: str = "async+memory://"
    control_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            api_host=os.getenv("API_HOST", "localhost"),
            api_port=int(os.getenv("API_PORT", "8000")),
            operator_name=os.getenv("OPERATOR_NAME", "Operator"),
            cors_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins
                else cls().cors_origins
            ),
            push_enabled=_env_bool("PUSH_ENABLED", True),
            session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", str(24 * 30))),
            ratelimit_storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "async+memory://"),
            control_enabled=_env_bool("CONTROL_ENABLED", False),
        )
