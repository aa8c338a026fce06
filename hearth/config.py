"""
Runtime configuration read from the environment.

Values come from process environment variables, optionally loaded from a
``.env`` file in the working directory.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATA_PATH = "./data/hearth.db"
DEFAULT_SYNC_INTERVAL_SECONDS = 15 * 60
DEFAULT_KEEPALIVE_SECONDS = 25.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def database_url_for_path(data_path: str) -> str:
    """Build a SQLite URL for a database file path."""
    return f"sqlite:///{Path(data_path).expanduser()}"


@dataclass
class Config:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8787
    debug: bool = False
    database_url: str = field(
        default_factory=lambda: database_url_for_path(DEFAULT_DATA_PATH)
    )
    token_secret: Optional[str] = None  # Used only if no secret is stored yet
    lan_ip: Optional[str] = None
    sync_enabled: bool = True
    sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS
    keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS
    display_dist: Optional[str] = None
    control_dist: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from the environment (and ``.env``)."""
        load_dotenv()

        database_url = _env_optional("DATABASE_URL")
        if database_url is None:
            data_path = _env_optional("DATA_PATH") or DEFAULT_DATA_PATH
            database_url = database_url_for_path(data_path)

        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8787")),
            debug=_env_bool("DEBUG", False),
            database_url=database_url,
            token_secret=_env_optional("TOKEN_SECRET"),
            lan_ip=_env_optional("LAN_IP"),
            sync_enabled=_env_bool("SYNC_ENABLED", True),
            sync_interval_seconds=float(
                os.getenv("SYNC_INTERVAL_SECONDS", str(DEFAULT_SYNC_INTERVAL_SECONDS))
            ),
            keepalive_seconds=float(
                os.getenv("SSE_KEEPALIVE_SECONDS", str(DEFAULT_KEEPALIVE_SECONDS))
            ),
            display_dist=_env_optional("DISPLAY_DIST"),
            control_dist=_env_optional("CONTROL_DIST"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
