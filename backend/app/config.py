"""Application settings loaded from DOCKPULSE_* environment variables."""

import logging
import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "DOCKPULSE_"
DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"


def _env(name: str) -> Optional[str]:
    """Read a prefixed environment variable, treating blank values as unset."""
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or value.strip() == "":
        return None
    return value.strip()


class Settings(BaseModel):
    """Runtime configuration for the monitoring and control engine."""

    # Metrics collector
    metrics_interval_seconds: float = Field(default=5.0, gt=0)
    metrics_history_limit: int = Field(default=20, ge=1)
    max_chart_containers: int = Field(default=5, ge=1)
    stats_timeout_seconds: float = Field(default=4.0, gt=0)
    stats_concurrency: int = Field(default=8, ge=1)

    # Lifecycle controller
    lifecycle_lock_timeout_seconds: float = Field(default=30.0, ge=0)

    # Log streamer
    log_tail_default: int = Field(default=100, ge=1)
    log_tail_max: int = Field(default=10000, ge=1)

    # Runtime connection
    docker_host: str = DEFAULT_DOCKER_HOST
    docker_timeout_seconds: float = Field(default=10.0, gt=0)

    # Session gate
    auth_enabled: bool = True
    auth_username: str = "admin"
    auth_password: Optional[str] = None
    auth_password_hash: Optional[str] = None
    session_timeout_seconds: int = Field(default=3600, ge=1)
    session_secret: Optional[str] = None

    # HTTP surface
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
    )

    testing: bool = False
    debug: bool = False

    @field_validator("log_tail_max")
    @classmethod
    def tail_max_covers_default(cls, v, info):
        """The default tail must never exceed the allowed maximum."""
        default = info.data.get("log_tail_default")
        if default is not None and v < default:
            raise ValueError("log_tail_max must be >= log_tail_default")
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @field_validator("auth_username")
    @classmethod
    def username_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("auth_username cannot be empty")
        return v.strip()

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment.

        Unset variables fall back to the model defaults. The Docker host falls
        back to the standard DOCKER_HOST variable before the local socket.
        """
        raw: dict = {}
        for name in cls.model_fields:
            value = _env(name.upper())
            if value is not None:
                raw[name] = value

        if "docker_host" not in raw and os.getenv("DOCKER_HOST"):
            raw["docker_host"] = os.environ["DOCKER_HOST"]

        settings = cls(**raw)
        logger.info(
            f"Settings loaded: interval={settings.metrics_interval_seconds}s, "
            f"history={settings.metrics_history_limit}, "
            f"chart_containers={settings.max_chart_containers}, "
            f"auth_enabled={settings.auth_enabled}"
        )
        return settings
