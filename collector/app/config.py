"""Environment driven settings for the collector service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

ENV_PREFIX = "COLLECTOR_"


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./collector.db"
    pool_size: int = 10
    query_timeout_seconds: int = 5
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``COLLECTOR_*`` environment variables."""

        if env is None:
            env = os.environ
        defaults = cls()
        return cls(
            database_url=env.get(ENV_PREFIX + "DATABASE_URL", defaults.database_url),
            pool_size=_get_int(env, "POOL_SIZE", defaults.pool_size),
            query_timeout_seconds=_get_int(
                env, "QUERY_TIMEOUT_SECONDS", defaults.query_timeout_seconds
            ),
            host=env.get(ENV_PREFIX + "HOST", defaults.host),
            port=_get_int(env, "PORT", defaults.port),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).upper(),
        )
