"""
Runtime configuration.

Settings are pydantic models populated from ``AGENTCOMMONS_*`` environment
variables by :meth:`Settings.from_env`.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from agentcommons.constants import DEFAULT_MAX_CLOCK_SKEW_SECONDS
from agentcommons.storage.provider import StorageConfig

ENV_PREFIX = "AGENTCOMMONS_"

_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Server and core settings."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    max_clock_skew_seconds: float = Field(default=DEFAULT_MAX_CLOCK_SKEW_SECONDS, gt=0)
    webhook_secret: Optional[str] = Field(default=None, repr=False)
    webhook_allow_unsigned: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Recognised variables (all prefixed ``AGENTCOMMONS_``): ``STORAGE_BACKEND``,
        ``DATABASE_URL``, ``REDIS_URL``, ``STORAGE_TIMEOUT_SECONDS``,
        ``STORAGE_POOL_SIZE``, ``MAX_CLOCK_SKEW_SECONDS``, ``WEBHOOK_SECRET``,
        ``WEBHOOK_ALLOW_UNSIGNED``, ``LOG_LEVEL``, ``HOST``, ``PORT``.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            return env.get(ENV_PREFIX + name, default)

        backend = get("STORAGE_BACKEND", "memory")
        connection_string = get("DATABASE_URL") if backend in ("postgres", "postgresql") else None
        if backend == "redis":
            connection_string = get("REDIS_URL")

        storage_kwargs = {"backend": backend, "connection_string": connection_string}
        if get("STORAGE_TIMEOUT_SECONDS"):
            storage_kwargs["timeout_seconds"] = float(get("STORAGE_TIMEOUT_SECONDS"))
        if get("STORAGE_POOL_SIZE"):
            storage_kwargs["pool_size"] = int(get("STORAGE_POOL_SIZE"))

        return cls(
            storage=StorageConfig(**storage_kwargs),
            max_clock_skew_seconds=float(
                get("MAX_CLOCK_SKEW_SECONDS", str(DEFAULT_MAX_CLOCK_SKEW_SECONDS))
            ),
            webhook_secret=get("WEBHOOK_SECRET") or None,
            webhook_allow_unsigned=(get("WEBHOOK_ALLOW_UNSIGNED", "") or "").lower() in _TRUE,
            log_level=(get("LOG_LEVEL", "INFO") or "INFO").upper(),
            host=get("HOST", "0.0.0.0"),
            port=int(get("PORT", "8080")),
        )
