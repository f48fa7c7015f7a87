"""Configuration module for the Boxy engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

BOXY_HOME = Path.home() / ".boxy"

DEFAULT_CACHE_TTL = 3600
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_CONCURRENCY = 5
COMMAND_TIMEOUT = 300.0
READ_TIMEOUT = 60.0
AVAILABILITY_TIMEOUT = 0.8
OUTDATED_LOOKUP_TIMEOUT = 5.0
HEARTBEAT_INTERVAL = 1.0


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the orchestration engine."""

    cache_dir: Path = field(default_factory=lambda: BOXY_HOME / "cache")
    log_dir: Path = field(default_factory=lambda: BOXY_HOME / "logs")
    cache_ttl: int = DEFAULT_CACHE_TTL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    concurrency: int = DEFAULT_CONCURRENCY
    command_timeout: float = COMMAND_TIMEOUT
    read_timeout: float = READ_TIMEOUT
    availability_timeout: float = AVAILABILITY_TIMEOUT
    heartbeat_interval: float = HEARTBEAT_INTERVAL

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from defaults plus ``BOXY_*`` environment overrides.

        Args:
            environ: Mapping to read from, defaults to ``os.environ``.

        Returns:
            A Settings instance.
        """
        env = os.environ if environ is None else environ
        settings = cls()

        if value := env.get("BOXY_CACHE_DIR"):
            settings = replace(settings, cache_dir=Path(value).expanduser())
        if value := env.get("BOXY_LOG_DIR"):
            settings = replace(settings, log_dir=Path(value).expanduser())
        if value := env.get("BOXY_CACHE_TTL"):
            settings = replace(settings, cache_ttl=int(value))
        if value := env.get("BOXY_CONCURRENCY"):
            settings = replace(settings, concurrency=max(1, int(value)))

        return settings

    @property
    def log_file(self) -> Path:
        return self.log_dir / "boxy.log"
