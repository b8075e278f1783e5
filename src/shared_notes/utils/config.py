"""Configuration management for SharedNotes.

Settings are resolved in this order (later wins):
- built-in defaults
- ``<data_dir>/config.toml``
- ``SHARED_NOTES_*`` environment variables
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://sharednotes.goto.ucsd.edu"
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_REQUEST_TIMEOUT = 10.0

_STORAGE_BACKENDS = ("sqlite", "memory")


def get_data_dir() -> Path:
    """Get the SharedNotes data directory.

    Priority:
    1. SHARED_NOTES_DIR environment variable
    2. ~/.sharednotes/
    """
    env_dir = os.environ.get("SHARED_NOTES_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".sharednotes"


@dataclass(frozen=True)
class Config:
    """
    Application configuration.

    Loaded from config.toml and environment variables with sensible defaults.
    """

    # Remote server
    server_url: str = DEFAULT_SERVER_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Sync engine
    poll_interval: float = DEFAULT_POLL_INTERVAL

    # Local storage
    storage_backend: str = "sqlite"  # sqlite, memory
    data_dir: Path = field(default_factory=get_data_dir)
    db_path: Path | None = None

    # Logging
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.storage_backend not in _STORAGE_BACKENDS:
            raise ValueError(
                f"Unknown storage backend {self.storage_backend!r}, "
                f"expected one of {', '.join(_STORAGE_BACKENDS)}"
            )

    @property
    def resolved_db_path(self) -> Path:
        """SQLite database location."""
        return self.db_path if self.db_path is not None else self.data_dir / "notes.db"

    @property
    def config_file(self) -> Path:
        return self.data_dir / "config.toml"

    def to_dict(self) -> dict[str, Any]:
        return {
            "server_url": self.server_url,
            "request_timeout": self.request_timeout,
            "poll_interval": self.poll_interval,
            "storage_backend": self.storage_backend,
            "data_dir": str(self.data_dir),
            "db_path": str(self.resolved_db_path),
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], data_dir: Path | None = None) -> Config:
        """Create from a config.toml table."""
        server = data.get("server", {})
        sync = data.get("sync", {})
        storage = data.get("storage", {})
        db_path = storage.get("db_path")

        return cls(
            server_url=server.get("url", DEFAULT_SERVER_URL),
            request_timeout=float(server.get("timeout", DEFAULT_REQUEST_TIMEOUT)),
            poll_interval=float(sync.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            storage_backend=storage.get("backend", "sqlite"),
            data_dir=data_dir or get_data_dir(),
            db_path=Path(db_path).expanduser() if db_path else None,
            log_level=str(data.get("log_level", "WARNING")).upper(),
        )

    @classmethod
    def load(cls, data_dir: Path | None = None) -> Config:
        """Load config.toml (if present) and apply environment overrides."""
        data_dir = data_dir or get_data_dir()
        config_file = data_dir / "config.toml"

        if config_file.exists():
            try:
                with open(config_file, "rb") as f:
                    data = tomllib.load(f)
                config = cls.from_dict(data, data_dir=data_dir)
            except (tomllib.TOMLDecodeError, OSError, TypeError, ValueError):
                logger.warning("Ignoring unreadable config file %s", config_file, exc_info=True)
                config = cls(data_dir=data_dir)
        else:
            config = cls(data_dir=data_dir)

        return config.with_env_overrides()

    def with_env_overrides(self) -> Config:
        """Apply SHARED_NOTES_* environment variables."""

        def get_float(key: str, default: float) -> float:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                logger.warning("Ignoring non-numeric %s=%r", key, value)
                return default

        db_path = os.getenv("SHARED_NOTES_DB_PATH")

        return replace(
            self,
            server_url=os.getenv("SHARED_NOTES_SERVER_URL", self.server_url),
            request_timeout=get_float("SHARED_NOTES_TIMEOUT", self.request_timeout),
            poll_interval=get_float("SHARED_NOTES_POLL_INTERVAL", self.poll_interval),
            storage_backend=os.getenv("SHARED_NOTES_STORAGE", self.storage_backend),
            db_path=Path(db_path) if db_path else self.db_path,
            log_level=os.getenv("SHARED_NOTES_LOG_LEVEL", self.log_level).upper(),
        )


# Singleton config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
