"""Shared configuration classes for tasksync.

This module defines the configuration objects handed to each component's
constructor. Nothing here reads files or the environment; see
tasksync.client.cli.config for that.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_API_URL = "https://api.todoist.com/sync/v9"
DEFAULT_AUTO_SYNC_INTERVAL = 300.0  # seconds


def default_database_path() -> Path:
    """Get the default cache database path.

    Follows the XDG base directory layout: $XDG_DATA_HOME/tasksync/cache.db,
    falling back to ~/.local/share/tasksync/cache.db.
    """
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "tasksync" / "cache.db"
    return Path.home() / ".local" / "share" / "tasksync" / "cache.db"


@dataclass
class RemoteConfig:
    """Configuration for connecting to the remote task service.

    Attributes:
        api_url: Base URL of the sync API (e.g., "https://api.todoist.com/sync/v9").
        token: API token sent as a bearer token.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    token: str
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize API URL."""
        self.api_url = self.api_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.api_url.startswith("https://")


@dataclass
class CacheConfig:
    """Configuration for the local cache.

    Attributes:
        enabled: Serve reads from the local cache. When False every call is
            proxied to the remote service.
        database_path: SQLite file backing the cache.
        initial_sync_on_start: Bootstrap the cache from Repository.initialize()
            when no full sync has happened yet.
        background_sync: Run the periodic background syncer. Off by default.
        auto_sync_interval: Seconds between background syncs.
    """

    enabled: bool = True
    database_path: Path = field(default_factory=default_database_path)
    initial_sync_on_start: bool = True
    background_sync: bool = False
    auto_sync_interval: float = DEFAULT_AUTO_SYNC_INTERVAL

    def __post_init__(self) -> None:
        """Normalize database path."""
        self.database_path = Path(self.database_path).expanduser()
        if self.auto_sync_interval <= 0:
            raise ValueError("auto_sync_interval must be positive")
