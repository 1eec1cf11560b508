"""Core module - Shared configuration and cancellation context."""

from tasksync.core.config import (
    DEFAULT_API_URL,
    DEFAULT_AUTO_SYNC_INTERVAL,
    CacheConfig,
    RemoteConfig,
    default_database_path,
)
from tasksync.core.context import CancelledException, Context, DeadlineExceededError

__all__ = [
    # Config
    "DEFAULT_API_URL",
    "DEFAULT_AUTO_SYNC_INTERVAL",
    "CacheConfig",
    "RemoteConfig",
    "default_database_path",
    # Context
    "CancelledException",
    "Context",
    "DeadlineExceededError",
]
