"""Synchronization of the local cache with the remote service.

Components:
- **SyncEngine**: Full bootstrap and incremental delta application
- **BackgroundSyncer**: Periodic incremental sync on an APScheduler timer

All public symbols are re-exported here.
"""

from tasksync.client.sync.background import BackgroundSyncer
from tasksync.client.sync.engine import SyncEngine
from tasksync.client.sync.types import (
    InvalidStateError,
    SyncError,
    SyncResult,
    SyncStatus,
)

__all__ = [
    "BackgroundSyncer",
    "InvalidStateError",
    "SyncEngine",
    "SyncError",
    "SyncResult",
    "SyncStatus",
]
