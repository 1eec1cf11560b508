"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, InvalidStateError: Exception classes
- SyncResult: Outcome of one sync run
- SyncStatus: Snapshot of the stored sync metadata
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


class SyncError(Exception):
    """A sync run failed and was rolled back.

    The underlying failure is available as __cause__.

    Attributes:
        operation: "initial_sync" or "incremental_sync".
    """

    def __init__(self, message: str, operation: str) -> None:
        super().__init__(message)
        self.operation = operation


class InvalidStateError(Exception):
    """Operation needs the local cache, but caching is disabled."""


@dataclass
class SyncResult:
    """Result of a sync run.

    Attributes:
        full: True if the batch replaced the whole cache.
        token: Token stored after the run.
        skipped: True if the remote reported no changes.
    """

    full: bool
    token: str
    projects_upserted: int = 0
    sections_upserted: int = 0
    tasks_upserted: int = 0
    projects_deleted: int = 0
    sections_deleted: int = 0
    tasks_deleted: int = 0
    skipped: bool = False

    @property
    def total_upserted(self) -> int:
        return self.projects_upserted + self.sections_upserted + self.tasks_upserted

    @property
    def total_deleted(self) -> int:
        return self.projects_deleted + self.sections_deleted + self.tasks_deleted


@dataclass
class SyncStatus:
    """Stored sync metadata."""

    initial_sync_done: bool
    last_sync_time: datetime | None
    sync_token: str

    def __str__(self) -> str:
        """One-line summary, e.g. "synced (last: 2026-01-01 10:00:00, token: abcdefgh...)"."""
        if not self.initial_sync_done:
            return "not synced"
        last = (
            self.last_sync_time.strftime("%Y-%m-%d %H:%M:%S")
            if self.last_sync_time
            else "never"
        )
        token = self.sync_token
        if not token:
            token = "none"
        elif len(token) > 8:
            token = token[:8] + "..."
        return f"synced (last: {last}, token: {token})"
