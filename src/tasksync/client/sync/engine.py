"""Sync engine reconciling the local cache with the remote service.

This module provides:
- SyncEngine: Full bootstrap and incremental delta application

Consistency rules:
    - Every sync requests projects, sections and items together, so one
      token covers all of them.
    - A batch is applied in a single store transaction. The token and the
      sync time are written after all entity writes, right before commit.
    - Any failure rolls the batch back; the stored token only ever moves
      to a value returned by a committed sync.
    - Cancellation is checked before the remote call and after it returns.
      Once a batch starts writing it runs to commit or rollback.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from tasksync.client.api import APIError
from tasksync.client.cache import LocalStoreError
from tasksync.client.models import FULL_SYNC_TOKEN, SyncRequest, SyncResponse
from tasksync.client.sync.types import SyncError, SyncResult, SyncStatus
from tasksync.core.config import DEFAULT_AUTO_SYNC_INTERVAL

if TYPE_CHECKING:
    from tasksync.client.api import TodoClient
    from tasksync.client.cache import CacheStore
    from tasksync.core.context import Context

logger = logging.getLogger(__name__)

OP_INITIAL = "initial_sync"
OP_INCREMENTAL = "incremental_sync"


class SyncEngine:
    """Applies remote snapshots and deltas to the local cache."""

    def __init__(self, client: TodoClient, store: CacheStore) -> None:
        """Initialize the sync engine.

        Args:
            client: Remote client used for sync calls.
            store: Local cache the batches are applied to.
        """
        self._client = client
        self._store = store

    def initial_sync(self, ctx: Context | None = None) -> SyncResult:
        """Replace the cache with a full snapshot from the remote.

        Safe to call repeatedly; each call re-bootstraps.

        Raises:
            SyncError: If the remote call or the local batch failed. The
                previously committed cache state is untouched.
            CancelledException: If ctx was cancelled before any write.
        """
        logger.info("Starting initial sync")
        response = self._fetch(FULL_SYNC_TOKEN, ctx, OP_INITIAL)
        result = self._apply(response, replace=True, operation=OP_INITIAL)
        logger.info(
            "Initial sync complete: %d projects, %d sections, %d tasks",
            result.projects_upserted,
            result.sections_upserted,
            result.tasks_upserted,
        )
        return result

    def incremental_sync(self, ctx: Context | None = None) -> SyncResult:
        """Apply the changes since the stored token.

        Falls back to initial_sync when no bootstrap has completed yet. If
        the remote answers with a full snapshot, it replaces the cache.
        An empty delta changes nothing, metadata included.

        Raises:
            SyncError: If the remote call or the local batch failed.
            CancelledException: If ctx was cancelled before any write.
        """
        try:
            bootstrapped = self._store.is_initial_sync_done()
            token = self._store.get_sync_token()
        except LocalStoreError as e:
            raise SyncError(f"Cannot read sync state: {e}", OP_INCREMENTAL) from e

        if not bootstrapped:
            logger.info("No initial sync yet, bootstrapping")
            return self.initial_sync(ctx)

        logger.info("Starting incremental sync")
        response = self._fetch(token, ctx, OP_INCREMENTAL)

        if response.full_sync:
            logger.warning("Remote sent a full snapshot, replacing local cache")
            return self._apply(response, replace=True, operation=OP_INCREMENTAL)

        if not response.has_changes:
            logger.info("Incremental sync: no changes")
            return SyncResult(full=False, token=token, skipped=True)

        result = self._apply(response, replace=False, operation=OP_INCREMENTAL)
        logger.info(
            "Incremental sync complete: %d upserted, %d deleted",
            result.total_upserted,
            result.total_deleted,
        )
        return result

    def force_initial_sync(self, ctx: Context | None = None) -> SyncResult:
        """Full refresh regardless of the stored state."""
        logger.info("Forcing full resync")
        return self.initial_sync(ctx)

    def auto_sync(
        self,
        ctx: Context | None = None,
        max_age: float = DEFAULT_AUTO_SYNC_INTERVAL,
    ) -> SyncResult | None:
        """Run incremental_sync if the last sync is older than max_age.

        Args:
            ctx: Cancellation context.
            max_age: Maximum age in seconds of the last sync.

        Returns:
            The sync result, or None if the cache was fresh enough.
        """
        try:
            last = self._store.get_last_sync_time()
        except LocalStoreError as e:
            raise SyncError(f"Cannot read sync state: {e}", OP_INCREMENTAL) from e
        if last is not None and datetime.now(UTC) - last < timedelta(seconds=max_age):
            logger.debug("Cache is fresh (last sync %s), skipping", last.isoformat())
            return None
        return self.incremental_sync(ctx)

    def get_sync_status(self) -> SyncStatus:
        """Read the stored sync metadata.

        Returns defaults (False, None, "*") on a store that never synced.
        """
        return SyncStatus(
            initial_sync_done=self._store.is_initial_sync_done(),
            last_sync_time=self._store.get_last_sync_time(),
            sync_token=self._store.get_sync_token(),
        )

    def _fetch(
        self, token: str, ctx: Context | None, operation: str
    ) -> SyncResponse:
        """Request a snapshot or delta. Nothing local is touched here."""
        if ctx is not None:
            ctx.check()
        try:
            response = self._client.sync(SyncRequest(sync_token=token), ctx)
        except APIError as e:
            logger.error("%s failed: remote error: %s", operation, e)
            raise SyncError(f"{operation} failed: {e}", operation) from e
        if ctx is not None:
            ctx.check()
        if not response.sync_token:
            raise SyncError(f"{operation} failed: remote returned no sync token", operation)
        return response

    def _apply(
        self, response: SyncResponse, replace: bool, operation: str
    ) -> SyncResult:
        """Apply a batch in one transaction.

        Args:
            response: Snapshot or delta from the remote.
            replace: Clear the entity tables first and mark bootstrap done.
            operation: Name used in errors and logs.
        """
        store = self._store
        result = SyncResult(full=replace, token=response.sync_token)
        synced_at = datetime.now(UTC)

        try:
            store.begin()
        except LocalStoreError as e:
            raise SyncError(f"{operation} failed: {e}", operation) from e

        try:
            if replace:
                store.clear_entities()

            for project in response.projects:
                if project.is_deleted:
                    store.delete_project(project.id)
                    result.projects_deleted += 1
                else:
                    store.upsert_project(project)
                    result.projects_upserted += 1

            for section in response.sections:
                if section.is_deleted:
                    store.delete_section(section.id)
                    result.sections_deleted += 1
                else:
                    store.upsert_section(section)
                    result.sections_upserted += 1

            for task in response.items:
                if task.is_deleted:
                    store.delete_task(task.id)
                    result.tasks_deleted += 1
                else:
                    store.upsert_task(task)
                    result.tasks_upserted += 1

            logger.debug(
                "%s batch: %d upserted, %d deleted",
                operation,
                result.total_upserted,
                result.total_deleted,
            )

            store.set_sync_token(response.sync_token)
            store.set_last_sync_time(synced_at)
            if replace:
                store.set_initial_sync_done(True)
            store.commit()
        except Exception as e:
            if store.in_transaction:
                store.rollback()
            logger.error("%s rolled back: %s", operation, e)
            raise SyncError(f"{operation} failed: {e}", operation) from e

        return result
