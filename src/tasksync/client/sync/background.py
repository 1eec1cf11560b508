"""Periodic background sync.

This module provides:
- BackgroundSyncer: Runs SyncEngine.auto_sync on an interval

Each run gets its own Context with a 30 second deadline. Failures are
logged and never propagate out of the scheduler thread.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tasksync.client.sync.types import SyncResult
from tasksync.core.config import DEFAULT_AUTO_SYNC_INTERVAL
from tasksync.core.context import Context

if TYPE_CHECKING:
    from tasksync.client.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "background_sync"
SYNC_TIMEOUT = 30.0  # seconds per run


class BackgroundSyncer:
    """Scheduler for periodic incremental syncs."""

    def __init__(
        self,
        engine: SyncEngine,
        interval: float = DEFAULT_AUTO_SYNC_INTERVAL,
        timeout: float = SYNC_TIMEOUT,
    ) -> None:
        """Initialize the syncer.

        Args:
            engine: Engine whose auto_sync is called on every run.
            interval: Seconds between runs. Also the freshness threshold
                passed to auto_sync.
            timeout: Deadline in seconds of each run.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._engine = engine
        self._interval = interval
        self._timeout = timeout
        self._scheduler: BackgroundScheduler | None = None
        self._ctx_lock = threading.Lock()
        self._current_ctx: Context | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._scheduler is not None and self._scheduler.running

    def _sync_job(self) -> SyncResult | None:
        """Job function for a scheduled sync."""
        ctx = Context.with_timeout(self._timeout)
        with self._ctx_lock:
            self._current_ctx = ctx
        logger.debug("Starting background sync")
        try:
            result = self._engine.auto_sync(ctx, max_age=self._interval)
        except Exception:
            logger.exception("Error during background sync")
            return None
        finally:
            with self._ctx_lock:
                if self._current_ctx is ctx:
                    self._current_ctx = None
        if result is not None and not result.skipped:
            logger.info(
                "Background sync: %d upserted, %d deleted",
                result.total_upserted,
                result.total_deleted,
            )
        return result

    def start(self) -> None:
        """Start the scheduler. The first sync runs immediately."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._sync_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=SYNC_JOB_ID,
            name="Background sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(UTC),
        )
        self._scheduler.start()
        logger.info("Background sync started (every %.0f seconds)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler and cancel a run in progress."""
        with self._ctx_lock:
            if self._current_ctx is not None:
                self._current_ctx.cancel()
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Background sync stopped")

    def trigger_sync(self) -> None:
        """Request a sync now without waiting for it."""
        if self._scheduler is not None:
            self._scheduler.add_job(self._sync_job, name="Triggered sync")
            return
        threading.Thread(
            target=self._sync_job, name="tasksync-sync", daemon=True
        ).start()

    def run_now(self) -> SyncResult | None:
        """Run a sync in the calling thread (manual trigger).

        Returns:
            The sync result, or None if skipped or failed.
        """
        return self._sync_job()

    def update_interval(self, seconds: float) -> None:
        """Change the interval, rescheduling the running job."""
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self._interval = seconds
        if self._scheduler is not None:
            self._scheduler.reschedule_job(
                SYNC_JOB_ID, trigger=IntervalTrigger(seconds=seconds)
            )
            logger.info("Background sync interval set to %.0f seconds", seconds)
