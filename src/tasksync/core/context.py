"""Cancellation and deadline signal passed through sync operations.

This module provides:
- Context: Cancel flag plus optional deadline
- CancelledException: Raised when an operation notices cancellation
- DeadlineExceededError: Raised when the deadline has passed

Remote calls check the context before sending and bound their timeout by
the remaining time. Local transactional batches never check it once they
start writing.
"""

from __future__ import annotations

import threading
import time


class CancelledException(Exception):
    """Operation was cancelled before it could complete."""


class DeadlineExceededError(CancelledException):
    """Operation deadline passed before it could complete."""


class Context:
    """Cancellation handle with an optional deadline.

    Usage:
        ctx = Context.with_timeout(30.0)
        ctx.check()          # raises if cancelled or expired
        ctx.remaining()      # seconds left, or None without deadline
        ctx.cancel()         # from any thread
    """

    def __init__(self, deadline: float | None = None) -> None:
        """Initialize the context.

        Args:
            deadline: Absolute time.monotonic() value after which the
                context counts as expired, or None for no deadline.
        """
        self._deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> Context:
        """Create a context that is never cancelled unless asked to."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> Context:
        """Create a context expiring `seconds` from now."""
        return cls(deadline=time.monotonic() + seconds)

    @property
    def deadline(self) -> float | None:
        """Absolute monotonic deadline, if any."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        """Check if cancel() was called."""
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        """Check if the deadline has passed."""
        return self._deadline is not None and time.monotonic() >= self._deadline

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread."""
        self._cancelled.set()

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or None."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context is cancelled or expired.

        Raises:
            CancelledException: If cancel() was called.
            DeadlineExceededError: If the deadline has passed.
        """
        if self.cancelled:
            raise CancelledException("operation cancelled")
        if self.expired:
            raise DeadlineExceededError("operation deadline exceeded")

    def wait(self, timeout: float) -> bool:
        """Block up to `timeout` seconds or until cancelled.

        Returns:
            True if the context was cancelled while waiting.
        """
        return self._cancelled.wait(timeout)
