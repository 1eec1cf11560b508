"""Tests for the cancellation context."""

import threading
import time

import pytest

from tasksync.core.context import CancelledException, Context, DeadlineExceededError


class TestContext:
    """Tests for Context."""

    def test_background_never_expires(self) -> None:
        """Should have no deadline and not be cancelled."""
        ctx = Context.background()

        assert ctx.deadline is None
        assert ctx.remaining() is None
        assert not ctx.cancelled
        ctx.check()

    def test_cancel(self) -> None:
        """Should raise CancelledException after cancel()."""
        ctx = Context()
        ctx.cancel()

        assert ctx.cancelled
        with pytest.raises(CancelledException):
            ctx.check()

    def test_cancel_from_other_thread(self) -> None:
        """Should wake a waiter when cancelled from another thread."""
        ctx = Context()
        threading.Timer(0.05, ctx.cancel).start()

        assert ctx.wait(5)

    def test_deadline(self) -> None:
        """Should raise DeadlineExceededError once the deadline passes."""
        ctx = Context.with_timeout(0.01)
        time.sleep(0.02)

        assert ctx.expired
        assert ctx.remaining() == 0.0
        with pytest.raises(DeadlineExceededError):
            ctx.check()

    def test_deadline_is_a_cancellation(self) -> None:
        """Should let callers catch both with CancelledException."""
        assert issubclass(DeadlineExceededError, CancelledException)

    def test_remaining(self) -> None:
        """Should report time left before the deadline."""
        ctx = Context.with_timeout(60)

        remaining = ctx.remaining()
        assert remaining is not None
        assert 0 < remaining <= 60
        ctx.check()
