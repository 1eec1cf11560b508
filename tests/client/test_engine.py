"""Tests for the sync engine."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pytest_httpx import HTTPXMock

from tasksync.client.api import (
    AuthenticationError,
    RemoteRejectedError,
    RemoteUnavailableError,
    TodoClient,
)
from tasksync.client.cache import LocalStoreError, SQLiteCacheStore
from tasksync.client.models import Project, Section, SyncRequest, SyncResponse, Task
from tasksync.client.sync.engine import SyncEngine
from tasksync.client.sync.types import SyncError, SyncStatus
from tasksync.core.config import RemoteConfig
from tasksync.core.context import CancelledException, Context, DeadlineExceededError


@pytest.fixture
def store(tmp_path: Path) -> SQLiteCacheStore:
    """Create a cache store in a temp directory."""
    store = SQLiteCacheStore(tmp_path / "cache.db")
    yield store
    store.close()


@pytest.fixture
def client() -> MagicMock:
    """Create a mock remote client."""
    return MagicMock(spec=TodoClient)


@pytest.fixture
def engine(client: MagicMock, store: SQLiteCacheStore) -> SyncEngine:
    """Create a sync engine with a mock client."""
    return SyncEngine(client, store)


def snapshot(token: str = "tok1") -> SyncResponse:
    """Full snapshot with two projects, a section and three tasks."""
    return SyncResponse(
        sync_token=token,
        full_sync=True,
        projects=[Project(id="p1", name="Inbox", inbox_project=True), Project(id="p2", name="Work")],
        sections=[Section(id="s1", project_id="p2", name="Doing")],
        items=[
            Task(id="t1", project_id="p1", content="Buy milk"),
            Task(id="t2", project_id="p2", content="Report"),
            Task(id="t3", project_id="p2", content="Review"),
        ],
    )


def bootstrap(engine: SyncEngine, client: MagicMock, token: str = "tok1") -> None:
    """Run an initial sync against the default snapshot."""
    client.sync.return_value = snapshot(token)
    engine.initial_sync()
    client.sync.reset_mock()


class TestInitialSync:
    """Tests for initial_sync."""

    def test_populates_cache(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should store every entity and the new metadata."""
        client.sync.return_value = snapshot("tok1")

        result = engine.initial_sync()

        assert result.full
        assert result.token == "tok1"
        assert result.projects_upserted == 2
        assert result.tasks_upserted == 3
        assert store.count() == {"projects": 2, "sections": 1, "tasks": 3}
        assert store.get_sync_token() == "tok1"
        assert store.is_initial_sync_done()
        assert store.get_last_sync_time() is not None

    def test_requests_all_resources_from_scratch(
        self, engine: SyncEngine, client: MagicMock
    ) -> None:
        """Should request projects, sections and items with token "*"."""
        client.sync.return_value = snapshot()

        engine.initial_sync()

        request: SyncRequest = client.sync.call_args[0][0]
        assert request.sync_token == "*"
        assert request.resource_types == ["projects", "sections", "items"]

    def test_replaces_stale_rows(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should drop rows that are not in the new snapshot."""
        store.upsert_task(Task(id="old", project_id="p1", content="Stale"))
        client.sync.return_value = snapshot()

        engine.initial_sync()

        assert store.get_task("old") is None

    def test_remote_failure_leaves_store_untouched(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should wrap remote errors and change nothing locally."""
        client.sync.side_effect = RemoteUnavailableError("down", 503)

        with pytest.raises(SyncError) as exc_info:
            engine.initial_sync()

        assert isinstance(exc_info.value.__cause__, RemoteUnavailableError)
        assert exc_info.value.operation == "initial_sync"
        assert store.get_sync_token() == "*"
        assert not store.is_initial_sync_done()

    def test_missing_token_is_rejected(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should refuse a response without a sync token."""
        client.sync.return_value = SyncResponse(sync_token="", full_sync=True)

        with pytest.raises(SyncError):
            engine.initial_sync()

        assert not store.is_initial_sync_done()

    def test_repeatable(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should re-bootstrap on every call."""
        bootstrap(engine, client, "tok1")
        client.sync.return_value = snapshot("tok2")

        engine.force_initial_sync()

        assert store.get_sync_token() == "tok2"
        assert store.count()["tasks"] == 3

    def test_same_snapshot_twice(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should leave identical contents after applying one snapshot twice."""
        bootstrap(engine, client, "tok1")
        projects = store.get_all_projects()
        sections = store.get_all_sections()
        tasks = store.get_tasks(include_completed=True)
        client.sync.return_value = snapshot("tok1")

        engine.initial_sync()

        assert store.get_all_projects() == projects
        assert store.get_all_sections() == sections
        assert store.get_tasks(include_completed=True) == tasks
        assert store.get_sync_token() == "tok1"

    def test_failed_rebootstrap_keeps_previous_cache(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should restore cleared rows and the token when a snapshot write fails."""
        bootstrap(engine, client, "tok1")
        projects = store.get_all_projects()
        tasks = store.get_tasks(include_completed=True)
        client.sync.return_value = SyncResponse(
            sync_token="tok2",
            full_sync=True,
            projects=[Project(id="p7", name="Replacement")],
            items=[Task(id="t7", project_id="p7", content="Fails")],
        )

        with patch.object(
            store,
            "upsert_task",
            side_effect=LocalStoreError("disk full", "upsert_task", "t7"),
        ):
            with pytest.raises(SyncError) as exc_info:
                engine.force_initial_sync()

        assert exc_info.value.operation == "initial_sync"
        assert store.get_all_projects() == projects
        assert store.get_tasks(include_completed=True) == tasks
        assert store.get_project("p7") is None
        assert store.get_sync_token() == "tok1"
        assert store.is_initial_sync_done()
        assert not store.in_transaction


class TestIncrementalSync:
    """Tests for incremental_sync."""

    def test_bootstraps_when_never_synced(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should fall back to a full sync on a fresh store."""
        client.sync.return_value = snapshot("tok1")

        result = engine.incremental_sync()

        assert result.full
        assert client.sync.call_args[0][0].sync_token == "*"
        assert store.is_initial_sync_done()

    def test_applies_delta(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should upsert changed rows, delete tombstones and advance the token."""
        bootstrap(engine, client, "tok1")
        client.sync.return_value = SyncResponse(
            sync_token="tok2",
            items=[
                Task(id="t1", project_id="p1", content="Buy oat milk"),
                Task(id="t2", project_id="p2", content="", is_deleted=True),
                Task(id="t4", project_id="p2", content="New"),
            ],
        )

        result = engine.incremental_sync()

        assert client.sync.call_args[0][0].sync_token == "tok1"
        assert not result.full
        assert result.tasks_upserted == 2
        assert result.tasks_deleted == 1
        assert store.get_task("t1").content == "Buy oat milk"
        assert store.get_task("t2") is None
        assert store.get_task("t4") is not None
        assert store.get_sync_token() == "tok2"

    def test_tombstone_for_unknown_id(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should accept tombstones for rows that were never cached."""
        bootstrap(engine, client)
        client.sync.return_value = SyncResponse(
            sync_token="tok2",
            projects=[Project(id="p404", name="", is_deleted=True)],
        )

        result = engine.incremental_sync()

        assert result.projects_deleted == 1
        assert store.get_sync_token() == "tok2"

    def test_idempotent(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should reach the same state when a delta is applied twice."""
        bootstrap(engine, client)
        delta = SyncResponse(
            sync_token="tok2",
            items=[
                Task(id="t5", project_id="p1", content="Once"),
                Task(id="t3", project_id="p2", content="", is_deleted=True),
            ],
        )
        client.sync.return_value = delta

        engine.incremental_sync()
        first = store.get_tasks(include_completed=True)
        engine.incremental_sync()

        assert store.get_tasks(include_completed=True) == first

    def test_failure_rolls_back_whole_batch(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should leave entities and token as they were when a write fails."""
        bootstrap(engine, client, "tok1")
        before = store.get_tasks(include_completed=True)
        client.sync.return_value = SyncResponse(
            sync_token="tok2",
            projects=[Project(id="p9", name="Added")],
            items=[Task(id="t9", project_id="p9", content="Fails")],
        )

        with patch.object(
            store,
            "upsert_task",
            side_effect=LocalStoreError("disk full", "upsert_task", "t9"),
        ):
            with pytest.raises(SyncError) as exc_info:
                engine.incremental_sync()

        assert isinstance(exc_info.value.__cause__, LocalStoreError)
        assert store.get_project("p9") is None
        assert store.get_tasks(include_completed=True) == before
        assert store.get_sync_token() == "tok1"
        assert not store.in_transaction

    def test_remote_failure_keeps_token(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should keep the committed token when the remote fails."""
        bootstrap(engine, client, "tok1")
        client.sync.side_effect = AuthenticationError("bad token", 401)

        with pytest.raises(SyncError):
            engine.incremental_sync()

        assert store.get_sync_token() == "tok1"

    def test_empty_delta_is_noop(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should not touch metadata when nothing changed."""
        bootstrap(engine, client, "tok1")
        last_sync = store.get_last_sync_time()
        client.sync.return_value = SyncResponse(sync_token="tok2")

        result = engine.incremental_sync()

        assert result.skipped
        assert store.get_sync_token() == "tok1"
        assert store.get_last_sync_time() == last_sync

    def test_full_sync_reply_replaces_cache(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should treat a full snapshot reply as a replacement."""
        bootstrap(engine, client, "tok1")
        client.sync.return_value = SyncResponse(
            sync_token="tok5",
            full_sync=True,
            projects=[Project(id="p1", name="Inbox")],
        )

        result = engine.incremental_sync()

        assert result.full
        assert store.count() == {"projects": 1, "sections": 0, "tasks": 0}
        assert store.get_sync_token() == "tok5"

    def test_token_sequence(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should send each committed token on the next request."""
        bootstrap(engine, client, "tok1")
        client.sync.side_effect = [
            SyncResponse(sync_token="tok2", items=[Task(id="a", project_id="p1", content="a")]),
            SyncResponse(sync_token="tok3", items=[Task(id="b", project_id="p1", content="b")]),
        ]

        engine.incremental_sync()
        engine.incremental_sync()

        sent = [c[0][0].sync_token for c in client.sync.call_args_list]
        assert sent == ["tok1", "tok2"]
        assert store.get_sync_token() == "tok3"

    def test_token_survives_failed_attempt(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should keep the last committed token through a failure in between."""
        bootstrap(engine, client, "tok1")
        client.sync.side_effect = [
            SyncResponse(sync_token="tok2", items=[Task(id="a", project_id="p1", content="a")]),
            RemoteUnavailableError("down", 503),
            SyncResponse(sync_token="tok3", items=[Task(id="b", project_id="p1", content="b")]),
        ]

        engine.incremental_sync()
        assert store.get_sync_token() == "tok2"

        with pytest.raises(SyncError):
            engine.incremental_sync()
        assert store.get_sync_token() == "tok2"

        engine.incremental_sync()

        sent = [c[0][0].sync_token for c in client.sync.call_args_list]
        assert sent == ["tok1", "tok2", "tok2"]
        assert store.get_sync_token() == "tok3"
        assert store.get_task("a") is not None
        assert store.get_task("b") is not None


class TestMalformedResponse:
    """Tests for replies that do not parse."""

    def test_bad_field_becomes_sync_error(
        self, store: SQLiteCacheStore, httpx_mock: HTTPXMock
    ) -> None:
        """Should wrap a parse failure in SyncError and leave the cache alone."""
        httpx_mock.add_response(
            url="https://api.test/sync/v9/sync",
            json={
                "sync_token": "tok1",
                "full_sync": True,
                "items": [
                    {"id": "t1", "project_id": "p1", "content": "x", "completed_at": "not-a-date"}
                ],
            },
        )
        with TodoClient(RemoteConfig(token="t", api_url="https://api.test/sync/v9")) as remote:
            engine = SyncEngine(remote, store)

            with pytest.raises(SyncError) as exc_info:
                engine.initial_sync()

        assert exc_info.value.operation == "initial_sync"
        assert isinstance(exc_info.value.__cause__, RemoteRejectedError)
        assert store.count() == {"projects": 0, "sections": 0, "tasks": 0}
        assert store.get_sync_token() == "*"
        assert not store.is_initial_sync_done()


class TestCancellation:
    """Tests for context cancellation."""

    def test_cancelled_before_request(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should not call the remote with a cancelled context."""
        ctx = Context()
        ctx.cancel()

        with pytest.raises(CancelledException):
            engine.initial_sync(ctx)

        client.sync.assert_not_called()

    def test_cancelled_during_request(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should not write anything when cancelled while waiting on the remote."""
        ctx = Context()

        def respond(request: SyncRequest, ctx_arg: Context) -> SyncResponse:
            ctx_arg.cancel()
            return snapshot()

        client.sync.side_effect = respond

        with pytest.raises(CancelledException):
            engine.initial_sync(ctx)

        assert store.count() == {"projects": 0, "sections": 0, "tasks": 0}
        assert not store.is_initial_sync_done()

    def test_expired_deadline(self, engine: SyncEngine, client: MagicMock) -> None:
        """Should raise DeadlineExceededError for an expired context."""
        ctx = Context.with_timeout(0)

        with pytest.raises(DeadlineExceededError):
            engine.incremental_sync(ctx)

        client.sync.assert_not_called()


class TestAutoSync:
    """Tests for auto_sync."""

    def test_skips_when_fresh(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should not call the remote when the last sync is recent."""
        bootstrap(engine, client)

        assert engine.auto_sync(max_age=300) is None
        client.sync.assert_not_called()

    def test_syncs_when_stale(
        self, engine: SyncEngine, client: MagicMock, store: SQLiteCacheStore
    ) -> None:
        """Should run an incremental sync when the last sync is old."""
        bootstrap(engine, client, "tok1")
        store.set_last_sync_time(datetime.now(UTC) - timedelta(hours=1))
        client.sync.return_value = SyncResponse(sync_token="tok2")

        result = engine.auto_sync(max_age=300)

        assert result is not None
        client.sync.assert_called_once()

    def test_syncs_when_never_synced(self, engine: SyncEngine, client: MagicMock) -> None:
        """Should bootstrap a fresh store."""
        client.sync.return_value = snapshot()

        result = engine.auto_sync(max_age=300)

        assert result is not None
        assert result.full


class TestSyncStatus:
    """Tests for get_sync_status."""

    def test_defaults(self, engine: SyncEngine) -> None:
        """Should report defaults before any sync."""
        status = engine.get_sync_status()

        assert status == SyncStatus(
            initial_sync_done=False, last_sync_time=None, sync_token="*"
        )
        assert str(status) == "not synced"

    def test_after_sync(self, engine: SyncEngine, client: MagicMock) -> None:
        """Should report the committed metadata."""
        bootstrap(engine, client, "abcdefghijkl")

        status = engine.get_sync_status()

        assert status.initial_sync_done
        assert status.sync_token == "abcdefghijkl"
        assert "token: abcdefgh..." in str(status)

    def test_str_short_token(self) -> None:
        """Should show short tokens in full."""
        status = SyncStatus(
            initial_sync_done=True,
            last_sync_time=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
            sync_token="abc",
        )

        assert str(status) == "synced (last: 2026-01-02 03:04:05, token: abc)"
