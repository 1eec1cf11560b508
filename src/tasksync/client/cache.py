"""Local cache of remote entities.

This module provides:
- CacheStore: Storage contract used by the sync engine and repository
- SQLiteCacheStore: SQLite implementation
- LocalStoreError, TransactionError: Storage failures

Architecture:
    The store holds projects, sections and tasks keyed by id, plus a
    key/value sync_state table for the sync token, the last sync time and
    the bootstrap flag. It has no sync logic of its own.

    Transactions are explicit (begin/commit/rollback). The thread that
    opens a transaction holds the store lock until it commits or rolls
    back, so other threads block instead of reading a half-applied batch.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from tasksync.client.models import (
    FULL_SYNC_TOKEN,
    Due,
    Entity,
    Project,
    Section,
    Task,
    format_datetime,
    parse_datetime,
)

logger = logging.getLogger(__name__)

KEY_SYNC_TOKEN = "sync_token"
KEY_LAST_SYNC_TIME = "last_sync_time"
KEY_INITIAL_SYNC_DONE = "initial_sync_done"

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        color TEXT NOT NULL DEFAULT '',
        parent_id TEXT,
        child_order INTEGER NOT NULL DEFAULT 0,
        is_archived INTEGER NOT NULL DEFAULT 0,
        is_favorite INTEGER NOT NULL DEFAULT 0,
        shared INTEGER NOT NULL DEFAULT 0,
        inbox_project INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS sections (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        name TEXT NOT NULL,
        section_order INTEGER NOT NULL DEFAULT 0,
        collapsed INTEGER NOT NULL DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS idx_sections_project ON sections(project_id);

    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        section_id TEXT,
        parent_id TEXT,
        content TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        priority INTEGER NOT NULL DEFAULT 1,
        labels TEXT,
        due TEXT,
        child_order INTEGER NOT NULL DEFAULT 0,
        added_at TEXT,
        completed_at TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);

    -- Key-value sync state
    CREATE TABLE IF NOT EXISTS sync_state (
        key TEXT PRIMARY KEY,
        value TEXT
    );
"""

_ENTITY_TABLES = ("projects", "sections", "tasks")


class LocalStoreError(Exception):
    """Local cache operation failed.

    Attributes:
        operation: Name of the store operation (e.g., "upsert_task").
        entity_id: Id of the entity involved, if any.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        entity_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.entity_id = entity_id

    def __str__(self) -> str:
        base = super().__str__()
        if self.entity_id:
            return f"{self.operation}({self.entity_id}): {base}"
        return f"{self.operation}: {base}"


class TransactionError(LocalStoreError):
    """Transaction misuse (nested begin, commit without begin)."""


def _project_from_row(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        parent_id=row["parent_id"],
        child_order=row["child_order"],
        is_archived=bool(row["is_archived"]),
        is_favorite=bool(row["is_favorite"]),
        shared=bool(row["shared"]),
        inbox_project=bool(row["inbox_project"]),
    )


def _section_from_row(row: sqlite3.Row) -> Section:
    return Section(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        section_order=row["section_order"],
        collapsed=bool(row["collapsed"]),
    )


def _task_from_row(row: sqlite3.Row) -> Task:
    labels: list[str] = []
    if row["labels"]:
        labels = json.loads(row["labels"])
    due = None
    if row["due"]:
        due = Due.from_dict(json.loads(row["due"]))
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        section_id=row["section_id"],
        parent_id=row["parent_id"],
        content=row["content"],
        description=row["description"],
        priority=row["priority"],
        labels=labels,
        due=due,
        child_order=row["child_order"],
        added_at=parse_datetime(row["added_at"]),
        completed_at=parse_datetime(row["completed_at"]),
    )


class CacheStore(ABC):
    """Storage contract for the local cache."""

    # === Entities ===

    @abstractmethod
    def upsert_project(self, project: Project) -> None: ...

    @abstractmethod
    def upsert_section(self, section: Section) -> None: ...

    @abstractmethod
    def upsert_task(self, task: Task) -> None: ...

    def upsert(self, entity: Entity) -> None:
        """Insert or replace any entity by id."""
        if isinstance(entity, Project):
            self.upsert_project(entity)
        elif isinstance(entity, Section):
            self.upsert_section(entity)
        elif isinstance(entity, Task):
            self.upsert_task(entity)
        else:
            raise TypeError(f"Unsupported entity type: {type(entity).__name__}")

    @abstractmethod
    def delete_project(self, project_id: str) -> None: ...

    @abstractmethod
    def delete_section(self, section_id: str) -> None: ...

    @abstractmethod
    def delete_task(self, task_id: str) -> None: ...

    @abstractmethod
    def delete_sections_by_project(self, project_id: str) -> None: ...

    @abstractmethod
    def delete_tasks_by_project(self, project_id: str) -> None: ...

    @abstractmethod
    def get_all_projects(self) -> list[Project]: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None: ...

    @abstractmethod
    def get_all_sections(self) -> list[Section]: ...

    @abstractmethod
    def get_sections_by_project(self, project_id: str) -> list[Section]: ...

    @abstractmethod
    def get_section(self, section_id: str) -> Section | None: ...

    @abstractmethod
    def get_tasks(self, include_completed: bool = False) -> list[Task]: ...

    @abstractmethod
    def get_tasks_by_project(
        self, project_id: str, include_completed: bool = False
    ) -> list[Task]: ...

    @abstractmethod
    def get_task(self, task_id: str) -> Task | None: ...

    @abstractmethod
    def count(self) -> dict[str, int]: ...

    @abstractmethod
    def clear_entities(self) -> None: ...

    # === Sync metadata ===

    @abstractmethod
    def get_sync_token(self) -> str: ...

    @abstractmethod
    def set_sync_token(self, token: str) -> None: ...

    @abstractmethod
    def get_last_sync_time(self) -> datetime | None: ...

    @abstractmethod
    def set_last_sync_time(self, when: datetime) -> None: ...

    @abstractmethod
    def is_initial_sync_done(self) -> bool: ...

    @abstractmethod
    def set_initial_sync_done(self, done: bool) -> None: ...

    # === Transactions ===

    @abstractmethod
    def begin(self) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    @property
    @abstractmethod
    def in_transaction(self) -> bool: ...

    @contextmanager
    def transaction(self) -> Iterator[CacheStore]:
        """Run a block in one transaction, rolling back on any exception."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    @abstractmethod
    def reset(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class SQLiteCacheStore(CacheStore):
    """SQLite-backed local cache."""

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the cache database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".

        Raises:
            LocalStoreError: If the database cannot be opened.
        """
        self._db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self._db_path, Path):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._tx_owner: int | None = None
        self._closed = False

        try:
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,  # Transactions are explicit
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise LocalStoreError(str(e), "open") from e

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript(_SCHEMA)

    @contextmanager
    def _op(self, operation: str, entity_id: str | None = None) -> Iterator[None]:
        """Serialize access and map sqlite errors to LocalStoreError."""
        with self._lock:
            try:
                yield
            except sqlite3.Error as e:
                raise LocalStoreError(str(e), operation, entity_id) from e

    # === Entities ===

    def upsert_project(self, project: Project) -> None:
        """Insert or replace a project."""
        with self._op("upsert_project", project.id):
            self._conn.execute(
                """
                INSERT OR REPLACE INTO projects
                    (id, name, color, parent_id, child_order, is_archived,
                     is_favorite, shared, inbox_project)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    project.id,
                    project.name,
                    project.color,
                    project.parent_id,
                    project.child_order,
                    int(project.is_archived),
                    int(project.is_favorite),
                    int(project.shared),
                    int(project.inbox_project),
                ),
            )

    def upsert_section(self, section: Section) -> None:
        """Insert or replace a section."""
        with self._op("upsert_section", section.id):
            self._conn.execute(
                """
                INSERT OR REPLACE INTO sections
                    (id, project_id, name, section_order, collapsed)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    section.id,
                    section.project_id,
                    section.name,
                    section.section_order,
                    int(section.collapsed),
                ),
            )

    def upsert_task(self, task: Task) -> None:
        """Insert or replace a task."""
        with self._op("upsert_task", task.id):
            self._conn.execute(
                """
                INSERT OR REPLACE INTO tasks
                    (id, project_id, section_id, parent_id, content, description,
                     priority, labels, due, child_order, added_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.project_id,
                    task.section_id,
                    task.parent_id,
                    task.content,
                    task.description,
                    int(task.priority),
                    json.dumps(task.labels),
                    json.dumps(task.due.to_dict()) if task.due else None,
                    task.child_order,
                    format_datetime(task.added_at),
                    format_datetime(task.completed_at),
                ),
            )

    def _delete(self, table: str, entity_id: str, operation: str) -> None:
        with self._op(operation, entity_id):
            self._conn.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))

    def delete_project(self, project_id: str) -> None:
        """Delete a project. Missing ids are ignored."""
        self._delete("projects", project_id, "delete_project")

    def delete_section(self, section_id: str) -> None:
        """Delete a section. Missing ids are ignored."""
        self._delete("sections", section_id, "delete_section")

    def delete_task(self, task_id: str) -> None:
        """Delete a task. Missing ids are ignored."""
        self._delete("tasks", task_id, "delete_task")

    def delete_sections_by_project(self, project_id: str) -> None:
        """Delete every section of a project."""
        with self._op("delete_sections_by_project", project_id):
            self._conn.execute(
                "DELETE FROM sections WHERE project_id = ?", (project_id,)
            )

    def delete_tasks_by_project(self, project_id: str) -> None:
        """Delete every task of a project."""
        with self._op("delete_tasks_by_project", project_id):
            self._conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))

    def get_all_projects(self) -> list[Project]:
        """List all projects ordered by child_order, then name."""
        with self._op("get_all_projects"):
            rows = self._conn.execute(
                "SELECT * FROM projects ORDER BY child_order, name, id"
            ).fetchall()
        return [_project_from_row(row) for row in rows]

    def get_project(self, project_id: str) -> Project | None:
        """Get a project by id."""
        with self._op("get_project", project_id):
            row = self._conn.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        if row is None:
            return None
        return _project_from_row(row)

    def get_all_sections(self) -> list[Section]:
        """List all sections grouped by project."""
        with self._op("get_all_sections"):
            rows = self._conn.execute(
                "SELECT * FROM sections ORDER BY project_id, section_order, id"
            ).fetchall()
        return [_section_from_row(row) for row in rows]

    def get_sections_by_project(self, project_id: str) -> list[Section]:
        """List the sections of one project."""
        with self._op("get_sections_by_project", project_id):
            rows = self._conn.execute(
                "SELECT * FROM sections WHERE project_id = ? "
                "ORDER BY section_order, id",
                (project_id,),
            ).fetchall()
        return [_section_from_row(row) for row in rows]

    def get_section(self, section_id: str) -> Section | None:
        """Get a section by id."""
        with self._op("get_section", section_id):
            row = self._conn.execute(
                "SELECT * FROM sections WHERE id = ?", (section_id,)
            ).fetchone()
        if row is None:
            return None
        return _section_from_row(row)

    def get_tasks(self, include_completed: bool = False) -> list[Task]:
        """List tasks, active ones only unless include_completed is set."""
        query = "SELECT * FROM tasks"
        if not include_completed:
            query += " WHERE completed_at IS NULL"
        with self._op("get_tasks"):
            rows = self._conn.execute(query + " ORDER BY child_order, id").fetchall()
        return [_task_from_row(row) for row in rows]

    def get_tasks_by_project(
        self, project_id: str, include_completed: bool = False
    ) -> list[Task]:
        """List the tasks of one project."""
        query = "SELECT * FROM tasks WHERE project_id = ?"
        if not include_completed:
            query += " AND completed_at IS NULL"
        with self._op("get_tasks_by_project", project_id):
            rows = self._conn.execute(
                query + " ORDER BY child_order, id", (project_id,)
            ).fetchall()
        return [_task_from_row(row) for row in rows]

    def get_task(self, task_id: str) -> Task | None:
        """Get a task by id, completed or not."""
        with self._op("get_task", task_id):
            row = self._conn.execute(
                "SELECT * FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return _task_from_row(row)

    def count(self) -> dict[str, int]:
        """Count rows per entity table."""
        counts = {}
        with self._op("count"):
            for table in _ENTITY_TABLES:
                row = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                counts[table] = row[0]
        return counts

    def clear_entities(self) -> None:
        """Delete every project, section and task. Metadata is kept."""
        with self._op("clear_entities"):
            for table in _ENTITY_TABLES:
                self._conn.execute(f"DELETE FROM {table}")

    # === Sync metadata ===

    def _get_state(self, key: str) -> str | None:
        with self._op("get_state", key):
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def _set_state(self, key: str, value: str) -> None:
        with self._op("set_state", key):
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_sync_token(self) -> str:
        """Stored sync token, "*" before any sync."""
        return self._get_state(KEY_SYNC_TOKEN) or FULL_SYNC_TOKEN

    def set_sync_token(self, token: str) -> None:
        self._set_state(KEY_SYNC_TOKEN, token)

    def get_last_sync_time(self) -> datetime | None:
        """Time of the last committed sync, None before any sync."""
        return parse_datetime(self._get_state(KEY_LAST_SYNC_TIME))

    def set_last_sync_time(self, when: datetime) -> None:
        self._set_state(KEY_LAST_SYNC_TIME, when.isoformat())

    def is_initial_sync_done(self) -> bool:
        return self._get_state(KEY_INITIAL_SYNC_DONE) == "1"

    def set_initial_sync_done(self, done: bool) -> None:
        self._set_state(KEY_INITIAL_SYNC_DONE, "1" if done else "0")

    # === Transactions ===

    @property
    def in_transaction(self) -> bool:
        """Check if a transaction is open."""
        return self._tx_owner is not None

    def begin(self) -> None:
        """Open a transaction and hold the store lock until it ends.

        Other threads calling begin() block until the transaction ends.

        Raises:
            TransactionError: If this thread already has a transaction open.
            LocalStoreError: If sqlite refuses to start the transaction.
        """
        self._lock.acquire()
        if self._tx_owner is not None:
            self._lock.release()
            raise TransactionError("transaction already in progress", "begin")
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._lock.release()
            raise LocalStoreError(str(e), "begin") from e
        self._tx_owner = threading.get_ident()

    def _end(self) -> None:
        self._tx_owner = None
        self._lock.release()

    def _check_owner(self, operation: str) -> None:
        if self._tx_owner is None:
            raise TransactionError("no transaction in progress", operation)
        if self._tx_owner != threading.get_ident():
            raise TransactionError("transaction owned by another thread", operation)

    def commit(self) -> None:
        """Commit the open transaction.

        Raises:
            TransactionError: If no transaction is open.
            LocalStoreError: If the commit fails; the transaction is rolled back.
        """
        self._check_owner("commit")
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback after failed commit also failed")
            raise LocalStoreError(str(e), "commit") from e
        finally:
            self._end()

    def rollback(self) -> None:
        """Roll back the open transaction. No-op if none is open."""
        if self._tx_owner is None:
            return
        self._check_owner("rollback")
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise LocalStoreError(str(e), "rollback") from e
        finally:
            self._end()

    # === Lifecycle ===

    def reset(self) -> None:
        """Drop and recreate every table, clearing all data and metadata.

        Raises:
            TransactionError: If a transaction is open.
        """
        with self._op("reset"):
            if self._tx_owner is not None:
                raise TransactionError("cannot reset during a transaction", "reset")
            for table in (*_ENTITY_TABLES, "sync_state"):
                self._conn.execute(f"DROP TABLE IF EXISTS {table}")
            self._create_tables()
        logger.info("Local cache reset")

    def close(self) -> None:
        """Close the database connection. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            if self._tx_owner is not None:
                self.rollback()
            self._conn.close()
            self._closed = True
