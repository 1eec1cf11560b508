"""Repository facade over the remote client and the local cache.

This module provides:
- Repository: Reads from the cache, remote-first writes mirrored locally
- ProjectNotFoundError: Raised by project name resolution
- walk_project_tree: Depth-first traversal of the project hierarchy

Writes go to the remote first. If the remote accepts, the change is
mirrored into the cache; a failed mirror is only logged because the next
incremental sync repairs the cache. If the remote refuses, the cache is
left alone and the error propagates unchanged.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tasksync.client.api import NotFoundError, TodoClient
from tasksync.client.cache import CacheStore, LocalStoreError, SQLiteCacheStore
from tasksync.client.models import Due, Project, Section, Task
from tasksync.client.sync.background import BackgroundSyncer
from tasksync.client.sync.engine import SyncEngine
from tasksync.client.sync.types import InvalidStateError, SyncResult, SyncStatus
from tasksync.core.config import CacheConfig, RemoteConfig

if TYPE_CHECKING:
    from tasksync.core.context import Context

logger = logging.getLogger(__name__)


class ProjectNotFoundError(NotFoundError):
    """No project matches a name or id."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Project not found: {reference}", 404)
        self.reference = reference


def walk_project_tree(projects: Iterable[Project]) -> Iterator[tuple[Project, int]]:
    """Yield (project, depth) pairs depth-first, children after parents.

    Projects whose parent is not in the list are roots. Projects caught in
    a parent cycle are each yielded once, starting from the first of them
    in input order.
    """
    projects = list(projects)
    by_id = {p.id: p for p in projects}
    children: dict[str, list[Project]] = defaultdict(list)
    roots: list[Project] = []
    for project in projects:
        if project.parent_id and project.parent_id in by_id and project.parent_id != project.id:
            children[project.parent_id].append(project)
        else:
            roots.append(project)

    visited: set[str] = set()

    def walk(root: Project) -> Iterator[tuple[Project, int]]:
        stack = [(root, 0)]
        while stack:
            node, depth = stack.pop()
            if node.id in visited:
                continue
            visited.add(node.id)
            yield node, depth
            for child in reversed(children.get(node.id, [])):
                if child.id not in visited:
                    stack.append((child, depth + 1))

    for root in roots:
        yield from walk(root)
    # Anything left is part of a cycle
    for project in projects:
        if project.id not in visited:
            yield from walk(project)


class Repository:
    """Task service access with a local cache.

    Usage:
        repo = Repository.from_config(remote_config, cache_config)
        repo.initialize()
        projects = repo.get_all_projects()
        repo.create_task("Buy milk", project_id=projects[0].id)
        repo.close()
    """

    def __init__(
        self,
        client: TodoClient,
        cache_config: CacheConfig | None = None,
        store: CacheStore | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            client: Remote client.
            cache_config: Cache settings (defaults to CacheConfig()).
            store: Cache store to use instead of opening
                cache_config.database_path. Ignored when caching is disabled.
        """
        self._client = client
        self._config = cache_config or CacheConfig()
        self._store: CacheStore | None = None
        self._engine: SyncEngine | None = None
        self._syncer: BackgroundSyncer | None = None
        self._closed = False

        if self._config.enabled:
            self._store = store or SQLiteCacheStore(self._config.database_path)
            self._engine = SyncEngine(client, self._store)

    @classmethod
    def from_config(
        cls, remote_config: RemoteConfig, cache_config: CacheConfig
    ) -> Repository:
        """Build a repository with its own remote client."""
        return cls(TodoClient(remote_config), cache_config)

    @property
    def cache_enabled(self) -> bool:
        return self._store is not None

    @property
    def store(self) -> CacheStore | None:
        return self._store

    @property
    def engine(self) -> SyncEngine | None:
        return self._engine

    @property
    def syncer(self) -> BackgroundSyncer | None:
        return self._syncer

    def _require_cache(self) -> tuple[CacheStore, SyncEngine]:
        if self._store is None or self._engine is None:
            raise InvalidStateError("local cache is disabled")
        return self._store, self._engine

    # === Lifecycle ===

    def initialize(self, ctx: Context | None = None) -> None:
        """Bootstrap the cache if needed and start background sync if enabled.

        Raises:
            SyncError: If the bootstrap sync failed.
        """
        if self._store is None or self._engine is None:
            return
        if self._config.initial_sync_on_start and not self._store.is_initial_sync_done():
            self._engine.initial_sync(ctx)
        if self._config.background_sync and self._syncer is None:
            self._syncer = BackgroundSyncer(
                self._engine, interval=self._config.auto_sync_interval
            )
            self._syncer.start()

    def close(self) -> None:
        """Stop background sync and release the store and the client."""
        if self._closed:
            return
        self._closed = True
        if self._syncer is not None:
            self._syncer.stop()
            self._syncer = None
        if self._store is not None:
            self._store.close()
        self._client.close()

    def __enter__(self) -> Repository:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Sync ===

    def sync(self, ctx: Context | None = None) -> SyncResult:
        """Run an incremental sync (bootstrapping if needed)."""
        _, engine = self._require_cache()
        return engine.incremental_sync(ctx)

    def force_initial_sync(self, ctx: Context | None = None) -> SyncResult:
        """Rebuild the cache from a full snapshot."""
        _, engine = self._require_cache()
        return engine.force_initial_sync(ctx)

    def get_sync_status(self) -> SyncStatus:
        _, engine = self._require_cache()
        return engine.get_sync_status()

    def reset_local_data(self) -> None:
        """Drop all cached data and sync metadata."""
        store, _ = self._require_cache()
        store.reset()

    # === Reads ===

    def get_all_projects(self, ctx: Context | None = None) -> list[Project]:
        if self._store is None:
            return self._client.get_all_projects(ctx)
        return self._store.get_all_projects()

    def get_project(self, project_id: str, ctx: Context | None = None) -> Project:
        """Get a project by id.

        Raises:
            NotFoundError: If the project does not exist.
        """
        if self._store is None:
            return self._client.get_project(project_id, ctx)
        project = self._store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}", 404)
        return project

    def get_all_sections(self, ctx: Context | None = None) -> list[Section]:
        if self._store is None:
            return self._client.get_all_sections(ctx)
        return self._store.get_all_sections()

    def get_sections_by_project(
        self, project_id: str, ctx: Context | None = None
    ) -> list[Section]:
        if self._store is None:
            return self._client.get_sections_by_project(project_id, ctx)
        return self._store.get_sections_by_project(project_id)

    def get_tasks(
        self, include_completed: bool = False, ctx: Context | None = None
    ) -> list[Task]:
        """List tasks, active ones only unless include_completed is set."""
        if self._store is None:
            tasks = self._client.get_tasks(ctx)
            if include_completed:
                return tasks
            return [t for t in tasks if not t.is_completed]
        return self._store.get_tasks(include_completed=include_completed)

    def get_tasks_by_project(
        self,
        project_id: str,
        include_completed: bool = False,
        ctx: Context | None = None,
    ) -> list[Task]:
        if self._store is None:
            tasks = self._client.get_tasks_by_project(project_id, ctx)
            if include_completed:
                return tasks
            return [t for t in tasks if not t.is_completed]
        return self._store.get_tasks_by_project(
            project_id, include_completed=include_completed
        )

    def get_task(self, task_id: str, ctx: Context | None = None) -> Task:
        """Get a task by id.

        Raises:
            NotFoundError: If the task does not exist.
        """
        if self._store is None:
            return self._client.get_task(task_id, ctx)
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", 404)
        return task

    def find_project_id_by_name(self, text: str, ctx: Context | None = None) -> str:
        """Resolve a project reference to its id.

        Matching is case-insensitive and tries, in order: exact name, exact
        id, then name containing the text.

        Raises:
            ProjectNotFoundError: If nothing matches.
        """
        needle = text.strip().lower()
        if not needle:
            raise ProjectNotFoundError(text)
        projects = self.get_all_projects(ctx)
        for project in projects:
            if project.name.lower() == needle:
                return project.id
        for project in projects:
            if project.id.lower() == needle:
                return project.id
        for project in projects:
            if needle in project.name.lower():
                return project.id
        raise ProjectNotFoundError(text)

    # === Cache mirroring ===

    def _mirror(
        self,
        operation: str,
        entity_id: str | None,
        apply: Callable[[CacheStore], None],
    ) -> None:
        """Apply a confirmed write to the cache, logging failures."""
        if self._store is None:
            return
        try:
            apply(self._store)
        except LocalStoreError as e:
            logger.warning(
                "Cache update after %s(%s) failed, next sync will repair it: %s",
                operation,
                entity_id,
                e,
            )

    def _cached_task(self, task_id: str) -> Task | None:
        if self._store is None:
            return None
        try:
            return self._store.get_task(task_id)
        except LocalStoreError as e:
            logger.warning("Cannot read cached task %s: %s", task_id, e)
            return None

    def _cached_project(self, project_id: str) -> Project | None:
        if self._store is None:
            return None
        try:
            return self._store.get_project(project_id)
        except LocalStoreError as e:
            logger.warning("Cannot read cached project %s: %s", project_id, e)
            return None

    def _inbox_project_id(self) -> str:
        if self._store is None:
            return ""
        try:
            projects = self._store.get_all_projects()
        except LocalStoreError:
            return ""
        for project in projects:
            if project.inbox_project:
                return project.id
        return ""

    # === Task writes ===

    def create_task(
        self,
        content: str,
        project_id: str | None = None,
        description: str | None = None,
        priority: int | None = None,
        labels: list[str] | None = None,
        due_string: str | None = None,
        section_id: str | None = None,
        parent_id: str | None = None,
        ctx: Context | None = None,
    ) -> Task:
        """Create a task on the remote and add it to the cache.

        Returns:
            The task as returned by the remote, or built from the request
            fields with the canonical id.
        """
        result = self._client.add_task(
            content,
            project_id=project_id,
            description=description,
            priority=priority,
            labels=labels,
            due_string=due_string,
            section_id=section_id,
            parent_id=parent_id,
            ctx=ctx,
        )
        task_id = result.entity_id
        task = next((t for t in result.response.items if t.id == task_id), None)
        if task is None:
            task = Task(
                id=task_id or (result.command.temp_id or ""),
                project_id=project_id or self._inbox_project_id(),
                content=content,
                description=description or "",
                priority=priority or 1,
                labels=list(labels or []),
                due=Due(date="", string=due_string) if due_string else None,
                section_id=section_id,
                parent_id=parent_id,
                added_at=datetime.now(UTC),
            )
        if task_id is None:
            logger.warning("Remote returned no id for new task, not caching it")
            return task
        self._mirror("create_task", task.id, lambda store: store.upsert_task(task))
        return task

    def update_task(
        self,
        task_id: str,
        content: str | None = None,
        description: str | None = None,
        priority: int | None = None,
        labels: list[str] | None = None,
        due_string: str | None = None,
        ctx: Context | None = None,
    ) -> Task | None:
        """Update a task on the remote and in the cache.

        Returns:
            The updated task if it is known locally or returned by the
            remote, else None.
        """
        result = self._client.update_task(
            task_id,
            content=content,
            description=description,
            priority=priority,
            labels=labels,
            due_string=due_string,
            ctx=ctx,
        )
        task = next((t for t in result.response.items if t.id == task_id), None)
        if task is None:
            task = self._cached_task(task_id)
            if task is None:
                return None
            if content is not None:
                task.content = content
            if description is not None:
                task.description = description
            if priority is not None:
                task.priority = priority
            if labels is not None:
                task.labels = list(labels)
            if due_string:
                task.due = Due(date="", string=due_string)
        updated = task
        self._mirror("update_task", task_id, lambda store: store.upsert_task(updated))
        return task

    def delete_task(self, task_id: str, ctx: Context | None = None) -> None:
        self._client.delete_task(task_id, ctx=ctx)
        self._mirror("delete_task", task_id, lambda store: store.delete_task(task_id))

    def _set_task_completed(self, operation: str, task_id: str, completed: bool) -> None:
        task = self._cached_task(task_id)
        if task is None:
            return
        task.completed_at = datetime.now(UTC) if completed else None
        self._mirror(operation, task_id, lambda store: store.upsert_task(task))

    def close_task(self, task_id: str, ctx: Context | None = None) -> None:
        """Complete a task."""
        self._client.close_task(task_id, ctx=ctx)
        self._set_task_completed("close_task", task_id, completed=True)

    def reopen_task(self, task_id: str, ctx: Context | None = None) -> None:
        """Reopen a completed task."""
        self._client.reopen_task(task_id, ctx=ctx)
        self._set_task_completed("reopen_task", task_id, completed=False)

    # === Project writes ===

    def create_project(
        self,
        name: str,
        color: str | None = None,
        parent_id: str | None = None,
        is_favorite: bool | None = None,
        ctx: Context | None = None,
    ) -> Project:
        """Create a project on the remote and add it to the cache."""
        result = self._client.add_project(
            name, color=color, parent_id=parent_id, is_favorite=is_favorite, ctx=ctx
        )
        project_id = result.entity_id
        project = next((p for p in result.response.projects if p.id == project_id), None)
        if project is None:
            project = Project(
                id=project_id or (result.command.temp_id or ""),
                name=name,
                color=color or "",
                parent_id=parent_id,
                is_favorite=bool(is_favorite),
            )
        if project_id is None:
            logger.warning("Remote returned no id for new project, not caching it")
            return project
        self._mirror(
            "create_project", project.id, lambda store: store.upsert_project(project)
        )
        return project

    def update_project(
        self,
        project_id: str,
        name: str | None = None,
        color: str | None = None,
        is_favorite: bool | None = None,
        ctx: Context | None = None,
    ) -> Project | None:
        """Update a project on the remote and in the cache."""
        result = self._client.update_project(
            project_id, name=name, color=color, is_favorite=is_favorite, ctx=ctx
        )
        project = next(
            (p for p in result.response.projects if p.id == project_id), None
        )
        if project is None:
            project = self._cached_project(project_id)
            if project is None:
                return None
            if name is not None:
                project.name = name
            if color is not None:
                project.color = color
            if is_favorite is not None:
                project.is_favorite = is_favorite
        updated = project
        self._mirror(
            "update_project", project_id, lambda store: store.upsert_project(updated)
        )
        return project

    def delete_project(self, project_id: str, ctx: Context | None = None) -> None:
        """Delete a project with its sections and tasks."""
        self._client.delete_project(project_id, ctx=ctx)

        def apply(store: CacheStore) -> None:
            with store.transaction():
                store.delete_tasks_by_project(project_id)
                store.delete_sections_by_project(project_id)
                store.delete_project(project_id)

        self._mirror("delete_project", project_id, apply)

    def _set_project_archived(self, operation: str, project_id: str, archived: bool) -> None:
        project = self._cached_project(project_id)
        if project is None:
            return
        project.is_archived = archived
        self._mirror(operation, project_id, lambda store: store.upsert_project(project))

    def archive_project(self, project_id: str, ctx: Context | None = None) -> None:
        self._client.archive_project(project_id, ctx=ctx)
        self._set_project_archived("archive_project", project_id, archived=True)

    def unarchive_project(self, project_id: str, ctx: Context | None = None) -> None:
        self._client.unarchive_project(project_id, ctx=ctx)
        self._set_project_archived("unarchive_project", project_id, archived=False)

    # === Section writes ===

    def create_section(
        self, name: str, project_id: str, ctx: Context | None = None
    ) -> Section:
        """Create a section on the remote and add it to the cache."""
        result = self._client.add_section(name, project_id, ctx=ctx)
        section_id = result.entity_id
        section = next((s for s in result.response.sections if s.id == section_id), None)
        if section is None:
            section = Section(
                id=section_id or (result.command.temp_id or ""),
                project_id=project_id,
                name=name,
            )
        if section_id is None:
            logger.warning("Remote returned no id for new section, not caching it")
            return section
        self._mirror(
            "create_section", section.id, lambda store: store.upsert_section(section)
        )
        return section

    def delete_section(self, section_id: str, ctx: Context | None = None) -> None:
        self._client.delete_section(section_id, ctx=ctx)
        self._mirror(
            "delete_section", section_id, lambda store: store.delete_section(section_id)
        )
