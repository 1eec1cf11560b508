"""HTTP client for the remote task service.

This module provides:
- TodoClient: HTTP client for the sync endpoint
- Delta reads (sync) and write commands (item_*, project_*, section_*)
- Read proxies used when the local cache is disabled
- APIError hierarchy mapping transport and HTTP failures
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from tasksync.client.models import (
    FULL_SYNC_TOKEN,
    RESOURCE_ITEMS,
    RESOURCE_PROJECTS,
    RESOURCE_SECTIONS,
    Command,
    Project,
    Section,
    SyncRequest,
    SyncResponse,
    Task,
)
from tasksync.core.config import RemoteConfig
from tasksync.core.context import Context

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(APIError):
    """Remote could not be reached or failed on its side (timeout, 5xx)."""


class RemoteRejectedError(APIError):
    """Remote refused the request or one of its commands (4xx)."""


class AuthenticationError(RemoteRejectedError):
    """Authentication failed."""


class NotFoundError(RemoteRejectedError):
    """Resource not found."""


class RateLimitError(RemoteRejectedError):
    """Too many requests."""


class ValidationError(APIError, ValueError):
    """Command arguments are invalid; nothing was sent."""


def _require(value: str | None, what: str) -> None:
    """Reject empty or blank required arguments before sending."""
    if not value or not value.strip():
        raise ValidationError(f"{what} is required")


def _error_for_status(status_code: int, message: str) -> APIError:
    """Build the exception matching an HTTP status code."""
    if status_code in (401, 403):
        return AuthenticationError(message, status_code)
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code == 429:
        return RateLimitError(message, status_code)
    if status_code >= 500:
        return RemoteUnavailableError(message, status_code)
    return RemoteRejectedError(message, status_code)


@dataclass
class CommandResult:
    """Outcome of a single accepted write command."""

    command: Command
    response: SyncResponse

    @property
    def entity_id(self) -> str | None:
        """Canonical id of the entity the command touched.

        For creates this is the id the remote assigned to the temp_id.
        """
        if self.command.temp_id:
            return self.response.temp_id_mapping.get(self.command.temp_id)
        entity_id = self.command.args.get("id")
        return str(entity_id) if entity_id is not None else None


class TodoClient:
    """HTTP client for the task service sync API."""

    def __init__(self, config: RemoteConfig) -> None:
        """Initialize the client.

        Args:
            config: Remote endpoint, token and timeout.
        """
        self._timeout = config.timeout
        self._client = httpx.Client(
            base_url=config.api_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )
        self._closed = False

    def close(self) -> None:
        """Close the HTTP client."""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    def __enter__(self) -> TodoClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code < 400:
            return response
        try:
            body = response.json()
            detail = body.get("error") or body.get("detail") or response.reason_phrase
        except (ValueError, AttributeError):
            detail = response.text or response.reason_phrase
        raise _error_for_status(response.status_code, str(detail))

    def _request_timeout(self, ctx: Context | None) -> float:
        """Request timeout bounded by the context deadline."""
        if ctx is None:
            return self._timeout
        remaining = ctx.remaining()
        if remaining is None:
            return self._timeout
        return min(self._timeout, remaining)

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the remote is reachable and accepts the token.

        Returns:
            True if an empty sync call succeeds.
        """
        try:
            self.sync(SyncRequest(resource_types=[]))
            return True
        except APIError:
            return False

    # === Sync ===

    def sync(self, request: SyncRequest, ctx: Context | None = None) -> SyncResponse:
        """Send a sync request.

        Args:
            request: Token, resource types and optional commands.
            ctx: Cancellation context; checked before sending and used to
                bound the request timeout.

        Returns:
            Parsed sync response.

        Raises:
            CancelledException: If ctx was cancelled or expired.
            RemoteUnavailableError: On transport errors, timeouts and 5xx.
            RemoteRejectedError: On 4xx responses and on bodies that do not
                parse as a sync reply.
        """
        if ctx is not None:
            ctx.check()
        logger.debug(
            "Sync request: token=%s resources=%s commands=%d",
            request.sync_token[:8],
            request.resource_types,
            len(request.commands),
        )
        try:
            response = self._client.post(
                "/sync",
                json=request.to_dict(),
                timeout=self._request_timeout(ctx),
            )
        except httpx.TimeoutException as e:
            raise RemoteUnavailableError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise RemoteUnavailableError(f"Request failed: {e}") from e
        self._handle_response(response)
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteUnavailableError(
                "Invalid JSON in sync response", response.status_code
            ) from e
        try:
            return SyncResponse.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise RemoteRejectedError(
                f"Malformed sync response: {e!r}", response.status_code
            ) from e

    def execute(
        self, command: Command, ctx: Context | None = None
    ) -> CommandResult:
        """Send one write command and check its status.

        No resource types are requested, so the stored sync token of the
        cache is neither needed nor affected.

        Raises:
            RemoteRejectedError: If the remote rejected the command.
        """
        response = self.sync(
            SyncRequest(
                sync_token=FULL_SYNC_TOKEN,
                resource_types=[],
                commands=[command],
            ),
            ctx,
        )
        status = response.sync_status.get(command.uuid, "ok")
        if status != "ok":
            if isinstance(status, dict):
                message = status.get("error") or f"Command {command.type} rejected"
                error = _error_for_status(int(status.get("http_code") or 400), message)
            else:
                error = RemoteRejectedError(
                    f"Command {command.type} rejected: {status}", 400
                )
            logger.debug("Command %s (%s) rejected: %s", command.type, command.uuid, status)
            raise error
        return CommandResult(command=command, response=response)

    def _command(
        self,
        command_type: str,
        args: dict[str, Any],
        ctx: Context | None,
        create: bool = False,
    ) -> CommandResult:
        """Build and execute a command, skipping None-valued args."""
        command = Command(
            type=command_type,
            uuid=str(uuid.uuid4()),
            args={k: v for k, v in args.items() if v is not None},
            temp_id=str(uuid.uuid4()) if create else None,
        )
        return self.execute(command, ctx)

    # === Read proxies ===

    def _fetch(self, resource: str, ctx: Context | None) -> SyncResponse:
        return self.sync(
            SyncRequest(sync_token=FULL_SYNC_TOKEN, resource_types=[resource]), ctx
        )

    def get_all_projects(self, ctx: Context | None = None) -> list[Project]:
        """Fetch every live project from the remote."""
        response = self._fetch(RESOURCE_PROJECTS, ctx)
        return [p for p in response.projects if not p.is_deleted]

    def get_project(self, project_id: str, ctx: Context | None = None) -> Project:
        """Fetch a project by id.

        Raises:
            NotFoundError: If no live project has this id.
        """
        for project in self.get_all_projects(ctx):
            if project.id == project_id:
                return project
        raise NotFoundError(f"Project not found: {project_id}", 404)

    def get_all_sections(self, ctx: Context | None = None) -> list[Section]:
        """Fetch every live section from the remote."""
        response = self._fetch(RESOURCE_SECTIONS, ctx)
        return [s for s in response.sections if not s.is_deleted]

    def get_sections_by_project(
        self, project_id: str, ctx: Context | None = None
    ) -> list[Section]:
        """Fetch the live sections of one project."""
        return [s for s in self.get_all_sections(ctx) if s.project_id == project_id]

    def get_tasks(self, ctx: Context | None = None) -> list[Task]:
        """Fetch every live task from the remote."""
        response = self._fetch(RESOURCE_ITEMS, ctx)
        return [t for t in response.items if not t.is_deleted]

    def get_tasks_by_project(
        self, project_id: str, ctx: Context | None = None
    ) -> list[Task]:
        """Fetch the live tasks of one project."""
        return [t for t in self.get_tasks(ctx) if t.project_id == project_id]

    def get_task(self, task_id: str, ctx: Context | None = None) -> Task:
        """Fetch a task by id.

        Raises:
            NotFoundError: If no live task has this id.
        """
        for task in self.get_tasks(ctx):
            if task.id == task_id:
                return task
        raise NotFoundError(f"Task not found: {task_id}", 404)

    # === Task commands ===

    def add_task(
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
    ) -> CommandResult:
        """Create a task.

        Returns:
            Result whose entity_id is the canonical id of the new task.
        """
        _require(content, "Task content")
        return self._command(
            "item_add",
            {
                "content": content,
                "project_id": project_id,
                "description": description,
                "priority": priority,
                "labels": labels,
                "due": {"string": due_string} if due_string else None,
                "section_id": section_id,
                "parent_id": parent_id,
            },
            ctx,
            create=True,
        )

    def update_task(
        self,
        task_id: str,
        content: str | None = None,
        description: str | None = None,
        priority: int | None = None,
        labels: list[str] | None = None,
        due_string: str | None = None,
        ctx: Context | None = None,
    ) -> CommandResult:
        """Update fields of a task. None leaves a field unchanged."""
        _require(task_id, "Task ID")
        return self._command(
            "item_update",
            {
                "id": task_id,
                "content": content,
                "description": description,
                "priority": priority,
                "labels": labels,
                "due": {"string": due_string} if due_string else None,
            },
            ctx,
        )

    def delete_task(self, task_id: str, ctx: Context | None = None) -> CommandResult:
        """Delete a task."""
        _require(task_id, "Task ID")
        return self._command("item_delete", {"id": task_id}, ctx)

    def close_task(self, task_id: str, ctx: Context | None = None) -> CommandResult:
        """Mark a task completed."""
        _require(task_id, "Task ID")
        return self._command("item_complete", {"id": task_id}, ctx)

    def reopen_task(self, task_id: str, ctx: Context | None = None) -> CommandResult:
        """Mark a completed task active again."""
        _require(task_id, "Task ID")
        return self._command("item_uncomplete", {"id": task_id}, ctx)

    # === Project commands ===

    def add_project(
        self,
        name: str,
        color: str | None = None,
        parent_id: str | None = None,
        is_favorite: bool | None = None,
        ctx: Context | None = None,
    ) -> CommandResult:
        """Create a project.

        Returns:
            Result whose entity_id is the canonical id of the new project.
        """
        _require(name, "Project name")
        return self._command(
            "project_add",
            {
                "name": name,
                "color": color,
                "parent_id": parent_id,
                "is_favorite": is_favorite,
            },
            ctx,
            create=True,
        )

    def update_project(
        self,
        project_id: str,
        name: str | None = None,
        color: str | None = None,
        is_favorite: bool | None = None,
        ctx: Context | None = None,
    ) -> CommandResult:
        """Update fields of a project. None leaves a field unchanged."""
        _require(project_id, "Project ID")
        return self._command(
            "project_update",
            {
                "id": project_id,
                "name": name,
                "color": color,
                "is_favorite": is_favorite,
            },
            ctx,
        )

    def delete_project(
        self, project_id: str, ctx: Context | None = None
    ) -> CommandResult:
        """Delete a project with its sections and tasks."""
        _require(project_id, "Project ID")
        return self._command("project_delete", {"id": project_id}, ctx)

    def archive_project(
        self, project_id: str, ctx: Context | None = None
    ) -> CommandResult:
        """Archive a project."""
        _require(project_id, "Project ID")
        return self._command("project_archive", {"id": project_id}, ctx)

    def unarchive_project(
        self, project_id: str, ctx: Context | None = None
    ) -> CommandResult:
        """Unarchive a project."""
        _require(project_id, "Project ID")
        return self._command("project_unarchive", {"id": project_id}, ctx)

    # === Section commands ===

    def add_section(
        self, name: str, project_id: str, ctx: Context | None = None
    ) -> CommandResult:
        """Create a section in a project."""
        _require(name, "Section name")
        _require(project_id, "Project ID")
        return self._command(
            "section_add",
            {"name": name, "project_id": project_id},
            ctx,
            create=True,
        )

    def delete_section(
        self, section_id: str, ctx: Context | None = None
    ) -> CommandResult:
        """Delete a section with its tasks."""
        _require(section_id, "Section ID")
        return self._command("section_delete", {"id": section_id}, ctx)
