"""Entity and wire types for the task service.

This module provides:
- Project, Section, Task, Due: Entities mirrored in the local cache
- Priority: Task priority levels (1 = normal, 4 = urgent)
- Command, SyncRequest, SyncResponse: Sync protocol payloads

Every entity carries an is_deleted flag. The remote sets it on tombstones
in a delta; rows stored in the cache always have it False.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any

FULL_SYNC_TOKEN = "*"

RESOURCE_PROJECTS = "projects"
RESOURCE_SECTIONS = "sections"
RESOURCE_ITEMS = "items"

# Always requested together so one token covers every entity type.
SYNC_RESOURCE_TYPES = [RESOURCE_PROJECTS, RESOURCE_SECTIONS, RESOURCE_ITEMS]


class Priority(IntEnum):
    """Task priority as used by the remote service."""

    NORMAL = 1
    MEDIUM = 2
    HIGH = 3
    URGENT = 4

    @classmethod
    def is_valid(cls, value: int) -> bool:
        """Check if value is a known priority level."""
        return value in cls._value2member_map_


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp, returning None for empty values."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def format_datetime(value: datetime | None) -> str | None:
    """Format a timestamp as ISO 8601, or None."""
    if value is None:
        return None
    return value.isoformat()


@dataclass
class Due:
    """Due date of a task.

    Attributes:
        date: Structured date ("2026-01-31" or a full timestamp).
        string: Human text the date was parsed from ("every friday").
        lang: Language of the human text.
        is_recurring: Whether the due date repeats.
        timezone: Timezone for timestamps, if any.
    """

    date: str
    string: str = ""
    lang: str = ""
    is_recurring: bool = False
    timezone: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Due:
        """Create from API response dictionary."""
        return cls(
            date=data.get("date") or "",
            string=data.get("string") or "",
            lang=data.get("lang") or "",
            is_recurring=bool(data.get("is_recurring", False)),
            timezone=data.get("timezone"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to API dictionary."""
        return {
            "date": self.date,
            "string": self.string,
            "lang": self.lang,
            "is_recurring": self.is_recurring,
            "timezone": self.timezone,
        }


@dataclass
class Project:
    """Project from the remote service.

    Projects form a tree through parent_id.
    """

    id: str
    name: str
    color: str = ""
    parent_id: str | None = None
    child_order: int = 0
    is_archived: bool = False
    is_favorite: bool = False
    shared: bool = False
    inbox_project: bool = False
    is_deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        """Create from API response dictionary."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            color=data.get("color") or "",
            parent_id=data.get("parent_id") or None,
            child_order=data.get("child_order") or 0,
            is_archived=bool(data.get("is_archived", False)),
            is_favorite=bool(data.get("is_favorite", False)),
            shared=bool(data.get("shared", False)),
            inbox_project=bool(data.get("inbox_project", False)),
            is_deleted=bool(data.get("is_deleted", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to API dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "parent_id": self.parent_id,
            "child_order": self.child_order,
            "is_archived": self.is_archived,
            "is_favorite": self.is_favorite,
            "shared": self.shared,
            "inbox_project": self.inbox_project,
            "is_deleted": self.is_deleted,
        }


@dataclass
class Section:
    """Section grouping tasks inside a project."""

    id: str
    project_id: str
    name: str
    section_order: int = 0
    collapsed: bool = False
    is_deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Section:
        """Create from API response dictionary."""
        return cls(
            id=str(data["id"]),
            project_id=str(data.get("project_id") or ""),
            name=data.get("name", ""),
            section_order=data.get("section_order") or 0,
            collapsed=bool(data.get("collapsed", False)),
            is_deleted=bool(data.get("is_deleted", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to API dictionary."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "section_order": self.section_order,
            "collapsed": self.collapsed,
            "is_deleted": self.is_deleted,
        }


@dataclass
class Task:
    """Task (called "item" on the wire).

    Attributes:
        id: Server-assigned identifier.
        project_id: Owning project.
        content: Task title.
        description: Free-form notes.
        priority: 1 (normal) to 4 (urgent).
        labels: Ordered label names.
        due: Due date, if any.
        section_id: Owning section, if any.
        parent_id: Parent task for subtasks.
        child_order: Position among siblings.
        added_at: Creation time.
        completed_at: Completion time, None while the task is active.
        is_deleted: Tombstone flag.
    """

    id: str
    project_id: str
    content: str
    description: str = ""
    priority: int = Priority.NORMAL
    labels: list[str] = field(default_factory=list)
    due: Due | None = None
    section_id: str | None = None
    parent_id: str | None = None
    child_order: int = 0
    added_at: datetime | None = None
    completed_at: datetime | None = None
    is_deleted: bool = False

    @property
    def is_completed(self) -> bool:
        """Check if the task has been completed."""
        return self.completed_at is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Create from API response dictionary."""
        return cls(
            id=str(data["id"]),
            project_id=str(data.get("project_id") or ""),
            content=data.get("content", ""),
            description=data.get("description") or "",
            priority=data.get("priority") or Priority.NORMAL,
            labels=list(data.get("labels") or []),
            due=Due.from_dict(data["due"]) if data.get("due") else None,
            section_id=data.get("section_id") or None,
            parent_id=data.get("parent_id") or None,
            child_order=data.get("child_order") or 0,
            added_at=parse_datetime(data.get("added_at")),
            completed_at=parse_datetime(data.get("completed_at")),
            is_deleted=bool(data.get("is_deleted", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to API dictionary."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "content": self.content,
            "description": self.description,
            "priority": int(self.priority),
            "labels": list(self.labels),
            "due": self.due.to_dict() if self.due else None,
            "section_id": self.section_id,
            "parent_id": self.parent_id,
            "child_order": self.child_order,
            "added_at": format_datetime(self.added_at),
            "completed_at": format_datetime(self.completed_at),
            "is_deleted": self.is_deleted,
        }


Entity = Project | Section | Task


# === Sync protocol ===


@dataclass
class Command:
    """Write command sent through the sync endpoint.

    The uuid identifies the command in the response's sync_status.
    temp_id is the placeholder id of a created entity; the response maps it
    to the canonical id in temp_id_mapping.
    """

    type: str
    uuid: str
    args: dict[str, Any] = field(default_factory=dict)
    temp_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to API dictionary."""
        data: dict[str, Any] = {
            "type": self.type,
            "uuid": self.uuid,
            "args": self.args,
        }
        if self.temp_id:
            data["temp_id"] = self.temp_id
        return data


@dataclass
class SyncRequest:
    """Body of a sync call."""

    sync_token: str = FULL_SYNC_TOKEN
    resource_types: list[str] = field(
        default_factory=lambda: list(SYNC_RESOURCE_TYPES)
    )
    commands: list[Command] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to API dictionary."""
        data: dict[str, Any] = {
            "sync_token": self.sync_token,
            "resource_types": list(self.resource_types),
        }
        if self.commands:
            data["commands"] = [c.to_dict() for c in self.commands]
        return data


@dataclass
class SyncResponse:
    """Body of a sync reply.

    Attributes:
        sync_token: Cursor to send on the next incremental request.
        full_sync: True when the reply is a complete snapshot.
        projects, sections, items: Changed (or tombstoned) entities.
        temp_id_mapping: Placeholder id -> canonical id for created entities.
        sync_status: Command uuid -> "ok" or an error object.
    """

    sync_token: str
    full_sync: bool = False
    projects: list[Project] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    items: list[Task] = field(default_factory=list)
    temp_id_mapping: dict[str, str] = field(default_factory=dict)
    sync_status: dict[str, Any] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        """Check if the reply carries any entity."""
        return bool(self.projects or self.sections or self.items)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncResponse:
        """Create from API response dictionary."""
        return cls(
            sync_token=data.get("sync_token") or "",
            full_sync=bool(data.get("full_sync", False)),
            projects=[Project.from_dict(p) for p in data.get("projects") or []],
            sections=[Section.from_dict(s) for s in data.get("sections") or []],
            items=[Task.from_dict(i) for i in data.get("items") or []],
            temp_id_mapping={
                str(k): str(v) for k, v in (data.get("temp_id_mapping") or {}).items()
            },
            sync_status=dict(data.get("sync_status") or {}),
        )
