"""Tests for entity and sync protocol types."""

from datetime import UTC, datetime

from tasksync.client.models import (
    Command,
    Due,
    Priority,
    Project,
    Section,
    SyncRequest,
    SyncResponse,
    Task,
)


class TestPriority:
    """Tests for Priority enum."""

    def test_values(self) -> None:
        """Should map names to the wire values."""
        assert Priority.NORMAL == 1
        assert Priority.URGENT == 4

    def test_is_valid(self) -> None:
        """Should accept 1-4 only."""
        assert Priority.is_valid(1)
        assert Priority.is_valid(4)
        assert not Priority.is_valid(0)
        assert not Priority.is_valid(5)


class TestProject:
    """Tests for Project dataclass."""

    def test_from_dict(self) -> None:
        """Should create Project from dictionary."""
        project = Project.from_dict(
            {
                "id": "p1",
                "name": "Work",
                "color": "blue",
                "parent_id": None,
                "child_order": 3,
                "is_favorite": True,
                "inbox_project": False,
            }
        )

        assert project.id == "p1"
        assert project.name == "Work"
        assert project.color == "blue"
        assert project.parent_id is None
        assert project.child_order == 3
        assert project.is_favorite
        assert not project.is_archived
        assert not project.is_deleted

    def test_from_dict_numeric_id(self) -> None:
        """Should store ids as strings."""
        project = Project.from_dict({"id": 42, "name": "Legacy"})

        assert project.id == "42"

    def test_empty_parent_is_none(self) -> None:
        """Should treat an empty parent_id as no parent."""
        project = Project.from_dict({"id": "p1", "name": "Top", "parent_id": ""})

        assert project.parent_id is None

    def test_tombstone(self) -> None:
        """Should read the deletion flag."""
        project = Project.from_dict({"id": "p1", "is_deleted": True})

        assert project.is_deleted


class TestSection:
    """Tests for Section dataclass."""

    def test_from_dict(self) -> None:
        """Should create Section from dictionary."""
        section = Section.from_dict(
            {"id": "s1", "project_id": "p1", "name": "Backlog", "section_order": 2}
        )

        assert section.id == "s1"
        assert section.project_id == "p1"
        assert section.name == "Backlog"
        assert section.section_order == 2
        assert not section.collapsed

    def test_null_project_id(self) -> None:
        """Should map a null project_id to an empty string."""
        section = Section.from_dict({"id": "s1", "project_id": None, "name": "x"})

        assert section.project_id == ""


class TestTask:
    """Tests for Task dataclass."""

    def test_from_dict(self) -> None:
        """Should create Task with due date, labels and timestamps."""
        task = Task.from_dict(
            {
                "id": "t1",
                "project_id": "p1",
                "content": "Write report",
                "description": "Quarterly",
                "priority": 4,
                "labels": ["work", "urgent"],
                "due": {
                    "date": "2026-01-31",
                    "string": "jan 31",
                    "lang": "en",
                    "is_recurring": False,
                },
                "added_at": "2026-01-01T10:00:00Z",
                "completed_at": None,
            }
        )

        assert task.id == "t1"
        assert task.priority == Priority.URGENT
        assert task.labels == ["work", "urgent"]
        assert task.due == Due(date="2026-01-31", string="jan 31", lang="en")
        assert task.added_at == datetime(2026, 1, 1, 10, 0, 0, tzinfo=UTC)
        assert task.completed_at is None
        assert not task.is_completed

    def test_defaults(self) -> None:
        """Should fill missing optional fields."""
        task = Task.from_dict({"id": "t1", "project_id": "p1", "content": "x"})

        assert task.priority == 1
        assert task.labels == []
        assert task.due is None
        assert task.section_id is None

    def test_null_project_id(self) -> None:
        """Should map a null project_id to an empty string."""
        task = Task.from_dict({"id": "t1", "project_id": None, "content": "x"})

        assert task.project_id == ""

    def test_completed(self) -> None:
        """Should report completion from completed_at."""
        task = Task.from_dict(
            {
                "id": "t1",
                "project_id": "p1",
                "content": "x",
                "completed_at": "2026-02-01T08:00:00+00:00",
            }
        )

        assert task.is_completed

    def test_to_dict_keeps_label_order(self) -> None:
        """Should serialize labels in their original order."""
        task = Task(id="t1", project_id="p1", content="x", labels=["b", "a", "c"])

        assert task.to_dict()["labels"] == ["b", "a", "c"]


class TestSyncRequest:
    """Tests for SyncRequest."""

    def test_defaults_to_full_sync_of_all_resources(self) -> None:
        """Should request every resource type with the full sync token."""
        data = SyncRequest().to_dict()

        assert data == {
            "sync_token": "*",
            "resource_types": ["projects", "sections", "items"],
        }

    def test_includes_commands(self) -> None:
        """Should serialize commands with their temp_id."""
        command = Command(
            type="item_add", uuid="u1", args={"content": "x"}, temp_id="tmp1"
        )
        data = SyncRequest(resource_types=[], commands=[command]).to_dict()

        assert data["commands"] == [
            {"type": "item_add", "uuid": "u1", "args": {"content": "x"}, "temp_id": "tmp1"}
        ]


class TestSyncResponse:
    """Tests for SyncResponse."""

    def test_from_dict(self) -> None:
        """Should parse entities, mapping and statuses."""
        response = SyncResponse.from_dict(
            {
                "sync_token": "tok1",
                "full_sync": True,
                "projects": [{"id": "p1", "name": "Inbox"}],
                "sections": [],
                "items": [{"id": "t1", "project_id": "p1", "content": "x"}],
                "temp_id_mapping": {"tmp1": "t1"},
                "sync_status": {"u1": "ok"},
            }
        )

        assert response.sync_token == "tok1"
        assert response.full_sync
        assert [p.id for p in response.projects] == ["p1"]
        assert [t.id for t in response.items] == ["t1"]
        assert response.temp_id_mapping == {"tmp1": "t1"}
        assert response.sync_status == {"u1": "ok"}
        assert response.has_changes

    def test_empty_delta(self) -> None:
        """Should report no changes for an empty delta."""
        response = SyncResponse.from_dict({"sync_token": "tok2", "full_sync": False})

        assert not response.has_changes
        assert response.projects == []
