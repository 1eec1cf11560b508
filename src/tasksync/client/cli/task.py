"""Task commands for the tasksync CLI.

Commands:
- task list: List tasks
- task add / update: Create or edit a task
- task done / reopen: Complete or reopen a task
- task delete: Delete a task
"""

from __future__ import annotations

import sys

import click

from tasksync.client.cli.config import cli_repository
from tasksync.client.models import Task

PRIORITY = click.IntRange(1, 4)


def format_task(task: Task) -> str:
    """Format a task as one output line."""
    mark = "x" if task.is_completed else " "
    line = f"[{mark}] {task.id}  p{int(task.priority)}  {task.content}"
    if task.due is not None:
        line += f"  (due: {task.due.string or task.due.date})"
    if task.labels:
        line += "  " + " ".join(f"@{label}" for label in task.labels)
    return line


def matches_filter(task: Task, query: str) -> bool:
    """Check a task against a quick filter.

    Supported forms (case-insensitive):
        p1-p4: Priority level.
        today, tomorrow, overdue: Matched against the due date text.
        @label: Any label containing the text.
        anything else: Keyword in the content or description.
    """
    query = query.strip().lower()
    if query in ("p1", "p2", "p3", "p4"):
        return task.priority == int(query[1])
    if query in ("today", "tomorrow", "overdue"):
        return task.due is not None and query in task.due.string.lower()
    if query.startswith("@"):
        label = query[1:]
        return any(label in name.lower() for name in task.labels)
    return query in task.content.lower() or query in task.description.lower()


@click.group()
def task() -> None:
    """Manage tasks."""


@task.command("list")
@click.option("--project", "project_ref", help="Only tasks of this project (name or id).")
@click.option("--all", "show_all", is_flag=True, help="Include completed tasks.")
@click.option("--priority", type=PRIORITY, help="Only tasks with this priority.")
@click.option(
    "--filter", "query", help="Quick filter: p1-p4, today, @label or a keyword."
)
def task_list(
    project_ref: str | None, show_all: bool, priority: int | None, query: str | None
) -> None:
    """List active tasks."""
    with cli_repository() as repo:
        if project_ref:
            project_id = repo.find_project_id_by_name(project_ref)
            tasks = repo.get_tasks_by_project(project_id, include_completed=show_all)
        else:
            tasks = repo.get_tasks(include_completed=show_all)
        if priority is not None:
            tasks = [t for t in tasks if t.priority == priority]
        if query:
            tasks = [t for t in tasks if matches_filter(t, query)]
        if not tasks:
            click.echo("No tasks.")
            return
        for item in tasks:
            click.echo(format_task(item))


@task.command("add")
@click.argument("content")
@click.option("--project", "project_ref", help="Project name or id (default: Inbox).")
@click.option("--priority", type=PRIORITY, help="1 (normal) to 4 (urgent).")
@click.option("--label", "labels", multiple=True, help="Label name (repeatable).")
@click.option("--due", help='Due date in natural language, e.g. "tomorrow".')
@click.option("--description", help="Task description.")
def task_add(
    content: str,
    project_ref: str | None,
    priority: int | None,
    labels: tuple[str, ...],
    due: str | None,
    description: str | None,
) -> None:
    """Create a task."""
    with cli_repository() as repo:
        project_id = repo.find_project_id_by_name(project_ref) if project_ref else None
        created = repo.create_task(
            content,
            project_id=project_id,
            description=description,
            priority=priority,
            labels=list(labels) or None,
            due_string=due,
        )
        click.echo(f"Created task: {format_task(created)}")


@task.command("update")
@click.argument("task_id")
@click.option("--content", help="New content.")
@click.option("--priority", type=PRIORITY, help="1 (normal) to 4 (urgent).")
@click.option("--label", "labels", multiple=True, help="Replace labels (repeatable).")
@click.option("--due", help="New due date in natural language.")
@click.option("--description", help="New description.")
def task_update(
    task_id: str,
    content: str | None,
    priority: int | None,
    labels: tuple[str, ...],
    due: str | None,
    description: str | None,
) -> None:
    """Update a task."""
    if not any([content, priority, labels, due, description is not None]):
        click.echo("Error: Nothing to update.", err=True)
        sys.exit(1)
    with cli_repository() as repo:
        updated = repo.update_task(
            task_id,
            content=content,
            description=description,
            priority=priority,
            labels=list(labels) if labels else None,
            due_string=due,
        )
        if updated is None:
            click.echo(f"Updated task {task_id}")
        else:
            click.echo(f"Updated task: {format_task(updated)}")


@task.command("done")
@click.argument("task_id")
def task_done(task_id: str) -> None:
    """Complete a task."""
    with cli_repository() as repo:
        repo.close_task(task_id)
        click.echo(f"Completed task {task_id}")


@task.command("reopen")
@click.argument("task_id")
def task_reopen(task_id: str) -> None:
    """Reopen a completed task."""
    with cli_repository() as repo:
        repo.reopen_task(task_id)
        click.echo(f"Reopened task {task_id}")


@task.command("delete")
@click.argument("task_id")
@click.option("--force", "-f", is_flag=True, help="Do not ask for confirmation.")
def task_delete(task_id: str, force: bool) -> None:
    """Delete a task."""
    if not force:
        click.confirm(f"Delete task {task_id}?", abort=True)
    with cli_repository() as repo:
        repo.delete_task(task_id)
        click.echo(f"Deleted task {task_id}")
