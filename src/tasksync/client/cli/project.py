"""Project commands for the tasksync CLI.

Commands:
- project list: List projects (optionally as a tree)
- project add: Create a project
- project update: Edit a project
- project delete: Delete a project with its sections and tasks
- project archive / unarchive: Toggle the archived flag
"""

from __future__ import annotations

import sys

import click
from click.core import ParameterSource

from tasksync.client.cli.config import cli_repository
from tasksync.client.models import Project
from tasksync.client.repository import walk_project_tree


def format_project(project: Project, depth: int = 0) -> str:
    """Format a project as one output line."""
    line = f"{'  ' * depth}{project.name}  [{project.id}]"
    if project.is_favorite:
        line += " *"
    if project.is_archived:
        line += " (archived)"
    return line


@click.group()
def project() -> None:
    """Manage projects."""


@project.command("list")
@click.option("--archived", is_flag=True, help="Include archived projects.")
@click.option("--favorites", is_flag=True, help="Only show favorite projects.")
@click.option("--tree", is_flag=True, help="Show the project hierarchy.")
def project_list(archived: bool, favorites: bool, tree: bool) -> None:
    """List projects."""
    with cli_repository() as repo:
        projects = repo.get_all_projects()
        if not archived:
            projects = [p for p in projects if not p.is_archived]
        if favorites:
            projects = [p for p in projects if p.is_favorite]
        if not projects:
            click.echo("No projects.")
            return
        if tree:
            for item, depth in walk_project_tree(projects):
                click.echo(format_project(item, depth))
        else:
            for item in projects:
                click.echo(format_project(item))


@project.command("add")
@click.argument("name")
@click.option("--color", help="Project color name.")
@click.option("--parent", help="Parent project name or id.")
@click.option("--favorite", is_flag=True, help="Mark as favorite.")
def project_add(
    name: str, color: str | None, parent: str | None, favorite: bool
) -> None:
    """Create a project."""
    with cli_repository() as repo:
        parent_id = repo.find_project_id_by_name(parent) if parent else None
        created = repo.create_project(
            name, color=color, parent_id=parent_id, is_favorite=favorite or None
        )
        click.echo(f"Created project: {created.name} [{created.id}]")


@project.command("update")
@click.argument("ref")
@click.option("--name", help="New project name.")
@click.option("--color", help="New color name.")
@click.option("--favorite/--no-favorite", help="Mark or unmark as favorite.")
@click.pass_context
def project_update(
    click_ctx: click.Context, ref: str, name: str | None, color: str | None, favorite: bool
) -> None:
    """Update a project."""
    favorite_set = (
        click_ctx.get_parameter_source("favorite") is not ParameterSource.DEFAULT
    )
    if not name and not color and not favorite_set:
        click.echo(
            "Error: Nothing to update (use --name, --color or --favorite).", err=True
        )
        sys.exit(1)
    with cli_repository() as repo:
        project_id = repo.find_project_id_by_name(ref)
        updated = repo.update_project(
            project_id,
            name=name or None,
            color=color or None,
            is_favorite=favorite if favorite_set else None,
        )
        if updated is None:
            click.echo(f"Updated project {project_id}")
        else:
            click.echo(f"Updated project: {format_project(updated)}")


@project.command("delete")
@click.argument("ref")
@click.option("--force", "-f", is_flag=True, help="Do not ask for confirmation.")
def project_delete(ref: str, force: bool) -> None:
    """Delete a project, its sections and its tasks."""
    with cli_repository() as repo:
        project_id = repo.find_project_id_by_name(ref)
        if not force:
            click.confirm(
                f"Delete project {project_id} and all its tasks?", abort=True
            )
        repo.delete_project(project_id)
        click.echo(f"Deleted project {project_id}")


@project.command("archive")
@click.argument("ref")
def project_archive(ref: str) -> None:
    """Archive a project."""
    with cli_repository() as repo:
        project_id = repo.find_project_id_by_name(ref)
        repo.archive_project(project_id)
        click.echo(f"Archived project {project_id}")


@project.command("unarchive")
@click.argument("ref")
def project_unarchive(ref: str) -> None:
    """Unarchive a project."""
    with cli_repository() as repo:
        project_id = repo.find_project_id_by_name(ref)
        repo.unarchive_project(project_id)
        click.echo(f"Unarchived project {project_id}")
