"""Sync commands for the tasksync CLI.

Commands:
- sync: Incremental sync (bootstraps on first use)
- sync init: Force a full resync
- sync status: Show sync state and cache contents
- sync reset: Delete all cached data
"""

from __future__ import annotations

import click

from tasksync.client.cli.config import cli_repository
from tasksync.client.sync.types import SyncResult


def _describe(result: SyncResult) -> str:
    if result.skipped:
        return "Already up to date."
    kind = "Full sync" if result.full else "Sync"
    return (
        f"{kind} complete: {result.projects_upserted} projects, "
        f"{result.sections_upserted} sections, {result.tasks_upserted} tasks updated; "
        f"{result.total_deleted} removed."
    )


@click.group(invoke_without_command=True)
@click.pass_context
def sync(click_ctx: click.Context) -> None:
    """Synchronize the local cache with the remote.

    Without a subcommand, fetches the changes since the last sync.
    """
    if click_ctx.invoked_subcommand is not None:
        return
    with cli_repository(initialize=False) as repo:
        result = repo.sync()
        click.echo(_describe(result))


@sync.command("init")
def sync_init() -> None:
    """Rebuild the local cache from a full snapshot."""
    with cli_repository(initialize=False) as repo:
        result = repo.force_initial_sync()
        click.echo(_describe(result))


@sync.command("status")
def sync_status() -> None:
    """Show the sync state of the local cache."""
    with cli_repository(initialize=False) as repo:
        status = repo.get_sync_status()
        click.echo(f"Status: {status}")
        if repo.store is not None:
            counts = repo.store.count()
            click.echo(
                f"Cached: {counts['projects']} projects, "
                f"{counts['sections']} sections, {counts['tasks']} tasks"
            )


@sync.command("reset")
@click.option("--force", "-f", is_flag=True, help="Do not ask for confirmation.")
def sync_reset(force: bool) -> None:
    """Delete all cached data and sync state."""
    if not force:
        click.confirm("Delete all cached data?", abort=True)
    with cli_repository(initialize=False) as repo:
        repo.reset_local_data()
        click.echo("Local cache cleared. Run 'tasksync sync' to fetch everything again.")
