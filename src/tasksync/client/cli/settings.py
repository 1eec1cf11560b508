"""Configuration commands for the tasksync CLI.

Commands:
- config show: Show the effective configuration (default)
- config path: Print the config file location
- config init: Write a starter config file
"""

from __future__ import annotations

import os
import sys

import click

from tasksync.client.cli.config import (
    ENV_API_TOKEN,
    ENV_API_URL,
    ConfigError,
    build_cache_config,
    get_config_file,
    load_config,
    resolve_token,
    save_config,
)
from tasksync.core.config import DEFAULT_API_URL, DEFAULT_AUTO_SYNC_INTERVAL

TOKEN_URL = "https://app.todoist.com/app/settings/integrations/developer"


def mask_token(token: str | None) -> str:
    """Hide all but the ends of a token."""
    if not token:
        return "(not set)"
    if len(token) < 12:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


@click.group("config", invoke_without_command=True)
@click.pass_context
def config_group(click_ctx: click.Context) -> None:
    """Show or create the tasksync configuration.

    Environment variables (TASKSYNC_API_TOKEN, TASKSYNC_API_URL,
    TASKSYNC_DB_PATH) take precedence over the config file.
    """
    if click_ctx.invoked_subcommand is None:
        click_ctx.invoke(config_show)


@config_group.command("show")
def config_show() -> None:
    """Show the effective configuration."""
    try:
        values = load_config()
        cache = build_cache_config(values)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    token, source = resolve_token(values)
    api_url = os.environ.get(ENV_API_URL) or values.get("api_url") or DEFAULT_API_URL

    click.echo("Current configuration:")
    origin = f" [{source}]" if token else ""
    click.echo(f"  API token: {mask_token(token)}{origin}")
    click.echo(f"  API URL:   {api_url}")
    click.echo(f"  Database:  {cache.database_path}")
    click.echo(f"  Cache:     {'enabled' if cache.enabled else 'disabled'}")
    if cache.background_sync:
        click.echo(f"  Background sync: every {cache.auto_sync_interval:g}s")
    else:
        click.echo("  Background sync: off")

    config_file = get_config_file()
    missing = "" if config_file.exists() else " (not created)"
    click.echo(f"\nConfiguration file: {config_file}{missing}")


@config_group.command("path")
def config_path() -> None:
    """Print the path of the config file."""
    click.echo(str(get_config_file()))


@config_group.command("init")
@click.option("--token", help="API token to store in the file.")
def config_init(token: str | None) -> None:
    """Create a config file with default values.

    An existing file is left untouched.
    """
    config_file = get_config_file()
    if config_file.exists():
        click.echo(f"Configuration file already exists: {config_file}")
        return

    save_config(
        {
            "api_token": token or "",
            "api_url": DEFAULT_API_URL,
            "cache": {
                "enabled": True,
                "initial_sync_on_start": True,
                "background_sync": False,
                "auto_sync_interval": DEFAULT_AUTO_SYNC_INTERVAL,
            },
        }
    )
    click.echo(f"Configuration file created: {config_file}")
    if not token:
        click.echo("\nNext steps:")
        click.echo(f"1. Add your API token to {config_file}")
        click.echo(f"2. Or set the {ENV_API_TOKEN} environment variable")
        click.echo(f"3. Get your API token from: {TOKEN_URL}")
