"""Command-line interface for tasksync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- sync: Synchronize the local cache (init, status, reset)
- project: List and manage projects
- task: List and manage tasks
- config: Show or create the configuration file
"""

from __future__ import annotations

import logging
import sys

import click

from tasksync.client.cli.config import (
    build_configs,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from tasksync.client.cli.project import project
from tasksync.client.cli.settings import config_group
from tasksync.client.cli.sync import sync
from tasksync.client.cli.task import task

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbosity: int = 0) -> None:
    """Configure the tasksync logger.

    Args:
        verbosity: 0 for warnings, 1 for info, 2+ for debug.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logger = logging.getLogger("tasksync")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


@click.group()
@click.version_option(package_name="tasksync")
@click.option("--verbose", "-v", count=True, help="Increase log output (-v, -vv).")
def cli(verbose: int) -> None:
    """tasksync - Local-first task manager client."""
    setup_logging(verbose)


cli.add_command(sync)
cli.add_command(project)
cli.add_command(task)
cli.add_command(config_group)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "build_configs",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
