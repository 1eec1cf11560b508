"""Configuration utilities for the tasksync CLI.

This module provides shared configuration functions used across CLI commands:
loading the JSON config file, applying environment overrides, and opening
a Repository for a command.

Config file (<config dir>/config.json):
    {
        "api_token": "...",
        "api_url": "https://api.todoist.com/sync/v9",
        "cache": {"enabled": true, "database_path": "...", ...}
    }

Environment overrides: TASKSYNC_API_TOKEN, TASKSYNC_API_URL, TASKSYNC_DB_PATH.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from tasksync.client.api import APIError
from tasksync.client.cache import LocalStoreError
from tasksync.client.repository import Repository
from tasksync.client.sync.types import InvalidStateError, SyncError
from tasksync.core.config import DEFAULT_API_URL, CacheConfig, RemoteConfig
from tasksync.core.context import CancelledException

ENV_API_TOKEN = "TASKSYNC_API_TOKEN"
ENV_API_URL = "TASKSYNC_API_URL"
ENV_DB_PATH = "TASKSYNC_DB_PATH"

_CACHE_KEYS = (
    "enabled",
    "database_path",
    "initial_sync_on_start",
    "background_sync",
    "auto_sync_interval",
)


class ConfigError(Exception):
    """Configuration is missing or invalid."""


# Errors reported as "Error: ..." with exit code 1
CLI_ERRORS = (
    ConfigError,
    APIError,
    SyncError,
    LocalStoreError,
    InvalidStateError,
    CancelledException,
)


def get_config_dir() -> Path:
    """Get the configuration directory for tasksync.

    Returns:
        $XDG_CONFIG_HOME/tasksync, or ~/.config/tasksync.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "tasksync"
    return Path.home() / ".config" / "tasksync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file.

    Raises:
        ConfigError: If the file is not valid JSON.
    """
    config_file = get_config_file()
    if not config_file.exists():
        return {}
    try:
        data = json.loads(config_file.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid config file {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {config_file}: expected an object")
    return data


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def resolve_token(config: dict[str, Any]) -> tuple[str | None, str]:
    """Find the API token and where it came from.

    Returns:
        (token, source) where source is the environment variable name,
        "config file", or "not set".
    """
    token = os.environ.get(ENV_API_TOKEN)
    if token:
        return token, ENV_API_TOKEN
    token = config.get("api_token")
    if token:
        return token, "config file"
    return None, "not set"


def build_cache_config(config: dict[str, Any]) -> CacheConfig:
    """Build the cache config from file values and TASKSYNC_DB_PATH.

    Raises:
        ConfigError: If a cache value is invalid.
    """
    cache_values = {
        k: v for k, v in (config.get("cache") or {}).items() if k in _CACHE_KEYS
    }
    db_path = os.environ.get(ENV_DB_PATH)
    if db_path:
        cache_values["database_path"] = db_path
    try:
        return CacheConfig(**cache_values)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def build_configs(
    config: dict[str, Any] | None = None,
) -> tuple[RemoteConfig, CacheConfig]:
    """Build the remote and cache configs from file values and environment.

    Args:
        config: Parsed config file (loaded from disk if None).

    Raises:
        ConfigError: If no API token is configured or a value is invalid.
    """
    if config is None:
        config = load_config()

    token, _ = resolve_token(config)
    if not token:
        raise ConfigError(
            f"No API token configured. Set {ENV_API_TOKEN} or add "
            f"'api_token' to {get_config_file()}"
        )
    api_url = os.environ.get(ENV_API_URL) or config.get("api_url") or DEFAULT_API_URL
    try:
        remote = RemoteConfig(token=token, api_url=api_url)
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    return remote, build_cache_config(config)


def open_repository(initialize: bool = True) -> Repository:
    """Open a repository from the current configuration.

    Args:
        initialize: Run Repository.initialize() (bootstrap if needed).
    """
    remote, cache = build_configs()
    repo = Repository.from_config(remote, cache)
    if initialize:
        try:
            repo.initialize()
        except Exception:
            repo.close()
            raise
    return repo


@contextmanager
def cli_repository(initialize: bool = True) -> Iterator[Repository]:
    """Open a repository for a command, reporting known errors and exiting 1."""
    try:
        repo = open_repository(initialize=initialize)
    except CLI_ERRORS as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    try:
        yield repo
    except CLI_ERRORS as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        repo.close()
