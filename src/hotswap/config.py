"""
Configuration management for hotswap.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/hotswap/config.yml or --config path)
3. Environment variables (HOTSWAP_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/hotswap/config.yml")
DEFAULT_ENV_PREFIX = "HOTSWAP_"

_REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Emit JSON lines instead of plain text.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Emit one JSON object per log line",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Release Registry Configuration
# =============================================================================


class RegistryConfig(BaseModel):
    """GitHub Releases registry configuration.

    Attributes:
        api_url: Base URL of the GitHub REST API.
        repository: Upstream project identity as "owner/name".
        token: Optional API token (raises the anonymous rate limit).
        connect_timeout_seconds: Connection timeout for registry calls.
        read_timeout_seconds: Read timeout for registry calls.
    """

    api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API",
    )
    repository: str = Field(
        default="hotswap-dev/hotswap",
        description="Upstream repository as 'owner/name'",
    )
    token: str | None = Field(
        default=None,
        description="Optional GitHub token",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Connection timeout in seconds",
    )
    read_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Read timeout in seconds",
    )

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Validate the owner/name repository identity."""
        if not _REPOSITORY_PATTERN.match(v):
            raise ValueError(
                f"Invalid repository: {v}. Expected the form 'owner/name'"
            )
        return v

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Strip the trailing slash from the API URL."""
        return v.rstrip("/")


# =============================================================================
# Local Repository Configuration
# =============================================================================


class RepositoryConfig(BaseModel):
    """Local artifact cache configuration.

    Attributes:
        cache_dir_name: Name of the cache directory under the run directory.
        artifact_extension: File extension identifying release artifacts.
    """

    cache_dir_name: str = Field(
        default=".jar",
        description="Cache directory name under the run directory",
    )
    artifact_extension: str = Field(
        default=".pyz",
        description="Extension of release artifact files",
    )

    @field_validator("artifact_extension")
    @classmethod
    def validate_artifact_extension(cls, v: str) -> str:
        """Validate the artifact extension starts with a dot."""
        if not v.startswith(".") or len(v) < 2:
            raise ValueError(
                f"Invalid artifact extension: {v}. Must start with '.', e.g. '.pyz'"
            )
        return v.lower()


# =============================================================================
# Download Configuration
# =============================================================================


class DownloadConfig(BaseModel):
    """Artifact download configuration.

    Attributes:
        chunk_size_bytes: Size of the chunks written to disk.
        timeout_seconds: Overall timeout for one artifact transfer.
    """

    chunk_size_bytes: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Streaming chunk size in bytes",
    )
    timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Download timeout in seconds",
    )


# =============================================================================
# Version Switch Configuration
# =============================================================================


class SwitchConfig(BaseModel):
    """Version switch configuration.

    Attributes:
        run_dir: Directory holding the cache and the backup. Defaults to the
            directory of the running artifact.
        backup_name: File name of the single retained backup.
        deletion_delay_seconds: Grace period before the old artifact is removed.
        current_version: Version of the running application.
    """

    run_dir: str | None = Field(
        default=None,
        description="Run directory (defaults to the running artifact's directory)",
    )
    backup_name: str = Field(
        default="app-ori-bak.pyz",
        description="Backup file name",
    )
    deletion_delay_seconds: int = Field(
        default=10,
        ge=1,
        le=3600,
        description="Delay before deleting the replaced artifact",
    )
    current_version: str | None = Field(
        default=None,
        description="Version of the running application",
    )

    @field_validator("backup_name")
    @classmethod
    def validate_backup_name(cls, v: str) -> str:
        """Validate the backup name is a bare file name."""
        if not v or "/" in v or "\\" in v:
            raise ValueError(f"Invalid backup name: {v!r}. Must be a file name")
        return v


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Built from multiple layers following the precedence rules:
    1. Built-in defaults (defined in this model)
    2. YAML config file
    3. Environment variables (HOTSWAP_* prefix)
    4. Command-line arguments

    Attributes:
        logging: Logging configuration.
        registry: Release registry configuration.
        repository: Local artifact cache configuration.
        download: Download configuration.
        switch: Version switch configuration.
    """

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    registry: RegistryConfig = Field(
        default_factory=RegistryConfig,
        description="Release registry configuration",
    )
    repository: RepositoryConfig = Field(
        default_factory=RepositoryConfig,
        description="Local artifact cache configuration",
    )
    download: DownloadConfig = Field(
        default_factory=DownloadConfig,
        description="Download configuration",
    )
    switch: SwitchConfig = Field(
        default_factory=SwitchConfig,
        description="Version switch configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Environment variables are parsed with the following rules:
    - Prefix: HOTSWAP_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: HOTSWAP_REGISTRY__REPOSITORY=acme/blog

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        # Versions such as "2.0" must stay strings
        if parts[-1] in ("current_version", "token", "repository"):
            current[parts[-1]] = value
        else:
            current[parts[-1]] = _parse_env_value(value)

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse the configuration-related command-line arguments.

    Unknown arguments are ignored so the host application can keep its own
    command line.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--config", "-c", type=str)
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
    )
    parser.add_argument("--repository", type=str)

    parsed, _unknown = parser.parse_known_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.repository:
        result["registry"] = {"repository": parsed.repository}

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            CLI --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.repository.cache_dir_name
        '.jar'
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
