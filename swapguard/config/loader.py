"""
Configuration Loader
~~~~~~~~~~~~~~~~~~~~

Loads and validates swapguard YAML files, merging with defaults.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import yaml
from pydantic import ValidationError

from swapguard.config.defaults import DEFAULT_CONFIG
from swapguard.config.schema import SwapGuardConfig
from swapguard.exceptions import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)

__all__ = ["load_config", "load_config_from_dict"]

logger = logging.getLogger(__name__)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts, with override taking precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _describe_errors(exc: ValidationError) -> list[tuple[str, str]]:
    """
    Flatten pydantic errors to (location, message) pairs.

    Locations read like the YAML they point at, e.g. ``job.steps.2.command``;
    errors raised by model validators point at the enclosing section.
    """
    problems = []
    for error in exc.errors():
        where = ".".join(str(part) for part in error["loc"]) or "(root)"
        problems.append((where, error["msg"]))
    return problems


def load_config(path: str) -> SwapGuardConfig:
    """
    Load configuration from a YAML file.

    Merges user config with defaults and validates via Pydantic.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Validated SwapGuardConfig instance.

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist.
        ConfigValidationError: If the config fails validation.
    """
    if not os.path.exists(path):
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigValidationError(
            f"Invalid YAML in configuration file: {exc}"
        ) from exc

    if not isinstance(user_config, dict):
        raise ConfigValidationError(
            f"Configuration file must contain a mapping, got {type(user_config).__name__}"
        )

    logger.debug("Loaded configuration from %s", path)
    try:
        return load_config_from_dict(user_config)
    except ConfigValidationError as exc:
        raise ConfigValidationError(f"{path}: {exc}", details=exc.details) from exc


def load_config_from_dict(data: dict[str, Any]) -> SwapGuardConfig:
    """
    Load configuration from a dictionary, merging with defaults.

    Args:
        data: Configuration dictionary.

    Returns:
        Validated SwapGuardConfig instance.

    Raises:
        ConfigValidationError: If validation fails.
    """
    merged = _deep_merge(DEFAULT_CONFIG, data)

    try:
        return SwapGuardConfig(**merged)
    except ValidationError as exc:
        problems = _describe_errors(exc)
        raise ConfigValidationError(
            "Configuration validation failed:\n"
            + "\n".join(f"  {where}: {msg}" for where, msg in problems),
            details={"errors": dict(problems)},
        ) from exc
    except TypeError as exc:
        raise ConfigValidationError(f"Configuration validation failed: {exc}") from exc
