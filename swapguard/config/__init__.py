"""swapguard configuration — loading, validation, defaults and job building."""

from swapguard.config.builder import (
    build_criteria,
    build_plan,
    build_resource_set,
    build_step,
)
from swapguard.config.defaults import DEFAULT_CONFIG
from swapguard.config.loader import load_config, load_config_from_dict
from swapguard.config.schema import JobConfig, SwapGuardConfig

__all__ = [
    "load_config",
    "load_config_from_dict",
    "SwapGuardConfig",
    "JobConfig",
    "DEFAULT_CONFIG",
    "build_resource_set",
    "build_plan",
    "build_step",
    "build_criteria",
]
