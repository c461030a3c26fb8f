"""Shared utilities for CLI commands"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console
from rich.logging import RichHandler

from bladekit.blade import Blade
from bladekit.config import BladeConfig, find_config_file
from bladekit.exceptions import ConfigError

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the bladekit CLI.

    Log levels:
    - Normal: Only warnings/errors shown
    - Verbose (-v): INFO level - shows compile-all counts
    - Debug (BLADEKIT_DEBUG=1): DEBUG level - view resolution, compiles, cache misses
    """
    debug = bool(os.environ.get("BLADEKIT_DEBUG"))
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=verbose,
        show_path=debug,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("bladekit")
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False


def load_config(
    config_path: Optional[Path],
    view_paths: Optional[List[Path]] = None,
    cache_path: Optional[Path] = None,
) -> BladeConfig:
    """Load blade.yaml (given, or found from cwd upwards) and apply CLI overrides."""
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        config = BladeConfig.load(config_path)
    else:
        found = find_config_file()
        config = BladeConfig.load(found) if found is not None else BladeConfig()

    overrides: Dict[str, Any] = {}
    if view_paths:
        overrides["view_paths"] = [str(p) for p in view_paths]
    if cache_path is not None:
        overrides["cache_path"] = str(cache_path)
    if overrides:
        config = config.model_copy(update=overrides)
    return config


def get_blade(
    config_path: Optional[Path],
    view_paths: Optional[List[Path]] = None,
    cache_path: Optional[Path] = None,
) -> Blade:
    return Blade.from_config(load_config(config_path, view_paths, cache_path))


def load_data_file(path: Path) -> Dict[str, Any]:
    """Read render data from a YAML (or JSON) mapping."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read data file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Data file {path} must contain a mapping")
    return data


def parse_assignments(assignments: List[str]) -> Dict[str, Any]:
    """Parse ``key=value`` pairs; values are read as YAML scalars."""
    data: Dict[str, Any] = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Expected key=value, got '{assignment}'")
        try:
            data[key.strip()] = yaml.safe_load(value) if value else ""
        except yaml.YAMLError:
            data[key.strip()] = value
    return data
