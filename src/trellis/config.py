"""Convention-based project discovery and .trellis/config.json handling."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TypedDict

logger = logging.getLogger(__name__)

TRELLIS_DIR_NAME = ".trellis"
DB_FILENAME = "trellis.db"
CONFIG_FILENAME = "config.json"
PACKS_DIR_NAME = "packs"

VALID_STRATEGIES: frozenset[str] = frozenset({"persisted", "memory"})


class ProjectConfig(TypedDict, total=False):
    """Shape of .trellis/config.json."""

    version: int
    database: str
    default_strategy: str
    enabled_packs: list[str]


def default_config() -> ProjectConfig:
    return ProjectConfig(version=1, database=DB_FILENAME, default_strategy="persisted", enabled_packs=["blog"])


def find_trellis_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .trellis/ directory.

    Returns the .trellis/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / TRELLIS_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {TRELLIS_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(trellis_dir: Path) -> ProjectConfig:
    """Read .trellis/config.json. Returns defaults if missing or corrupt."""
    defaults = default_config()
    config_path = trellis_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        loaded = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(loaded, dict):
        logger.warning("Ignoring %s: expected a JSON object", config_path)
        return defaults
    result: ProjectConfig = {**defaults, **loaded}  # type: ignore[typeddict-item]
    return result


def write_config(trellis_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .trellis/config.json."""
    config_path = trellis_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


def get_default_strategy(config: ProjectConfig) -> str:
    strategy = config.get("default_strategy", "persisted")
    if strategy not in VALID_STRATEGIES:
        logger.warning("Unknown default_strategy '%s' in config, falling back to 'persisted'", strategy)
        return "persisted"
    return strategy
