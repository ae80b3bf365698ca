"""Load and validate .cemetery/config.yaml."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


CEMETERY_DIR = ".cemetery"

# Default config values
DEFAULTS: dict[str, Any] = {
    "stores": {
        "assets": ".cemetery/asset-index.json",
        "tombstones": ".cemetery/tombstone-registry.json",
        "alerts": ".cemetery/zombie-alerts.json",
        "settings": ".cemetery/settings.json",
    },
    "scan": {
        "source": "github",
        "dead_threshold_days": 180,
        "local_paths": [],
        "fetch_timeout": 120,
    },
}

REQUIRED_STORE_KEYS = {"assets", "tombstones", "alerts", "settings"}
SCAN_SOURCES = ("github", "local")


class ConfigError(Exception):
    """Raised when config is invalid or missing."""


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base recursively. Override wins on conflicts."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate(config: dict) -> None:
    """Validate required fields in config."""
    stores = config.get("stores")
    if not isinstance(stores, dict):
        raise ConfigError("'stores' must be a mapping")
    missing = REQUIRED_STORE_KEYS - set(stores.keys())
    if missing:
        raise ConfigError(f"'stores' missing required keys: {sorted(missing)}")

    scan = config.get("scan")
    if not isinstance(scan, dict):
        raise ConfigError("'scan' must be a mapping")

    source = scan.get("source")
    if source not in SCAN_SOURCES:
        raise ConfigError(
            f"Unsupported scan source '{source}'. Built-in: {', '.join(SCAN_SOURCES)}."
        )

    threshold = scan.get("dead_threshold_days")
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        raise ConfigError("'scan.dead_threshold_days' must be a positive integer")

    if not isinstance(scan.get("local_paths"), list):
        raise ConfigError("'scan.local_paths' must be a list")


def find_cemetery_dir(project_root: Path) -> Path:
    """Return ``<project_root>/.cemetery``, raising if it does not exist.

    The project root is always explicit. There is no search of parent
    directories.
    """
    cemetery_dir = Path(project_root) / CEMETERY_DIR
    if not cemetery_dir.is_dir():
        raise ConfigError(
            f"Cemetery directory not found: {cemetery_dir}. Run 'cemetery init' first."
        )
    return cemetery_dir


def load_config(project_root: Path) -> dict:
    """Load config from .cemetery/config.yaml under project_root.

    A missing config.yaml inside an existing .cemetery/ yields the
    defaults. Merges with DEFAULTS so callers always get a full config dict.
    """
    cemetery_dir = find_cemetery_dir(project_root)
    config_path = cemetery_dir / "config.yaml"

    if not config_path.exists():
        raw: Any = {}
    else:
        try:
            with open(config_path) as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if raw is None:
            raw = {}

    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping, got {type(raw).__name__}")

    config = _deep_merge(DEFAULTS, raw)
    _validate(config)
    return config


def resolve_store_paths(config: dict, project_root: Path) -> dict[str, Path]:
    """Resolve all store paths relative to project_root.

    Returns a flat dict: {assets: Path, tombstones: Path, alerts: Path,
    settings: Path}. Absolute paths in config are kept as-is.
    """
    paths = {}
    for key, rel in config["stores"].items():
        path = Path(rel).expanduser()
        paths[key] = path if path.is_absolute() else Path(project_root) / path
    return paths


def resolve_local_paths(config: dict, project_root: Path) -> list[Path]:
    """Resolve ``scan.local_paths`` relative to project_root."""
    resolved = []
    for rel in config["scan"].get("local_paths", []):
        path = Path(rel).expanduser()
        resolved.append(path if path.is_absolute() else Path(project_root) / path)
    return resolved
