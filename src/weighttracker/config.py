"""Configuration path utilities and settings for weighttracker.

Centralizes logic for locating and loading application config (``app_config.toml``)
and the persisted Withings OAuth token file (``.withings_tokens.json``).

Default location follows the XDG base directory spec using
``$XDG_CONFIG_HOME/weighttracker`` or ``~/.config/weighttracker`` when the
environment variable is not set.

Environment overrides:
    * ``WEIGHTTRACKER_CONFIG_DIR``: override the config directory root (useful for tests)

The ``[tracker]`` table holds the store selection and display settings; a missing
config file simply means defaults.
"""

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .weeks import parse_weekday

__all__ = [
    "STORE_KINDS",
    "TrackerSettings",
    "get_config_dir",
    "ensure_config_dir",
    "get_app_config_path",
    "get_token_path",
    "load_app_config",
    "load_settings",
]

STORE_KINDS: tuple[str, ...] = ("csv", "withings", "memory")
DEFAULT_RECENT_LIMIT = 10


@dataclass(frozen=True)
class TrackerSettings:
    store: str
    csv_path: Path
    week_starts_on: int | None  # None => calendar.firstweekday()
    recent_limit: int


def get_config_dir() -> Path:
    override = os.environ.get("WEIGHTTRACKER_CONFIG_DIR")
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "weighttracker"


def ensure_config_dir() -> Path:
    cfg = get_config_dir()
    cfg.mkdir(parents=True, exist_ok=True)
    return cfg


def get_app_config_path() -> Path:
    return get_config_dir() / "app_config.toml"


def get_token_path() -> Path:
    return ensure_config_dir() / ".withings_tokens.json"


def load_app_config(path: Path | None = None) -> Mapping[str, Any]:
    if path is None:
        path = get_app_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    return tomllib.loads(path.read_text())


def load_settings(path: Path | None = None) -> TrackerSettings:
    """Read the ``[tracker]`` table, applying defaults for anything missing.

    Raises ValueError on invalid values (unknown store, bad weekday, non-positive limit).
    """
    if path is None:
        path = get_app_config_path()
    data: Mapping[str, Any] = load_app_config(path) if path.exists() else {}
    tracker = data.get("tracker", {})
    if not isinstance(tracker, Mapping):
        raise ValueError("[tracker] must be a table")

    store = str(tracker.get("store", "csv")).lower()
    if store not in STORE_KINDS:
        raise ValueError(f"Unknown store '{store}' (expected one of: {', '.join(STORE_KINDS)})")

    raw_csv = tracker.get("csv_path")
    csv_path = Path(str(raw_csv)).expanduser() if raw_csv else get_config_dir() / "weights.csv"

    raw_weekday = tracker.get("week_starts_on")
    week_starts_on = parse_weekday(raw_weekday) if raw_weekday is not None else None

    recent_limit = int(tracker.get("recent_limit", DEFAULT_RECENT_LIMIT))
    if recent_limit <= 0:
        raise ValueError(f"recent_limit must be positive, got {recent_limit}")

    return TrackerSettings(
        store=store,
        csv_path=csv_path,
        week_starts_on=week_starts_on,
        recent_limit=recent_limit,
    )
