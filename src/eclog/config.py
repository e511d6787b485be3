"""Load, save, and validate the JSON config at ~/.config/eclog/config.json."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from eclog.process_table import DEFAULT_FILTERED_LISTING, DEFAULT_LISTING

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "eclog"
CONFIG_PATH = CONFIG_DIR / "config.json"

DEFAULTS: dict[str, dict[str, Any]] = {
    "capture_command": {
        "value": "logcat",
        "description": "Log capture tool to run. Must accept logcat's -f/-r/-n/-v/-T flags.",
    },
    "listing_command": {
        "value": list(DEFAULT_LISTING),
        "description": "Full process listing. Output needs a USER column and a PID or NAME/COMMAND column.",
    },
    "filtered_listing_command": {
        "value": list(DEFAULT_FILTERED_LISTING) if DEFAULT_FILTERED_LISTING else None,
        "description": "Process listing narrowed to one command; {name} is replaced. null = filter the full listing.",
    },
    "kill_command": {
        "value": ["kill"],
        "description": "Command used to stop the capture process; the pid is appended.",
    },
    "listing_timeout": {
        "value": 10.0,
        "description": "Seconds to wait for the listing or kill command before giving up.",
    },
    "app_name": {
        "value": None,
        "description": "Process name the owning user is looked up by. null = name of the running command.",
    },
    "data_dir": {
        "value": "~/.config/eclog/data",
        "description": "Folder holding the persisted capture settings.",
    },
    "log_level": {
        "value": None,
        "description": "Threshold of the log facade: trace, debug, info, warn, error, assert, disabled. null = build default.",
    },
    "default_tag": {
        "value": "eclog",
        "description": "Tag used for log calls that don't give one.",
    },
}


def _ensure_dir() -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def load_config() -> dict[str, Any]:
    """Return a flat dict of {key: value} from the config file, merged with defaults."""
    values: dict[str, Any] = {k: v["value"] for k, v in DEFAULTS.items()}

    if CONFIG_PATH.exists():
        try:
            raw = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
            for key, entry in raw.items():
                if key.startswith("_"):
                    continue
                if isinstance(entry, dict) and "value" in entry:
                    values[key] = entry["value"]
                else:
                    values[key] = entry
        except (json.JSONDecodeError, OSError, AttributeError) as exc:
            logger.warning("Could not read config at %s: %s", CONFIG_PATH, exc)

    return values


def save_config(values: dict[str, Any]) -> None:
    """Write current values back to the config file, preserving descriptions."""
    _ensure_dir()
    data: dict[str, Any] = {
        "_description": "eclog configuration. Edit values below; descriptions are for reference."
    }
    for key, meta in DEFAULTS.items():
        data[key] = {
            "value": values.get(key, meta["value"]),
            "description": meta["description"],
        }
    CONFIG_PATH.write_text(
        json.dumps(data, indent=4, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    logger.info("Config saved to %s", CONFIG_PATH)


def get(key: str) -> Any:
    """Convenience: load config and return one value."""
    return load_config()[key]


def init_config_if_missing() -> bool:
    """Create default config file if it doesn't exist. Return True if created."""
    if CONFIG_PATH.exists():
        return False
    defaults = {k: v["value"] for k, v in DEFAULTS.items()}
    save_config(defaults)
    return True
