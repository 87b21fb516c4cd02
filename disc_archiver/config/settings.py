"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "DISC_ARCHIVER_SETTINGS_PATH",
        Path.home() / ".config" / "disc-archiver" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_ACTUATOR_ATTEMPTS = 5
DEFAULT_ACTUATOR_RETRY_DELAY = 0.5
DEFAULT_WEB_HOST = "0.0.0.0"
DEFAULT_WEB_PORT = 8000
DEFAULT_COPY_BLOCKS_PER_READ = 512

DEFAULT_SETTINGS: dict[str, Any] = {
    "presence_poll_interval": DEFAULT_POLL_INTERVAL,
    "name_poll_interval": DEFAULT_POLL_INTERVAL,
    "actuator_attempts": DEFAULT_ACTUATOR_ATTEMPTS,
    "actuator_retry_delay": DEFAULT_ACTUATOR_RETRY_DELAY,
    "copy_blocks_per_read": DEFAULT_COPY_BLOCKS_PER_READ,
    "output_dir": ".",
    "web_server_enabled": True,
    "web_host": DEFAULT_WEB_HOST,
    "web_port": DEFAULT_WEB_PORT,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    # In-memory only; the settings file is never written back.
    settings_store.values[key] = value


def get_float(key: str, default: float = 0.0) -> float:
    try:
        return float(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


load_settings()
