"""Settings storage for disk-wipefs configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "DISK_WIPEFS_SETTINGS_PATH",
        Path.home() / ".config" / "disk-wipefs" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_RESIDUAL_WIPE_MIB = 10
DEFAULT_PROMPT_TIMEOUT_SECONDS = 60.0
DEFAULT_SETTLE_DELAY_SECONDS = 1.0
DEFAULT_UDEV_SETTLE_TIMEOUT_SECONDS = 5
DEFAULT_KPARTX_DELAY_SECONDS = 1.0

DEFAULT_SETTINGS: dict[str, Any] = {
    "residual_wipe_mib": DEFAULT_RESIDUAL_WIPE_MIB,
    "system_disks": ["sda"],
    "protect_root_disk": True,
    "prompt_timeout_seconds": DEFAULT_PROMPT_TIMEOUT_SECONDS,
    "settle_delay_seconds": DEFAULT_SETTLE_DELAY_SECONDS,
    "udev_settle_timeout_seconds": DEFAULT_UDEV_SETTLE_TIMEOUT_SECONDS,
    "kpartx_delay_seconds": DEFAULT_KPARTX_DELAY_SECONDS,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    value = get_setting(key, default)
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def get_list(key: str) -> list[str]:
    value = get_setting(key, [])
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if str(item).strip()]
    return []


load_settings()
