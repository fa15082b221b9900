"""
Config utilities for Badge Printer.

Responsibilities:
- Resolve config/data paths with environment and XDG support
- Provide JSON load/save helpers for the app's config
- Build queue tuning settings from config with env overrides
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/badgeprinter/config.json
    2) ~/.config/badgeprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "badgeprinter" / "config.json")
    return str(Path.home() / ".config" / "badgeprinter" / "config.json")


def default_data_path() -> str:
    """
    Resolve the default data directory using:
    1) $XDG_DATA_HOME/badgeprinter
    2) ~/.local/share/badgeprinter
    """
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "badgeprinter")
    return str(Path.home() / ".local" / "share" / "badgeprinter")


def get_config_path() -> str:
    """
    Return the config path honoring BADGEPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("BADGEPRINTER_CONFIG_PATH", default_config_path())


def get_db_path() -> str:
    """
    Return the job database path honoring BADGEPRINTER_DB_PATH override.
    """
    if "BADGEPRINTER_DB_PATH" in os.environ:
        return os.environ["BADGEPRINTER_DB_PATH"]
    return str(Path(default_data_path()) / "jobs.db")


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


def _setting(cfg: Mapping[str, Any], key: str, env: str, default: Any, cast) -> Any:
    raw = cfg.get(key)
    if raw is None:
        raw = os.environ.get(env)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class QueueSettings:
    """Tuning knobs for the print queue."""

    max_queue_size: int = 100
    max_retries: int = 3
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 60.0
    retry_jitter: float = 0.25
    stale_after_seconds: float = 30.0
    idle_poll_seconds: float = 2.0
    default_preset: str = "default"

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]] = None) -> "QueueSettings":
        """
        Read each setting from the config mapping, then BADGEPRINTER_* env vars,
        then the dataclass default.
        """
        cfg = cfg or {}
        return cls(
            max_queue_size=_setting(cfg, "max_queue_size", "BADGEPRINTER_MAX_QUEUE_SIZE", cls.max_queue_size, int),
            max_retries=_setting(cfg, "max_retries", "BADGEPRINTER_MAX_RETRIES", cls.max_retries, int),
            retry_base_seconds=_setting(
                cfg, "retry_base_seconds", "BADGEPRINTER_RETRY_BASE_SECONDS", cls.retry_base_seconds, float
            ),
            retry_max_seconds=_setting(
                cfg, "retry_max_seconds", "BADGEPRINTER_RETRY_MAX_SECONDS", cls.retry_max_seconds, float
            ),
            retry_jitter=_setting(cfg, "retry_jitter", "BADGEPRINTER_RETRY_JITTER", cls.retry_jitter, float),
            stale_after_seconds=_setting(
                cfg, "stale_after_seconds", "BADGEPRINTER_STALE_AFTER_SECONDS", cls.stale_after_seconds, float
            ),
            idle_poll_seconds=_setting(
                cfg, "idle_poll_seconds", "BADGEPRINTER_IDLE_POLL_SECONDS", cls.idle_poll_seconds, float
            ),
            default_preset=_setting(cfg, "default_preset", "BADGEPRINTER_DEFAULT_PRESET", cls.default_preset, str),
        )


__all__ = [
    "QueueSettings",
    "default_config_path",
    "default_data_path",
    "get_config_path",
    "get_db_path",
    "load_config",
    "save_config",
]
