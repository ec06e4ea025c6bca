"""Client tunables and their persistence in ``~/.pickup-sync/config.toml``."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import pydantic
import toml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "PICKUP_SYNC_HOME"
CONFIG_FILENAME = "config.toml"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SyncSettings(BaseModel):
    """Effective settings shared by every service in one process."""

    # tracking
    min_distance_meters: float = Field(default=1.0, ge=0)
    max_location_history: int = Field(default=100, ge=1)
    location_poll_interval_seconds: float = Field(default=5.0, gt=0)
    location_push_enabled: bool = False
    # store
    transaction_max_attempts: int = Field(default=5, ge=1)
    transaction_backoff_seconds: float = Field(default=0.05, ge=0)
    # logging
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level


# TOML table each setting lives under.
SETTING_SECTIONS: dict[str, str] = {
    "min_distance_meters": "tracking",
    "max_location_history": "tracking",
    "location_poll_interval_seconds": "tracking",
    "location_push_enabled": "tracking",
    "transaction_max_attempts": "store",
    "transaction_backoff_seconds": "store",
    "log_level": "logging",
}


def pickup_sync_home() -> Path:
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".pickup-sync"


class SettingsStore:
    """Load and persist :class:`SyncSettings` as TOML."""

    def __init__(self, config_dir: Path | None = None) -> None:
        self.config_dir = config_dir or pickup_sync_home()
        self.config_file = self.config_dir / CONFIG_FILENAME

    def _read_raw(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            data = toml.load(self.config_file)
        except (toml.TomlDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", self.config_file, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, section in SETTING_SECTIONS.items():
            table = raw.get(section)
            if isinstance(table, dict) and key in table:
                values[key] = table[key]
        return values

    def load(self) -> SyncSettings:
        """Settings from disk, falling back to defaults for anything invalid."""
        values = self._flatten(self._read_raw())
        try:
            return SyncSettings.model_validate(values)
        except pydantic.ValidationError as exc:
            logger.warning("Invalid settings in %s, using defaults: %s", self.config_file, exc)
            return SyncSettings()

    def sources(self) -> dict[str, str]:
        """Where each effective value comes from: ``file`` or ``default``."""
        from_file = self._flatten(self._read_raw())
        return {key: ("file" if key in from_file else "default") for key in SETTING_SECTIONS}

    def set_value(self, key: str, value: Any) -> SyncSettings:
        """Validate and persist one setting, returning the new effective settings."""
        if key not in SETTING_SECTIONS:
            raise ValidationError(f"Unknown setting: {key}", field=key)

        current = self.load().model_dump()
        current[key] = value
        try:
            settings = SyncSettings.model_validate(current)
        except pydantic.ValidationError as exc:
            message = exc.errors()[0].get("msg", str(exc))
            raise ValidationError(f"Invalid value for {key}: {message}", field=key) from exc

        raw = self._read_raw()
        section = raw.get(SETTING_SECTIONS[key])
        if not isinstance(section, dict):
            section = {}
            raw[SETTING_SECTIONS[key]] = section
        section[key] = getattr(settings, key)

        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            toml.dump(raw, f)
        logger.info("Saved %s=%r to %s", key, section[key], self.config_file)
        return settings
