"""Tests for SyncSettings validation and TOML persistence."""

from __future__ import annotations

from pathlib import Path

import pytest
import toml

from pickup_sync.config import CONFIG_FILENAME, SettingsStore, SyncSettings, pickup_sync_home
from pickup_sync.errors import ValidationError


class TestSyncSettings:
    def test_defaults(self) -> None:
        settings = SyncSettings()
        assert settings.min_distance_meters == 1.0
        assert settings.max_location_history == 100
        assert settings.location_poll_interval_seconds == 5.0
        assert settings.location_push_enabled is False
        assert settings.transaction_max_attempts == 5

    def test_log_level_normalized(self) -> None:
        assert SyncSettings(log_level=" debug ").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"log_level": "chatty"},
            {"min_distance_meters": -1},
            {"max_location_history": 0},
            {"location_poll_interval_seconds": 0},
        ],
    )
    def test_rejects_out_of_range(self, overrides: dict) -> None:
        with pytest.raises(ValueError):
            SyncSettings(**overrides)


class TestHome:
    def test_env_override(self, isolated_home: Path) -> None:
        assert pickup_sync_home() == isolated_home

    def test_default_under_user_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PICKUP_SYNC_HOME")
        assert pickup_sync_home() == Path.home() / ".pickup-sync"


class TestSettingsStore:
    def test_missing_file_gives_defaults(self, isolated_home: Path) -> None:
        store = SettingsStore()
        assert store.config_file == isolated_home / CONFIG_FILENAME
        assert store.load() == SyncSettings()
        assert set(store.sources().values()) == {"default"}

    def test_set_value_persists_under_section(self, isolated_home: Path) -> None:
        store = SettingsStore()
        settings = store.set_value("min_distance_meters", "2.5")

        assert settings.min_distance_meters == 2.5
        raw = toml.load(isolated_home / CONFIG_FILENAME)
        assert raw == {"tracking": {"min_distance_meters": 2.5}}
        assert SettingsStore().load().min_distance_meters == 2.5
        assert store.sources()["min_distance_meters"] == "file"
        assert store.sources()["max_location_history"] == "default"

    def test_set_value_keeps_other_keys(self, isolated_home: Path) -> None:
        store = SettingsStore()
        store.set_value("location_push_enabled", "true")
        store.set_value("transaction_max_attempts", "8")

        loaded = store.load()
        assert loaded.location_push_enabled is True
        assert loaded.transaction_max_attempts == 8

    def test_unknown_key(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            SettingsStore().set_value("colour", "blue")
        assert exc_info.value.field == "colour"

    def test_invalid_value_not_written(self, isolated_home: Path) -> None:
        with pytest.raises(ValidationError, match="max_location_history"):
            SettingsStore().set_value("max_location_history", "0")
        assert not (isolated_home / CONFIG_FILENAME).exists()

    def test_corrupt_file_falls_back_to_defaults(self, isolated_home: Path, caplog: pytest.LogCaptureFixture) -> None:
        isolated_home.mkdir(parents=True)
        (isolated_home / CONFIG_FILENAME).write_text("[tracking\nmin_distance_meters = ", encoding="utf-8")
        assert SettingsStore().load() == SyncSettings()
        assert "Ignoring unreadable config" in caplog.text

    def test_invalid_values_in_file_fall_back(self, isolated_home: Path, caplog: pytest.LogCaptureFixture) -> None:
        isolated_home.mkdir(parents=True)
        (isolated_home / CONFIG_FILENAME).write_text(
            "[tracking]\nmax_location_history = -4\n", encoding="utf-8"
        )
        assert SettingsStore().load() == SyncSettings()
        assert "Invalid settings" in caplog.text

    def test_explicit_directory(self, tmp_path: Path) -> None:
        store = SettingsStore(tmp_path / "elsewhere")
        store.set_value("log_level", "warning")
        assert SettingsStore(tmp_path / "elsewhere").load().log_level == "WARNING"
