"""Shared fixtures for pickup-sync tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from pickup_sync.config import HOME_ENV_VAR, SyncSettings
from pickup_sync.identity import StaticSession, UserIdentity, UserRole
from pickup_sync.models import PickupLocation, WasteItem
from pickup_sync.store import InMemoryDocumentStore

from .helpers import BASE_LAT, BASE_LNG, TickingClock


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep config reads and writes away from ~/.pickup-sync."""
    home = tmp_path / "pickup-sync-home"
    monkeypatch.setenv(HOME_ENV_VAR, str(home))
    return home


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def fast_settings() -> SyncSettings:
    """Settings with a short poll interval for stream tests."""
    return SyncSettings(location_poll_interval_seconds=0.01)


@pytest.fixture
def household() -> UserIdentity:
    return UserIdentity("household-1", UserRole.HOUSEHOLD, "Hana")


@pytest.fixture
def collector() -> UserIdentity:
    return UserIdentity("collector-1", UserRole.COLLECTOR, "Cahyo")


@pytest.fixture
def household_session(household: UserIdentity) -> StaticSession:
    return StaticSession(household)


@pytest.fixture
def collector_session(collector: UserIdentity) -> StaticSession:
    return StaticSession(collector)


@pytest.fixture
def pickup_location() -> PickupLocation:
    return PickupLocation(lat=BASE_LAT, lng=BASE_LNG, address="Jl. Melati 7, Jakarta")


@pytest.fixture
def two_items() -> list[WasteItem]:
    """5kg worth 10 and 3kg worth 6: a request total of 16."""
    return [
        WasteItem(type="plastic", weight=5.0, estimated_value=10.0),
        WasteItem(type="metal", weight=3.0, estimated_value=6.0),
    ]
