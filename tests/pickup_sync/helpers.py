"""Test helpers shared across pickup-sync test modules."""

from __future__ import annotations

import asyncio
import math
from typing import Any

from pickup_sync.models import LocationSample
from pickup_sync.store import Subscription
from pickup_sync.tracking import EARTH_RADIUS_METERS

BASE_LAT = -6.2
BASE_LNG = 106.8
METERS_PER_DEGREE_LAT = EARTH_RADIUS_METERS * math.pi / 180


class TickingClock:
    """Deterministic epoch-millis clock that advances 1ms per reading."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        value = self.now
        self.now += 1
        return value


def sample_at(meters_north: float, timestamp: int, accuracy: float = 5.0) -> LocationSample:
    """Sample *meters_north* of the base point along its meridian."""
    return LocationSample(
        latitude=BASE_LAT + meters_north / METERS_PER_DEGREE_LAT,
        longitude=BASE_LNG,
        accuracy=accuracy,
        timestamp=timestamp,
    )


async def next_matching(subscription: Subscription[Any], predicate, timeout: float = 2.0) -> Any:
    """Read from *subscription* until a value satisfies *predicate*."""

    async def _wait() -> Any:
        while True:
            value = await subscription.get()
            if predicate(value):
                return value

    return await asyncio.wait_for(_wait(), timeout)
