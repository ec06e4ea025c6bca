"""Collector location publishing and the household-side location feed.

Publisher side (collector device): :meth:`LocationTrackingChannel.upload`
drops samples that moved less than ``min_distance_meters`` from the last
accepted one, appends the rest under
``pickup_requests/{id}/location_updates`` and prunes the sub-collection to
the newest ``max_location_history`` samples in a background task.

Subscriber side (household device): :meth:`LocationTrackingChannel.stream`
polls for the newest sample every ``location_poll_interval_seconds`` and
emits it when its timestamp changes. Fetch errors and empty results emit
``None`` and the loop keeps going. With ``location_push_enabled`` the feed
follows a store listener instead and drops back to polling if the listener
fails.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace

from ._clock import Clock, now_ms
from .config import SyncSettings
from .errors import ValidationError
from .models import LocationSample, location_updates_collection
from .store import LATEST_ONLY, Direction, DocumentSnapshot, DocumentStore, Query, Subscription

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000.0

_NOTHING_EMITTED = object()


def distance_meters(a: LocationSample, b: LocationSample) -> float:
    """Great-circle (haversine) distance between two samples in meters."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def _validate_sample(sample: LocationSample) -> None:
    if not -90.0 <= sample.latitude <= 90.0:
        raise ValidationError(f"Latitude out of range: {sample.latitude}", field="latitude")
    if not -180.0 <= sample.longitude <= 180.0:
        raise ValidationError(f"Longitude out of range: {sample.longitude}", field="longitude")
    if sample.accuracy < 0:
        raise ValidationError("Accuracy must not be negative", field="accuracy")


def _first_sample(snapshots: list[DocumentSnapshot]) -> LocationSample | None:
    if not snapshots or snapshots[0].data is None:
        return None
    return LocationSample.from_dict(snapshots[0].data)


class LocationTrackingChannel:
    """Distance-filtered location uploads with bounded history."""

    def __init__(
        self,
        store: DocumentStore,
        settings: SyncSettings | None = None,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._settings = settings or SyncSettings()
        self._clock = clock
        self._upload_lock = asyncio.Lock()
        self._last_request_id: str | None = None
        self._last_sample: LocationSample | None = None
        self._pruning: set[asyncio.Task[None]] = set()
        self._streams: set[Subscription[LocationSample | None]] = set()
        self._stream_tasks: set[asyncio.Task[None]] = set()

    @property
    def last_accepted(self) -> LocationSample | None:
        return self._last_sample

    # ── Publisher ─────────────────────────────────────────────────

    async def upload(self, request_id: str, collector_id: str, sample: LocationSample) -> bool:
        """Publish *sample*; returns False when the distance filter dropped it."""
        if not request_id.strip():
            raise ValidationError("request_id is required", field="request_id")
        if not collector_id.strip():
            raise ValidationError("collector_id is required", field="collector_id")
        _validate_sample(sample)

        sample = replace(
            sample,
            collector_id=collector_id,
            timestamp=sample.timestamp or self._clock(),
        )

        async with self._upload_lock:
            if request_id != self._last_request_id:
                self._last_request_id = request_id
                self._last_sample = None

            if self._last_sample is not None:
                moved = distance_meters(self._last_sample, sample)
                if moved < self._settings.min_distance_meters:
                    logger.debug(
                        "Skipped location for %s: moved %.2fm (threshold %.2fm)",
                        request_id,
                        moved,
                        self._settings.min_distance_meters,
                    )
                    return False

            await self._store.add(location_updates_collection(request_id), sample.to_dict())
            self._last_sample = sample

        self._schedule_prune(request_id)
        return True

    def _schedule_prune(self, request_id: str) -> None:
        task = asyncio.create_task(self._prune_quietly(request_id))
        self._pruning.add(task)
        task.add_done_callback(self._pruning.discard)

    async def _prune_quietly(self, request_id: str) -> None:
        try:
            await self.prune(request_id)
        except Exception as exc:
            logger.warning("Location history cleanup failed for %s: %s", request_id, exc)

    async def prune(self, request_id: str) -> int:
        """Delete all but the newest ``max_location_history`` samples."""
        query = Query(location_updates_collection(request_id)).order_by(
            "timestamp", Direction.DESCENDING
        )
        snapshots = await self._store.query(query)
        excess = snapshots[self._settings.max_location_history :]
        if not excess:
            return 0
        await self._store.delete_many(s.path for s in excess)
        logger.debug("Pruned %d old location samples for %s", len(excess), request_id)
        return len(excess)

    async def drain(self) -> None:
        """Wait for any in-flight retention pruning to finish."""
        while self._pruning:
            await asyncio.gather(*list(self._pruning), return_exceptions=True)

    async def delete_all(self, request_id: str) -> int:
        """Drop the request's whole location history and the cached last sample."""
        snapshots = await self._store.query(Query(location_updates_collection(request_id)))
        if snapshots:
            await self._store.delete_many(s.path for s in snapshots)
        if request_id == self._last_request_id:
            self._last_request_id = None
            self._last_sample = None
        logger.debug("Deleted %d location samples for %s", len(snapshots), request_id)
        return len(snapshots)

    # ── Subscriber ────────────────────────────────────────────────

    def _latest_query(self, request_id: str) -> Query:
        return (
            Query(location_updates_collection(request_id))
            .order_by("timestamp", Direction.DESCENDING)
            .limit(1)
        )

    async def get_latest(self, request_id: str) -> LocationSample | None:
        """One-shot read of the newest sample, or None if there is none."""
        return _first_sample(await self._store.query(self._latest_query(request_id)))

    def stream(self, request_id: str) -> Subscription[LocationSample | None]:
        """Live feed of the collector's newest position for *request_id*."""
        subscription: Subscription[LocationSample | None] = Subscription(
            f"location:{request_id}", buffer_size=LATEST_ONLY
        )
        task = asyncio.create_task(self._run_stream(request_id, subscription))
        self._streams.add(subscription)
        self._stream_tasks.add(task)
        task.add_done_callback(self._stream_tasks.discard)

        def _release() -> None:
            task.cancel()
            self._streams.discard(subscription)
            logger.debug("Stopped location feed for %s", request_id)

        subscription.set_release_hook(_release)
        return subscription

    async def _run_stream(
        self, request_id: str, subscription: Subscription[LocationSample | None]
    ) -> None:
        last_emitted: object = _NOTHING_EMITTED

        if self._settings.location_push_enabled:
            try:
                async with self._store.watch_query(
                    self._latest_query(request_id), transform=_first_sample
                ) as updates:
                    async for sample in updates:
                        last_emitted = self._emit(subscription, sample, last_emitted)
            except Exception as exc:
                logger.warning(
                    "Location listener for %s failed, polling instead: %s", request_id, exc
                )
                subscription.push(None)

        interval = self._settings.location_poll_interval_seconds
        while not subscription.closed:
            try:
                sample = await self.get_latest(request_id)
            except Exception as exc:
                logger.debug("Location poll for %s failed: %s", request_id, exc)
                sample = None
            last_emitted = self._emit(subscription, sample, last_emitted)
            await asyncio.sleep(interval)

    @staticmethod
    def _emit(
        subscription: Subscription[LocationSample | None],
        sample: LocationSample | None,
        last_emitted: object,
    ) -> object:
        """Push *sample* unless it repeats the previous emission."""
        current = None if sample is None else sample.timestamp
        if current == last_emitted:
            return last_emitted
        subscription.push(sample)
        return current

    async def aclose(self) -> None:
        """Close open feeds and wait for their pollers and background pruning."""
        for subscription in list(self._streams):
            subscription.close()
        await asyncio.gather(*list(self._stream_tasks), return_exceptions=True)
        await self.drain()
