"""Per-household draft list of waste items, plus the draft pickup location.

Both live on the household's ``users/{id}`` document. The item list is
written from more than one screen at a time, so every edit of it is a
read-modify-write through :meth:`DocumentStore.atomic_update`; a plain
write could silently drop an item another screen just added. The draft
location is a single independent field and is written directly.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any

from ._clock import Clock, now_ms
from .errors import NotFoundError, ValidationError
from .models import (
    FIELD_DRAFT_LOCATION,
    FIELD_DRAFT_WASTE_ITEMS,
    PickupLocation,
    WasteItem,
    user_path,
)
from .store import DELETE_FIELD, DocumentSnapshot, DocumentStore, Subscription

logger = logging.getLogger(__name__)


def _require_household(household_id: str) -> None:
    if not household_id or not household_id.strip():
        raise ValidationError("household_id is required", field="household_id")


def _stored_items(data: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not data:
        return []
    items = data.get(FIELD_DRAFT_WASTE_ITEMS)
    return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []


def normalize_items(raw_items: list[dict[str, Any]]) -> list[WasteItem]:
    """Decode draft items, dropping repeated ids, newest first."""
    seen: set[str] = set()
    items: list[WasteItem] = []
    for raw in raw_items:
        item = WasteItem.from_dict(raw)
        if item.id:
            if item.id in seen:
                continue
            seen.add(item.id)
        items.append(item)
    return sorted(items, key=lambda i: i.created_at, reverse=True)


class DraftInventoryStore:
    """Atomic edits of a household's not-yet-submitted waste items."""

    def __init__(self, store: DocumentStore, *, clock: Clock = now_ms) -> None:
        self._store = store
        self._clock = clock

    async def add(self, household_id: str, item: WasteItem) -> WasteItem:
        """Upsert *item* into the draft list and return it as stored.

        Blank ids get a fresh UUID and a zero ``created_at`` gets the
        current time. An existing entry with the same id is replaced.
        """
        _require_household(household_id)
        if not item.is_valid():
            raise ValidationError("Waste item needs a type and a positive weight", field="item")

        stored = replace(
            item,
            id=item.id.strip() or str(uuid.uuid4()),
            created_at=item.created_at or self._clock(),
        )
        payload = stored.to_dict()

        def _upsert(current: dict[str, Any] | None) -> dict[str, Any]:
            kept = [raw for raw in _stored_items(current) if raw.get("id") != stored.id]
            return {FIELD_DRAFT_WASTE_ITEMS: kept + [payload]}

        await self._store.atomic_update(user_path(household_id), _upsert)
        logger.debug("Draft item %s saved for household %s", stored.id, household_id)
        return stored

    async def delete(self, household_id: str, item_id: str) -> None:
        """Remove the item with *item_id*; absent ids leave the document untouched."""
        _require_household(household_id)

        def _remove(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None:
                return None
            existing = _stored_items(current)
            kept = [raw for raw in existing if raw.get("id") != item_id]
            if len(kept) == len(existing):
                return None
            return {FIELD_DRAFT_WASTE_ITEMS: kept}

        await self._store.atomic_update(user_path(household_id), _remove)

    async def clear(self, household_id: str) -> None:
        """Empty the draft list, creating the user document if needed."""
        _require_household(household_id)
        await self._store.atomic_update(
            user_path(household_id), lambda _current: {FIELD_DRAFT_WASTE_ITEMS: []}
        )
        logger.debug("Draft items cleared for household %s", household_id)

    async def list_items(self, household_id: str) -> list[WasteItem]:
        _require_household(household_id)
        snapshot = await self._store.get(user_path(household_id))
        return normalize_items(_stored_items(snapshot.data))

    def watch_items(self, household_id: str) -> Subscription[list[WasteItem]]:
        """Live draft list, re-emitted whenever the user document changes."""
        _require_household(household_id)

        def _decode(snapshot: DocumentSnapshot) -> list[WasteItem]:
            return normalize_items(_stored_items(snapshot.data))

        return self._store.watch_document(user_path(household_id), transform=_decode)

    # ── Draft location ────────────────────────────────────────────

    async def save_draft_location(self, household_id: str, location: PickupLocation) -> None:
        _require_household(household_id)
        await self._store.set(
            user_path(household_id),
            {FIELD_DRAFT_LOCATION: location.to_dict()},
            merge=True,
        )

    async def get_draft_location(self, household_id: str) -> PickupLocation | None:
        _require_household(household_id)
        snapshot = await self._store.get(user_path(household_id))
        raw = snapshot.get(FIELD_DRAFT_LOCATION)
        if not isinstance(raw, dict):
            return None
        return PickupLocation.from_dict(raw)

    async def clear_draft_location(self, household_id: str) -> None:
        _require_household(household_id)
        try:
            await self._store.update(
                user_path(household_id), {FIELD_DRAFT_LOCATION: DELETE_FIELD}
            )
        except NotFoundError:
            logger.debug("No user document for %s, nothing to clear", household_id)
