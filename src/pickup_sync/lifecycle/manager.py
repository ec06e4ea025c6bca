"""Pickup request state machine on top of the document store.

Every transition runs inside a store transaction: the current status is
read, checked against the transition table, and the new status written in
one optimistic commit. Of several collectors accepting the same request
concurrently, exactly one commit lands; the others re-run, see the request
is no longer pending, and fail with :class:`AlreadyAcceptedError`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Iterable

from .._clock import Clock, now_ms
from ..drafts import DraftInventoryStore
from ..errors import (
    AlreadyAcceptedError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from ..identity import SessionProvider, UserRole, require_user
from ..models import (
    PICKUP_REQUESTS_COLLECTION,
    PaymentMethod,
    PickupLocation,
    PickupRequest,
    RequestStatus,
    TransactionItem,
    TransactionRecord,
    WasteItem,
    request_path,
    transaction_path,
)
from ..store import Direction, DocumentSnapshot, DocumentStore, Query, Subscription, Transaction
from ..tracking import LocationTrackingChannel
from .transitions import COLLECTOR_ASSIGNED_STATUSES, validate_transition

logger = logging.getLogger(__name__)


def _decode_request(snapshot: DocumentSnapshot) -> PickupRequest:
    if snapshot.data is None:
        raise NotFoundError(snapshot.path, f"Pickup request not found: {snapshot.id}")
    data: dict[str, Any] = dict(snapshot.data)
    data["id"] = data.get("id") or snapshot.id
    return PickupRequest.from_dict(data)


def _decode_requests(snapshots: list[DocumentSnapshot]) -> list[PickupRequest]:
    return [_decode_request(s) for s in snapshots if s.exists]


def _require_transition(
    request: PickupRequest,
    to_status: RequestStatus,
    *,
    collector_id: str | None = None,
    final_amount: float | None = None,
) -> None:
    ok, message = validate_transition(
        request.status, to_status, collector_id=collector_id, final_amount=final_amount
    )
    if not ok:
        raise InvalidTransitionError(request.id, str(request.status), str(to_status), message)


class RequestLifecycleManager:
    """Creates pickup requests and moves them through their lifecycle."""

    def __init__(
        self,
        store: DocumentStore,
        session: SessionProvider,
        *,
        drafts: DraftInventoryStore | None = None,
        tracking: LocationTrackingChannel | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._session = session
        self._drafts = drafts
        self._tracking = tracking
        self._clock = clock

    # ── Creation ──────────────────────────────────────────────────

    async def create(
        self,
        items: Iterable[WasteItem],
        location: PickupLocation,
        address: str | None = None,
        notes: str = "",
    ) -> PickupRequest:
        """Submit a new PENDING request owned by the signed-in household.

        *items* are copied into the request; later edits to the draft list
        do not affect it. *address*, when given, replaces ``location.address``.
        """
        user = require_user(self._session, UserRole.HOUSEHOLD)

        item_list = list(items)
        if not item_list:
            raise ValidationError("A pickup request needs at least one waste item", field="items")
        for item in item_list:
            if not item.is_valid():
                raise ValidationError(
                    f"Invalid waste item {item.id or item.type!r}: type and positive weight required",
                    field="items",
                )
        if address is not None:
            location = replace(location, address=address)
        if not location.address.strip():
            raise ValidationError("Pickup address is required", field="address")

        now = self._clock()
        snapshot_items = [
            replace(item, id=item.id or str(uuid.uuid4()), created_at=item.created_at or now)
            for item in item_list
        ]
        request = PickupRequest(
            id=self._store.new_id(),
            owner_id=user.id,
            location=location,
            items=snapshot_items,
            status=RequestStatus.PENDING,
            total_value=round(sum(item.estimated_value for item in snapshot_items), 2),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        await self._store.set(request_path(request.id), request.to_dict())
        logger.info(
            "Created pickup request %s for %s (%d items, value %.2f)",
            request.id,
            user.id,
            len(snapshot_items),
            request.total_value,
        )
        return request

    async def create_from_draft(self, notes: str = "") -> PickupRequest:
        """Submit the household's draft items and draft location, then clear the draft."""
        if self._drafts is None:
            raise RuntimeError("RequestLifecycleManager was built without a draft store")
        user = require_user(self._session, UserRole.HOUSEHOLD)

        items = await self._drafts.list_items(user.id)
        location = await self._drafts.get_draft_location(user.id)
        if location is None:
            raise ValidationError("No draft pickup location saved", field="location")

        request = await self.create(items, location, notes=notes)

        try:
            await self._drafts.clear(user.id)
            await self._drafts.clear_draft_location(user.id)
        except Exception as exc:
            logger.warning("Request %s created but draft was not cleared: %s", request.id, exc)
        return request

    # ── Transitions ───────────────────────────────────────────────

    async def accept(self, request_id: str, collector_id: str | None = None) -> PickupRequest:
        """Claim a PENDING request for the signed-in collector."""
        user = require_user(self._session, UserRole.COLLECTOR)
        collector_id = collector_id or user.id
        if collector_id != user.id:
            raise NotAuthorizedError(
                f"User {user.id} cannot accept on behalf of {collector_id}", user_id=user.id
            )
        path = request_path(request_id)

        async def _accept(txn: Transaction) -> PickupRequest:
            request = _decode_request(await txn.get(path))
            if request.status in COLLECTOR_ASSIGNED_STATUSES:
                raise AlreadyAcceptedError(request_id, str(request.status), request.collector_id)
            _require_transition(request, RequestStatus.ACCEPTED, collector_id=collector_id)
            now = self._clock()
            txn.update(
                path,
                {"status": str(RequestStatus.ACCEPTED), "collectorId": collector_id, "updatedAt": now},
            )
            return replace(
                request, status=RequestStatus.ACCEPTED, collector_id=collector_id, updated_at=now
            )

        accepted = await self._store.run_transaction(_accept)
        logger.info("Request %s accepted by %s", request_id, collector_id)
        return accepted

    async def mark_in_progress(self, request_id: str) -> PickupRequest:
        """ACCEPTED -> IN_PROGRESS, by the assigned collector."""
        user = require_user(self._session, UserRole.COLLECTOR)
        path = request_path(request_id)

        async def _start(txn: Transaction) -> PickupRequest:
            request = _decode_request(await txn.get(path))
            self._require_assigned(request, user.id)
            _require_transition(request, RequestStatus.IN_PROGRESS)
            now = self._clock()
            txn.update(path, {"status": str(RequestStatus.IN_PROGRESS), "updatedAt": now})
            return replace(request, status=RequestStatus.IN_PROGRESS, updated_at=now)

        started = await self._store.run_transaction(_start)
        logger.info("Request %s in progress", request_id)
        return started

    async def complete(
        self,
        request_id: str,
        final_amount: float,
        actual_items: Iterable[TransactionItem] | None = None,
        *,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        notes: str = "",
    ) -> TransactionRecord:
        """IN_PROGRESS -> COMPLETED, writing the settlement record in the same commit.

        ``totalValue`` becomes *final_amount*; when *actual_items* are given
        they replace the request's item list. The location history is
        deleted afterwards on a best-effort basis.
        """
        user = require_user(self._session, UserRole.COLLECTOR)
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(
                f"Unknown payment method: {payment_method}", field="payment_method"
            ) from None
        if final_amount < 0:
            raise ValidationError("Final amount must not be negative", field="final_amount")
        settled = list(actual_items or [])
        path = request_path(request_id)
        record_id = self._store.new_id()
        record_path = transaction_path(record_id)

        async def _complete(txn: Transaction) -> TransactionRecord:
            request = _decode_request(await txn.get(path))
            existing = await txn.get(record_path)
            self._require_assigned(request, user.id)
            _require_transition(request, RequestStatus.COMPLETED, final_amount=final_amount)
            if existing.exists:
                raise ValidationError(f"Transaction record {record_id} already exists")

            now = self._clock()
            record = TransactionRecord(
                id=record_id,
                request_id=request.id,
                household_id=request.owner_id,
                collector_id=user.id,
                final_amount=final_amount,
                estimated_value=request.total_value,
                estimated_items=list(request.items),
                actual_items=settled,
                payment_method=method,
                location=request.location,
                completed_at=now,
                notes=notes,
            )
            fields: dict[str, Any] = {
                "status": str(RequestStatus.COMPLETED),
                "totalValue": final_amount,
                "updatedAt": now,
            }
            if settled:
                fields["items"] = [item.to_waste_item(now).to_dict() for item in settled]
            txn.update(path, fields)
            txn.set(record_path, record.to_dict())
            return record

        record = await self._store.run_transaction(_complete)
        logger.info(
            "Request %s completed by %s for %.2f (%s)",
            request_id,
            user.id,
            final_amount,
            record.payment_method,
        )

        if self._tracking is not None:
            try:
                await self._tracking.delete_all(request_id)
            except Exception as exc:
                logger.warning("Location cleanup failed for completed request %s: %s", request_id, exc)
        return record

    async def cancel(self, request_id: str, caller_id: str | None = None) -> PickupRequest:
        """PENDING -> CANCELLED, by the owning household only."""
        user = require_user(self._session, UserRole.HOUSEHOLD)
        caller_id = caller_id or user.id
        if caller_id != user.id:
            raise NotAuthorizedError(
                f"User {user.id} cannot cancel on behalf of {caller_id}", user_id=user.id
            )
        path = request_path(request_id)

        async def _cancel(txn: Transaction) -> PickupRequest:
            request = _decode_request(await txn.get(path))
            if request.owner_id != caller_id:
                raise NotAuthorizedError(
                    f"Only the request owner can cancel request {request_id}", user_id=caller_id
                )
            _require_transition(request, RequestStatus.CANCELLED)
            now = self._clock()
            txn.update(path, {"status": str(RequestStatus.CANCELLED), "updatedAt": now})
            return replace(request, status=RequestStatus.CANCELLED, updated_at=now)

        cancelled = await self._store.run_transaction(_cancel)
        logger.info("Request %s cancelled by %s", request_id, caller_id)
        return cancelled

    @staticmethod
    def _require_assigned(request: PickupRequest, collector_id: str) -> None:
        if request.collector_id and request.collector_id != collector_id:
            raise NotAuthorizedError(
                f"Request {request.id} is assigned to another collector", user_id=collector_id
            )

    # ── Reads ─────────────────────────────────────────────────────

    async def get(self, request_id: str) -> PickupRequest:
        return _decode_request(await self._store.get(request_path(request_id)))

    def watch(self, request_id: str) -> Subscription[PickupRequest | None]:
        """Live view of one request; ``None`` while the document does not exist."""

        def _decode(snapshot: DocumentSnapshot) -> PickupRequest | None:
            return _decode_request(snapshot) if snapshot.exists else None

        return self._store.watch_document(request_path(request_id), transform=_decode)

    def watch_by_owner(self, owner_id: str) -> Subscription[list[PickupRequest]]:
        query = (
            Query(PICKUP_REQUESTS_COLLECTION)
            .where("ownerId", "==", owner_id)
            .order_by("createdAt", Direction.DESCENDING)
        )
        return self._store.watch_query(query, transform=_decode_requests)

    def watch_by_collector(
        self,
        collector_id: str,
        statuses: Iterable[RequestStatus | str] | None = None,
    ) -> Subscription[list[PickupRequest]]:
        wanted = sorted(str(s) for s in (statuses or COLLECTOR_ASSIGNED_STATUSES))
        query = (
            Query(PICKUP_REQUESTS_COLLECTION)
            .where("collectorId", "==", collector_id)
            .where("status", "in", wanted)
            .order_by("createdAt", Direction.DESCENDING)
        )
        return self._store.watch_query(query, transform=_decode_requests)

    def watch_pending(self) -> Subscription[list[PickupRequest]]:
        """Open requests for the collector dashboard, newest first."""
        query = (
            Query(PICKUP_REQUESTS_COLLECTION)
            .where("status", "==", str(RequestStatus.PENDING))
            .order_by("createdAt", Direction.DESCENDING)
        )
        return self._store.watch_query(query, transform=_decode_requests)
