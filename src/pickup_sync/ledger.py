"""Read side of settled pickups: transaction history and collector totals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ._clock import Clock, now_ms
from .models import TRANSACTIONS_COLLECTION, TransactionRecord
from .store import Direction, DocumentStore, Query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EarningsSummary:
    """Totals over a collector's completed transactions.

    Period boundaries (start of day, ISO week starting Monday, and month)
    are computed in UTC.
    """

    collector_id: str
    total_amount: float = 0.0
    total_transactions: int = 0
    total_weight: float = 0.0
    amount_today: float = 0.0
    amount_this_week: float = 0.0
    amount_this_month: float = 0.0
    transactions: list[TransactionRecord] = field(default_factory=list)

    def average_per_transaction(self) -> float:
        if self.total_transactions <= 0:
            return 0.0
        return self.total_amount / self.total_transactions

    def average_per_kg(self) -> float:
        if self.total_weight <= 0:
            return 0.0
        return self.total_amount / self.total_weight

    def to_dict(self) -> dict[str, Any]:
        return {
            "collector_id": self.collector_id,
            "total_amount": self.total_amount,
            "total_transactions": self.total_transactions,
            "total_weight": self.total_weight,
            "amount_today": self.amount_today,
            "amount_this_week": self.amount_this_week,
            "amount_this_month": self.amount_this_month,
            "average_per_transaction": self.average_per_transaction(),
            "average_per_kg": self.average_per_kg(),
        }


def _period_starts(now: int) -> tuple[int, int, int]:
    current = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
    day = current.replace(hour=0, minute=0, second=0, microsecond=0)
    week = day - timedelta(days=day.weekday())
    month = day.replace(day=1)
    return (
        int(day.timestamp() * 1000),
        int(week.timestamp() * 1000),
        int(month.timestamp() * 1000),
    )


def summarize_records(
    collector_id: str, records: list[TransactionRecord], now: int
) -> EarningsSummary:
    """Aggregate *records* as of epoch-millis *now*."""
    day_start, week_start, month_start = _period_starts(now)
    return EarningsSummary(
        collector_id=collector_id,
        total_amount=sum(r.final_amount for r in records),
        total_transactions=len(records),
        total_weight=sum(r.total_weight() for r in records),
        amount_today=sum(r.final_amount for r in records if r.completed_at >= day_start),
        amount_this_week=sum(r.final_amount for r in records if r.completed_at >= week_start),
        amount_this_month=sum(r.final_amount for r in records if r.completed_at >= month_start),
        transactions=list(records),
    )


class TransactionLedger:
    """Queries over ``transactions/*``; records are never modified here."""

    def __init__(self, store: DocumentStore, *, clock: Clock = now_ms) -> None:
        self._store = store
        self._clock = clock

    async def _list(self, field_name: str, user_id: str) -> list[TransactionRecord]:
        query = (
            Query(TRANSACTIONS_COLLECTION)
            .where(field_name, "==", user_id)
            .order_by("completedAt", Direction.DESCENDING)
        )
        snapshots = await self._store.query(query)
        return [TransactionRecord.from_dict(s.data) for s in snapshots if s.data is not None]

    async def for_collector(self, collector_id: str) -> list[TransactionRecord]:
        return await self._list("collectorId", collector_id)

    async def for_household(self, household_id: str) -> list[TransactionRecord]:
        return await self._list("householdId", household_id)

    async def for_request(self, request_id: str) -> TransactionRecord | None:
        snapshots = await self._store.query(
            Query(TRANSACTIONS_COLLECTION).where("requestId", "==", request_id).limit(1)
        )
        if not snapshots or snapshots[0].data is None:
            return None
        return TransactionRecord.from_dict(snapshots[0].data)

    async def summarize(self, collector_id: str) -> EarningsSummary:
        records = await self.for_collector(collector_id)
        summary = summarize_records(collector_id, records, self._clock())
        logger.debug(
            "Summarized %d transactions for %s: %.2f",
            summary.total_transactions,
            collector_id,
            summary.total_amount,
        )
        return summary
