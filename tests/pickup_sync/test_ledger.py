"""Tests for transaction history queries and collector earnings."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from pickup_sync.ledger import EarningsSummary, TransactionLedger, summarize_records
from pickup_sync.models import TransactionItem, TransactionRecord, WasteItem, transaction_path

COLLECTOR = "collector-1"


def _ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


# Wednesday
NOW = _ms(2026, 10, 14, 12, 0)


def _record(record_id: str, amount: float, completed_at: int, **overrides) -> TransactionRecord:
    fields = {
        "id": record_id,
        "request_id": f"req-{record_id}",
        "household_id": "household-1",
        "collector_id": COLLECTOR,
        "final_amount": amount,
        "completed_at": completed_at,
        "estimated_items": [WasteItem(type="plastic", weight=2.0)],
    }
    fields.update(overrides)
    return TransactionRecord(**fields)


@pytest.fixture
def records() -> list[TransactionRecord]:
    return [
        _record("t-today", 5.0, _ms(2026, 10, 14, 8, 30)),
        _record("t-monday", 7.0, _ms(2026, 10, 12, 0, 0)),
        _record("t-early-month", 11.0, _ms(2026, 10, 2, 18, 0)),
        _record("t-last-month", 13.0, _ms(2026, 9, 30, 23, 59)),
    ]


class TestSummarize:
    def test_period_buckets(self, records) -> None:
        summary = summarize_records(COLLECTOR, records, NOW)

        assert summary.amount_today == 5.0
        assert summary.amount_this_week == 12.0
        assert summary.amount_this_month == 23.0
        assert summary.total_amount == 36.0
        assert summary.total_transactions == 4

    def test_averages(self, records) -> None:
        summary = summarize_records(COLLECTOR, records, NOW)
        assert summary.total_weight == 8.0
        assert summary.average_per_transaction() == 9.0
        assert summary.average_per_kg() == 4.5

    def test_actual_weights_win_over_estimates(self) -> None:
        record = _record(
            "t1",
            3.0,
            NOW,
            actual_items=[TransactionItem(type="metal", estimated_weight=2.0, actual_weight=1.5)],
        )
        assert summarize_records(COLLECTOR, [record], NOW).total_weight == 1.5

    def test_empty_summary(self) -> None:
        summary = EarningsSummary(collector_id=COLLECTOR)
        assert summary.average_per_transaction() == 0.0
        assert summary.average_per_kg() == 0.0
        assert summary.to_dict()["total_transactions"] == 0


class TestLedger:
    @pytest_asyncio.fixture
    async def ledger(self, store, records) -> TransactionLedger:
        for record in records:
            await store.set(transaction_path(record.id), record.to_dict())
        await store.set(
            transaction_path("t-other"),
            _record("t-other", 99.0, NOW, collector_id="collector-2", household_id="household-2").to_dict(),
        )
        return TransactionLedger(store, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_for_collector_newest_first(self, ledger) -> None:
        history = await ledger.for_collector(COLLECTOR)
        assert [r.id for r in history] == ["t-today", "t-monday", "t-early-month", "t-last-month"]

    @pytest.mark.asyncio
    async def test_for_household(self, ledger) -> None:
        assert [r.id for r in await ledger.for_household("household-2")] == ["t-other"]

    @pytest.mark.asyncio
    async def test_for_request(self, ledger) -> None:
        record = await ledger.for_request("req-t-monday")
        assert record is not None
        assert record.final_amount == 7.0
        assert await ledger.for_request("req-missing") is None

    @pytest.mark.asyncio
    async def test_summarize_uses_clock(self, ledger) -> None:
        summary = await ledger.summarize(COLLECTOR)
        assert summary.total_amount == 36.0
        assert summary.amount_today == 5.0
        assert len(summary.transactions) == 4
