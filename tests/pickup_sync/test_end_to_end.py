"""A full pickup between one household and two competing collectors."""

from __future__ import annotations

import asyncio

import pytest

from pickup_sync import (
    AlreadyAcceptedError,
    InMemoryDocumentStore,
    Message,
    PickupServices,
    RequestStatus,
    StaticSession,
    TransactionItem,
    UserIdentity,
    UserRole,
)
from pickup_sync.models import location_updates_collection
from pickup_sync.store import Query

from .helpers import next_matching, sample_at


@pytest.mark.slow
@pytest.mark.asyncio
async def test_pickup_from_draft_to_settlement(store: InMemoryDocumentStore, fast_settings, clock, household, two_items, pickup_location) -> None:
    home = PickupServices.build(store, StaticSession(household), fast_settings, clock=clock)
    collectors = {
        cid: PickupServices.build(
            store, StaticSession(UserIdentity(cid, UserRole.COLLECTOR, name)), fast_settings, clock=clock
        )
        for cid, name in (("collector-a", "Adi"), ("collector-b", "Budi"))
    }

    for item in two_items:
        await home.drafts.add(household.id, item)
    await home.drafts.save_draft_location(household.id, pickup_location)
    request = await home.requests.create_from_draft(notes="Ring twice")

    assert request.total_value == 16.0
    assert request.status == RequestStatus.PENDING
    assert await home.drafts.list_items(household.id) == []
    assert await home.drafts.get_draft_location(household.id) is None

    results = await asyncio.gather(
        *(services.requests.accept(request.id) for services in collectors.values()),
        return_exceptions=True,
    )
    winners = [cid for cid, result in zip(collectors, results) if not isinstance(result, BaseException)]
    losers = [result for result in results if isinstance(result, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], AlreadyAcceptedError)
    winner = collectors[winners[0]]

    accepted = await home.requests.get(request.id)
    assert accepted.status == RequestStatus.ACCEPTED
    assert accepted.collector_id == winners[0]

    thread = await winner.chat.open_thread(accepted, household.display_name, "Collector")
    await winner.chat.send(thread.id, Message(text="On my way"))
    assert await home.chat.total_unread() == 1

    await winner.requests.mark_in_progress(request.id)
    async with home.tracking.stream(request.id) as feed:
        await winner.tracking.upload(request.id, winners[0], sample_at(0, 10))
        await winner.tracking.upload(request.id, winners[0], sample_at(30, 20))
        latest = await next_matching(feed, lambda sample: sample is not None and sample.timestamp == 20)
        assert latest.collector_id == winners[0]
    await winner.tracking.drain()

    record = await winner.requests.complete(
        request.id,
        14.5,
        [TransactionItem(type="plastic", estimated_weight=5.0, estimated_value=10.0, actual_weight=4.5, actual_value=9.0)],
    )

    settled = await home.requests.get(request.id)
    assert settled.status == RequestStatus.COMPLETED
    assert settled.total_value == 14.5
    assert record.estimated_value == 16.0
    assert await store.query(Query(location_updates_collection(request.id))) == []

    summary = await winner.ledger.summarize(winners[0])
    assert summary.total_transactions == 1
    assert summary.total_amount == 14.5
    assert summary.total_weight == 4.5
    assert [r.id for r in await home.ledger.for_household(household.id)] == [record.id]

    for services in (home, *collectors.values()):
        await services.aclose()
