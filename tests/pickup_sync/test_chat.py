"""Tests for ChatSynchronizer threads, messages and unread counters."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from pickup_sync.chat import ChatSynchronizer, system_greeting
from pickup_sync.errors import NotAuthenticatedError, NotAuthorizedError, NotFoundError, ValidationError
from pickup_sync.identity import StaticSession, UserIdentity, UserRole
from pickup_sync.models import (
    Message,
    MessageType,
    PickupLocation,
    PickupRequest,
    RequestStatus,
    messages_collection,
)
from pickup_sync.store import InMemoryDocumentStore, Query

REQUEST_ID = "req-0123456789"


@pytest.fixture
def household_chat(store, household_session, clock) -> ChatSynchronizer:
    return ChatSynchronizer(store, household_session, clock=clock)


@pytest.fixture
def collector_chat(store, collector_session, clock) -> ChatSynchronizer:
    return ChatSynchronizer(store, collector_session, clock=clock)


@pytest.fixture
def outsider_chat(store, clock) -> ChatSynchronizer:
    outsider = UserIdentity("collector-9", UserRole.COLLECTOR, "Other")
    return ChatSynchronizer(store, StaticSession(outsider), clock=clock)


async def _open(chat: ChatSynchronizer, household, collector):
    return await chat.create_thread(
        REQUEST_ID, household.id, household.display_name, collector.id, collector.display_name
    )


async def _messages(store: InMemoryDocumentStore, chat_id: str = REQUEST_ID) -> list[dict]:
    return [s.data or {} for s in await store.query(Query(messages_collection(chat_id)))]


class TestCreateThread:
    @pytest.mark.asyncio
    async def test_new_thread_has_zero_counters_and_greeting(self, store, household_chat, household, collector) -> None:
        thread = await _open(household_chat, household, collector)

        assert thread.id == REQUEST_ID
        assert thread.participants == [household.id, collector.id]
        assert thread.unread_count_household == 0
        assert thread.unread_count_collector == 0

        [greeting] = await _messages(store)
        assert greeting["type"] == "SYSTEM"
        assert greeting["read"] is True
        assert greeting["text"] == "Chat started for pickup request #req-0123"

    def test_greeting_uses_short_request_id(self) -> None:
        assert system_greeting("abc") == "Chat started for pickup request #abc"

    @pytest.mark.asyncio
    async def test_second_create_returns_existing(self, store, household_chat, collector_chat, household, collector) -> None:
        first = await _open(household_chat, household, collector)
        second = await _open(collector_chat, household, collector)
        assert second == first
        assert len(await _messages(store)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_create_yields_one_thread(self, store, household_chat, collector_chat, household, collector) -> None:
        threads = await asyncio.gather(
            _open(household_chat, household, collector),
            _open(collector_chat, household, collector),
        )
        assert threads[0] == threads[1]
        assert len(await store.query(Query("chats"))) == 1
        assert len(await _messages(store)) == 1

    @pytest.mark.asyncio
    async def test_outsider_cannot_create(self, outsider_chat, household, collector) -> None:
        with pytest.raises(NotAuthorizedError):
            await _open(outsider_chat, household, collector)

    @pytest.mark.asyncio
    async def test_validation(self, household_chat, household) -> None:
        with pytest.raises(ValidationError):
            await household_chat.create_thread(" ", household.id, "", "collector-1", "")
        with pytest.raises(ValidationError):
            await household_chat.create_thread(REQUEST_ID, household.id, "", "", "")
        with pytest.raises(ValidationError):
            await household_chat.create_thread(REQUEST_ID, household.id, "", household.id, "")

    @pytest.mark.asyncio
    async def test_signed_out_user_rejected(self, store, household, collector) -> None:
        chat = ChatSynchronizer(store, StaticSession())
        with pytest.raises(NotAuthenticatedError):
            await _open(chat, household, collector)


class TestOpenThread:
    def _request(self, household, collector_id) -> PickupRequest:
        return PickupRequest(
            id=REQUEST_ID,
            owner_id=household.id,
            location=PickupLocation(address="Jl. Melati 7"),
            status=RequestStatus.ACCEPTED if collector_id else RequestStatus.PENDING,
            collector_id=collector_id,
        )

    @pytest.mark.asyncio
    async def test_creates_then_reuses(self, household_chat, collector_chat, household, collector) -> None:
        request = self._request(household, collector.id)
        created = await collector_chat.open_thread(request, "Hana", "Cahyo")
        reused = await household_chat.open_thread(request)
        assert reused == created
        assert reused.collector_name == "Cahyo"

    @pytest.mark.asyncio
    async def test_requires_assigned_collector(self, household_chat, household) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await household_chat.open_thread(self._request(household, None))
        assert exc_info.value.field == "collector_id"


class TestSend:
    @pytest.mark.asyncio
    async def test_text_messages_bump_recipient_counter(self, household_chat, collector_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        for text in ("halo", "sudah siap", "di depan rumah"):
            await household_chat.send(REQUEST_ID, Message(text=text))

        thread = await household_chat.get_thread(REQUEST_ID)
        assert thread.unread_count_collector == 3
        assert thread.unread_count_household == 0
        assert thread.last_message == "di depan rumah"

        await collector_chat.mark_read(REQUEST_ID)
        assert (await collector_chat.get_thread(REQUEST_ID)).unread_count_collector == 0

    @pytest.mark.asyncio
    async def test_sender_defaults_from_session(self, household_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        stored = await household_chat.send(REQUEST_ID, Message(text="hi"))
        assert stored.sender_id == household.id
        assert stored.sender_name == "Hana"
        assert stored.chat_id == REQUEST_ID
        assert stored.id

    @pytest.mark.asyncio
    async def test_system_message_leaves_counters(self, household_chat, household, collector) -> None:
        thread = await _open(household_chat, household, collector)
        await household_chat.send(REQUEST_ID, Message.system(REQUEST_ID, "Collector is on the way", 0))

        after = await household_chat.get_thread(REQUEST_ID)
        assert after.unread_count_collector == 0
        assert after.unread_count_household == 0
        assert after.last_message == thread.last_message

    @pytest.mark.asyncio
    async def test_concurrent_sends_count_every_message(self, store, household_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        await asyncio.gather(*(household_chat.send(REQUEST_ID, Message(text=f"m{n}")) for n in range(10)))

        assert (await household_chat.get_thread(REQUEST_ID)).unread_count_collector == 10
        assert len(await _messages(store)) == 11

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, household_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        with pytest.raises(ValidationError) as exc_info:
            await household_chat.send(REQUEST_ID, Message(text="   "))
        assert exc_info.value.field == "text"

    @pytest.mark.asyncio
    async def test_cannot_impersonate(self, household_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        with pytest.raises(NotAuthorizedError):
            await household_chat.send(REQUEST_ID, Message(text="hi", sender_id=collector.id))

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, household_chat, outsider_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        with pytest.raises(NotAuthorizedError):
            await outsider_chat.send(REQUEST_ID, Message(text="hi"))

    @pytest.mark.asyncio
    async def test_missing_thread(self, household_chat) -> None:
        with pytest.raises(NotFoundError):
            await household_chat.send("nope", Message(text="hi"))

    @pytest.mark.asyncio
    async def test_notifier_told_about_text(self, store, household_session, household, collector, clock) -> None:
        notifier = AsyncMock()
        chat = ChatSynchronizer(store, household_session, notifier=notifier, clock=clock)
        await _open(chat, household, collector)

        stored = await chat.send(REQUEST_ID, Message(text="hi"))

        notifier.notify_message.assert_awaited_once()
        thread, message, recipient = notifier.notify_message.await_args.args
        assert thread.id == REQUEST_ID
        assert message == stored
        assert recipient == collector.id

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_send(self, store, household_session, household, collector, caplog) -> None:
        notifier = AsyncMock()
        notifier.notify_message.side_effect = ConnectionError("push gateway down")
        chat = ChatSynchronizer(store, household_session, notifier=notifier)
        await _open(chat, household, collector)

        await chat.send(REQUEST_ID, Message(text="hi"))

        assert (await chat.get_thread(REQUEST_ID)).unread_count_collector == 1
        assert "Chat notification for" in caplog.text


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_cannot_mark_for_someone_else(self, household_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        with pytest.raises(NotAuthorizedError):
            await household_chat.mark_read(REQUEST_ID, collector.id)

    @pytest.mark.asyncio
    async def test_outsider_rejected(self, household_chat, outsider_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        with pytest.raises(NotAuthorizedError):
            await outsider_chat.mark_read(REQUEST_ID)

    @pytest.mark.asyncio
    async def test_total_unread_across_threads(self, store, household_chat, collector_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        await household_chat.create_thread("req-2", household.id, "Hana", collector.id, "Cahyo")
        await household_chat.send(REQUEST_ID, Message(text="a"))
        await household_chat.send("req-2", Message(text="b"))
        await household_chat.send("req-2", Message(text="c"))

        assert await collector_chat.total_unread() == 3
        assert await household_chat.total_unread() == 0
        assert await household_chat.total_unread("collector-9") == 0


class TestLiveViews:
    @pytest.mark.asyncio
    async def test_messages_in_timestamp_order(self, household_chat, collector_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        await household_chat.send(REQUEST_ID, Message(text="first"))
        await collector_chat.send(REQUEST_ID, Message(text="second"))

        async with household_chat.watch_messages(REQUEST_ID) as feed:
            messages = await feed.get(timeout=1)
        assert [m.type for m in messages] == [MessageType.SYSTEM, MessageType.TEXT, MessageType.TEXT]
        assert [m.text for m in messages[1:]] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_threads_newest_activity_first(self, household_chat, household, collector) -> None:
        await _open(household_chat, household, collector)
        await household_chat.create_thread("req-2", household.id, "Hana", collector.id, "Cahyo")

        async with household_chat.watch_threads(household.id) as feed:
            assert [t.id for t in await feed.get(timeout=1)] == ["req-2", REQUEST_ID]
            await household_chat.send(REQUEST_ID, Message(text="ping"))
            assert [t.id for t in await feed.get(timeout=1)] == [REQUEST_ID, "req-2"]
