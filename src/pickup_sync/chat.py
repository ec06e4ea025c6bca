"""Per-request chat threads with atomic unread counters.

A thread lives at ``chats/{request_id}`` so there is never more than one
per request, even when both sides open it at the same moment. Messages are
appended under ``chats/{id}/messages``. Sending a TEXT message bumps the
recipient's unread counter with a server-side :class:`Increment`, so
concurrent sends never lose a count; SYSTEM messages leave counters alone.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol

from ._clock import Clock, now_ms
from .errors import NotAuthorizedError, NotFoundError, ValidationError
from .identity import SessionProvider, UserIdentity, require_user
from .models import (
    CHATS_COLLECTION,
    ChatThread,
    Message,
    MessageType,
    PickupRequest,
    chat_path,
    messages_collection,
)
from .store import (
    Direction,
    DocumentSnapshot,
    DocumentStore,
    Increment,
    Query,
    Subscription,
    Transaction,
)

logger = logging.getLogger(__name__)


class ChatNotifier(Protocol):
    """Push-notification boundary, told about every stored TEXT message."""

    async def notify_message(self, thread: ChatThread, message: Message, recipient_id: str) -> None: ...


def _decode_thread(snapshot: DocumentSnapshot) -> ChatThread:
    if snapshot.data is None:
        raise NotFoundError(snapshot.path, f"Chat not found: {snapshot.id}")
    data = dict(snapshot.data)
    data["id"] = data.get("id") or snapshot.id
    return ChatThread.from_dict(data)


def _decode_threads(snapshots: list[DocumentSnapshot]) -> list[ChatThread]:
    return [_decode_thread(s) for s in snapshots if s.exists]


def _decode_messages(snapshots: list[DocumentSnapshot]) -> list[Message]:
    messages = []
    for snapshot in snapshots:
        if snapshot.data is None:
            continue
        data = dict(snapshot.data)
        data["id"] = data.get("id") or snapshot.id
        messages.append(Message.from_dict(data))
    return messages


def system_greeting(request_id: str) -> str:
    return f"Chat started for pickup request #{request_id[:8]}"


class ChatSynchronizer:
    """Chat threads between a request's household and its collector."""

    def __init__(
        self,
        store: DocumentStore,
        session: SessionProvider,
        *,
        notifier: ChatNotifier | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._session = session
        self._notifier = notifier
        self._clock = clock

    def _participant(self, thread: ChatThread, user: UserIdentity) -> None:
        if user.id not in thread.participants:
            raise NotAuthorizedError(
                f"User {user.id} is not a participant of chat {thread.id}", user_id=user.id
            )

    # ── Threads ───────────────────────────────────────────────────

    async def create_thread(
        self,
        request_id: str,
        household_id: str,
        household_name: str,
        collector_id: str,
        collector_name: str,
    ) -> ChatThread:
        """Create the request's thread, or return it if it already exists.

        A new thread starts with both unread counters at 0 and a SYSTEM
        greeting message.
        """
        user = require_user(self._session)
        if not request_id.strip():
            raise ValidationError("request_id is required", field="request_id")
        if not household_id.strip() or not collector_id.strip():
            raise ValidationError("Both participants are required", field="participants")
        if household_id == collector_id:
            raise ValidationError("A chat needs two distinct participants", field="participants")
        if user.id not in (household_id, collector_id):
            raise NotAuthorizedError(
                f"User {user.id} cannot open a chat for request {request_id}", user_id=user.id
            )

        path = chat_path(request_id)
        now = self._clock()
        fresh = ChatThread(
            id=request_id,
            request_id=request_id,
            household_id=household_id,
            household_name=household_name,
            collector_id=collector_id,
            collector_name=collector_name,
            last_message_timestamp=now,
            created_at=now,
        )

        async def _create(txn: Transaction) -> tuple[ChatThread, bool]:
            snapshot = await txn.get(path)
            if snapshot.exists:
                return _decode_thread(snapshot), False
            txn.set(path, fresh.to_dict())
            return fresh, True

        thread, created = await self._store.run_transaction(_create)
        if created:
            await self._append(
                thread.id, Message.system(thread.id, system_greeting(request_id), now)
            )
            logger.info("Chat %s created for request %s", thread.id, request_id)
        return thread

    async def open_thread(
        self,
        request: PickupRequest,
        household_name: str = "",
        collector_name: str = "",
    ) -> ChatThread:
        """Existing thread for *request*, creating it on first use."""
        if not request.collector_id:
            raise ValidationError(
                f"Request {request.id} has no collector yet", field="collector_id"
            )
        existing = await self.find_thread_for_request(request.id)
        if existing is not None:
            return existing
        return await self.create_thread(
            request.id, request.owner_id, household_name, request.collector_id, collector_name
        )

    async def get_thread(self, chat_id: str) -> ChatThread:
        return _decode_thread(await self._store.get(chat_path(chat_id)))

    async def find_thread_for_request(self, request_id: str) -> ChatThread | None:
        snapshots = await self._store.query(
            Query(CHATS_COLLECTION).where("requestId", "==", request_id).limit(1)
        )
        return _decode_thread(snapshots[0]) if snapshots else None

    # ── Messages ──────────────────────────────────────────────────

    async def _append(self, chat_id: str, message: Message) -> Message:
        stored = replace(
            message,
            id=message.id or self._store.new_id(),
            chat_id=chat_id,
            timestamp=message.timestamp or self._clock(),
        )
        await self._store.set(f"{messages_collection(chat_id)}/{stored.id}", stored.to_dict())
        return stored

    async def send(self, chat_id: str, message: Message) -> Message:
        """Append *message*; TEXT messages also bump the recipient's unread count."""
        user = require_user(self._session)
        if message.type == MessageType.TEXT:
            if not message.text.strip():
                raise ValidationError("Message text is required", field="text")
            sender_id = message.sender_id or user.id
            if sender_id != user.id:
                raise NotAuthorizedError(
                    f"User {user.id} cannot send as {sender_id}", user_id=user.id
                )
            message = replace(
                message,
                sender_id=sender_id,
                sender_name=message.sender_name or user.display_name,
            )

        thread = await self.get_thread(chat_id)
        self._participant(thread, user)
        stored = await self._append(chat_id, message)

        if stored.type != MessageType.TEXT:
            return stored

        recipient_id = thread.other_user_id(stored.sender_id)
        counter = thread.unread_field_for(recipient_id)
        fields: dict[str, object] = {
            "lastMessage": stored.text,
            "lastMessageTimestamp": stored.timestamp,
        }
        if counter is not None:
            fields[counter] = Increment(1)
        await self._store.update(chat_path(chat_id), fields)

        if self._notifier is not None:
            try:
                await self._notifier.notify_message(thread, stored, recipient_id)
            except Exception as exc:
                logger.warning("Chat notification for %s failed: %s", chat_id, exc)
        return stored

    async def mark_read(self, chat_id: str, user_id: str | None = None) -> None:
        """Reset *user_id*'s unread counter (defaults to the signed-in user)."""
        user = require_user(self._session)
        user_id = user_id or user.id
        if user_id != user.id:
            raise NotAuthorizedError(
                f"User {user.id} cannot mark chat {chat_id} read for {user_id}", user_id=user.id
            )
        thread = await self.get_thread(chat_id)
        counter = thread.unread_field_for(user_id)
        if counter is None:
            raise NotAuthorizedError(
                f"User {user_id} is not a participant of chat {chat_id}", user_id=user_id
            )
        await self._store.update(chat_path(chat_id), {counter: 0})

    async def total_unread(self, user_id: str | None = None) -> int:
        """Sum of *user_id*'s unread counters over every thread they are in."""
        user_id = user_id or require_user(self._session).id
        snapshots = await self._store.query(
            Query(CHATS_COLLECTION).where("participants", "array-contains", user_id)
        )
        return sum(thread.unread_count(user_id) for thread in _decode_threads(snapshots))

    # ── Live views ────────────────────────────────────────────────

    def watch_messages(self, chat_id: str) -> Subscription[list[Message]]:
        query = Query(messages_collection(chat_id)).order_by("timestamp", Direction.ASCENDING)
        return self._store.watch_query(query, transform=_decode_messages)

    def watch_threads(self, user_id: str) -> Subscription[list[ChatThread]]:
        query = (
            Query(CHATS_COLLECTION)
            .where("participants", "array-contains", user_id)
            .order_by("lastMessageTimestamp", Direction.DESCENDING)
        )
        return self._store.watch_query(query, transform=_decode_threads)
