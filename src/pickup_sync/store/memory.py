"""In-process reference implementation of :class:`DocumentStore`.

Every document carries a version counter that bumps on each committed
write (deletes included). Transactions record the version of everything
they read and commit with a compare-and-swap over those versions; a
mismatch means another writer got there first and the callback is re-run.

Every operation yields to the event loop (optionally sleeping for a
simulated round trip), so concurrent callers interleave the way remote
clients would. Fault injection hooks let tests simulate transient network
errors and broken listeners.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..errors import NotFoundError, TransactionConflictError, TransientIOError
from .base import (
    DocumentSnapshot,
    DocumentStore,
    Query,
    T,
    Transaction,
    TransactionFn,
    apply_fields,
    parent_collection,
    validate_document_path,
)
from .subscription import LATEST_ONLY, Subscription

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


@dataclass
class _Watcher:
    subscription: Subscription[Any]
    path: str | None = None
    query: Query | None = None
    last_signature: tuple[tuple[str, int], ...] | None = None


@dataclass
class _InjectedFailure:
    error: BaseException
    operations: frozenset[str] | None = None

    def applies_to(self, operation: str) -> bool:
        return self.operations is None or operation in self.operations


@dataclass
class StoreStats:
    """Counters exposed for tests and the CLI simulator."""

    commits: int = 0
    conflicts: int = 0
    reads: int = 0
    queries: int = 0


class _MemoryTransaction(Transaction):
    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self.reads: dict[str, int] = {}
        self.writes: list[tuple[str, str, dict[str, Any] | None, bool]] = []

    async def get(self, path: str) -> DocumentSnapshot:
        if self.writes:
            raise RuntimeError("Transactions require all reads to be executed before all writes")
        path = validate_document_path(path)
        await self._store._io("get")
        self._store.stats.reads += 1
        snapshot = self._store._snapshot(path)
        self.reads[path] = snapshot.version
        return snapshot

    def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None:
        self.writes.append(("set", validate_document_path(path), data, merge))

    def update(self, path: str, fields: dict[str, Any]) -> None:
        self.writes.append(("update", validate_document_path(path), fields, True))

    def delete(self, path: str) -> None:
        self.writes.append(("delete", validate_document_path(path), None, False))


class InMemoryDocumentStore(DocumentStore):
    """Versioned dict-backed store with optimistic transactions."""

    def __init__(
        self,
        *,
        latency_seconds: float = 0.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = 0.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.latency_seconds = latency_seconds
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.stats = StoreStats()
        self._docs: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, int] = {}
        self._watchers: list[_Watcher] = []
        self._failures: list[_InjectedFailure] = []

    # ── Fault injection ───────────────────────────────────────────

    def inject_failures(
        self,
        count: int = 1,
        *,
        operations: Iterable[str] | None = None,
        error: Callable[[], BaseException] | None = None,
    ) -> None:
        """Make the next *count* matching operations raise.

        *operations* restricts the failure to named calls (``get``, ``set``,
        ``update``, ``delete``, ``query``, ``commit``). The default error is
        :class:`TransientIOError`.
        """
        ops = frozenset(operations) if operations is not None else None
        for _ in range(count):
            exc = error() if error is not None else TransientIOError("simulated network failure")
            self._failures.append(_InjectedFailure(exc, ops))

    def break_watchers(self, error: BaseException | None = None, *, path_prefix: str = "") -> int:
        """Deliver a terminal error to every listener under *path_prefix*."""
        broken = 0
        for watcher in list(self._watchers):
            target = watcher.path if watcher.path is not None else watcher.query.collection  # type: ignore[union-attr]
            if target.startswith(path_prefix):
                watcher.subscription.fail(error or TransientIOError("listener connection lost"))
                broken += 1
        return broken

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    # ── Plain operations ──────────────────────────────────────────

    async def get(self, path: str) -> DocumentSnapshot:
        path = validate_document_path(path)
        await self._io("get")
        self.stats.reads += 1
        return self._snapshot(path)

    async def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None:
        path = validate_document_path(path)
        await self._io("set")
        base = self._docs.get(path) if merge else None
        self._commit({path: apply_fields(base, data)})

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        path = validate_document_path(path)
        await self._io("update")
        if path not in self._docs:
            raise NotFoundError(path)
        self._commit({path: apply_fields(self._docs[path], fields)})

    async def delete(self, path: str) -> None:
        path = validate_document_path(path)
        await self._io("delete")
        if path in self._docs:
            self._commit({path: None})

    async def delete_many(self, paths: Iterable[str]) -> None:
        targets = [validate_document_path(p) for p in paths]
        await self._io("delete")
        changes: dict[str, dict[str, Any] | None] = {p: None for p in targets if p in self._docs}
        if changes:
            self._commit(changes)

    async def query(self, query: Query) -> list[DocumentSnapshot]:
        await self._io("query")
        self.stats.queries += 1
        return self._run_query(query)

    # ── Transactions ──────────────────────────────────────────────

    async def run_transaction(self, fn: TransactionFn[T], *, max_attempts: int | None = None) -> T:
        attempts = max_attempts or self.max_attempts
        read_paths: list[str] = []
        for attempt in range(1, attempts + 1):
            txn = _MemoryTransaction(self)
            result = await fn(txn)
            await self._io("commit")
            if self._try_commit(txn):
                return result
            read_paths = sorted(txn.reads)
            self.stats.conflicts += 1
            logger.debug(
                "Transaction conflict on %s (attempt %d/%d)", ", ".join(read_paths), attempt, attempts
            )
            if attempt < attempts:
                await self._backoff(attempt)
        raise TransactionConflictError(attempts, read_paths)

    def _try_commit(self, txn: _MemoryTransaction) -> bool:
        # Runs without yielding: the version check and the apply are atomic.
        for path, version in txn.reads.items():
            if self._versions.get(path, 0) != version:
                return False
        working: dict[str, dict[str, Any] | None] = {}
        for op, path, payload, merge in txn.writes:
            current = working[path] if path in working else self._docs.get(path)
            if op == "delete":
                working[path] = None
            elif op == "update":
                if current is None:
                    raise NotFoundError(path)
                working[path] = apply_fields(current, payload or {})
            else:
                working[path] = apply_fields(current if merge else None, payload or {})
        if working:
            self._commit(working)
        return True

    async def _backoff(self, attempt: int) -> None:
        if self.backoff_seconds <= 0:
            await asyncio.sleep(0)
            return
        delay = self.backoff_seconds * (2 ** (attempt - 1))
        await asyncio.sleep(delay * random.uniform(0.5, 1.5))

    # ── Listeners ─────────────────────────────────────────────────

    def watch_document(
        self, path: str, *, transform: Callable[[DocumentSnapshot], Any] | None = None
    ) -> Subscription[Any]:
        path = validate_document_path(path)
        watcher = _Watcher(Subscription(path, transform=transform, buffer_size=LATEST_ONLY), path=path)
        return self._attach(watcher)

    def watch_query(
        self,
        query: Query,
        *,
        transform: Callable[[list[DocumentSnapshot]], Any] | None = None,
    ) -> Subscription[Any]:
        subscription = Subscription(query.collection, transform=transform, buffer_size=LATEST_ONLY)
        watcher = _Watcher(subscription, query=query)
        return self._attach(watcher)

    def _attach(self, watcher: _Watcher) -> Subscription[Any]:
        self._watchers.append(watcher)
        watcher.subscription.set_release_hook(lambda: self._detach(watcher))
        self._deliver(watcher, force=True)
        return watcher.subscription

    def _detach(self, watcher: _Watcher) -> None:
        if watcher in self._watchers:
            self._watchers.remove(watcher)

    def _deliver(self, watcher: _Watcher, *, force: bool = False) -> None:
        if watcher.path is not None:
            snapshot = self._snapshot(watcher.path)
            signature = ((snapshot.path, snapshot.version),)
            payload: Any = snapshot
        else:
            results = self._run_query(watcher.query)  # type: ignore[arg-type]
            signature = tuple((s.path, s.version) for s in results)
            payload = results
        if not force and signature == watcher.last_signature:
            return
        watcher.last_signature = signature
        watcher.subscription.push(payload)

    # ── Internals ─────────────────────────────────────────────────

    async def _io(self, operation: str) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        else:
            await asyncio.sleep(0)
        for index, failure in enumerate(self._failures):
            if failure.applies_to(operation):
                del self._failures[index]
                raise failure.error

    def _snapshot(self, path: str) -> DocumentSnapshot:
        data = self._docs.get(path)
        return DocumentSnapshot(
            path=path,
            data=copy.deepcopy(data) if data is not None else None,
            version=self._versions.get(path, 0),
        )

    def _run_query(self, query: Query) -> list[DocumentSnapshot]:
        candidates = (
            self._snapshot(path) for path in self._docs if parent_collection(path) == query.collection
        )
        return query.apply(candidates)

    def _commit(self, changes: dict[str, dict[str, Any] | None]) -> None:
        for path, data in changes.items():
            if data is None:
                self._docs.pop(path, None)
            else:
                self._docs[path] = data
            self._versions[path] = self._versions.get(path, 0) + 1
        self.stats.commits += 1
        changed_collections = {parent_collection(path) for path in changes}
        for watcher in list(self._watchers):
            if watcher.path is not None and watcher.path in changes:
                self._deliver(watcher)
            elif watcher.query is not None and watcher.query.collection in changed_collections:
                self._deliver(watcher)
