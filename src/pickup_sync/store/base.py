"""Document store interface consumed by the pickup-sync services.

The services never talk to a concrete backend directly; they use the
async :class:`DocumentStore` contract below, which mirrors what a
document-oriented cloud store offers:

- plain reads and writes on slash-separated document paths
  (``collection/doc[/subcollection/doc...]``),
- server-side field transforms (:class:`Increment`, :data:`DELETE_FIELD`),
- optimistic transactions with bounded automatic retry,
- snapshot listeners that fire once with the current state and again on
  every committed change.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from ulid import ULID

from .subscription import Subscription

_last_ulid = 0


def _next_ulid() -> str:
    """ULIDs that sort in creation order, even within one millisecond."""
    global _last_ulid
    value = int(ULID())
    if value <= _last_ulid:
        value = _last_ulid + 1
    _last_ulid = value
    return str(ULID.from_int(value))


T = TypeVar("T")

QUERY_OPERATORS: frozenset[str] = frozenset({"==", "in", "array-contains"})


class Direction(StrEnum):
    ASCENDING = "asc"
    DESCENDING = "desc"


def split_path(path: str) -> list[str]:
    parts = [part for part in path.strip("/").split("/") if part]
    if not parts:
        raise ValueError("Empty store path")
    return parts


def validate_document_path(path: str) -> str:
    """Return *path* normalized; documents live at even-length paths."""
    parts = split_path(path)
    if len(parts) % 2 != 0:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts)


def validate_collection_path(path: str) -> str:
    parts = split_path(path)
    if len(parts) % 2 != 1:
        raise ValueError(f"Not a collection path: {path!r}")
    return "/".join(parts)


def parent_collection(path: str) -> str:
    return "/".join(split_path(path)[:-1])


def document_id(path: str) -> str:
    return split_path(path)[-1]


# ── Field transforms ──────────────────────────────────────────────


@dataclass(frozen=True)
class Increment:
    """Add *amount* to a numeric field on the server (missing counts as 0)."""

    amount: int | float = 1


class _DeleteField:
    _instance: _DeleteField | None = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


def apply_fields(current: dict[str, Any] | None, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge *fields* into a copy of *current*, resolving field transforms."""
    result = copy.deepcopy(current) if current else {}
    for key, value in fields.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        elif isinstance(value, Increment):
            base = result.get(key)
            if isinstance(base, bool) or not isinstance(base, (int, float)):
                base = 0
            result[key] = base + value.amount
        else:
            result[key] = copy.deepcopy(value)
    return result


# ── Snapshots and queries ─────────────────────────────────────────


@dataclass(frozen=True)
class DocumentSnapshot:
    """State of one document at a point in time (``data`` is None if absent)."""

    path: str
    data: dict[str, Any] | None
    version: int = 0

    @property
    def id(self) -> str:
        return document_id(self.path)

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, field: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(field, default)


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "array-contains":
            return isinstance(actual, list) and self.value in actual
        raise ValueError(f"Unsupported query operator: {self.op}")


@dataclass(frozen=True)
class Query:
    """Filter/order/limit over the documents directly inside one collection."""

    collection: str
    filters: tuple[FieldFilter, ...] = ()
    ordering: tuple[tuple[str, Direction], ...] = ()
    max_results: int | None = None

    def where(self, field: str, op: str, value: Any) -> Query:
        if op not in QUERY_OPERATORS:
            raise ValueError(f"Unsupported query operator: {op}")
        if op == "in":
            value = tuple(value)
        return Query(
            self.collection,
            self.filters + (FieldFilter(field, op, value),),
            self.ordering,
            self.max_results,
        )

    def order_by(self, field: str, direction: Direction = Direction.ASCENDING) -> Query:
        return Query(
            self.collection,
            self.filters,
            self.ordering + ((field, Direction(direction)),),
            self.max_results,
        )

    def limit(self, count: int) -> Query:
        if count < 1:
            raise ValueError("Query limit must be positive")
        return Query(self.collection, self.filters, self.ordering, count)

    def matches(self, snapshot: DocumentSnapshot) -> bool:
        if snapshot.data is None or parent_collection(snapshot.path) != self.collection:
            return False
        return all(f.matches(snapshot.data) for f in self.filters)

    def apply(self, snapshots: Iterable[DocumentSnapshot]) -> list[DocumentSnapshot]:
        """Run the query over candidate snapshots (stable, multi-key ordering)."""
        results = [s for s in snapshots if self.matches(s)]
        # Full ties fall back to the path, in the direction of the last key.
        paths_descending = bool(self.ordering) and self.ordering[-1][1] == Direction.DESCENDING
        results.sort(key=lambda s: s.path, reverse=paths_descending)
        for field, direction in reversed(self.ordering):
            results.sort(
                key=lambda s, f=field: _sort_key(s.get(f)),
                reverse=direction == Direction.DESCENDING,
            )
        if self.max_results is not None:
            results = results[: self.max_results]
        return results


def _sort_key(value: Any) -> tuple[int, Any]:
    # Missing values sort first ascending; numbers before strings.
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    return (2, str(value))


# ── Store contract ────────────────────────────────────────────────


class Transaction(ABC):
    """Read-then-write unit of work handed to ``run_transaction`` callbacks.

    All reads must happen before the first write. Writes are buffered and
    applied atomically at commit, provided nothing read has changed since.
    """

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot: ...

    @abstractmethod
    def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None: ...

    @abstractmethod
    def update(self, path: str, fields: dict[str, Any]) -> None: ...

    @abstractmethod
    def delete(self, path: str) -> None: ...


TransactionFn = Callable[[Transaction], Awaitable[T]]


class DocumentStore(ABC):
    """Async document store with transactions and change notification."""

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot: ...

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None: ...

    @abstractmethod
    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Patch fields of an existing document (``NotFoundError`` if absent)."""

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    async def delete_many(self, paths: Iterable[str]) -> None:
        """Delete several documents in a single batch."""

    @abstractmethod
    async def query(self, query: Query) -> list[DocumentSnapshot]: ...

    @abstractmethod
    async def run_transaction(self, fn: TransactionFn[T], *, max_attempts: int | None = None) -> T:
        """Run *fn* optimistically, retrying on conflicting concurrent writes.

        Raises ``TransactionConflictError`` once the retry budget is spent.
        Exceptions raised by *fn* abort the transaction without retry.
        """

    @abstractmethod
    def watch_document(
        self, path: str, *, transform: Callable[[DocumentSnapshot], Any] | None = None
    ) -> Subscription[Any]: ...

    @abstractmethod
    def watch_query(
        self,
        query: Query,
        *,
        transform: Callable[[list[DocumentSnapshot]], Any] | None = None,
    ) -> Subscription[Any]: ...

    def new_id(self) -> str:
        """Fresh, time-ordered document id."""
        return _next_ulid()

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document with an auto-assigned id and return the id."""
        doc_id = self.new_id()
        await self.set(f"{validate_collection_path(collection)}/{doc_id}", data)
        return doc_id

    async def atomic_update(
        self,
        path: str,
        fn: Callable[[dict[str, Any] | None], dict[str, Any] | None],
        *,
        merge: bool = True,
    ) -> dict[str, Any] | None:
        """Transactionally replace a document with ``fn(current_data)``.

        ``fn`` receives the committed data (None when the document does not
        exist) and returns the new data, or None to leave it untouched. It
        may run several times under contention, so it must be pure. Returns
        whatever the successful run returned.
        """

        async def _apply(txn: Transaction) -> dict[str, Any] | None:
            snapshot = await txn.get(path)
            current = copy.deepcopy(snapshot.data) if snapshot.data is not None else None
            new_data = fn(current)
            if new_data is not None:
                txn.set(path, new_data, merge=merge)
            return new_data

        return await self.run_transaction(_apply)
