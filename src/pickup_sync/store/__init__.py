"""Document store contract, reference in-memory store, and subscriptions."""

from .base import (
    DELETE_FIELD,
    Direction,
    DocumentSnapshot,
    DocumentStore,
    Increment,
    Query,
    Transaction,
)
from .memory import InMemoryDocumentStore, StoreStats
from .subscription import LATEST_ONLY, Subscription

__all__ = [
    "DELETE_FIELD",
    "Direction",
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "LATEST_ONLY",
    "Increment",
    "Query",
    "StoreStats",
    "Subscription",
    "Transaction",
]
