"""Client-side sync protocol for shared pickup requests.

Households and collectors coordinate through a document store without an
application server in between. This package holds the pieces each device
runs: the request state machine, the household's draft item list, the
collector location feed, and per-request chat.

Public API surface: consumers import from this package.
"""

from .chat import ChatNotifier, ChatSynchronizer
from .config import SettingsStore, SyncSettings
from .drafts import DraftInventoryStore
from .errors import (
    AlreadyAcceptedError,
    InvalidRoleError,
    InvalidTransitionError,
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    PickupSyncError,
    TransactionConflictError,
    TransientIOError,
    ValidationError,
)
from .identity import SessionProvider, StaticSession, UserIdentity, UserRole
from .ledger import EarningsSummary, TransactionLedger
from .lifecycle import RequestLifecycleManager
from .models import (
    ChatThread,
    LocationSample,
    Message,
    MessageType,
    PaymentMethod,
    PickupLocation,
    PickupRequest,
    RequestStatus,
    TransactionItem,
    TransactionRecord,
    WasteItem,
)
from .services import PickupServices
from .store import DocumentStore, InMemoryDocumentStore, Subscription
from .tracking import LocationTrackingChannel

__version__ = "0.1.0"

__all__ = [
    "AlreadyAcceptedError",
    "ChatNotifier",
    "ChatSynchronizer",
    "ChatThread",
    "DocumentStore",
    "DraftInventoryStore",
    "EarningsSummary",
    "InMemoryDocumentStore",
    "InvalidRoleError",
    "InvalidTransitionError",
    "LocationSample",
    "LocationTrackingChannel",
    "Message",
    "MessageType",
    "NotAuthenticatedError",
    "NotAuthorizedError",
    "NotFoundError",
    "PaymentMethod",
    "PickupLocation",
    "PickupRequest",
    "PickupServices",
    "PickupSyncError",
    "RequestLifecycleManager",
    "RequestStatus",
    "SessionProvider",
    "SettingsStore",
    "StaticSession",
    "Subscription",
    "SyncSettings",
    "TransactionConflictError",
    "TransactionItem",
    "TransactionLedger",
    "TransactionRecord",
    "TransientIOError",
    "UserIdentity",
    "UserRole",
    "ValidationError",
    "WasteItem",
]
