"""Document models shared by the household and collector clients.

Each model maps to one store document (or an embedded map) and knows how
to serialize itself to the camelCase field layout both apps read:

- ``pickup_requests/{id}``                         -> PickupRequest
- ``pickup_requests/{id}/location_updates/{auto}`` -> LocationSample
- ``chats/{id}``                                   -> ChatThread
- ``chats/{id}/messages/{auto}``                   -> Message
- ``users/{id}.draftWasteItems`` / ``draftPickupLocation``
- ``transactions/{id}``                            -> TransactionRecord

``from_dict`` is lenient: documents written by older clients may miss
fields, which fall back to the same defaults a fresh object would have.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .pricing import estimate_value

PICKUP_REQUESTS_COLLECTION = "pickup_requests"
LOCATION_UPDATES_SUBCOLLECTION = "location_updates"
CHATS_COLLECTION = "chats"
MESSAGES_SUBCOLLECTION = "messages"
USERS_COLLECTION = "users"
TRANSACTIONS_COLLECTION = "transactions"

FIELD_DRAFT_WASTE_ITEMS = "draftWasteItems"
FIELD_DRAFT_LOCATION = "draftPickupLocation"

ACCURATE_WITHIN_METERS = 50.0


def request_path(request_id: str) -> str:
    return f"{PICKUP_REQUESTS_COLLECTION}/{request_id}"


def location_updates_collection(request_id: str) -> str:
    return f"{request_path(request_id)}/{LOCATION_UPDATES_SUBCOLLECTION}"


def chat_path(chat_id: str) -> str:
    return f"{CHATS_COLLECTION}/{chat_id}"


def messages_collection(chat_id: str) -> str:
    return f"{chat_path(chat_id)}/{MESSAGES_SUBCOLLECTION}"


def user_path(user_id: str) -> str:
    return f"{USERS_COLLECTION}/{user_id}"


def transaction_path(transaction_id: str) -> str:
    return f"{TRANSACTIONS_COLLECTION}/{transaction_id}"


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


class RequestStatus(StrEnum):
    """Pickup request lifecycle states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MessageType(StrEnum):
    TEXT = "TEXT"
    SYSTEM = "SYSTEM"


class PaymentMethod(StrEnum):
    CASH = "cash"
    TRANSFER = "transfer"
    E_WALLET = "e_wallet"


@dataclass(frozen=True)
class PickupLocation:
    """Geographic point plus the human-readable address shown to collectors."""

    lat: float = 0.0
    lng: float = 0.0
    address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "address": self.address}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PickupLocation:
        if not isinstance(data, dict):
            return cls()
        return cls(
            lat=_as_float(data.get("lat")),
            lng=_as_float(data.get("lng")),
            address=_as_str(data.get("address")),
        )


@dataclass(frozen=True)
class WasteItem:
    """A single recyclable item on a household's draft list or in a request."""

    type: str
    weight: float
    estimated_value: float = 0.0
    description: str = ""
    image_url: str = ""
    id: str = ""
    created_at: int = 0  # epoch millis; 0 means "stamp on write"

    @classmethod
    def priced(
        cls,
        waste_type: str,
        weight: float,
        description: str = "",
        image_url: str = "",
    ) -> WasteItem:
        """Build a draft item with its estimated value filled in from the price table."""
        return cls(
            type=waste_type,
            weight=weight,
            estimated_value=estimate_value(waste_type, weight),
            description=description,
            image_url=image_url,
        )

    def is_valid(self) -> bool:
        return bool(self.type.strip()) and self.weight > 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "weight": self.weight,
            "estimatedValue": self.estimated_value,
            "description": self.description,
            "imageUrl": self.image_url,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WasteItem:
        return cls(
            id=_as_str(data.get("id")),
            type=_as_str(data.get("type")),
            weight=_as_float(data.get("weight")),
            estimated_value=_as_float(data.get("estimatedValue")),
            description=_as_str(data.get("description")),
            image_url=_as_str(data.get("imageUrl")),
            created_at=_as_int(data.get("createdAt")),
        )


@dataclass(frozen=True)
class PickupRequest:
    """The shared record both actors read and transition.

    ``collector_id`` is set exactly when the status is ACCEPTED,
    IN_PROGRESS or COMPLETED.
    """

    id: str
    owner_id: str
    location: PickupLocation
    items: list[WasteItem] = field(default_factory=list)
    status: RequestStatus = RequestStatus.PENDING
    collector_id: str | None = None
    total_value: float = 0.0
    notes: str = ""
    created_at: int = 0
    updated_at: int = 0

    def total_weight(self) -> float:
        return sum(item.weight for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "collectorId": self.collector_id,
            "status": str(self.status),
            "items": [item.to_dict() for item in self.items],
            "location": self.location.to_dict(),
            "totalValue": self.total_value,
            "notes": self.notes,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PickupRequest:
        collector_id = data.get("collectorId")
        return cls(
            id=_as_str(data.get("id")),
            owner_id=_as_str(data.get("ownerId")),
            collector_id=collector_id if isinstance(collector_id, str) and collector_id else None,
            status=RequestStatus(data.get("status", RequestStatus.PENDING)),
            items=[WasteItem.from_dict(item) for item in data.get("items") or []],
            location=PickupLocation.from_dict(data.get("location")),
            total_value=_as_float(data.get("totalValue")),
            notes=_as_str(data.get("notes")),
            created_at=_as_int(data.get("createdAt")),
            updated_at=_as_int(data.get("updatedAt")),
        )


@dataclass(frozen=True)
class LocationSample:
    """One collector position fix published while a pickup is underway."""

    latitude: float
    longitude: float
    accuracy: float = 0.0  # meters
    timestamp: int = 0  # epoch millis
    collector_id: str = ""
    speed: float | None = None  # m/s

    def is_accurate(self) -> bool:
        return self.accuracy <= ACCURATE_WITHIN_METERS

    def accuracy_label(self) -> str:
        meters = int(self.accuracy)
        if self.accuracy < 10:
            return f"Very accurate (±{meters}m)"
        if self.accuracy < 50:
            return f"Accurate (±{meters}m)"
        if self.accuracy < 100:
            return f"Approximate (±{meters}m)"
        return f"Low accuracy (±{meters}m)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp,
            "collectorId": self.collector_id,
            "speed": self.speed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocationSample:
        speed = data.get("speed")
        return cls(
            latitude=_as_float(data.get("latitude")),
            longitude=_as_float(data.get("longitude")),
            accuracy=_as_float(data.get("accuracy")),
            timestamp=_as_int(data.get("timestamp")),
            collector_id=_as_str(data.get("collectorId")),
            speed=_as_float(speed) if speed is not None else None,
        )


@dataclass(frozen=True)
class Message:
    id: str = ""
    chat_id: str = ""
    sender_id: str = ""
    sender_name: str = ""
    text: str = ""
    timestamp: int = 0
    read: bool = False
    type: MessageType = MessageType.TEXT

    @classmethod
    def system(cls, chat_id: str, text: str, timestamp: int) -> Message:
        """System notices are born read and never touch unread counters."""
        return cls(
            chat_id=chat_id,
            sender_id="system",
            sender_name="System",
            text=text,
            timestamp=timestamp,
            read=True,
            type=MessageType.SYSTEM,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chatId": self.chat_id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "text": self.text,
            "timestamp": self.timestamp,
            "read": self.read,
            "type": str(self.type),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=_as_str(data.get("id")),
            chat_id=_as_str(data.get("chatId")),
            sender_id=_as_str(data.get("senderId")),
            sender_name=_as_str(data.get("senderName")),
            text=_as_str(data.get("text")),
            timestamp=_as_int(data.get("timestamp")),
            read=bool(data.get("read", False)),
            type=MessageType(data.get("type", MessageType.TEXT)),
        )


UNREAD_HOUSEHOLD_FIELD = "unreadCountHousehold"
UNREAD_COLLECTOR_FIELD = "unreadCountCollector"


@dataclass(frozen=True)
class ChatThread:
    """One conversation per pickup request between its household and collector."""

    id: str
    request_id: str
    household_id: str
    collector_id: str
    household_name: str = ""
    collector_name: str = ""
    last_message: str = ""
    last_message_timestamp: int = 0
    unread_count_household: int = 0
    unread_count_collector: int = 0
    created_at: int = 0

    @property
    def participants(self) -> list[str]:
        return [self.household_id, self.collector_id]

    def unread_field_for(self, user_id: str) -> str | None:
        """Store field holding *user_id*'s unread counter, or None for outsiders."""
        if user_id == self.household_id:
            return UNREAD_HOUSEHOLD_FIELD
        if user_id == self.collector_id:
            return UNREAD_COLLECTOR_FIELD
        return None

    def unread_count(self, user_id: str) -> int:
        if user_id == self.household_id:
            return self.unread_count_household
        if user_id == self.collector_id:
            return self.unread_count_collector
        return 0

    def other_user_id(self, user_id: str) -> str:
        if user_id == self.household_id:
            return self.collector_id
        if user_id == self.collector_id:
            return self.household_id
        return ""

    def other_user_name(self, user_id: str) -> str:
        if user_id == self.household_id:
            return self.collector_name
        if user_id == self.collector_id:
            return self.household_name
        return "Unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requestId": self.request_id,
            "householdId": self.household_id,
            "householdName": self.household_name,
            "collectorId": self.collector_id,
            "collectorName": self.collector_name,
            "participants": self.participants,
            "lastMessage": self.last_message,
            "lastMessageTimestamp": self.last_message_timestamp,
            UNREAD_HOUSEHOLD_FIELD: self.unread_count_household,
            UNREAD_COLLECTOR_FIELD: self.unread_count_collector,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatThread:
        return cls(
            id=_as_str(data.get("id")),
            request_id=_as_str(data.get("requestId")),
            household_id=_as_str(data.get("householdId")),
            household_name=_as_str(data.get("householdName")),
            collector_id=_as_str(data.get("collectorId")),
            collector_name=_as_str(data.get("collectorName")),
            last_message=_as_str(data.get("lastMessage")),
            last_message_timestamp=_as_int(data.get("lastMessageTimestamp")),
            unread_count_household=_as_int(data.get(UNREAD_HOUSEHOLD_FIELD)),
            unread_count_collector=_as_int(data.get(UNREAD_COLLECTOR_FIELD)),
            created_at=_as_int(data.get("createdAt")),
        )


@dataclass(frozen=True)
class TransactionItem:
    """Settled breakdown of one waste type, as weighed by the collector."""

    type: str
    estimated_weight: float = 0.0
    estimated_value: float = 0.0
    actual_weight: float = 0.0
    actual_value: float = 0.0

    def to_waste_item(self, created_at: int) -> WasteItem:
        return WasteItem(
            type=self.type,
            weight=self.actual_weight,
            estimated_value=self.actual_value,
            created_at=created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "estimatedWeight": self.estimated_weight,
            "estimatedValue": self.estimated_value,
            "actualWeight": self.actual_weight,
            "actualValue": self.actual_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionItem:
        return cls(
            type=_as_str(data.get("type")),
            estimated_weight=_as_float(data.get("estimatedWeight")),
            estimated_value=_as_float(data.get("estimatedValue")),
            actual_weight=_as_float(data.get("actualWeight")),
            actual_value=_as_float(data.get("actualValue")),
        )


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable settlement written once when a request completes."""

    id: str
    request_id: str
    household_id: str
    collector_id: str
    final_amount: float
    estimated_value: float = 0.0
    estimated_items: list[WasteItem] = field(default_factory=list)
    actual_items: list[TransactionItem] = field(default_factory=list)
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: str = "completed"
    location: PickupLocation = field(default_factory=PickupLocation)
    completed_at: int = 0
    notes: str = ""

    def total_weight(self) -> float:
        """Actual weight when a breakdown was recorded, else the estimate."""
        if self.actual_items:
            return sum(item.actual_weight for item in self.actual_items)
        return sum(item.weight for item in self.estimated_items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requestId": self.request_id,
            "householdId": self.household_id,
            "collectorId": self.collector_id,
            "estimatedWasteItems": [item.to_dict() for item in self.estimated_items],
            "actualWasteItems": [item.to_dict() for item in self.actual_items],
            "estimatedValue": self.estimated_value,
            "finalAmount": self.final_amount,
            "paymentMethod": str(self.payment_method),
            "paymentStatus": self.payment_status,
            "location": self.location.to_dict(),
            "completedAt": self.completed_at,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionRecord:
        return cls(
            id=_as_str(data.get("id")),
            request_id=_as_str(data.get("requestId")),
            household_id=_as_str(data.get("householdId")),
            collector_id=_as_str(data.get("collectorId")),
            estimated_items=[WasteItem.from_dict(i) for i in data.get("estimatedWasteItems") or []],
            actual_items=[TransactionItem.from_dict(i) for i in data.get("actualWasteItems") or []],
            estimated_value=_as_float(data.get("estimatedValue")),
            final_amount=_as_float(data.get("finalAmount")),
            payment_method=PaymentMethod(data.get("paymentMethod", PaymentMethod.CASH)),
            payment_status=_as_str(data.get("paymentStatus"), "completed"),
            location=PickupLocation.from_dict(data.get("location")),
            completed_at=_as_int(data.get("completedAt")),
            notes=_as_str(data.get("notes")),
        )
