# domain/entities/booking.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from booktrack.domain.entities.geography import GeoPoint


class BookingStatus(str, Enum):
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    DISPUTED = "disputed"


class EventType(str, Enum):
    CREATED = "created"
    PAYMENT_REQUESTED = "payment_requested"
    PAID = "paid"
    CONFIRMED = "confirmed"
    STARTED = "started"
    RESCHEDULED = "rescheduled"
    CANCELED = "canceled"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    ESCROW_RELEASED = "escrow_released"
    REFUNDED = "refunded"


class BookingFlow(str, Enum):
    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"


# no further dispatch tracking once a booking lands here
TERMINAL = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELED, BookingStatus.DISPUTED})
TRACKABLE = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})


@dataclass
class Booking:
    id: str
    customer_id: str
    provider_id: str | None
    service_id: str | None
    scheduled_start: datetime
    scheduled_end: datetime
    status: BookingStatus
    created_at: datetime
    updated_at: datetime
    flow: BookingFlow = BookingFlow.SCHEDULED
    destination: GeoPoint | None = None  # service address coordinates
    notes: str | None = None
    version: int = 0
    dispute_resolved: bool = False
    escrow_released: bool = False
    refunded: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL


@dataclass(frozen=True)
class BookingEvent:
    booking_id: str
    type: EventType
    at: datetime
    seq: int  # 1-based position in the booking's log
    meta: dict[str, Any] = field(default_factory=dict)
