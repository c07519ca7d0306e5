# services/persistence.py
import threading
from dataclasses import replace
from typing import Protocol, runtime_checkable

from booktrack.domain.entities.booking import Booking, BookingEvent
from booktrack.domain.errors import PersistenceError


@runtime_checkable
class BookingRepository(Protocol):
    """
    Durable record of accepted transitions.
    save() must store the booking row and append the event as one unit; a transition
    counts as committed only once it returns. Raise PersistenceError to refuse.
    """

    def save(self, booking: Booking, event: BookingEvent) -> None: ...


class InMemoryBookingRepository:
    """Row + event log per booking, with an optimistic check on Booking.version."""

    def __init__(self):
        self._rows: dict[str, Booking] = {}
        self._events: dict[str, list[BookingEvent]] = {}
        self._lock = threading.Lock()

    def save(self, booking: Booking, event: BookingEvent) -> None:
        with self._lock:
            prev = self._rows.get(booking.id)
            expected = 0 if prev is None else prev.version
            if booking.version != expected + 1:
                raise PersistenceError(
                    f"booking {booking.id}: version {booking.version} does not follow {expected}"
                )
            self._rows[booking.id] = replace(booking)
            self._events.setdefault(booking.id, []).append(event)

    def get(self, booking_id: str) -> Booking | None:
        with self._lock:
            row = self._rows.get(booking_id)
            return replace(row) if row else None

    def events(self, booking_id: str) -> list[BookingEvent]:
        with self._lock:
            return list(self._events.get(booking_id, ()))


class NullBookingRepository:
    def save(self, booking: Booking, event: BookingEvent) -> None:
        return None
