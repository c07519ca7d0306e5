# runtime/hooks.py
from typing import Protocol

from booktrack.domain.entities.booking import Booking, BookingEvent
from booktrack.domain.entities.location import ProviderLocationSample


class TrackingHooks(Protocol):
    # location path
    def sample_accepted(self, sample: ProviderLocationSample, *, subscribers: int): ...
    def sample_stale(self, sample: ProviderLocationSample, *, latest_at): ...
    def sample_rejected(self, provider_id: str | None, *, reason: str): ...
    def provider_offline(self, provider_id: str, *, subscribers: int): ...
    def delivery_dropped(self, provider_id: str, *, dropped: int): ...
    def handler_error(self, provider_id: str, *, exc: BaseException): ...

    # booking path
    def transition(self, booking: Booking, event: BookingEvent): ...
    def transition_rejected(self, booking: Booking, *, action: str, reason: str): ...

    # dispatch path
    def session_opened(self, booking_id: str, *, provider_id: str): ...
    def session_closed(self, booking_id: str, *, reason: str): ...
    def arrival(self, booking_id: str, *, provider_id: str, distance_km: float): ...
    def notify_failed(self, booking_id: str, *, event_type: str, exc: BaseException): ...


class NoopHooks:
    def sample_accepted(self, *_, **__):
        pass

    def sample_stale(self, *_, **__):
        pass

    def sample_rejected(self, *_, **__):
        pass

    def provider_offline(self, *_, **__):
        pass

    def delivery_dropped(self, *_, **__):
        pass

    def handler_error(self, *_, **__):
        pass

    def transition(self, *_, **__):
        pass

    def transition_rejected(self, *_, **__):
        pass

    def session_opened(self, *_, **__):
        pass

    def session_closed(self, *_, **__):
        pass

    def arrival(self, *_, **__):
        pass

    def notify_failed(self, *_, **__):
        pass
