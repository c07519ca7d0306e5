# domain/errors.py


class TrackingError(Exception):
    """Base class for everything raised by booktrack."""


class InvalidSample(TrackingError, ValueError):
    """Malformed or out-of-range position sample. Dropped; subscribers never see it."""


class StaleSample(TrackingError):
    """observed_at not newer than the stored sample. Internal only, never reaches callers."""


class InvalidBooking(TrackingError, ValueError):
    """Booking creation/reschedule parameters violate the booking invariants."""


class InvalidTransition(TrackingError):
    def __init__(self, booking_id: str, current, action: str):
        self.booking_id = booking_id
        self.current = current
        self.action = action
        state = getattr(current, "value", current)
        super().__init__(f"booking {booking_id}: cannot {action} from {state}")


class ProviderUnreachable(TrackingError, LookupError):
    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"provider {provider_id} has no current position")


class NotifierFailure(TrackingError):
    def __init__(self, booking_id: str, event_type: str, cause: BaseException | None = None):
        self.booking_id = booking_id
        self.event_type = event_type
        self.cause = cause
        super().__init__(f"notify {event_type} for booking {booking_id} failed: {cause}")


class PersistenceError(TrackingError):
    """The booking repository refused or failed to record a transition."""
