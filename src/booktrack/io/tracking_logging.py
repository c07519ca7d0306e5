# io/tracking_logging.py
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from enum import Enum

from booktrack.io.recorder import Recorder
from booktrack.runtime.hooks import NoopHooks


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_jsonable)


def _jsonable(o):
    if isinstance(o, Enum):
        return o.value
    if hasattr(o, "isoformat"):
        return o.isoformat()
    if is_dataclass(o):
        return asdict(o)
    return str(o)


def default_json_logger(name="booktrack", level="INFO"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(JsonFormatter())
        logger.addHandler(h)
        logger.setLevel(level)
    return logger


class TrackingLogging(NoopHooks):
    """
    One place to shape and emit structured logs for location traffic, booking
    transitions and dispatch sessions.
    """

    BUSINESS = {
        "created",
        "payment_requested",
        "paid",
        "confirmed",
        "started",
        "rescheduled",
        "canceled",
        "completed",
        "disputed",
        "escrow_released",
        "refunded",
    }

    def __init__(
        self,
        run_id: str = "local",
        level: str = "INFO",
        debug: bool = False,
        sample_every: int = 1,
        logger: logging.Logger | None = None,
        recorder: Recorder | None = None,
    ):
        self.run_id, self.debug, self.sample_every = run_id, debug, max(1, sample_every)
        self.recorder = recorder
        self.log = logger or default_json_logger(level=level)
        self._accepted = 0

    # --------------- Helpers -----------------------------

    def _emit(self, level: str, msg: str, **extra):
        payload = {"run_id": self.run_id}
        self.log.log(getattr(logging, level), msg, extra={"extra": {**payload, **extra}})

    # --------------------------------------------------------

    # location path

    def sample_accepted(self, sample, *, subscribers: int):
        self._accepted += 1
        if self.debug and (self._accepted % self.sample_every) == 0:
            self._emit(
                "DEBUG",
                "sample_accepted",
                provider_id=sample.provider_id,
                lat=sample.lat,
                lng=sample.lng,
                observed_at=sample.observed_at,
                subscribers=subscribers,
            )

    def sample_stale(self, sample, *, latest_at):
        if self.debug:
            self._emit(
                "DEBUG",
                "sample_stale",
                provider_id=sample.provider_id,
                observed_at=sample.observed_at,
                latest_at=latest_at,
            )

    def sample_rejected(self, provider_id, *, reason: str):
        self._emit("WARNING", "sample_rejected", provider_id=provider_id, reason=reason)

    def provider_offline(self, provider_id, *, subscribers: int):
        self._emit("INFO", "provider_offline", provider_id=provider_id, subscribers=subscribers)

    def delivery_dropped(self, provider_id, *, dropped: int):
        self._emit("WARNING", "delivery_dropped", provider_id=provider_id, dropped=dropped)

    def handler_error(self, provider_id, *, exc: BaseException):
        self._emit("ERROR", "handler_error", provider_id=provider_id, error=repr(exc))

    # booking path

    def transition(self, booking, event):
        name = event.type.value
        level = "INFO" if name in self.BUSINESS else "DEBUG"
        self._emit(
            level,
            name,
            booking_id=booking.id,
            status=booking.status,
            seq=event.seq,
            at=event.at,
            version=booking.version,
            **({"data": event.meta} if event.meta else {}),
        )
        if self.recorder:
            self.recorder.emit(event)

    def transition_rejected(self, booking, *, action: str, reason: str):
        self._emit(
            "WARNING", "transition_rejected", booking_id=booking.id, action=action, reason=reason
        )

    # dispatch path

    def session_opened(self, booking_id, *, provider_id):
        self._emit("INFO", "session_opened", booking_id=booking_id, provider_id=provider_id)

    def session_closed(self, booking_id, *, reason: str):
        self._emit("INFO", "session_closed", booking_id=booking_id, reason=reason)

    def arrival(self, booking_id, *, provider_id, distance_km: float):
        self._emit(
            "INFO", "provider_arrived", booking_id=booking_id, provider_id=provider_id, distance_km=distance_km
        )

    def notify_failed(self, booking_id, *, event_type: str, exc: BaseException):
        self._emit("ERROR", "notify_failed", booking_id=booking_id, event_type=event_type, error=str(exc))
