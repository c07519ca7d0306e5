# io/recorder.py
import json
import logging
import queue
import sys
import threading
from dataclasses import asdict
from enum import Enum
from typing import Protocol

from booktrack.domain.entities.booking import BookingEvent

log = logging.getLogger(__name__)


class Sink(Protocol):
    def write(self, ev: BookingEvent) -> None: ...


def event_to_dict(ev: BookingEvent) -> dict:
    d = asdict(ev)
    d["type"] = ev.type.value
    d["at"] = ev.at.isoformat()
    return d


class JsonlSink:
    def __init__(self, fp=None):
        self.fp = fp or sys.stdout

    def write(self, ev: BookingEvent) -> None:
        self.fp.write(json.dumps(event_to_dict(ev), default=_default) + "\n")


def _default(o):
    return o.value if isinstance(o, Enum) else str(o)


class MemorySink:
    def __init__(self):
        self.events: list[BookingEvent] = []

    def write(self, ev: BookingEvent) -> None:
        self.events.append(ev)


# Async sink (non-blocking, drops on overflow)
class AsyncSink:
    def __init__(self, sink: Sink, maxsize: int = 10000):
        self.sink, self.q = sink, queue.Queue(maxsize=maxsize)
        self._stop = threading.Event()
        self._t = threading.Thread(target=self._run, daemon=True)
        self._t.start()
        self.dropped = 0

    def write(self, ev: BookingEvent) -> None:
        try:
            self.q.put_nowait(ev)
        except queue.Full:
            self.dropped += 1  # never block a transition

    def _run(self):
        while not self._stop.is_set():
            try:
                ev = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self.sink.write(ev)
            except Exception:
                log.exception("audit sink write failed for booking %s", ev.booking_id)
            finally:
                self.q.task_done()

    def flush(self) -> None:
        self.q.join()

    def stop(self):
        self._stop.set()
        self._t.join(timeout=1.0)


class Recorder:
    """Fans committed BookingEvents out to audit sinks."""

    def __init__(self, *sinks: Sink):
        self.sinks = sinks or (JsonlSink(),)

    def emit(self, ev: BookingEvent):
        for s in self.sinks:
            try:
                s.write(ev)
            except Exception:
                log.exception("audit sink %s failed", type(s).__name__)
