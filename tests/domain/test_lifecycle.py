# tests/domain/test_lifecycle.py
from datetime import timedelta

import pytest

from booktrack.domain.entities.booking import BookingFlow, BookingStatus, EventType
from booktrack.domain.errors import InvalidBooking, InvalidTransition, PersistenceError
from booktrack.domain.lifecycle import BookingPolicy, create_immediate, create_scheduled
from booktrack.runtime.clock import ManualClock, hours, minutes
from booktrack.services.persistence import InMemoryBookingRepository

HOME = (32.0853, 34.7818)


def _clock():
    return ManualClock.utc(2025, 3, 1, 9, 0, 0)


def _scheduled(clock, **kw):
    args = dict(
        customer_id="c1",
        provider_id="p1",
        service_id="s1",
        start=clock.now() + hours(24),
        destination=HOME,
        clock=clock,
        repository=InMemoryBookingRepository(),
    )
    args.update(kw)
    return create_scheduled(**args)


class FlakyRepo:
    """Accepts everything except the listed event types."""

    def __init__(self, fail_on=(), exc=RuntimeError("db down")):
        self.fail_on = set(fail_on)
        self.exc = exc
        self.saved = []

    def save(self, booking, event):
        if event.type in self.fail_on:
            raise self.exc
        self.saved.append((booking.status, event.type))


def test_scheduled_happy_path_records_one_event_per_transition():
    clock = _clock()
    lc = _scheduled(clock)
    assert lc.status == BookingStatus.PENDING

    lc.request_payment()
    clock.advance(60)
    lc.mark_paid()
    clock.advance(60)
    lc.start()
    clock.advance(60)
    lc.complete()

    assert lc.status == BookingStatus.COMPLETED
    types = [e.type for e in lc.events]
    assert types == [
        EventType.CREATED,
        EventType.PAYMENT_REQUESTED,
        EventType.PAID,
        EventType.STARTED,
        EventType.COMPLETED,
    ]
    assert [e.seq for e in lc.events] == [1, 2, 3, 4, 5]
    ats = [e.at for e in lc.events]
    assert ats == sorted(ats)
    assert lc.booking.version == 5


def test_invalid_transition_leaves_state_and_log_untouched():
    lc = _scheduled(_clock())
    lc.confirm()
    lc.start()
    lc.complete()
    before = lc.events

    with pytest.raises(InvalidTransition) as ei:
        lc.confirm()

    assert ei.value.current == BookingStatus.COMPLETED
    assert ei.value.action == "confirm"
    assert lc.status == BookingStatus.COMPLETED
    assert lc.events == before


def test_cancel_allowed_until_work_starts():
    for prep in ([], ["request_payment"], ["confirm"]):
        lc = _scheduled(_clock())
        for action in prep:
            getattr(lc, action)()
        ev = lc.cancel(reason="changed my mind")
        assert lc.status == BookingStatus.CANCELED
        assert ev.meta["reason"] == "changed my mind"

    lc = _scheduled(_clock())
    lc.confirm()
    lc.start()
    with pytest.raises(InvalidTransition):
        lc.cancel()
    assert not lc.can("cancel")


def test_scheduled_start_must_be_in_the_future():
    clock = _clock()
    with pytest.raises(InvalidBooking):
        _scheduled(clock, start=clock.now() - minutes(1))
    with pytest.raises(InvalidBooking):
        _scheduled(clock, duration_minutes=0)


def test_scheduled_end_uses_default_duration():
    clock = _clock()
    lc = _scheduled(clock)
    b = lc.booking
    assert b.scheduled_end - b.scheduled_start == timedelta(minutes=120)
    assert lc.events[0].meta == {"flow": "scheduled"}


def test_immediate_is_confirmed_at_creation_and_starts_after_dispatch_delay():
    clock = _clock()
    t0 = clock.now()
    lc = create_immediate(
        customer_id="c1",
        provider_id="p1",
        service_id="s1",
        estimated_arrival_minutes=10,
        destination=HOME,
        clock=clock,
    )
    b = lc.booking
    assert b.status == BookingStatus.CONFIRMED
    assert b.flow == BookingFlow.IMMEDIATE
    assert b.scheduled_start == t0 + minutes(5)
    assert b.scheduled_end == b.scheduled_start + minutes(10 + 120)

    (ev,) = lc.events
    assert ev.type == EventType.CREATED
    assert ev.meta["auto_confirmed"] is True
    assert ev.meta["estimated_arrival_minutes"] == 10
    # never passed through pending
    assert all(e.type != EventType.CONFIRMED for e in lc.events)


def test_immediate_respects_policy_and_requires_provider():
    clock = _clock()
    policy = BookingPolicy(dispatch_delay_minutes=2, default_service_duration_minutes=60)
    lc = create_immediate(
        customer_id="c1",
        provider_id="p1",
        service_id=None,
        estimated_arrival_minutes=15,
        clock=clock,
        policy=policy,
    )
    assert lc.booking.scheduled_start == clock.now() + minutes(2)
    assert lc.booking.scheduled_end == lc.booking.scheduled_start + minutes(75)

    with pytest.raises(InvalidBooking):
        create_immediate(
            customer_id="c1", provider_id="", service_id=None, estimated_arrival_minutes=5, clock=clock
        )


def test_duplicate_request_id_returns_original_event():
    lc = _scheduled(_clock())
    first = lc.confirm(request_id="req-1")
    again = lc.confirm(request_id="req-1")
    assert again is first
    assert len(lc.events) == 2
    assert first.meta["request_id"] == "req-1"


def test_request_id_replay_is_scoped_to_its_action():
    lc = _scheduled(_clock())
    lc.confirm()
    lc.start()
    done = lc.complete(request_id="r")

    with pytest.raises(InvalidTransition):
        lc.cancel(request_id="r")
    assert lc.status == BookingStatus.COMPLETED
    assert lc.events[-1] is done
    assert lc.complete(request_id="r") is done


def test_same_request_id_on_a_new_action_applies_it():
    lc = _scheduled(_clock())
    lc.confirm(request_id="r")
    started = lc.start(request_id="r")
    assert started.type == EventType.STARTED
    assert lc.status == BookingStatus.IN_PROGRESS


def test_failed_save_leaves_booking_unchanged():
    clock = _clock()
    repo = FlakyRepo(fail_on={EventType.CONFIRMED})
    lc = _scheduled(clock, repository=repo)

    with pytest.raises(PersistenceError):
        lc.confirm()

    assert lc.status == BookingStatus.PENDING
    assert len(lc.events) == 1
    assert lc.booking.version == 1
    # a later, different transition still works
    lc.cancel()
    assert repo.saved[-1] == (BookingStatus.CANCELED, EventType.CANCELED)


def test_repository_version_check():
    repo = InMemoryBookingRepository()
    lc = _scheduled(_clock(), repository=repo)
    lc.confirm()
    assert repo.get(lc.booking_id).status == BookingStatus.CONFIRMED
    assert [e.type for e in repo.events(lc.booking_id)] == [EventType.CREATED, EventType.CONFIRMED]

    stale = lc.booking  # version 2 already stored
    with pytest.raises(PersistenceError):
        repo.save(stale, lc.events[-1])


def test_reschedule_moves_slot_and_keeps_length():
    clock = _clock()
    lc = _scheduled(clock)
    old = lc.booking
    new_start = old.scheduled_start + hours(3)

    ev = lc.reschedule(new_start)

    b = lc.booking
    assert b.status == BookingStatus.PENDING
    assert b.scheduled_start == new_start
    assert b.scheduled_end - b.scheduled_start == old.scheduled_end - old.scheduled_start
    assert ev.type == EventType.RESCHEDULED
    assert ev.meta["previous_start"] == old.scheduled_start.isoformat()

    with pytest.raises(InvalidBooking):
        lc.reschedule(clock.now() - minutes(5))
    assert len(lc.events) == 2


def test_escrow_release_once_and_blocks_dispute():
    lc = _scheduled(_clock())
    lc.confirm()
    lc.start()
    lc.complete()
    lc.release_escrow()
    assert lc.booking.escrow_released

    with pytest.raises(InvalidTransition):
        lc.release_escrow()
    with pytest.raises(InvalidTransition):
        lc.dispute(reason="late")


def test_dispute_resolution_by_refund():
    lc = _scheduled(_clock())
    lc.confirm()
    lc.start()
    lc.dispute(reason="no show")
    assert lc.status == BookingStatus.DISPUTED

    ev = lc.resolve_dispute(refund=True)
    b = lc.booking
    assert ev.type == EventType.REFUNDED
    assert b.refunded and b.dispute_resolved and not b.escrow_released
    assert b.status == BookingStatus.DISPUTED
    with pytest.raises(InvalidTransition):
        lc.resolve_dispute(refund=False)


def test_refund_after_cancel():
    lc = _scheduled(_clock())
    lc.cancel()
    lc.refund()
    assert lc.booking.refunded
    with pytest.raises(InvalidTransition):
        lc.refund()


def test_failing_listener_does_not_undo_transition():
    lc = _scheduled(_clock())
    seen = []

    def boom(_lc, _ev):
        raise RuntimeError("listener bug")

    lc.on_transition(boom)
    lc.on_transition(lambda _lc, ev: seen.append(ev.type))
    lc.confirm()

    assert lc.status == BookingStatus.CONFIRMED
    assert seen == [EventType.CONFIRMED]
