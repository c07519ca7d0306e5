# booktrack/app/build.py
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from booktrack.app.controllers.dispatch import DispatchOrchestrator
from booktrack.config.models import ServiceModel
from booktrack.domain.lifecycle import BookingLifecycle, BookingPolicy, create_immediate, create_scheduled
from booktrack.io.recorder import JsonlSink, Recorder
from booktrack.io.tracking_logging import TrackingLogging
from booktrack.runtime.clock import Clock, SystemClock
from booktrack.runtime.hooks import NoopHooks, TrackingHooks
from booktrack.runtime.registries import make_delivery_factory, make_notifier
from booktrack.services.ingress import LocationIngress
from booktrack.services.location_channel import LocationChannel
from booktrack.services.location_store import LocationStore
from booktrack.services.notifier import AsyncNotifier, Notifier
from booktrack.services.persistence import BookingRepository, InMemoryBookingRepository
from booktrack.sim.feed import feed_rng


@dataclass
class App:
    config: ServiceModel
    clock: Clock
    hooks: TrackingHooks
    recorder: Recorder | None
    repository: BookingRepository
    store: LocationStore
    channel: LocationChannel
    ingress: LocationIngress
    notifier: Notifier
    orchestrator: DispatchOrchestrator
    policy: BookingPolicy

    def book_scheduled(self, **kw) -> BookingLifecycle:
        """Create a scheduled booking and hand it to the orchestrator."""
        lc = create_scheduled(
            repository=self.repository, clock=self.clock, hooks=self.hooks, policy=self.policy, **kw
        )
        self.orchestrator.register(lc)
        return lc

    def book_immediate(self, **kw) -> BookingLifecycle:
        """Create an auto-confirmed booking; tracking starts right away."""
        lc = create_immediate(
            repository=self.repository, clock=self.clock, hooks=self.hooks, policy=self.policy, **kw
        )
        self.orchestrator.register(lc)
        return lc

    def provider_rng(self, provider_id: str) -> np.random.Generator:
        return feed_rng(self.config.feed.seed, provider_id, run=self.config.run_id)

    def close(self) -> None:
        self.orchestrator.shutdown()
        if isinstance(self.notifier, AsyncNotifier):
            self.notifier.flush()
            self.notifier.stop()


def build(
    cfg: ServiceModel | Mapping,
    *,
    clock: Clock | None = None,
    repository: BookingRepository | None = None,
    use_logging: bool = True,
) -> App:
    # 0) Validate config
    model = cfg if isinstance(cfg, ServiceModel) else ServiceModel.model_validate(cfg)

    # 1) Clock
    clock = clock or SystemClock()

    # 2) Hooks (audit recorder behind the logging hooks)
    recorder = Recorder(JsonlSink()) if use_logging else None
    hooks: TrackingHooks = (
        TrackingLogging(
            run_id=model.run_id,
            level=model.log.level,
            debug=model.log.debug,
            sample_every=model.log.sample_every,
            recorder=recorder,
        )
        if use_logging
        else NoopHooks()
    )

    # 3) Location path
    t = model.tracking
    store = LocationStore(hooks, history_limit=t.history_limit)
    channel = LocationChannel(
        store, delivery_factory=make_delivery_factory(model.delivery, hooks=hooks), hooks=hooks
    )
    ingress = LocationIngress(store, clock, hooks)

    # 4) Booking path
    notifier = make_notifier(model.notifier, hooks=hooks)
    orchestrator = DispatchOrchestrator(
        channel,
        notifier,
        clock=clock,
        hooks=hooks,
        arrival_threshold_km=t.arrival_threshold_km,
        default_speed_kmh=t.default_speed_kmh,
    )
    policy = BookingPolicy(
        dispatch_delay_minutes=t.dispatch_delay_minutes,
        default_service_duration_minutes=t.default_service_duration_minutes,
    )

    return App(
        config=model,
        clock=clock,
        hooks=hooks,
        recorder=recorder,
        repository=repository or InMemoryBookingRepository(),
        store=store,
        channel=channel,
        ingress=ingress,
        notifier=notifier,
        orchestrator=orchestrator,
        policy=policy,
    )
