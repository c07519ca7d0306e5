# main.py
from booktrack.app.build import build
from booktrack.domain.errors import InvalidSample
from booktrack.runtime.clock import ManualClock
from booktrack.sim.feed import ProviderFeed

HOME = (32.0853, 34.7818)  # customer address
DEPOT = (32.1300, 34.7900)  # provider starts ~5 km north


def run():
    clock = ManualClock.utc(2025, 1, 1, 9, 0, 0)
    app = build(
        {
            "run_id": "demo",
            "notifier": {"kind": "logging", "async_queue": False},
            "feed": {"seed": 7, "interval_s": 15.0, "duplicate_p": 0.05, "reorder_p": 0.05},
        },
        clock=clock,
    )

    lc = app.book_immediate(
        customer_id="c-1",
        provider_id="p-1",
        service_id="plumbing",
        estimated_arrival_minutes=10,
        destination=HOME,
    )
    app.orchestrator.watch(lc.booking_id, lambda tu: print(tu.status, tu.eta_minutes, tu.distance_km))

    feed = ProviderFeed(
        "p-1",
        DEPOT,
        HOME,
        cfg=app.config.feed,
        rng=app.provider_rng("p-1"),
        start=clock.now(),
    )
    for ping in feed.pings():
        clock.set(max(clock.now(), feed.t))
        try:
            app.ingress.ingest(ping)
        except InvalidSample:
            continue

    lc.complete(request_id="demo-complete")
    print(lc.status.value, [e.type.value for e in lc.events])
    app.close()


if __name__ == "__main__":
    run()
