import threading
from datetime import datetime, timedelta, timezone

import pytest

from kubemeter_core.metering.fanout import BoundedFanOut
from kubemeter_core.metering.scheduler import MeterScheduler, next_boundary
from kubemeter_core.metering.types import UsageSample
from kubemeter_core.retention import RetentionPass, RetentionPolicy


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _scheduler(cluster, clock, stop, **kwargs):
    def waiter(seconds):
        clock.advance(seconds)
        return stop.is_set()

    fanout = BoundedFanOut(lambda _t: None, limit=4, stop_event=stop)
    return MeterScheduler(
        cluster,
        fanout,
        stop_event=stop,
        clock=clock,
        waiter=waiter,
        **kwargs,
    )


@pytest.mark.core
def test_next_boundary():
    value = datetime(2024, 5, 1, 12, 34, 56, tzinfo=timezone.utc)
    assert next_boundary(value, timedelta(minutes=1)) == value.replace(
        minute=35, second=0
    )
    assert next_boundary(value, timedelta(hours=1)) == value.replace(
        hour=13, minute=0, second=0
    )
    exact = value.replace(minute=0, second=0)
    assert next_boundary(exact, timedelta(hours=1)) == exact + timedelta(hours=1)


@pytest.mark.core
def test_traffic_windows_stay_contiguous_despite_slow_passes(cluster, now):
    clock = FakeClock(now)
    stop = threading.Event()
    windows = []

    class SlowTraffic:
        def run(self, start, end):
            windows.append((start, end))
            clock.advance(300)
            if len(windows) == 3:
                stop.set()
            return {}

    scheduler = _scheduler(cluster, clock, stop, traffic=SlowTraffic())
    scheduler._traffic_loop()

    top = now.replace(minute=0, second=0)
    assert windows == [
        (now, top + timedelta(hours=1)),
        (top + timedelta(hours=1), top + timedelta(hours=2)),
        (top + timedelta(hours=2), top + timedelta(hours=3)),
    ]


@pytest.mark.core
def test_minute_loop_skips_missed_ticks(cluster, now):
    clock = FakeClock(now)
    stop = threading.Event()
    ticks = []
    scheduler = _scheduler(cluster, clock, stop)

    def dispatch():
        ticks.append(clock())
        if len(ticks) == 2:
            clock.advance(150)
        if len(ticks) == 3:
            stop.set()

    scheduler._dispatch_tick = dispatch
    scheduler._minute_loop()

    top = now.replace(second=0)
    assert ticks == [
        top + timedelta(minutes=1),
        top + timedelta(minutes=2),
        top + timedelta(minutes=5),
    ]


@pytest.mark.core
def test_overlapping_tick_is_skipped(cluster):
    cluster.tenants = ["ns-a"]
    release = threading.Event()
    entered = threading.Event()

    def worker(_tenant):
        entered.set()
        release.wait(5)

    stop = threading.Event()
    scheduler = MeterScheduler(
        cluster, BoundedFanOut(worker, limit=1, stop_event=stop), stop_event=stop
    )
    results = []
    first = threading.Thread(target=lambda: results.append(scheduler.run_minute_tick()))
    first.start()
    assert entered.wait(5)
    assert scheduler.run_minute_tick() is None
    release.set()
    first.join(5)
    assert results[0].succeeded == ["ns-a"]


@pytest.mark.core
def test_tenant_listing_failure_skips_tick(cluster):
    cluster.failing.add("tenants")
    scheduler = MeterScheduler(cluster, BoundedFanOut(lambda _t: None))
    assert scheduler.run_minute_tick() is None


@pytest.mark.core
def test_retention_runs_through_scheduler(cluster, store, now):
    for age in (1, 45):
        store.insert_samples(
            UsageSample(
                category="ns-a",
                entity_type="APP",
                entity_name=f"app-{age}",
                used={0: 1},
                observed_at=now - timedelta(days=age),
            )
        )
    retention = RetentionPass(store, RetentionPolicy(delete_after_days=30))
    scheduler = MeterScheduler(cluster, BoundedFanOut(lambda _t: None), retention=retention)
    assert scheduler.run_retention() == 1
    assert [s.entity_name for s in store.samples] == ["app-1"]


@pytest.mark.core
def test_start_and_stop_threads(cluster):
    scheduler = MeterScheduler(cluster, BoundedFanOut(lambda _t: None))
    scheduler.start()
    scheduler.stop(timeout=5)
    assert scheduler.stop_event.is_set()
