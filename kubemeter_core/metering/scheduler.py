from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from kubemeter_core.logging import get_logger
from kubemeter_core.metering.fanout import BoundedFanOut, FanOutResult
from kubemeter_core.metering.traffic import TrafficMeter, TrafficWindow, traffic_windows
from kubemeter_core.providers import TenantLister
from kubemeter_core.retention import RetentionPass

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(value: datetime, step: timedelta) -> datetime:
    epoch = datetime(1970, 1, 1, tzinfo=value.tzinfo)
    return value - ((value - epoch) % step)


def next_boundary(value: datetime, step: timedelta) -> datetime:
    """The first multiple of ``step`` strictly after the truncation of ``value``."""
    return _truncate(value, step) + step


class MeterScheduler:
    """Owns the minute metering loop, the hourly traffic loop and retention."""

    def __init__(
        self,
        tenants: TenantLister,
        fanout: BoundedFanOut,
        *,
        traffic: TrafficMeter | None = None,
        retention: RetentionPass | None = None,
        period: timedelta = timedelta(minutes=1),
        traffic_step: timedelta = timedelta(hours=1),
        retention_step: timedelta = timedelta(days=1),
        stop_event: threading.Event | None = None,
        clock: Callable[[], datetime] = _utcnow,
        waiter: Callable[[float], bool] | None = None,
    ) -> None:
        self._tenants = tenants
        self._fanout = fanout
        self._traffic = traffic
        self._retention = retention
        self._period = period
        self._traffic_step = traffic_step
        self._retention_step = retention_step
        self._stop = stop_event or threading.Event()
        self._clock = clock
        self._waiter = waiter or self._stop.wait
        self._tick_lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._tick_threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def start(self) -> None:
        if self._threads:
            return
        loops: list[tuple[str, Callable[[], None]]] = [
            ("kubemeter-minute", self._minute_loop)
        ]
        if self._traffic is not None:
            loops.append(("kubemeter-traffic", self._traffic_loop))
        if self._retention is not None:
            loops.append(("kubemeter-retention", self._retention_loop))
        for name, target in loops:
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float | None = None) -> None:
        """Signal every loop and wait for in-flight work to drain."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        with self._threads_lock:
            ticks = list(self._tick_threads)
        for thread in ticks:
            thread.join(timeout)
        self._threads = []

    def _wait_until(self, deadline: datetime) -> bool:
        """Sleep until ``deadline``; False when stopped first."""
        delay = (deadline - self._clock()).total_seconds()
        if delay > 0:
            logger.debug("Waiting for next tick", extra={"wait_ms": int(delay * 1000)})
            if self._waiter(delay):
                return False
        return not self._stop.is_set()

    def run_minute_tick(self) -> FanOutResult | None:
        """Meter every tenant once; skipped while a previous tick is running."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous metering tick still running, skipping tick")
            return None
        try:
            logger.info(
                "Metering tick",
                extra={"window_end": self._clock().isoformat()},
            )
            try:
                tenants = self._tenants.list_tenants()
            except Exception as exc:
                logger.error(
                    "Failed to list tenants",
                    extra={"error_message": str(exc)},
                )
                return None
            return self._fanout.run(tenants)
        finally:
            self._tick_lock.release()

    def run_traffic_window(self, window: TrafficWindow) -> dict[str, int] | None:
        if self._traffic is None:
            return None
        try:
            return self._traffic.run(window.start, window.end)
        except Exception as exc:
            logger.error(
                "Failed to monitor traffic",
                extra={
                    "window_start": window.start.isoformat(),
                    "window_end": window.end.isoformat(),
                    "error_message": str(exc),
                },
            )
            return None

    def run_retention(self) -> int | None:
        if self._retention is None:
            return None
        try:
            return self._retention.run()
        except Exception as exc:
            logger.error("Retention pass failed", extra={"error_message": str(exc)})
            return None

    def _dispatch_tick(self) -> None:
        if self._tick_lock.locked():
            logger.warning("Previous metering tick still running, skipping tick")
            return
        thread = threading.Thread(
            target=self.run_minute_tick, name="kubemeter-tick", daemon=True
        )
        with self._threads_lock:
            self._tick_threads = [t for t in self._tick_threads if t.is_alive()]
            self._tick_threads.append(thread)
        thread.start()

    def _minute_loop(self) -> None:
        deadline = next_boundary(self._clock(), self._period)
        while self._wait_until(deadline):
            self._dispatch_tick()
            deadline += self._period
            now = self._clock()
            if deadline <= now:
                missed = (now - deadline) // self._period + 1
                logger.warning(
                    "Metering ticks missed",
                    extra={"skipped": int(missed)},
                )
                deadline += self._period * int(missed)

    def _traffic_loop(self) -> None:
        now = self._clock()
        first_end = next_boundary(now, self._traffic_step)
        for window in traffic_windows(now, first_end, self._traffic_step):
            if not self._wait_until(window.end):
                return
            self.run_traffic_window(window)

    def _retention_loop(self) -> None:
        deadline = next_boundary(self._clock(), self._retention_step)
        while self._wait_until(deadline):
            self.run_retention()
            deadline += self._retention_step
