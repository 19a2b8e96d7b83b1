from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable

from kubemeter_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 1000


@dataclass
class FanOutResult:
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)


class BoundedFanOut:
    """Run a per-tenant callable over many tenants with a global ceiling.

    Admission is a counting semaphore; a slot is taken before a tenant is
    handed to the pool and released when its work finishes, so no more
    than ``limit`` tenants are ever in flight.
    """

    def __init__(
        self,
        worker: Callable[[str], object],
        *,
        limit: int = DEFAULT_CONCURRENCY_LIMIT,
        stop_event: threading.Event | None = None,
        admission_poll_s: float = 0.5,
    ) -> None:
        if limit <= 0:
            raise ValueError("Concurrency limit must be positive")
        self._worker = worker
        self._limit = limit
        self._stop = stop_event or threading.Event()
        self._admission_poll_s = admission_poll_s

    @property
    def limit(self) -> int:
        return self._limit

    def run(self, tenants: Iterable[str]) -> FanOutResult:
        tenant_list = list(tenants)
        result = FanOutResult()
        if not tenant_list:
            logger.warning("No tenants to process")
            return result
        started = time.monotonic()
        logger.info(
            "Fan-out started",
            extra={"tenants": len(tenant_list)},
        )
        gate = threading.BoundedSemaphore(self._limit)
        lock = threading.Lock()
        workers = min(self._limit, len(tenant_list))

        def _task(tenant: str) -> None:
            try:
                self._worker(tenant)
            except Exception as exc:
                logger.error(
                    "Tenant metering failed",
                    extra={"tenant": tenant, "error_message": str(exc)},
                )
                with lock:
                    result.failed[tenant] = str(exc)
            else:
                with lock:
                    result.succeeded.append(tenant)
            finally:
                gate.release()

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="kubemeter-tenant"
        ) as executor:
            futures = []
            for index, tenant in enumerate(tenant_list):
                if not self._acquire(gate):
                    aborted = tenant_list[index:]
                    logger.warning(
                        "Fan-out stopped before admitting all tenants",
                        extra={"skipped": len(aborted)},
                    )
                    result.skipped.extend(aborted)
                    break
                futures.append(executor.submit(_task, tenant))
            wait(futures)

        logger.info(
            "Fan-out finished",
            extra={
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "skipped": len(result.skipped),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    def _acquire(self, gate: threading.BoundedSemaphore) -> bool:
        while not self._stop.is_set():
            if gate.acquire(timeout=self._admission_poll_s):
                return True
        return False
