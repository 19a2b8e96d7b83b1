from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterator

from kubemeter_core.errors import PersistenceError
from kubemeter_core.logging import get_logger
from kubemeter_core.metering.properties import PropertyTable
from kubemeter_core.metering.quantity import billed_units
from kubemeter_core.metering.types import RESOURCE_NETWORK, UsageSample
from kubemeter_core.providers import TenantLister, TrafficSource
from kubemeter_core.stores.interfaces import MonitorStore

logger = get_logger(__name__)

SAMPLE_OFFSET = timedelta(minutes=1)


@dataclass(frozen=True)
class TrafficWindow:
    start: datetime
    end: datetime

    def next(self, step: timedelta = timedelta(hours=1)) -> "TrafficWindow":
        return TrafficWindow(start=self.end, end=self.end + step)


def traffic_windows(
    start: datetime,
    first_end: datetime,
    step: timedelta = timedelta(hours=1),
) -> Iterator[TrafficWindow]:
    """Contiguous windows: [start, first_end), [first_end, first_end+step), ..."""
    window = TrafficWindow(start=start, end=first_end)
    while True:
        yield window
        window = window.next(step)


class TrafficMeter:
    def __init__(
        self,
        tenants: TenantLister,
        store: MonitorStore,
        traffic: TrafficSource,
        properties: PropertyTable,
    ) -> None:
        self._tenants = tenants
        self._store = store
        self._traffic = traffic
        self._properties = properties

    def run(self, start: datetime, end: datetime) -> dict[str, int]:
        """Meter sent bytes for every tenant over ``[start, end)``.

        Returns the number of samples written per tenant.
        """
        started = time.monotonic()
        tenants = self._tenants.list_tenants()
        logger.info(
            "Traffic pass started",
            extra={
                "tenants": len(tenants),
                "window_start": start.isoformat(),
                "window_end": end.isoformat(),
            },
        )
        written: dict[str, int] = {}
        for tenant in tenants:
            try:
                written[tenant] = self.meter_tenant(tenant, start, end)
            except Exception as exc:
                logger.error(
                    "Failed to meter tenant traffic",
                    extra={
                        "tenant": tenant,
                        "window_start": start.isoformat(),
                        "window_end": end.isoformat(),
                        "error_message": str(exc),
                    },
                )
        logger.info(
            "Traffic pass finished",
            extra={
                "samples": sum(written.values()),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return written

    def meter_tenant(self, tenant: str, start: datetime, end: datetime) -> int:
        network = self._properties.require(RESOURCE_NETWORK)
        identities = self._store.get_distinct_identities(start, end, tenant)
        count = 0
        for identity in identities:
            sent = self._traffic.get_traffic_sent_bytes(
                start, end, tenant, identity.kind, identity.name
            )
            used = billed_units(Decimal(sent), network.unit)
            if used <= 0:
                continue
            sample = UsageSample(
                category=tenant,
                entity_type=identity.kind,
                entity_name=identity.name,
                used={network.enum_id: used},
                observed_at=end - SAMPLE_OFFSET,
            )
            try:
                self._store.insert_samples(sample)
            except PersistenceError:
                raise
            except Exception as exc:
                raise PersistenceError(f"Failed to insert traffic sample: {exc}") from exc
            logger.info(
                "Traffic used",
                extra={
                    "tenant": tenant,
                    "entity_type": identity.kind,
                    "entity_name": identity.name,
                    "used": used,
                },
            )
            count += 1
        return count
