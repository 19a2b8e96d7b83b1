from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from kubemeter_core.metering.types import EntityIdentity, UsageSample


@runtime_checkable
class MonitorStore(Protocol):
    def insert_samples(self, *samples: UsageSample) -> int:
        ...

    def get_distinct_identities(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
    ) -> list[EntityIdentity]:
        ...

    def delete_samples_older_than(self, days: int) -> int:
        ...
