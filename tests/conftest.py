from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from kubemeter_core.config import get_config
from kubemeter_core.metering.properties import PropertyDefinition, PropertyTable
from kubemeter_core.metering.quantity import parse_quantity
from kubemeter_core.metering.types import (
    ContainerResources,
    EntityIdentity,
    NetworkService,
    NodeGpuInfo,
    UsageSample,
    VolumeClaim,
    WorkloadInstance,
)

NOW = datetime(2024, 5, 1, 12, 0, 30, tzinfo=timezone.utc)

_CONFIG_ENV = (
    "ENV",
    "LOG_LEVEL",
    "PROM_URL",
    "OBJECT_STORAGE_INSTANCE",
    "OBJECT_STORAGE_URI",
    "CONCURRENT_LIMIT",
    "METER_PERIOD_SECONDS",
    "OWNER_LABEL_KEY",
    "BACKUP_CLAIM_NAME",
    "TENANT_PREFIX",
    "MONITOR_DB_PATH",
    "TRAFFIC_BACKEND",
    "TRAFFIC_DB_PATH",
    "PROPERTIES_FILE",
    "GPU_REFRESH_ATTEMPTS",
    "GPU_REFRESH_BACKOFF_SECONDS",
    "RETENTION_DELETE_DAYS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def q(value: str) -> Decimal:
    return parse_quantity(value)


def make_pod(
    name: str,
    *,
    node: str | None = "node-1",
    phase: str = "Running",
    started: datetime | None = None,
    finished: datetime | None = None,
    labels: dict[str, str] | None = None,
    limits: dict[str, str] | None = None,
    requests: dict[str, str] | None = None,
) -> WorkloadInstance:
    container = ContainerResources(
        name="main",
        limits={key: q(value) for key, value in (limits or {}).items()},
        requests={key: q(value) for key, value in (requests or {}).items()},
    )
    return WorkloadInstance(
        name=name,
        node_name=node,
        phase=phase,
        start_time=started if started is not None else NOW - timedelta(hours=1),
        finished_at=finished,
        labels=labels or {},
        containers=(container,),
    )


class FakeCluster:
    def __init__(self) -> None:
        self.tenants: list[str] = []
        self.pods: dict[str, list[WorkloadInstance]] = {}
        self.claims: dict[str, list[VolumeClaim]] = {}
        self.services: dict[str, list[NetworkService]] = {}
        self.gpu_nodes: dict[str, NodeGpuInfo] = {}
        self.failing: set[str] = set()
        self.node_calls = 0

    def _check(self, kind: str) -> None:
        if kind in self.failing:
            raise RuntimeError(f"{kind} listing failed")

    def list_tenants(self) -> list[str]:
        self._check("tenants")
        return list(self.tenants)

    def list_pods(self, tenant: str) -> list[WorkloadInstance]:
        self._check("pods")
        return list(self.pods.get(tenant, []))

    def list_volume_claims(self, tenant: str) -> list[VolumeClaim]:
        self._check("claims")
        return list(self.claims.get(tenant, []))

    def list_services(self, tenant: str) -> list[NetworkService]:
        self._check("services")
        return list(self.services.get(tenant, []))

    def list_gpu_nodes(self) -> dict[str, NodeGpuInfo]:
        self.node_calls += 1
        self._check("nodes")
        return dict(self.gpu_nodes)


class MemoryMonitorStore:
    def __init__(self) -> None:
        self.samples: list[UsageSample] = []
        self.batches: list[tuple[UsageSample, ...]] = []
        self.fail_insert = False

    def insert_samples(self, *samples: UsageSample) -> int:
        if self.fail_insert:
            raise RuntimeError("database unavailable")
        for sample in samples:
            assert sample.used and not sample.is_empty()
        self.batches.append(samples)
        self.samples.extend(samples)
        return len(samples)

    def get_distinct_identities(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
    ) -> list[EntityIdentity]:
        found = {
            sample.identity
            for sample in self.samples
            if sample.category == tenant and start <= sample.observed_at < end
        }
        return sorted(found)

    def delete_samples_older_than(self, days: int) -> int:
        cutoff = NOW - timedelta(days=days)
        kept = [sample for sample in self.samples if sample.observed_at >= cutoff]
        deleted = len(self.samples) - len(kept)
        self.samples = kept
        return deleted


class FakeTrafficSource:
    def __init__(self, sent: dict[tuple[str, str, str], int] | None = None) -> None:
        self.sent = dict(sent or {})
        self.calls: list[tuple[datetime, datetime, str, str, str]] = []
        self.failing: set[tuple[str, str, str]] = set()

    def get_traffic_sent_bytes(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
        kind: str,
        name: str,
    ) -> int:
        self.calls.append((start, end, tenant, kind, name))
        if (tenant, kind, name) in self.failing:
            raise RuntimeError("traffic backend unavailable")
        return self.sent.get((tenant, kind, name), 0)


class FakeObjectStorage:
    def __init__(self) -> None:
        self.buckets: dict[str, list[str]] = {}
        self.usage: dict[str, tuple[int, int]] = {}
        self.egress: dict[str, int] = {}
        self.windows: list[tuple[datetime, datetime]] = []

    def list_user_buckets(self, user: str) -> list[str]:
        return list(self.buckets.get(user, []))

    def bucket_usage(self, bucket: str) -> tuple[int, int]:
        return self.usage.get(bucket, (0, 0))

    def bucket_egress_bytes(self, bucket: str, start: datetime, end: datetime) -> int:
        self.windows.append((start, end))
        return self.egress.get(bucket, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def store() -> MemoryMonitorStore:
    return MemoryMonitorStore()


@pytest.fixture
def properties() -> PropertyTable:
    return PropertyTable(
        [
            PropertyDefinition.parse("cpu", 0, "1"),
            PropertyDefinition.parse("memory", 1, "1Gi"),
            PropertyDefinition.parse("storage", 2, "1Gi"),
            PropertyDefinition.parse("network", 3, "1Mi"),
            PropertyDefinition.parse("services.nodeports", 4, "1"),
            PropertyDefinition.parse("gpu", 5, "1m"),
        ]
    )


@pytest.fixture
def pod_factory():
    return make_pod


@pytest.fixture
def traffic_source() -> FakeTrafficSource:
    return FakeTrafficSource()


@pytest.fixture
def object_storage() -> FakeObjectStorage:
    return FakeObjectStorage()
