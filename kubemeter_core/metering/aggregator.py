from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable

from kubemeter_core.errors import (
    ClassificationError,
    ConversionError,
    KubemeterError,
    PersistenceError,
)
from kubemeter_core.logging import get_logger
from kubemeter_core.metering.gpu import GpuModelResolver
from kubemeter_core.metering.identity import (
    bucket_identity,
    claim_identity,
    gpu_identity,
    service_identity,
    workload_identity,
)
from kubemeter_core.metering.properties import PropertyTable
from kubemeter_core.metering.quantity import milli_value
from kubemeter_core.metering.types import (
    BASE_RESOURCES,
    CLAIM_BOUND,
    NVIDIA_GPU_KEY,
    POD_RUNNING,
    POD_SUCCEEDED,
    RESOURCE_CPU,
    RESOURCE_GPU,
    RESOURCE_MEMORY,
    RESOURCE_NETWORK,
    RESOURCE_NODE_PORTS,
    RESOURCE_STORAGE,
    SERVICE_NODE_PORT,
    ContainerResources,
    EntityIdentity,
    UsageSample,
    WorkloadInstance,
)
from kubemeter_core.providers import ClusterReader, ObjectStorageClient
from kubemeter_core.stores.interfaces import MonitorStore

logger = get_logger(__name__)

DEFAULT_BACKUP_CLAIM_NAME = "kb-backup-data"
DEFAULT_TENANT_PREFIX = "ns-"
NODE_PORT_RAW_COST = Decimal(1000)
START_GRACE = timedelta(minutes=1)


@dataclass(frozen=True)
class ContainerRule:
    """How one container resource is read and when it is billed."""

    resource: str
    key: str
    limit_only: bool
    bill_while_idle: bool

    def quantity(self, container: ContainerResources) -> Decimal | None:
        if self.key in container.limits:
            return container.limits[self.key]
        if self.limit_only:
            return None
        return container.requests.get(self.key, Decimal(0))


# GPUs hold capacity as soon as they are reserved, so they are billed from
# the limit even while the pod is not running.
CONTAINER_RULES: tuple[ContainerRule, ...] = (
    ContainerRule(RESOURCE_GPU, NVIDIA_GPU_KEY, limit_only=True, bill_while_idle=True),
    ContainerRule(RESOURCE_CPU, RESOURCE_CPU, limit_only=False, bill_while_idle=False),
    ContainerRule(
        RESOURCE_MEMORY, RESOURCE_MEMORY, limit_only=False, bill_while_idle=False
    ),
)


class RawAccumulator:
    """Raw machine quantities per identity for a single tenant pass."""

    def __init__(self) -> None:
        self._values: dict[EntityIdentity, dict[str, Decimal]] = {}

    def ensure(self, identity: EntityIdentity) -> dict[str, Decimal]:
        values = self._values.get(identity)
        if values is None:
            values = {name: Decimal(0) for name in BASE_RESOURCES}
            self._values[identity] = values
        return values

    def add(self, identity: EntityIdentity, resource: str, quantity: Decimal) -> None:
        values = self.ensure(identity)
        values[resource] = values.get(resource, Decimal(0)) + quantity

    def items(self) -> Iterable[tuple[EntityIdentity, dict[str, Decimal]]]:
        return sorted(self._values.items(), key=lambda item: item[0])

    def __len__(self) -> int:
        return len(self._values)


def convert_usage(
    raw: dict[str, Decimal],
    properties: PropertyTable,
    *,
    tenant: str | None = None,
    identity: EntityIdentity | None = None,
) -> dict[int, int]:
    """Convert raw quantities to billed units, skipping zero and unknown kinds."""
    used: dict[int, int] = {}
    for resource, quantity in raw.items():
        if milli_value(quantity) == 0:
            continue
        try:
            enum_id, billed = properties.convert(resource, quantity)
        except ConversionError as exc:
            logger.error(
                "Resource kind has no property definition",
                extra={
                    "tenant": tenant,
                    "entity_type": identity.kind if identity else None,
                    "entity_name": identity.name if identity else None,
                    "resource": resource,
                    "error_message": str(exc),
                },
            )
            continue
        used[enum_id] = billed
    return used


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TenantAggregator:
    def __init__(
        self,
        cluster: ClusterReader,
        store: MonitorStore,
        properties: PropertyTable,
        *,
        gpu: GpuModelResolver | None = None,
        object_storage: ObjectStorageClient | None = None,
        backup_claim_name: str = DEFAULT_BACKUP_CLAIM_NAME,
        tenant_prefix: str = DEFAULT_TENANT_PREFIX,
        period: timedelta = timedelta(minutes=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cluster = cluster
        self._store = store
        self._properties = properties
        self._gpu = gpu
        self._object_storage = object_storage
        self._backup_claim_name = backup_claim_name
        self._tenant_prefix = tenant_prefix
        self._period = period
        self._clock = clock

    def __call__(self, tenant: str) -> list[UsageSample]:
        return self.meter(tenant)

    def meter(self, tenant: str, now: datetime | None = None) -> list[UsageSample]:
        """Collect one tenant's usage and persist it as a single batch."""
        started = time.monotonic()
        samples = self.collect(tenant, now)
        if samples:
            try:
                self._store.insert_samples(*samples)
            except KubemeterError:
                raise
            except Exception as exc:
                raise PersistenceError(
                    f"Failed to persist samples for {tenant}: {exc}"
                ) from exc
        logger.debug(
            "Tenant metered",
            extra={
                "tenant": tenant,
                "samples": len(samples),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return samples

    def collect(self, tenant: str, now: datetime | None = None) -> list[UsageSample]:
        timestamp = _aware(now) or self._clock()
        accumulator = RawAccumulator()
        steps = (
            ("pods", self._accumulate_pods),
            ("volume_claims", self._accumulate_claims),
            ("services", self._accumulate_services),
        )
        for resource_class, step in steps:
            try:
                step(tenant, timestamp, accumulator)
            except Exception as exc:
                logger.error(
                    "Failed to list tenant resources",
                    extra={
                        "tenant": tenant,
                        "resource": resource_class,
                        "error_message": str(exc),
                    },
                )
        if self._object_storage is not None:
            try:
                self._accumulate_object_storage(
                    self._object_storage, tenant, timestamp, accumulator
                )
            except Exception as exc:
                logger.error(
                    "Failed to get object storage usage",
                    extra={
                        "tenant": tenant,
                        "user": self.user_for_tenant(tenant),
                        "error_message": str(exc),
                    },
                )

        samples: list[UsageSample] = []
        for identity, raw in accumulator.items():
            used = convert_usage(
                raw, self._properties, tenant=tenant, identity=identity
            )
            if not used:
                continue
            samples.append(
                UsageSample(
                    category=tenant,
                    entity_type=identity.kind,
                    entity_name=identity.name,
                    used=used,
                    observed_at=timestamp,
                )
            )
        return samples

    def user_for_tenant(self, tenant: str) -> str:
        if self._tenant_prefix and tenant.startswith(self._tenant_prefix):
            return tenant[len(self._tenant_prefix) :]
        return tenant

    def _accumulate_pods(
        self,
        tenant: str,
        now: datetime,
        accumulator: RawAccumulator,
    ) -> None:
        for pod in self._cluster.list_pods(tenant):
            if not pod.node_name or _finished_before_grace(pod, now):
                continue
            identity = workload_identity(pod)
            accumulator.ensure(identity)
            idle = _idle_past_grace(pod, now)
            for container in pod.containers:
                for rule in CONTAINER_RULES:
                    if idle and not rule.bill_while_idle:
                        continue
                    quantity = rule.quantity(container)
                    if quantity is None:
                        continue
                    if rule.resource == RESOURCE_GPU:
                        self._accumulate_gpu(tenant, pod, quantity, accumulator)
                    else:
                        accumulator.add(identity, rule.resource, quantity)

    def _accumulate_gpu(
        self,
        tenant: str,
        pod: WorkloadInstance,
        quantity: Decimal,
        accumulator: RawAccumulator,
    ) -> None:
        try:
            if self._gpu is None:
                raise ClassificationError("GPU model resolver is not configured")
            info = self._gpu.resolve(pod.node_name or "")
        except ClassificationError as exc:
            logger.error(
                "Failed to resolve GPU model",
                extra={
                    "tenant": tenant,
                    "pod": pod.name,
                    "node": pod.node_name,
                    "error_message": str(exc),
                },
            )
            return
        logger.debug(
            "GPU request",
            extra={
                "tenant": tenant,
                "pod": pod.name,
                "node": pod.node_name,
                "gpu_model": info.product,
                "used": str(quantity),
            },
        )
        # The product is the identity name, so every model bills under "gpu".
        accumulator.add(gpu_identity(info.product), RESOURCE_GPU, quantity)

    def _accumulate_claims(
        self,
        tenant: str,
        now: datetime,
        accumulator: RawAccumulator,
    ) -> None:
        for claim in self._cluster.list_volume_claims(tenant):
            if claim.phase != CLAIM_BOUND or claim.name == self._backup_claim_name:
                continue
            accumulator.add(claim_identity(claim), RESOURCE_STORAGE, claim.storage_request)

    def _accumulate_services(
        self,
        tenant: str,
        now: datetime,
        accumulator: RawAccumulator,
    ) -> None:
        for service in self._cluster.list_services(tenant):
            if service.service_type != SERVICE_NODE_PORT:
                continue
            # Port-range reservation, not traffic.
            accumulator.add(
                service_identity(service), RESOURCE_NODE_PORTS, NODE_PORT_RAW_COST
            )

    def _accumulate_object_storage(
        self,
        storage: ObjectStorageClient,
        tenant: str,
        now: datetime,
        accumulator: RawAccumulator,
    ) -> None:
        user = self.user_for_tenant(tenant)
        window_start = now - self._period
        for bucket in storage.list_user_buckets(user):
            try:
                size, count = storage.bucket_usage(bucket)
                if count == 0:
                    continue
                sent = storage.bucket_egress_bytes(
                    bucket, window_start, now
                )
            except Exception as exc:
                logger.error(
                    "Failed to get bucket usage",
                    extra={
                        "tenant": tenant,
                        "bucket": bucket,
                        "error_message": str(exc),
                    },
                )
                continue
            identity = bucket_identity(bucket)
            accumulator.add(identity, RESOURCE_STORAGE, Decimal(size))
            accumulator.add(identity, RESOURCE_NETWORK, Decimal(sent))


def _finished_before_grace(pod: WorkloadInstance, now: datetime) -> bool:
    if pod.phase != POD_SUCCEEDED:
        return False
    finished = _aware(pod.finished_at) or _aware(pod.start_time)
    if finished is None:
        return True
    return now - finished > START_GRACE


def _idle_past_grace(pod: WorkloadInstance, now: datetime) -> bool:
    if pod.phase == POD_RUNNING:
        return False
    started = _aware(pod.start_time)
    return started is None or now - started > START_GRACE
