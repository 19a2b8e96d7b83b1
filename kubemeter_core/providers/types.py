from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from kubemeter_core.metering.types import (
    NetworkService,
    NodeGpuInfo,
    VolumeClaim,
    WorkloadInstance,
)


@runtime_checkable
class TenantLister(Protocol):
    def list_tenants(self) -> list[str]: ...


@runtime_checkable
class ClusterReader(Protocol):
    def list_pods(self, tenant: str) -> list[WorkloadInstance]: ...

    def list_volume_claims(self, tenant: str) -> list[VolumeClaim]: ...

    def list_services(self, tenant: str) -> list[NetworkService]: ...


@runtime_checkable
class NodeLister(Protocol):
    def list_gpu_nodes(self) -> dict[str, NodeGpuInfo]: ...


@runtime_checkable
class ObjectStorageClient(Protocol):
    def list_user_buckets(self, user: str) -> list[str]: ...

    def bucket_usage(self, bucket: str) -> tuple[int, int]: ...

    def bucket_egress_bytes(
        self,
        bucket: str,
        start: datetime,
        end: datetime,
    ) -> int: ...


@runtime_checkable
class TrafficSource(Protocol):
    def get_traffic_sent_bytes(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
        kind: str,
        name: str,
    ) -> int: ...
