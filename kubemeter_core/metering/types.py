from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_STORAGE = "storage"
RESOURCE_NETWORK = "network"
RESOURCE_NODE_PORTS = "services.nodeports"
RESOURCE_GPU = "gpu"

BASE_RESOURCES: tuple[str, ...] = (
    RESOURCE_GPU,
    RESOURCE_CPU,
    RESOURCE_MEMORY,
    RESOURCE_STORAGE,
    RESOURCE_NETWORK,
    RESOURCE_NODE_PORTS,
)

NVIDIA_GPU_KEY = "nvidia.com/gpu"

POD_RUNNING = "Running"
POD_SUCCEEDED = "Succeeded"
CLAIM_BOUND = "Bound"
SERVICE_NODE_PORT = "NodePort"


@dataclass(frozen=True, order=True)
class EntityIdentity:
    kind: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class UsageSample:
    category: str
    entity_type: str
    entity_name: str
    used: Mapping[int, int]
    observed_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "used", MappingProxyType(dict(self.used)))

    @property
    def identity(self) -> EntityIdentity:
        return EntityIdentity(kind=self.entity_type, name=self.entity_name)

    def is_empty(self) -> bool:
        return not any(self.used.values())


@dataclass(frozen=True)
class OwnerReference:
    kind: str
    name: str
    controller: bool = False


@dataclass(frozen=True)
class ContainerResources:
    name: str
    limits: Mapping[str, Decimal] = field(default_factory=dict)
    requests: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkloadInstance:
    name: str
    node_name: str | None
    phase: str
    start_time: datetime | None = None
    finished_at: datetime | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    owners: tuple[OwnerReference, ...] = ()
    containers: tuple[ContainerResources, ...] = ()


@dataclass(frozen=True)
class VolumeClaim:
    name: str
    phase: str
    storage_request: Decimal = Decimal(0)
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NetworkService:
    name: str
    service_type: str
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NodeGpuInfo:
    product: str
    count: int = 0
    memory: str | None = None
