from kubemeter_core.providers.types import (
    ClusterReader,
    NodeLister,
    ObjectStorageClient,
    TenantLister,
    TrafficSource,
)

__all__ = [
    "ClusterReader",
    "NodeLister",
    "ObjectStorageClient",
    "TenantLister",
    "TrafficSource",
]
