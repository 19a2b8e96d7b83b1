"""Clients for the metrics endpoint and object storage."""

from kubemeter_core.connectors.object_storage import FsspecObjectStorage
from kubemeter_core.connectors.prometheus import (
    PrometheusClient,
    PrometheusTrafficSource,
    bucket_egress_bytes,
)

__all__ = [
    "FsspecObjectStorage",
    "PrometheusClient",
    "PrometheusTrafficSource",
    "bucket_egress_bytes",
]
