from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import timedelta

from k8s_adapter.cluster import KubernetesCluster
from kubemeter_core.config import Config
from kubemeter_core.connectors import FsspecObjectStorage, PrometheusClient
from kubemeter_core.logging import get_logger
from kubemeter_core.metering.aggregator import TenantAggregator
from kubemeter_core.metering.fanout import BoundedFanOut
from kubemeter_core.metering.gpu import GpuModelResolver
from kubemeter_core.metering.properties import PropertyTable
from kubemeter_core.metering.scheduler import MeterScheduler
from kubemeter_core.metering.traffic import TrafficMeter
from kubemeter_core.providers import ObjectStorageClient
from kubemeter_core.retention import RetentionPass, RetentionPolicy
from kubemeter_core.stores import StoreBundle, get_store_bundle

logger = get_logger(__name__)


@dataclass(frozen=True)
class MeteringRuntime:
    """Process-scoped metering state, built once and passed to every loop."""

    config: Config
    cluster: KubernetesCluster
    properties: PropertyTable
    stores: StoreBundle
    gpu: GpuModelResolver
    object_storage: ObjectStorageClient | None
    aggregator: TenantAggregator
    fanout: BoundedFanOut
    traffic: TrafficMeter | None
    retention: RetentionPass
    scheduler: MeterScheduler

    @classmethod
    def from_config(
        cls,
        config: Config,
        cluster: KubernetesCluster | None = None,
    ) -> "MeteringRuntime":
        cluster = cluster or KubernetesCluster(owner_label_key=config.owner_label_key)
        properties = _properties_from_config(config)
        stores = get_store_bundle(config)
        gpu = GpuModelResolver(
            cluster,
            attempts=config.gpu_refresh_attempts,
            backoff_s=config.gpu_refresh_backoff_seconds,
        )
        object_storage = _object_storage_from_config(config)
        period = timedelta(seconds=config.period_seconds)
        aggregator = TenantAggregator(
            cluster,
            stores.monitor,
            properties,
            gpu=gpu,
            object_storage=object_storage,
            backup_claim_name=config.backup_claim_name,
            tenant_prefix=config.tenant_prefix,
            period=period,
        )
        scheduler_stop = threading.Event()
        fanout = BoundedFanOut(
            aggregator.meter,
            limit=config.concurrent_limit,
            stop_event=scheduler_stop,
        )
        traffic = None
        if stores.traffic is not None:
            traffic = TrafficMeter(cluster, stores.monitor, stores.traffic, properties)
        retention = RetentionPass(
            stores.monitor,
            RetentionPolicy.from_config(config),
        )
        scheduler = MeterScheduler(
            cluster,
            fanout,
            traffic=traffic,
            retention=retention if retention.policy.enabled else None,
            period=period,
            stop_event=scheduler_stop,
        )
        logger.info(
            "Metering runtime ready",
            extra={
                "env": config.env,
                "traffic_backend": config.traffic_backend,
                "concurrent_limit": config.concurrent_limit,
            },
        )
        return cls(
            config=config,
            cluster=cluster,
            properties=properties,
            stores=stores,
            gpu=gpu,
            object_storage=object_storage,
            aggregator=aggregator,
            fanout=fanout,
            traffic=traffic,
            retention=retention,
            scheduler=scheduler,
        )


def _properties_from_config(config: Config) -> PropertyTable:
    if config.properties_file:
        return PropertyTable.from_file(config.properties_file)
    return PropertyTable.default()


def _object_storage_from_config(config: Config) -> ObjectStorageClient | None:
    if not config.object_storage_enabled:
        return None
    prometheus = PrometheusClient(config.prom_url) if config.prom_url else None
    return FsspecObjectStorage(
        config.object_storage_uri,
        prometheus=prometheus,
        instance=config.object_storage_instance,
    )
