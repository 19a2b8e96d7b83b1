from __future__ import annotations

from dataclasses import dataclass

from kubemeter_core.config import Config
from kubemeter_core.connectors.prometheus import PrometheusClient, PrometheusTrafficSource
from kubemeter_core.providers import TrafficSource
from kubemeter_core.stores.interfaces import MonitorStore
from kubemeter_core.stores.sqlite_store import SqliteMonitorStore


@dataclass(frozen=True)
class StoreBundle:
    monitor: MonitorStore
    traffic: TrafficSource | None


def get_store_bundle(config: Config) -> StoreBundle:
    monitor = SqliteMonitorStore(config.monitor_db_path)
    backend = config.traffic_backend
    traffic: TrafficSource | None
    if not config.traffic_enabled:
        traffic = None
    elif backend == "sqlite":
        if config.traffic_db_path and config.traffic_db_path != config.monitor_db_path:
            traffic = SqliteMonitorStore(config.traffic_db_path)
        else:
            traffic = monitor
    elif backend == "prometheus":
        if not config.prom_url:
            raise ValueError("PROM_URL is required for the prometheus traffic backend")
        traffic = PrometheusTrafficSource(PrometheusClient(config.prom_url))
    else:
        raise ValueError(f"Unsupported traffic backend: {backend}")
    return StoreBundle(monitor=monitor, traffic=traffic)
