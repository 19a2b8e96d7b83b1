from kubemeter_core.stores.interfaces import MonitorStore
from kubemeter_core.stores.registry import StoreBundle, get_store_bundle
from kubemeter_core.stores.sqlite_store import SqliteMonitorStore

__all__ = [
    "MonitorStore",
    "SqliteMonitorStore",
    "StoreBundle",
    "get_store_bundle",
]
