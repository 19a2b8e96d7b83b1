from __future__ import annotations

import threading
import time
from types import MappingProxyType
from typing import Callable, Mapping

from kubemeter_core.errors import ClassificationError, DiscoveryError
from kubemeter_core.logging import get_logger
from kubemeter_core.metering.types import NodeGpuInfo
from kubemeter_core.providers import NodeLister
from kubemeter_core.retry import retry

logger = get_logger(__name__)


class _StillMissing(Exception):
    pass


class GpuModelResolver:
    """Node name -> GPU product cache, refreshed wholesale on a miss.

    Node hardware does not change while the node exists, so entries never
    expire on their own.
    """

    def __init__(
        self,
        nodes: NodeLister,
        *,
        attempts: int = 2,
        backoff_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        preload: bool = True,
    ) -> None:
        self._nodes = nodes
        self._attempts = attempts
        self._backoff_s = backoff_s
        self._sleep = sleep
        self._lock = threading.Lock()
        self._cache: Mapping[str, NodeGpuInfo] = MappingProxyType({})
        if preload:
            retry(attempts, backoff_s, self.refresh, sleep=sleep)
            logger.info(
                "Loaded GPU node models",
                extra={"node": sorted(self._cache)},
            )

    def snapshot(self) -> Mapping[str, NodeGpuInfo]:
        return self._cache

    def refresh(self) -> Mapping[str, NodeGpuInfo]:
        try:
            models = self._nodes.list_gpu_nodes()
        except Exception as exc:
            raise DiscoveryError(f"Failed to list GPU nodes: {exc}") from exc
        replacement = MappingProxyType(dict(models))
        with self._lock:
            self._cache = replacement
        return replacement

    def resolve(self, node_name: str) -> NodeGpuInfo:
        info = self._cache.get(node_name)
        if info is not None:
            return info

        def _refresh_and_lookup() -> NodeGpuInfo:
            found = self.refresh().get(node_name)
            if found is None:
                raise _StillMissing(node_name)
            return found

        try:
            return retry(
                self._attempts,
                self._backoff_s,
                _refresh_and_lookup,
                sleep=self._sleep,
            )
        except _StillMissing as exc:
            raise ClassificationError(
                f"Node {node_name} has no GPU model"
            ) from exc
        except DiscoveryError as exc:
            raise ClassificationError(
                f"GPU model refresh failed for node {node_name}: {exc}"
            ) from exc
