from __future__ import annotations

import posixpath
from datetime import datetime
from typing import Any, Mapping

import fsspec

from kubemeter_core.connectors.prometheus import PrometheusClient, bucket_egress_bytes
from kubemeter_core.errors import DiscoveryError


class FsspecObjectStorage:
    """Bucket listing and sizing through fsspec, egress through Prometheus.

    Buckets belonging to a user are named ``<user>-<bucket>``.
    """

    def __init__(
        self,
        base_uri: str,
        *,
        prometheus: PrometheusClient | None = None,
        instance: str | None = None,
        storage_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._fs, root = fsspec.core.url_to_fs(base_uri, **dict(storage_options or {}))
        self._root = root.rstrip("/")
        self._prometheus = prometheus
        self._instance = instance

    def _bucket_path(self, bucket: str) -> str:
        if not self._root:
            return bucket
        return posixpath.join(self._root, bucket)

    def list_user_buckets(self, user: str) -> list[str]:
        try:
            entries = self._fs.ls(self._root, detail=False)
        except FileNotFoundError:
            return []
        except Exception as exc:
            raise DiscoveryError(f"Failed to list buckets: {exc}") from exc
        prefix = f"{user}-"
        buckets = []
        for entry in entries:
            name = posixpath.basename(str(entry).rstrip("/"))
            if name.startswith(prefix):
                buckets.append(name)
        return sorted(buckets)

    def bucket_usage(self, bucket: str) -> tuple[int, int]:
        try:
            objects = self._fs.find(self._bucket_path(bucket), detail=True)
        except FileNotFoundError:
            return 0, 0
        size = 0
        count = 0
        for info in objects.values():
            if info.get("type") == "directory":
                continue
            size += int(info.get("size") or 0)
            count += 1
        return size, count

    def bucket_egress_bytes(self, bucket: str, start: datetime, end: datetime) -> int:
        if self._prometheus is None:
            return 0
        return bucket_egress_bytes(self._prometheus, bucket, self._instance, start, end)
