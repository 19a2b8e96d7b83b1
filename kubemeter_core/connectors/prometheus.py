from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

import requests  # type: ignore[import-untyped]

from kubemeter_core.errors import DiscoveryError
from kubemeter_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TRAFFIC_METRIC = "traffic_sent_bytes"
BUCKET_TRAFFIC_METRIC = "minio_bucket_traffic_sent_bytes"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def label_selector(labels: Mapping[str, str]) -> str:
    parts = [f'{key}="{_escape(value)}"' for key, value in labels.items() if value]
    return "{" + ",".join(parts) + "}"


def _range_seconds(start: datetime, end: datetime) -> int:
    seconds = math.ceil((end - start).total_seconds())
    if seconds <= 0:
        raise ValueError("Query window must be positive")
    return seconds


def increase_query(
    metric: str,
    labels: Mapping[str, str],
    start: datetime,
    end: datetime,
) -> str:
    return f"sum(increase({metric}{label_selector(labels)}[{_range_seconds(start, end)}s]))"


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


@dataclass(frozen=True)
class PrometheusClient:
    base_url: str
    timeout_s: float = 30.0

    def query(self, expr: str, at: datetime | None = None) -> list[dict[str, Any]]:
        params: dict[str, str] = {"query": expr}
        if at is not None:
            params["time"] = f"{_timestamp(at):.3f}"
        url = f"{self.base_url.rstrip('/')}/api/v1/query"
        try:
            resp = requests.get(url, params=params, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise DiscoveryError(f"Prometheus request failed: {exc}") from exc
        if resp.status_code >= 300:
            raise DiscoveryError(
                f"Prometheus query failed ({resp.status_code}): {resp.text}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise DiscoveryError("Prometheus returned invalid JSON") from exc
        if payload.get("status") != "success":
            raise DiscoveryError(
                f"Prometheus query error: {payload.get('error', 'unknown')}"
            )
        data = payload.get("data") or {}
        result = data.get("result") or []
        if data.get("resultType") == "scalar":
            return [{"metric": {}, "value": result}]
        return list(result)

    def query_scalar(self, expr: str, at: datetime | None = None) -> float:
        """Sum of every sample value returned by ``expr``; 0 for empty results."""
        total = 0.0
        for series in self.query(expr, at):
            value = series.get("value") or []
            if len(value) < 2:
                continue
            try:
                number = float(value[1])
            except (TypeError, ValueError):
                continue
            if math.isnan(number):
                continue
            total += number
        return total


@dataclass(frozen=True)
class PrometheusTrafficSource:
    client: PrometheusClient
    metric: str = DEFAULT_TRAFFIC_METRIC

    def get_traffic_sent_bytes(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
        kind: str,
        name: str,
    ) -> int:
        expr = increase_query(
            self.metric,
            {"namespace": tenant, "type": kind, "name": name},
            start,
            end,
        )
        value = self.client.query_scalar(expr, at=end)
        return max(0, int(round(value)))


def bucket_egress_bytes(
    client: PrometheusClient,
    bucket: str,
    instance: str | None,
    start: datetime,
    end: datetime,
) -> int:
    labels = {"bucket": bucket}
    if instance:
        labels["instance"] = instance
    expr = increase_query(BUCKET_TRAFFIC_METRIC, labels, start, end)
    return max(0, int(round(client.query_scalar(expr, at=end))))
