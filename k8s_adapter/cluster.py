from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, Mapping

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException

from kubemeter_core.errors import DiscoveryError
from kubemeter_core.logging import get_logger
from kubemeter_core.metering.quantity import parse_quantity
from kubemeter_core.metering.types import (
    RESOURCE_STORAGE,
    ContainerResources,
    NetworkService,
    NodeGpuInfo,
    OwnerReference,
    VolumeClaim,
    WorkloadInstance,
)

logger = get_logger(__name__)

GPU_PRODUCT_LABEL = "nvidia.com/gpu.product"
GPU_COUNT_LABEL = "nvidia.com/gpu.count"
GPU_MEMORY_LABEL = "nvidia.com/gpu.memory"

DEFAULT_PAGE_SIZE = 500


def load_kube_client() -> k8s_client.CoreV1Api:
    try:
        k8s_config.load_incluster_config()
    except k8s_config.ConfigException:
        k8s_config.load_kube_config()
    return k8s_client.CoreV1Api()


def _paginate(list_fn: Callable[..., Any], **kwargs: Any) -> Iterator[Any]:
    token: str | None = None
    while True:
        params = dict(kwargs)
        params["limit"] = DEFAULT_PAGE_SIZE
        if token:
            params["_continue"] = token
        page = list_fn(**params)
        yield from page.items or []
        token = getattr(page.metadata, "_continue", None)
        if not token:
            return


def _quantities(values: Mapping[str, str] | None) -> dict[str, Decimal]:
    result: dict[str, Decimal] = {}
    for key, raw in (values or {}).items():
        try:
            result[key] = parse_quantity(raw)
        except ValueError:
            logger.warning(
                "Ignoring unparsable quantity",
                extra={"resource": key, "error_message": str(raw)},
            )
    return result


def _finished_at(pod: Any) -> datetime | None:
    latest: datetime | None = None
    statuses = (pod.status.container_statuses if pod.status else None) or []
    for status in statuses:
        terminated = status.state.terminated if status.state else None
        if terminated is None or terminated.finished_at is None:
            continue
        if latest is None or terminated.finished_at > latest:
            latest = terminated.finished_at
    return latest


def pod_to_instance(pod: Any) -> WorkloadInstance:
    metadata = pod.metadata
    spec = pod.spec
    status = pod.status
    containers = tuple(
        ContainerResources(
            name=container.name,
            limits=_quantities(container.resources.limits if container.resources else None),
            requests=_quantities(
                container.resources.requests if container.resources else None
            ),
        )
        for container in (spec.containers or [])
    )
    owners = tuple(
        OwnerReference(kind=ref.kind, name=ref.name, controller=bool(ref.controller))
        for ref in (metadata.owner_references or [])
    )
    return WorkloadInstance(
        name=metadata.name,
        node_name=spec.node_name or None,
        phase=(status.phase if status else None) or "Unknown",
        start_time=status.start_time if status else None,
        finished_at=_finished_at(pod),
        labels=dict(metadata.labels or {}),
        owners=owners,
        containers=containers,
    )


def claim_to_volume(claim: Any) -> VolumeClaim:
    requests = {}
    if claim.spec and claim.spec.resources:
        requests = _quantities(claim.spec.resources.requests)
    return VolumeClaim(
        name=claim.metadata.name,
        phase=(claim.status.phase if claim.status else None) or "Pending",
        storage_request=requests.get(RESOURCE_STORAGE, Decimal(0)),
        labels=dict(claim.metadata.labels or {}),
    )


def service_to_network(service: Any) -> NetworkService:
    return NetworkService(
        name=service.metadata.name,
        service_type=(service.spec.type if service.spec else None) or "ClusterIP",
        labels=dict(service.metadata.labels or {}),
    )


def node_gpu_info(node: Any) -> NodeGpuInfo | None:
    labels = node.metadata.labels or {}
    product = labels.get(GPU_PRODUCT_LABEL)
    if not product:
        return None
    try:
        count = int(labels.get(GPU_COUNT_LABEL, "0"))
    except ValueError:
        count = 0
    return NodeGpuInfo(product=product, count=count, memory=labels.get(GPU_MEMORY_LABEL))


class KubernetesCluster:
    """Read-only view of tenants and their billable objects."""

    def __init__(
        self,
        api: k8s_client.CoreV1Api | None = None,
        *,
        owner_label_key: str,
    ) -> None:
        self._api = api or load_kube_client()
        self._owner_label_key = owner_label_key

    def list_tenants(self) -> list[str]:
        try:
            namespaces = _paginate(
                self._api.list_namespace, label_selector=self._owner_label_key
            )
            return [item.metadata.name for item in namespaces]
        except ApiException as exc:
            raise DiscoveryError(f"Failed to list namespaces: {exc.reason}") from exc

    def list_pods(self, tenant: str) -> list[WorkloadInstance]:
        try:
            pods = _paginate(self._api.list_namespaced_pod, namespace=tenant)
            return [pod_to_instance(pod) for pod in pods]
        except ApiException as exc:
            raise DiscoveryError(f"Failed to list pods: {exc.reason}") from exc

    def list_volume_claims(self, tenant: str) -> list[VolumeClaim]:
        try:
            claims = _paginate(
                self._api.list_namespaced_persistent_volume_claim, namespace=tenant
            )
            return [claim_to_volume(claim) for claim in claims]
        except ApiException as exc:
            raise DiscoveryError(f"Failed to list pvc: {exc.reason}") from exc

    def list_services(self, tenant: str) -> list[NetworkService]:
        try:
            services = _paginate(self._api.list_namespaced_service, namespace=tenant)
            return [service_to_network(service) for service in services]
        except ApiException as exc:
            raise DiscoveryError(f"Failed to list svc: {exc.reason}") from exc

    def list_gpu_nodes(self) -> dict[str, NodeGpuInfo]:
        try:
            nodes = _paginate(self._api.list_node, label_selector=GPU_PRODUCT_LABEL)
            models: dict[str, NodeGpuInfo] = {}
            for node in nodes:
                info = node_gpu_info(node)
                if info is not None:
                    models[node.metadata.name] = info
            return models
        except ApiException as exc:
            raise DiscoveryError(f"Failed to list nodes: {exc.reason}") from exc
