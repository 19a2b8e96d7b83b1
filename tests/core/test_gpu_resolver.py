import pytest

from kubemeter_core.errors import ClassificationError, DiscoveryError
from kubemeter_core.metering.gpu import GpuModelResolver
from kubemeter_core.metering.types import NodeGpuInfo


def _no_sleep(_seconds):
    return None


@pytest.mark.core
def test_preload_fills_cache(cluster):
    cluster.gpu_nodes = {"gpu-1": NodeGpuInfo("Tesla-T4", count=4)}
    resolver = GpuModelResolver(cluster, sleep=_no_sleep)
    assert resolver.resolve("gpu-1").product == "Tesla-T4"
    assert cluster.node_calls == 1


@pytest.mark.core
def test_miss_triggers_refresh(cluster):
    resolver = GpuModelResolver(cluster, sleep=_no_sleep)
    cluster.gpu_nodes = {"gpu-2": NodeGpuInfo("A100")}
    assert resolver.resolve("gpu-2").product == "A100"
    assert cluster.node_calls == 2
    assert "gpu-2" in resolver.snapshot()


@pytest.mark.core
def test_still_missing_after_refresh_is_classification_error(cluster):
    sleeps = []
    resolver = GpuModelResolver(cluster, attempts=2, sleep=sleeps.append)
    with pytest.raises(ClassificationError):
        resolver.resolve("cpu-node")
    # preload + two refresh attempts
    assert cluster.node_calls == 3
    assert len(sleeps) == 1


@pytest.mark.core
def test_refresh_failure_is_classification_error(cluster):
    resolver = GpuModelResolver(cluster, sleep=_no_sleep)
    cluster.failing.add("nodes")
    with pytest.raises(ClassificationError):
        resolver.resolve("gpu-1")


@pytest.mark.core
def test_preload_failure_propagates(cluster):
    cluster.failing.add("nodes")
    with pytest.raises(DiscoveryError):
        GpuModelResolver(cluster, attempts=2, sleep=_no_sleep)
    assert cluster.node_calls == 2


@pytest.mark.core
def test_refresh_replaces_cache_wholesale(cluster):
    cluster.gpu_nodes = {"gpu-1": NodeGpuInfo("Tesla-T4")}
    resolver = GpuModelResolver(cluster, sleep=_no_sleep)
    before = resolver.snapshot()
    cluster.gpu_nodes = {"gpu-9": NodeGpuInfo("L4")}
    resolver.refresh()
    assert "gpu-1" in before
    assert "gpu-1" not in resolver.snapshot()
