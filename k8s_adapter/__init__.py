from k8s_adapter.adapter import MeteringRuntime
from k8s_adapter.cluster import KubernetesCluster

__all__ = ["KubernetesCluster", "MeteringRuntime"]
