"""
pod usage from metrics-server

GET /apis/metrics.k8s.io/v1beta1/pods
- one PodMetrics object per pod, usage reported per container
  (cpu in nanocores like "123456789n", memory like "12345Ki")
- the pod's usage is the sum over its containers
"""
import logging

from ..engine.quantity import cpu_millicores, memory_bytes
from ..engine.resource_types import WorkloadResources
from .ClusterMonitor import ClusterMonitor


class UsageMonitor:
    """Point-in-time CPU / memory usage of every pod via metrics-server."""
    def __init__(self, cluster: ClusterMonitor):
        self.cluster = cluster
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def __call__(self):
        """{(namespace, pod): WorkloadResources}; UpstreamUnavailable propagates."""
        usage = {}
        for item in self.cluster.list_pod_metrics():
            meta = item.get("metadata", {})
            name, namespace = meta.get("name"), meta.get("namespace")
            if not name or not namespace:
                continue
            cpu = 0
            mem = 0
            try:
                for c in item.get("containers", []):
                    u = c.get("usage", {})
                    cpu += cpu_millicores(u.get("cpu"))
                    mem += memory_bytes(u.get("memory"))
            except ValueError as e:
                self.logger.warning(f"bad usage quantity for {namespace}/{name}: {e}")
                continue
            usage[(namespace, name)] = WorkloadResources(cpu_millicores=cpu, memory_bytes=mem)
        self.logger.debug(f"usage collected for {len(usage)} pod(s)")
        return usage
