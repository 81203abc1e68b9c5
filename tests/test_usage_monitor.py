from unittest.mock import MagicMock

import pytest

from cost_exporter.cluster.UsageMonitor import UsageMonitor
from cost_exporter.engine.resource_types import WorkloadResources
from cost_exporter.errors import UpstreamUnavailable


def _pod_metrics(name, namespace, *usages):
    return {
        "metadata": {"name": name, "namespace": namespace},
        "containers": [{"name": f"c{i}", "usage": u} for i, u in enumerate(usages)],
    }


def test_container_usage_is_summed():
    cluster = MagicMock()
    cluster.list_pod_metrics.return_value = [
        _pod_metrics("web", "default", {"cpu": "250000000n", "memory": "100Mi"},
                     {"cpu": "5m", "memory": "28Mi"}),
        _pod_metrics("db", "data", {"cpu": "1", "memory": "1Gi"}),
    ]
    usage = UsageMonitor(cluster)()
    assert usage == {
        ("default", "web"): WorkloadResources(cpu_millicores=255, memory_bytes=128 * 1024 ** 2),
        ("data", "db"): WorkloadResources(cpu_millicores=1000, memory_bytes=1024 ** 3),
    }


def test_bad_quantities_skip_the_pod():
    cluster = MagicMock()
    cluster.list_pod_metrics.return_value = [
        _pod_metrics("web", "default", {"cpu": "fast", "memory": "1Gi"}),
        _pod_metrics("", "default", {"cpu": "1", "memory": "1Gi"}),
        _pod_metrics("db", "data", {"cpu": "1"}),
    ]
    usage = UsageMonitor(cluster)()
    assert list(usage) == [("data", "db")]
    assert usage[("data", "db")].memory_bytes == 0


def test_upstream_failure_propagates():
    cluster = MagicMock()
    cluster.list_pod_metrics.side_effect = UpstreamUnavailable("metrics-server down")
    with pytest.raises(UpstreamUnavailable):
        UsageMonitor(cluster)()
