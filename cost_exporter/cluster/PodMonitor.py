"""
pod usage from Prometheus

cpu: sum(rate(container_cpu_usage_seconds_total{container!="", container!="POD"}[2m])) by (namespace, pod)
- container_cpu_usage_seconds_total is the cumulative CPU time of a container.
- rate(...) over the window gives the number of cores in use.
- summed by (namespace, pod) to get the pod level value in cores.

memory: sum(container_memory_working_set_bytes{container!="", container!="POD"}) by (namespace, pod)
- working set of all containers in the pod, in bytes.
"""

import logging
import math

from prometheus_api_client import PrometheusConnect
from prometheus_api_client.exceptions import PrometheusApiClientException
from requests.exceptions import RequestException

from ..engine.resource_types import WorkloadResources
from ..errors import UpstreamUnavailable


class PodMonitor:
    """Point-in-time CPU / memory usage of every pod via PromQL."""
    def __init__(self, prom_url: str, rate_window: str = "2m"):
        self.prom = PrometheusConnect(url=prom_url,
                                      disable_ssl=True)
        self.cpu_usage_query = (
            'sum(rate(container_cpu_usage_seconds_total'
            '{container!="", container!="POD"}'
            f'[{rate_window}])) by (namespace, pod)'
        )
        self.mem_usage_query = (
            'sum(container_memory_working_set_bytes'
            '{container!="", container!="POD"}'
            ') by (namespace, pod)'
        )
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def query(self, query):
        """Instant query, returns the result vector."""
        try:
            return self.prom.custom_query(query=query)
        except (PrometheusApiClientException, RequestException) as e:
            raise UpstreamUnavailable(f"Prometheus query error: {e}") from e

    def __call__(self):
        """{(namespace, pod): WorkloadResources}"""
        cpu_use = {
            (d["metric"]["namespace"], d["metric"]["pod"]): float(d["value"][1])
            for d in self.query(self.cpu_usage_query)
            if d["metric"].get("namespace") and d["metric"].get("pod")
        }
        mem_use = {
            (d["metric"]["namespace"], d["metric"]["pod"]): float(d["value"][1])
            for d in self.query(self.mem_usage_query)
            if d["metric"].get("namespace") and d["metric"].get("pod")
        }
        usage = {}
        for key in cpu_use.keys() | mem_use.keys():
            cores = cpu_use.get(key, 0.0)
            mem = mem_use.get(key, 0.0)
            # NaN or Inf from rate() over a sparse or reset series
            if not math.isfinite(cores):
                cores = 0.0
            if not math.isfinite(mem):
                mem = 0.0
            usage[key] = WorkloadResources(cpu_millicores=int(cores * 1000), memory_bytes=int(mem))
        self.logger.debug(f"usage collected for {len(usage)} pod(s)")
        return usage
