"""
collector.py
~~~~~~~~~~~~
Prometheus surface of the cost engine.

Every scrape runs one orchestrator pass and renders the resulting snapshot as
gauges; nothing is kept in prometheus_client's own metric objects, so a
removed pod or node simply disappears from the next scrape.

  <ns>_pod_total / _pod_cpu / _pod_memory / _pod_cpu_requests / _pod_memory_requests
      {pod, namespace, node, type, lifecycle, <extra pod labels>}
  <ns>_node_total / _node_cpu / _node_memory
      {node, region, az, type, lifecycle, <extra node labels>}
  <ns>_scrape_duration_seconds, <ns>_scrapes_total, <ns>_scrape_errors_total,
  <ns>_scrapes_skipped_total, <ns>_cache_synced
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, List, Sequence, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from ..constants import DEFAULT_LISTEN_ADDRESS, DEFAULT_PORT, METRIC_NAMESPACE
from ..engine.cluster_state import ClusterStateCache, NodeCost, WorkloadCost
from ..engine.orchestrator import SnapshotOrchestrator

logger = logging.getLogger(__name__)

POD_LABELS = ("pod", "namespace", "node", "type", "lifecycle")
NODE_LABELS = ("node", "region", "az", "type", "lifecycle")

_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_label(key: str) -> str:
    """'app.kubernetes.io/name' -> 'app_kubernetes_io_name'"""
    name = _INVALID_LABEL_CHARS.sub("_", key.strip())
    if name and name[0].isdigit():
        name = "_" + name
    return name


def parse_label_list(value: str | None) -> List[str]:
    """Comma separated flag value -> list of label keys, blanks dropped."""
    if not value:
        return []
    return [k.strip() for k in value.split(",") if k.strip()]


def _extra_columns(keys: Iterable[str], base: Sequence[str]) -> List[Tuple[str, str]]:
    """(label key, metric label name) pairs, skipping names that clash."""
    cols = []
    taken = set(base)
    for key in keys:
        name = sanitize_label(key)
        if not name or name in taken:
            logger.warning(f"label {key!r} cannot be exported as {name!r}, skipping")
            continue
        taken.add(name)
        cols.append((key, name))
    return cols


class CostCollector:
    """
    Parameters
    ----------
    cache : ClusterStateCache
        only consulted for the cache-synced barrier.
    orchestrator : SnapshotOrchestrator
        runs the refresh pass and returns the snapshot.
    pod_labels / node_labels : label keys projected as extra metric labels.
    """

    def __init__(self,
                 cache: ClusterStateCache,
                 orchestrator: SnapshotOrchestrator,
                 pod_labels: Iterable[str] = (),
                 node_labels: Iterable[str] = (),
                 namespace: str = METRIC_NAMESPACE):
        self.cache = cache
        self.orchestrator = orchestrator
        self.namespace = namespace
        self.pod_columns = _extra_columns(pod_labels, POD_LABELS)
        self.node_columns = _extra_columns(node_labels, NODE_LABELS)

    def describe(self):
        # no descriptions: registering must not trigger a cost pass
        return []

    def collect(self):
        synced = self.cache.synced
        if synced:
            snap = self.orchestrator.collect()
            yield from self._pod_families(snap.workloads)
            yield from self._node_families(snap.nodes)
        else:
            logger.info("cluster cache not synced yet, serving exporter metrics only")
        yield from self._self_metrics(synced)

    # —— families —— #
    def _name(self, suffix: str) -> str:
        return f"{self.namespace}_{suffix}"

    def _pod_families(self, rows: Iterable[WorkloadCost]):
        labels = list(POD_LABELS) + [name for _, name in self.pod_columns]
        fams = {
            "total": GaugeMetricFamily(self._name("pod_total"),
                                       "Hourly cost of the pod: max(cpu, cpu requests) + max(memory, memory requests)",
                                       labels=labels),
            "cpu": GaugeMetricFamily(self._name("pod_cpu"),
                                     "Hourly cost of the CPU the pod uses", labels=labels),
            "memory": GaugeMetricFamily(self._name("pod_memory"),
                                        "Hourly cost of the memory the pod uses", labels=labels),
            "cpu_requests": GaugeMetricFamily(self._name("pod_cpu_requests"),
                                              "Hourly cost of the CPU the pod requests", labels=labels),
            "memory_requests": GaugeMetricFamily(self._name("pod_memory_requests"),
                                                 "Hourly cost of the memory the pod requests", labels=labels),
        }
        for row in rows:
            values = [row.name, row.namespace, row.node_name, row.instance_type, row.price_class]
            values += [row.labels.get(key, "") for key, _ in self.pod_columns]
            c = row.cost
            fams["total"].add_metric(values, c.total)
            fams["cpu"].add_metric(values, c.cpu_cost)
            fams["memory"].add_metric(values, c.memory_cost)
            fams["cpu_requests"].add_metric(values, c.cpu_reserved_cost)
            fams["memory_requests"].add_metric(values, c.memory_reserved_cost)
        return fams.values()

    def _node_families(self, rows: Iterable[NodeCost]):
        labels = list(NODE_LABELS) + [name for _, name in self.node_columns]
        total = GaugeMetricFamily(self._name("node_total"),
                                  "Hourly price of the node", labels=labels)
        cpu = GaugeMetricFamily(self._name("node_cpu"),
                                "Hourly price of one vCPU of the node", labels=labels)
        memory = GaugeMetricFamily(self._name("node_memory"),
                                   "Hourly price of one GiB of memory of the node", labels=labels)
        for row in rows:
            values = [row.name, row.region, row.zone, row.instance_type, row.price_class]
            values += [row.labels.get(key, "") for key, _ in self.node_columns]
            total.add_metric(values, row.total)
            cpu.add_metric(values, row.cpu_rate)
            memory.add_metric(values, row.memory_rate)
        return total, cpu, memory

    def _self_metrics(self, synced: bool):
        stats = self.orchestrator.stats_snapshot()
        yield GaugeMetricFamily(self._name("scrape_duration_seconds"),
                                "Duration of the last cost pass", value=stats.last_duration_sec)
        yield CounterMetricFamily(self._name("scrapes"),
                                  "Cost passes run", value=stats.scrapes_total)
        yield CounterMetricFamily(self._name("scrape_errors"),
                                  "Cost passes whose usage snapshot failed", value=stats.scrape_errors_total)
        yield CounterMetricFamily(self._name("scrapes_skipped"),
                                  "Scrapes served from the previous pass because one was running",
                                  value=stats.scrapes_skipped_total)
        yield GaugeMetricFamily(self._name("cache_synced"),
                                "1 once the initial node and pod listings are ingested", value=1 if synced else 0)


def serve(collector: CostCollector,
          address: str = DEFAULT_LISTEN_ADDRESS,
          port: int = DEFAULT_PORT,
          registry: CollectorRegistry = REGISTRY):
    """Register the collector and expose /metrics."""
    registry.register(collector)
    start_http_server(port, addr=address, registry=registry)
    logger.info(f"serving metrics on http://{address}:{port}/metrics")
    return registry
