"""
cluster_state.py
~~~~~~~~~~~~~~~~
Keeps the node and pod tables current from membership events and turns them
into cost rows for the exporter.

Two tables, each behind its own reader/writer lock. The two locks are never
held at the same time: whenever a workload needs its node, the node lock is
taken only to copy the reference.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ..constants import (CAPACITY_PROVISIONED_ANNOTATION, CAPACITY_TYPE_LABELS,
                         COMPUTE_TYPE_LABEL, INSTANCE_TYPE_LABEL, REGION_LABEL,
                         SERVERLESS_COMPUTE_TYPE, SERVERLESS_INSTANCE_TYPE,
                         ZONE_LABEL)
from .catalog import InstanceCatalog
from .cost import workload_cost
from .quantity import cpu_millicores, memory_bytes
from .rates import PriceClass
from .resource_types import CostBreakdown, Node, Workload, WorkloadResources
from .rwlock import ReadWriteLock

WorkloadKey = Tuple[str, str]      # (namespace, name)


class EventType(str, Enum):
    ADDED = "Added"
    UPDATED = "Updated"
    REMOVED = "Removed"
    SYNCED = "Synced"              # initial listing fully delivered


@dataclass(frozen=True)
class MembershipEvent:
    type: EventType
    obj: Any = None                # kubernetes.client V1Node / V1Pod


# —— read-only rows handed to the exporter —— #
@dataclass(frozen=True)
class NodeCost:
    name: str
    region: str
    zone: str
    instance_type: str
    price_class: str
    total: float
    cpu_rate: float
    memory_rate: float
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkloadCost:
    name: str
    namespace: str
    node_name: str
    instance_type: str
    price_class: str
    cost: CostBreakdown
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CostSnapshot:
    nodes: Tuple[NodeCost, ...]
    workloads: Tuple[WorkloadCost, ...]


# —— raw record parsing —— #
def resolve_price_class(labels: Mapping[str, str],
                        capacity_labels: Mapping[str, str] = CAPACITY_TYPE_LABELS) -> PriceClass:
    """Price tier from the node's capacity-provisioning labels."""
    if labels.get(COMPUTE_TYPE_LABEL) == SERVERLESS_COMPUTE_TYPE:
        return PriceClass.FIXED_RATE
    for key, spot_value in capacity_labels.items():
        value = labels.get(key)
        if value is not None and value.lower() == spot_value.lower():
            return PriceClass.SPOT
    return PriceClass.ON_DEMAND


def merge_requests(containers) -> WorkloadResources:
    """Sum of the containers' cpu / memory requests."""
    cpu = 0
    mem = 0
    for c in containers or []:
        reqs = (c.resources.requests if c.resources else None) or {}
        cpu += cpu_millicores(reqs.get("cpu"))
        mem += memory_bytes(reqs.get("memory"))
    return WorkloadResources(cpu_millicores=cpu, memory_bytes=mem)


class ClusterStateCache:
    """
    Parameters
    ----------
    catalog : InstanceCatalog
        used to bind a node's rate when it is first seen.
    capacity_labels : Mapping[str, str]
        label key -> value that marks a node as spot capacity.
    """

    def __init__(self,
                 catalog: InstanceCatalog,
                 capacity_labels: Mapping[str, str] = CAPACITY_TYPE_LABELS):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.catalog = catalog
        self.capacity_labels = dict(capacity_labels)

        self._nodes: Dict[str, Node] = {}
        self._nodes_lock = ReadWriteLock()
        self._workloads: Dict[WorkloadKey, Workload] = {}
        self._workloads_lock = ReadWriteLock()

        self.nodes_synced = threading.Event()
        self.workloads_synced = threading.Event()

    # ──────────────────────────────────────────────
    # cache-synced barrier
    # ──────────────────────────────────────────────
    @property
    def synced(self) -> bool:
        return self.nodes_synced.is_set() and self.workloads_synced.is_set()

    def wait_for_sync(self, timeout: Optional[float] = None) -> bool:
        if not self.nodes_synced.wait(timeout):
            return False
        return self.workloads_synced.wait(timeout)

    # ──────────────────────────────────────────────
    # event dispatch (single writer per table)
    # ──────────────────────────────────────────────
    def apply_node_event(self, event: MembershipEvent):
        if event.type is EventType.ADDED:
            self.on_node_added(event.obj)
        elif event.type is EventType.UPDATED:
            self.on_node_updated(event.obj)
        elif event.type is EventType.REMOVED:
            self.on_node_removed(event.obj)
        elif event.type is EventType.SYNCED:
            if not self.nodes_synced.is_set():
                self.logger.info(f"node cache synced, {len(self.nodes())} node(s)")
            self.nodes_synced.set()

    def apply_workload_event(self, event: MembershipEvent):
        if event.type is EventType.ADDED:
            self.on_workload_added(event.obj)
        elif event.type is EventType.UPDATED:
            self.on_workload_updated(event.obj)
        elif event.type is EventType.REMOVED:
            self.on_workload_removed(event.obj)
        elif event.type is EventType.SYNCED:
            if not self.workloads_synced.is_set():
                self.logger.info(f"pod cache synced, {len(self.workloads())} pod(s)")
            self.workloads_synced.set()

    # ──────────────────────────────────────────────
    # nodes
    # ──────────────────────────────────────────────
    def on_node_added(self, raw):
        name = raw.metadata.name
        labels = dict(raw.metadata.labels or {})
        with self._nodes_lock.write():
            existing = self._nodes.get(name)
            if existing is not None:
                # redelivery: the bound rate stays as it is
                existing.labels = labels
                return
            node = self._build_node(name, labels)
            self._nodes[name] = node
        self.logger.debug(f"node added: {node}")

    def on_node_updated(self, raw):
        name = raw.metadata.name
        with self._nodes_lock.read():
            known = name in self._nodes
        if not known:
            # the add was never seen
            self.on_node_added(raw)
            return
        labels = dict(raw.metadata.labels or {})
        with self._nodes_lock.write():
            node = self._nodes.get(name)
            if node is not None:
                node.labels = labels

    def on_node_removed(self, raw):
        name = raw.metadata.name
        with self._nodes_lock.write():
            removed = self._nodes.pop(name, None)
        if removed is not None:
            self.logger.debug(f"node removed: {name}")

    def get_node(self, name: str) -> Optional[Node]:
        if not name:
            return None
        with self._nodes_lock.read():
            return self._nodes.get(name)

    def nodes(self) -> Mapping[str, Node]:
        with self._nodes_lock.read():
            return MappingProxyType(dict(self._nodes))

    def _build_node(self, name: str, labels: Dict[str, str]) -> Node:
        zone = labels.get(ZONE_LABEL, "")
        region = labels.get(REGION_LABEL, "")
        price_class = resolve_price_class(labels, self.capacity_labels)

        if price_class is PriceClass.FIXED_RATE:
            rate = self.catalog.fixed_rate
            if rate is None:
                self.logger.warning(f"node {name} is serverless but no fixed rate is known")
            return Node(name, zone, region, labels,
                        instance_type=SERVERLESS_INSTANCE_TYPE, resolved_rate=rate)

        instance_type = labels.get(INSTANCE_TYPE_LABEL, "")
        instance = self.catalog.lookup(instance_type) if instance_type else None
        if instance is None:
            # still recorded so that pods can be linked to it
            self.logger.warning(f"node {name}: unknown instance type {instance_type!r}, not costed")
            return Node(name, zone, region, labels, instance_type=instance_type)

        rate = None
        if price_class is PriceClass.SPOT:
            rate = instance.spot(zone)
            if rate is None:
                self.logger.info(f"node {name}: no spot price for {instance_type} in {zone!r}, "
                                 f"falling back to on-demand")
        if rate is None:
            rate = instance.on_demand
        if rate is None:
            self.logger.warning(f"node {name}: no price known for {instance_type}, not costed")
        return Node(name, zone, region, labels,
                    instance_type=instance_type, instance=instance, resolved_rate=rate)

    # ──────────────────────────────────────────────
    # workloads
    # ──────────────────────────────────────────────
    def on_workload_added(self, raw):
        if not raw.spec or not raw.spec.node_name:
            # still pending: wait for an update that carries the node assignment
            self.logger.debug(f"ignoring unscheduled pod {raw.metadata.namespace}/{raw.metadata.name}")
            return
        self._upsert_workload(raw)

    def on_workload_updated(self, raw):
        if not raw.spec or not raw.spec.node_name:
            return
        # a first node assignment counts as a creation
        self._upsert_workload(raw)

    def on_workload_removed(self, raw):
        key = (raw.metadata.namespace, raw.metadata.name)
        with self._workloads_lock.write():
            self._workloads.pop(key, None)

    def get_workload(self, namespace: str, name: str) -> Optional[Workload]:
        with self._workloads_lock.read():
            return self._workloads.get((namespace, name))

    def workloads(self) -> Mapping[WorkloadKey, Workload]:
        with self._workloads_lock.read():
            return MappingProxyType(dict(self._workloads))

    def _upsert_workload(self, raw):
        meta = raw.metadata
        key = (meta.namespace, meta.name)
        node_name = raw.spec.node_name
        labels = dict(meta.labels or {})
        annotation = (meta.annotations or {}).get(CAPACITY_PROVISIONED_ANNOTATION)
        try:
            reservation = merge_requests(raw.spec.containers)
        except ValueError as e:
            self.logger.warning(f"pod {meta.namespace}/{meta.name}: unparseable requests ({e}), using zero")
            reservation = WorkloadResources()

        # node lock released before the workload lock is taken
        node = self.get_node(node_name)

        with self._workloads_lock.write():
            wl = self._workloads.get(key)
            if wl is None:
                wl = Workload(meta.name, meta.namespace, labels,
                              reservation=reservation,
                              node_name=node_name,
                              capacity_annotation=annotation)
                self._workloads[key] = wl
            else:
                wl.labels = labels
                wl.reservation = reservation
                wl.capacity_annotation = annotation
                wl.node_name = node_name
            wl.bind(node)
            wl.cost = workload_cost(wl)

        if node is None:
            self.logger.debug(f"pod {meta.namespace}/{meta.name}: node {node_name} not known yet")

    # ──────────────────────────────────────────────
    # full recomputation pass
    # ──────────────────────────────────────────────
    def refresh(self, usage: Optional[Mapping[WorkloadKey, WorkloadResources]] = None) -> int:
        """
        Overwrite usage from a snapshot, re-bind every workload to its node by
        name and recompute all costs. Pods missing from the snapshot get zero
        usage; None (no snapshot) keeps the previous values. The workload
        table stays write-locked for the whole pass.

        Returns the number of costed workloads.
        """
        with self._nodes_lock.read():
            nodes = dict(self._nodes)

        costed = 0
        with self._workloads_lock.write():
            for key, wl in self._workloads.items():
                if usage is not None:
                    wl.usage = usage.get(key, WorkloadResources())
                wl.bind(nodes.get(wl.node_name))
                wl.cost = workload_cost(wl)
                if wl.cost.costed:
                    costed += 1
        return costed

    # ──────────────────────────────────────────────
    # query surface
    # ──────────────────────────────────────────────
    def snapshot(self) -> CostSnapshot:
        with self._nodes_lock.read():
            nodes = tuple(_node_row(n) for n in self._nodes.values())
        with self._workloads_lock.read():
            workloads = tuple(_workload_row(w) for w in self._workloads.values())
        return CostSnapshot(nodes=nodes, workloads=workloads)


def _node_row(node: Node) -> NodeCost:
    rate = node.resolved_rate
    return NodeCost(
        name=node.name,
        region=node.region,
        zone=node.zone,
        instance_type=node.instance_type,
        price_class=rate.kind.value if rate else "",
        total=rate.total_hourly_price if rate else 0.0,
        cpu_rate=rate.vcpu_rate if rate else 0.0,
        memory_rate=rate.memory_rate if rate else 0.0,
        labels=MappingProxyType(dict(node.labels)),
    )


def _workload_row(wl: Workload) -> WorkloadCost:
    node = wl.node
    return WorkloadCost(
        name=wl.name,
        namespace=wl.namespace,
        node_name=wl.node_name,
        instance_type=node.instance_type if node is not None else "",
        price_class=node.price_class.value if node is not None and node.price_class else "",
        cost=wl.cost,
        labels=MappingProxyType(dict(wl.labels)),
    )
