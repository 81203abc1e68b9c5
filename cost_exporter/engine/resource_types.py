"""
resource_types.py
~~~~~~~~~~~~~~~~~
Lightweight Node / Workload records, only the fields costing needs.
"""
from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .catalog import Instance
from .rates import InstancePriceVariant, PriceClass


@dataclass(frozen=True)
class WorkloadResources:
    """Used both for the declared reservation and the observed usage."""
    cpu_millicores: int = 0
    memory_bytes: int = 0


@dataclass(frozen=True)
class CostBreakdown:
    """
    Hourly cost of a workload. Always rebuilt in full.

    `costed` is False when no rate was available (unscheduled workload, unknown
    node or instance type, unparseable serverless annotation); all amounts are
    zero in that case, which is different from a legitimately free workload.
    """
    total: float = 0.0
    cpu_cost: float = 0.0
    memory_cost: float = 0.0
    cpu_reserved_cost: float = 0.0
    memory_reserved_cost: float = 0.0
    costed: bool = True

    @classmethod
    def uncosted(cls) -> "CostBreakdown":
        return cls(costed=False)


class Node:
    """Cluster node; price tier is bound at creation and never changes."""
    __slots__ = ("name", "zone", "region", "labels",
                 "instance_type", "instance", "resolved_rate", "__weakref__")

    def __init__(self,
                 name: str,
                 zone: str = "",
                 region: str = "",
                 labels: Dict[str, str] | None = None,
                 instance_type: str = "",
                 instance: Optional[Instance] = None,
                 resolved_rate: Optional[InstancePriceVariant] = None):
        self.name = name
        self.zone = zone
        self.region = region
        self.labels = labels or {}
        self.instance_type = instance_type
        self.instance = instance
        self.resolved_rate = resolved_rate

    @property
    def price_class(self) -> Optional[PriceClass]:
        return self.resolved_rate.kind if self.resolved_rate else None

    def __repr__(self):
        return (f"Node({self.name}, {self.region}/{self.zone}, "
                f"type={self.instance_type}, class={self.price_class})")


class Workload:
    """A pod as seen by the cost engine."""
    __slots__ = ("name", "namespace", "labels",
                 "reservation", "usage", "capacity_annotation",
                 "node_name", "_node_ref", "cost")

    def __init__(self,
                 name: str,
                 namespace: str,
                 labels: Dict[str, str] | None = None,
                 reservation: WorkloadResources | None = None,
                 usage: WorkloadResources | None = None,
                 node_name: str = "",
                 capacity_annotation: Optional[str] = None):
        self.name = name
        self.namespace = namespace
        self.labels = labels or {}
        self.reservation = reservation or WorkloadResources()
        self.usage = usage or WorkloadResources()
        self.capacity_annotation = capacity_annotation
        self.node_name = node_name
        self._node_ref = None
        self.cost = CostBreakdown.uncosted()

    # —— node binding —— #
    @property
    def node(self) -> Optional[Node]:
        """Non-owning reference; None once the node record is gone."""
        return self._node_ref() if self._node_ref is not None else None

    def bind(self, node: Optional[Node]):
        self._node_ref = weakref.ref(node) if node is not None else None

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @property
    def full_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    def __hash__(self):
        return hash(self.key)

    def __repr__(self):
        return (f"Workload({self.full_name}, node={self.node_name or '-'}, "
                f"req={self.reservation}, usage={self.usage}, cost={self.cost.total:.6f})")
