"""
cost.py
~~~~~~~
Hourly cost allocation of a workload on its node.

A workload pays for whichever is larger, what it reserved or what it used,
per resource:

    total = max(cpu, cpu_reserved) + max(memory, memory_reserved)
"""
from __future__ import annotations

import logging
from typing import Optional

from ..constants import GIB
from ..errors import MalformedAnnotation
from .quantity import parse_capacity_provisioned
from .rates import InstancePriceVariant, PriceClass
from .resource_types import CostBreakdown, Workload, WorkloadResources

logger = logging.getLogger(__name__)


def compute_cost(usage: WorkloadResources,
                 reservation: WorkloadResources,
                 rate: Optional[InstancePriceVariant]) -> CostBreakdown:
    """Request-vs-usage cost against a normalised instance rate."""
    if rate is None:
        return CostBreakdown.uncosted()

    cpu_cost = usage.cpu_millicores / 1000 * rate.vcpu_rate
    cpu_reserved_cost = reservation.cpu_millicores / 1000 * rate.vcpu_rate
    memory_cost = usage.memory_bytes / GIB * rate.memory_rate
    memory_reserved_cost = reservation.memory_bytes / GIB * rate.memory_rate

    return CostBreakdown(
        total=max(cpu_cost, cpu_reserved_cost) + max(memory_cost, memory_reserved_cost),
        cpu_cost=cpu_cost,
        memory_cost=memory_cost,
        cpu_reserved_cost=cpu_reserved_cost,
        memory_reserved_cost=memory_reserved_cost,
    )


def compute_fixed_rate_cost(annotation: Optional[str],
                            rate: InstancePriceVariant) -> CostBreakdown:
    """
    Serverless workloads are billed for the capacity they were provisioned
    with, so usage and reservation collapse into the same number.
    """
    vcpu, memory_gb = parse_capacity_provisioned(annotation)
    cpu_cost = vcpu * rate.vcpu_rate
    memory_cost = memory_gb * rate.memory_rate
    return CostBreakdown(
        total=cpu_cost + memory_cost,
        cpu_cost=cpu_cost,
        memory_cost=memory_cost,
        cpu_reserved_cost=cpu_cost,
        memory_reserved_cost=memory_cost,
    )


def workload_cost(workload: Workload) -> CostBreakdown:
    """Full cost breakdown of a workload given its currently bound node."""
    node = workload.node
    if node is None or node.resolved_rate is None:
        return CostBreakdown.uncosted()

    rate = node.resolved_rate
    if rate.kind in (PriceClass.ON_DEMAND, PriceClass.SPOT):
        return compute_cost(workload.usage, workload.reservation, rate)
    if rate.kind is PriceClass.FIXED_RATE:
        try:
            return compute_fixed_rate_cost(workload.capacity_annotation, rate)
        except MalformedAnnotation as e:
            logger.debug(f"{workload.full_name}: {e}, reporting zero cost")
            return CostBreakdown.uncosted()
    raise ValueError(f"unknown price class {rate.kind!r}")
