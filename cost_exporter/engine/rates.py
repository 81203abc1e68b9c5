"""
rates.py
~~~~~~~~
Price classes and the normalisation of a whole-instance hourly price into a
(per vCPU-hour, per GiB-hour) rate pair.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..constants import CPU_MEM_RELATION


class PriceClass(str, Enum):
    """Closed set of pricing categories a node can be billed under."""
    ON_DEMAND = "ondemand"
    SPOT = "spot"
    FIXED_RATE = "serverless"


def normalize_rate(total_hourly_price: float,
                   vcpu_count: int,
                   memory_gib: float,
                   ratio: float = CPU_MEM_RELATION) -> Tuple[float, float]:
    """
    Split a total hourly price so that

        vcpu_rate * vcpu_count + memory_rate * memory_gib == total_hourly_price

    with vcpu_rate == ratio * memory_rate.

    Returns (vcpu_rate, memory_rate).
    """
    if total_hourly_price < 0:
        raise ValueError(f"negative price {total_hourly_price}")
    if vcpu_count <= 0 or memory_gib <= 0:
        raise ValueError(f"invalid shape vcpu={vcpu_count} memory_gib={memory_gib}")
    if ratio <= 0:
        raise ValueError(f"invalid cpu/memory ratio {ratio}")

    memory_rate = total_hourly_price / (ratio * vcpu_count + memory_gib)
    vcpu_rate = ratio * memory_rate
    return vcpu_rate, memory_rate


@dataclass(frozen=True)
class InstancePriceVariant:
    kind: PriceClass
    total_hourly_price: float      # USD / hour, 0.0 for fixed-rate
    vcpu_rate: float               # USD / vCPU-hour
    memory_rate: float             # USD / GiB-hour
    zone: Optional[str] = None     # spot only

    @classmethod
    def from_total(cls,
                   kind: PriceClass,
                   total_hourly_price: float,
                   vcpu_count: int,
                   memory_gib: float,
                   ratio: float = CPU_MEM_RELATION,
                   zone: Optional[str] = None) -> "InstancePriceVariant":
        vcpu_rate, memory_rate = normalize_rate(total_hourly_price, vcpu_count, memory_gib, ratio)
        return cls(kind=kind,
                   total_hourly_price=total_hourly_price,
                   vcpu_rate=vcpu_rate,
                   memory_rate=memory_rate,
                   zone=zone if kind is PriceClass.SPOT else None)

    @classmethod
    def fixed_rate(cls, vcpu_rate: float, memory_rate: float) -> "InstancePriceVariant":
        """Serverless pricing is published per unit, no normalisation needed."""
        return cls(kind=PriceClass.FIXED_RATE,
                   total_hourly_price=0.0,
                   vcpu_rate=vcpu_rate,
                   memory_rate=memory_rate)
