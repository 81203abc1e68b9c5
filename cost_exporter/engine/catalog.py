"""
catalog.py
~~~~~~~~~~
Instance type -> hardware shape + priced variants.

Built once from the hardware-shape feed, then enriched by the pricing feeds.
Entries are only ever added or overwritten, never deleted.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..constants import CPU_MEM_RELATION, MIB_PER_GIB
from ..errors import InconsistentReference
from .rates import InstancePriceVariant, PriceClass


@dataclass
class Instance:
    type_id: str
    vcpu_count: int
    memory_mib: int
    on_demand: Optional[InstancePriceVariant] = None
    spot_by_zone: Dict[str, InstancePriceVariant] = field(default_factory=dict)

    @property
    def memory_gib(self) -> float:
        return self.memory_mib / MIB_PER_GIB

    def spot(self, zone: str) -> Optional[InstancePriceVariant]:
        return self.spot_by_zone.get(zone)


class InstanceCatalog:
    """Thread-safe, append/update-only instance catalog"""

    def __init__(self, cpu_mem_relation: float = CPU_MEM_RELATION):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.cpu_mem_relation = cpu_mem_relation
        self._instances: Dict[str, Instance] = {}
        self._fixed_rate: Optional[InstancePriceVariant] = None
        self._lock = threading.Lock()

    # ------------------------------ public API ------------------------------ #

    def upsert_shape(self, type_id: str, vcpu_count: int, memory_mib: int) -> bool:
        """
        Record the hardware shape of an instance type. Shapes that cannot be
        priced (no vCPU or no memory) are skipped.
        """
        if not type_id or vcpu_count is None or memory_mib is None \
                or vcpu_count <= 0 or memory_mib <= 0:
            self.logger.info(f"skipping instance type {type_id!r}: vcpu={vcpu_count} memory_mib={memory_mib}")
            return False

        with self._lock:
            inst = self._instances.get(type_id)
            if inst is None:
                self._instances[type_id] = Instance(type_id, int(vcpu_count), int(memory_mib))
                return True
            if inst.vcpu_count == vcpu_count and inst.memory_mib == memory_mib:
                return True
            # shape changed: rates derived from the old shape are re-split
            inst.vcpu_count = int(vcpu_count)
            inst.memory_mib = int(memory_mib)
            if inst.on_demand is not None:
                inst.on_demand = self._normalize(inst, PriceClass.ON_DEMAND,
                                                 inst.on_demand.total_hourly_price)
            inst.spot_by_zone = {
                zone: self._normalize(inst, PriceClass.SPOT, v.total_hourly_price, zone)
                for zone, v in inst.spot_by_zone.items()
            }
        return True

    def upsert_on_demand_price(self, type_id: str, total_hourly_price: float) -> bool:
        with self._lock:
            try:
                inst = self._require(type_id)
            except InconsistentReference as e:
                # price feed and shape feed are independent (legacy / retired types)
                self.logger.debug(f"{e}, ignoring on-demand price")
                return False
            try:
                inst.on_demand = self._normalize(inst, PriceClass.ON_DEMAND, total_hourly_price)
            except ValueError as e:
                self.logger.warning(f"invalid on-demand price for {type_id}: {e}")
                return False
        return True

    def upsert_spot_price(self, type_id: str, zone: str, total_hourly_price: float) -> bool:
        with self._lock:
            try:
                inst = self._require(type_id)
            except InconsistentReference as e:
                self.logger.debug(f"{e}, ignoring spot price in {zone}")
                return False
            try:
                variant = self._normalize(inst, PriceClass.SPOT, total_hourly_price, zone)
            except ValueError as e:
                self.logger.warning(f"invalid spot price for {type_id}/{zone}: {e}")
                return False
            # copy-on-write so readers holding the old dict never see it change
            spot = dict(inst.spot_by_zone)
            spot[zone] = variant
            inst.spot_by_zone = spot
        return True

    def upsert_fixed_rate(self, vcpu_rate: float, memory_rate: float) -> None:
        """Per-unit serverless rates (USD per vCPU-hour and per GB-hour)."""
        with self._lock:
            self._fixed_rate = InstancePriceVariant.fixed_rate(vcpu_rate, memory_rate)

    def lookup(self, type_id: str) -> Optional[Instance]:
        with self._lock:
            return self._instances.get(type_id)

    @property
    def fixed_rate(self) -> Optional[InstancePriceVariant]:
        with self._lock:
            return self._fixed_rate

    def instance_types(self) -> List[str]:
        with self._lock:
            return sorted(self._instances)

    def __len__(self):
        with self._lock:
            return len(self._instances)

    # ----------------------------- internal --------------------------------- #

    def _require(self, type_id: str) -> Instance:
        inst = self._instances.get(type_id)
        if inst is None:
            raise InconsistentReference(f"no shape for instance type {type_id}")
        return inst

    def _normalize(self, inst: Instance, kind: PriceClass,
                   total: float, zone: Optional[str] = None) -> InstancePriceVariant:
        return InstancePriceVariant.from_total(kind, total,
                                               inst.vcpu_count, inst.memory_gib,
                                               ratio=self.cpu_mem_relation, zone=zone)
