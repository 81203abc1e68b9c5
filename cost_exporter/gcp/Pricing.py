"""
gcp/Pricing.py

Compute Engine hardware shapes and VM prices for one region, fed into the
instance catalog.

Data sources:
  • Cloud Billing Catalog API (per-family core / RAM unit prices):
    https://cloud.google.com/billing/docs/apis/catalog
  • Compute Engine MachineTypes aggregated list (vCPU / memory per machine type and zone)

Usage:
  client = PricingClient(project_id="my-project", region="us-central1")
  client.populate(catalog)
"""
import logging
import re
import time

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import TransportError
from google.cloud import billing_v1, compute_v1

from ..constants import GCP_COMPUTE_ENGINE_SERVICE, MIB_PER_GIB
from ..engine.catalog import InstanceCatalog
from ..errors import UpstreamUnavailable

# n1, n2, n2d, e2, c2d, c3, m3, h3, t2d ...
_FAMILY_RE = re.compile(r"[a-z]\d+[a-z]?")

_EXCLUDED_DESC = ("Custom", "Reserved", "Sole Tenancy", "GPU", "NVIDIA", "DWS", "Optimized", "Commitment")

ON_DEMAND = "OnDemand"
PREEMPTIBLE = "Preemptible"


class PricingClient:

    def __init__(self, project_id: str, region: str):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.project_id = project_id
        self.region = region
        self.client = billing_v1.CloudCatalogClient()
        self.compute_client = compute_v1.MachineTypesClient()

        self.logger.info(f"GCP pricing client initialized for {project_id}/{region}")

    def list_compute_skus(self):
        """
        All Compute Engine SKUs of the region, filtered:
          1. resource_family == "Compute"
          2. usage_type in ("OnDemand", "Preemptible")
          3. no custom / sole-tenant / GPU / commitment SKUs
        """
        skus = []
        # list_skus pages transparently
        for sku in self.client.list_skus(parent=GCP_COMPUTE_ENGINE_SERVICE):
            cat = sku.category
            if cat.resource_family != "Compute":
                continue
            if cat.usage_type not in (ON_DEMAND, PREEMPTIBLE):
                continue
            if self.region not in (sku.service_regions or []):
                continue
            desc = sku.description or ""
            if any(word in desc for word in _EXCLUDED_DESC):
                continue
            skus.append(sku)
        return skus

    def get_unit_prices(self):
        """
        Per-family CPU and memory unit prices of the region:
          usage_type -> {
            family: {
              "cpu_price": USD/core·hour,
              "memory_price": USD/GiB·hour
            }
          }
        """
        unit_map = {ON_DEMAND: {}, PREEMPTIBLE: {}}
        for sku in self.list_compute_skus():
            if not sku.pricing_info:
                continue
            expr = sku.pricing_info[0].pricing_expression
            if not expr.tiered_rates:
                continue
            rate0 = expr.tiered_rates[0]
            unit_price = rate0.unit_price.units + rate0.unit_price.nanos / 1e9

            desc = sku.description or ""
            desc_l = desc.lower()
            # only "Core running" and "Ram running" SKUs
            if "core running" in desc_l:
                part = "cpu_price"
            elif "ram running" in desc_l:
                part = "memory_price"
            else:
                continue

            # machine family from the description (e2 / n2 / c2d ...)
            family = None
            for token in desc.split():
                tl = token.lower()
                if _FAMILY_RE.fullmatch(tl):
                    family = tl
                    break
            if not family:
                continue
            # ARM families (t2a, or "ARM" in the description) are skipped
            if family == "t2a" or "arm" in desc_l.split():
                continue

            entry = unit_map[sku.category.usage_type] \
                .setdefault(family, {"cpu_price": 0.0, "memory_price": 0.0})
            entry[part] = unit_price
        return unit_map

    def list_zone_machine_types(self):
        """
        Machine types offered in each zone of the region:
          zone -> [
            {"name": "e2-standard-4", "vcpus": 4, "memory_mb": 16384}, ...
          ]
        """
        result = {}
        req = compute_v1.types.AggregatedListMachineTypesRequest(project=self.project_id)
        for zone_scope, resp in self.compute_client.aggregated_list(request=req):
            if not resp.machine_types:
                continue
            zone = zone_scope.split("/")[-1]                 # e.g. "us-central1-a"
            region = "-".join(zone.split("-")[:-1])          # e.g. "us-central1"
            if region != self.region:
                continue
            for mt in resp.machine_types:
                if "custom" in mt.name:
                    continue
                result.setdefault(zone, []).append({
                    "name": mt.name,
                    "vcpus": mt.guest_cpus,
                    "memory_mb": mt.memory_mb,
                })
        return result

    def populate(self, catalog: InstanceCatalog):
        """
        Shapes first, then per machine type:
          total = vcpus * cpu_price + mem_gib * memory_price
        on-demand once, preemptible offered as the spot price of every zone
        the machine type is available in.
        """
        start = time.time()
        try:
            zones = self.list_zone_machine_types()
            unit_map = self.get_unit_prices()
        except (GoogleAPIError, TransportError) as e:
            raise UpstreamUnavailable(f"GCP pricing fetch failed: {e}") from e

        shapes = 0
        priced = 0
        spot = 0
        seen = set()
        for zone, mts in zones.items():
            for mt in mts:
                name = mt["name"]
                family = name.split("-")[0]
                mem_gib = mt["memory_mb"] / MIB_PER_GIB

                if name not in seen:
                    seen.add(name)
                    if not catalog.upsert_shape(name, mt["vcpus"], mt["memory_mb"]):
                        continue
                    shapes += 1
                    unit = unit_map[ON_DEMAND].get(family)
                    if unit and catalog.upsert_on_demand_price(
                            name, round(mt["vcpus"] * unit["cpu_price"] + mem_gib * unit["memory_price"], 6)):
                        priced += 1

                unit = unit_map[PREEMPTIBLE].get(family)
                if unit and catalog.upsert_spot_price(
                        name, zone, round(mt["vcpus"] * unit["cpu_price"] + mem_gib * unit["memory_price"], 6)):
                    spot += 1

        self.logger.info(f"GCP catalog populated in {time.time() - start:.1f}s: "
                         f"{shapes} machine types, {priced} on-demand prices, {spot} zonal spot prices")
