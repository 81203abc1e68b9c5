"""
aws/Pricing.py

EC2 hardware shapes, on-demand / spot prices and Fargate rates for one region,
fed into the instance catalog.

Data sources:
  • EC2 DescribeInstanceTypes (DefaultVCpus / SizeInMiB per instance type)
  • AWS Price List GetProducts, AmazonEC2 (Linux, shared tenancy, no pre-installed software)
  • EC2 DescribeSpotPriceHistory from now (Linux/UNIX, one price per availability zone)
  • AWS Price List GetProducts, AmazonEKS (Fargate per vCPU-hour / per GB-hour)

The Price List endpoint only exists in us-east-1, whatever region is priced.
"""
import json
import logging
import time
from datetime import datetime, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..constants import AWS_PRICING_REGION, AWS_SPOT_PRODUCT
from ..engine.catalog import InstanceCatalog
from ..errors import UpstreamUnavailable

FARGATE_VCPU_DESC = "AWS Fargate - vCPU - "
FARGATE_MEMORY_DESC = "AWS Fargate - Memory - "


def _term_match(field, value):
    return {"Type": "TERM_MATCH", "Field": field, "Value": value}


def on_demand_price(product: dict):
    """First non-zero hourly USD price of a Price List product, or None."""
    for term in product.get("terms", {}).get("OnDemand", {}).values():
        for dim in term.get("priceDimensions", {}).values():
            price = float(dim.get("pricePerUnit", {}).get("USD", 0))
            if price > 0:
                return price, dim.get("description", "")
    return None


class PricingClient:

    def __init__(self, region: str, session: boto3.session.Session = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.region = region
        session = session or boto3.session.Session()
        self.ec2 = session.client("ec2", region_name=region)
        self.pricing = session.client("pricing", region_name=AWS_PRICING_REGION)

        self.logger.info(f"AWS pricing client initialized for {region}")

    # —— feeds —— #
    def list_instance_types(self):
        """[(instance_type, vcpus, memory_mib), ...]"""
        shapes = []
        for page in self.ec2.get_paginator("describe_instance_types").paginate():
            for it in page.get("InstanceTypes", []):
                shapes.append((
                    it.get("InstanceType"),
                    it.get("VCpuInfo", {}).get("DefaultVCpus"),
                    it.get("MemoryInfo", {}).get("SizeInMiB"),
                ))
        return shapes

    def _products(self, service_code, filters):
        for page in self.pricing.get_paginator("get_products").paginate(
                ServiceCode=service_code, Filters=filters, PaginationConfig={"PageSize": 100}):
            for raw in page.get("PriceList", []):
                yield json.loads(raw)

    def list_on_demand_prices(self):
        """{instance_type: USD per hour}"""
        filters = [
            _term_match("regionCode", self.region),
            _term_match("capacitystatus", "Used"),
            _term_match("tenancy", "Shared"),
            _term_match("preInstalledSw", "NA"),
            _term_match("operatingSystem", "Linux"),
        ]
        prices = {}
        for product in self._products("AmazonEC2", filters):
            instance_type = product.get("product", {}).get("attributes", {}).get("instanceType")
            found = on_demand_price(product)
            if not instance_type or found is None:
                continue
            prices[instance_type] = found[0]
        return prices

    def list_spot_prices(self):
        """[(instance_type, availability_zone, USD per hour), ...]"""
        prices = []
        paginator = self.ec2.get_paginator("describe_spot_price_history")
        for page in paginator.paginate(StartTime=datetime.now(timezone.utc),
                                       ProductDescriptions=[AWS_SPOT_PRODUCT]):
            for p in page.get("SpotPriceHistory", []):
                try:
                    value = float(p["SpotPrice"])
                except (KeyError, ValueError):
                    continue
                prices.append((p.get("InstanceType"), p.get("AvailabilityZone"), value))
        return prices

    def get_fargate_rates(self):
        """(USD per vCPU-hour, USD per GB-hour); either may be None"""
        filters = [
            _term_match("regionCode", self.region),
            _term_match("tenancy", "Shared"),
        ]
        vcpu_rate = None
        memory_rate = None
        for product in self._products("AmazonEKS", filters):
            found = on_demand_price(product)
            if found is None:
                continue
            value, description = found
            if FARGATE_VCPU_DESC in description and vcpu_rate is None:
                vcpu_rate = value
            elif FARGATE_MEMORY_DESC in description and memory_rate is None:
                memory_rate = value
        return vcpu_rate, memory_rate

    # —— catalog —— #
    def populate(self, catalog: InstanceCatalog):
        start = time.time()
        try:
            shapes = self.list_instance_types()
            on_demand = self.list_on_demand_prices()
            spot = self.list_spot_prices()
            fargate = self.get_fargate_rates()
        except (ClientError, BotoCoreError) as e:
            raise UpstreamUnavailable(f"AWS pricing fetch failed: {e}") from e

        n_shapes = sum(1 for name, vcpus, mem in shapes if catalog.upsert_shape(name, vcpus, mem))
        n_priced = sum(1 for name, price in on_demand.items() if catalog.upsert_on_demand_price(name, price))
        n_spot = sum(1 for name, zone, price in spot if catalog.upsert_spot_price(name, zone, price))

        vcpu_rate, memory_rate = fargate
        if vcpu_rate is None or memory_rate is None:
            self.logger.warning(f"no Fargate pricing found for {self.region}, Fargate pods stay uncosted")
        else:
            catalog.upsert_fixed_rate(vcpu_rate, memory_rate)

        self.logger.info(f"AWS catalog populated in {time.time() - start:.1f}s: "
                         f"{n_shapes} instance types, {n_priced} on-demand prices, {n_spot} spot prices")
