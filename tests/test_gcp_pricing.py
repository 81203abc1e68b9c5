from types import SimpleNamespace
from unittest.mock import patch

import pytest
from google.api_core.exceptions import RetryError, ServiceUnavailable
from google.auth.exceptions import TransportError

from cost_exporter.engine.catalog import InstanceCatalog
from cost_exporter.errors import UpstreamUnavailable
from cost_exporter.gcp.Pricing import PricingClient


def create_mock_sku(description, usage_type, price, regions=("us-central1",), family="Compute"):
    units = int(price)
    nanos = int(round((price - units) * 1e9))
    rate = SimpleNamespace(unit_price=SimpleNamespace(units=units, nanos=nanos))
    return SimpleNamespace(
        description=description,
        category=SimpleNamespace(resource_family=family, usage_type=usage_type),
        service_regions=list(regions),
        pricing_info=[SimpleNamespace(pricing_expression=SimpleNamespace(tiered_rates=[rate]))],
    )


def create_mock_zone(*machine_types):
    return SimpleNamespace(machine_types=[
        SimpleNamespace(name=name, guest_cpus=cpus, memory_mb=mem) for name, cpus, mem in machine_types
    ])


SKUS = [
    create_mock_sku("E2 Instance Core running in Americas", "OnDemand", 0.02181159),
    create_mock_sku("E2 Instance Ram running in Americas", "OnDemand", 0.00292353),
    create_mock_sku("Spot Preemptible E2 Instance Core running in Americas", "Preemptible", 0.00654),
    create_mock_sku("Spot Preemptible E2 Instance Ram running in Americas", "Preemptible", 0.000877),
    create_mock_sku("N2 Instance Core running in Americas", "OnDemand", 0.031611),
    create_mock_sku("N2 Instance Ram running in Americas", "OnDemand", 0.004237),
    create_mock_sku("N2 Custom Instance Core running in Americas", "OnDemand", 0.9),
    create_mock_sku("Nvidia Tesla T4 GPU running in Americas", "OnDemand", 0.35),
    create_mock_sku("E2 Instance Core running in Belgium", "OnDemand", 0.5, regions=("europe-west1",)),
    create_mock_sku("Commitment v1: E2 Cpu in Americas for 1 Year", "Commit1Yr", 0.01),
]

ZONES = [
    ("zones/us-central1-a", create_mock_zone(("e2-standard-4", 4, 16384), ("n2-standard-2", 2, 8192))),
    ("zones/us-central1-b", create_mock_zone(("e2-standard-4", 4, 16384), ("custom-4-8192", 4, 8192))),
    ("zones/europe-west1-b", create_mock_zone(("e2-standard-8", 8, 32768))),
    ("zones/us-central1-f", create_mock_zone()),
]


@patch("google.cloud.compute_v1.MachineTypesClient")
@patch("google.cloud.billing_v1.CloudCatalogClient")
def test_populate_catalog(mock_billing, mock_compute):
    mock_billing.return_value.list_skus.return_value = SKUS
    mock_compute.return_value.aggregated_list.return_value = ZONES

    catalog = InstanceCatalog()
    PricingClient("my-project", "us-central1").populate(catalog)

    assert catalog.instance_types() == ["e2-standard-4", "n2-standard-2"]
    e2 = catalog.lookup("e2-standard-4")
    assert e2.vcpu_count == 4
    assert e2.memory_gib == 16
    assert e2.on_demand.total_hourly_price == pytest.approx(round(4 * 0.02181159 + 16 * 0.00292353, 6))
    assert set(e2.spot_by_zone) == {"us-central1-a", "us-central1-b"}
    assert e2.spot("us-central1-a").total_hourly_price == pytest.approx(round(4 * 0.00654 + 16 * 0.000877, 6))

    n2 = catalog.lookup("n2-standard-2")
    assert n2.on_demand.total_hourly_price == pytest.approx(round(2 * 0.031611 + 8 * 0.004237, 6))
    assert n2.spot_by_zone == {}


@patch("google.cloud.compute_v1.MachineTypesClient")
@patch("google.cloud.billing_v1.CloudCatalogClient")
def test_unit_prices_are_per_family_and_region(mock_billing, mock_compute):
    mock_billing.return_value.list_skus.return_value = SKUS
    units = PricingClient("my-project", "us-central1").get_unit_prices()

    assert set(units["OnDemand"]) == {"e2", "n2"}
    assert units["OnDemand"]["n2"]["cpu_price"] == pytest.approx(0.031611)
    assert units["Preemptible"]["e2"]["memory_price"] == pytest.approx(0.000877)


@patch("google.cloud.compute_v1.MachineTypesClient")
@patch("google.cloud.billing_v1.CloudCatalogClient")
def test_api_errors_are_wrapped(mock_billing, mock_compute):
    mock_compute.return_value.aggregated_list.return_value = ZONES
    mock_billing.return_value.list_skus.side_effect = ServiceUnavailable("billing down")

    with pytest.raises(UpstreamUnavailable):
        PricingClient("my-project", "us-central1").populate(InstanceCatalog())


@patch("google.cloud.compute_v1.MachineTypesClient")
@patch("google.cloud.billing_v1.CloudCatalogClient")
def test_retry_exhaustion_is_wrapped(mock_billing, mock_compute):
    mock_billing.return_value.list_skus.return_value = SKUS
    mock_compute.return_value.aggregated_list.side_effect = RetryError("deadline exceeded", cause=Exception("timeout"))

    with pytest.raises(UpstreamUnavailable):
        PricingClient("my-project", "us-central1").populate(InstanceCatalog())


@patch("google.cloud.compute_v1.MachineTypesClient")
@patch("google.cloud.billing_v1.CloudCatalogClient")
def test_auth_transport_errors_are_wrapped(mock_billing, mock_compute):
    mock_compute.return_value.aggregated_list.return_value = ZONES
    mock_billing.return_value.list_skus.side_effect = TransportError("metadata server unreachable")

    catalog = InstanceCatalog()
    with pytest.raises(UpstreamUnavailable):
        PricingClient("my-project", "us-central1").populate(catalog)
    assert catalog.instance_types() == []
