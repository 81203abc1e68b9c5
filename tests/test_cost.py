import random

import pytest

from cost_exporter.engine.cost import compute_cost, compute_fixed_rate_cost, workload_cost
from cost_exporter.engine.rates import InstancePriceVariant, PriceClass
from cost_exporter.engine.resource_types import Node, Workload, WorkloadResources
from cost_exporter.errors import MalformedAnnotation

GIB = 1024 ** 3


def test_worked_example():
    """m5.large rates applied to 500m / 2Gi used and 1 CPU / 1Gi requested."""
    rate = InstancePriceVariant(PriceClass.ON_DEMAND, 0.096, vcpu_rate=0.031304, memory_rate=0.004348)
    usage = WorkloadResources(cpu_millicores=500, memory_bytes=2 * GIB)
    reservation = WorkloadResources(cpu_millicores=1000, memory_bytes=1 * GIB)

    c = compute_cost(usage, reservation, rate)
    assert c.costed
    assert c.cpu_cost == pytest.approx(0.015652)
    assert c.cpu_reserved_cost == pytest.approx(0.031304)
    assert c.memory_cost == pytest.approx(0.008696)
    assert c.memory_reserved_cost == pytest.approx(0.004348)
    assert c.total == pytest.approx(0.040000)


def test_worked_example_from_normalized_price():
    rate = InstancePriceVariant.from_total(PriceClass.ON_DEMAND, 0.096, 2, 8, ratio=7.2)
    usage = WorkloadResources(cpu_millicores=500, memory_bytes=2 * GIB)
    reservation = WorkloadResources(cpu_millicores=1000, memory_bytes=1 * GIB)

    c = compute_cost(usage, reservation, rate)
    assert c.total == pytest.approx(rate.vcpu_rate * 1 + rate.memory_rate * 2)


def test_total_is_max_of_usage_and_reservation():
    rate = InstancePriceVariant.from_total(PriceClass.SPOT, 0.0384, 2, 8, zone="us-east-1a")
    rnd = random.Random(42)
    for _ in range(200):
        usage = WorkloadResources(rnd.randint(0, 4000), rnd.randint(0, 16 * GIB))
        reservation = WorkloadResources(rnd.randint(0, 4000), rnd.randint(0, 16 * GIB))
        c = compute_cost(usage, reservation, rate)
        assert c.total == pytest.approx(max(c.cpu_cost, c.cpu_reserved_cost)
                                        + max(c.memory_cost, c.memory_reserved_cost))


def test_missing_rate_is_uncosted():
    c = compute_cost(WorkloadResources(1000, GIB), WorkloadResources(1000, GIB), None)
    assert not c.costed
    assert (c.total, c.cpu_cost, c.memory_cost, c.cpu_reserved_cost, c.memory_reserved_cost) == (0, 0, 0, 0, 0)


def test_free_workload_is_still_costed():
    """Zero cost with a rate is different from no rate at all."""
    rate = InstancePriceVariant.from_total(PriceClass.ON_DEMAND, 0.096, 2, 8)
    c = compute_cost(WorkloadResources(), WorkloadResources(), rate)
    assert c.costed
    assert c.total == 0


def test_workload_without_node_is_uncosted():
    wl = Workload("web", "default", usage=WorkloadResources(500, GIB))
    c = workload_cost(wl)
    assert not c.costed
    assert c.total == 0


def test_workload_on_unpriced_node_is_uncosted():
    node = Node("n1", instance_type="x.unknown")
    wl = Workload("web", "default", reservation=WorkloadResources(500, GIB), node_name="n1")
    wl.bind(node)
    assert not workload_cost(wl).costed


def test_fixed_rate_cost_uses_provisioned_capacity():
    rate = InstancePriceVariant.fixed_rate(0.04048, 0.004445)
    c = compute_fixed_rate_cost("0.25vCPU 0.5GB", rate)
    assert c.cpu_cost == c.cpu_reserved_cost == pytest.approx(0.25 * 0.04048)
    assert c.memory_cost == c.memory_reserved_cost == pytest.approx(0.5 * 0.004445)
    assert c.total == pytest.approx(0.25 * 0.04048 + 0.5 * 0.004445)


def test_fixed_rate_cost_malformed_annotation_raises():
    with pytest.raises(MalformedAnnotation):
        compute_fixed_rate_cost("lots of cpu", InstancePriceVariant.fixed_rate(0.04, 0.004))


def test_serverless_workload_ignores_usage():
    node = Node("fargate-ip-10-0-0-1", instance_type="fargate",
                resolved_rate=InstancePriceVariant.fixed_rate(0.04048, 0.004445))
    wl = Workload("job", "batch", usage=WorkloadResources(4000, 8 * GIB),
                  node_name=node.name, capacity_annotation="1vCPU 2GB")
    wl.bind(node)
    assert workload_cost(wl).total == pytest.approx(0.04048 + 2 * 0.004445)


def test_serverless_workload_with_bad_annotation_is_uncosted():
    node = Node("fargate-ip-10-0-0-1", instance_type="fargate",
                resolved_rate=InstancePriceVariant.fixed_rate(0.04048, 0.004445))
    wl = Workload("job", "batch", node_name=node.name, capacity_annotation=None)
    wl.bind(node)
    c = workload_cost(wl)
    assert not c.costed
    assert c.total == 0
