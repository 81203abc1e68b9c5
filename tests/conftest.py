import pytest
from kubernetes import client

from cost_exporter.constants import INSTANCE_TYPE_LABEL, REGION_LABEL, ZONE_LABEL
from cost_exporter.engine.catalog import InstanceCatalog
from cost_exporter.engine.cluster_state import ClusterStateCache

GIB = 1024 ** 3


def build_node(name, instance_type="m5.large", zone="us-east-1a", region="us-east-1",
               labels=None, resource_version="1"):
    all_labels = {INSTANCE_TYPE_LABEL: instance_type, ZONE_LABEL: zone, REGION_LABEL: region}
    all_labels.update(labels or {})
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name, labels=all_labels, resource_version=resource_version)
    )


def build_container(name="main", cpu="1", memory="1Gi"):
    requests = {}
    if cpu is not None:
        requests["cpu"] = cpu
    if memory is not None:
        requests["memory"] = memory
    return client.V1Container(name=name, resources=client.V1ResourceRequirements(requests=requests))


def build_pod(name, namespace="default", node_name=None, cpu="1", memory="1Gi",
              labels=None, annotations=None, containers=None, resource_version="1"):
    if containers is None:
        containers = [build_container(cpu=cpu, memory=memory)]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels,
                                     annotations=annotations, resource_version=resource_version),
        spec=client.V1PodSpec(containers=containers, node_name=node_name),
    )


@pytest.fixture
def catalog():
    """m5.large priced on-demand everywhere and spot in us-east-1a, plus Fargate rates."""
    c = InstanceCatalog()
    c.upsert_shape("m5.large", 2, 8192)
    c.upsert_on_demand_price("m5.large", 0.096)
    c.upsert_spot_price("m5.large", "us-east-1a", 0.0384)
    c.upsert_fixed_rate(0.04048, 0.004445)
    return c


@pytest.fixture
def cache(catalog):
    return ClusterStateCache(catalog)


@pytest.fixture
def make_node():
    return build_node


@pytest.fixture
def make_pod():
    return build_pod


@pytest.fixture
def make_container():
    return build_container
