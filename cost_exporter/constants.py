"""
Exporter constants and global defaults
"""
# CPU-Memory price relationship: one vCPU-hour costs as much as R GiB-hours of
# memory. AWS does not publish it per instance type, the value is GCP's.
# https://engineering.empathy.co/cloud-finops-part-4-kubernetes-cost-report/
CPU_MEM_RELATION: float = 7.2

GIB: int = 1024 ** 3
MIB_PER_GIB: int = 1024

# Metric surface
METRIC_NAMESPACE = "kube_cost"
DEFAULT_LISTEN_ADDRESS = "0.0.0.0"
DEFAULT_PORT: int = 8080

# Refresh / startup
PRICING_REFRESH_INTERVAL_SEC: int = 3600
CACHE_SYNC_TIMEOUT_SEC: int = 300
WATCH_TIMEOUT_SEC: int = 300          # server side timeout of a single watch call
WATCH_RETRY_BACKOFF_SEC: float = 5.0

# Well known node labels
INSTANCE_TYPE_LABEL = "node.kubernetes.io/instance-type"
ZONE_LABEL = "topology.kubernetes.io/zone"
REGION_LABEL = "topology.kubernetes.io/region"

# Capacity provisioning: label -> value meaning "spot" (compared case-insensitively)
CAPACITY_TYPE_LABELS = {
    "eks.amazonaws.com/capacityType": "spot",
    "karpenter.sh/capacity-type": "spot",
    "cloud.google.com/gke-spot": "true",
    "cloud.google.com/gke-preemptible": "true",
}

# Serverless compute class
COMPUTE_TYPE_LABEL = "eks.amazonaws.com/compute-type"
SERVERLESS_COMPUTE_TYPE = "fargate"
SERVERLESS_INSTANCE_TYPE = "fargate"
CAPACITY_PROVISIONED_ANNOTATION = "CapacityProvisioned"

# Pricing feeds
AWS_PRICING_REGION = "us-east-1"      # the Price List API only lives here
AWS_SPOT_PRODUCT = "Linux/UNIX"
GCP_COMPUTE_ENGINE_SERVICE = "services/6F81-5844-456A"
