"""
quantity.py
~~~~~~~~~~~
Kubernetes resource quantity helpers: "250m" -> millicores, "512Mi" -> bytes,
and the serverless capacity annotation ("0.25vCPU 0.5GB").
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import Optional, Tuple

from kubernetes.utils import parse_quantity

from ..errors import MalformedAnnotation


# "0.25vCPU 0.5GB", "2vCPU 4GB"
_CAPACITY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*vCPU\s+(\d+(?:\.\d+)?)\s*GB\s*$", re.IGNORECASE)


def cpu_millicores(value) -> int:
    """'1' -> 1000, '250m' -> 250, '123456789n' -> 123"""
    if value is None or value == "":
        return 0
    return int(Decimal(parse_quantity(value)) * 1000)


def memory_bytes(value) -> int:
    """'1Gi' -> 1073741824, '12345Ki' -> 12641280"""
    if value is None or value == "":
        return 0
    return int(parse_quantity(value))


def parse_capacity_provisioned(annotation: Optional[str]) -> Tuple[float, float]:
    """
    Parse the serverless capacity annotation.

    Returns (vcpu, memory_gb); raises MalformedAnnotation when absent or unparseable.
    """
    if not annotation:
        raise MalformedAnnotation("capacity annotation missing")
    m = _CAPACITY_RE.match(annotation)
    if not m:
        raise MalformedAnnotation(f"cannot parse capacity annotation {annotation!r}")
    return float(m.group(1)), float(m.group(2))
