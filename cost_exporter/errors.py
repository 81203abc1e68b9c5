"""
errors.py
~~~~~~~~~
Failure classes of the exporter. None of them is ever surfaced to the metrics
consumer: callers either retain previous values or fall back to zero cost.
"""


class CostExporterError(Exception):
    """Base class of all exporter errors."""


class UpstreamUnavailable(CostExporterError):
    """An inventory, pricing, watch or usage API call failed."""


class InconsistentReference(CostExporterError):
    """A record points at an instance type or node that is not known locally."""


class MalformedAnnotation(CostExporterError):
    """A capacity-provisioning annotation could not be parsed."""
