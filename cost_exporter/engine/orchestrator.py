"""
orchestrator.py
~~~~~~~~~~~~~~~
One pass per metrics scrape:
  • pull a usage snapshot for every pod
  • overwrite usage in the cache and recompute every workload's cost
Overlapping scrapes are skipped, the caller then serves the previous snapshot.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ..errors import UpstreamUnavailable
from .cluster_state import ClusterStateCache, CostSnapshot, WorkloadKey
from .resource_types import WorkloadResources

UsageSource = Callable[[], Mapping[WorkloadKey, WorkloadResources]]


@dataclass
class PollStats:
    scrapes_total: int = 0
    scrape_errors_total: int = 0
    scrapes_skipped_total: int = 0
    last_duration_sec: float = 0.0
    last_costed: int = 0


class SnapshotOrchestrator:
    """
    Parameters
    ----------
    cache : ClusterStateCache
    usage_source : callable
        returns {(namespace, pod): WorkloadResources}; raises UpstreamUnavailable.
    """

    def __init__(self, cache: ClusterStateCache, usage_source: UsageSource):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.cache = cache
        self.usage_source = usage_source
        self.stats = PollStats()
        # one pass at a time, a second scrape does not queue behind the first
        self._poll_lock = threading.Lock()
        self._stats_lock = threading.Lock()

    def poll(self) -> bool:
        """Run a refresh-and-recompute pass. Returns False if it was skipped."""
        if not self._poll_lock.acquire(blocking=False):
            self.logger.info("previous pass still running, serving last snapshot")
            with self._stats_lock:
                self.stats.scrapes_skipped_total += 1
            return False
        try:
            self._run_once()
        finally:
            self._poll_lock.release()
        return True

    def collect(self) -> CostSnapshot:
        """poll() then read the resulting snapshot."""
        self.poll()
        return self.cache.snapshot()

    def stats_snapshot(self) -> PollStats:
        with self._stats_lock:
            return PollStats(**vars(self.stats))

    def _run_once(self):
        start = time.time()
        errors = 0

        usage: Optional[Mapping[WorkloadKey, WorkloadResources]] = None
        try:
            usage = self.usage_source()
        except UpstreamUnavailable as exc:
            # previous usage stays in place, costs are still recomputed
            self.logger.warning(f"usage snapshot unavailable, keeping previous values: {exc}")
            errors += 1

        costed = self.cache.refresh(usage)
        elapsed = time.time() - start

        with self._stats_lock:
            self.stats.scrapes_total += 1
            self.stats.scrape_errors_total += errors
            self.stats.last_duration_sec = elapsed
            self.stats.last_costed = costed
        self.logger.debug(f"cost pass finished in {elapsed:.3f}s, {costed} costed pod(s)")
