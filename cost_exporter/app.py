import argparse
import logging
import os
import threading
import time

from .cluster.ClusterMonitor import ClusterMonitor
from .cluster.MembershipWatcher import MembershipWatcher, node_key, pod_key
from .cluster.PodMonitor import PodMonitor
from .cluster.UsageMonitor import UsageMonitor
from .constants import (CACHE_SYNC_TIMEOUT_SEC, CPU_MEM_RELATION,
                        DEFAULT_LISTEN_ADDRESS, DEFAULT_PORT,
                        PRICING_REFRESH_INTERVAL_SEC)
from .engine.catalog import InstanceCatalog
from .engine.cluster_state import ClusterStateCache
from .engine.orchestrator import SnapshotOrchestrator
from .errors import UpstreamUnavailable
from .exporter.collector import CostCollector, parse_label_list, serve

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def build_parser():
    parser = argparse.ArgumentParser(description="Kubernetes cost exporter")
    parser.add_argument("--listen-address", default=DEFAULT_LISTEN_ADDRESS, help="address of the metrics endpoint")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port of the metrics endpoint")
    parser.add_argument("--log-level", default="info", help="debug, info, warning or error")
    parser.add_argument("--log", action="store_true", help="log to a file under logs/ instead of stderr")

    parser.add_argument("--provider", choices=("aws", "gcp"), default="aws", help="cloud the cluster runs on")
    parser.add_argument("--region", default=os.environ.get("AWS_REGION"), help="region to price (default $AWS_REGION)")
    parser.add_argument("--project", default=os.environ.get("GOOGLE_CLOUD_PROJECT"),
                        help="GCP project id (default $GOOGLE_CLOUD_PROJECT)")
    parser.add_argument("--cpu-mem-relation", type=float, default=CPU_MEM_RELATION,
                        help="price of one vCPU-hour in GiB-hours of memory")
    parser.add_argument("--pricing-refresh-interval", type=int, default=PRICING_REFRESH_INTERVAL_SEC,
                        help="seconds between two pricing refreshes")

    parser.add_argument("--usage-source", choices=("metrics-server", "prometheus"), default="metrics-server",
                        help="where pod usage is read from")
    parser.add_argument("--prom", type=str, default=None, help="Prometheus URL, for --usage-source prometheus")
    parser.add_argument("--add-pod-labels", default="", help="comma separated pod labels to export")
    parser.add_argument("--add-node-labels", default="", help="comma separated node labels to export")
    parser.add_argument("--kubeconfig", default=None, help="kubeconfig used outside of a cluster")
    parser.add_argument("--sync-timeout", type=int, default=CACHE_SYNC_TIMEOUT_SEC,
                        help="seconds to wait for the initial node and pod listings")
    return parser


def setup_logging(level_name: str, to_file: bool = False):
    level = LOG_LEVELS.get((level_name or "").lower())
    kwargs = {"level": level or logging.INFO, "format": LOG_FORMAT}
    if to_file:
        os.makedirs("logs", exist_ok=True)
        kwargs.update(filename=time.strftime("logs/%Y%m%d-%H%M%S.log"), encoding="utf-8")
    logging.basicConfig(**kwargs)
    if level is None:
        logging.warning(f"invalid log level {level_name!r}, using info")


def build_pricing_client(args):
    if args.provider == "gcp":
        from .gcp.Pricing import PricingClient
        return PricingClient(project_id=args.project, region=args.region)
    from .aws.Pricing import PricingClient
    return PricingClient(region=args.region)


def build_usage_source(args, cluster: ClusterMonitor):
    if args.usage_source == "prometheus":
        return PodMonitor(args.prom)
    return UsageMonitor(cluster)


def refresh_pricing(pricing, catalog: InstanceCatalog, interval: float, stop: threading.Event):
    """Re-run the pricing feed until stopped; failures keep the current catalog."""
    while not stop.wait(interval):
        try:
            pricing.populate(catalog)
        except UpstreamUnavailable as e:
            logging.warning(f"pricing refresh failed, keeping previous prices: {e}")
        except Exception:   # noqa
            logging.exception("pricing refresh crashed, keeping previous prices")


def start_watcher(watcher: MembershipWatcher, synced: threading.Event, timeout: float):
    watcher.start()
    if not synced.wait(timeout):
        raise UpstreamUnavailable(f"{watcher.kind} cache not synced after {timeout}s")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log)

    if not args.region:
        parser.error("--region (or $AWS_REGION) is required")
    if args.provider == "gcp" and not args.project:
        parser.error("--project (or $GOOGLE_CLOUD_PROJECT) is required for gcp")
    if args.usage_source == "prometheus" and not args.prom:
        parser.error("--prom is required for --usage-source prometheus")

    logging.info(f"Starting cost exporter: provider={args.provider} region={args.region} "
                 f"usage={args.usage_source} R={args.cpu_mem_relation}")

    try:
        # no catalog at startup means nothing can be costed
        catalog = InstanceCatalog(args.cpu_mem_relation)
        pricing = build_pricing_client(args)
        pricing.populate(catalog)
        if not len(catalog):
            raise UpstreamUnavailable(f"no instance types found for {args.region}")

        # nodes before pods; metrics are served once both tables are synced
        cluster = ClusterMonitor(args.kubeconfig)
        cache = ClusterStateCache(catalog)
        node_watcher = MembershipWatcher("node", cluster.list_nodes, cluster.watch_nodes,
                                         cache.apply_node_event, node_key)
        pod_watcher = MembershipWatcher("pod", cluster.list_pods, cluster.watch_pods,
                                        cache.apply_workload_event, pod_key)
        start_watcher(node_watcher, cache.nodes_synced, args.sync_timeout)
        start_watcher(pod_watcher, cache.workloads_synced, args.sync_timeout)
    except UpstreamUnavailable as e:
        logging.error(f"startup failed: {e}")
        raise SystemExit(1)

    orchestrator = SnapshotOrchestrator(cache, build_usage_source(args, cluster))
    collector = CostCollector(cache, orchestrator,
                              pod_labels=parse_label_list(args.add_pod_labels),
                              node_labels=parse_label_list(args.add_node_labels))
    serve(collector, args.listen_address, args.port)

    stop = threading.Event()
    refresher = threading.Thread(target=refresh_pricing,
                                 args=(pricing, catalog, args.pricing_refresh_interval, stop),
                                 name="pricing-refresh", daemon=True)
    refresher.start()
    logging.info("Cost exporter started.")

    # keep the main thread alive
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logging.info("Stopping cost exporter...")
        stop.set()
        node_watcher.stop()
        pod_watcher.stop()
        return


if __name__ == "__main__":
    main()
