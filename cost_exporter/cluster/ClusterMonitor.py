import logging

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from ..constants import WATCH_TIMEOUT_SEC
from ..errors import UpstreamUnavailable

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


class ClusterMonitor:
    """Talks to the Kubernetes API: listings, watch streams and pod metrics"""
    def __init__(self, kubeconfig: str | None = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config(kubeconfig)
            self.logger.info(f"not running in a cluster, using kubeconfig {kubeconfig or '~/.kube/config'}")

        self.core_v1 = client.CoreV1Api()
        self.metrics_api = client.CustomObjectsApi()

    # —— listings —— #
    def list_nodes(self):
        """
        Full node listing.
        Returns (items, resource_version) so a watch can resume from it.
        """
        try:
            resp = self.core_v1.list_node()
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise UpstreamUnavailable(f"list nodes failed: {e}") from e
        return resp.items, resp.metadata.resource_version

    def list_pods(self):
        """Full pod listing across all namespaces, (items, resource_version)."""
        try:
            resp = self.core_v1.list_pod_for_all_namespaces()
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise UpstreamUnavailable(f"list pods failed: {e}") from e
        return resp.items, resp.metadata.resource_version

    # —— watch streams —— #
    def watch_nodes(self, resource_version: str, timeout_seconds: int = WATCH_TIMEOUT_SEC):
        """
        Yields raw watch events {"type": ADDED|MODIFIED|DELETED|BOOKMARK|ERROR, "object": V1Node}.
        Ends when the server closes the stream.
        """
        w = watch.Watch()
        try:
            yield from w.stream(self.core_v1.list_node,
                                resource_version=resource_version,
                                timeout_seconds=timeout_seconds,
                                allow_watch_bookmarks=True)
        finally:
            w.stop()

    def watch_pods(self, resource_version: str, timeout_seconds: int = WATCH_TIMEOUT_SEC):
        w = watch.Watch()
        try:
            yield from w.stream(self.core_v1.list_pod_for_all_namespaces,
                                resource_version=resource_version,
                                timeout_seconds=timeout_seconds,
                                allow_watch_bookmarks=True)
        finally:
            w.stop()

    # —— metrics-server —— #
    def list_pod_metrics(self) -> list[dict]:
        """
        PodMetrics of every pod (metrics.k8s.io/v1beta1):
            [{"metadata": {"name", "namespace"}, "containers": [{"usage": {"cpu", "memory"}}]}, ...]
        """
        try:
            resp = self.metrics_api.list_cluster_custom_object(
                group="metrics.k8s.io", version="v1beta1", plural="pods"
            )
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise UpstreamUnavailable(f"list pod metrics failed: {e}") from e
        return resp.get("items", [])
