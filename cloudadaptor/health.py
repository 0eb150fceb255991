"""Live enrichment of cluster records through the Kubernetes API."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Optional, TypeVar

from kubernetes import client
from kubernetes.client.rest import ApiException

from cloudadaptor import errors
from cloudadaptor.adaptor.types import OFFLINE, RUNNING, Cluster
from cloudadaptor.utils.kube import kube_server, new_kube_client
from cloudadaptor.utils import retry
from cloudadaptor.utils.version import SUPPORTED_RANGE, check_version

logger = logging.getLogger("cloudadaptor.health")

VERSION_TIMEOUT = 3
NODE_LIST_TIMEOUT = 5
REGION_NODE_LIST_TIMEOUT = 10
REGION_CONFIG_TIMEOUT = 3

REGION_NAMESPACE = "rbd-system"
REGION_CONFIG_NAME = "region-config"

MSG_CLIENT_FAILED = "unable to create cluster client"
MSG_API_UNREACHABLE = "unable to communicate with the cluster KubeAPI directly"
MSG_NODE_LIST_FAILED = "unable to list cluster nodes"

T = TypeVar("T")


class ClusterCheckError(errors.BusinessError):
    """Probing failed before the API could be reached; carries the partial view."""

    def __init__(self, cluster: Cluster, msg: str):
        tmpl = errors.KubeAPIUnreachable
        super().__init__(tmpl.status, tmpl.code, msg, tmpl.reason)
        self.cluster = cluster


def version_message(version: str) -> str:
    return (
        f"The current cluster version is {version}, which cannot be initialized. "
        f"Supported versions are {SUPPORTED_RANGE}"
    )


class HealthChecker:
    """Check clusters for version, node count and the region sentinel.

    Args:
        client_factory: Builds an API client from kubeconfig text
        max_workers: Parallel checks when describing many clusters
    """

    def __init__(self, client_factory: Callable[[str], client.ApiClient] = new_kube_client,
                 max_workers: int = 10):
        self.client_factory = client_factory
        self.max_workers = max_workers

    def check(self, cluster: Cluster, kubeconfig: str) -> Cluster:
        """Fill ``cluster`` from the live API and return it.

        Unreachable or unsupported clusters are reported through
        ``cluster.parameters`` rather than an exception.

        Raises:
            ClusterCheckError: no client could be built from ``kubeconfig``
        """
        try:
            api_client = self.client_factory(kubeconfig)
        except Exception as e:
            logger.warning(f"create kube client for cluster {cluster.cluster_id} failure: {e}")
            cluster.disable_rainbond_init(MSG_CLIENT_FAILED)
            raise ClusterCheckError(cluster, f"create kube client failure {e}") from e

        try:
            self._check(api_client, cluster, kubeconfig)
        finally:
            api_client.close()
        return cluster

    def _check(self, api_client: client.ApiClient, cluster: Cluster, kubeconfig: str) -> None:
        try:
            info = client.VersionApi(api_client).get_code(_request_timeout=VERSION_TIMEOUT)
        except Exception as e:
            logger.debug(f"get version of cluster {cluster.cluster_id} failure: {e}")
            cluster.state = OFFLINE
            cluster.disable_rainbond_init(MSG_API_UNREACHABLE)
            return

        cluster.current_version = info.git_version
        if not cluster.kubernetes_version:
            cluster.kubernetes_version = info.git_version
        if not check_version(cluster.current_version):
            cluster.disable_rainbond_init(version_message(cluster.current_version))
        if not cluster.api_url:
            cluster.api_url = kube_server(kubeconfig) or ""

        core = client.CoreV1Api(api_client)
        try:
            nodes = core.list_node(_request_timeout=NODE_LIST_TIMEOUT)
        except Exception as e:
            logger.debug(f"list nodes of cluster {cluster.cluster_id} failure: {e}")
            cluster.disable_rainbond_init(MSG_NODE_LIST_FAILED)
            return

        cluster.size = len(nodes.items or [])
        cluster.state = RUNNING
        cluster.rainbond_init = self.region_installed(core)

    @retry(max_attempts=2, delay=1.0)
    def list_nodes(self, kubeconfig: str) -> list:
        """Nodes of the cluster behind ``kubeconfig``, tried twice.

        Raises:
            RetryError: the client could not be built or both list calls failed
        """
        api_client = self.client_factory(kubeconfig)
        try:
            nodes = client.CoreV1Api(api_client).list_node(_request_timeout=REGION_NODE_LIST_TIMEOUT)
        finally:
            api_client.close()
        return list(nodes.items or [])

    def region_installed(self, core: client.CoreV1Api) -> bool:
        try:
            core.read_namespaced_config_map(
                REGION_CONFIG_NAME, REGION_NAMESPACE, _request_timeout=REGION_CONFIG_TIMEOUT
            )
        except ApiException as e:
            if e.status != 404:
                logger.warning(f"read region config failure: {e.reason}")
            return False
        except Exception as e:
            logger.warning(f"read region config failure: {e}")
            return False
        return True

    def describe_all(self, items: Iterable[T], describe: Callable[[T], Optional[Cluster]]) -> List[Cluster]:
        """Run ``describe`` over ``items`` in parallel.

        Results arrive in completion order. Failed items are logged and left out.
        """
        items = list(items)
        if not items:
            return []
        results: List[Cluster] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            futures = {executor.submit(describe, item): item for item in items}
            for future in as_completed(futures):
                try:
                    cluster = future.result()
                except Exception as e:
                    logger.error(f"describe cluster failure: {e}")
                    continue
                if cluster is not None:
                    results.append(cluster)
        return results
