"""Long-running provisioning tasks."""
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple, Union

from cloudadaptor import errors
from cloudadaptor.adaptor import STATUS_FAILURE, STATUS_START, STATUS_SUCCESS, ClusterAdaptor, Progress
from cloudadaptor.adaptor.rke.engine import EngineContext
from cloudadaptor.adaptor.types import (
    RUNNING,
    ExpansionNode,
    GatewayNode,
    InitRainbondConfig,
    KubernetesClusterConfig,
    RainbondInitConfig,
)

logger = logging.getLogger("cloudadaptor.task")

STEP_INIT = "Init"
STEP_CHECK_CLUSTER = "CheckCluster"
STEP_INIT_REGION_OPERATOR = "InitRainbondRegionOperator"
STEP_INIT_RAINBOND_REGION = "InitRainbondRegion"

GATEWAY_NODE_ANNOTATION = "rainbond.io/gateway-node"
CHAOS_NODE_ANNOTATION = "rainbond.io/chaos-node"
EXTERNAL_IP_ANNOTATION = "rke.cattle.io/external-ip"

CREATE_KUBERNETES_TASK = "create_kubernetes"
UPDATE_KUBERNETES_TASK = "update_kubernetes"
INIT_RAINBOND_REGION_TASK = "init_rainbond_region"

AdaptorGetter = Callable[[str], ClusterAdaptor]
NodeLister = Callable[[str], list]
# region_installer(ctx, kubeconfig, init_config) returns once the region is ready
RegionInstaller = Callable[[EngineContext, str, RainbondInitConfig], None]


class Task(ABC):
    """A unit of background work with its own progress callback."""

    def __init__(self, eid: str, task_id: str, get_adaptor: AdaptorGetter, progress: Progress):
        self.eid = eid
        self.task_id = task_id
        self.get_adaptor = get_adaptor
        self.progress = progress

    def _adaptor(self, provider: str):
        self.progress(STEP_INIT, "", STATUS_START)
        try:
            adaptor = self.get_adaptor(provider)
        except errors.BusinessError as e:
            self.progress(STEP_INIT, f"create cloud adaptor failure {e.msg}", STATUS_FAILURE, e.reason)
            return None
        self.progress(STEP_INIT, "cloud adaptor create success", STATUS_SUCCESS)
        return adaptor

    @abstractmethod
    def run(self, ctx: EngineContext) -> None: ...


class CreateKubernetesCluster(Task):

    def __init__(self, config: KubernetesClusterConfig, task_id: str,
                 get_adaptor: AdaptorGetter, progress: Progress):
        super().__init__(config.enterprise_id, task_id, get_adaptor, progress)
        self.config = config

    def run(self, ctx: EngineContext) -> None:
        adaptor = self._adaptor(self.config.provider)
        if adaptor is None:
            return
        cluster = adaptor.create_rainbond_kubernetes(ctx, self.eid, self.config, self.progress)
        if cluster is not None:
            logger.info(f"create kubernetes cluster {cluster.name} ({cluster.cluster_id}) success")


class UpdateKubernetesCluster(Task):

    def __init__(self, config: ExpansionNode, task_id: str,
                 get_adaptor: AdaptorGetter, progress: Progress):
        super().__init__(config.enterprise_id, task_id, get_adaptor, progress)
        self.config = config

    def run(self, ctx: EngineContext) -> None:
        adaptor = self._adaptor(self.config.provider)
        if adaptor is None:
            return
        cluster = adaptor.expansion_node(ctx, self.eid, self.config, self.progress)
        if cluster is not None:
            logger.info(f"update kubernetes cluster {cluster.name} ({cluster.cluster_id}) success")


def region_node(node) -> GatewayNode:
    """Addresses of a node object as returned by the Kubernetes API."""
    gateway = GatewayNode()
    for address in (node.status.addresses if node.status else None) or []:
        if address.type == "InternalIP":
            gateway.internal_ip = address.address
        elif address.type == "ExternalIP":
            gateway.external_ip = address.address
        elif address.type == "Hostname":
            gateway.node_name = address.address
    annotations = node.metadata.annotations or {}
    if annotations.get(EXTERNAL_IP_ANNOTATION):
        gateway.external_ip = annotations[EXTERNAL_IP_ANNOTATION]
    return gateway


def select_region_nodes(nodes: list) -> Tuple[List[GatewayNode], List[GatewayNode]]:
    """Pick gateway and chaos nodes by annotation.

    Without annotated nodes the first two nodes take the role.
    """
    gateway_nodes, chaos_nodes = [], []
    for node in nodes:
        annotations = node.metadata.annotations or {}
        if annotations.get(GATEWAY_NODE_ANNOTATION) == "true":
            gateway_nodes.append(region_node(node))
        if annotations.get(CHAOS_NODE_ANNOTATION) == "true":
            chaos_nodes.append(region_node(node))
    if not gateway_nodes:
        gateway_nodes = [region_node(node) for node in nodes[:2]]
    if not chaos_nodes:
        chaos_nodes = [region_node(node) for node in nodes[:2]]
    return gateway_nodes, chaos_nodes


class InitRainbondRegion(Task):
    """Check a running cluster and install the region into it."""

    def __init__(self, config: InitRainbondConfig, task_id: str, get_adaptor: AdaptorGetter,
                 progress: Progress, list_nodes: NodeLister,
                 region_installer: Optional[RegionInstaller] = None):
        super().__init__(config.enterprise_id, task_id, get_adaptor, progress)
        self.config = config
        self.list_nodes = list_nodes
        self.region_installer = region_installer

    def run(self, ctx: EngineContext) -> None:
        adaptor = self._adaptor(self.config.provider)
        if adaptor is None:
            return
        cluster_id = self.config.cluster_id

        self.progress(STEP_CHECK_CLUSTER, "", STATUS_START)
        try:
            cluster = adaptor.describe_cluster(self.eid, cluster_id)
            kubeconfig = adaptor.get_kube_config(self.eid, cluster_id).config
        except errors.BusinessError as e:
            self.progress(STEP_CHECK_CLUSTER, e.msg, STATUS_FAILURE, e.reason)
            return
        if cluster.state != RUNNING:
            self.progress(STEP_CHECK_CLUSTER, f"cluster status is {cluster.state},not support init rainbond",
                          STATUS_FAILURE)
            return
        if not cluster.api_url:
            self.progress(STEP_CHECK_CLUSTER, "cluster api not open eip,not support init rainbond", STATUS_FAILURE)
            return
        try:
            nodes = self.list_nodes(kubeconfig)
        except Exception as e:
            logger.error(f"list nodes of cluster {cluster_id} failure: {e}")
            self.progress(STEP_CHECK_CLUSTER, "cluster node list can not found, please check cluster public "
                          "access and account authorization", STATUS_FAILURE)
            return
        if not nodes:
            self.progress(STEP_CHECK_CLUSTER, "node num is 0, can not init rainbond", STATUS_FAILURE)
            return
        self.progress(STEP_CHECK_CLUSTER, cluster_id, STATUS_SUCCESS)

        gateway_nodes, chaos_nodes = select_region_nodes(nodes)
        init_config = adaptor.get_rainbond_init_config(self.eid, cluster, gateway_nodes, chaos_nodes)

        self.progress(STEP_INIT_REGION_OPERATOR, "", STATUS_START)
        if not init_config.eips:
            self.progress(STEP_INIT_REGION_OPERATOR, "can not select eip", STATUS_FAILURE)
            return
        if self.region_installer is None:
            self.progress(STEP_INIT_REGION_OPERATOR, "region installer is not configured", STATUS_FAILURE)
            return
        try:
            ctx.raise_if_cancelled()
            self.region_installer(ctx, kubeconfig, init_config)
        except Exception as e:
            self.progress(STEP_INIT_REGION_OPERATOR, str(e), STATUS_FAILURE)
            return
        self.progress(STEP_INIT_REGION_OPERATOR, "", STATUS_SUCCESS)
        self.progress(STEP_INIT_RAINBOND_REGION, cluster_id, STATUS_SUCCESS)
        logger.info(f"init region on cluster {cluster_id} success")


def create_task(task_type: str, config: Union[KubernetesClusterConfig, ExpansionNode, InitRainbondConfig],
                task_id: str, get_adaptor: AdaptorGetter, progress: Progress,
                list_nodes: Optional[NodeLister] = None,
                region_installer: Optional[RegionInstaller] = None) -> Task:
    """Build the task for ``task_type``.

    Raises:
        ValueError: unknown task type or config of the wrong kind
    """
    if task_type == CREATE_KUBERNETES_TASK:
        if not isinstance(config, KubernetesClusterConfig):
            raise ValueError("create kubernetes task needs a KubernetesClusterConfig")
        return CreateKubernetesCluster(config, task_id, get_adaptor, progress)
    if task_type == UPDATE_KUBERNETES_TASK:
        if not isinstance(config, ExpansionNode):
            raise ValueError("update kubernetes task needs an ExpansionNode")
        return UpdateKubernetesCluster(config, task_id, get_adaptor, progress)
    if task_type == INIT_RAINBOND_REGION_TASK:
        if not isinstance(config, InitRainbondConfig) or list_nodes is None:
            raise ValueError("init region task needs an InitRainbondConfig and a node lister")
        return InitRainbondRegion(config, task_id, get_adaptor, progress, list_nodes, region_installer)
    raise ValueError(f"task type {task_type} not support")
