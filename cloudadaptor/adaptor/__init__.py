"""Provider adaptors: one capability set, one implementation per provider."""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from cloudadaptor.adaptor.types import (
    Cluster,
    ExpansionNode,
    GatewayNode,
    KubeConfig,
    KubernetesClusterConfig,
    RainbondInitConfig,
)

# progress(step, message, status, reason="")
Progress = Callable[..., None]

STEP_INIT_CLUSTER_CONFIG = "InitClusterConfig"
STEP_INSTALL_KUBERNETES = "InstallKubernetes"
STEP_UPDATE_KUBERNETES = "UpdateKubernetes"
STEP_CREATE_CLUSTER = "CreateCluster"

STATUS_START = "start"
STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


class ClusterAdaptor(ABC):
    """Operations every provider supports."""

    @abstractmethod
    def cluster_list(self, eid: str) -> List[Cluster]: ...

    @abstractmethod
    def describe_cluster(self, eid: str, cluster_id: str) -> Cluster: ...

    @abstractmethod
    def delete_cluster(self, eid: str, cluster_id: str) -> None: ...

    @abstractmethod
    def get_kube_config(self, eid: str, cluster_id: str) -> KubeConfig: ...

    @abstractmethod
    def create_rainbond_kubernetes(self, ctx, eid: str, config: KubernetesClusterConfig,
                                   progress: Progress) -> Optional[Cluster]: ...

    @abstractmethod
    def expansion_node(self, ctx, eid: str, en: ExpansionNode, progress: Progress) -> Optional[Cluster]: ...

    @abstractmethod
    def create_cluster(self, eid: str, config) -> Optional[Cluster]: ...

    def get_rainbond_init_config(self, eid: str, cluster: Cluster, gateway_nodes: List[GatewayNode],
                                 chaos_nodes: List[GatewayNode]) -> RainbondInitConfig:
        """Region install parameters derived from the cluster and its gateway nodes."""
        init = RainbondInitConfig(
            enable_ha=cluster.size > 3,
            cluster_id=cluster.cluster_id,
            gateway_nodes=list(gateway_nodes),
            chaos_nodes=list(chaos_nodes),
        )
        if cluster.eip:
            init.eips = list(cluster.eip)
        else:
            init.eips = [n.external_ip for n in gateway_nodes if n.external_ip]
            if not init.eips:
                init.eips = [n.internal_ip for n in gateway_nodes if n.internal_ip]
        return init
