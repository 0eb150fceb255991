"""Provider-neutral request and view types."""
import ipaddress
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cloudadaptor import errors
from cloudadaptor.adaptor.rkeconfig import (
    ROLE_CONTROLPLANE,
    ROLE_ETCD,
    ROLE_WORKER,
    RKEConfig,
)

# cluster states
INITIAL = "initial"
INSTALLING = "installing"
RUNNING = "running"
OFFLINE = "offline"
INSTALL_FAILED = "failed"

# parameter keys surfaced to UIs
DISABLE_RAINBOND_INIT = "DisableRainbondInit"
MESSAGE = "Message"


class ConfigNode(BaseModel):
    """A node as submitted by API clients."""
    model_config = ConfigDict(populate_by_name=True)

    ip: str
    internal_ip: str = Field(default="", alias="internalIP")
    ssh_user: str = Field(default="", alias="sshUser")
    ssh_port: int = Field(default=0, alias="sshPort")
    docker_socket_path: str = Field(default="", alias="dockerSocketPath")
    roles: List[str] = Field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in ",".join(self.roles)


class NodeList(BaseModel):
    nodes: List[ConfigNode] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def validate_nodes(self) -> None:
        """Check addresses, ports and role coverage of the node set.

        Raises:
            BusinessError: ClusterNodeEmpty, ClusterNodeIPInvalid,
                ClusterNodePortInvalid, ClusterNodeRoleMiss or
                ETCDNodeNotOddNumber
        """
        if not self.nodes:
            raise errors.ClusterNodeEmpty()
        master = etcd = worker = 0
        for node in self.nodes:
            try:
                ip = ipaddress.ip_address(node.ip)
            except ValueError:
                raise errors.ClusterNodeIPInvalid(f"node ip {node.ip} is invalid")
            if ip.is_loopback:
                raise errors.ClusterNodeIPInvalid(f"node ip {node.ip} is invalid")
            if node.ssh_port < 0 or node.ssh_port > 65535:
                raise errors.ClusterNodePortInvalid(f"node {node.ip} ssh port {node.ssh_port} is invalid")
            if node.has_role(ROLE_CONTROLPLANE):
                master += 1
            if node.has_role(ROLE_WORKER):
                worker += 1
            if node.has_role(ROLE_ETCD):
                etcd += 1
        if master == 0 or etcd == 0 or worker == 0:
            raise errors.ClusterNodeRoleMiss()
        if etcd % 2 == 0:
            raise errors.ETCDNodeNotOddNumber()

    def to_json(self) -> str:
        return json.dumps([n.model_dump(by_alias=True) for n in self.nodes])

    @classmethod
    def from_rke_config(cls, config: RKEConfig) -> "NodeList":
        return cls(nodes=[
            ConfigNode(
                ip=n.address,
                internalIP=n.internal_address or "",
                sshUser=n.user or "",
                sshPort=int(n.port) if str(n.port).isdigit() else 0,
                dockerSocketPath=n.docker_socket or "",
                roles=list(n.role),
            )
            for n in config.nodes
        ])

    @classmethod
    def from_json(cls, text: str) -> "NodeList":
        if not text:
            return cls()
        return cls(nodes=[ConfigNode.model_validate(item) for item in json.loads(text)])


class KubernetesClusterConfig(BaseModel):
    """Input of a create-kubernetes task."""
    model_config = ConfigDict(populate_by_name=True)

    enterprise_id: str = Field(alias="eid")
    provider: str = Field(default="rke", alias="provider_name")
    cluster_name: str = Field(alias="name")
    cluster_id: str = ""
    kubernetes_version: str = Field(default="", alias="kubernetesVersion")
    network_mode: str = Field(default="", alias="networkMode")
    nodes: List[ConfigNode] = Field(default_factory=list)
    rke_config: Optional[RKEConfig] = None


class ExpansionNode(BaseModel):
    """Input of an update-kubernetes task."""
    model_config = ConfigDict(populate_by_name=True)

    enterprise_id: str = Field(alias="eid")
    provider: str = "rke"
    cluster_id: str = Field(alias="clusterID")
    nodes: List[ConfigNode] = Field(default_factory=list)
    rke_config: Optional[RKEConfig] = None


class Cluster(BaseModel):
    """Cluster view returned to callers, enriched by live probing."""

    name: str = ""
    cluster_id: str = ""
    created: Optional[datetime] = None
    api_url: str = ""
    state: str = ""
    cluster_type: str = ""
    current_version: str = ""
    network_mode: str = ""
    subnet_cidr: str = ""
    pod_cidr: str = ""
    kubernetes_version: str = ""
    size: int = 0
    parameters: Dict[str, Any] = Field(default_factory=dict)
    rainbond_init: bool = False
    create_log_path: str = ""
    eip: List[str] = Field(default_factory=list)

    def disable_rainbond_init(self, message: str) -> None:
        self.parameters[DISABLE_RAINBOND_INIT] = True
        self.parameters[MESSAGE] = message


class GatewayNode(BaseModel):
    node_name: str = ""
    internal_ip: str = ""
    external_ip: str = ""


class RainbondInitConfig(BaseModel):
    enable_ha: bool = False
    cluster_id: str = ""
    gateway_nodes: List[GatewayNode] = Field(default_factory=list)
    chaos_nodes: List[GatewayNode] = Field(default_factory=list)
    eips: List[str] = Field(default_factory=list)


class KubeConfig(BaseModel):
    config: str = ""


class InitRainbondConfig(BaseModel):
    """Input of an init-region task."""
    model_config = ConfigDict(populate_by_name=True)

    enterprise_id: str = Field(alias="eid")
    provider: str = Field(default="rke", alias="provider_name")
    cluster_id: str = Field(alias="clusterID")
