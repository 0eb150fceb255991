"""Declarative RKE cluster spec, the content of ``cluster.yml``.

Only the keys the service reads are typed. Everything else (addons,
authentication, ingress, per-service extra args and so on) is kept as-is so a
spec can be loaded, inspected and written back without losing settings.
"""
import logging
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger("cloudadaptor.rkeconfig")

ROLE_CONTROLPLANE = "controlplane"
ROLE_ETCD = "etcd"
ROLE_WORKER = "worker"

DEFAULT_SERVICE_CIDR = "10.43.0.0/16"
DEFAULT_POD_CIDR = "10.42.0.0/16"
DEFAULT_NETWORK_PLUGIN = "flannel"
DEFAULT_SSH_USER = "docker"
DEFAULT_SSH_PORT = "22"


class RKEConfigNode(BaseModel):
    """One host of the cluster."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    address: str
    port: str = DEFAULT_SSH_PORT
    internal_address: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("internal_address", "internal_ip", "internalAddress"),
    )
    role: List[str] = Field(default_factory=list)
    hostname_override: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("hostname_override", "hostnameOverride")
    )
    user: Optional[str] = None
    ssh_key_path: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ssh_key_path", "sshKeyPath")
    )
    docker_socket: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("docker_socket", "dockerSocket")
    )

    @field_validator("port", mode="before")
    @classmethod
    def port_as_string(cls, v: Any) -> str:
        if v is None or v == "":
            return DEFAULT_SSH_PORT
        return str(v)

    def has_role(self, role: str) -> bool:
        return role in self.role


class RotateCertificates(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ca_certificates: bool = Field(
        default=False, validation_alias=AliasChoices("ca_certificates", "caCertificates")
    )
    services: List[str] = Field(default_factory=list)


class RKEConfig(BaseModel):
    """The declarative spec handed to the installation engine."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    cluster_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("cluster_name", "clusterName")
    )
    nodes: List[RKEConfigNode] = Field(default_factory=list)
    services: Dict[str, Any] = Field(default_factory=dict)
    network: Dict[str, Any] = Field(default_factory=dict)
    kubernetes_version: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("kubernetes_version", "kubernetesVersion")
    )
    rotate_certificates: Optional[RotateCertificates] = Field(
        default=None, validation_alias=AliasChoices("rotate_certificates", "rotateCertificates")
    )
    rotate_encryption_key: bool = Field(
        default=False, validation_alias=AliasChoices("rotate_encryption_key", "rotateEncryptionKey")
    )
    ignore_docker_version: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("ignore_docker_version", "ignoreDockerVersion")
    )
    restore: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("services", "network", "restore", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def pod_cidr(self) -> str:
        return (self.services.get("kube-controller") or {}).get("cluster_cidr", "")

    @property
    def service_cidr(self) -> str:
        return (self.services.get("kube-controller") or {}).get("service_cluster_ip_range", "")

    @property
    def network_plugin(self) -> str:
        return self.network.get("plugin", "")

    @property
    def is_restore(self) -> bool:
        return bool(self.restore.get("restore"))

    def nodes_with_role(self, role: str) -> List[RKEConfigNode]:
        return [n for n in self.nodes if n.has_role(role)]

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls, text: str) -> "RKEConfig":
        """Parse a spec from YAML text.

        Raises:
            ValueError: the document is not a mapping or fails validation
        """
        data = yaml.safe_load(text)
        if not isinstance(data, dict):
            raise ValueError("rke config must be a mapping")
        return cls.model_validate(data)

    def copy_deep(self) -> "RKEConfig":
        return self.model_copy(deep=True)


def default_rke_config(cluster_name: str, nodes: List[Dict[str, Any]],
                       kubernetes_version: str = "",
                       network_plugin: str = DEFAULT_NETWORK_PLUGIN,
                       service_cidr: str = "", pod_cidr: str = "") -> RKEConfig:
    """Build a spec with the service defaults from a plain node list.

    Args:
        cluster_name: Name of the cluster
        nodes: Items with ip, internalIP, sshUser, sshPort, dockerSocketPath, roles
        kubernetes_version: Engine version string, empty for the engine default
        network_plugin: flannel or calico
        service_cidr: Service network, defaults to 10.43.0.0/16
        pod_cidr: Pod network, defaults to 10.42.0.0/16

    Returns:
        RKEConfig ready to be written as cluster.yml
    """
    rke_nodes = []
    for node in nodes:
        rke_nodes.append(RKEConfigNode(
            address=node["ip"],
            internal_address=node.get("internalIP") or None,
            hostname_override=node.get("internalIP") or node["ip"],
            user=node.get("sshUser") or DEFAULT_SSH_USER,
            port=node.get("sshPort") or DEFAULT_SSH_PORT,
            docker_socket=node.get("dockerSocketPath") or None,
            role=list(node.get("roles") or []),
        ))
    service_cidr = service_cidr or DEFAULT_SERVICE_CIDR
    pod_cidr = pod_cidr or DEFAULT_POD_CIDR
    return RKEConfig.model_validate({
        "cluster_name": cluster_name,
        "nodes": [n.model_dump(exclude_none=True) for n in rke_nodes],
        "services": {
            "kube-api": {"service_cluster_ip_range": service_cidr},
            "kube-controller": {
                "cluster_cidr": pod_cidr,
                "service_cluster_ip_range": service_cidr,
            },
        },
        "network": {"plugin": network_plugin or DEFAULT_NETWORK_PLUGIN},
        "authentication": {"strategy": "x509"},
        "authorization": {"mode": "rbac"},
        "ingress": {"provider": "none"},
        "monitoring": {"provider": "none"},
        "addon_job_timeout": 300,
        "kubernetes_version": kubernetes_version or None,
    })
