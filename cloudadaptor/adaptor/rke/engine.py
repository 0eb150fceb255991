"""Contract between the lifecycle code and the Kubernetes installation engine.

The engine does the host-level work: SSH tunnels, PKI, container
deployment. This module fixes the calls the lifecycle makes into it and the
on-disk full-state document both sides share. A concrete engine is injected
into :class:`cloudadaptor.adaptor.rke.RKEAdaptor`.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from cloudadaptor.adaptor.rkeconfig import RKEConfig

logger = logging.getLogger("cloudadaptor.rke.engine")

STATE_FILE_SUFFIX = ".rkestate"
CERT_DIR_NAME = "cluster_certs"
KUBE_ADMIN_CERT_NAME = "kube-admin"
CA_CERT_NAME = "kube-ca"
KUBE_API_PORT = 6443


class EngineError(Exception):
    """Failure reported by, or on behalf of, the installation engine."""
    pass


class StateFileError(EngineError):
    pass


class OperationCancelled(EngineError):
    pass


@dataclass
class EngineContext:
    """Cancellation token and log sink for one lifecycle operation."""
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("cloudadaptor.rke.install"))
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelled("context canceled")

    def with_logger(self, sink: logging.Logger) -> "EngineContext":
        return EngineContext(logger=sink, cancel_event=self.cancel_event)


@dataclass
class Host:
    address: str
    hostname_override: str = ""
    internal_address: str = ""
    roles: List[str] = field(default_factory=list)


@dataclass
class CertificatePKI:
    name: str = ""
    certificate_pem: str = ""
    key_pem: str = ""
    config: str = ""
    common_name: str = ""
    path: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CertificatePKI":
        return cls(
            name=data.get("name", ""),
            certificate_pem=data.get("certificatePEM", ""),
            key_pem=data.get("keyPEM", ""),
            config=data.get("config", ""),
            common_name=data.get("commonName", ""),
            path=data.get("path", ""),
        )


@dataclass
class ClusterState:
    rke_config: Optional[RKEConfig] = None
    certificates_bundle: Dict[str, CertificatePKI] = field(default_factory=dict)
    encryption_config: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClusterState":
        data = data or {}
        rke_config = data.get("rkeConfig")
        return cls(
            rke_config=RKEConfig.model_validate(rke_config) if rke_config else None,
            certificates_bundle={
                name: CertificatePKI.from_dict(cert or {})
                for name, cert in (data.get("certificatesBundle") or {}).items()
            },
            encryption_config=data.get("encryptionConfig") or "",
        )


@dataclass
class FullState:
    desired_state: ClusterState = field(default_factory=ClusterState)
    current_state: ClusterState = field(default_factory=ClusterState)

    def effective_encryption_config(self) -> str:
        """Once an encryption config is in force on the cluster it wins."""
        if self.current_state.encryption_config:
            return self.current_state.encryption_config
        return self.desired_state.encryption_config


@dataclass
class ExternalFlags:
    cluster_file_path: str
    config_dir: str = ""
    certificate_dir: str = ""
    disable_port_check: bool = False
    update_only: bool = False
    custom_certs: bool = False


@dataclass
class DialersOptions:
    docker_dialer_factory: Any = None
    local_conn_dialer_factory: Any = None
    k8s_wrap_transport: Any = None


def state_file_path(cluster_file_path: str, config_dir: str = "") -> str:
    """``cluster.yml`` -> ``cluster.rkestate`` in the same (or config) dir."""
    base = os.path.basename(cluster_file_path)
    name = os.path.splitext(base)[0] + STATE_FILE_SUFFIX
    directory = config_dir or os.path.dirname(cluster_file_path)
    return os.path.join(directory, name)


def certificate_dir_path(cluster_file_path: str, config_dir: str = "") -> str:
    directory = config_dir or os.path.dirname(cluster_file_path)
    return os.path.join(directory, CERT_DIR_NAME)


def read_state_file(path: str) -> FullState:
    """Load the engine's full-state document.

    Raises:
        StateFileError: the file is missing or not valid JSON
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise StateFileError(f"can not find RKE state file: {path}") from e
    except (OSError, ValueError) as e:
        raise StateFileError(f"failed to read RKE state file {path}: {e}") from e
    return FullState(
        desired_state=ClusterState.from_dict(data.get("desiredState")),
        current_state=ClusterState.from_dict(data.get("currentState")),
    )


def unique_hosts(*groups: List[Host]) -> List[Host]:
    """Union of host lists, first occurrence of each address wins."""
    seen = set()
    result = []
    for group in groups:
        for host in group or []:
            if host.address in seen:
                continue
            seen.add(host.address)
            result.append(host)
    return result


class KubeCluster(ABC):
    """The engine's in-memory cluster object for one run."""

    rke_config: RKEConfig
    control_plane_hosts: List[Host]
    etcd_hosts: List[Host]
    worker_hosts: List[Host]
    inactive_hosts: List[Host]
    certificates: Dict[str, CertificatePKI]
    certificate_dir: str
    encryption_config: str
    new_hosts: Dict[str, bool]
    max_unavailable_for_worker_nodes: int
    max_unavailable_for_control_nodes: int

    @abstractmethod
    def setup_dialers(self, ctx: EngineContext, dialers: DialersOptions) -> None: ...

    @abstractmethod
    def tunnel_hosts(self, ctx: EngineContext, flags: ExternalFlags) -> None: ...

    @abstractmethod
    def check_cluster_ports(self, ctx: EngineContext, current: Optional["KubeCluster"]) -> None: ...

    @abstractmethod
    def set_up_hosts(self, ctx: EngineContext, flags: ExternalFlags) -> None: ...

    @abstractmethod
    def calculate_max_unavailable(self) -> Tuple[int, int]:
        """Return (workers, control planes) that may be unavailable during a rolling update."""

    @abstractmethod
    def pre_pull_k8s_images(self, ctx: EngineContext) -> None: ...

    @abstractmethod
    def deploy_control_plane(self, ctx: EngineContext, svc_options: Dict[str, Any], reconcile: bool) -> str:
        """Deploy control plane components; return a non-fatal message when some hosts were skipped."""

    @abstractmethod
    def deploy_worker_plane(self, ctx: EngineContext, svc_options: Dict[str, Any], reconcile: bool) -> str:
        """Deploy worker components; return a non-fatal message when some hosts were skipped."""

    @abstractmethod
    def update_cluster_current_state(self, ctx: EngineContext, full_state: FullState) -> None: ...

    @abstractmethod
    def clean_dead_logs(self, ctx: EngineContext) -> None: ...

    @abstractmethod
    def sync_labels_and_taints(self, ctx: EngineContext, current: Optional["KubeCluster"]) -> None: ...

    @abstractmethod
    def rewrite_secrets(self, ctx: EngineContext) -> None: ...

    @abstractmethod
    def rotate_encryption_key(self, ctx: EngineContext, full_state: FullState) -> None: ...

    @abstractmethod
    def reconcile_desired_state_encryption_config(self, ctx: EngineContext, full_state: FullState) -> None: ...

    @abstractmethod
    def is_encryption_custom_config(self) -> bool: ...

    @abstractmethod
    def is_encryption_enabled(self) -> bool: ...

    @property
    def encryption_needs_secret_rewrite(self) -> bool:
        return False


class RKEEngine(ABC):
    """Entry points of the installation engine."""

    @abstractmethod
    def cluster_init(self, ctx: EngineContext, rke_config: RKEConfig,
                     dialers: DialersOptions, flags: ExternalFlags) -> None:
        """Generate the initial full state next to ``flags.cluster_file_path``."""

    @abstractmethod
    def init_cluster_object(self, ctx: EngineContext, rke_config: RKEConfig,
                            flags: ExternalFlags, encryption_config: str) -> KubeCluster: ...

    @abstractmethod
    def get_service_options(self, kubernetes_version: str, data: Optional[Dict[str, Any]]) -> Dict[str, Any]: ...

    @abstractmethod
    def get_cluster_state(self, ctx: EngineContext, full_state: FullState) -> Optional[KubeCluster]:
        """Return the live cluster object, or None on a first install."""

    @abstractmethod
    def set_up_authentication(self, ctx: EngineContext, kube_cluster: KubeCluster,
                              current: Optional[KubeCluster], full_state: FullState) -> None: ...

    @abstractmethod
    def reconcile_cluster(self, ctx: EngineContext, kube_cluster: KubeCluster,
                          current: Optional[KubeCluster], flags: ExternalFlags,
                          svc_options: Dict[str, Any]) -> None: ...

    @abstractmethod
    def reconcile_encryption_provider_config(self, ctx: EngineContext, kube_cluster: KubeCluster,
                                             current: Optional[KubeCluster]) -> None: ...

    @abstractmethod
    def apply_authz_resources(self, ctx: EngineContext, rke_config: RKEConfig,
                              flags: ExternalFlags, dialers: DialersOptions) -> None: ...

    @abstractmethod
    def save_full_state_to_kubernetes(self, ctx: EngineContext, kube_cluster: KubeCluster,
                                      full_state: FullState) -> None: ...

    @abstractmethod
    def configure_cluster(self, ctx: EngineContext, rke_config: RKEConfig, certificates: Dict[str, CertificatePKI],
                          flags: ExternalFlags, dialers: DialersOptions, data: Optional[Dict[str, Any]],
                          use_kubectl: bool) -> None: ...

    @abstractmethod
    def is_legacy_kube_api(self, ctx: EngineContext, kube_cluster: KubeCluster) -> bool: ...

    @abstractmethod
    def restart_etcd_plane(self, ctx: EngineContext, hosts: List[Host]) -> None: ...

    @abstractmethod
    def restart_control_plane(self, ctx: EngineContext, hosts: List[Host]) -> None: ...

    @abstractmethod
    def restart_worker_plane(self, ctx: EngineContext, hosts: List[Host]) -> None: ...

    @abstractmethod
    def restart_cluster_pods(self, ctx: EngineContext, kube_cluster: KubeCluster) -> None: ...

    @abstractmethod
    def read_csrs_and_keys_from_dir(self, cert_dir: str) -> Dict[str, CertificatePKI]: ...

    @abstractmethod
    def generate_services_csrs(self, ctx: EngineContext, bundle: Dict[str, CertificatePKI],
                               rke_config: RKEConfig) -> None: ...

    @abstractmethod
    def write_certificates(self, cert_dir: str, bundle: Dict[str, CertificatePKI]) -> None: ...
