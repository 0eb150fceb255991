from cloudadaptor.adaptor.rke.adaptor import RKEAdaptor, cluster_view, validate_node_roles
from cloudadaptor.adaptor.rke.cert import generate_csrs, rebuild_with_rotated_certificates
from cloudadaptor.adaptor.rke.encryption import rotate_encryption_key
from cloudadaptor.adaptor.rke.engine import EngineContext, EngineError, KubeCluster, RKEEngine
from cloudadaptor.adaptor.rke.statedir import StateDirectory
from cloudadaptor.adaptor.rke.up import ClusterUpResult, cluster_up

__all__ = [
    "RKEAdaptor",
    "RKEEngine",
    "KubeCluster",
    "EngineContext",
    "EngineError",
    "StateDirectory",
    "ClusterUpResult",
    "cluster_up",
    "cluster_view",
    "validate_node_roles",
    "generate_csrs",
    "rebuild_with_rotated_certificates",
    "rotate_encryption_key",
]
