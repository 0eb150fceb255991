"""Certificate rotation and CSR generation."""
import logging
from typing import Any, Dict

from cloudadaptor.adaptor.rke.engine import (
    DialersOptions,
    EngineContext,
    EngineError,
    ExternalFlags,
    RKEEngine,
    certificate_dir_path,
    read_state_file,
    state_file_path,
    unique_hosts,
)
from cloudadaptor.adaptor.rke.up import ClusterUpResult, result_for, save_cluster_state
from cloudadaptor.adaptor.rkeconfig import RKEConfig

logger = logging.getLogger("cloudadaptor.rke.cert")

ETCD_SERVICE = "etcd"


def rebuild_with_rotated_certificates(ctx: EngineContext, engine: RKEEngine, dialers: DialersOptions,
                                      flags: ExternalFlags, svc_options: Dict[str, Any]) -> ClusterUpResult:
    """Rotate cluster certificates and restart the affected planes.

    An empty ``services`` list or ``ca_certificates`` means every service.
    """
    ctx.logger.info("Rebuilding Kubernetes cluster with rotated certificates")
    full_state = read_state_file(state_file_path(flags.cluster_file_path, flags.config_dir))
    desired = full_state.desired_state
    if desired.rke_config is None:
        raise EngineError("desired state in the state file has no rke config")

    kube_cluster = engine.init_cluster_object(ctx, desired.rke_config.copy_deep(), flags,
                                              desired.encryption_config)
    ctx.raise_if_cancelled()
    kube_cluster.setup_dialers(ctx, dialers)
    ctx.raise_if_cancelled()
    kube_cluster.tunnel_hosts(ctx, flags)

    ctx.raise_if_cancelled()
    engine.set_up_authentication(ctx, kube_cluster, None, full_state)
    result = result_for(kube_cluster)

    ctx.raise_if_cancelled()
    kube_cluster.set_up_hosts(ctx, flags)

    save_cluster_state(ctx, engine, kube_cluster, full_state)

    rotate = kube_cluster.rke_config.rotate_certificates
    services = set(rotate.services if rotate else [])
    ca_rotated = bool(rotate and rotate.ca_certificates)

    if not services or ca_rotated or ETCD_SERVICE in services:
        ctx.raise_if_cancelled()
        engine.restart_etcd_plane(ctx, kube_cluster.etcd_hosts)

    ctx.raise_if_cancelled()
    if engine.is_legacy_kube_api(ctx, kube_cluster):
        # legacy kube-api flags have to be rewritten before the restart
        kube_cluster.deploy_control_plane(ctx, svc_options, True)

    ctx.raise_if_cancelled()
    engine.restart_control_plane(ctx, kube_cluster.control_plane_hosts)

    all_hosts = unique_hosts(kube_cluster.etcd_hosts, kube_cluster.control_plane_hosts,
                             kube_cluster.worker_hosts)
    ctx.raise_if_cancelled()
    engine.restart_worker_plane(ctx, all_hosts)

    if ca_rotated:
        ctx.raise_if_cancelled()
        engine.restart_cluster_pods(ctx, kube_cluster)

    return result._replace(certificates=kube_cluster.certificates or {})


def generate_csrs(ctx: EngineContext, engine: RKEEngine, rke_config: RKEConfig, flags: ExternalFlags) -> str:
    """Write service CSRs and keys into the certificate directory.

    Only local files are touched. Returns the certificate directory used.
    """
    ctx.logger.info("Generating Kubernetes cluster CSR certificates")
    cert_dir = flags.certificate_dir or certificate_dir_path(flags.cluster_file_path, flags.config_dir)
    bundle = engine.read_csrs_and_keys_from_dir(cert_dir)

    kube_cluster = engine.init_cluster_object(ctx, rke_config.copy_deep(), flags, "")
    ctx.raise_if_cancelled()
    engine.generate_services_csrs(ctx, bundle, kube_cluster.rke_config)
    engine.write_certificates(cert_dir, bundle)
    ctx.logger.info(f"Successfully Deployed certificates at [{cert_dir}]")
    return cert_dir
