"""Bring a cluster to its desired state through the installation engine."""
import logging
from typing import Any, Dict, List, NamedTuple, Optional

from cloudadaptor.adaptor.rke.engine import (
    CA_CERT_NAME,
    KUBE_ADMIN_CERT_NAME,
    KUBE_API_PORT,
    CertificatePKI,
    DialersOptions,
    EngineContext,
    EngineError,
    ExternalFlags,
    FullState,
    KubeCluster,
    RKEEngine,
    read_state_file,
    state_file_path,
)
from cloudadaptor.utils import RetryError, retry

logger = logging.getLogger("cloudadaptor.rke.up")

SAVE_STATE_ATTEMPTS = 3
SAVE_STATE_DELAY = 2.0


class ClusterUpResult(NamedTuple):
    api_url: str
    ca_crt: str
    client_cert: str
    client_key: str
    certificates: Dict[str, CertificatePKI]

    @property
    def kube_config(self) -> str:
        admin = self.certificates.get(KUBE_ADMIN_CERT_NAME)
        return admin.config if admin else ""


class ProvisioningIncomplete(EngineError):
    pass


def api_url_for(kube_cluster: KubeCluster) -> str:
    if not kube_cluster.control_plane_hosts:
        return ""
    return f"https://{kube_cluster.control_plane_hosts[0].address}:{KUBE_API_PORT}"


def result_for(kube_cluster: KubeCluster) -> ClusterUpResult:
    certs = kube_cluster.certificates or {}
    admin = certs.get(KUBE_ADMIN_CERT_NAME) or CertificatePKI()
    ca = certs.get(CA_CERT_NAME) or CertificatePKI()
    return ClusterUpResult(
        api_url=api_url_for(kube_cluster),
        ca_crt=ca.certificate_pem,
        client_cert=admin.certificate_pem,
        client_key=admin.key_pem,
        certificates=certs,
    )


def save_cluster_state(ctx: EngineContext, engine: RKEEngine, kube_cluster: KubeCluster,
                       full_state: FullState) -> None:
    """Write the current state to disk, then into the cluster as a ConfigMap.

    Saving into the cluster is retried and only logged when it keeps failing.
    """
    ctx.raise_if_cancelled()
    kube_cluster.update_cluster_current_state(ctx, full_state)

    @retry(max_attempts=SAVE_STATE_ATTEMPTS, delay=SAVE_STATE_DELAY)
    def _save():
        engine.save_full_state_to_kubernetes(ctx, kube_cluster, full_state)

    try:
        _save()
    except RetryError as e:
        ctx.logger.warning(f"Failed to save full cluster state to Kubernetes: {e}")


def check_all_included(kube_cluster: KubeCluster) -> None:
    if not kube_cluster.inactive_hosts:
        return
    addresses = " ".join(h.address for h in kube_cluster.inactive_hosts)
    raise ProvisioningIncomplete(
        f"Provisioning incomplete, host(s) [{addresses}] skipped because they could not be contacted"
    )


def cluster_up(ctx: EngineContext, engine: RKEEngine, dialers: DialersOptions,
               flags: ExternalFlags, data: Optional[Dict[str, Any]] = None) -> ClusterUpResult:
    """Reconcile the live cluster with the desired spec in the state file.

    Hands off to certificate or encryption-key rotation when the spec asks
    for it, otherwise runs the full reconcile.

    Args:
        ctx: Cancellation token and log sink
        engine: Installation engine
        dialers: Transport dialer options
        flags: Paths of the cluster file and config dir, port-check switch
        data: Service option overrides

    Returns:
        ClusterUpResult with the API URL, CA and admin PEMs and the certificate bundle

    Raises:
        EngineError: or any error the engine raises; the caller translates it
    """
    ctx.logger.info("Building Kubernetes cluster")
    full_state = read_state_file(state_file_path(flags.cluster_file_path, flags.config_dir))
    desired = full_state.desired_state.rke_config
    if desired is None:
        raise EngineError("desired state in the state file has no rke config")

    encryption_config = full_state.effective_encryption_config()
    kube_cluster = engine.init_cluster_object(ctx, desired.copy_deep(), flags, encryption_config)
    svc_options = engine.get_service_options(kube_cluster.rke_config.kubernetes_version or "", data)

    if kube_cluster.rke_config.rotate_certificates is not None:
        from cloudadaptor.adaptor.rke.cert import rebuild_with_rotated_certificates
        return rebuild_with_rotated_certificates(ctx, engine, dialers, flags, svc_options)

    if kube_cluster.rke_config.rotate_encryption_key:
        from cloudadaptor.adaptor.rke.encryption import rotate_encryption_key
        current_config = full_state.current_state.rke_config or desired
        return rotate_encryption_key(ctx, engine, current_config.copy_deep(), dialers, flags)

    ctx.raise_if_cancelled()
    kube_cluster.setup_dialers(ctx, dialers)
    ctx.raise_if_cancelled()
    kube_cluster.tunnel_hosts(ctx, flags)

    ctx.raise_if_cancelled()
    current_cluster = engine.get_cluster_state(ctx, full_state)

    if not flags.disable_port_check:
        ctx.raise_if_cancelled()
        kube_cluster.check_cluster_ports(ctx, current_cluster)

    ctx.raise_if_cancelled()
    engine.set_up_authentication(ctx, kube_cluster, current_cluster, full_state)
    result = result_for(kube_cluster)

    ctx.raise_if_cancelled()
    kube_cluster.set_up_hosts(ctx, flags)

    ctx.raise_if_cancelled()
    engine.reconcile_cluster(ctx, kube_cluster, current_cluster, flags, svc_options)

    if current_cluster is not None and not desired.is_restore:
        known = {n.hostname_override for n in (current_cluster.rke_config.nodes if current_cluster.rke_config else [])}
        kube_cluster.new_hosts = {
            n.hostname_override: True for n in desired.nodes if n.hostname_override not in known
        }
        max_workers, max_controls = kube_cluster.calculate_max_unavailable()
        ctx.logger.info(
            f"Setting maxUnavailable for worker nodes to: {max_workers}, "
            f"for controlplane nodes to: {max_controls}"
        )
        kube_cluster.max_unavailable_for_worker_nodes = max_workers
        kube_cluster.max_unavailable_for_control_nodes = max_controls

    # the control plane may have moved during reconcile
    result = result._replace(api_url=api_url_for(kube_cluster))

    ctx.raise_if_cancelled()
    engine.reconcile_encryption_provider_config(ctx, kube_cluster, current_cluster)

    ctx.raise_if_cancelled()
    kube_cluster.pre_pull_k8s_images(ctx)

    ctx.raise_if_cancelled()
    plane_messages: List[str] = []
    msg = kube_cluster.deploy_control_plane(ctx, svc_options, True)
    if msg:
        plane_messages.append(msg)

    ctx.raise_if_cancelled()
    engine.apply_authz_resources(ctx, kube_cluster.rke_config, flags, dialers)

    save_cluster_state(ctx, engine, kube_cluster, full_state)

    ctx.raise_if_cancelled()
    msg = kube_cluster.deploy_worker_plane(ctx, svc_options, True)
    if msg:
        plane_messages.append(msg)

    ctx.raise_if_cancelled()
    kube_cluster.clean_dead_logs(ctx)

    ctx.raise_if_cancelled()
    kube_cluster.sync_labels_and_taints(ctx, current_cluster)

    ctx.raise_if_cancelled()
    engine.configure_cluster(ctx, kube_cluster.rke_config, kube_cluster.certificates, flags, dialers, data, False)

    if kube_cluster.encryption_needs_secret_rewrite:
        ctx.raise_if_cancelled()
        kube_cluster.rewrite_secrets(ctx)

    check_all_included(kube_cluster)

    if plane_messages:
        raise ProvisioningIncomplete(", ".join(plane_messages))

    ctx.logger.info("Finished building Kubernetes cluster successfully")
    return result._replace(certificates=kube_cluster.certificates or {})
