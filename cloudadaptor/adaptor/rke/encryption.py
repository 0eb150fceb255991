import logging

from cloudadaptor.adaptor.rke.engine import (
    DialersOptions,
    EngineContext,
    EngineError,
    ExternalFlags,
    RKEEngine,
    read_state_file,
    state_file_path,
)
from cloudadaptor.adaptor.rke.up import ClusterUpResult, result_for
from cloudadaptor.adaptor.rkeconfig import RKEConfig

logger = logging.getLogger("cloudadaptor.rke.encryption")


def rotate_encryption_key(ctx: EngineContext, engine: RKEEngine, rke_config: RKEConfig,
                          dialers: DialersOptions, flags: ExternalFlags) -> ClusterUpResult:
    """Rotate the secrets encryption key of a running cluster.

    Raises:
        EngineError: custom encryption configuration or encryption disabled
    """
    state_path = state_file_path(flags.cluster_file_path, flags.config_dir)
    full_state = read_state_file(state_path)

    kube_cluster = engine.init_cluster_object(ctx, rke_config, flags, full_state.effective_encryption_config())
    if kube_cluster.is_encryption_custom_config():
        raise EngineError(
            "can't rotate encryption keys: Key Rotation is not supported with custom configuration"
        )
    if not kube_cluster.is_encryption_enabled():
        raise EngineError("can't rotate encryption keys: Encryption Configuration is disabled")

    kube_cluster.certificates = full_state.desired_state.certificates_bundle
    ctx.raise_if_cancelled()
    kube_cluster.setup_dialers(ctx, dialers)
    ctx.raise_if_cancelled()
    kube_cluster.tunnel_hosts(ctx, flags)
    result = result_for(kube_cluster)

    ctx.raise_if_cancelled()
    kube_cluster.rotate_encryption_key(ctx, full_state)

    # the engine writes intermediate state while rotating
    full_state = read_state_file(state_path)
    ctx.raise_if_cancelled()
    kube_cluster.reconcile_desired_state_encryption_config(ctx, full_state)
    return result
