import logging
from typing import List, Optional

import yaml

from cloudadaptor import errors
from cloudadaptor.adaptor import (
    STATUS_FAILURE,
    STATUS_START,
    STATUS_SUCCESS,
    STEP_INIT_CLUSTER_CONFIG,
    STEP_INSTALL_KUBERNETES,
    STEP_UPDATE_KUBERNETES,
    ClusterAdaptor,
    Progress,
)
from cloudadaptor.adaptor.rke.cert import generate_csrs
from cloudadaptor.adaptor.rke.engine import DialersOptions, EngineContext, ExternalFlags, RKEEngine
from cloudadaptor.adaptor.rke.statedir import StateDirectory
from cloudadaptor.adaptor.rke.up import ClusterUpResult, cluster_up
from cloudadaptor.adaptor.rkeconfig import ROLE_CONTROLPLANE, ROLE_ETCD, ROLE_WORKER, RKEConfig
from cloudadaptor.adaptor.types import (
    INITIAL,
    INSTALL_FAILED,
    RUNNING,
    Cluster,
    ExpansionNode,
    KubeConfig,
    KubernetesClusterConfig,
    NodeList,
)
from cloudadaptor.config import Settings
from cloudadaptor.health import ClusterCheckError, HealthChecker
from cloudadaptor.models import RKECluster
from cloudadaptor.repo import RKEClusterRepo

logger = logging.getLogger("cloudadaptor.rke")

CLUSTER_TYPE = "rke"
MSG_STATE_FILE_MISSING = "state file not exist, can not support expansion node"


def cluster_view(record: RKECluster) -> Cluster:
    """Project a stored record into the caller-facing view, without probing."""
    try:
        size = len(NodeList.from_json(record.node_list))
    except ValueError:
        size = 0
    return Cluster(
        name=record.name,
        cluster_id=record.cluster_id,
        created=record.created_at,
        api_url=record.api_url or "",
        state=record.state,
        cluster_type=CLUSTER_TYPE,
        current_version=record.kubernetes_version or "",
        network_mode=record.network_mode or "",
        subnet_cidr=record.service_cidr or "",
        pod_cidr=record.pod_cidr or "",
        kubernetes_version=record.kubernetes_version or "",
        create_log_path=record.create_log_path or "",
        size=size,
    )


def validate_node_roles(rke_config: RKEConfig) -> None:
    """Every cluster needs a worker, a control plane and an etcd node.

    Raises:
        BusinessError: ClusterNodeEmpty or ClusterNodeRoleMiss
    """
    if not rke_config.nodes:
        raise errors.ClusterNodeEmpty()
    if not rke_config.nodes_with_role(ROLE_WORKER):
        raise errors.ClusterNodeRoleMiss("Provide at least one compute node")
    if not rke_config.nodes_with_role(ROLE_CONTROLPLANE):
        raise errors.ClusterNodeRoleMiss("Provide at least one master node")
    if not rke_config.nodes_with_role(ROLE_ETCD):
        raise errors.ClusterNodeRoleMiss("Provide at least one etcd node")


class RKEAdaptor(ClusterAdaptor):
    """Clusters provisioned by this service through the installation engine.

    Args:
        repo: Cluster store
        engine: Installation engine; provisioning fails cleanly without one
        checker: Live API health checker
        settings: Process settings (state directory root, default version)
    """

    def __init__(self, repo: RKEClusterRepo, engine: Optional[RKEEngine],
                 checker: HealthChecker, settings: Settings):
        self.repo = repo
        self.engine = engine
        self.checker = checker
        self.settings = settings

    def state_directory(self, eid: str, cluster_name: str) -> StateDirectory:
        return StateDirectory(self.settings.config_dir, eid, cluster_name)

    # read side

    def cluster_list(self, eid: str) -> List[Cluster]:
        return self.checker.describe_all(self.repo.list_cluster(eid), self._describe_for_list)

    def _describe_for_list(self, record: RKECluster) -> Cluster:
        try:
            return self._describe(record)
        except ClusterCheckError as e:
            logger.warning(f"check cluster {record.cluster_id} failure: {e}")
            return e.cluster

    def describe_cluster(self, eid: str, cluster_id: str) -> Cluster:
        return self._describe(self.repo.get_cluster(eid, cluster_id))

    def _describe(self, record: RKECluster) -> Cluster:
        cluster = cluster_view(record)
        if not record.kube_config:
            return cluster
        return self.checker.check(cluster, record.kube_config)

    def delete_cluster(self, eid: str, cluster_id: str) -> None:
        """Remove the cluster record unless a region is installed on it.

        Nodes and the state directory are left alone.
        """
        try:
            cluster = self.describe_cluster(eid, cluster_id)
        except ClusterCheckError as e:
            cluster = e.cluster
        if cluster.rainbond_init:
            raise errors.ClusterNotAllowDelete()
        self.repo.delete_cluster(eid, cluster_id)

    def get_kube_config(self, eid: str, cluster_id: str) -> KubeConfig:
        record = self.repo.get_cluster(eid, cluster_id)
        if not record.kube_config:
            raise errors.KubeConfigEmpty()
        return KubeConfig(config=record.kube_config)

    # provisioning

    def _fail(self, record: Optional[RKECluster], progress: Progress, step: str,
              message: str, reason: str = "") -> None:
        logger.error(f"{step} failure: {message}")
        if record is not None:
            record.state = INSTALL_FAILED
            self.repo.update(record)
        progress(step, message, STATUS_FAILURE, reason)

    def _persist_up_result(self, record: RKECluster, result: ClusterUpResult) -> None:
        record.kube_config = result.kube_config
        record.api_url = result.api_url
        record.state = RUNNING
        self.repo.update(record)

    def create_rainbond_kubernetes(self, ctx: EngineContext, eid: str, config: KubernetesClusterConfig,
                                   progress: Progress) -> Optional[Cluster]:
        """First install of a cluster whose record already exists.

        Failures are reported through ``progress`` and leave the record in
        ``failed``; the return value is then None.
        """
        progress(STEP_INIT_CLUSTER_CONFIG, "", STATUS_START)
        try:
            record = self.repo.get_cluster(eid, config.cluster_name)
        except errors.BusinessError as e:
            self._fail(None, progress, STEP_INIT_CLUSTER_CONFIG,
                       f"get cluster meta info failure {e.msg}", e.reason)
            return None

        rke_config = config.rke_config
        if rke_config is None:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, "rke config not define",
                       errors.IncorrectRKEConfig.reason)
            return None
        try:
            validate_node_roles(rke_config)
        except errors.BusinessError as e:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, e.msg, e.reason)
            return None
        if self.engine is None:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, "installation engine is not configured")
            return None

        state_dir = self.state_directory(eid, record.name)
        # certificates already sent to nodes by a failed attempt are not reused;
        # those nodes need operator cleanup before the retry can succeed
        try:
            if record.state in (INITIAL, INSTALL_FAILED):
                state_dir.purge()
            if record.state == INSTALL_FAILED:
                record.state = INITIAL
                self.repo.update(record)
            state_dir.ensure()
            state_dir.write_cluster_config(rke_config)
        except OSError as e:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, f"write rke cluster config failure {e}")
            return None

        with state_dir.install_logger() as sink:
            run_ctx = ctx.with_logger(sink)
            record.pod_cidr = rke_config.pod_cidr
            record.service_cidr = rke_config.service_cidr
            record.network_mode = rke_config.network_plugin
            record.kubernetes_version = (
                config.kubernetes_version or rke_config.kubernetes_version
                or self.settings.default_kubernetes_version
            )
            record.node_list = NodeList.from_rke_config(rke_config).to_json()
            record.create_log_path = state_dir.log_file
            self.repo.update(record)

            flags = ExternalFlags(cluster_file_path=state_dir.cluster_file, config_dir=state_dir.path)
            try:
                run_ctx.raise_if_cancelled()
                self.engine.cluster_init(run_ctx, rke_config, DialersOptions(), flags)
            except Exception as e:
                sink.error(f"init rke cluster config failure {e}")
                self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, f"init rke cluster config failure {e}")
                return None
            progress(STEP_INIT_CLUSTER_CONFIG, "init cluster config success", STATUS_SUCCESS)

            progress(STEP_INSTALL_KUBERNETES, "", STATUS_START)
            try:
                result = cluster_up(run_ctx, self.engine, DialersOptions(), flags, {})
            except Exception as e:
                sink.error(f"install kubernetes failure {e}")
                self._fail(record, progress, STEP_INSTALL_KUBERNETES, str(e))
                return None

        self._persist_up_result(record, result)
        progress(STEP_INSTALL_KUBERNETES, record.cluster_id, STATUS_SUCCESS)
        return cluster_view(record)

    def expansion_node(self, ctx: EngineContext, eid: str, en: ExpansionNode,
                       progress: Progress) -> Optional[Cluster]:
        """Apply a changed node set to an installed cluster."""
        progress(STEP_INIT_CLUSTER_CONFIG, "", STATUS_START)
        try:
            record = self.repo.get_cluster(eid, en.cluster_id)
        except errors.BusinessError as e:
            self._fail(None, progress, STEP_INIT_CLUSTER_CONFIG,
                       f"get cluster meta info failure {e.msg}", e.reason)
            return None

        rke_config = en.rke_config
        if rke_config is None:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, "rke config not define",
                       errors.IncorrectRKEConfig.reason)
            return None

        state_dir = self.state_directory(eid, record.name)
        if not state_dir.state_file_exists():
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, MSG_STATE_FILE_MISSING)
            return None
        if self.engine is None:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, "installation engine is not configured")
            return None

        try:
            state_dir.adopt_legacy_state_file()
            backed_up = state_dir.backup_cluster_config()
        except OSError as e:
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, f"backup rke cluster config failure {e}")
            return None
        try:
            state_dir.write_cluster_config(rke_config)
        except OSError as e:
            if backed_up:
                state_dir.restore_cluster_config()
            self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, f"write rke cluster config failure {e}")
            return None

        try:
            state_dir.rotate_log()
        except OSError as e:
            logger.warning(f"rotate install log of {record.name} failure: {e}")

        with state_dir.install_logger() as sink:
            run_ctx = ctx.with_logger(sink)
            flags = ExternalFlags(cluster_file_path=state_dir.cluster_file, config_dir=state_dir.path)
            try:
                run_ctx.raise_if_cancelled()
                self.engine.cluster_init(run_ctx, rke_config, DialersOptions(), flags)
            except Exception as e:
                # the new cluster.yml stays in place; cluster.yml.bak holds the previous spec
                sink.error(f"init rke cluster config failure {e}")
                logger.warning(f"cluster {record.name} keeps the new spec after a failed init, "
                               f"previous spec is in {state_dir.backup_file}")
                self._fail(record, progress, STEP_INIT_CLUSTER_CONFIG, f"init rke cluster config failure {e}")
                return None
            progress(STEP_INIT_CLUSTER_CONFIG, "init cluster config success", STATUS_SUCCESS)

            progress(STEP_UPDATE_KUBERNETES, state_dir.cluster_file, STATUS_START)
            try:
                result = cluster_up(run_ctx, self.engine, DialersOptions(), flags, {})
            except Exception as e:
                sink.error(f"update kubernetes failure {e}")
                self._fail(record, progress, STEP_UPDATE_KUBERNETES, str(e))
                return None

        record.node_list = NodeList.from_rke_config(rke_config).to_json()
        if rke_config.kubernetes_version:
            record.kubernetes_version = rke_config.kubernetes_version
        self._persist_up_result(record, result)
        progress(STEP_UPDATE_KUBERNETES, record.cluster_id, STATUS_SUCCESS)
        return cluster_view(record)

    def create_cluster(self, eid: str, config: RKEConfig) -> Optional[Cluster]:
        """Install a cluster straight from a spec, outside the task flow.

        No record is written; errors are raised to the caller.
        """
        if not isinstance(config, RKEConfig):
            raise errors.IncorrectRKEConfig("cluster config is not an RKE config")
        if self.engine is None:
            raise errors.ConfigInvalid("installation engine is not configured")
        validate_node_roles(config)
        state_dir = self.state_directory(eid, config.cluster_name or "default")
        state_dir.ensure()
        state_dir.write_cluster_config(config)
        flags = ExternalFlags(cluster_file_path=state_dir.cluster_file, config_dir=state_dir.path)
        ctx = EngineContext()
        self.engine.cluster_init(ctx, config, DialersOptions(), flags)
        result = cluster_up(ctx, self.engine, DialersOptions(), flags, {})
        return Cluster(
            name=config.cluster_name or "",
            api_url=result.api_url,
            state=RUNNING,
            cluster_type=CLUSTER_TYPE,
            kubernetes_version=config.kubernetes_version or "",
            size=len(config.nodes),
        )

    def generate_csrs(self, eid: str, cluster_id: str) -> str:
        """Write service CSRs and keys for a cluster into its certificate directory.

        Returns:
            The certificate directory

        Raises:
            BusinessError: ConfigInvalid, RKEConfigLost or IncorrectRKEConfig
        """
        record = self.repo.get_cluster(eid, cluster_id)
        if self.engine is None:
            raise errors.ConfigInvalid("installation engine is not configured")
        state_dir = self.state_directory(eid, record.name)
        try:
            rke_config = state_dir.read_cluster_config()
        except (yaml.YAMLError, ValueError) as e:
            raise errors.IncorrectRKEConfig() from e
        if rke_config is None:
            raise errors.RKEConfigLost()
        flags = ExternalFlags(cluster_file_path=state_dir.cluster_file, config_dir=state_dir.path)
        return generate_csrs(EngineContext(), self.engine, rke_config, flags)
