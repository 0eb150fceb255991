"""Cluster use cases: the operations behind the CLI and HTTP surfaces."""
import base64
import binascii
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from cloudadaptor import errors
from cloudadaptor.adaptor import ClusterAdaptor
from cloudadaptor.adaptor.factory import PROVIDER_CUSTOM, PROVIDER_RKE, AdaptorFactory
from cloudadaptor.adaptor.rke import StateDirectory, validate_node_roles
from cloudadaptor.adaptor.rkeconfig import RKEConfig, default_rke_config
from cloudadaptor.adaptor.types import (
    INITIAL,
    INSTALL_FAILED,
    Cluster,
    ConfigNode,
    ExpansionNode,
    InitRainbondConfig,
    KubernetesClusterConfig,
    NodeList,
)
from cloudadaptor.config import Settings
from cloudadaptor.datastore import Database
from cloudadaptor.health import HealthChecker
from cloudadaptor.models import (
    CreateKubernetesTask,
    CustomCluster,
    InitRainbondTask,
    RKECluster,
    TaskEvent,
    UpdateKubernetesTask,
)
from cloudadaptor.repo import (
    CreateKubernetesTaskRepo,
    CustomClusterRepo,
    InitRainbondTaskRepo,
    RKEClusterRepo,
    UpdateKubernetesTaskRepo,
)
from cloudadaptor.repo.task import TASK_RUNNING, is_complete
from cloudadaptor.task import (
    CREATE_KUBERNETES_TASK,
    INIT_RAINBOND_REGION_TASK,
    UPDATE_KUBERNETES_TASK,
    EventRecorder,
    RegionInstaller,
    TaskEventSink,
    TaskWorkerPool,
    create_task,
)
from cloudadaptor.utils import new_uuid, redact_sensitive_data

logger = logging.getLogger("cloudadaptor.usecase")


class CreateKubernetesReq(BaseModel):
    name: str
    provider_name: str = PROVIDER_RKE
    encoded_rke_config: str = ""
    nodes: List[ConfigNode] = Field(default_factory=list)
    kubeconfig: str = ""
    eip: List[str] = Field(default_factory=list)
    kubernetes_version: str = ""


class UpdateKubernetesReq(BaseModel):
    cluster_id: str
    provider_name: str = PROVIDER_RKE
    encoded_rke_config: str


class PruneUpdateRKEConfigReq(BaseModel):
    encoded_rke_config: str = ""
    nodes: List[ConfigNode] = Field(default_factory=list)


class PruneUpdateRKEConfigResp(BaseModel):
    nodes: List[ConfigNode] = Field(default_factory=list)
    encoded_rke_config: str = ""


class InitRainbondRegionReq(BaseModel):
    cluster_id: str
    provider_name: str = PROVIDER_RKE
    retry: bool = False


class CreateClusterReq(BaseModel):
    provider_name: str = PROVIDER_RKE
    encoded_rke_config: str


def decode_rke_config(encoded: str) -> RKEConfig:
    """Decode a base64 YAML spec.

    Raises:
        BusinessError: IncorrectRKEConfig
    """
    try:
        text = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise errors.IncorrectRKEConfig("decode encoded rke config failure") from e
    try:
        return RKEConfig.from_yaml(text)
    except (yaml.YAMLError, ValidationError, ValueError) as e:
        raise errors.IncorrectRKEConfig("unmarshal rke config failure") from e


def encode_rke_config(config: RKEConfig) -> str:
    return base64.b64encode(config.to_yaml().encode("utf-8")).decode("ascii")


def rke_config_from_nodes(cluster_name: str, nodes: List[ConfigNode], kubernetes_version: str = "") -> RKEConfig:
    """Default spec for a submitted node list."""
    return default_rke_config(cluster_name, [n.model_dump(by_alias=True) for n in nodes],
                              kubernetes_version=kubernetes_version)


class ClusterUsecase:
    """Create, install, update, inspect and delete clusters.

    Provisioning calls touching one cluster are serialized within the
    process, so the last-task check and the task insert cannot interleave.

    Args:
        db: Shared database
        settings: Process settings
        adaptors: Provider adaptor factory
        workers: Background task pool
        region_installer: Installs the region into a checked cluster
    """

    def __init__(self, db: Database, settings: Settings, adaptors: AdaptorFactory, workers: TaskWorkerPool,
                 region_installer: Optional[RegionInstaller] = None):
        self.db = db
        self.settings = settings
        self.adaptors = adaptors
        self.workers = workers
        self.region_installer = region_installer
        self.events = EventRecorder(db)
        self.rke_clusters = RKEClusterRepo(db)
        self.custom_clusters = CustomClusterRepo(db)
        self.create_tasks = CreateKubernetesTaskRepo(db)
        self.update_tasks = UpdateKubernetesTaskRepo(db)
        self.init_tasks = InitRainbondTaskRepo(db)
        self._locks_guard = threading.Lock()
        self._cluster_locks = weakref.WeakValueDictionary()

    def _adaptor(self, provider: str) -> ClusterAdaptor:
        return self.adaptors.get_cluster_adaptor(provider)

    def _sink(self, eid: str, task_id: str) -> TaskEventSink:
        return TaskEventSink(self.events, eid, task_id)

    @contextmanager
    def _cluster_lock(self, eid: str, cluster_id: str) -> Iterator[None]:
        key = (eid, cluster_id)
        with self._locks_guard:
            lock = self._cluster_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._cluster_locks[key] = lock
        with lock:
            yield

    def _submit(self, task_type: str, eid: str, task_id: str, config, task_repo) -> None:
        task = create_task(task_type, config, task_id, self._adaptor, self._sink(eid, task_id),
                           list_nodes=self.adaptors.checker.list_nodes,
                           region_installer=self.region_installer)
        task_repo.update_status(eid, task_id, TASK_RUNNING)
        self.workers.submit(task)
        logger.info(f"send {task_type} task {task_id} to worker pool")

    def is_last_task_complete(self, eid: str, cluster_id: str) -> int:
        """Refuse overlapping provisioning of one cluster.

        Returns:
            Version of the latest update task, 0 when there is none

        Raises:
            BusinessError: LastTaskNotComplete
        """
        update_task = self.update_tasks.get_latest_by_cluster_id(eid, cluster_id)
        if not is_complete(update_task):
            raise errors.LastTaskNotComplete()
        create = self.create_tasks.get_latest_by_cluster_id(eid, cluster_id)
        if not is_complete(create):
            raise errors.LastTaskNotComplete()
        return update_task.version if update_task is not None else 0

    def _request_rke_config(self, req: CreateKubernetesReq) -> RKEConfig:
        if req.encoded_rke_config:
            return decode_rke_config(req.encoded_rke_config)
        if req.nodes:
            return rke_config_from_nodes(req.name, req.nodes, req.kubernetes_version)
        raise errors.IncorrectRKEConfig("rke config not define")

    def create_kubernetes_cluster(self, eid: str, req: CreateKubernetesReq) -> CreateKubernetesTask:
        """Register a cluster and start its installation task.

        An RKE request carries either an encoded spec or a node list; the
        node list is turned into the default spec.
        """
        logger.debug(f"create kubernetes cluster request {redact_sensitive_data(req.model_dump())}")
        cluster_id = new_uuid()
        rke_config = None
        if req.provider_name == PROVIDER_CUSTOM:
            self.custom_clusters.create_cluster(CustomCluster(
                eid=eid, name=req.name, cluster_id=cluster_id,
                kube_config=req.kubeconfig, eip=",".join(req.eip),
            ))
        elif req.provider_name == PROVIDER_RKE:
            rke_config = self._request_rke_config(req)
            NodeList.from_rke_config(rke_config).validate_nodes()
            self.rke_clusters.create_cluster(RKECluster(
                eid=eid, name=req.name, cluster_id=cluster_id, stats=INITIAL,
                rke_config=req.encoded_rke_config or encode_rke_config(rke_config),
                kubernetes_version=req.kubernetes_version,
            ))
        else:
            raise errors.ProviderNotSupported()

        task = self.create_tasks.create(CreateKubernetesTask(
            eid=eid, name=req.name, provider_name=req.provider_name, cluster_id=cluster_id,
            node_number=len(rke_config.nodes) if rke_config else 0,
            kubernetes_version=req.kubernetes_version,
        ))
        config = KubernetesClusterConfig(
            eid=eid, name=req.name, provider_name=req.provider_name, cluster_id=cluster_id,
            kubernetesVersion=req.kubernetes_version, nodes=req.nodes, rke_config=rke_config,
        )
        self._submit(CREATE_KUBERNETES_TASK, eid, task.task_id, config, self.create_tasks)
        return self.create_tasks.get_task(eid, task.task_id)

    def prune_update_rke_config(self, req: PruneUpdateRKEConfigReq) -> PruneUpdateRKEConfigResp:
        """Normalize a spec without touching any cluster.

        Without an encoded spec the default one is built from the nodes;
        otherwise submitted nodes replace the nodes of the decoded spec.
        """
        if not req.encoded_rke_config:
            rke_config = rke_config_from_nodes("", req.nodes)
        else:
            rke_config = decode_rke_config(req.encoded_rke_config)
            if req.nodes:
                rke_config.nodes = rke_config_from_nodes(rke_config.cluster_name or "", req.nodes).nodes
        rke_config.ignore_docker_version = True
        return PruneUpdateRKEConfigResp(
            nodes=NodeList.from_rke_config(rke_config).nodes,
            encoded_rke_config=encode_rke_config(rke_config),
        )

    def get_rke_config(self, eid: str, cluster: RKECluster) -> RKEConfig:
        """The spec of an RKE cluster: cluster.yml on disk, else the stored copy.

        Raises:
            BusinessError: RKEConfigLost or IncorrectRKEConfig
        """
        state_dir = StateDirectory(self.settings.config_dir, eid, cluster.name)
        try:
            rke_config = state_dir.read_cluster_config()
        except (yaml.YAMLError, ValueError) as e:
            raise errors.IncorrectRKEConfig() from e
        if rke_config is not None:
            return rke_config
        if cluster.rke_config:
            return decode_rke_config(cluster.rke_config)
        raise errors.RKEConfigLost()

    def get_rke_node_list(self, eid: str, cluster_id: str) -> List[ConfigNode]:
        cluster = self.rke_clusters.get_cluster(eid, cluster_id)
        try:
            return NodeList.from_json(cluster.node_list).nodes
        except ValueError as e:
            logger.warning(f"node list of cluster {cluster.cluster_id} is broken: {e}")
            return []

    def install_cluster(self, eid: str, cluster_id: str) -> CreateKubernetesTask:
        """Retry the installation of a cluster that never came up."""
        cluster = self.rke_clusters.get_cluster(eid, cluster_id)
        if cluster.state not in (INITIAL, INSTALL_FAILED):
            raise errors.NotSupportReinstall()
        with self._cluster_lock(eid, cluster.cluster_id):
            self.is_last_task_complete(eid, cluster.cluster_id)

            rke_config = self.get_rke_config(eid, cluster)
            validate_node_roles(rke_config)

            task = self.create_tasks.create(CreateKubernetesTask(
                eid=eid, name=cluster.name, provider_name=PROVIDER_RKE, cluster_id=cluster.cluster_id,
                node_number=len(rke_config.nodes), kubernetes_version=cluster.kubernetes_version,
            ))
            config = KubernetesClusterConfig(
                eid=eid, name=cluster.name, provider_name=PROVIDER_RKE, cluster_id=cluster.cluster_id,
                rke_config=rke_config,
            )
            self._submit(CREATE_KUBERNETES_TASK, eid, task.task_id, config, self.create_tasks)
        return self.create_tasks.get_task(eid, task.task_id)

    def update_kubernetes_cluster(self, eid: str, req: UpdateKubernetesReq) -> UpdateKubernetesTask:
        """Apply a changed spec (nodes, version) to an installed cluster."""
        if req.provider_name != PROVIDER_RKE:
            raise errors.NotSupportUpdateKubernetes()
        rke_config = decode_rke_config(req.encoded_rke_config)
        cluster = self.rke_clusters.get_cluster(eid, req.cluster_id)

        with self._cluster_lock(eid, cluster.cluster_id):
            version = self.is_last_task_complete(eid, cluster.cluster_id)
            task = self.update_tasks.create(UpdateKubernetesTask(
                eid=eid, provider_name=req.provider_name, cluster_id=cluster.cluster_id,
                node_number=len(rke_config.nodes), version=version + 1,
            ))
            cluster.rke_config = req.encoded_rke_config
            self.rke_clusters.update(cluster)

            config = ExpansionNode(eid=eid, provider=req.provider_name, clusterID=cluster.cluster_id,
                                   rke_config=rke_config)
            self._submit(UPDATE_KUBERNETES_TASK, eid, task.task_id, config, self.update_tasks)
        return self.update_tasks.get_task(eid, task.task_id)

    def create_cluster(self, eid: str, req: CreateClusterReq) -> Optional[Cluster]:
        """Install a cluster from a spec in the calling thread, without a task or record."""
        adaptor = self._adaptor(req.provider_name)
        return adaptor.create_cluster(eid, decode_rke_config(req.encoded_rke_config))

    def generate_csrs(self, eid: str, cluster_id: str) -> str:
        return self._adaptor(PROVIDER_RKE).generate_csrs(eid, cluster_id)

    def init_rainbond_region(self, eid: str, req: InitRainbondRegionReq) -> InitRainbondTask:
        """Start installing the region into a running cluster.

        An earlier init task of the cluster blocks a new one unless ``retry``
        is set and that task has finished.

        Raises:
            BusinessError: ProviderNotSupported or LastTaskNotComplete
        """
        self._adaptor(req.provider_name)
        with self._cluster_lock(eid, req.cluster_id):
            old = self.init_tasks.get_latest_by_cluster_id(eid, req.cluster_id)
            if old is not None and (not req.retry or not is_complete(old)):
                raise errors.LastTaskNotComplete()
            task = self.init_tasks.create(InitRainbondTask(
                eid=eid, provider_name=req.provider_name, cluster_id=req.cluster_id,
            ))
            config = InitRainbondConfig(eid=eid, provider_name=req.provider_name, clusterID=req.cluster_id)
            self._submit(INIT_RAINBOND_REGION_TASK, eid, task.task_id, config, self.init_tasks)
        return self.init_tasks.get_task(eid, task.task_id)

    def get_init_rainbond_task(self, eid: str, cluster_id: str) -> Optional[InitRainbondTask]:
        return self.init_tasks.get_latest_by_cluster_id(eid, cluster_id)

    def list_running_init_tasks(self, eid: str) -> List[InitRainbondTask]:
        return self.init_tasks.list_unfinished(eid)

    def update_init_rainbond_task_status(self, eid: str, task_id: str, status: str) -> InitRainbondTask:
        """
        Raises:
            LookupError: no such task
        """
        if not self.init_tasks.update_status(eid, task_id, status):
            raise LookupError(f"task {task_id} not found")
        return self.init_tasks.get_task(eid, task_id)

    def running_tasks(self) -> List[str]:
        return self.workers.running_tasks()

    def cancel_task(self, task_id: str) -> bool:
        """Ask a task running in this process to stop at its next step."""
        cancelled = self.workers.cancel(task_id)
        if cancelled:
            logger.info(f"cancel task {task_id}")
        return cancelled

    def list_kubernetes_clusters(self, eid: str, provider: str) -> List[Cluster]:
        return self._adaptor(provider).cluster_list(eid)

    def get_cluster(self, provider: str, eid: str, cluster_id: str) -> Cluster:
        return self._adaptor(provider).describe_cluster(eid, cluster_id)

    def delete_kubernetes_cluster(self, eid: str, cluster_id: str, provider: str) -> None:
        self._adaptor(provider).delete_cluster(eid, cluster_id)

    def get_kubeconfig(self, eid: str, cluster_id: str, provider: str) -> str:
        return self._adaptor(provider).get_kube_config(eid, cluster_id).config

    def create_task_event(self, eid: str, task_id: str, step: str, message: str, status: str,
                          reason: str = "") -> TaskEvent:
        return self.events.record(eid, task_id, step, message, status, reason)

    def list_task_events(self, eid: str, task_id: str) -> List[TaskEvent]:
        return self.events.list_events(eid, task_id)

    def get_last_create_kubernetes_task(self, eid: str, provider: str) -> Optional[CreateKubernetesTask]:
        """Latest create task of a provider; a newer update task is reported in its place."""
        task = self.create_tasks.get_last_task(eid, provider)
        if task is None:
            return None
        update_task = self.update_tasks.get_last_task(eid, provider)
        if update_task is None or task.created_at > update_task.created_at:
            return task
        try:
            cluster = self.rke_clusters.get_cluster(eid, update_task.cluster_id)
        except errors.BusinessError:
            return task
        return CreateKubernetesTask(
            eid=eid, name=cluster.name, provider_name=provider, task_id=update_task.task_id,
            status=update_task.status, cluster_id=update_task.cluster_id,
            created_at=update_task.created_at,
        )

    def get_update_kubernetes_task(self, eid: str, cluster_id: str) -> Optional[UpdateKubernetesTask]:
        cluster = self.rke_clusters.get_cluster(eid, cluster_id)
        return self.update_tasks.get_latest_by_cluster_id(eid, cluster.cluster_id)


def new_usecase(settings: Settings, db: Optional[Database] = None, engine=None,
                workers: Optional[TaskWorkerPool] = None, checker: Optional[HealthChecker] = None,
                region_installer: Optional[RegionInstaller] = None) -> ClusterUsecase:
    """Wire the stores, adaptors and worker pool of one process.

    Without ``engine`` installs fail at InitClusterConfig, and without
    ``region_installer`` region init fails at InitRainbondRegionOperator.
    """
    if db is None:
        from cloudadaptor.datastore import open_database
        db = open_database(settings)
    adaptors = AdaptorFactory(db, settings, engine=engine, checker=checker)
    return ClusterUsecase(db, settings, adaptors, workers or TaskWorkerPool(settings.task_workers),
                          region_installer=region_installer)
