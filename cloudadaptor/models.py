"""ORM models for clusters, tasks and task events."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase

TABLE_PREFIX = "adaptor_"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class TimestampMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class RKECluster(TimestampMixin, Base):
    """RKE cluster provisioned by this service."""

    __tablename__ = TABLE_PREFIX + "rke_cluster"
    __table_args__ = (UniqueConstraint("eid", "name", name="uix_rke_cluster_eid_name"),)

    eid = Column("eid", String(64), nullable=False)
    name = Column("name", String(64), nullable=False)
    cluster_id = Column("clusterID", String(64), nullable=False, index=True)
    api_url = Column("apiURL", Text, default="")
    kube_config = Column("kubeConfig", Text, default="")
    network_mode = Column("networkMode", String(32), default="")
    service_cidr = Column("serviceCIDR", String(32), default="")
    pod_cidr = Column("podCIDR", String(32), default="")
    kubernetes_version = Column("kubernetesVersion", String(32), default="")
    rainbond_init = Column("rainbondInit", Boolean, default=False)
    create_log_path = Column("createLogPath", String(256), default="")
    # deprecated, kept for older clients reading the node count
    node_list = Column("nodeList", Text, default="")
    stats = Column("stats", String(32), default="")
    rke_config = Column("rkeConfig", Text, default="")

    @property
    def state(self) -> str:
        return self.stats or ""

    @state.setter
    def state(self, value: str) -> None:
        self.stats = value


class CustomCluster(TimestampMixin, Base):
    """Pre-existing cluster imported with its admin kubeconfig."""

    __tablename__ = TABLE_PREFIX + "custom_cluster"
    __table_args__ = (UniqueConstraint("eid", "name", name="uix_custom_cluster_eid_name"),)

    eid = Column("eid", String(64), nullable=False)
    name = Column("name", String(64), nullable=False)
    cluster_id = Column("clusterID", String(64), nullable=False, index=True)
    kube_config = Column("kubeConfig", Text, default="")
    eip = Column("eip", String(256), default="")


class TaskMixin(TimestampMixin):
    eid = Column("eid", String(64), nullable=False)
    task_id = Column("taskID", String(64), nullable=False, index=True)
    provider_name = Column("providerName", String(32), default="")
    cluster_id = Column("clusterID", String(64), default="", index=True)
    status = Column("status", String(32), default="pending")


class CreateKubernetesTask(TaskMixin, Base):
    __tablename__ = TABLE_PREFIX + "create_kubernetes_task"

    name = Column("name", String(64), default="")
    node_number = Column("nodeNumber", Integer, default=0)
    kubernetes_version = Column("kubernetesVersion", String(32), default="")


class InitRainbondTask(TaskMixin, Base):
    __tablename__ = TABLE_PREFIX + "init_rainbond_task"


class UpdateKubernetesTask(TaskMixin, Base):
    __tablename__ = TABLE_PREFIX + "update_kubernetes_task"
    __table_args__ = (UniqueConstraint("clusterID", "version", name="uix_update_task_cluster_version"),)

    version = Column("version", Integer, nullable=False, default=0)
    node_number = Column("nodeNumber", Integer, default=0)


class TaskEvent(TimestampMixin, Base):
    """Step-keyed progress record of a task."""

    __tablename__ = TABLE_PREFIX + "task_event"
    __table_args__ = (UniqueConstraint("eid", "taskID", "stepType", name="uix_task_event_step"),)

    eid = Column("eid", String(64), nullable=False)
    task_id = Column("taskID", String(64), nullable=False, index=True)
    step_type = Column("stepType", String(64), nullable=False)
    message = Column("message", String(512), default="")
    status = Column("status", String(32), default="")
    reason = Column("reason", String(128), default="")
    event_id = Column("eventID", String(64), default="")


TASK_MODELS = (CreateKubernetesTask, InitRainbondTask, UpdateKubernetesTask)
