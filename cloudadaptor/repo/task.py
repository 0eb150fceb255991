import logging
from typing import List, Optional, Type, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from cloudadaptor import errors
from cloudadaptor.models import CreateKubernetesTask, InitRainbondTask, UpdateKubernetesTask
from cloudadaptor.repo import BaseRepo
from cloudadaptor.utils import new_uuid

logger = logging.getLogger("cloudadaptor.repo.task")

TASK_PENDING = "pending"
TASK_RUNNING = "running"
TASK_SUCCESS = "success"
TASK_FAILURE = "failure"
TERMINAL_STATUSES = (TASK_SUCCESS, TASK_FAILURE)

TaskRecord = Union[CreateKubernetesTask, InitRainbondTask, UpdateKubernetesTask]


def is_complete(task: Optional[TaskRecord]) -> bool:
    return task is None or task.status in TERMINAL_STATUSES


class _TaskRepo(BaseRepo):
    model: Type[TaskRecord]

    def create(self, task: TaskRecord) -> TaskRecord:
        """Persist a new task, generating its id when missing.

        Raises:
            ValueError: a task with the same (eid, task_id) exists
        """
        if not task.task_id:
            task.task_id = new_uuid()
        if not task.status:
            task.status = TASK_PENDING
        with self._session() as session:
            exists = session.execute(
                select(self.model.id).where(
                    self.model.eid == task.eid, self.model.task_id == task.task_id
                )
            ).first()
            if exists is not None:
                raise ValueError(f"task {task.task_id} is exist")
            session.add(task)
            session.flush()
        return task

    def get_task(self, eid: str, task_id: str) -> TaskRecord:
        with self._session() as session:
            task = session.execute(
                select(self.model).where(self.model.eid == eid, self.model.task_id == task_id)
            ).scalars().first()
        if task is None:
            raise LookupError(f"task {task_id} not found")
        return task

    def get_last_task(self, eid: str, provider_name: str) -> Optional[TaskRecord]:
        """Return the most recently created task of a provider, if any."""
        with self._session() as session:
            return session.execute(
                select(self.model)
                .where(self.model.eid == eid, self.model.provider_name == provider_name)
                .order_by(self.model.created_at.desc(), self.model.id.desc())
            ).scalars().first()

    def get_latest_by_cluster_id(self, eid: str, cluster_id: str) -> Optional[TaskRecord]:
        with self._session() as session:
            return session.execute(
                select(self.model)
                .where(self.model.eid == eid, self.model.cluster_id == cluster_id)
                .order_by(self.model.created_at.desc(), self.model.id.desc())
            ).scalars().first()

    def list_unfinished(self, eid: str) -> List[TaskRecord]:
        """Pending and running tasks of a tenant, newest first."""
        with self._session() as session:
            return list(session.execute(
                select(self.model)
                .where(self.model.eid == eid, self.model.status.in_((TASK_PENDING, TASK_RUNNING)))
                .order_by(self.model.created_at.desc(), self.model.id.desc())
            ).scalars())

    def update_status(self, eid: str, task_id: str, status: str) -> int:
        with self._session() as session:
            result = session.execute(
                update(self.model)
                .where(self.model.eid == eid, self.model.task_id == task_id)
                .values(status=status)
            )
            return result.rowcount


class CreateKubernetesTaskRepo(_TaskRepo):
    model = CreateKubernetesTask


class InitRainbondTaskRepo(_TaskRepo):
    model = InitRainbondTask


class UpdateKubernetesTaskRepo(_TaskRepo):
    model = UpdateKubernetesTask

    def create(self, task: UpdateKubernetesTask) -> UpdateKubernetesTask:
        """Persist an update task; a taken (cluster_id, version) slot means
        another update won the race."""
        try:
            return super().create(task)
        except IntegrityError as e:
            raise errors.LastTaskNotComplete() from e
