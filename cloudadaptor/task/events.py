"""Progress reporting from running tasks into the event log."""
import logging
from typing import List

from cloudadaptor.adaptor import (
    STATUS_FAILURE,
    STATUS_SUCCESS,
    STEP_CREATE_CLUSTER,
    STEP_INSTALL_KUBERNETES,
    STEP_UPDATE_KUBERNETES,
)
from cloudadaptor.datastore import Database
from cloudadaptor.models import TaskEvent
from cloudadaptor.repo import (
    CreateKubernetesTaskRepo,
    InitRainbondTaskRepo,
    TaskEventRepo,
    UpdateKubernetesTaskRepo,
)
from cloudadaptor.repo.task import TASK_FAILURE, TASK_SUCCESS
from cloudadaptor.task.tasks import STEP_INIT_RAINBOND_REGION

logger = logging.getLogger("cloudadaptor.task.events")


class EventRecorder:
    """Store task events and move task status along with them.

    The event upsert and the status change commit together.
    """

    def __init__(self, db: Database):
        self.db = db

    def record(self, eid: str, task_id: str, step: str, message: str, status: str,
               reason: str = "") -> TaskEvent:
        event = TaskEvent(eid=eid, task_id=task_id, step_type=step, message=message,
                          status=status, reason=reason)
        with self.db.session() as session:
            stored = TaskEventRepo(self.db).transaction(session).create(event)
            if stored.status != status:
                # the step already succeeded; the late event was not applied
                logger.debug(f"task {task_id} step {step} is {stored.status}, ignore {status} event")
                return stored
            if status == STATUS_SUCCESS:
                if step in (STEP_INSTALL_KUBERNETES, STEP_CREATE_CLUSTER):
                    CreateKubernetesTaskRepo(self.db).transaction(session).update_status(eid, task_id, TASK_SUCCESS)
                elif step == STEP_UPDATE_KUBERNETES:
                    UpdateKubernetesTaskRepo(self.db).transaction(session).update_status(eid, task_id, TASK_SUCCESS)
                elif step == STEP_INIT_RAINBOND_REGION:
                    InitRainbondTaskRepo(self.db).transaction(session).update_status(eid, task_id, TASK_SUCCESS)
            elif status == STATUS_FAILURE:
                for repo_cls in (CreateKubernetesTaskRepo, InitRainbondTaskRepo, UpdateKubernetesTaskRepo):
                    repo_cls(self.db).transaction(session).update_status(eid, task_id, TASK_FAILURE)
        return stored

    def list_events(self, eid: str, task_id: str) -> List[TaskEvent]:
        return TaskEventRepo(self.db).list_events(eid, task_id)


class TaskEventSink:
    """Progress callback bound to one task."""

    def __init__(self, recorder: EventRecorder, eid: str, task_id: str):
        self.recorder = recorder
        self.eid = eid
        self.task_id = task_id

    def emit(self, step: str, message: str, status: str, reason: str = "") -> None:
        if status == STATUS_FAILURE:
            logger.error(f"task {self.task_id} step {step} failure: {message}")
        else:
            logger.info(f"task {self.task_id} step {step} {status} {message}".rstrip())
        try:
            self.recorder.record(self.eid, self.task_id, step, message, status, reason)
        except Exception as e:
            logger.error(f"save task {self.task_id} event {step} failure: {e}")

    __call__ = emit
