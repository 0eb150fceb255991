import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cloudadaptor.models import TaskEvent
from cloudadaptor.repo import BaseRepo
from cloudadaptor.utils import new_uuid, truncate_utf8

logger = logging.getLogger("cloudadaptor.repo.event")

MESSAGE_LIMIT = 512
EVENT_SUCCESS = "success"


class TaskEventRepo(BaseRepo):

    def create(self, event: TaskEvent) -> TaskEvent:
        """Upsert the event of one task step.

        The row is keyed by (eid, task_id, step_type). A row already in
        ``success`` is left untouched; any other row takes the new message,
        status and reason.
        """
        event.message = truncate_utf8(event.message or "", MESSAGE_LIMIT)
        event.reason = event.reason or ""
        try:
            return self._upsert(event)
        except IntegrityError:
            if self._bound is not None:
                raise
            # a concurrent insert of the same step; retry as an update
            logger.debug(f"event {event.task_id}/{event.step_type} inserted concurrently")
            return self._upsert(event)

    def _upsert(self, event: TaskEvent) -> TaskEvent:
        with self._session() as session:
            old = session.execute(
                select(TaskEvent).where(
                    TaskEvent.eid == event.eid,
                    TaskEvent.task_id == event.task_id,
                    TaskEvent.step_type == event.step_type,
                )
            ).scalars().first()
            if old is None:
                if not event.event_id:
                    event.event_id = new_uuid()
                session.add(event)
                session.flush()
                return event
            if old.status != EVENT_SUCCESS:
                old.message = event.message
                old.status = event.status
                old.reason = event.reason
                session.flush()
            return old

    def list_events(self, eid: str, task_id: str) -> List[TaskEvent]:
        """Return the events of a task; callers group them by step."""
        with self._session() as session:
            return list(session.execute(
                select(TaskEvent).where(TaskEvent.eid == eid, TaskEvent.task_id == task_id)
            ).scalars())
