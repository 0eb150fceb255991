"""Durable stores for clusters, tasks and task events."""
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from cloudadaptor.datastore import Database


class BaseRepo:
    """A store that opens its own sessions or joins an outer one."""

    def __init__(self, db: Database, session: Optional[Session] = None):
        self.db = db
        self._bound = session

    def transaction(self, session: Session):
        """Return a copy of this store bound to ``session``."""
        return type(self)(self.db, session)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._bound is not None:
            yield self._bound
            return
        with self.db.session() as session:
            yield session


from cloudadaptor.repo.cluster import CustomClusterRepo, RKEClusterRepo  # noqa: E402
from cloudadaptor.repo.event import TaskEventRepo  # noqa: E402
from cloudadaptor.repo.task import (  # noqa: E402
    CreateKubernetesTaskRepo,
    InitRainbondTaskRepo,
    UpdateKubernetesTaskRepo,
)

__all__ = [
    "BaseRepo",
    "RKEClusterRepo",
    "CustomClusterRepo",
    "TaskEventRepo",
    "CreateKubernetesTaskRepo",
    "InitRainbondTaskRepo",
    "UpdateKubernetesTaskRepo",
]
