import logging
from typing import List, Type, Union

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from cloudadaptor import errors
from cloudadaptor.models import CustomCluster, RKECluster
from cloudadaptor.repo import BaseRepo
from cloudadaptor.utils import new_uuid

logger = logging.getLogger("cloudadaptor.repo.cluster")

ClusterRecord = Union[RKECluster, CustomCluster]


class _ClusterRepo(BaseRepo):
    model: Type[ClusterRecord]

    def create_cluster(self, cluster: ClusterRecord) -> ClusterRecord:
        """Persist a new cluster record.

        Raises:
            ValueError: name or eid missing
            BusinessError: ClusterNameConflict when (eid, name) exists
        """
        if not cluster.name or not cluster.eid:
            raise ValueError("cluster name or eid can not be empty")
        if not cluster.cluster_id:
            cluster.cluster_id = new_uuid()
        try:
            with self._session() as session:
                exists = session.execute(
                    select(self.model.id).where(
                        self.model.eid == cluster.eid, self.model.name == cluster.name
                    )
                ).first()
                if exists is not None:
                    raise errors.ClusterNameConflict(f"cluster {cluster.name} is exist")
                session.add(cluster)
                session.flush()
        except IntegrityError as e:
            raise errors.ClusterNameConflict(f"cluster {cluster.name} is exist") from e
        return cluster

    def get_cluster(self, eid: str, name_or_id: str) -> ClusterRecord:
        """Find a cluster by name or cluster id.

        Raises:
            BusinessError: ClusterNotFound
        """
        with self._session() as session:
            cluster = session.execute(
                select(self.model).where(
                    self.model.eid == eid,
                    or_(self.model.name == name_or_id, self.model.cluster_id == name_or_id),
                )
            ).scalars().first()
        if cluster is None:
            raise errors.ClusterNotFound()
        return cluster

    def list_cluster(self, eid: str) -> List[ClusterRecord]:
        with self._session() as session:
            return list(session.execute(
                select(self.model)
                .where(self.model.eid == eid)
                .order_by(self.model.created_at.desc(), self.model.id.desc())
            ).scalars())

    def update(self, cluster: ClusterRecord) -> ClusterRecord:
        with self._session() as session:
            merged = session.merge(cluster)
            session.flush()
        # keep the caller's object in sync with generated columns
        cluster.id = merged.id
        cluster.updated_at = merged.updated_at
        return merged

    def delete_cluster(self, eid: str, name_or_id: str) -> None:
        with self._session() as session:
            clusters = session.execute(
                select(self.model).where(
                    self.model.eid == eid,
                    or_(self.model.name == name_or_id, self.model.cluster_id == name_or_id),
                )
            ).scalars().all()
            for cluster in clusters:
                session.delete(cluster)
        logger.info(f"deleted {len(clusters)} cluster record(s) {name_or_id} of {eid}")


class RKEClusterRepo(_ClusterRepo):
    model = RKECluster


class CustomClusterRepo(_ClusterRepo):
    model = CustomCluster
