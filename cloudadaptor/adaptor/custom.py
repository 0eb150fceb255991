"""Imported clusters: a store of admin credentials, checked on read."""
import logging
from typing import List, Optional

from cloudadaptor import errors
from cloudadaptor.adaptor import STATUS_SUCCESS, STEP_CREATE_CLUSTER, ClusterAdaptor, Progress
from cloudadaptor.adaptor.types import (
    OFFLINE,
    Cluster,
    ExpansionNode,
    KubeConfig,
    KubernetesClusterConfig,
)
from cloudadaptor.health import ClusterCheckError, HealthChecker
from cloudadaptor.models import CustomCluster
from cloudadaptor.repo import CustomClusterRepo

logger = logging.getLogger("cloudadaptor.custom")

CLUSTER_TYPE = "custom"


def split_eip(eip: str) -> List[str]:
    return [item.strip() for item in (eip or "").split(",") if item.strip()]


class CustomAdaptor(ClusterAdaptor):

    def __init__(self, repo: CustomClusterRepo, checker: HealthChecker):
        self.repo = repo
        self.checker = checker

    def cluster_list(self, eid: str) -> List[Cluster]:
        return self.checker.describe_all(self.repo.list_cluster(eid), self._describe_for_list)

    def _describe_for_list(self, record: CustomCluster) -> Cluster:
        try:
            return self._describe(record)
        except ClusterCheckError as e:
            logger.warning(f"check cluster {record.cluster_id} failure: {e}")
            return e.cluster

    def describe_cluster(self, eid: str, cluster_id: str) -> Cluster:
        return self._describe(self.repo.get_cluster(eid, cluster_id))

    def _describe(self, record: CustomCluster) -> Cluster:
        cluster = Cluster(
            name=record.name,
            cluster_id=record.cluster_id,
            created=record.created_at,
            state=OFFLINE,
            cluster_type=CLUSTER_TYPE,
            eip=split_eip(record.eip),
        )
        return self.checker.check(cluster, record.kube_config or "")

    def delete_cluster(self, eid: str, cluster_id: str) -> None:
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

    def create_rainbond_kubernetes(self, ctx, eid: str, config: KubernetesClusterConfig,
                                   progress: Progress) -> Optional[Cluster]:
        # imported clusters already exist; nothing to install
        progress(STEP_CREATE_CLUSTER, "", STATUS_SUCCESS)
        return None

    def expansion_node(self, ctx, eid: str, en: ExpansionNode, progress: Progress) -> Optional[Cluster]:
        return None

    def create_cluster(self, eid: str, config) -> Optional[Cluster]:
        return None
