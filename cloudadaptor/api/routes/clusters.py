from typing import List, Optional

from fastapi import APIRouter, Depends

from cloudadaptor.adaptor.types import Cluster, ConfigNode
from cloudadaptor.api.routes import get_usecase
from cloudadaptor.api.routes.tasks import TaskView
from cloudadaptor.usecase import (
    ClusterUsecase,
    CreateClusterReq,
    CreateKubernetesReq,
    PruneUpdateRKEConfigReq,
    PruneUpdateRKEConfigResp,
    UpdateKubernetesReq,
)

router = APIRouter(prefix="/enterprises/{eid}/kclusters", tags=["clusters"])


@router.get("", response_model=List[Cluster])
def list_clusters(eid: str, provider_name: str = "rke", usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.list_kubernetes_clusters(eid, provider_name)


@router.post("", response_model=TaskView)
def create_cluster(eid: str, req: CreateKubernetesReq, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.create_kubernetes_cluster(eid, req)


@router.put("", response_model=TaskView)
def update_cluster(eid: str, req: UpdateKubernetesReq, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.update_kubernetes_cluster(eid, req)


@router.post("/prune-update-rkeconfig", response_model=PruneUpdateRKEConfigResp)
def prune_update_rke_config(eid: str, req: PruneUpdateRKEConfigReq, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.prune_update_rke_config(req)


@router.post("/up", response_model=Optional[Cluster])
def cluster_up(eid: str, req: CreateClusterReq, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.create_cluster(eid, req)


@router.get("/{cluster_id}", response_model=Cluster)
def describe_cluster(eid: str, cluster_id: str, provider_name: str = "rke",
                     usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.get_cluster(provider_name, eid, cluster_id)


@router.delete("/{cluster_id}")
def delete_cluster(eid: str, cluster_id: str, provider_name: str = "rke",
                   usecase: ClusterUsecase = Depends(get_usecase)):
    usecase.delete_kubernetes_cluster(eid, cluster_id, provider_name)
    return {"status": "deleted", "cluster_id": cluster_id}


@router.post("/{cluster_id}/install", response_model=TaskView)
def install_cluster(eid: str, cluster_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.install_cluster(eid, cluster_id)


@router.get("/{cluster_id}/kubeconfig")
def kubeconfig(eid: str, cluster_id: str, provider_name: str = "rke",
               usecase: ClusterUsecase = Depends(get_usecase)):
    return {"config": usecase.get_kubeconfig(eid, cluster_id, provider_name)}


@router.get("/{cluster_id}/nodes", response_model=List[ConfigNode])
def rke_node_list(eid: str, cluster_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.get_rke_node_list(eid, cluster_id)


@router.post("/{cluster_id}/csrs")
def generate_csrs(eid: str, cluster_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return {"cert_dir": usecase.generate_csrs(eid, cluster_id)}
