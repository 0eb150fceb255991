from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from cloudadaptor.api.routes import get_usecase
from cloudadaptor.usecase import ClusterUsecase, InitRainbondRegionReq

router = APIRouter(prefix="/enterprises/{eid}", tags=["tasks"])
worker_router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    eid: str
    provider_name: str = ""
    cluster_id: str = ""
    status: str = ""
    created_at: Optional[datetime] = None
    name: Optional[str] = None
    version: Optional[int] = None
    node_number: Optional[int] = None


class EventView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    step_type: str
    message: str = ""
    status: str = ""
    reason: str = ""
    event_id: str = ""
    created_at: Optional[datetime] = None


class EventRequest(BaseModel):
    step_type: str
    message: str = ""
    status: str
    reason: str = ""


@router.get("/tasks/{task_id}/events", response_model=List[EventView])
def list_events(eid: str, task_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.list_task_events(eid, task_id)


@router.post("/tasks/{task_id}/events", response_model=EventView)
def create_event(eid: str, task_id: str, req: EventRequest, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.create_task_event(eid, task_id, req.step_type, req.message, req.status, req.reason)


@router.get("/last-ck-task", response_model=Optional[TaskView])
def last_create_task(eid: str, provider_name: str = "rke", usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.get_last_create_kubernetes_task(eid, provider_name)


@router.get("/update-cluster/{cluster_id}", response_model=Optional[TaskView])
def update_task(eid: str, cluster_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.get_update_kubernetes_task(eid, cluster_id)


class InitTaskStatusRequest(BaseModel):
    status: str


@router.post("/init-cluster", response_model=TaskView)
def init_region(eid: str, req: InitRainbondRegionReq, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.init_rainbond_region(eid, req)


@router.get("/init-task/{cluster_id}", response_model=Optional[TaskView])
def init_task(eid: str, cluster_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.get_init_rainbond_task(eid, cluster_id)


@router.get("/init-tasks", response_model=List[TaskView])
def running_init_tasks(eid: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.list_running_init_tasks(eid)


@router.put("/init-tasks/{task_id}/status", response_model=TaskView)
def update_init_task_status(eid: str, task_id: str, req: InitTaskStatusRequest,
                            usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.update_init_rainbond_task_status(eid, task_id, req.status)


@worker_router.get("/running", response_model=List[str])
def running_tasks(usecase: ClusterUsecase = Depends(get_usecase)):
    return usecase.running_tasks()


@worker_router.post("/{task_id}/cancel")
def cancel_task(task_id: str, usecase: ClusterUsecase = Depends(get_usecase)):
    return {"task_id": task_id, "cancelled": usecase.cancel_task(task_id)}
