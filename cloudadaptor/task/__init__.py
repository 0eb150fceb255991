from cloudadaptor.task.events import EventRecorder, TaskEventSink
from cloudadaptor.task.tasks import (
    CREATE_KUBERNETES_TASK,
    INIT_RAINBOND_REGION_TASK,
    UPDATE_KUBERNETES_TASK,
    CreateKubernetesCluster,
    InitRainbondRegion,
    RegionInstaller,
    Task,
    UpdateKubernetesCluster,
    create_task,
    select_region_nodes,
)
from cloudadaptor.task.worker import TaskWorkerPool

__all__ = [
    "EventRecorder",
    "TaskEventSink",
    "Task",
    "CreateKubernetesCluster",
    "UpdateKubernetesCluster",
    "InitRainbondRegion",
    "RegionInstaller",
    "create_task",
    "select_region_nodes",
    "CREATE_KUBERNETES_TASK",
    "UPDATE_KUBERNETES_TASK",
    "INIT_RAINBOND_REGION_TASK",
    "TaskWorkerPool",
]
