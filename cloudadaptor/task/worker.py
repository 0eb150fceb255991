import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional

from cloudadaptor.adaptor import STATUS_FAILURE
from cloudadaptor.adaptor.rke.engine import EngineContext
from cloudadaptor.task.tasks import Task

logger = logging.getLogger("cloudadaptor.task.worker")

STEP_RUN_TASK = "RunTask"


class TaskWorkerPool:
    """Runs tasks on a bounded thread pool, at most once per task id.

    Args:
        max_workers: Number of tasks that may run at the same time
    """

    def __init__(self, max_workers: int = 4):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cloudadaptor-task")
        self._lock = threading.Lock()
        self._running: Dict[str, EngineContext] = {}
        self._closed = False

    def submit(self, task: Task, ctx: Optional[EngineContext] = None) -> Optional[Future]:
        """Schedule ``task``; returns None when the same task id is already handled."""
        ctx = ctx or EngineContext()
        with self._lock:
            if self._closed:
                raise RuntimeError("task worker pool is shut down")
            if task.task_id in self._running:
                logger.info(f"task {task.task_id} is already handled")
                return None
            self._running[task.task_id] = ctx
        return self.executor.submit(self._run, task, ctx)

    def _run(self, task: Task, ctx: EngineContext) -> None:
        logger.info(f"start task {task.task_id} ({type(task).__name__})")
        try:
            task.run(ctx)
        except Exception as e:
            logger.exception(f"task {task.task_id} crashed")
            task.progress(STEP_RUN_TASK, f"task run failure {e}", STATUS_FAILURE)
        finally:
            with self._lock:
                self._running.pop(task.task_id, None)
            logger.info(f"task {task.task_id} finished")

    def running_tasks(self):
        with self._lock:
            return list(self._running)

    def cancel(self, task_id: str) -> bool:
        with self._lock:
            ctx = self._running.get(task_id)
        if ctx is None:
            return False
        ctx.cancel()
        return True

    def shutdown(self, wait: bool = True, cancel: bool = True) -> None:
        """Stop accepting tasks; in-flight engine work is cancelled at its next step."""
        with self._lock:
            self._closed = True
            contexts = list(self._running.values())
        if cancel:
            for ctx in contexts:
                ctx.cancel()
        self.executor.shutdown(wait=wait)
