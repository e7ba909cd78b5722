import logging
from concurrent.futures import ThreadPoolExecutor

from django.db import connections

from . import registry
from .exceptions import PermanentTaskError
from .models import PullTask, TaskStatus
from .queue import TaskQueue

logger = logging.getLogger(__name__)


class TaskLeasingAgent:
    """Leases due tasks and runs their handlers on a bounded worker pool.

    One call to :meth:`lease_and_execute_tasks` is one poll cycle: lease up
    to ``max_workers`` tasks, run each one, record its outcome.
    """

    def __init__(self, name: str, owner: str | None = None, pool: str | None = None,
                 max_workers: int = 10, lease_seconds: int = 600, queue: TaskQueue | None = None):
        self.name = name
        self.queue = queue or TaskQueue(owner=owner, pool=pool)
        self.max_workers = max(1, int(max_workers))
        self.lease_seconds = lease_seconds

    def lease_and_execute_tasks(self) -> int:
        tasks = self.queue.lease(limit=self.max_workers, lease_seconds=self.lease_seconds, owner=self.name)
        if not tasks:
            return 0
        logger.info("Agent %s leased %d task(s)", self.name, len(tasks))

        if self.max_workers == 1:
            for task in tasks:
                self.run_task(task)
            return len(tasks)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=self.name) as pool:
            list(pool.map(self._run_in_worker, tasks))
        return len(tasks)

    def _run_in_worker(self, task: PullTask) -> None:
        try:
            self.run_task(task)
        finally:
            connections.close_all()

    def run_task(self, task: PullTask) -> None:
        handler = None
        try:
            handler = registry.handler_for(task.name)
            handler.execute(task, self.queue)
        except PermanentTaskError as e:
            logger.error("Task %s:%s (id=%s) failed permanently: %s", task.name, task.business_key, task.pk, e)
            self.queue.fail_permanently(task, str(e))
            return
        except Exception as e:
            logger.exception("Task %s:%s (id=%s) failed on attempt %d",
                             task.name, task.business_key, task.pk, task.attempts)
            self.queue.fail_and_retry(task, f"{type(e).__name__}: {e}", getattr(handler, "max_attempts", None))
            return

        if task.status == TaskStatus.LEASED:
            self.queue.complete(task)
