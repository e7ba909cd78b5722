import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, connection, transaction
from django.db.models import Q
from django.utils import timezone

from .models import PullTask, TaskStatus

logger = logging.getLogger(__name__)

RETRY_BASE_SECONDS = 60
RETRY_MAX_SECONDS = 3600


def retry_delay(attempts: int) -> timedelta:
    """Queue-level backoff after a failed lease: 60s, 120s, 240s ... capped at 1h."""
    exponent = max(attempts - 1, 0)
    return timedelta(seconds=min(RETRY_BASE_SECONDS * (2 ** min(exponent, 16)), RETRY_MAX_SECONDS))


def _conf(key, default=None):
    return getattr(settings, "PULLTASKS", {}).get(key, default)


class TaskQueue:
    """Database backed task queue.

    At most one PENDING task may exist per ``(name, business_key)``; the
    ``enqueue_unique*`` methods rely on that constraint to deduplicate
    concurrent enqueues.
    """

    def __init__(self, owner: str | None = None, pool: str | None = None):
        self.owner = owner or _conf("OWNER", "acquiring")
        self.pool = pool or _conf("POOL", "default")

    # ---------- enqueue ----------
    def new_task(self, name: str, business_key: str, *, payload: str = "", due_at=None,
                 version: str = "1.0", max_attempts: int = 0) -> PullTask:
        return PullTask(
            name=name,
            version=version,
            owner=self.owner,
            pool=self.pool,
            business_key=str(business_key),
            payload=payload or "",
            due_at=due_at or timezone.now(),
            max_attempts=max_attempts,
        )

    def enqueue(self, task: PullTask) -> PullTask:
        task.status = TaskStatus.PENDING
        task.save()
        logger.debug("Enqueued task %s", task)
        return task

    def pending_for(self, name: str, business_key: str) -> PullTask | None:
        return PullTask.objects.filter(name=name, business_key=str(business_key), status=TaskStatus.PENDING).first()

    def enqueue_unique(self, task: PullTask) -> PullTask:
        """Enqueue ``task`` unless a PENDING task with the same name and business key exists.

        Returns the task that ends up pending: either ``task`` or the one
        that was already there.
        """
        existing = self.pending_for(task.name, task.business_key)
        if existing is not None:
            logger.info("Task %s:%s already pending (id=%s), not enqueueing a duplicate",
                        task.name, task.business_key, existing.pk)
            return existing
        try:
            with transaction.atomic():
                return self.enqueue(task)
        except IntegrityError:
            existing = self.pending_for(task.name, task.business_key)
            if existing is None:
                raise
            logger.info("Lost enqueue race for %s:%s, keeping pending task id=%s",
                        task.name, task.business_key, existing.pk)
            return existing

    def enqueue_unique_continuation(self, business_key: str, task: PullTask, due_at) -> PullTask:
        continuation = self.new_task(
            task.name,
            business_key,
            payload=task.payload,
            due_at=due_at,
            version=task.version,
            max_attempts=task.max_attempts,
        )
        continuation.pool = task.pool
        continuation.owner = task.owner
        continuation.parent_id = task.pk
        result = self.enqueue_unique(continuation)
        logger.debug("Continuation of task %s scheduled at %s (id=%s)", task.pk, result.due_at, result.pk)
        return result

    # ---------- lease ----------
    def lease(self, limit: int = 1, lease_seconds: int = 600, owner: str | None = None,
              pool: str | None = None) -> list:
        """Lease up to ``limit`` due tasks of ``pool`` (this queue's pool by default).

        Due PENDING tasks and LEASED tasks whose lease has expired are
        eligible, oldest due date first.
        """
        now = timezone.now()
        owner = owner or self.owner
        pool = pool or self.pool
        due = Q(status=TaskStatus.PENDING, due_at__lte=now) | Q(status=TaskStatus.LEASED, leased_until__lt=now)
        with transaction.atomic():
            qs = PullTask.objects.filter(pool=pool).filter(due).order_by("due_at", "pk")
            if connection.features.has_select_for_update_skip_locked:
                qs = qs.select_for_update(skip_locked=True)
            leased = list(qs[:limit])
            for task in leased:
                task.status = TaskStatus.LEASED
                task.lease_owner = owner
                task.leased_until = now + timedelta(seconds=lease_seconds)
                task.attempts += 1
                task.save(update_fields=["status", "lease_owner", "leased_until", "attempts", "updated_at"])
        if leased:
            logger.debug("Leased %d task(s) from pool %s for %s", len(leased), pool, owner)
        return leased

    # ---------- outcome ----------
    def complete(self, task: PullTask) -> None:
        task.status = TaskStatus.COMPLETED
        task.leased_until = None
        task.finished_at = timezone.now()
        task.save(update_fields=["status", "leased_until", "finished_at", "updated_at"])
        logger.debug("Task %s completed", task.pk)

    def fail_permanently(self, task: PullTask, reason: str) -> None:
        task.status = TaskStatus.FAILED
        task.last_error = reason or ""
        task.leased_until = None
        task.finished_at = timezone.now()
        task.save(update_fields=["status", "last_error", "leased_until", "finished_at", "updated_at"])
        logger.warning("Task %s:%s failed permanently: %s", task.name, task.business_key, reason)

    def fail_and_retry(self, task: PullTask, reason: str, max_attempts: int | None = None) -> None:
        """Record a failed lease and put the task back with queue backoff.

        ``max_attempts`` of 0 (or None with the task's own 0) never gives up.
        """
        limit = task.max_attempts if max_attempts is None else max_attempts
        if limit and task.attempts >= limit:
            self.fail_permanently(task, f"Giving up after {task.attempts} attempts: {reason}")
            return

        superseding = self.pending_for(task.name, task.business_key)
        if superseding is not None and superseding.pk != task.pk:
            self.fail_permanently(task, f"{reason} (superseded by pending task {superseding.pk})")
            return

        task.status = TaskStatus.PENDING
        task.last_error = reason or ""
        task.leased_until = None
        task.due_at = timezone.now() + retry_delay(task.attempts)
        try:
            with transaction.atomic():
                task.save(update_fields=["status", "last_error", "leased_until", "due_at", "updated_at"])
        except IntegrityError:
            self.fail_permanently(task, f"{reason} (superseded by a concurrently enqueued task)")
            return
        logger.warning("Task %s:%s failed (attempt %d), retry at %s: %s",
                       task.name, task.business_key, task.attempts, task.due_at, reason)
