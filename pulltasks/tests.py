from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from . import registry
from .agent import TaskLeasingAgent
from .exceptions import TaskPayloadError, UnknownTaskError
from .models import PullTask, TaskStatus
from .queue import TaskQueue, retry_delay


class RecordingHandler:
    name = "test-recording"
    version = "1.0"
    max_attempts = 0
    calls = []
    behaviour = None

    def execute(self, task, queue):
        RecordingHandler.calls.append(task.pk)
        if RecordingHandler.behaviour is not None:
            RecordingHandler.behaviour(task, queue)


registry.register(RecordingHandler)


class TaskQueueTests(TestCase):
    def setUp(self):
        self.queue = TaskQueue(owner="owner", pool="default")

    def _task(self, key="k1", due_at=None):
        return self.queue.new_task("test-recording", key, payload='{"x": 1}', due_at=due_at)

    def test_enqueue_unique_returns_existing_pending_task(self):
        first = self.queue.enqueue_unique(self._task())
        second = self.queue.enqueue_unique(self._task())
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(PullTask.objects.filter(status=TaskStatus.PENDING).count(), 1)

    def test_enqueue_unique_allows_new_task_once_previous_is_finished(self):
        first = self.queue.enqueue_unique(self._task())
        self.queue.complete(first)
        second = self.queue.enqueue_unique(self._task())
        self.assertNotEqual(first.pk, second.pk)

    def test_lease_only_due_tasks_oldest_first(self):
        now = timezone.now()
        later = self.queue.enqueue(self._task("late", now - timedelta(seconds=5)))
        early = self.queue.enqueue(self._task("early", now - timedelta(minutes=5)))
        self.queue.enqueue(self._task("future", now + timedelta(hours=1)))

        leased = self.queue.lease(limit=10, lease_seconds=60, owner="agent")

        self.assertEqual([t.pk for t in leased], [early.pk, later.pk])
        for task in leased:
            task.refresh_from_db()
            self.assertEqual(task.status, TaskStatus.LEASED)
            self.assertEqual(task.attempts, 1)
            self.assertEqual(task.lease_owner, "agent")

    def test_lease_respects_limit_and_pool(self):
        self.queue.enqueue(self._task("a"))
        self.queue.enqueue(self._task("b"))
        other = TaskQueue(owner="owner", pool="other")
        other.enqueue(other.new_task("test-recording", "c"))

        self.assertEqual(len(self.queue.lease(limit=1)), 1)
        self.assertEqual(len(self.queue.lease(limit=10)), 1)
        self.assertEqual(len(self.queue.lease(limit=10, pool="other")), 1)

    def test_expired_lease_is_leased_again(self):
        task = self.queue.enqueue(self._task())
        self.queue.lease(limit=1)
        PullTask.objects.filter(pk=task.pk).update(leased_until=timezone.now() - timedelta(seconds=1))

        again = self.queue.lease(limit=1)
        self.assertEqual([t.pk for t in again], [task.pk])
        self.assertEqual(again[0].attempts, 2)

    def test_continuation_links_parent_and_dedups(self):
        task = self.queue.enqueue(self._task())
        (leased,) = self.queue.lease(limit=1)
        due = timezone.now() + timedelta(minutes=1)

        first = self.queue.enqueue_unique_continuation("k1", leased, due)
        second = self.queue.enqueue_unique_continuation("k1", leased, due + timedelta(minutes=5))

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.parent_id, task.pk)
        self.assertEqual(first.payload, task.payload)
        self.assertEqual(first.due_at, due)

    def test_fail_and_retry_backs_off(self):
        task = self.queue.enqueue(self._task())
        (leased,) = self.queue.lease(limit=1)
        before = timezone.now()

        self.queue.fail_and_retry(leased, "boom")

        leased.refresh_from_db()
        self.assertEqual(leased.status, TaskStatus.PENDING)
        self.assertEqual(leased.last_error, "boom")
        self.assertGreaterEqual(leased.due_at, before + timedelta(seconds=60))

    def test_fail_and_retry_gives_up_when_bounded(self):
        self.queue.enqueue(self._task())
        (leased,) = self.queue.lease(limit=1)
        self.queue.fail_and_retry(leased, "boom", max_attempts=1)
        leased.refresh_from_db()
        self.assertEqual(leased.status, TaskStatus.FAILED)

    def test_fail_and_retry_superseded_by_pending_continuation(self):
        self.queue.enqueue(self._task())
        (leased,) = self.queue.lease(limit=1)
        self.queue.enqueue_unique_continuation("k1", leased, timezone.now())

        self.queue.fail_and_retry(leased, "boom")

        leased.refresh_from_db()
        self.assertEqual(leased.status, TaskStatus.FAILED)
        self.assertIn("superseded", leased.last_error)
        self.assertEqual(PullTask.objects.filter(status=TaskStatus.PENDING).count(), 1)

    def test_retry_delay_doubles_and_caps(self):
        self.assertEqual(retry_delay(1), timedelta(seconds=60))
        self.assertEqual(retry_delay(2), timedelta(seconds=120))
        self.assertEqual(retry_delay(3), timedelta(seconds=240))
        self.assertEqual(retry_delay(50), timedelta(hours=1))


class TaskLeasingAgentTests(TestCase):
    def setUp(self):
        RecordingHandler.calls = []
        RecordingHandler.behaviour = None
        self.queue = TaskQueue(owner="owner", pool="default")
        self.agent = TaskLeasingAgent("agent", max_workers=1, lease_seconds=60, queue=self.queue)

    def tearDown(self):
        RecordingHandler.behaviour = None

    def _enqueue(self, name="test-recording"):
        return self.queue.enqueue(self.queue.new_task(name, "k1"))

    def test_successful_run_completes_task(self):
        task = self._enqueue()
        self.assertEqual(self.agent.lease_and_execute_tasks(), 1)
        task.refresh_from_db()
        self.assertEqual(RecordingHandler.calls, [task.pk])
        self.assertEqual(task.status, TaskStatus.COMPLETED)
        self.assertIsNotNone(task.finished_at)

    def test_nothing_due_returns_zero(self):
        self.assertEqual(self.agent.lease_and_execute_tasks(), 0)

    def test_permanent_error_fails_without_retry(self):
        def corrupt(task, queue):
            raise TaskPayloadError("bad payload")

        RecordingHandler.behaviour = corrupt
        task = self._enqueue()
        with self.assertLogs("pulltasks.agent", level="ERROR"):
            self.agent.lease_and_execute_tasks()
        task.refresh_from_db()
        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.last_error, "bad payload")

    def test_other_error_is_retried(self):
        def flaky(task, queue):
            raise RuntimeError("gateway down")

        RecordingHandler.behaviour = flaky
        task = self._enqueue()
        with self.assertLogs("pulltasks.agent", level="ERROR"):
            self.agent.lease_and_execute_tasks()
        task.refresh_from_db()
        self.assertEqual(task.status, TaskStatus.PENDING)
        self.assertIn("gateway down", task.last_error)

    def test_handler_that_finishes_task_itself_is_not_completed(self):
        def give_up(task, queue):
            queue.fail_permanently(task, "timed out")

        RecordingHandler.behaviour = give_up
        task = self._enqueue()
        self.agent.lease_and_execute_tasks()
        task.refresh_from_db()
        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.last_error, "timed out")

    def test_unknown_task_fails_permanently(self):
        task = self._enqueue(name="nobody-handles-this")
        with self.assertLogs("pulltasks.agent", level="ERROR"):
            self.agent.lease_and_execute_tasks()
        task.refresh_from_db()
        self.assertEqual(task.status, TaskStatus.FAILED)

    def test_handler_for_unknown_name_raises(self):
        with self.assertRaises(UnknownTaskError):
            registry.handler_for("nobody-handles-this")


class RunTaskAgentCommandTests(TestCase):
    def setUp(self):
        RecordingHandler.calls = []
        RecordingHandler.behaviour = None

    def test_once_executes_due_tasks(self):
        queue = TaskQueue()
        task = queue.enqueue(queue.new_task("test-recording", "cmd"))
        out = StringIO()
        call_command("run_task_agent", "--once", "--max-workers", "1", stdout=out)
        task.refresh_from_db()
        self.assertEqual(task.status, TaskStatus.COMPLETED)
        self.assertIn("Executed 1 task(s)", out.getvalue())

    def test_once_with_nothing_due(self):
        out = StringIO()
        call_command("run_task_agent", "--once", stdout=out)
        self.assertIn("No due tasks.", out.getvalue())
