from django.core.management.base import BaseCommand

from payments.models import PaymentTransaction, TransactionStatus
from payments.tasks import TASK_NAME, schedule_status_query
from pulltasks.models import PullTask, TaskStatus


class Command(BaseCommand):
    help = "Schedule a status query for every PENDING transaction that has none waiting"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=500)
        parser.add_argument("--dry-run", action="store_true")

    def handle(self, *args, **opts):
        waiting = set(
            PullTask.objects.filter(name=TASK_NAME, status__in=[TaskStatus.PENDING, TaskStatus.LEASED])
            .values_list("business_key", flat=True)
        )
        qs = PaymentTransaction.objects.filter(status=TransactionStatus.PENDING).order_by("created_at")
        orphans = [t for t in qs.iterator() if str(t.pk) not in waiting][:opts["max"]]

        if not orphans:
            self.stdout.write(self.style.SUCCESS("No pending transactions to reconcile."))
            return

        for txn in orphans:
            if opts["dry_run"]:
                self.stdout.write(self.style.WARNING(f"Would schedule {txn.order_id} ({txn.pk})"))
                continue
            task = schedule_status_query(txn)
            self.stdout.write(self.style.SUCCESS(f"Scheduled {txn.order_id} -> task {task.pk}"))
