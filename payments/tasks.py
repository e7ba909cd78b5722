"""Transaction status reconciliation.

A transaction accepted by the gateway stays PENDING until a webhook or a
status query resolves it. ``QueryPaymentStatusTask`` polls the gateway for
one transaction per lease and reschedules itself with a growing interval
until the status is final or 24 hours have passed.
"""
import json
import logging
import uuid
from datetime import timedelta

from django.utils import timezone

from merchants.context import ApiContext, merchant_context_for
from pulltasks.exceptions import TaskPayloadError
from pulltasks.queue import TaskQueue
from pulltasks.registry import register

from . import services
from .models import PaymentTransaction, TransactionStatus

logger = logging.getLogger(__name__)

TASK_NAME = "query-payment-status"
TIMEOUT_PERIOD = timedelta(hours=24)
FIRST_QUERY_DELAY = timedelta(seconds=60)

# (elapsed below, next query in)
INTERVALS = (
    (timedelta(hours=1), timedelta(seconds=60)),
    (timedelta(hours=3), timedelta(seconds=600)),
)
INTERVAL_AFTER_3_HOURS = timedelta(seconds=3600)


def next_interval(elapsed: timedelta) -> timedelta:
    for bound, interval in INTERVALS:
        if elapsed < bound:
            return interval
    return INTERVAL_AFTER_3_HOURS


def task_payload(transaction_id) -> str:
    return json.dumps({"transactionId": str(transaction_id)})


def schedule_status_query(txn: PaymentTransaction, queue: TaskQueue | None = None):
    """Enqueue the first status query for ``txn``, due in 60 seconds."""
    queue = queue or TaskQueue()
    task = queue.new_task(
        TASK_NAME,
        str(txn.pk),
        payload=task_payload(txn.pk),
        due_at=timezone.now() + FIRST_QUERY_DELAY,
        version=QueryPaymentStatusTask.version,
        max_attempts=QueryPaymentStatusTask.max_attempts,
    )
    task = queue.enqueue_unique(task)
    logger.info("Scheduled status query for transaction %s at %s", txn.pk, task.due_at)
    return task


@register
class QueryPaymentStatusTask:
    name = TASK_NAME
    version = "1.0"
    # unbounded, the 24h timeout ends the polling
    max_attempts = 0

    def execute(self, task, queue: TaskQueue):
        logger.debug("Executing %s: businessKey=%s, id=%s", self.name, task.business_key, task.pk)
        transaction_id = self._transaction_id(task)

        txn = PaymentTransaction.objects.select_related("merchant").filter(pk=transaction_id).first()
        if txn is None:
            raise services.PaymentError(f"PaymentTransaction not found: {transaction_id}", "paymentTransactionNotFound")

        if txn.status != TransactionStatus.PENDING:
            logger.info("Transaction %s is no longer PENDING (status: %s), completing task", txn.pk, txn.status)
            return

        started = txn.request_timestamp or txn.created_at
        elapsed = timezone.now() - started

        if elapsed >= TIMEOUT_PERIOD:
            hours = int(TIMEOUT_PERIOD.total_seconds() // 3600)
            logger.warning("Transaction %s timed out after %s, marking as ABANDONED", txn.pk, elapsed)
            txn.status = TransactionStatus.ABANDONED
            txn.status_description = f"Timed out after {hours} hours without final status"
            txn.save(update_fields=["status", "status_description", "updated_at"])
            queue.fail_permanently(task, f"Transaction timed out after {hours} hours")
            return

        context = self._api_context(txn)
        logger.info("Querying gateway for transaction: %s, orderId: %s, elapsed: %d minutes",
                    txn.pk, txn.order_id, elapsed.total_seconds() // 60)
        updated = services.query_payment_from_gateway(txn.pk, context)

        if updated.status == TransactionStatus.PENDING:
            due_at = timezone.now() + next_interval(elapsed)
            queue.enqueue_unique_continuation(task.business_key, task, due_at)
        else:
            logger.info("Transaction %s now has final status: %s", txn.pk, updated.status)

    def _transaction_id(self, task) -> str:
        if not (task.payload or "").strip():
            raise TaskPayloadError("Task payload is empty")
        try:
            data = json.loads(task.payload)
        except ValueError as e:
            raise TaskPayloadError(f"Task payload is not valid JSON: {e}") from e
        transaction_id = data.get("transactionId") if isinstance(data, dict) else None
        if not transaction_id or not isinstance(transaction_id, str):
            raise TaskPayloadError("Task payload has no transactionId")
        try:
            return str(uuid.UUID(transaction_id))
        except ValueError as e:
            raise TaskPayloadError(f"Task payload transactionId is not a UUID: {transaction_id!r}") from e

    def _api_context(self, txn: PaymentTransaction) -> ApiContext:
        # environment of the transaction wins; older rows fall back to the merchant's current mode
        mode = txn.environment or txn.merchant.mode
        merchant_context = merchant_context_for(txn.merchant, mode)
        return ApiContext(merchant_id=str(txn.merchant_id), merchant_context=merchant_context)
