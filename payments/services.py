import json
import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.utils import timezone

from merchants.context import ApiContext, MerchantConfigurationError, api_context_for
from merchants.models import Merchant

from .integrations.envelope import GatewayMessage, parse_envelope
from .integrations.errors import GatewayError, GatewayResponseError
from .integrations.gateway import GatewayClient, GatewayConfig, GatewayTrace
from .integrations.replies import ClientDetails, PaymentReply, PaymentRequest, parse_decimal
from .integrations.signature import verify_webhook_signature
from .merger import Merger
from .models import Currency, PaymentBrand, PaymentTransaction, TransactionStatus

logger = logging.getLogger(__name__)

PLACEMENT_ACCEPTED_CODES = (200, 201, 210)
NO_DESCRIPTION = "No status description available"


class PaymentError(Exception):
    def __init__(self, message, code="paymentError"):
        super().__init__(message)
        self.code = code


# ---------- helpers ----------
def status_from_reply(reply: PaymentReply | None):
    """Map a gateway reply to a transaction status, None when it says nothing definite."""
    if reply is None:
        return None
    result, success = reply.result, reply.success
    if result == "0":
        return TransactionStatus.SUCCESS
    if result == "1":
        return TransactionStatus.PENDING
    if result == "11":
        return TransactionStatus.ABANDONED
    if success == "Y":
        return TransactionStatus.SUCCESS
    if success == "N":
        return TransactionStatus.FAILED
    return None


def prepare_status_description(message: GatewayMessage | None) -> str:
    if message is None:
        return NO_DESCRIPTION
    detail = (message.detail or "").strip()
    reason = (message.reason or "").strip()
    text = (message.message or "").strip()
    if detail and reason:
        return f"{detail}. {reason}"
    return detail or reason or text or NO_DESCRIPTION


def _backoffice_url() -> str:
    base = (getattr(settings, "PAYMENTS_WEBHOOK_BASE_URL", "") or "").strip()
    if not base:
        return ""
    return base.rstrip("/") + "/public/webhook"


def _gateway_config(context: ApiContext, txn: PaymentTransaction) -> GatewayConfig:
    if context is None or context.merchant_context is None:
        raise PaymentError("Merchant context is required", "merchantContextRequired")
    return GatewayConfig.from_context(
        context.merchant_context,
        reply_url=txn.reply_url or None,
        backoffice_url=txn.backoffice_url or None,
        currency=txn.currency,
        payment_type=txn.payment_brand,
    )


def _payment_request(txn: PaymentTransaction, client_details: ClientDetails | None) -> PaymentRequest:
    return PaymentRequest(
        client_id=txn.client_id,
        order_id=txn.order_id,
        amount=txn.amount,
        currency=txn.currency,
        card_type=txn.payment_brand,
        reply_url=txn.reply_url or None,
        backoffice_url=txn.backoffice_url or None,
        echo=txn.echo or None,
        client=client_details,
    )


def update_merchant_balance(merchant_id, balance) -> bool:
    if balance is None:
        logger.warning("Balance is null for merchant balance update, merchant %s", merchant_id)
        return False
    merchant = Merchant.objects.filter(pk=merchant_id).first()
    if merchant is None:
        logger.warning("Merchant not found for balance update: %s", merchant_id)
        return False
    if merchant.balance is not None and Decimal(merchant.balance) == Decimal(balance):
        logger.debug("Balance unchanged for merchant %s", merchant_id)
        return False
    old = merchant.balance
    merchant.balance = balance
    merchant.save(update_fields=["balance", "updated_at"])
    logger.info("Updated merchant balance - MerchantID: %s, old balance: %s, new balance: %s", merchant_id, old, balance)
    return True


# ---------- transactions ----------
def create_transaction(merchant: Merchant, context: ApiContext, *, order_id, client_id, amount, currency,
                       payment_brand, reply_url="", echo="", client_details: ClientDetails | None = None,
                       send_email=False, gateway: GatewayClient | None = None) -> PaymentTransaction:
    """Validate, persist as RECEIVED and place a new payment with the gateway."""
    if not context.can_access(merchant.pk):
        raise PaymentError(f"You cannot post transactions for merchant: {merchant.pk}", "accessDenied")
    if not (client_id or "").strip():
        raise PaymentError("Client ID is required", "clientIdRequired")
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        raise PaymentError("Amount is required", "amountRequired")
    amount = parse_decimal(amount)
    if amount is None or amount <= 0:
        raise PaymentError("Amount must be greater than zero", "invalidAmount")
    if currency not in Currency.values:
        raise PaymentError("Currency is required", "currencyRequired")
    if payment_brand not in PaymentBrand.values:
        raise PaymentError("Payment brand is required", "paymentBrandRequired")
    if not (order_id or "").strip():
        raise PaymentError("Order ID is required", "orderIdRequired")
    if PaymentTransaction.objects.filter(merchant=merchant, order_id=order_id).exists():
        raise PaymentError("Duplicate OrderId", "duplicateOrderId")

    now = timezone.now()
    txn = PaymentTransaction.objects.create(
        merchant=merchant,
        order_id=order_id,
        client_id=client_id,
        amount=amount,
        currency=currency,
        payment_brand=payment_brand,
        reply_url=reply_url or "",
        backoffice_url=_backoffice_url(),
        echo=echo or "",
        environment=context.merchant_context.mode if context.merchant_context else merchant.mode,
        status=TransactionStatus.RECEIVED,
        request_timestamp=now.replace(microsecond=now.microsecond // 1000 * 1000),
    )
    logger.info("createPayment(%s) merchant=%s environment=%s", order_id, merchant.pk, txn.environment)
    place_payment(txn, context, gateway=gateway, client_details=client_details, send_email=send_email)
    return txn


def place_payment(txn: PaymentTransaction, context: ApiContext, gateway: GatewayClient | None = None,
                  client_details: ClientDetails | None = None, send_email=False) -> PaymentTransaction:
    """Submit ``txn`` to the gateway and record the outcome.

    Accepted placements (200/201/210) move to PENDING and get a status query
    scheduled; anything the gateway rejects is FAILED. A transport error
    leaves the transaction RECEIVED.
    """
    config = _gateway_config(context, txn)
    gateway = gateway or GatewayClient()
    trace = GatewayTrace()
    request = _payment_request(txn, client_details)
    request.send_email = 1 if send_email else 0

    problem = request.validation_error()
    if problem:
        txn.status = TransactionStatus.FAILED
        txn.status_description = f"ERROR: {problem}"
        txn.save()
        logger.warning("Payment %s not placed: %s", txn.order_id, problem)
        return txn

    body = None
    try:
        body = gateway.place_transaction(request, config, trace)
    except GatewayError as e:
        logger.exception("Error placing payment %s", txn.order_id)
        txn.status_description = f"ERROR: {e}"

    txn.request_data = trace.request_body or ""
    txn.initial_response_data = trace.response_body or ""
    txn.signature = request.signature or ""
    txn.signature_version = request.signature_version or ""

    if body is not None:
        try:
            envelope = parse_envelope(body, PaymentReply)
        except GatewayResponseError as e:
            logger.error("Unreadable placement response for %s: %s", txn.order_id, e)
            txn.status = TransactionStatus.FAILED
            txn.status_description = "ERROR: Gateway response is not readable"
        else:
            if envelope.response is None:
                txn.status = TransactionStatus.FAILED
                txn.status_description = "ERROR: Gateway response is null"
            elif envelope.status_code in PLACEMENT_ACCEPTED_CODES:
                txn.status = TransactionStatus.PENDING
                txn.status_description = prepare_status_description(envelope.response)
            else:
                txn.status = TransactionStatus.FAILED
                txn.status_description = prepare_status_description(envelope.response)
    txn.save()

    if txn.status == TransactionStatus.PENDING:
        from .tasks import schedule_status_query
        schedule_status_query(txn)
    return txn


def merge_reply(txn: PaymentTransaction, reply: PaymentReply | None, response_body: str | None) -> PaymentTransaction:
    if reply is None:
        logger.debug("No reply to merge for transaction %s", txn.pk)
        return txn

    merger = Merger(txn)
    if reply.amount is not None:
        merger.merge_decimal("Amount", "amount", reply.amount)
    merger.merge_decimal("Balance", "balance", reply.balance)
    merger.merge("Status Description", "status_description", reply.detail)
    merger.merge("Status", "status", status_from_reply(reply))

    if not merger.has_changes:
        logger.debug("No changes detected for payment transaction - ID: %s, MerchantID: %s, OrderID: %s",
                     txn.pk, txn.merchant_id, txn.order_id)
        return txn

    if reply.date is not None:
        txn.last_query_data = response_body or ""
    logger.info("Payment transaction updated - ID: %s, MerchantID: %s, OrderID: %s, Changes: %s",
                txn.pk, txn.merchant_id, txn.order_id, merger.change_log)
    txn.save()
    return txn


def query_payment_from_gateway(transaction_id, context: ApiContext, gateway: GatewayClient | None = None) -> PaymentTransaction:
    """Ask the gateway for the current state of a transaction and merge it.

    Safe to call repeatedly; an unchanged reply writes nothing.
    """
    if context is None or context.merchant_context is None:
        raise PaymentError("Merchant context is required", "merchantContextRequired")
    try:
        txn = PaymentTransaction.objects.filter(pk=transaction_id).first()
    except (ValidationError, ValueError):
        txn = None
    if txn is None:
        raise PaymentError("PaymentTransaction not found", "paymentTransactionNotFound")
    if not context.can_access(txn.merchant_id):
        raise PaymentError(f"You cannot query transactions for merchant: {txn.merchant_id}", "accessDenied")

    config = _gateway_config(context, txn)
    gateway = gateway or GatewayClient()
    trace = GatewayTrace()
    envelope = gateway.query_transaction(txn.order_id, config, trace)

    if envelope.status_code == 200:
        # reread, a webhook may have landed meanwhile
        txn = PaymentTransaction.objects.get(pk=txn.pk)
        reply = envelope.reply if isinstance(envelope.reply, PaymentReply) else None
        txn = merge_reply(txn, reply, trace.response_body)

    if txn.balance is not None:
        logger.info("Publishing merchant balance for merchant %s: %s", txn.merchant_id, txn.balance)
        update_merchant_balance(txn.merchant_id, txn.balance)
    return txn


# ---------- webhook ----------
def _merchant_by_gateway_mid(mid: str) -> Merchant | None:
    return (
        Merchant.objects.filter(remote_test_merchant_id=mid).first()
        or Merchant.objects.filter(remote_prod_merchant_id=mid).first()
    )


def process_webhook(reply: PaymentReply, raw_body: str | None = None) -> bool:
    """Apply a gateway notification. Returns False for anything that cannot be trusted or matched."""
    logger.info("Processing webhook for OrderID: %s, MerchantID: %s, Success: %s",
                reply.order_id, reply.merchant_id, reply.success)
    if not reply.order_id or not reply.merchant_id:
        logger.warning("Webhook missing required fields - OrderID: %s, MerchantID: %s", reply.order_id, reply.merchant_id)
        return False

    merchant = _merchant_by_gateway_mid(reply.merchant_id)
    if merchant is None:
        logger.warning("Merchant not found for remote ID: %s", reply.merchant_id)
        return False

    merchant_key = merchant.merchant_key_by_mode
    if not merchant_key:
        logger.error("Cannot verify signature: merchant key not found for MerchantID: %s", reply.merchant_id)
        return False
    if not verify_webhook_signature(reply, merchant_key):
        logger.error("Signature verification failed for webhook - MerchantID: %s, OrderID: %s",
                     reply.merchant_id, reply.order_id)
        return False

    txn = PaymentTransaction.objects.filter(merchant=merchant, order_id=reply.order_id).first()
    if txn is None:
        logger.warning("No payment transaction found for webhook - resolvedMerchantID: %s, OrderID: %s, remoteMerchantID: %s",
                       merchant.pk, reply.order_id, reply.merchant_id)
        return False

    body = raw_body if raw_body is not None else json.dumps(reply.to_dict())
    txn.callback_timestamp = timezone.now()
    txn.callback_data = body
    txn.save(update_fields=["callback_timestamp", "callback_data", "updated_at"])
    txn = merge_reply(txn, reply, body)

    if txn.balance is None:
        logger.info("Balance is null after webhook processing, refreshing balance for transaction: %s", txn.pk)
        transaction_id = txn.pk
        db_transaction.on_commit(lambda: refresh_balance(transaction_id))
    return True


def process_webhook_body(body) -> bool:
    """Decode a raw webhook body and hand it to :func:`process_webhook`."""
    try:
        data = json.loads(body, parse_float=Decimal)
    except (TypeError, ValueError):
        logger.warning("Webhook body is not valid JSON")
        return False
    if not isinstance(data, dict):
        logger.warning("Webhook body is not a JSON object")
        return False
    raw = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    return process_webhook(PaymentReply.from_dict(data), raw)


def refresh_balance(transaction_id, gateway: GatewayClient | None = None):
    """Re-query a transaction with its merchant's current mode to pick up the balance.

    Runs outside any request; failures are logged and dropped.
    """
    logger.info("Querying payment from gateway for balance update: %s", transaction_id)
    try:
        txn = PaymentTransaction.objects.select_related("merchant").get(pk=transaction_id)
        context = api_context_for(txn.merchant)
        return query_payment_from_gateway(txn.pk, context, gateway=gateway)
    except (PaymentTransaction.DoesNotExist, MerchantConfigurationError, PaymentError, GatewayError):
        logger.exception("Error processing balance update for transaction: %s", transaction_id)
        return None
