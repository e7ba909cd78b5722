import json
from decimal import Decimal
from unittest.mock import patch

import requests
from django.test import TestCase, override_settings

from merchants.context import api_context_for
from merchants.models import Merchant, MerchantMode, MerchantStatus
from pulltasks.models import PullTask, TaskStatus

from . import services
from .integrations.envelope import GatewayMessage
from .integrations.gateway import GatewayClient
from .integrations.replies import PaymentReply
from .integrations.signature import sign_reply
from .models import PaymentTransaction, TransactionStatus
from .tasks import TASK_NAME

QUERY_REPLY = {
    "response": {"statusCode": 200, "message": "OK"},
    "reply": {
        "amount": "25.00",
        "balance": "125.50",
        "clientID": "TheClient",
        "currency": "USD",
        "date": "2024-07-16T06:20:53.281Z",
        "detail": "Successfully completed",
        "merchantID": "MID-TEST",
        "orderID": "ORD-1",
        "result": "0",
        "success": "Y",
    },
}


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, *responses, exc=None):
        self.responses = list(responses)
        self.exc = exc
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.exc:
            raise self.exc
        return self.responses.pop(0)


def make_merchant(**overrides):
    fields = dict(
        name="Shop",
        mode=MerchantMode.TEST,
        status=MerchantStatus.ACTIVE,
        remote_test_url="https://gw-test.example.com",
        remote_test_merchant_id="MID-TEST",
        remote_test_merchant_key="test-key",
        remote_test_api_key="test-api",
        remote_prod_url="https://gw.example.com",
        remote_prod_merchant_id="MID-PROD",
        remote_prod_merchant_key="prod-key",
        remote_prod_api_key="prod-api",
    )
    fields.update(overrides)
    return Merchant.objects.create(**fields)


def make_transaction(merchant, **overrides):
    fields = dict(
        merchant=merchant,
        order_id="ORD-1",
        client_id="TheClient",
        amount=Decimal("25.00"),
        currency="USD",
        payment_brand="UnionPay",
        status=TransactionStatus.PENDING,
        environment=MerchantMode.TEST,
    )
    fields.update(overrides)
    return PaymentTransaction.objects.create(**fields)


class StatusMappingTests(TestCase):
    def test_result_codes(self):
        self.assertEqual(services.status_from_reply(PaymentReply(result="0", success="N")), TransactionStatus.SUCCESS)
        self.assertEqual(services.status_from_reply(PaymentReply(result="1")), TransactionStatus.PENDING)
        self.assertEqual(services.status_from_reply(PaymentReply(result="11", success="N")), TransactionStatus.ABANDONED)

    def test_success_flag_fallback(self):
        self.assertEqual(services.status_from_reply(PaymentReply(result="5", success="Y")), TransactionStatus.SUCCESS)
        self.assertEqual(services.status_from_reply(PaymentReply(success="N")), TransactionStatus.FAILED)
        self.assertIsNone(services.status_from_reply(PaymentReply()))
        self.assertIsNone(services.status_from_reply(None))

    def test_status_description(self):
        self.assertEqual(services.prepare_status_description(GatewayMessage(detail=" Declined ", reason="Limit")), "Declined. Limit")
        self.assertEqual(services.prepare_status_description(GatewayMessage(detail="Declined")), "Declined")
        self.assertEqual(services.prepare_status_description(GatewayMessage(reason="Limit")), "Limit")
        self.assertEqual(services.prepare_status_description(GatewayMessage(message="OK")), "OK")
        self.assertEqual(services.prepare_status_description(GatewayMessage()), "No status description available")
        self.assertEqual(services.prepare_status_description(None), "No status description available")


class CreateTransactionTests(TestCase):
    def setUp(self):
        self.merchant = make_merchant()
        self.context = api_context_for(self.merchant)

    def _create(self, session, **overrides):
        kwargs = dict(order_id="ABC-123", client_id="CLN-1", amount="10.12", currency="USD", payment_brand="UnionPay")
        kwargs.update(overrides)
        return services.create_transaction(self.merchant, self.context, gateway=GatewayClient(session=session), **kwargs)

    def test_accepted_placement_goes_pending_and_schedules_query(self):
        session = FakeSession(FakeResponse(200, '{"response":{"statusCode":210,"message":"Accepted","detail":"Waiting"}}'))
        txn = self._create(session)

        txn.refresh_from_db()
        self.assertEqual(txn.status, TransactionStatus.PENDING)
        self.assertEqual(txn.status_description, "Waiting")
        self.assertEqual(txn.environment, MerchantMode.TEST)
        self.assertIsNotNone(txn.request_timestamp)
        self.assertEqual(len(txn.signature), 32)
        self.assertEqual(txn.signature_version, "1.0")
        self.assertIn('"orderID": "ABC-123"', txn.request_data)
        self.assertIn("Accepted", txn.initial_response_data)
        self.assertEqual(session.calls[0][1], "https://gw-test.example.com/merchants/MID-TEST/transactions/")

        task = PullTask.objects.get(name=TASK_NAME)
        self.assertEqual(task.business_key, str(txn.pk))
        self.assertEqual(json.loads(task.payload), {"transactionId": str(txn.pk)})
        self.assertEqual(task.status, TaskStatus.PENDING)

    def test_rejected_placement_fails(self):
        session = FakeSession(FakeResponse(400, '{"response":{"statusCode":400,"message":"Bad Request","detail":"Amount out of range"}}'))
        with self.assertLogs("payments.integrations.gateway", level="ERROR"):
            txn = self._create(session)
        txn.refresh_from_db()
        self.assertEqual(txn.status, TransactionStatus.FAILED)
        self.assertEqual(txn.status_description, "Amount out of range")
        self.assertFalse(PullTask.objects.exists())

    def test_transport_error_leaves_received(self):
        session = FakeSession(exc=requests.ConnectionError("refused"))
        with self.assertLogs("payments.services", level="ERROR"):
            txn = self._create(session)
        txn.refresh_from_db()
        self.assertEqual(txn.status, TransactionStatus.RECEIVED)
        self.assertTrue(txn.status_description.startswith("ERROR:"))

    def test_duplicate_order_rejected(self):
        make_transaction(self.merchant, order_id="ABC-123")
        with self.assertRaises(services.PaymentError) as cm:
            self._create(FakeSession())
        self.assertEqual(cm.exception.code, "duplicateOrderId")

    def test_validation(self):
        cases = [
            (dict(client_id=""), "clientIdRequired"),
            (dict(amount="0"), "invalidAmount"),
            (dict(amount=None), "amountRequired"),
            (dict(amount=" "), "amountRequired"),
            (dict(amount="NaN"), "invalidAmount"),
            (dict(amount="Infinity"), "invalidAmount"),
            (dict(amount="ten"), "invalidAmount"),
            (dict(currency="XXX"), "currencyRequired"),
            (dict(payment_brand="Visa"), "paymentBrandRequired"),
            (dict(order_id=" "), "orderIdRequired"),
        ]
        for overrides, code in cases:
            with self.subTest(code=code):
                with self.assertRaises(services.PaymentError) as cm:
                    self._create(FakeSession(), **overrides)
                self.assertEqual(cm.exception.code, code)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_other_merchant_context_denied(self):
        other = make_merchant(name="Other", remote_test_merchant_id="MID-OTHER")
        with self.assertRaises(services.PaymentError) as cm:
            services.create_transaction(other, self.context, order_id="X", client_id="C", amount="1",
                                        currency="USD", payment_brand="Alipay", gateway=GatewayClient(session=FakeSession()))
        self.assertEqual(cm.exception.code, "accessDenied")

    @override_settings(PAYMENTS_WEBHOOK_BASE_URL="https://acquiring.example.com/")
    def test_backoffice_url_from_settings(self):
        session = FakeSession(FakeResponse(200, '{"response":{"statusCode":200,"message":"OK"}}'))
        txn = self._create(session)
        self.assertEqual(txn.backoffice_url, "https://acquiring.example.com/public/webhook")
        body = json.loads(session.calls[0][2]["data"])
        self.assertEqual(body["backofficeURL"], "https://acquiring.example.com/public/webhook")


class QueryPaymentTests(TestCase):
    def setUp(self):
        self.merchant = make_merchant()
        self.context = api_context_for(self.merchant)
        self.txn = make_transaction(self.merchant)

    def test_query_merges_reply_and_publishes_balance(self):
        session = FakeSession(FakeResponse(200, json.dumps(QUERY_REPLY)))
        with self.assertLogs("payments.services", level="INFO") as cm:
            txn = services.query_payment_from_gateway(self.txn.pk, self.context, gateway=GatewayClient(session=session))

        self.assertEqual(session.calls[0][1], "https://gw-test.example.com/merchants/MID-TEST/transactions/ORD-1")
        self.assertEqual(txn.status, TransactionStatus.SUCCESS)
        self.assertEqual(txn.balance, Decimal("125.50"))
        self.assertEqual(txn.status_description, "Successfully completed")
        self.assertIn('"orderID": "ORD-1"', txn.last_query_data)
        self.assertTrue(any("Status ('PENDING'->'SUCCESS')" in line for line in cm.output))
        self.merchant.refresh_from_db()
        self.assertEqual(self.merchant.balance, Decimal("125.50"))

    def test_non_finite_amount_in_reply_is_ignored(self):
        reply = {"response": QUERY_REPLY["response"], "reply": dict(QUERY_REPLY["reply"], amount="NaN", balance="Infinity")}
        session = FakeSession(FakeResponse(200, json.dumps(reply)))
        with self.assertLogs("payments.integrations.replies", level="WARNING"):
            txn = services.query_payment_from_gateway(self.txn.pk, self.context, gateway=GatewayClient(session=session))
        txn.refresh_from_db()
        self.assertEqual(txn.status, TransactionStatus.SUCCESS)
        self.assertEqual(txn.amount, Decimal("25.00"))
        self.assertIsNone(txn.balance)

    def test_repeated_query_changes_nothing(self):
        body = json.dumps(QUERY_REPLY)
        gateway = GatewayClient(session=FakeSession(FakeResponse(200, body), FakeResponse(200, body)))
        services.query_payment_from_gateway(self.txn.pk, self.context, gateway=gateway)
        first = PaymentTransaction.objects.get(pk=self.txn.pk)

        with patch.object(PaymentTransaction, "save") as save:
            services.query_payment_from_gateway(self.txn.pk, self.context, gateway=gateway)
        save.assert_not_called()
        self.assertEqual(PaymentTransaction.objects.get(pk=self.txn.pk).updated_at, first.updated_at)

    def test_non_200_message_leaves_transaction(self):
        session = FakeSession(FakeResponse(404, '{"response":{"statusCode":404,"message":"Not Found"}}'))
        with self.assertLogs("payments.integrations.gateway", level="ERROR"):
            txn = services.query_payment_from_gateway(self.txn.pk, self.context, gateway=GatewayClient(session=session))
        self.assertEqual(txn.status, TransactionStatus.PENDING)

    def test_missing_context_and_transaction(self):
        with self.assertRaises(services.PaymentError) as cm:
            services.query_payment_from_gateway(self.txn.pk, None)
        self.assertEqual(cm.exception.code, "merchantContextRequired")
        with self.assertRaises(services.PaymentError) as cm:
            services.query_payment_from_gateway("not-a-uuid", self.context)
        self.assertEqual(cm.exception.code, "paymentTransactionNotFound")

    def test_foreign_transaction_denied(self):
        other = make_merchant(name="Other", remote_test_merchant_id="MID-OTHER")
        with self.assertRaises(services.PaymentError) as cm:
            services.query_payment_from_gateway(self.txn.pk, api_context_for(other))
        self.assertEqual(cm.exception.code, "accessDenied")


class MergeReplyTests(TestCase):
    def setUp(self):
        self.txn = make_transaction(make_merchant())

    def test_equal_amount_with_other_scale_is_not_a_change(self):
        reply = PaymentReply(amount=Decimal("25.0"), result="1")
        with patch.object(PaymentTransaction, "save") as save:
            services.merge_reply(self.txn, reply, "{}")
        save.assert_not_called()

    def test_none_values_never_overwrite(self):
        self.txn.balance = Decimal("10.00")
        self.txn.status_description = "Waiting"
        reply = PaymentReply(success="N")
        services.merge_reply(self.txn, reply, "{}")
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, TransactionStatus.FAILED)
        self.assertEqual(self.txn.status_description, "Waiting")

    def test_last_query_data_only_with_reply_date(self):
        services.merge_reply(self.txn, PaymentReply(result="0"), '{"raw": 1}')
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.last_query_data, "")


class WebhookTests(TestCase):
    def setUp(self):
        self.merchant = make_merchant()
        self.txn = make_transaction(self.merchant)

    def _reply(self, key="test-key", **overrides):
        fields = dict(success="Y", result="0", client_id="TheClient", order_id="ORD-1", amount=Decimal("25.00"),
                      currency="USD", merchant_id="MID-TEST", detail="Successfully completed", balance=Decimal("99.00"))
        fields.update(overrides)
        reply = PaymentReply(**fields)
        reply.signature = sign_reply(reply, key)
        return reply

    def test_valid_webhook_updates_transaction(self):
        self.assertTrue(services.process_webhook(self._reply(), raw_body='{"orderID":"ORD-1"}'))
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, TransactionStatus.SUCCESS)
        self.assertEqual(self.txn.balance, Decimal("99.00"))
        self.assertEqual(self.txn.callback_data, '{"orderID":"ORD-1"}')
        self.assertIsNotNone(self.txn.callback_timestamp)

    def test_bad_signature_rejected(self):
        reply = self._reply(key="wrong-key")
        with self.assertLogs("payments.services", level="ERROR"):
            self.assertFalse(services.process_webhook(reply))
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, TransactionStatus.PENDING)

    def test_prod_mid_resolves_merchant(self):
        self.merchant.mode = MerchantMode.LIVE
        self.merchant.save()
        reply = self._reply(key="prod-key", merchant_id="MID-PROD")
        self.assertTrue(services.process_webhook(reply))

    def test_unknown_merchant_or_order(self):
        with self.assertLogs("payments.services", level="WARNING"):
            self.assertFalse(services.process_webhook(self._reply(merchant_id="MID-NOPE")))
        with self.assertLogs("payments.services", level="WARNING"):
            self.assertFalse(services.process_webhook(self._reply(order_id="ORD-404")))
        with self.assertLogs("payments.services", level="WARNING"):
            self.assertFalse(services.process_webhook(PaymentReply(merchant_id="MID-TEST")))

    def test_missing_balance_refreshes_after_commit(self):
        reply = self._reply(balance=None)
        with patch("payments.services.refresh_balance") as refresh:
            with self.captureOnCommitCallbacks(execute=True):
                self.assertTrue(services.process_webhook(reply))
        refresh.assert_called_once_with(self.txn.pk)

    def test_raw_body_entry_point(self):
        reply = self._reply()
        body = json.dumps(reply.to_dict())
        self.assertTrue(services.process_webhook_body(body.encode("utf-8")))
        with self.assertLogs("payments.services", level="WARNING"):
            self.assertFalse(services.process_webhook_body("not json"))


class RefreshBalanceTests(TestCase):
    def setUp(self):
        self.merchant = make_merchant()
        self.txn = make_transaction(self.merchant)

    def test_refresh_queries_with_merchant_mode(self):
        session = FakeSession(FakeResponse(200, json.dumps(QUERY_REPLY)))
        txn = services.refresh_balance(self.txn.pk, gateway=GatewayClient(session=session))
        self.assertEqual(txn.balance, Decimal("125.50"))
        self.merchant.refresh_from_db()
        self.assertEqual(self.merchant.balance, Decimal("125.50"))

    def test_errors_are_logged_not_raised(self):
        self.merchant.status = MerchantStatus.SUSPENDED
        self.merchant.save()
        with self.assertLogs("payments.services", level="ERROR"):
            self.assertIsNone(services.refresh_balance(self.txn.pk))
