import hashlib
from decimal import Decimal

from django.test import SimpleTestCase

from .integrations.replies import PaymentReply
from .integrations.signature import (
    md5_hex,
    request_signature,
    sign_reply,
    verify_webhook_signature,
    webhook_signature,
)


def _md5(text):
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class Md5HexTests(SimpleTestCase):
    def test_known_vectors(self):
        self.assertEqual(md5_hex(""), "d41d8cd98f00b204e9800998ecf8427e")
        self.assertEqual(md5_hex("abc"), "900150983cd24fb0d6963f7d28e17f72")

    def test_lowercase_and_padded(self):
        digest = md5_hex("Ünïcode ✓")
        self.assertEqual(len(digest), 32)
        self.assertEqual(digest, digest.lower())


class RequestSignatureTests(SimpleTestCase):
    def test_clear_text_order(self):
        expected = _md5("CLN-1" + "abc-123" + _md5("secret") + "10.12" + "USD" + "https://r" + "https://b")
        actual = request_signature(
            client_id="CLN-1", order_id="ABC-123", merchant_key="secret", amount="10.12",
            currency="USD", reply_url="https://r", backoffice_url="https://b",
        )
        self.assertEqual(actual, expected)

    def test_absent_optionals_contribute_nothing(self):
        expected = _md5("abc-123" + _md5("secret") + "10.12" + "USD")
        for empty in (None, ""):
            self.assertEqual(
                request_signature(client_id=empty, order_id="ABC-123", merchant_key="secret", amount="10.12",
                                  currency="USD", reply_url=empty, backoffice_url=empty),
                expected,
            )

    def test_deterministic(self):
        kwargs = dict(client_id="c", order_id="o", merchant_key="k", amount="1", currency="EUR")
        self.assertEqual(request_signature(**kwargs), request_signature(**kwargs))


class WebhookSignatureTests(SimpleTestCase):
    def _reply(self, **overrides):
        data = dict(
            success="Y", client_id="TheClient", order_id="ORD-9", amount=Decimal("25.00"),
            currency="USD", merchant_id="5adeaafb-1b6d-4bb2-ba11-1cce35e6b38e",
        )
        data.update(overrides)
        return PaymentReply(**data)

    def test_clear_text_order(self):
        reply = self._reply()
        expected = _md5("Y" + "TheClient" + "ord-9" + _md5("key") + "25.00" + "USD" + reply.merchant_id)
        self.assertEqual(sign_reply(reply, "key"), expected)
        self.assertEqual(
            webhook_signature(success="Y", client_id="TheClient", order_id="ORD-9", merchant_key="key",
                              amount=Decimal("25.00"), currency="USD", merchant_id=reply.merchant_id),
            expected,
        )

    def test_round_trip(self):
        reply = self._reply()
        reply.signature = sign_reply(reply, "key")
        self.assertTrue(verify_webhook_signature(reply, "key"))

    def test_wrong_key_fails(self):
        reply = self._reply()
        reply.signature = sign_reply(reply, "key")
        with self.assertLogs("payments.integrations.signature", level="WARNING"):
            self.assertFalse(verify_webhook_signature(reply, "other-key"))

    def test_tampered_amount_fails(self):
        reply = self._reply()
        reply.signature = sign_reply(reply, "key")
        reply.amount = Decimal("2500.00")
        with self.assertLogs("payments.integrations.signature", level="WARNING"):
            self.assertFalse(verify_webhook_signature(reply, "key"))

    def test_missing_inputs_are_false(self):
        with self.assertLogs("payments.integrations.signature", level="WARNING"):
            self.assertFalse(verify_webhook_signature(self._reply(), "key"))
        with self.assertLogs("payments.integrations.signature", level="WARNING"):
            self.assertFalse(verify_webhook_signature(None, "key"))
        reply = self._reply(signature="abc")
        with self.assertLogs("payments.integrations.signature", level="WARNING"):
            self.assertFalse(verify_webhook_signature(reply, None))
