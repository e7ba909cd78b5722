from django.test import TestCase

from .context import ApiContext, MerchantConfigurationError, api_context_for, merchant_context_for
from .models import Merchant, MerchantMode, MerchantStatus


class MerchantContextTests(TestCase):
    def setUp(self):
        self.merchant = Merchant.objects.create(
            name="Shop",
            mode=MerchantMode.TEST,
            remote_test_url="https://gw-test.example.com",
            remote_test_merchant_id="MID-TEST",
            remote_test_merchant_key="test-key",
            remote_prod_url="https://gw.example.com",
            remote_prod_merchant_id="MID-PROD",
            remote_prod_merchant_key="prod-key",
            remote_prod_api_key="prod-api",
        )

    def test_credentials_follow_mode(self):
        test = merchant_context_for(self.merchant)
        self.assertEqual(test.mode, "TEST")
        self.assertEqual(test.gateway_merchant_id, "MID-TEST")
        self.assertEqual(test.gateway_api_key, "")

        live = merchant_context_for(self.merchant, MerchantMode.LIVE)
        self.assertEqual(live.gateway_url, "https://gw.example.com")
        self.assertEqual(live.gateway_merchant_key, "prod-key")
        self.assertEqual(live.gateway_api_key, "prod-api")

    def test_merchant_key_by_mode(self):
        self.assertEqual(self.merchant.merchant_key_by_mode, "test-key")
        self.merchant.mode = MerchantMode.LIVE
        self.assertEqual(self.merchant.merchant_key_by_mode, "prod-key")

    def test_inactive_merchant_rejected(self):
        self.merchant.status = MerchantStatus.SUSPENDED
        with self.assertRaisesMessage(MerchantConfigurationError, "is not active (status: SUSPENDED)"):
            merchant_context_for(self.merchant)

    def test_blank_credentials_rejected(self):
        for field, label in (
            ("remote_test_url", "gateway URL"),
            ("remote_test_merchant_id", "gateway merchant ID"),
            ("remote_test_merchant_key", "gateway merchant key"),
        ):
            with self.subTest(field=field):
                merchant = Merchant.objects.get(pk=self.merchant.pk)
                setattr(merchant, field, "  ")
                with self.assertRaisesMessage(MerchantConfigurationError, f"no {label} configured for mode TEST"):
                    merchant_context_for(merchant)

    def test_api_context_access(self):
        context = api_context_for(self.merchant)
        self.assertTrue(context.can_access(self.merchant.pk))
        self.assertTrue(context.can_access(str(self.merchant.pk)))
        self.assertFalse(context.can_access("someone-else"))
        self.assertFalse(ApiContext(merchant_id=None, merchant_context=None).can_access(self.merchant.pk))
