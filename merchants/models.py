import uuid

from django.db import models


class MerchantMode(models.TextChoices):
    TEST = "TEST", "TEST"
    LIVE = "LIVE", "LIVE"


class MerchantStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "ACTIVE"
    INACTIVE = "INACTIVE", "INACTIVE"
    SUSPENDED = "SUSPENDED", "SUSPENDED"


class Merchant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=128)
    mode = models.CharField(max_length=8, choices=MerchantMode.choices, default=MerchantMode.TEST)
    status = models.CharField(max_length=16, choices=MerchantStatus.choices, default=MerchantStatus.ACTIVE, db_index=True)
    balance = models.DecimalField(max_digits=21, decimal_places=2, null=True, blank=True)

    # gateway credentials, one set per mode
    remote_test_url = models.URLField(blank=True, default="")
    remote_test_merchant_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    remote_test_merchant_key = models.CharField(max_length=128, blank=True, default="")
    remote_test_api_key = models.CharField(max_length=128, blank=True, default="")
    remote_prod_url = models.URLField(blank=True, default="")
    remote_prod_merchant_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    remote_prod_merchant_key = models.CharField(max_length=128, blank=True, default="")
    remote_prod_api_key = models.CharField(max_length=128, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def is_active(self) -> bool:
        return self.status == MerchantStatus.ACTIVE

    def gateway_credentials(self, mode: str | None = None) -> dict:
        """Return the gateway URL, MID, merchant key and API key for ``mode``.

        ``mode`` defaults to the merchant's configured mode. Anything other
        than LIVE resolves to the TEST credentials.
        """
        mode = mode or self.mode
        if mode == MerchantMode.LIVE:
            return {
                "url": self.remote_prod_url,
                "merchant_id": self.remote_prod_merchant_id,
                "merchant_key": self.remote_prod_merchant_key,
                "api_key": self.remote_prod_api_key,
            }
        return {
            "url": self.remote_test_url,
            "merchant_id": self.remote_test_merchant_id,
            "merchant_key": self.remote_test_merchant_key,
            "api_key": self.remote_test_api_key,
        }

    @property
    def merchant_key_by_mode(self) -> str:
        return self.gateway_credentials()["merchant_key"]

    def __str__(self):
        return f"{self.name} ({self.mode}, {self.status})"
