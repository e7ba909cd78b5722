import uuid

from django.db import models

from merchants.models import Merchant, MerchantMode


class TransactionStatus(models.TextChoices):
    RECEIVED = "RECEIVED", "RECEIVED"
    PENDING = "PENDING", "PENDING"
    AWAITING_CALLBACK = "AWAITING_CALLBACK", "AWAITING_CALLBACK"
    SUCCESS = "SUCCESS", "SUCCESS"
    FAILED = "FAILED", "FAILED"
    CANCELLED = "CANCELLED", "CANCELLED"
    REFUNDED = "REFUNDED", "REFUNDED"
    ABANDONED = "ABANDONED", "ABANDONED"
    QUERY_SUCCESS = "QUERY_SUCCESS", "QUERY_SUCCESS"


TERMINAL_STATUSES = frozenset({
    TransactionStatus.SUCCESS,
    TransactionStatus.FAILED,
    TransactionStatus.CANCELLED,
    TransactionStatus.REFUNDED,
    TransactionStatus.ABANDONED,
})


class Currency(models.TextChoices):
    AUD = "AUD", "AUD"
    USD = "USD", "USD"
    HKD = "HKD", "HKD"
    CAD = "CAD", "CAD"
    CHF = "CHF", "CHF"
    CNY = "CNY", "CNY"
    EUR = "EUR", "EUR"
    GBP = "GBP", "GBP"
    JPY = "JPY", "JPY"
    KRW = "KRW", "KRW"
    MOP = "MOP", "MOP"
    RUB = "RUB", "RUB"
    SGD = "SGD", "SGD"
    TWD = "TWD", "TWD"


class PaymentBrand(models.TextChoices):
    UNIONPAY = "UnionPay", "UnionPay"
    WECHATPAY = "WechatPay", "WechatPay"
    ALIPAY = "Alipay", "Alipay"


class PaymentTransaction(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    merchant = models.ForeignKey(Merchant, on_delete=models.PROTECT, related_name="transactions")
    order_id = models.CharField(max_length=64, db_index=True)

    status = models.CharField(max_length=32, choices=TransactionStatus.choices, default=TransactionStatus.RECEIVED, db_index=True)
    status_description = models.TextField(blank=True, default="")
    payment_brand = models.CharField(max_length=16, choices=PaymentBrand.choices)

    amount = models.DecimalField(max_digits=21, decimal_places=2)
    balance = models.DecimalField(max_digits=21, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, choices=Currency.choices)

    client_id = models.CharField(max_length=64)
    reply_url = models.URLField(blank=True, default="")
    backoffice_url = models.URLField(blank=True, default="")
    echo = models.CharField(max_length=255, blank=True, default="")
    environment = models.CharField(max_length=8, choices=MerchantMode.choices, null=True, blank=True)

    signature = models.CharField(max_length=64, blank=True, default="")
    signature_version = models.CharField(max_length=8, blank=True, default="")

    # raw gateway exchanges, kept for support
    request_timestamp = models.DateTimeField(null=True, blank=True)
    request_data = models.TextField(blank=True, default="")
    initial_response_data = models.TextField(blank=True, default="")
    callback_timestamp = models.DateTimeField(null=True, blank=True)
    callback_data = models.TextField(blank=True, default="")
    last_query_data = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["merchant", "order_id"], name="payment_unique_merchant_order"),
        ]

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __str__(self):
        return f"{self.order_id} ({self.status})"
