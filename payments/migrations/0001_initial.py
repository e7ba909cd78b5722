import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("merchants", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_id", models.CharField(db_index=True, max_length=64)),
                ("status", models.CharField(choices=[("RECEIVED", "RECEIVED"), ("PENDING", "PENDING"), ("AWAITING_CALLBACK", "AWAITING_CALLBACK"), ("SUCCESS", "SUCCESS"), ("FAILED", "FAILED"), ("CANCELLED", "CANCELLED"), ("REFUNDED", "REFUNDED"), ("ABANDONED", "ABANDONED"), ("QUERY_SUCCESS", "QUERY_SUCCESS")], db_index=True, default="RECEIVED", max_length=32)),
                ("status_description", models.TextField(blank=True, default="")),
                ("payment_brand", models.CharField(choices=[("UnionPay", "UnionPay"), ("WechatPay", "WechatPay"), ("Alipay", "Alipay")], max_length=16)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=21)),
                ("balance", models.DecimalField(blank=True, decimal_places=2, max_digits=21, null=True)),
                ("currency", models.CharField(choices=[("AUD", "AUD"), ("USD", "USD"), ("HKD", "HKD"), ("CAD", "CAD"), ("CHF", "CHF"), ("CNY", "CNY"), ("EUR", "EUR"), ("GBP", "GBP"), ("JPY", "JPY"), ("KRW", "KRW"), ("MOP", "MOP"), ("RUB", "RUB"), ("SGD", "SGD"), ("TWD", "TWD")], max_length=3)),
                ("client_id", models.CharField(max_length=64)),
                ("reply_url", models.URLField(blank=True, default="")),
                ("backoffice_url", models.URLField(blank=True, default="")),
                ("echo", models.CharField(blank=True, default="", max_length=255)),
                ("environment", models.CharField(blank=True, choices=[("TEST", "TEST"), ("LIVE", "LIVE")], max_length=8, null=True)),
                ("signature", models.CharField(blank=True, default="", max_length=64)),
                ("signature_version", models.CharField(blank=True, default="", max_length=8)),
                ("request_timestamp", models.DateTimeField(blank=True, null=True)),
                ("request_data", models.TextField(blank=True, default="")),
                ("initial_response_data", models.TextField(blank=True, default="")),
                ("callback_timestamp", models.DateTimeField(blank=True, null=True)),
                ("callback_data", models.TextField(blank=True, default="")),
                ("last_query_data", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("merchant", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="merchants.merchant")),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("merchant", "order_id"), name="payment_unique_merchant_order"),
                ],
            },
        ),
    ]
