import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Merchant",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=128)),
                ("mode", models.CharField(choices=[("TEST", "TEST"), ("LIVE", "LIVE")], default="TEST", max_length=8)),
                ("status", models.CharField(choices=[("ACTIVE", "ACTIVE"), ("INACTIVE", "INACTIVE"), ("SUSPENDED", "SUSPENDED")], db_index=True, default="ACTIVE", max_length=16)),
                ("balance", models.DecimalField(blank=True, decimal_places=2, max_digits=21, null=True)),
                ("remote_test_url", models.URLField(blank=True, default="")),
                ("remote_test_merchant_id", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("remote_test_merchant_key", models.CharField(blank=True, default="", max_length=128)),
                ("remote_test_api_key", models.CharField(blank=True, default="", max_length=128)),
                ("remote_prod_url", models.URLField(blank=True, default="")),
                ("remote_prod_merchant_id", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("remote_prod_merchant_key", models.CharField(blank=True, default="", max_length=128)),
                ("remote_prod_api_key", models.CharField(blank=True, default="", max_length=128)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
    ]
