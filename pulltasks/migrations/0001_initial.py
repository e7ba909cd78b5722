import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PullTask",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(db_index=True, max_length=64)),
                ("version", models.CharField(blank=True, default="1.0", max_length=16)),
                ("owner", models.CharField(max_length=64)),
                ("pool", models.CharField(db_index=True, default="default", max_length=32)),
                ("business_key", models.CharField(db_index=True, max_length=128)),
                ("payload", models.TextField(blank=True, default="")),
                ("status", models.CharField(choices=[("PENDING", "PENDING"), ("LEASED", "LEASED"), ("COMPLETED", "COMPLETED"), ("FAILED", "FAILED")], db_index=True, default="PENDING", max_length=16)),
                ("due_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("max_attempts", models.PositiveIntegerField(default=0)),
                ("lease_owner", models.CharField(blank=True, default="", max_length=64)),
                ("leased_until", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("parent", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="continuations", to="pulltasks.pulltask")),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("status", "PENDING")), fields=("name", "business_key"), name="pulltask_unique_pending_business_key"),
                ],
            },
        ),
    ]
