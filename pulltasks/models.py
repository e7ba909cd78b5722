from django.db import models
from django.db.models import Q
from django.utils import timezone


class TaskStatus(models.TextChoices):
    PENDING = "PENDING", "PENDING"
    LEASED = "LEASED", "LEASED"
    COMPLETED = "COMPLETED", "COMPLETED"
    FAILED = "FAILED", "FAILED"


class PullTask(models.Model):
    name = models.CharField(max_length=64, db_index=True)
    version = models.CharField(max_length=16, blank=True, default="1.0")
    owner = models.CharField(max_length=64)
    pool = models.CharField(max_length=32, default="default", db_index=True)
    business_key = models.CharField(max_length=128, db_index=True)
    payload = models.TextField(blank=True, default="")

    status = models.CharField(max_length=16, choices=TaskStatus.choices, default=TaskStatus.PENDING, db_index=True)
    due_at = models.DateTimeField(default=timezone.now, db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=0)  # 0 = unbounded

    lease_owner = models.CharField(max_length=64, blank=True, default="")
    leased_until = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True, default="")

    parent = models.ForeignKey("self", null=True, blank=True, on_delete=models.SET_NULL, related_name="continuations")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["name", "business_key"],
                condition=Q(status="PENDING"),
                name="pulltask_unique_pending_business_key",
            ),
        ]

    @property
    def is_leased(self) -> bool:
        return self.status == TaskStatus.LEASED

    def __str__(self):
        return f"{self.name}:{self.business_key} ({self.status}, due {self.due_at:%Y-%m-%d %H:%M:%S})"
