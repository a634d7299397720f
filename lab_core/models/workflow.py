from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .base import TimeStampedModel
from .catalog import Department
from .requests import TestRequestItem


class ItemTransition(TimeStampedModel):
    """
    Immutable log of executed item actions.
    """

    item = models.ForeignKey(TestRequestItem, on_delete=models.CASCADE, related_name="transitions")
    action = models.CharField(max_length=32, db_index=True)
    from_status = models.CharField(max_length=20)
    to_status = models.CharField(max_length=20)
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="item_transitions",
    )
    idempotency_key = models.CharField(max_length=128, blank=True)
    comment = models.TextField(blank=True)
    # Snapshot of the item right after the action, replayed for repeated keys
    outcome = models.JSONField(default=dict, blank=True)

    def __str__(self):
        return f"item {self.item_id}: {self.action} {self.from_status} -> {self.to_status}"

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["item", "to_status"], name="transition_item_to_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["item", "idempotency_key"],
                condition=~Q(idempotency_key=""),
                name="transition_item_idem_key_uniq",
            ),
        ]


class TurnaroundAlert(TimeStampedModel):
    item = models.ForeignKey(TestRequestItem, on_delete=models.CASCADE, related_name="turnaround_alerts")
    state = models.CharField(max_length=20)
    severity = models.CharField(max_length=16, default="warning")
    budget_seconds = models.PositiveIntegerField()
    duration_seconds = models.PositiveIntegerField(null=True, blank=True)
    triggered_at = models.DateTimeField(default=timezone.now)
    resolved_at = models.DateTimeField(null=True, blank=True)
    message = models.TextField(blank=True)
    meta = models.JSONField(default=dict, blank=True)

    def __str__(self):
        return f"item {self.item_id} {self.state} turnaround breach"

    class Meta:
        unique_together = ("item", "state")
        ordering = ("-triggered_at",)


class EventCounter(models.Model):
    """
    Last issued event seq. Publishers lock the row until they commit, so
    seq order follows commit order.
    """

    name = models.CharField(max_length=32, unique=True)
    last_value = models.PositiveBigIntegerField(default=0)

    def __str__(self):
        return f"{self.name} ({self.last_value})"


class LabEvent(TimeStampedModel):
    """Ordered change feed; clients ask for everything after the last seq they saw."""

    seq = models.BigIntegerField(primary_key=True)
    name = models.CharField(max_length=64, db_index=True)
    payload = models.JSONField(default=dict, blank=True)
    department = models.ForeignKey(
        Department, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    def __str__(self):
        return f"#{self.seq} {self.name}"

    class Meta:
        ordering = ["seq"]


class AuditLog(TimeStampedModel):
    """Track actions for compliance and traceability."""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=255, db_index=True)
    details = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    def __str__(self):
        who = self.user.get_username() if self.user else "system"
        return f"{self.created_at} - {who} - {self.action}"

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["action", "created_at"], name="audit_action_time_idx"),
        ]
