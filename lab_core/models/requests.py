from decimal import Decimal

from django.conf import settings
from django.db import models

from lab_core import workflows as wf
from lab_core.workflows.guards import ItemWriteGuardMixin

from .base import TimeStampedModel
from .catalog import TestCatalog
from .patients import Patient


# ---------------------------------------------------------------------
# Test request (one ordering event)
# ---------------------------------------------------------------------
class TestRequest(TimeStampedModel):
    class ReceptionStatus(models.TextChoices):
        BILLING_PENDING = wf.BILLING_PENDING, "Billing Pending"
        SAMPLE_PENDING = wf.SAMPLE_PENDING, "Awaiting Sample"
        PROCESSING = wf.PROCESSING, "Processing"
        COMPLETED = wf.RECEPTION_COMPLETED, "Completed"

    class PaymentStatus(models.TextChoices):
        AWAITING_PAYMENT = wf.PAYMENT_AWAITING, "Awaiting Payment"
        PAID = wf.PAYMENT_PAID, "Paid"

    class Priority(models.TextChoices):
        ROUTINE = wf.PRIORITY_ROUTINE, "Routine"
        URGENT = wf.PRIORITY_URGENT, "Urgent"

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="test_requests")
    reception_status = models.CharField(
        max_length=20,
        choices=ReceptionStatus.choices,
        default=ReceptionStatus.BILLING_PENDING,
        db_index=True,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.AWAITING_PAYMENT,
        db_index=True,
    )
    payment_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    payment_method = models.CharField(max_length=40, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    priority = models.CharField(
        max_length=10, choices=Priority.choices, default=Priority.ROUTINE, db_index=True
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="test_requests_created",
    )

    def __str__(self):
        return f"Request #{self.pk} for {self.patient}"

    @property
    def overall_status(self) -> str:
        return wf.derive_request_status(self.items.values_list("status", flat=True))

    class Meta:
        ordering = ["-created_at"]


# ---------------------------------------------------------------------
# Test request item (one ordered test, panel header or panel analyte)
# ---------------------------------------------------------------------
class TestRequestItem(ItemWriteGuardMixin, TimeStampedModel):
    class Status(models.TextChoices):
        PENDING = wf.PENDING, "Pending"
        SAMPLE_COLLECTED = wf.SAMPLE_COLLECTED, "Sample Collected"
        IN_PROGRESS = wf.IN_PROGRESS, "In Progress"
        COMPLETED = wf.COMPLETED, "Completed"
        VERIFIED = wf.VERIFIED, "Verified"
        RELEASED = wf.RELEASED, "Released"
        CANCELLED = wf.CANCELLED, "Cancelled"

    class Flag(models.TextChoices):
        LOW = "L", "Low"
        HIGH = "H", "High"
        NORMAL = "N", "Normal"
        ABNORMAL = "A", "Abnormal"

    request = models.ForeignKey(TestRequest, on_delete=models.CASCADE, related_name="items")
    test = models.ForeignKey(TestCatalog, on_delete=models.PROTECT, related_name="request_items")
    parent = models.ForeignKey(
        "self", on_delete=models.CASCADE, null=True, blank=True, related_name="children"
    )

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    is_under_review = models.BooleanField(default=False, db_index=True)

    result_value = models.TextField(blank=True)
    result_flag = models.CharField(max_length=1, choices=Flag.choices, blank=True)
    version = models.PositiveIntegerField(default=0)

    entered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    entered_at = models.DateTimeField(null=True, blank=True)
    verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    verified_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.test} [{self.status}] (request #{self.request_id})"

    @property
    def is_panel_header(self) -> bool:
        return bool(self.test.is_panel)

    @property
    def department(self):
        return self.test.department

    @property
    def has_result(self) -> bool:
        return bool((self.result_value or "").strip())

    class Meta:
        ordering = ["request_id", "id"]
        indexes = [
            models.Index(fields=["request", "status"], name="item_request_status_idx"),
            models.Index(fields=["status", "updated_at"], name="item_status_updated_idx"),
        ]


# ---------------------------------------------------------------------
# Result history
# ---------------------------------------------------------------------
class ResultAuditLog(TimeStampedModel):
    item = models.ForeignKey(TestRequestItem, on_delete=models.CASCADE, related_name="result_history")
    old_value = models.TextField(blank=True)
    new_value = models.TextField(blank=True)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    def __str__(self):
        return f"item {self.item_id}: {self.old_value!r} -> {self.new_value!r}"

    class Meta:
        ordering = ["-created_at", "-id"]


class AnalyzerResult(TimeStampedModel):
    """Raw instrument output waiting to be adopted into an item."""

    item = models.ForeignKey(TestRequestItem, on_delete=models.CASCADE, related_name="analyzer_results")
    instrument = models.CharField(max_length=120, blank=True)
    sample_code = models.CharField(max_length=120, blank=True, db_index=True)
    # analyte name -> value
    results = models.JSONField(default=dict, blank=True)
    meta = models.JSONField(default=dict, blank=True)
    adopted_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.instrument or 'analyzer'} result for item {self.item_id}"

    class Meta:
        ordering = ["-created_at", "-id"]
