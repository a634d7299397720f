# lab_core/services/requests.py
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from django.db import transaction
from django.db.models import Case, IntegerField, Value, When
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from lab_core import workflows as wf
from lab_core.exceptions import Conflict
from lab_core.models import Patient, TestCatalog, TestRequest, TestRequestItem
from lab_core.permissions import require
from lab_core.services.events import (
    NEW_TEST_REQUEST,
    RECEPTION_QUEUE_UPDATED,
    REPORT_RELEASED,
    publish_event,
)
from lab_core.workflows.executor import execute_action

logger = logging.getLogger(__name__)


def get_request(request_id) -> TestRequest:
    try:
        return TestRequest.objects.select_related("patient").get(pk=request_id)
    except (TestRequest.DoesNotExist, ValueError, TypeError):
        raise NotFound("Test request not found.")


def _queue_event(req: TestRequest, **extra) -> None:
    publish_event(
        RECEPTION_QUEUE_UPDATED,
        {
            "request_id": req.pk,
            "reception_status": req.reception_status,
            "payment_status": req.payment_status,
            **extra,
        },
    )


# ------------------------------------------------------------
# Ordering
# ------------------------------------------------------------
def create_test_request(
    *,
    patient: Patient,
    test_ids: Iterable[int],
    user,
    priority: str = wf.PRIORITY_ROUTINE,
) -> TestRequest:
    """
    One top-level item per selected catalog entry; panels are expanded into
    child items for their analytes. The amount due is the sum of top-level
    effective prices.
    """
    try:
        ids = list(dict.fromkeys(int(t) for t in (test_ids or [])))
    except (TypeError, ValueError):
        raise ValidationError({"test_ids": "Test ids must be integers."})
    if not ids:
        raise ValidationError({"test_ids": "Select at least one test or panel."})

    priority = (priority or wf.PRIORITY_ROUTINE).strip().upper()
    if priority not in wf.PRIORITIES:
        raise ValidationError({"priority": f"Priority must be one of {', '.join(wf.PRIORITIES)}."})

    selected = {t.pk: t for t in TestCatalog.objects.filter(pk__in=ids)}
    missing = [t for t in ids if t not in selected]
    if missing:
        raise ValidationError({"test_ids": f"Unknown test id(s): {missing}"})
    inactive = [selected[t].name for t in ids if not selected[t].is_active]
    if inactive:
        raise ValidationError({"test_ids": f"Inactive test(s) cannot be ordered: {', '.join(inactive)}"})

    with transaction.atomic():
        req = TestRequest.objects.create(patient=patient, priority=priority, created_by=user)

        total = Decimal("0.00")
        for test_id in ids:
            test = selected[test_id]
            total += test.effective_price
            header = TestRequestItem.objects.create(request=req, test=test)

            if test.is_panel:
                analytes = [m.analyte for m in test.memberships.select_related("analyte").order_by("position", "id")]
                TestRequestItem.objects.bulk_create(
                    [TestRequestItem(request=req, test=a, parent=header) for a in analytes]
                )

        TestRequest.objects.filter(pk=req.pk).update(payment_amount=total)
        req.payment_amount = total

        publish_event(
            NEW_TEST_REQUEST,
            {
                "request_id": req.pk,
                "patient_id": patient.pk,
                "priority": req.priority,
                "payment_amount": str(total),
            },
        )

    logger.info("Created test request %s for patient %s (%s tests, total %s)", req.pk, patient.pk, len(ids), total)
    return req


def process_payment(req: TestRequest, *, amount, method: str, user) -> TestRequest:
    require(user, *wf.RECEPTION_PERMISSION)

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({"amount": "Amount must be a number."})
    if not value.is_finite() or value <= 0:
        raise ValidationError({"amount": "Amount must be greater than zero."})
    method = (method or "").strip()
    if not method:
        raise ValidationError({"payment_method": "Payment method is required."})

    with transaction.atomic():
        locked = TestRequest.objects.select_for_update().get(pk=req.pk)
        if locked.payment_status == wf.PAYMENT_PAID:
            raise Conflict("Request is already paid.")

        locked.payment_status = wf.PAYMENT_PAID
        locked.payment_amount = value.quantize(Decimal("0.01"))
        locked.payment_method = method
        locked.paid_at = timezone.now()
        if locked.reception_status == wf.BILLING_PENDING:
            locked.reception_status = wf.get_next_status(wf.BILLING_PENDING)
        locked.save()

        _queue_event(locked)

    logger.info("Payment of %s recorded on request %s", locked.payment_amount, locked.pk)
    return locked


def advance_reception(req: TestRequest, *, next_status: str, user) -> TestRequest:
    """Only the successor returned by get_next_status is accepted."""
    require(user, *wf.RECEPTION_PERMISSION)

    target = wf.normalize_status(next_status)

    with transaction.atomic():
        locked = TestRequest.objects.select_for_update().get(pk=req.pk)
        current = locked.reception_status
        expected = wf.get_next_status(current)

        if expected is None:
            raise ValidationError({"status": f"Request is in terminal reception status '{current}'."})
        if target != expected:
            raise ValidationError(
                {"status": f"Invalid reception transition: {current} -> {target or '<empty>'} (next is {expected})."}
            )
        if current == wf.BILLING_PENDING and locked.payment_status != wf.PAYMENT_PAID:
            raise ValidationError({"payment_status": "Payment must be recorded before the sample is requested."})

        locked.reception_status = target
        locked.save(update_fields=["reception_status", "updated_at"])
        _queue_event(locked, from_status=current)

    return locked


def reception_queue(on_date=None):
    """Requests ordered on `on_date` (today by default), earliest stage first."""
    on_date = on_date or timezone.localdate()
    stage = Case(
        *[When(reception_status=s, then=Value(i)) for i, s in enumerate(wf.RECEPTION_STATES)],
        default=Value(len(wf.RECEPTION_STATES)),
        output_field=IntegerField(),
    )
    return (
        TestRequest.objects.filter(created_at__date=on_date)
        .select_related("patient")
        .annotate(stage=stage)
        .order_by("stage", "created_at")
    )


# ------------------------------------------------------------
# Phlebotomy
# ------------------------------------------------------------
def collect_samples(req: TestRequest, *, user) -> List[TestRequestItem]:
    """
    Run collect_sample on every pending leaf and move reception from
    sample_pending to processing.
    """
    require(user, "phlebotomy", "collect")

    with transaction.atomic():
        pending = list(
            TestRequestItem.objects.filter(request=req, status=wf.PENDING, test__is_panel=False)
            .select_related("test")
            .order_by("id")
        )
        if not pending:
            raise ValidationError({"items": "No items are waiting for sample collection."})

        collected = [execute_action(item=i, action="collect_sample", user=user).item for i in pending]

        locked = TestRequest.objects.select_for_update().get(pk=req.pk)
        if locked.reception_status == wf.SAMPLE_PENDING:
            locked.reception_status = wf.get_next_status(wf.SAMPLE_PENDING)
            locked.save(update_fields=["reception_status", "updated_at"])
            _queue_event(locked, from_status=wf.SAMPLE_PENDING)

    logger.info("Collected %s sample(s) for request %s", len(collected), req.pk)
    return collected


# ------------------------------------------------------------
# Release
# ------------------------------------------------------------
def release_report(req: TestRequest, *, user, idempotency_key: Optional[str] = "") -> List[TestRequestItem]:
    """
    Release every verified leaf of the request in one transaction.
    """
    require(user, "pathologist", "release")

    with transaction.atomic():
        leaves = list(
            TestRequestItem.objects.filter(request=req, test__is_panel=False)
            .select_related("test")
            .order_by("id")
        )
        active = [i for i in leaves if i.status != wf.CANCELLED]

        if not active:
            raise ValidationError({"items": "Request has no releasable items."})
        if all(i.status == wf.RELEASED for i in active):
            raise Conflict("Report is already released.")

        not_ready = [i for i in active if i.status not in (wf.VERIFIED, wf.RELEASED)]
        if not_ready:
            raise ValidationError(
                {
                    "items": "All results must be verified before release: "
                    + ", ".join(f"{i.test.name} ({i.status})" for i in not_ready)
                }
            )

        released = []
        for item in active:
            if item.status != wf.VERIFIED:
                continue
            key = f"{idempotency_key}:{item.pk}" if idempotency_key else ""
            released.append(
                execute_action(item=item, action="release", user=user, idempotency_key=key).item
            )

        TestRequest.objects.filter(pk=req.pk).update(
            reception_status=wf.RECEPTION_COMPLETED,
            updated_at=timezone.now(),
        )

        publish_event(
            REPORT_RELEASED,
            {"request_id": req.pk, "items": [i.pk for i in released]},
        )

    logger.info("Released report for request %s (%s item(s))", req.pk, len(released))
    return released
