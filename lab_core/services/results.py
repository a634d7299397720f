# lab_core/services/results.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from lab_core import workflows as wf
from lab_core.exceptions import Conflict
from lab_core.models import NormalRange, ResultAuditLog, TestRequest, TestRequestItem
from lab_core.permissions import ensure_item_in_scope, require
from lab_core.services.events import RESULT_SAVED, publish_event
from lab_core.services.templates import (
    compute_flag,
    match_option,
    pick_range,
    qualitative_options_for,
)
from lab_core.workflows.executor import execute_action

logger = logging.getLogger(__name__)


# Statuses in which a value may be written; sample_collected auto-starts
WRITABLE_STATUSES = {wf.SAMPLE_COLLECTED, wf.IN_PROGRESS}


def _lock_item(item_id) -> TestRequestItem:
    try:
        return (
            TestRequestItem.objects.select_for_update(of=("self",))
            .select_related("test", "test__department", "parent", "request__patient")
            .get(pk=item_id)
        )
    except (TestRequestItem.DoesNotExist, ValueError, TypeError):
        raise NotFound("Test request item not found.")


def _ensure_writable(item: TestRequestItem) -> None:
    if item.test.is_panel:
        raise ValidationError({"item": "Results are entered on analyte items, not on the panel header."})
    if item.status in WRITABLE_STATUSES:
        return
    if item.status == wf.PENDING:
        raise ValidationError({"status": "The sample for this item has not been collected yet."})
    if item.status in (wf.COMPLETED, wf.VERIFIED):
        raise ValidationError({"status": f"Item is {item.status}; reopen it before changing the result."})
    raise ValidationError({"status": f"Item is in terminal state '{item.status}' and cannot be modified."})


def _check_version(item: TestRequestItem, expected_version) -> None:
    if expected_version is None or expected_version == "":
        return
    try:
        expected = int(expected_version)
    except (TypeError, ValueError):
        raise ValidationError({"version": "Version must be an integer."})
    if expected != item.version:
        raise Conflict(
            f"Item was modified by someone else (version {item.version}, expected {expected})."
        )


def validate_value(item: TestRequestItem, value) -> Tuple[str, str]:
    """
    Returns (stored value, flag).

    Qualitative values must match an allowed option and are stored in the
    option's spelling; they are flagged against the normal value of the
    resolved range when one is configured. Numeric values are kept as given and only flagged.
    """
    raw = "" if value is None else str(value).strip()
    if not raw:
        raise ValidationError({"value": "A result value is required."})

    analyte = item.test
    patient = item.request.patient
    ordered_on = timezone.localtime(item.request.created_at).date() if item.request.created_at else None
    rows = list(NormalRange.objects.filter(analyte=analyte))
    ref = pick_range(
        rows,
        gender=patient.gender,
        age=patient.age_on(ordered_on),
        panel_id=item.parent.test_id if item.parent_id else None,
    )

    if analyte.is_qualitative:
        options = qualitative_options_for(analyte, rows)
        canonical = match_option(raw, options)
        if canonical is None:
            raise ValidationError(
                {"value": f"'{raw}' is not an allowed result for {analyte.name}. Allowed: {', '.join(options)}."}
            )
        return canonical, compute_flag(analyte, canonical, ref=ref, options=options)

    return raw, compute_flag(analyte, raw, ref=ref, options=[])


def _write(item: TestRequestItem, value: str, flag: str, user) -> TestRequestItem:
    old = item.result_value or ""
    now = timezone.now()

    TestRequestItem.objects.filter(pk=item.pk).update(
        result_value=value,
        result_flag=flag,
        entered_by=user,
        entered_at=now,
        version=F("version") + 1,
        updated_at=now,
    )
    item.refresh_from_db()

    if old != value:
        ResultAuditLog.objects.create(item=item, old_value=old, new_value=value, changed_by=user)

    publish_event(
        RESULT_SAVED,
        {
            "item_id": item.pk,
            "request_id": item.request_id,
            "result_flag": flag or None,
            "version": item.version,
        },
        department=item.test.department,
    )
    return item


def _start_if_needed(item: TestRequestItem, user) -> TestRequestItem:
    if item.status == wf.SAMPLE_COLLECTED:
        outcome = execute_action(item=item, action="start", user=user)
        return outcome.item
    return item


def submit_result(item_id, value, user, expected_version=None) -> TestRequestItem:
    """
    Store one leaf result. The item keeps its status unless it was still
    sample_collected, in which case it is started.
    """
    require(user, *wf.RESULT_ENTRY_PERMISSION)

    with transaction.atomic():
        item = _lock_item(item_id)
        ensure_item_in_scope(user, item)
        _check_version(item, expected_version)
        _ensure_writable(item)
        stored, flag = validate_value(item, value)

        item = _start_if_needed(item, user)
        item = _write(item, stored, flag, user)

    logger.info("Result saved for item %s (flag %s)", item.pk, flag or "-")
    return item


def submit_results(
    request_id,
    results: Dict,
    user,
    versions: Optional[Dict] = None,
    complete: bool = False,
) -> List[TestRequestItem]:
    """
    Apply a whole template at once. Every value is validated before anything
    is written; any failure leaves the request untouched.
    """
    require(user, *wf.RESULT_ENTRY_PERMISSION)

    if not TestRequest.objects.filter(pk=request_id).exists():
        raise NotFound("Test request not found.")
    if not results:
        raise ValidationError({"results": "At least one result is required."})

    versions = {str(k): v for k, v in (versions or {}).items()}
    wanted = {str(k): v for k, v in results.items()}

    with transaction.atomic():
        items = {
            str(i.pk): i
            for i in TestRequestItem.objects.select_for_update(of=("self",))
            .select_related("test", "test__department", "parent", "request__patient")
            .filter(request_id=request_id, pk__in=[k for k in wanted if k.isdigit()])
        }

        errors: Dict[str, str] = {}
        prepared: List[Tuple[TestRequestItem, str, str]] = []

        for key, value in wanted.items():
            item = items.get(key)
            if item is None:
                errors[key] = "Item does not belong to this request."
                continue

            ensure_item_in_scope(user, item)
            _check_version(item, versions.get(key))

            try:
                _ensure_writable(item)
                stored, flag = validate_value(item, value)
            except ValidationError as exc:
                detail = exc.detail
                if isinstance(detail, dict):
                    detail = next(iter(detail.values()))
                if isinstance(detail, list):
                    detail = detail[0]
                errors[key] = str(detail)
                continue

            prepared.append((item, stored, flag))

        if errors:
            logger.warning("Rejected batch for request %s: %s", request_id, errors)
            raise ValidationError({"results": errors})

        saved = []
        for item, stored, flag in prepared:
            item = _start_if_needed(item, user)
            item = _write(item, stored, flag, user)
            if complete and item.status == wf.IN_PROGRESS:
                item = execute_action(item=item, action="complete", user=user).item
            saved.append(item)

    logger.info("Saved %s result(s) for request %s", len(saved), request_id)
    return saved
