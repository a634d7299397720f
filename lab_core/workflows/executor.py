# lab_core/workflows/executor.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from rest_framework.exceptions import ValidationError

from lab_core import workflows as wf
from lab_core.exceptions import Conflict
from lab_core.models import (
    AnalyzerResult,
    ItemTransition,
    NormalRange,
    ResultAuditLog,
    TestRequestItem,
    TurnaroundAlert,
)
from lab_core.permissions import ensure_item_in_scope, require
from lab_core.services.events import TEST_STATUS_UPDATED, publish_event
from lab_core.services.templates import compute_flag, pick_range, qualitative_options_for

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    item: TestRequestItem
    transition: Optional[ItemTransition]
    replayed: bool = False


def item_snapshot(item: TestRequestItem) -> dict:
    return {
        "id": item.pk,
        "status": item.status,
        "version": item.version,
        "is_under_review": item.is_under_review,
        "result_value": item.result_value,
    }


def _resolve_open_alerts(*, item_id: int, state: str) -> int:
    state = (state or "").strip().lower()
    if not state:
        return 0

    now = timezone.now()
    qs = TurnaroundAlert.objects.filter(item_id=item_id, state=state, resolved_at__isnull=True)

    updated = 0
    for alert in qs.iterator():
        alert.resolved_at = now
        delta = now - alert.triggered_at if alert.triggered_at else None
        alert.duration_seconds = max(0, int(delta.total_seconds())) if delta else 0
        alert.save(update_fields=["resolved_at", "duration_seconds", "updated_at"])
        updated += 1

    return updated


def _flag_for(item: TestRequestItem, value: str) -> str:
    patient = item.request.patient
    ordered_on = timezone.localtime(item.request.created_at).date() if item.request.created_at else None
    rows = list(NormalRange.objects.filter(analyte=item.test))
    ref = pick_range(
        rows,
        gender=patient.gender,
        age=patient.age_on(ordered_on),
        panel_id=item.parent.test_id if item.parent_id else None,
    )
    options = qualitative_options_for(item.test, rows) if item.test.is_qualitative else []
    return compute_flag(item.test, value, ref=ref, options=options)


def _adopt_analyzer_values(item: TestRequestItem) -> dict:
    """
    Copy the latest instrument value for this item's analyte, if any.
    Returns the fields to write.
    """
    run = (
        AnalyzerResult.objects.filter(item=item, adopted_at__isnull=True)
        .order_by("-created_at", "-id")
        .first()
    )
    if run is None:
        return {}

    wanted = item.test.name.strip().lower()
    value = None
    for name, raw in (run.results or {}).items():
        if str(name).strip().lower() == wanted:
            value = raw
            break

    run.adopted_at = timezone.now()
    run.save(update_fields=["adopted_at", "updated_at"])

    if value is None or str(value).strip() == "":
        return {}
    value = str(value).strip()
    return {"result_value": value, "result_flag": _flag_for(item, value)}


def sync_parent_status(parent_id: Optional[int]) -> Optional[str]:
    """
    Panel header items mirror the least advanced status of their analytes.
    """
    if not parent_id:
        return None

    statuses = list(
        TestRequestItem.objects.filter(parent_id=parent_id).values_list("status", flat=True)
    )
    if not statuses:
        return None

    derived = wf.derive_request_status(statuses)
    TestRequestItem.objects.filter(pk=parent_id).exclude(status=derived).update(
        status=derived,
        version=F("version") + 1,
        updated_at=timezone.now(),
    )
    return derived


def execute_action(
    *,
    item: TestRequestItem,
    action: str,
    user,
    expected_version: Optional[int] = None,
    idempotency_key: str = "",
    comment: str = "",
) -> ActionOutcome:
    """
    Apply a named workflow action to one item.

    Order of checks: permission, department scope, idempotent replay,
    terminal lock, already-in-target, version, legality, result presence.
    """
    name = wf.normalize_action(action)
    try:
        rule = wf.get_action_rule(name)
    except ValueError as e:
        raise ValidationError({"action": str(e)})

    # 1) Capability and department scope
    require(user, *rule["permission"])
    ensure_item_in_scope(user, item)

    idempotency_key = (idempotency_key or "").strip()

    with transaction.atomic():
        locked = (
            TestRequestItem.objects.select_for_update(of=("self",))
            .select_related("test", "test__department", "request")
            .get(pk=item.pk)
        )

        # 2) Repeated call with the same key replays the first outcome
        if idempotency_key:
            prior = ItemTransition.objects.filter(item=locked, idempotency_key=idempotency_key).first()
            if prior is not None:
                if prior.action != name:
                    raise Conflict(
                        f"Idempotency-Key '{idempotency_key}' was already used for action '{prior.action}'."
                    )
                logger.info("Replayed %s on item %s (key %s)", name, locked.pk, idempotency_key)
                return ActionOutcome(item=locked, transition=prior, replayed=True)

        current = locked.status
        target = rule["to"]

        if locked.is_panel_header:
            raise ValidationError(
                {"item": "Panel header items follow their analytes; act on the analyte items."}
            )

        # 3) Terminal lock
        if wf.is_terminal(current):
            if target == current:
                raise Conflict(f"Item is already {current}.")
            raise ValidationError(
                {"status": f"Item is in terminal state '{current}' and cannot be modified."}
            )

        # 4) Already there
        if target is not None and target == current and current not in rule["from"]:
            raise Conflict(f"Item is already {current}.")
        if target is None and locked.is_under_review:
            raise Conflict("Item is already under review.")

        # 5) Optimistic version check
        if expected_version is not None and int(expected_version) != locked.version:
            raise Conflict(
                f"Item was modified by someone else (version {locked.version}, expected {expected_version})."
            )

        # 6) Legality
        try:
            new_status = wf.action_target(name, current)
        except ValueError:
            logger.warning("Rejected %s on item %s in status %s", name, locked.pk, current)
            raise ValidationError(
                {"status": f"Invalid item transition: {current} -> {target or current} (action '{name}')."}
            )

        now = timezone.now()
        fields = {"version": F("version") + 1, "updated_at": now}

        if name == "adopt_analyzer":
            fields.update(_adopt_analyzer_values(locked))

        # 7) Result presence
        if rule.get("requires_result") and not locked.has_result:
            raise ValidationError({"result_value": f"Cannot {name}: missing result value."})

        if new_status != current:
            fields["status"] = new_status

        if name == "verify":
            fields.update(verified_by=user, verified_at=now, is_under_review=False)
        elif name == "reopen":
            fields.update(verified_by=None, verified_at=None)
        elif name == "release":
            fields.update(released_at=now, is_under_review=False)
        elif name == "mark_for_review":
            fields.update(is_under_review=True, reviewed_by=user, reviewed_at=now)

        old_value = locked.result_value or ""
        TestRequestItem.objects.filter(pk=locked.pk).update(**fields)
        locked.refresh_from_db()

        if "result_value" in fields and old_value != locked.result_value:
            ResultAuditLog.objects.create(
                item=locked, old_value=old_value, new_value=locked.result_value, changed_by=user
            )

        transition = ItemTransition.objects.create(
            item=locked,
            action=name,
            from_status=current,
            to_status=locked.status,
            performed_by=user,
            idempotency_key=idempotency_key,
            comment=comment or "",
            outcome=item_snapshot(locked),
        )

        if locked.status != current:
            _resolve_open_alerts(item_id=locked.pk, state=current)
            sync_parent_status(locked.parent_id)

        publish_event(
            TEST_STATUS_UPDATED,
            {
                "item_id": locked.pk,
                "request_id": locked.request_id,
                "action": name,
                "label": rule.get("event_label", locked.status),
                "from_status": current,
                "to_status": locked.status,
                "is_under_review": locked.is_under_review,
                "version": locked.version,
            },
            department=locked.test.department,
        )

    logger.info(
        "Item %s: %s %s -> %s by %s",
        locked.pk,
        name,
        current,
        locked.status,
        getattr(user, "username", None) or "system",
    )
    return ActionOutcome(item=locked, transition=transition)


def execute_status_update(*, item: TestRequestItem, new_status: str, user, expected_version=None, idempotency_key=""):
    """
    Plain status update mapped onto the action that performs it.
    """
    current = wf.normalize_status(item.status)
    target = wf.normalize_status(new_status)

    if current == target:
        raise Conflict(f"Item is already {current}.")
    if wf.is_terminal(current):
        raise ValidationError(
            {"status": f"Item is in terminal state '{current}' and cannot be modified."}
        )

    try:
        action = wf.action_for_target(current, target)
    except ValueError as e:
        raise ValidationError({"status": str(e)})

    return execute_action(
        item=item,
        action=action,
        user=user,
        expected_version=expected_version,
        idempotency_key=idempotency_key,
    )
