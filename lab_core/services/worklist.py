# lab_core/services/worklist.py
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from django.db.models import Count, Q, QuerySet
from rest_framework.exceptions import ValidationError

from lab_core import workflows as wf
from lab_core.filters import WorklistFilter
from lab_core.models import TestRequestItem
from lab_core.permissions import restricted_department_id


SORT_FIELDS = {
    "updated_at": ("updated_at",),
    "date_ordered": ("request__created_at",),
    "patient_name": ("request__patient__first_name", "request__patient__last_name"),
    "test_name": ("test__name",),
}
SORT_ALIASES = {
    "sortby": "sort_by",
    "sortBy": "sort_by",
}
DEFAULT_SORT = "updated_at"


def base_queryset(user) -> QuerySet:
    """
    Leaf items visible to the user. Worklist rows and status counts are both
    derived from this set.
    """
    qs = TestRequestItem.objects.filter(test__is_panel=False)

    dept_id = restricted_department_id(user)
    if dept_id is not None:
        qs = qs.filter(test__department_id=dept_id)

    return qs


def _param(params: Mapping[str, Any], name: str, default: str = "") -> str:
    value = params.get(name)
    if value is None:
        for alias, target in SORT_ALIASES.items():
            if target == name and params.get(alias) is not None:
                value = params.get(alias)
                break
    return str(value if value is not None else default).strip()


def _ordering(params: Mapping[str, Any]) -> List[str]:
    sort_by = _param(params, "sort_by", DEFAULT_SORT) or DEFAULT_SORT
    order = (_param(params, "order", "desc") or "desc").lower()

    if sort_by not in SORT_FIELDS:
        raise ValidationError({"sort_by": f"Unsupported sort key '{sort_by}'. Use one of: {', '.join(SORT_FIELDS)}."})
    if order not in ("asc", "desc"):
        raise ValidationError({"order": "Order must be 'asc' or 'desc'."})

    prefix = "-" if order == "desc" else ""
    return [f"{prefix}{f}" for f in SORT_FIELDS[sort_by]] + [f"{prefix}id"]


def filtered_queryset(user, params: Optional[Mapping[str, Any]] = None) -> QuerySet:
    params = params or {}
    fs = WorklistFilter(data=params, queryset=base_queryset(user))
    if not fs.is_valid():
        raise ValidationError(fs.errors)

    return fs.qs.select_related(
        "test",
        "test__department",
        "test__sample_type",
        "test__unit",
        "request",
        "request__patient",
        "parent__test",
    ).order_by(*_ordering(params))


def worklist_row(item: TestRequestItem) -> Dict[str, Any]:
    patient = item.request.patient
    test = item.test
    return {
        "item_id": item.pk,
        "request_id": item.request_id,
        "patient_id": patient.pk,
        "patient_name": patient.full_name,
        "lab_id": patient.lab_id,
        "test_id": test.pk,
        "test_name": test.name,
        "panel_name": item.parent.test.name if item.parent_id else None,
        "department": test.department.name if test.department_id else None,
        "sample_type": test.sample_type.name if test.sample_type_id else None,
        "unit": (test.unit.symbol or test.unit.name) if test.unit_id else None,
        "status": item.status,
        "status_label": wf.ITEM_LABELS.get(item.status, item.status),
        "is_under_review": item.is_under_review,
        "result_value": item.result_value or None,
        "result_flag": item.result_flag or None,
        "priority": item.request.priority,
        "date_ordered": item.request.created_at,
        "updated_at": item.updated_at,
        "version": item.version,
    }


def get_worklist(user, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    return [worklist_row(item) for item in filtered_queryset(user, params)]


def get_status_counts(user) -> Dict[str, int]:
    """
    Count per stored status over the unfiltered worklist set; the values sum
    to len(get_worklist(user)).
    """
    counts = {status: 0 for status in wf.ITEM_STATES}
    rows = base_queryset(user).values("status").annotate(n=Count("id")).order_by()
    for row in rows:
        counts[row["status"]] = counts.get(row["status"], 0) + row["n"]
    return counts


def get_review_count(user) -> int:
    return base_queryset(user).filter(Q(is_under_review=True)).count()
