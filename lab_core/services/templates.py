# lab_core/services/templates.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from django.utils import timezone
from rest_framework.exceptions import NotFound

from lab_core.models import NormalRange, TestCatalog, TestRequest, TestRequestItem


DEFAULT_QUALITATIVE_OPTIONS = ["Negative", "Positive"]

# Used when the catalog entry carries no option list of its own
FALLBACK_OPTIONS: Dict[str, List[str]] = {
    "urine colour": ["Pale Yellow", "Yellow", "Dark Yellow", "Amber", "Red", "Brown"],
    "urine color": ["Pale Yellow", "Yellow", "Dark Yellow", "Amber", "Red", "Brown"],
    "urine appearance": ["Clear", "Slightly Cloudy", "Cloudy", "Turbid"],
    "urine glucose": ["Negative", "Trace", "1+", "2+", "3+", "4+"],
    "urine protein": ["Negative", "Trace", "1+", "2+", "3+", "4+"],
    "urine ketones": ["Negative", "Trace", "Small", "Moderate", "Large"],
    "urine blood": ["Negative", "Trace", "1+", "2+", "3+"],
    "urine bilirubin": ["Negative", "1+", "2+", "3+"],
    "urobilinogen": ["Normal", "1+", "2+", "3+", "4+"],
    "nitrite": ["Negative", "Positive"],
    "leukocytes": ["Negative", "Trace", "1+", "2+", "3+"],
    "blood group": ["A", "B", "AB", "O"],
    "rhesus factor": ["Positive", "Negative"],
    "stool occult blood": ["Negative", "Positive"],
}


# ------------------------------------------------------------
# Reference range resolution
# ------------------------------------------------------------
def _precedence(row: NormalRange):
    return (
        0 if row.gender != NormalRange.Gender.ANY else 1,
        row.band_width(),
        row.pk,
    )


def pick_range(rows: List[NormalRange], *, gender, age, panel_id: Optional[int] = None) -> Optional[NormalRange]:
    """
    Panel overrides win over general rows; then exact gender over Any,
    then the narrowest age band, then the oldest row.
    """
    matching = [r for r in rows if r.matches(gender, age)]

    if panel_id is not None:
        overrides = [r for r in matching if r.panel_id == panel_id]
        if overrides:
            return min(overrides, key=_precedence)

    general = [r for r in matching if r.panel_id is None]
    if not general:
        return None
    return min(general, key=_precedence)


def resolve_range(analyte: TestCatalog, *, gender=None, age=None, panel: Optional[TestCatalog] = None):
    rows = list(NormalRange.objects.filter(analyte=analyte).select_related("unit"))
    return pick_range(rows, gender=gender, age=age, panel_id=panel.pk if panel else None)


# ------------------------------------------------------------
# Qualitative options
# ------------------------------------------------------------
def qualitative_options_for(analyte: TestCatalog, rows: Optional[List[NormalRange]] = None) -> List[str]:
    options = analyte.qualitative_options()
    if options:
        return options

    fallback = FALLBACK_OPTIONS.get((analyte.name or "").strip().lower())
    if fallback:
        return list(fallback)

    if rows is None:
        rows = list(NormalRange.objects.filter(analyte=analyte))
    seen: List[str] = []
    for row in rows:
        if row.range_type != NormalRange.RangeType.QUALITATIVE:
            continue
        for opt in row.qualitative_options():
            if opt.lower() not in {s.lower() for s in seen}:
                seen.append(opt)
    if seen:
        return seen

    return list(DEFAULT_QUALITATIVE_OPTIONS)


def match_option(value, options: List[str]) -> Optional[str]:
    """Canonical spelling of `value` among `options`, case-insensitive."""
    needle = str(value or "").strip().lower()
    for opt in options:
        if opt.lower() == needle:
            return opt
    return None


def compute_flag(analyte: TestCatalog, value, *, ref: Optional[NormalRange], options: List[str]) -> str:
    if value is None or str(value).strip() == "":
        return ""
    if analyte.is_qualitative:
        if ref is not None and ref.range_type == NormalRange.RangeType.QUALITATIVE and ref.qualitative_options():
            return ref.flag_for(value) or ""
        return "N" if match_option(value, options) else "A"
    if ref is None:
        return ""
    return ref.flag_for(value) or ""


# ------------------------------------------------------------
# Template
# ------------------------------------------------------------
def _unit_symbol(analyte: TestCatalog, ref: Optional[NormalRange]) -> str:
    unit = (ref.unit if ref is not None and ref.unit_id else None) or analyte.unit
    if unit is None:
        return ""
    return unit.symbol or unit.name


def build_leaf(item: TestRequestItem, *, gender, age, rows_by_analyte: Dict[int, List[NormalRange]]) -> Dict[str, Any]:
    analyte = item.test
    panel_id = item.parent.test_id if item.parent_id else None
    rows = rows_by_analyte.get(analyte.pk, [])

    ref = pick_range(rows, gender=gender, age=age, panel_id=panel_id)
    options = qualitative_options_for(analyte, rows) if analyte.is_qualitative else []

    leaf = {
        "item_id": item.pk,
        "test_id": analyte.pk,
        "name": analyte.name,
        "type": analyte.test_type,
        "unit": _unit_symbol(analyte, ref),
        "department": analyte.department.name if analyte.department_id else None,
        "reference_range": ref.display() if ref else (" / ".join(options) if options else ""),
        "range_id": ref.pk if ref else None,
        "qualitative_options": options,
        "result_value": item.result_value or None,
        "result_flag": compute_flag(analyte, item.result_value, ref=ref, options=options) or None,
        "status": item.status,
        "is_under_review": item.is_under_review,
        "version": item.version,
    }
    return leaf


def get_result_template(request_id) -> Dict[str, Any]:
    """
    Entry tree for a request: standalone tests are leaves, panels carry
    their analyte leaves and come first. Reference ranges are resolved
    for the patient's gender and age on the ordering date.
    """
    try:
        req = TestRequest.objects.select_related("patient").get(pk=request_id)
    except (TestRequest.DoesNotExist, ValueError, TypeError):
        raise NotFound("Test request not found.")

    patient = req.patient
    ordered_on = timezone.localtime(req.created_at).date() if req.created_at else None
    age = patient.age_on(ordered_on)
    gender = patient.gender

    items = list(
        req.items.select_related(
            "test", "test__unit", "test__department", "parent", "parent__test"
        ).order_by("-test__is_panel", "id")
    )

    analyte_ids = {i.test_id for i in items if not i.test.is_panel}
    rows_by_analyte: Dict[int, List[NormalRange]] = {}
    for row in NormalRange.objects.filter(analyte_id__in=analyte_ids).select_related("unit"):
        rows_by_analyte.setdefault(row.analyte_id, []).append(row)

    children: Dict[int, List[TestRequestItem]] = {}
    for item in items:
        if item.parent_id:
            children.setdefault(item.parent_id, []).append(item)

    out: List[Dict[str, Any]] = []
    for item in items:
        if item.parent_id:
            continue
        if item.test.is_panel:
            out.append(
                {
                    "item_id": item.pk,
                    "test_id": item.test_id,
                    "name": item.test.name,
                    "is_panel": True,
                    "status": item.status,
                    "analytes": [
                        build_leaf(child, gender=gender, age=age, rows_by_analyte=rows_by_analyte)
                        for child in children.get(item.pk, [])
                    ],
                }
            )
        else:
            leaf = build_leaf(item, gender=gender, age=age, rows_by_analyte=rows_by_analyte)
            leaf["is_panel"] = False
            out.append(leaf)

    return {
        "request_id": req.pk,
        "patient": {
            "id": patient.pk,
            "lab_id": patient.lab_id,
            "name": patient.full_name,
            "gender": patient.gender,
            "age": age,
        },
        "priority": req.priority,
        "items": out,
    }
