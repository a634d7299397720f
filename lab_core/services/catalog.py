# lab_core/services/catalog.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Max
from rest_framework.exceptions import NotFound, ValidationError

from lab_core.exceptions import Conflict
from lab_core.models import NormalRange, PanelAnalyte, TestCatalog

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Lookups
# ------------------------------------------------------------
def get_analyte(analyte_id) -> TestCatalog:
    try:
        return TestCatalog.objects.get(pk=analyte_id, is_panel=False)
    except (TestCatalog.DoesNotExist, ValueError, TypeError):
        raise NotFound("Test not found.")


def get_panel(panel_id) -> TestCatalog:
    try:
        return TestCatalog.objects.get(pk=panel_id, is_panel=True)
    except (TestCatalog.DoesNotExist, ValueError, TypeError):
        raise NotFound("Panel not found.")


def ensure_unique_name(name: str, *, exclude_id: Optional[int] = None) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError({"name": "Name is required."})
    qs = TestCatalog.objects.filter(name__iexact=clean)
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    if qs.exists():
        raise Conflict(f"A test or panel named '{clean}' already exists.")
    return clean


# ------------------------------------------------------------
# Panel price
# ------------------------------------------------------------
def recalculate_panel_price(panel: TestCatalog) -> Decimal:
    """Store the sum of current constituent prices on the panel."""
    total = panel.constituent_price_total()
    TestCatalog.objects.filter(pk=panel.pk).update(price=total)
    panel.price = total
    logger.info("Recalculated price for panel %s to %s", panel.pk, total)
    return total


def recalculate_auto_panels_for(analyte: TestCatalog) -> List[int]:
    """Refresh every auto-recalc panel containing the analyte."""
    refreshed = []
    for panel in TestCatalog.objects.filter(is_panel=True, panel_auto_recalc=True, analytes=analyte).distinct():
        recalculate_panel_price(panel)
        refreshed.append(panel.pk)
    return refreshed


# ------------------------------------------------------------
# Analytes
# ------------------------------------------------------------
def save_analyte(serializer, *, instance: Optional[TestCatalog] = None) -> TestCatalog:
    """
    Create or update an analyte from a validated serializer.

    A price change propagates to auto-recalc panels in the same transaction.
    """
    data = serializer.validated_data
    if "name" in data or instance is None:
        data["name"] = ensure_unique_name(
            data.get("name", instance.name if instance else ""),
            exclude_id=instance.pk if instance else None,
        )

    old_price = instance.price if instance is not None else None

    with transaction.atomic():
        try:
            analyte = serializer.save(is_panel=False)
        except IntegrityError:
            raise Conflict(f"A test or panel named '{data.get('name')}' already exists.")

        if instance is not None and old_price != analyte.price:
            recalculate_auto_panels_for(analyte)

    return analyte


def set_active(test: TestCatalog, is_active: bool) -> TestCatalog:
    """
    Soft toggle. Ranges and panel links are never touched, so re-activation
    restores the previous configuration unchanged.
    """
    TestCatalog.objects.filter(pk=test.pk).update(is_active=bool(is_active))
    test.is_active = bool(is_active)
    return test


def delete_test(test: TestCatalog) -> Dict[str, Any]:
    """
    Hard delete when nothing refers to the test, otherwise deactivate.
    """
    in_use = test.request_items.exists()
    if not test.is_panel:
        in_use = in_use or test.panel_memberships.exists()

    if in_use:
        set_active(test, False)
        logger.info("Deactivated referenced catalog entry %s instead of deleting", test.pk)
        return {"id": test.pk, "soft_deleted": True, "is_active": False}

    pk = test.pk
    test.delete()
    logger.info("Deleted catalog entry %s", pk)
    return {"id": pk, "soft_deleted": False}


# ------------------------------------------------------------
# Panels
# ------------------------------------------------------------
def save_panel(serializer, *, instance: Optional[TestCatalog] = None) -> TestCatalog:
    data = serializer.validated_data
    if "name" in data or instance is None:
        data["name"] = ensure_unique_name(
            data.get("name", instance.name if instance else ""),
            exclude_id=instance.pk if instance else None,
        )

    was_auto = bool(instance.panel_auto_recalc) if instance is not None else False

    with transaction.atomic():
        try:
            panel = serializer.save(is_panel=True)
        except IntegrityError:
            raise Conflict(f"A test or panel named '{data.get('name')}' already exists.")

        if panel.panel_auto_recalc and (instance is None or not was_auto or "price" in data):
            recalculate_panel_price(panel)

    return panel


def add_analytes(panel: TestCatalog, analyte_ids: Iterable[int]) -> List[PanelAnalyte]:
    ids = [int(a) for a in analyte_ids]
    if not ids:
        raise ValidationError({"analyte_ids": "At least one analyte is required."})

    analytes = {a.pk: a for a in TestCatalog.objects.filter(pk__in=ids)}
    missing = [a for a in ids if a not in analytes]
    if missing:
        raise ValidationError({"analyte_ids": f"Unknown analyte id(s): {missing}"})
    nested = [a for a in ids if analytes[a].is_panel]
    if nested:
        raise ValidationError({"analyte_ids": "A panel cannot contain another panel."})

    created = []
    with transaction.atomic():
        position = (panel.memberships.aggregate(m=Max("position"))["m"] or 0)
        for analyte_id in ids:
            position += 1
            link, was_created = PanelAnalyte.objects.get_or_create(
                panel=panel,
                analyte=analytes[analyte_id],
                defaults={"position": position},
            )
            if was_created:
                created.append(link)

        if panel.panel_auto_recalc:
            recalculate_panel_price(panel)

    return created


def remove_analyte(panel: TestCatalog, analyte_id) -> None:
    with transaction.atomic():
        deleted, _ = PanelAnalyte.objects.filter(panel=panel, analyte_id=analyte_id).delete()
        if not deleted:
            raise NotFound("Analyte is not linked to this panel.")
        if panel.panel_auto_recalc:
            recalculate_panel_price(panel)


# ------------------------------------------------------------
# Normal ranges
# ------------------------------------------------------------
def ranges_for(analyte: TestCatalog, *, panel: Optional[TestCatalog] = None, gender: Optional[str] = None):
    qs = NormalRange.objects.filter(analyte=analyte)
    qs = qs.filter(panel=panel) if panel is not None else qs.filter(panel__isnull=True)
    if gender:
        qs = qs.filter(gender__iexact=gender.strip())
    return qs.select_related("unit").order_by("id")


def save_range(serializer, **extra) -> NormalRange:
    """full_clean() before save so model-level rules surface as 400s."""
    instance = serializer.instance
    attrs = dict(serializer.validated_data, **extra)

    candidate = instance or NormalRange()
    for key, value in attrs.items():
        setattr(candidate, key, value)

    candidate.clear_irrelevant_fields()
    candidate.full_clean()

    panel = candidate.panel
    if panel is not None:
        if not panel.is_panel:
            raise ValidationError({"panel": "Overrides can only be attached to a panel."})
        if not panel.memberships.filter(analyte_id=candidate.analyte_id).exists():
            raise ValidationError({"analyte": "The analyte is not part of this panel."})

    candidate.save()
    return candidate
