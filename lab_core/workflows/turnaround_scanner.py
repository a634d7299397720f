# lab_core/workflows/turnaround_scanner.py
from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from lab_core.models import ItemTransition, TestRequestItem, TurnaroundAlert
from lab_core.workflows.turnaround import TURNAROUND_BUDGETS, get_budget

logger = logging.getLogger(__name__)


def status_entered_at(item: TestRequestItem):
    """
    When the item entered its current status.

    ItemTransition is the source of truth; items that never moved fall back
    to their creation time.
    """
    t = (
        ItemTransition.objects.filter(item=item, to_status=item.status)
        .order_by("-created_at", "-id")
        .first()
    )
    if t is not None:
        return t.created_at
    return item.created_at


def check_turnaround_breaches(*, now=None) -> int:
    """
    Scan leaf items and raise one alert per (item, status) whose turnaround
    budget is exceeded.

    Returns:
        int: number of newly created alerts
    """
    now = now or timezone.now()
    created_count = 0

    budgeted = [state for state, budget in TURNAROUND_BUDGETS.items() if budget]
    qs = TestRequestItem.objects.filter(
        status__in=budgeted,
        test__is_panel=False,
    ).select_related("test")

    for item in qs.iterator():
        budget = get_budget(item.status)
        if not budget:
            continue

        started_at = status_entered_at(item)
        if not started_at:
            continue

        deadline = started_at + budget["breach_after"]
        if now <= deadline:
            continue

        with transaction.atomic():
            _, created = TurnaroundAlert.objects.get_or_create(
                item=item,
                state=item.status,
                defaults={
                    "severity": budget.get("severity", "warning"),
                    "budget_seconds": int(budget["breach_after"].total_seconds()),
                    "triggered_at": now,
                    "message": (
                        f"Turnaround exceeded for {item.test.name} (item {item.pk}) "
                        f"in {item.status} (>{budget['breach_after']})"
                    ),
                    "meta": {
                        "started_at": started_at.isoformat(),
                        "deadline": deadline.isoformat(),
                        "now": now.isoformat(),
                    },
                },
            )

        if created:
            created_count += 1

    if created_count:
        logger.warning("Raised %s turnaround alert(s)", created_count)
    return created_count
