# lab_core/workflows/turnaround.py
"""
Turnaround budgets per item status.

Pure data and helpers, no Django imports.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional


# ===============================================================
# Budgets
# ===============================================================
# warn_after   : time in status after which the item is at risk
# breach_after : time in status after which an alert is raised
# severity     : weight carried by the alert
#
# Absent or None: no budget applies (pending, terminal states).
# ===============================================================

TURNAROUND_BUDGETS: Dict[str, Optional[Dict[str, Any]]] = {
    "pending": None,
    "sample_collected": {
        "warn_after": timedelta(hours=2),
        "breach_after": timedelta(hours=4),
        "severity": "warning",
    },
    "in_progress": {
        "warn_after": timedelta(hours=12),
        "breach_after": timedelta(hours=24),
        "severity": "critical",
    },
    # awaiting verification
    "completed": {
        "warn_after": timedelta(hours=12),
        "breach_after": timedelta(hours=24),
        "severity": "warning",
    },
    # awaiting release
    "verified": {
        "warn_after": timedelta(hours=24),
        "breach_after": timedelta(hours=48),
        "severity": "warning",
    },
    "released": None,
    "cancelled": None,
}


def get_budget(state: Optional[str]) -> Optional[Dict[str, Any]]:
    if not state:
        return None
    return TURNAROUND_BUDGETS.get(state.strip().lower())


def turnaround_status(state: Optional[str], entered_at: Optional[datetime], now: datetime) -> Dict[str, Any]:
    """
    Classify time spent in `state` as ok / warning / breached.
    """
    budget = get_budget(state)
    if not budget or entered_at is None:
        return {"status": "none", "elapsed_seconds": None, "budget_seconds": None}

    elapsed = now - entered_at
    if elapsed >= budget["breach_after"]:
        level = "breached"
    elif elapsed >= budget["warn_after"]:
        level = "warning"
    else:
        level = "ok"

    return {
        "status": level,
        "severity": budget["severity"],
        "elapsed_seconds": max(0, int(elapsed.total_seconds())),
        "budget_seconds": int(budget["breach_after"].total_seconds()),
    }
