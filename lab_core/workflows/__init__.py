# lab_core/workflows/__init__.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple


# ===============================================================
# Reception workflow (request level, linear)
# ===============================================================

BILLING_PENDING = "billing_pending"
SAMPLE_PENDING = "sample_pending"
PROCESSING = "processing"
RECEPTION_COMPLETED = "completed"

RECEPTION_STATES: List[str] = [
    BILLING_PENDING,
    SAMPLE_PENDING,
    PROCESSING,
    RECEPTION_COMPLETED,
]

RECEPTION_NEXT: Dict[str, Optional[str]] = {
    BILLING_PENDING: SAMPLE_PENDING,
    SAMPLE_PENDING: PROCESSING,
    PROCESSING: RECEPTION_COMPLETED,
    RECEPTION_COMPLETED: None,
}

RECEPTION_LABELS: Dict[str, str] = {
    BILLING_PENDING: "Billing Pending",
    SAMPLE_PENDING: "Awaiting Sample",
    PROCESSING: "Processing",
    RECEPTION_COMPLETED: "Completed",
}

PAYMENT_AWAITING = "awaiting_payment"
PAYMENT_PAID = "paid"

PAYMENT_STATES: List[str] = [PAYMENT_AWAITING, PAYMENT_PAID]

PRIORITY_ROUTINE = "ROUTINE"
PRIORITY_URGENT = "URGENT"

PRIORITIES: List[str] = [PRIORITY_ROUTINE, PRIORITY_URGENT]


# ===============================================================
# Item workflow (per ordered test)
# ===============================================================

PENDING = "pending"
SAMPLE_COLLECTED = "sample_collected"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
VERIFIED = "verified"
RELEASED = "released"
CANCELLED = "cancelled"

# Ordered by progress; used for aggregation
ITEM_STATES: List[str] = [
    PENDING,
    SAMPLE_COLLECTED,
    IN_PROGRESS,
    COMPLETED,
    VERIFIED,
    RELEASED,
    CANCELLED,
]

# Display-only markers, never stored in TestRequestItem.status
UNDER_REVIEW = "under_review"
REOPENED = "reopened"

ITEM_LABELS: Dict[str, str] = {
    PENDING: "Pending",
    SAMPLE_COLLECTED: "Sample Collected",
    IN_PROGRESS: "In Progress",
    COMPLETED: "Completed",
    VERIFIED: "Verified",
    RELEASED: "Released",
    CANCELLED: "Cancelled",
    UNDER_REVIEW: "Under Review",
    REOPENED: "Reopened",
}

ITEM_TRANSITIONS: Dict[str, Set[str]] = {
    PENDING: {SAMPLE_COLLECTED, CANCELLED},
    SAMPLE_COLLECTED: {IN_PROGRESS, CANCELLED},
    IN_PROGRESS: {COMPLETED},
    COMPLETED: {VERIFIED, IN_PROGRESS},
    VERIFIED: {RELEASED, IN_PROGRESS},
    RELEASED: set(),
    CANCELLED: set(),
}

TERMINAL_STATES: Set[str] = {RELEASED, CANCELLED}

NON_TERMINAL_STATES: Set[str] = set(ITEM_STATES) - TERMINAL_STATES


# ===============================================================
# Named actions and the central policy table
# ===============================================================
# target=None marks a flag-only action that never changes status.

ACTION_RULES: Dict[str, Dict[str, Any]] = {
    "collect_sample": {
        "from": {PENDING},
        "to": SAMPLE_COLLECTED,
        "permission": ("phlebotomy", "collect"),
        "event_label": SAMPLE_COLLECTED,
    },
    "start": {
        "from": {SAMPLE_COLLECTED},
        "to": IN_PROGRESS,
        "permission": ("results", "enter"),
        "event_label": IN_PROGRESS,
    },
    "adopt_analyzer": {
        "from": {SAMPLE_COLLECTED, IN_PROGRESS},
        "to": IN_PROGRESS,
        "permission": ("results", "enter"),
        "event_label": IN_PROGRESS,
    },
    "complete": {
        "from": {IN_PROGRESS},
        "to": COMPLETED,
        "permission": ("results", "enter"),
        "requires_result": True,
        "event_label": COMPLETED,
    },
    "verify": {
        "from": {COMPLETED},
        "to": VERIFIED,
        "permission": ("pathologist", "verify"),
        "requires_result": True,
        "event_label": VERIFIED,
    },
    "reopen": {
        "from": {COMPLETED, VERIFIED},
        "to": IN_PROGRESS,
        "permission": ("pathologist", "verify"),
        "event_label": REOPENED,
    },
    "release": {
        "from": {VERIFIED},
        "to": RELEASED,
        "permission": ("pathologist", "release"),
        "event_label": RELEASED,
    },
    "cancel": {
        "from": {PENDING, SAMPLE_COLLECTED},
        "to": CANCELLED,
        "permission": ("phlebotomy", "collect"),
        "event_label": CANCELLED,
    },
    "mark_for_review": {
        "from": set(NON_TERMINAL_STATES),
        "to": None,
        "permission": ("results", "enter"),
        "event_label": UNDER_REVIEW,
    },
}

# Permissions that gate endpoints outside the item action table
RESULT_ENTRY_PERMISSION: Tuple[str, str] = ("results", "enter")
WORKLIST_PERMISSION: Tuple[str, str] = ("worklist", "view")
ALL_DEPARTMENTS_PERMISSION: Tuple[str, str] = ("worklist", "all_departments")
RECEPTION_PERMISSION: Tuple[str, str] = ("reception", "update")


# ===============================================================
# Normalization
# ===============================================================

def normalize_status(value: Any) -> str:
    """
    Accepts display spellings ("Sample Collected", "in-progress") and returns
    the stored form ("sample_collected", "in_progress").
    """
    raw = str(value or "").strip().lower()
    return raw.replace("-", "_").replace(" ", "_")


def normalize_action(value: Any) -> str:
    return normalize_status(value)


# ===============================================================
# Reception API
# ===============================================================

def get_next_status(current: Optional[str]) -> Optional[str]:
    """
    Total lookup over the reception chain.

    Terminal and unknown statuses both return None.
    """
    return RECEPTION_NEXT.get(normalize_status(current))


# ===============================================================
# Item workflow API
# ===============================================================

def is_terminal(status: Optional[str]) -> bool:
    return normalize_status(status) in TERMINAL_STATES


def allowed_next_states(current: str) -> List[str]:
    """
    Canonical next states only, independent of permissions.
    """
    return sorted(ITEM_TRANSITIONS.get(normalize_status(current), set()))


def validate_transition(current: Optional[str], target: Optional[str]) -> None:
    """
    Raises ValueError if current -> target is not an edge of the item workflow.
    """
    cur = normalize_status(current)
    tgt = normalize_status(target)

    if cur not in ITEM_TRANSITIONS:
        raise ValueError(f"Unknown item status: {cur or '<empty>'}")
    if tgt not in ITEM_TRANSITIONS:
        raise ValueError(f"Unknown item status: {tgt or '<empty>'}")
    if tgt not in ITEM_TRANSITIONS[cur]:
        raise ValueError(f"Invalid item transition: {cur} -> {tgt}")


def get_action_rule(action: str) -> Dict[str, Any]:
    name = normalize_action(action)
    rule = ACTION_RULES.get(name)
    if rule is None:
        raise ValueError(f"Unknown workflow action: {action}")
    return rule


def required_permission(action: str) -> Tuple[str, str]:
    return get_action_rule(action)["permission"]


def action_target(action: str, current: Optional[str]) -> Optional[str]:
    """
    Returns the status an action leads to from `current`.

    Flag-only actions return the current status. Raises ValueError when the
    action is not defined for `current`.
    """
    name = normalize_action(action)
    rule = get_action_rule(name)
    cur = normalize_status(current)

    if cur not in rule["from"]:
        raise ValueError(f"Action '{name}' is not allowed from status '{cur}'")

    return rule["to"] if rule["to"] is not None else cur


def action_for_target(current: Optional[str], target: Optional[str]) -> str:
    """
    Maps a plain status update (current -> target) onto the named action
    that performs it. Raises ValueError if no action matches.
    """
    cur = normalize_status(current)
    tgt = normalize_status(target)

    validate_transition(cur, tgt)

    for name in ("collect_sample", "start", "complete", "verify", "reopen", "release", "cancel"):
        rule = ACTION_RULES[name]
        if cur in rule["from"] and rule["to"] == tgt:
            return name

    raise ValueError(f"Invalid item transition: {cur} -> {tgt}")


def allowed_actions(
    current: Optional[str],
    can: Optional[Callable[[str, str], bool]] = None,
) -> List[str]:
    """
    Actions available from `current`, optionally filtered through a
    permission predicate can(resource, action).
    """
    cur = normalize_status(current)
    out: List[str] = []
    for name, rule in ACTION_RULES.items():
        if cur not in rule["from"]:
            continue
        if can is not None and not can(*rule["permission"]):
            continue
        out.append(name)
    return sorted(out)


def derive_request_status(statuses: Iterable[str]) -> str:
    """
    Overall request status: the least advanced status among its
    non-cancelled items.
    """
    normalized = [normalize_status(s) for s in statuses]
    if not normalized:
        return PENDING

    active = [s for s in normalized if s != CANCELLED and s in ITEM_STATES]
    if not active:
        return CANCELLED

    return min(active, key=ITEM_STATES.index)


def workflow_definition() -> Dict[str, Any]:
    """
    Stable JSON-serializable definition for UI.
    """
    return {
        "reception": {
            "states": list(RECEPTION_STATES),
            "next": dict(RECEPTION_NEXT),
            "labels": dict(RECEPTION_LABELS),
        },
        "item": {
            "states": list(ITEM_STATES),
            "terminal": sorted(TERMINAL_STATES),
            "transitions": {s: sorted(n) for s, n in ITEM_TRANSITIONS.items()},
            "labels": dict(ITEM_LABELS),
            "actions": {
                name: {
                    "from": sorted(rule["from"]),
                    "to": rule["to"],
                    "permission": "%s:%s" % rule["permission"],
                }
                for name, rule in ACTION_RULES.items()
            },
        },
    }


__all__ = [
    "RECEPTION_STATES",
    "RECEPTION_NEXT",
    "ITEM_STATES",
    "ITEM_TRANSITIONS",
    "TERMINAL_STATES",
    "ACTION_RULES",
    "normalize_status",
    "normalize_action",
    "get_next_status",
    "is_terminal",
    "allowed_next_states",
    "validate_transition",
    "get_action_rule",
    "required_permission",
    "action_target",
    "action_for_target",
    "allowed_actions",
    "derive_request_status",
    "workflow_definition",
]
