# lab_core/permissions.py
from __future__ import annotations

from typing import Iterable, Optional, Set, Tuple

from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

from lab_core import workflows as wf
from lab_core.models import LabPermission, StaffProfile


WILDCARD = "*"


# ------------------------------------------------------------------
# Capability lookup
# ------------------------------------------------------------------
def _norm(value) -> str:
    return str(value or "").strip().lower()


def permission_codes(user) -> Set[Tuple[str, str]]:
    """
    (resource, action) pairs granted to the user through their roles.
    Superusers hold the global wildcard.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return set()
    if user.is_superuser:
        return {(WILDCARD, WILDCARD)}

    rows = (
        LabPermission.objects.filter(roles__user_roles__user=user)
        .values_list("resource", "action")
        .distinct()
    )
    return {(_norm(r), _norm(a)) for r, a in rows}


def grants(codes: Iterable[Tuple[str, str]], resource: str, action: str) -> bool:
    resource = _norm(resource)
    action = _norm(action)
    for r, a in codes:
        if r == WILDCARD and a == WILDCARD:
            return True
        if r == resource and a in (action, WILDCARD):
            return True
    return False


def can(user, resource: str, action: str) -> bool:
    """Case-insensitive capability check with `*:*` and `resource:*` wildcards."""
    return grants(permission_codes(user), resource, action)


def require(user, resource: str, action: str) -> None:
    if not can(user, resource, action):
        raise PermissionDenied(f"Missing permission {_norm(resource)}:{_norm(action)}.")


# ------------------------------------------------------------------
# Department scoping
# ------------------------------------------------------------------
def user_department_id(user) -> Optional[int]:
    if not user or not getattr(user, "is_authenticated", False):
        return None
    return (
        StaffProfile.objects.filter(user=user)
        .values_list("department_id", flat=True)
        .first()
    )


def restricted_department_id(user) -> Optional[int]:
    """
    Department the user is confined to, or None when unrestricted.

    Users holding worklist:all_departments (or *:*) and users without a
    department see every department.
    """
    if can(user, *wf.ALL_DEPARTMENTS_PERMISSION):
        return None
    return user_department_id(user)


def ensure_item_in_scope(user, item) -> None:
    dept_id = restricted_department_id(user)
    if dept_id is None:
        return
    if item.test.department_id != dept_id:
        raise PermissionDenied("This item belongs to another department.")


# ------------------------------------------------------------------
# Permission class
# ------------------------------------------------------------------
class HasLabPermission(BasePermission):
    """
    Gate a view on `required_permissions`: a mapping of HTTP method (or "*")
    to a (resource, action) pair. Methods without an entry only need an
    authenticated user.
    """

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        table = getattr(view, "required_permissions", None) or {}
        needed = table.get(request.method) or table.get("*")
        if not needed:
            return True

        resource, action = needed
        if can(user, resource, action):
            return True

        self.message = f"Missing permission {_norm(resource)}:{_norm(action)}."
        return False
