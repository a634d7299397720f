# lab_core/views_identity.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework.response import Response

from .models import StaffProfile, UserRole
from .permissions import permission_codes, restricted_department_id
from .views_base import LabAPIView


class MeView(LabAPIView):
    """
    The authenticated user with roles, department and effective permissions.

    Used by the frontend to decide which screens and actions to show; the
    server still enforces every permission on its own.
    """

    @extend_schema(tags=["Identity"])
    def get(self, request):
        user = request.user

        profile = StaffProfile.objects.select_related("department").filter(user=user).first()
        department = None
        if profile is not None and profile.department_id:
            department = {"id": profile.department_id, "name": profile.department.name}

        roles = list(
            UserRole.objects.filter(user=user)
            .select_related("role")
            .order_by("role__name")
            .values_list("role__name", flat=True)
        )

        return Response(
            {
                "id": user.id,
                "username": user.get_username(),
                "full_name": (profile.full_name if profile and profile.full_name else user.get_full_name()),
                "email": user.email,
                "is_superuser": bool(user.is_superuser),
                "roles": roles,
                "permissions": sorted(f"{r}:{a}" for r, a in permission_codes(user)),
                "department": department,
                "department_restricted": restricted_department_id(user) is not None,
            }
        )
