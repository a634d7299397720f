# lab_core/views_events.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from lab_core.permissions import restricted_department_id
from lab_core.serializers import LabEventSerializer
from lab_core.services.events import events_since, last_seq
from lab_core.views_base import LabAPIView


def _int_param(request, name: str, default: int) -> int:
    raw = (request.query_params.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError({name: f"{name} must be an integer."})
    if value < 0:
        raise ValidationError({name: f"{name} cannot be negative."})
    return value


class EventFeedView(LabAPIView):
    """
    Events after a sequence number, oldest first.

    Clients keep the last seq they processed and ask again with ?since=<seq>.
    Department-scoped events from other departments are left out for users
    confined to a department.
    """

    @extend_schema(
        tags=["Events"],
        parameters=[
            OpenApiParameter("since", int, description="Return events with seq greater than this"),
            OpenApiParameter("limit", int, description="Page size"),
        ],
    )
    def get(self, request):
        since = _int_param(request, "since", 0)
        limit = _int_param(request, "limit", 0)

        events = events_since(since, limit=limit or None, department_id=restricted_department_id(request.user))
        cursor = events[-1].seq if events else since
        return Response(
            {
                "data": LabEventSerializer(events, many=True).data,
                "meta": {
                    "count": len(events),
                    "since": since,
                    "last_seq": cursor,
                    "latest_seq": last_seq(),
                },
            }
        )
