# lab_core/views_pathologist.py
from __future__ import annotations

from typing import Any

from django.utils import timezone

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from lab_core import workflows as wf
from lab_core.models import AnalyzerResult, ItemTransition, ResultAuditLog, TestRequestItem
from lab_core.permissions import HasLabPermission, ensure_item_in_scope, grants, permission_codes
from lab_core.serializers import (
    ActionSerializer,
    AnalyzerResultSerializer,
    BatchResultSerializer,
    ItemTransitionSerializer,
    ResultAuditLogSerializer,
    ResultSubmitSerializer,
    StatusChangeSerializer,
    TestRequestItemSerializer,
)
from lab_core.services import requests as request_svc
from lab_core.services import results as results_svc
from lab_core.services import worklist as worklist_svc
from lab_core.services.templates import get_result_template
from lab_core.views_base import LabAPIView
from lab_core.workflows.executor import execute_action, execute_status_update
from lab_core.workflows.turnaround import turnaround_status
from lab_core.workflows.turnaround_scanner import status_entered_at


WORKLIST_ONLY = {"GET": wf.WORKLIST_PERMISSION}


# ===============================================================
# Helpers
# ===============================================================
def _get_item(item_id) -> TestRequestItem:
    try:
        return TestRequestItem.objects.select_related(
            "test",
            "test__department",
            "request",
            "parent",
        ).get(pk=item_id)
    except (TestRequestItem.DoesNotExist, ValueError, TypeError):
        raise NotFound("Test request item not found.")


def _idempotency_key(request) -> str:
    return (request.headers.get("Idempotency-Key") or "").strip()


def _items_payload(request, items) -> Any:
    return TestRequestItemSerializer(items, many=True, context={"request": request}).data


# ===============================================================
# Worklist and counts
# ===============================================================
class WorklistView(LabAPIView):
    """
    Leaf items visible to the user.

    Filters: status, department, from, to, search, priority, under_review.
    Sorting: sort_by (updated_at, date_ordered, patient_name, test_name), order.
    """

    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Pathologist"])
    def get(self, request):
        rows = worklist_svc.get_worklist(request.user, request.query_params)
        return Response(
            {
                "data": rows,
                "meta": {
                    "count": len(rows),
                    "under_review": worklist_svc.get_review_count(request.user),
                },
            }
        )


class StatusCountsView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Pathologist"])
    def get(self, request):
        counts = worklist_svc.get_status_counts(request.user)
        return Response(
            {
                "data": counts,
                "meta": {
                    "total": sum(counts.values()),
                    "under_review": worklist_svc.get_review_count(request.user),
                },
            }
        )


class WorkflowDefinitionView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Pathologist"])
    def get(self, request):
        return Response(wf.workflow_definition())


# ===============================================================
# Result entry
# ===============================================================
class ResultTemplateView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Results"])
    def get(self, request, request_id: int):
        return Response(get_result_template(request_id))


class SubmitResultView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = {"POST": wf.RESULT_ENTRY_PERMISSION}

    @extend_schema(
        tags=["Results"],
        request=ResultSubmitSerializer,
        responses={
            200: TestRequestItemSerializer,
            400: OpenApiResponse(description="Invalid value or item not writable"),
            409: OpenApiResponse(description="Stale version"),
        },
    )
    def post(self, request, item_id: int):
        s = ResultSubmitSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        item = results_svc.submit_result(
            item_id,
            s.validated_data["value"],
            request.user,
            expected_version=s.validated_data.get("version"),
        )
        return Response(TestRequestItemSerializer(item, context={"request": request}).data)


class BatchResultsView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = {"POST": wf.RESULT_ENTRY_PERMISSION}

    @extend_schema(tags=["Results"], request=BatchResultSerializer)
    def post(self, request, request_id: int):
        s = BatchResultSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        items = results_svc.submit_results(
            request_id,
            s.validated_data["results"],
            request.user,
            versions=s.validated_data.get("versions"),
            complete=s.validated_data["complete"],
        )
        return Response(_items_payload(request, items))


class ItemHistoryView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Results"])
    def get(self, request, item_id: int):
        item = _get_item(item_id)
        ensure_item_in_scope(request.user, item)

        results = ResultAuditLog.objects.filter(item=item).select_related("changed_by").order_by("created_at", "id")
        transitions = (
            ItemTransition.objects.filter(item=item).select_related("performed_by").order_by("created_at", "id")
        )
        return Response(
            {
                "item_id": item.pk,
                "results": ResultAuditLogSerializer(results, many=True).data,
                "transitions": ItemTransitionSerializer(transitions, many=True).data,
            }
        )


class AnalyzerResultsView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Results"])
    def get(self, request, item_id: int):
        item = _get_item(item_id)
        ensure_item_in_scope(request.user, item)
        rows = AnalyzerResult.objects.filter(item=item).order_by("-created_at", "-id")
        return Response(AnalyzerResultSerializer(rows, many=True).data)


# ===============================================================
# Workflow actions
# ===============================================================
class ItemActionView(LabAPIView):
    """
    Run a named action on one item.

    A repeated call carrying the same Idempotency-Key returns the first
    outcome without applying the action again.
    """

    @extend_schema(
        tags=["Workflow"],
        request=ActionSerializer,
        responses={
            200: OpenApiResponse(description="Item state after the action"),
            400: OpenApiResponse(description="Illegal transition or missing result"),
            403: OpenApiResponse(description="Missing permission or other department"),
            409: OpenApiResponse(description="Already in target state or stale version"),
        },
    )
    def post(self, request, item_id: int, action: str):
        s = ActionSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        item = _get_item(item_id)
        outcome = execute_action(
            item=item,
            action=action,
            user=request.user,
            expected_version=s.validated_data.get("version"),
            idempotency_key=_idempotency_key(request),
            comment=s.validated_data.get("comment", ""),
        )
        return Response(
            {
                "data": outcome.transition.outcome,
                "meta": {
                    "action": outcome.transition.action,
                    "from_status": outcome.transition.from_status,
                    "to_status": outcome.transition.to_status,
                    "replayed": outcome.replayed,
                },
            }
        )


class AllowedActionsView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = WORKLIST_ONLY

    @extend_schema(tags=["Workflow"])
    def get(self, request, item_id: int):
        item = _get_item(item_id)
        ensure_item_in_scope(request.user, item)

        if item.is_panel_header:
            actions = []
        else:
            codes = permission_codes(request.user)
            actions = wf.allowed_actions(item.status, can=lambda r, a: grants(codes, r, a))
            if item.is_under_review and "mark_for_review" in actions:
                actions.remove("mark_for_review")

        return Response(
            {
                "item_id": item.pk,
                "status": item.status,
                "is_terminal": wf.is_terminal(item.status),
                "is_under_review": item.is_under_review,
                "version": item.version,
                "allowed_actions": actions,
                "allowed_next_states": wf.allowed_next_states(item.status),
                "turnaround": turnaround_status(item.status, status_entered_at(item), timezone.now()),
            }
        )


class ItemStatusView(LabAPIView):
    @extend_schema(tags=["Workflow"], request=StatusChangeSerializer)
    def patch(self, request, item_id: int):
        s = StatusChangeSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        if not wf.normalize_status(s.validated_data["status"]):
            raise ValidationError({"status": "Target status is required."})

        item = _get_item(item_id)
        outcome = execute_status_update(
            item=item,
            new_status=s.validated_data["status"],
            user=request.user,
            expected_version=s.validated_data.get("version"),
            idempotency_key=_idempotency_key(request),
        )
        return Response(TestRequestItemSerializer(outcome.item, context={"request": request}).data)


class ReleaseReportView(LabAPIView):
    @extend_schema(tags=["Workflow"])
    def post(self, request, request_id: int):
        req = request_svc.get_request(request_id)
        released = request_svc.release_report(
            req,
            user=request.user,
            idempotency_key=_idempotency_key(request),
        )
        return Response(
            {
                "data": _items_payload(request, released),
                "meta": {"request_id": req.pk, "released": len(released)},
            }
        )
