# lab_core/views_reception.py
from __future__ import annotations

from datetime import date

from django.db.models import Prefetch

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from lab_core import workflows as wf
from lab_core.filters import PatientFilter, TestRequestFilter
from lab_core.models import Patient, TestRequest, TestRequestItem
from lab_core.permissions import HasLabPermission
from lab_core.serializers import (
    PatientSerializer,
    PaymentSerializer,
    StatusChangeSerializer,
    TestRequestCreateSerializer,
    TestRequestItemSerializer,
    TestRequestSerializer,
)
from lab_core.services import requests as request_svc
from lab_core.views_base import CurrentUserMixin, LabAPIView


RECEPTION_VIEW = ("reception", "view")

RECEPTION_PERMISSIONS = {
    "GET": RECEPTION_VIEW,
    "HEAD": RECEPTION_VIEW,
    "OPTIONS": RECEPTION_VIEW,
    "*": wf.RECEPTION_PERMISSION,
}


def _request_queryset():
    items = TestRequestItem.objects.select_related("test", "test__department").order_by("id")
    return (
        TestRequest.objects.select_related("patient", "created_by")
        .prefetch_related(Prefetch("items", queryset=items))
        .order_by("-created_at", "-id")
    )


# ===============================================================
# Patients
# ===============================================================
@extend_schema(tags=["Reception"])
class PatientViewSet(CurrentUserMixin, viewsets.ModelViewSet):
    queryset = Patient.objects.select_related("ward").all().order_by("last_name", "first_name", "id")
    serializer_class = PatientSerializer
    permission_classes = [HasLabPermission]
    required_permissions = RECEPTION_PERMISSIONS
    filterset_class = PatientFilter


# ===============================================================
# Test requests
# ===============================================================
@extend_schema(tags=["Reception"])
class TestRequestViewSet(
    CurrentUserMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = TestRequestSerializer
    permission_classes = [HasLabPermission]
    required_permissions = RECEPTION_PERMISSIONS
    filterset_class = TestRequestFilter

    def get_queryset(self):
        return _request_queryset()

    @extend_schema(request=TestRequestCreateSerializer, responses={201: TestRequestSerializer})
    def create(self, request, *args, **kwargs):
        s = TestRequestCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        req = request_svc.create_test_request(
            patient=s.validated_data["patient"],
            test_ids=s.validated_data["test_ids"],
            priority=s.validated_data["priority"],
            user=request.user,
        )
        req = _request_queryset().get(pk=req.pk)
        return Response(self.get_serializer(req).data, status=status.HTTP_201_CREATED)


# ===============================================================
# Reception desk
# ===============================================================
class ReceptionQueueView(LabAPIView):
    permission_classes = [HasLabPermission]
    required_permissions = {"GET": RECEPTION_VIEW}

    @extend_schema(tags=["Reception"])
    def get(self, request):
        raw = (request.query_params.get("date") or "").strip()
        on_date = None
        if raw:
            try:
                on_date = date.fromisoformat(raw)
            except ValueError:
                raise ValidationError({"date": "Use YYYY-MM-DD."})

        queue = request_svc.reception_queue(on_date).prefetch_related("items__test")
        rows = [
            {
                "id": req.pk,
                "patient_id": req.patient_id,
                "patient_name": req.patient.full_name,
                "lab_id": req.patient.lab_id,
                "priority": req.priority,
                "reception_status": req.reception_status,
                "reception_label": wf.RECEPTION_LABELS.get(req.reception_status, req.reception_status),
                "next_status": wf.get_next_status(req.reception_status),
                "payment_status": req.payment_status,
                "payment_amount": str(req.payment_amount),
                "tests": [i.test.name for i in req.items.all() if i.parent_id is None],
                "created_at": req.created_at,
            }
            for req in queue
        ]
        return Response(rows)


class ReceptionStatusView(LabAPIView):
    @extend_schema(tags=["Reception"], request=StatusChangeSerializer)
    def patch(self, request, request_id: int):
        s = StatusChangeSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        req = request_svc.get_request(request_id)
        req = request_svc.advance_reception(req, next_status=s.validated_data["status"], user=request.user)
        return Response(
            TestRequestSerializer(_request_queryset().get(pk=req.pk), context={"request": request}).data
        )


class PaymentView(LabAPIView):
    @extend_schema(tags=["Reception"], request=PaymentSerializer)
    def post(self, request, request_id: int):
        s = PaymentSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        req = request_svc.get_request(request_id)
        req = request_svc.process_payment(
            req,
            amount=s.validated_data["amount"],
            method=s.validated_data["payment_method"],
            user=request.user,
        )
        return Response(
            TestRequestSerializer(_request_queryset().get(pk=req.pk), context={"request": request}).data
        )


# ===============================================================
# Phlebotomy
# ===============================================================
class CollectSamplesView(LabAPIView):
    @extend_schema(tags=["Phlebotomy"])
    def post(self, request, request_id: int):
        req = request_svc.get_request(request_id)
        collected = request_svc.collect_samples(req, user=request.user)
        return Response(
            {
                "data": TestRequestItemSerializer(collected, many=True, context={"request": request}).data,
                "meta": {"request_id": req.pk, "collected": len(collected)},
            }
        )
