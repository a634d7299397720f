# lab_core/views.py
from __future__ import annotations

from django.db import connection
from django.db.models import Prefetch, QuerySet

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from lab_core.exceptions import Conflict
from lab_core.filters import TestCatalogFilter
from lab_core.permissions import HasLabPermission
from lab_core.services import catalog as catalog_svc
from lab_core.views_base import CurrentUserMixin

from .models import (
    Department,
    NormalRange,
    PanelAnalyte,
    SampleType,
    TestCatalog,
    Unit,
    Ward,
)
from .serializers import (
    ActiveToggleSerializer,
    AnalyteSerializer,
    DepartmentSerializer,
    NormalRangeSerializer,
    PanelAnalyteSerializer,
    PanelMembershipSerializer,
    PanelSerializer,
    SampleTypeSerializer,
    UnitSerializer,
    WardSerializer,
)


CATALOG_VIEW = ("lab_config", "view")
CATALOG_MANAGE = ("lab_config", "manage")

CATALOG_PERMISSIONS = {
    "GET": CATALOG_VIEW,
    "HEAD": CATALOG_VIEW,
    "OPTIONS": CATALOG_VIEW,
    "*": CATALOG_MANAGE,
}


# ===============================================================
# Health
# ===============================================================
class HealthCheckView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(tags=["System"])
    def get(self, request):
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        return Response({"status": "ok", "service": "PathLab LIMS", "database": connection.vendor})


# ===============================================================
# Lookups (units, departments, sample types, wards)
# ===============================================================
class LookupViewSet(CurrentUserMixin, viewsets.ModelViewSet):
    """Plain CRUD; names are unique regardless of case."""

    permission_classes = [HasLabPermission]
    required_permissions = CATALOG_PERMISSIONS

    def get_queryset(self) -> QuerySet:
        return self.queryset.model.objects.all().order_by("name", "id")

    def _check_name(self, serializer):
        name = (serializer.validated_data.get("name") or "").strip()
        if not name:
            return
        qs = self.queryset.model.objects.filter(name__iexact=name)
        if serializer.instance is not None:
            qs = qs.exclude(pk=serializer.instance.pk)
        if qs.exists():
            raise Conflict(f"'{name}' already exists.")
        serializer.validated_data["name"] = name

    def perform_create(self, serializer):
        self._check_name(serializer)
        serializer.save()

    def perform_update(self, serializer):
        self._check_name(serializer)
        serializer.save()


@extend_schema(tags=["Catalog"])
class DepartmentViewSet(LookupViewSet):
    queryset = Department.objects.all()
    serializer_class = DepartmentSerializer


@extend_schema(tags=["Catalog"])
class SampleTypeViewSet(LookupViewSet):
    queryset = SampleType.objects.all()
    serializer_class = SampleTypeSerializer


@extend_schema(tags=["Catalog"])
class UnitViewSet(LookupViewSet):
    queryset = Unit.objects.all()
    serializer_class = UnitSerializer


@extend_schema(tags=["Catalog"])
class WardViewSet(LookupViewSet):
    queryset = Ward.objects.all()
    serializer_class = WardSerializer


# ===============================================================
# Analytes
# ===============================================================
@extend_schema(tags=["Catalog"])
class AnalyteViewSet(CurrentUserMixin, viewsets.ModelViewSet):
    serializer_class = AnalyteSerializer
    permission_classes = [HasLabPermission]
    required_permissions = CATALOG_PERMISSIONS
    filterset_class = TestCatalogFilter

    def get_queryset(self):
        return (
            TestCatalog.objects.filter(is_panel=False)
            .select_related("department", "sample_type", "unit")
            .order_by("name", "id")
        )

    def perform_create(self, serializer):
        catalog_svc.save_analyte(serializer)

    def perform_update(self, serializer):
        catalog_svc.save_analyte(serializer, instance=serializer.instance)

    def destroy(self, request, *args, **kwargs):
        return Response(catalog_svc.delete_test(self.get_object()))

    @action(detail=True, methods=["patch"], url_path="status")
    def set_status(self, request, pk=None):
        test = self.get_object()
        s = ActiveToggleSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        catalog_svc.set_active(test, s.validated_data["is_active"])
        return Response(self.get_serializer(test).data)

    @action(detail=True, methods=["get", "post"], url_path="ranges")
    def ranges(self, request, pk=None):
        analyte = self.get_object()

        if request.method == "GET":
            rows = catalog_svc.ranges_for(analyte, gender=request.query_params.get("gender"))
            return Response(NormalRangeSerializer(rows, many=True).data)

        s = NormalRangeSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        row = catalog_svc.save_range(s, analyte=analyte, panel=None)
        return Response(NormalRangeSerializer(row).data, status=status.HTTP_201_CREATED)


# ===============================================================
# Panels
# ===============================================================
@extend_schema(tags=["Catalog"])
class PanelViewSet(CurrentUserMixin, viewsets.ModelViewSet):
    serializer_class = PanelSerializer
    permission_classes = [HasLabPermission]
    required_permissions = CATALOG_PERMISSIONS
    filterset_class = TestCatalogFilter

    def get_queryset(self):
        return (
            TestCatalog.objects.filter(is_panel=True)
            .select_related("department", "sample_type")
            .prefetch_related(
                Prefetch(
                    "memberships",
                    queryset=PanelAnalyte.objects.select_related("analyte").order_by("position", "id"),
                )
            )
            .order_by("name", "id")
        )

    def perform_create(self, serializer):
        catalog_svc.save_panel(serializer)

    def perform_update(self, serializer):
        catalog_svc.save_panel(serializer, instance=serializer.instance)

    def destroy(self, request, *args, **kwargs):
        return Response(catalog_svc.delete_test(self.get_object()))

    @action(detail=True, methods=["patch"], url_path="status")
    def set_status(self, request, pk=None):
        panel = self.get_object()
        s = ActiveToggleSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        catalog_svc.set_active(panel, s.validated_data["is_active"])
        return Response(self.get_serializer(panel).data)

    @action(detail=True, methods=["post"], url_path="recalc")
    def recalc(self, request, pk=None):
        panel = self.get_object()
        catalog_svc.recalculate_panel_price(panel)
        return Response(self.get_serializer(panel).data)

    @action(detail=True, methods=["get", "post"], url_path="analytes")
    def analytes(self, request, pk=None):
        panel = self.get_object()

        if request.method == "POST":
            s = PanelMembershipSerializer(data=request.data)
            s.is_valid(raise_exception=True)
            catalog_svc.add_analytes(panel, s.validated_data["analyte_ids"])

        links = panel.memberships.select_related("analyte").order_by("position", "id")
        code = status.HTTP_201_CREATED if request.method == "POST" else status.HTTP_200_OK
        return Response(PanelAnalyteSerializer(links, many=True).data, status=code)

    @action(detail=True, methods=["delete"], url_path=r"analytes/(?P<analyte_id>\d+)")
    def remove_analyte(self, request, pk=None, analyte_id=None):
        panel = self.get_object()
        catalog_svc.remove_analyte(panel, analyte_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get", "post"], url_path="ranges")
    def ranges(self, request, pk=None):
        """Panel-specific overrides of an analyte's normal ranges."""
        panel = self.get_object()

        if request.method == "GET":
            rows = NormalRange.objects.filter(panel=panel).select_related("unit", "analyte")
            analyte_id = request.query_params.get("analyte")
            if analyte_id:
                rows = rows.filter(analyte_id=analyte_id)
            return Response(NormalRangeSerializer(rows.order_by("analyte_id", "id"), many=True).data)

        analyte_id = request.data.get("analyte")
        if not analyte_id:
            raise ValidationError({"analyte": "Analyte is required for a panel override."})
        analyte = catalog_svc.get_analyte(analyte_id)
        s = NormalRangeSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        row = catalog_svc.save_range(s, analyte=analyte, panel=panel)
        return Response(NormalRangeSerializer(row).data, status=status.HTTP_201_CREATED)


# ===============================================================
# Normal ranges (by id)
# ===============================================================
@extend_schema(tags=["Catalog"])
class NormalRangeViewSet(
    CurrentUserMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = NormalRange.objects.select_related("unit", "analyte", "panel").all()
    serializer_class = NormalRangeSerializer
    permission_classes = [HasLabPermission]
    required_permissions = CATALOG_PERMISSIONS

    def perform_update(self, serializer):
        serializer.instance = catalog_svc.save_range(serializer)
