# lab_core/filters.py
import django_filters as df
from django.db.models import Q

from lab_core import workflows as wf
from .models import Patient, TestCatalog, TestRequest, TestRequestItem


class WorklistFilter(df.FilterSet):
    status = df.CharFilter(method="filter_status")
    department = df.CharFilter(field_name="test__department__name", lookup_expr="icontains")
    date_from = df.DateFilter(field_name="request__created_at", lookup_expr="date__gte")
    date_to = df.DateFilter(field_name="request__created_at", lookup_expr="date__lte")
    search = df.CharFilter(method="filter_search")
    priority = df.CharFilter(method="filter_priority")
    under_review = df.BooleanFilter(field_name="is_under_review")

    class Meta:
        model = TestRequestItem
        fields = []

    def filter_status(self, queryset, name, value):
        status = wf.normalize_status(value)
        if not status:
            return queryset
        if status == wf.UNDER_REVIEW:
            return queryset.filter(is_under_review=True)
        return queryset.filter(status=status)

    def filter_search(self, queryset, name, value):
        term = (value or "").strip()
        if not term:
            return queryset
        q = (
            Q(request__patient__first_name__icontains=term)
            | Q(request__patient__last_name__icontains=term)
            | Q(request__patient__lab_id__icontains=term)
        )
        parts = term.split()
        if len(parts) >= 2:
            q |= Q(request__patient__first_name__icontains=parts[0]) & Q(
                request__patient__last_name__icontains=parts[-1]
            )
        return queryset.filter(q)

    def filter_priority(self, queryset, name, value):
        value = (value or "").strip().upper()
        return queryset.filter(request__priority=value) if value else queryset


# "from" / "to" are the public parameter names
WorklistFilter.base_filters["from"] = WorklistFilter.base_filters.pop("date_from")
WorklistFilter.base_filters["to"] = WorklistFilter.base_filters.pop("date_to")


class TestCatalogFilter(df.FilterSet):
    name = df.CharFilter(field_name="name", lookup_expr="icontains")
    department = df.NumberFilter(field_name="department_id")
    is_active = df.BooleanFilter(field_name="is_active")
    test_type = df.CharFilter(field_name="test_type", lookup_expr="iexact")

    class Meta:
        model = TestCatalog
        fields = ["name", "department", "is_active", "test_type"]


class PatientFilter(df.FilterSet):
    search = df.CharFilter(method="filter_search")
    gender = df.CharFilter(field_name="gender", lookup_expr="iexact")

    class Meta:
        model = Patient
        fields = ["search", "gender", "ward"]

    def filter_search(self, queryset, name, value):
        term = (value or "").strip()
        if not term:
            return queryset
        return queryset.filter(
            Q(first_name__icontains=term) | Q(last_name__icontains=term) | Q(lab_id__icontains=term)
        )


class TestRequestFilter(df.FilterSet):
    patient = df.NumberFilter(field_name="patient_id")
    reception_status = df.CharFilter(field_name="reception_status")
    payment_status = df.CharFilter(field_name="payment_status")
    priority = df.CharFilter(field_name="priority", lookup_expr="iexact")
    created = df.DateFromToRangeFilter(field_name="created_at")

    class Meta:
        model = TestRequest
        fields = ["patient", "reception_status", "payment_status", "priority", "created"]
