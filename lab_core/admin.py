# lab_core/admin.py

from django.contrib import admin
from django.utils.html import format_html

from .models import (
    AnalyzerResult,
    ApiKey,
    AuditLog,
    Department,
    ItemTransition,
    LabEvent,
    LabPermission,
    Message,
    NormalRange,
    PanelAnalyte,
    Patient,
    ResultAuditLog,
    Role,
    SampleType,
    StaffProfile,
    TestCatalog,
    TestRequest,
    TestRequestItem,
    TurnaroundAlert,
    Unit,
    UserRole,
    Ward,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Workflow transitions (READ-ONLY AUDIT LOG)
# =============================================================

@admin.register(ItemTransition)
class ItemTransitionAdmin(ReadOnlyAdmin):
    list_display = (
        "item",
        "action",
        "from_status",
        "to_status",
        "performed_by",
        "created_at",
    )
    list_filter = ("action", "from_status", "to_status")
    search_fields = ("item__id", "performed_by__username", "idempotency_key")
    ordering = ("-created_at",)
    readonly_fields = [f.name for f in ItemTransition._meta.fields]


# =============================================================
# Turnaround alerts (READ-ONLY)
# =============================================================

@admin.register(TurnaroundAlert)
class TurnaroundAlertAdmin(ReadOnlyAdmin):
    list_display = (
        "item",
        "state",
        "severity_badge",
        "budget_seconds",
        "duration_seconds",
        "triggered_at",
        "resolved_at",
    )
    list_filter = ("state", "severity")
    search_fields = ("item__id", "state")
    ordering = ("-triggered_at",)
    readonly_fields = [f.name for f in TurnaroundAlert._meta.fields]

    def severity_badge(self, obj):
        if obj.resolved_at:
            return format_html('<span style="color:#2e7d32;font-weight:bold;">RESOLVED</span>')
        if obj.severity == "critical":
            return format_html('<span style="color:#c62828;font-weight:bold;">CRITICAL</span>')
        return format_html('<span style="color:#ed6c02;font-weight:bold;">WARNING</span>')

    severity_badge.short_description = "Severity"


@admin.register(ResultAuditLog)
class ResultAuditLogAdmin(ReadOnlyAdmin):
    list_display = ("item", "old_value", "new_value", "changed_by", "created_at")
    search_fields = ("item__id", "changed_by__username")
    ordering = ("-created_at",)


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    list_display = ("action", "user", "ip_address", "created_at")
    list_filter = ("action",)
    search_fields = ("action", "user__username")
    ordering = ("-created_at",)


@admin.register(LabEvent)
class LabEventAdmin(ReadOnlyAdmin):
    list_display = ("seq", "name", "department", "created_at")
    list_filter = ("name",)
    ordering = ("-seq",)


# =============================================================
# Catalog
# =============================================================

@admin.register(Department, SampleType, Ward)
class LookupAdmin(admin.ModelAdmin):
    list_display = ("name", "updated_at")
    search_fields = ("name",)


@admin.register(Unit)
class UnitAdmin(admin.ModelAdmin):
    list_display = ("name", "symbol")
    search_fields = ("name", "symbol")


class PanelAnalyteInline(admin.TabularInline):
    model = PanelAnalyte
    fk_name = "panel"
    extra = 0
    ordering = ("position",)
    autocomplete_fields = ("analyte",)


class NormalRangeInline(admin.TabularInline):
    model = NormalRange
    fk_name = "analyte"
    extra = 0
    fields = (
        "range_type",
        "gender",
        "min_age",
        "max_age",
        "min_value",
        "max_value",
        "symbol_operator",
        "symbol_value",
        "qualitative_value",
        "unit",
        "panel",
    )


@admin.register(TestCatalog)
class TestCatalogAdmin(admin.ModelAdmin):
    list_display = ("name", "is_panel", "test_type", "department", "price", "panel_auto_recalc", "is_active")
    list_filter = ("is_panel", "test_type", "department", "is_active")
    search_fields = ("name",)

    def get_inlines(self, request, obj):
        if obj is not None and obj.is_panel:
            return (PanelAnalyteInline,)
        return (NormalRangeInline,)


@admin.register(NormalRange)
class NormalRangeAdmin(admin.ModelAdmin):
    list_display = ("analyte", "panel", "range_type", "gender", "min_age", "max_age", "unit")
    list_filter = ("range_type", "gender")
    search_fields = ("analyte__name", "panel__name")


# =============================================================
# Patients and requests
# =============================================================

@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ("lab_id", "first_name", "last_name", "gender", "date_of_birth", "ward")
    search_fields = ("lab_id", "first_name", "last_name", "phone")
    list_filter = ("gender", "ward")


class TestRequestItemInline(admin.TabularInline):
    model = TestRequestItem
    extra = 0
    fields = ("test", "parent", "status", "is_under_review", "result_value", "result_flag", "version")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(TestRequest)
class TestRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "patient", "priority", "reception_status", "payment_status", "payment_amount", "created_at")
    list_filter = ("priority", "reception_status", "payment_status")
    search_fields = ("patient__lab_id", "patient__first_name", "patient__last_name")
    readonly_fields = ("reception_status", "payment_status", "paid_at", "created_by")
    inlines = (TestRequestItemInline,)


@admin.register(AnalyzerResult)
class AnalyzerResultAdmin(admin.ModelAdmin):
    list_display = ("item", "instrument", "sample_code", "adopted_at", "created_at")
    search_fields = ("sample_code", "instrument")


# =============================================================
# Identity
# =============================================================

@admin.register(LabPermission)
class LabPermissionAdmin(admin.ModelAdmin):
    list_display = ("resource", "action", "description")
    search_fields = ("resource", "action")


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ("name", "description")
    search_fields = ("name",)
    filter_horizontal = ("permissions",)


@admin.register(UserRole)
class UserRoleAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "created_at")
    list_filter = ("role",)
    search_fields = ("user__username",)


@admin.register(StaffProfile)
class StaffProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "full_name", "department")
    list_filter = ("department",)
    search_fields = ("user__username", "full_name")


@admin.register(ApiKey)
class ApiKeyAdmin(admin.ModelAdmin):
    list_display = ("name", "key_prefix", "user", "last_used_at", "revoked_at")
    search_fields = ("name", "key_prefix", "user__username")
    readonly_fields = ("key_prefix", "secret_hash", "last_used_at")


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ("sender", "receiver", "is_general", "is_read", "created_at")
    list_filter = ("is_general", "is_read")
