from __future__ import annotations

from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import serializers

from lab_core import workflows as wf
from lab_core.permissions import permission_codes, grants

from .models import (
    AnalyzerResult,
    ApiKey,
    Department,
    ItemTransition,
    LabEvent,
    Message,
    NormalRange,
    PanelAnalyte,
    Patient,
    ResultAuditLog,
    SampleType,
    TestCatalog,
    TestRequest,
    TestRequestItem,
    Unit,
    Ward,
)

User = get_user_model()


# ===============================================================
# Helpers
# ===============================================================

class UserSlimSerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ("id", "username", "full_name")
        read_only_fields = fields

    def get_full_name(self, obj) -> str:
        profile = getattr(obj, "staff_profile", None)
        if profile is not None and profile.full_name:
            return profile.full_name
        return obj.get_full_name() or obj.get_username()


# ===============================================================
# Lookups
# ===============================================================
# Names are checked case-insensitively by the views (409 on duplicates),
# so the model-level unique validator is replaced by a plain CharField.

class DepartmentSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=120)

    class Meta:
        model = Department
        fields = ("id", "name", "description", "created_at", "updated_at")
        read_only_fields = ("id", "created_at", "updated_at")


class SampleTypeSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=120)

    class Meta:
        model = SampleType
        fields = ("id", "name", "description", "created_at", "updated_at")
        read_only_fields = ("id", "created_at", "updated_at")


class UnitSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=64)

    class Meta:
        model = Unit
        fields = ("id", "name", "symbol", "created_at", "updated_at")
        read_only_fields = ("id", "created_at", "updated_at")


class WardSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=120)

    class Meta:
        model = Ward
        fields = ("id", "name", "created_at", "updated_at")
        read_only_fields = ("id", "created_at", "updated_at")


# ===============================================================
# Catalog
# ===============================================================

class AnalyteSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=255)
    department_name = serializers.CharField(source="department.name", read_only=True, default=None)
    sample_type_name = serializers.CharField(source="sample_type.name", read_only=True, default=None)
    unit_symbol = serializers.SerializerMethodField()
    qualitative_options = serializers.SerializerMethodField()

    class Meta:
        model = TestCatalog
        fields = (
            "id",
            "name",
            "description",
            "price",
            "department",
            "department_name",
            "sample_type",
            "sample_type_name",
            "unit",
            "unit_symbol",
            "test_type",
            "qualitative_value",
            "qualitative_options",
            "is_active",
            "is_panel",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "is_panel", "created_at", "updated_at")

    def get_unit_symbol(self, obj):
        if obj.unit_id is None:
            return None
        return obj.unit.symbol or obj.unit.name

    def get_qualitative_options(self, obj):
        return obj.qualitative_options()

    def validate_price(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("Price cannot be negative.")
        return value


class PanelAnalyteSerializer(serializers.ModelSerializer):
    analyte_id = serializers.IntegerField(source="analyte.id", read_only=True)
    name = serializers.CharField(source="analyte.name", read_only=True)
    price = serializers.DecimalField(source="analyte.price", max_digits=10, decimal_places=2, read_only=True)
    is_active = serializers.BooleanField(source="analyte.is_active", read_only=True)

    class Meta:
        model = PanelAnalyte
        fields = ("id", "analyte_id", "name", "price", "is_active", "position")
        read_only_fields = fields


class PanelSerializer(serializers.ModelSerializer):
    """`price` reads as the effective price; auto panels report the live sum."""

    name = serializers.CharField(max_length=255)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    department_name = serializers.CharField(source="department.name", read_only=True, default=None)
    analytes = serializers.SerializerMethodField()

    class Meta:
        model = TestCatalog
        fields = (
            "id",
            "name",
            "description",
            "price",
            "department",
            "department_name",
            "sample_type",
            "panel_auto_recalc",
            "is_active",
            "is_panel",
            "analytes",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "is_panel", "created_at", "updated_at")

    def get_analytes(self, obj):
        return PanelAnalyteSerializer(obj.memberships.all(), many=True).data

    def validate_price(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("Price cannot be negative.")
        return value

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data["price"] = serializers.DecimalField(max_digits=10, decimal_places=2).to_representation(
            instance.effective_price if instance.effective_price is not None else Decimal("0.00")
        )
        return data


class PanelMembershipSerializer(serializers.Serializer):
    analyte_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False, required=False)
    analyte_id = serializers.IntegerField(required=False)

    def validate(self, attrs):
        ids = list(attrs.get("analyte_ids") or [])
        if attrs.get("analyte_id") is not None:
            ids.append(attrs["analyte_id"])
        if not ids:
            raise serializers.ValidationError({"analyte_ids": "Provide analyte_id or analyte_ids."})
        return {"analyte_ids": ids}


class ActiveToggleSerializer(serializers.Serializer):
    is_active = serializers.BooleanField()


class NormalRangeSerializer(serializers.ModelSerializer):
    unit_symbol = serializers.SerializerMethodField()
    display = serializers.SerializerMethodField()

    class Meta:
        model = NormalRange
        fields = (
            "id",
            "analyte",
            "panel",
            "range_type",
            "min_value",
            "max_value",
            "symbol_operator",
            "symbol_value",
            "qualitative_value",
            "gender",
            "min_age",
            "max_age",
            "unit",
            "unit_symbol",
            "range_label",
            "note",
            "display",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "analyte", "panel", "created_at", "updated_at")

    def get_unit_symbol(self, obj):
        if obj.unit_id is None:
            return None
        return obj.unit.symbol or obj.unit.name

    def get_display(self, obj) -> str:
        return obj.display()


# ===============================================================
# Patients and requests
# ===============================================================

class PatientSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)
    age = serializers.SerializerMethodField()

    class Meta:
        model = Patient
        fields = (
            "id",
            "lab_id",
            "first_name",
            "last_name",
            "full_name",
            "gender",
            "date_of_birth",
            "age",
            "phone",
            "ward",
            "referring_doctor",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "full_name", "age", "created_at", "updated_at")

    def get_age(self, obj):
        return obj.age_on()


class TestRequestItemSerializer(serializers.ModelSerializer):
    test_name = serializers.CharField(source="test.name", read_only=True)
    is_panel = serializers.BooleanField(source="test.is_panel", read_only=True)
    department = serializers.CharField(source="test.department.name", read_only=True, default=None)
    status_label = serializers.SerializerMethodField()
    allowed_actions = serializers.SerializerMethodField()

    class Meta:
        model = TestRequestItem
        fields = (
            "id",
            "request",
            "test",
            "test_name",
            "is_panel",
            "department",
            "parent",
            "status",
            "status_label",
            "is_under_review",
            "result_value",
            "result_flag",
            "version",
            "entered_at",
            "verified_at",
            "reviewed_at",
            "released_at",
            "allowed_actions",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_status_label(self, obj) -> str:
        return wf.ITEM_LABELS.get(obj.status, obj.status)

    def get_allowed_actions(self, obj):
        if obj.test.is_panel:
            return []
        codes = self.context.get("permission_codes")
        if codes is None:
            request = self.context.get("request")
            codes = permission_codes(getattr(request, "user", None))
            self.context["permission_codes"] = codes
        actions = wf.allowed_actions(obj.status, can=lambda r, a: grants(codes, r, a))
        if obj.is_under_review and "mark_for_review" in actions:
            actions.remove("mark_for_review")
        return actions


class TestRequestSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="patient.full_name", read_only=True)
    lab_id = serializers.CharField(source="patient.lab_id", read_only=True)
    overall_status = serializers.CharField(read_only=True)
    items = TestRequestItemSerializer(many=True, read_only=True)
    created_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = TestRequest
        fields = (
            "id",
            "patient",
            "patient_name",
            "lab_id",
            "reception_status",
            "payment_status",
            "payment_amount",
            "payment_method",
            "paid_at",
            "priority",
            "overall_status",
            "items",
            "created_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class TestRequestCreateSerializer(serializers.Serializer):
    patient = serializers.PrimaryKeyRelatedField(queryset=Patient.objects.all())
    test_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=True)
    priority = serializers.ChoiceField(choices=wf.PRIORITIES, default=wf.PRIORITY_ROUTINE)


class PaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    payment_method = serializers.CharField(max_length=40)


class StatusChangeSerializer(serializers.Serializer):
    status = serializers.CharField()
    version = serializers.IntegerField(required=False, allow_null=True)


# ===============================================================
# Results
# ===============================================================

class ResultSubmitSerializer(serializers.Serializer):
    value = serializers.CharField(allow_blank=True, trim_whitespace=True)
    version = serializers.IntegerField(required=False, allow_null=True)


class BatchResultSerializer(serializers.Serializer):
    results = serializers.DictField(child=serializers.CharField(allow_blank=True))
    versions = serializers.DictField(child=serializers.IntegerField(), required=False)
    complete = serializers.BooleanField(default=False)


class ActionSerializer(serializers.Serializer):
    version = serializers.IntegerField(required=False, allow_null=True)
    comment = serializers.CharField(required=False, allow_blank=True, default="")


class ResultAuditLogSerializer(serializers.ModelSerializer):
    changed_by = serializers.SerializerMethodField()
    changed_at = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = ResultAuditLog
        fields = ("id", "item", "old_value", "new_value", "changed_by", "changed_at")
        read_only_fields = fields

    def get_changed_by(self, obj):
        return obj.changed_by.get_username() if obj.changed_by_id else None


class AnalyzerResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = AnalyzerResult
        fields = ("id", "item", "instrument", "sample_code", "results", "meta", "adopted_at", "created_at")
        read_only_fields = fields


class ItemTransitionSerializer(serializers.ModelSerializer):
    performed_by = serializers.SerializerMethodField()

    class Meta:
        model = ItemTransition
        fields = ("id", "item", "action", "from_status", "to_status", "performed_by", "comment", "created_at")
        read_only_fields = fields

    def get_performed_by(self, obj):
        return obj.performed_by.get_username() if obj.performed_by_id else None


# ===============================================================
# Messaging, keys, events
# ===============================================================

class MessageSerializer(serializers.ModelSerializer):
    sender = UserSlimSerializer(read_only=True)
    receiver_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Message
        fields = ("id", "sender", "receiver_id", "content", "is_general", "is_read", "created_at")
        read_only_fields = fields


class MessageSendSerializer(serializers.Serializer):
    content = serializers.CharField(allow_blank=True)
    receiver_id = serializers.IntegerField(required=False, allow_null=True)
    is_general = serializers.BooleanField(default=False)


class MarkThreadReadSerializer(serializers.Serializer):
    peer_id = serializers.IntegerField()


class ApiKeySerializer(serializers.ModelSerializer):
    is_active = serializers.BooleanField(read_only=True)

    class Meta:
        model = ApiKey
        fields = ("id", "name", "key_prefix", "is_active", "created_at", "last_used_at", "revoked_at")
        read_only_fields = fields


class ApiKeyCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=120, allow_blank=True)


class LabEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = LabEvent
        fields = ("seq", "name", "payload", "department", "created_at")
        read_only_fields = fields
