import decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


def _stamps():
    return [
        ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # -------------------------------------------------------------
        # Lookups
        # -------------------------------------------------------------
        migrations.CreateModel(
            name="Department",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(db_index=True, max_length=120, unique=True)),
                ("description", models.TextField(blank=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="SampleType",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(db_index=True, max_length=120, unique=True)),
                ("description", models.TextField(blank=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Unit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(db_index=True, max_length=64, unique=True)),
                ("symbol", models.CharField(blank=True, max_length=32)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Ward",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(db_index=True, max_length=120, unique=True)),
            ],
            options={"ordering": ["name"]},
        ),
        # -------------------------------------------------------------
        # Catalog
        # -------------------------------------------------------------
        migrations.CreateModel(
            name="TestCatalog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(db_index=True, max_length=255, unique=True)),
                ("description", models.TextField(blank=True)),
                ("price", models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=10)),
                (
                    "test_type",
                    models.CharField(
                        choices=[("quantitative", "Quantitative"), ("qualitative", "Qualitative")],
                        default="quantitative",
                        max_length=20,
                    ),
                ),
                ("qualitative_value", models.TextField(blank=True)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("is_panel", models.BooleanField(db_index=True, default=False)),
                ("panel_auto_recalc", models.BooleanField(default=False)),
                (
                    "department",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="tests",
                        to="lab_core.department",
                    ),
                ),
                (
                    "sample_type",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="tests",
                        to="lab_core.sampletype",
                    ),
                ),
                (
                    "unit",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="tests",
                        to="lab_core.unit",
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "indexes": [models.Index(fields=["is_panel", "is_active"], name="catalog_panel_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="PanelAnalyte",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("position", models.PositiveIntegerField(default=0)),
                (
                    "panel",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to="lab_core.testcatalog",
                    ),
                ),
                (
                    "analyte",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="panel_memberships",
                        to="lab_core.testcatalog",
                    ),
                ),
            ],
            options={
                "ordering": ["position", "id"],
                "unique_together": {("panel", "analyte")},
            },
        ),
        migrations.AddField(
            model_name="testcatalog",
            name="analytes",
            field=models.ManyToManyField(
                blank=True,
                related_name="panels",
                through="lab_core.PanelAnalyte",
                through_fields=("panel", "analyte"),
                to="lab_core.testcatalog",
            ),
        ),
        migrations.CreateModel(
            name="NormalRange",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                (
                    "range_type",
                    models.CharField(
                        choices=[("numeric", "Numeric"), ("symbolic", "Symbolic"), ("qualitative", "Qualitative")],
                        default="numeric",
                        max_length=20,
                    ),
                ),
                ("min_value", models.DecimalField(blank=True, decimal_places=4, max_digits=12, null=True)),
                ("max_value", models.DecimalField(blank=True, decimal_places=4, max_digits=12, null=True)),
                (
                    "symbol_operator",
                    models.CharField(
                        blank=True,
                        choices=[("<", "<"), ("<=", "<="), (">", ">"), (">=", ">=")],
                        max_length=2,
                    ),
                ),
                ("symbol_value", models.DecimalField(blank=True, decimal_places=4, max_digits=12, null=True)),
                ("qualitative_value", models.CharField(blank=True, max_length=255)),
                (
                    "gender",
                    models.CharField(
                        choices=[("Any", "Any"), ("Male", "Male"), ("Female", "Female")],
                        default="Any",
                        max_length=10,
                    ),
                ),
                ("min_age", models.PositiveIntegerField(blank=True, null=True)),
                ("max_age", models.PositiveIntegerField(blank=True, null=True)),
                ("range_label", models.CharField(blank=True, max_length=120)),
                ("note", models.TextField(blank=True)),
                (
                    "analyte",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="normal_ranges",
                        to="lab_core.testcatalog",
                    ),
                ),
                (
                    "panel",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="panel_range_overrides",
                        to="lab_core.testcatalog",
                    ),
                ),
                (
                    "unit",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="lab_core.unit",
                    ),
                ),
            ],
            options={
                "ordering": ["analyte_id", "id"],
                "indexes": [models.Index(fields=["analyte", "panel"], name="range_analyte_panel_idx")],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(("min_age__isnull", True), ("max_age__isnull", True), ("max_age__gte", models.F("min_age")), _connector="OR"),
                        name="range_age_band_ordered",
                    )
                ],
            },
        ),
        # -------------------------------------------------------------
        # Patients and requests
        # -------------------------------------------------------------
        migrations.CreateModel(
            name="Patient",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("lab_id", models.CharField(db_index=True, max_length=64, unique=True)),
                ("first_name", models.CharField(db_index=True, max_length=120)),
                ("last_name", models.CharField(db_index=True, max_length=120)),
                (
                    "gender",
                    models.CharField(
                        blank=True,
                        choices=[("Male", "Male"), ("Female", "Female"), ("Other", "Other")],
                        max_length=10,
                    ),
                ),
                ("date_of_birth", models.DateField(blank=True, null=True)),
                ("phone", models.CharField(blank=True, max_length=40)),
                ("referring_doctor", models.CharField(blank=True, max_length=255)),
                (
                    "ward",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="patients",
                        to="lab_core.ward",
                    ),
                ),
            ],
            options={"ordering": ["last_name", "first_name"]},
        ),
        migrations.CreateModel(
            name="TestRequest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                (
                    "reception_status",
                    models.CharField(
                        choices=[
                            ("billing_pending", "Billing Pending"),
                            ("sample_pending", "Awaiting Sample"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                        ],
                        db_index=True,
                        default="billing_pending",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[("awaiting_payment", "Awaiting Payment"), ("paid", "Paid")],
                        db_index=True,
                        default="awaiting_payment",
                        max_length=20,
                    ),
                ),
                ("payment_amount", models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=10)),
                ("payment_method", models.CharField(blank=True, max_length=40)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                (
                    "priority",
                    models.CharField(
                        choices=[("ROUTINE", "Routine"), ("URGENT", "Urgent")],
                        db_index=True,
                        default="ROUTINE",
                        max_length=10,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="test_requests_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="test_requests",
                        to="lab_core.patient",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="TestRequestItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sample_collected", "Sample Collected"),
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("verified", "Verified"),
                            ("released", "Released"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("is_under_review", models.BooleanField(db_index=True, default=False)),
                ("result_value", models.TextField(blank=True)),
                (
                    "result_flag",
                    models.CharField(
                        blank=True,
                        choices=[("L", "Low"), ("H", "High"), ("N", "Normal"), ("A", "Abnormal")],
                        max_length=1,
                    ),
                ),
                ("version", models.PositiveIntegerField(default=0)),
                ("entered_at", models.DateTimeField(blank=True, null=True)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                (
                    "entered_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "verified_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "reviewed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="children",
                        to="lab_core.testrequestitem",
                    ),
                ),
                (
                    "request",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="lab_core.testrequest",
                    ),
                ),
                (
                    "test",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="request_items",
                        to="lab_core.testcatalog",
                    ),
                ),
            ],
            options={
                "ordering": ["request_id", "id"],
                "indexes": [
                    models.Index(fields=["request", "status"], name="item_request_status_idx"),
                    models.Index(fields=["status", "updated_at"], name="item_status_updated_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ResultAuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("old_value", models.TextField(blank=True)),
                ("new_value", models.TextField(blank=True)),
                (
                    "changed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="result_history",
                        to="lab_core.testrequestitem",
                    ),
                ),
            ],
            options={"ordering": ["-created_at", "-id"]},
        ),
        migrations.CreateModel(
            name="AnalyzerResult",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("instrument", models.CharField(blank=True, max_length=120)),
                ("sample_code", models.CharField(blank=True, db_index=True, max_length=120)),
                ("results", models.JSONField(blank=True, default=dict)),
                ("meta", models.JSONField(blank=True, default=dict)),
                ("adopted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="analyzer_results",
                        to="lab_core.testrequestitem",
                    ),
                ),
            ],
            options={"ordering": ["-created_at", "-id"]},
        ),
        # -------------------------------------------------------------
        # Workflow log, alerts, events, audit
        # -------------------------------------------------------------
        migrations.CreateModel(
            name="ItemTransition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("action", models.CharField(db_index=True, max_length=32)),
                ("from_status", models.CharField(max_length=20)),
                ("to_status", models.CharField(max_length=20)),
                ("idempotency_key", models.CharField(blank=True, max_length=128)),
                ("comment", models.TextField(blank=True)),
                ("outcome", models.JSONField(blank=True, default=dict)),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transitions",
                        to="lab_core.testrequestitem",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="item_transitions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [models.Index(fields=["item", "to_status"], name="transition_item_to_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key", ""), _negated=True),
                        fields=("item", "idempotency_key"),
                        name="transition_item_idem_key_uniq",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="TurnaroundAlert",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("state", models.CharField(max_length=20)),
                ("severity", models.CharField(default="warning", max_length=16)),
                ("budget_seconds", models.PositiveIntegerField()),
                ("duration_seconds", models.PositiveIntegerField(blank=True, null=True)),
                ("triggered_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("message", models.TextField(blank=True)),
                ("meta", models.JSONField(blank=True, default=dict)),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="turnaround_alerts",
                        to="lab_core.testrequestitem",
                    ),
                ),
            ],
            options={
                "ordering": ("-triggered_at",),
                "unique_together": {("item", "state")},
            },
        ),
        migrations.CreateModel(
            name="LabEvent",
            fields=[
                *_stamps(),
                ("seq", models.BigAutoField(primary_key=True, serialize=False)),
                ("name", models.CharField(db_index=True, max_length=64)),
                ("payload", models.JSONField(blank=True, default=dict)),
                (
                    "department",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="lab_core.department",
                    ),
                ),
            ],
            options={"ordering": ["seq"]},
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("action", models.CharField(db_index=True, max_length=255)),
                ("details", models.JSONField(blank=True, default=dict)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["action", "created_at"], name="audit_action_time_idx")],
            },
        ),
        # -------------------------------------------------------------
        # Identity
        # -------------------------------------------------------------
        migrations.CreateModel(
            name="LabPermission",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("resource", models.CharField(max_length=64)),
                ("action", models.CharField(max_length=64)),
                ("description", models.CharField(blank=True, max_length=255)),
            ],
            options={
                "ordering": ["resource", "action"],
                "unique_together": {("resource", "action")},
            },
        ),
        migrations.CreateModel(
            name="Role",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(max_length=100, unique=True)),
                ("description", models.TextField(blank=True)),
                (
                    "permissions",
                    models.ManyToManyField(blank=True, related_name="roles", to="lab_core.labpermission"),
                ),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="UserRole",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                (
                    "role",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="user_roles",
                        to="lab_core.role",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lab_roles",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["user_id", "role__name"],
                "unique_together": {("user", "role")},
            },
        ),
        migrations.CreateModel(
            name="StaffProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("full_name", models.CharField(blank=True, max_length=255)),
                (
                    "department",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="staff",
                        to="lab_core.department",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="staff_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ApiKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("name", models.CharField(max_length=120)),
                ("key_prefix", models.CharField(db_index=True, max_length=64, unique=True)),
                ("secret_hash", models.CharField(max_length=255)),
                ("last_used_at", models.DateTimeField(blank=True, null=True)),
                ("revoked_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="api_keys",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        # -------------------------------------------------------------
        # Messaging
        # -------------------------------------------------------------
        migrations.CreateModel(
            name="Message",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *_stamps(),
                ("content", models.TextField()),
                ("is_general", models.BooleanField(db_index=True, default=False)),
                ("is_read", models.BooleanField(db_index=True, default=False)),
                (
                    "receiver",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="received_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "sender",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sent_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [models.Index(fields=["receiver", "is_read"], name="message_receiver_read_idx")],
            },
        ),
    ]
