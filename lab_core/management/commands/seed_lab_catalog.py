# lab_core/management/commands/seed_lab_catalog.py

from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from lab_core.models import (
    Department,
    LabPermission,
    NormalRange,
    PanelAnalyte,
    Role,
    SampleType,
    TestCatalog,
    Unit,
)
from lab_core.services.catalog import recalculate_panel_price


DEFAULT_ROLES = {
    "admin": [("*", "*")],
    "receptionist": [("reception", "view"), ("reception", "update")],
    "phlebotomist": [("reception", "view"), ("phlebotomy", "collect")],
    "lab_technician": [("worklist", "view"), ("results", "enter"), ("lab_config", "view")],
    "pathologist": [
        ("worklist", "view"),
        ("worklist", "all_departments"),
        ("results", "enter"),
        ("pathologist", "verify"),
        ("pathologist", "release"),
        ("lab_config", "view"),
    ],
    "lab_manager": [
        ("lab_config", "view"),
        ("lab_config", "manage"),
        ("worklist", "view"),
        ("worklist", "all_departments"),
        ("api_keys", "manage"),
    ],
}

# name, department, sample type, unit, type, price, qualitative options, ranges
DEFAULT_ANALYTES = [
    ("Hemoglobin", "Haematology", "Whole blood", "g/dL", "quantitative", "5.00", "", [
        {"gender": "Male", "min_value": "13.0", "max_value": "17.0", "min_age": 18},
        {"gender": "Female", "min_value": "12.0", "max_value": "15.0", "min_age": 18},
        {"gender": "Any", "min_value": "11.0", "max_value": "16.0"},
    ]),
    ("WBC", "Haematology", "Whole blood", "10^9/L", "quantitative", "3.00", "", [
        {"gender": "Any", "min_value": "4.0", "max_value": "11.0"},
    ]),
    ("Platelets", "Haematology", "Whole blood", "10^9/L", "quantitative", "3.00", "", [
        {"gender": "Any", "min_value": "150", "max_value": "450"},
    ]),
    ("Glucose (fasting)", "Chemistry", "Serum", "mmol/L", "quantitative", "4.00", "", [
        {"gender": "Any", "min_value": "3.9", "max_value": "5.6"},
    ]),
    ("CRP", "Chemistry", "Serum", "mg/L", "quantitative", "6.00", "", [
        {"gender": "Any", "range_type": "symbolic", "symbol_operator": "<", "symbol_value": "5"},
    ]),
    ("Malaria RDT", "Microbiology", "Whole blood", "", "qualitative", "2.50", "Negative;Positive", []),
    ("Blood Group", "Haematology", "Whole blood", "", "qualitative", "2.00", "", []),
]

DEFAULT_PANELS = [
    ("Full Blood Count", "Haematology", ["Hemoglobin", "WBC", "Platelets"], True),
]


class Command(BaseCommand):
    help = "Create the default roles and permissions, optionally a starter test catalog"

    def add_arguments(self, parser):
        parser.add_argument("--with-catalog", action="store_true", help="Also seed departments, analytes and panels")

    @transaction.atomic
    def handle(self, *args, **options):
        self._seed_roles()
        if options["with_catalog"]:
            self._seed_catalog()
        self.stdout.write(self.style.SUCCESS("Seeding complete."))

    def _seed_roles(self):
        for role_name, codes in DEFAULT_ROLES.items():
            role, _ = Role.objects.get_or_create(name=role_name)
            for resource, action in codes:
                perm, _ = LabPermission.objects.get_or_create(resource=resource, action=action)
                role.permissions.add(perm)
            self.stdout.write(f"[OK] role '{role_name}' ({len(codes)} permission(s))")

    def _seed_catalog(self):
        for name, dept, sample, unit, test_type, price, options, ranges in DEFAULT_ANALYTES:
            analyte, created = TestCatalog.objects.get_or_create(
                name=name,
                defaults={
                    "department": Department.objects.get_or_create(name=dept)[0],
                    "sample_type": SampleType.objects.get_or_create(name=sample)[0],
                    "unit": Unit.objects.get_or_create(name=unit, defaults={"symbol": unit})[0] if unit else None,
                    "test_type": test_type,
                    "price": Decimal(price),
                    "qualitative_value": options,
                },
            )
            if not created:
                continue
            for bounds in ranges:
                row = NormalRange(analyte=analyte, unit=analyte.unit, **bounds)
                row.full_clean()
                row.save()
            self.stdout.write(f"[OK] analyte '{name}'")

        for name, dept, members, auto in DEFAULT_PANELS:
            panel, created = TestCatalog.objects.get_or_create(
                name=name,
                defaults={
                    "is_panel": True,
                    "panel_auto_recalc": auto,
                    "department": Department.objects.get_or_create(name=dept)[0],
                },
            )
            if not created:
                continue
            for position, analyte_name in enumerate(members, start=1):
                PanelAnalyte.objects.get_or_create(
                    panel=panel,
                    analyte=TestCatalog.objects.get(name=analyte_name),
                    defaults={"position": position},
                )
            if auto:
                recalculate_panel_price(panel)
            self.stdout.write(f"[OK] panel '{name}'")
