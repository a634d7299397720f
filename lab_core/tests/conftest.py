# lab_core/tests/conftest.py

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Tuple

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from lab_core.models import (
    Department,
    LabPermission,
    NormalRange,
    PanelAnalyte,
    Patient,
    Role,
    StaffProfile,
    TestCatalog,
    TestRequestItem,
    Unit,
    UserRole,
)
from lab_core.services.requests import create_test_request


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def grant(user, *codes: Tuple[str, str]) -> None:
    """Give `user` a fresh role holding the (resource, action) pairs."""
    role = Role.objects.create(name=_rand(f"{user.username}-role"))
    for resource, action in codes:
        perm, _ = LabPermission.objects.get_or_create(resource=resource, action=action)
        role.permissions.add(perm)
    UserRole.objects.create(user=user, role=role)


def set_status(item: TestRequestItem, status: str, **fields) -> TestRequestItem:
    """Move an item straight to `status`, bypassing the action table."""
    TestRequestItem.objects.filter(pk=item.pk).update(status=status, **fields)
    item.refresh_from_db()
    return item


# ===============================================================
# Users and clients
# ===============================================================
@pytest.fixture
def make_user(db):
    User = get_user_model()

    def _make(
        username: Optional[str] = None,
        codes: Iterable[Tuple[str, str]] = (),
        *,
        department: Optional[Department] = None,
        superuser: bool = False,
    ):
        user = User.objects.create_user(
            username=username or _rand("user"),
            password="pass123",
            is_superuser=superuser,
            is_staff=superuser,
        )
        codes = list(codes)
        if codes:
            grant(user, *codes)
        if department is not None:
            StaffProfile.objects.create(user=user, department=department, full_name=user.username.title())
        return user

    return _make


@pytest.fixture
def client_for():
    def _client(user) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _client


@pytest.fixture
def move_to():
    return set_status


@pytest.fixture
def api_client() -> APIClient:
    return APIClient()


@pytest.fixture
def admin_user(make_user):
    return make_user("root", superuser=True)


@pytest.fixture
def pathologist(make_user):
    return make_user(
        "pathologist",
        [
            ("worklist", "view"),
            ("worklist", "all_departments"),
            ("results", "enter"),
            ("pathologist", "verify"),
            ("pathologist", "release"),
        ],
    )


@pytest.fixture
def technician(make_user, haematology):
    return make_user(
        "labtech",
        [("worklist", "view"), ("results", "enter")],
        department=haematology,
    )


@pytest.fixture
def phlebotomist(make_user):
    return make_user("phleb", [("phlebotomy", "collect"), ("reception", "view")])


@pytest.fixture
def receptionist(make_user):
    return make_user("reception", [("reception", "view"), ("reception", "update")])


@pytest.fixture
def lab_manager(make_user):
    return make_user("manager", [("lab_config", "*")])


@pytest.fixture
def nobody(make_user):
    return make_user("nobody")


# ===============================================================
# Catalog
# ===============================================================
@pytest.fixture
def haematology(db):
    return Department.objects.create(name="Haematology")


@pytest.fixture
def chemistry(db):
    return Department.objects.create(name="Chemistry")


@pytest.fixture
def unit_gdl(db):
    return Unit.objects.create(name="grams per decilitre", symbol="g/dL")


@pytest.fixture
def hemoglobin(haematology, unit_gdl):
    hb = TestCatalog.objects.create(
        name="Hemoglobin",
        department=haematology,
        unit=unit_gdl,
        price=Decimal("5.00"),
    )
    NormalRange.objects.create(analyte=hb, gender="Male", min_age=18, min_value=Decimal("13.0"), max_value=Decimal("17.0"))
    NormalRange.objects.create(analyte=hb, gender="Female", min_age=18, min_value=Decimal("12.0"), max_value=Decimal("15.0"))
    NormalRange.objects.create(analyte=hb, gender="Any", min_value=Decimal("11.0"), max_value=Decimal("16.0"))
    return hb


@pytest.fixture
def wbc(haematology):
    return TestCatalog.objects.create(name="WBC", department=haematology, price=Decimal("3.00"))


@pytest.fixture
def glucose(chemistry):
    g = TestCatalog.objects.create(name="Glucose", department=chemistry, price=Decimal("4.00"))
    NormalRange.objects.create(analyte=g, min_value=Decimal("3.9"), max_value=Decimal("5.6"))
    return g


@pytest.fixture
def malaria(haematology):
    return TestCatalog.objects.create(
        name="Malaria RDT",
        department=haematology,
        test_type=TestCatalog.TestType.QUALITATIVE,
        qualitative_value="Negative;Positive",
        price=Decimal("2.50"),
    )


@pytest.fixture
def fbc(haematology, hemoglobin, wbc):
    panel = TestCatalog.objects.create(
        name="Full Blood Count",
        department=haematology,
        is_panel=True,
        panel_auto_recalc=True,
        price=Decimal("8.00"),
    )
    PanelAnalyte.objects.create(panel=panel, analyte=hemoglobin, position=1)
    PanelAnalyte.objects.create(panel=panel, analyte=wbc, position=2)
    return panel


# ===============================================================
# Patients and requests
# ===============================================================
@pytest.fixture
def patient(db):
    return Patient.objects.create(
        lab_id="LAB-0001",
        first_name="John",
        last_name="Okello",
        gender="Male",
        date_of_birth=date(1990, 1, 1),
    )


@pytest.fixture
def female_patient(db):
    return Patient.objects.create(
        lab_id="LAB-0002",
        first_name="Grace",
        last_name="Namuli",
        gender="Female",
        date_of_birth=date(1985, 6, 15),
    )


@pytest.fixture
def make_request(admin_user):
    def _make(patient, tests, priority="ROUTINE"):
        return create_test_request(
            patient=patient,
            test_ids=[t.pk for t in tests],
            user=admin_user,
            priority=priority,
        )

    return _make


@pytest.fixture
def hb_item(make_request, patient, hemoglobin):
    """A single Hemoglobin item whose sample has been collected."""
    req = make_request(patient, [hemoglobin])
    item = req.items.get()
    return set_status(item, "sample_collected")
