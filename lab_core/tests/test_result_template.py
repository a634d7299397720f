from datetime import date
from decimal import Decimal

import pytest

from lab_core.models import NormalRange, Patient, TestCatalog
from lab_core.services.templates import get_result_template, pick_range, resolve_range


def _template(client, req):
    resp = client.get(f"/api/pathologist/results/{req.pk}/template")
    assert resp.status_code == 200, resp.json()
    return resp.json()["data"]


@pytest.mark.django_db
def test_range_resolved_for_male_adult(client_for, pathologist, make_request, patient, hemoglobin):
    req = make_request(patient, [hemoglobin])

    data = _template(client_for(pathologist), req)

    assert data["patient"]["gender"] == "Male"
    assert data["patient"]["age"] >= 18
    (leaf,) = data["items"]
    assert leaf["is_panel"] is False
    assert leaf["name"] == "Hemoglobin"
    assert leaf["reference_range"] == "13 - 17"
    assert leaf["unit"] == "g/dL"
    assert leaf["result_value"] is None


@pytest.mark.django_db
def test_range_resolved_for_female_adult(client_for, pathologist, make_request, female_patient, hemoglobin):
    data = _template(client_for(pathologist), make_request(female_patient, [hemoglobin]))
    assert data["items"][0]["reference_range"] == "12 - 15"


@pytest.mark.django_db
def test_child_falls_back_to_any_gender_row(client_for, pathologist, make_request, hemoglobin):
    child = Patient.objects.create(
        lab_id="LAB-0100",
        first_name="Amani",
        last_name="Kato",
        gender="Female",
        date_of_birth=date(date.today().year - 10, 1, 1),
    )

    data = _template(client_for(pathologist), make_request(child, [hemoglobin]))

    assert data["patient"]["age"] < 18
    assert data["items"][0]["reference_range"] == "11 - 16"


@pytest.mark.django_db
def test_panel_nests_its_analytes(client_for, pathologist, make_request, patient, fbc):
    data = _template(client_for(pathologist), make_request(patient, [fbc]))

    (panel,) = data["items"]
    assert panel["is_panel"] is True
    assert panel["name"] == "Full Blood Count"
    assert [a["name"] for a in panel["analytes"]] == ["Hemoglobin", "WBC"]
    assert panel["analytes"][0]["reference_range"] == "13 - 17"
    # no rows configured for WBC
    assert panel["analytes"][1]["reference_range"] == ""
    assert panel["analytes"][1]["range_id"] is None


@pytest.mark.django_db
def test_panel_override_applies_only_inside_the_panel(client_for, pathologist, make_request, patient, hemoglobin, fbc):
    NormalRange.objects.create(
        analyte=hemoglobin,
        panel=fbc,
        min_value=Decimal("10"),
        max_value=Decimal("20"),
    )

    data = _template(client_for(pathologist), make_request(patient, [hemoglobin, fbc]))

    # panel blocks lead the form
    panel, standalone = data["items"]
    assert panel["is_panel"] and not standalone["is_panel"]
    assert standalone["reference_range"] == "13 - 17"
    assert panel["analytes"][0]["reference_range"] == "10 - 20"


@pytest.mark.django_db
def test_qualitative_options(client_for, pathologist, make_request, patient, haematology, malaria):
    blood_group = TestCatalog.objects.create(
        name="Blood Group",
        department=haematology,
        test_type=TestCatalog.TestType.QUALITATIVE,
    )

    data = _template(client_for(pathologist), make_request(patient, [malaria, blood_group]))

    rdt, group = data["items"]
    assert rdt["qualitative_options"] == ["Negative", "Positive"]
    assert rdt["reference_range"] == "Negative / Positive"
    assert group["qualitative_options"] == ["A", "B", "AB", "O"]


@pytest.mark.django_db
def test_existing_results_are_reflagged(make_request, patient, hemoglobin, move_to):
    req = make_request(patient, [hemoglobin])
    move_to(req.items.get(), "in_progress", result_value="18.4")

    leaf = get_result_template(req.pk)["items"][0]

    assert leaf["result_value"] == "18.4"
    assert leaf["result_flag"] == "H"


@pytest.mark.django_db
def test_unknown_request_is_404(client_for, pathologist):
    assert client_for(pathologist).get("/api/pathologist/results/424242/template").status_code == 404


@pytest.mark.django_db
def test_narrowest_age_band_wins(hemoglobin):
    wide = NormalRange.objects.create(analyte=hemoglobin, gender="Male", min_age=0, max_age=120, min_value=1, max_value=2)
    narrow = NormalRange.objects.create(analyte=hemoglobin, gender="Male", min_age=30, max_age=40, min_value=3, max_value=4)

    rows = [wide, narrow]
    assert pick_range(rows, gender="male", age=35) == narrow
    assert pick_range(rows, gender="Male", age=50) == wide
    assert pick_range(rows, gender="Female", age=35) is None


@pytest.mark.django_db
def test_resolve_range_without_age_uses_gender_only(hemoglobin):
    row = resolve_range(hemoglobin, gender="Female", age=None)
    assert (row.gender, row.display()) == ("Female", "12 - 15")
