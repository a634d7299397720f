from decimal import Decimal

import pytest

from lab_core.models import NormalRange, PanelAnalyte, TestCatalog

TESTS = "/api/lab-config/tests"
PANELS = "/api/lab-config/panels"


@pytest.fixture
def manager_client(client_for, lab_manager):
    return client_for(lab_manager)


def _price(test) -> Decimal:
    return TestCatalog.objects.get(pk=test.pk).price


# ------------------------------------------------------------
# Panel pricing
# ------------------------------------------------------------
@pytest.mark.django_db
def test_auto_panel_price_follows_constituents(manager_client, hemoglobin, wbc):
    resp = manager_client.post(PANELS, {"name": "Mini Count", "panel_auto_recalc": True}, format="json")
    assert resp.status_code == 201, resp.json()
    panel = resp.json()["data"]
    assert panel["price"] == "0.00"
    url = f"{PANELS}/{panel['id']}"

    assert manager_client.post(f"{url}/analytes", {"analyte_id": hemoglobin.pk}, format="json").status_code == 201
    assert manager_client.get(url).json()["data"]["price"] == "5.00"

    resp = manager_client.post(f"{url}/analytes", {"analyte_ids": [wbc.pk]}, format="json")
    assert [row["name"] for row in resp.json()["data"]] == ["Hemoglobin", "WBC"]
    assert manager_client.get(url).json()["data"]["price"] == "8.00"

    # constituent price change propagates
    resp = manager_client.patch(f"{TESTS}/{wbc.pk}", {"price": "4.00"}, format="json")
    assert resp.status_code == 200
    assert TestCatalog.objects.get(pk=panel["id"]).price == Decimal("9.00")

    resp = manager_client.delete(f"{url}/analytes/{hemoglobin.pk}")
    assert resp.status_code == 204
    assert TestCatalog.objects.get(pk=panel["id"]).price == Decimal("4.00")


@pytest.mark.django_db
def test_manual_panel_keeps_its_price(manager_client, hemoglobin, wbc):
    resp = manager_client.post(
        PANELS,
        {"name": "Anaemia Screen", "price": "20.00", "panel_auto_recalc": False},
        format="json",
    )
    panel_id = resp.json()["data"]["id"]

    manager_client.post(f"{PANELS}/{panel_id}/analytes", {"analyte_ids": [hemoglobin.pk, wbc.pk]}, format="json")
    manager_client.post(f"{PANELS}/{panel_id}/recalc", {}, format="json")
    manager_client.patch(f"{TESTS}/{hemoglobin.pk}", {"price": "6.00"}, format="json")

    # recalc is explicit; the later price change does not touch a manual panel
    assert TestCatalog.objects.get(pk=panel_id).price == Decimal("8.00")


@pytest.mark.django_db
def test_switching_panel_to_auto_recalculates(manager_client, fbc):
    TestCatalog.objects.filter(pk=fbc.pk).update(panel_auto_recalc=False, price=Decimal("50.00"))

    resp = manager_client.patch(f"{PANELS}/{fbc.pk}", {"panel_auto_recalc": True}, format="json")

    assert resp.status_code == 200
    assert resp.json()["data"]["price"] == "8.00"
    assert _price(fbc) == Decimal("8.00")


# ------------------------------------------------------------
# Membership rules
# ------------------------------------------------------------
@pytest.mark.django_db
def test_panel_cannot_contain_a_panel(manager_client, fbc, haematology):
    other = TestCatalog.objects.create(name="Coagulation", department=haematology, is_panel=True)

    resp = manager_client.post(f"{PANELS}/{other.pk}/analytes", {"analyte_ids": [fbc.pk]}, format="json")

    assert resp.status_code == 400
    assert "panel cannot contain another panel" in resp.json()["message"]
    assert not PanelAnalyte.objects.filter(panel=other).exists()


@pytest.mark.django_db
def test_removing_an_unlinked_analyte_is_404(manager_client, fbc, glucose):
    resp = manager_client.delete(f"{PANELS}/{fbc.pk}/analytes/{glucose.pk}")
    assert resp.status_code == 404


@pytest.mark.django_db
def test_adding_twice_keeps_one_link(manager_client, fbc, hemoglobin):
    manager_client.post(f"{PANELS}/{fbc.pk}/analytes", {"analyte_id": hemoglobin.pk}, format="json")
    assert PanelAnalyte.objects.filter(panel=fbc, analyte=hemoglobin).count() == 1


# ------------------------------------------------------------
# Names, validation, permissions
# ------------------------------------------------------------
@pytest.mark.django_db
def test_duplicate_names_conflict_case_insensitively(manager_client, hemoglobin, haematology):
    resp = manager_client.post(TESTS, {"name": "  HEMOGLOBIN "}, format="json")
    assert resp.status_code == 409

    resp = manager_client.post(PANELS, {"name": "hemoglobin"}, format="json")
    assert resp.status_code == 409

    resp = manager_client.post("/api/lab-config/departments", {"name": "haematology"}, format="json")
    assert resp.status_code == 409


@pytest.mark.django_db
def test_create_analyte(manager_client, haematology, unit_gdl):
    resp = manager_client.post(
        TESTS,
        {"name": "Ferritin", "price": "7.50", "department": haematology.pk, "unit": unit_gdl.pk},
        format="json",
    )

    assert resp.status_code == 201, resp.json()
    data = resp.json()["data"]
    assert data["is_panel"] is False
    assert data["department_name"] == "Haematology"
    assert data["unit_symbol"] == "g/dL"


@pytest.mark.django_db
def test_negative_price_is_rejected(manager_client):
    resp = manager_client.post(TESTS, {"name": "Ferritin", "price": "-1.00"}, format="json")
    assert resp.status_code == 400


@pytest.mark.django_db
def test_catalog_permissions(client_for, make_user, nobody, hemoglobin):
    viewer = client_for(make_user("viewer", [("lab_config", "view")]))

    assert client_for(nobody).get(TESTS).status_code == 403
    assert viewer.get(TESTS).status_code == 200
    assert viewer.post(TESTS, {"name": "Ferritin"}, format="json").status_code == 403


@pytest.mark.django_db
def test_list_filters(manager_client, hemoglobin, glucose, malaria):
    rows = manager_client.get(TESTS, {"name": "hemo"}).json()["data"]
    assert [r["name"] for r in rows] == ["Hemoglobin"]

    rows = manager_client.get(TESTS, {"test_type": "qualitative"}).json()["data"]
    assert [r["qualitative_options"] for r in rows] == [["Negative", "Positive"]]


# ------------------------------------------------------------
# Delete and deactivate
# ------------------------------------------------------------
@pytest.mark.django_db
def test_delete_referenced_analyte_deactivates_it(manager_client, fbc, hemoglobin):
    resp = manager_client.delete(f"{TESTS}/{hemoglobin.pk}")

    assert resp.status_code == 200
    assert resp.json()["data"] == {"id": hemoglobin.pk, "soft_deleted": True, "is_active": False}

    hemoglobin.refresh_from_db()
    assert hemoglobin.is_active is False
    assert NormalRange.objects.filter(analyte=hemoglobin).count() == 3
    assert PanelAnalyte.objects.filter(panel=fbc, analyte=hemoglobin).exists()


@pytest.mark.django_db
def test_delete_unused_analyte_removes_it(manager_client, glucose):
    resp = manager_client.delete(f"{TESTS}/{glucose.pk}")

    assert resp.json()["data"]["soft_deleted"] is False
    assert not TestCatalog.objects.filter(pk=glucose.pk).exists()
    assert not NormalRange.objects.filter(analyte_id=glucose.pk).exists()


@pytest.mark.django_db
def test_deactivate_and_restore_keeps_configuration(manager_client, fbc, hemoglobin):
    url = f"{TESTS}/{hemoglobin.pk}/status"

    assert manager_client.patch(url, {"is_active": False}, format="json").json()["data"]["is_active"] is False
    assert manager_client.patch(url, {"is_active": True}, format="json").json()["data"]["is_active"] is True

    assert NormalRange.objects.filter(analyte=hemoglobin).count() == 3
    assert list(fbc.memberships.values_list("analyte__name", flat=True)) == ["Hemoglobin", "WBC"]


@pytest.mark.django_db
def test_inactive_tests_cannot_be_ordered(client_for, receptionist, patient, hemoglobin):
    TestCatalog.objects.filter(pk=hemoglobin.pk).update(is_active=False)

    resp = client_for(receptionist).post(
        "/api/test-requests/",
        {"patient": patient.pk, "test_ids": [hemoglobin.pk]},
        format="json",
    )

    assert resp.status_code == 400
    assert "Inactive" in resp.json()["message"]


# ------------------------------------------------------------
# Normal ranges
# ------------------------------------------------------------
@pytest.mark.django_db
def test_range_crud(manager_client, glucose):
    url = f"{TESTS}/{glucose.pk}/ranges"

    resp = manager_client.post(
        url,
        {"gender": "Male", "min_age": 18, "min_value": "4.0", "max_value": "6.1"},
        format="json",
    )
    assert resp.status_code == 201, resp.json()
    row = resp.json()["data"]
    assert row["analyte"] == glucose.pk
    assert row["display"] == "4 - 6.1"

    listed = manager_client.get(url, {"gender": "male"}).json()["data"]
    assert [r["id"] for r in listed] == [row["id"]]

    resp = manager_client.patch(f"/api/lab-config/ranges/{row['id']}", {"max_value": "7"}, format="json")
    assert resp.status_code == 200
    assert resp.json()["data"]["display"] == "4 - 7"

    assert manager_client.delete(f"/api/lab-config/ranges/{row['id']}").status_code == 204
    assert NormalRange.objects.filter(analyte=glucose).count() == 1


@pytest.mark.django_db
def test_range_values_read_back_exactly(manager_client, glucose):
    url = f"{TESTS}/{glucose.pk}/ranges"

    resp = manager_client.post(
        url,
        {"range_type": "numeric", "min_value": 10, "max_value": 20, "gender": "Male"},
        format="json",
    )
    assert resp.status_code == 201, resp.json()

    rows = manager_client.get(url, {"gender": "Male"}).json()["data"]
    assert len(rows) == 1
    assert rows[0]["range_type"] == "numeric"
    assert rows[0]["gender"] == "Male"
    assert Decimal(rows[0]["min_value"]) == 10
    assert Decimal(rows[0]["max_value"]) == 20


@pytest.mark.django_db
def test_range_validation(manager_client, glucose):
    url = f"{TESTS}/{glucose.pk}/ranges"

    inverted = manager_client.post(url, {"min_value": "9", "max_value": "3"}, format="json")
    assert inverted.status_code == 400

    empty = manager_client.post(url, {"range_type": "numeric"}, format="json")
    assert empty.status_code == 400

    too_precise = manager_client.post(url, {"min_value": "1.123456", "max_value": "3"}, format="json")
    assert too_precise.status_code == 400

    bad_ages = manager_client.post(url, {"min_value": "1", "min_age": 60, "max_age": 18}, format="json")
    assert bad_ages.status_code == 400


@pytest.mark.django_db
def test_symbolic_range_clears_numeric_bounds(manager_client, glucose):
    resp = manager_client.post(
        f"{TESTS}/{glucose.pk}/ranges",
        {"range_type": "symbolic", "symbol_operator": "<", "symbol_value": "5", "min_value": "1"},
        format="json",
    )

    assert resp.status_code == 201, resp.json()
    row = NormalRange.objects.get(pk=resp.json()["data"]["id"])
    assert row.min_value is None
    assert row.display() == "< 5"
    assert row.flag_for("7") == "H"


@pytest.mark.django_db
def test_panel_range_override(manager_client, fbc, hemoglobin, glucose):
    url = f"{PANELS}/{fbc.pk}/ranges"

    resp = manager_client.post(url, {"analyte": hemoglobin.pk, "min_value": "10", "max_value": "20"}, format="json")
    assert resp.status_code == 201
    assert resp.json()["data"]["panel"] == fbc.pk

    assert manager_client.post(url, {"analyte": glucose.pk, "min_value": "1"}, format="json").status_code == 400
    assert manager_client.post(url, {"min_value": "1"}, format="json").status_code == 400

    listed = manager_client.get(url).json()["data"]
    assert len(listed) == 1
    # general rows are untouched by the override
    assert manager_client.get(f"{TESTS}/{hemoglobin.pk}/ranges").json()["meta"]["count"] == 3
