from datetime import timedelta

import pytest
from django.utils import timezone

from lab_core import workflows as wf


@pytest.fixture
def mixed_requests(make_request, move_to, patient, female_patient, hemoglobin, glucose, fbc):
    """One collected Hb, one pending glucose, one FBC for a second patient."""
    hb = make_request(patient, [hemoglobin], priority="URGENT").items.get()
    move_to(hb, "sample_collected")
    make_request(patient, [glucose])
    make_request(female_patient, [fbc])
    return hb


@pytest.mark.django_db
def test_counts_and_worklist_cover_the_same_items(client_for, pathologist, mixed_requests):
    client = client_for(pathologist)

    worklist = client.get("/api/pathologist/worklist").json()
    counts = client.get("/api/pathologist/status-counts").json()

    # panel header rows are not part of either
    assert worklist["meta"]["count"] == 4
    assert all(row["test_name"] != "Full Blood Count" for row in worklist["data"])

    assert set(counts["data"]) == set(wf.ITEM_STATES)
    assert sum(counts["data"].values()) == len(worklist["data"])
    assert counts["meta"]["total"] == 4
    assert counts["data"]["sample_collected"] == 1
    assert counts["data"]["pending"] == 3


@pytest.mark.django_db
def test_department_restricted_user_sees_own_department(client_for, technician, mixed_requests):
    client = client_for(technician)

    rows = client.get("/api/pathologist/worklist").json()["data"]
    counts = client.get("/api/pathologist/status-counts").json()["data"]

    assert {r["department"] for r in rows} == {"Haematology"}
    assert len(rows) == 3
    assert sum(counts.values()) == 3


@pytest.mark.django_db
def test_status_filter_accepts_display_names(client_for, pathologist, mixed_requests):
    client = client_for(pathologist)

    rows = client.get("/api/pathologist/worklist", {"status": "Sample Collected"}).json()["data"]

    assert [r["item_id"] for r in rows] == [mixed_requests.pk]
    assert rows[0]["status_label"] == "Sample Collected"
    assert rows[0]["priority"] == "URGENT"


@pytest.mark.django_db
def test_under_review_filter(client_for, pathologist, mixed_requests, move_to):
    move_to(mixed_requests, "sample_collected", is_under_review=True)
    client = client_for(pathologist)

    by_flag = client.get("/api/pathologist/worklist", {"under_review": "true"}).json()
    by_status = client.get("/api/pathologist/worklist", {"status": "under_review"}).json()

    assert [r["item_id"] for r in by_flag["data"]] == [mixed_requests.pk]
    assert [r["item_id"] for r in by_status["data"]] == [mixed_requests.pk]
    assert by_flag["meta"]["under_review"] == 1


@pytest.mark.django_db
def test_search_and_department_filters(client_for, pathologist, mixed_requests):
    client = client_for(pathologist)

    grace = client.get("/api/pathologist/worklist", {"search": "Grace Namuli"}).json()["data"]
    assert {r["panel_name"] for r in grace} == {"Full Blood Count"}
    assert {r["test_name"] for r in grace} == {"Hemoglobin", "WBC"}

    by_lab_id = client.get("/api/pathologist/worklist", {"search": "LAB-0001"}).json()["data"]
    assert len(by_lab_id) == 2

    chem = client.get("/api/pathologist/worklist", {"department": "chem"}).json()["data"]
    assert [r["test_name"] for r in chem] == ["Glucose"]


@pytest.mark.django_db
def test_date_range_filter(client_for, pathologist, mixed_requests):
    client = client_for(pathologist)
    today = timezone.localdate()

    same_day = client.get("/api/pathologist/worklist", {"from": today.isoformat(), "to": today.isoformat()})
    future = client.get("/api/pathologist/worklist", {"from": (today + timedelta(days=1)).isoformat()})

    assert same_day.json()["meta"]["count"] == 4
    assert future.json()["meta"]["count"] == 0


@pytest.mark.django_db
def test_sorting(client_for, pathologist, mixed_requests):
    client = client_for(pathologist)

    rows = client.get("/api/pathologist/worklist", {"sort_by": "test_name", "order": "asc"}).json()["data"]
    assert [r["test_name"] for r in rows] == ["Glucose", "Hemoglobin", "Hemoglobin", "WBC"]

    assert client.get("/api/pathologist/worklist", {"sort_by": "bogus"}).status_code == 400
    assert client.get("/api/pathologist/worklist", {"order": "sideways"}).status_code == 400


@pytest.mark.django_db
def test_worklist_requires_permission(client_for, nobody, api_client):
    assert client_for(nobody).get("/api/pathologist/worklist").status_code == 403
    assert client_for(nobody).get("/api/pathologist/status-counts").status_code == 403
    assert api_client.get("/api/pathologist/worklist").status_code == 401


@pytest.mark.django_db
def test_workflow_definition_endpoint(client_for, pathologist):
    resp = client_for(pathologist).get("/api/pathologist/workflow")

    assert resp.status_code == 200
    assert resp.json()["data"]["item"]["states"] == wf.ITEM_STATES
