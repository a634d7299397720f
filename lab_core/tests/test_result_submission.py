import pytest

from lab_core.models import LabEvent, NormalRange, ResultAuditLog, TestRequestItem


def _submit(client, item, value, **extra):
    return client.post(f"/api/pathologist/results/{item.pk}", {"value": value, **extra}, format="json")


@pytest.mark.django_db
def test_numeric_result_is_flagged_and_auto_starts(client_for, technician, hb_item):
    resp = _submit(client_for(technician), hb_item, "18.1")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "in_progress"
    assert data["result_value"] == "18.1"
    assert data["result_flag"] == "H"

    hb_item.refresh_from_db()
    assert hb_item.entered_by == technician
    assert LabEvent.objects.filter(name="result_saved").count() == 1


@pytest.mark.django_db
def test_non_numeric_quantitative_value_is_stored_without_flag(client_for, technician, hb_item, move_to):
    move_to(hb_item, "in_progress")

    resp = _submit(client_for(technician), hb_item, "clotted")

    assert resp.status_code == 200
    assert resp.json()["data"]["result_value"] == "clotted"
    assert resp.json()["data"]["result_flag"] == ""


@pytest.mark.django_db
def test_qualitative_value_must_be_an_allowed_option(client_for, technician, make_request, patient, malaria, move_to):
    item = move_to(make_request(patient, [malaria]).items.get(), "in_progress")
    client = client_for(technician)

    resp = _submit(client, item, "Maybe")
    assert resp.status_code == 400
    assert "not an allowed result" in resp.json()["message"]
    item.refresh_from_db()
    assert item.result_value == ""

    resp = _submit(client, item, "positive")
    assert resp.status_code == 200
    # stored in the option's own spelling
    assert resp.json()["data"]["result_value"] == "Positive"
    # no normal value configured, so any allowed option reads as normal
    assert resp.json()["data"]["result_flag"] == "N"


@pytest.mark.django_db
def test_qualitative_value_is_flagged_against_the_normal_value(client_for, technician, make_request, patient, malaria, move_to):
    NormalRange.objects.create(analyte=malaria, range_type="qualitative", qualitative_value="Negative")
    first = move_to(make_request(patient, [malaria]).items.get(), "in_progress")
    second = move_to(make_request(patient, [malaria]).items.get(), "in_progress")
    client = client_for(technician)

    resp = _submit(client, first, "Positive")
    assert resp.status_code == 200
    assert resp.json()["data"]["result_flag"] == "A"

    resp = _submit(client, second, "negative")
    assert resp.status_code == 200
    assert resp.json()["data"]["result_value"] == "Negative"
    assert resp.json()["data"]["result_flag"] == "N"


@pytest.mark.django_db
def test_blank_value_is_rejected(client_for, technician, hb_item):
    resp = _submit(client_for(technician), hb_item, "   ")
    assert resp.status_code == 400


@pytest.mark.django_db
def test_stale_version_conflicts(client_for, technician, hb_item, move_to):
    move_to(hb_item, "in_progress")
    client = client_for(technician)

    first = _submit(client, hb_item, "14.0", version=hb_item.version)
    assert first.status_code == 200

    # second writer still holds the old version
    second = _submit(client, hb_item, "15.0", version=hb_item.version)
    assert second.status_code == 409

    hb_item.refresh_from_db()
    assert hb_item.result_value == "14.0"


@pytest.mark.django_db
@pytest.mark.parametrize(
    "status,fragment",
    [
        ("pending", "not been collected"),
        ("completed", "reopen"),
        ("verified", "reopen"),
        ("released", "terminal"),
    ],
)
def test_item_must_be_writable(client_for, technician, hb_item, move_to, status, fragment):
    move_to(hb_item, status, result_value="14.0")

    resp = _submit(client_for(technician), hb_item, "13.0")

    assert resp.status_code == 400
    assert fragment in resp.json()["message"]


@pytest.mark.django_db
def test_result_change_is_audited(client_for, technician, hb_item, move_to):
    move_to(hb_item, "in_progress")
    client = client_for(technician)

    _submit(client, hb_item, "14.0")
    _submit(client, hb_item, "14.0")
    _submit(client, hb_item, "15.5")

    history = list(ResultAuditLog.objects.filter(item=hb_item).order_by("created_at", "id"))
    assert [(h.old_value, h.new_value) for h in history] == [("", "14.0"), ("14.0", "15.5")]
    assert all(h.changed_by == technician for h in history)


@pytest.mark.django_db
def test_other_department_cannot_enter_results(client_for, technician, make_request, patient, glucose, move_to):
    item = move_to(make_request(patient, [glucose]).items.get(), "in_progress")

    resp = _submit(client_for(technician), item, "5.0")

    assert resp.status_code == 403


@pytest.mark.django_db
def test_results_need_entry_permission(client_for, receptionist, hb_item):
    assert _submit(client_for(receptionist), hb_item, "14.0").status_code == 403


# ------------------------------------------------------------
# Batch submission
# ------------------------------------------------------------
@pytest.fixture
def panel_request(make_request, move_to, patient, fbc):
    req = make_request(patient, [fbc])
    for child in req.items.filter(parent__isnull=False):
        move_to(child, "sample_collected")
    return req


def _children(req):
    hb = req.items.get(test__name="Hemoglobin")
    wbc = req.items.get(test__name="WBC")
    return hb, wbc


@pytest.mark.django_db
def test_batch_is_all_or_nothing(client_for, technician, panel_request):
    hb, wbc = _children(panel_request)

    resp = client_for(technician).post(
        f"/api/pathologist/requests/{panel_request.pk}/results",
        {"results": {str(hb.pk): "14.1", str(wbc.pk): ""}},
        format="json",
    )

    assert resp.status_code == 400
    assert str(wbc.pk) in resp.json()["errors"]["results"]

    hb.refresh_from_db()
    assert hb.result_value == ""
    assert hb.status == "sample_collected"
    assert not ResultAuditLog.objects.exists()


@pytest.mark.django_db
def test_batch_saves_and_completes(client_for, technician, panel_request):
    hb, wbc = _children(panel_request)

    resp = client_for(technician).post(
        f"/api/pathologist/requests/{panel_request.pk}/results",
        {"results": {str(hb.pk): "12.0", str(wbc.pk): "7.2"}, "complete": True},
        format="json",
    )

    assert resp.status_code == 200, resp.json()
    assert resp.json()["meta"]["count"] == 2
    assert {row["status"] for row in resp.json()["data"]} == {"completed"}

    hb.refresh_from_db()
    assert (hb.result_value, hb.result_flag) == ("12.0", "L")

    header = panel_request.items.get(parent__isnull=True)
    assert header.status == "completed"


@pytest.mark.django_db
def test_batch_rejects_items_of_other_requests(client_for, technician, panel_request, hb_item):
    resp = client_for(technician).post(
        f"/api/pathologist/requests/{panel_request.pk}/results",
        {"results": {str(hb_item.pk): "14.0"}},
        format="json",
    )

    assert resp.status_code == 400
    assert TestRequestItem.objects.get(pk=hb_item.pk).result_value == ""
