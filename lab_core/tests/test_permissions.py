import pytest
from django.contrib.auth.models import AnonymousUser

from lab_core.models import LabPermission, Role, UserRole
from lab_core.permissions import can, grants, permission_codes, restricted_department_id


def test_grants_wildcards_and_case():
    codes = {("results", "enter"), ("lab_config", "*")}

    assert grants(codes, "results", "enter")
    assert grants(codes, "RESULTS", "Enter")
    assert grants(codes, "lab_config", "manage")
    assert not grants(codes, "results", "delete")
    assert not grants(codes, "pathologist", "verify")
    assert grants({("*", "*")}, "anything", "at_all")


@pytest.mark.django_db
def test_superuser_holds_everything(admin_user):
    assert permission_codes(admin_user) == {("*", "*")}
    assert can(admin_user, "pathologist", "release")
    assert restricted_department_id(admin_user) is None


@pytest.mark.django_db
def test_permissions_union_over_roles(make_user):
    user = make_user("multi", [("worklist", "view")])
    second = Role.objects.create(name="second")
    second.permissions.add(LabPermission.objects.create(resource="Pathologist", action="Verify"))
    UserRole.objects.create(user=user, role=second)

    assert can(user, "worklist", "view")
    assert can(user, "pathologist", "verify")
    assert not can(user, "pathologist", "release")


@pytest.mark.django_db
def test_anonymous_and_roleless_users_have_nothing(nobody):
    assert permission_codes(AnonymousUser()) == set()
    assert permission_codes(nobody) == set()
    assert not can(None, "worklist", "view")


@pytest.mark.django_db
def test_department_restriction(technician, pathologist, haematology):
    assert restricted_department_id(technician) == haematology.pk
    # all_departments lifts the restriction
    assert restricted_department_id(pathologist) is None


@pytest.mark.django_db
def test_me_endpoint(client_for, technician, haematology):
    resp = client_for(technician).get("/api/me/")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["username"] == "labtech"
    assert data["permissions"] == ["results:enter", "worklist:view"]
    assert data["department"] == {"id": haematology.pk, "name": "Haematology"}
    assert data["department_restricted"] is True
    assert len(data["roles"]) == 1


@pytest.mark.django_db
def test_me_requires_authentication(api_client):
    resp = api_client.get("/api/me/")
    assert resp.status_code == 401
    assert "message" in resp.json()


@pytest.mark.django_db
def test_health_is_public(api_client):
    resp = api_client.get("/api/health/")

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "ok"
