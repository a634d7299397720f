import pytest

from lab_core.models import ApiKey
from lab_core.services.api_keys import authenticate_key, create_key, split_key


@pytest.mark.django_db
def test_created_key_is_shown_once_and_authenticates(client_for, api_client, technician, settings):
    settings.API_KEY_PREFIX_ENV = "test"

    resp = client_for(technician).post("/api/keys", {"name": "analyzer bridge"}, format="json")

    assert resp.status_code == 201
    body = resp.json()
    full_key = body["data"]["key"]
    assert body["data"]["key_prefix"].startswith("sk_test_")
    assert full_key.startswith(body["data"]["key_prefix"] + ".")
    assert "cannot be shown again" in body["meta"]["notice"]

    stored = ApiKey.objects.get(pk=body["data"]["id"])
    assert full_key.split(".", 1)[1] not in stored.secret_hash

    me = api_client.get("/api/me/", HTTP_X_API_KEY=full_key)
    assert me.status_code == 200
    assert me.json()["data"]["username"] == "labtech"

    stored.refresh_from_db()
    assert stored.last_used_at is not None


@pytest.mark.django_db
def test_listing_never_exposes_secrets(client_for, technician, nobody):
    create_key(user=technician, name="one")
    create_key(user=technician, name="two")
    create_key(user=nobody, name="someone else's")

    resp = client_for(technician).get("/api/keys")

    rows = resp.json()["data"]
    assert [r["name"] for r in rows] == ["two", "one"]
    assert all("key" not in r and "secret_hash" not in r for r in rows)


@pytest.mark.django_db
def test_key_name_is_required(client_for, technician):
    resp = client_for(technician).post("/api/keys", {"name": "  "}, format="json")
    assert resp.status_code == 400


@pytest.mark.django_db
def test_revoke(client_for, api_client, technician):
    key, full_key = create_key(user=technician, name="bridge")
    client = client_for(technician)

    resp = client.delete(f"/api/keys/{key.pk}")
    assert resp.status_code == 200
    assert resp.json()["data"]["is_active"] is False

    assert client.delete(f"/api/keys/{key.pk}").status_code == 404
    assert api_client.get("/api/me/", HTTP_X_API_KEY=full_key).status_code == 401


@pytest.mark.django_db
def test_only_owner_or_manager_revokes(client_for, make_user, technician, nobody):
    key, _ = create_key(user=technician, name="bridge")
    manager = make_user("keymaster", [("api_keys", "manage")])

    assert client_for(nobody).delete(f"/api/keys/{key.pk}").status_code == 404
    assert client_for(manager).delete(f"/api/keys/{key.pk}").status_code == 200


@pytest.mark.django_db
def test_wrong_or_malformed_keys_fail(api_client, technician):
    key, full_key = create_key(user=technician, name="bridge")

    assert api_client.get("/api/me/", HTTP_X_API_KEY=f"{key.key_prefix}.wrong").status_code == 401
    assert api_client.get("/api/me/", HTTP_X_API_KEY="no-dot-here").status_code == 401
    assert authenticate_key(full_key) == key
    assert authenticate_key("") is None


def test_split_key():
    assert split_key("sk_test_ab12cd34.s3cr3t") == ("sk_test_ab12cd34", "s3cr3t")
    assert split_key("sk_test_ab12cd34.") == ("", "")
    assert split_key(None) == ("", "")
