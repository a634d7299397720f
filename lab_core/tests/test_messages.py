import pytest

from lab_core.models import LabEvent, Message


@pytest.mark.django_db
def test_direct_message_flow(client_for, technician, pathologist):
    tech = client_for(technician)
    doc = client_for(pathologist)

    resp = tech.post(
        "/api/messages/send",
        {"receiver_id": pathologist.pk, "content": "Hb on bed 4 looks haemolysed"},
        format="json",
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["sender"]["username"] == "labtech"
    assert resp.json()["data"]["receiver_id"] == pathologist.pk

    assert doc.get("/api/messages/unread/count").json()["data"] == {"unread": 1}
    assert tech.get("/api/messages/unread/count").json()["data"] == {"unread": 0}

    history = doc.get("/api/messages/history", {"peer_id": technician.pk}).json()
    assert history["meta"]["count"] == 1

    resp = doc.put("/api/messages/mark-thread-read", {"peer_id": technician.pk}, format="json")
    assert resp.json()["data"] == {"marked_read": 1}
    assert doc.get("/api/messages/unread/count").json()["data"] == {"unread": 0}

    event = LabEvent.objects.get(name="new_message")
    assert event.payload["receiver_id"] == pathologist.pk


@pytest.mark.django_db
def test_broadcast_reaches_everyone(client_for, admin_user, technician, receptionist):
    client_for(admin_user).post(
        "/api/messages/send",
        {"is_general": True, "content": "Analyzer maintenance at 14:00"},
        format="json",
    )

    for user in (technician, receptionist):
        rows = client_for(user).get("/api/messages/history").json()["data"]
        assert [r["content"] for r in rows] == ["Analyzer maintenance at 14:00"]

    # broadcasts are not counted as unread direct messages
    assert client_for(technician).get("/api/messages/unread/count").json()["data"]["unread"] == 0


@pytest.mark.django_db
def test_history_excludes_other_conversations(client_for, technician, pathologist, receptionist):
    Message.objects.create(sender=pathologist, receiver=receptionist, content="private")
    Message.objects.create(sender=pathologist, receiver=technician, content="for you")

    rows = client_for(technician).get("/api/messages/history").json()["data"]

    assert [r["content"] for r in rows] == ["for you"]


@pytest.mark.django_db
@pytest.mark.parametrize(
    "payload",
    [
        {"content": "   ", "receiver_id": None, "is_general": True},
        {"content": "hello"},
        {"content": "hello", "receiver_id": 999999},
    ],
)
def test_send_validation(client_for, technician, payload):
    resp = client_for(technician).post("/api/messages/send", payload, format="json")

    assert resp.status_code == 400
    assert not Message.objects.exists()


@pytest.mark.django_db
def test_bad_peer_id(client_for, technician):
    assert client_for(technician).get("/api/messages/history", {"peer_id": "abc"}).status_code == 400
