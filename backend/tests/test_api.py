import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from smartcare.api import rooms as rooms_api
from smartcare.api.deps import get_dispatcher, get_store
from smartcare.main import app
from helpers import DOCTOR, OTHER_PATIENT, PATIENT, create_room, room_data

DOCTOR_HEADERS = {"X-User-Id": DOCTOR.uid, "X-User-Role": "doctor", "X-User-Name": "Dr. House"}
PATIENT_HEADERS = {"X-User-Id": PATIENT.uid, "X-User-Role": "patient"}


@pytest.fixture
def dispatcher():
    return AsyncMock()


@pytest.fixture
async def client(store, dispatcher):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

    r = await client.get("/api/health")
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_requests_need_a_user(client):
    r = await client.get("/api/rooms/r1")
    assert r.status_code == 401

    r = await client.get("/api/rooms/r1", headers={"X-User-Id": "x", "X-User-Role": "nurse"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_create_room(client, store):
    r = await client.post("/api/rooms", json={"room_name": "Follow-up"}, headers=DOCTOR_HEADERS)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending"
    assert body["room_path"] == f"/calls/room/{body['room_id']}"

    data = await room_data(store, body["room_id"])
    assert data["callerId"] == DOCTOR.uid
    assert data["doctorName"] == "Dr. House"


@pytest.mark.asyncio
async def test_patients_cannot_create_rooms(client):
    r = await client.post("/api/rooms", json={"room_name": "Mine"}, headers=PATIENT_HEADERS)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_get_room_hides_negotiation(client, store):
    await create_room(store, offer={"type": "offer", "sdp": "v=0\r\n"}, roomName="Follow-up")

    r = await client.get("/api/rooms/r1", headers=PATIENT_HEADERS)
    assert r.status_code == 200
    body = r.json()
    assert body["has_offer"] is True
    assert body["has_answer"] is False
    assert "offer" not in body
    assert body["room_name"] == "Follow-up"

    r = await client.get("/api/rooms/ghost", headers=PATIENT_HEADERS)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_get_room_rejects_uninvited_patient(client, store):
    await create_room(store, receiverId=OTHER_PATIENT.uid)
    r = await client.get("/api/rooms/r1", headers=PATIENT_HEADERS)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_invite_patient(client, store, dispatcher):
    await create_room(store)
    payload = {"appointment_id": "a1", "patient_id": PATIENT.uid, "patient_name": "Pat One"}

    r = await client.post("/api/rooms/r1/invite", json=payload, headers=DOCTOR_HEADERS)
    assert r.status_code == 200
    assert r.json()["invited"] is True

    data = await room_data(store)
    assert data["receiverId"] == PATIENT.uid
    assert data["appointmentId"] == "a1"
    dispatcher.notify.assert_awaited_once()

    # The room now names the patient as receiver
    r = await client.post("/api/rooms/r1/invite", json=payload, headers=DOCTOR_HEADERS)
    assert r.status_code == 200
    assert r.json()["invited"] is False
    assert dispatcher.notify.await_count == 1


@pytest.mark.asyncio
async def test_invite_into_foreign_or_ended_room(client, store):
    payload = {"patient_id": PATIENT.uid}

    await create_room(store, room_id="theirs", callerId="other-doctor")
    r = await client.post("/api/rooms/theirs/invite", json=payload, headers=DOCTOR_HEADERS)
    assert r.status_code == 403

    await create_room(store, room_id="done", status="ended")
    r = await client.post("/api/rooms/done/invite", json=payload, headers=DOCTOR_HEADERS)
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_revoke_room(client, store):
    await create_room(store, status="active", participants=[DOCTOR.uid, PATIENT.uid])

    r = await client.post("/api/rooms/r1/revoke", headers=PATIENT_HEADERS)
    assert r.status_code == 403

    r = await client.post("/api/rooms/r1/revoke", headers=DOCTOR_HEADERS)
    assert r.status_code == 200
    assert r.json() == {"room_id": "r1", "status": "ended", "revoked_by": DOCTOR.uid}
    assert len(rooms_api._pending_deletions) == 1
    assert (await room_data(store))["revokedBy"] == DOCTOR.uid

    r = await client.post("/api/rooms/r1/revoke", headers=DOCTOR_HEADERS)
    assert r.status_code == 409

    # Deleted after the grace delay
    await asyncio.sleep(0.8)
    assert await room_data(store) is None
    assert not rooms_api._pending_deletions


@pytest.mark.asyncio
async def test_room_lookup_by_appointment(client, store):
    await create_room(
        store,
        receiverId=PATIENT.uid,
        participants=[DOCTOR.uid, PATIENT.uid],
        appointmentId="a1",
        createdAt="2026-10-19T10:00:00+00:00",
    )

    r = await client.get("/api/rooms/by-appointment/a1", headers=DOCTOR_HEADERS)
    assert r.json() == {"appointment_id": "a1", "room_id": "r1"}

    r = await client.get("/api/rooms/by-appointment/a1", headers=PATIENT_HEADERS)
    assert r.json()["room_id"] == "r1"

    r = await client.get("/api/rooms/by-appointment/a9", headers=PATIENT_HEADERS)
    assert r.json()["room_id"] is None
