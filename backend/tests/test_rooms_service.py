import pytest

from smartcare.config.constants import NOTIFICATIONS_COLLECTION, ROOMS_COLLECTION
from smartcare.models.appointment import Appointment
from smartcare.models.user import UserRole
from smartcare.services.room import RoomService, is_eligible_for_video_call
from smartcare.services.room.exceptions import RoomServiceError
from helpers import DOCTOR, PATIENT


@pytest.fixture
def rooms(store):
    return RoomService(store)


async def _seed(store, room_id, created_at, **fields):
    data = {
        "status": "pending",
        "callerId": DOCTOR.uid,
        "receiverId": PATIENT.uid,
        "participants": [DOCTOR.uid, PATIENT.uid],
        "appointmentId": "a1",
        "createdAt": created_at,
    }
    data.update(fields)
    await store.set(ROOMS_COLLECTION, room_id, data)


@pytest.mark.asyncio
async def test_create_room_for_patient(store, rooms):
    room_id = await rooms.create_video_room(
        "Follow-up", DOCTOR.uid, doctor_name="Dr. House",
        patient_id=PATIENT.uid, appointment_id="a1",
    )

    room = (await store.get(ROOMS_COLLECTION, room_id)).data
    assert room["status"] == "pending"
    assert room["callerId"] == DOCTOR.uid
    assert room["receiverId"] == PATIENT.uid
    assert room["participants"] == [DOCTOR.uid, PATIENT.uid]
    assert room["createdAt"]

    notes = await store.find(NOTIFICATIONS_COLLECTION, lambda d: d["userId"] == PATIENT.uid)
    assert len(notes) == 1
    assert notes[0].data["actionLink"] == f"/calls/room/{room_id}"
    assert notes[0].data["read"] is False


@pytest.mark.asyncio
async def test_create_open_room(store, rooms):
    room_id = await rooms.create_video_room("Drop-in", DOCTOR.uid)

    room = (await store.get(ROOMS_COLLECTION, room_id)).data
    assert room["participants"] == [DOCTOR.uid]
    assert room["receiverId"] is None
    assert await store.find(NOTIFICATIONS_COLLECTION, lambda d: True) == []


@pytest.mark.asyncio
async def test_create_room_requires_doctor(rooms):
    with pytest.raises(RoomServiceError):
        await rooms.create_video_room("Nobody", "")


@pytest.mark.asyncio
async def test_active_room_lookup_picks_latest(store, rooms):
    await _seed(store, "old", "2026-10-19T10:00:00+00:00")
    await _seed(store, "new", "2026-10-19T11:00:00+00:00")
    await _seed(store, "ended", "2026-10-19T12:00:00+00:00", status="ended")

    assert await rooms.has_active_room_for_appointment("a1", DOCTOR.uid, PATIENT.uid) == (True, "new")
    assert await rooms.has_active_room_for_appointment("a2", DOCTOR.uid, PATIENT.uid) == (False, None)
    assert await rooms.has_active_room_for_appointment("a1", DOCTOR.uid, None) == (False, None)


@pytest.mark.asyncio
async def test_active_room_requires_patient_in_participants(store, rooms):
    await _seed(store, "r1", "2026-10-19T10:00:00+00:00", participants=[DOCTOR.uid])
    assert await rooms.has_active_room_for_appointment("a1", DOCTOR.uid, PATIENT.uid) == (False, None)


@pytest.mark.asyncio
async def test_room_id_for_appointment_by_role(store, rooms):
    await _seed(store, "r1", "2026-10-19T10:00:00+00:00")

    assert await rooms.get_room_id_for_appointment("a1", DOCTOR.uid, UserRole.DOCTOR) == "r1"
    assert await rooms.get_room_id_for_appointment("a1", PATIENT.uid, UserRole.PATIENT) == "r1"
    assert await rooms.get_room_id_for_appointment("a1", "stranger", UserRole.PATIENT) is None
    assert await rooms.get_room_id_for_appointment("missing", DOCTOR.uid, UserRole.DOCTOR) is None


@pytest.mark.asyncio
async def test_doctor_waits_for_an_invited_patient(store, rooms):
    await _seed(store, "r1", "2026-10-19T10:00:00+00:00", receiverId=None, participants=[DOCTOR.uid])
    assert await rooms.get_room_id_for_appointment("a1", DOCTOR.uid, UserRole.DOCTOR) is None


@pytest.mark.parametrize("status,kind,role,expected", [
    ("approved", "Follow-up visit", UserRole.DOCTOR, True),
    ("confirmed", "Video consult", UserRole.DOCTOR, True),
    ("approved", "Follow-up visit", UserRole.PATIENT, False),
    ("pending", "Follow-up visit", UserRole.DOCTOR, False),
    ("approved", "Initial exam", UserRole.DOCTOR, False),
])
def test_video_call_eligibility(status, kind, role, expected):
    appointment = Appointment(id="a1", doctor_id=DOCTOR.uid, patient_id=PATIENT.uid, status=status, type=kind)
    assert is_eligible_for_video_call(appointment, role) is expected


def test_no_appointment_is_not_eligible():
    assert not is_eligible_for_video_call(None, UserRole.DOCTOR)
