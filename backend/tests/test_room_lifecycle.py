import asyncio

import pytest

from smartcare.config.constants import ROOMS_COLLECTION
from smartcare.models.room import SessionDescription
from smartcare.services.room import (
    RoomLifecycleManager,
    RoomNotFoundError,
    RoomTerminatedError,
    RoomUnauthorizedError,
)
from helpers import DOCTOR, OTHER_PATIENT, PATIENT, create_room, room_data

OFFER = SessionDescription(type="offer", sdp="v=0\r\ns=offer\r\n")
ANSWER = SessionDescription(type="answer", sdp="v=0\r\ns=answer\r\n")


@pytest.fixture
def lifecycle(store):
    return RoomLifecycleManager(store)


@pytest.mark.asyncio
async def test_claim_seat_is_idempotent(store, lifecycle):
    await create_room(store, participants=[])

    assert await lifecycle.claim_seat("r1", DOCTOR) is True
    assert await lifecycle.claim_seat("r1", DOCTOR) is False

    data = await room_data(store)
    assert data["participants"] == [DOCTOR.uid]
    assert data["status"] == "active"


@pytest.mark.asyncio
async def test_patient_claims_receiver_in_open_room(store, lifecycle):
    await create_room(store)
    await lifecycle.claim_seat("r1", PATIENT)

    data = await room_data(store)
    assert data["receiverId"] == PATIENT.uid
    assert data["participants"] == [DOCTOR.uid, PATIENT.uid]


@pytest.mark.asyncio
async def test_uninvited_patient_cannot_change_room(store, lifecycle):
    await create_room(store, receiverId=PATIENT.uid, participants=[DOCTOR.uid, PATIENT.uid])
    before = await store.get(ROOMS_COLLECTION, "r1")

    with pytest.raises(RoomUnauthorizedError):
        await lifecycle.claim_seat("r1", OTHER_PATIENT)

    after = await store.get(ROOMS_COLLECTION, "r1")
    assert after.data == before.data
    assert after.version == before.version


@pytest.mark.asyncio
@pytest.mark.parametrize("fields", [
    {"status": "ended"},
    {"status": "cancelled"},
    {"status": "closed"},
    {"status": "active", "revokedBy": "doc-1"},
])
async def test_terminated_rooms_cannot_be_joined(store, lifecycle, fields):
    await create_room(store, participants=[], **fields)
    with pytest.raises(RoomTerminatedError):
        await lifecycle.claim_seat("r1", PATIENT)
    assert (await room_data(store))["participants"] == []


@pytest.mark.asyncio
async def test_missing_room(lifecycle):
    with pytest.raises(RoomNotFoundError):
        await lifecycle.claim_seat("ghost", DOCTOR)


@pytest.mark.asyncio
async def test_only_one_offer_wins(store, lifecycle):
    await create_room(store, participants=[DOCTOR.uid, PATIENT.uid])
    patient_offer = SessionDescription(type="offer", sdp="v=0\r\ns=patient\r\n")

    results = await asyncio.gather(
        lifecycle.publish_offer("r1", DOCTOR.uid, OFFER),
        lifecycle.publish_offer("r1", PATIENT.uid, patient_offer),
    )
    assert sorted(results) == [False, True]

    data = await room_data(store)
    winner = DOCTOR.uid if results[0] else PATIENT.uid
    assert data["offerBy"] == winner


@pytest.mark.asyncio
async def test_offer_requires_membership_and_validity(store, lifecycle):
    await create_room(store)
    assert not await lifecycle.publish_offer("r1", PATIENT.uid, OFFER)
    assert not await lifecycle.publish_offer("r1", DOCTOR.uid, OFFER, still_valid=lambda: False)
    assert "offer" not in await room_data(store)


@pytest.mark.asyncio
async def test_answer_rules(store, lifecycle):
    await create_room(store, participants=[DOCTOR.uid, PATIENT.uid])

    # No offer yet
    assert not await lifecycle.publish_answer("r1", PATIENT.uid, ANSWER)

    await lifecycle.publish_offer("r1", DOCTOR.uid, OFFER)
    # Never answer your own offer
    assert not await lifecycle.publish_answer("r1", DOCTOR.uid, ANSWER)

    assert await lifecycle.publish_answer("r1", PATIENT.uid, ANSWER)
    # Only one answer
    assert not await lifecycle.publish_answer("r1", PATIENT.uid, ANSWER)

    data = await room_data(store)
    assert data["answer"] == ANSWER.to_dict()
    assert data["status"] == "active"


@pytest.mark.asyncio
async def test_leave_clears_negotiation_and_reopens_invited_room(store, lifecycle):
    await create_room(
        store,
        status="active",
        receiverId=PATIENT.uid,
        participants=[DOCTOR.uid, PATIENT.uid],
        offer=OFFER.to_dict(),
        offerBy=DOCTOR.uid,
        answer=ANSWER.to_dict(),
    )

    written = await lifecycle.release_seat("r1", PATIENT.uid)
    assert written["participants"] == [DOCTOR.uid]

    data = await room_data(store)
    assert data["participants"] == [DOCTOR.uid]
    assert data["status"] == "pending"
    assert "offer" not in data
    assert "answer" not in data
    assert "offerBy" not in data


@pytest.mark.asyncio
async def test_leave_keeps_status_of_open_room(store, lifecycle):
    await create_room(
        store,
        status="active",
        participants=[DOCTOR.uid, PATIENT.uid, "observer"],
        offer=OFFER.to_dict(),
        answer=ANSWER.to_dict(),
    )
    await lifecycle.release_seat("r1", "observer")

    data = await room_data(store)
    assert data["status"] == "active"
    # Two participants remain, negotiation stays
    assert data["offer"] == OFFER.to_dict()


@pytest.mark.asyncio
async def test_leave_from_deleted_room_is_noop(lifecycle):
    assert await lifecycle.release_seat("ghost", PATIENT.uid) is None


@pytest.mark.asyncio
async def test_revoke_ends_then_deletes(store, lifecycle):
    await create_room(store, status="active", participants=[DOCTOR.uid, PATIENT.uid])

    deletion = await lifecycle.revoke("r1", DOCTOR.uid, delete_delay=0.05)
    data = await room_data(store)
    assert data["status"] == "ended"
    assert data["revokedBy"] == DOCTOR.uid
    assert data["endedAt"]

    await deletion
    assert await room_data(store) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["cancelled", "closed", "ended"])
async def test_leave_does_not_reopen_terminated_room(store, lifecycle, status):
    await create_room(
        store,
        status=status,
        receiverId=PATIENT.uid,
        participants=[DOCTOR.uid, PATIENT.uid],
        offer=OFFER.to_dict(),
        answer=ANSWER.to_dict(),
    )

    written = await lifecycle.release_seat("r1", PATIENT.uid)
    assert "status" not in written

    data = await room_data(store)
    assert data["status"] == status
    assert data["participants"] == [DOCTOR.uid]
    assert "offer" not in data and "answer" not in data

    with pytest.raises(RoomTerminatedError):
        await lifecycle.claim_seat("r1", PATIENT)
