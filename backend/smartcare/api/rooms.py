"""
Rooms API - Endpoints for video room management

Implements:
- Room creation (doctor)
- Room view without negotiation blobs
- Patient invitation with notifications
- Revocation with delayed deletion
- Appointment → room lookup
"""
import asyncio
from typing import Set

from fastapi import APIRouter, Depends, HTTPException

from smartcare.api.deps import get_current_doctor, get_current_user, get_dispatcher, get_store
from smartcare.config.constants import ROOM_PATH_TEMPLATE, ROOMS_COLLECTION, STATUS_ENDED, STATUS_PENDING
from smartcare.models.room import Room
from smartcare.models.user import UserContext
from smartcare.services.notifications import NotificationDispatcher
from smartcare.services.room import (
    InvitationError,
    InvitationService,
    RoomLifecycleManager,
    RoomNotFoundError,
    RoomService,
    RoomServiceError,
    RoomTerminatedError,
    RoomUnauthorizedError,
)
from smartcare.services.room.validators import (
    validate_patient_authorized,
    validate_room_open,
    validate_room_owner,
)
from smartcare.services.store import RedisDocumentStore
from smartcare.schemas.room import (
    CreateRoomRequest,
    CreateRoomResponse,
    InviteRequest,
    InviteResponse,
    RevokeResponse,
    RoomLookupResponse,
    RoomResponse,
)

router = APIRouter()

# Delayed deletions of revoked rooms, kept referenced until they finish
_pending_deletions: Set[asyncio.Task] = set()


def _http_error(e: RoomServiceError) -> HTTPException:
    if isinstance(e, RoomNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (RoomUnauthorizedError, InvitationError)):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, RoomTerminatedError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


async def _load_room(store: RedisDocumentStore, room_id: str) -> Room:
    snapshot = await store.get(ROOMS_COLLECTION, room_id)
    if not snapshot.exists:
        raise RoomNotFoundError(f"Room {room_id} not found")
    return Room.from_document(room_id, snapshot.data)


@router.post("/rooms", response_model=CreateRoomResponse)
async def create_room(
    req: CreateRoomRequest,
    store: RedisDocumentStore = Depends(get_store),
    current_user: UserContext = Depends(get_current_doctor),
):
    """
    Create a pending video room owned by the calling doctor.
    """
    try:
        room_id = await RoomService(store).create_video_room(
            room_name=req.room_name,
            doctor_id=current_user.uid,
            doctor_name=current_user.display_name,
            patient_id=req.patient_id,
            scheduled_at=req.scheduled_at,
            appointment_id=req.appointment_id,
        )
    except RoomServiceError as e:
        raise _http_error(e)

    return CreateRoomResponse(
        room_id=room_id,
        status=STATUS_PENDING,
        room_path=ROOM_PATH_TEMPLATE.format(room_id=room_id),
    )


@router.get("/rooms/by-appointment/{appointment_id}", response_model=RoomLookupResponse)
async def get_room_for_appointment(
    appointment_id: str,
    store: RedisDocumentStore = Depends(get_store),
    current_user: UserContext = Depends(get_current_user),
):
    room_id = await RoomService(store).get_room_id_for_appointment(
        appointment_id, current_user.uid, current_user.role
    )
    return RoomLookupResponse(appointment_id=appointment_id, room_id=room_id)


@router.get("/rooms/{room_id}", response_model=RoomResponse)
async def get_room(
    room_id: str,
    store: RedisDocumentStore = Depends(get_store),
    current_user: UserContext = Depends(get_current_user),
):
    """
    Room view for the room page. Offer/answer are reported as flags only.
    """
    try:
        room = await _load_room(store, room_id)
        validate_patient_authorized(room, current_user)
    except RoomServiceError as e:
        raise _http_error(e)
    return RoomResponse.from_room(room)


@router.post("/rooms/{room_id}/invite", response_model=InviteResponse)
async def invite_patient(
    room_id: str,
    req: InviteRequest,
    store: RedisDocumentStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: UserContext = Depends(get_current_doctor),
):
    """
    Invite the appointment's patient.

    Re-inviting the room's current receiver is a no-op.
    """
    try:
        room = await _load_room(store, room_id)
        service = InvitationService(store, dispatcher, room=room)
        invited = await service.invite(room_id, req.to_appointment(current_user.uid), current_user)
    except RoomServiceError as e:
        raise _http_error(e)

    return InviteResponse(
        room_id=room_id,
        patient_id=req.patient_id,
        invited=invited,
        message="Invitation sent" if invited else "Patient already invited",
    )


@router.post("/rooms/{room_id}/revoke", response_model=RevokeResponse)
async def revoke_room(
    room_id: str,
    store: RedisDocumentStore = Depends(get_store),
    current_user: UserContext = Depends(get_current_doctor),
):
    """
    End the room for everyone. The document is deleted shortly after.
    """
    try:
        room = await _load_room(store, room_id)
        validate_room_open(room)
        validate_room_owner(room, current_user)
        deletion = await RoomLifecycleManager(store).revoke(room_id, current_user.uid)
    except RoomServiceError as e:
        raise _http_error(e)

    _pending_deletions.add(deletion)
    deletion.add_done_callback(_pending_deletions.discard)

    return RevokeResponse(room_id=room_id, status=STATUS_ENDED, revoked_by=current_user.uid)
