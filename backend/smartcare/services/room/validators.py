"""
Room Validators

Validation methods for room operations:
- Termination detection (status or revocation)
- Joinability
- Patient authorization against the invited receiver
- Doctor ownership for invite/revoke
"""
from smartcare.models.room import Room
from smartcare.models.user import UserContext
from .exceptions import RoomNotFoundError, RoomTerminatedError, RoomUnauthorizedError


def validate_room_open(room: Room, exists: bool = True) -> Room:
    """
    Validate that a room exists and has not been terminated.

    Raises:
        RoomNotFoundError if the document does not exist
        RoomTerminatedError if ended/cancelled/closed or revoked
    """
    if not exists:
        raise RoomNotFoundError(f"Room {room.id} not found")
    if room.is_terminated:
        raise RoomTerminatedError(f"Room {room.id} is {room.status or 'revoked'}")
    return room


def validate_joinable(room: Room) -> Room:
    """
    Validate that a new participant may be added.

    Raises:
        RoomTerminatedError if the room is not pending/active
    """
    validate_room_open(room)
    if not room.is_joinable:
        raise RoomTerminatedError(f"Room {room.id} is not joinable (status={room.status})")
    return room


def validate_patient_authorized(room: Room, user: UserContext) -> bool:
    """
    Patients may join open rooms or rooms they were invited to.

    Raises:
        RoomUnauthorizedError if another patient was invited
    """
    if user.is_patient and room.receiver_id and room.receiver_id != user.uid:
        raise RoomUnauthorizedError(f"User {user.uid} is not invited to room {room.id}")
    return True


def validate_room_owner(room: Room, user: UserContext) -> bool:
    """
    Only the doctor who created the room may invite or revoke.

    Raises:
        RoomUnauthorizedError otherwise
    """
    if not user.is_doctor:
        raise RoomUnauthorizedError("Only doctors can manage rooms")
    if room.caller_id and room.caller_id != user.uid:
        raise RoomUnauthorizedError(f"User {user.uid} did not create room {room.id}")
    return True
