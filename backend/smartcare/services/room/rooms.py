"""
Room Service - room creation and appointment → room lookups.

Used by the scheduling pages to create rooms and to decide whether a
"Join Room" button should be shown for an appointment.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from smartcare.config.constants import (
    INVITE_ACTION_TEXT,
    INVITE_NOTIFICATION_TITLE,
    INVITE_NOTIFICATION_TYPE,
    JOINABLE_STATUSES,
    NOTIFICATIONS_COLLECTION,
    ROOM_PATH_TEMPLATE,
    ROOMS_COLLECTION,
    STATUS_PENDING,
)
from smartcare.models.appointment import Appointment
from smartcare.models.user import UserRole
from smartcare.services.protocols import DocumentStoreProtocol
from smartcare.services.store.document_store import SERVER_TIMESTAMP, DocumentSnapshot
from .exceptions import RoomServiceError

logger = logging.getLogger(__name__)

ELIGIBLE_APPOINTMENT_STATUSES = ("approved", "confirmed")


def is_eligible_for_video_call(appointment: Optional[Appointment], role: UserRole = UserRole.PATIENT) -> bool:
    """Approved follow-up style appointments, and only doctors start the call."""
    if appointment is None:
        return False
    if appointment.status not in ELIGIBLE_APPOINTMENT_STATUSES:
        return False
    return appointment.is_follow_up and role == UserRole.DOCTOR


def _most_recent(snapshots: List[DocumentSnapshot]) -> Optional[DocumentSnapshot]:
    if not snapshots:
        return None
    return max(snapshots, key=lambda s: str(s.data.get("createdAt") or ""))


class RoomService:
    """Creates rooms and finds the live room of an appointment."""

    def __init__(self, store: DocumentStoreProtocol):
        self.store = store

    async def create_video_room(
        self,
        room_name: str,
        doctor_id: str,
        doctor_name: Optional[str] = None,
        patient_id: Optional[str] = None,
        scheduled_at: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> str:
        """
        Create a pending room owned by the doctor.

        When a patient is given, the room is pre-assigned to them and an
        in-app invitation is written.

        Returns:
            The new room id

        Raises:
            RoomServiceError if no doctor is given
        """
        if not doctor_id:
            raise RoomServiceError("Missing doctorId")

        room_id = await self.store.add(ROOMS_COLLECTION, {
            "type": "video",
            "status": STATUS_PENDING,
            "callerId": doctor_id,
            "receiverId": patient_id,
            "participants": [doctor_id, patient_id] if patient_id else [doctor_id],
            "roomName": room_name,
            "doctorName": doctor_name,
            "scheduledAt": scheduled_at,
            "appointmentId": appointment_id,
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info(f"[Room] Doctor {doctor_id} created room {room_id}")

        if patient_id:
            await self.store.add(NOTIFICATIONS_COLLECTION, {
                "userId": patient_id,
                "title": INVITE_NOTIFICATION_TITLE,
                "message": f"{doctor_name or 'Your doctor'} invited you to a video room: {room_name}",
                "type": INVITE_NOTIFICATION_TYPE,
                "actionLink": ROOM_PATH_TEMPLATE.format(room_id=room_id),
                "actionText": INVITE_ACTION_TEXT,
                "metadata": {"callId": room_id, "roomName": room_name, "scheduledAt": scheduled_at},
                "read": False,
                "createdAt": SERVER_TIMESTAMP,
            })
        return room_id

    async def _live_rooms(self, appointment_id: str, **match: Any) -> List[DocumentSnapshot]:
        def _predicate(data: Dict[str, Any]) -> bool:
            if data.get("appointmentId") != appointment_id:
                return False
            if data.get("status") not in JOINABLE_STATUSES:
                return False
            return all(data.get(name) == value for name, value in match.items())

        return await self.store.find(ROOMS_COLLECTION, _predicate)

    async def has_active_room_for_appointment(
        self,
        appointment_id: Optional[str],
        doctor_id: Optional[str],
        patient_id: Optional[str],
    ) -> Tuple[bool, Optional[str]]:
        """
        Whether the doctor has a live room for this appointment with the
        patient invited into it.

        Returns:
            Tuple of (has_room, room_id)
        """
        if not appointment_id or not doctor_id or not patient_id:
            return False, None
        try:
            rooms = await self._live_rooms(appointment_id, callerId=doctor_id, receiverId=patient_id)
        except Exception as e:
            logger.error(f"[Room] Error checking for active room: {e}")
            return False, None

        latest = _most_recent(rooms)
        if latest is not None and patient_id in (latest.data.get("participants") or []):
            return True, latest.id
        return False, None

    async def get_room_id_for_appointment(
        self,
        appointment_id: Optional[str],
        user_id: Optional[str],
        role: UserRole,
    ) -> Optional[str]:
        """
        The live room of an appointment the user may enter, if any.

        Doctors only get rooms they created that already have a patient
        invited; patients get rooms they are the receiver of; anyone listed
        in ``participants`` gets the room.
        """
        if not appointment_id or not user_id:
            return None
        try:
            latest = _most_recent(await self._live_rooms(appointment_id))
        except Exception as e:
            logger.error(f"[Room] Error getting room for appointment {appointment_id}: {e}")
            return None
        if latest is None:
            return None

        data = latest.data
        if role == UserRole.DOCTOR and data.get("callerId") == user_id:
            return latest.id if data.get("receiverId") else None
        if role == UserRole.PATIENT and data.get("receiverId") == user_id:
            return latest.id
        if user_id in (data.get("participants") or []):
            return latest.id
        return None
