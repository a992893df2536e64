"""
Invitation Service - a doctor invites the patient of an appointment.

Flow:
1. Mark the patient as invited (no-op if already marked)
2. Update the room: receiverId, participants [doctor, patient], appointmentId
3. Send in-app and push notifications concurrently; email is sent in the
   background so a slow mail endpoint never delays the invitation

A failed room update un-marks the patient. Notification failures are
logged and never undo the invitation.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx

from smartcare.config.constants import (
    INVITE_ACTION_TEXT,
    INVITE_NOTIFICATION_TITLE,
    INVITE_NOTIFICATION_TYPE,
    INVITE_PUSH_TAG,
    NOTIFICATION_ICON,
    ROOM_PATH_TEMPLATE,
    ROOMS_COLLECTION,
    STARTING_SOON_WINDOW_MIN,
    USERS_COLLECTION,
)
from smartcare.config.settings import settings
from smartcare.models.appointment import Appointment
from smartcare.models.room import Room
from smartcare.models.user import UserContext
from smartcare.services.protocols import DocumentStoreProtocol, NotificationDispatcherProtocol
from .exceptions import InvitationError
from .validators import validate_room_open, validate_room_owner

logger = logging.getLogger(__name__)

DEFAULT_ROOM_NAME = "Video Room"

# Background deliveries outlive the request that started them
_in_flight: Set[asyncio.Task] = set()


def list_upcoming(appointments: Iterable[Appointment], now: datetime) -> List[Appointment]:
    """Today's approved online appointments, earliest first."""
    upcoming = [
        apt for apt in appointments
        if apt.is_online and apt.status == "approved" and apt.is_same_day(now)
    ]
    return sorted(upcoming, key=lambda apt: apt.scheduled_at() or datetime.max)


def is_starting_soon(appointment: Appointment, now: datetime) -> bool:
    minutes = appointment.minutes_until(now)
    return minutes is not None and 0 <= minutes <= STARTING_SOON_WINDOW_MIN


def is_timeout(error: BaseException) -> bool:
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return True
    message = str(error)
    return "ETIMEDOUT" in message or "timeout" in message.lower()


class InvitationService:
    """
    Invites patients into a doctor's room.

    One instance per open room page; ``invited`` is its idempotency record.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        dispatcher: NotificationDispatcherProtocol,
        room: Optional[Room] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.invited: Set[str] = set()
        self._pending: Set[asyncio.Task] = set()
        if room is not None:
            self.seed(room)

    def seed(self, room: Room) -> None:
        """Treat the room's current receiver as already invited."""
        if room.receiver_id:
            self.invited.add(room.receiver_id)

    def is_invited(self, patient_id: str) -> bool:
        return patient_id in self.invited

    async def _patient_details(self, patient_id: str) -> Dict[str, Any]:
        snapshot = await self.store.get(USERS_COLLECTION, patient_id)
        return snapshot.data or {}

    async def invite(self, room_id: str, appointment: Appointment, doctor: UserContext) -> bool:
        """
        Invite the appointment's patient into the room.

        Args:
            room_id: Room to invite into
            appointment: The patient's appointment with this doctor
            doctor: The inviting doctor

        Returns:
            True if the invitation was issued, False if already invited.

        Raises:
            InvitationError if the appointment belongs to another doctor
            RoomNotFoundError, RoomTerminatedError, RoomUnauthorizedError
        """
        patient_id = appointment.patient_id
        if appointment.doctor_id and appointment.doctor_id != doctor.uid:
            raise InvitationError(
                f"Appointment {appointment.id} does not belong to doctor {doctor.uid}"
            )
        if patient_id in self.invited:
            logger.info(f"[Invite] Patient {patient_id} already invited to room {room_id}")
            return False

        self.invited.add(patient_id)
        try:
            snapshot = await self.store.get(ROOMS_COLLECTION, room_id)
            room = Room.from_document(room_id, snapshot.data)
            validate_room_open(room, snapshot.exists)
            validate_room_owner(room, doctor)

            details = await self._patient_details(patient_id)
            await self.store.update(ROOMS_COLLECTION, room_id, {
                "receiverId": patient_id,
                "participants": [doctor.uid, patient_id],
                "appointmentId": appointment.id,
            })
        except Exception:
            self.invited.discard(patient_id)
            raise

        logger.info(f"[Invite] Doctor {doctor.uid} invited patient {patient_id} to room {room_id}")
        await self._send_notifications(room_id, room, appointment, doctor, details)
        return True

    # === Notifications ===

    async def _send_notifications(
        self,
        room_id: str,
        room: Room,
        appointment: Appointment,
        doctor: UserContext,
        details: Dict[str, Any],
    ) -> None:
        room_name = room.room_name or DEFAULT_ROOM_NAME
        doctor_name = doctor.display_name or "Your doctor"
        patient_name = (
            details.get("displayName") or details.get("name")
            or appointment.patient_name or "Patient"
        )
        room_path = ROOM_PATH_TEMPLATE.format(room_id=room_id)

        await asyncio.gather(
            self._notify_in_app(room_id, room_name, room_path, appointment, doctor, details),
            self._notify_push(room_id, room_path, doctor_name),
        )

        # Email delivery may take up to the endpoint timeout; never wait for it
        email = details.get("email")
        if email:
            task = asyncio.create_task(
                self._notify_email(email, room_name, room_path, doctor, patient_name, appointment.patient_id)
            )
            for pending in (self._pending, _in_flight):
                pending.add(task)
                task.add_done_callback(pending.discard)

    async def wait_for_notifications(self) -> None:
        """Wait for background notification deliveries still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _notify_in_app(self, room_id, room_name, room_path, appointment, doctor, details):
        try:
            await self.dispatcher.notify(appointment.patient_id, {
                "title": INVITE_NOTIFICATION_TITLE,
                "message": f"{doctor.display_name or 'Your doctor'} invited you to join a video room: {room_name}",
                "type": INVITE_NOTIFICATION_TYPE,
                "actionLink": room_path,
                "actionText": INVITE_ACTION_TEXT,
                "imageUrl": details.get("photoURL"),
                "metadata": {
                    "callId": room_id,
                    "roomName": room_name,
                    "doctorName": doctor.display_name or "Doctor",
                    "appointmentId": appointment.id,
                },
            })
        except Exception as e:
            logger.error(f"[Invite] In-app notification failed: {e}")

    async def _notify_push(self, room_id, room_path, doctor_name):
        try:
            await self.dispatcher.push_notify(INVITE_NOTIFICATION_TITLE, {
                "body": f"{doctor_name} invited you to join a video room",
                "tag": INVITE_PUSH_TAG,
                "icon": NOTIFICATION_ICON,
                "badge": NOTIFICATION_ICON,
                "data": {
                    "url": room_path,
                    "callId": room_id,
                    "type": INVITE_NOTIFICATION_TYPE,
                },
            })
        except Exception as e:
            logger.error(f"[Invite] Push notification failed: {e}")

    async def _notify_email(self, address, room_name, room_path, doctor, patient_name, patient_id):
        doctor_name = doctor.display_name or "Your doctor"
        subject = f"{INVITE_NOTIFICATION_TITLE} from {doctor.display_name or 'Your Doctor'}"
        body = (
            f"Dear {patient_name},\n\n"
            f"{doctor_name} has invited you to join a video consultation room.\n\n"
            f"Room: {room_name}\n"
            f"Click the link below to join:\n"
            f"{settings.APP_BASE_URL}{room_path}\n\n"
            f"Best regards,\n"
            f"Smart Care Team"
        )
        try:
            await self.dispatcher.email_notify(address, subject, body, patient_id)
        except Exception as e:
            if is_timeout(e):
                logger.debug(f"[Invite] Email to {patient_id} timed out")
            else:
                logger.error(f"[Invite] Email notification failed: {e}")
