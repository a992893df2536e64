"""
Room Lifecycle Management - conditional writes to the room document.

Single Responsibility: every state change a participant makes to a room
(join claim, offer/answer publication, leave, revoke) goes through here.
Each write re-validates the termination and membership conditions on a
fresh read inside an optimistic transaction, so a revoke racing a join or
two peers racing for the initiator role cannot both win.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from smartcare.config.constants import (
    REVOKE_DELETE_DELAY_SEC,
    ROOMS_COLLECTION,
    STATUS_ACTIVE,
    STATUS_ENDED,
    STATUS_PENDING,
)
from smartcare.models.room import Room, SessionDescription
from smartcare.models.user import UserContext
from smartcare.services.protocols import DocumentStoreProtocol
from smartcare.services.store.document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
)
from .validators import validate_joinable, validate_patient_authorized, validate_room_open

logger = logging.getLogger(__name__)


class RoomLifecycleManager:
    """
    Manages room document state transitions.

    Single Responsibility: Apply join/negotiate/leave/revoke writes with
    check-and-set semantics against the document store.
    """

    def __init__(self, store: DocumentStoreProtocol):
        self.store = store

    async def get_room(self, room_id: str) -> tuple[Room, bool]:
        """
        Read the room once.

        Returns:
            Tuple of (room, exists)
        """
        snapshot = await self.store.get(ROOMS_COLLECTION, room_id)
        return Room.from_document(room_id, snapshot.data), snapshot.exists

    async def claim_seat(self, room_id: str, user: UserContext) -> bool:
        """
        Add the user to ``participants`` and mark the room active.

        Patients also claim ``receiverId``. A user already present is left
        untouched.

        Returns:
            True if the user was added, False if already a participant.

        Raises:
            RoomNotFoundError, RoomTerminatedError, RoomUnauthorizedError
        """
        def _claim(snapshot: DocumentSnapshot) -> Optional[Dict[str, Any]]:
            room = Room.from_document(room_id, snapshot.data)
            validate_room_open(room, snapshot.exists)
            validate_patient_authorized(room, user)
            if room.has_participant(user.uid):
                return None
            validate_joinable(room)
            fields: Dict[str, Any] = {
                "participants": room.participants + [user.uid],
                "status": STATUS_ACTIVE,
            }
            if user.is_patient:
                fields["receiverId"] = user.uid
            return fields

        written = await self.store.transact(ROOMS_COLLECTION, room_id, _claim)
        if written:
            logger.info(f"[Lifecycle] {user.uid} joined room {room_id}")
        else:
            logger.info(f"[Lifecycle] {user.uid} already in room {room_id}")
        return written is not None

    async def publish_offer(
        self,
        room_id: str,
        user_id: str,
        offer: SessionDescription,
        still_valid: Callable[[], bool] = lambda: True,
    ) -> bool:
        """
        Become the initiator by writing ``offer``, only if none exists yet.

        Returns:
            True if this participant's offer was written.
        """
        def _elect(snapshot: DocumentSnapshot) -> Optional[Dict[str, Any]]:
            room = Room.from_document(room_id, snapshot.data)
            if not snapshot.exists or room.is_terminated:
                return None
            if not room.has_participant(user_id) or room.offer is not None:
                return None
            if not still_valid():
                return None
            return {"offer": offer.to_dict(), "offerBy": user_id, "status": STATUS_ACTIVE}

        written = await self.store.transact(ROOMS_COLLECTION, room_id, _elect)
        if written:
            logger.info(f"[Lifecycle] {user_id} is initiator in room {room_id}")
        return written is not None

    async def publish_answer(
        self,
        room_id: str,
        user_id: str,
        answer: SessionDescription,
        still_valid: Callable[[], bool] = lambda: True,
        mark_active: bool = True,
    ) -> bool:
        """
        Write ``answer`` as the responder, only against a live offer written
        by someone else and only if no answer exists yet.

        Returns:
            True if this participant's answer was written.
        """
        def _answer(snapshot: DocumentSnapshot) -> Optional[Dict[str, Any]]:
            room = Room.from_document(room_id, snapshot.data)
            if not snapshot.exists or room.is_terminated:
                return None
            if not room.has_participant(user_id):
                return None
            if room.offer is None or room.answer is not None:
                return None
            if room.offer_by == user_id:
                return None
            if not still_valid():
                return None
            fields: Dict[str, Any] = {"answer": answer.to_dict()}
            if mark_active:
                fields["status"] = STATUS_ACTIVE
            return fields

        written = await self.store.transact(ROOMS_COLLECTION, room_id, _answer)
        if written:
            logger.info(f"[Lifecycle] {user_id} answered in room {room_id}")
        return written is not None

    async def release_seat(self, room_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Remove the user from ``participants``.

        Invited rooms (with ``receiverId``) go back to pending so they can
        be rejoined, unless the room was ended in the meantime. When at most
        one participant remains, offer and answer are deleted so the next join
        negotiates from a clean slate.

        Returns:
            The fields written, or None if the room no longer exists.
        """
        def _release(snapshot: DocumentSnapshot) -> Optional[Dict[str, Any]]:
            if not snapshot.exists:
                return None
            room = Room.from_document(room_id, snapshot.data)
            remaining = [pid for pid in room.participants if pid != user_id]
            fields: Dict[str, Any] = {"participants": remaining}
            # A terminated room keeps its status
            if not room.is_terminated:
                fields["status"] = STATUS_PENDING if room.receiver_id else (room.status or STATUS_PENDING)
            if len(remaining) <= 1:
                fields["offer"] = DELETE_FIELD
                fields["offerBy"] = DELETE_FIELD
                fields["answer"] = DELETE_FIELD
            return fields

        written = await self.store.transact(ROOMS_COLLECTION, room_id, _release)
        if written is not None:
            logger.info(
                f"[Lifecycle] {user_id} left room {room_id} "
                f"({len(written['participants'])} remaining)"
            )
        return written

    async def revoke(
        self,
        room_id: str,
        user_id: str,
        delete_delay: float = REVOKE_DELETE_DELAY_SEC,
    ) -> asyncio.Task:
        """
        End the room for everyone, then delete it after a grace delay.

        The delay gives subscribed peers time to observe ``ended`` before
        the document disappears.

        Returns:
            The task that deletes the document.
        """
        await self.store.update(ROOMS_COLLECTION, room_id, {
            "status": STATUS_ENDED,
            "endedAt": SERVER_TIMESTAMP,
            "revokedBy": user_id,
        })
        logger.info(f"[Lifecycle] Room {room_id} revoked by {user_id}")
        return asyncio.create_task(self._delete_later(room_id, delete_delay))

    async def _delete_later(self, room_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.store.delete(ROOMS_COLLECTION, room_id)
            logger.info(f"[Lifecycle] Room {room_id} deleted")
        except Exception as e:
            logger.error(f"[Lifecycle] Failed to delete revoked room {room_id}: {e}")
