"""
Room Session Coordinator - one participant's view of one video room.

Drives the room document through join → negotiate → active ⇄ waiting →
leave/revoke/terminated, relaying the offer/answer/ICE exchange through
the document store.

Join sequence (order matters):
1. Read the room; leave silently if missing or terminated
2. Patients must match an already-set receiverId
3. Acquire media and create the peer connection
4. Claim a seat (transactional re-check of step 1)
5. Re-read and decide initiator / responder / nothing
6. Subscribe to room changes and ICE candidates

Every async continuation checks ``state.is_leaving`` before acting, so a
close/leave that happens mid-join stops the remaining steps.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from aiortc import MediaStreamTrack
from aiortc.exceptions import InvalidStateError

from smartcare.config.constants import CANDIDATES_SUBCOLLECTION, ROOMS_COLLECTION
from smartcare.models.room import Room, SessionDescription
from smartcare.models.user import UserContext
from smartcare.services.media.capture import MediaCapture
from smartcare.services.media.tracks import MediaStream
from smartcare.services.protocols import DocumentStoreProtocol, NavigatorProtocol
from smartcare.services.rtc.peer import PeerConnectionFactory, PeerConnectionManager
from smartcare.services.store.document_store import DocumentSnapshot, Subscription
from .exceptions import (
    RoomNotFoundError,
    RoomTerminatedError,
    RoomUnauthorizedError,
    SignalingStateError,
)
from .lifecycle import RoomLifecycleManager
from .navigation import appointments_path, dashboard_path
from .validators import validate_patient_authorized

logger = logging.getLogger(__name__)

WAITING_FOR_PATIENT = "Waiting for patient to join…"
WAITING_FOR_DOCTOR = "Waiting for doctor to join…"


class SessionPhase(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    WAITING = "waiting-for-peer"
    LEAVING = "leaving"
    TERMINATED = "terminated"


@dataclass
class RoomSessionState:
    """Per-session flags; never shared between sessions."""
    phase: SessionPhase = SessionPhase.IDLE
    connecting: bool = True
    is_leaving: bool = False
    is_initiator: bool = False
    is_revoking: bool = False
    waiting_message: str = ""
    remote_active: bool = False
    recovered: bool = False
    error: Optional[str] = None


def is_state_mismatch(error: BaseException) -> bool:
    if isinstance(error, (InvalidStateError, SignalingStateError)):
        return True
    return "signaling state" in str(error).lower()


class RoomSessionCoordinator:
    """
    Orchestrates the lifecycle of one participant in one room.
    Handles:
    - Join with authorization and termination checks
    - Initiator/responder negotiation
    - Presence tracking and termination propagation
    - Leave, revoke and unmount teardown
    """

    def __init__(
        self,
        room_id: str,
        user: UserContext,
        store: DocumentStoreProtocol,
        navigator: NavigatorProtocol,
        media: Optional[MediaCapture] = None,
        pc_factory: Optional[PeerConnectionFactory] = None,
        lifecycle: Optional[RoomLifecycleManager] = None,
    ):
        self.room_id = room_id
        self.user = user
        self.store = store
        self.navigator = navigator
        self.media = media or MediaCapture()
        self.pc_factory = pc_factory
        self.lifecycle = lifecycle or RoomLifecycleManager(store)

        self.state = RoomSessionState()
        self.local_stream: Optional[MediaStream] = None
        self.remote_stream: Optional[MediaStream] = None
        self.screen_track: Optional[MediaStreamTrack] = None
        self.peer: Optional[PeerConnectionManager] = None
        self.room: Optional[Room] = None

        self._room_subscription: Optional[Subscription] = None
        self._candidate_subscription: Optional[Subscription] = None

    @property
    def self_id(self) -> str:
        return self.user.uid or "anon"

    # === Join ===

    async def join(self) -> bool:
        """
        Join the room.

        Errors are logged and end the attempt; nothing is retried.

        Returns:
            True if the session is live and subscribed.
        """
        self.state.phase = SessionPhase.JOINING
        try:
            return await self._join()
        except Exception as e:
            logger.error(f"[Room] Failed to join room {self.room_id}: {e}")
            self.state.error = str(e)
            return False
        finally:
            self.state.connecting = False

    async def _join(self) -> bool:
        # 1. Existence and termination
        room, exists = await self.lifecycle.get_room(self.room_id)
        if not exists or room.is_terminated:
            logger.info(f"[Room] Room {self.room_id} is gone or ended, not joining")
            await self._terminate()
            return False

        # 2. Patient authorization
        try:
            validate_patient_authorized(room, self.user)
        except RoomUnauthorizedError as e:
            logger.info(f"[Room] {e}")
            await self._terminate()
            return False
        self.room = room

        # 3. Media and peer connection
        self.local_stream = await self.media.acquire()
        if self.state.is_leaving:
            self.local_stream.stop()
            return False
        self.peer = PeerConnectionManager(
            room_id=self.room_id,
            self_id=self.self_id,
            store=self.store,
            local_stream=self.local_stream,
            on_remote_stream=self._on_remote_stream,
            pc_factory=self.pc_factory,
        )
        self.peer.create()

        # 4. Seat claim, re-validated against a revoke racing this join
        try:
            await self.lifecycle.claim_seat(self.room_id, self.user)
        except (RoomNotFoundError, RoomTerminatedError, RoomUnauthorizedError) as e:
            logger.info(f"[Room] Cannot join: {e}")
            await self._terminate()
            return False

        # 5. Negotiation role
        self.state.phase = SessionPhase.NEGOTIATING
        await self._negotiate()
        if self.state.phase == SessionPhase.TERMINATED or self.state.is_leaving:
            return False

        # 6. Subscriptions
        self.state.phase = SessionPhase.ACTIVE
        self._room_subscription = await self.store.subscribe(
            ROOMS_COLLECTION, self.room_id, self._on_room_snapshot
        )
        self._candidate_subscription = await self.store.subscribe_collection(
            ROOMS_COLLECTION, self.room_id, CANDIDATES_SUBCOLLECTION, self._on_candidate
        )
        if self.state.is_leaving:
            self._unsubscribe()
            return False

        logger.info(f"[Room] {self.self_id} joined room {self.room_id} as {self.user.role.value}")
        return True

    def _still_negotiating(self) -> bool:
        return not self.state.is_leaving and self.peer is not None and not self.peer.closed

    async def _negotiate(self) -> None:
        room, exists = await self.lifecycle.get_room(self.room_id)
        if not exists or room.is_terminated:
            logger.info(f"[Room] Room {self.room_id} ended before negotiation")
            await self._terminate()
            return
        self.room = room

        if not room.has_participant(self.self_id) or self.state.is_leaving:
            return

        if room.offer is None:
            if self.peer.is_pristine:
                await self._become_initiator()
        elif room.answer is None:
            if self.peer.is_pristine and room.offer_by != self.self_id:
                await self._become_responder(room.offer)
        # Offer and answer both exist, or the offer is our own from an
        # earlier session: the room listener handles the rest

    async def _become_initiator(self) -> None:
        self.state.is_initiator = True
        offer = await self.peer.create_offer()
        if not self._still_negotiating() or self.peer.signaling_state != "stable":
            return
        await self.peer.set_local_description(offer)

        elected = await self.lifecycle.publish_offer(
            self.room_id,
            self.self_id,
            self.peer.local_session_description(),
            still_valid=self._still_negotiating,
        )
        if elected:
            await self.peer.emit_local_candidates()
            return

        # Someone else published an offer first: answer theirs instead
        self.state.is_initiator = False
        if not self._still_negotiating():
            return
        logger.info(f"[Room] {self.self_id} lost initiator election in room {self.room_id}")
        await self.peer.reset()
        room, exists = await self.lifecycle.get_room(self.room_id)
        if not exists or room.is_terminated:
            return
        if room.offer is not None and room.answer is None and room.offer_by != self.self_id:
            await self._become_responder(room.offer)

    async def _become_responder(self, offer: SessionDescription, mark_active: bool = True) -> None:
        if not self._still_negotiating():
            return
        self.state.is_initiator = False
        await self.peer.set_remote_description(offer)
        if not await self.peer.wait_for_signaling_state("have-remote-offer"):
            raise SignalingStateError(
                f"Expected have-remote-offer, got {self.peer.signaling_state}"
            )

        answer = await self.peer.create_answer()
        if (
            not self._still_negotiating()
            or self.peer.signaling_state != "have-remote-offer"
            or self.peer.local_description is not None
        ):
            return
        await self.peer.set_local_description(answer)

        written = await self.lifecycle.publish_answer(
            self.room_id,
            self.self_id,
            self.peer.local_session_description(),
            still_valid=self._still_negotiating,
            mark_active=mark_active,
        )
        if written:
            await self.peer.emit_local_candidates()

    # === Listeners ===

    def _on_remote_stream(self, stream: MediaStream) -> None:
        self.remote_stream = stream
        self.state.remote_active = True

    def _expected_counterpart(self, room: Room) -> Optional[str]:
        return room.receiver_id if self.user.is_doctor else room.caller_id

    def _update_presence(self, room: Room) -> None:
        counterpart = self._expected_counterpart(room)
        if counterpart and not room.has_participant(counterpart):
            self.state.waiting_message = (
                WAITING_FOR_PATIENT if self.user.is_doctor else WAITING_FOR_DOCTOR
            )
            self.state.remote_active = False
            self.remote_stream = None
            if self.peer is not None:
                self.peer.clear_remote()
            self.state.phase = SessionPhase.WAITING
        else:
            self.state.waiting_message = ""
            self.state.phase = SessionPhase.ACTIVE

    async def _on_room_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if self.state.is_leaving or self.state.phase == SessionPhase.TERMINATED:
            return

        room = Room.from_document(self.room_id, snapshot.data)
        if not snapshot.exists or room.is_terminated:
            logger.info(f"[Room] Room {self.room_id} was ended or deleted")
            await self._terminate()
            return
        self.room = room

        self._update_presence(room)

        if self.peer is None or self.peer.closed:
            return

        # Negotiation was cleared by a departure: be ready for a fresh offer
        if room.offer is None and room.answer is None and not self.peer.is_pristine:
            logger.info(f"[Room] Negotiation cleared in room {self.room_id}, resetting connection")
            self.state.is_initiator = False
            await self.peer.reset()
            return

        if (
            room.offer is not None
            and room.answer is None
            and room.offer_by != self.self_id
            and not self.state.is_initiator
            and self.peer.is_pristine
        ):
            await self._answer_late_offer(room)

        local = self.peer.local_description
        if (
            room.answer is not None
            and self.state.is_initiator
            and self.peer.remote_description is None
            and local is not None
            and local.type == "offer"
            and self.peer.signaling_state == "have-local-offer"
            and room.offer is not None
            and room.offer.sdp == local.sdp
        ):
            try:
                await self.peer.set_remote_description(room.answer)
                logger.info(f"[Room] Applied answer in room {self.room_id}")
            except Exception as e:
                logger.error(f"[Room] Error applying remote answer: {e}")

    async def _answer_late_offer(self, room: Room) -> None:
        if not room.has_participant(self.self_id):
            return
        try:
            await self._become_responder(room.offer, mark_active=False)
        except Exception as e:
            logger.error(f"[Room] Error handling remote offer: {e}")
            if is_state_mismatch(e) and not self.state.recovered and self._still_negotiating():
                self.state.recovered = True
                await self.peer.reset()

    async def _on_candidate(self, payload: Dict[str, Any]) -> None:
        if payload.get("from") == self.self_id:
            return
        if self.peer is None or self.state.is_leaving:
            return
        try:
            await self.peer.add_remote_candidate(payload)
        except Exception as e:
            # Late or invalid candidates are expected after teardown
            logger.debug(f"[Room] Ignoring candidate in room {self.room_id}: {e}")

    # === Exit paths ===

    def _unsubscribe(self) -> None:
        for subscription in (self._room_subscription, self._candidate_subscription):
            if subscription is not None:
                subscription.unsubscribe()
        self._room_subscription = None
        self._candidate_subscription = None

    async def _release_media(self) -> None:
        if self.peer is not None:
            await self.peer.close()
        if self.screen_track is not None:
            self.screen_track.stop()
            self.screen_track = None
        if self.local_stream is not None:
            self.local_stream.stop()
        self.state.remote_active = False

    async def _terminate(self) -> None:
        """Room is gone for us: tear down and go to the dashboard."""
        if self.state.phase == SessionPhase.TERMINATED:
            return
        self.state.phase = SessionPhase.TERMINATED
        self._unsubscribe()
        await self._release_media()
        self.navigator.redirect(dashboard_path(self.user.role))

    async def leave(self) -> None:
        """Leave the room, keeping it available for a rejoin."""
        self.state.is_leaving = True
        self.state.phase = SessionPhase.LEAVING
        self._unsubscribe()
        await self._release_media()

        try:
            await self.lifecycle.release_seat(self.room_id, self.self_id)
        except Exception as e:
            logger.error(f"[Room] Error updating room {self.room_id} on leave: {e}")

        self.state.phase = SessionPhase.TERMINATED
        self.navigator.redirect(appointments_path(self.user.role))

    async def revoke(self):
        """
        End the room for everyone (doctor only).

        Returns:
            The pending deletion task, or None if nothing was revoked.
        """
        if not self.user.is_doctor:
            raise RoomUnauthorizedError("Only doctors can revoke a room")
        if self.state.is_revoking:
            return None
        self.state.is_revoking = True
        self.state.is_leaving = True
        self._unsubscribe()

        deletion = None
        try:
            deletion = await self.lifecycle.revoke(self.room_id, self.self_id)
        except Exception as e:
            logger.error(f"[Room] Error revoking room {self.room_id}: {e}")
        finally:
            await self._release_media()
            self.state.phase = SessionPhase.TERMINATED
            self.navigator.redirect(dashboard_path(self.user.role))
        return deletion

    async def close(self) -> None:
        """Unmount: stop listening and release media without touching the room."""
        self.state.is_leaving = True
        self._unsubscribe()
        await self._release_media()
