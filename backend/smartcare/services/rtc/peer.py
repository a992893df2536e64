"""
Peer Connection Manager - one aiortc RTCPeerConnection per room session.

Responsibilities:
- Attach local tracks; add receive-only transceivers for missing kinds
- Surface the remote party's media as one MediaStream
- Publish local ICE candidates to the room's candidate sub-collection
- Apply remote ICE candidates
- Expose the video sender for camera/screen hot-swap
- Await signaling state transitions instead of sleeping
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpSender,
    RTCSessionDescription,
)
from aiortc.sdp import SessionDescription as ParsedSdp
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from smartcare.config.constants import (
    CANDIDATES_SUBCOLLECTION,
    ROOMS_COLLECTION,
    SIGNALING_WAIT_TIMEOUT_SEC,
)
from smartcare.config.settings import settings
from smartcare.models.room import IceCandidateRecord, SessionDescription
from smartcare.services.media.tracks import MediaStream

logger = logging.getLogger(__name__)

CANDIDATE_PREFIX = "candidate:"

PeerConnectionFactory = Callable[[RTCConfiguration], RTCPeerConnection]


def default_ice_configuration() -> RTCConfiguration:
    return RTCConfiguration(
        iceServers=[RTCIceServer(urls=[url]) for url in settings.STUN_SERVERS]
    )


def parse_candidate(record: IceCandidateRecord):
    """Build an aiortc candidate from a stored candidate record."""
    line = record.candidate
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = record.sdp_mid
    candidate.sdpMLineIndex = record.sdp_mline_index
    return candidate


def candidates_from_sdp(sdp: str, sender: str) -> List[IceCandidateRecord]:
    """Extract the ICE candidates gathered into a local description."""
    parsed = ParsedSdp.parse(sdp)
    records = []
    for index, media in enumerate(parsed.media):
        mid = media.rtp.muxId if media.rtp is not None else None
        for candidate in media.ice_candidates:
            records.append(IceCandidateRecord(
                candidate=CANDIDATE_PREFIX + candidate_to_sdp(candidate),
                sdp_mid=mid,
                sdp_mline_index=index,
                sender=sender,
            ))
    return records


class PeerConnectionManager:
    """Owns the peer connection of one participant in one room."""

    def __init__(
        self,
        room_id: str,
        self_id: str,
        store,
        local_stream: MediaStream,
        on_remote_stream: Optional[Callable[[MediaStream], None]] = None,
        pc_factory: Optional[PeerConnectionFactory] = None,
        configuration: Optional[RTCConfiguration] = None,
    ):
        self.room_id = room_id
        self.self_id = self_id or "anon"
        self.store = store
        self.local_stream = local_stream
        self.on_remote_stream = on_remote_stream
        self.pc_factory = pc_factory or (lambda config: RTCPeerConnection(configuration=config))
        self.configuration = configuration or default_ice_configuration()

        self.pc: Optional[RTCPeerConnection] = None
        self.remote_stream: Optional[MediaStream] = None
        self.remote_active = False
        self.closed = False
        self._emitted: Set[str] = set()

    # === Construction ===

    def create(self) -> RTCPeerConnection:
        """Build the connection and wire local media and event handlers."""
        pc = self.pc_factory(self.configuration)
        self.pc = pc
        self.closed = False
        self.remote_stream = None
        self.remote_active = False
        self._emitted = set()

        for track in self.local_stream.get_tracks():
            pc.addTrack(track)

        # Receive-only for any kind we cannot send, so remote media still flows
        if not self.local_stream.has_audio:
            pc.addTransceiver("audio", direction="recvonly")
        if not self.local_stream.has_video:
            pc.addTransceiver("video", direction="recvonly")

        @pc.on("track")
        def on_track(track: MediaStreamTrack):
            self._handle_remote_track(track)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.debug(f"[Peer] {self.room_id}/{self.self_id} connectionState -> {pc.connectionState}")

        logger.info(
            f"[Peer] Created connection for {self.self_id} in room {self.room_id} "
            f"({len(self.local_stream.get_tracks())} local tracks)"
        )
        return pc

    def _handle_remote_track(self, track: MediaStreamTrack) -> None:
        first = self.remote_stream is None
        if first:
            self.remote_stream = MediaStream()
        self.remote_stream.add_track(track)
        self.remote_active = True
        logger.info(f"[Peer] Remote {track.kind} track arrived in room {self.room_id}")
        if first and self.on_remote_stream:
            self.on_remote_stream(self.remote_stream)

    def clear_remote(self) -> None:
        """Forget the rendered remote media (counterpart left)."""
        self.remote_active = False
        self.remote_stream = None

    # === Signaling state ===

    @property
    def signaling_state(self) -> str:
        if self.pc is None:
            return "closed"
        return self.pc.signalingState

    @property
    def local_description(self) -> Optional[RTCSessionDescription]:
        return self.pc.localDescription if self.pc is not None else None

    @property
    def remote_description(self) -> Optional[RTCSessionDescription]:
        return self.pc.remoteDescription if self.pc is not None else None

    @property
    def is_pristine(self) -> bool:
        """Stable and never negotiated."""
        return (
            self.signaling_state == "stable"
            and self.local_description is None
            and self.remote_description is None
        )

    async def wait_for_signaling_state(
        self,
        state: str,
        timeout: float = SIGNALING_WAIT_TIMEOUT_SEC,
    ) -> bool:
        """
        Wait until the connection reaches ``state``.

        Returns:
            True once in ``state``, False on timeout or if the connection
            was replaced or closed meanwhile.
        """
        pc = self.pc
        if pc is None:
            return False
        if pc.signalingState == state:
            return True

        reached = asyncio.get_running_loop().create_future()

        def _on_change():
            if pc.signalingState == state and not reached.done():
                reached.set_result(True)

        pc.on("signalingstatechange", _on_change)
        try:
            await asyncio.wait_for(reached, timeout)
            return self.pc is pc
        except asyncio.TimeoutError:
            logger.warning(f"[Peer] Timed out waiting for signaling state {state} (now {pc.signalingState})")
            return False
        finally:
            pc.remove_listener("signalingstatechange", _on_change)

    # === Negotiation ===

    async def create_offer(self) -> RTCSessionDescription:
        return await self.pc.createOffer()

    async def create_answer(self) -> RTCSessionDescription:
        return await self.pc.createAnswer()

    async def set_local_description(self, description: RTCSessionDescription) -> None:
        await self.pc.setLocalDescription(description)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    def local_session_description(self) -> Optional[SessionDescription]:
        """The applied local description, candidates included."""
        local = self.local_description
        if local is None:
            return None
        return SessionDescription(type=local.type, sdp=local.sdp)

    # === ICE ===

    async def emit_local_candidates(self) -> int:
        """
        Append the candidates gathered into the local description to the
        room's candidate sub-collection, skipping ones already sent.

        Returns:
            Number of candidates appended.
        """
        local = self.local_description
        if local is None:
            return 0
        sent = 0
        for record in candidates_from_sdp(local.sdp, self.self_id):
            if record.candidate in self._emitted:
                continue
            self._emitted.add(record.candidate)
            await self.store.append(
                ROOMS_COLLECTION, self.room_id, CANDIDATES_SUBCOLLECTION, record.to_dict()
            )
            sent += 1
        return sent

    async def add_remote_candidate(self, payload: Dict[str, Any]) -> None:
        """
        Apply a candidate from the sub-collection.

        Raises whatever aiortc raises for invalid or late candidates; the
        caller decides whether that matters.
        """
        if self.pc is None or self.closed:
            return
        record = IceCandidateRecord.from_dict(payload)
        if not record.candidate:
            return
        await self.pc.addIceCandidate(parse_candidate(record))

    # === Senders ===

    def get_senders(self) -> List[RTCRtpSender]:
        return self.pc.getSenders() if self.pc is not None else []

    def video_sender(self) -> Optional[RTCRtpSender]:
        for sender in self.get_senders():
            if sender.track is not None and sender.track.kind == "video":
                return sender
        return None

    # === Teardown ===

    async def close(self) -> None:
        """Close the connection. Local tracks are owned by the session."""
        self.closed = True
        pc, self.pc = self.pc, None
        if pc is None:
            return
        try:
            await pc.close()
        except Exception as e:
            logger.debug(f"[Peer] Error closing connection in room {self.room_id}: {e}")

    async def reset(self) -> RTCPeerConnection:
        """Close and rebuild from scratch with the same local stream."""
        logger.warning(f"[Peer] Resetting connection for {self.self_id} in room {self.room_id}")
        await self.close()
        return self.create()
