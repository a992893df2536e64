import asyncio
import itertools
from typing import Any, Dict, List, Optional

from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
from pyee.asyncio import AsyncIOEventEmitter

from smartcare.config.constants import ROOMS_COLLECTION
from smartcare.models.user import UserContext, UserRole
from smartcare.services.media import MediaCapture
from smartcare.services.room import CallbackNavigator, RoomSessionCoordinator

_session_ids = itertools.count(1000)

DOCTOR = UserContext(uid="doc-1", role=UserRole.DOCTOR, display_name="Dr. House", email="house@example.com")
PATIENT = UserContext(uid="p1", role=UserRole.PATIENT, display_name="Pat One")
OTHER_PATIENT = UserContext(uid="p2", role=UserRole.PATIENT, display_name="Pat Two")


def make_sdp(kind: str) -> str:
    """A media-less description, unique per call."""
    session_id = next(_session_ids)
    return (
        "v=0\r\n"
        f"o=- {session_id} {session_id} IN IP4 0.0.0.0\r\n"
        f"s={kind}\r\n"
        "t=0 0\r\n"
    )


MEDIA_SDP = (
    "v=0\r\n"
    "o=- 1 1 IN IP4 0.0.0.0\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=sendrecv\r\n"
    "a=mid:0\r\n"
    "a=rtpmap:111 opus/48000/2\r\n"
    "a=candidate:1 1 udp 2130706431 192.168.1.10 50000 typ host\r\n"
    "a=candidate:2 1 udp 1694498815 203.0.113.7 50001 typ srflx raddr 192.168.1.10 rport 50000\r\n"
    "a=ice-ufrag:abcd\r\n"
    "a=ice-pwd:abcdefghijklmnopqrstuv\r\n"
)


class FakeSender:
    def __init__(self, track):
        self.track = track
        self.replaced: List[Any] = []

    def replaceTrack(self, track):
        self.replaced.append(track)
        self.track = track


class FakePeerConnection(AsyncIOEventEmitter):
    """
    Signaling-only stand-in for aiortc's RTCPeerConnection.

    Enforces the offer/answer state machine and emits ``track`` when a
    remote description is applied, without touching the network.
    """

    def __init__(self, configuration=None, local_sdp: Optional[str] = None):
        super().__init__()
        self.configuration = configuration
        self.signalingState = "stable"
        self.connectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.senders: List[FakeSender] = []
        self.transceivers: List[tuple] = []
        self.candidates: List[Any] = []
        self.local_sdp = local_sdp
        self.closed = False

    def _set_state(self, state: str) -> None:
        if state != self.signalingState:
            self.signalingState = state
            self.emit("signalingstatechange")

    def _require(self, *states: str) -> None:
        if self.closed or self.signalingState not in states:
            raise InvalidStateError(f"Operation not allowed in signaling state {self.signalingState}")

    def addTrack(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def addTransceiver(self, kind, direction="sendrecv"):
        self.transceivers.append((kind, direction))

    def getSenders(self):
        return list(self.senders)

    async def createOffer(self):
        self._require("stable")
        return RTCSessionDescription(sdp=self.local_sdp or make_sdp("offer"), type="offer")

    async def createAnswer(self):
        self._require("have-remote-offer")
        return RTCSessionDescription(sdp=self.local_sdp or make_sdp("answer"), type="answer")

    async def setLocalDescription(self, description):
        if description.type == "offer":
            self._require("stable")
            self.localDescription = description
            self._set_state("have-local-offer")
        else:
            self._require("have-remote-offer")
            self.localDescription = description
            self._set_state("stable")

    async def setRemoteDescription(self, description):
        if description.type == "offer":
            self._require("stable")
            self.remoteDescription = description
            self._set_state("have-remote-offer")
        else:
            self._require("have-local-offer")
            self.remoteDescription = description
            self._set_state("stable")
        self.emit("track", AudioStreamTrack())

    async def addIceCandidate(self, candidate):
        if self.closed:
            raise InvalidStateError("Connection is closed")
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        self._set_state("closed")


class PeerFactory:
    """pc_factory that remembers every connection it built."""

    def __init__(self, local_sdp: Optional[str] = None):
        self.created: List[FakePeerConnection] = []
        self.local_sdp = local_sdp

    def __call__(self, configuration):
        pc = FakePeerConnection(configuration, local_sdp=self.local_sdp)
        self.created.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.created[-1]


class DeviceOpener:
    """open_device stand-in: aiortc test tracks, or the configured errors."""

    def __init__(self, video_error: Optional[BaseException] = None, audio_error: Optional[BaseException] = None):
        self.video_error = video_error
        self.audio_error = audio_error
        self.calls: List[str] = []
        self.opened: List[Any] = []

    def __call__(self, kind, device, format, options):
        self.calls.append(kind)
        error = self.video_error if kind == "video" else self.audio_error
        if error is not None:
            raise error
        track = VideoStreamTrack() if kind == "video" else AudioStreamTrack()
        self.opened.append(track)
        return track


async def eventually(predicate, timeout: float = 3.0, interval: float = 0.02):
    """Poll ``predicate`` until it is truthy or fail after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(interval)


async def create_room(store, room_id: str = "r1", **fields: Any) -> Dict[str, Any]:
    data = {
        "type": "video",
        "status": "pending",
        "callerId": DOCTOR.uid,
        "receiverId": None,
        "participants": [DOCTOR.uid],
        "roomName": "Follow-up",
        "doctorName": DOCTOR.display_name,
        "appointmentId": None,
    }
    data.update(fields)
    await store.set(ROOMS_COLLECTION, room_id, data)
    return data


async def room_data(store, room_id: str = "r1") -> Optional[Dict[str, Any]]:
    return (await store.get(ROOMS_COLLECTION, room_id)).data


def make_session(store, user: UserContext, room_id: str = "r1", factory: Optional[PeerFactory] = None,
                 opener: Optional[DeviceOpener] = None) -> RoomSessionCoordinator:
    return RoomSessionCoordinator(
        room_id=room_id,
        user=user,
        store=store,
        navigator=CallbackNavigator(),
        media=MediaCapture(open_device=opener or DeviceOpener()),
        pc_factory=factory or PeerFactory(),
    )
