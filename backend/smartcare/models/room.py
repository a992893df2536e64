"""
Room document model.

A room is one document in the ``calls`` collection. The field names are
the wire contract between peers, so ``to_fields``/``from_document`` keep
the camelCase names used in the store.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from smartcare.config.constants import JOINABLE_STATUSES, TERMINAL_STATUSES


class RoomStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"
    CLOSED = "closed"


@dataclass
class SessionDescription:
    """An offer or answer blob as stored on the room document."""
    type: str
    sdp: str

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SessionDescription"]:
        if not data or not data.get("sdp"):
            return None
        return cls(type=data.get("type", ""), sdp=data["sdp"])

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}


@dataclass
class IceCandidateRecord:
    """One document of a room's candidate sub-collection."""
    candidate: str
    sdp_mid: Optional[str]
    sdp_mline_index: Optional[int]
    sender: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IceCandidateRecord":
        return cls(
            candidate=data.get("candidate") or "",
            sdp_mid=data.get("sdpMid"),
            sdp_mline_index=data.get("sdpMLineIndex"),
            sender=data.get("from") or "anon",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
            "from": self.sender,
        }


@dataclass
class Room:
    id: str
    status: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    caller_id: Optional[str] = None
    receiver_id: Optional[str] = None
    appointment_id: Optional[str] = None
    offer: Optional[SessionDescription] = None
    offer_by: Optional[str] = None
    answer: Optional[SessionDescription] = None
    revoked_by: Optional[Any] = None
    ended_at: Optional[Any] = None
    room_name: Optional[str] = None
    doctor_name: Optional[str] = None
    scheduled_at: Optional[str] = None
    created_at: Optional[Any] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Optional[Dict[str, Any]]) -> "Room":
        data = data or {}
        participants = data.get("participants")
        return cls(
            id=doc_id,
            status=data.get("status"),
            participants=list(participants) if isinstance(participants, list) else [],
            caller_id=data.get("callerId"),
            receiver_id=data.get("receiverId"),
            appointment_id=data.get("appointmentId"),
            offer=SessionDescription.from_dict(data.get("offer")),
            offer_by=data.get("offerBy"),
            answer=SessionDescription.from_dict(data.get("answer")),
            revoked_by=data.get("revokedBy"),
            ended_at=data.get("endedAt"),
            room_name=data.get("roomName"),
            doctor_name=data.get("doctorName"),
            scheduled_at=data.get("scheduledAt"),
            created_at=data.get("createdAt"),
        )

    @property
    def is_terminated(self) -> bool:
        """Ended, cancelled, closed, or revoked by a participant."""
        return self.status in TERMINAL_STATUSES or bool(self.revoked_by)

    @property
    def is_joinable(self) -> bool:
        return self.status in JOINABLE_STATUSES and not self.is_terminated

    def has_participant(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and user_id in self.participants
