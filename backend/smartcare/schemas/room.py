from typing import Any, List, Optional
from pydantic import BaseModel

from smartcare.models.appointment import Appointment
from smartcare.models.room import Room


class CreateRoomRequest(BaseModel):
    room_name: str
    patient_id: Optional[str] = None
    scheduled_at: Optional[str] = None
    appointment_id: Optional[str] = None


class CreateRoomResponse(BaseModel):
    room_id: str
    status: str
    room_path: str


class RoomResponse(BaseModel):
    room_id: str
    status: Optional[str]
    participants: List[str]
    caller_id: Optional[str]
    receiver_id: Optional[str]
    appointment_id: Optional[str]
    room_name: Optional[str]
    doctor_name: Optional[str]
    scheduled_at: Optional[str]
    revoked_by: Optional[Any]
    has_offer: bool
    has_answer: bool

    @classmethod
    def from_room(cls, room: Room) -> "RoomResponse":
        return cls(
            room_id=room.id,
            status=room.status,
            participants=room.participants,
            caller_id=room.caller_id,
            receiver_id=room.receiver_id,
            appointment_id=room.appointment_id,
            room_name=room.room_name,
            doctor_name=room.doctor_name,
            scheduled_at=room.scheduled_at,
            revoked_by=room.revoked_by,
            has_offer=room.offer is not None,
            has_answer=room.answer is not None,
        )


class InviteRequest(BaseModel):
    appointment_id: Optional[str] = None
    patient_id: str
    patient_name: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    mode: Optional[str] = "online"
    status: Optional[str] = None
    type: Optional[str] = None

    def to_appointment(self, doctor_id: str) -> Appointment:
        return Appointment(
            id=self.appointment_id,
            doctor_id=doctor_id,
            patient_id=self.patient_id,
            date=self.date,
            time=self.time,
            patient_name=self.patient_name,
            mode=self.mode,
            status=self.status,
            type=self.type,
        )


class InviteResponse(BaseModel):
    room_id: str
    patient_id: str
    invited: bool
    message: str


class RevokeResponse(BaseModel):
    room_id: str
    status: str
    revoked_by: str


class RoomLookupResponse(BaseModel):
    appointment_id: str
    room_id: Optional[str]
