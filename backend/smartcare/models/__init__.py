"""Domain models for rooms, appointments and users."""
from smartcare.models.room import Room, RoomStatus, SessionDescription, IceCandidateRecord
from smartcare.models.appointment import Appointment
from smartcare.models.user import UserContext, UserRole

__all__ = [
    "Room",
    "RoomStatus",
    "SessionDescription",
    "IceCandidateRecord",
    "Appointment",
    "UserContext",
    "UserRole",
]
