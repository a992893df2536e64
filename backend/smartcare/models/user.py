"""
User context for a room session.

Authentication lives upstream; the room subsystem only needs the caller's
id, role and a few display fields used in notifications.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    DOCTOR = "doctor"
    PATIENT = "patient"


@dataclass
class UserContext:
    uid: str
    role: UserRole
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None

    @property
    def is_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role == UserRole.PATIENT
