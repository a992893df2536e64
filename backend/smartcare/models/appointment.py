"""
Appointment model (read-only input to the invitation flow).

Appointments are managed by the scheduling pages; here we only parse the
date/time strings they carry and answer a few eligibility questions.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

_TWELVE_HOUR = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(AM|PM)$", re.IGNORECASE)
_TWENTY_FOUR_HOUR = re.compile(r"^\d{1,2}:\d{2}$")

_FOLLOW_UP_MARKERS = ("follow", "virtual", "video", "tele")


def parse_appointment_time(time_string: Optional[str]) -> Optional[str]:
    """
    Normalise "8:00 PM", "8 pm" or "20:00" to "HH:MM".

    Returns "00:00" for unrecognised input, None for empty input.
    """
    if not time_string:
        return None
    trimmed = str(time_string).strip()
    match = _TWELVE_HOUR.match(trimmed)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or "0")
        meridiem = match.group(3).upper()
        if meridiem == "PM" and hour != 12:
            hour += 12
        if meridiem == "AM" and hour == 12:
            hour = 0
        return f"{hour:02d}:{minute:02d}"
    if _TWENTY_FOUR_HOUR.match(trimmed):
        hour, minute = trimmed.split(":")
        return f"{int(hour):02d}:{minute}"
    return "00:00"


@dataclass
class Appointment:
    id: Optional[str]
    doctor_id: Optional[str]
    patient_id: str
    date: Optional[str] = None
    time: Optional[str] = None
    patient_name: Optional[str] = None
    mode: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Appointment":
        return cls(
            id=data.get("id"),
            doctor_id=data.get("doctorId"),
            patient_id=data["patientId"],
            date=data.get("date"),
            time=data.get("time"),
            patient_name=data.get("patientName"),
            mode=data.get("mode"),
            status=data.get("status"),
            type=data.get("type"),
        )

    def scheduled_at(self) -> Optional[datetime]:
        """Local datetime of the appointment, or None if it cannot be parsed."""
        hhmm = parse_appointment_time(self.time)
        if not self.date or hhmm is None:
            return None
        try:
            return datetime.strptime(f"{self.date} {hhmm}", "%Y-%m-%d %H:%M")
        except ValueError:
            return None

    def is_same_day(self, now: datetime) -> bool:
        if not self.date:
            return False
        try:
            day = datetime.strptime(self.date[:10], "%Y-%m-%d").date()
        except ValueError:
            return False
        return day == now.date()

    def minutes_until(self, now: datetime) -> Optional[int]:
        start = self.scheduled_at()
        if start is None:
            return None
        return round((start - now).total_seconds() / 60)

    @property
    def is_online(self) -> bool:
        return self.mode == "online"

    @property
    def is_follow_up(self) -> bool:
        kind = (self.type or "").lower()
        return any(marker in kind for marker in _FOLLOW_UP_MARKERS)
