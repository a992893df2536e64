"""
Navigation surface - role-specific redirect targets.
"""
import logging
from typing import Callable, List

from smartcare.config.constants import (
    DOCTOR_APPOINTMENTS_PATH,
    DOCTOR_DASHBOARD_PATH,
    PATIENT_APPOINTMENTS_PATH,
    PATIENT_DASHBOARD_PATH,
)
from smartcare.models.user import UserRole

logger = logging.getLogger(__name__)


def dashboard_path(role: UserRole) -> str:
    """Where terminal conditions send the user."""
    return DOCTOR_DASHBOARD_PATH if role == UserRole.DOCTOR else PATIENT_DASHBOARD_PATH


def appointments_path(role: UserRole) -> str:
    """Where an explicit leave sends the user."""
    return DOCTOR_APPOINTMENTS_PATH if role == UserRole.DOCTOR else PATIENT_APPOINTMENTS_PATH


class CallbackNavigator:
    """Navigator that hands the target to a callback and remembers it."""

    def __init__(self, callback: Callable[[str], None] = None):
        self.callback = callback
        self.history: List[str] = []

    def redirect(self, url: str) -> None:
        logger.info(f"[Room] Redirecting to {url}")
        self.history.append(url)
        if self.callback:
            self.callback(url)

    @property
    def last(self):
        return self.history[-1] if self.history else None
