"""
Room Service Module

Video room lifecycle: join, negotiation, presence, leave, revoke and
invitations, coordinated through the document store.

Components:
- RoomSessionCoordinator: one participant's session in one room
- RoomLifecycleManager: conditional writes to the room document
- InvitationService: doctor → patient invitations
- RoomService: room creation and appointment lookups
- CallControls: mute, camera, screen-share, pin, fullscreen
"""
from .exceptions import (
    RoomServiceError,
    RoomNotFoundError,
    RoomTerminatedError,
    RoomUnauthorizedError,
    SignalingStateError,
    InvitationError,
)
from .lifecycle import RoomLifecycleManager
from .coordinator import RoomSessionCoordinator, RoomSessionState, SessionPhase
from .invitation import InvitationService, is_starting_soon, list_upcoming
from .rooms import RoomService, is_eligible_for_video_call
from .controls import CallControls
from .navigation import CallbackNavigator, appointments_path, dashboard_path

__all__ = [
    "RoomServiceError",
    "RoomNotFoundError",
    "RoomTerminatedError",
    "RoomUnauthorizedError",
    "SignalingStateError",
    "InvitationError",
    "RoomLifecycleManager",
    "RoomSessionCoordinator",
    "RoomSessionState",
    "SessionPhase",
    "InvitationService",
    "is_starting_soon",
    "list_upcoming",
    "RoomService",
    "is_eligible_for_video_call",
    "CallControls",
    "CallbackNavigator",
    "appointments_path",
    "dashboard_path",
]
