"""
Room Service Exceptions

Custom exceptions for video room errors.
"""


class RoomServiceError(Exception):
    """Base exception for room service errors"""
    pass


class RoomNotFoundError(RoomServiceError):
    """Raised when the room document does not exist"""
    pass


class RoomTerminatedError(RoomServiceError):
    """Raised when the room is ended, cancelled, closed or revoked"""
    pass


class RoomUnauthorizedError(RoomServiceError):
    """Raised when the user may not join or manage this room"""
    pass


class SignalingStateError(RoomServiceError):
    """Raised when the peer connection is not in the signaling state a step needs"""
    pass


class InvitationError(RoomServiceError):
    """Raised when an invitation cannot be issued"""
    pass
