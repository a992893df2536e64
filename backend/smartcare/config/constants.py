"""
Application-wide constants for the video room subsystem.

Environment-dependent settings (Redis, devices, email endpoint) belong in
settings.py. This file holds operational parameters that rarely change
between environments.
"""

# ==============================================================================
# DOCUMENT STORE
# ==============================================================================

# Collection holding one document per call room
ROOMS_COLLECTION: str = "calls"

# Sub-collection of a room holding one document per ICE candidate
CANDIDATES_SUBCOLLECTION: str = "candidates"

# Collection holding in-app notifications
NOTIFICATIONS_COLLECTION: str = "notifications"

# Collection holding user profiles (display name, email, photo)
USERS_COLLECTION: str = "users"

# Optimistic transaction retries before giving up on a contended document
STORE_TRANSACTION_RETRIES: int = 5

# ==============================================================================
# ROOM STATUS
# ==============================================================================

STATUS_PENDING: str = "pending"
STATUS_ACTIVE: str = "active"
STATUS_ENDED: str = "ended"
STATUS_CANCELLED: str = "cancelled"
STATUS_CLOSED: str = "closed"

# Statuses that end a room for everyone
TERMINAL_STATUSES: frozenset = frozenset({STATUS_ENDED, STATUS_CANCELLED, STATUS_CLOSED})

# Statuses a participant may join
JOINABLE_STATUSES: frozenset = frozenset({STATUS_PENDING, STATUS_ACTIVE})

# ==============================================================================
# TIMING
# ==============================================================================

# Grace delay between marking a room revoked and deleting it (seconds)
REVOKE_DELETE_DELAY_SEC: float = 0.5

# Upper bound when waiting for a signaling state transition (seconds)
SIGNALING_WAIT_TIMEOUT_SEC: float = 5.0

# Appointments starting within this window are flagged "starting soon"
STARTING_SOON_WINDOW_MIN: int = 20

# ==============================================================================
# NAVIGATION
# ==============================================================================

DOCTOR_DASHBOARD_PATH: str = "/doctor/dashboard"
PATIENT_DASHBOARD_PATH: str = "/dashboard"
DOCTOR_APPOINTMENTS_PATH: str = "/doctor/appointments"
PATIENT_APPOINTMENTS_PATH: str = "/dashboard/appointments"
ROOM_PATH_TEMPLATE: str = "/calls/room/{room_id}"

# ==============================================================================
# MEDIA CONSTRAINTS
# ==============================================================================

VIDEO_IDEAL_WIDTH: int = 1280
VIDEO_IDEAL_HEIGHT: int = 720
VIDEO_ASPECT_RATIO: float = 16 / 9
VIDEO_FACING_MODE: str = "user"
VIDEO_IDEAL_FRAMERATE: int = 30
VIDEO_MAX_FRAMERATE: int = 60

AUDIO_ECHO_CANCELLATION: bool = True
AUDIO_NOISE_SUPPRESSION: bool = True
AUDIO_AUTO_GAIN_CONTROL: bool = True

# ==============================================================================
# NOTIFICATIONS
# ==============================================================================

INVITE_NOTIFICATION_TITLE: str = "Video Room Invitation"
INVITE_NOTIFICATION_TYPE: str = "call_invite"
INVITE_PUSH_TAG: str = "call-invite"
INVITE_ACTION_TEXT: str = "Join Room"
NOTIFICATION_ICON: str = "/SmartCare.png"

# Redis channel carrying push notification payloads
PUSH_CHANNEL: str = "channel:push"
