"""Business Logic Services.

This package contains the service modules behind the video room.

Service Categories:
- Store: Redis-backed real-time document store
- Media: Local capture with staged fallback, toggleable tracks
- RTC: Peer connection management (aiortc)
- Room: Session coordination, lifecycle writes, invitations, controls
- Notifications: In-app, push and email delivery
"""
