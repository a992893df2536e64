"""
Notifications Module

In-app, push and email delivery for room invitations.
"""
from .dispatcher import NotificationDispatcher

__all__ = ["NotificationDispatcher"]
