from typing import Optional
from fastapi import Depends, Header, HTTPException
import logging

from smartcare.models.user import UserContext, UserRole
from smartcare.services.notifications import NotificationDispatcher
from smartcare.services.store import RedisDocumentStore

logger = logging.getLogger(__name__)

_store: Optional[RedisDocumentStore] = None
_dispatcher: Optional[NotificationDispatcher] = None


def get_store() -> RedisDocumentStore:
    """
    Dependency for the shared document store.
    """
    global _store
    if _store is None:
        _store = RedisDocumentStore()
    return _store


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(get_store())
    return _dispatcher


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> UserContext:
    """
    Identify the caller from the headers set by the authenticating proxy.
    """
    if not x_user_id:
        logger.warning("[Auth] Request without user id")
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        role = UserRole(x_user_role or UserRole.PATIENT.value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_user_role}")
    return UserContext(uid=x_user_id, role=role, display_name=x_user_name, email=x_user_email)


async def get_current_doctor(user: UserContext = Depends(get_current_user)) -> UserContext:
    if not user.is_doctor:
        raise HTTPException(status_code=403, detail="Only doctors can manage rooms")
    return user
