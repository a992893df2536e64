"""
Notification Dispatcher - in-app, push and email delivery.

- In-app: a document in the ``notifications`` collection
- Push: a JSON payload published on the push channel for the push worker
- Email: POST to the configured email endpoint (logged only when unset)

Each channel fails on its own; callers decide what a failure means.
"""
import json
import logging
from typing import Any, Dict, Optional

import httpx
import redis.asyncio as redis

from smartcare.config.constants import NOTIFICATIONS_COLLECTION, PUSH_CHANNEL
from smartcare.config.redis import get_redis
from smartcare.config.settings import settings
from smartcare.services.store.document_store import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Delivers notifications through the document store, Redis and HTTP."""

    def __init__(
        self,
        store,
        client: Optional[redis.Redis] = None,
        http: Optional[httpx.AsyncClient] = None,
        email_api_url: Optional[str] = None,
    ):
        self.store = store
        self._redis = client
        self._http = http
        self.email_api_url = email_api_url if email_api_url is not None else settings.EMAIL_API_URL

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    async def notify(self, user_id: str, notification: Dict[str, Any]) -> str:
        """
        Write an in-app notification for ``user_id``.

        Returns:
            The notification document id
        """
        notification_id = await self.store.add(NOTIFICATIONS_COLLECTION, {
            **notification,
            "userId": user_id,
            "read": False,
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info(f"[Notify] In-app notification {notification_id} for {user_id}")
        return notification_id

    async def push_notify(self, title: str, options: Dict[str, Any]) -> None:
        r = await self._client()
        payload = {"title": title, **options}
        receivers = await r.publish(PUSH_CHANNEL, json.dumps(payload))
        logger.info(f"[Notify] Push '{title}' published to {receivers} subscriber(s)")

    async def email_notify(
        self,
        address: str,
        subject: str,
        body: str,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Send an email.

        Raises:
            httpx.TimeoutException if the endpoint does not answer in time
            httpx.HTTPStatusError on a non-2xx response
        """
        if not self.email_api_url:
            logger.info(f"[Notify] Email endpoint not configured, skipping '{subject}' to {address}")
            return

        payload = {
            "to": address,
            "from": settings.FROM_EMAIL,
            "subject": subject,
            "text": body,
            "userId": user_id,
        }
        if self._http is not None:
            response = await self._http.post(self.email_api_url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=settings.EMAIL_TIMEOUT_SEC) as http:
                response = await http.post(self.email_api_url, json=payload)
        response.raise_for_status()
        logger.info(f"[Notify] Email '{subject}' sent to {address}")
