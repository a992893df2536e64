"""
Protocol definitions for the room subsystem's external collaborators.

This module defines interfaces (Python Protocols) that allow:
- Swapping the document store (Redis today, any real-time store tomorrow)
- Testing without real devices, mail servers or browsers
- Clear contracts between the coordinator and its collaborators

Usage:
    from smartcare.services.protocols import DocumentStoreProtocol

    async def read_room(store: DocumentStoreProtocol, room_id: str):
        snapshot = await store.get("calls", room_id)
        return snapshot.data if snapshot.exists else None
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from smartcare.services.store.document_store import DocumentSnapshot, Subscription


class DocumentStoreProtocol(Protocol):
    """
    Interface for the real-time document store.

    Implementations must offer point reads/writes, atomic field deletion,
    server timestamps, optimistic check-and-set and change subscriptions.
    """

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        ...

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        ...

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        ...

    async def transact(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[DocumentSnapshot], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    async def append(self, collection: str, doc_id: str, sub: str, data: Dict[str, Any]) -> str:
        ...

    async def find(
        self,
        collection: str,
        predicate: Callable[[Dict[str, Any]], bool],
    ) -> List[DocumentSnapshot]:
        ...

    async def subscribe(
        self,
        collection: str,
        doc_id: str,
        handler: Callable[[DocumentSnapshot], Awaitable[None]],
    ) -> Subscription:
        ...

    async def subscribe_collection(
        self,
        collection: str,
        doc_id: str,
        sub: str,
        handler: Callable[[Dict[str, Any]], Awaitable[None]],
    ) -> Subscription:
        ...


class NotificationDispatcherProtocol(Protocol):
    """
    Fire-and-forget notification channels, each independently failable.
    """

    async def notify(self, user_id: str, notification: Dict[str, Any]) -> None:
        """
        Deliver an in-app notification.

        Args:
            user_id: Recipient
            notification: title, message, type, actionLink, actionText,
                          imageUrl, metadata
        """
        ...

    async def push_notify(self, title: str, options: Dict[str, Any]) -> None:
        """
        Deliver a push notification.

        Args:
            title: Notification title
            options: body, tag, icon, badge, data
        """
        ...

    async def email_notify(
        self,
        address: str,
        subject: str,
        body: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Deliver an email."""
        ...


class NavigatorProtocol(Protocol):
    """Where a room session sends the user when it is done with them."""

    def redirect(self, url: str) -> None:
        ...
