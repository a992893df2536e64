"""
Redis Document Store - real-time documents with change notification.

Documents live in Redis hashes (one JSON-encoded value per field) so that a
single field can be deleted atomically. Every write bumps a ``_version``
field and publishes it on the document's change channel; subscribers
re-read the document on each notification. Sub-collections (ICE candidates)
are append-only Redis streams next to their parent document.

Key layout:
    doc:{collection}:{doc_id}            hash, the document
    doc:{collection}:{doc_id}:{sub}      stream, a sub-collection
    changes:{collection}:{doc_id}        pub/sub, document changes
    changes:{collection}:{doc_id}:{sub}  pub/sub, sub-collection appends
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from smartcare.config.constants import STORE_TRANSACTION_RETRIES
from smartcare.config.redis import get_redis

logger = logging.getLogger(__name__)

VERSION_FIELD = "_version"


class _Sentinel:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Field value that removes the field from the document
DELETE_FIELD = _Sentinel("DELETE_FIELD")

# Field value replaced by the store's clock at write time
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")


class DocumentStoreError(Exception):
    """Base exception for document store errors"""
    pass


class DocumentNotFoundError(DocumentStoreError):
    """Raised when updating a document that does not exist"""
    pass


@dataclass
class DocumentSnapshot:
    """Point-in-time view of a document."""
    id: str
    data: Optional[Dict[str, Any]] = None
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.data is not None

    @classmethod
    def from_hash(cls, doc_id: str, raw: Dict[str, str]) -> "DocumentSnapshot":
        if not raw:
            return cls(id=doc_id)
        raw = dict(raw)
        version = int(raw.pop(VERSION_FIELD, 0))
        data = {name: json.loads(value) for name, value in raw.items()}
        return cls(id=doc_id, data=data, version=version)


SnapshotHandler = Callable[[DocumentSnapshot], Awaitable[None]]
ItemHandler = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class Subscription:
    """
    Handle for a live listener.

    ``unsubscribe`` is synchronous: the listener stops before any pending
    notification is delivered. Calling it from inside the listener's own
    handler lets the handler finish and then ends the loop.
    """
    task: Optional[asyncio.Task] = None
    closed: bool = False
    name: str = field(default="")

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()


class RedisDocumentStore:
    """Document store adapter on top of redis.asyncio."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        poll_timeout: float = 1.0,
    ):
        self._redis = client
        self.poll_timeout = poll_timeout

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    # === Key helpers ===

    @staticmethod
    def _key(collection: str, doc_id: str, sub: Optional[str] = None) -> str:
        key = f"doc:{collection}:{doc_id}"
        return f"{key}:{sub}" if sub else key

    @staticmethod
    def _channel(collection: str, doc_id: str, sub: Optional[str] = None) -> str:
        channel = f"changes:{collection}:{doc_id}"
        return f"{channel}:{sub}" if sub else channel

    # === Writes ===

    async def _server_timestamp(self) -> str:
        r = await self._client()
        seconds, microseconds = await r.time()
        return datetime.fromtimestamp(seconds + microseconds / 1_000_000, UTC).isoformat()

    async def _resolve(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Replace SERVER_TIMESTAMP sentinels with the store clock."""
        if not any(value is SERVER_TIMESTAMP for value in fields.values()):
            return dict(fields)
        now = await self._server_timestamp()
        return {name: now if value is SERVER_TIMESTAMP else value for name, value in fields.items()}

    @staticmethod
    def _queue_write(pipe, key: str, fields: Dict[str, Any]) -> None:
        to_set = {
            name: json.dumps(value)
            for name, value in fields.items()
            if value is not DELETE_FIELD
        }
        to_delete = [name for name, value in fields.items() if value is DELETE_FIELD]
        if to_set:
            pipe.hset(key, mapping=to_set)
        if to_delete:
            pipe.hdel(key, *to_delete)
        pipe.hincrby(key, VERSION_FIELD, 1)

    async def _publish(self, collection: str, doc_id: str, sub: Optional[str] = None) -> None:
        r = await self._client()
        await r.publish(self._channel(collection, doc_id, sub), "changed")

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create or overwrite a document."""
        r = await self._client()
        key = self._key(collection, doc_id)
        resolved = await self._resolve(data)
        async with r.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            self._queue_write(pipe, key, resolved)
            await pipe.execute()
        await self._publish(collection, doc_id)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """
        Update fields of an existing document.

        Raises:
            DocumentNotFoundError if the document does not exist
        """
        def _require_exists(snapshot: DocumentSnapshot) -> Dict[str, Any]:
            if not snapshot.exists:
                raise DocumentNotFoundError(f"Document {collection}/{doc_id} not found")
            return fields

        await self.transact(collection, doc_id, _require_exists)

    async def transact(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[DocumentSnapshot], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Optimistic check-and-set on one document.

        ``fn`` receives a fresh snapshot read under WATCH and returns the
        fields to write, or None to abort without writing. If the document
        changes between the read and the write, ``fn`` runs again on the
        new state.

        Returns:
            The fields written, or None if ``fn`` aborted.
        """
        r = await self._client()
        key = self._key(collection, doc_id)

        for attempt in range(STORE_TRANSACTION_RETRIES):
            async with r.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    fields = fn(DocumentSnapshot.from_hash(doc_id, raw))
                    if fields is None:
                        return None
                    resolved = await self._resolve(fields)
                    pipe.multi()
                    self._queue_write(pipe, key, resolved)
                    await pipe.execute()
                except WatchError:
                    logger.debug(f"[Store] Contention on {key}, retry {attempt + 1}")
                    continue
            await self._publish(collection, doc_id)
            return fields

        raise DocumentStoreError(f"Too much contention on {collection}/{doc_id}")

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document together with its sub-collections."""
        r = await self._client()
        key = self._key(collection, doc_id)
        sub_keys = [k async for k in r.scan_iter(match=f"{key}:*")]
        await r.delete(key, *sub_keys)
        await self._publish(collection, doc_id)

    async def append(self, collection: str, doc_id: str, sub: str, data: Dict[str, Any]) -> str:
        """Append an item to a document's sub-collection."""
        r = await self._client()
        entry_id = await r.xadd(self._key(collection, doc_id, sub), {"data": json.dumps(data)})
        await self._publish(collection, doc_id, sub)
        return entry_id

    # === Reads ===

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        r = await self._client()
        raw = await r.hgetall(self._key(collection, doc_id))
        return DocumentSnapshot.from_hash(doc_id, raw)

    async def find(
        self,
        collection: str,
        predicate: Callable[[Dict[str, Any]], bool],
    ) -> List[DocumentSnapshot]:
        """Scan a collection and return the documents matching ``predicate``."""
        r = await self._client()
        prefix = f"doc:{collection}:"
        matches = []
        async for key in r.scan_iter(match=f"{prefix}*"):
            doc_id = key[len(prefix):]
            if ":" in doc_id:
                # Sub-collection stream
                continue
            snapshot = DocumentSnapshot.from_hash(doc_id, await r.hgetall(key))
            if snapshot.exists and predicate(snapshot.data):
                matches.append(snapshot)
        return matches

    async def list_items(self, collection: str, doc_id: str, sub: str) -> List[Dict[str, Any]]:
        r = await self._client()
        entries = await r.xrange(self._key(collection, doc_id, sub))
        return [json.loads(payload["data"]) for _entry_id, payload in entries]

    # === Subscriptions ===

    async def _listen(self, subscription: Subscription, channel: str, on_change: Callable[[], Awaitable[None]]):
        r = await self._client()
        pubsub = r.pubsub()
        await pubsub.subscribe(channel)
        try:
            # Initial delivery happens after SUBSCRIBE so no change is missed
            await self._deliver(subscription, on_change)
            while not subscription.closed:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.poll_timeout,
                )
                if message is None or subscription.closed:
                    continue
                await self._deliver(subscription, on_change)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except Exception as e:
                logger.debug(f"[Store] Error closing listener on {channel}: {e}")

    @staticmethod
    async def _deliver(subscription: Subscription, on_change: Callable[[], Awaitable[None]]):
        try:
            await on_change()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Store] Listener {subscription.name} handler failed: {e}")

    async def subscribe(self, collection: str, doc_id: str, handler: SnapshotHandler) -> Subscription:
        """
        Listen to a document.

        ``handler`` is awaited with the current snapshot, then with a fresh
        snapshot after every change (a snapshot with ``exists == False``
        once the document is deleted).
        """
        subscription = Subscription(name=f"{collection}/{doc_id}")

        async def _on_change():
            await handler(await self.get(collection, doc_id))

        subscription.task = asyncio.create_task(
            self._listen(subscription, self._channel(collection, doc_id), _on_change)
        )
        return subscription

    async def subscribe_collection(
        self,
        collection: str,
        doc_id: str,
        sub: str,
        handler: ItemHandler,
    ) -> Subscription:
        """
        Listen to a sub-collection.

        ``handler`` is awaited once per item, starting with the items that
        already exist, in append order.
        """
        subscription = Subscription(name=f"{collection}/{doc_id}/{sub}")
        stream = self._key(collection, doc_id, sub)
        cursor = {"last_id": "0-0"}

        async def _on_change():
            r = await self._client()
            while not subscription.closed:
                entries = await r.xread({stream: cursor["last_id"]}, count=100)
                if isinstance(entries, dict):
                    entries = list(entries.items())
                items = [item for _stream, batch in entries or [] for item in batch]
                if not items:
                    return
                for entry_id, payload in items:
                    cursor["last_id"] = entry_id
                    if subscription.closed:
                        return
                    try:
                        await handler(json.loads(payload["data"]))
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error(f"[Store] Item handler on {subscription.name} failed: {e}")

        subscription.task = asyncio.create_task(
            self._listen(subscription, self._channel(collection, doc_id, sub), _on_change)
        )
        return subscription
