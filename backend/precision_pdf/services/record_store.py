"""Document record stores with per-document change subscriptions."""
import asyncio
import json
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from precision_pdf.exceptions import DocumentNotFoundError, StorageError
from precision_pdf.models.document import Document, utcnow
from precision_pdf.utils.logger import logger


class DocumentRecordStore(Protocol):
    """Keyed store of Document records."""

    async def create(self, document: Document) -> Document:
        ...

    async def get(self, document_id: str) -> Optional[Document]:
        ...

    async def update(self, document_id: str, **fields: Any) -> Document:
        ...

    async def list_by_owner(self, owner_id: str) -> List[Document]:
        ...

    def subscribe(self, document_id: str) -> AsyncIterator[Document]:
        """Yield the current record, then every later version of it."""
        ...

    async def close(self) -> None:
        ...


class InMemoryDocumentRecordStore:
    """Process-local record store; subscribers are fed through asyncio queues."""

    def __init__(self):
        self._records: Dict[str, Document] = {}
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def _publish(self, document: Document) -> None:
        for queue in list(self._subscribers.get(document.document_id, ())):
            queue.put_nowait(document.copy())

    async def create(self, document: Document) -> Document:
        if document.document_id in self._records:
            raise StorageError(f"Document already exists: {document.document_id}")
        self._records[document.document_id] = document.copy()
        self._publish(document)
        return document.copy()

    async def get(self, document_id: str) -> Optional[Document]:
        document = self._records.get(document_id)
        return document.copy() if document else None

    async def update(self, document_id: str, **fields: Any) -> Document:
        current = self._records.get(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        updated = current.copy(updated_at=utcnow(), **fields)
        self._records[document_id] = updated
        self._publish(updated)
        return updated.copy()

    async def list_by_owner(self, owner_id: str) -> List[Document]:
        documents = [d.copy() for d in self._records.values() if d.owner_id == owner_id]
        return sorted(documents, key=lambda d: d.created_at, reverse=True)

    async def subscribe(self, document_id: str) -> AsyncIterator[Document]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[document_id].add(queue)
        try:
            current = self._records.get(document_id)
            if current is not None:
                yield current.copy()
            while True:
                yield await queue.get()
        finally:
            self._subscribers[document_id].discard(queue)
            if not self._subscribers[document_id]:
                del self._subscribers[document_id]

    async def close(self) -> None:
        self._subscribers.clear()


class RedisDocumentRecordStore:
    """Record store backed by Redis; updates are broadcast over pub/sub."""

    KEY_PREFIX = "precision_pdf:document:"
    OWNER_PREFIX = "precision_pdf:owner:"
    CHANNEL_PREFIX = "precision_pdf:document-updates:"

    def __init__(self, client: "redis.Redis"):
        """
        Initialize Redis record store.

        Args:
            client: redis.asyncio client created with decode_responses=True
        """
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisDocumentRecordStore":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
        )
        logger.info(f"Redis record store initialized: {redis_url}")
        return cls(client)

    def _key(self, document_id: str) -> str:
        return f"{self.KEY_PREFIX}{document_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self.OWNER_PREFIX}{owner_id}"

    def _channel(self, document_id: str) -> str:
        return f"{self.CHANNEL_PREFIX}{document_id}"

    async def _write(self, document: Document, only_if_new: bool = False) -> None:
        payload = json.dumps(document.to_dict())
        try:
            stored = await self.client.set(self._key(document.document_id), payload, nx=only_if_new)
            if only_if_new and not stored:
                raise StorageError(f"Document already exists: {document.document_id}")
            await self.client.publish(self._channel(document.document_id), payload)
        except RedisError as e:
            raise StorageError(f"Failed to write document {document.document_id}: {str(e)}")

    async def create(self, document: Document) -> Document:
        await self._write(document, only_if_new=True)
        try:
            await self.client.zadd(
                self._owner_key(document.owner_id),
                {document.document_id: document.created_at.timestamp()},
            )
        except RedisError as e:
            raise StorageError(f"Failed to index document {document.document_id}: {str(e)}")
        return document.copy()

    async def get(self, document_id: str) -> Optional[Document]:
        try:
            payload = await self.client.get(self._key(document_id))
        except RedisError as e:
            raise StorageError(f"Failed to read document {document_id}: {str(e)}")
        if payload is None:
            return None
        return Document.from_dict(json.loads(payload))

    async def update(self, document_id: str, **fields: Any) -> Document:
        # Single writer per field group, so read-modify-write without WATCH is enough
        current = await self.get(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        updated = current.copy(updated_at=utcnow(), **fields)
        await self._write(updated)
        return updated

    async def list_by_owner(self, owner_id: str) -> List[Document]:
        try:
            document_ids = await self.client.zrevrange(self._owner_key(owner_id), 0, -1)
            if not document_ids:
                return []
            payloads = await self.client.mget([self._key(d) for d in document_ids])
        except RedisError as e:
            raise StorageError(f"Failed to list documents: {str(e)}")
        return [Document.from_dict(json.loads(p)) for p in payloads if p is not None]

    async def subscribe(self, document_id: str) -> AsyncIterator[Document]:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(self._channel(document_id))
        try:
            current = await self.get(document_id)
            if current is not None:
                yield current
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield Document.from_dict(json.loads(message["data"]))
        finally:
            try:
                await pubsub.unsubscribe(self._channel(document_id))
                await pubsub.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis subscription: {str(e)}")

    async def close(self) -> None:
        try:
            await self.client.aclose()
            logger.info("Redis record store connection closed")
        except RedisError as e:
            logger.warning(f"Error closing Redis connection: {str(e)}")
