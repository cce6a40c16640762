"""Redis-backed document store.

Layout:
- One hash per collection, ``{prefix}:docs:{path}``, field = document id,
  value = JSON document.
- One pub/sub channel per collection, ``{prefix}:changes:{path}``. Every
  write publishes the touched document id; subscribers re-read the hash and
  deliver the full snapshot.

Writes are wrapped with tenacity retry + exponential backoff for transient
connection failures. Partial updates read, merge and write back the document
(last write wins, no optimistic concurrency token).
"""

from __future__ import annotations

import asyncio
import contextlib
import json

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.salescrm.config import Settings, get_settings
from src.salescrm.store.adapter import (
    ChangeHandler,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    ErrorHandler,
    Subscription,
)

logger = structlog.get_logger(__name__)

_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    reraise=True,
)


class _RedisSubscription(Subscription):
    """Owns the pub/sub connection and the listener task for one collection."""

    def __init__(self, pubsub, channel: str, task: asyncio.Task) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._task = task
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        await self._pubsub.unsubscribe(self._channel)
        await self._pubsub.aclose()
        logger.debug("redis_store.unsubscribed", channel=self._channel)


class RedisDocumentStore(DocumentStore):
    """DocumentStore backed by Redis hashes and pub/sub.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        key_prefix: Namespace for every key and channel.
        poll_timeout: Seconds each pub/sub read blocks before looping.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        key_prefix: str = "salescrm",
        poll_timeout: float = 1.0,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._poll_timeout = poll_timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RedisDocumentStore:
        """Build a store from REDIS_URL / STORE_KEY_PREFIX."""
        settings = settings or get_settings()
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        return cls(client, key_prefix=settings.STORE_KEY_PREFIX)

    async def close(self) -> None:
        """Close the underlying Redis connection pool."""
        await self._redis.aclose()

    def _key(self, path: str) -> str:
        return f"{self._prefix}:docs:{path}"

    def _channel(self, path: str) -> str:
        return f"{self._prefix}:changes:{path}"

    # ── Subscriptions ───────────────────────────────────────────────────

    async def subscribe(
        self,
        path: str,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        channel = self._channel(path)
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        on_change(await self.get_all(path))

        task = asyncio.create_task(self._listen(pubsub, path, on_change, on_error))
        logger.debug("redis_store.subscribed", channel=channel)
        return _RedisSubscription(pubsub, channel, task)

    async def _listen(
        self,
        pubsub,
        path: str,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None,
    ) -> None:
        """Deliver a fresh snapshot for every change message until cancelled.

        A failing change stream is reported once and then stops.
        """
        try:
            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
                if message and message["type"] == "message":
                    on_change(await self.get_all(path))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("redis_store.listener_failed", path=path, error=str(exc))
            if on_error is not None:
                on_error(exc)

    # ── Reads ───────────────────────────────────────────────────────────

    @_transient
    async def get_all(self, path: str) -> list[Document]:
        raw = await self._redis.hgetall(self._key(path))
        return [json.loads(value) for value in raw.values()]

    # ── Writes ──────────────────────────────────────────────────────────

    @_transient
    async def put(self, path: str, doc_id: str, document: Document) -> None:
        await self._redis.hset(self._key(path), doc_id, json.dumps(document))
        await self._redis.publish(self._channel(path), doc_id)

    @_transient
    async def patch(self, path: str, doc_id: str, changes: Document) -> None:
        key = self._key(path)
        raw = await self._redis.hget(key, doc_id)
        if raw is None:
            raise DocumentNotFoundError(path, doc_id)
        merged = {**json.loads(raw), **changes}
        await self._redis.hset(key, doc_id, json.dumps(merged))
        await self._redis.publish(self._channel(path), doc_id)

    @_transient
    async def remove(self, path: str, doc_id: str) -> None:
        removed = await self._redis.hdel(self._key(path), doc_id)
        if removed:
            await self._redis.publish(self._channel(path), doc_id)
