"""Unit tests for RedisDocumentStore.

Uses a mocked async Redis client -- no real Redis server is required.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from tenacity import stop_after_attempt, wait_none

from src.salescrm.config import Settings
from src.salescrm.store.adapter import DocumentNotFoundError
from src.salescrm.store.redis import RedisDocumentStore

PATH = "crm/main/crm_leads"
KEY = "salescrm:docs:crm/main/crm_leads"
CHANNEL = "salescrm:changes:crm/main/crm_leads"


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_pubsub(messages: list | None = None, error: Exception | None = None) -> MagicMock:
    """Pub/sub mock yielding queued messages, then idling (or raising ``error``)."""
    queue = list(messages or [])
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def get_message(**kwargs):
        await asyncio.sleep(0.01)
        if queue:
            return queue.pop(0)
        if error is not None:
            raise error
        return None

    pubsub.get_message = AsyncMock(side_effect=get_message)
    return pubsub


def _make_redis(pubsub: MagicMock | None = None) -> MagicMock:
    redis = MagicMock()
    redis.hgetall = AsyncMock(return_value={})
    redis.hget = AsyncMock(return_value=None)
    redis.hset = AsyncMock()
    redis.hdel = AsyncMock(return_value=1)
    redis.publish = AsyncMock()
    redis.aclose = AsyncMock()
    redis.pubsub = MagicMock(return_value=pubsub or _make_pubsub())
    return redis


async def _wait_for(condition, attempts: int = 100) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.01)


# ── Reads & Writes ─────────────────────────────────────────────────────────


class TestRedisWrites:
    async def test_put_writes_hash_field_and_publishes(self):
        redis = _make_redis()
        store = RedisDocumentStore(redis)
        await store.put(PATH, "l1", {"id": "l1", "title": "A"})
        redis.hset.assert_awaited_once_with(KEY, "l1", json.dumps({"id": "l1", "title": "A"}))
        redis.publish.assert_awaited_once_with(CHANNEL, "l1")

    async def test_get_all_decodes_documents(self):
        redis = _make_redis()
        redis.hgetall.return_value = {"l1": '{"id": "l1"}', "l2": '{"id": "l2"}'}
        store = RedisDocumentStore(redis)
        assert await store.get_all(PATH) == [{"id": "l1"}, {"id": "l2"}]

    async def test_patch_merges_existing_document(self):
        redis = _make_redis()
        redis.hget.return_value = json.dumps({"id": "l1", "title": "A", "value": 1})
        store = RedisDocumentStore(redis)
        await store.patch(PATH, "l1", {"value": 2})
        written = json.loads(redis.hset.call_args.args[2])
        assert written == {"id": "l1", "title": "A", "value": 2}
        redis.publish.assert_awaited_once_with(CHANNEL, "l1")

    async def test_patch_missing_document_raises(self):
        redis = _make_redis()
        store = RedisDocumentStore(redis)
        with pytest.raises(DocumentNotFoundError):
            await store.patch(PATH, "ghost", {"value": 2})
        redis.hset.assert_not_awaited()

    async def test_remove_publishes_only_when_deleted(self):
        redis = _make_redis()
        redis.hdel.return_value = 0
        store = RedisDocumentStore(redis)
        await store.remove(PATH, "ghost")
        redis.publish.assert_not_awaited()

        redis.hdel.return_value = 1
        await store.remove(PATH, "l1")
        redis.publish.assert_awaited_once_with(CHANNEL, "l1")

    async def test_custom_prefix(self):
        redis = _make_redis()
        store = RedisDocumentStore(redis, key_prefix="tenant-a")
        await store.put("notifications", "n1", {"id": "n1"})
        assert redis.hset.call_args.args[0] == "tenant-a:docs:notifications"


# ── Retries ────────────────────────────────────────────────────────────────


class TestRedisRetries:
    async def test_transient_error_is_retried(self):
        """Connection errors are retried with backoff (wait disabled here)."""
        redis = _make_redis()
        redis.hgetall.side_effect = [RedisConnectionError("reset"), {"l1": '{"id": "l1"}'}]
        store = RedisDocumentStore(redis)
        get_all = RedisDocumentStore.get_all.retry_with(wait=wait_none())
        assert await get_all(store, PATH) == [{"id": "l1"}]
        assert redis.hgetall.await_count == 2

    async def test_retries_exhausted_reraises(self):
        redis = _make_redis()
        redis.hset.side_effect = RedisConnectionError("down")
        store = RedisDocumentStore(redis)
        put = RedisDocumentStore.put.retry_with(wait=wait_none(), stop=stop_after_attempt(3))
        with pytest.raises(RedisConnectionError):
            await put(store, PATH, "l1", {"id": "l1"})
        assert redis.hset.await_count == 3


# ── Subscriptions ──────────────────────────────────────────────────────────


class TestRedisSubscriptions:
    async def test_subscribe_delivers_initial_snapshot(self):
        pubsub = _make_pubsub()
        redis = _make_redis(pubsub)
        redis.hgetall.return_value = {"l1": '{"id": "l1"}'}
        store = RedisDocumentStore(redis)
        received = []

        subscription = await store.subscribe(PATH, received.append)
        pubsub.subscribe.assert_awaited_once_with(CHANNEL)
        assert received == [[{"id": "l1"}]]
        await subscription.close()

    async def test_change_message_delivers_fresh_snapshot(self):
        pubsub = _make_pubsub(messages=[{"type": "message", "data": "l2"}])
        redis = _make_redis(pubsub)
        redis.hgetall.side_effect = [
            {"l1": '{"id": "l1"}'},
            {"l1": '{"id": "l1"}', "l2": '{"id": "l2"}'},
        ]
        store = RedisDocumentStore(redis)
        received = []

        subscription = await store.subscribe(PATH, received.append)
        await _wait_for(lambda: len(received) == 2)
        assert received[1] == [{"id": "l1"}, {"id": "l2"}]
        await subscription.close()

    async def test_close_unsubscribes_and_releases_connection(self):
        pubsub = _make_pubsub()
        store = RedisDocumentStore(_make_redis(pubsub))
        subscription = await store.subscribe(PATH, lambda docs: None)

        await subscription.close()
        await subscription.close()
        pubsub.unsubscribe.assert_awaited_once_with(CHANNEL)
        pubsub.aclose.assert_awaited_once()

    async def test_listener_error_reported_once(self):
        pubsub = _make_pubsub(error=RedisConnectionError("lost"))
        store = RedisDocumentStore(_make_redis(pubsub))
        errors = []

        subscription = await store.subscribe(PATH, lambda docs: None, errors.append)
        await _wait_for(lambda: errors)
        await asyncio.sleep(0.05)
        assert len(errors) == 1
        assert isinstance(errors[0], RedisConnectionError)
        await subscription.close()


# ── Construction ───────────────────────────────────────────────────────────


class TestRedisConstruction:
    def test_from_settings(self):
        settings = Settings(REDIS_URL="redis://cache:6379/2", STORE_KEY_PREFIX="crm-test")
        with patch("src.salescrm.store.redis.aioredis.from_url") as from_url:
            store = RedisDocumentStore.from_settings(settings)
        from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=True)
        assert store._prefix == "crm-test"

    async def test_close_closes_client(self):
        redis = _make_redis()
        await RedisDocumentStore(redis).close()
        redis.aclose.assert_awaited_once()
