import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from decksy.cache import SharedStore, create_redis


def run(coro):
    return asyncio.run(coro)


def test_create_redis_without_url():
    assert create_redis(None) is None
    assert create_redis("") is None


def test_memory_store_expires_entries(clock):
    store = SharedStore(clock=clock)

    run(store.set_json("player:ABC", {"name": "Tester"}, ttl_seconds=60))
    assert run(store.get_json("player:ABC")) == {"name": "Tester"}

    clock.advance(61)
    assert run(store.get_json("player:ABC")) is None
    assert run(store.get_json("never-set")) is None


def test_redis_store_round_trip():
    redis = MagicMock()
    redis.get = AsyncMock(return_value=json.dumps({"name": "Tester"}))
    redis.set = AsyncMock()
    store = SharedStore(redis=redis)

    run(store.set_json("player:ABC", {"name": "Tester"}, ttl_seconds=300))
    value = run(store.get_json("player:ABC"))

    redis.set.assert_awaited_once_with("player:ABC", json.dumps({"name": "Tester"}), ex=300)
    assert value == {"name": "Tester"}


def test_redis_errors_fall_back_to_memory():
    redis = MagicMock()
    redis.get = AsyncMock(side_effect=ConnectionError("down"))
    redis.set = AsyncMock(side_effect=ConnectionError("down"))
    store = SharedStore(redis=redis)

    run(store.set_json("battles:ABC", [1, 2], ttl_seconds=120))

    assert run(store.get_json("battles:ABC")) == [1, 2]
