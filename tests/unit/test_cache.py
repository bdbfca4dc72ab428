import asyncio

from cinetrack.core.redis_client import get_redis
from cinetrack.services import cache


def test_with_cache_stores_and_skips_none():
    calls = []

    async def fetch_value():
        calls.append(1)
        return {"answer": 42}

    async def fetch_none():
        calls.append(1)
        return None

    async def run():
        first = await cache.with_cache("k:value", fetch_value, 60)
        second = await cache.with_cache("k:value", fetch_value, 60)
        await cache.with_cache("k:none", fetch_none, 60)
        await cache.with_cache("k:none", fetch_none, 60)
        return first, second

    first, second = asyncio.run(run())
    assert first == second == {"answer": 42}
    # value fetched once, None fetched twice
    assert len(calls) == 3


def test_cache_fails_open(monkeypatch):
    class DownRedis:
        async def get(self, key):
            raise ConnectionError("down")

        async def set(self, *args, **kwargs):
            raise ConnectionError("down")

    monkeypatch.setattr(cache, "get_redis", lambda: DownRedis())

    async def fetch():
        return [1, 2]

    assert asyncio.run(cache.with_cache("x", fetch, 10)) == [1, 2]


def test_invalidate_user_cache_only_touches_that_user():
    async def run():
        r = get_redis()
        await r.set("user:1:stats", "{}")
        await r.set("user:1:genres:watched:50", "[]")
        await r.set("user:2:stats", "{}")
        deleted = await cache.invalidate_user_cache(1)
        return deleted, await r.exists("user:2:stats")

    deleted, remaining = asyncio.run(run())
    assert deleted == 2
    assert remaining == 1


def test_clear_cache_endpoint(client, monkeypatch):
    from cinetrack.api import admin

    async def seed():
        r = get_redis()
        await r.set("user:5:stats", "{}")
        await r.set("user:5:actors:24:0", "{}")
        await r.set("tmdb:movie:1", "{}")

    asyncio.run(seed())
    resp = client.post("/api/admin/clear-cache", json={})
    assert resp.status_code == 200
    assert resp.json()["deleted_keys"] == 2
    assert resp.json()["patterns"] == admin.DEFAULT_PATTERNS

    monkeypatch.setattr(admin.settings, "environment", "production")
    assert client.post("/api/admin/clear-cache", json={"secret": "wrong"}).status_code == 401
    resp = client.post("/api/admin/clear-cache", json={"secret": admin.settings.cache_clear_secret, "pattern": "tmdb:*"})
    assert resp.json()["deleted_keys"] == 1
