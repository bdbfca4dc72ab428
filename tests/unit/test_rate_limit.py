import asyncio
import logging

import fakeredis
import pytest

from cinetrack.services import rate_limit
from cinetrack.services.rate_limit import AsyncLimiter, RATE_LIMITS


class BrokenRedis:
    def pipeline(self):
        raise ConnectionError("redis is down")


def test_limiter_allows_up_to_limit_then_rejects():
    redis = fakeredis.FakeAsyncRedis(decode_responses=True)

    async def run():
        limiter = AsyncLimiter("recommendations", "user:1", redis=redis)
        limit = RATE_LIMITS["recommendations"]["limit"]
        results = [await limiter.acquire() for _ in range(limit + 1)]
        other = await AsyncLimiter("recommendations", "user:2", redis=redis).acquire()
        return results, other

    results, other = asyncio.run(run())
    assert all(r["success"] for r in results[:-1])
    assert results[-1]["success"] is False
    assert results[-1]["remaining"] == 0
    # separate key, separate window
    assert other["success"] is True


def test_unknown_endpoint_uses_default_class():
    limiter = AsyncLimiter("does-not-exist", "ip:1.2.3.4", redis=None)
    assert limiter.endpoint == "default"
    assert limiter.redis_key == "rate_limit:default:ip:1.2.3.4"


def test_limiter_fails_open(caplog):
    async def run():
        return await AsyncLimiter("search", "ip:10.0.0.1", redis=BrokenRedis()).acquire()

    with caplog.at_level(logging.ERROR):
        result = asyncio.run(run())
    assert result["success"] is True
    assert "allowing request" in caplog.text


def test_api_returns_429_with_headers(client, headers, monkeypatch):
    monkeypatch.setitem(RATE_LIMITS, "user", {"limit": 2, "window": 60})
    codes = [client.get("/api/user/profile", headers=headers).status_code for _ in range(3)]
    assert codes == [200, 200, 429]

    resp = client.get("/api/user/profile", headers=headers)
    assert resp.json()["detail"] == "Too many requests"
    assert resp.headers["X-RateLimit-Limit"] == "2"
    assert resp.headers["X-RateLimit-Remaining"] == "0"


def test_anonymous_callers_are_keyed_by_forwarded_ip(client, monkeypatch):
    monkeypatch.setitem(RATE_LIMITS, "default", {"limit": 1, "window": 60})
    first = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    second = {"X-Forwarded-For": "198.51.100.2"}
    assert client.post("/api/auth/login", json={"email": "a@b.c", "password": "x"}, headers=first).status_code == 401
    assert client.post("/api/auth/login", json={"email": "a@b.c", "password": "x"}, headers=first).status_code == 429
    assert client.post("/api/auth/login", json={"email": "a@b.c", "password": "x"}, headers=second).status_code == 401


def test_disabled_limiter_never_blocks(monkeypatch):
    monkeypatch.setattr(rate_limit.settings, "rate_limit_enabled", False)

    async def run():
        return [await rate_limit.check_rate_limit("recommendations", "user:9") for _ in range(50)]

    assert all(r["success"] for r in asyncio.run(run()))


@pytest.mark.parametrize("forwarded,expected", [
    ("203.0.113.7, 10.0.0.1", "ip:203.0.113.7"),
    (None, "ip:testclient"),
])
def test_client_key(forwarded, expected):
    from starlette.requests import Request

    raw_headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    request = Request({"type": "http", "headers": raw_headers, "client": ("testclient", 50000)})
    assert rate_limit.client_key(request) == expected
    assert rate_limit.client_key(request, user_id=3) == "user:3"
