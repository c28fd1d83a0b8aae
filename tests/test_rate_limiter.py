import asyncio

import jwt
import pytest
from fastapi import HTTPException, Request

from app.config import settings
from app.utils.rate_limiter import RateLimiter


def signed_token(subject):
    return jwt.encode({"sub": subject}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def make_request(token=None, ip="10.0.0.1"):
    headers = [(b"authorization", f"Bearer {token}".encode())] if token else []
    return Request({"type": "http", "headers": headers, "client": (ip, 5000)})


def test_minute_limit_is_enforced_per_user():
    limiter = RateLimiter(requests_per_minute=2, requests_per_hour=100)
    alice = signed_token("alice")

    for _ in range(2):
        asyncio.run(limiter.check_rate_limit(make_request(token=alice)))

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(limiter.check_rate_limit(make_request(token=alice)))

    assert exc_info.value.status_code == 429
    assert exc_info.value.detail["retry_after"] == 60
    # Another user on the same IP has their own budget
    asyncio.run(limiter.check_rate_limit(make_request(token=signed_token("bob"))))


def test_anonymous_clients_are_keyed_by_ip():
    limiter = RateLimiter(requests_per_minute=1, requests_per_hour=100)

    asyncio.run(limiter.check_rate_limit(make_request(ip="10.0.0.1")))
    asyncio.run(limiter.check_rate_limit(make_request(ip="10.0.0.2")))

    with pytest.raises(HTTPException):
        asyncio.run(limiter.check_rate_limit(make_request(ip="10.0.0.1")))


def test_unverified_tokens_count_against_the_ip():
    limiter = RateLimiter(requests_per_minute=2, requests_per_hour=100)

    asyncio.run(limiter.check_rate_limit(make_request(token="junk-1")))
    asyncio.run(limiter.check_rate_limit(make_request(token="junk-2")))

    with pytest.raises(HTTPException):
        asyncio.run(limiter.check_rate_limit(make_request(token="junk-3")))

    assert list(limiter.history) == ["ip:10.0.0.1"]


def test_old_requests_leave_the_window(monkeypatch):
    limiter = RateLimiter(requests_per_minute=1, requests_per_hour=100)
    alice = signed_token("alice")
    clock = {"now": 1000.0}
    monkeypatch.setattr("app.utils.rate_limiter.time.time", lambda: clock["now"])

    asyncio.run(limiter.check_rate_limit(make_request(token=alice)))
    clock["now"] += 61
    asyncio.run(limiter.check_rate_limit(make_request(token=alice)))

    assert len(limiter.history) == 1


def test_idle_clients_are_forgotten(monkeypatch):
    limiter = RateLimiter(requests_per_minute=10, requests_per_hour=100)
    clock = {"now": 1000.0}
    monkeypatch.setattr("app.utils.rate_limiter.time.time", lambda: clock["now"])

    for i in range(5):
        asyncio.run(limiter.check_rate_limit(make_request(ip=f"10.0.0.{i}")))
    assert len(limiter.history) == 5

    clock["now"] += 3601
    asyncio.run(limiter.check_rate_limit(make_request(ip="10.0.0.99")))

    assert list(limiter.history) == ["ip:10.0.0.99"]
