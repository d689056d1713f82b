"""
Rate limiter tests
"""

import pytest
from httpx import AsyncClient

from gateway.services.rate_limiter import FixedWindowRateLimiter, rate_limiter


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class TestFixedWindowRateLimiter:
    """Unit tests for the fixed-window counter"""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(window_seconds=3600, clock=clock)

        first = await limiter.check_and_increment("key", 2)
        second = await limiter.check_and_increment("key", 2)
        third = await limiter.check_and_increment("key", 2)

        assert first.allowed and first.remaining == 1
        assert second.allowed and second.remaining == 0
        assert not third.allowed
        assert third.remaining == 0
        assert third.retry_after == 3600

    @pytest.mark.asyncio
    async def test_denied_request_does_not_count(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(window_seconds=60, clock=clock)

        await limiter.check_and_increment("key", 1)
        for _ in range(5):
            assert not (await limiter.check_and_increment("key", 1)).allowed

        clock.advance(60)
        assert (await limiter.check_and_increment("key", 1)).allowed

    @pytest.mark.asyncio
    async def test_window_resets(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(window_seconds=3600, clock=clock)

        await limiter.check_and_increment("key", 1)
        clock.advance(1800)
        denied = await limiter.check_and_increment("key", 1)
        assert not denied.allowed
        assert denied.retry_after == 1800

        clock.advance(1800)
        decision = await limiter.check_and_increment("key", 1)
        assert decision.allowed
        assert decision.reset_at == clock.now + 3600

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = FixedWindowRateLimiter(window_seconds=3600, clock=FakeClock())

        await limiter.check_and_increment("a", 1)
        assert not (await limiter.check_and_increment("a", 1)).allowed
        assert (await limiter.check_and_increment("b", 1)).allowed

    @pytest.mark.asyncio
    async def test_headers(self):
        clock = FakeClock(1000.5)
        limiter = FixedWindowRateLimiter(window_seconds=10, clock=clock)

        decision = await limiter.check_and_increment("key", 5)
        assert decision.headers == {
            "x-ratelimit-limit-requests": "5",
            "x-ratelimit-remaining-requests": "4",
            "x-ratelimit-reset-requests": "1011",
        }

        await limiter.check_and_increment("key", 1)
        denied = await limiter.check_and_increment("key", 1)
        assert denied.headers["Retry-After"] == "10"

    @pytest.mark.asyncio
    async def test_cleanup_drops_expired_windows(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(window_seconds=60, clock=clock)

        await limiter.check_and_increment("old", 10)
        clock.advance(30)
        await limiter.check_and_increment("new", 10)
        clock.advance(30)

        assert await limiter.cleanup() == 1
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_reset(self):
        limiter = FixedWindowRateLimiter(window_seconds=60, clock=FakeClock())
        await limiter.check_and_increment("a", 1)
        await limiter.check_and_increment("b", 1)

        await limiter.reset("a")
        assert len(limiter) == 1
        await limiter.reset()
        assert len(limiter) == 0


class TestRateLimitedEndpoints:
    """The limiter applied to /v1 requests"""

    @pytest.mark.asyncio
    async def test_key_quota_enforced(
        self, client: AsyncClient, registered: dict, auth_headers: dict, key_headers: dict
    ):
        key_id = registered["api_key"]["id"]
        response = await client.put(
            f"/api/dashboard/keys/{key_id}", json={"rate_limit": 2}, headers=auth_headers
        )
        assert response.status_code == 200

        body = {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}
        remaining = []
        for _ in range(2):
            response = await client.post("/v1/chat/completions", json=body, headers=key_headers)
            assert response.status_code == 200
            remaining.append(response.headers["x-ratelimit-remaining-requests"])
        assert remaining == ["1", "0"]

        response = await client.post("/v1/chat/completions", json=body, headers=key_headers)
        assert response.status_code == 429
        error = response.json()["error"]
        assert error["type"] == "rate_limit_error"
        assert error["code"] == "rate_limit_exceeded"
        assert error["retryAfter"] > 0
        assert error["retryAfter"] == error["retry_after"]
        assert response.headers["Retry-After"] == str(error["retryAfter"])
        assert response.headers["x-ratelimit-remaining-requests"] == "0"

    @pytest.mark.asyncio
    async def test_rejected_requests_are_not_recorded(
        self, client: AsyncClient, registered: dict, auth_headers: dict, key_headers: dict
    ):
        key_id = registered["api_key"]["id"]
        await client.put(
            f"/api/dashboard/keys/{key_id}", json={"rate_limit": 1}, headers=auth_headers
        )

        body = {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}
        assert (await client.post("/v1/chat/completions", json=body, headers=key_headers)).status_code == 200
        assert (await client.post("/v1/chat/completions", json=body, headers=key_headers)).status_code == 429

        response = await client.get("/api/dashboard/usage", headers=auth_headers)
        assert response.json()["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_quota_restored_after_window(
        self, client: AsyncClient, registered: dict, auth_headers: dict, key_headers: dict, monkeypatch
    ):
        clock = FakeClock()
        monkeypatch.setattr(rate_limiter, "clock", clock)

        key_id = registered["api_key"]["id"]
        await client.put(
            f"/api/dashboard/keys/{key_id}", json={"rate_limit": 2}, headers=auth_headers
        )

        body = {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}
        for _ in range(2):
            response = await client.post("/v1/chat/completions", json=body, headers=key_headers)
            assert response.status_code == 200
        reset_at = int(response.headers["x-ratelimit-reset-requests"])

        clock.advance(1000)
        response = await client.post("/v1/chat/completions", json=body, headers=key_headers)
        assert response.status_code == 429
        assert response.json()["error"]["retryAfter"] == rate_limiter.window_seconds - 1000
        assert response.headers["Retry-After"] == str(rate_limiter.window_seconds - 1000)

        clock.now = reset_at
        response = await client.post("/v1/chat/completions", json=body, headers=key_headers)
        assert response.status_code == 200
        assert response.headers["x-ratelimit-remaining-requests"] == "1"
        assert int(response.headers["x-ratelimit-reset-requests"]) == reset_at + rate_limiter.window_seconds
