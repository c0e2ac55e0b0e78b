"""Tests for the rate limiting middleware and its limiter policies."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from motion_proxy.adapters.rate_limit.in_memory import InMemoryWindowStore
from motion_proxy.core.rate_limit import (
    KeyStrategy,
    RateLimiter,
    RateLimitMiddleware,
    RateLimitPolicy,
)

MOTION_MESSAGE = "API rate limit exceeded for Motion API. Please try again after a minute"
GENERAL_MESSAGE = "Too many requests from this IP, please try again after a minute"


def _limiter(
    clock: Mock,
    *,
    name: str = "motion",
    prefix: str = "/motion",
    max_requests: int = 11,
    window_ms: int = 60_000,
    strategy: KeyStrategy = KeyStrategy.GLOBAL,
    message: str = MOTION_MESSAGE,
    trust_proxy_headers: bool = True,
    store=None,
    **policy_kwargs,
) -> RateLimiter:
    policy = RateLimitPolicy(
        name=name,
        path_prefix=prefix,
        window_ms=window_ms,
        max_requests=max_requests,
        key_strategy=strategy,
        rejection_message=message,
        **policy_kwargs,
    )
    return RateLimiter(
        policy,
        store or InMemoryWindowStore(window_ms=window_ms, clock=clock),
        trust_proxy_headers=trust_proxy_headers,
        clock=clock,
    )


def _app(*limiters: RateLimiter) -> tuple[FastAPI, dict[str, int]]:
    hits = {"motion": 0, "other": 0}
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiters=list(limiters))

    @app.get("/motion/tasks")
    async def motion_tasks():
        hits["motion"] += 1
        return {"ok": True}

    @app.get("/motion/missing")
    async def motion_missing():
        hits["motion"] += 1
        return _not_found()

    @app.get("/motion/boom")
    async def motion_boom():
        hits["motion"] += 1
        raise RuntimeError("handler crashed")

    @app.get("/motionless")
    async def motionless():
        hits["other"] += 1
        return {"ok": True}

    @app.get("/other")
    async def other():
        hits["other"] += 1
        return {"ok": True}

    return app, hits


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "not found"})


class TestGlobalLimiterScenario:
    def test_eleven_admitted_twelfth_rejected_thirteenth_after_window(self) -> None:
        clock = Mock(return_value=1000.0)
        app, hits = _app(_limiter(clock))
        client = TestClient(app)

        remaining = []
        for i in range(11):
            clock.return_value = 1000.0 + i  # well under 60s apart
            resp = client.get("/motion/tasks")
            assert resp.status_code == 200
            assert resp.headers["X-RateLimit-Limit"] == "11"
            remaining.append(int(resp.headers["X-RateLimit-Remaining"]))

        assert remaining == list(range(10, -1, -1))

        clock.return_value = 1011.0
        throttled = client.get("/motion/tasks")
        assert throttled.status_code == 429
        assert throttled.text == MOTION_MESSAGE
        assert throttled.headers["X-RateLimit-Remaining"] == "0"
        assert throttled.headers["X-RateLimit-Reset"] == "1060"
        assert throttled.headers["Retry-After"] == "49"
        assert hits["motion"] == 11

        clock.return_value = 1060.5
        resp = client.get("/motion/tasks")
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "10"
        assert resp.headers["X-RateLimit-Reset"] == "1121"

    def test_every_request_after_quota_is_rejected_until_expiry(self) -> None:
        clock = Mock(return_value=1000.0)
        app, hits = _app(_limiter(clock, max_requests=2, window_ms=10_000))
        client = TestClient(app)

        statuses = [client.get("/motion/tasks").status_code for _ in range(6)]
        assert statuses == [200, 200, 429, 429, 429, 429]
        assert hits["motion"] == 2

        clock.return_value = 1010.0
        assert client.get("/motion/tasks").status_code == 200

    def test_global_key_ignores_client_ip(self) -> None:
        clock = Mock(return_value=1000.0)
        app, _ = _app(_limiter(clock, max_requests=2))
        client = TestClient(app)

        statuses = [
            client.get("/motion/tasks", headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
            for i in range(3)
        ]
        assert statuses == [200, 200, 429]


class TestTwoLimiters:
    def _limiters(self, clock: Mock) -> tuple[RateLimiter, RateLimiter]:
        proxy = _limiter(clock)
        general = _limiter(
            clock,
            name="general",
            prefix="/",
            max_requests=100,
            strategy=KeyStrategy.PER_IP,
            message=GENERAL_MESSAGE,
        )
        return proxy, general

    def test_concurrent_bursts_are_counted_by_their_own_limiter(self) -> None:
        clock = Mock(return_value=1000.0)
        app, hits = _app(*self._limiters(clock))

        async def burst() -> tuple[list[httpx.Response], list[httpx.Response]]:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                general = [
                    client.get("/other", headers={"X-Forwarded-For": "192.0.2.1"})
                    for _ in range(50)
                ]
                proxied = [
                    client.get("/motion/tasks", headers={"X-Forwarded-For": f"198.51.100.{i}"})
                    for i in range(15)
                ]
                results = await asyncio.gather(*general, *proxied)
                return list(results[:50]), list(results[50:])

        general_responses, proxied_responses = asyncio.run(burst())

        assert all(r.status_code == 200 for r in general_responses)
        proxied_statuses = [r.status_code for r in proxied_responses]
        assert proxied_statuses.count(200) == 11
        assert proxied_statuses.count(429) == 4
        assert all(r.text == MOTION_MESSAGE for r in proxied_responses if r.status_code == 429)
        assert hits == {"motion": 11, "other": 50}

    def test_general_limiter_counts_per_ip(self) -> None:
        clock = Mock(return_value=1000.0)
        proxy, _ = self._limiters(clock)
        general = _limiter(
            clock,
            name="general",
            prefix="/",
            max_requests=2,
            strategy=KeyStrategy.PER_IP,
            message=GENERAL_MESSAGE,
        )
        app, _ = _app(proxy, general)
        client = TestClient(app)

        first_ip = [client.get("/other", headers={"X-Forwarded-For": "192.0.2.1"}) for _ in range(3)]
        second_ip = client.get("/other", headers={"X-Forwarded-For": "192.0.2.2"})

        assert [r.status_code for r in first_ip] == [200, 200, 429]
        assert first_ip[-1].text == GENERAL_MESSAGE
        assert second_ip.status_code == 200

    def test_prefix_match_respects_path_segments(self) -> None:
        clock = Mock(return_value=1000.0)
        app, _ = _app(*self._limiters(clock))
        client = TestClient(app)

        resp = client.get("/motionless")

        assert resp.headers["X-RateLimit-Limit"] == "100"

    def test_unmatched_path_passes_without_headers(self) -> None:
        clock = Mock(return_value=1000.0)
        app, hits = _app(_limiter(clock, max_requests=1))
        client = TestClient(app)

        for _ in range(3):
            resp = client.get("/other")
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" not in resp.headers
        assert hits["other"] == 3


class TestPolicyOptions:
    def test_headers_can_be_disabled(self) -> None:
        clock = Mock(return_value=1000.0)
        app, _ = _app(_limiter(clock, max_requests=1, include_headers=False))
        client = TestClient(app)

        ok = client.get("/motion/tasks")
        throttled = client.get("/motion/tasks")

        assert "X-RateLimit-Remaining" not in ok.headers
        assert throttled.status_code == 429
        assert "Retry-After" not in throttled.headers
        assert throttled.text == MOTION_MESSAGE

    def test_skip_successful_requests_gives_quota_back(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock, max_requests=2, skip_successful_requests=True)
        app, _ = _app(limiter)
        client = TestClient(app)

        for _ in range(5):
            assert client.get("/motion/tasks").status_code == 200
        assert limiter.store.query("motion:global") == 0

        assert client.get("/motion/missing").status_code == 404
        assert client.get("/motion/missing").status_code == 404
        assert client.get("/motion/missing").status_code == 429

    def test_skip_failed_requests_gives_quota_back(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock, max_requests=1, skip_failed_requests=True)
        app, _ = _app(limiter)
        client = TestClient(app)

        for _ in range(3):
            assert client.get("/motion/missing").status_code == 404
        assert client.get("/motion/tasks").status_code == 200
        assert client.get("/motion/tasks").status_code == 429

    def test_skip_failed_requests_covers_unhandled_route_errors(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock, max_requests=1, skip_failed_requests=True)
        app, hits = _app(limiter)
        client = TestClient(app, raise_server_exceptions=False)

        assert client.get("/motion/boom").status_code == 500
        assert client.get("/motion/boom").status_code == 500
        assert limiter.store.query("motion:global") == 0

        assert client.get("/motion/tasks").status_code == 200
        assert client.get("/motion/tasks").status_code == 429
        assert hits["motion"] == 3

    def test_unhandled_route_error_counts_without_skip_option(self) -> None:
        clock = Mock(return_value=1000.0)
        limiter = _limiter(clock, max_requests=1)
        app, _ = _app(limiter)
        client = TestClient(app, raise_server_exceptions=False)

        assert client.get("/motion/boom").status_code == 500
        assert client.get("/motion/tasks").status_code == 429


class TestStorageFault:
    def test_store_failure_fails_closed_with_503(self) -> None:
        clock = Mock(return_value=1000.0)
        store = InMemoryWindowStore(window_ms=60_000, clock=clock)
        store.increment_window = Mock(side_effect=RuntimeError("disk on fire"))
        app, hits = _app(_limiter(clock, store=store))
        client = TestClient(app)

        resp = client.get("/motion/tasks")

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "rate_limit_storage_failed"
        assert hits["motion"] == 0

    def test_release_failure_keeps_the_response(self) -> None:
        clock = Mock(return_value=1000.0)
        store = InMemoryWindowStore(window_ms=60_000, clock=clock)
        store.decrement = Mock(side_effect=RuntimeError("disk on fire"))
        app, hits = _app(_limiter(clock, store=store, skip_successful_requests=True))
        client = TestClient(app)

        resp = client.get("/motion/tasks")

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "10"
        assert hits["motion"] == 1
        store.decrement.assert_called_once_with("motion:global")


class TestPolicyValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_requests": 0},
            {"window_ms": 0},
            {"path_prefix": "motion"},
        ],
    )
    def test_invalid_policy_rejected(self, kwargs: dict) -> None:
        base = {
            "name": "motion",
            "path_prefix": "/motion",
            "window_ms": 60_000,
            "max_requests": 11,
            "key_strategy": KeyStrategy.GLOBAL,
            "rejection_message": MOTION_MESSAGE,
        }
        base.update(kwargs)
        with pytest.raises(ValueError):
            RateLimitPolicy(**base)

    def test_store_window_must_match_policy(self) -> None:
        clock = Mock(return_value=1000.0)
        with pytest.raises(ValueError):
            _limiter(clock, store=InMemoryWindowStore(window_ms=1_000, clock=clock))

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("global", KeyStrategy.GLOBAL),
            ("GLOBAL", KeyStrategy.GLOBAL),
            ("per_ip", KeyStrategy.PER_IP),
            ("per-ip", KeyStrategy.PER_IP),
            ("PER_IP", KeyStrategy.PER_IP),
            (KeyStrategy.PER_IP, KeyStrategy.PER_IP),
        ],
    )
    def test_key_strategy_parse(self, raw, expected: KeyStrategy) -> None:
        assert KeyStrategy.parse(raw) == expected

    def test_key_strategy_parse_unknown(self) -> None:
        with pytest.raises(ValueError):
            KeyStrategy.parse("per_user")
