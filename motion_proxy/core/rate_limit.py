"""Rate limiting middleware.

This module wires the window store into the HTTP layer.

Each limiter owns its own window store and is bound to a path prefix. The
middleware hands every request to the limiter with the longest matching
prefix; requests matching no prefix pass through untouched.

Key strategies:
- GLOBAL: one shared counter for every caller of the limiter.
- PER_IP: one counter per client address.

Storage faults fail closed: the request is answered with 503 and never
reaches the route handler.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from motion_proxy.adapters.rate_limit.base import AbstractWindowStore, RateWindow
from motion_proxy.adapters.rate_limit.in_memory import InMemoryWindowStore
from motion_proxy.core.config import RateLimitSettings
from motion_proxy.core.errors import StorageAppError
from motion_proxy.core.exception_handlers import app_error_handler

logger = logging.getLogger(__name__)


class KeyStrategy(str, enum.Enum):
    GLOBAL = "global"
    PER_IP = "per_ip"

    @classmethod
    def parse(cls, value: str | KeyStrategy) -> KeyStrategy:
        """Accept enum members or case-insensitive names (``per-ip`` too)."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown rate limit key strategy: {value!r}") from exc


@dataclass(frozen=True)
class RateLimitPolicy:
    """Configuration of one limiter instance."""

    name: str
    path_prefix: str
    window_ms: int
    max_requests: int
    key_strategy: KeyStrategy
    rejection_message: str
    include_headers: bool = True
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if not self.path_prefix.startswith("/"):
            raise ValueError("path_prefix must start with '/'")


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of counting one request against a limiter.

    Attributes:
        allowed: Whether the request may proceed.
        key: Store key the request was counted under.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window ends.
        retry_after_seconds: Suggested wait when blocked, else None.
    """

    allowed: bool
    key: str
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing caller IPs."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """Return the caller address used for PER_IP keys."""
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Fixed-window limiter bound to one policy and one window store."""

    def __init__(
        self,
        policy: RateLimitPolicy,
        store: AbstractWindowStore,
        *,
        trust_proxy_headers: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if store.window_ms != policy.window_ms:
            raise ValueError("store window_ms must match policy window_ms")
        self.policy = policy
        self.store = store
        self._trust_proxy_headers = trust_proxy_headers
        self._clock = clock

    def matches(self, path: str) -> bool:
        prefix = self.policy.path_prefix.rstrip("/")
        if not prefix:
            return True
        return path == prefix or path.startswith(prefix + "/")

    def build_key(self, request: Request) -> str:
        if self.policy.key_strategy is KeyStrategy.GLOBAL:
            return f"{self.policy.name}:global"
        ip = client_ip(request, trust_proxy_headers=self._trust_proxy_headers)
        return f"{self.policy.name}:ip:{ip}"

    def _increment(self, key: str) -> RateWindow:
        try:
            return self.store.increment_window(key)
        except StorageAppError:
            raise
        except Exception as exc:
            raise StorageAppError(
                code="rate_limit_storage_failed",
                message="Rate limit storage is unavailable",
                details={"key_hash": _hash_limiter_key(key)},
            ) from exc

    def hit(self, request: Request) -> RateLimitDecision:
        """Count ``request`` and decide whether it may proceed.

        Raises:
            StorageAppError: If the window store cannot be updated.
        """
        key = self.build_key(request)
        window = self._increment(key)

        reset_at_ms = window.window_start_ms + self.policy.window_ms
        reset_at = int(math.ceil(reset_at_ms / 1000))
        limit = self.policy.max_requests

        if window.count > limit:
            now_ms = self._clock() * 1000
            retry_after = max(0, int(math.ceil((reset_at_ms - now_ms) / 1000)))
            return RateLimitDecision(
                allowed=False,
                key=key,
                limit=limit,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=retry_after,
            )

        return RateLimitDecision(
            allowed=True,
            key=key,
            limit=limit,
            remaining=limit - window.count,
            reset_at=reset_at,
            retry_after_seconds=None,
        )

    def headers(self, decision: RateLimitDecision) -> dict[str, str]:
        if not self.policy.include_headers:
            return {}
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(decision.reset_at),
        }
        if decision.retry_after_seconds is not None:
            headers["Retry-After"] = str(decision.retry_after_seconds)
        return headers

    def release(self, decision: RateLimitDecision, status_code: int) -> None:
        """Give the request back to the quota when the policy skips it."""
        succeeded = status_code < 400
        if (succeeded and self.policy.skip_successful_requests) or (
            not succeeded and self.policy.skip_failed_requests
        ):
            try:
                self.store.decrement(decision.key)
            except StorageAppError:
                raise
            except Exception as exc:
                raise StorageAppError(
                    code="rate_limit_storage_failed",
                    message="Rate limit storage is unavailable",
                    details={"key_hash": _hash_limiter_key(decision.key)},
                ) from exc

    async def handle(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Gate ``request``: reject with 429 or forward and decorate the response."""
        try:
            decision = self.hit(request)
        except StorageAppError as exc:
            logger.error(
                "rate_limit.storage_fault",
                extra={
                    "limiter": self.policy.name,
                    "error_code": exc.code,
                    "request_path": request.url.path,
                },
                exc_info=exc.__cause__ is not None,
            )
            return await app_error_handler(request, exc)

        log_extra = {
            "limiter": self.policy.name,
            "key_strategy": self.policy.key_strategy.value,
            "key_hash": _hash_limiter_key(decision.key),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_ms": self.policy.window_ms,
        }

        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
            )
            return PlainTextResponse(
                self.policy.rejection_message,
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers=self.headers(decision) or None,
            )

        logger.debug("rate_limit.allowed", extra=log_extra)

        try:
            response = await call_next(request)
        except Exception:
            # Unhandled route errors surface as 500 further out.
            self._release_quietly(decision, status.HTTP_500_INTERNAL_SERVER_ERROR)
            raise

        for name, value in self.headers(decision).items():
            response.headers[name] = value
        self._release_quietly(decision, response.status_code)
        return response

    def _release_quietly(self, decision: RateLimitDecision, status_code: int) -> None:
        """Release after the route ran; a storage fault here cannot undo the response."""
        try:
            self.release(decision, status_code)
        except StorageAppError as exc:
            logger.error(
                "rate_limit.release_failed",
                extra={
                    "limiter": self.policy.name,
                    "error_code": exc.code,
                    "key_hash": _hash_limiter_key(decision.key),
                    "status_code": status_code,
                },
                exc_info=exc.__cause__ is not None,
            )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Dispatch each request to the limiter owning its path prefix.

    Usage:
        app.add_middleware(RateLimitMiddleware, limiters=[proxy, general])
    """

    def __init__(self, app: ASGIApp, limiters: Sequence[RateLimiter]) -> None:
        super().__init__(app)
        # Longest prefix first so "/motion" wins over "/".
        self._limiters = sorted(
            limiters,
            key=lambda limiter: len(limiter.policy.path_prefix.rstrip("/")),
            reverse=True,
        )

    def select(self, path: str) -> RateLimiter | None:
        for limiter in self._limiters:
            if limiter.matches(path):
                return limiter
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        limiter = self.select(request.url.path)
        if limiter is None:
            return await call_next(request)
        return await limiter.handle(request, call_next)


def build_rate_limiters(
    cfg: RateLimitSettings,
    *,
    proxy_prefix: str = "/motion",
    clock: Callable[[], float] = time.time,
) -> list[RateLimiter]:
    """Build the proxy and general limiters described by settings.

    Each limiter gets its own explicitly constructed in-memory store.
    """

    policies = [
        RateLimitPolicy(
            name="motion",
            path_prefix=proxy_prefix,
            window_ms=cfg.proxy_window_ms,
            max_requests=cfg.proxy_max_requests,
            key_strategy=KeyStrategy.parse(cfg.proxy_key_strategy),
            rejection_message=cfg.proxy_message,
            include_headers=cfg.include_headers,
            skip_successful_requests=cfg.skip_successful_requests,
            skip_failed_requests=cfg.skip_failed_requests,
        ),
        RateLimitPolicy(
            name="general",
            path_prefix="/",
            window_ms=cfg.general_window_ms,
            max_requests=cfg.general_max_requests,
            key_strategy=KeyStrategy.parse(cfg.general_key_strategy),
            rejection_message=cfg.general_message,
            include_headers=cfg.include_headers,
            skip_successful_requests=cfg.skip_successful_requests,
            skip_failed_requests=cfg.skip_failed_requests,
        ),
    ]

    return [
        RateLimiter(
            policy,
            InMemoryWindowStore(window_ms=policy.window_ms, clock=clock),
            trust_proxy_headers=cfg.trust_proxy_headers,
            clock=clock,
        )
        for policy in policies
    ]


def reset_rate_limits(app: FastAPI) -> None:
    """Clear every window tracked by the app's limiters.

    Administrative and test hook; not routed over HTTP.
    """

    limiters: Sequence[RateLimiter] = getattr(app.state, "rate_limiters", ())
    for limiter in limiters:
        limiter.store.reset_all()
    logger.info("rate_limit.reset_all", extra={"limiters": [limiter.policy.name for limiter in limiters]})
