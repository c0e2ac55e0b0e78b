"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated apps with their own clock and Motion client.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from motion_proxy.adapters.motion.base import AbstractMotionClient
from motion_proxy.api.routes import health_router, motion_router
from motion_proxy.core.config import settings
from motion_proxy.core.exception_handlers import setup_exception_handlers
from motion_proxy.core.logging import configure_logging
from motion_proxy.core.middleware import request_id_middleware, security_headers_middleware
from motion_proxy.core.openapi import apply_openapi_customizations
from motion_proxy.core.rate_limit import RateLimitMiddleware, build_rate_limiters

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    client: AbstractMotionClient | None = getattr(app.state, "motion_client", None)
    if client is not None:
        await client.aclose()


def create_app(
    motion_client: AbstractMotionClient | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        motion_client: Optional Motion client; built lazily from settings
            on the first proxied request when omitted.
        clock: Time source for the rate limiters (UNIX seconds).

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Motion Proxy API",
        description=(
            "Backend proxy for the Motion task-management API. Injects the "
            "Motion API key, validates required parameters and throttles "
            "outbound calls with a shared rate limiter."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    app.state.motion_client = motion_client

    proxy_prefix = settings.motion.route_prefix
    rate_cfg = settings.rate_limit

    # Middleware: added first = innermost, so request ids wrap rate limiting
    app.state.rate_limiters = []
    if rate_cfg.enabled:
        limiters = build_rate_limiters(rate_cfg, proxy_prefix=proxy_prefix, clock=clock)
        app.state.rate_limiters = limiters
        app.add_middleware(RateLimitMiddleware, limiters=limiters)
    app.middleware("http")(request_id_middleware)
    if settings.app.security_headers:
        app.middleware("http")(security_headers_middleware)
    # CORS is the outermost layer; 429 and 503 responses carry its headers too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials="*" not in settings.app.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
            settings.log.request_id_header,
        ],
    )

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(motion_router, prefix=proxy_prefix)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.created",
        extra={
            "proxy_prefix": proxy_prefix,
            "rate_limiters": [
                {
                    "name": limiter.policy.name,
                    "prefix": limiter.policy.path_prefix,
                    "max_requests": limiter.policy.max_requests,
                    "window_ms": limiter.policy.window_ms,
                    "key_strategy": limiter.policy.key_strategy.value,
                }
                for limiter in app.state.rate_limiters
            ],
        },
    )

    return app
