"""HTTP middleware for request ID propagation, access logging and security headers.

Every request/response pair carries a correlation ID:
- An incoming X-Request-ID header (name configurable) is reused, otherwise
  a UUID is generated
- The ID lives in a context var for the duration of the request so every
  log line, including rate-limit and upstream events, carries it
- The ID and total duration are echoed back in response headers

Usage:
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(security_headers_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from motion_proxy.core.config import settings
from motion_proxy.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation ID to the request and log its completion.

    Registered last so it wraps the rate limiter: throttled (429) and
    fail-closed (503) responses carry the ID as well.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with X-Request-ID and
            X-Request-Duration-ms headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request_completed",
            extra={
                "method": request.method,
                "route": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


SECURITY_HEADERS: dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


async def security_headers_middleware(request: Request, call_next) -> Response:
    """Add the usual browser hardening headers without overriding route-set ones."""
    response: Response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response
