"""Motion API client adapter built on httpx."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Sequence

import httpx

from motion_proxy.adapters.motion.base import AbstractMotionClient, UpstreamResponse
from motion_proxy.core.errors import UpstreamAppError

logger = logging.getLogger(__name__)


class HttpxMotionClient(AbstractMotionClient):
    """Client forwarding calls to Motion with the API key injected.

    Uses a single pooled ``httpx.AsyncClient`` for the life of the app.
    Upstream error statuses are returned, not raised; only transport
    failures raise.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.usemotion.com/v1",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async HTTP client.

        Args:
            api_key: Motion API key sent as X-API-Key.
            base_url: Motion REST base URL.
            timeout_seconds: Timeout for each upstream call.
            transport: Optional transport override (tests use MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-API-Key": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout_seconds,
            transport=transport,
        )

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | Sequence[tuple[str, Any]] | None = None,
        json: Any = None,
    ) -> UpstreamResponse:
        start = time.perf_counter()
        try:
            response = await self.client.request(
                method,
                path,
                params=params or None,
                json=json,
            )
        except httpx.TimeoutException as exc:
            logger.error(
                "motion.upstream_timeout",
                extra={"method": method, "upstream_path": path, "error_type": type(exc).__name__},
            )
            raise UpstreamAppError(
                code="upstream_timeout",
                message="Motion API did not respond in time",
                details={"method": method, "upstream_path": path},
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "motion.upstream_unreachable",
                extra={"method": method, "upstream_path": path, "error_type": type(exc).__name__},
            )
            raise UpstreamAppError(
                code="upstream_unreachable",
                message="Motion API could not be reached",
                details={"method": method, "upstream_path": path},
            ) from exc

        duration_ms = (time.perf_counter() - start) * 1000
        level = logging.WARNING if response.is_error else logging.INFO
        logger.log(
            level,
            "motion.upstream_response",
            extra={
                "method": method,
                "upstream_path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        return UpstreamResponse(status_code=response.status_code, payload=self._decode(response))

    async def aclose(self) -> None:
        await self.client.aclose()
