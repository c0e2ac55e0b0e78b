"""Motion proxy routes.

Routes are generated from ``MOTION_ENDPOINTS``; each one hands the raw
request to ``forward`` together with the app's Motion client.
"""

from __future__ import annotations

from typing import Annotated, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from motion_proxy.adapters.motion.base import AbstractMotionClient
from motion_proxy.adapters.motion.factory import create_motion_client
from motion_proxy.services.proxy_service import MOTION_ENDPOINTS, ProxyEndpoint, forward

router = APIRouter(tags=["Motion"])


def get_motion_client(request: Request) -> AbstractMotionClient:
    """Return the app-wide Motion client, creating it on first use.

    Raises:
        UpstreamAppError: If MOTION_API_KEY is not configured.
    """
    client = getattr(request.app.state, "motion_client", None)
    if client is None:
        client = create_motion_client()
        request.app.state.motion_client = client
    return client


def _make_handler(endpoint: ProxyEndpoint) -> Callable:
    async def handler(
        request: Request,
        client: Annotated[AbstractMotionClient, Depends(get_motion_client)],
    ) -> JSONResponse:
        return await forward(endpoint, request, client)

    return handler


for _endpoint in MOTION_ENDPOINTS:
    router.add_api_route(
        _endpoint.path,
        _make_handler(_endpoint),
        methods=[_endpoint.method],
        summary=_endpoint.summary or None,
        name=f"motion_{_endpoint.method.lower()}_{_endpoint.path.strip('/').replace('/', '_')}",
        response_class=JSONResponse,
    )
