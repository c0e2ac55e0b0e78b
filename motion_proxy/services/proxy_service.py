"""Request forwarding to the Motion API.

Every proxied route is one row in ``MOTION_ENDPOINTS``; a single function,
``forward``, validates the inbound request against its row, shapes the
upstream query and body, and relays Motion's answer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import JSONResponse

from motion_proxy.adapters.motion.base import AbstractMotionClient
from motion_proxy.core.errors import UpstreamAppError, ValidationAppError
from motion_proxy.core.param_validation import require_body_params, require_query_params

logger = logging.getLogger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH"}


@dataclass(frozen=True)
class ProxyEndpoint:
    """One proxied route.

    Attributes:
        method: HTTP method, shared by the inbound route and the upstream call.
        path: Inbound path relative to the proxy prefix, FastAPI syntax.
        upstream_path: Motion path template; placeholders match ``path``.
        required_query: Query parameters that must be present.
        required_body: JSON body fields that must be present.
        query_from_body: Body fields copied into the upstream query string.
        failure_message: Error text used when Motion gives no error body.
        summary: Short OpenAPI summary.
    """

    method: str
    path: str
    upstream_path: str
    failure_message: str
    required_query: tuple[str, ...] = ()
    required_body: tuple[str, ...] = ()
    query_from_body: tuple[str, ...] = ()
    summary: str = ""

    @property
    def name(self) -> str:
        return f"{self.method} {self.path}"

    def upstream_url(self, path_params: dict[str, Any]) -> str:
        return self.upstream_path.format(
            **{name: quote(str(value), safe="") for name, value in path_params.items()}
        )


WORKSPACE = ("workspaceId",)

MOTION_ENDPOINTS: tuple[ProxyEndpoint, ...] = (
    # Tasks
    ProxyEndpoint("GET", "/tasks", "/tasks", "Failed to fetch tasks from Motion API",
                  required_query=WORKSPACE, summary="List tasks"),
    ProxyEndpoint("POST", "/tasks", "/tasks", "Failed to create task",
                  required_body=("name", "workspaceId"), query_from_body=WORKSPACE,
                  summary="Create a task"),
    ProxyEndpoint("GET", "/tasks/{taskId}", "/tasks/{taskId}", "Failed to retrieve task",
                  required_query=WORKSPACE, summary="Retrieve a task"),
    ProxyEndpoint("PATCH", "/tasks/{taskId}", "/tasks/{taskId}", "Failed to update task",
                  required_body=WORKSPACE, query_from_body=WORKSPACE, summary="Update a task"),
    ProxyEndpoint("DELETE", "/tasks/{taskId}", "/tasks/{taskId}", "Failed to delete task",
                  required_query=WORKSPACE, summary="Delete a task"),
    ProxyEndpoint("DELETE", "/tasks/{taskId}/unassign", "/tasks/{taskId}/unassign",
                  "Failed to unassign task", summary="Unassign a task"),
    # Recurring tasks
    ProxyEndpoint("GET", "/recurring-tasks", "/recurring-tasks",
                  "Failed to fetch recurring tasks", required_query=WORKSPACE,
                  summary="List recurring tasks"),
    ProxyEndpoint("POST", "/recurring-tasks", "/recurring-tasks",
                  "Failed to create recurring task", required_query=WORKSPACE,
                  summary="Create a recurring task"),
    ProxyEndpoint("DELETE", "/recurring-tasks/{taskId}", "/recurring-tasks/{taskId}",
                  "Failed to delete recurring task", required_query=WORKSPACE,
                  summary="Delete a recurring task"),
    # Comments
    ProxyEndpoint("GET", "/comments", "/comments", "Failed to fetch comments",
                  summary="List comments"),
    ProxyEndpoint("POST", "/comments", "/comments", "Failed to create comment",
                  summary="Create a comment"),
    # Projects
    ProxyEndpoint("GET", "/projects", "/projects", "Failed to fetch projects",
                  required_query=WORKSPACE, summary="List projects"),
    ProxyEndpoint("POST", "/projects", "/projects", "Failed to create project",
                  required_body=WORKSPACE, summary="Create a project"),
    ProxyEndpoint("GET", "/projects/{projectId}", "/projects/{projectId}",
                  "Failed to retrieve project", required_query=WORKSPACE,
                  summary="Retrieve a project"),
    # Users
    ProxyEndpoint("GET", "/users", "/users", "Failed to fetch users", summary="List users"),
    ProxyEndpoint("GET", "/users/me", "/users/me", "Failed to fetch current user",
                  required_query=WORKSPACE, summary="Current user"),
    # Schedules
    ProxyEndpoint("GET", "/schedules", "/schedules", "Failed to fetch schedules",
                  summary="List schedules"),
)


async def _read_json_body(request: Request) -> Any:
    """Decode the inbound JSON body; an empty body reads as ``{}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationAppError(
            code="invalid_json_body",
            message="Request body must be valid JSON",
        ) from exc


def _build_query(
    endpoint: ProxyEndpoint,
    request: Request,
    body: Any,
) -> list[tuple[str, str]]:
    """Inbound query pairs plus body fields the endpoint lifts into the query."""
    lifted = {
        name: str(body[name])
        for name in endpoint.query_from_body
        if isinstance(body, dict) and body.get(name) not in (None, "")
    }
    pairs = [(k, v) for k, v in request.query_params.multi_items() if k not in lifted]
    pairs.extend(lifted.items())
    return pairs


async def forward(
    endpoint: ProxyEndpoint,
    request: Request,
    client: AbstractMotionClient,
) -> JSONResponse:
    """Validate ``request`` against ``endpoint`` and relay it to Motion.

    Args:
        endpoint: Route description.
        request: Inbound request.
        client: Motion client used for the upstream call.

    Returns:
        JSONResponse: 200 with Motion's payload on success; Motion's status
            with ``{"error": ...}`` when Motion answers with an error.

    Raises:
        ValidationAppError: Missing required parameters or malformed body.
        UpstreamAppError: Motion could not be reached.
    """
    require_query_params(request.query_params, endpoint.required_query)

    body: Any = None
    if endpoint.method in _BODY_METHODS:
        body = await _read_json_body(request)
        if endpoint.required_body or endpoint.query_from_body:
            if not isinstance(body, dict):
                raise ValidationAppError(
                    code="invalid_json_body",
                    message="Request body must be a JSON object",
                )
            require_body_params(body, endpoint.required_body)

    upstream_path = endpoint.upstream_url(request.path_params)
    params = _build_query(endpoint, request, body)

    try:
        upstream = await client.request(
            endpoint.method,
            upstream_path,
            params=params,
            json=body,
        )
    except UpstreamAppError as exc:
        raise UpstreamAppError(
            code=exc.code,
            message=endpoint.failure_message,
            details=exc.details,
        ) from exc

    if upstream.is_error:
        logger.warning(
            "motion.proxy_error",
            extra={
                "endpoint": endpoint.name,
                "status_code": upstream.status_code,
                "has_upstream_body": upstream.payload not in (None, ""),
            },
        )
        error = upstream.payload if upstream.payload not in (None, "") else endpoint.failure_message
        return JSONResponse(status_code=upstream.status_code, content={"error": error})

    return JSONResponse(status_code=200, content=upstream.payload)
