"""Required-parameter checks for proxied requests.

Pure functions raising ValidationAppError so they can be exercised without
a running app. A parameter counts as missing when it is absent, None, or
an empty string.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from motion_proxy.core.errors import ValidationAppError


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def require_query_params(query: Mapping[str, Any], params: Iterable[str]) -> None:
    """Ensure every name in ``params`` is present in the query string.

    Raises:
        ValidationAppError: On the first missing parameter.
    """
    for param in params:
        if _is_missing(query.get(param)):
            raise ValidationAppError(
                code="missing_query_param",
                message=f"{param} is required in query parameters",
                details={"param": param, "location": "query"},
            )


def require_body_params(body: Mapping[str, Any], params: Iterable[str]) -> None:
    """Ensure every name in ``params`` is present in the JSON body.

    Raises:
        ValidationAppError: On the first missing parameter.
    """
    for param in params:
        if _is_missing(body.get(param)):
            raise ValidationAppError(
                code="missing_body_param",
                message=f"{param} is required in request body",
                details={"param": param, "location": "body"},
            )
