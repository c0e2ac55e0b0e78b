"""OpenAPI customization utilities.

Enriches the generated schema with:
- Tags metadata
- A shared ``RateLimited`` (429) response attached to every operation,
  documenting the plain-text body and X-RateLimit-* headers

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": "Requests allowed per window.",
    "X-RateLimit-Remaining": "Requests left in the current window.",
    "X-RateLimit-Reset": "UNIX epoch seconds when the current window ends.",
    "Retry-After": "Seconds to wait before retrying (429 only).",
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and the 429 response."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        responses = components.setdefault("responses", {})
        responses.setdefault(
            "RateLimited",
            {
                "description": "Quota exhausted for the current window.",
                "content": {"text/plain": {"schema": {"type": "string"}}},
                "headers": {
                    name: {"description": text, "schema": {"type": "integer"}}
                    for name, text in _RATE_LIMIT_HEADERS.items()
                },
            },
        )

        for methods in schema.get("paths", {}).values():
            for operation in methods.values():
                if isinstance(operation, dict):
                    operation.setdefault("responses", {}).setdefault(
                        "429", {"$ref": "#/components/responses/RateLimited"}
                    )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Motion",
                "description": "Pass-through endpoints forwarded to the Motion API.",
            },
            {
                "name": "Health",
                "description": "Liveness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
