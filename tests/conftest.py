"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import of the settings module.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("MOTION_API_KEY", "test-motion-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")

from typing import Any

import pytest

from motion_proxy.adapters.motion.base import AbstractMotionClient, UpstreamResponse


class FakeMotionClient(AbstractMotionClient):
    """Records upstream calls and answers with a canned response."""

    def __init__(self, response: UpstreamResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or UpstreamResponse(status_code=200, payload={"ok": True})
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def request(self, method, path, *, params=None, json=None) -> UpstreamResponse:
        self.calls.append({"method": method, "path": path, "params": list(params or []), "json": json})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_motion() -> FakeMotionClient:
    return FakeMotionClient()
