"""Motion adapter layer - the only code that talks to the upstream API."""

from motion_proxy.adapters.motion.base import AbstractMotionClient, UpstreamResponse
from motion_proxy.adapters.motion.factory import create_motion_client
from motion_proxy.adapters.motion.httpx_client import HttpxMotionClient

__all__ = [
    "AbstractMotionClient",
    "HttpxMotionClient",
    "UpstreamResponse",
    "create_motion_client",
]
