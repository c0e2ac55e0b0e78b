"""Factory for the Motion API client."""

from motion_proxy.adapters.motion.base import AbstractMotionClient
from motion_proxy.adapters.motion.httpx_client import HttpxMotionClient
from motion_proxy.core.config import MotionSettings, settings
from motion_proxy.core.errors import UpstreamAppError


def create_motion_client(motion_settings: MotionSettings | None = None) -> AbstractMotionClient:
    """Instantiate the Motion client from configuration.

    Args:
        motion_settings: Optional settings; defaults to the global settings.

    Returns:
        AbstractMotionClient: Configured client instance.

    Raises:
        UpstreamAppError: If no Motion API key is configured.
    """
    cfg = motion_settings or settings.motion

    if not cfg.api_key:
        raise UpstreamAppError(
            code="motion_missing_api_key",
            message="Motion proxy requires MOTION_API_KEY environment variable",
            details={"hint": "Set MOTION_API_KEY in the environment or .env file"},
        )

    return HttpxMotionClient(
        api_key=cfg.api_key,
        base_url=cfg.base_url,
        timeout_seconds=cfg.timeout_seconds,
    )
