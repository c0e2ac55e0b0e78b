from __future__ import annotations

from motion_proxy.api.routes.health import router as health_router
from motion_proxy.api.routes.motion import router as motion_router

__all__ = ["health_router", "motion_router"]
