from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/")
@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service
    health. Never calls Motion.

    Returns:
        dict: ``status`` set to "healthy" and the current UTC timestamp.
    """

    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
