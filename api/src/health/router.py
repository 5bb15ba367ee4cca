"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import ORJSONResponse

from src.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> ORJSONResponse:
    """Readiness probe - the comment service needs Cassandra; Redis is optional."""
    settings = get_settings()
    state = request.app.state
    checks: dict[str, Any] = {
        "cassandra": getattr(state, "cassandra_session", None) is not None,
        "redis": getattr(state, "redis", None) is not None,
        "comment_service": getattr(state, "comment_service", None) is not None,
    }
    ready = checks["cassandra"] and checks["comment_service"]
    return ORJSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "environment": settings.environment,
            "checks": checks,
        },
    )


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
