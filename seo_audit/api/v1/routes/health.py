"""Health check endpoints for load balancer and monitoring."""

from fastapi import APIRouter
from pydantic import BaseModel
from redis.exceptions import RedisError

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    checks: dict[str, str]


@router.get("", response_model=HealthResponse, include_in_schema=False)
async def health_check() -> HealthResponse:
    from seo_audit.core.config import get_settings
    settings = get_settings()

    checks: dict[str, str] = {"progress_store": settings.PROGRESS_BACKEND}

    if settings.PROGRESS_BACKEND == "redis":
        try:
            from seo_audit.core.redis import get_redis_client
            redis = get_redis_client()
            await redis.ping()
            checks["redis"] = "healthy"
        except (RedisError, OSError) as e:
            checks["redis"] = f"unhealthy: {str(e)}"

    overall = "healthy" if all("unhealthy" not in v for v in checks.values()) else "degraded"

    return HealthResponse(
        status=overall,
        version=settings.APP_VERSION,
        checks=checks,
    )


@router.get("/ready", include_in_schema=False)
async def readiness() -> dict:
    """Kubernetes readiness check."""
    return {"ready": True}


@router.get("/live", include_in_schema=False)
async def liveness() -> dict:
    """Kubernetes liveness check."""
    return {"alive": True}
