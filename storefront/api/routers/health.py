"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from storefront import __version__
from storefront.api.deps import require_admin
from storefront.utils.logger import get_logger

logger = get_logger("health")

router = APIRouter(prefix="/api", tags=["health"])


def _component_status(request: Request) -> dict:
    status = {"service": "healthy", "database": "unknown", "cache": "unknown"}

    try:
        request.app.state.db.ping()
        status["database"] = "healthy"
    except SQLAlchemyError as e:
        logger.error("health: database check failed error=%s", e)
        status["database"] = "unhealthy"
        status["service"] = "degraded"

    cache = request.app.state.cache
    if not cache.enabled:
        status["cache"] = "disabled"
    elif cache.ping():
        status["cache"] = "healthy"
    else:
        # The cache is optional; a dead Redis does not degrade the service
        status["cache"] = "unhealthy"

    return status


@router.get("/health")
def health_check(request: Request):
    """Detailed health check including database and cache connectivity."""
    return _component_status(request)


@router.get("/admin/system/health", dependencies=[Depends(require_admin)])
def system_health(request: Request):
    """Component status plus in-process request metrics."""
    return {
        "success": True,
        "version": __version__,
        "environment": request.app.state.config.env,
        **_component_status(request),
        "metrics": request.app.state.metrics.get_summary(),
    }
