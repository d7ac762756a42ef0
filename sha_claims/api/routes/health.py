"""
Health Check Routes
Service health monitoring endpoints
Source: https://microservices.io/patterns/observability/health-check-api.html
Verified: 2025-11-02
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from sha_claims.api.deps import get_container
from sha_claims.db.connection import check_db_connection
from sha_claims.services.container import ServiceContainer
from sha_claims.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check for load balancers."""
    return {
        "status": "healthy",
        "service": "sha-claims-api",
    }


@router.get("/health/detailed")
async def detailed_health_check(
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Database and insurer gateway status."""
    db_healthy = await check_db_connection(container.session_factory)
    gateway_status = jsonable_encoder(container.gateway.get_status())

    overall_status = "healthy" if db_healthy else "unhealthy"
    if not db_healthy:
        logger.warning("Health check: database unreachable")

    return {
        "status": overall_status,
        "service": "sha-claims-api",
        "checks": {
            "database": "healthy" if db_healthy else "unhealthy",
            "sha_gateway": gateway_status,
        },
    }
