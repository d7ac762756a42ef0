"""
SHA Reconciliation API Endpoints.

Runs the reconciliation sweep on demand; Celery beat runs it periodically.
"""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends

from sha_claims.api.deps import TokenClaims, get_container, require_claims_manager
from sha_claims.schemas.common import ok
from sha_claims.services.container import ServiceContainer
from sha_claims.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/sha-reconciliation",
    tags=["sha-reconciliation"],
)


@router.post("/run")
async def run_reconciliation(
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    logger.info(f"Manual reconciliation requested by {user.user_id}")
    report = await container.reconciliation.reconcile()
    return ok(
        asdict(report),
        f"{report.claims_advanced} claims advanced, {report.logs_recovered} submissions recovered",
    )
