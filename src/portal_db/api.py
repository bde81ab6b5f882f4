"""
Database pool health API

Exposes pool metrics for the portal's monitoring dashboard and a Prometheus
scrape endpoint.
"""

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response

from portal_db.database import get_pool_metrics
from portal_db.observability import get_metrics_payload

logger: logging.Logger = logging.getLogger(__name__)

router: APIRouter = APIRouter(prefix="/api/database", tags=["database"])

# Below this share of healthy connections the pool reports "degraded"
HEALTHY_SCORE_THRESHOLD: float = 50.0


@router.get("/pool-health")
async def pool_health() -> dict[str, Any]:
    """
    Get connection pool health statistics.

    Returns pool metrics including connection counts, query timings,
    error rate and the latest security findings.
    """
    metrics = get_pool_metrics()

    if metrics is None:
        return {
            "status": "disabled",
            "message": "Connection pool is not initialized"
        }

    degraded = (
        metrics.performance.health_score < HEALTHY_SCORE_THRESHOLD
        or metrics.security.suspicious_activity > 0
    )
    if degraded:
        logger.warning(
            f"Pool degraded: health_score={metrics.performance.health_score}, "
            f"suspicious_activity={metrics.security.suspicious_activity}"
        )

    return {
        "status": "degraded" if degraded else "healthy",
        "pool": metrics.to_dict(),
    }


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """Prometheus exposition of the pool metrics."""
    payload, content_type = get_metrics_payload()
    return Response(content=payload, media_type=content_type)
