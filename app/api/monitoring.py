"""
============================================================================
Veritas Protocol v1.0.0
Monitoring API - Read-Only Dashboard Queries
============================================================================

Reliability Level: L5 High
Input Constraints: None
Side Effects: None (read-only)

ENDPOINTS:
- GET /api/veritas/metrics     - Ring-buffer aggregates, active rules, health
- GET /api/veritas/reliability - Per-provider trust scores

============================================================================
"""

import logging
from typing import Dict, Any

from fastapi import APIRouter, Depends, Query

from services.validation_orchestrator import (
    ValidationOrchestrator,
    get_validation_orchestrator,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Validation Metrics Dashboard",
    description=(
        "Returns `{aggregatedMetrics, activeAlerts, recentValidations, healthStatus}` "
        "computed from the in-process ring buffer (last hour)."
    ),
)
def get_validation_metrics(
    recent: int = Query(default=20, ge=0, le=1000, description="Recent validations to include"),
    orchestrator: ValidationOrchestrator = Depends(get_validation_orchestrator),
) -> Dict[str, Any]:
    return orchestrator.monitor.dashboard(recent_limit=recent)


@router.get(
    "/reliability",
    summary="Source Reliability Summary",
    description="Current trust score and weight for every known provider.",
)
def get_reliability_summary(
    orchestrator: ValidationOrchestrator = Depends(get_validation_orchestrator),
) -> Dict[str, Any]:
    summary = orchestrator.tracker.get_summary()
    logger.info(
        f"[VERITAS-API] GET /reliability | "
        f"sources={summary['total_sources']}"
    )
    return summary
