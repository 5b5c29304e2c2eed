"""
============================================================================
Veritas Protocol v1.0.0
Alert Review API - Human Review of Fatal Alerts
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: X-Veritas-Admin-Token header on every endpoint
Side Effects: Review status updates in the review store

ENDPOINTS:
- GET  /api/veritas/alerts/pending            - Fatal alerts awaiting review
- GET  /api/veritas/alerts/statistics         - Counts by status/severity/domain
- POST /api/veritas/alerts/{alert_id}/review  - Mark an alert reviewed

ERROR CODES:
- SEC-001: Missing admin token (401)
- SEC-090: Invalid token, or no VERITAS_ADMIN_TOKEN configured (403)
- VER-051: Alert already reviewed (409)
- SYS-404: Unknown alert id (404)
- SYS-503: Review store unavailable (503)

LIFECYCLE:
    pending_review -> reviewed (terminal)

============================================================================
"""

import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from app.schemas.validation import ReviewRequest
from services.alert_review_store import AlertNotFoundError
from services.validation_orchestrator import (
    ValidationOrchestrator,
    get_validation_orchestrator,
)
from services.veritas_config import VeritasConfig, get_veritas_config
from services.veritas_models import AlertTransitionError, VeritasErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, error_code: str, message: str,
           correlation_id: Optional[str] = None) -> HTTPException:
    detail = {
        "error_code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if correlation_id is not None:
        detail["correlation_id"] = correlation_id
    return HTTPException(status_code=status_code, detail=detail)


# ============================================================================
# Authentication Dependency
# ============================================================================

def get_config() -> VeritasConfig:
    return get_veritas_config()


def require_admin_token(
    x_veritas_admin_token: Optional[str] = Header(default=None),
    config: VeritasConfig = Depends(get_config),
) -> str:
    """
    Check the X-Veritas-Admin-Token header against VERITAS_ADMIN_TOKEN.

    Reliability Level: SOVEREIGN TIER
    Side Effects: Logs rejected attempts

    Raises:
        HTTPException: 401 SEC-001 if the header is missing
        HTTPException: 403 SEC-090 if it does not match, or no token is configured
    """
    if not x_veritas_admin_token:
        logger.warning("[SEC-001] Missing X-Veritas-Admin-Token header")
        raise _error(401, "SEC-001", "X-Veritas-Admin-Token header required")

    if config.admin_token is None:
        logger.warning("[SEC-090] Review endpoints disabled: VERITAS_ADMIN_TOKEN not set")
        raise _error(403, "SEC-090", "Review endpoints are disabled (no admin token configured)")

    if not hmac.compare_digest(x_veritas_admin_token, config.admin_token):
        logger.warning("[SEC-090] Invalid admin token")
        raise _error(403, "SEC-090", "Invalid admin token")

    return x_veritas_admin_token


def get_review_store(
    orchestrator: ValidationOrchestrator = Depends(get_validation_orchestrator),
) -> Any:
    store = orchestrator.review_store
    if store is None:
        raise _error(503, "SYS-503", "Alert review store is not configured")
    return store


# ============================================================================
# Endpoints
# ============================================================================

@router.get(
    "/pending",
    summary="Pending Alert Reviews",
    description="Fatal alerts awaiting human review, newest first.",
    responses={
        401: {"description": "Missing admin token (SEC-001)"},
        403: {"description": "Invalid admin token (SEC-090)"},
    },
)
def get_pending_reviews(
    limit: int = Query(default=100, ge=1, le=1000),
    _token: str = Depends(require_admin_token),
    store: Any = Depends(get_review_store),
) -> List[Dict[str, Any]]:
    try:
        records = store.get_pending_reviews(limit=limit)
    except Exception as e:
        logger.error(f"[{VeritasErrorCode.PERSISTENCE_FAILED}] GET /alerts/pending failed: {str(e)}")
        raise _error(500, "SYS-500", f"Failed to retrieve pending reviews: {str(e)}")

    logger.info(f"[VERITAS-API] GET /alerts/pending returned {len(records)} alerts")
    return [r.to_dict() for r in records]


@router.get(
    "/statistics",
    summary="Alert Review Statistics",
    responses={
        401: {"description": "Missing admin token (SEC-001)"},
        403: {"description": "Invalid admin token (SEC-090)"},
    },
)
def get_review_statistics(
    _token: str = Depends(require_admin_token),
    store: Any = Depends(get_review_store),
) -> Dict[str, Any]:
    try:
        return store.get_statistics()
    except Exception as e:
        logger.error(f"[{VeritasErrorCode.PERSISTENCE_FAILED}] GET /alerts/statistics failed: {str(e)}")
        raise _error(500, "SYS-500", f"Failed to compute review statistics: {str(e)}")


@router.post(
    "/{alert_id}/review",
    summary="Mark Alert Reviewed",
    description="Moves a fatal alert from pending_review to reviewed (terminal).",
    responses={
        401: {"description": "Missing admin token (SEC-001)"},
        403: {"description": "Invalid admin token (SEC-090)"},
        404: {"description": "Unknown alert id"},
        409: {"description": "Alert already reviewed (VER-051)"},
    },
)
def review_alert(
    alert_id: str,
    request: ReviewRequest,
    _token: str = Depends(require_admin_token),
    store: Any = Depends(get_review_store),
) -> Dict[str, Any]:
    correlation_id = str(uuid.uuid4())

    logger.info(
        f"[VERITAS-API] POST /alerts/{alert_id}/review | "
        f"reviewer={request.reviewer} | "
        f"correlation_id={correlation_id}"
    )

    try:
        record = store.mark_reviewed(alert_id, request.reviewer, request.notes)
        return record.to_dict()

    except AlertNotFoundError:
        raise _error(404, "SYS-404", f"Alert '{alert_id}' not found", correlation_id)
    except AlertTransitionError as e:
        raise _error(409, VeritasErrorCode.INVALID_TRANSITION, str(e), correlation_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Review update failed: {str(e)} | "
            f"alert_id={alert_id} | "
            f"correlation_id={correlation_id}"
        )
        raise _error(500, "SYS-500", f"Failed to review alert: {str(e)}", correlation_id)
