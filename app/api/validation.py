"""
============================================================================
Veritas Protocol v1.0.0
Validation API - Cross-Source Validation Endpoint
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: ValidationRequest JSON body
Side Effects: Reliability updates, metrics, alert dispatch (side channel)

ENDPOINTS:
- POST /api/veritas/validate - Validate one symbol's domain dataset

ERROR CODES:
- VER-001: Malformed input (422)
- SYS-500: Internal error (500)

Domain-level failures (timeouts, validator errors, impossibilities) never
surface as HTTP errors; they are reported inside the 200 response body.

============================================================================
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from fastapi import APIRouter, Depends, HTTPException

from app.schemas.validation import ValidationRequest
from services.validation_orchestrator import (
    ValidationOrchestrator,
    get_validation_orchestrator,
)
from services.veritas_models import VeritasErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/validate",
    summary="Validate Domain Dataset",
    description=(
        "Cross-checks market, social and on-chain data for one symbol.\n\n"
        "**Best-effort:** domain timeouts and errors mark the domain as "
        "not validated; the call itself still succeeds.\n\n"
        "**Feature flag:** when ENABLE_VERITAS_PROTOCOL=false the input is "
        "returned unvalidated with `validationSkipped: true`."
    ),
    responses={
        200: {"description": "Validation report"},
        422: {"description": "Malformed input (VER-001)"},
        500: {"description": "Internal server error"},
    },
)
async def validate_dataset(
    request: ValidationRequest,
    orchestrator: ValidationOrchestrator = Depends(get_validation_orchestrator),
) -> Dict[str, Any]:
    """
    Validate one symbol's already-collected data.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: Non-blank symbol
    Side Effects: See module docstring

    Returns:
        ValidationResult.to_dict() (camelCase keys)
    """
    correlation_id = str(uuid.uuid4())

    logger.info(
        f"[VERITAS-API] POST /validate | "
        f"symbol={request.symbol} | "
        f"correlation_id={correlation_id}"
    )

    try:
        dataset = request.to_dataset()
        options = request.to_options()
        result = await orchestrator.validate(
            request.symbol, dataset, options, correlation_id
        )
        return result.to_dict()

    except ValueError as e:
        # VeritasInputError and dataset construction errors
        logger.warning(
            f"[{VeritasErrorCode.INVALID_INPUT}] POST /validate rejected: {str(e)} | "
            f"correlation_id={correlation_id}"
        )
        raise HTTPException(
            status_code=422,
            detail={
                "error_code": VeritasErrorCode.INVALID_INPUT,
                "message": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "correlation_id": correlation_id,
            }
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            f"[VERITAS-API] POST /validate failed: {str(e)} | "
            f"correlation_id={correlation_id}"
        )
        raise HTTPException(
            status_code=500,
            detail={
                "error_code": "SYS-500",
                "message": f"Validation failed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "correlation_id": correlation_id,
            }
        )
