"""
============================================================================
Veritas Protocol - Services Layer
============================================================================

Validation orchestration, source reliability, alert lifecycle and
monitoring services.

Reliability Level: L6 Critical
============================================================================
"""

from services.veritas_models import (
    Severity,
    Domain,
    ValidationAlert,
    Discrepancy,
    DomainResult,
    ConfidenceScoreBreakdown,
    DataQualitySummary,
    VeritasErrorCode,
    VeritasInputError,
)

from services.veritas_config import (
    VeritasConfig,
    ValidationThresholds,
    get_veritas_config,
    reset_veritas_config,
)

__all__ = [
    # Models
    "Severity",
    "Domain",
    "ValidationAlert",
    "Discrepancy",
    "DomainResult",
    "ConfidenceScoreBreakdown",
    "DataQualitySummary",
    "VeritasErrorCode",
    "VeritasInputError",
    # Configuration
    "VeritasConfig",
    "ValidationThresholds",
    "get_veritas_config",
    "reset_veritas_config",
]
