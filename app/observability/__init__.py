"""
============================================================================
Veritas Protocol v1.0.0
Observability Module - Prometheus Metrics
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: None
Side Effects: Exposes Prometheus metrics

============================================================================
"""

from app.observability.metrics import (
    VALIDATIONS_TOTAL,
    VALIDATION_DURATION,
    CONFIDENCE_SCORE,
    ALERTS_TOTAL,
    DOMAIN_FAILURES_TOTAL,
    NOTIFICATIONS_TOTAL,
    SOURCE_TRUST_SCORE,
    MONITOR_HEALTH,
    record_validation,
    record_alert,
    record_domain_failure,
    record_notification,
    update_source_trust,
    update_monitor_health,
)

__all__ = [
    "VALIDATIONS_TOTAL",
    "VALIDATION_DURATION",
    "CONFIDENCE_SCORE",
    "ALERTS_TOTAL",
    "DOMAIN_FAILURES_TOTAL",
    "NOTIFICATIONS_TOTAL",
    "SOURCE_TRUST_SCORE",
    "MONITOR_HEALTH",
    "record_validation",
    "record_alert",
    "record_domain_failure",
    "record_notification",
    "update_source_trust",
    "update_monitor_health",
]
