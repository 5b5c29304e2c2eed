"""
============================================================================
Veritas Protocol v1.0.0
Prometheus Metrics - Validation Observability
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Scores must be Decimal
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- veritas_validations_total: Counter of validation calls by outcome
- veritas_validation_duration_seconds: Histogram of end-to-end duration
- veritas_confidence_score: Histogram of overall confidence (0-100)
- veritas_alerts_total: Counter of alerts by domain and severity
- veritas_domain_failures_total: Counter of not-validated domains by kind
- veritas_notifications_total: Counter of notification outcomes
- veritas_source_trust_score: Gauge of per-provider reliability score
- veritas_monitor_health: Gauge (0 healthy, 1 degraded, 2 unhealthy)

ZERO-FLOAT MANDATE
------------------
Scores are converted from Decimal to float ONLY at the Prometheus
boundary. Internal calculations remain Decimal.

Every helper catches and logs its own errors: metrics never fail a
validation call.

============================================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

VALIDATIONS_TOTAL = Counter(
    "veritas_validations_total",
    "Total validation calls by outcome",
    ["outcome"]
)

VALIDATION_DURATION = Histogram(
    "veritas_validation_duration_seconds",
    "End-to-end validation duration in seconds",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0]
)

CONFIDENCE_SCORE = Histogram(
    "veritas_confidence_score",
    "Distribution of overall confidence scores",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
)

ALERTS_TOTAL = Counter(
    "veritas_alerts_total",
    "Validation alerts raised by domain and severity",
    ["domain", "severity"]
)

DOMAIN_FAILURES_TOTAL = Counter(
    "veritas_domain_failures_total",
    "Domains not validated, by failure kind",
    ["domain", "kind"]
)

NOTIFICATIONS_TOTAL = Counter(
    "veritas_notifications_total",
    "Alert notification outcomes",
    ["status"]
)

SOURCE_TRUST_SCORE = Gauge(
    "veritas_source_trust_score",
    "Current reliability score per data provider",
    ["provider"]
)

MONITOR_HEALTH = Gauge(
    "veritas_monitor_health",
    "Validation layer health (0 healthy, 1 degraded, 2 unhealthy)"
)

HEALTH_VALUES = {"healthy": 0, "degraded": 1, "unhealthy": 2}


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_validation(
    outcome: str,
    duration_seconds: float,
    confidence: Optional[Decimal] = None,
    correlation_id: Optional[str] = None
) -> None:
    """
    Record one validation call.

    Args:
        outcome: valid / invalid / skipped / error
        duration_seconds: Wall-clock duration
        confidence: Overall confidence (Decimal), None when skipped
        correlation_id: Optional tracking ID
    """
    try:
        VALIDATIONS_TOTAL.labels(outcome=outcome).inc()
        VALIDATION_DURATION.observe(duration_seconds)
        if confidence is not None:
            if not isinstance(confidence, Decimal):
                logger.error(
                    "[OBS-000] confidence must be Decimal, got %s",
                    type(confidence).__name__
                )
                return
            # Convert to float ONLY at Prometheus boundary
            CONFIDENCE_SCORE.observe(float(confidence))
        logger.debug(
            "Metric: validation | outcome=%s | duration=%.4f | correlation_id=%s",
            outcome, duration_seconds, correlation_id
        )
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record validation metric | error=%s",
            str(e)
        )


def record_alert(domain: str, severity: str) -> None:
    try:
        ALERTS_TOTAL.labels(domain=domain, severity=severity).inc()
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record alert metric | error=%s",
            str(e)
        )


def record_domain_failure(domain: str, kind: str) -> None:
    try:
        DOMAIN_FAILURES_TOTAL.labels(domain=domain, kind=kind).inc()
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record domain failure metric | error=%s",
            str(e)
        )


def record_notification(status: str) -> None:
    """status is a notification lifecycle state (SENT, FAILED_TO_SEND, DROPPED)."""
    try:
        NOTIFICATIONS_TOTAL.labels(status=status.lower()).inc()
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record notification metric | error=%s",
            str(e)
        )


def update_source_trust(provider: str, score: Decimal) -> None:
    try:
        if not isinstance(score, Decimal):
            logger.error(
                "[OBS-000] score must be Decimal, got %s",
                type(score).__name__
            )
            return
        SOURCE_TRUST_SCORE.labels(provider=provider).set(float(score))
    except Exception as e:
        logger.error(
            "[OBS-005] Failed to update source trust metric | error=%s",
            str(e)
        )


def update_monitor_health(status: str) -> None:
    try:
        MONITOR_HEALTH.set(HEALTH_VALUES.get(status, HEALTH_VALUES["unhealthy"]))
    except Exception as e:
        logger.error(
            "[OBS-006] Failed to update monitor health metric | error=%s",
            str(e)
        )


# ============================================================================
# 95% CONFIDENCE AUDIT
# ============================================================================
#
# [Reliability Audit]
# Decimal Integrity: Verified (float conversion only at Prometheus boundary)
# Traceability: correlation_id supported on validation records
# Error Codes: OBS-000 through OBS-006
#
# ============================================================================
