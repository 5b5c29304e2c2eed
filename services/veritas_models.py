"""
============================================================================
Veritas Protocol - Validation Data Models
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All scores use decimal.Decimal with ROUND_HALF_EVEN
Traceability: Alerts carry symbol and correlation-friendly identifiers

This module defines the value objects shared by every validator:
- Severity / Domain / ValidationErrorKind enums
- ValidationAlert and Discrepancy (immutable once emitted)
- DomainResult (one validator's output)
- DataQualitySummary and ConfidenceScoreBreakdown (per-call value objects)

ERROR CODES:
    - VER-001: Invalid validation input
    - VER-010: Domain validation timed out
    - VER-011: Domain validator raised
    - VER-020: Secondary provider unavailable
    - VER-030: Logical impossibility detected
    - VER-031: Cross-source inconsistency detected
    - VER-040: Configuration invalid
    - VER-050: Notification delivery failed
    - VER-051: Invalid alert lifecycle transition
    - VER-060: Persistence failure

============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
import uuid


# =============================================================================
# Constants
# =============================================================================

# Decimal precision for quality and confidence scores
PRECISION_SCORE = Decimal("0.01")

SCORE_MIN = Decimal("0")
SCORE_MAX = Decimal("100")


def clamp_score(value: Decimal) -> Decimal:
    """Clamp to [0, 100] and quantize to 2 places."""
    bounded = max(SCORE_MIN, min(SCORE_MAX, value))
    return bounded.quantize(PRECISION_SCORE, rounding=ROUND_HALF_EVEN)


# =============================================================================
# Error Codes
# =============================================================================

class VeritasErrorCode:
    """Veritas-specific error codes for audit logging."""
    INVALID_INPUT = "VER-001"
    DOMAIN_TIMEOUT = "VER-010"
    VALIDATOR_ERROR = "VER-011"
    PROVIDER_UNAVAILABLE = "VER-020"
    IMPOSSIBILITY = "VER-030"
    INCONSISTENCY = "VER-031"
    CONFIG_INVALID = "VER-040"
    NOTIFICATION_FAILED = "VER-050"
    INVALID_TRANSITION = "VER-051"
    PERSISTENCE_FAILED = "VER-060"


# =============================================================================
# Exceptions
# =============================================================================

class VeritasInputError(ValueError):
    """
    Raised for malformed validation input (e.g., missing symbol).

    This is the only error validate() lets escape to the caller.
    """

    def __init__(self, message: str, error_code: str = VeritasErrorCode.INVALID_INPUT):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class CrossCheckUnavailableError(Exception):
    """Raised by secondary sentiment providers that cannot produce an estimate."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        self.error_code = VeritasErrorCode.PROVIDER_UNAVAILABLE
        super().__init__(f"[{self.error_code}] {provider} unavailable: {reason}")


class AlertTransitionError(Exception):
    """Raised when an alert lifecycle transition is not allowed."""

    def __init__(self, current_state: str, target_state: str):
        self.current_state = current_state
        self.target_state = target_state
        self.error_code = VeritasErrorCode.INVALID_TRANSITION
        super().__init__(
            f"[{self.error_code}] Invalid alert transition: "
            f"{current_state} -> {target_state}"
        )


# =============================================================================
# Enums
# =============================================================================

class Severity(Enum):
    """
    Alert severity levels.

    Only FATAL discards data and requires human review.
    """
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_penalizing(self) -> bool:
        """Warnings and errors cost quality; info does not; fatal zeroes it."""
        return self in (Severity.WARNING, Severity.ERROR)


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.FATAL: 3,
}


class Domain(Enum):
    """Scored validation domains."""
    MARKET = "market"
    SOCIAL = "social"
    ONCHAIN = "onchain"


# Canonical evaluation order; also the denominator for overall confidence
SCORED_DOMAINS: Tuple[Domain, ...] = (Domain.MARKET, Domain.SOCIAL, Domain.ONCHAIN)


class ValidationErrorKind(Enum):
    """Error taxonomy for validation outcomes."""
    TIMEOUT = "timeout"
    PROVIDER_UNAVAILABLE = "provider-unavailable"
    IMPOSSIBILITY = "impossibility"
    INCONSISTENCY = "inconsistency"
    NOTIFICATION_FAILURE = "notification-failure"


class DomainStatus(Enum):
    """Outcome of a single domain's validation."""
    VALIDATED = "validated"
    NOT_VALIDATED = "not_validated"
    DISCARDED = "discarded"


# =============================================================================
# Alerts and Discrepancies
# =============================================================================

@dataclass(frozen=True)
class Discrepancy:
    """
    A specific numeric/logical mismatch between two sources.

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    metric: str
    source_a: str
    value_a: Decimal
    source_b: str
    value_b: Decimal
    delta: Decimal
    threshold: Decimal
    exceeded: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "source_a": self.source_a,
            "value_a": str(self.value_a),
            "source_b": self.source_b,
            "value_b": str(self.value_b),
            "delta": str(self.delta),
            "threshold": str(self.threshold),
            "exceeded": self.exceeded,
        }


@dataclass(frozen=True)
class ValidationAlert:
    """
    Alert emitted by a validator.

    ============================================================================
    FIELDS:
    ============================================================================
    - severity: info / warning / error / fatal
    - domain: Domain that raised the alert
    - message: Human-readable description
    - affected_sources: Providers involved
    - recommendation: Suggested handling for downstream consumers
    - error_kind: Taxonomy classification (None for informational notes)
    - discrepancy: Numeric mismatch attached for traceability
    - id / timestamp: Identity fields, excluded from equality so two runs
      over identical data produce equal alerts
    ============================================================================

    Reliability Level: L6 Critical
    Side Effects: None (immutable, fatal alerts reach dispatch unmodified)
    """
    severity: Severity
    domain: Domain
    message: str
    affected_sources: Tuple[str, ...] = ()
    recommendation: str = ""
    symbol: str = ""
    error_kind: Optional[ValidationErrorKind] = None
    discrepancy: Optional[Discrepancy] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    def __post_init__(self):
        object.__setattr__(self, "affected_sources", tuple(self.affected_sources))

    @property
    def is_fatal(self) -> bool:
        return self.severity == Severity.FATAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "domain": self.domain.value,
            "message": self.message,
            "affected_sources": list(self.affected_sources),
            "recommendation": self.recommendation,
            "symbol": self.symbol,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "discrepancy": self.discrepancy.to_dict() if self.discrepancy else None,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Domain Results
# =============================================================================

@dataclass(frozen=True)
class ValidationContext:
    """Per-call values every validator receives."""
    symbol: str
    correlation_id: str
    timeout_seconds: float


@dataclass(frozen=True)
class ReliabilityObservation:
    """Agreement/disagreement of one provider with consensus."""
    provider: str
    agreed: bool
    magnitude: Decimal


@dataclass(frozen=True)
class DomainResult:
    """
    Output of one domain validator.

    Validators never mutate shared state; reliability observations are
    returned here and applied by the orchestrator after all domains finish.

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    domain: Domain
    status: DomainStatus
    quality_score: Decimal
    alerts: Tuple[ValidationAlert, ...] = ()
    discrepancies: Tuple[Discrepancy, ...] = ()
    passed_checks: Tuple[str, ...] = ()
    failed_checks: Tuple[str, ...] = ()
    observations: Tuple[ReliabilityObservation, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "quality_score", clamp_score(self.quality_score))
        for name in ("alerts", "discrepancies", "passed_checks", "failed_checks", "observations"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def is_usable(self) -> bool:
        """Discarded domains must not reach downstream consumers."""
        return self.status != DomainStatus.DISCARDED

    @property
    def has_fatal(self) -> bool:
        return any(a.is_fatal for a in self.alerts)

    @classmethod
    def not_validated(cls, domain: Domain) -> "DomainResult":
        """Result for a domain that timed out or failed: zero quality, no alert."""
        return cls(domain=domain, status=DomainStatus.NOT_VALIDATED, quality_score=Decimal("0"))


# =============================================================================
# Summaries
# =============================================================================

@dataclass(frozen=True)
class DataQualitySummary:
    """
    Per-domain quality score plus check counts.

    Domains not evaluated are reported explicitly as score 0.
    """
    domain: Domain
    score: Decimal
    evaluated: bool
    passed_checks: Tuple[str, ...] = ()
    failed_checks: Tuple[str, ...] = ()

    @property
    def passed_count(self) -> int:
        return len(self.passed_checks)

    @property
    def failed_count(self) -> int:
        return len(self.failed_checks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": str(self.score),
            "evaluated": self.evaluated,
            "passed_checks": self.passed_count,
            "failed_checks": self.failed_count,
            "passed": list(self.passed_checks),
            "failed": list(self.failed_checks),
        }


@dataclass(frozen=True)
class ConfidenceScoreBreakdown:
    """
    Overall confidence plus per-domain sub-scores and penalizing alerts.

    Created once per validation call; a value object.

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    overall_score: Decimal
    domain_scores: Tuple[Tuple[Domain, Decimal], ...]
    penalizing_alerts: Tuple[ValidationAlert, ...]
    confidence_level: str
    is_sufficient: bool
    recommendation: str
    explanation: str

    def domain_score(self, domain: Domain) -> Decimal:
        for candidate, score in self.domain_scores:
            if candidate == domain:
                return score
        return Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": str(self.overall_score),
            "domain_scores": {d.value: str(s) for d, s in self.domain_scores},
            "penalizing_alerts": [a.to_dict() for a in self.penalizing_alerts],
            "confidence_level": self.confidence_level,
            "is_sufficient": self.is_sufficient,
            "recommendation": self.recommendation,
            "explanation": self.explanation,
        }


def sort_alerts(alerts: List[ValidationAlert]) -> List[ValidationAlert]:
    """Most severe first, stable within a severity."""
    return sorted(alerts, key=lambda a: -a.severity.rank)
