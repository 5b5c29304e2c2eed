"""
Veritas Protocol - Confidence Calculator Module

Combines per-domain validation results into one ConfidenceScoreBreakdown and
a per-domain DataQualitySummary.

Formula: Overall = sum(domain quality for every scored domain) / 3

Domains that were not evaluated (absent, timed out, failed) contribute 0, so
missing data visibly lowers confidence. Alert penalties are already applied
inside each domain's quality score and are not applied again here.

Reliability Level: L6 Critical
Decimal Integrity: All calculations use decimal.Decimal with ROUND_HALF_EVEN
Deterministic: Same inputs always yield the same breakdown
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Dict, List, Optional, Tuple
import logging

from services.veritas_models import (
    ConfidenceScoreBreakdown,
    DataQualitySummary,
    Domain,
    DomainResult,
    DomainStatus,
    SCORED_DOMAINS,
    Severity,
    ValidationAlert,
    sort_alerts,
)

# Configure module logger
logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

PRECISION_CONFIDENCE = Decimal("0.01")

DEFAULT_MIN_CONFIDENCE = Decimal("60")

# (floor, label) in descending order
CONFIDENCE_LEVELS: Tuple[Tuple[Decimal, str], ...] = (
    (Decimal("90"), "excellent"),
    (Decimal("80"), "good"),
    (Decimal("70"), "acceptable"),
    (Decimal("60"), "fair"),
)
LOWEST_LEVEL = "poor"


def get_confidence_level(score: Decimal) -> str:
    """Map a 0-100 score to its label."""
    for floor, label in CONFIDENCE_LEVELS:
        if score >= floor:
            return label
    return LOWEST_LEVEL


def get_confidence_recommendation(score: Decimal, has_fatal: bool = False) -> str:
    """One-line guidance for downstream consumers."""
    if has_fatal:
        return "Fatal data issues detected; discarded domains must not be used."
    level = get_confidence_level(score)
    if level == "excellent":
        return "Data is highly reliable and suitable for analysis."
    if level == "good":
        return "Data is reliable with minor inconsistencies."
    if level == "acceptable":
        return "Data is usable; review flagged discrepancies before relying on it."
    if level == "fair":
        return "Data has notable gaps or inconsistencies; use with caution."
    return "Data quality is too low for confident analysis."


# =============================================================================
# Calculator
# =============================================================================

class ConfidenceCalculator:
    """
    Aggregates domain results into a confidence breakdown.

    Reliability Level: L6 Critical
    Input Constraints: DomainResults keyed by Domain
    Side Effects: None
    """

    def __init__(self, min_confidence: Decimal = DEFAULT_MIN_CONFIDENCE):
        self.min_confidence = min_confidence

    def calculate(
        self,
        results: Dict[Domain, DomainResult],
        correlation_id: Optional[str] = None
    ) -> ConfidenceScoreBreakdown:
        """
        Produce the breakdown for one validation run.

        Args:
            results: Results for the domains that ran (any subset)
            correlation_id: Audit trail identifier

        Returns:
            Immutable ConfidenceScoreBreakdown
        """
        domain_scores: List[Tuple[Domain, Decimal]] = []
        alerts: List[ValidationAlert] = []

        for domain in SCORED_DOMAINS:
            result = results.get(domain)
            if result is None or result.status == DomainStatus.NOT_VALIDATED:
                domain_scores.append((domain, Decimal("0.00")))
                continue
            domain_scores.append((domain, result.quality_score))
            alerts.extend(result.alerts)

        total = sum(score for _, score in domain_scores)
        overall = self._quantize(total / Decimal(len(SCORED_DOMAINS)))

        penalizing = tuple(
            sort_alerts([a for a in alerts if a.severity != Severity.INFO])
        )
        has_fatal = any(a.is_fatal for a in penalizing)
        level = get_confidence_level(overall)
        sufficient = overall >= self.min_confidence and not has_fatal

        breakdown = ConfidenceScoreBreakdown(
            overall_score=overall,
            domain_scores=tuple(domain_scores),
            penalizing_alerts=penalizing,
            confidence_level=level,
            is_sufficient=sufficient,
            recommendation=get_confidence_recommendation(overall, has_fatal),
            explanation=self._explain(overall, domain_scores, results, penalizing),
        )

        logger.info(
            f"[VERITAS-CONFIDENCE] overall={overall} | "
            f"level={level} | "
            f"sufficient={sufficient} | "
            f"penalizing_alerts={len(penalizing)} | "
            f"correlation_id={correlation_id}"
        )
        return breakdown

    def summarize(self, results: Dict[Domain, DomainResult]) -> Dict[Domain, DataQualitySummary]:
        """Per-domain quality summary; unevaluated domains report score 0."""
        summary: Dict[Domain, DataQualitySummary] = {}
        for domain in SCORED_DOMAINS:
            result = results.get(domain)
            if result is None or result.status == DomainStatus.NOT_VALIDATED:
                summary[domain] = DataQualitySummary(
                    domain=domain, score=Decimal("0.00"), evaluated=False
                )
            else:
                summary[domain] = DataQualitySummary(
                    domain=domain,
                    score=result.quality_score,
                    evaluated=True,
                    passed_checks=result.passed_checks,
                    failed_checks=result.failed_checks,
                )
        return summary

    def _explain(
        self,
        overall: Decimal,
        domain_scores: List[Tuple[Domain, Decimal]],
        results: Dict[Domain, DomainResult],
        penalizing: Tuple[ValidationAlert, ...]
    ) -> str:
        parts = [f"Overall confidence {overall} ({get_confidence_level(overall)})."]
        for domain, score in domain_scores:
            result = results.get(domain)
            if result is None:
                parts.append(f"{domain.value}: not provided (0).")
            elif result.status == DomainStatus.NOT_VALIDATED:
                parts.append(f"{domain.value}: not validated (0).")
            elif result.status == DomainStatus.DISCARDED:
                parts.append(f"{domain.value}: discarded (0).")
            else:
                parts.append(f"{domain.value}: {score}.")
        if penalizing:
            parts.append(f"{len(penalizing)} alert(s) reduced confidence.")
        return " ".join(parts)

    def _quantize(self, value: Decimal) -> Decimal:
        return value.quantize(PRECISION_CONFIDENCE, rounding=ROUND_HALF_EVEN)
