"""
Veritas Protocol - Data Quality Report

Turns one validation run's alerts, discrepancies and check lists into
prioritized recommendations and reliability guidance for the consumer of the
validated data.

Reliability Level: L5 High
Side Effects: None
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from services.veritas_models import (
    ConfidenceScoreBreakdown,
    Discrepancy,
    Domain,
    DomainResult,
    DomainStatus,
    Severity,
    ValidationAlert,
    sort_alerts,
)

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

# Discrepancy delta (percent) that makes a price recommendation high priority
CRITICAL_PRICE_GAP = Decimal("5")

_STRENGTHS = {
    "price_consistency": "Price data consistent across sources",
    "volume_distribution": "Volume evenly distributed across venues",
    "sentiment_consistency": "Social sentiment validated across independent sources",
    "market_to_chain_consistency": "On-chain flow aligns with market activity",
}

_WEAKNESSES = {
    "price_consistency": "Price discrepancies detected across sources",
    "arbitrage_plausibility": "Implausible cross-exchange price gap",
    "volume_distribution": "One venue dominates reported volume",
    "sentiment_consistency": "Social sentiment divergence detected",
    "sentiment_cross_validation": "Social sentiment could not be cross-validated",
    "market_to_chain_consistency": "On-chain flow inconsistent with market activity",
    "social_impossibility_check": "Social data contains logical impossibilities",
    "onchain_impossibility_check": "On-chain data contains logical impossibilities",
}


@dataclass(frozen=True)
class Recommendation:
    priority: str
    category: str
    title: str
    description: str
    action: str
    affected_sources: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "action": self.action,
            "affected_sources": list(self.affected_sources),
        }


@dataclass(frozen=True)
class ReliabilityGuidance:
    overall_reliability: str
    can_proceed: bool
    warnings: Tuple[str, ...] = ()
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_reliability": self.overall_reliability,
            "can_proceed": self.can_proceed,
            "warnings": list(self.warnings),
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
        }


@dataclass(frozen=True)
class QualityReport:
    alerts: Tuple[ValidationAlert, ...]
    recommendations: Tuple[Recommendation, ...]
    guidance: ReliabilityGuidance
    total_discrepancies: int = 0
    exceeded_thresholds: int = 0
    domains_available: Tuple[str, ...] = field(default=())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [r.to_dict() for r in self.recommendations],
            "guidance": self.guidance.to_dict(),
            "total_alerts": len(self.alerts),
            "critical_alerts": sum(
                1 for a in self.alerts if a.severity in (Severity.ERROR, Severity.FATAL)
            ),
            "total_discrepancies": self.total_discrepancies,
            "exceeded_thresholds": self.exceeded_thresholds,
            "domains_available": list(self.domains_available),
        }


def deduplicate_alerts(alerts: List[ValidationAlert]) -> List[ValidationAlert]:
    """Drop repeated (domain, message) pairs, most severe first."""
    seen = set()
    unique = []
    for alert in sort_alerts(alerts):
        key = (alert.domain, alert.message)
        if key in seen:
            continue
        seen.add(key)
        unique.append(alert)
    return unique


def _sources(items) -> Tuple[str, ...]:
    return tuple(sorted({s for item in items for s in item.affected_sources}))


def build_recommendations(
    alerts: List[ValidationAlert],
    discrepancies: List[Discrepancy],
    results: Dict[Domain, DomainResult]
) -> List[Recommendation]:
    recs: List[Recommendation] = []

    fatal = [a for a in alerts if a.is_fatal]
    if fatal:
        recs.append(Recommendation(
            priority="high",
            category="action_required",
            title="Critical Data Quality Issues Detected",
            description=f"{len(fatal)} fatal issue(s) prevent reliable analysis.",
            action="Affected domains were discarded and queued for human review.",
            affected_sources=_sources(fatal),
        ))

    price = [d for d in discrepancies if d.metric == "price" and d.exceeded]
    if price:
        worst = max(d.delta for d in price)
        recs.append(Recommendation(
            priority="high" if worst > CRITICAL_PRICE_GAP else "medium",
            category="data_quality",
            title="Price Discrepancy Detected",
            description=f"Price divergence of up to {worst}% across sources.",
            action="Using trust-weighted consensus. Investigate source reliability.",
            affected_sources=tuple(sorted({s for d in price for s in (d.source_a, d.source_b)})),
        ))

    volume = [d for d in discrepancies if d.metric == "volume_share" and d.exceeded]
    if volume:
        recs.append(Recommendation(
            priority="medium",
            category="data_quality",
            title="Volume Concentration Detected",
            description="One venue reports most of the aggregate 24h volume.",
            action="Treat aggregate volume with caution.",
            affected_sources=tuple(sorted({d.source_a for d in volume})),
        ))

    for domain, title, fatal_action, soft_action in (
        (
            Domain.SOCIAL,
            "Social Sentiment Data Issues",
            "Social data discarded due to logical impossibility. Do not use it.",
            "Review social sentiment carefully; sources disagree or were not cross-validated.",
        ),
        (
            Domain.ONCHAIN,
            "On-Chain Data Inconsistency",
            "On-chain data unreliable. Do not make accumulation/distribution claims.",
            "Use on-chain data with caution; market-to-chain consistency is low.",
        ),
    ):
        domain_alerts = [a for a in alerts if a.domain == domain and a.severity != Severity.INFO]
        if domain_alerts:
            has_fatal = any(a.is_fatal for a in domain_alerts)
            recs.append(Recommendation(
                priority="high" if has_fatal else "medium",
                category="data_quality",
                title=title,
                description=f"{len(domain_alerts)} issue(s) detected in {domain.value} data.",
                action=fatal_action if has_fatal else soft_action,
                affected_sources=_sources(domain_alerts),
            ))

    evaluated = [r for r in results.values() if r.status != DomainStatus.NOT_VALIDATED]
    if len(evaluated) < len(Domain):
        recs.append(Recommendation(
            priority="medium",
            category="data_quality",
            title="Incomplete Data Coverage",
            description=f"Only {len(evaluated)} of {len(Domain)} domains were validated.",
            action="Missing domains count as zero confidence.",
        ))

    flagged = _sources([a for a in alerts if a.severity != Severity.INFO])
    if len(flagged) >= 2:
        recs.append(Recommendation(
            priority="low",
            category="source_reliability",
            title="Multiple Source Reliability Issues",
            description=f"{len(flagged)} sources involved in flagged issues.",
            action="Monitor source reliability scores.",
            affected_sources=flagged,
        ))

    return sorted(recs, key=lambda r: PRIORITY_ORDER[r.priority])


def build_guidance(
    breakdown: ConfidenceScoreBreakdown,
    alerts: List[ValidationAlert],
    results: Dict[Domain, DomainResult]
) -> ReliabilityGuidance:
    score = breakdown.overall_score
    fatal = sum(1 for a in alerts if a.severity == Severity.FATAL)
    errors = sum(1 for a in alerts if a.severity == Severity.ERROR)
    warnings = sum(1 for a in alerts if a.severity == Severity.WARNING)

    if score >= Decimal("90"):
        reliability = "excellent"
    elif score >= Decimal("75"):
        reliability = "good"
    elif score >= Decimal("60"):
        reliability = "fair"
    elif score >= Decimal("40"):
        reliability = "poor"
    else:
        reliability = "critical"

    notes = []
    if fatal:
        notes.append(f"{fatal} fatal issue(s) detected; affected data was discarded")
    if errors:
        notes.append(f"{errors} error(s) detected; use analysis with caution")
    if warnings > 2:
        notes.append(f"{warnings} warning(s) detected; data quality issues present")
    if score < Decimal("70"):
        notes.append("Overall data quality below recommended threshold (70)")

    passed = {c for r in results.values() for c in r.passed_checks}
    failed = {c for r in results.values() for c in r.failed_checks}
    evaluated = sum(1 for r in results.values() if r.status != DomainStatus.NOT_VALIDATED)

    strengths = [text for check, text in _STRENGTHS.items() if check in passed]
    if evaluated == len(Domain):
        strengths.append("Complete coverage across all validated domains")
    weaknesses = [text for check, text in _WEAKNESSES.items() if check in failed]
    if evaluated < len(Domain):
        weaknesses.append("Incomplete data coverage")

    return ReliabilityGuidance(
        overall_reliability=reliability,
        can_proceed=fatal == 0 and breakdown.is_sufficient,
        warnings=tuple(notes),
        strengths=tuple(strengths),
        weaknesses=tuple(weaknesses),
    )


def generate_quality_report(
    results: Dict[Domain, DomainResult],
    breakdown: ConfidenceScoreBreakdown
) -> QualityReport:
    """Full report for one validation run."""
    alerts = deduplicate_alerts([a for r in results.values() for a in r.alerts])
    discrepancies = [d for r in results.values() for d in r.discrepancies]
    return QualityReport(
        alerts=tuple(alerts),
        recommendations=tuple(build_recommendations(alerts, discrepancies, results)),
        guidance=build_guidance(breakdown, alerts, results),
        total_discrepancies=len(discrepancies),
        exceeded_thresholds=sum(1 for d in discrepancies if d.exceeded),
        domains_available=tuple(
            d.value for d, r in results.items() if r.status != DomainStatus.NOT_VALIDATED
        ),
    )
