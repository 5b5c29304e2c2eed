"""
============================================================================
Veritas Protocol v1.0.0
Social Validator - Sentiment Impossibility and Cross-Source Consistency
============================================================================

Reliability Level: L6 Critical
Input Constraints: SocialMetrics from DomainDataset
Side Effects: At most one secondary cross-check call per validation

CHECKS:
    1. social_impossibility_check
       mention_count == 0 with any nonzero distribution component is a
       logical contradiction: FATAL alert, score 0, social data discarded.
    2. sentiment_cross_validation
       A secondary estimate was obtained (supplied with the data or from
       the configured cross-check within its time budget).
    3. sentiment_consistency
       Primary and secondary scores within sentiment_mismatch_points.
       Divergence raises a WARNING; data is retained.

SCORING:
    100 minus alert_penalty per warning/error alert, floored at 0.
    A failed or slow cross-check degrades to single-source scoring
    (warning), it never fails the domain.
============================================================================
"""

import asyncio
import logging
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, List, Optional, Tuple

from data_ingestion.schemas import DomainDataset, SecondarySentiment, SocialMetrics
from services.source_reliability import TrustSnapshot
from services.veritas_config import ValidationThresholds
from services.veritas_models import (
    CrossCheckUnavailableError,
    Discrepancy,
    Domain,
    DomainResult,
    DomainStatus,
    ReliabilityObservation,
    Severity,
    ValidationAlert,
    ValidationContext,
    ValidationErrorKind,
    VeritasErrorCode,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

FULL_SCORE = Decimal("100")

# Share of the domain budget the cross-check may consume
CROSSCHECK_BUDGET_FRACTION = 0.6

DEFAULT_CROSSCHECK_TIMEOUT_SECONDS = 3.0

AGREEMENT_STEP = Decimal("1")
DISAGREEMENT_STEP_PER_THRESHOLD = Decimal("5")

CHECK_IMPOSSIBILITY = "social_impossibility_check"
CHECK_CROSS_VALIDATION = "sentiment_cross_validation"
CHECK_CONSISTENCY = "sentiment_consistency"


class SocialValidator:
    """
    Validates aggregated social sentiment.

    The cross-check provider is injected; anything with an async
    ``estimate(symbol, metrics, correlation_id) -> SecondarySentiment``
    method qualifies.
    """

    domain = Domain.SOCIAL

    def __init__(
        self,
        thresholds: Optional[ValidationThresholds] = None,
        cross_check: Optional[Any] = None,
        crosscheck_timeout_seconds: float = DEFAULT_CROSSCHECK_TIMEOUT_SECONDS
    ):
        self.thresholds = thresholds or ValidationThresholds()
        self.cross_check = cross_check
        self.crosscheck_timeout_seconds = crosscheck_timeout_seconds

    def crosscheck_budget(self, domain_timeout_seconds: float) -> float:
        """Cross-check must finish well inside the domain timeout."""
        return min(
            self.crosscheck_timeout_seconds,
            domain_timeout_seconds * CROSSCHECK_BUDGET_FRACTION,
        )

    async def validate(
        self,
        dataset: DomainDataset,
        trust: TrustSnapshot,
        context: ValidationContext
    ) -> DomainResult:
        metrics = dataset.social
        if metrics is None:
            return DomainResult.not_validated(self.domain)

        symbol = context.symbol
        correlation_id = context.correlation_id

        if metrics.mention_count == 0 and metrics.distribution.has_nonzero_component():
            return self._impossible(symbol, metrics, correlation_id)

        alerts: List[ValidationAlert] = []
        discrepancies: List[Discrepancy] = []
        passed: List[str] = [CHECK_IMPOSSIBILITY]
        failed: List[str] = []
        observations: List[ReliabilityObservation] = []

        secondary, failure = await self._secondary_estimate(metrics, context)

        if secondary is None and failure is None:
            alerts.append(ValidationAlert(
                severity=Severity.INFO,
                domain=self.domain,
                message=(
                    f"No secondary sentiment source for {metrics.provider}; "
                    f"using single-source sentiment"
                ),
                affected_sources=(metrics.provider,),
                recommendation="Sentiment is not cross-validated.",
                symbol=symbol,
            ))
        elif secondary is None:
            failed.append(CHECK_CROSS_VALIDATION)
            alerts.append(ValidationAlert(
                severity=Severity.WARNING,
                domain=self.domain,
                message=f"Sentiment cross-validation failed: {failure}",
                affected_sources=(metrics.provider,),
                recommendation="Using primary sentiment only.",
                symbol=symbol,
                error_kind=ValidationErrorKind.PROVIDER_UNAVAILABLE,
            ))
        else:
            passed.append(CHECK_CROSS_VALIDATION)
            self._compare(
                symbol, metrics, secondary, alerts, discrepancies, passed, failed, observations
            )

        penalizing = sum(1 for a in alerts if a.severity.is_penalizing)
        score = FULL_SCORE - self.thresholds.alert_penalty * penalizing

        logger.info(
            f"[VERITAS-SOCIAL] Validated | "
            f"symbol={symbol} | "
            f"primary={metrics.sentiment_score} | "
            f"secondary={secondary.score if secondary else None} | "
            f"alerts={len(alerts)} | "
            f"score={max(Decimal('0'), score)} | "
            f"correlation_id={correlation_id}"
        )

        return DomainResult(
            domain=self.domain,
            status=DomainStatus.VALIDATED,
            quality_score=score,
            alerts=alerts,
            discrepancies=discrepancies,
            passed_checks=passed,
            failed_checks=failed,
            observations=observations,
        )

    def _impossible(
        self,
        symbol: str,
        metrics: SocialMetrics,
        correlation_id: str
    ) -> DomainResult:
        d = metrics.distribution
        logger.error(
            f"[{VeritasErrorCode.IMPOSSIBILITY}] Social impossibility | "
            f"symbol={symbol} | "
            f"provider={metrics.provider} | "
            f"mention_count=0 | "
            f"distribution={d.positive}/{d.negative}/{d.neutral} | "
            f"correlation_id={correlation_id}"
        )
        alert = ValidationAlert(
            severity=Severity.FATAL,
            domain=self.domain,
            message=(
                f"Zero mentions reported with a nonzero sentiment distribution "
                f"(positive={d.positive}, negative={d.negative}, neutral={d.neutral})"
            ),
            affected_sources=(metrics.provider,),
            recommendation="Social data discarded. Do not use it for analysis.",
            symbol=symbol,
            error_kind=ValidationErrorKind.IMPOSSIBILITY,
        )
        return DomainResult(
            domain=self.domain,
            status=DomainStatus.DISCARDED,
            quality_score=Decimal("0"),
            alerts=(alert,),
            failed_checks=(CHECK_IMPOSSIBILITY,),
            observations=(ReliabilityObservation(metrics.provider, False, Decimal("10")),),
        )

    async def _secondary_estimate(
        self,
        metrics: SocialMetrics,
        context: ValidationContext
    ) -> Tuple[Optional[SecondarySentiment], Optional[str]]:
        """
        Returns (estimate, None), (None, failure reason), or (None, None)
        when no cross-check is possible at all.
        """
        if metrics.secondary is not None:
            return metrics.secondary, None
        if self.cross_check is None or not metrics.posts:
            return None, None

        budget = self.crosscheck_budget(context.timeout_seconds)
        try:
            estimate = await asyncio.wait_for(
                self.cross_check.estimate(context.symbol, metrics, context.correlation_id),
                timeout=budget,
            )
            return estimate, None
        except asyncio.TimeoutError:
            reason = f"secondary source timed out after {budget:.2f}s"
        except CrossCheckUnavailableError as e:
            reason = f"{e.provider} unavailable ({e.reason})"
        except Exception as e:
            reason = f"secondary source error ({type(e).__name__})"

        logger.warning(
            f"[{VeritasErrorCode.PROVIDER_UNAVAILABLE}] Sentiment cross-check degraded | "
            f"symbol={context.symbol} | "
            f"reason={reason} | "
            f"correlation_id={context.correlation_id}"
        )
        return None, reason

    def _compare(
        self,
        symbol: str,
        metrics: SocialMetrics,
        secondary: SecondarySentiment,
        alerts: List[ValidationAlert],
        discrepancies: List[Discrepancy],
        passed: List[str],
        failed: List[str],
        observations: List[ReliabilityObservation]
    ) -> None:
        threshold = self.thresholds.sentiment_mismatch_points
        gap = abs(metrics.sentiment_score - secondary.score)
        providers = (metrics.provider, secondary.provider)

        if gap <= threshold:
            passed.append(CHECK_CONSISTENCY)
            observations.extend(ReliabilityObservation(p, True, AGREEMENT_STEP) for p in providers)
            return

        failed.append(CHECK_CONSISTENCY)
        discrepancy = Discrepancy(
            metric="sentiment_score",
            source_a=metrics.provider,
            value_a=metrics.sentiment_score,
            source_b=secondary.provider,
            value_b=secondary.score,
            delta=gap,
            threshold=threshold,
        )
        discrepancies.append(discrepancy)
        alerts.append(ValidationAlert(
            severity=Severity.WARNING,
            domain=self.domain,
            message=(
                f"Sentiment mismatch of {gap} points: {metrics.provider}="
                f"{metrics.sentiment_score}, {secondary.provider}={secondary.score}"
            ),
            affected_sources=providers,
            recommendation="Sentiment retained; treat direction with caution.",
            symbol=symbol,
            error_kind=ValidationErrorKind.INCONSISTENCY,
            discrepancy=discrepancy,
        ))
        step = (gap / threshold * DISAGREEMENT_STEP_PER_THRESHOLD).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_EVEN
        )
        observations.extend(ReliabilityObservation(p, False, step) for p in providers)
