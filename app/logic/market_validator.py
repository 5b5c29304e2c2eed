"""
============================================================================
Veritas Protocol v1.0.0
Market Validator - Cross-Exchange Price/Volume Consistency
============================================================================

Reliability Level: L6 Critical
Input Constraints: MarketQuote tuple from DomainDataset
Side Effects: None (pure function of quotes and trust snapshot)

CHECKS:
    - source_availability:    at least two independent quotes
    - price_consistency:      pairwise divergence between reliable sources
                              within the warning threshold
    - arbitrage_plausibility: no reliable pair further apart than a
                              realistic cross-exchange spread
    - volume_distribution:    no single exchange reporting more than the
                              concentration share of summed volume

SEVERITIES:
    - warning: reliable pair diverges above price_divergence_pct
    - error:   reliable pair diverges above arbitrage_spread_pct
    - info:    divergence involving a down-weighted source, volume
               concentration, single-source data

Quotes are split into SourceReadings and compared per metric. Divergence
of a pair is |a - b| / min(a, b) * 100.
============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Dict, List, Optional, Tuple
import logging

from data_ingestion.schemas import DomainDataset, MarketQuote, SourceReading
from services.source_reliability import TrustSnapshot
from services.veritas_config import ValidationThresholds
from services.veritas_models import (
    Discrepancy,
    Domain,
    DomainResult,
    DomainStatus,
    ReliabilityObservation,
    Severity,
    ValidationAlert,
    ValidationContext,
    ValidationErrorKind,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

PRECISION_PERCENT = Decimal("0.0001")
PRECISION_PRICE = Decimal("0.00000001")

FULL_SCORE = Decimal("100")

# Reliability step for a source that agreed with consensus
AGREEMENT_STEP = Decimal("1")

# Disagreement step per threshold-multiple of deviation, capped by the tracker
DISAGREEMENT_STEP_PER_THRESHOLD = Decimal("5")

CHECK_SOURCES = "source_availability"
CHECK_PRICE = "price_consistency"
CHECK_ARBITRAGE = "arbitrage_plausibility"
CHECK_VOLUME = "volume_distribution"


def divergence_pct(a: Decimal, b: Decimal) -> Decimal:
    """Percentage gap between two positive prices relative to the lower one."""
    low = min(a, b)
    return (abs(a - b) / low * Decimal("100")).quantize(
        PRECISION_PERCENT, rounding=ROUND_HALF_EVEN
    )


def weighted_consensus(quotes: List[MarketQuote], trust: TrustSnapshot) -> Decimal:
    """Trust-weighted mean price."""
    total_weight = sum(trust.weight(q.provider) for q in quotes)
    weighted = sum(q.price * trust.weight(q.provider) for q in quotes)
    return (weighted / total_weight).quantize(PRECISION_PRICE, rounding=ROUND_HALF_EVEN)


def _latest_per_provider(quotes: Tuple[MarketQuote, ...]) -> List[MarketQuote]:
    latest: Dict[str, MarketQuote] = {}
    for quote in quotes:
        current = latest.get(quote.provider)
        if current is None or quote.timestamp >= current.timestamp:
            latest[quote.provider] = quote
    return sorted(latest.values(), key=lambda q: q.provider)


def readings_by_metric(quotes: List[MarketQuote]) -> Dict[str, List[SourceReading]]:
    """Group the quotes' readings by metric (price, volume_24h)."""
    grouped: Dict[str, List[SourceReading]] = {}
    for quote in quotes:
        for reading in quote.readings():
            grouped.setdefault(reading.metric, []).append(reading)
    return grouped


class MarketValidator:
    """
    Cross-checks price and volume across independent market providers.

    Usage:
        validator = MarketValidator(thresholds)
        result = validator.evaluate("BTC", quotes, trust_snapshot, correlation_id)
    """

    domain = Domain.MARKET

    def __init__(self, thresholds: Optional[ValidationThresholds] = None):
        self.thresholds = thresholds or ValidationThresholds()

    async def validate(
        self,
        dataset: DomainDataset,
        trust: TrustSnapshot,
        context: ValidationContext
    ) -> DomainResult:
        return self.evaluate(context.symbol, dataset.market, trust, context.correlation_id)

    def evaluate(
        self,
        symbol: str,
        quotes: Tuple[MarketQuote, ...],
        trust: TrustSnapshot,
        correlation_id: Optional[str] = None
    ) -> DomainResult:
        """
        Validate one symbol's market quotes.

        Args:
            symbol: Asset symbol
            quotes: Quotes from the dataset (duplicates per provider collapse
                to the latest)
            trust: Provider weights frozen for this call
            correlation_id: Audit trail identifier

        Returns:
            DomainResult for the market domain
        """
        usable = _latest_per_provider(quotes)

        if not usable:
            return self._no_sources(symbol, correlation_id)

        if len(usable) == 1:
            return self._single_source(symbol, usable[0], correlation_id)

        t = self.thresholds
        alerts: List[ValidationAlert] = []
        discrepancies: List[Discrepancy] = []
        passed: List[str] = [CHECK_SOURCES]
        failed: List[str] = []

        # Pairwise divergence, reliable and down-weighted pairs kept apart
        readings = readings_by_metric(usable)
        prices = readings["price"]
        reliable_breaches: List[Tuple[Decimal, SourceReading, SourceReading]] = []
        weak_breaches: List[Tuple[Decimal, SourceReading, SourceReading]] = []

        for i, first in enumerate(prices):
            for second in prices[i + 1:]:
                gap = divergence_pct(first.value, second.value)
                if gap <= t.price_divergence_pct:
                    continue

                both_reliable = (
                    trust.is_reliable(first.provider, t.reliable_weight)
                    and trust.is_reliable(second.provider, t.reliable_weight)
                )
                threshold = (
                    t.arbitrage_spread_pct
                    if both_reliable and gap > t.arbitrage_spread_pct
                    else t.price_divergence_pct
                )
                discrepancies.append(Discrepancy(
                    metric="price",
                    source_a=first.provider,
                    value_a=first.value,
                    source_b=second.provider,
                    value_b=second.value,
                    delta=gap,
                    threshold=threshold,
                ))
                if both_reliable:
                    reliable_breaches.append((gap, first, second))
                else:
                    weak_breaches.append((gap, first, second))

        if reliable_breaches:
            gap, first, second = max(reliable_breaches, key=lambda b: b[0])
            sources = sorted({p for _, a, b in reliable_breaches for p in (a.provider, b.provider)})
            worst = next(
                d for d in discrepancies
                if d.source_a == first.provider and d.source_b == second.provider
            )
            failed.append(CHECK_PRICE)

            if gap > t.arbitrage_spread_pct:
                failed.append(CHECK_ARBITRAGE)
                alerts.append(ValidationAlert(
                    severity=Severity.ERROR,
                    domain=self.domain,
                    message=(
                        f"Price gap of {gap}% between {first.provider} and {second.provider} "
                        f"exceeds the realistic cross-exchange spread ({t.arbitrage_spread_pct}%)"
                    ),
                    affected_sources=sources,
                    recommendation="Treat price as unreliable; at least one feed is stale or wrong.",
                    symbol=symbol,
                    error_kind=ValidationErrorKind.INCONSISTENCY,
                    discrepancy=worst,
                ))
            else:
                passed.append(CHECK_ARBITRAGE)
                alerts.append(ValidationAlert(
                    severity=Severity.WARNING,
                    domain=self.domain,
                    message=(
                        f"Price divergence of {gap}% between {first.provider} and "
                        f"{second.provider} exceeds {t.price_divergence_pct}%"
                    ),
                    affected_sources=sources,
                    recommendation="Using trust-weighted consensus price.",
                    symbol=symbol,
                    error_kind=ValidationErrorKind.INCONSISTENCY,
                    discrepancy=worst,
                ))
        else:
            passed.extend([CHECK_PRICE, CHECK_ARBITRAGE])

        if weak_breaches:
            gap, first, second = max(weak_breaches, key=lambda b: b[0])
            sources = sorted({p for _, a, b in weak_breaches for p in (a.provider, b.provider)})
            alerts.append(ValidationAlert(
                severity=Severity.INFO,
                domain=self.domain,
                message=(
                    f"Price divergence of {gap}% involves a down-weighted source "
                    f"({first.provider} vs {second.provider})"
                ),
                affected_sources=sources,
                recommendation="Down-weighted sources have reduced influence on consensus.",
                symbol=symbol,
                error_kind=ValidationErrorKind.INCONSISTENCY,
            ))

        concentration_penalty = self._check_volume(
            symbol, readings.get("volume_24h", []), alerts, discrepancies, passed, failed)

        consensus = weighted_consensus(usable, trust)
        observations = self._observations(usable, consensus)

        penalizing = sum(1 for a in alerts if a.severity.is_penalizing)
        score = FULL_SCORE - t.alert_penalty * penalizing - concentration_penalty

        logger.info(
            f"[VERITAS-MARKET] Validated | "
            f"symbol={symbol} | "
            f"sources={len(usable)} | "
            f"consensus={consensus} | "
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

    def _no_sources(self, symbol: str, correlation_id: Optional[str]) -> DomainResult:
        logger.warning(
            f"[VERITAS-MARKET] No usable quotes | "
            f"symbol={symbol} | "
            f"correlation_id={correlation_id}"
        )
        alert = ValidationAlert(
            severity=Severity.INFO,
            domain=self.domain,
            message="No market quotes available; market data not validated",
            affected_sources=(),
            recommendation="Collect at least two independent market sources.",
            symbol=symbol,
            error_kind=ValidationErrorKind.PROVIDER_UNAVAILABLE,
        )
        return DomainResult(
            domain=self.domain,
            status=DomainStatus.NOT_VALIDATED,
            quality_score=Decimal("0"),
            alerts=(alert,),
            failed_checks=(CHECK_SOURCES,),
        )

    def _single_source(
        self,
        symbol: str,
        quote: MarketQuote,
        correlation_id: Optional[str]
    ) -> DomainResult:
        logger.info(
            f"[VERITAS-MARKET] Single source only | "
            f"symbol={symbol} | "
            f"provider={quote.provider} | "
            f"correlation_id={correlation_id}"
        )
        alert = ValidationAlert(
            severity=Severity.INFO,
            domain=self.domain,
            message=f"Only one market source available ({quote.provider}); price is untrusted",
            affected_sources=(quote.provider,),
            recommendation="Usable for display; do not rely on it without a second source.",
            symbol=symbol,
            error_kind=ValidationErrorKind.PROVIDER_UNAVAILABLE,
        )
        return DomainResult(
            domain=self.domain,
            status=DomainStatus.VALIDATED,
            quality_score=self.thresholds.single_source_score,
            alerts=(alert,),
            failed_checks=(CHECK_SOURCES,),
        )

    def _check_volume(
        self,
        symbol: str,
        volume_readings: List[SourceReading],
        alerts: List[ValidationAlert],
        discrepancies: List[Discrepancy],
        passed: List[str],
        failed: List[str]
    ) -> Decimal:
        """Flag a single exchange dominating reported volume; returns the penalty."""
        volumes = [(r.provider, r.value) for r in volume_readings if r.value]
        if len(volumes) < 2:
            return Decimal("0")

        total = sum(v for _, v in volumes)
        top_provider, top_volume = max(volumes, key=lambda pv: pv[1])
        share = (top_volume / total * Decimal("100")).quantize(
            PRECISION_PERCENT, rounding=ROUND_HALF_EVEN
        )

        if share <= self.thresholds.volume_concentration_pct:
            passed.append(CHECK_VOLUME)
            return Decimal("0")

        failed.append(CHECK_VOLUME)
        discrepancy = Discrepancy(
            metric="volume_share",
            source_a=top_provider,
            value_a=top_volume,
            source_b="aggregate",
            value_b=total,
            delta=share,
            threshold=self.thresholds.volume_concentration_pct,
        )
        discrepancies.append(discrepancy)
        alerts.append(ValidationAlert(
            severity=Severity.INFO,
            domain=self.domain,
            message=(
                f"{top_provider} reports {share}% of aggregate 24h volume "
                f"(threshold {self.thresholds.volume_concentration_pct}%)"
            ),
            affected_sources=[p for p, _ in volumes],
            recommendation="Aggregate volume may be inflated by one venue.",
            symbol=symbol,
            error_kind=ValidationErrorKind.INCONSISTENCY,
            discrepancy=discrepancy,
        ))
        return self.thresholds.volume_concentration_penalty

    def _observations(
        self,
        quotes: List[MarketQuote],
        consensus: Decimal
    ) -> List[ReliabilityObservation]:
        threshold = self.thresholds.price_divergence_pct
        observations = []
        for quote in quotes:
            deviation = abs(quote.price - consensus) / consensus * Decimal("100")
            if deviation <= threshold:
                observations.append(ReliabilityObservation(quote.provider, True, AGREEMENT_STEP))
            else:
                step = (deviation / threshold * DISAGREEMENT_STEP_PER_THRESHOLD).quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_EVEN
                )
                observations.append(ReliabilityObservation(quote.provider, False, step))
        return observations
