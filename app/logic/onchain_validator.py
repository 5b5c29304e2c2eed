"""
============================================================================
Veritas Protocol v1.0.0
On-Chain Validator - Market-to-Chain Flow Reconciliation
============================================================================

Reliability Level: L6 Critical
Input Constraints: OnChainFlowSummary (+ market quotes for volume fallback)
Side Effects: None (pure function of the dataset)

FLOW RATIO:
    ratio = (exchange deposits + exchange withdrawals) / reported volume

    inside [min, max]                 -> 100
    [min / 2, min) or (max, 2max-min] -> 80
    below min / 2                     -> ratio / (min / 2) * 50
    above 2max-min                    -> 80 - (ratio - (2max-min)) * 50
    (clamped to [0, 100]; with defaults 0.10/0.30 the bands are
     5-10% and 30-50%)

    Score below 50 raises a WARNING with a discrepancy.

IMPOSSIBILITY:
    Reported volume above impossible_volume_usd with zero categorized flow
    in every category: FATAL, score 0, on-chain data discarded.

PARTIAL RESULT:
    Without any volume figure the ratio cannot be computed: score 50 and a
    WARNING, flow data retained.
============================================================================
"""

import logging
from decimal import Decimal, ROUND_HALF_EVEN
from typing import List, Optional, Tuple

from data_ingestion.flow_categorizer import CategorizedFlows, FlowCategorizer
from data_ingestion.schemas import DomainDataset, OnChainFlowSummary
from services.source_reliability import TrustSnapshot
from services.veritas_config import ValidationThresholds
from services.veritas_models import (
    Discrepancy,
    Domain,
    DomainResult,
    DomainStatus,
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

PRECISION_RATIO = Decimal("0.0001")

FULL_SCORE = Decimal("100")
MODERATE_SCORE = Decimal("80")
WARNING_SCORE = Decimal("50")
PARTIAL_SCORE = Decimal("50")

# Net exchange flow share that counts as a directional signal
FLOW_DIRECTION_SHARE = Decimal("0.05")

CHECK_IMPOSSIBILITY = "onchain_impossibility_check"
CHECK_CONSISTENCY = "market_to_chain_consistency"
CHECK_DIRECTION = "flow_direction"


def flow_ratio_score(ratio: Decimal, ratio_min: Decimal, ratio_max: Decimal) -> Decimal:
    """Score an actual flow/volume ratio against the expected band."""
    lower_moderate = ratio_min / Decimal("2")
    upper_moderate = ratio_max + (ratio_max - ratio_min)

    if ratio_min <= ratio <= ratio_max:
        score = FULL_SCORE
    elif lower_moderate <= ratio < ratio_min or ratio_max < ratio <= upper_moderate:
        score = MODERATE_SCORE
    elif ratio < lower_moderate:
        score = ratio / lower_moderate * WARNING_SCORE
    else:
        score = MODERATE_SCORE - (ratio - upper_moderate) * Decimal("50")

    score = max(Decimal("0"), min(FULL_SCORE, score))
    return score.quantize(Decimal("0.01"), rounding=ROUND_HALF_EVEN)


class OnChainValidator:
    """Reconciles categorized blockchain flow with reported trading volume."""

    domain = Domain.ONCHAIN

    def __init__(
        self,
        thresholds: Optional[ValidationThresholds] = None,
        categorizer: Optional[FlowCategorizer] = None
    ):
        self.thresholds = thresholds or ValidationThresholds()
        self.categorizer = categorizer or FlowCategorizer()

    async def validate(
        self,
        dataset: DomainDataset,
        trust: TrustSnapshot,
        context: ValidationContext
    ) -> DomainResult:
        return self.evaluate(context.symbol, dataset, context.correlation_id)

    def evaluate(
        self,
        symbol: str,
        dataset: DomainDataset,
        correlation_id: Optional[str] = None
    ) -> DomainResult:
        summary = dataset.onchain
        if summary is None:
            return DomainResult.not_validated(self.domain)

        t = self.thresholds
        flows = self.categorizer.resolve_flows(summary)
        volume, volume_source = self._reported_volume(summary, dataset)
        # Peer/cold-wallet transfers are a category too
        total_flow = flows.exchange_deposits + flows.exchange_withdrawals + flows.peer_transfers

        if volume is not None and volume > t.impossible_volume_usd and total_flow == Decimal("0"):
            return self._impossible(symbol, summary, volume, volume_source, correlation_id)

        alerts: List[ValidationAlert] = []
        discrepancies: List[Discrepancy] = []
        passed: List[str] = [CHECK_IMPOSSIBILITY]
        failed: List[str] = []

        if volume is None or volume == Decimal("0"):
            failed.append(CHECK_CONSISTENCY)
            alerts.append(ValidationAlert(
                severity=Severity.WARNING,
                domain=self.domain,
                message="No trading volume available; market-to-chain consistency not checked",
                affected_sources=(summary.provider,),
                recommendation="Flow data retained without volume reconciliation.",
                symbol=symbol,
                error_kind=ValidationErrorKind.PROVIDER_UNAVAILABLE,
            ))
            self._flow_direction(symbol, summary, flows, alerts, passed)
            logger.info(
                f"[VERITAS-ONCHAIN] Partial result, volume unavailable | "
                f"symbol={symbol} | "
                f"correlation_id={correlation_id}"
            )
            return DomainResult(
                domain=self.domain,
                status=DomainStatus.VALIDATED,
                quality_score=PARTIAL_SCORE,
                alerts=alerts,
                passed_checks=passed,
                failed_checks=failed,
            )

        exchange_flow = flows.exchange_deposits + flows.exchange_withdrawals
        ratio = (exchange_flow / volume).quantize(PRECISION_RATIO, rounding=ROUND_HALF_EVEN)
        score = flow_ratio_score(ratio, t.flow_ratio_min, t.flow_ratio_max)

        if score < WARNING_SCORE:
            failed.append(CHECK_CONSISTENCY)
            bound = t.flow_ratio_min if ratio < t.flow_ratio_min else t.flow_ratio_max
            discrepancy = Discrepancy(
                metric="flow_to_volume_ratio",
                source_a=summary.provider,
                value_a=exchange_flow,
                source_b=volume_source,
                value_b=volume,
                delta=ratio,
                threshold=bound,
            )
            discrepancies.append(discrepancy)
            alerts.append(ValidationAlert(
                severity=Severity.WARNING,
                domain=self.domain,
                message=(
                    f"Exchange flow is {ratio} of reported volume, outside the expected "
                    f"{t.flow_ratio_min}-{t.flow_ratio_max} band (score {score})"
                ),
                affected_sources=tuple(sorted({summary.provider, volume_source})),
                recommendation="Use on-chain data with caution; chain activity does not match market activity.",
                symbol=symbol,
                error_kind=ValidationErrorKind.INCONSISTENCY,
                discrepancy=discrepancy,
            ))
        else:
            passed.append(CHECK_CONSISTENCY)

        self._flow_direction(symbol, summary, flows, alerts, passed)

        logger.info(
            f"[VERITAS-ONCHAIN] Validated | "
            f"symbol={symbol} | "
            f"ratio={ratio} | "
            f"score={score} | "
            f"alerts={len(alerts)} | "
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
        )

    def _reported_volume(
        self,
        summary: OnChainFlowSummary,
        dataset: DomainDataset
    ) -> Tuple[Optional[Decimal], str]:
        """Summary volume, else the largest market-quote volume in the dataset."""
        if summary.reported_volume_24h is not None:
            return summary.reported_volume_24h, summary.provider

        quoted = [(q.volume_24h, q.provider) for q in dataset.market if q.volume_24h is not None]
        if not quoted:
            return None, summary.provider
        volume, provider = max(quoted, key=lambda vp: vp[0])
        return volume, provider

    def _impossible(
        self,
        symbol: str,
        summary: OnChainFlowSummary,
        volume: Decimal,
        volume_source: str,
        correlation_id: Optional[str]
    ) -> DomainResult:
        logger.error(
            f"[{VeritasErrorCode.IMPOSSIBILITY}] On-chain impossibility | "
            f"symbol={symbol} | "
            f"volume={volume} | "
            f"categorized_flow=0 | "
            f"correlation_id={correlation_id}"
        )
        discrepancy = Discrepancy(
            metric="flow_to_volume_ratio",
            source_a=summary.provider,
            value_a=Decimal("0"),
            source_b=volume_source,
            value_b=volume,
            delta=Decimal("0"),
            threshold=self.thresholds.impossible_volume_usd,
        )
        alert = ValidationAlert(
            severity=Severity.FATAL,
            domain=self.domain,
            message=(
                f"Reported volume of {volume} with zero categorized on-chain flow "
                f"is impossible"
            ),
            affected_sources=tuple(sorted({summary.provider, volume_source})),
            recommendation="On-chain data discarded. Do not make accumulation/distribution claims.",
            symbol=symbol,
            error_kind=ValidationErrorKind.IMPOSSIBILITY,
            discrepancy=discrepancy,
        )
        return DomainResult(
            domain=self.domain,
            status=DomainStatus.DISCARDED,
            quality_score=Decimal("0"),
            alerts=(alert,),
            discrepancies=(discrepancy,),
            failed_checks=(CHECK_IMPOSSIBILITY,),
        )

    def _flow_direction(
        self,
        symbol: str,
        summary: OnChainFlowSummary,
        flows: CategorizedFlows,
        alerts: List[ValidationAlert],
        passed: List[str]
    ) -> None:
        """Informational accumulation/distribution note from net exchange flow."""
        exchange_flow = flows.exchange_deposits + flows.exchange_withdrawals
        if exchange_flow == Decimal("0"):
            return

        passed.append(CHECK_DIRECTION)
        net = flows.exchange_withdrawals - flows.exchange_deposits
        share = (abs(net) / exchange_flow).quantize(PRECISION_RATIO, rounding=ROUND_HALF_EVEN)
        if share <= FLOW_DIRECTION_SHARE:
            return

        direction = "accumulation (net exchange outflow)" if net > 0 else "distribution (net exchange inflow)"
        alerts.append(ValidationAlert(
            severity=Severity.INFO,
            domain=self.domain,
            message=f"On-chain flow suggests {direction}: net {net} ({share} of exchange flow)",
            affected_sources=(summary.provider,),
            recommendation="Directional context only.",
            symbol=symbol,
        ))
