"""
============================================================================
Veritas Protocol v1.0.0
Validation Orchestrator - Best-Effort Cross-Source Validation Entry Point
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All scores use decimal.Decimal with ROUND_HALF_EVEN
Traceability: Every call gets a correlation_id threaded through validators,
              dispatcher and monitor

PIPELINE:
    1. Reject malformed input (blank symbol) with VER-001
    2. Feature flag off -> return the dataset unvalidated (validation_skipped)
    3. Freeze a TrustSnapshot for every provider in the dataset (neutral
       weights if the store does not answer within the domain timeout)
    4. Run validators for present, enabled domains concurrently, each under
       its own timeout; timeouts and validator errors become not_validated
    5. Confidence breakdown, per-domain summary and quality report
    6. Side channel (never raises): reliability updates, metrics, monitor,
       alert dispatch

GUARANTEES:
    - validate() raises only VeritasInputError
    - Discarded domains are removed from usable_data; the input dataset is
      never mutated
    - Store reads, domain checks and reliability writes each wait at most
      the domain timeout, so a slow store never holds the call longer

============================================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple, Iterable
import asyncio
import logging
import threading
import time
import uuid

from app.database.session import get_session_factory
from app.logic.confidence_calculator import ConfidenceCalculator
from app.logic.market_validator import MarketValidator
from app.logic.onchain_validator import OnChainValidator
from app.logic.quality_report import QualityReport, generate_quality_report
from app.logic.social_validator import SocialValidator
from app.observability import metrics
from app.observability.email_notifier import EmailNotifier
from data_ingestion.flow_categorizer import FlowCategorizer, load_exchange_addresses
from data_ingestion.schemas import DomainDataset
from services.alert_dispatcher import AlertDispatcher
from services.alert_review_store import InMemoryAlertReviewStore, SqlAlertReviewStore
from services.sentiment_rescorer import create_cross_check
from services.source_reliability import (
    SourceReliabilityTracker,
    SqlReliabilityStore,
    TrustSnapshot,
)
from services.validation_monitor import ValidationMetrics, ValidationMonitor
from services.veritas_config import VeritasConfig, get_veritas_config
from services.veritas_models import (
    ConfidenceScoreBreakdown,
    DataQualitySummary,
    Discrepancy,
    Domain,
    DomainResult,
    DomainStatus,
    ValidationAlert,
    ValidationContext,
    ValidationErrorKind,
    VeritasErrorCode,
    VeritasInputError,
    sort_alerts,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Failure kinds for domains that produced no result
FAILURE_TIMEOUT = ValidationErrorKind.TIMEOUT.value
FAILURE_VALIDATOR_ERROR = "validator-error"


# =============================================================================
# Options and Result
# =============================================================================

@dataclass(frozen=True)
class ValidationOptions:
    """
    Per-call options.

    timeout_ms overrides the configured per-domain timeout. enabled_domains
    restricts which present domains are validated (None = all).
    """
    timeout_ms: Optional[int] = None
    enabled_domains: Optional[Tuple[Domain, ...]] = None
    record_reliability: bool = True

    def __post_init__(self):
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise VeritasInputError(f"timeout_ms must be positive, got: {self.timeout_ms}")
        if self.enabled_domains is not None:
            object.__setattr__(self, "enabled_domains", tuple(self.enabled_domains))


@dataclass(frozen=True)
class ValidationResult:
    """
    Structured validation report for one call.

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    symbol: str
    correlation_id: str
    is_valid: bool
    confidence_score: Optional[Decimal]
    alerts: Tuple[ValidationAlert, ...]
    discrepancies: Tuple[Discrepancy, ...]
    data_quality_summary: Dict[Domain, DataQualitySummary]
    usable_data: DomainDataset
    duration_ms: Decimal
    breakdown: Optional[ConfidenceScoreBreakdown] = None
    quality_report: Optional[QualityReport] = None
    domain_results: Dict[Domain, DomainResult] = field(default_factory=dict)
    domain_failures: Dict[Domain, str] = field(default_factory=dict)
    validation_skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "confidenceScore": str(self.confidence_score) if self.confidence_score is not None else None,
            "alerts": [a.to_dict() for a in self.alerts],
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "dataQualitySummary": {
                d.value: s.to_dict() for d, s in self.data_quality_summary.items()
            },
            "confidenceBreakdown": self.breakdown.to_dict() if self.breakdown else None,
            "qualityReport": self.quality_report.to_dict() if self.quality_report else None,
            "data": self.usable_data.to_dict(),
            "validationSkipped": self.validation_skipped,
            "domainFailures": {d.value: kind for d, kind in self.domain_failures.items()},
            "correlationId": self.correlation_id,
            "durationMs": str(self.duration_ms),
        }


def dataset_providers(dataset: DomainDataset) -> List[str]:
    """Every provider named in the dataset (trust snapshot keys)."""
    providers = [q.provider for q in dataset.market]
    if dataset.social is not None:
        providers.append(dataset.social.provider)
        if dataset.social.secondary is not None:
            providers.append(dataset.social.secondary.provider)
    if dataset.onchain is not None:
        providers.append(dataset.onchain.provider)
    return providers


# =============================================================================
# Orchestrator
# =============================================================================

class ValidationOrchestrator:
    """
    Entry point of the validation layer.

    Usage:
        orchestrator = get_validation_orchestrator()
        result = await orchestrator.validate("BTC", dataset)
        if result.is_valid:
            summarize(result.usable_data)
    """

    def __init__(
        self,
        config: Optional[VeritasConfig] = None,
        tracker: Optional[SourceReliabilityTracker] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        monitor: Optional[ValidationMonitor] = None,
        validators: Optional[Dict[Domain, Any]] = None,
        calculator: Optional[ConfidenceCalculator] = None,
        review_store: Optional[Any] = None
    ):
        self.config = config or get_veritas_config()
        thresholds = self.config.thresholds

        self.tracker = tracker or SourceReliabilityTracker(
            on_update=lambda r: metrics.update_source_trust(r.provider, r.score)
        )
        self.review_store = review_store
        self.dispatcher = dispatcher
        self.monitor = monitor or ValidationMonitor(
            capacity=self.config.metrics_capacity,
            dispatcher=dispatcher,
        )
        self.calculator = calculator or ConfidenceCalculator(self.config.min_confidence)

        if validators is None:
            validators = {
                Domain.MARKET: MarketValidator(thresholds),
                Domain.SOCIAL: SocialValidator(
                    thresholds,
                    cross_check=create_cross_check(
                        self.config.crosscheck_url, self.config.crosscheck_timeout_seconds
                    ),
                    crosscheck_timeout_seconds=self.config.crosscheck_timeout_seconds,
                ),
                Domain.ONCHAIN: OnChainValidator(
                    thresholds, FlowCategorizer(load_exchange_addresses())
                ),
            }
        self.validators = validators

        logger.info(
            f"[VERITAS-ORCH] Orchestrator initialized | "
            f"enabled={self.config.enabled} | "
            f"domains={[d.value for d in self.validators]} | "
            f"domain_timeout_ms={self.config.domain_timeout_ms}"
        )

    async def validate(
        self,
        symbol: str,
        dataset: DomainDataset,
        options: Optional[ValidationOptions] = None,
        correlation_id: Optional[str] = None
    ) -> ValidationResult:
        """
        Validate one symbol's dataset.

        Args:
            symbol: Asset symbol (required, non-blank)
            dataset: Already-collected domain data
            options: Per-call timeout / domain filter
            correlation_id: Audit trail identifier (generated if absent)

        Returns:
            ValidationResult (always, for any domain-level failure)

        Raises:
            VeritasInputError: Missing symbol or malformed dataset (VER-001)
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        if not isinstance(symbol, str) or not symbol.strip():
            logger.warning(
                f"[{VeritasErrorCode.INVALID_INPUT}] Validation rejected: missing symbol | "
                f"correlation_id={correlation_id}"
            )
            raise VeritasInputError("symbol is required")
        symbol = symbol.strip()
        if not isinstance(dataset, DomainDataset):
            logger.warning(
                f"[{VeritasErrorCode.INVALID_INPUT}] Validation rejected: dataset type "
                f"{type(dataset).__name__} | correlation_id={correlation_id}"
            )
            raise VeritasInputError("domainDataset must be a DomainDataset")

        options = options or ValidationOptions()
        started = time.perf_counter()

        if not self.config.enabled:
            return self._skipped(symbol, dataset, correlation_id, started)

        timeout_seconds = (
            options.timeout_ms / 1000.0 if options.timeout_ms is not None
            else self.config.domain_timeout_seconds
        )
        context = ValidationContext(symbol, correlation_id, timeout_seconds)

        domains = [Domain(d) for d in dataset.present_domains()]
        if options.enabled_domains is not None:
            domains = [d for d in domains if d in options.enabled_domains]
        domains = [d for d in domains if d in self.validators]

        trust = await self._snapshot(dataset, context)

        outcomes = await asyncio.gather(
            *(self._run_domain(d, dataset, trust, context) for d in domains)
        )
        results: Dict[Domain, DomainResult] = {}
        failures: Dict[Domain, str] = {}
        for domain, (result, failure) in zip(domains, outcomes):
            results[domain] = result
            if failure is not None:
                failures[domain] = failure

        breakdown = self.calculator.calculate(results, correlation_id)
        summary = self.calculator.summarize(results)
        report = generate_quality_report(results, breakdown)

        usable = dataset
        for domain, result in results.items():
            if not result.is_usable:
                usable = usable.without(domain.value)

        alerts = tuple(sort_alerts([a for r in results.values() for a in r.alerts]))
        discrepancies = tuple(d for r in results.values() for d in r.discrepancies)
        is_valid = not any(a.is_fatal for a in alerts)
        duration_ms = self._elapsed_ms(started)
        failed = {d.value: kind for d, kind in failures.items()}

        result = ValidationResult(
            symbol=symbol,
            correlation_id=correlation_id,
            is_valid=is_valid,
            confidence_score=breakdown.overall_score,
            alerts=alerts,
            discrepancies=discrepancies,
            data_quality_summary=summary,
            usable_data=usable,
            duration_ms=duration_ms,
            breakdown=breakdown,
            quality_report=report,
            domain_results=results,
            domain_failures=failures,
        )

        logger.info(
            f"[VERITAS-ORCH] Validation complete | "
            f"symbol={symbol} | "
            f"domains={[d.value for d in domains]} | "
            f"is_valid={is_valid} | "
            f"confidence={breakdown.overall_score} | "
            f"alerts={len(alerts)} | "
            f"failures={failed} | "
            f"duration_ms={duration_ms} | "
            f"correlation_id={correlation_id}"
        )

        if options.record_reliability:
            await self._apply_reliability(results.values(), context)
        self._record(result)
        self._dispatch(result)
        return result

    # -------------------------------------------------------------------------
    # Domain execution
    # -------------------------------------------------------------------------

    async def _run_domain(
        self,
        domain: Domain,
        dataset: DomainDataset,
        trust: TrustSnapshot,
        context: ValidationContext
    ) -> Tuple[DomainResult, Optional[str]]:
        """Run one validator under the domain timeout; never raises."""
        validator = self.validators[domain]
        try:
            result = await asyncio.wait_for(
                validator.validate(dataset, trust, context),
                timeout=context.timeout_seconds,
            )
            return result, None
        except asyncio.TimeoutError:
            logger.warning(
                f"[{VeritasErrorCode.DOMAIN_TIMEOUT}] Domain validation timed out | "
                f"domain={domain.value} | "
                f"timeout={context.timeout_seconds}s | "
                f"symbol={context.symbol} | "
                f"correlation_id={context.correlation_id}"
            )
            return DomainResult.not_validated(domain), FAILURE_TIMEOUT
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.VALIDATOR_ERROR}] Domain validator raised: "
                f"{type(e).__name__}: {str(e)} | "
                f"domain={domain.value} | "
                f"symbol={context.symbol} | "
                f"correlation_id={context.correlation_id}"
            )
            return DomainResult.not_validated(domain), FAILURE_VALIDATOR_ERROR

    async def _snapshot(self, dataset: DomainDataset, context: ValidationContext) -> TrustSnapshot:
        """Load trust for the dataset's providers within the domain timeout."""
        providers = dataset_providers(dataset)
        if not providers:
            return TrustSnapshot()
        try:
            loop = asyncio.get_running_loop()
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.tracker.snapshot, providers),
                timeout=context.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Trust snapshot timed out, "
                f"using neutral weights | "
                f"timeout={context.timeout_seconds}s | "
                f"correlation_id={context.correlation_id}"
            )
            return TrustSnapshot()
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Trust snapshot failed, "
                f"using neutral weights: {str(e)} | correlation_id={context.correlation_id}"
            )
            return TrustSnapshot()

    # -------------------------------------------------------------------------
    # Side channel (never raises)
    # -------------------------------------------------------------------------

    async def _apply_reliability(
        self,
        results: Iterable[DomainResult],
        context: ValidationContext
    ) -> None:
        """
        Apply reliability observations, waiting at most the domain timeout.

        A slow store keeps writing on its executor thread after the wait
        gives up; the result is returned without it.
        """
        observations = [o for r in results for o in r.observations]
        if not observations:
            return
        try:
            loop = asyncio.get_running_loop()
            await asyncio.wait_for(
                loop.run_in_executor(
                    None, self.tracker.apply_observations, observations, context.correlation_id
                ),
                timeout=context.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Reliability update still running "
                f"after {context.timeout_seconds}s, continuing in background | "
                f"observations={len(observations)} | "
                f"correlation_id={context.correlation_id}"
            )
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Reliability update failed: "
                f"{str(e)} | correlation_id={context.correlation_id}"
            )

    def _record(self, result: ValidationResult) -> None:
        try:
            alert_counts: Dict[str, int] = {}
            for alert in result.alerts:
                key = alert.severity.value
                alert_counts[key] = alert_counts.get(key, 0) + 1
                metrics.record_alert(alert.domain.value, key)
            for domain, kind in result.domain_failures.items():
                metrics.record_domain_failure(domain.value, kind)

            if result.validation_skipped:
                outcome = "skipped"
            else:
                outcome = "valid" if result.is_valid else "invalid"
            metrics.record_validation(
                outcome,
                float(result.duration_ms) / 1000.0,
                result.confidence_score,
                result.correlation_id,
            )

            self.monitor.record(ValidationMetrics(
                symbol=result.symbol,
                success=not result.domain_failures,
                duration_ms=result.duration_ms,
                confidence=result.confidence_score or Decimal("0"),
                is_valid=result.is_valid,
                alert_counts=alert_counts,
                error_kinds=tuple(result.domain_failures.values()),
                domains_validated=tuple(
                    d.value for d, r in result.domain_results.items()
                    if r.status != DomainStatus.NOT_VALIDATED
                ),
                skipped=result.validation_skipped,
                correlation_id=result.correlation_id,
            ))
        except Exception as e:
            logger.error(
                f"[VERITAS-ORCH] Metrics recording failed: {str(e)} | "
                f"correlation_id={result.correlation_id}"
            )

    def _dispatch(self, result: ValidationResult) -> None:
        if self.dispatcher is None or not result.alerts:
            return
        try:
            self.dispatcher.dispatch(result.alerts, result.correlation_id)
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.NOTIFICATION_FAILED}] Alert dispatch failed: "
                f"{str(e)} | correlation_id={result.correlation_id}"
            )

    def _skipped(
        self,
        symbol: str,
        dataset: DomainDataset,
        correlation_id: str,
        started: float
    ) -> ValidationResult:
        result = ValidationResult(
            symbol=symbol,
            correlation_id=correlation_id,
            is_valid=True,
            confidence_score=None,
            alerts=(),
            discrepancies=(),
            data_quality_summary={},
            usable_data=dataset,
            duration_ms=self._elapsed_ms(started),
            validation_skipped=True,
        )
        logger.info(
            f"[VERITAS-ORCH] Validation skipped (ENABLE_VERITAS_PROTOCOL=false) | "
            f"symbol={symbol} | "
            f"correlation_id={correlation_id}"
        )
        self._record(result)
        return result

    @staticmethod
    def _elapsed_ms(started: float) -> Decimal:
        return Decimal(str(round((time.perf_counter() - started) * 1000, 3)))

    def shutdown(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown()


# =============================================================================
# Wiring and Singleton
# =============================================================================

def build_orchestrator(
    config: Optional[VeritasConfig] = None,
    session_factory: Optional[Any] = None,
    notifier: Optional[Any] = None,
    async_delivery: bool = True
) -> ValidationOrchestrator:
    """
    Compose the orchestrator with its collaborators.

    With a session_factory the reliability and review stores are SQL-backed;
    otherwise both live in memory for the process lifetime.
    """
    config = config or get_veritas_config()

    if session_factory is not None:
        reliability_store = SqlReliabilityStore(session_factory)
        review_store = SqlAlertReviewStore(session_factory)
    else:
        reliability_store = None
        review_store = InMemoryAlertReviewStore()

    if notifier is None:
        notifier = EmailNotifier(recipients=[
            r.strip() for r in config.alert_email_to.split(",") if r.strip()
        ])

    tracker = SourceReliabilityTracker(
        store=reliability_store,
        on_update=lambda r: metrics.update_source_trust(r.provider, r.score),
    )
    dispatcher = AlertDispatcher(
        notifier=notifier,
        review_store=review_store,
        min_severity=config.notify_min_severity,
        max_retries=config.notify_max_retries,
        async_delivery=async_delivery,
    )
    monitor = ValidationMonitor(capacity=config.metrics_capacity, dispatcher=dispatcher)

    return ValidationOrchestrator(
        config=config,
        tracker=tracker,
        dispatcher=dispatcher,
        monitor=monitor,
        review_store=review_store,
    )


_orchestrator = None  # type: Optional[ValidationOrchestrator]
_orchestrator_lock = threading.Lock()


def get_validation_orchestrator() -> ValidationOrchestrator:
    """Get or create the global orchestrator."""
    global _orchestrator

    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = build_orchestrator(session_factory=get_session_factory())
            logger.info("[VERITAS-ORCH] Created global instance")
        return _orchestrator


def reset_validation_orchestrator() -> None:
    """Shut down and drop the global orchestrator (tests, shutdown)."""
    global _orchestrator

    with _orchestrator_lock:
        if _orchestrator is not None:
            _orchestrator.shutdown()
        _orchestrator = None
