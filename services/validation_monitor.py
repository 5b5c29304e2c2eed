"""
============================================================================
Veritas Protocol - Validation Monitor
============================================================================

Reliability Level: L5 High
Traceability: Every record carries the validation correlation_id

This module provides operational monitoring for the validation layer:
- Bounded ring buffer of ValidationMetrics (oldest dropped past capacity)
- Time-windowed aggregation (success rate, duration, confidence, alerts)
- Fixed rule set deciding whether to emit operational notifications
- Dashboard snapshot for the read-only metrics endpoint

CONCURRENCY:
    record() is a single deque.append on a bounded deque, which needs no
    lock. Readers take a copy of the deque before iterating. The only lock
    guards the notification cooldown table, which the hot path never
    touches.

RULES (evaluated once the window holds at least min_samples records):
    - error_rate       > 5%   warning, > 50% critical
    - avg_confidence   < 70   warning
    - fatal_alert_rate > 1%   warning
    - avg_duration_ms  > 5000 warning

============================================================================
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional, Dict, Any, List, Deque, Callable, Tuple
import logging
import threading
import time

from app.observability import metrics

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_CAPACITY = 1000
DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_MIN_SAMPLES = 10
DEFAULT_COOLDOWN_SECONDS = 900

ERROR_RATE_WARNING = Decimal("0.05")
ERROR_RATE_CRITICAL = Decimal("0.50")
AVG_CONFIDENCE_WARNING = Decimal("70")
FATAL_RATE_WARNING = Decimal("0.01")
AVG_DURATION_WARNING_MS = Decimal("5000")

PRECISION_RATE = Decimal("0.0001")
PRECISION_SCORE = Decimal("0.01")

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

LEVEL_WARNING = "warning"
LEVEL_CRITICAL = "critical"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ValidationMetrics:
    """One validation attempt as seen by monitoring."""
    symbol: str
    success: bool
    duration_ms: Decimal
    confidence: Decimal
    is_valid: bool
    alert_counts: Dict[str, int] = field(default_factory=dict)
    error_kinds: Tuple[str, ...] = ()
    domains_validated: Tuple[str, ...] = ()
    skipped: bool = False
    correlation_id: Optional[str] = None
    recorded_at: float = field(default_factory=time.time)

    @property
    def has_fatal(self) -> bool:
        return self.alert_counts.get("fatal", 0) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "success": self.success,
            "duration_ms": str(self.duration_ms),
            "confidence": str(self.confidence),
            "is_valid": self.is_valid,
            "alert_counts": dict(self.alert_counts),
            "error_kinds": list(self.error_kinds),
            "domains_validated": list(self.domains_validated),
            "skipped": self.skipped,
            "correlation_id": self.correlation_id,
            "timestamp": datetime.fromtimestamp(self.recorded_at, tz=timezone.utc).isoformat(),
        }


@dataclass(frozen=True)
class AggregatedMetrics:
    """Windowed view over the ring buffer."""
    window_seconds: int
    total_validations: int
    successful_validations: int
    failed_validations: int
    skipped_validations: int
    success_rate: Decimal
    error_rate: Decimal
    average_duration_ms: Decimal
    average_confidence: Decimal
    fatal_alert_rate: Decimal
    alert_counts: Dict[str, int]
    most_common_errors: List[Tuple[str, int]]
    symbols_validated: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_seconds": self.window_seconds,
            "total_validations": self.total_validations,
            "successful_validations": self.successful_validations,
            "failed_validations": self.failed_validations,
            "skipped_validations": self.skipped_validations,
            "success_rate": str(self.success_rate),
            "error_rate": str(self.error_rate),
            "average_duration_ms": str(self.average_duration_ms),
            "average_confidence": str(self.average_confidence),
            "fatal_alert_rate": str(self.fatal_alert_rate),
            "alert_counts": dict(self.alert_counts),
            "most_common_errors": [
                {"kind": kind, "count": count} for kind, count in self.most_common_errors
            ],
            "symbols_validated": list(self.symbols_validated),
        }


@dataclass(frozen=True)
class MonitorAlert:
    """Operational rule breach (not per-symbol)."""
    rule: str
    level: str
    message: str
    value: Decimal
    threshold: Decimal
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "level": self.level,
            "message": self.message,
            "value": str(self.value),
            "threshold": str(self.threshold),
            "timestamp": self.timestamp.isoformat(),
        }


def _rate(part: int, whole: int) -> Decimal:
    if whole == 0:
        return Decimal("0").quantize(PRECISION_RATE)
    return (Decimal(part) / Decimal(whole)).quantize(PRECISION_RATE, rounding=ROUND_HALF_EVEN)


def _mean(values: List[Decimal]) -> Decimal:
    if not values:
        return Decimal("0").quantize(PRECISION_SCORE)
    return (sum(values) / Decimal(len(values))).quantize(PRECISION_SCORE, rounding=ROUND_HALF_EVEN)


# =============================================================================
# Monitor
# =============================================================================

class ValidationMonitor:
    """
    Ring-buffer monitor for validation attempts.

    Reliability Level: L5 High
    Input Constraints: capacity > 0
    Side Effects: Operational notifications through the dispatcher
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        min_samples: int = DEFAULT_MIN_SAMPLES,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        dispatcher: Optional[Any] = None,
        clock: Callable[[], float] = time.time
    ):
        self._buffer: Deque[ValidationMetrics] = deque(maxlen=capacity)
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.min_samples = min_samples
        self.cooldown_seconds = cooldown_seconds
        self._dispatcher = dispatcher
        self._clock = clock

        self._cooldown_lock = threading.Lock()
        self._last_notified: Dict[str, float] = {}

    def record(self, entry: ValidationMetrics) -> None:
        """Append one attempt; never blocks."""
        self._buffer.append(entry)

    def snapshot(self) -> List[ValidationMetrics]:
        return list(self._buffer.copy())

    def _window(self, window_seconds: Optional[int] = None) -> List[ValidationMetrics]:
        horizon = self._clock() - (window_seconds or self.window_seconds)
        return [m for m in self.snapshot() if m.recorded_at >= horizon]

    def aggregate(self, window_seconds: Optional[int] = None) -> AggregatedMetrics:
        window = self._window(window_seconds)
        scored = [m for m in window if not m.skipped]
        total = len(window)
        failed = sum(1 for m in window if not m.success)

        alert_counts: Counter = Counter()
        errors: Counter = Counter()
        for m in window:
            alert_counts.update(m.alert_counts)
            errors.update(m.error_kinds)

        return AggregatedMetrics(
            window_seconds=window_seconds or self.window_seconds,
            total_validations=total,
            successful_validations=total - failed,
            failed_validations=failed,
            skipped_validations=total - len(scored),
            success_rate=_rate(total - failed, total),
            error_rate=_rate(failed, total),
            average_duration_ms=_mean([m.duration_ms for m in window]),
            average_confidence=_mean([m.confidence for m in scored]),
            fatal_alert_rate=_rate(sum(1 for m in window if m.has_fatal), total),
            alert_counts=dict(alert_counts),
            most_common_errors=errors.most_common(5),
            symbols_validated=sorted({m.symbol for m in window}),
        )

    def evaluate_rules(self, aggregated: Optional[AggregatedMetrics] = None) -> List[MonitorAlert]:
        agg = aggregated or self.aggregate()
        if agg.total_validations < self.min_samples:
            return []

        alerts: List[MonitorAlert] = []
        if agg.error_rate > ERROR_RATE_CRITICAL:
            alerts.append(MonitorAlert(
                rule="error_rate",
                level=LEVEL_CRITICAL,
                message=f"Validation error rate {agg.error_rate} exceeds {ERROR_RATE_CRITICAL}",
                value=agg.error_rate,
                threshold=ERROR_RATE_CRITICAL,
            ))
        elif agg.error_rate > ERROR_RATE_WARNING:
            alerts.append(MonitorAlert(
                rule="error_rate",
                level=LEVEL_WARNING,
                message=f"Validation error rate {agg.error_rate} exceeds {ERROR_RATE_WARNING}",
                value=agg.error_rate,
                threshold=ERROR_RATE_WARNING,
            ))

        scored = agg.total_validations - agg.skipped_validations
        if scored > 0 and agg.average_confidence < AVG_CONFIDENCE_WARNING:
            alerts.append(MonitorAlert(
                rule="average_confidence",
                level=LEVEL_WARNING,
                message=f"Average confidence {agg.average_confidence} below {AVG_CONFIDENCE_WARNING}",
                value=agg.average_confidence,
                threshold=AVG_CONFIDENCE_WARNING,
            ))

        if agg.fatal_alert_rate > FATAL_RATE_WARNING:
            alerts.append(MonitorAlert(
                rule="fatal_alert_rate",
                level=LEVEL_WARNING,
                message=f"Fatal alert rate {agg.fatal_alert_rate} exceeds {FATAL_RATE_WARNING}",
                value=agg.fatal_alert_rate,
                threshold=FATAL_RATE_WARNING,
            ))

        if agg.average_duration_ms > AVG_DURATION_WARNING_MS:
            alerts.append(MonitorAlert(
                rule="average_duration",
                level=LEVEL_WARNING,
                message=f"Average duration {agg.average_duration_ms}ms exceeds {AVG_DURATION_WARNING_MS}ms",
                value=agg.average_duration_ms,
                threshold=AVG_DURATION_WARNING_MS,
            ))
        return alerts

    @staticmethod
    def health_status(alerts: List[MonitorAlert]) -> str:
        if any(a.level == LEVEL_CRITICAL for a in alerts):
            return UNHEALTHY
        if alerts:
            return DEGRADED
        return HEALTHY

    def check_and_notify(self, correlation_id: Optional[str] = None) -> List[MonitorAlert]:
        """
        Evaluate rules, update the health gauge and send operational
        notifications for breaches outside their cooldown.
        """
        alerts = self.evaluate_rules()
        status = self.health_status(alerts)
        metrics.update_monitor_health(status)

        now = self._clock()
        due: List[MonitorAlert] = []
        with self._cooldown_lock:
            for alert in alerts:
                last = self._last_notified.get(alert.rule)
                if last is not None and now - last < self.cooldown_seconds:
                    continue
                self._last_notified[alert.rule] = now
                due.append(alert)

        for alert in due:
            logger.warning(
                f"[VERITAS-MONITOR] Rule breached | "
                f"rule={alert.rule} | "
                f"level={alert.level} | "
                f"value={alert.value} | "
                f"threshold={alert.threshold} | "
                f"correlation_id={correlation_id}"
            )
            if self._dispatcher is None:
                continue
            try:
                self._dispatcher.send_operational(
                    alert.rule,
                    f"[VERITAS {alert.level.upper()}] {alert.rule}",
                    f"{alert.message}\nHealth status: {status}",
                    correlation_id,
                )
            except Exception as e:
                logger.error(
                    f"[VERITAS-MONITOR] Operational notification failed: {str(e)} | "
                    f"rule={alert.rule}"
                )
        return alerts

    def recent(self, limit: int = 20) -> List[ValidationMetrics]:
        if limit <= 0:
            return []
        return list(reversed(self.snapshot()[-limit:]))

    def dashboard(self, recent_limit: int = 20) -> Dict[str, Any]:
        """Read-only snapshot for the metrics endpoint."""
        aggregated = self.aggregate()
        alerts = self.evaluate_rules(aggregated)
        return {
            "aggregatedMetrics": aggregated.to_dict(),
            "activeAlerts": [a.to_dict() for a in alerts],
            "recentValidations": [m.to_dict() for m in self.recent(recent_limit)],
            "healthStatus": self.health_status(alerts),
        }
