"""
============================================================================
Veritas Protocol - Configuration
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All thresholds use decimal.Decimal with ROUND_HALF_EVEN
Traceability: Configuration is logged on load

This module provides configuration management for the validation layer:
- Environment variable parsing with type safety
- Default values for every threshold (domain-tuning decisions, not invariants)
- Validation of threshold relationships (VER-040 on violation)

ENVIRONMENT VARIABLES:
    - ENABLE_VERITAS_PROTOCOL: Enable/disable the validation layer (default: true)
    - VERITAS_DOMAIN_TIMEOUT_MS: Per-domain timeout (default: 5000)
    - VERITAS_CROSSCHECK_TIMEOUT_MS: Secondary sentiment timeout (default: 3000)
    - VERITAS_PRICE_DIVERGENCE_PCT: Price warning threshold (default: 2.0)
    - VERITAS_ARBITRAGE_SPREAD_PCT: Arbitrage-implausible spread (default: 5.0)
    - VERITAS_VOLUME_CONCENTRATION_PCT: Single-exchange volume share (default: 90)
    - VERITAS_SENTIMENT_MISMATCH_POINTS: Sentiment divergence (default: 30)
    - VERITAS_FLOW_RATIO_MIN / VERITAS_FLOW_RATIO_MAX: Expected band (0.10 / 0.30)
    - VERITAS_IMPOSSIBLE_VOLUME_USD: High-volume impossibility floor (default: 20e9)
    - VERITAS_ALERT_PENALTY: Quality penalty per warning/error alert (default: 15)
    - VERITAS_SINGLE_SOURCE_SCORE: Quality cap for single-source market data (default: 50)
    - VERITAS_MIN_CONFIDENCE: Minimum sufficient confidence (default: 60)
    - VERITAS_NOTIFY_MIN_SEVERITY: Lowest severity that triggers notification (default: fatal)
    - VERITAS_NOTIFY_MAX_RETRIES: Notification retries before drop (default: 3)
    - VERITAS_ALERT_EMAIL_TO: Operational notification address
    - VERITAS_METRICS_CAPACITY: Ring buffer capacity (default: 1000)
    - VERITAS_ADMIN_TOKEN: Token for alert review endpoints
    - VERITAS_SENTIMENT_CROSSCHECK_URL: HTTP secondary sentiment provider

ERROR CODES:
    - VER-040: Configuration invalid

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, List
from dataclasses import dataclass, field
import logging
import os

from services.veritas_models import Severity, VeritasErrorCode

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Decimal precision for percentage thresholds
PRECISION_PERCENT = Decimal("0.01")

# Decimal precision for ratio thresholds
PRECISION_RATIO = Decimal("0.0001")


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_ENABLED = True
DEFAULT_DOMAIN_TIMEOUT_MS = 5000
DEFAULT_CROSSCHECK_TIMEOUT_MS = 3000
DEFAULT_PRICE_DIVERGENCE_PCT = Decimal("2.00")
DEFAULT_ARBITRAGE_SPREAD_PCT = Decimal("5.00")
DEFAULT_VOLUME_CONCENTRATION_PCT = Decimal("90.00")
DEFAULT_VOLUME_CONCENTRATION_PENALTY = Decimal("10")
DEFAULT_SENTIMENT_MISMATCH_POINTS = Decimal("30.00")
DEFAULT_FLOW_RATIO_MIN = Decimal("0.1000")
DEFAULT_FLOW_RATIO_MAX = Decimal("0.3000")
DEFAULT_IMPOSSIBLE_VOLUME_USD = Decimal("20000000000")
DEFAULT_ALERT_PENALTY = Decimal("15")
DEFAULT_SINGLE_SOURCE_SCORE = Decimal("50")
DEFAULT_RELIABLE_WEIGHT = Decimal("0.70")
DEFAULT_MIN_CONFIDENCE = Decimal("60")
DEFAULT_NOTIFY_MIN_SEVERITY = Severity.FATAL
DEFAULT_NOTIFY_MAX_RETRIES = 3
DEFAULT_ALERT_EMAIL_TO = "ops@localhost"
DEFAULT_METRICS_CAPACITY = 1000


# =============================================================================
# Configuration Validation Exception
# =============================================================================

class VeritasConfigurationError(Exception):
    """
    Exception raised when Veritas configuration is invalid.

    Reliability Level: SOVEREIGN TIER
    """

    def __init__(self, message: str, error_code: str = VeritasErrorCode.CONFIG_INVALID):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# ValidationThresholds
# =============================================================================

@dataclass(frozen=True)
class ValidationThresholds:
    """
    Numeric thresholds read by the domain validators.

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    price_divergence_pct: Decimal = DEFAULT_PRICE_DIVERGENCE_PCT
    arbitrage_spread_pct: Decimal = DEFAULT_ARBITRAGE_SPREAD_PCT
    volume_concentration_pct: Decimal = DEFAULT_VOLUME_CONCENTRATION_PCT
    volume_concentration_penalty: Decimal = DEFAULT_VOLUME_CONCENTRATION_PENALTY
    sentiment_mismatch_points: Decimal = DEFAULT_SENTIMENT_MISMATCH_POINTS
    flow_ratio_min: Decimal = DEFAULT_FLOW_RATIO_MIN
    flow_ratio_max: Decimal = DEFAULT_FLOW_RATIO_MAX
    impossible_volume_usd: Decimal = DEFAULT_IMPOSSIBLE_VOLUME_USD
    alert_penalty: Decimal = DEFAULT_ALERT_PENALTY
    single_source_score: Decimal = DEFAULT_SINGLE_SOURCE_SCORE
    reliable_weight: Decimal = DEFAULT_RELIABLE_WEIGHT

    def to_dict(self) -> dict:
        return {name: str(getattr(self, name)) for name in self.__dataclass_fields__}


# =============================================================================
# VeritasConfig Class
# =============================================================================

@dataclass
class VeritasConfig:
    """
    Validation layer configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - enabled: Deployment-level feature flag (default: True)
    - domain_timeout_ms: Budget per domain validator (default: 5000)
    - crosscheck_timeout_ms: Budget for the secondary sentiment call
    - thresholds: ValidationThresholds used by validators
    - min_confidence: Sufficient-confidence floor (default: 60)
    - notify_min_severity: Lowest severity entering notification lifecycle
    - notify_max_retries: Retries before a notification is dropped
    - alert_email_to: Fixed operational address
    - metrics_capacity: Ring buffer capacity
    - admin_token: Token for review endpoints (None disables them)
    - crosscheck_url: Optional HTTP secondary sentiment provider
    ============================================================================

    Reliability Level: L6 Critical (Sovereign Tier)
    Input Constraints: Thresholds must be positive and correctly ordered
    Side Effects: Logs configuration on load
    """

    enabled: bool = DEFAULT_ENABLED
    domain_timeout_ms: int = DEFAULT_DOMAIN_TIMEOUT_MS
    crosscheck_timeout_ms: int = DEFAULT_CROSSCHECK_TIMEOUT_MS
    thresholds: ValidationThresholds = field(default_factory=ValidationThresholds)
    min_confidence: Decimal = DEFAULT_MIN_CONFIDENCE
    notify_min_severity: Severity = DEFAULT_NOTIFY_MIN_SEVERITY
    notify_max_retries: int = DEFAULT_NOTIFY_MAX_RETRIES
    alert_email_to: str = DEFAULT_ALERT_EMAIL_TO
    metrics_capacity: int = DEFAULT_METRICS_CAPACITY
    admin_token: Optional[str] = None
    crosscheck_url: Optional[str] = None

    def validate(self) -> None:
        """
        Validate configuration consistency.

        Raises:
            VeritasConfigurationError: If thresholds are inconsistent
        """
        errors: List[str] = []
        t = self.thresholds

        if self.domain_timeout_ms <= 0:
            errors.append(
                f"VERITAS_DOMAIN_TIMEOUT_MS must be positive, got: {self.domain_timeout_ms}"
            )
        if self.crosscheck_timeout_ms <= 0:
            errors.append(
                f"VERITAS_CROSSCHECK_TIMEOUT_MS must be positive, got: {self.crosscheck_timeout_ms}"
            )
        if t.price_divergence_pct <= Decimal("0"):
            errors.append(
                f"VERITAS_PRICE_DIVERGENCE_PCT must be positive, got: {t.price_divergence_pct}"
            )
        if t.arbitrage_spread_pct <= t.price_divergence_pct:
            errors.append(
                f"VERITAS_ARBITRAGE_SPREAD_PCT ({t.arbitrage_spread_pct}) must exceed "
                f"VERITAS_PRICE_DIVERGENCE_PCT ({t.price_divergence_pct})"
            )
        if not (Decimal("0") < t.volume_concentration_pct <= Decimal("100")):
            errors.append(
                f"VERITAS_VOLUME_CONCENTRATION_PCT must be within (0, 100], "
                f"got: {t.volume_concentration_pct}"
            )
        if t.sentiment_mismatch_points <= Decimal("0"):
            errors.append(
                f"VERITAS_SENTIMENT_MISMATCH_POINTS must be positive, "
                f"got: {t.sentiment_mismatch_points}"
            )
        if not (Decimal("0") < t.flow_ratio_min < t.flow_ratio_max):
            errors.append(
                f"VERITAS_FLOW_RATIO_MIN ({t.flow_ratio_min}) must be positive and below "
                f"VERITAS_FLOW_RATIO_MAX ({t.flow_ratio_max})"
            )
        if not (Decimal("0") <= t.alert_penalty <= Decimal("100")):
            errors.append(
                f"VERITAS_ALERT_PENALTY must be within [0, 100], got: {t.alert_penalty}"
            )
        if not (Decimal("0") <= t.single_source_score <= Decimal("100")):
            errors.append(
                f"VERITAS_SINGLE_SOURCE_SCORE must be within [0, 100], "
                f"got: {t.single_source_score}"
            )
        if self.notify_max_retries < 0:
            errors.append(
                f"VERITAS_NOTIFY_MAX_RETRIES must be non-negative, got: {self.notify_max_retries}"
            )
        if self.metrics_capacity <= 0:
            errors.append(
                f"VERITAS_METRICS_CAPACITY must be positive, got: {self.metrics_capacity}"
            )

        if errors:
            error_msg = "Veritas configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{VeritasErrorCode.CONFIG_INVALID}] {error_msg}")
            raise VeritasConfigurationError(error_msg)

        logger.info(
            f"[VERITAS-CONFIG] Configuration validated | "
            f"enabled={self.enabled} | "
            f"domain_timeout_ms={self.domain_timeout_ms} | "
            f"price_divergence_pct={t.price_divergence_pct} | "
            f"notify_min_severity={self.notify_min_severity.value}"
        )

    @property
    def domain_timeout_seconds(self) -> float:
        return self.domain_timeout_ms / 1000.0

    @property
    def crosscheck_timeout_seconds(self) -> float:
        return self.crosscheck_timeout_ms / 1000.0

    @classmethod
    def from_environment(cls, validate: bool = True) -> "VeritasConfig":
        """
        Load configuration from environment variables.

        Invalid values log a warning and fall back to defaults; only
        inconsistent combinations fail validation.

        Args:
            validate: Whether to validate configuration after loading

        Returns:
            VeritasConfig instance with values from environment

        Raises:
            VeritasConfigurationError: If thresholds are inconsistent (VER-040)
        """
        enabled_str = os.environ.get("ENABLE_VERITAS_PROTOCOL", "true").lower().strip()
        enabled = enabled_str in ("true", "1", "yes", "on")

        thresholds = ValidationThresholds(
            price_divergence_pct=_env_decimal(
                "VERITAS_PRICE_DIVERGENCE_PCT", DEFAULT_PRICE_DIVERGENCE_PCT, PRECISION_PERCENT
            ),
            arbitrage_spread_pct=_env_decimal(
                "VERITAS_ARBITRAGE_SPREAD_PCT", DEFAULT_ARBITRAGE_SPREAD_PCT, PRECISION_PERCENT
            ),
            volume_concentration_pct=_env_decimal(
                "VERITAS_VOLUME_CONCENTRATION_PCT",
                DEFAULT_VOLUME_CONCENTRATION_PCT,
                PRECISION_PERCENT,
            ),
            sentiment_mismatch_points=_env_decimal(
                "VERITAS_SENTIMENT_MISMATCH_POINTS",
                DEFAULT_SENTIMENT_MISMATCH_POINTS,
                PRECISION_PERCENT,
            ),
            flow_ratio_min=_env_decimal(
                "VERITAS_FLOW_RATIO_MIN", DEFAULT_FLOW_RATIO_MIN, PRECISION_RATIO
            ),
            flow_ratio_max=_env_decimal(
                "VERITAS_FLOW_RATIO_MAX", DEFAULT_FLOW_RATIO_MAX, PRECISION_RATIO
            ),
            impossible_volume_usd=_env_decimal(
                "VERITAS_IMPOSSIBLE_VOLUME_USD", DEFAULT_IMPOSSIBLE_VOLUME_USD
            ),
            alert_penalty=_env_decimal("VERITAS_ALERT_PENALTY", DEFAULT_ALERT_PENALTY),
            single_source_score=_env_decimal(
                "VERITAS_SINGLE_SOURCE_SCORE", DEFAULT_SINGLE_SOURCE_SCORE
            ),
        )

        severity_str = os.environ.get(
            "VERITAS_NOTIFY_MIN_SEVERITY", DEFAULT_NOTIFY_MIN_SEVERITY.value
        ).lower().strip()
        try:
            notify_min_severity = Severity(severity_str)
        except ValueError:
            logger.warning(
                f"[VERITAS-CONFIG] Invalid VERITAS_NOTIFY_MIN_SEVERITY value: {severity_str}, "
                f"using default: {DEFAULT_NOTIFY_MIN_SEVERITY.value}"
            )
            notify_min_severity = DEFAULT_NOTIFY_MIN_SEVERITY

        config = cls(
            enabled=enabled,
            domain_timeout_ms=_env_int("VERITAS_DOMAIN_TIMEOUT_MS", DEFAULT_DOMAIN_TIMEOUT_MS),
            crosscheck_timeout_ms=_env_int(
                "VERITAS_CROSSCHECK_TIMEOUT_MS", DEFAULT_CROSSCHECK_TIMEOUT_MS
            ),
            thresholds=thresholds,
            min_confidence=_env_decimal("VERITAS_MIN_CONFIDENCE", DEFAULT_MIN_CONFIDENCE),
            notify_min_severity=notify_min_severity,
            notify_max_retries=_env_int("VERITAS_NOTIFY_MAX_RETRIES", DEFAULT_NOTIFY_MAX_RETRIES),
            alert_email_to=os.environ.get("VERITAS_ALERT_EMAIL_TO", DEFAULT_ALERT_EMAIL_TO).strip(),
            metrics_capacity=_env_int("VERITAS_METRICS_CAPACITY", DEFAULT_METRICS_CAPACITY),
            admin_token=os.environ.get("VERITAS_ADMIN_TOKEN") or None,
            crosscheck_url=os.environ.get("VERITAS_SENTIMENT_CROSSCHECK_URL") or None,
        )

        logger.info(
            f"[VERITAS-CONFIG] Loading configuration from environment | "
            f"ENABLE_VERITAS_PROTOCOL={config.enabled} | "
            f"VERITAS_DOMAIN_TIMEOUT_MS={config.domain_timeout_ms} | "
            f"VERITAS_CROSSCHECK={'http' if config.crosscheck_url else 'keyword'}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization/logging."""
        return {
            "enabled": self.enabled,
            "domain_timeout_ms": self.domain_timeout_ms,
            "crosscheck_timeout_ms": self.crosscheck_timeout_ms,
            "thresholds": self.thresholds.to_dict(),
            "min_confidence": str(self.min_confidence),
            "notify_min_severity": self.notify_min_severity.value,
            "notify_max_retries": self.notify_max_retries,
            "alert_email_to": self.alert_email_to,
            "metrics_capacity": self.metrics_capacity,
            "admin_token_configured": self.admin_token is not None,
            "crosscheck_url": self.crosscheck_url,
        }


# =============================================================================
# Environment Parsing Helpers
# =============================================================================

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            f"[VERITAS-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        return default


def _env_decimal(name: str, default: Decimal, precision: Optional[Decimal] = None) -> Decimal:
    raw = os.environ.get(name, str(default))
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        logger.warning(
            f"[VERITAS-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        value = default
    if precision is not None:
        value = value.quantize(precision, rounding=ROUND_HALF_EVEN)
    return value


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance: Optional[VeritasConfig] = None


def get_veritas_config(validate: bool = True) -> VeritasConfig:
    """
    Get the global Veritas configuration instance.

    Loads from environment variables on first access.
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = VeritasConfig.from_environment(validate=validate)

    return _config_instance


def reset_veritas_config() -> None:
    """
    Reset the global configuration instance.

    Primarily for testing, so each test can load a fresh environment.
    """
    global _config_instance
    _config_instance = None
    logger.debug("[VERITAS-CONFIG] Configuration instance reset")
