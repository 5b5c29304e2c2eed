"""
Unit Tests for Social Sentiment Validation

Reliability Level: SOVEREIGN TIER
Python 3.8 Compatible

Tests the social validator:
- Zero mentions with a nonzero distribution is a fatal impossibility
- Secondary estimates come from the dataset first, then the cross-check
- Cross-check failures and timeouts degrade to a warning, never an error
- Sentiment gaps above the mismatch threshold raise a warning
"""

import asyncio
import os
import sys
import uuid
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.logic.social_validator import (
    CHECK_CONSISTENCY,
    CHECK_CROSS_VALIDATION,
    CHECK_IMPOSSIBILITY,
    SocialValidator,
)
from data_ingestion.schemas import (
    DomainDataset,
    SecondarySentiment,
    SentimentDistribution,
    SocialMetrics,
)
from services.source_reliability import TrustSnapshot
from services.veritas_models import (
    CrossCheckUnavailableError,
    DomainStatus,
    Severity,
    ValidationContext,
    ValidationErrorKind,
)


# =============================================================================
# Fakes
# =============================================================================

class StaticCrossCheck:
    def __init__(self, score: str, provider: str = "rescorer"):
        self.calls = 0
        self._estimate = SecondarySentiment(provider, Decimal(score))

    async def estimate(self, symbol, metrics, correlation_id=None):
        self.calls += 1
        return self._estimate


class FailingCrossCheck:
    async def estimate(self, symbol, metrics, correlation_id=None):
        raise CrossCheckUnavailableError("rescorer", "service down")


class SlowCrossCheck:
    async def estimate(self, symbol, metrics, correlation_id=None):
        await asyncio.sleep(5)
        return SecondarySentiment("slow", Decimal("50"))


def context(timeout_seconds: float = 5.0) -> ValidationContext:
    return ValidationContext("BTC", str(uuid.uuid4()), timeout_seconds)


def social(score="60", mentions=100, distribution=None, posts=(), secondary=None):
    return DomainDataset(social=SocialMetrics(
        provider="lunarcrush",
        sentiment_score=Decimal(score),
        mention_count=mentions,
        distribution=distribution or SentimentDistribution(),
        posts=posts,
        secondary=secondary,
    ))


# =============================================================================
# Impossibility
# =============================================================================

class TestImpossibility:

    @pytest.mark.asyncio
    async def test_zero_mentions_with_distribution_is_fatal(self):
        dataset = social(mentions=0, distribution=SentimentDistribution(
            Decimal("60"), Decimal("30"), Decimal("10")
        ))
        result = await SocialValidator().validate(dataset, TrustSnapshot(), context())

        assert result.status == DomainStatus.DISCARDED
        assert result.quality_score == Decimal("0.00")
        assert len(result.alerts) == 1
        alert = result.alerts[0]
        assert alert.severity == Severity.FATAL
        assert alert.error_kind == ValidationErrorKind.IMPOSSIBILITY
        assert alert.symbol == "BTC"
        assert result.failed_checks == (CHECK_IMPOSSIBILITY,)

    @pytest.mark.asyncio
    async def test_impossibility_skips_cross_check(self):
        cross_check = StaticCrossCheck("50")
        dataset = social(
            mentions=0,
            distribution=SentimentDistribution(positive=Decimal("1")),
            posts=("to the moon",),
        )
        await SocialValidator(cross_check=cross_check).validate(
            dataset, TrustSnapshot(), context()
        )
        assert cross_check.calls == 0

    @pytest.mark.asyncio
    async def test_zero_mentions_with_empty_distribution_is_fine(self):
        result = await SocialValidator().validate(
            social(mentions=0), TrustSnapshot(), context()
        )
        assert result.status == DomainStatus.VALIDATED
        assert not result.has_fatal


# =============================================================================
# Secondary Estimates
# =============================================================================

class TestCrossValidation:

    @pytest.mark.asyncio
    async def test_no_secondary_is_informational(self):
        result = await SocialValidator().validate(social(), TrustSnapshot(), context())
        assert [a.severity for a in result.alerts] == [Severity.INFO]
        assert result.quality_score == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_dataset_secondary_preferred_over_cross_check(self):
        cross_check = StaticCrossCheck("10")
        dataset = social(
            score="60",
            posts=("bullish",),
            secondary=SecondarySentiment("santiment", Decimal("65")),
        )
        result = await SocialValidator(cross_check=cross_check).validate(
            dataset, TrustSnapshot(), context()
        )
        assert cross_check.calls == 0
        assert result.alerts == ()
        assert CHECK_CONSISTENCY in result.passed_checks

    @pytest.mark.asyncio
    async def test_cross_check_needs_posts(self):
        cross_check = StaticCrossCheck("50")
        await SocialValidator(cross_check=cross_check).validate(
            social(posts=()), TrustSnapshot(), context()
        )
        assert cross_check.calls == 0

    @pytest.mark.asyncio
    async def test_cross_check_failure_degrades_to_warning(self):
        result = await SocialValidator(cross_check=FailingCrossCheck()).validate(
            social(posts=("pump",)), TrustSnapshot(), context()
        )
        assert [a.severity for a in result.alerts] == [Severity.WARNING]
        assert result.alerts[0].error_kind == ValidationErrorKind.PROVIDER_UNAVAILABLE
        assert CHECK_CROSS_VALIDATION in result.failed_checks
        assert result.status == DomainStatus.VALIDATED
        assert result.quality_score == Decimal("85.00")

    @pytest.mark.asyncio
    async def test_cross_check_timeout_degrades_to_warning(self):
        validator = SocialValidator(
            cross_check=SlowCrossCheck(), crosscheck_timeout_seconds=0.05
        )
        result = await validator.validate(
            social(posts=("pump",)), TrustSnapshot(), context()
        )
        assert result.alerts[0].severity == Severity.WARNING
        assert "timed out" in result.alerts[0].message

    def test_crosscheck_budget_bounded_by_domain_timeout(self):
        validator = SocialValidator(crosscheck_timeout_seconds=3.0)
        assert validator.crosscheck_budget(5.0) == 3.0
        assert validator.crosscheck_budget(1.0) == pytest.approx(0.6)


# =============================================================================
# Consistency
# =============================================================================

class TestSentimentConsistency:

    @pytest.mark.asyncio
    async def test_large_gap_warns_with_discrepancy(self):
        result = await SocialValidator(cross_check=StaticCrossCheck("20")).validate(
            social(score="75", posts=("moon",)), TrustSnapshot(), context()
        )
        assert [a.severity for a in result.alerts] == [Severity.WARNING]
        assert result.alerts[0].error_kind == ValidationErrorKind.INCONSISTENCY
        d = result.discrepancies[0]
        assert d.metric == "sentiment_score"
        assert d.delta == Decimal("55.00")
        assert CHECK_CONSISTENCY in result.failed_checks
        assert all(not o.agreed for o in result.observations)

    @pytest.mark.asyncio
    async def test_gap_at_threshold_passes(self):
        result = await SocialValidator(cross_check=StaticCrossCheck("40")).validate(
            social(score="70", posts=("hodl",)), TrustSnapshot(), context()
        )
        assert result.alerts == ()
        assert {o.provider for o in result.observations} == {"lunarcrush", "rescorer"}
        assert all(o.agreed for o in result.observations)
