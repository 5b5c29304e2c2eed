"""
============================================================================
Unit Tests - Domain Dataset and Request Schemas
============================================================================

Reliability Level: L6 Critical
Test Coverage: DomainDataset, MarketQuote, SocialMetrics, OnChainFlowSummary,
               ValidationRequest

Tests verify:
1. Decimal-only coercion of prices, volumes and scores
2. Structural rejection of negative or out-of-range values
3. Domain presence and immutable removal
4. camelCase request bodies map onto the dataset types
============================================================================
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from pydantic import ValidationError

from app.schemas.validation import (
    DEFAULT_ONCHAIN_PROVIDER,
    DEFAULT_SOCIAL_PROVIDER,
    ValidationRequest,
)
from data_ingestion.schemas import (
    ChainTransaction,
    DomainDataset,
    MarketQuote,
    NewsItem,
    OnChainFlowSummary,
    SecondarySentiment,
    SentimentDistribution,
    SocialMetrics,
)
from services.veritas_models import Domain


# =============================================================================
# Dataset Types
# =============================================================================

class TestMarketQuote:

    def test_coerces_to_decimal(self):
        quote = MarketQuote("kraken", "90000.50", 1200)
        assert quote.price == Decimal("90000.50")
        assert quote.volume_24h == Decimal("1200")

    def test_float_goes_through_str(self):
        assert MarketQuote("kraken", 0.1).price == Decimal("0.1")

    @pytest.mark.parametrize("price", ["0", "-1"])
    def test_non_positive_price_rejected(self, price):
        with pytest.raises(ValueError):
            MarketQuote("kraken", price)

    def test_blank_provider_rejected(self):
        with pytest.raises(ValueError):
            MarketQuote("  ", "1")

    def test_readings(self):
        readings = MarketQuote("kraken", "90000", "5").readings()
        assert [r.metric for r in readings] == ["price", "volume_24h"]


class TestSocialAndOnChain:

    def test_sentiment_out_of_range(self):
        with pytest.raises(ValueError):
            SocialMetrics("lunarcrush", "101", 5)

    def test_negative_mentions(self):
        with pytest.raises(ValueError):
            SocialMetrics("lunarcrush", "50", -1)

    def test_zero_mentions_with_distribution_is_constructible(self):
        # Contradictions are for the validator to flag, not the type
        metrics = SocialMetrics(
            "lunarcrush", "50", 0, SentimentDistribution("60", "10", "30")
        )
        assert metrics.distribution.has_nonzero_component()

    def test_secondary_range(self):
        with pytest.raises(ValueError):
            SecondarySentiment("santiment", "-0.01")

    def test_flow_totals(self):
        summary = OnChainFlowSummary("glassnode", "10", "5", "2")
        assert summary.exchange_flow == Decimal("15")
        assert summary.total_flow == Decimal("17")

    def test_negative_flow_rejected(self):
        with pytest.raises(ValueError):
            OnChainFlowSummary("glassnode", exchange_deposits="-1")


class TestDomainDataset:

    def test_present_domains_in_order(self):
        dataset = DomainDataset(
            onchain=OnChainFlowSummary("glassnode"),
            market=[MarketQuote("kraken", "1")],
            news=[NewsItem("coindesk", "headline")],
        )
        assert dataset.present_domains() == ["market", "onchain"]

    def test_without_returns_copy(self):
        dataset = DomainDataset(
            market=[MarketQuote("kraken", "1")],
            social=SocialMetrics("lunarcrush", "50", 3),
        )
        trimmed = dataset.without("social")
        assert trimmed.social is None
        assert dataset.social is not None
        assert trimmed.market == dataset.market

    def test_without_unknown_domain(self):
        with pytest.raises(ValueError):
            DomainDataset().without("weather")

    def test_to_dict(self):
        data = DomainDataset(market=[MarketQuote("kraken", "1.5")]).to_dict()
        assert data["market"][0]["price"] == "1.5"
        assert data["social"] is None

    def test_to_dict_keeps_raw_posts_and_transactions(self):
        dataset = DomainDataset(
            social=SocialMetrics("lunarcrush", "50", 2, posts=("moon", "dump")),
            onchain=OnChainFlowSummary(
                "glassnode",
                transactions=(ChainTransaction("0x1", "0xA", "0xB", "250.5"),),
            ),
        )
        data = dataset.to_dict()
        assert data["social"]["posts"] == ["moon", "dump"]
        assert data["onchain"]["transactions"] == [
            {"hash": "0x1", "from": "0xA", "to": "0xB", "value_usd": "250.5"},
        ]


# =============================================================================
# Request Schema
# =============================================================================

class TestValidationRequest:

    def test_camel_case_body(self):
        request = ValidationRequest.model_validate({
            "symbol": " BTC ",
            "domainDataset": {
                "market": [{"src": "coingecko", "price": "90000", "volume24h": "10"}],
                "social": {"sentimentScore": 61, "mentionCount": 4},
                "onChain": {"exchangeDeposits": "5", "reportedVolume24h": "100"},
                "news": [{"source": "coindesk", "title": "t",
                          "publishedAt": "2026-01-01T00:00:00Z"}],
            },
            "options": {"timeoutMs": 1500, "enabledDomains": ["market", "onchain"]},
        })
        assert request.symbol == "BTC"

        dataset = request.to_dataset()
        assert dataset.market[0].provider == "coingecko"
        assert dataset.market[0].volume_24h == Decimal("10")
        assert dataset.social.provider == DEFAULT_SOCIAL_PROVIDER
        assert dataset.social.sentiment_score == Decimal("61")
        assert dataset.onchain.provider == DEFAULT_ONCHAIN_PROVIDER
        assert dataset.news[0].published_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

        options = request.to_options()
        assert options.timeout_ms == 1500
        assert options.enabled_domains == (Domain.MARKET, Domain.ONCHAIN)

    def test_raw_transactions_carried(self):
        request = ValidationRequest.model_validate({
            "symbol": "ETH",
            "domainDataset": {"onchain": {"transactions": [
                {"hash": "0x1", "from": "0xA", "to": "0xB", "valueUsd": "250"},
            ]}},
        })
        tx = request.to_dataset().onchain.transactions[0]
        assert (tx.from_address, tx.value_usd) == ("0xA", Decimal("250"))

    def test_blank_symbol_rejected(self):
        with pytest.raises(ValidationError):
            ValidationRequest.model_validate({"symbol": "  "})

    @pytest.mark.parametrize("timeout_ms", [0, -5, 60001])
    def test_timeout_bounds(self, timeout_ms):
        with pytest.raises(ValidationError):
            ValidationRequest.model_validate(
                {"symbol": "BTC", "options": {"timeoutMs": timeout_ms}}
            )

    def test_defaults(self):
        request = ValidationRequest.model_validate({"symbol": "BTC"})
        assert request.to_dataset() == DomainDataset()
        assert request.to_options().timeout_ms is None
