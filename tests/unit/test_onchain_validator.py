"""
Unit Tests for On-Chain Flow Validation

Reliability Level: SOVEREIGN TIER
Python 3.8 Compatible

Tests the on-chain validator and flow categorizer:
- Flow/volume ratio scoring across the expected, moderate and outer bands
- Huge reported volume with zero categorized flow is a fatal impossibility
- Missing volume yields a partial result with a warning
- Raw transactions are categorized against the exchange address book
"""

import json
import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.logic.onchain_validator import (
    CHECK_CONSISTENCY,
    CHECK_DIRECTION,
    CHECK_IMPOSSIBILITY,
    OnChainValidator,
    flow_ratio_score,
)
from data_ingestion.flow_categorizer import (
    ENV_EXCHANGE_ADDRESSES_FILE,
    FlowCategorizer,
    FlowCategory,
    load_exchange_addresses,
)
from data_ingestion.schemas import (
    ChainTransaction,
    DomainDataset,
    MarketQuote,
    OnChainFlowSummary,
)
from services.veritas_models import DomainStatus, Severity, ValidationErrorKind


RATIO_MIN = Decimal("0.1")
RATIO_MAX = Decimal("0.3")


def onchain(**kwargs) -> DomainDataset:
    market = kwargs.pop("market", ())
    return DomainDataset(market=market, onchain=OnChainFlowSummary(provider="glassnode", **kwargs))


# =============================================================================
# Ratio Scoring
# =============================================================================

class TestFlowRatioScore:

    @pytest.mark.parametrize("ratio,expected", [
        ("0.1", "100.00"),
        ("0.2", "100.00"),
        ("0.3", "100.00"),
        ("0.07", "80.00"),
        ("0.05", "80.00"),
        ("0.4", "80.00"),
        ("0.5", "80.00"),
        ("0.025", "25.00"),
        ("0", "0.00"),
        ("0.9", "60.00"),
        ("2.5", "0.00"),
    ])
    def test_band_scores(self, ratio, expected):
        assert flow_ratio_score(Decimal(ratio), RATIO_MIN, RATIO_MAX) == Decimal(expected)


# =============================================================================
# Validator
# =============================================================================

class TestOnChainValidator:

    def test_ratio_in_band_scores_full(self):
        dataset = onchain(
            exchange_deposits=Decimal("100000"),
            exchange_withdrawals=Decimal("100000"),
            reported_volume_24h=Decimal("1000000"),
        )
        result = OnChainValidator().evaluate("BTC", dataset)
        assert result.status == DomainStatus.VALIDATED
        assert result.quality_score == Decimal("100.00")
        assert result.alerts == ()
        assert set(result.passed_checks) == {CHECK_IMPOSSIBILITY, CHECK_CONSISTENCY, CHECK_DIRECTION}

    def test_low_ratio_warns(self):
        dataset = onchain(
            exchange_deposits=Decimal("10000"),
            reported_volume_24h=Decimal("1000000"),
        )
        result = OnChainValidator().evaluate("BTC", dataset)
        severities = [a.severity for a in result.alerts]
        assert Severity.WARNING in severities
        assert result.quality_score == Decimal("10.00")
        assert CHECK_CONSISTENCY in result.failed_checks
        assert result.discrepancies[0].metric == "flow_to_volume_ratio"
        assert result.discrepancies[0].threshold == RATIO_MIN

    def test_impossible_volume_with_zero_flow_is_fatal(self):
        dataset = onchain(reported_volume_24h=Decimal("25000000000"))
        result = OnChainValidator().evaluate("BTC", dataset)
        assert result.status == DomainStatus.DISCARDED
        assert result.quality_score == Decimal("0.00")
        assert result.alerts[0].severity == Severity.FATAL
        assert result.alerts[0].error_kind == ValidationErrorKind.IMPOSSIBILITY
        assert result.failed_checks == (CHECK_IMPOSSIBILITY,)

    def test_peer_transfers_count_as_categorized_flow(self):
        dataset = onchain(
            peer_transfers=Decimal("1"),
            reported_volume_24h=Decimal("25000000000"),
        )
        result = OnChainValidator().evaluate("BTC", dataset)
        assert result.status == DomainStatus.VALIDATED
        assert not result.has_fatal

    def test_volume_at_limit_is_not_impossible(self):
        dataset = onchain(reported_volume_24h=Decimal("20000000000"))
        result = OnChainValidator().evaluate("BTC", dataset)
        assert result.status == DomainStatus.VALIDATED

    def test_missing_volume_gives_partial_result(self):
        dataset = onchain(exchange_deposits=Decimal("5000"))
        result = OnChainValidator().evaluate("BTC", dataset)
        assert result.quality_score == Decimal("50.00")
        warning = [a for a in result.alerts if a.severity == Severity.WARNING][0]
        assert warning.error_kind == ValidationErrorKind.PROVIDER_UNAVAILABLE
        assert CHECK_CONSISTENCY in result.failed_checks

    def test_volume_falls_back_to_market_quotes(self):
        dataset = onchain(
            exchange_deposits=Decimal("100000"),
            exchange_withdrawals=Decimal("100000"),
            market=(
                MarketQuote("coingecko", Decimal("90000"), Decimal("1000000")),
                MarketQuote("kraken", Decimal("90100"), Decimal("400000")),
            ),
        )
        result = OnChainValidator().evaluate("BTC", dataset)
        assert result.quality_score == Decimal("100.00")

    def test_net_outflow_noted_as_accumulation(self):
        dataset = onchain(
            exchange_deposits=Decimal("50000"),
            exchange_withdrawals=Decimal("150000"),
            reported_volume_24h=Decimal("1000000"),
        )
        result = OnChainValidator().evaluate("BTC", dataset)
        assert [a.severity for a in result.alerts] == [Severity.INFO]
        assert "accumulation" in result.alerts[0].message
        assert result.quality_score == Decimal("100.00")

    def test_not_present_is_not_validated(self):
        result = OnChainValidator().evaluate("BTC", DomainDataset())
        assert result.status == DomainStatus.NOT_VALIDATED


# =============================================================================
# Flow Categorizer
# =============================================================================

class TestFlowCategorizer:

    @pytest.fixture
    def categorizer(self) -> FlowCategorizer:
        return FlowCategorizer({"0xEXCHANGE": "binance"})

    def test_categories(self, categorizer):
        deposit = ChainTransaction("t1", "0xwallet", "0xexchange", Decimal("10"))
        withdrawal = ChainTransaction("t2", "0xExchange", "0xwallet", Decimal("20"))
        peer = ChainTransaction("t3", "0xa", "0xb", Decimal("30"))
        assert categorizer.categorize(deposit) == FlowCategory.EXCHANGE_DEPOSIT
        assert categorizer.categorize(withdrawal) == FlowCategory.EXCHANGE_WITHDRAWAL
        assert categorizer.categorize(peer) == FlowCategory.PEER_TRANSFER

        flows = categorizer.summarize([deposit, withdrawal, peer])
        assert flows.exchange_deposits == Decimal("10")
        assert flows.exchange_withdrawals == Decimal("20")
        assert flows.peer_transfers == Decimal("30")
        assert flows.transaction_count == 3

    def test_supplied_totals_win_over_transactions(self, categorizer):
        summary = OnChainFlowSummary(
            provider="glassnode",
            exchange_deposits=Decimal("500"),
            transactions=(ChainTransaction("t1", "0xa", "0xexchange", Decimal("10")),),
        )
        flows = categorizer.resolve_flows(summary)
        assert flows.exchange_deposits == Decimal("500")

    def test_transactions_categorized_when_no_totals(self, categorizer):
        summary = OnChainFlowSummary(
            provider="glassnode",
            transactions=(ChainTransaction("t1", "0xa", "0xexchange", Decimal("10")),),
        )
        assert categorizer.resolve_flows(summary).exchange_deposits == Decimal("10")

    def test_validator_uses_categorized_transactions(self, categorizer):
        dataset = DomainDataset(onchain=OnChainFlowSummary(
            provider="glassnode",
            reported_volume_24h=Decimal("25000000000"),
            transactions=(
                ChainTransaction("t1", "0xa", "0xexchange", Decimal("4000000000")),
            ),
        ))
        result = OnChainValidator(categorizer=categorizer).evaluate("BTC", dataset)
        assert result.status == DomainStatus.VALIDATED

    def test_unknown_address(self, categorizer):
        assert categorizer.exchange_for("") is None
        assert categorizer.exchange_for("0xnobody") is None
        assert categorizer.exchange_for("0xExChAnGe") == "binance"

    def test_address_book_file_merged(self, tmp_path):
        path = tmp_path / "addresses.json"
        path.write_text(json.dumps({"0xABC": "okx"}))
        os.environ[ENV_EXCHANGE_ADDRESSES_FILE] = str(path)
        addresses = load_exchange_addresses()
        assert addresses["0xabc"] == "okx"

    def test_unreadable_address_book_ignored(self, tmp_path):
        os.environ[ENV_EXCHANGE_ADDRESSES_FILE] = str(tmp_path / "missing.json")
        addresses = load_exchange_addresses()
        assert "0xabc" not in addresses
        assert len(addresses) > 0
