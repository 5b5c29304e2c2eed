"""
Unit Tests for Source Reliability Tracking

Reliability Level: SOVEREIGN TIER
Python 3.8 Compatible

Tests the reliability tracker:
- New providers start at full trust
- Adjustments are bounded per step and clamped to [0, 100]
- Snapshots are frozen copies unaffected by later updates
- Summary groups reliable and unreliable providers
- Persistence failures never escape the tracker
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.source_reliability import (
    INITIAL_SCORE,
    MAX_STEP,
    MIN_WEIGHT,
    InMemoryReliabilityStore,
    SourceReliability,
    SourceReliabilityTracker,
    TrustSnapshot,
    score_to_weight,
)
from services.veritas_models import ReliabilityObservation


class BrokenStore:
    def load(self, provider):
        raise RuntimeError("db down")

    def load_all(self):
        raise RuntimeError("db down")

    def save(self, record, event=None):
        raise RuntimeError("db down")


@pytest.fixture
def tracker() -> SourceReliabilityTracker:
    return SourceReliabilityTracker()


class TestWeights:

    def test_weight_from_score(self):
        assert score_to_weight(Decimal("100")) == Decimal("1.0000")
        assert score_to_weight(Decimal("85.5")) == Decimal("0.8550")

    def test_weight_floor(self):
        assert score_to_weight(Decimal("0")) == MIN_WEIGHT

    def test_unknown_provider_full_weight(self):
        assert TrustSnapshot().weight("nobody") == Decimal("1.0000")


class TestTracker:

    def test_new_provider_starts_at_initial_score(self, tracker):
        assert tracker.get_score("kraken") == INITIAL_SCORE
        assert tracker.get_weight("kraken") == Decimal("1.0000")

    def test_disagreement_lowers_score(self, tracker):
        record = tracker.record_disagreement("kraken", Decimal("6"))
        assert record.score == Decimal("94.00")
        assert record.disagreements == 1
        assert record.total_validations == 1

    def test_step_is_bounded(self, tracker):
        record = tracker.record_disagreement("kraken", Decimal("45"))
        assert record.score == INITIAL_SCORE - MAX_STEP

    def test_score_clamped_at_top(self, tracker):
        record = tracker.record_agreement("kraken", Decimal("5"))
        assert record.score == Decimal("100.00")
        assert record.agreements == 1

    def test_score_clamped_at_bottom(self, tracker):
        for _ in range(15):
            tracker.record_disagreement("shady", Decimal("10"))
        assert tracker.get_score("shady") == Decimal("0.00")
        assert tracker.get_weight("shady") == MIN_WEIGHT

    def test_apply_observations(self, tracker):
        applied = tracker.apply_observations([
            ReliabilityObservation("a", True, Decimal("1")),
            ReliabilityObservation("b", False, Decimal("3")),
        ], correlation_id="corr-1")
        assert applied == 2
        assert tracker.get_score("b") == Decimal("97.00")
        history = tracker.get_history("b")
        assert len(history) == 1
        assert history[0].correlation_id == "corr-1"
        assert history[0].score_before == Decimal("100")

    def test_snapshot_is_frozen(self, tracker):
        snapshot = tracker.snapshot(["kraken"])
        tracker.record_disagreement("kraken", Decimal("10"))
        assert snapshot.weight("kraken") == Decimal("1.0000")
        assert tracker.snapshot(["kraken"]).weight("kraken") == Decimal("0.9000")

    def test_on_update_callback(self):
        seen = []
        tracker = SourceReliabilityTracker(on_update=seen.append)
        tracker.record_agreement("a")
        assert [r.provider for r in seen] == ["a"]

    def test_history_limit(self):
        tracker = SourceReliabilityTracker(history_limit=3)
        for _ in range(5):
            tracker.record_disagreement("a", Decimal("1"))
        assert len(tracker.get_history("a")) == 3

    def test_store_loaded_on_first_use(self):
        store = InMemoryReliabilityStore()
        store.save(SourceReliability(provider="kraken", score=Decimal("72.00")))
        tracker = SourceReliabilityTracker(store=store)
        assert tracker.get_score("kraken") == Decimal("72.00")

    def test_store_failures_do_not_escape(self):
        tracker = SourceReliabilityTracker(store=BrokenStore())
        record = tracker.record_disagreement("kraken", Decimal("4"))
        assert record.score == Decimal("96.00")
        assert tracker.get_summary()["total_sources"] == 1


class TestSummary:

    def test_empty_summary(self, tracker):
        summary = tracker.get_summary()
        assert summary["total_sources"] == 0
        assert summary["average_score"] == "100"

    def test_reliable_and_unreliable(self, tracker):
        tracker.record_agreement("good")
        for _ in range(4):
            tracker.record_disagreement("bad", Decimal("10"))
        summary = tracker.get_summary()
        assert summary["total_sources"] == 2
        assert summary["reliable_sources"] == ["good"]
        assert summary["unreliable_sources"] == ["bad"]
        assert summary["average_score"] == "80.00"
        assert summary["sources"][0]["provider"] == "good"
