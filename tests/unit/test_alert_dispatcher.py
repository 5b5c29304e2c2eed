"""
Unit Tests for the Alert Dispatcher

Reliability Level: SOVEREIGN TIER
Python 3.8 Compatible

Tests:
- Only alerts at or above the minimum severity enter the lifecycle
- Fatal alerts are recorded for human review before notification
- Failed sends retry up to max_retries, then drop
- An unconfigured channel drops after the first failed attempt
- Notifier exceptions never escape dispatch()
- Background delivery drains on flush()
"""

import os
import sys
import threading
from typing import List

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from conftest import FakeNotifier
from services.alert_dispatcher import AlertDispatcher
from services.alert_review_store import InMemoryAlertReviewStore
from services.veritas_models import Domain, Severity, ValidationAlert


def make_alert(severity: Severity = Severity.FATAL) -> ValidationAlert:
    return ValidationAlert(
        severity=severity,
        domain=Domain.ONCHAIN,
        message=f"{severity.value} alert",
        affected_sources=("glassnode",),
        symbol="BTC",
    )


def sync_dispatcher(notifier, store=None, statuses: List[str] = None, **kwargs) -> AlertDispatcher:
    return AlertDispatcher(
        notifier=notifier,
        review_store=store,
        retry_backoff_seconds=0,
        async_delivery=False,
        on_status=statuses.append if statuses is not None else None,
        **kwargs
    )


class RaisingNotifier:
    is_enabled = True

    def __init__(self):
        self.calls = 0

    def send_alert(self, alert, correlation_id=None):
        self.calls += 1
        raise RuntimeError("socket closed")

    def send(self, subject, body, correlation_id=None):
        raise RuntimeError("socket closed")


class BlockingNotifier(FakeNotifier):
    """Holds every send until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send_alert(self, alert, correlation_id=None):
        self.entered.set()
        self.release.wait(timeout=10.0)
        return super().send_alert(alert, correlation_id)


# =============================================================================
# Severity Filter
# =============================================================================

class TestSeverityFilter:

    def test_below_fatal_not_dispatched(self):
        notifier = FakeNotifier()
        dispatcher = sync_dispatcher(notifier)
        accepted = dispatcher.dispatch(
            [make_alert(Severity.INFO), make_alert(Severity.WARNING), make_alert(Severity.ERROR)]
        )
        assert accepted == 0
        assert notifier.alerts == []
        assert dispatcher.get_stats()["queued"] == 0

    def test_lower_threshold_accepts_more(self):
        notifier = FakeNotifier()
        dispatcher = sync_dispatcher(notifier, min_severity=Severity.WARNING)
        accepted = dispatcher.dispatch(
            [make_alert(Severity.INFO), make_alert(Severity.WARNING), make_alert(Severity.ERROR)]
        )
        assert accepted == 2


# =============================================================================
# Delivery
# =============================================================================

class TestDelivery:

    def test_fatal_sent_and_recorded_for_review(self):
        notifier = FakeNotifier()
        store = InMemoryAlertReviewStore()
        statuses: List[str] = []
        dispatcher = sync_dispatcher(notifier, store, statuses)
        alert = make_alert()

        assert dispatcher.dispatch([alert], "corr-1") == 1

        assert notifier.alerts == [(alert, "corr-1")]
        assert store.get(alert.id).correlation_id == "corr-1"
        assert statuses == ["SENT"]
        stats = dispatcher.get_stats()
        assert stats["sent"] == 1
        assert stats["reviews_recorded"] == 1

    def test_alert_unmodified_by_dispatch(self):
        alert = make_alert()
        before = alert.to_dict()
        sync_dispatcher(FakeNotifier()).dispatch([alert])
        assert alert.to_dict() == before

    def test_retry_then_success(self):
        notifier = FakeNotifier(fail_times=2)
        statuses: List[str] = []
        dispatcher = sync_dispatcher(notifier, statuses=statuses, max_retries=3)
        dispatcher.dispatch([make_alert()])
        assert notifier.attempts == 3
        assert statuses == ["FAILED_TO_SEND", "FAILED_TO_SEND", "SENT"]
        assert dispatcher.get_stats()["failed_attempts"] == 2

    def test_drop_after_max_retries(self):
        notifier = FakeNotifier(fail_times=100)
        store = InMemoryAlertReviewStore()
        statuses: List[str] = []
        dispatcher = sync_dispatcher(notifier, store, statuses, max_retries=3)
        alert = make_alert()
        dispatcher.dispatch([alert])

        assert notifier.attempts == 4
        assert statuses[-1] == "DROPPED"
        stats = dispatcher.get_stats()
        assert stats["dropped"] == 1
        assert stats["sent"] == 0
        # Review record survives a failed notification
        assert store.get(alert.id) is not None

    def test_unconfigured_channel_drops_immediately(self):
        notifier = FakeNotifier(fail_times=100, enabled=False)
        dispatcher = sync_dispatcher(notifier, max_retries=3)
        dispatcher.dispatch([make_alert()])
        assert notifier.attempts == 1
        assert dispatcher.get_stats()["dropped"] == 1

    def test_no_notifier_still_records_review(self):
        store = InMemoryAlertReviewStore()
        dispatcher = sync_dispatcher(None, store)
        alert = make_alert()
        dispatcher.dispatch([alert])
        assert store.get(alert.id) is not None
        assert dispatcher.get_stats()["dropped"] == 1

    def test_notifier_exception_contained(self):
        notifier = RaisingNotifier()
        dispatcher = sync_dispatcher(notifier, max_retries=1)
        assert dispatcher.dispatch([make_alert()]) == 1
        assert notifier.calls == 2
        assert dispatcher.get_stats()["dropped"] == 1

    def test_operational_message_uses_send(self):
        notifier = FakeNotifier()
        dispatcher = sync_dispatcher(notifier)
        assert dispatcher.send_operational("error_rate", "[VERITAS WARNING] error_rate", "body", "c")
        assert notifier.messages == [("[VERITAS WARNING] error_rate", "body", "c")]
        assert notifier.alerts == []


# =============================================================================
# Background Delivery
# =============================================================================

class TestAsyncDelivery:

    def test_flush_drains_queue(self):
        notifier = FakeNotifier()
        store = InMemoryAlertReviewStore()
        dispatcher = AlertDispatcher(
            notifier=notifier, review_store=store, retry_backoff_seconds=0, on_status=None
        )
        try:
            alerts = [make_alert() for _ in range(5)]
            assert dispatcher.dispatch(alerts, "corr-async") == 5
            assert dispatcher.flush(timeout_seconds=5.0) is True
            assert len(notifier.alerts) == 5
            assert store.get_statistics()["pending"] == 5
        finally:
            dispatcher.shutdown()

    def test_full_queue_still_records_reviews(self):
        notifier = BlockingNotifier()
        store = InMemoryAlertReviewStore()
        dispatcher = AlertDispatcher(
            notifier=notifier,
            review_store=store,
            retry_backoff_seconds=0,
            on_status=None,
            queue_maxsize=1,
        )
        try:
            dispatcher.dispatch([make_alert()], "corr-first")
            # Worker holds the first alert inside send_alert()
            assert notifier.entered.wait(timeout=5.0)

            alerts = [make_alert() for _ in range(3)]
            accepted = dispatcher.dispatch(alerts, "corr-burst")

            assert accepted == 1
            assert dispatcher.get_stats()["dropped"] == 2
            assert store.get_statistics()["pending"] == 4
            assert all(store.get(a.id) is not None for a in alerts)
        finally:
            notifier.release.set()
            dispatcher.shutdown()

    def test_sync_flush_is_noop(self):
        assert sync_dispatcher(FakeNotifier()).flush() is True
