"""
Unit Tests for the Alert Lifecycle

Reliability Level: SOVEREIGN TIER
Python 3.8 Compatible

Tests:
- Notification lifecycle transitions (RAISED -> QUEUED -> SENT/FAILED -> ...)
- Review lifecycle (pending_review -> reviewed, terminal)
- In-memory review store semantics
- Email formatting of validation alerts
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.observability.email_notifier import (
    ERROR_EMAIL_NOT_CONFIGURED,
    EmailNotifier,
    format_alert_email,
)
from services.alert_review_store import AlertNotFoundError, InMemoryAlertReviewStore
from services.alert_state_machine import (
    AlertNotification,
    NotificationState,
    ReviewStatus,
    is_terminal,
    validate_review_transition,
    validate_transition,
)
from services.veritas_models import (
    AlertTransitionError,
    Discrepancy,
    Domain,
    Severity,
    ValidationAlert,
    ValidationErrorKind,
    VeritasErrorCode,
)


def fatal_alert(symbol: str = "BTC", **kwargs) -> ValidationAlert:
    return ValidationAlert(
        severity=Severity.FATAL,
        domain=Domain.SOCIAL,
        message="Zero mentions reported with a nonzero sentiment distribution",
        affected_sources=("lunarcrush",),
        recommendation="Social data discarded.",
        symbol=symbol,
        error_kind=ValidationErrorKind.IMPOSSIBILITY,
        **kwargs
    )


# =============================================================================
# Notification Lifecycle
# =============================================================================

class TestNotificationTransitions:

    @pytest.mark.parametrize("current,target", [
        ("RAISED", "QUEUED_FOR_NOTIFICATION"),
        ("QUEUED_FOR_NOTIFICATION", "SENT"),
        ("QUEUED_FOR_NOTIFICATION", "FAILED_TO_SEND"),
        ("FAILED_TO_SEND", "QUEUED_FOR_NOTIFICATION"),
        ("FAILED_TO_SEND", "DROPPED"),
    ])
    def test_valid_transitions(self, current, target):
        assert validate_transition(current, target) == (True, None)

    @pytest.mark.parametrize("current,target", [
        ("RAISED", "SENT"),
        ("SENT", "QUEUED_FOR_NOTIFICATION"),
        ("DROPPED", "QUEUED_FOR_NOTIFICATION"),
        ("QUEUED_FOR_NOTIFICATION", "DROPPED"),
        ("RAISED", "UNKNOWN"),
    ])
    def test_invalid_transitions(self, current, target):
        assert validate_transition(current, target) == (False, VeritasErrorCode.INVALID_TRANSITION)

    def test_terminal_states(self):
        assert is_terminal("SENT")
        assert is_terminal("DROPPED")
        assert is_terminal("reviewed")
        assert not is_terminal("FAILED_TO_SEND")

    def test_envelope_counts_attempts(self):
        envelope = AlertNotification(fatal_alert(), "corr-1")
        envelope.transition(NotificationState.QUEUED_FOR_NOTIFICATION)
        envelope.transition(NotificationState.FAILED_TO_SEND)
        envelope.transition(NotificationState.QUEUED_FOR_NOTIFICATION)
        envelope.transition(NotificationState.SENT)
        assert envelope.attempts == 2
        assert envelope.is_terminal
        assert envelope.history == [
            "RAISED", "QUEUED_FOR_NOTIFICATION", "FAILED_TO_SEND",
            "QUEUED_FOR_NOTIFICATION", "SENT",
        ]

    def test_envelope_rejects_invalid_transition(self):
        envelope = AlertNotification(fatal_alert())
        with pytest.raises(AlertTransitionError) as exc_info:
            envelope.transition(NotificationState.SENT)
        assert exc_info.value.current_state == "RAISED"
        assert envelope.state == NotificationState.RAISED


# =============================================================================
# Review Lifecycle
# =============================================================================

class TestReviewStore:

    def test_review_transitions(self):
        assert validate_review_transition("pending_review", "reviewed") == (True, None)
        assert validate_review_transition("reviewed", "pending_review")[0] is False
        assert validate_review_transition("reviewed", "reviewed")[0] is False

    def test_record_and_review(self):
        store = InMemoryAlertReviewStore()
        alert = fatal_alert()
        record = store.record(alert, "corr-1")
        assert record.status == ReviewStatus.PENDING_REVIEW.value
        assert record.alert_id == alert.id
        assert store.get_pending_reviews() == [record]

        reviewed = store.mark_reviewed(alert.id, "ops-lead", "provider glitch")
        assert reviewed.status == "reviewed"
        assert reviewed.reviewed_by == "ops-lead"
        assert reviewed.reviewed_at is not None
        assert store.get_pending_reviews() == []

    def test_review_is_terminal(self):
        store = InMemoryAlertReviewStore()
        alert = fatal_alert()
        store.record(alert)
        store.mark_reviewed(alert.id, "ops-lead")
        with pytest.raises(AlertTransitionError):
            store.mark_reviewed(alert.id, "someone-else")
        assert store.get(alert.id).reviewed_by == "ops-lead"

    def test_unknown_alert(self):
        with pytest.raises(AlertNotFoundError):
            InMemoryAlertReviewStore().mark_reviewed("missing", "ops")

    def test_record_is_idempotent(self):
        store = InMemoryAlertReviewStore()
        alert = fatal_alert()
        first = store.record(alert, "corr-1")
        second = store.record(alert, "corr-2")
        assert second == first
        assert store.get_statistics()["total"] == 1

    def test_pending_newest_first_with_limit(self):
        store = InMemoryAlertReviewStore()
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        alerts = [
            fatal_alert(s, timestamp=base + timedelta(minutes=i))
            for i, s in enumerate(("BTC", "ETH", "SOL"))
        ]
        for a in alerts:
            store.record(a)
        pending = store.get_pending_reviews(limit=2)
        assert [r.symbol for r in pending] == ["SOL", "ETH"]

    def test_statistics(self):
        store = InMemoryAlertReviewStore()
        a, b = fatal_alert("BTC"), fatal_alert("ETH")
        store.record(a)
        store.record(b)
        store.mark_reviewed(a.id, "ops")
        stats = store.get_statistics()
        assert stats == {
            "total": 2,
            "pending": 1,
            "reviewed": 1,
            "by_severity": {"fatal": 2},
            "by_domain": {"social": 2},
        }


# =============================================================================
# Email Formatting
# =============================================================================

class TestEmailNotifier:

    def test_format_alert_email(self):
        alert = ValidationAlert(
            severity=Severity.ERROR,
            domain=Domain.MARKET,
            message="Price gap of 6% exceeds the realistic spread",
            affected_sources=("coingecko", "kraken"),
            symbol="BTC",
            discrepancy=Discrepancy(
                "price", "coingecko", Decimal("90000"), "kraken", Decimal("95400"),
                Decimal("6"), Decimal("5"),
            ),
        )
        content = format_alert_email(alert, "corr-9")
        assert content["subject"].startswith("[VERITAS ERROR] BTC market:")
        assert "Affected sources: coingecko, kraken" in content["body"]
        assert "Discrepancy: price coingecko=90000 vs kraken=95400" in content["body"]
        assert "Correlation ID: corr-9" in content["body"]
        assert "pending human review" not in content["body"]

    def test_fatal_email_mentions_review(self):
        content = format_alert_email(fatal_alert())
        assert content["subject"].startswith("[VERITAS FATAL]")
        assert "This alert is pending human review." in content["body"]

    def test_unconfigured_notifier_reports_failure(self):
        notifier = EmailNotifier()
        assert notifier.is_enabled is False
        result = notifier.send_alert(fatal_alert())
        assert result.success is False
        assert result.error_code == ERROR_EMAIL_NOT_CONFIGURED

    def test_recipients_from_environment(self):
        os.environ["SMTP_HOST"] = "smtp.example.com"
        os.environ["VERITAS_ALERT_EMAIL_TO"] = "a@example.com, b@example.com"
        notifier = EmailNotifier()
        assert notifier.is_enabled is True
        assert notifier.recipients == ["a@example.com", "b@example.com"]
