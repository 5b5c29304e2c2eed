# ============================================================================
# Veritas Protocol v1.0.0
# Alert Review Store - Durable Fatal-Alert Records for Human Review
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Persist every fatal alert as pending_review until an operator
#          marks it reviewed
#
# Lifecycle: pending_review -> reviewed (terminal)
#
# Error Codes:
#   - VER-051: Review of an already-reviewed alert
#   - VER-060: Review persistence failed
#
# Python 3.8 Compatible - Uses typing.Optional, typing.Dict
# ============================================================================

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Optional, Dict, Any, Callable, List

from sqlalchemy import text

from services.alert_state_machine import ReviewStatus, validate_review_transition
from services.veritas_models import AlertTransitionError, ValidationAlert

logger = logging.getLogger(__name__)


class AlertNotFoundError(KeyError):
    """Raised when a review targets an unknown alert id."""


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class AlertReviewRecord:
    """One fatal alert awaiting or having received human review."""
    alert_id: str
    symbol: str
    severity: str
    domain: str
    message: str
    affected_sources: List[str]
    recommendation: str
    status: str
    correlation_id: Optional[str]
    created_at: datetime
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, alert: ValidationAlert, correlation_id: Optional[str] = None) -> "AlertReviewRecord":
        return cls(
            alert_id=alert.id,
            symbol=alert.symbol,
            severity=alert.severity.value,
            domain=alert.domain.value,
            message=alert.message,
            affected_sources=list(alert.affected_sources),
            recommendation=alert.recommendation,
            status=ReviewStatus.PENDING_REVIEW.value,
            correlation_id=correlation_id,
            created_at=alert.timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "symbol": self.symbol,
            "severity": self.severity,
            "domain": self.domain,
            "message": self.message,
            "affected_sources": list(self.affected_sources),
            "recommendation": self.recommendation,
            "status": self.status,
            "correlation_id": self.correlation_id,
            "created_at": self.created_at.isoformat(),
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }


def _reviewed(record: AlertReviewRecord, reviewer: str, notes: Optional[str]) -> AlertReviewRecord:
    valid, _ = validate_review_transition(
        record.status, ReviewStatus.REVIEWED.value, record.correlation_id
    )
    if not valid:
        raise AlertTransitionError(record.status, ReviewStatus.REVIEWED.value)
    return replace(
        record,
        status=ReviewStatus.REVIEWED.value,
        reviewed_by=reviewer,
        review_notes=notes,
        reviewed_at=datetime.now(timezone.utc),
    )


def _statistics(records: List[AlertReviewRecord]) -> Dict[str, Any]:
    by_severity: Dict[str, int] = {}
    by_domain: Dict[str, int] = {}
    for r in records:
        by_severity[r.severity] = by_severity.get(r.severity, 0) + 1
        by_domain[r.domain] = by_domain.get(r.domain, 0) + 1
    pending = sum(1 for r in records if r.status == ReviewStatus.PENDING_REVIEW.value)
    return {
        "total": len(records),
        "pending": pending,
        "reviewed": len(records) - pending,
        "by_severity": by_severity,
        "by_domain": by_domain,
    }


# ============================================================================
# Stores
# ============================================================================

class InMemoryAlertReviewStore:
    """Process-local review store; the default when no DATABASE_URL is configured."""

    def __init__(self) -> None:
        self._records: Dict[str, AlertReviewRecord] = {}
        self._lock = Lock()

    def record(self, alert: ValidationAlert, correlation_id: Optional[str] = None) -> AlertReviewRecord:
        entry = AlertReviewRecord.from_alert(alert, correlation_id)
        with self._lock:
            # Re-recording an alert id keeps the first record
            return self._records.setdefault(entry.alert_id, entry)

    def get(self, alert_id: str) -> Optional[AlertReviewRecord]:
        with self._lock:
            return self._records.get(alert_id)

    def get_pending_reviews(self, limit: int = 100) -> List[AlertReviewRecord]:
        with self._lock:
            pending = [
                r for r in self._records.values()
                if r.status == ReviewStatus.PENDING_REVIEW.value
            ]
        return sorted(pending, key=lambda r: r.created_at, reverse=True)[:limit]

    def mark_reviewed(
        self,
        alert_id: str,
        reviewer: str,
        notes: Optional[str] = None
    ) -> AlertReviewRecord:
        with self._lock:
            record = self._records.get(alert_id)
            if record is None:
                raise AlertNotFoundError(alert_id)
            updated = _reviewed(record, reviewer, notes)
            self._records[alert_id] = updated
        logger.info(
            f"[VERITAS-REVIEW] Alert reviewed | "
            f"alert_id={alert_id} | "
            f"reviewer={reviewer} | "
            f"correlation_id={record.correlation_id}"
        )
        return updated

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            records = list(self._records.values())
        return _statistics(records)


class SqlAlertReviewStore:
    """
    Review store backed by veritas_alert_reviews.

    One short-lived session per operation; safe to share with the
    dispatcher's worker thread.
    """

    _COLUMNS = """
        alert_id, symbol, severity, domain, message, affected_sources,
        recommendation, status, correlation_id, created_at,
        reviewed_by, review_notes, reviewed_at
    """

    def __init__(self, session_factory: Callable[[], Any]) -> None:
        self._session_factory = session_factory

    def record(self, alert: ValidationAlert, correlation_id: Optional[str] = None) -> AlertReviewRecord:
        entry = AlertReviewRecord.from_alert(alert, correlation_id)
        with self._session_factory() as session:
            try:
                session.execute(
                    text("""
                        INSERT INTO veritas_alert_reviews (
                            alert_id, symbol, severity, domain, message,
                            affected_sources, recommendation, status,
                            correlation_id, created_at
                        ) VALUES (
                            :alert_id, :symbol, :severity, :domain, :message,
                            :affected_sources, :recommendation, :status,
                            :correlation_id, :created_at
                        )
                        ON CONFLICT (alert_id) DO NOTHING
                    """),
                    {
                        "alert_id": entry.alert_id,
                        "symbol": entry.symbol,
                        "severity": entry.severity,
                        "domain": entry.domain,
                        "message": entry.message,
                        "affected_sources": json.dumps(entry.affected_sources),
                        "recommendation": entry.recommendation,
                        "status": entry.status,
                        "correlation_id": entry.correlation_id,
                        "created_at": entry.created_at.isoformat(),
                    },
                )
                session.commit()
            except Exception:
                session.rollback()
                raise
        return entry

    def get(self, alert_id: str) -> Optional[AlertReviewRecord]:
        with self._session_factory() as session:
            row = session.execute(
                text(f"SELECT {self._COLUMNS} FROM veritas_alert_reviews WHERE alert_id = :alert_id"),
                {"alert_id": alert_id},
            ).mappings().first()
        return self._row_to_record(row) if row else None

    def get_pending_reviews(self, limit: int = 100) -> List[AlertReviewRecord]:
        with self._session_factory() as session:
            rows = session.execute(
                text(f"""
                    SELECT {self._COLUMNS}
                    FROM veritas_alert_reviews
                    WHERE status = :status
                    ORDER BY created_at DESC
                    LIMIT :limit
                """),
                {"status": ReviewStatus.PENDING_REVIEW.value, "limit": limit},
            ).mappings().all()
        return [self._row_to_record(row) for row in rows]

    def mark_reviewed(
        self,
        alert_id: str,
        reviewer: str,
        notes: Optional[str] = None
    ) -> AlertReviewRecord:
        record = self.get(alert_id)
        if record is None:
            raise AlertNotFoundError(alert_id)
        updated = _reviewed(record, reviewer, notes)

        with self._session_factory() as session:
            try:
                result = session.execute(
                    text("""
                        UPDATE veritas_alert_reviews
                        SET status = :status,
                            reviewed_by = :reviewed_by,
                            review_notes = :review_notes,
                            reviewed_at = :reviewed_at
                        WHERE alert_id = :alert_id
                          AND status = :pending
                    """),
                    {
                        "status": updated.status,
                        "reviewed_by": reviewer,
                        "review_notes": notes,
                        "reviewed_at": updated.reviewed_at.isoformat(),
                        "alert_id": alert_id,
                        "pending": ReviewStatus.PENDING_REVIEW.value,
                    },
                )
                updated_rows = result.rowcount
                session.commit()
            except Exception:
                session.rollback()
                raise

        # Lost a race with another reviewer
        if updated_rows == 0:
            raise AlertTransitionError(ReviewStatus.REVIEWED.value, ReviewStatus.REVIEWED.value)

        logger.info(
            f"[VERITAS-REVIEW] Alert reviewed | "
            f"alert_id={alert_id} | "
            f"reviewer={reviewer} | "
            f"correlation_id={record.correlation_id}"
        )
        return updated

    def get_statistics(self) -> Dict[str, Any]:
        with self._session_factory() as session:
            rows = session.execute(
                text(f"SELECT {self._COLUMNS} FROM veritas_alert_reviews")
            ).mappings().all()
        return _statistics([self._row_to_record(row) for row in rows])

    @staticmethod
    def _row_to_record(row: Any) -> AlertReviewRecord:
        def _ts(value: Any) -> Optional[datetime]:
            if value is None or isinstance(value, datetime):
                return value
            return datetime.fromisoformat(value)

        sources = row["affected_sources"]
        if isinstance(sources, str):
            sources = json.loads(sources)
        return AlertReviewRecord(
            alert_id=row["alert_id"],
            symbol=row["symbol"],
            severity=row["severity"],
            domain=row["domain"],
            message=row["message"],
            affected_sources=list(sources or []),
            recommendation=row["recommendation"] or "",
            status=row["status"],
            correlation_id=row["correlation_id"],
            created_at=_ts(row["created_at"]),
            reviewed_by=row["reviewed_by"],
            review_notes=row["review_notes"],
            reviewed_at=_ts(row["reviewed_at"]),
        )
