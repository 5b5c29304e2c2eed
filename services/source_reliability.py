# ============================================================================
# Veritas Protocol v1.0.0
# Source Reliability Tracker - Dynamic Per-Provider Trust
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Maintain a persisted 0-100 trust score per data provider
#
# SOVEREIGN MANDATE:
#   - Scores move by bounded steps only (max 10 points per update)
#   - Scores are clamped to [0, 100]
#   - Weights shift influence; no provider is ever excluded outright
#   - Validators read an immutable TrustSnapshot, never the tracker
#
# Error Codes:
#   - VER-060: Reliability persistence failed
#
# Python 3.8 Compatible - Uses typing.Optional, typing.Dict
# ============================================================================

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from threading import Lock
from typing import Optional, Dict, Any, Callable, Iterable, List, Deque

from sqlalchemy import text

from services.veritas_models import ReliabilityObservation, VeritasErrorCode

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

# New providers start fully trusted
INITIAL_SCORE = Decimal('100')

SCORE_MIN = Decimal('0')
SCORE_MAX = Decimal('100')

# Largest single adjustment
MAX_STEP = Decimal('10')

# Default adjustment when a caller supplies no magnitude
DEFAULT_STEP = Decimal('2')

# Floor so unreliable providers keep a voice
MIN_WEIGHT = Decimal('0.10')

PRECISION_SCORE = Decimal('0.01')
PRECISION_WEIGHT = Decimal('0.0001')

# Summary buckets
RELIABLE_SCORE = Decimal('90')
UNRELIABLE_SCORE = Decimal('70')

# Per-provider in-memory history
HISTORY_LIMIT = 100


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class SourceReliability:
    """Persisted trust state of one provider."""
    provider: str
    score: Decimal = INITIAL_SCORE
    total_validations: int = 0
    agreements: int = 0
    disagreements: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def weight(self) -> Decimal:
        return score_to_weight(self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "score": str(self.score),
            "weight": str(self.weight),
            "total_validations": self.total_validations,
            "agreements": self.agreements,
            "disagreements": self.disagreements,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class ReliabilityEvent:
    """One applied adjustment, kept for audit."""
    provider: str
    agreed: bool
    step: Decimal
    score_before: Decimal
    score_after: Decimal
    correlation_id: Optional[str]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "agreed": self.agreed,
            "step": str(self.step),
            "score_before": str(self.score_before),
            "score_after": str(self.score_after),
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
        }


class TrustSnapshot:
    """
    Immutable provider -> weight view handed to validators.

    Unknown providers get full weight, matching the tracker's initial score.
    """

    __slots__ = ("_weights",)

    def __init__(self, weights: Optional[Dict[str, Decimal]] = None):
        self._weights = dict(weights or {})

    def weight(self, provider: str) -> Decimal:
        return self._weights.get(provider, Decimal('1.0000'))

    def is_reliable(self, provider: str, threshold: Decimal) -> bool:
        return self.weight(provider) >= threshold

    def as_dict(self) -> Dict[str, Decimal]:
        return dict(self._weights)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TrustSnapshot):
            return NotImplemented
        return self._weights == other._weights

    def __repr__(self) -> str:
        return f"TrustSnapshot({self._weights!r})"


def score_to_weight(score: Decimal) -> Decimal:
    """Normalize a 0-100 score to a weight in [MIN_WEIGHT, 1]."""
    weight = max(MIN_WEIGHT, score / SCORE_MAX)
    return weight.quantize(PRECISION_WEIGHT, rounding=ROUND_HALF_EVEN)


def _bounded_step(delta: Decimal) -> Decimal:
    step = abs(Decimal(str(delta)))
    return min(step, MAX_STEP)


# ============================================================================
# Stores
# ============================================================================

class InMemoryReliabilityStore:
    """Process-local store; the default when no DATABASE_URL is configured."""

    def __init__(self) -> None:
        self._records: Dict[str, SourceReliability] = {}
        self._lock = Lock()

    def load(self, provider: str) -> Optional[SourceReliability]:
        with self._lock:
            return self._records.get(provider)

    def load_all(self) -> List[SourceReliability]:
        with self._lock:
            return list(self._records.values())

    def save(self, record: SourceReliability, event: Optional[ReliabilityEvent] = None) -> None:
        with self._lock:
            self._records[record.provider] = record


class SqlReliabilityStore:
    """
    Reliability store backed by veritas_source_reliability.

    Uses one short-lived session per operation so the store can be shared
    between request handlers and background threads.
    """

    def __init__(self, session_factory: Callable[[], Any]) -> None:
        self._session_factory = session_factory

    def load(self, provider: str) -> Optional[SourceReliability]:
        with self._session_factory() as session:
            row = session.execute(
                text("""
                    SELECT source_name, reliability_score, total_validations,
                           agreements, disagreements, last_updated
                    FROM veritas_source_reliability
                    WHERE source_name = :source_name
                """),
                {"source_name": provider},
            ).mappings().first()
        return self._row_to_record(row) if row else None

    def load_all(self) -> List[SourceReliability]:
        with self._session_factory() as session:
            rows = session.execute(
                text("""
                    SELECT source_name, reliability_score, total_validations,
                           agreements, disagreements, last_updated
                    FROM veritas_source_reliability
                    ORDER BY source_name
                """)
            ).mappings().all()
        return [self._row_to_record(row) for row in rows]

    def save(self, record: SourceReliability, event: Optional[ReliabilityEvent] = None) -> None:
        with self._session_factory() as session:
            try:
                session.execute(
                    text("""
                        INSERT INTO veritas_source_reliability (
                            source_name, reliability_score, trust_weight,
                            total_validations, agreements, disagreements, last_updated
                        ) VALUES (
                            :source_name, :reliability_score, :trust_weight,
                            :total_validations, :agreements, :disagreements, :last_updated
                        )
                        ON CONFLICT (source_name)
                        DO UPDATE SET
                            reliability_score = EXCLUDED.reliability_score,
                            trust_weight = EXCLUDED.trust_weight,
                            total_validations = EXCLUDED.total_validations,
                            agreements = EXCLUDED.agreements,
                            disagreements = EXCLUDED.disagreements,
                            last_updated = EXCLUDED.last_updated
                    """),
                    {
                        "source_name": record.provider,
                        "reliability_score": str(record.score),
                        "trust_weight": str(record.weight),
                        "total_validations": record.total_validations,
                        "agreements": record.agreements,
                        "disagreements": record.disagreements,
                        "last_updated": record.last_updated.isoformat(),
                    },
                )
                if event is not None:
                    session.execute(
                        text("""
                            INSERT INTO veritas_source_reliability_history (
                                source_name, agreed, step, score_before,
                                score_after, correlation_id, recorded_at
                            ) VALUES (
                                :source_name, :agreed, :step, :score_before,
                                :score_after, :correlation_id, :recorded_at
                            )
                        """),
                        {
                            "source_name": event.provider,
                            "agreed": event.agreed,
                            "step": str(event.step),
                            "score_before": str(event.score_before),
                            "score_after": str(event.score_after),
                            "correlation_id": event.correlation_id,
                            "recorded_at": event.timestamp.isoformat(),
                        },
                    )
                session.commit()
            except Exception:
                session.rollback()
                raise

    @staticmethod
    def _row_to_record(row: Any) -> SourceReliability:
        last_updated = row["last_updated"]
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        return SourceReliability(
            provider=row["source_name"],
            score=Decimal(str(row["reliability_score"])).quantize(
                PRECISION_SCORE, rounding=ROUND_HALF_EVEN
            ),
            total_validations=int(row["total_validations"]),
            agreements=int(row["agreements"]),
            disagreements=int(row["disagreements"]),
            last_updated=last_updated,
        )


# ============================================================================
# Tracker
# ============================================================================

class SourceReliabilityTracker:
    """
    Tracks per-provider trust from agreement with cross-source consensus.

    Concurrency: each provider has its own lock. Updates are small bounded
    increments, so a lost update under rare concurrent writes only shifts a
    soft signal.

    Usage:
        tracker = SourceReliabilityTracker()
        tracker.record_disagreement("kraken", Decimal("6"))
        snapshot = tracker.snapshot(["kraken", "coinbase"])
        snapshot.weight("kraken")   # Decimal("0.9400")
    """

    def __init__(
        self,
        store: Optional[Any] = None,
        history_limit: int = HISTORY_LIMIT,
        on_update: Optional[Callable[[SourceReliability], None]] = None
    ):
        """
        Initialize the tracker.

        Args:
            store: Persistence backend (defaults to in-memory)
            history_limit: Events retained per provider
            on_update: Callback after each applied adjustment (e.g., gauges)
        """
        self._store = store if store is not None else InMemoryReliabilityStore()
        self._history_limit = history_limit
        self._on_update = on_update

        self._registry_lock = Lock()
        self._provider_locks: Dict[str, Lock] = {}
        self._cache: Dict[str, SourceReliability] = {}
        self._history: Dict[str, Deque[ReliabilityEvent]] = {}

        logger.info(
            f"[VERITAS-RELIABILITY] Tracker initialized | "
            f"store={type(self._store).__name__} | "
            f"max_step={MAX_STEP}"
        )

    def _lock_for(self, provider: str) -> Lock:
        with self._registry_lock:
            lock = self._provider_locks.get(provider)
            if lock is None:
                lock = Lock()
                self._provider_locks[provider] = lock
                self._history[provider] = deque(maxlen=self._history_limit)
            return lock

    def _current(self, provider: str) -> SourceReliability:
        record = self._cache.get(provider)
        if record is not None:
            return record
        try:
            record = self._store.load(provider)
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Failed to load reliability: "
                f"{str(e)} | provider={provider}"
            )
            record = None
        if record is None:
            record = SourceReliability(provider=provider)
        self._cache[provider] = record
        return record

    def _adjust(
        self,
        provider: str,
        agreed: bool,
        delta: Decimal,
        correlation_id: Optional[str]
    ) -> SourceReliability:
        step = _bounded_step(delta)

        with self._lock_for(provider):
            before = self._current(provider)
            signed = step if agreed else -step
            new_score = max(SCORE_MIN, min(SCORE_MAX, before.score + signed)).quantize(
                PRECISION_SCORE, rounding=ROUND_HALF_EVEN
            )
            after = replace(
                before,
                score=new_score,
                total_validations=before.total_validations + 1,
                agreements=before.agreements + (1 if agreed else 0),
                disagreements=before.disagreements + (0 if agreed else 1),
                last_updated=datetime.now(timezone.utc),
            )
            event = ReliabilityEvent(
                provider=provider,
                agreed=agreed,
                step=step,
                score_before=before.score,
                score_after=new_score,
                correlation_id=correlation_id,
            )
            self._cache[provider] = after
            self._history[provider].append(event)

        try:
            self._store.save(after, event)
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Failed to persist reliability: "
                f"{str(e)} | provider={provider} | correlation_id={correlation_id}"
            )

        if self._on_update is not None:
            try:
                self._on_update(after)
            except Exception as e:
                logger.error(
                    f"[VERITAS-RELIABILITY] on_update callback failed: {str(e)} | "
                    f"provider={provider}"
                )

        if new_score != before.score:
            logger.debug(
                f"[VERITAS-RELIABILITY] {'agreement' if agreed else 'disagreement'} | "
                f"provider={provider} | "
                f"score={before.score}->{new_score} | "
                f"correlation_id={correlation_id}"
            )
        return after

    def record_agreement(
        self,
        provider: str,
        delta: Decimal = DEFAULT_STEP,
        correlation_id: Optional[str] = None
    ) -> SourceReliability:
        """Raise a provider's score by at most MAX_STEP."""
        return self._adjust(provider, True, delta, correlation_id)

    def record_disagreement(
        self,
        provider: str,
        delta: Decimal = DEFAULT_STEP,
        correlation_id: Optional[str] = None
    ) -> SourceReliability:
        """Lower a provider's score by at most MAX_STEP."""
        return self._adjust(provider, False, delta, correlation_id)

    def apply_observations(
        self,
        observations: Iterable[ReliabilityObservation],
        correlation_id: Optional[str] = None
    ) -> int:
        """Apply validator observations; returns the number applied."""
        applied = 0
        for obs in observations:
            if obs.agreed:
                self.record_agreement(obs.provider, obs.magnitude, correlation_id)
            else:
                self.record_disagreement(obs.provider, obs.magnitude, correlation_id)
            applied += 1
        return applied

    def get_score(self, provider: str) -> Decimal:
        with self._lock_for(provider):
            return self._current(provider).score

    def get_weight(self, provider: str) -> Decimal:
        return score_to_weight(self.get_score(provider))

    def get_record(self, provider: str) -> SourceReliability:
        with self._lock_for(provider):
            return self._current(provider)

    def snapshot(self, providers: Iterable[str]) -> TrustSnapshot:
        """Weights for the given providers, frozen for one validation call."""
        return TrustSnapshot({p: self.get_weight(p) for p in set(providers)})

    def get_history(self, provider: str) -> List[ReliabilityEvent]:
        with self._lock_for(provider):
            return list(self._history[provider])

    def get_summary(self) -> Dict[str, Any]:
        """Reliable / unreliable breakdown across all known providers."""
        records: Dict[str, SourceReliability] = {}
        try:
            for record in self._store.load_all():
                records[record.provider] = record
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Failed to load reliability summary: "
                f"{str(e)}"
            )
        with self._registry_lock:
            providers = list(self._provider_locks.keys())
        for provider in providers:
            records[provider] = self.get_record(provider)

        ordered = sorted(records.values(), key=lambda r: (-r.score, r.provider))
        if ordered:
            average = (sum(r.score for r in ordered) / len(ordered)).quantize(
                PRECISION_SCORE, rounding=ROUND_HALF_EVEN
            )
        else:
            average = INITIAL_SCORE

        return {
            "total_sources": len(ordered),
            "average_score": str(average),
            "reliable_sources": [r.provider for r in ordered if r.score >= RELIABLE_SCORE],
            "unreliable_sources": [r.provider for r in ordered if r.score < UNRELIABLE_SCORE],
            "sources": [r.to_dict() for r in ordered],
        }
