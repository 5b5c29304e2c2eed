"""
============================================================================
Veritas Protocol v1.0.0
Alert Dispatcher - Best-Effort Notification and Review Hand-off
============================================================================

Reliability Level: L5 High
Input Constraints: ValidationAlert instances (never modified)
Side Effects: Email via notifier, rows in the review store

SOVEREIGN MANDATE:
- dispatch() never blocks and never raises into the validation call
- Fatal alerts are persisted for human review before notification
- Failed sends retry up to max_retries, then are logged and dropped

LIFECYCLE (see services.alert_state_machine):
    RAISED -> QUEUED_FOR_NOTIFICATION -> SENT
                                     -> FAILED_TO_SEND -> QUEUED (retry)
                                                       -> DROPPED

Python 3.8 Compatible - No union type hints (X | None)
============================================================================
"""

import logging
import threading
from dataclasses import dataclass
from queue import Queue, Empty, Full
from typing import Optional, Dict, Any, Callable, Iterable

from app.observability import metrics
from services.alert_state_machine import AlertNotification, NotificationState
from services.veritas_models import Severity, ValidationAlert, VeritasErrorCode

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0
DEFAULT_QUEUE_MAXSIZE = 1000


@dataclass(frozen=True)
class OperationalMessage:
    """Monitoring notification, not tied to a symbol."""
    rule: str
    subject: str
    body: str


# =============================================================================
# DISPATCHER
# =============================================================================

class AlertDispatcher:
    """
    Routes alerts to the notification channel and the review store.

    Reliability Level: L5 High
    Input Constraints: notifier with send_alert()/send(); store with record()
    Side Effects: Background daemon thread when async_delivery is True

    USAGE:
        dispatcher = AlertDispatcher(notifier=get_email_notifier(),
                                     review_store=InMemoryAlertReviewStore())
        dispatcher.dispatch(result_alerts, correlation_id)
        ...
        dispatcher.shutdown()
    """

    def __init__(
        self,
        notifier: Optional[Any] = None,
        review_store: Optional[Any] = None,
        min_severity: Severity = Severity.FATAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        async_delivery: bool = True,
        on_status: Optional[Callable[[str], None]] = metrics.record_notification,
        queue_maxsize: int = DEFAULT_QUEUE_MAXSIZE
    ) -> None:
        self._notifier = notifier
        self._review_store = review_store
        self._min_severity = min_severity
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff_seconds
        self._on_status = on_status

        self._async_delivery = async_delivery
        self._queue = Queue(maxsize=queue_maxsize)  # type: Queue[AlertNotification]
        self._worker_thread = None  # type: Optional[threading.Thread]
        self._shutdown_flag = threading.Event()

        self._stats_lock = threading.Lock()
        self._stats: Dict[str, int] = {
            "queued": 0,
            "sent": 0,
            "failed_attempts": 0,
            "dropped": 0,
            "reviews_recorded": 0,
        }

        if self._async_delivery:
            self._start_worker_thread()

        logger.info(
            f"[VERITAS-DISPATCH-INIT] min_severity={min_severity.value} "
            f"max_retries={max_retries} "
            f"async={async_delivery} "
            f"notifier={type(notifier).__name__ if notifier else None} "
            f"review_store={type(review_store).__name__ if review_store else None}"
        )

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _start_worker_thread(self) -> None:
        self._worker_thread = threading.Thread(
            target=self._worker_loop,
            name="VeritasAlertDispatcher",
            daemon=True
        )
        self._worker_thread.start()

    def _worker_loop(self) -> None:
        while not self._shutdown_flag.is_set():
            try:
                envelope = self._queue.get(timeout=1.0)
            except Empty:
                continue
            try:
                self._process(envelope)
            except Exception as e:
                logger.error(
                    f"[{VeritasErrorCode.NOTIFICATION_FAILED}] Dispatcher worker error: "
                    f"{str(e)} | correlation_id={envelope.correlation_id}"
                )
            finally:
                self._queue.task_done()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def should_notify(self, alert: ValidationAlert) -> bool:
        return alert.severity.rank >= self._min_severity.rank

    def dispatch(
        self,
        alerts: Iterable[ValidationAlert],
        correlation_id: Optional[str] = None
    ) -> int:
        """
        Hand alerts to the notification lifecycle.

        Fatal alerts are recorded for review here, before the queue, so a
        full queue or a dead channel only costs the email.

        Returns:
            Number of alerts accepted (at or above min_severity)
        """
        accepted = 0
        for alert in alerts:
            self._record_review(alert, correlation_id)
            if not self.should_notify(alert):
                continue
            envelope = AlertNotification(alert, correlation_id)
            if self._enqueue(envelope):
                accepted += 1
        return accepted

    def send_operational(
        self,
        rule: str,
        subject: str,
        body: str,
        correlation_id: Optional[str] = None
    ) -> bool:
        """Queue a monitoring notification on the same channel."""
        envelope = AlertNotification(OperationalMessage(rule, subject, body), correlation_id)
        return self._enqueue(envelope)

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def flush(self, timeout_seconds: float = 5.0) -> bool:
        """Wait for queued work; True if the queue drained in time."""
        if not self._async_delivery:
            return True
        done = threading.Event()

        def _join() -> None:
            self._queue.join()
            done.set()

        threading.Thread(target=_join, daemon=True).start()
        return done.wait(timeout_seconds)

    def shutdown(self) -> None:
        """Drain briefly, then stop the worker thread."""
        if self._async_delivery and self._worker_thread:
            logger.info("[VERITAS-DISPATCH] Shutting down...")
            self.flush(timeout_seconds=5.0)
            self._shutdown_flag.set()
            self._worker_thread.join(timeout=2.0)
            logger.info("[VERITAS-DISPATCH] Shutdown complete")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def _status(self, state: NotificationState) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(state.value)
        except Exception as e:
            logger.error(f"[VERITAS-DISPATCH] on_status callback failed: {str(e)}")

    def _enqueue(self, envelope: AlertNotification) -> bool:
        envelope.transition(NotificationState.QUEUED_FOR_NOTIFICATION)
        self._bump("queued")

        if not self._async_delivery:
            self._process(envelope)
            return True

        try:
            self._queue.put_nowait(envelope)
            return True
        except Full:
            # Fail then drop without blocking the caller
            envelope.transition(NotificationState.FAILED_TO_SEND)
            envelope.transition(NotificationState.DROPPED)
            self._bump("dropped")
            self._status(NotificationState.DROPPED)
            logger.error(
                f"[{VeritasErrorCode.NOTIFICATION_FAILED}] Notification queue full, dropped | "
                f"correlation_id={envelope.correlation_id}"
            )
            return False

    def _record_review(self, alert: ValidationAlert, correlation_id: Optional[str]) -> None:
        if self._review_store is None or not alert.is_fatal:
            return
        try:
            self._review_store.record(alert, correlation_id)
            self._bump("reviews_recorded")
            logger.info(
                f"[VERITAS-DISPATCH] Fatal alert recorded for review | "
                f"alert_id={alert.id} | "
                f"symbol={alert.symbol} | "
                f"correlation_id={correlation_id}"
            )
        except Exception as e:
            logger.error(
                f"[{VeritasErrorCode.PERSISTENCE_FAILED}] Failed to record alert review: "
                f"{str(e)} | alert_id={alert.id} | correlation_id={correlation_id}"
            )

    def _channel_enabled(self) -> bool:
        return self._notifier is not None and bool(getattr(self._notifier, "is_enabled", True))

    def _send(self, envelope: AlertNotification) -> bool:
        if self._notifier is None:
            return False
        payload = envelope.alert
        if isinstance(payload, OperationalMessage):
            result = self._notifier.send(payload.subject, payload.body, envelope.correlation_id)
        else:
            result = self._notifier.send_alert(payload, envelope.correlation_id)
        envelope.last_error = result.error_message
        return bool(result.success)

    def _process(self, envelope: AlertNotification) -> None:
        """Deliver one envelope, retrying until SENT or DROPPED."""
        while True:
            try:
                delivered = self._send(envelope)
            except Exception as e:
                envelope.last_error = str(e)
                delivered = False

            if delivered:
                envelope.transition(NotificationState.SENT)
                self._bump("sent")
                self._status(NotificationState.SENT)
                return

            envelope.transition(NotificationState.FAILED_TO_SEND)
            self._bump("failed_attempts")
            self._status(NotificationState.FAILED_TO_SEND)

            if envelope.attempts > self._max_retries or not self._channel_enabled():
                envelope.transition(NotificationState.DROPPED)
                self._bump("dropped")
                self._status(NotificationState.DROPPED)
                logger.error(
                    f"[{VeritasErrorCode.NOTIFICATION_FAILED}] Notification dropped after "
                    f"{envelope.attempts} attempt(s) | "
                    f"error={envelope.last_error} | "
                    f"correlation_id={envelope.correlation_id}"
                )
                return

            logger.warning(
                f"[{VeritasErrorCode.NOTIFICATION_FAILED}] Notification attempt "
                f"{envelope.attempts} failed, retrying | "
                f"error={envelope.last_error} | "
                f"correlation_id={envelope.correlation_id}"
            )
            if self._retry_backoff > 0 and self._shutdown_flag.wait(self._retry_backoff * envelope.attempts):
                # Shutting down mid-backoff
                envelope.transition(NotificationState.DROPPED)
                self._bump("dropped")
                self._status(NotificationState.DROPPED)
                return
            envelope.transition(NotificationState.QUEUED_FOR_NOTIFICATION)

