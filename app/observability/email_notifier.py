"""
============================================================================
Veritas Protocol v1.0.0
Email Notifier - Operational Alert Channel
============================================================================

Reliability Level: L5 High
Input Constraints: SMTP_HOST required for delivery
Side Effects: Opens an SMTP connection per message

SOVEREIGN MANDATE:
- Delivery is synchronous here; callers run it off the validation path
- Graceful degradation if SMTP unavailable (result object, never raises)
- No personal data in notifications

ENVIRONMENT:
- SMTP_HOST, SMTP_PORT (default 587), SMTP_USER, SMTP_PASSWORD
- SMTP_FROM (default veritas@localhost)
- SMTP_STARTTLS (default true)
- VERITAS_ALERT_EMAIL_TO (fixed operational address)

Python 3.8 Compatible - No union type hints (X | None)
============================================================================
"""

import os
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, List, Dict, Any

from services.veritas_models import ValidationAlert, VeritasErrorCode

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

ENV_SMTP_HOST = "SMTP_HOST"
ENV_SMTP_PORT = "SMTP_PORT"
ENV_SMTP_USER = "SMTP_USER"
ENV_SMTP_PASSWORD = "SMTP_PASSWORD"
ENV_SMTP_FROM = "SMTP_FROM"
ENV_SMTP_STARTTLS = "SMTP_STARTTLS"
ENV_ALERT_EMAIL_TO = "VERITAS_ALERT_EMAIL_TO"

DEFAULT_SMTP_PORT = 587
DEFAULT_SENDER = "veritas@localhost"
DEFAULT_RECIPIENT = "ops@localhost"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10

MAX_SUBJECT_LENGTH = 200

ERROR_EMAIL_NOT_CONFIGURED = "MAIL-001-NOT_CONFIGURED"
ERROR_EMAIL_SEND_FAILED = "MAIL-002-SEND_FAILED"
ERROR_EMAIL_TIMEOUT = "MAIL-003-TIMEOUT"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class NotificationResult:
    """
    Result of an email notification attempt.

    Reliability Level: L5 High
    """
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


def format_alert_email(alert: ValidationAlert, correlation_id: Optional[str] = None) -> Dict[str, str]:
    """Subject and plain-text body for one validation alert."""
    subject = (
        f"[VERITAS {alert.severity.value.upper()}] "
        f"{alert.symbol or 'unknown'} {alert.domain.value}: {alert.message}"
    )[:MAX_SUBJECT_LENGTH]

    lines = [
        f"Severity: {alert.severity.value}",
        f"Symbol: {alert.symbol}",
        f"Domain: {alert.domain.value}",
        f"Message: {alert.message}",
        f"Affected sources: {', '.join(alert.affected_sources) or '-'}",
        f"Recommendation: {alert.recommendation}",
        f"Alert ID: {alert.id}",
        f"Raised at: {alert.timestamp.isoformat()}",
    ]
    if alert.discrepancy is not None:
        d = alert.discrepancy
        lines.append(
            f"Discrepancy: {d.metric} {d.source_a}={d.value_a} vs "
            f"{d.source_b}={d.value_b} (delta {d.delta}, threshold {d.threshold})"
        )
    if correlation_id:
        lines.append(f"Correlation ID: {correlation_id}")
    if alert.is_fatal:
        lines.append("")
        lines.append("This alert is pending human review.")
    return {"subject": subject, "body": "\n".join(lines)}


# =============================================================================
# EMAIL NOTIFIER CLASS
# =============================================================================

class EmailNotifier:
    """
    SMTP notification client.

    Reliability Level: L5 High
    Input Constraints: SMTP host from constructor or environment
    Side Effects: SMTP session per send

    USAGE:
        notifier = EmailNotifier()
        result = notifier.send(
            subject="[VERITAS FATAL] BTC social",
            body="Zero mentions with nonzero distribution",
            correlation_id="..."
        )
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        recipients: Optional[List[str]] = None,
        use_starttls: Optional[bool] = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    ) -> None:
        self._host = host or os.getenv(ENV_SMTP_HOST)
        try:
            self._port = port or int(os.getenv(ENV_SMTP_PORT, str(DEFAULT_SMTP_PORT)))
        except ValueError:
            logger.warning(f"[MAIL_INIT] Invalid {ENV_SMTP_PORT}, using {DEFAULT_SMTP_PORT}")
            self._port = DEFAULT_SMTP_PORT
        self._username = username or os.getenv(ENV_SMTP_USER)
        self._password = password or os.getenv(ENV_SMTP_PASSWORD)
        self._sender = sender or os.getenv(ENV_SMTP_FROM, DEFAULT_SENDER)

        if recipients is None:
            raw = os.getenv(ENV_ALERT_EMAIL_TO, DEFAULT_RECIPIENT)
            recipients = [r.strip() for r in raw.split(",") if r.strip()]
        self._recipients = recipients

        if use_starttls is None:
            use_starttls = os.getenv(ENV_SMTP_STARTTLS, "true").lower() not in ("false", "0", "no")
        self._use_starttls = use_starttls
        self._timeout = timeout_seconds

        if self.is_enabled:
            logger.info(
                f"[MAIL_NOTIFIER_INIT] enabled=True "
                f"host={self._host}:{self._port} "
                f"recipients={len(self._recipients)}"
            )
        else:
            logger.info("[MAIL_NOTIFIER_INIT] enabled=False (SMTP_HOST not configured)")

    @property
    def is_enabled(self) -> bool:
        return bool(self._host) and bool(self._recipients)

    @property
    def recipients(self) -> List[str]:
        return list(self._recipients)

    def _build_message(self, subject: str, body: str, correlation_id: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self._sender
        msg["To"] = ", ".join(self._recipients)
        msg["Subject"] = subject[:MAX_SUBJECT_LENGTH]
        msg["Date"] = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S %z")
        if correlation_id:
            msg["X-Correlation-ID"] = correlation_id
        msg.attach(MIMEText(body, "plain"))
        return msg

    def send(
        self,
        subject: str,
        body: str,
        correlation_id: Optional[str] = None
    ) -> NotificationResult:
        """
        Send one message to the operational recipients.

        Returns:
            NotificationResult; failures are reported, never raised
        """
        if not self.is_enabled:
            return NotificationResult(
                success=False,
                error_code=ERROR_EMAIL_NOT_CONFIGURED,
                error_message="Email notifications not configured",
            )

        msg = self._build_message(subject, body, correlation_id)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                if self._use_starttls:
                    server.starttls()
                if self._username and self._password:
                    server.login(self._username, self._password)
                server.send_message(msg)

            logger.debug(
                f"[MAIL_SEND] Message sent | "
                f"subject={subject[:60]} | "
                f"correlation_id={correlation_id}"
            )
            return NotificationResult(success=True)

        except TimeoutError:
            logger.error(
                f"[{ERROR_EMAIL_TIMEOUT}] SMTP timed out after {self._timeout}s | "
                f"correlation_id={correlation_id}"
            )
            return NotificationResult(
                success=False,
                error_code=ERROR_EMAIL_TIMEOUT,
                error_message="SMTP timed out",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                f"[{ERROR_EMAIL_SEND_FAILED}] SMTP error: {str(e)} | "
                f"correlation_id={correlation_id}"
            )
            return NotificationResult(
                success=False,
                error_code=ERROR_EMAIL_SEND_FAILED,
                error_message=str(e),
            )

    def send_alert(
        self,
        alert: ValidationAlert,
        correlation_id: Optional[str] = None
    ) -> NotificationResult:
        """Send a per-symbol validation alert."""
        content = format_alert_email(alert, correlation_id)
        result = self.send(content["subject"], content["body"], correlation_id)
        if not result.success and result.error_code != ERROR_EMAIL_NOT_CONFIGURED:
            logger.warning(
                f"[{VeritasErrorCode.NOTIFICATION_FAILED}] Alert email failed | "
                f"alert_id={alert.id} | "
                f"error={result.error_code} | "
                f"correlation_id={correlation_id}"
            )
        return result

    def describe(self) -> Dict[str, Any]:
        return {
            "enabled": self.is_enabled,
            "host": self._host,
            "port": self._port,
            "recipients": len(self._recipients),
        }


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_email_notifier = None  # type: Optional[EmailNotifier]


def get_email_notifier() -> EmailNotifier:
    """Get or create the global EmailNotifier instance."""
    global _email_notifier

    if _email_notifier is None:
        _email_notifier = EmailNotifier()
        logger.info("[MAIL_NOTIFIER_SINGLETON] Created global instance")

    return _email_notifier


def reset_email_notifier() -> None:
    """Drop the global instance (tests)."""
    global _email_notifier
    _email_notifier = None
