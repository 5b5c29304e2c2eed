"""
============================================================================
Veritas Protocol - Alert Lifecycle State Machines
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: All operations include correlation_id for audit

NOTIFICATION LIFECYCLE (every alert at or above the notify severity):
    RAISED -> QUEUED_FOR_NOTIFICATION (accepted by dispatcher)
    QUEUED_FOR_NOTIFICATION -> SENT (channel accepted the message)
    QUEUED_FOR_NOTIFICATION -> FAILED_TO_SEND (channel error)
    FAILED_TO_SEND -> QUEUED_FOR_NOTIFICATION (retry, bounded)
    FAILED_TO_SEND -> DROPPED (retries exhausted, logged)

    Terminal States: SENT, DROPPED

REVIEW LIFECYCLE (fatal alerts only, durable):
    PENDING_REVIEW -> REVIEWED

    Terminal States: REVIEWED

ERROR CODES:
    - VER-051: Invalid alert lifecycle transition

============================================================================
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

from services.veritas_models import AlertTransitionError, VeritasErrorCode

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================

class NotificationState(Enum):
    """In-process notification lifecycle."""
    RAISED = "RAISED"
    QUEUED_FOR_NOTIFICATION = "QUEUED_FOR_NOTIFICATION"
    SENT = "SENT"
    FAILED_TO_SEND = "FAILED_TO_SEND"
    DROPPED = "DROPPED"


class ReviewStatus(Enum):
    """Durable human-review lifecycle."""
    PENDING_REVIEW = "pending_review"
    REVIEWED = "reviewed"


# =============================================================================
# VALID_TRANSITIONS Constants
# =============================================================================

VALID_TRANSITIONS: Dict[str, List[str]] = {
    "RAISED": ["QUEUED_FOR_NOTIFICATION"],
    "QUEUED_FOR_NOTIFICATION": ["SENT", "FAILED_TO_SEND"],
    "FAILED_TO_SEND": ["QUEUED_FOR_NOTIFICATION", "DROPPED"],
    "SENT": [],  # Terminal state
    "DROPPED": [],  # Terminal state
}

TERMINAL_STATES: List[str] = ["SENT", "DROPPED"]

REVIEW_TRANSITIONS: Dict[str, List[str]] = {
    "pending_review": ["reviewed"],
    "reviewed": [],  # Terminal state
}

REVIEW_TERMINAL_STATES: List[str] = ["reviewed"]


def _validate(
    table: Dict[str, List[str]],
    current_state: str,
    target_state: str,
    correlation_id: Optional[str]
) -> Tuple[bool, Optional[str]]:
    if current_state not in table or target_state not in table:
        logger.error(
            f"[{VeritasErrorCode.INVALID_TRANSITION}] "
            f"Unknown alert state: {current_state} -> {target_state}. "
            f"Valid states: {list(table.keys())}. "
            f"correlation_id={correlation_id}"
        )
        return (False, VeritasErrorCode.INVALID_TRANSITION)

    valid_targets = table[current_state]
    if target_state not in valid_targets:
        valid_str = "/".join(valid_targets) if valid_targets else "NONE (terminal state)"
        logger.error(
            f"[{VeritasErrorCode.INVALID_TRANSITION}] "
            f"Invalid alert transition: {current_state} -> {target_state}. "
            f"Valid transitions from {current_state}: {valid_str}. "
            f"correlation_id={correlation_id}"
        )
        return (False, VeritasErrorCode.INVALID_TRANSITION)

    logger.debug(
        f"[VERITAS-ALERT-STATE] Transition validated: {current_state} -> {target_state} | "
        f"correlation_id={correlation_id}"
    )
    return (True, None)


def validate_transition(
    current_state: str,
    target_state: str,
    correlation_id: Optional[str] = None
) -> Tuple[bool, Optional[str]]:
    """
    Validate a notification lifecycle transition.

    Returns:
        (True, None) if allowed, (False, "VER-051") otherwise
    """
    return _validate(VALID_TRANSITIONS, current_state, target_state, correlation_id)


def validate_review_transition(
    current_status: str,
    target_status: str,
    correlation_id: Optional[str] = None
) -> Tuple[bool, Optional[str]]:
    """Validate a review lifecycle transition."""
    return _validate(REVIEW_TRANSITIONS, current_status, target_status, correlation_id)


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES or state in REVIEW_TERMINAL_STATES


# =============================================================================
# Tracked Notification
# =============================================================================

class AlertNotification:
    """
    Mutable notification envelope around an immutable alert.

    The alert itself is never modified; only the envelope's state and
    attempt counter move through the lifecycle.
    """

    def __init__(self, alert, correlation_id: Optional[str] = None):
        self.alert = alert
        self.correlation_id = correlation_id
        self.state = NotificationState.RAISED
        self.attempts = 0
        self.last_error: Optional[str] = None
        self.history: List[str] = [NotificationState.RAISED.value]

    def transition(self, target: NotificationState) -> None:
        """Move to target state or raise AlertTransitionError."""
        valid, _ = validate_transition(self.state.value, target.value, self.correlation_id)
        if not valid:
            raise AlertTransitionError(self.state.value, target.value)
        if target == NotificationState.QUEUED_FOR_NOTIFICATION:
            self.attempts += 1
        self.state = target
        self.history.append(target.value)

    @property
    def is_terminal(self) -> bool:
        return self.state.value in TERMINAL_STATES
