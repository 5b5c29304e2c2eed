"""
Shared fixtures for the Veritas test suite.

Every test starts from a clean environment and fresh singletons so
configuration loaded by one test never leaks into another.
"""

import os
import sys
from dataclasses import dataclass
from typing import Optional, List, Tuple

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.database.session import reset_engine
from app.observability.email_notifier import reset_email_notifier
from services.validation_orchestrator import reset_validation_orchestrator
from services.veritas_config import reset_veritas_config


_ENV_PREFIXES = ("VERITAS_", "SMTP_")
_ENV_NAMES = ("DATABASE_URL", "ENABLE_VERITAS_PROTOCOL")


@pytest.fixture(autouse=True)
def clean_environment():
    """
    Clean Veritas-related environment variables before and after each test.
    """
    original_env = {
        k: v for k, v in os.environ.items()
        if k.startswith(_ENV_PREFIXES) or k in _ENV_NAMES
    }
    for var in original_env:
        del os.environ[var]

    reset_veritas_config()
    reset_validation_orchestrator()
    reset_email_notifier()
    reset_engine()

    yield

    for var in list(os.environ):
        if var.startswith(_ENV_PREFIXES) or var in _ENV_NAMES:
            del os.environ[var]
    os.environ.update(original_env)

    reset_validation_orchestrator()
    reset_veritas_config()
    reset_email_notifier()
    reset_engine()


# =============================================================================
# Fake Notifier
# =============================================================================

@dataclass
class FakeResult:
    success: bool
    error_message: Optional[str] = None
    error_code: Optional[str] = None


class FakeNotifier:
    """Records every send; fails the first `fail_times` attempts."""

    def __init__(self, fail_times: int = 0, enabled: bool = True):
        self.fail_times = fail_times
        self.is_enabled = enabled
        self.alerts: List[Tuple[object, Optional[str]]] = []
        self.messages: List[Tuple[str, str, Optional[str]]] = []
        self.attempts = 0

    def _result(self) -> FakeResult:
        self.attempts += 1
        if self.attempts <= self.fail_times:
            return FakeResult(success=False, error_message="smtp down")
        return FakeResult(success=True)

    def send_alert(self, alert, correlation_id=None) -> FakeResult:
        self.alerts.append((alert, correlation_id))
        return self._result()

    def send(self, subject, body, correlation_id=None) -> FakeResult:
        self.messages.append((subject, body, correlation_id))
        return self._result()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()
