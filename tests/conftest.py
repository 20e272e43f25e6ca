"""
Pytest fixtures for the governance test suite.

Provides:
- Structured-log setup and capture
- A deterministic clock and a recording notification sink
- In-memory stores and an in-memory SQLite session factory
- The default catalogue, principals built from it, and wired services
"""

import json
import logging
from datetime import UTC, datetime
from io import StringIO

import pytest

from governance_config import load_catalogue
from governance_config.registry import PolicyRegistry
from governance_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
)
from governance_kernel.domain.clock import DeterministicClock
from governance_kernel.domain.notification import NotificationKind, NotificationRequest
from governance_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from governance_kernel.repositories import (
    InMemoryApprovalRequestStore,
    InMemoryPlaybookInstanceStore,
)
from governance_services import (
    ApprovalRequestService,
    EscalationSweeper,
    NotificationDispatcher,
    PlaybookDeadlineSweeper,
    PlaybookService,
)

TENANT = "tenant-1"
COMPANY = "company-1"

START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture governance logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, approval_service):
            approval_service.create_request(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("governance")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time and notifications
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(START)


class RecordingSink:
    """Notification sink that keeps every request it is handed."""

    def __init__(self):
        self.sent: list[NotificationRequest] = []

    def send(self, request: NotificationRequest) -> None:
        self.sent.append(request)

    def of_kind(self, kind: NotificationKind) -> list[NotificationRequest]:
        return [r for r in self.sent if r.kind == kind]

    def clear(self) -> None:
        self.sent.clear()


class FailingSink:
    def send(self, request: NotificationRequest) -> None:
        raise ConnectionError("mail relay unreachable")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def dispatcher(sink) -> NotificationDispatcher:
    return NotificationDispatcher(sink)


# =============================================================================
# Catalogue and principals
# =============================================================================


@pytest.fixture(scope="session")
def catalogue():
    return load_catalogue()


@pytest.fixture
def principal(catalogue):
    """
    Build a principal with the capabilities of the given roles.

    Usage::

        alice = principal("alice", "manager")
    """

    def _make(user_id: str, *roles: str, name: str | None = None):
        return catalogue.roles.principal(user_id, name or user_id.title(), roles)

    return _make


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def request_store() -> InMemoryApprovalRequestStore:
    return InMemoryApprovalRequestStore()


@pytest.fixture
def instance_store() -> InMemoryPlaybookInstanceStore:
    return InMemoryPlaybookInstanceStore()


@pytest.fixture
def sqlite_session_factory():
    """Fresh in-memory SQLite database with the governance tables."""
    engine = create_engine_from_url("sqlite:///:memory:")
    create_tables(engine)
    yield create_session_factory(engine)
    drop_tables(engine)
    engine.dispose()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def approval_service(request_store, catalogue, dispatcher, clock) -> ApprovalRequestService:
    return ApprovalRequestService(request_store, catalogue.policies, dispatcher, clock)


@pytest.fixture
def approval_service_for(request_store, dispatcher, clock):
    """Approval service over a custom set of policies."""

    def _make(*policies):
        return ApprovalRequestService(request_store, PolicyRegistry(policies), dispatcher, clock)

    return _make


@pytest.fixture
def escalation_sweeper(request_store, catalogue, dispatcher, clock) -> EscalationSweeper:
    return EscalationSweeper(request_store, catalogue.policies, dispatcher, clock)


@pytest.fixture
def playbook_service(instance_store, catalogue, dispatcher, clock) -> PlaybookService:
    return PlaybookService(instance_store, catalogue.templates, dispatcher, clock)


@pytest.fixture
def deadline_sweeper(instance_store, dispatcher, clock) -> PlaybookDeadlineSweeper:
    return PlaybookDeadlineSweeper(instance_store, dispatcher, clock)
