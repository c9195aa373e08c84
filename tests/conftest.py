"""
Pytest fixtures for the threshold dual-control test suite.

Provides:
- A SQLite file database per test (real engine, BEGIN IMMEDIATE writers)
- Kernel service fixtures bound to one session
- A facade fixture bound to a session factory
- DeterministicClock and StaticCapabilityOracle wiring
- Structured log capture
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import Session, sessionmaker

from threshold_kernel.db.engine import create_engine_for_url, create_tables
from threshold_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from threshold_kernel.domain.authority import Capability, StaticCapabilityOracle
from threshold_kernel.domain.clock import DeterministicClock
from threshold_kernel.domain.threshold import (
    ThresholdCategory,
    ThresholdConfig,
    make_threshold_id,
)
from threshold_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from threshold_kernel.services.approval_workflow import ApprovalWorkflow
from threshold_kernel.services.auditor_service import AuditorService
from threshold_kernel.services.notification_router import NotificationRouter
from threshold_kernel.services.threshold_store import ThresholdStore
from threshold_services.control_service import ThresholdControlService

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"

START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# Actors
ADMIN = "ops-admin-1"
ADMIN_2 = "ops-admin-2"
SUPERVISOR = "supervisor-1"
SUPERVISOR_2 = "supervisor-2"
VIEWER = "viewer-1"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
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
    Capture threshold_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.propose(...)
            logs = captured_logs()
            assert any(r["message"] == "threshold_change_proposed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("threshold_kernel")
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
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file database with the full schema."""
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'thresholds.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """
    One session for kernel-level tests.

    SQLite holds the write lock for the session's whole transaction, so a
    test must not mix this fixture with the facade fixture.
    """
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Time and authority
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(START_TIME)


@pytest.fixture
def oracle() -> StaticCapabilityOracle:
    return StaticCapabilityOracle({
        ADMIN: [Capability.SYSTEM_ADMIN],
        ADMIN_2: [Capability.SYSTEM_ADMIN],
        SUPERVISOR: [Capability.SYSTEM_ADMIN, Capability.DUAL_CONTROL_APPROVER],
        SUPERVISOR_2: [Capability.SYSTEM_ADMIN, Capability.DUAL_CONTROL_APPROVER],
        VIEWER: [Capability.PORTFOLIO_VIEW],
    })


# =============================================================================
# Kernel services
# =============================================================================


@pytest.fixture
def store(session) -> ThresholdStore:
    return ThresholdStore(session)


@pytest.fixture
def auditor(session, clock) -> AuditorService:
    return AuditorService(session, clock)


@pytest.fixture
def router(session, clock) -> NotificationRouter:
    return NotificationRouter(session, clock)


@pytest.fixture
def workflow(session, oracle, clock) -> ApprovalWorkflow:
    return ApprovalWorkflow(session, oracle, clock=clock)


@pytest.fixture
def make_config(clock):
    """Build a storable ThresholdConfig for a slot."""

    def _make(
        category: ThresholdCategory = ThresholdCategory.FX_CONVERSION,
        currency_or_asset: str = "AUD",
        amount: str | Decimal = "10000",
        tenant_id: str = TENANT,
        set_by: str = ADMIN,
    ) -> ThresholdConfig:
        now = clock.now()
        return ThresholdConfig(
            threshold_id=make_threshold_id(category, currency_or_asset),
            tenant_id=tenant_id,
            category=category,
            currency_or_asset=currency_or_asset,
            amount=Decimal(amount),
            effective_from=now,
            set_by=set_by,
            set_at=now,
        )

    return _make


# =============================================================================
# Facade
# =============================================================================


@pytest.fixture
def control(session_factory, oracle, clock) -> ThresholdControlService:
    return ThresholdControlService(
        session_factory,
        oracle,
        clock=clock,
        default_tenant=TENANT,
    )


@pytest.fixture
def seed_threshold(session_factory, make_config):
    """Commit an active config outside the facade (closes its session)."""

    def _seed(**kwargs) -> ThresholdConfig:
        config = make_config(**kwargs)
        session = session_factory()
        try:
            ThresholdStore(session).replace(config)
            session.commit()
        finally:
            session.close()
        return config

    return _seed
