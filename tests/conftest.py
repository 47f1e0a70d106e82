"""
Pytest fixtures for the expense approval test suite.

Provides:
- A database engine for the whole run (SQLite file by default)
- Per-test sessions and session factories with table cleanup
- A standard organization directory (executives, manager, employees)
- Rule catalog and claim services wired to a deterministic clock
- Structured log capture

Environment Variables:
- DATABASE_URL: Database connection URL.  If not set, a throwaway SQLite
  file under pytest's temp directory is used.  Tests marked ``postgres``
  run only when this points at PostgreSQL.
"""

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from expense_kernel.db.base import Base
from expense_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from expense_kernel.domain.approval import ClaimSubmission
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.domain.directory import DirectoryUser, InMemoryOrgDirectory
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from expense_kernel.services.claim_service import ClaimService
from expense_kernel.services.rule_catalog import RuleCatalogService


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
    Capture expense_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, claims):
            claims.submit_claim(...)
            logs = captured_logs()
            assert any(r["message"] == "claim_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("expense_kernel")
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
# Markers
# =============================================================================


def get_database_url() -> str | None:
    """Database URL from the environment, or None for the SQLite default."""
    return os.environ.get("DATABASE_URL")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    url = get_database_url() or ""
    if url.startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Session-scoped DB infrastructure (engine + tables ONCE per run)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    url = get_database_url()
    if not url:
        url = f"sqlite:///{tmp_path_factory.mktemp('db') / 'expense_test.db'}"
    eng = init_engine_from_url(url, echo=False, pool_size=30, max_overflow=20, pool_timeout=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once; drop them at the end of the run."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _delete_all_rows(engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def session_factory(db_engine, db_tables):
    """Session factory for tests that open their own transactions.

    Every table is emptied after the test.
    """
    yield get_session_factory()
    _delete_all_rows(db_engine)


@pytest.fixture
def session(session_factory):
    """A plain session; uncommitted work is rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for reproducible tests."""
    return DeterministicClock()


# =============================================================================
# Organization fixtures
# =============================================================================


@dataclass(frozen=True)
class Staff:
    """User ids of the standard test organization."""

    org_id: UUID
    ceo: UUID
    cfo: UUID
    cto: UUID
    director: UUID
    manager: UUID
    admin: UUID
    employee: UUID
    peer: UUID
    loner: UUID
    outsider: UUID


@pytest.fixture
def staff() -> Staff:
    return Staff(
        org_id=uuid4(),
        ceo=uuid4(),
        cfo=uuid4(),
        cto=uuid4(),
        director=uuid4(),
        manager=uuid4(),
        admin=uuid4(),
        employee=uuid4(),
        peer=uuid4(),
        loner=uuid4(),
        outsider=uuid4(),
    )


@pytest.fixture
def directory(staff) -> InMemoryOrgDirectory:
    """Org chart: employee and peer report to manager; loner has no manager."""
    org = staff.org_id
    return InMemoryOrgDirectory([
        DirectoryUser(staff.ceo, org, "ceo", name="Ceo"),
        DirectoryUser(staff.cfo, org, "cfo", manager_id=staff.ceo, name="Cfo"),
        DirectoryUser(staff.cto, org, "cto", manager_id=staff.ceo, name="Cto"),
        DirectoryUser(staff.director, org, "director", manager_id=staff.ceo, name="Director"),
        DirectoryUser(staff.manager, org, "manager", manager_id=staff.director, name="Manager"),
        DirectoryUser(staff.admin, org, "admin", name="Admin"),
        DirectoryUser(staff.employee, org, "employee", manager_id=staff.manager, name="Alice"),
        DirectoryUser(staff.peer, org, "employee", manager_id=staff.manager, name="Bob"),
        DirectoryUser(staff.loner, org, "employee", name="Lone"),
        DirectoryUser(staff.outsider, uuid4(), "cfo", name="Elsewhere"),
    ])


@pytest.fixture
def catalog(session, directory, deterministic_clock) -> RuleCatalogService:
    return RuleCatalogService(session, directory, deterministic_clock)


@pytest.fixture
def claims(session, catalog, directory, deterministic_clock) -> ClaimService:
    return ClaimService(session, catalog, directory, deterministic_clock)


@pytest.fixture
def make_submission(staff):
    """Factory for ``ClaimSubmission`` values with sensible defaults."""

    def _make(
        amount: Decimal | str = "100.00",
        category: str = "Travel",
        employee_id: UUID | None = None,
        **overrides,
    ) -> ClaimSubmission:
        amount = Decimal(str(amount))
        values = {
            "org_id": staff.org_id,
            "employee_id": employee_id or staff.employee,
            "title": "Client visit",
            "amount": amount,
            "currency": "USD",
            "converted_amount": amount,
            "category": category,
        }
        values.update(overrides)
        return ClaimSubmission(**values)

    return _make
