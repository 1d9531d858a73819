"""
Pytest fixtures for the OA approval engine test suite.

Provides:
- A fresh SQLite database file per test (BEGIN IMMEDIATE locking, so
  thread-based concurrency tests serialize the way PostgreSQL does)
- A seeded organisation chart
- Flow and business-row builders
- An ApprovalEngine wired to a recording intent sink

Environment Variables:
- OA_TEST_DATABASE_URL: run against another database instead (e.g.
  postgresql+psycopg2://oa:oa@localhost/oa_test).  Tables are dropped and
  recreated around each test.

A SQLite session holds the write lock from its first statement until it
commits or rolls back.  Tests therefore read through ``session_scope`` and
leave the block before calling the engine.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import date
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from oa_kernel.db.engine import create_db_engine, create_tables, drop_tables, session_scope
from oa_kernel.domain.approval import FlowInfo, NodeKind, NodeSpec
from oa_kernel.domain.clock import DeterministicClock
from oa_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from oa_kernel.models.business import LeaveApplication
from oa_kernel.models.organization import Department, Role, User, UserRole
from oa_kernel.services.approval_engine import ApprovalEngine
from oa_kernel.services.auditor_service import AuditorService
from oa_kernel.services.catalog_service import CatalogCache, CatalogService
from oa_kernel.services.dispatcher import SideEffectDispatcher
from oa_kernel.services.intent_relay import (
    IntentRelay,
    MemoryIntentSink,
    NotificationSink,
    TodoSink,
)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
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
    Capture oa_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "decision_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("oa_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path):
    return os.environ.get("OA_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'oa.db'}"


@pytest.fixture
def db_engine(db_url):
    engine = create_db_engine(db_url, lock_timeout=15.0)
    if not db_url.startswith("sqlite"):
        drop_tables(engine)
    create_tables(engine)
    yield engine
    if not db_url.startswith("sqlite"):
        drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def recording_sink():
    return MemoryIntentSink()


@pytest.fixture
def relay(session_factory, clock, recording_sink):
    return IntentRelay(
        session_factory,
        sinks=(TodoSink(clock), NotificationSink(clock), recording_sink),
        clock=clock,
    )


@pytest.fixture
def catalog_cache(clock):
    return CatalogCache(0, clock)


@pytest.fixture
def engine(session_factory, relay, clock, catalog_cache):
    """ApprovalEngine without a request deadline."""
    return ApprovalEngine(
        session_factory,
        dispatcher=SideEffectDispatcher(clock=clock),
        relay=relay,
        clock=clock,
        catalog_cache=catalog_cache,
        request_timeout_seconds=None,
    )


# ---------------------------------------------------------------------------
# Organisation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrgChart:
    """Ids of the seeded organisation.

    Company (head: ceo)
      Engineering (head: eng_head)
        Platform (no head)    alice, the usual applicant
    bob holds the hr role; carol, dave and erin (inactive) hold finance.
    """

    company: int
    engineering: int
    platform: int
    ceo: int
    eng_head: int
    alice: int
    bob: int
    carol: int
    dave: int
    erin: int
    admin: int
    hr_role: int
    finance_role: int


@pytest.fixture
def org(session_factory) -> OrgChart:
    with session_scope(session_factory) as session:
        company = Department(name="Company", sort=0)
        session.add(company)
        session.flush()
        engineering = Department(name="Engineering", parent_id=company.id, sort=1)
        session.add(engineering)
        session.flush()
        platform = Department(name="Platform", parent_id=engineering.id, sort=2)
        session.add(platform)
        session.flush()

        def user(username, department, active=True):
            u = User(
                username=username,
                real_name=username.title(),
                department_id=department.id,
                is_active=active,
            )
            session.add(u)
            session.flush()
            return u

        ceo = user("ceo", company)
        eng_head = user("eng_head", engineering)
        alice = user("alice", platform)
        bob = user("bob", company)
        carol = user("carol", company)
        dave = user("dave", company)
        erin = user("erin", company, active=False)
        admin = user("admin", company)

        company.head_user_id = ceo.id
        engineering.head_user_id = eng_head.id

        hr = Role(code="hr", name="Human resources")
        finance = Role(code="finance", name="Finance")
        super_admin = Role(code="super_admin", name="Administrator")
        session.add_all([hr, finance, super_admin])
        session.flush()
        session.add_all([
            UserRole(user_id=bob.id, role_id=hr.id),
            UserRole(user_id=carol.id, role_id=finance.id),
            UserRole(user_id=dave.id, role_id=finance.id),
            UserRole(user_id=erin.id, role_id=finance.id),
            UserRole(user_id=admin.id, role_id=super_admin.id),
        ])
        session.flush()

        return OrgChart(
            company=company.id,
            engineering=engineering.id,
            platform=platform.id,
            ceo=ceo.id,
            eng_head=eng_head.id,
            alice=alice.id,
            bob=bob.id,
            carol=carol.id,
            dave=dave.id,
            erin=erin.id,
            admin=admin.id,
            hr_role=hr.id,
            finance_role=finance.id,
        )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class NodeBuilder:
    """Shorthand for NodeSpec literals."""

    @staticmethod
    def fixed(user_id: int, order: int, name: str | None = None) -> NodeSpec:
        return NodeSpec(name or f"person {user_id}", NodeKind.FIXED_PERSON, order, user_id)

    @staticmethod
    def role(role_id: int, order: int, name: str | None = None) -> NodeSpec:
        return NodeSpec(name or f"role {role_id}", NodeKind.ROLE, order, role_id)

    @staticmethod
    def head(order: int, name: str = "department head") -> NodeSpec:
        return NodeSpec(name, NodeKind.DEPARTMENT_HEAD, order)


@pytest.fixture
def node() -> NodeBuilder:
    return NodeBuilder()


@pytest.fixture
def make_flow(session_factory, clock, catalog_cache):
    """Create (or reuse) an approval type and add a flow with ``nodes``."""

    def _make(nodes, type_code: str = "leave", name: str = "default") -> FlowInfo:
        with session_scope(session_factory) as session:
            catalog = CatalogService(
                session, AuditorService(session, clock), catalog_cache, clock,
            )
            existing = [t for t in catalog.list_types() if t.code == type_code]
            type_id = (
                existing[0].id if existing
                else catalog.create_type(type_code, type_code.title()).id
            )
            return catalog.create_flow(type_id, name, "", list(nodes))

    return _make


@pytest.fixture
def make_leave(session_factory):
    """Insert a pending leave application and return its id."""

    def _make(applicant_id: int, days: int = 1) -> int:
        with session_scope(session_factory) as session:
            row = LeaveApplication(
                applicant_id=applicant_id,
                leave_type="annual",
                start_date=date(2024, 2, 1),
                end_date=date(2024, 2, days),
                days=days,
                reason="rest",
            )
            session.add(row)
            session.flush()
            return row.id

    return _make
