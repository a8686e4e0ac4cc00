"""
conftest.py — Shared Test Fixtures for AssistFlow

Provides an in-memory SQLite database, a FastAPI TestClient wired to it,
factory fixtures for suppliers, requests, quotations and follow-up
schedules, and a recording notifier.

Business Rules:
- All tests run against an isolated in-memory DB
- The scheduler never starts under TESTING; rate limits are off
- Each test function gets fresh tables

Called by: all test files via pytest autodiscovery
Depends on: assistflow.models (Base), assistflow.database (get_db)
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing assistflow modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from assistflow.models import (
    Base,
    FollowUpKind,
    Priority,
    Quotation,
    QuotationStatus,
    RequestStatus,
    ServiceRequest,
    Supplier,
)
from assistflow.services.notification_service import SendResult
from assistflow.services.schedule_store import ScheduleStore

# ── In-memory SQLite engine ──────────────────────────────────────────

TEST_DB_URL = "sqlite://"

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default; turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def test_supplier(db_session: Session) -> Supplier:
    supplier = Supplier(
        name="Plomberie Martin",
        email="contact@plomberie-martin.fr",
        phone="+33 1 23 45 67 89",
        specialization="plumbing",
        created_at=NOW - timedelta(days=90),
    )
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture()
def make_request(db_session: Session, test_supplier: Supplier):
    """Factory for service requests assigned to test_supplier."""

    def _make(
        priority=Priority.NORMAL,
        status=RequestStatus.AWAITING_QUOTATION,
        created_at=None,
        response_deadline=None,
        **kwargs,
    ) -> ServiceRequest:
        req = ServiceRequest(
            title=kwargs.pop("title", "Water leak in basement"),
            status=status,
            priority=priority,
            assigned_supplier_id=kwargs.pop("assigned_supplier_id", test_supplier.id),
            created_at=created_at or NOW - timedelta(days=1),
            response_deadline=response_deadline,
            **kwargs,
        )
        db_session.add(req)
        db_session.commit()
        db_session.refresh(req)
        return req

    return _make


@pytest.fixture()
def test_request(make_request) -> ServiceRequest:
    return make_request(quotation_deadline=NOW + timedelta(days=2))


@pytest.fixture()
def make_schedule(db_session: Session, test_request: ServiceRequest, test_supplier: Supplier):
    """Factory for pending follow-up schedules (bypasses service validation)."""

    def _make(
        scheduled_for=None,
        kind=FollowUpKind.QUOTATION_REMINDER,
        priority=Priority.NORMAL,
        max_attempts=3,
        **kwargs,
    ):
        return ScheduleStore(db_session).create(
            request_id=kwargs.pop("request_id", test_request.id),
            supplier_id=kwargs.pop("supplier_id", test_supplier.id),
            kind=kind,
            priority=priority,
            scheduled_for=scheduled_for or NOW - timedelta(minutes=5),
            max_attempts=max_attempts,
            meta=kwargs.pop("meta", {}),
            **kwargs,
        )

    return _make


@pytest.fixture()
def make_quotation(db_session: Session, test_supplier: Supplier):
    def _make(request: ServiceRequest, amount="499.00", status=QuotationStatus.PENDING) -> Quotation:
        q = Quotation(
            request_id=request.id,
            supplier_id=test_supplier.id,
            amount=Decimal(amount),
            status=status,
            created_at=NOW - timedelta(hours=2),
        )
        db_session.add(q)
        db_session.commit()
        db_session.refresh(q)
        return q

    return _make


class RecordingNotifier:
    """Notifier double: records sends, replays scripted outcomes, optional delay."""

    def __init__(self, outcomes=None, delay: float = 0):
        self.sent: list[tuple[str, str]] = []
        self.messages: list[dict] = []
        self.outcomes = list(outcomes or [])
        self.delay = delay

    async def send(self, recipient, subject, body, context=None) -> SendResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((recipient, subject))
        self.messages.append({"to": recipient, "subject": subject, "body": body, "context": context or {}})
        if self.outcomes:
            return self.outcomes.pop(0)
        return SendResult.ok()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def client(db_session: Session) -> TestClient:
    """FastAPI TestClient with get_db overridden to the test session."""
    from assistflow.database import get_db
    from assistflow.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def make_notifier():
    """Factory: RecordingNotifier(outcomes=[SendResult...], delay=seconds)."""
    return RecordingNotifier
