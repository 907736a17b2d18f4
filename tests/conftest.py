import os

# Must be set before any delayguard module builds its settings, logger or engine
os.environ["LOG_DIR"] = ""
os.environ["DATABASE_URL"] = "sqlite://"

import uuid
from datetime import datetime, timezone
from typing import Callable, Generator, List, Optional, Sequence, Set

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from delayguard.db.models import BillingStatus, Carrier, DeliverySource, Merchant, Shipment
from delayguard.db.session import create_tables, drop_tables
from delayguard.schemas.poll_schemas import (
    JobHandle,
    PollJobDescriptor,
    ShipmentPollCandidate,
)

# Wednesday noon UTC, the reference instant for most scheduling tests
NOW = datetime(2026, 2, 4, 12, 0, tzinfo=timezone.utc)


# Test database setup
@pytest.fixture
def test_engine():
    """Create an in-memory SQLite engine with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session_maker = sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)
    session = session_maker()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# Test data factories
@pytest.fixture
def make_merchant(db_session: Session) -> Callable[..., Merchant]:
    """Factory for merchants; every call creates a new shop."""

    def _make(**overrides) -> Merchant:
        values = dict(
            shop_domain=f"shop-{uuid.uuid4().hex[:8]}.myshopify.com",
            billing_status=BillingStatus.ACTIVE,
            shop_frozen=False,
            random_poll_offset=0,
            delay_threshold_hours=8,
            timezone="America/New_York",
        )
        values.update(overrides)
        merchant = Merchant(**values)
        db_session.add(merchant)
        db_session.commit()
        return merchant

    return _make


@pytest.fixture
def sample_merchant(make_merchant) -> Merchant:
    """An active merchant with default delay settings."""
    return make_merchant()


@pytest.fixture
def make_shipment(db_session: Session, sample_merchant: Merchant) -> Callable[..., Shipment]:
    """Factory for shipments that are due for a poll unless overridden."""

    def _make(**overrides) -> Shipment:
        values = dict(
            merchant_id=sample_merchant.id,
            order_number=f"#{uuid.uuid4().int % 100000}",
            tracking_number=f"1Z{uuid.uuid4().hex[:16].upper()}",
            carrier=Carrier.UPS,
            service_level="UPS Ground",
            ship_date=datetime(2026, 1, 26, 15, 0),
            expected_delivery_date=datetime(2026, 2, 2),
            expected_delivery_source=DeliverySource.CARRIER,
            next_poll_at=datetime(2026, 2, 4, 11, 0),
        )
        values.update(overrides)
        shipment = Shipment(**values)
        db_session.add(shipment)
        db_session.commit()
        return shipment

    return _make


# Collaborator doubles
class FakeShipmentStore:
    """In-memory store over an already ordered list of due shipments."""

    def __init__(self, candidates: Sequence[ShipmentPollCandidate], fail_on_call: Optional[int] = None):
        self.candidates = list(candidates)
        self.fail_on_call = fail_on_call
        self.calls: List[tuple] = []

    def find_due_for_poll(self, offset: int, limit: int) -> List[ShipmentPollCandidate]:
        self.calls.append((offset, limit))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("connection reset by peer")
        return self.candidates[offset : offset + limit]


class RecordingQueue:
    """In-memory queue that records every bulk submission."""

    def __init__(self, fail_on_batches: Sequence[int] = (), already_queued: Set[str] = frozenset()):
        self.fail_on_batches = set(fail_on_batches)
        self.already_queued = set(already_queued)
        self.batches: List[List[PollJobDescriptor]] = []

    def bulk_submit(self, jobs: Sequence[PollJobDescriptor]) -> List[JobHandle]:
        self.batches.append(list(jobs))
        if len(self.batches) in self.fail_on_batches:
            raise ConnectionError("queue unavailable")

        handles = []
        for job in jobs:
            created = job.dedupe_key not in self.already_queued
            self.already_queued.add(job.dedupe_key)
            handles.append(
                JobHandle(
                    dedupe_key=job.dedupe_key,
                    job_id=str(uuid.uuid4()) if created else None,
                    created=created,
                )
            )
        return handles

    @property
    def jobs(self) -> List[PollJobDescriptor]:
        return [job for batch in self.batches for job in batch]


def make_candidates(count: int, expected_delivery_date: Optional[datetime] = None) -> List[ShipmentPollCandidate]:
    return [
        ShipmentPollCandidate(id=f"shp-{i:05d}", expected_delivery_date=expected_delivery_date)
        for i in range(count)
    ]


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: NOW
