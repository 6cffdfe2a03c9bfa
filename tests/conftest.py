"""Shared fixtures for enrollment engine tests."""

from datetime import datetime, time, timedelta, timezone
from uuid import UUID

import pytest

from services.enrollment_service.enrollment_service import EnrollmentService
from services.enrollment_service.memory_store import InMemoryEnrollmentStore
from services.enrollment_service.store import EnrollmentStore
from shared.config import Settings
from shared.domain.academic import Section, SectionStatus, Term
from shared.domain.audit import InMemoryAuditSink
from shared.logging_config import configure_logging
from shared.resilience.retry import RetryConfig
from shared.verification import InvariantMonitor

NOW = datetime(2026, 9, 15, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    configure_logging(Settings(log_level="WARNING", log_format="text"))


def make_section(
    term_id: UUID,
    days=("MON", "WED"),
    start: str = "09:00",
    end: str = "10:00",
    capacity: int = 30,
    status: SectionStatus = SectionStatus.OPEN,
    room_id: UUID | None = None,
    instructor_id: UUID | None = None,
    course_id: UUID | None = None,
) -> Section:
    return Section(
        term_id=term_id,
        capacity=capacity,
        status=status,
        schedule_days=days,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        room_id=room_id,
        instructor_id=instructor_id,
        course_id=course_id,
    )


class FixedClock:
    """Settable clock injected into the service."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def term():
    return Term(name="Fall 2026", drop_deadline=NOW + timedelta(days=14))


@pytest.fixture
def store(term):
    store = InMemoryEnrollmentStore()
    store.add_term(term)
    return store


@pytest.fixture
def sink():
    return InMemoryAuditSink()


@pytest.fixture
def retry_config():
    return RetryConfig(attempts=3, base_delay=0)


@pytest.fixture
def service(store, sink, clock, retry_config):
    return EnrollmentService(store, audit_sink=sink, clock=clock, retry_config=retry_config)


@pytest.fixture
def add_section(store, term):
    def _add(**kwargs) -> Section:
        return store.add_section(make_section(term.id, **kwargs))

    return _add


async def assert_invariants(store: EnrollmentStore) -> None:
    violations = InvariantMonitor().verify_snapshot(await store.snapshot())
    assert violations == []
