"""
SQLAlchemy Enrollment Store

Async SQLAlchemy implementation of the transactional store. A transaction is
one database transaction that starts by locking the section row
(``SELECT ... FOR UPDATE``); counter writes are conditional UPDATEs matching
the counters read earlier in the same transaction. Connection-level failures
surface as StoreUnavailableError so the engine can retry the unit.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from services.enrollment_service.models import (
    EnrollmentModel,
    SectionModel,
    TermModel,
    WaitlistEntryModel,
)
from services.enrollment_service.store import (
    EnrollmentStore,
    StoreSnapshot,
    StoreTransaction,
)
from shared.concurrency.locking import LockManager, LockTimeoutError
from shared.config import settings
from shared.database.postgres import create_session_factory, get_session_factory, init_db
from shared.domain.academic import (
    Enrollment,
    EnrollmentStatus,
    Section,
    SectionCounters,
    Term,
    WaitlistEntry,
    WaitlistStatus,
)
from shared.domain.exceptions import InvariantViolationError, StoreUnavailableError

logger = structlog.get_logger(__name__)

_TRANSIENT_ERRORS = (OperationalError, InterfaceError)


class _SqlTransaction(StoreTransaction):
    """Store operations on one open session."""

    def __init__(self, session: AsyncSession, section_id: UUID):
        self.session = session
        self.section_id = section_id

    async def read_section(self, section_id: UUID) -> Section | None:
        result = await self.session.execute(
            select(SectionModel)
            .where(SectionModel.id == section_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return row.to_domain() if row else None

    async def read_term(self, term_id: UUID) -> Term | None:
        row = await self.session.get(TermModel, term_id)
        return row.to_domain() if row else None

    async def compare_and_swap_counters(
        self,
        section_id: UUID,
        expected: SectionCounters,
        new: SectionCounters,
        capacity: int | None = None,
    ) -> bool:
        if section_id != self.section_id:
            raise InvariantViolationError(
                "Counter swap outside the locked section",
                section_id=section_id,
                invariant="section_lock_scope",
            )

        values = {
            "enrolled_count": new.enrolled_count,
            "waitlist_count": new.waitlist_count,
        }
        if capacity is not None:
            values["capacity"] = capacity

        result = await self.session.execute(
            update(SectionModel)
            .where(
                SectionModel.id == section_id,
                SectionModel.enrolled_count == expected.enrolled_count,
                SectionModel.waitlist_count == expected.waitlist_count,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        row = await self.session.get(EnrollmentModel, enrollment_id)
        return row.to_domain() if row else None

    async def find_active_enrollment(
        self, student_id: UUID, section_id: UUID
    ) -> Enrollment | None:
        result = await self.session.execute(
            select(EnrollmentModel).where(
                EnrollmentModel.student_id == student_id,
                EnrollmentModel.section_id == section_id,
                EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
            )
        )
        row = result.scalars().first()
        return row.to_domain() if row else None

    async def insert_enrollment(self, enrollment: Enrollment) -> None:
        self.session.add(EnrollmentModel.from_domain(enrollment))
        await self.session.flush()

    async def update_enrollment(self, enrollment: Enrollment) -> None:
        row = await self.session.get(EnrollmentModel, enrollment.id)
        if row is None:
            raise InvariantViolationError(
                f"Enrollment {enrollment.id} does not exist",
                section_id=enrollment.section_id,
                invariant="enrollment_exists",
            )
        row.apply(enrollment)
        await self.session.flush()

    async def list_active_sections(self, student_id: UUID, term_id: UUID) -> list[Section]:
        result = await self.session.execute(
            select(SectionModel)
            .join(EnrollmentModel, EnrollmentModel.section_id == SectionModel.id)
            .where(
                EnrollmentModel.student_id == student_id,
                EnrollmentModel.term_id == term_id,
                EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
            )
            .execution_options(populate_existing=True)
        )
        return [row.to_domain() for row in result.scalars().unique()]

    async def find_waiting_entry(
        self, student_id: UUID, section_id: UUID
    ) -> WaitlistEntry | None:
        result = await self.session.execute(
            select(WaitlistEntryModel)
            .where(
                WaitlistEntryModel.student_id == student_id,
                WaitlistEntryModel.section_id == section_id,
                WaitlistEntryModel.status == WaitlistStatus.WAITING.value,
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalars().first()
        return row.to_domain() if row else None

    async def list_waiting_entries(self, section_id: UUID) -> list[WaitlistEntry]:
        result = await self.session.execute(
            select(WaitlistEntryModel)
            .where(
                WaitlistEntryModel.section_id == section_id,
                WaitlistEntryModel.status == WaitlistStatus.WAITING.value,
            )
            .order_by(WaitlistEntryModel.position)
            .execution_options(populate_existing=True)
        )
        return [row.to_domain() for row in result.scalars()]

    async def insert_waitlist_entry(self, entry: WaitlistEntry) -> None:
        self.session.add(WaitlistEntryModel.from_domain(entry))
        await self.session.flush()

    async def update_waitlist_entry(self, entry: WaitlistEntry) -> None:
        row = await self.session.get(WaitlistEntryModel, entry.id)
        if row is None:
            raise InvariantViolationError(
                f"Waitlist entry {entry.id} does not exist",
                section_id=entry.section_id,
                invariant="waitlist_entry_exists",
            )
        row.apply(entry)
        await self.session.flush()

    async def update_waitlist_positions(
        self, section_id: UUID, above_position: int, delta: int = -1
    ) -> int:
        result = await self.session.execute(
            update(WaitlistEntryModel)
            .where(
                WaitlistEntryModel.section_id == section_id,
                WaitlistEntryModel.status == WaitlistStatus.WAITING.value,
                WaitlistEntryModel.position > above_position,
            )
            .values(position=WaitlistEntryModel.position + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class SqlAlchemyEnrollmentStore(EnrollmentStore):
    """
    Enrollment store backed by PostgreSQL (or any async SQLAlchemy dialect).

    The row lock serialises units across processes. A per-section lock in
    this process additionally orders local callers, which keeps dialects
    without ``FOR UPDATE`` (SQLite) correct for a single process.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        engine: AsyncEngine | None = None,
        lock_timeout: float | None = None,
    ):
        """
        Initialize store.

        Args:
            session_factory: Session factory to use
            engine: Engine to build a session factory from when none is given
            lock_timeout: Seconds to wait for the local section lock
        """
        if session_factory is None:
            session_factory = (
                create_session_factory(engine) if engine is not None else get_session_factory()
            )
        self.session_factory = session_factory
        # Schema and disposal follow the engine the sessions are bound to
        self.engine: AsyncEngine = engine if engine is not None else session_factory.kw["bind"]
        self.lock_manager = LockManager()
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None else settings.operation_timeout_seconds
        )

    async def create_schema(self) -> None:
        """Create the enrollment tables if they do not exist."""
        await init_db(self.engine)

    async def close(self) -> None:
        """Dispose the connection pool of the bound engine."""
        await self.engine.dispose()
        logger.info("Enrollment store closed")

    async def add_term(self, term: Term) -> Term:
        async with self.session_factory() as session, session.begin():
            session.add(TermModel.from_domain(term))
        return term

    async def add_section(self, section: Section) -> Section:
        async with self.session_factory() as session, session.begin():
            session.add(SectionModel.from_domain(section))
        return section

    @asynccontextmanager
    async def transaction(self, section_id: UUID) -> AsyncIterator[StoreTransaction]:
        owner = f"tx-{id(asyncio.current_task())}"
        try:
            async with self.lock_manager.hold(
                str(section_id), owner=owner, wait_timeout=self.lock_timeout
            ):
                async with self.session_factory() as session, session.begin():
                    await session.execute(
                        select(SectionModel.id)
                        .where(SectionModel.id == section_id)
                        .with_for_update()
                    )
                    yield _SqlTransaction(session, section_id)
        except LockTimeoutError as e:
            raise StoreUnavailableError(
                f"Section {section_id} is busy", operation="lock", cause=e
            ) from e
        except _TRANSIENT_ERRORS as e:
            logger.warning("Database error in transaction", section_id=str(section_id), error=str(e))
            raise StoreUnavailableError(
                "Database unavailable", operation="transaction", cause=e
            ) from e

    async def _query(self, statement):
        try:
            async with self.session_factory() as session:
                result = await session.execute(statement)
                return list(result.scalars())
        except _TRANSIENT_ERRORS as e:
            raise StoreUnavailableError("Database unavailable", operation="query", cause=e) from e

    async def get_section(self, section_id: UUID) -> Section | None:
        rows = await self._query(select(SectionModel).where(SectionModel.id == section_id))
        return rows[0].to_domain() if rows else None

    async def get_term(self, term_id: UUID) -> Term | None:
        rows = await self._query(select(TermModel).where(TermModel.id == term_id))
        return rows[0].to_domain() if rows else None

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        rows = await self._query(select(EnrollmentModel).where(EnrollmentModel.id == enrollment_id))
        return rows[0].to_domain() if rows else None

    async def list_sections(self, term_id: UUID) -> list[Section]:
        rows = await self._query(select(SectionModel).where(SectionModel.term_id == term_id))
        return [row.to_domain() for row in rows]

    async def list_student_enrollments(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> list[Enrollment]:
        statement = select(EnrollmentModel).where(EnrollmentModel.student_id == student_id)
        if term_id is not None:
            statement = statement.where(EnrollmentModel.term_id == term_id)
        rows = await self._query(statement.order_by(EnrollmentModel.enrolled_at.desc()))
        return [row.to_domain() for row in rows]

    async def list_student_waitlist(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> list[WaitlistEntry]:
        statement = select(WaitlistEntryModel).where(WaitlistEntryModel.student_id == student_id)
        if term_id is not None:
            statement = statement.where(WaitlistEntryModel.term_id == term_id)
        rows = await self._query(statement.order_by(WaitlistEntryModel.position))
        return [row.to_domain() for row in rows]

    async def snapshot(self) -> StoreSnapshot:
        sections = await self._query(select(SectionModel))
        enrollments = await self._query(select(EnrollmentModel))
        entries = await self._query(select(WaitlistEntryModel))
        return StoreSnapshot(
            sections=[row.to_domain() for row in sections],
            enrollments=[row.to_domain() for row in enrollments],
            waitlist_entries=[row.to_domain() for row in entries],
        )
