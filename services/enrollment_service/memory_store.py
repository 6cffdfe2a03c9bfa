"""
In-Memory Enrollment Store

Dict-backed implementation of the transactional store. Transactions take the
per-section lock from the shared lock manager and stage writes in a private
overlay that is merged on commit, so a failed or cancelled unit leaves no
trace. Every transactional call yields to the event loop (optionally after a
simulated latency) so tests can exercise real interleavings.
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from uuid import UUID

import structlog

from services.enrollment_service.store import (
    EnrollmentStore,
    StoreSnapshot,
    StoreTransaction,
)
from shared.concurrency.locking import (
    LockManager,
    LockTimeoutError,
    OptimisticConcurrencyControl,
)
from shared.config import settings
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


class _InMemoryTransaction(StoreTransaction):
    """Staged view over the store for one locked section."""

    def __init__(self, store: "InMemoryEnrollmentStore", section_id: UUID):
        self.store = store
        self.section_id = section_id
        self._sections: dict[UUID, Section] = {}
        self._enrollments: dict[UUID, Enrollment] = {}
        self._waitlist: dict[UUID, WaitlistEntry] = {}

    async def _pause(self) -> None:
        await asyncio.sleep(self.store.latency)

    def _all_enrollments(self) -> Iterable[Enrollment]:
        return {**self.store.enrollments, **self._enrollments}.values()

    def _all_waitlist(self) -> Iterable[WaitlistEntry]:
        return {**self.store.waitlist, **self._waitlist}.values()

    def _section(self, section_id: UUID) -> Section | None:
        return self._sections.get(section_id) or self.store.sections.get(section_id)

    async def read_section(self, section_id: UUID) -> Section | None:
        await self._pause()
        return self._section(section_id)

    async def read_term(self, term_id: UUID) -> Term | None:
        await self._pause()
        return self.store.terms.get(term_id)

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
        await self._pause()
        current = self._section(section_id)
        if current is None or not OptimisticConcurrencyControl.matches(expected, current.counters):
            return False
        update = new.model_dump()
        if capacity is not None:
            update["capacity"] = capacity
        self._sections[section_id] = current.model_copy(update=update)
        return True

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        await self._pause()
        return self._enrollments.get(enrollment_id) or self.store.enrollments.get(enrollment_id)

    async def find_active_enrollment(
        self, student_id: UUID, section_id: UUID
    ) -> Enrollment | None:
        await self._pause()
        for enrollment in self._all_enrollments():
            if (
                enrollment.student_id == student_id
                and enrollment.section_id == section_id
                and enrollment.is_active
            ):
                return enrollment
        return None

    async def insert_enrollment(self, enrollment: Enrollment) -> None:
        await self._pause()
        self._enrollments[enrollment.id] = enrollment

    async def update_enrollment(self, enrollment: Enrollment) -> None:
        await self._pause()
        self._enrollments[enrollment.id] = enrollment

    async def list_active_sections(self, student_id: UUID, term_id: UUID) -> list[Section]:
        await self._pause()
        sections = []
        for enrollment in self._all_enrollments():
            if (
                enrollment.student_id == student_id
                and enrollment.term_id == term_id
                and enrollment.is_active
            ):
                section = self._section(enrollment.section_id)
                if section is not None:
                    sections.append(section)
        return sections

    async def find_waiting_entry(
        self, student_id: UUID, section_id: UUID
    ) -> WaitlistEntry | None:
        await self._pause()
        for entry in self._all_waitlist():
            if entry.student_id == student_id and entry.section_id == section_id and entry.is_waiting:
                return entry
        return None

    async def list_waiting_entries(self, section_id: UUID) -> list[WaitlistEntry]:
        await self._pause()
        waiting = [e for e in self._all_waitlist() if e.section_id == section_id and e.is_waiting]
        return sorted(waiting, key=lambda e: e.position)

    async def insert_waitlist_entry(self, entry: WaitlistEntry) -> None:
        await self._pause()
        self._waitlist[entry.id] = entry

    async def update_waitlist_entry(self, entry: WaitlistEntry) -> None:
        await self._pause()
        self._waitlist[entry.id] = entry

    async def update_waitlist_positions(
        self, section_id: UUID, above_position: int, delta: int = -1
    ) -> int:
        await self._pause()
        shifted = 0
        for entry in list(self._all_waitlist()):
            if entry.section_id == section_id and entry.is_waiting and entry.position > above_position:
                self._waitlist[entry.id] = entry.model_copy(
                    update={"position": entry.position + delta}
                )
                shifted += 1
        return shifted

    def commit(self) -> None:
        """Merge staged writes into the store; runs without awaiting."""
        self.store.sections.update(self._sections)
        self.store.enrollments.update(self._enrollments)
        self.store.waitlist.update(self._waitlist)


class InMemoryEnrollmentStore(EnrollmentStore):
    """
    Process-local store for tests, demos and single-node embedding.

    Catalog data (sections, terms) is seeded with ``add_section``/``add_term``;
    the engine only changes it through transactions.
    """

    def __init__(self, latency: float = 0.0, lock_timeout: float | None = None):
        """
        Initialize store.

        Args:
            latency: Simulated seconds per transactional call
            lock_timeout: Seconds to wait for a section lock (defaults to
                the operation timeout)
        """
        self.sections: dict[UUID, Section] = {}
        self.terms: dict[UUID, Term] = {}
        self.enrollments: dict[UUID, Enrollment] = {}
        self.waitlist: dict[UUID, WaitlistEntry] = {}
        self.latency = latency
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None else settings.operation_timeout_seconds
        )
        self.lock_manager = LockManager()
        self._pending_failures = 0
        self.commits = 0
        self.rollbacks = 0

    # Catalog seeding

    def add_term(self, term: Term) -> Term:
        self.terms[term.id] = term
        return term

    def add_section(self, section: Section) -> Section:
        self.sections[section.id] = section
        return section

    def fail_next_transactions(self, count: int) -> None:
        """Make the next ``count`` transactions raise StoreUnavailableError."""
        self._pending_failures = count

    @asynccontextmanager
    async def transaction(self, section_id: UUID) -> AsyncIterator[StoreTransaction]:
        if self._pending_failures > 0:
            self._pending_failures -= 1
            raise StoreUnavailableError("Simulated store outage", operation="transaction")

        owner = f"tx-{id(asyncio.current_task())}"
        try:
            async with self.lock_manager.hold(
                str(section_id), owner=owner, wait_timeout=self.lock_timeout
            ):
                tx = _InMemoryTransaction(self, section_id)
                try:
                    yield tx
                except BaseException:
                    self.rollbacks += 1
                    logger.debug("Transaction rolled back", section_id=str(section_id))
                    raise
                tx.commit()
                self.commits += 1
        except LockTimeoutError as e:
            raise StoreUnavailableError(
                f"Section {section_id} is busy", operation="lock", cause=e
            ) from e

    # Read-only queries

    async def get_section(self, section_id: UUID) -> Section | None:
        return self.sections.get(section_id)

    async def get_term(self, term_id: UUID) -> Term | None:
        return self.terms.get(term_id)

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        return self.enrollments.get(enrollment_id)

    async def list_sections(self, term_id: UUID) -> list[Section]:
        return [s for s in self.sections.values() if s.term_id == term_id]

    async def list_student_enrollments(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> list[Enrollment]:
        rows = [
            e
            for e in self.enrollments.values()
            if e.student_id == student_id and (term_id is None or e.term_id == term_id)
        ]
        return sorted(rows, key=lambda e: e.enrolled_at, reverse=True)

    async def list_student_waitlist(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> list[WaitlistEntry]:
        rows = [
            w
            for w in self.waitlist.values()
            if w.student_id == student_id and (term_id is None or w.term_id == term_id)
        ]
        return sorted(rows, key=lambda w: w.position)

    async def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            sections=list(self.sections.values()),
            enrollments=list(self.enrollments.values()),
            waitlist_entries=list(self.waitlist.values()),
        )

    def active_count(self, section_id: UUID) -> int:
        return sum(
            1
            for e in self.enrollments.values()
            if e.section_id == section_id and e.status == EnrollmentStatus.ACTIVE
        )

    def waiting_positions(self, section_id: UUID) -> list[int]:
        return sorted(
            w.position
            for w in self.waitlist.values()
            if w.section_id == section_id and w.status == WaitlistStatus.WAITING
        )
