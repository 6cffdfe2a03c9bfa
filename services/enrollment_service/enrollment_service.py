"""
Enrollment Service

Registration state machine: admits, waitlists, drops and promotes students
while keeping section counters and waitlist positions consistent under
concurrent requests.

Each public operation is one atomic unit run inside a store transaction
scoped to the affected section. Domain rejections come back as typed
outcomes; audit events are emitted only after the unit commits.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, TypeVar
from uuid import UUID

import structlog

from services.enrollment_service.conflicts import detect_student_conflicts
from services.enrollment_service.ledger import AdmitOutcome, CapacityLedger
from services.enrollment_service.store import EnrollmentStore, StoreTransaction
from services.enrollment_service.waitlist import WaitlistQueue
from shared.config import settings
from shared.domain.academic import (
    Enrollment,
    EnrollmentStatus,
    Section,
    SectionStatus,
    Term,
    WaitlistEntry,
    utcnow,
)
from shared.domain.audit import (
    AuditAction,
    AuditEvent,
    AuditSink,
    LoggingAuditSink,
    emit_best_effort,
)
from shared.domain.exceptions import InvariantViolationError, StoreUnavailableError
from shared.domain.policies import (
    PolicyEngine,
    RequirementContextProvider,
    create_default_requirement_policy_engine,
)
from shared.domain.results import (
    AlreadyEnrolled,
    AlreadyWaitlisted,
    DeadlinePassed,
    Dropped,
    DropResult,
    Enrolled,
    EnrollmentNotFound,
    NotActive,
    NotWaitlisted,
    OverrideEnrolled,
    OverrideResult,
    RegisterResult,
    RegistrationSnapshot,
    RemoveResult,
    RequirementsNotMet,
    ScheduleConflict,
    SectionClosed,
    SectionNotFound,
    WaitlistRemoved,
    Waitlisted,
)
from shared.resilience.retry import RetryConfig, run_with_retry

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]


class _Unit:
    """Per-attempt scratch state: the open transaction plus pending audit events."""

    def __init__(self, tx: StoreTransaction, max_scan: int | None):
        self.tx = tx
        self.ledger = CapacityLedger(tx)
        self.waitlist = WaitlistQueue(tx, self.ledger, max_scan=max_scan)
        self.events: list[AuditEvent] = []

    def audit(
        self,
        action: AuditAction,
        section_id: UUID,
        actor_id: UUID | None,
        **metadata: Any,
    ) -> None:
        self.events.append(
            AuditEvent(
                actor_id=actor_id,
                action=action,
                entity_id=section_id,
                metadata={k: str(v) if isinstance(v, UUID) else v for k, v in metadata.items()},
            )
        )


class EnrollmentService:
    """
    Service orchestrating section registration.

    Implements:
    - Conflict-checked admission with automatic waitlisting
    - Drops with cascading, conflict-aware waitlist promotion
    - Waitlist withdrawal and administrative override enrollment
    - Bounded, retried units of work against the transactional store
    """

    def __init__(
        self,
        store: EnrollmentStore,
        audit_sink: AuditSink | None = None,
        policy_engine: PolicyEngine | None = None,
        context_provider: RequirementContextProvider | None = None,
        clock: Clock = utcnow,
        retry_config: RetryConfig | None = None,
        operation_timeout: float | None = None,
    ):
        """
        Initialize enrollment service.

        Args:
            store: Transactional store
            audit_sink: Receiver for audit events (defaults to the log)
            policy_engine: Requirement policies; defaults to the standard set
                when a context provider is given
            context_provider: Builds policy context; without one, requirement
                policies are skipped
            clock: Source of "now" for timestamps and drop deadlines
            retry_config: Retry settings for transient store failures
            operation_timeout: Seconds allowed per attempt
        """
        self.store = store
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.context_provider = context_provider
        if policy_engine is None and context_provider is not None:
            policy_engine = create_default_requirement_policy_engine()
        self.policy_engine = policy_engine
        self.clock = clock
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.operation_timeout = (
            operation_timeout
            if operation_timeout is not None
            else settings.operation_timeout_seconds
        )

    # Unit-of-work plumbing

    async def _run(
        self,
        operation: str,
        section_id: UUID,
        body: Callable[[_Unit], Awaitable[T]],
    ) -> T:
        """
        Run ``body`` as one transaction on ``section_id`` with timeout and
        retries, then deliver its audit events.
        """

        async def attempt() -> tuple[T, list[AuditEvent]]:
            async def in_transaction() -> tuple[T, list[AuditEvent]]:
                async with self.store.transaction(section_id) as tx:
                    unit = _Unit(tx, settings.max_promotion_scan)
                    result = await body(unit)
                return result, unit.events

            try:
                return await asyncio.wait_for(in_transaction(), timeout=self.operation_timeout)
            except asyncio.TimeoutError:
                raise StoreUnavailableError(
                    f"{operation} exceeded {self.operation_timeout}s", operation=operation
                ) from None

        result, events = await run_with_retry(attempt, operation, self.retry_config)
        if events:
            await emit_best_effort(self.audit_sink, events)
        return result

    async def _requirements_failure(
        self, student_id: UUID, section: Section
    ) -> RequirementsNotMet | None:
        if self.policy_engine is None or self.context_provider is None:
            return None

        context = await self.context_provider.build(student_id, section)
        allowed, results = await self.policy_engine.evaluate_all(
            student_id, section.id, context
        )
        if allowed:
            return None

        failed = next((r for r in results if not r.allowed), None)
        return RequirementsNotMet(
            reason=failed.reason if failed else "Policy violation",
            violated_rules=failed.violated_rules if failed else [],
        )

    # Registration

    async def register(
        self,
        student_id: UUID,
        section_id: UUID,
        student_active_sections: Iterable[Section] | None = None,
        actor_id: UUID | None = None,
    ) -> RegisterResult:
        """
        Register a student in a section, or waitlist them if it is full.

        Process:
        1. Reject missing or cancelled sections
        2. Reject duplicates (active enrollment or waiting entry)
        3. Check the student's timetable for overlaps
        4. Evaluate requirement policies
        5. Take a seat, or append to the waitlist when none is free

        Args:
            student_id: Student UUID
            section_id: Section UUID
            student_active_sections: Student's current sections; loaded from
                the store (same term) when omitted
            actor_id: User performing the registration (for audit)

        Returns:
            Enrolled or Waitlisted on success, otherwise a rejection outcome
        """
        supplied = list(student_active_sections) if student_active_sections is not None else None
        actor = actor_id or student_id

        async def body(unit: _Unit) -> RegisterResult:
            section = await unit.tx.read_section(section_id)
            if section is None:
                return SectionNotFound(section_id=section_id)
            if section.status == SectionStatus.CANCELLED:
                return SectionClosed(section_id=section_id)

            existing = await unit.tx.find_active_enrollment(student_id, section_id)
            if existing is not None:
                return AlreadyEnrolled(enrollment_id=existing.id)

            waiting = await unit.tx.find_waiting_entry(student_id, section_id)
            if waiting is not None:
                return AlreadyWaitlisted(position=waiting.position)

            active = supplied
            if active is None:
                active = await unit.tx.list_active_sections(student_id, section.term_id)
            clashes = detect_student_conflicts(section, active)
            if clashes:
                logger.info(
                    "Registration blocked by schedule conflict",
                    student_id=str(student_id),
                    section_id=str(section_id),
                    conflicts=[str(s.id) for s in clashes],
                )
                return ScheduleConflict(conflicting_section_ids=frozenset(s.id for s in clashes))

            denied = await self._requirements_failure(student_id, section)
            if denied is not None:
                logger.info(
                    "Registration denied by requirement policy",
                    student_id=str(student_id),
                    section_id=str(section_id),
                    reason=denied.reason,
                )
                return denied

            now = self.clock()
            if await unit.ledger.try_admit(section_id) == AdmitOutcome.ADMITTED:
                enrollment = Enrollment(
                    student_id=student_id,
                    section_id=section_id,
                    term_id=section.term_id,
                    enrolled_at=now,
                )
                await unit.tx.insert_enrollment(enrollment)
                unit.audit(
                    AuditAction.ENROLLED,
                    section_id,
                    actor,
                    student_id=student_id,
                    enrollment_id=enrollment.id,
                )
                logger.info(
                    "Student enrolled",
                    student_id=str(student_id),
                    section_id=str(section_id),
                    enrollment_id=str(enrollment.id),
                )
                return Enrolled(enrollment=enrollment)

            entry = await unit.waitlist.enqueue(student_id, section, at=now)
            unit.audit(
                AuditAction.WAITLISTED,
                section_id,
                actor,
                student_id=student_id,
                position=entry.position,
            )
            return Waitlisted(entry=entry)

        logger.info(
            "Starting registration", student_id=str(student_id), section_id=str(section_id)
        )
        return await self._run("register", section_id, body)

    # Drop and promotion

    async def _promote_waitlisted(
        self, unit: _Unit, section_id: UUID, actor_id: UUID | None
    ) -> list[Enrollment]:
        """Fill free seats from the waitlist, skipping conflicted candidates."""
        section = await unit.tx.read_section(section_id)
        if section is None:
            raise InvariantViolationError(
                "Section vanished inside its own transaction",
                section_id=section_id,
                invariant="section_exists",
            )

        async def is_eligible(entry: WaitlistEntry) -> bool:
            active = await unit.tx.list_active_sections(entry.student_id, section.term_id)
            if detect_student_conflicts(section, active):
                return False
            return await self._requirements_failure(entry.student_id, section) is None

        promoted: list[Enrollment] = []
        remaining = section.waitlist_count
        while remaining > 0 and section.status == SectionStatus.OPEN and not section.is_full():
            now = self.clock()
            entry = await unit.waitlist.promote_next(section, is_eligible, at=now)
            if entry is None:
                break
            remaining -= 1

            if await unit.ledger.try_admit(section_id) != AdmitOutcome.ADMITTED:
                raise InvariantViolationError(
                    "Promoted candidate found no free seat",
                    section_id=section_id,
                    invariant="promotion_seat",
                )
            enrollment = Enrollment(
                student_id=entry.student_id,
                section_id=section_id,
                term_id=section.term_id,
                enrolled_at=now,
            )
            await unit.tx.insert_enrollment(enrollment)
            promoted.append(enrollment)

            unit.audit(
                AuditAction.PROMOTED,
                section_id,
                actor_id,
                student_id=entry.student_id,
                position=entry.position,
                enrollment_id=enrollment.id,
            )
            unit.audit(
                AuditAction.ENROLLED,
                section_id,
                actor_id,
                student_id=entry.student_id,
                enrollment_id=enrollment.id,
                via="waitlist",
            )
            section = await unit.tx.read_section(section_id)

        return promoted

    def _deadline_passed(self, term: Term | None) -> datetime | None:
        if term is None or term.drop_deadline is None:
            return None
        grace = timedelta(minutes=settings.drop_deadline_grace_minutes)
        if self.clock() > term.drop_deadline + grace:
            return term.drop_deadline
        return None

    async def drop(
        self,
        enrollment_id: UUID,
        term: Term | None = None,
        actor_id: UUID | None = None,
        enforce_deadline: bool = True,
    ) -> DropResult:
        """
        Drop an active enrollment and promote from the waitlist.

        Args:
            enrollment_id: Enrollment to drop
            term: Term carrying the drop deadline; loaded when omitted
            actor_id: User performing the drop (for audit)
            enforce_deadline: False for administrative drops

        Returns:
            Dropped with any promoted enrollments, otherwise a rejection
        """
        located = await run_with_retry(
            lambda: self.store.get_enrollment(enrollment_id), "drop", self.retry_config
        )
        if located is None:
            return EnrollmentNotFound(enrollment_id=enrollment_id)

        async def body(unit: _Unit) -> DropResult:
            enrollment = await unit.tx.get_enrollment(enrollment_id)
            if enrollment is None:
                return EnrollmentNotFound(enrollment_id=enrollment_id)
            if not enrollment.is_active:
                return NotActive(enrollment=enrollment)

            if enforce_deadline:
                deadline_term = term or await unit.tx.read_term(enrollment.term_id)
                deadline = self._deadline_passed(deadline_term)
                if deadline is not None:
                    logger.info(
                        "Drop rejected after deadline",
                        enrollment_id=str(enrollment_id),
                        deadline=deadline.isoformat(),
                    )
                    return DeadlinePassed(deadline=deadline)

            dropped = enrollment.mark_dropped(self.clock())
            await unit.tx.update_enrollment(dropped)
            await unit.ledger.release(enrollment.section_id)
            unit.audit(
                AuditAction.DROPPED,
                enrollment.section_id,
                actor_id or enrollment.student_id,
                student_id=enrollment.student_id,
                enrollment_id=enrollment.id,
            )
            logger.info(
                "Enrollment dropped",
                enrollment_id=str(enrollment_id),
                student_id=str(enrollment.student_id),
                section_id=str(enrollment.section_id),
            )

            promoted = await self._promote_waitlisted(unit, enrollment.section_id, actor_id)
            return Dropped(enrollment=dropped, promoted=promoted)

        return await self._run("drop", located.section_id, body)

    # Waitlist withdrawal

    async def remove_from_waitlist(
        self,
        student_id: UUID,
        section_id: UUID,
        actor_id: UUID | None = None,
    ) -> RemoveResult:
        """Withdraw a student's WAITING entry and close the gap behind it."""

        async def body(unit: _Unit) -> RemoveResult:
            removed = await unit.waitlist.remove(student_id, section_id, at=self.clock())
            if removed is None:
                return NotWaitlisted(student_id=student_id, section_id=section_id)
            unit.audit(
                AuditAction.WAITLIST_REMOVED,
                section_id,
                actor_id or student_id,
                student_id=student_id,
                position=removed.position,
            )
            return WaitlistRemoved(entry=removed)

        return await self._run("remove_from_waitlist", section_id, body)

    # Administrative override

    async def override_enroll(
        self,
        student_id: UUID,
        section_id: UUID,
        admin_id: UUID,
        reason: str,
    ) -> OverrideResult:
        """
        Seat a student regardless of conflicts, requirements, status or
        capacity. Cancelled sections still reject.

        The student's waiting entry, if any, is removed. When the section is
        full its capacity grows by one.
        """

        async def body(unit: _Unit) -> OverrideResult:
            section = await unit.tx.read_section(section_id)
            if section is None:
                return SectionNotFound(section_id=section_id)
            if section.status == SectionStatus.CANCELLED:
                return SectionClosed(section_id=section_id)

            existing = await unit.tx.find_active_enrollment(student_id, section_id)
            if existing is not None:
                return AlreadyEnrolled(enrollment_id=existing.id)

            now = self.clock()
            removed = await unit.waitlist.remove(student_id, section_id, at=now)
            expanded = await unit.ledger.force_admit(section_id)

            enrollment = Enrollment(
                student_id=student_id,
                section_id=section_id,
                term_id=section.term_id,
                enrolled_at=now,
            )
            await unit.tx.insert_enrollment(enrollment)
            unit.audit(
                AuditAction.OVERRIDE_ENROLL,
                section_id,
                admin_id,
                student_id=student_id,
                enrollment_id=enrollment.id,
                reason=reason,
                capacity_expanded=expanded,
                removed_waitlist_position=removed.position if removed else None,
            )
            logger.info(
                "Override enrollment",
                student_id=str(student_id),
                section_id=str(section_id),
                admin_id=str(admin_id),
                capacity_expanded=expanded,
            )
            return OverrideEnrolled(
                enrollment=enrollment,
                capacity_expanded=expanded,
                removed_waitlist_entry=removed,
            )

        return await self._run("override_enroll", section_id, body)

    # Queries

    async def registration_snapshot(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> RegistrationSnapshot:
        """Current enrollments (newest first) and waiting entries (by position)."""

        async def load() -> RegistrationSnapshot:
            enrollments = await self.store.list_student_enrollments(student_id, term_id)
            waitlist = await self.store.list_student_waitlist(student_id, term_id)
            return RegistrationSnapshot(
                student_id=student_id,
                enrollments=[e for e in enrollments if e.status != EnrollmentStatus.DROPPED],
                waitlist=[w for w in waitlist if w.is_waiting],
            )

        return await run_with_retry(load, "registration_snapshot", self.retry_config)
