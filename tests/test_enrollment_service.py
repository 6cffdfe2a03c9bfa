"""Scenario tests for the enrollment state machine."""

import asyncio
from uuid import uuid4

from services.enrollment_service.enrollment_service import EnrollmentService
from shared.domain.academic import EnrollmentStatus, SectionStatus, Term
from shared.domain.audit import AuditAction
from shared.domain.exceptions import ErrorCode
from shared.domain.results import (
    AlreadyEnrolled,
    AlreadyWaitlisted,
    DeadlinePassed,
    Dropped,
    Enrolled,
    EnrollmentNotFound,
    NotActive,
    NotWaitlisted,
    OverrideEnrolled,
    ScheduleConflict,
    SectionClosed,
    SectionNotFound,
    WaitlistRemoved,
    Waitlisted,
)
from shared.verification import InvariantMonitor
from tests.conftest import assert_invariants


def test_register_with_free_seat_enrolls(service, store, sink, add_section):
    section = add_section(capacity=2)
    student_id = uuid4()

    result = asyncio.run(service.register(student_id, section.id))

    assert isinstance(result, Enrolled)
    assert result.ok
    assert result.enrollment.status == EnrollmentStatus.ACTIVE
    assert store.sections[section.id].enrolled_count == 1
    assert sink.actions() == [AuditAction.ENROLLED]
    assert sink.events[0].entity_id == section.id
    assert sink.events[0].actor_id == student_id


def test_register_in_full_section_waitlists(service, store, sink, add_section):
    section = add_section(capacity=1)
    asyncio.run(service.register(uuid4(), section.id))

    result = asyncio.run(service.register(uuid4(), section.id))

    assert isinstance(result, Waitlisted)
    assert result.position == 1
    assert store.sections[section.id].waitlist_count == 1
    assert sink.actions() == [AuditAction.ENROLLED, AuditAction.WAITLISTED]


def test_register_unknown_section(service):
    missing = uuid4()
    result = asyncio.run(service.register(uuid4(), missing))

    assert result == SectionNotFound(section_id=missing)
    assert not result.ok
    assert result.code == ErrorCode.ENTITY_NOT_FOUND


def test_register_cancelled_section_is_closed(service, add_section):
    section = add_section(status=SectionStatus.CANCELLED)

    assert isinstance(asyncio.run(service.register(uuid4(), section.id)), SectionClosed)


def test_register_closed_section_goes_to_waitlist(service, add_section):
    section = add_section(capacity=10, status=SectionStatus.CLOSED)

    result = asyncio.run(service.register(uuid4(), section.id))

    assert isinstance(result, Waitlisted)
    assert result.position == 1


def test_duplicate_registration_is_rejected(service, sink, add_section):
    section = add_section(capacity=1)
    enrolled, waiting = uuid4(), uuid4()
    first = asyncio.run(service.register(enrolled, section.id))
    asyncio.run(service.register(waiting, section.id))

    again = asyncio.run(service.register(enrolled, section.id))
    again_waiting = asyncio.run(service.register(waiting, section.id))

    assert again == AlreadyEnrolled(enrollment_id=first.enrollment.id)
    assert again_waiting == AlreadyWaitlisted(position=1)
    assert len(sink.events) == 2


def test_schedule_conflict_names_the_clashing_section(service, add_section):
    student_id = uuid4()
    mon_wed = add_section(days=("MON", "WED"), start="09:00", end="10:00")
    tue_thu = add_section(days=("TUE", "THU"), start="09:00", end="10:00")
    monday_late = add_section(days=("MON",), start="09:30", end="10:30")

    assert isinstance(asyncio.run(service.register(student_id, mon_wed.id)), Enrolled)
    assert isinstance(asyncio.run(service.register(student_id, tue_thu.id)), Enrolled)
    result = asyncio.run(service.register(student_id, monday_late.id))

    assert result == ScheduleConflict(conflicting_section_ids=frozenset({mon_wed.id}))
    assert result.code == ErrorCode.SCHEDULE_CONFLICT


def test_supplied_active_sections_replace_store_lookup(service, add_section):
    elsewhere = add_section(days=("FRI",), start="08:00", end="09:00")
    candidate = add_section(days=("FRI",), start="08:30", end="09:30")

    result = asyncio.run(
        service.register(uuid4(), candidate.id, student_active_sections=[elsewhere])
    )

    assert isinstance(result, ScheduleConflict)
    assert result.conflicting_section_ids == {elsewhere.id}


def test_drop_releases_seat_and_allows_reregistration(service, store, sink, add_section):
    section = add_section(capacity=1)
    student_id = uuid4()
    enrolled = asyncio.run(service.register(student_id, section.id))

    dropped = asyncio.run(service.drop(enrolled.enrollment.id))
    again = asyncio.run(service.register(student_id, section.id))

    assert isinstance(dropped, Dropped)
    assert dropped.enrollment.status == EnrollmentStatus.DROPPED
    assert dropped.promoted == []
    assert isinstance(again, Enrolled)
    assert again.enrollment.id != enrolled.enrollment.id
    # Dropped row is retained
    assert store.enrollments[enrolled.enrollment.id].status == EnrollmentStatus.DROPPED
    assert sink.actions() == [AuditAction.ENROLLED, AuditAction.DROPPED, AuditAction.ENROLLED]


def test_drop_promotes_first_waiting_student(service, store, sink, add_section):
    section = add_section(capacity=1)
    holder, first, second = uuid4(), uuid4(), uuid4()
    enrolled = asyncio.run(service.register(holder, section.id))
    asyncio.run(service.register(first, section.id))
    asyncio.run(service.register(second, section.id))

    result = asyncio.run(service.drop(enrolled.enrollment.id))

    assert [e.student_id for e in result.promoted] == [first]
    assert store.waiting_positions(section.id) == [1]
    assert store.sections[section.id].enrolled_count == 1
    assert AuditAction.PROMOTED in sink.actions()
    asyncio.run(assert_invariants(store))


def test_drop_skips_conflicted_candidate_who_keeps_position(service, store, add_section):
    section = add_section(capacity=1, days=("TUE",), start="14:00", end="15:00")
    clash = add_section(days=("TUE",), start="14:30", end="15:30")
    holder, busy, free = uuid4(), uuid4(), uuid4()

    enrolled = asyncio.run(service.register(holder, section.id))
    asyncio.run(service.register(busy, section.id))
    asyncio.run(service.register(free, section.id))
    # Busy student takes an overlapping section while waiting
    assert isinstance(asyncio.run(service.register(busy, clash.id)), Enrolled)

    result = asyncio.run(service.drop(enrolled.enrollment.id))

    assert [e.student_id for e in result.promoted] == [free]
    waiting = [w for w in store.waitlist.values() if w.is_waiting]
    assert [(w.student_id, w.position) for w in waiting] == [(busy, 1)]
    asyncio.run(assert_invariants(store))


def test_drop_with_no_eligible_candidate_leaves_seat_free(service, store, add_section):
    section = add_section(capacity=1, days=("TUE",), start="14:00", end="15:00")
    clash = add_section(days=("TUE",), start="14:00", end="15:00")
    holder, busy = uuid4(), uuid4()

    enrolled = asyncio.run(service.register(holder, section.id))
    asyncio.run(service.register(busy, section.id))
    asyncio.run(service.register(busy, clash.id))

    result = asyncio.run(service.drop(enrolled.enrollment.id))

    assert result.promoted == []
    assert store.sections[section.id].counters.model_dump() == {
        "enrolled_count": 0,
        "waitlist_count": 1,
    }


def test_drop_unknown_or_inactive_enrollment(service, add_section):
    section = add_section()
    missing = uuid4()
    enrolled = asyncio.run(service.register(uuid4(), section.id))
    asyncio.run(service.drop(enrolled.enrollment.id))

    assert asyncio.run(service.drop(missing)) == EnrollmentNotFound(enrollment_id=missing)
    assert isinstance(asyncio.run(service.drop(enrolled.enrollment.id)), NotActive)


def test_drop_after_deadline_is_rejected_unless_administrative(
    service, store, clock, term, add_section
):
    section = add_section()
    enrolled = asyncio.run(service.register(uuid4(), section.id))
    clock.advance(days=30)

    late = asyncio.run(service.drop(enrolled.enrollment.id))
    admin = asyncio.run(service.drop(enrolled.enrollment.id, enforce_deadline=False))

    assert late == DeadlinePassed(deadline=term.drop_deadline)
    assert isinstance(admin, Dropped)


def test_drop_uses_supplied_term(service, clock, add_section):
    section = add_section()
    enrolled = asyncio.run(service.register(uuid4(), section.id))
    past = Term(id=section.term_id, drop_deadline=clock.now.replace(year=2025))

    result = asyncio.run(service.drop(enrolled.enrollment.id, term=past))

    assert isinstance(result, DeadlinePassed)


def test_remove_from_waitlist(service, store, sink, add_section):
    section = add_section(capacity=1)
    asyncio.run(service.register(uuid4(), section.id))
    first, second = uuid4(), uuid4()
    asyncio.run(service.register(first, section.id))
    asyncio.run(service.register(second, section.id))

    result = asyncio.run(service.remove_from_waitlist(first, section.id))
    missing = asyncio.run(service.remove_from_waitlist(first, section.id))

    assert isinstance(result, WaitlistRemoved)
    assert result.entry.position == 1
    assert missing == NotWaitlisted(student_id=first, section_id=section.id)
    assert store.waiting_positions(section.id) == [1]
    assert sink.actions()[-1] == AuditAction.WAITLIST_REMOVED
    asyncio.run(assert_invariants(store))


def test_override_enroll_expands_full_section(service, store, sink, add_section):
    section = add_section(capacity=1, status=SectionStatus.CLOSED)
    admin_id = uuid4()
    asyncio.run(service.override_enroll(uuid4(), section.id, admin_id, "seed"))
    waiting = uuid4()
    asyncio.run(service.register(waiting, section.id))

    result = asyncio.run(service.override_enroll(waiting, section.id, admin_id, "graduating"))

    assert isinstance(result, OverrideEnrolled)
    assert result.capacity_expanded
    assert result.removed_waitlist_entry.student_id == waiting
    stored = store.sections[section.id]
    assert (stored.capacity, stored.enrolled_count, stored.waitlist_count) == (2, 2, 0)
    event = sink.events[-1]
    assert event.action == AuditAction.OVERRIDE_ENROLL
    assert event.actor_id == admin_id
    assert event.metadata["reason"] == "graduating"
    asyncio.run(assert_invariants(store))


def test_override_enroll_ignores_schedule_conflicts(service, store, add_section):
    student_id = uuid4()
    first = add_section()
    overlapping = add_section()
    asyncio.run(service.register(student_id, first.id))

    result = asyncio.run(service.override_enroll(student_id, overlapping.id, uuid4(), "lab"))

    assert isinstance(result, OverrideEnrolled)
    assert not result.capacity_expanded
    # The overlap is a reviewable finding, not a broken invariant
    asyncio.run(assert_invariants(store))
    snapshot = asyncio.run(store.snapshot())
    overlaps = InvariantMonitor().find_schedule_overlaps(snapshot.sections, snapshot.enrollments)
    assert len(overlaps) == 1
    assert overlaps[0]["student_id"] == str(student_id)


def test_override_enroll_rejects_cancelled_and_duplicate(service, add_section):
    cancelled = add_section(status=SectionStatus.CANCELLED)
    section = add_section()
    student_id = uuid4()
    asyncio.run(service.register(student_id, section.id))

    assert isinstance(
        asyncio.run(service.override_enroll(student_id, cancelled.id, uuid4(), "x")),
        SectionClosed,
    )
    assert isinstance(
        asyncio.run(service.override_enroll(student_id, section.id, uuid4(), "x")),
        AlreadyEnrolled,
    )


def test_registration_snapshot_lists_current_state(service, term, add_section):
    student_id = uuid4()
    open_section = add_section(days=("MON",))
    full = add_section(capacity=1, days=("FRI",))
    dropped_section = add_section(days=("TUE",))
    asyncio.run(service.register(uuid4(), full.id))

    kept = asyncio.run(service.register(student_id, open_section.id))
    asyncio.run(service.register(student_id, full.id))
    gone = asyncio.run(service.register(student_id, dropped_section.id))
    asyncio.run(service.drop(gone.enrollment.id))

    snapshot = asyncio.run(service.registration_snapshot(student_id, term.id))

    assert [e.id for e in snapshot.enrollments] == [kept.enrollment.id]
    assert [(w.section_id, w.position) for w in snapshot.waitlist] == [(full.id, 1)]


class FailingSink:
    async def record(self, event):
        raise RuntimeError("sink offline")


def test_audit_failure_does_not_undo_registration(store, clock, retry_config, add_section):
    service = EnrollmentService(store, audit_sink=FailingSink(), clock=clock, retry_config=retry_config)
    section = add_section()

    result = asyncio.run(service.register(uuid4(), section.id))

    assert isinstance(result, Enrolled)
    assert store.sections[section.id].enrolled_count == 1
