"""Tests for student and resource conflict detection."""

from uuid import uuid4

from services.enrollment_service.conflicts import (
    ResourceKey,
    detect_resource_conflicts,
    detect_student_conflicts,
)
from tests.conftest import make_section


def test_student_conflict_reports_overlapping_active_section():
    term_id = uuid4()
    active = make_section(term_id, days=("MON", "WED"), start="09:00", end="10:00")
    other = make_section(term_id, days=("TUE", "THU"), start="09:00", end="10:00")
    candidate = make_section(term_id, days=("MON",), start="09:30", end="10:30")

    assert detect_student_conflicts(candidate, [active, other]) == {active}


def test_student_without_active_sections_has_no_conflicts():
    candidate = make_section(uuid4())
    assert detect_student_conflicts(candidate, []) == set()


def test_room_conflict_limited_to_same_room_and_term():
    term_id, room = uuid4(), uuid4()
    same_room = make_section(term_id, room_id=room)
    other_room = make_section(term_id, room_id=uuid4())
    other_term = make_section(uuid4(), room_id=room)
    candidate = make_section(term_id, days=("WED",), start="09:45", end="11:00", room_id=room)

    found = detect_resource_conflicts(
        candidate, [same_room, other_room, other_term], ResourceKey.ROOM
    )
    assert found == {same_room}


def test_resource_conflict_excludes_edited_section():
    term_id, instructor = uuid4(), uuid4()
    existing = make_section(term_id, instructor_id=instructor)
    edited = existing.model_copy(update={"start_time": existing.start_time.replace(minute=30)})

    assert detect_resource_conflicts(
        edited, [existing], ResourceKey.INSTRUCTOR, exclude_section_id=existing.id
    ) == set()


def test_candidate_without_resource_has_no_conflicts():
    term_id = uuid4()
    pool = [make_section(term_id, room_id=uuid4())]
    candidate = make_section(term_id)

    assert detect_resource_conflicts(candidate, pool, ResourceKey.ROOM) == set()
