"""Tests for section planning checks."""

import asyncio
from datetime import time
from uuid import uuid4

from services.enrollment_service.planner import SectionPlanner
from shared.domain.academic import Room
from tests.conftest import make_section


def test_room_and_instructor_conflicts(store, add_section, term):
    room, instructor = uuid4(), uuid4()
    booked = add_section(room_id=room, instructor_id=instructor)
    add_section(room_id=uuid4(), days=("FRI",))
    planner = SectionPlanner(store)

    candidate = make_section(term.id, days=("WED",), start="09:30", end="10:30", room_id=room)
    rooms = asyncio.run(planner.detect_room_conflicts(candidate))
    instructors = asyncio.run(
        planner.detect_instructor_conflicts(candidate.model_copy(update={"instructor_id": instructor}))
    )

    assert rooms == {booked}
    assert instructors == {booked}


def test_validate_capacity():
    assert SectionPlanner.validate_capacity(Room(code="B-12", capacity=40), 40)
    assert not SectionPlanner.validate_capacity(Room(code="B-12", capacity=40), 41)
    assert SectionPlanner.validate_capacity(Room(code="Field"), 500)
    assert SectionPlanner.validate_capacity(None, 10)


def test_review_of_clean_section(store, term):
    planner = SectionPlanner(store)
    candidate = make_section(term.id, room_id=uuid4(), capacity=20)

    review = asyncio.run(planner.review(candidate, room=Room(capacity=25)))

    assert review.ok


def test_review_locks_schedule_once_students_are_registered(store, add_section, service):
    section = add_section(room_id=uuid4(), capacity=20)
    asyncio.run(service.register(uuid4(), section.id))
    planner = SectionPlanner(store)
    current = store.sections[section.id]

    moved = current.model_copy(update={"start_time": time(11), "end_time": time(12)})
    bigger = current.model_copy(update={"capacity": 25})

    moved_review = asyncio.run(planner.review(moved, exclude_section_id=section.id))
    bigger_review = asyncio.run(
        planner.review(bigger, room=Room(capacity=20), exclude_section_id=section.id)
    )

    assert moved_review.schedule_locked and not moved_review.ok
    assert not bigger_review.schedule_locked
    assert not bigger_review.capacity_ok
    assert bigger_review.room_conflicts == frozenset()
