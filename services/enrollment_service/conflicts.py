"""
Schedule Conflict Detection

Checks a candidate section against a student's active timetable, or against
the other sections sharing a room or instructor in the same term.
"""

from collections.abc import Iterable
from enum import Enum
from uuid import UUID

from shared.domain.academic import Section
from shared.domain.timewindow import conflicts


class ResourceKey(str, Enum):
    """Shared resource that cannot be double-booked."""

    ROOM = "room_id"
    INSTRUCTOR = "instructor_id"


def detect_student_conflicts(
    candidate: Section, active_sections: Iterable[Section]
) -> set[Section]:
    """
    Sections in the student's active schedule that overlap the candidate.

    The candidate itself is never reported against itself.
    """
    return {
        section
        for section in active_sections
        if section.id != candidate.id and conflicts(candidate.window, section.window)
    }


def detect_resource_conflicts(
    candidate: Section,
    pool: Iterable[Section],
    resource_key: ResourceKey,
    exclude_section_id: UUID | None = None,
) -> set[Section]:
    """
    Sections in the same term that use the same room or instructor at an
    overlapping time.

    Args:
        candidate: Proposed or edited section
        pool: Sections to check against (typically the term's sections)
        resource_key: Which resource to compare
        exclude_section_id: Section being edited, ignored in the pool

    Returns:
        Conflicting sections; empty when the candidate has no such resource
    """
    resource_id = getattr(candidate, resource_key.value)
    if resource_id is None:
        return set()

    excluded = {candidate.id}
    if exclude_section_id is not None:
        excluded.add(exclude_section_id)

    return {
        section
        for section in pool
        if section.id not in excluded
        and section.term_id == candidate.term_id
        and getattr(section, resource_key.value) == resource_id
        and conflicts(candidate.window, section.window)
    }
