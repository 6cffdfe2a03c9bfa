"""
Runtime Verification: Enrollment Invariants

Checks a point-in-time copy of sections, waitlist entries and enrollments
against the invariants the engine maintains:

- 0 <= enrolled_count <= capacity and waitlist_count >= 0
- WAITING positions of a section are exactly 1..waitlist_count
- at most one ACTIVE enrollment per (student, section)
- enrolled_count equals the number of ACTIVE enrollments

Overlapping ACTIVE enrollments of one student are reported separately by
``find_schedule_overlaps``: administrative overrides seat students regardless
of conflicts, so an overlap is a finding to review rather than a broken
invariant.
"""

from collections import Counter, defaultdict
from collections.abc import Iterable
from enum import Enum
from typing import Any
from uuid import UUID

import structlog

from shared.domain.academic import Enrollment, Section, WaitlistEntry
from shared.domain.timewindow import conflicts

logger = structlog.get_logger(__name__)


class InvariantViolationType(Enum):
    """Types of invariant violations."""
    CAPACITY_EXCEEDED = "capacity_exceeded"
    NEGATIVE_COUNTER = "negative_counter"
    WAITLIST_COUNT_MISMATCH = "waitlist_count_mismatch"
    WAITLIST_POSITION_GAP = "waitlist_position_gap"
    DOUBLE_ENROLLMENT = "double_enrollment"
    ENROLLED_COUNT_MISMATCH = "enrolled_count_mismatch"


class InvariantMonitor:
    """
    Runtime monitor for enrollment invariants.

    Stateless apart from counters; each ``verify`` call inspects the data it
    is given.
    """

    def __init__(self):
        """Initialize monitor."""
        self.verification_count = 0
        self.violation_count = 0

    def verify(
        self,
        sections: Iterable[Section],
        waitlist_entries: Iterable[WaitlistEntry],
        enrollments: Iterable[Enrollment],
    ) -> list[dict[str, Any]]:
        """
        Verify every invariant over the given records.

        Returns:
            List of violations; empty when all invariants hold
        """
        sections = list(sections)
        active = [e for e in enrollments if e.is_active]
        waiting: dict[UUID, list[int]] = defaultdict(list)
        for entry in waitlist_entries:
            if entry.is_waiting:
                waiting[entry.section_id].append(entry.position)

        violations: list[dict[str, Any]] = []
        active_per_section = Counter(e.section_id for e in active)

        for section in sections:
            sid = str(section.id)
            if section.enrolled_count < 0 or section.waitlist_count < 0:
                violations.append({
                    'type': InvariantViolationType.NEGATIVE_COUNTER,
                    'section_id': sid,
                    'message': f"Section {sid} has a negative counter",
                })
            if section.enrolled_count > section.capacity:
                violations.append({
                    'type': InvariantViolationType.CAPACITY_EXCEEDED,
                    'section_id': sid,
                    'enrolled': section.enrolled_count,
                    'capacity': section.capacity,
                    'message': (
                        f"Section {sid} exceeds capacity: "
                        f"{section.enrolled_count}/{section.capacity}"
                    ),
                })

            positions = sorted(waiting.get(section.id, []))
            if len(positions) != section.waitlist_count:
                violations.append({
                    'type': InvariantViolationType.WAITLIST_COUNT_MISMATCH,
                    'section_id': sid,
                    'waiting_rows': len(positions),
                    'waitlist_count': section.waitlist_count,
                    'message': (
                        f"Section {sid} counts {section.waitlist_count} waiting "
                        f"but has {len(positions)} WAITING entries"
                    ),
                })
            if positions != list(range(1, len(positions) + 1)):
                violations.append({
                    'type': InvariantViolationType.WAITLIST_POSITION_GAP,
                    'section_id': sid,
                    'positions': positions,
                    'message': f"Section {sid} waitlist positions are not dense: {positions}",
                })

            if active_per_section[section.id] != section.enrolled_count:
                violations.append({
                    'type': InvariantViolationType.ENROLLED_COUNT_MISMATCH,
                    'section_id': sid,
                    'active_rows': active_per_section[section.id],
                    'enrolled_count': section.enrolled_count,
                    'message': (
                        f"Section {sid} counts {section.enrolled_count} enrolled "
                        f"but has {active_per_section[section.id]} ACTIVE enrollments"
                    ),
                })

        pairs = Counter((e.student_id, e.section_id) for e in active)
        for (student_id, section_id), count in pairs.items():
            if count > 1:
                violations.append({
                    'type': InvariantViolationType.DOUBLE_ENROLLMENT,
                    'student_id': str(student_id),
                    'section_id': str(section_id),
                    'message': (
                        f"Student {student_id} has {count} ACTIVE enrollments "
                        f"in section {section_id}"
                    ),
                })

        self.verification_count += 1
        self.violation_count += len(violations)
        if violations:
            logger.warning(
                "Enrollment invariants violated",
                violations=len(violations),
                types=sorted({v['type'].value for v in violations}),
            )
        return violations

    def verify_snapshot(self, snapshot: Any) -> list[dict[str, Any]]:
        """Verify a store snapshot (anything with sections, waitlist_entries, enrollments)."""
        return self.verify(snapshot.sections, snapshot.waitlist_entries, snapshot.enrollments)

    def find_schedule_overlaps(
        self,
        sections: Iterable[Section],
        enrollments: Iterable[Enrollment],
    ) -> list[dict[str, Any]]:
        """
        Report students holding ACTIVE enrollments in overlapping sections.

        Each finding names the student and both sections. Overrides may
        legitimately produce these, so they are not counted as violations.
        """
        by_id = {s.id: s for s in sections}
        student_sections: dict[UUID, list[Section]] = defaultdict(list)
        for enrollment in enrollments:
            section = by_id.get(enrollment.section_id)
            if enrollment.is_active and section is not None:
                student_sections[enrollment.student_id].append(section)

        overlaps: list[dict[str, Any]] = []
        for student_id, sections_list in student_sections.items():
            for i, section1 in enumerate(sections_list):
                for section2 in sections_list[i + 1:]:
                    if section1.id != section2.id and conflicts(section1.window, section2.window):
                        overlaps.append({
                            'student_id': str(student_id),
                            'section1_id': str(section1.id),
                            'section2_id': str(section2.id),
                            'message': (
                                f"Student {student_id} is enrolled in overlapping sections: "
                                f"{section1.id} and {section2.id}"
                            ),
                        })

        if overlaps:
            logger.info("Schedule overlaps found", overlaps=len(overlaps))
        return overlaps

    def get_statistics(self) -> dict:
        """Get monitoring statistics."""
        return {
            'verification_count': self.verification_count,
            'violation_count': self.violation_count,
        }


# Global monitor instance
_global_monitor: InvariantMonitor | None = None


def get_invariant_monitor() -> InvariantMonitor:
    """
    Get or create global invariant monitor.

    Returns:
        InvariantMonitor instance
    """
    global _global_monitor

    if _global_monitor is None:
        _global_monitor = InvariantMonitor()

    return _global_monitor
