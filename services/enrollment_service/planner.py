"""
Section Planner

Validates proposed or edited sections before they are saved: room and
instructor double-booking within the term, and section capacity against the
room. It never writes; callers decide what to do with a review.
"""

from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from services.enrollment_service.conflicts import ResourceKey, detect_resource_conflicts
from services.enrollment_service.store import EnrollmentStore
from shared.domain.academic import Room, Section

logger = structlog.get_logger(__name__)


class PlanReview(BaseModel):
    """Outcome of reviewing a proposed section."""

    model_config = ConfigDict(frozen=True)

    room_conflicts: frozenset[UUID] = Field(default_factory=frozenset)
    instructor_conflicts: frozenset[UUID] = Field(default_factory=frozenset)
    capacity_ok: bool = True
    schedule_locked: bool = False

    @property
    def ok(self) -> bool:
        return (
            not self.room_conflicts
            and not self.instructor_conflicts
            and self.capacity_ok
            and not self.schedule_locked
        )


class SectionPlanner:
    """Read-only checks used when creating or editing sections."""

    def __init__(self, store: EnrollmentStore):
        self.store = store

    async def _detect(
        self,
        candidate: Section,
        resource_key: ResourceKey,
        exclude_section_id: UUID | None,
    ) -> set[Section]:
        if getattr(candidate, resource_key.value) is None:
            return set()
        pool = await self.store.list_sections(candidate.term_id)
        return detect_resource_conflicts(candidate, pool, resource_key, exclude_section_id)

    async def detect_room_conflicts(
        self, candidate: Section, exclude_section_id: UUID | None = None
    ) -> set[Section]:
        """Sections in the same room and term whose meetings overlap."""
        return await self._detect(candidate, ResourceKey.ROOM, exclude_section_id)

    async def detect_instructor_conflicts(
        self, candidate: Section, exclude_section_id: UUID | None = None
    ) -> set[Section]:
        """Sections taught by the same instructor in the term whose meetings overlap."""
        return await self._detect(candidate, ResourceKey.INSTRUCTOR, exclude_section_id)

    @staticmethod
    def validate_capacity(room: Room | None, capacity: int) -> bool:
        """Section capacity may not exceed room capacity; unknown rooms pass."""
        if room is None or room.capacity is None:
            return True
        return capacity <= room.capacity

    async def review(
        self,
        candidate: Section,
        room: Room | None = None,
        exclude_section_id: UUID | None = None,
    ) -> PlanReview:
        """
        Run every planning check for a proposed section.

        Args:
            candidate: Proposed section (or edited copy of an existing one)
            room: Room the section is assigned to, for the capacity check
            exclude_section_id: Id of the section being edited

        Returns:
            PlanReview with conflicting section ids and check flags
        """
        room_conflicts = await self.detect_room_conflicts(candidate, exclude_section_id)
        instructor_conflicts = await self.detect_instructor_conflicts(
            candidate, exclude_section_id
        )

        schedule_locked = False
        if exclude_section_id is not None:
            current = await self.store.get_section(exclude_section_id)
            schedule_locked = current is not None and current.has_enrollments() and (
                current.window != candidate.window
                or current.room_id != candidate.room_id
                or current.instructor_id != candidate.instructor_id
            )

        review = PlanReview(
            room_conflicts=frozenset(s.id for s in room_conflicts),
            instructor_conflicts=frozenset(s.id for s in instructor_conflicts),
            capacity_ok=self.validate_capacity(room, candidate.capacity),
            schedule_locked=schedule_locked,
        )
        if not review.ok:
            logger.info(
                "Section plan rejected",
                section_id=str(candidate.id),
                room_conflicts=len(review.room_conflicts),
                instructor_conflicts=len(review.instructor_conflicts),
                capacity_ok=review.capacity_ok,
                schedule_locked=review.schedule_locked,
            )
        return review
