"""
Academic Domain Models

Sections, terms, enrollments and waitlist entries as seen by the
enrollment engine. Records are immutable; transitions produce updated copies
that the store persists.
"""

from datetime import datetime, time, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.domain.timewindow import TimeWindow, Weekday


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SectionStatus(str, Enum):
    """Section registration status."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"  # No direct admission; waitlist still accepted
    CANCELLED = "CANCELLED"


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle status."""

    ACTIVE = "ACTIVE"
    DROPPED = "DROPPED"
    COMPLETED = "COMPLETED"


class WaitlistStatus(str, Enum):
    """Waitlist entry lifecycle status."""

    WAITING = "WAITING"
    PROMOTED = "PROMOTED"
    REMOVED = "REMOVED"


class SectionCounters(BaseModel):
    """Occupancy counters swapped atomically by the capacity ledger."""

    model_config = ConfigDict(frozen=True)

    enrolled_count: int = Field(default=0, ge=0)
    waitlist_count: int = Field(default=0, ge=0)


class Term(BaseModel):
    """Academic term with an optional drop deadline."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(default="", max_length=100)
    drop_deadline: datetime | None = Field(default=None)

    @field_validator("drop_deadline")
    @classmethod
    def ensure_aware(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class Room(BaseModel):
    """Teaching room; only capacity matters to section planning."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    code: str = Field(default="", max_length=50)
    capacity: int | None = Field(default=None, ge=0)


class Section(BaseModel):
    """
    Course section offered in a term.

    Schedule, room and instructor come from the catalog; ``enrolled_count``
    and ``waitlist_count`` are owned by the capacity ledger.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    term_id: UUID = Field(...)
    course_id: UUID | None = Field(default=None)
    section_number: str = Field(default="001", max_length=10)

    capacity: int = Field(..., gt=0)
    enrolled_count: int = Field(default=0, ge=0)
    waitlist_count: int = Field(default=0, ge=0)
    status: SectionStatus = Field(default=SectionStatus.OPEN)

    schedule_days: frozenset[Weekday] = Field(..., min_length=1)
    start_time: time
    end_time: time
    room_id: UUID | None = Field(default=None)
    instructor_id: UUID | None = Field(default=None)

    @field_validator("schedule_days", mode="before")
    @classmethod
    def parse_days(cls, v: Any) -> frozenset[Weekday]:
        if isinstance(v, (str, Weekday)):
            v = [v]
        return frozenset(Weekday.parse(day) for day in v)

    @model_validator(mode="after")
    def check_bounds(self) -> "Section":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if self.enrolled_count > self.capacity:
            raise ValueError("enrolled_count exceeds capacity")
        return self

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(
            days=self.schedule_days, start_time=self.start_time, end_time=self.end_time
        )

    @property
    def counters(self) -> SectionCounters:
        return SectionCounters(
            enrolled_count=self.enrolled_count, waitlist_count=self.waitlist_count
        )

    @property
    def available_seats(self) -> int:
        return max(0, self.capacity - self.enrolled_count)

    def is_full(self) -> bool:
        """Check if section is at capacity."""
        return self.enrolled_count >= self.capacity

    def has_enrollments(self) -> bool:
        """True once anyone holds a seat or a waitlist position."""
        return self.enrolled_count > 0 or self.waitlist_count > 0


class Enrollment(BaseModel):
    """A student's seat in a section. Never deleted; DROPPED is terminal."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    student_id: UUID = Field(...)
    section_id: UUID = Field(...)
    term_id: UUID = Field(...)
    status: EnrollmentStatus = Field(default=EnrollmentStatus.ACTIVE)
    enrolled_at: datetime = Field(default_factory=utcnow)
    dropped_at: datetime | None = Field(default=None)

    @property
    def is_active(self) -> bool:
        return self.status == EnrollmentStatus.ACTIVE

    def mark_dropped(self, at: datetime | None = None) -> "Enrollment":
        return self.model_copy(
            update={"status": EnrollmentStatus.DROPPED, "dropped_at": at or utcnow()}
        )


class WaitlistEntry(BaseModel):
    """A student's place in a section's FIFO waitlist."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    student_id: UUID = Field(...)
    section_id: UUID = Field(...)
    term_id: UUID = Field(...)
    position: int = Field(..., ge=1)
    status: WaitlistStatus = Field(default=WaitlistStatus.WAITING)
    added_at: datetime = Field(default_factory=utcnow)
    promoted_at: datetime | None = Field(default=None)
    removed_at: datetime | None = Field(default=None)

    @property
    def is_waiting(self) -> bool:
        return self.status == WaitlistStatus.WAITING

    def mark_promoted(self, at: datetime | None = None) -> "WaitlistEntry":
        return self.model_copy(
            update={"status": WaitlistStatus.PROMOTED, "promoted_at": at or utcnow()}
        )

    def mark_removed(self, at: datetime | None = None) -> "WaitlistEntry":
        return self.model_copy(
            update={"status": WaitlistStatus.REMOVED, "removed_at": at or utcnow()}
        )
