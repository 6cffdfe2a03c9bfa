"""
Enrollment Database Models

SQLAlchemy models for terms, sections, enrollments and waitlist entries,
plus conversions to the domain records.
"""

from datetime import datetime, time, timezone
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base
from shared.domain.academic import (
    Enrollment,
    EnrollmentStatus,
    Section,
    SectionStatus,
    Term,
    WaitlistEntry,
    WaitlistStatus,
)
from shared.domain.timewindow import Weekday

_DAY_ORDER = list(Weekday)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TermModel(Base):
    """Term database model."""

    __tablename__ = "terms"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    drop_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_domain(self) -> Term:
        return Term(id=self.id, name=self.name, drop_deadline=_aware(self.drop_deadline))

    @classmethod
    def from_domain(cls, term: Term) -> "TermModel":
        return cls(id=term.id, name=term.name, drop_deadline=term.drop_deadline)


class SectionModel(Base):
    """Section database model."""

    __tablename__ = "sections"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    term_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("terms.id"), nullable=False, index=True
    )
    course_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    section_number: Mapped[str] = mapped_column(String(10), nullable=False, default="001")

    # Schedule
    schedule_days: Mapped[list] = mapped_column(JSON, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    room_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    instructor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Occupancy, written only through conditional updates
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    enrolled_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    waitlist_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=SectionStatus.OPEN.value, nullable=False)

    def to_domain(self) -> Section:
        return Section(
            id=self.id,
            term_id=self.term_id,
            course_id=self.course_id,
            section_number=self.section_number,
            capacity=self.capacity,
            enrolled_count=self.enrolled_count,
            waitlist_count=self.waitlist_count,
            status=SectionStatus(self.status),
            schedule_days=self.schedule_days,
            start_time=self.start_time,
            end_time=self.end_time,
            room_id=self.room_id,
            instructor_id=self.instructor_id,
        )

    @classmethod
    def from_domain(cls, section: Section) -> "SectionModel":
        return cls(
            id=section.id,
            term_id=section.term_id,
            course_id=section.course_id,
            section_number=section.section_number,
            capacity=section.capacity,
            enrolled_count=section.enrolled_count,
            waitlist_count=section.waitlist_count,
            status=section.status.value,
            schedule_days=sorted(
                (d.value for d in section.schedule_days),
                key=lambda v: _DAY_ORDER.index(Weekday(v)),
            ),
            start_time=section.start_time,
            end_time=section.end_time,
            room_id=section.room_id,
            instructor_id=section.instructor_id,
        )


class EnrollmentModel(Base):
    """Enrollment database model. Rows are never deleted."""

    __tablename__ = "enrollments"
    __table_args__ = (Index("ix_enrollments_student_section", "student_id", "section_id"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    student_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    section_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("sections.id"), nullable=False, index=True
    )
    term_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("terms.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=EnrollmentStatus.ACTIVE.value, nullable=False, index=True
    )
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dropped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_domain(self) -> Enrollment:
        return Enrollment(
            id=self.id,
            student_id=self.student_id,
            section_id=self.section_id,
            term_id=self.term_id,
            status=EnrollmentStatus(self.status),
            enrolled_at=_aware(self.enrolled_at),
            dropped_at=_aware(self.dropped_at),
        )

    def apply(self, enrollment: Enrollment) -> None:
        self.status = enrollment.status.value
        self.dropped_at = enrollment.dropped_at

    @classmethod
    def from_domain(cls, enrollment: Enrollment) -> "EnrollmentModel":
        return cls(
            id=enrollment.id,
            student_id=enrollment.student_id,
            section_id=enrollment.section_id,
            term_id=enrollment.term_id,
            status=enrollment.status.value,
            enrolled_at=enrollment.enrolled_at,
            dropped_at=enrollment.dropped_at,
        )


class WaitlistEntryModel(Base):
    """Waitlist entry database model."""

    __tablename__ = "waitlists"
    __table_args__ = (Index("ix_waitlists_section_status_position", "section_id", "status", "position"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    student_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    section_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("sections.id"), nullable=False)
    term_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("terms.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=WaitlistStatus.WAITING.value, nullable=False
    )
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    promoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_domain(self) -> WaitlistEntry:
        return WaitlistEntry(
            id=self.id,
            student_id=self.student_id,
            section_id=self.section_id,
            term_id=self.term_id,
            position=self.position,
            status=WaitlistStatus(self.status),
            added_at=_aware(self.added_at),
            promoted_at=_aware(self.promoted_at),
            removed_at=_aware(self.removed_at),
        )

    def apply(self, entry: WaitlistEntry) -> None:
        self.position = entry.position
        self.status = entry.status.value
        self.promoted_at = entry.promoted_at
        self.removed_at = entry.removed_at

    @classmethod
    def from_domain(cls, entry: WaitlistEntry) -> "WaitlistEntryModel":
        return cls(
            id=entry.id,
            student_id=entry.student_id,
            section_id=entry.section_id,
            term_id=entry.term_id,
            position=entry.position,
            status=entry.status.value,
            added_at=entry.added_at,
            promoted_at=entry.promoted_at,
            removed_at=entry.removed_at,
        )
