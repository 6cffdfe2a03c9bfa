"""
Typed Enrollment Outcomes

Every public engine operation returns one of these models instead of raising
for domain rejections. The presentation layer maps ``code`` to a message.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.domain.academic import Enrollment, WaitlistEntry
from shared.domain.exceptions import ErrorCode


class Outcome(BaseModel):
    """Base class for operation outcomes."""

    model_config = ConfigDict(frozen=True)

    ok: ClassVar[bool] = False
    code: ClassVar[ErrorCode | None] = None


# Successful transitions


class Enrolled(Outcome):
    ok: ClassVar[bool] = True

    enrollment: Enrollment


class Waitlisted(Outcome):
    ok: ClassVar[bool] = True

    entry: WaitlistEntry

    @property
    def position(self) -> int:
        return self.entry.position


class Dropped(Outcome):
    ok: ClassVar[bool] = True

    enrollment: Enrollment
    promoted: list[Enrollment] = Field(default_factory=list)


class WaitlistRemoved(Outcome):
    ok: ClassVar[bool] = True

    entry: WaitlistEntry


class OverrideEnrolled(Outcome):
    ok: ClassVar[bool] = True

    enrollment: Enrollment
    capacity_expanded: bool = False
    removed_waitlist_entry: WaitlistEntry | None = None


# Rejections


class SectionNotFound(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.ENTITY_NOT_FOUND

    section_id: UUID


class EnrollmentNotFound(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.ENTITY_NOT_FOUND

    enrollment_id: UUID


class AlreadyEnrolled(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.ALREADY_ENROLLED

    enrollment_id: UUID


class AlreadyWaitlisted(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.ALREADY_WAITLISTED

    position: int


class NotWaitlisted(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.NOT_WAITLISTED

    student_id: UUID
    section_id: UUID


class NotActive(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.INVALID_STATE_TRANSITION

    enrollment: Enrollment


class ScheduleConflict(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.SCHEDULE_CONFLICT

    conflicting_section_ids: frozenset[UUID]


class DeadlinePassed(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.DEADLINE_PASSED

    deadline: datetime


class SectionClosed(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.SECTION_CLOSED

    section_id: UUID


class RequirementsNotMet(Outcome):
    code: ClassVar[ErrorCode] = ErrorCode.REQUIREMENTS_NOT_MET

    reason: str
    violated_rules: list[str] = Field(default_factory=list)


RegisterResult = (
    Enrolled
    | Waitlisted
    | SectionNotFound
    | SectionClosed
    | AlreadyEnrolled
    | AlreadyWaitlisted
    | ScheduleConflict
    | RequirementsNotMet
)
DropResult = Dropped | EnrollmentNotFound | NotActive | DeadlinePassed
RemoveResult = WaitlistRemoved | NotWaitlisted
OverrideResult = OverrideEnrolled | SectionNotFound | SectionClosed | AlreadyEnrolled


class RegistrationSnapshot(BaseModel):
    """A student's current seats and waitlist places."""

    model_config = ConfigDict(frozen=True)

    student_id: UUID
    enrollments: list[Enrollment] = Field(default_factory=list)
    waitlist: list[WaitlistEntry] = Field(default_factory=list)
