"""
Enrollment Domain Models

Immutable records, schedule algebra, typed outcomes, audit events and
requirement policies shared by the enrollment engine and its stores.
"""

from shared.domain.academic import (
    Enrollment,
    EnrollmentStatus,
    Room,
    Section,
    SectionCounters,
    SectionStatus,
    Term,
    WaitlistEntry,
    WaitlistStatus,
)
from shared.domain.audit import AuditAction, AuditEvent, AuditSink
from shared.domain.exceptions import (
    DomainException,
    ErrorCode,
    InvariantViolationError,
    StoreUnavailableError,
)
from shared.domain.timewindow import TimeWindow, Weekday

__all__ = [
    # Records
    "Section",
    "SectionCounters",
    "SectionStatus",
    "Term",
    "Room",
    "Enrollment",
    "EnrollmentStatus",
    "WaitlistEntry",
    "WaitlistStatus",
    # Schedule
    "TimeWindow",
    "Weekday",
    # Audit
    "AuditAction",
    "AuditEvent",
    "AuditSink",
    # Errors
    "DomainException",
    "ErrorCode",
    "InvariantViolationError",
    "StoreUnavailableError",
]
