"""
Enrollment Audit Trail

Audit events emitted after each committed enrollment transition, and the
narrow sink interface that receives them. Recording is best-effort: a sink
failure is logged and never rolls back the transition that produced it.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

from shared.domain.academic import utcnow

logger = structlog.get_logger(__name__)


class AuditAction(str, Enum):
    """Enrollment transitions that are audited."""

    ENROLLED = "ENROLLED"
    DROPPED = "DROPPED"
    WAITLISTED = "WAITLISTED"
    WAITLIST_REMOVED = "WAITLIST_REMOVED"
    PROMOTED = "PROMOTED"
    OVERRIDE_ENROLL = "OVERRIDE_ENROLL"


class AuditEvent(BaseModel):
    """Immutable audit record handed to the sink."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utcnow)
    actor_id: UUID | None = Field(default=None, description="User performing the action")
    action: AuditAction = Field(...)
    entity_type: str = Field(default="ENROLLMENT")
    entity_id: UUID = Field(..., description="Section the transition applies to")
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditSink(ABC):
    """Receiver for enrollment audit events (fire-and-forget)."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        """Persist or forward one audit event."""


class LoggingAuditSink(AuditSink):
    """Writes audit events to the structured log."""

    async def record(self, event: AuditEvent) -> None:
        logger.info(
            "Enrollment audit event",
            audit_id=str(event.id),
            action=event.action.value,
            actor_id=str(event.actor_id) if event.actor_id else None,
            entity_type=event.entity_type,
            entity_id=str(event.entity_id),
            metadata=event.metadata,
        )


class InMemoryAuditSink(AuditSink):
    """Keeps events in a list; used by tests and local tooling."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[AuditAction]:
        return [event.action for event in self.events]


async def emit_best_effort(sink: AuditSink, events: Iterable[AuditEvent]) -> int:
    """
    Deliver events to the sink, logging and skipping failures.

    Args:
        sink: Audit sink
        events: Events produced by a committed transaction

    Returns:
        Number of events the sink accepted
    """
    delivered = 0
    for event in events:
        try:
            await sink.record(event)
            delivered += 1
        except Exception as e:
            logger.warning(
                "Failed to record audit event",
                action=event.action.value,
                entity_id=str(event.entity_id),
                error=str(e),
            )
    return delivered
