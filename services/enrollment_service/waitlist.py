"""
Waitlist Queue

FIFO queue of WAITING entries per section. Positions are dense: after every
enqueue, removal or promotion the WAITING positions of a section are exactly
1..waitlist_count.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from uuid import UUID

import structlog

from services.enrollment_service.ledger import CapacityLedger
from services.enrollment_service.store import StoreTransaction
from shared.domain.academic import Section, WaitlistEntry, utcnow

logger = structlog.get_logger(__name__)

Eligibility = Callable[[WaitlistEntry], Awaitable[bool]]


class WaitlistQueue:
    """Waitlist operations bound to one open store transaction."""

    def __init__(
        self,
        tx: StoreTransaction,
        ledger: CapacityLedger,
        max_scan: int | None = None,
    ):
        """
        Initialize queue.

        Args:
            tx: Open store transaction
            ledger: Ledger on the same transaction
            max_scan: Optional cap on entries examined per promotion
        """
        self.tx = tx
        self.ledger = ledger
        self.max_scan = max_scan

    async def enqueue(
        self, student_id: UUID, section: Section, at: datetime | None = None
    ) -> WaitlistEntry:
        position = await self.ledger.enqueue_waitlist(section.id)
        entry = WaitlistEntry(
            student_id=student_id,
            section_id=section.id,
            term_id=section.term_id,
            position=position,
            added_at=at or utcnow(),
        )
        await self.tx.insert_waitlist_entry(entry)

        logger.info(
            "Student waitlisted",
            student_id=str(student_id),
            section_id=str(section.id),
            position=position,
        )
        return entry

    async def _take_out(self, entry: WaitlistEntry) -> None:
        await self.tx.update_waitlist_entry(entry)
        await self.ledger.dequeue_waitlist(entry.section_id)
        await self.tx.update_waitlist_positions(entry.section_id, above_position=entry.position)

    async def promote_next(
        self,
        section: Section,
        is_eligible: Eligibility,
        at: datetime | None = None,
    ) -> WaitlistEntry | None:
        """
        Promote the lowest-position WAITING entry that passes ``is_eligible``.

        Ineligible entries are skipped and keep their positions. The scan is
        bounded by the queue length (or ``max_scan``).

        Returns:
            The PROMOTED entry, or None if nobody was eligible
        """
        waiting = await self.tx.list_waiting_entries(section.id)
        if self.max_scan is not None:
            waiting = waiting[: self.max_scan]

        for entry in waiting:
            if not await is_eligible(entry):
                logger.info(
                    "Waitlist candidate skipped",
                    student_id=str(entry.student_id),
                    section_id=str(section.id),
                    position=entry.position,
                )
                continue

            promoted = entry.mark_promoted(at)
            await self._take_out(promoted)
            logger.info(
                "Waitlist entry promoted",
                student_id=str(entry.student_id),
                section_id=str(section.id),
                position=entry.position,
            )
            return promoted

        return None

    async def remove(
        self, student_id: UUID, section_id: UUID, at: datetime | None = None
    ) -> WaitlistEntry | None:
        """Mark the student's WAITING entry REMOVED and close the gap."""
        entry = await self.tx.find_waiting_entry(student_id, section_id)
        if entry is None:
            return None

        removed = entry.mark_removed(at)
        await self._take_out(removed)
        logger.info(
            "Waitlist entry removed",
            student_id=str(student_id),
            section_id=str(section_id),
            position=entry.position,
        )
        return removed
