"""
Capacity Ledger

The only writer of section occupancy counters. Every mutation reads the
section inside the caller's transaction, checks the counter bounds, and swaps
the new counters in against the values just read. A swap that finds the
counters changed means the store failed to serialise the unit.
"""

from enum import Enum
from uuid import UUID

import structlog

from services.enrollment_service.store import StoreTransaction
from shared.domain.academic import Section, SectionCounters, SectionStatus
from shared.domain.exceptions import InvariantViolationError

logger = structlog.get_logger(__name__)


class AdmitOutcome(str, Enum):
    ADMITTED = "ADMITTED"
    FULL = "FULL"


class CapacityLedger:
    """Counter operations bound to one open store transaction."""

    def __init__(self, tx: StoreTransaction):
        self.tx = tx

    async def _load(self, section_id: UUID) -> Section:
        section = await self.tx.read_section(section_id)
        if section is None:
            raise InvariantViolationError(
                "Section vanished inside its own transaction",
                section_id=section_id,
                invariant="section_exists",
            )
        return section

    async def _swap(
        self,
        section: Section,
        new: SectionCounters,
        capacity: int | None = None,
    ) -> None:
        limit = capacity if capacity is not None else section.capacity
        if not 0 <= new.enrolled_count <= limit:
            raise InvariantViolationError(
                f"enrolled_count {new.enrolled_count} outside [0, {limit}]",
                section_id=section.id,
                invariant="capacity_bounds",
            )
        if new.waitlist_count < 0:
            raise InvariantViolationError(
                "waitlist_count would go negative",
                section_id=section.id,
                invariant="waitlist_non_negative",
            )

        swapped = await self.tx.compare_and_swap_counters(
            section.id, section.counters, new, capacity=capacity
        )
        if not swapped:
            raise InvariantViolationError(
                "Section counters changed under a held lock",
                section_id=section.id,
                invariant="serialised_counters",
            )
        logger.debug(
            "Counters swapped",
            section_id=str(section.id),
            enrolled_count=new.enrolled_count,
            waitlist_count=new.waitlist_count,
        )

    async def try_admit(self, section_id: UUID) -> AdmitOutcome:
        """Take a seat if the section is OPEN with room; FULL changes nothing."""
        section = await self._load(section_id)
        if section.status != SectionStatus.OPEN or section.is_full():
            return AdmitOutcome.FULL

        await self._swap(
            section,
            section.counters.model_copy(update={"enrolled_count": section.enrolled_count + 1}),
        )
        return AdmitOutcome.ADMITTED

    async def release(self, section_id: UUID) -> None:
        """Give back a seat. Never goes below zero."""
        section = await self._load(section_id)
        if section.enrolled_count == 0:
            logger.warning("Release on empty section ignored", section_id=str(section_id))
            return
        await self._swap(
            section,
            section.counters.model_copy(update={"enrolled_count": section.enrolled_count - 1}),
        )

    async def enqueue_waitlist(self, section_id: UUID) -> int:
        """Increment the waitlist counter and return the new tail position."""
        section = await self._load(section_id)
        position = section.waitlist_count + 1
        await self._swap(
            section, section.counters.model_copy(update={"waitlist_count": position})
        )
        return position

    async def dequeue_waitlist(self, section_id: UUID) -> None:
        """Decrement the waitlist counter. Never goes below zero."""
        section = await self._load(section_id)
        if section.waitlist_count == 0:
            logger.warning("Dequeue on empty waitlist ignored", section_id=str(section_id))
            return
        await self._swap(
            section,
            section.counters.model_copy(update={"waitlist_count": section.waitlist_count - 1}),
        )

    async def force_admit(self, section_id: UUID) -> bool:
        """
        Take a seat regardless of status, growing capacity by one when full.

        Returns:
            True if capacity was expanded
        """
        section = await self._load(section_id)
        grow = section.is_full()
        new = section.counters.model_copy(update={"enrolled_count": section.enrolled_count + 1})
        await self._swap(section, new, capacity=section.capacity + 1 if grow else None)
        if grow:
            logger.info(
                "Capacity expanded by override",
                section_id=str(section_id),
                capacity=section.capacity + 1,
            )
        return grow
