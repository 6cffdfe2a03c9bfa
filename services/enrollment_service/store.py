"""
Transactional Store Interface

The engine never talks to a database directly. It opens one transaction per
public operation, scoped to the section it mutates, and performs every read
and write for that unit through the transaction object. Implementations must
serialise transactions on the same section and discard staged writes when the
unit raises or is cancelled.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.domain.academic import (
    Enrollment,
    Section,
    SectionCounters,
    Term,
    WaitlistEntry,
)


class StoreSnapshot(BaseModel):
    """Point-in-time copy of store contents, used for invariant verification."""

    model_config = ConfigDict(frozen=True)

    sections: list[Section] = Field(default_factory=list)
    enrollments: list[Enrollment] = Field(default_factory=list)
    waitlist_entries: list[WaitlistEntry] = Field(default_factory=list)


class StoreTransaction(ABC):
    """
    One atomic unit of work, holding the lock on ``section_id``.

    ``compare_and_swap_counters`` is the only way to change a section's
    occupancy counters and is reserved for the capacity ledger.
    """

    section_id: UUID

    # Sections and terms

    @abstractmethod
    async def read_section(self, section_id: UUID) -> Section | None:
        """Read a section, including writes staged in this transaction."""

    @abstractmethod
    async def read_term(self, term_id: UUID) -> Term | None:
        """Read a term."""

    @abstractmethod
    async def compare_and_swap_counters(
        self,
        section_id: UUID,
        expected: SectionCounters,
        new: SectionCounters,
        capacity: int | None = None,
    ) -> bool:
        """
        Replace the section's counters if they still equal ``expected``.

        Args:
            section_id: Section to update (must be the locked section)
            expected: Counters the caller read
            new: Counters to store
            capacity: New capacity, only for administrative overrides

        Returns:
            True if swapped, False if the stored counters had changed
        """

    # Enrollments

    @abstractmethod
    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        """Fetch an enrollment row by id."""

    @abstractmethod
    async def find_active_enrollment(
        self, student_id: UUID, section_id: UUID
    ) -> Enrollment | None:
        """Return the ACTIVE enrollment for the pair, if any."""

    @abstractmethod
    async def insert_enrollment(self, enrollment: Enrollment) -> None:
        """Stage a new enrollment row."""

    @abstractmethod
    async def update_enrollment(self, enrollment: Enrollment) -> None:
        """Stage an update to an existing enrollment row."""

    @abstractmethod
    async def list_active_sections(self, student_id: UUID, term_id: UUID) -> list[Section]:
        """Sections in which the student holds an ACTIVE enrollment this term."""

    # Waitlist

    @abstractmethod
    async def find_waiting_entry(
        self, student_id: UUID, section_id: UUID
    ) -> WaitlistEntry | None:
        """Return the WAITING entry for the pair, if any."""

    @abstractmethod
    async def list_waiting_entries(self, section_id: UUID) -> list[WaitlistEntry]:
        """WAITING entries of a section ordered by ascending position."""

    @abstractmethod
    async def insert_waitlist_entry(self, entry: WaitlistEntry) -> None:
        """Stage a new waitlist entry."""

    @abstractmethod
    async def update_waitlist_entry(self, entry: WaitlistEntry) -> None:
        """Stage an update to an existing waitlist entry."""

    @abstractmethod
    async def update_waitlist_positions(
        self, section_id: UUID, above_position: int, delta: int = -1
    ) -> int:
        """
        Shift positions of WAITING entries strictly above ``above_position``.

        Returns:
            Number of entries shifted
        """


class EnrollmentStore(ABC):
    """Factory for section-scoped transactions plus read-only queries."""

    @abstractmethod
    def transaction(self, section_id: UUID) -> AbstractAsyncContextManager[StoreTransaction]:
        """
        Open a transaction holding the lock on ``section_id``.

        Commits when the block exits normally; discards every staged write
        when it raises or is cancelled.

        Raises:
            StoreUnavailableError: If the store cannot be reached or the lock
                cannot be acquired in time
        """

    @abstractmethod
    async def get_section(self, section_id: UUID) -> Section | None:
        """Read a committed section."""

    @abstractmethod
    async def get_term(self, term_id: UUID) -> Term | None:
        """Read a committed term."""

    @abstractmethod
    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment | None:
        """Read a committed enrollment."""

    @abstractmethod
    async def list_sections(self, term_id: UUID) -> list[Section]:
        """All sections of a term."""

    @abstractmethod
    async def list_student_enrollments(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> list[Enrollment]:
        """Every enrollment row of a student, newest first."""

    @abstractmethod
    async def list_student_waitlist(
        self, student_id: UUID, term_id: UUID | None = None
    ) -> list[WaitlistEntry]:
        """Every waitlist entry of a student, by position."""

    @abstractmethod
    async def snapshot(self) -> StoreSnapshot:
        """Copy of all sections, enrollments and waitlist entries."""
