"""Tests for the capacity ledger."""

import asyncio

import pytest

from services.enrollment_service.ledger import AdmitOutcome, CapacityLedger
from shared.domain.academic import SectionCounters, SectionStatus
from shared.domain.exceptions import InvariantViolationError


def test_try_admit_until_full(store, add_section):
    section = add_section(capacity=2)

    async def scenario():
        outcomes = []
        for _ in range(3):
            async with store.transaction(section.id) as tx:
                outcomes.append(await CapacityLedger(tx).try_admit(section.id))
        return outcomes

    outcomes = asyncio.run(scenario())

    assert outcomes == [AdmitOutcome.ADMITTED, AdmitOutcome.ADMITTED, AdmitOutcome.FULL]
    assert store.sections[section.id].enrolled_count == 2


@pytest.mark.parametrize("status", [SectionStatus.CLOSED, SectionStatus.CANCELLED])
def test_try_admit_refuses_non_open_sections(store, add_section, status):
    section = add_section(capacity=5, status=status)

    async def scenario():
        async with store.transaction(section.id) as tx:
            return await CapacityLedger(tx).try_admit(section.id)

    assert asyncio.run(scenario()) == AdmitOutcome.FULL
    assert store.sections[section.id].enrolled_count == 0


def test_release_and_dequeue_are_floored_at_zero(store, add_section):
    section = add_section()

    async def scenario():
        async with store.transaction(section.id) as tx:
            ledger = CapacityLedger(tx)
            await ledger.release(section.id)
            await ledger.dequeue_waitlist(section.id)

    asyncio.run(scenario())

    assert store.sections[section.id].counters == SectionCounters()


def test_enqueue_returns_consecutive_positions(store, add_section):
    section = add_section()

    async def scenario():
        async with store.transaction(section.id) as tx:
            ledger = CapacityLedger(tx)
            return [await ledger.enqueue_waitlist(section.id) for _ in range(3)]

    assert asyncio.run(scenario()) == [1, 2, 3]
    assert store.sections[section.id].waitlist_count == 3


def test_force_admit_grows_capacity_only_when_full(store, add_section):
    section = add_section(capacity=1, status=SectionStatus.CLOSED)

    async def scenario():
        async with store.transaction(section.id) as tx:
            ledger = CapacityLedger(tx)
            return [await ledger.force_admit(section.id), await ledger.force_admit(section.id)]

    assert asyncio.run(scenario()) == [False, True]
    stored = store.sections[section.id]
    assert (stored.enrolled_count, stored.capacity) == (2, 2)


def test_swap_against_stale_counters_is_an_invariant_violation(store, add_section):
    section = add_section()

    async def scenario():
        async with store.transaction(section.id) as tx:
            ledger = CapacityLedger(tx)
            stale = await tx.read_section(section.id)
            await ledger.try_admit(section.id)
            await ledger._swap(stale, SectionCounters(enrolled_count=1))

    with pytest.raises(InvariantViolationError):
        asyncio.run(scenario())

    # The failed unit left nothing behind
    assert store.sections[section.id].enrolled_count == 0
    assert store.rollbacks == 1


def test_swap_outside_locked_section_is_rejected(store, add_section):
    locked = add_section()
    other = add_section()

    async def scenario():
        async with store.transaction(locked.id) as tx:
            await CapacityLedger(tx).try_admit(other.id)

    with pytest.raises(InvariantViolationError):
        asyncio.run(scenario())
