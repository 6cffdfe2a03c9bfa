"""Seeded random interleavings of register, drop and waitlist withdrawal."""

import asyncio
import random
from uuid import uuid4

import pytest

from services.enrollment_service.enrollment_service import EnrollmentService
from services.enrollment_service.memory_store import InMemoryEnrollmentStore
from shared.domain.results import Enrolled, Waitlisted
from shared.resilience.retry import RetryConfig
from tests.conftest import FixedClock, assert_invariants, make_section

SEEDS = range(30)


def build(term, latency=0.001):
    store = InMemoryEnrollmentStore(latency=latency)
    store.add_term(term)
    service = EnrollmentService(
        store, clock=FixedClock(), retry_config=RetryConfig(attempts=3, base_delay=0)
    )
    return store, service


async def jittered(rng: random.Random, call):
    await asyncio.sleep(rng.random() * 0.002)
    return await call()


@pytest.mark.parametrize("seed", SEEDS)
def test_random_operation_mix_keeps_invariants(term, seed):
    rng = random.Random(seed)
    store, service = build(term)
    sections = [
        store.add_section(make_section(term.id, capacity=2)),
        # Overlaps the first section on Monday
        store.add_section(
            make_section(term.id, capacity=1, days=("MON",), start="09:30", end="10:30")
        ),
        store.add_section(make_section(term.id, capacity=2, days=("TUE", "THU"))),
    ]
    students = [uuid4() for _ in range(8)]

    def pick_operation():
        roll = rng.random()
        active = [e for e in store.enrollments.values() if e.is_active]
        waiting = [w for w in store.waitlist.values() if w.is_waiting]
        if roll < 0.25 and active:
            enrollment = rng.choice(active)
            return lambda: service.drop(enrollment.id)
        if roll < 0.4 and waiting:
            entry = rng.choice(waiting)
            return lambda: service.remove_from_waitlist(entry.student_id, entry.section_id)
        student_id, section = rng.choice(students), rng.choice(sections)
        return lambda: service.register(student_id, section.id)

    async def scenario():
        for _ in range(15):
            operations = [pick_operation() for _ in range(6)]
            await asyncio.gather(*(jittered(rng, op) for op in operations))
            await assert_invariants(store)

    asyncio.run(scenario())

    for section in sections:
        stored = store.sections[section.id]
        assert store.active_count(section.id) == stored.enrolled_count
        assert store.waiting_positions(section.id) == list(range(1, stored.waitlist_count + 1))


@pytest.mark.parametrize("seed", SEEDS)
def test_admission_is_exact_for_any_arrival_order(term, seed):
    rng = random.Random(seed)
    store, service = build(term)
    capacity = rng.randint(1, 4)
    arrivals = capacity + rng.randint(0, 6)
    section = store.add_section(make_section(term.id, capacity=capacity))

    async def scenario():
        return await asyncio.gather(
            *(
                jittered(rng, lambda: service.register(uuid4(), section.id))
                for _ in range(arrivals)
            )
        )

    results = asyncio.run(scenario())

    assert sum(isinstance(r, Enrolled) for r in results) == capacity
    positions = sorted(r.position for r in results if isinstance(r, Waitlisted))
    assert positions == list(range(1, arrivals - capacity + 1))
    asyncio.run(assert_invariants(store))
