"""
Runtime Verification Module

Checks enrollment invariants against store contents.
"""

from shared.verification.enrollment_invariants import (
    InvariantMonitor,
    InvariantViolationType,
    get_invariant_monitor,
)

__all__ = [
    'InvariantMonitor',
    'get_invariant_monitor',
    'InvariantViolationType',
]
