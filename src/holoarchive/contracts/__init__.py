"""Pipeline contracts: fail-fast enforcement of stage invariants.

This package enforces semantic guarantees between pipeline stages.
Contracts fail immediately and loudly when a stage doesn't produce its
promised invariants or is driven out of order.

Key principle:
- Pydantic validates config correctness
- Contracts validate pipeline correctness
- Algorithms handle science edge cases (empty distributions, NaN)
"""

from holoarchive.contracts.failure import ContractViolation
from holoarchive.contracts.base import require
from holoarchive.contracts.binning import assert_bin_edges, assert_binned_result
from holoarchive.contracts.particles import assert_particle_batch, PARTICLE_FIELDS

__all__ = [
    "ContractViolation",
    "require",
    "assert_bin_edges",
    "assert_binned_result",
    "assert_particle_batch",
    "PARTICLE_FIELDS",
]
