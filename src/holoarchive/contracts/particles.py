"""Particle stream contract.

Enforces that a columnar particle batch is internally consistent before it is
appended to the unbounded particle dimension of the archive.
"""

import numpy as np
from holoarchive.contracts.base import require

PARTICLE_FIELDS = ("particletime", "hid", "d", "x", "y", "z", "ar", "aspr")


def assert_particle_batch(batch) -> None:
    """Enforce particle batch contract.

    Parameters
    ----------
    batch : ParticleBatch
        Columnar batch from ``to_particle_batch``.

    Raises
    ------
    ContractViolation
        If a field is missing, not 1-D, or the field lengths disagree.
    """
    n = len(batch)
    for name in PARTICLE_FIELDS:
        values = getattr(batch, name, None)
        require(
            values is not None,
            f"Particle contract violated: missing field '{name}'"
        )
        values = np.asarray(values)
        require(
            values.ndim == 1,
            f"Particle contract violated: '{name}' has {values.ndim} dims, expected 1"
        )
        require(
            values.shape[0] == n,
            f"Particle contract violated: '{name}' has {values.shape[0]} values, expected {n}"
        )
