"""Binning stage contracts.

Enforces the guarantees that diameter edges are usable for histogramming and
that the aggregator hands the archive a finalized, well-shaped result.
"""

import numpy as np
from holoarchive.contracts.base import require


def assert_bin_edges(edges) -> np.ndarray:
    """Enforce the diameter binning contract and return edges as float64.

    Parameters
    ----------
    edges : array-like
        Bin edges in microns, length nbins + 1.

    Raises
    ------
    ContractViolation
        If edges are not 1-D, have fewer than two values, are not finite,
        or are not strictly increasing.
    """
    arr = np.asarray(edges, dtype=np.float64)
    require(
        arr.ndim == 1,
        f"Binning contract violated: edges have {arr.ndim} dims, expected 1"
    )
    require(
        arr.size >= 2,
        f"Binning contract violated: need at least 2 edges, got {arr.size}"
    )
    require(
        bool(np.all(np.isfinite(arr))),
        "Binning contract violated: edges must be finite"
    )
    require(
        bool(np.all(np.diff(arr) > 0)),
        "Binning contract violated: edges must be strictly increasing"
    )
    return arr


def assert_binned_result(result) -> None:
    """Enforce the finalized-result contract before archive write.

    Called by the archive writer. Verifies shapes line up with the time axis
    and diameter bins, and that moments exist for every time bin.

    Raises
    ------
    ContractViolation
        If any array is missing or mis-shaped.
    """
    ntime = len(result.time)
    nbins = len(result.bin_edges) - 1

    require(
        result.concentration.shape == (ntime, nbins),
        f"Binned contract violated: concentration shape {result.concentration.shape}, "
        f"expected {(ntime, nbins)}"
    )
    require(
        result.holograms.shape == (ntime,),
        f"Binned contract violated: hologram counts shape {result.holograms.shape}, "
        f"expected {(ntime,)}"
    )
    for name in ("lwc", "nt", "dmean", "dmassw", "mvd"):
        values = getattr(result.moments, name)
        require(
            values.shape == (ntime,),
            f"Binned contract violated: moment '{name}' shape {values.shape}, expected {(ntime,)}"
        )

    if result.concentration_round is not None:
        require(
            result.concentration_round.shape == (ntime, nbins),
            "Binned contract violated: round concentration shape does not match primary"
        )
        require(
            result.moments_round is not None,
            "Binned contract violated: round concentration present without round moments"
        )
