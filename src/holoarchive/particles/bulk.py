"""Bulk microphysical moments of a particle size distribution.

Liquid water content, total number concentration, mean and mass-weighted
diameters, and median volume diameter (MVD) from binned concentrations.
Particles are treated as liquid spheres of density 1 g/cm3 at their bin
midpoint diameter.
"""

import logging
from dataclasses import dataclass

import numpy as np

from holoarchive.contracts import assert_bin_edges

__all__ = ['BulkMoments', 'compute_bulk']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkMoments:
    """Per-time-step bulk quantities.

    Attributes
    ----------
    lwc : np.ndarray
        Liquid water content, g/m3.
    nt : np.ndarray
        Total number concentration, #/m3.
    dmean : np.ndarray
        Number-weighted mean diameter, microns.
    dmassw : np.ndarray
        Mass-weighted mean diameter, microns.
    mvd : np.ndarray
        Median volume diameter, microns.
    """

    lwc: np.ndarray
    nt: np.ndarray
    dmean: np.ndarray
    dmassw: np.ndarray
    mvd: np.ndarray


def _zeros(nrows: int) -> BulkMoments:
    return BulkMoments(*(np.zeros(nrows) for _ in range(5)))


def _median_volume_diameter(cumulative: np.ndarray, lwc: float, edges: np.ndarray) -> float:
    """Interpolate the diameter at which cumulative mass reaches half of lwc.

    ``cumulative`` is the running mass sum over the cropped bins and
    ``edges`` the cropped edges (one longer). The crossing is taken at the
    upper edge of the last bin whose cumulative mass is still at most half,
    falling back to the first bin when there is no such bin.
    """
    if not np.isfinite(lwc) or lwc <= 0:
        return 0.0

    nbins = cumulative.size
    if nbins == 1:
        return float(edges[1])

    half = lwc / 2.0
    below = np.nonzero(cumulative <= half)[0]
    k = int(below[-1]) if below.size else 0
    if k == nbins - 1:
        k = 0

    step = cumulative[k + 1] - cumulative[k]
    # Mass confined to bin k leaves nothing to interpolate across
    frac = (half - cumulative[k]) / step if step != 0 else 0.0

    return float(edges[k + 1] + frac * (edges[k + 2] - edges[k + 1]))


def compute_bulk(concentration, bin_edges, min_size: float = 0.0,
                 max_size: float = np.inf, normalized: bool = True) -> BulkMoments:
    """Compute bulk moments for every row of a binned concentration array.

    Parameters
    ----------
    concentration : array-like, shape (ntimes, nbins)
        Concentration per bin, in #/m4 (normalized by bin width) or #/m3.
    bin_edges : array-like, shape (nbins + 1,)
        Diameter bin edges in microns, strictly increasing.
    min_size, max_size : float, optional
        Diameter limits in microns. Only bins whose edges both lie within
        [min_size, max_size] contribute.
    normalized : bool, optional
        True when ``concentration`` is per unit bin width (#/m4); rows are
        then multiplied by the bin width in meters.

    Returns
    -------
    BulkMoments
        One value per row. Diameter moments of empty rows are 0; ``lwc``
        and ``nt`` are plain sums.
    """
    edges = assert_bin_edges(bin_edges)
    conc = np.atleast_2d(np.asarray(concentration, dtype=float))
    if conc.shape[1] != edges.size - 1:
        raise ValueError(
            f"concentration has {conc.shape[1]} bins but bin_edges describe {edges.size - 1}"
        )
    nrows = conc.shape[0]

    start = int(np.argmax(edges >= min_size)) if np.any(edges >= min_size) else edges.size
    inside = np.nonzero(edges <= max_size)[0]
    stop = int(inside[-1]) if inside.size else -1
    if stop - start < 1:
        logger.debug("No bins between %.1f and %.1f microns", min_size, max_size)
        return _zeros(nrows)

    cropped = edges[start:stop + 1]
    width = np.diff(cropped)
    mid = (cropped[1:] + cropped[:-1]) / 2.0
    mass = np.pi / 6.0 * (mid / 1e4) ** 3  # grams per particle

    raw = conc[:, start:stop]
    if normalized:
        raw = raw * (width / 1e6)

    mass_conc = mass * raw
    lwc = np.nansum(mass_conc, axis=1)
    nt = np.nansum(raw, axis=1)

    with np.errstate(divide="ignore", invalid="ignore"):
        dmassw = np.nansum(mass_conc * mid, axis=1) / lwc
        dmean = np.nansum(raw * mid, axis=1) / nt

    cumulative = np.nancumsum(mass_conc, axis=1)
    mvd = np.array([
        _median_volume_diameter(cumulative[i], lwc[i], cropped) for i in range(nrows)
    ])

    return BulkMoments(
        lwc=lwc,
        nt=nt,
        dmean=np.nan_to_num(dmean, nan=0.0, posinf=0.0, neginf=0.0),
        dmassw=np.nan_to_num(dmassw, nan=0.0, posinf=0.0, neginf=0.0),
        mvd=np.nan_to_num(mvd, nan=0.0),
    )
