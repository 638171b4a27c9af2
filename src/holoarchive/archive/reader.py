"""Read HOLODEC particle archives.

Archives written by older tooling name some particle variables
differently (``dmajor`` for ``d``, ``arearatio`` for ``ar``,
``aspectratio`` for ``aspr``). The names are resolved once per file.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
import xarray as xr

from holoarchive.particles.detections import ParticleBatch

__all__ = ['ArchiveContents', 'read_archive']

logger = logging.getLogger(__name__)

_PARTICLE_ALIASES = {
    "particletime": ("particletime",),
    "hid": ("hid",),
    "d": ("d", "dmajor"),
    "x": ("x",),
    "y": ("y",),
    "z": ("z",),
    "ar": ("ar", "arearatio"),
    "aspr": ("aspr", "aspectratio"),
}

_ROUND = ("concentration_round", "lwc_round", "mvd_round", "dmean_round")
_AIRCRAFT = ("lat", "lon", "alt", "t")


@dataclass(frozen=True)
class ArchiveContents:
    """1 Hz arrays, a particle slice and global attributes of an archive."""

    time: np.ndarray
    bin_edges: np.ndarray
    bin_centers: np.ndarray
    concentration: np.ndarray
    nt: np.ndarray
    particles: ParticleBatch
    attrs: dict
    round_channel: Optional[dict] = None
    aircraft: Optional[dict] = None
    total_particles: int = 0


def _resolve_names(ds: xr.Dataset) -> dict:
    names = {}
    for field, candidates in _PARTICLE_ALIASES.items():
        found = next((c for c in candidates if c in ds.variables), None)
        if found is None:
            raise KeyError(f"Archive has no particle variable for '{field}' (tried {candidates})")
        names[field] = found
    return names


def _optional_group(ds: xr.Dataset, names) -> Optional[dict]:
    present = [n for n in names if n in ds.variables]
    if not present:
        return None
    return {n: ds[n].values for n in present}


def read_archive(path: Union[str, Path], start: int = 0, count: Optional[int] = None,
                 start_time: Optional[float] = None,
                 stop_time: Optional[float] = None) -> ArchiveContents:
    """Load an archive's 1 Hz arrays and a slice of its particles.

    Parameters
    ----------
    path : str or Path
        Archive file.
    start, count : int, optional
        Particle index slice; ``count=None`` reads to the end.
    start_time, stop_time : float, optional
        Particle time window in archive seconds (inclusive). When either
        is given it replaces the index slice.

    Returns
    -------
    ArchiveContents
    """
    with xr.open_dataset(path, decode_times=False, mask_and_scale=False) as ds:
        names = _resolve_names(ds)
        total = int(ds.sizes.get("particle", 0))

        if start_time is not None or stop_time is not None:
            ptime = ds[names["particletime"]].values
            keep = np.ones(ptime.shape, dtype=bool)
            if start_time is not None:
                keep &= ptime >= start_time
            if stop_time is not None:
                keep &= ptime <= stop_time
            selector = np.nonzero(keep)[0]
        else:
            stop = total if count is None else min(total, start + count)
            selector = slice(start, stop)

        columns = {
            field: np.asarray(ds[name].values[selector])
            for field, name in names.items()
        }
        particles = ParticleBatch(**columns)

        contents = ArchiveContents(
            time=ds["time"].values,
            bin_edges=ds["bin_edges"].values,
            bin_centers=ds["bin_centers"].values,
            concentration=ds["concentration"].values,
            nt=ds["nt"].values,
            particles=particles,
            attrs=dict(ds.attrs),
            round_channel=_optional_group(ds, _ROUND),
            aircraft=_optional_group(ds, _AIRCRAFT),
            total_particles=total,
        )

    logger.debug("Read %s: %d seconds, %d of %d particles",
                 Path(path).name, contents.time.size, len(particles), total)
    return contents
