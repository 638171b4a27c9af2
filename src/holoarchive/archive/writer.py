"""HOLODEC particle archive writer.

The archive is a NetCDF4 file with two kinds of content:

- 1 Hz arrays on the ``time`` dimension: concentration per diameter bin,
  total number concentration, optional round-particle moments and
  optional aircraft state.
- Individual accepted particles on the unlimited ``particle`` dimension,
  appended hologram by hologram while the archive is being built.

The file is built under ``<path>.partial`` and renamed to ``<path>`` only
by ``close``. An aborted or crashed build never leaves a file at ``path``.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union, TYPE_CHECKING

import numpy as np
import netCDF4

from holoarchive.contracts import assert_bin_edges, assert_binned_result, assert_particle_batch, require
from holoarchive.particles.aggregator import BinnedResult, TimeRange
from holoarchive.particles.detections import ParticleBatch

if TYPE_CHECKING:
    from holoarchive.aircraft import AircraftData
    from holoarchive.schemas.internal import InternalSampleVolumeConfig

__all__ = [
    'ArchiveOpenError',
    'ArchiveClosedError',
    'ArchiveSchema',
    'ArchiveMetadata',
    'ArchiveWriter',
    'VARIABLES',
    'ROUND_VARIABLES',
    'AIRCRAFT_VARIABLES',
]

logger = logging.getLogger(__name__)

# name -> (longname, units, dimensions)
VARIABLES = {
    "time": ("UTC time for concentration arrays and bulk variables",
             "Seconds from midnight of start date", ("time",)),
    "bin_edges": ("Upper/lower edges of concentration size bins", "microns", ("bin_edges",)),
    "bin_centers": ("Center value of concentration size bins", "microns", ("bin_centers",)),
    "concentration": ("Particle number concentration, normalized by bin width", "#/m4",
                      ("time", "bin_centers")),
    "nt": ("Total number concentration", "#/m3", ("time",)),
    "particletime": ("UTC time of individual cloud particles",
                     "Seconds from midnight of start date", ("particle",)),
    "hid": ("Hologram identification number", "unitless", ("particle",)),
    "d": ("Particle diameter", "microns", ("particle",)),
    "x": ("Particle x-position (origin at center of hologram)", "microns", ("particle",)),
    "y": ("Particle y-position (origin at center of hologram)", "microns", ("particle",)),
    "z": ("Particle z-position (origin at object plane)", "microns", ("particle",)),
    "aspr": ("Particle aspect ratio", "unitless", ("particle",)),
    "ar": ("Particle area ratio", "unitless", ("particle",)),
}

ROUND_VARIABLES = {
    "concentration_round": ("Particle number concentration of round particles, normalized by bin width",
                            "#/m4", ("time", "bin_centers")),
    "lwc_round": ("Derived liquid water content using round particles", "g/m3", ("time",)),
    "mvd_round": ("Median volume diameter using round particles", "microns", ("time",)),
    "dmean_round": ("Mean diameter using round particles", "microns", ("time",)),
}

AIRCRAFT_VARIABLES = {
    "lat": ("Latitude", "degrees North", ("time",)),
    "lon": ("Longitude", "degrees East", ("time",)),
    "alt": ("GPS Altitude", "meters", ("time",)),
    "t": ("Ambient Temperature", "C", ("time",)),
}

_INT_VARIABLES = {"hid"}


class ArchiveOpenError(OSError):
    """The archive file could not be created."""


class ArchiveClosedError(RuntimeError):
    """Write attempted on a closed or aborted archive."""


@dataclass(frozen=True)
class ArchiveSchema:
    """Fixed layout of one archive: time axis, diameter bins and options."""

    time: np.ndarray
    bin_edges: np.ndarray
    round_enabled: bool = False
    include_aircraft: bool = False
    compression_level: int = 5

    @property
    def bin_centers(self) -> np.ndarray:
        return (self.bin_edges[1:] + self.bin_edges[:-1]) / 2.0

    def variables(self) -> dict:
        """All variables this archive defines, in definition order."""
        out = dict(VARIABLES)
        if self.round_enabled:
            out.update(ROUND_VARIABLES)
        if self.include_aircraft:
            out.update(AIRCRAFT_VARIABLES)
        return out


@dataclass(frozen=True)
class ArchiveMetadata:
    """Global attributes written when the archive is closed."""

    start_epoch: datetime
    time_range: TimeRange
    ruleset: int
    sample_volume: "InternalSampleVolumeConfig"
    probe_name: str = "HOLODEC"
    source: str = ""
    round_ruleset: int = 0
    time_offset_seconds: float = 0.0
    project: Optional[str] = None
    platform: Optional[str] = None
    flight_number: Optional[str] = None
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_attributes(self) -> dict:
        sv = self.sample_volume
        start = self.time_range.start.astimezone(timezone.utc)
        stop = self.time_range.stop.astimezone(timezone.utc)

        attrs = {
            "ProbeName": self.probe_name,
            "Source": self.source,
            "FlightDate": self.start_epoch.strftime("%Y/%m/%d"),
            "TimeInterval": f"{start:%H:%M:%S}-{stop:%H:%M:%S}",
        }
        for key, value in (("ProjectName", self.project),
                           ("Platform", self.platform),
                           ("FlightNumber", self.flight_number)):
            if value:
                attrs[key] = value
        attrs["Ruleset"] = np.int32(self.ruleset)
        if self.round_ruleset > 0:
            attrs["RoundRuleset"] = np.int32(self.round_ruleset)
        attrs["TimeOffsetSeconds"] = np.float32(self.time_offset_seconds)
        attrs["date_created"] = self.created.strftime("%Y/%m/%d")
        for axis in ("x", "y", "z"):
            attrs[f"{axis}min_meters"] = np.float32(getattr(sv, f"{axis}min"))
            attrs[f"{axis}max_meters"] = np.float32(getattr(sv, f"{axis}max"))
        attrs["rejectedvolume_m3"] = np.float32(sv.rejected_m3)
        attrs["samplevolume_m3"] = np.float32(sv.total_m3)
        return attrs


def partial_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    return path.with_name(path.name + ".partial")


class ArchiveWriter:
    """Single writer for one archive file.

    Use ``ArchiveWriter.open`` to create it. Particles may be appended
    from any thread; the particle cursor only moves forward.

    Example
    -------
        writer = ArchiveWriter.open(path, ArchiveSchema(time, edges))
        try:
            writer.append_particles(batch)
            writer.write_binned_arrays(result, aircraft)
            writer.close(metadata)
        except BaseException:
            writer.abort()
            raise
    """

    def __init__(self, path: Path, dataset: netCDF4.Dataset, schema: ArchiveSchema):
        self.path = path
        self.partial = partial_path(path)
        self.schema = schema
        self._ds = dataset
        self._offset = 0
        self._lock = threading.Lock()
        self._closed = False
        self._binned_written = False

    @classmethod
    def open(cls, path: Union[str, Path], schema: ArchiveSchema) -> "ArchiveWriter":
        """Create the archive and write its coordinate variables.

        An existing file at ``path`` is removed first.

        Raises
        ------
        ArchiveOpenError
            If the old file cannot be removed or the new one created.
        """
        path = Path(path)
        edges = assert_bin_edges(schema.bin_edges)
        time = np.asarray(schema.time, dtype=np.float64)
        require(time.ndim == 1 and time.size >= 1, "Archive time axis must be 1-D and non-empty")

        partial = partial_path(path)
        try:
            for stale in (path, partial):
                if stale.exists():
                    logger.info("Removing existing %s", stale)
                    stale.unlink()
            ds = netCDF4.Dataset(str(partial), "w", format="NETCDF4")
        except OSError as e:
            raise ArchiveOpenError(f"Cannot create archive {path}: {e}") from e

        try:
            ds.createDimension("particle", None)
            ds.createDimension("time", time.size)
            ds.createDimension("bin_centers", edges.size - 1)
            ds.createDimension("bin_edges", edges.size)

            for name, (longname, units, dims) in schema.variables().items():
                dtype = "i4" if name in _INT_VARIABLES else "f8"
                var = ds.createVariable(name, dtype, dims, zlib=True,
                                        complevel=schema.compression_level)
                var.setncatts({"longname": longname, "units": units})

            ds.variables["time"][:] = time
            ds.variables["bin_edges"][:] = edges
            ds.variables["bin_centers"][:] = (edges[1:] + edges[:-1]) / 2.0
        except Exception:
            ds.close()
            partial.unlink(missing_ok=True)
            raise

        logger.info("Archive opened: %s (%d seconds, %d bins)", path.name, time.size, edges.size - 1)
        return cls(path, ds, schema)

    @property
    def offset(self) -> int:
        """Number of particles written so far."""
        return self._offset

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_open(self, action: str):
        if self._closed:
            raise ArchiveClosedError(f"Cannot {action}: archive {self.path.name} is closed")

    def append_particles(self, batch: ParticleBatch) -> int:
        """Append a particle batch at the current offset.

        Returns
        -------
        int
            New offset (total particles written).
        """
        assert_particle_batch(batch)
        with self._lock:
            self._require_open("append particles")
            n = len(batch)
            if n == 0:
                return self._offset

            start, stop = self._offset, self._offset + n
            for name in ("particletime", "hid", "d", "x", "y", "z", "ar", "aspr"):
                self._ds.variables[name][start:stop] = getattr(batch, name)
            self._offset = stop
            return self._offset

    def write_binned_arrays(self, result: BinnedResult, aircraft: Optional["AircraftData"] = None):
        """Write the finalized 1 Hz arrays and, optionally, aircraft state."""
        assert_binned_result(result)
        with self._lock:
            self._require_open("write binned arrays")
            require(not self._binned_written,
                    f"1 Hz arrays of {self.path.name} are already written")
            require(
                np.array_equal(result.time, self.schema.time),
                "Binned result time axis does not match the archive time axis"
            )
            require(
                np.array_equal(result.bin_edges, np.asarray(self.schema.bin_edges, dtype=np.float64)),
                "Binned result bin edges do not match the archive bin edges"
            )

            variables = self._ds.variables
            variables["concentration"][:, :] = result.concentration
            variables["nt"][:] = result.moments.nt

            if self.schema.round_enabled:
                require(result.moments_round is not None,
                        "Archive has round variables but the result has no round channel")
                variables["concentration_round"][:, :] = result.concentration_round
                variables["lwc_round"][:] = result.moments_round.lwc
                variables["mvd_round"][:] = result.moments_round.mvd
                variables["dmean_round"][:] = result.moments_round.dmean

            if self.schema.include_aircraft:
                if aircraft is None:
                    logger.warning("Archive defines aircraft variables but no aircraft data was given")
                else:
                    resampled = aircraft.on_time_axis(result.time, result.start_epoch)
                    for name, values in resampled.items():
                        variables[name][:] = values

            self._binned_written = True

    def close(self, metadata: ArchiveMetadata) -> Path:
        """Write global attributes and publish the archive at its final path."""
        with self._lock:
            self._require_open("close")
            if not self._binned_written:
                logger.warning("Closing %s without 1 Hz arrays", self.path.name)
            self._ds.setncatts(metadata.to_attributes())
            self._ds.close()
            self._closed = True
            os.replace(self.partial, self.path)

        logger.info("Archive written: %s (%d particles)", self.path, self._offset)
        return self.path

    def abort(self):
        """Discard the archive under construction. Safe to call repeatedly."""
        with self._lock:
            if not self._closed:
                try:
                    self._ds.close()
                except RuntimeError as e:
                    logger.debug("Error closing aborted archive: %s", e)
                self._closed = True
            if self.partial.exists():
                self.partial.unlink()
                logger.warning("Archive aborted, removed %s", self.partial.name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None or not self._closed:
            self.abort()
        return False
