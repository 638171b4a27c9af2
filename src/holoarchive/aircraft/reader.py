"""Aircraft state data for archive context and hologram screening.

Two 1 Hz netCDF layouts are recognised, detected once from the variables
a file carries:

- ``ncar``: NCAR GV/C130 files. ``Time`` is seconds from midnight of the
  ``FlightDate`` global attribute (mm/dd/yyyy), with ``TASX``, ``ATX``,
  ``GGLAT``, ``GGLON``, ``GGALT``, ``WIC`` and CDP liquid water ``PLWCD_*``.
- ``convair``: NRC Convair files. ``Time`` is POSIX seconds, with
  ``TAS_rt``, ``Ts_rt``, ``lat_rt``, ``lon_rt``, ``alt_rt``, ``vwind_rt``
  and ``lwc_cdp_sp_rt``.

Only the in-flight span (true airspeed above 50 m/s) is kept.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

import numpy as np
import xarray as xr

from holoarchive.particles.aggregator import TimeRange, midnight_utc

__all__ = ['AircraftData', 'AircraftDataError', 'read_aircraft', 'detect_layout', 'LAYOUTS']

logger = logging.getLogger(__name__)

IN_FLIGHT_TAS = 50.0

# Archive field -> source variable, per layout
LAYOUTS = {
    "ncar": {
        "tas": "TASX",
        "t": "ATX",
        "lat": "GGLAT",
        "lon": "GGLON",
        "alt": "GGALT",
        "w": "WIC",
    },
    "convair": {
        "tas": "TAS_rt",
        "t": "Ts_rt",
        "lat": "lat_rt",
        "lon": "lon_rt",
        "alt": "alt_rt",
        "w": "vwind_rt",
        "cdplwc": "lwc_cdp_sp_rt",
    },
}

ARCHIVE_FIELDS = ("lat", "lon", "alt", "t")


class AircraftDataError(ValueError):
    """Aircraft file is unusable (unknown layout, not 1 Hz, never airborne)."""


@dataclass(frozen=True)
class AircraftData:
    """In-flight 1 Hz aircraft record.

    ``sfm`` is seconds since ``start_epoch`` (midnight UTC of the flight
    date); it keeps counting past 86400 on flights that cross midnight.
    """

    layout: str
    start_epoch: datetime
    sfm: np.ndarray
    tas: np.ndarray
    t: np.ndarray
    w: np.ndarray
    lat: np.ndarray
    lon: np.ndarray
    alt: np.ndarray
    cdplwc: Optional[np.ndarray] = None
    reference: Optional[np.ndarray] = None
    flight_number: Optional[str] = None
    project: Optional[str] = None
    platform: Optional[str] = None
    source: Optional[str] = None

    @property
    def time_range(self) -> TimeRange:
        """First to last in-flight sample."""
        return TimeRange(
            self.start_epoch + timedelta(seconds=float(self.sfm[0])),
            self.start_epoch + timedelta(seconds=float(self.sfm[-1])),
        )

    def on_time_axis(self, seconds, start_epoch: Optional[datetime] = None) -> dict:
        """Resample archive fields onto a 1 Hz time axis.

        Parameters
        ----------
        seconds : array-like
            Whole seconds since ``start_epoch``.
        start_epoch : datetime, optional
            Origin of ``seconds``; defaults to this record's epoch.

        Returns
        -------
        dict
            ``lat, lon, alt, t`` arrays aligned with ``seconds``, NaN where
            the aircraft record has no sample.
        """
        seconds = np.asarray(seconds, dtype=float)
        shift = 0.0
        if start_epoch is not None:
            shift = (start_epoch - self.start_epoch).total_seconds()

        index = np.floor(seconds + shift - self.sfm[0]).astype(np.int64)
        valid = (index >= 0) & (index < self.sfm.size)

        out = {}
        for name in ARCHIVE_FIELDS:
            values = np.full(seconds.shape, np.nan)
            values[valid] = getattr(self, name)[index[valid]]
            out[name] = values
        return out


def detect_layout(ds: xr.Dataset) -> str:
    """Identify the file layout from the variables present."""
    for name, variables in LAYOUTS.items():
        if all(v in ds.variables for v in variables.values()):
            return name
    raise AircraftDataError(
        "Unrecognised aircraft file: expected NCAR (TASX, ATX, ...) "
        "or Convair (TAS_rt, Ts_rt, ...) variables"
    )


def _attr(ds: xr.Dataset, *names) -> Optional[str]:
    for name in names:
        if name in ds.attrs:
            return str(ds.attrs[name]).strip()
    return None


def _epoch_and_sfm(ds: xr.Dataset, layout: str) -> tuple[datetime, np.ndarray]:
    raw = np.asarray(ds["Time"].values, dtype=np.float64).ravel()
    if layout == "ncar":
        flight_date = _attr(ds, "FlightDate")
        if flight_date is None:
            raise AircraftDataError("NCAR aircraft file has no FlightDate attribute")
        epoch = datetime.strptime(flight_date, "%m/%d/%Y").replace(tzinfo=timezone.utc)
        return epoch, raw
    first = datetime.fromtimestamp(raw[0], tz=timezone.utc)
    epoch = midnight_utc(first)
    return epoch, raw - epoch.timestamp()


def _reference_variable(ds: xr.Dataset, layout: str, reference_variable: Optional[str]) -> Optional[str]:
    if reference_variable:
        if reference_variable not in ds.variables:
            logger.warning("Reference variable %s not found in aircraft file", reference_variable)
            return None
        return reference_variable
    if layout == "convair":
        return LAYOUTS["convair"]["cdplwc"]
    cdp = sorted(v for v in ds.variables if str(v).startswith("PLWCD_"))
    return cdp[0] if cdp else None


def read_aircraft(ncfile: Union[str, Path, None],
                  reference_variable: Optional[str] = None) -> Optional[AircraftData]:
    """Read the in-flight part of a 1 Hz aircraft netCDF file.

    Parameters
    ----------
    ncfile : str or Path or None
        Aircraft file. A missing file is not an error: the caller falls
        back to hologram timestamps for the archive time range.
    reference_variable : str, optional
        Variable used for in-cloud screening. Defaults to the CDP liquid
        water content of the detected layout.

    Returns
    -------
    AircraftData or None
        None when ``ncfile`` is None or does not exist.

    Raises
    ------
    AircraftDataError
        Unknown layout, no in-flight samples, or data not at 1 Hz.
    """
    if ncfile is None or not Path(ncfile).is_file():
        if ncfile is not None:
            logger.warning("Aircraft file not found: %s", ncfile)
        return None

    with xr.open_dataset(ncfile, decode_times=False) as ds:
        layout = detect_layout(ds)
        variables = LAYOUTS[layout]
        epoch, sfm = _epoch_and_sfm(ds, layout)

        tas = np.asarray(ds[variables["tas"]].values, dtype=np.float64).ravel()
        inflight = np.nonzero(tas > IN_FLIGHT_TAS)[0]
        if inflight.size == 0:
            raise AircraftDataError(f"{ncfile}: airspeed never exceeds {IN_FLIGHT_TAS} m/s")
        span = slice(int(inflight[0]), int(inflight[-1]) + 1)

        sfm = sfm[span]
        steps = np.diff(sfm)
        if steps.size and not np.all(steps == 1):
            raise AircraftDataError(f"{ncfile}: aircraft data must be 1 Hz")

        def series(name: str) -> np.ndarray:
            return np.asarray(ds[name].values, dtype=np.float64).ravel()[span]

        fields = {key: series(var) for key, var in variables.items() if key != "cdplwc"}

        cdplwc = None
        cdp_name = _reference_variable(ds, layout, None)
        if cdp_name is not None and ds[cdp_name].size == tas.size:
            cdplwc = series(cdp_name)

        reference = None
        ref_name = _reference_variable(ds, layout, reference_variable)
        if ref_name is not None:
            reference = series(ref_name)

        flight_number = _attr(ds, "FlightNumber")
        data = AircraftData(
            layout=layout,
            start_epoch=epoch,
            sfm=sfm,
            cdplwc=cdplwc,
            reference=reference,
            flight_number=flight_number.upper() if flight_number else None,
            project=_attr(ds, "ProjectName", "Project", "project"),
            platform=_attr(ds, "Platform", "Aircraft"),
            source=str(ncfile),
            **fields,
        )

    logger.info("Aircraft %s data (%s): %d in-flight seconds, %s to %s",
                layout, Path(ncfile).name, sfm.size,
                data.time_range.start.strftime("%H:%M:%S"),
                data.time_range.stop.strftime("%H:%M:%S"))
    return data
