"""Root-level pytest fixtures for the holoarchive test suite.

Provides shared configuration fixtures and builders for synthetic
sequence containers and aircraft files. Tests use these fixtures instead
of creating raw dict configs or hand-writing binary files.
"""

import pytest
import struct
from pathlib import Path
from datetime import datetime, timedelta, timezone
import tempfile
import shutil

import numpy as np
import netCDF4

from holoarchive.schemas import ParamConfig, UserConfig, resolve_config
from holoarchive.particles.detections import ParticleDetection, DetectionBatch


T0 = datetime(2021, 6, 4, 17, 25, 3, 104512, tzinfo=timezone.utc)


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults."""
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration.

    A ruleset is always supplied: InternalConfig refuses to resolve
    without one.
    """
    return resolve_config(param_config, UserConfig(RULESET=8, PREFIX="RF04"), None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts UserConfig-compatible kwargs. RULESET
    and PREFIX default to 8 and RF04.

    Examples
    --------
    >>> def test_custom_edges(make_config):
    ...     config = make_config(BIN_EDGES=[10, 20, 30])
    ...     assert config.binning.bin_edges == [10.0, 20.0, 30.0]
    """
    def _make(**user_overrides):
        user_overrides.setdefault("RULESET", 8)
        user_overrides.setdefault("PREFIX", "RF04")
        return resolve_config(param_config, UserConfig(**user_overrides), None)

    return _make


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


# =============================================================================
# Synthetic data builders
# =============================================================================

def write_seq(path, times, values=None, width=64, height=48, bytes_per_pixel=1,
              padding=16, truncate=0):
    """Write a sequence container with one constant-valued frame per time.

    Every frame's brightness equals its pixel value, which makes
    screening outcomes easy to set up.
    """
    path = Path(path)
    raw_length = width * height * bytes_per_pixel
    spacing = raw_length + 8 + padding
    dtype = np.uint8 if bytes_per_pixel == 1 else np.dtype("<u2")
    if values is None:
        values = [100] * len(times)

    header = bytearray(8192)
    for offset, value in ((548, width), (552, height), (556, 8 * bytes_per_pixel),
                          (560, 8 * bytes_per_pixel), (564, raw_length),
                          (568, 100), (580, spacing)):
        struct.pack_into("<I", header, offset, value)

    body = bytearray()
    for t, value in zip(times, values):
        seconds = int(t.timestamp() // 1)
        micros = t.microsecond
        record = bytearray(np.full((height, width), value, dtype=dtype).tobytes())
        record += struct.pack("<IHH", seconds, micros // 1000, micros % 1000)
        record += bytes(padding)
        body += record

    data = bytes(header) + bytes(body)
    if truncate:
        data = data[:-truncate]
    path.write_bytes(data)
    return path


def write_ncar_aircraft(path, flight_date=datetime(2021, 6, 4, tzinfo=timezone.utc),
                        sfm=None, tas=None, plwc=None, step=1):
    """Write a small NCAR-layout 1 Hz aircraft file with netCDF4."""
    if sfm is None:
        sfm = np.arange(62700, 62720, step, dtype=float)
    sfm = np.asarray(sfm, dtype=float)
    n = sfm.size
    if tas is None:
        tas = np.full(n, 120.0)
    if plwc is None:
        plwc = np.full(n, 0.2)

    with netCDF4.Dataset(str(path), "w", format="NETCDF4") as ds:
        ds.createDimension("Time", n)
        ds.setncatts({
            "FlightDate": flight_date.strftime("%m/%d/%Y"),
            "FlightNumber": "rf04",
            "ProjectName": "SPICULE",
            "Platform": "N130AR",
        })
        columns = {
            "Time": sfm,
            "TASX": tas,
            "ATX": np.linspace(5.0, 3.0, n),
            "GGLAT": np.linspace(40.0, 40.1, n),
            "GGLON": np.linspace(-105.0, -104.9, n),
            "GGALT": np.full(n, 3000.0),
            "WIC": np.zeros(n),
            "PLWCD_RWOI": plwc,
        }
        for name, values in columns.items():
            var = ds.createVariable(name, "f8", ("Time",))
            var[:] = values
    return path


def make_detection(d, capture_time=T0, accepted=True, accepted_round=False, hologram_id=1):
    return ParticleDetection(
        capture_time=capture_time, hologram_id=hologram_id,
        x=100.0, y=-50.0, z=20000.0,
        major_diameter=float(d), area_ratio=0.9, aspect_ratio=1.1,
        accepted=accepted, accepted_round=accepted_round,
    )


def make_batch(hologram_id, capture_time, diameters=(), status="ok", **kwargs):
    return DetectionBatch(
        hologram_id=hologram_id,
        capture_time=capture_time,
        detections=tuple(make_detection(d, capture_time, hologram_id=hologram_id, **kwargs)
                         for d in diameters),
        status=status,
    )


@pytest.fixture
def t0():
    """Reference capture time: 2021-06-04 17:25:03.104512 UTC."""
    return T0


@pytest.fixture
def seq_builder():
    return write_seq


@pytest.fixture
def aircraft_builder():
    return write_ncar_aircraft


@pytest.fixture
def detection_factory():
    return make_detection


@pytest.fixture
def batch_factory():
    return make_batch


@pytest.fixture
def frame_times(t0):
    """Ten frames at 0.5 s spacing starting at t0."""
    return [t0 + timedelta(seconds=0.5 * i) for i in range(10)]
