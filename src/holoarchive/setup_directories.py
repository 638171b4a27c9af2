"""
Directory setup for the hologram archive pipeline.

Flat layout under one base directory:
- frames/   exported PNG holograms (optional)
- archive/  NetCDF particle archives, PREFIX_YYYYMMDD_HOLODEC.nc
- logs/     pipeline logs and the file tracker database
"""

import logging
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


def setup_output_directories(base_output_dir=None):
    """
    Set up organized output directory structure.

    Parameters
    ----------
    base_output_dir : str or Path, optional
        Base output directory. Defaults to ./output.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'frames', 'archive', 'logs'
    """
    if base_output_dir is None:
        base_output_dir = Path.cwd() / "output"

    base_output_dir = Path(base_output_dir).expanduser().resolve()

    directories = {
        "base": base_output_dir,
        "frames": base_output_dir / "frames",
        "archive": base_output_dir / "archive",
        "logs": base_output_dir / "logs",
    }

    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)

    for key, path in directories.items():
        logger.debug("  %-8s: %s", key, path)

    return directories


def get_archive_path(output_dirs, prefix, flight_date: datetime):
    """
    Get the archive path for a flight.

    Parameters
    ----------
    output_dirs : dict
        Output directories from setup_output_directories()
    prefix : str
        Flight prefix (e.g., 'RF04')
    flight_date : datetime
        Start epoch or any time on the flight date

    Returns
    -------
    Path
        Full path: archive/PREFIX_YYYYMMDD_HOLODEC.nc

    Example
    -------
    >>> get_archive_path(dirs, 'RF04', datetime(2021, 6, 4))
    Path('output/archive/RF04_20210604_HOLODEC.nc')
    """
    return Path(output_dirs["archive"]) / f"{prefix}_{flight_date:%Y%m%d}_HOLODEC.nc"


def get_frames_dir(output_dirs, prefix):
    """
    Get the PNG export directory for a flight: frames/PREFIX
    """
    frames_dir = Path(output_dirs["frames"]) / prefix
    frames_dir.mkdir(parents=True, exist_ok=True)
    return frames_dir
