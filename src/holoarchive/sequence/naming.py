"""Hologram frame file names.

Exported frames are named ``<prefix>_<yyyy-mm-dd-HH-MM-SS>-<microseconds>.png``,
for example ``RF04_2021-06-04-17-25-03-104512.png``. Downstream reconstruction
tools recover the capture time from the name alone, so the name is the
hologram's timestamp.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

__all__ = ['format_frame_name', 'parse_frame_name']

_TIME_PATTERN = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})-(\d{2})-(\d{2})-(\d{2})-(\d{4,6})(?!\d)"
)
_PREFIX_PATTERN = re.compile(r"[A-Za-z]{2}\d{2}")


def format_frame_name(prefix: str, capture_time: datetime, suffix: str = ".png") -> str:
    """Build the file name for a frame captured at ``capture_time``.

    A trailing underscore is added to ``prefix`` when missing. The time is
    written in UTC with a zero-padded six-digit microsecond field.
    """
    if prefix and not prefix.endswith("_"):
        prefix = prefix + "_"
    if capture_time.tzinfo is not None:
        capture_time = capture_time.astimezone(timezone.utc)
    stamp = capture_time.strftime("%Y-%m-%d-%H-%M-%S")
    return f"{prefix}{stamp}-{capture_time.microsecond:06d}{suffix}"


def parse_frame_name(name: str, time_offset: float = 0.0) -> tuple[datetime, Optional[str]]:
    """Recover capture time and flight prefix from a frame file name.

    Parameters
    ----------
    name : str
        File name or path. The sub-second field may have 4 to 6 digits and
        is read as a decimal fraction of a second.
    time_offset : float, optional
        Seconds added to the parsed time (clock corrections).

    Returns
    -------
    tuple of (datetime, str or None)
        Aware UTC capture time and the flight prefix (two letters followed
        by two digits, e.g. ``RF04``) if the name carries one.

    Raises
    ------
    ValueError
        If no timestamp can be found in ``name``.
    """
    match = _TIME_PATTERN.search(name)
    if match is None:
        raise ValueError(f"No frame timestamp in name: {name!r}")

    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction = match.group(7)
    micros = int(fraction) * 10 ** (6 - len(fraction))

    capture_time = datetime(year, month, day, hour, minute, second, micros, tzinfo=timezone.utc)
    if time_offset:
        capture_time += timedelta(seconds=time_offset)

    prefix_match = _PREFIX_PATTERN.search(name[:match.start()])
    prefix = prefix_match.group(0) if prefix_match else None
    return capture_time, prefix
