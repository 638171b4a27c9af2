"""Hologram pre-selection.

Only a small share of the frames recorded on a flight are worth
reconstructing. Frames are screened by brightness (over- or under-exposed
holograms are dropped) and, when aircraft data is available, by a 1 Hz
in-cloud mask derived from a reference variable such as CDP liquid water.
"""

import logging
from typing import Iterable, Optional, TYPE_CHECKING

import numpy as np

from holoarchive.sequence.decoder import FrameIndexEntry

if TYPE_CHECKING:
    from holoarchive.aircraft import AircraftData
    from holoarchive.schemas.internal import InternalScreeningConfig

__all__ = ['median_brightness', 'cloud_mask', 'screen_frames']

logger = logging.getLogger(__name__)


def median_brightness(brightness: np.ndarray, low: float, high: float) -> float:
    """Median of the brightness values strictly inside (low, high).

    Returns NaN when no value qualifies.
    """
    brightness = np.asarray(brightness, dtype=float)
    usable = brightness[(brightness > low) & (brightness < high)]
    if usable.size == 0:
        return float("nan")
    return float(np.median(usable))


def cloud_mask(reference: np.ndarray, threshold: float, padding: int = 2) -> np.ndarray:
    """Boolean 1 Hz in-cloud mask from a reference series.

    NaN samples count as zero, samples below ``threshold`` are zeroed, and
    the remainder is summed over ``padding`` seconds either side. A second
    is in cloud when that padded sum reaches ``threshold``.
    """
    floored = np.nan_to_num(np.asarray(reference, dtype=float), nan=0.0)
    floored[floored < threshold] = 0.0
    if padding > 0:
        kernel = np.ones(2 * padding + 1)
        padded = np.convolve(floored, kernel, mode="same")
    else:
        padded = floored
    return padded >= threshold


def _good_seconds(aircraft: "AircraftData", config: "InternalScreeningConfig") -> np.ndarray:
    sfm = aircraft.sfm
    good = (sfm >= config.start_sfm) & (sfm <= config.stop_sfm)
    if aircraft.reference is not None:
        good &= cloud_mask(aircraft.reference, config.reference_threshold, config.padding_seconds)
    else:
        logger.warning("Aircraft data has no reference variable; cloud screening skipped")
    return good


def screen_frames(entries: Iterable[FrameIndexEntry],
                  config: "InternalScreeningConfig",
                  aircraft: Optional["AircraftData"] = None) -> list[FrameIndexEntry]:
    """Select the frames worth reconstructing.

    Parameters
    ----------
    entries : iterable of FrameIndexEntry
        Index pass output, possibly from several containers.
    config : InternalScreeningConfig
        Brightness window, tolerance, cloud threshold and time limits.
    aircraft : AircraftData, optional
        1 Hz aircraft record. When given, frames must fall inside the
        record on a second flagged in cloud.

    Returns
    -------
    list of FrameIndexEntry
        Accepted entries, in input order.
    """
    entries = list(entries)
    if not config.enabled or not entries:
        return entries

    brightness = np.array([e.brightness for e in entries], dtype=float)
    median = median_brightness(brightness, config.min_brightness, config.max_brightness)
    if np.isnan(median):
        logger.warning("No frames within brightness window (%.0f, %.0f); none selected",
                       config.min_brightness, config.max_brightness)
        return []

    keep = np.abs(brightness - median) < config.brightness_tolerance

    if aircraft is not None:
        good = _good_seconds(aircraft, config)
        first = int(aircraft.sfm[0])
        for i, entry in enumerate(entries):
            if not keep[i]:
                continue
            offset = int(np.floor((entry.capture_time - aircraft.start_epoch).total_seconds()))
            index = offset - first
            keep[i] = 0 <= index < good.size and bool(good[index])
    else:
        for i, entry in enumerate(entries):
            t = entry.capture_time
            sfm = t.hour * 3600 + t.minute * 60 + t.second + t.microsecond / 1e6
            keep[i] = keep[i] and config.start_sfm <= sfm <= config.stop_sfm

    selected = [e for e, k in zip(entries, keep) if k]
    logger.info("Screening: %d of %d frames selected (median brightness %.1f)",
                len(selected), len(entries), median)
    return selected
