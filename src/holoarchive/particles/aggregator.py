"""1 Hz particle size distribution accumulation.

``TimeBinAggregator`` turns a stream of per-hologram detections into a
concentration matrix on a one-second time axis:

1. ``start``: fix the time axis and diameter bins.
2. ``add_hologram_detections``: histogram accepted particles of each
   hologram into its second and count the hologram.
3. ``normalize``: divide counts by bin width and sampled volume.
4. ``compute_bulk_moments``: derive LWC, Nt, MVD and mean diameters.
5. ``result``: hand the frozen arrays to the archive writer.

Accumulation is a per-bin sum, so the final arrays do not depend on the
order in which holograms arrive.
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from holoarchive.contracts import ContractViolation, require, assert_bin_edges, assert_binned_result
from holoarchive.particles.bulk import BulkMoments, compute_bulk
from holoarchive.particles.detections import (
    DetectionPredicate,
    ParticleDetection,
    is_accepted,
    is_accepted_round,
)

__all__ = [
    'AggregatorState',
    'TimeRange',
    'BinnedResult',
    'TimeBinAggregator',
    'midnight_utc',
]

logger = logging.getLogger(__name__)


class AggregatorState(Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    NORMALIZED = "normalized"
    FINALIZED = "finalized"


def midnight_utc(t: datetime) -> datetime:
    """Midnight UTC of the calendar day of ``t``."""
    if t.tzinfo is not None:
        t = t.astimezone(timezone.utc)
    return datetime(t.year, t.month, t.day, tzinfo=timezone.utc)


def require_aware(t: datetime, what: str):
    """Raise ValueError unless ``t`` carries a timezone."""
    if t.tzinfo is None or t.utcoffset() is None:
        raise ValueError(f"{what} must be timezone-aware, got naive {t.isoformat()}")


@dataclass(frozen=True)
class TimeRange:
    """Closed interval of UTC times covered by an archive."""

    start: datetime
    stop: datetime

    def __post_init__(self):
        require_aware(self.start, "TimeRange start")
        require_aware(self.stop, "TimeRange stop")
        if self.stop < self.start:
            raise ValueError(f"TimeRange stop {self.stop} precedes start {self.start}")

    @classmethod
    def from_times(cls, times: Iterable[datetime]) -> "TimeRange":
        times = list(times)
        if not times:
            raise ValueError("Cannot build a TimeRange from no times")
        return cls(min(times), max(times))


@dataclass(frozen=True)
class BinnedResult:
    """Finalized 1 Hz arrays for the archive.

    ``time`` holds whole seconds since ``start_epoch``; ``concentration``
    is #/m4 with shape (ntime, nbins).
    """

    start_epoch: datetime
    time_range: TimeRange
    time: np.ndarray
    bin_edges: np.ndarray
    concentration: np.ndarray
    holograms: np.ndarray
    moments: BulkMoments
    concentration_round: Optional[np.ndarray] = None
    moments_round: Optional[BulkMoments] = None

    @property
    def bin_centers(self) -> np.ndarray:
        return (self.bin_edges[1:] + self.bin_edges[:-1]) / 2.0


class TimeBinAggregator:
    """Accumulates particle counts per second and diameter bin.

    Thread-safe: ``add_hologram_detections`` may be called from several
    threads; all state changes happen under one lock.

    Parameters
    ----------
    round_enabled : bool, optional
        Also accumulate a second channel for round particles.
    round_predicate : callable, optional
        Selects particles for the round channel
        (default ``detection.accepted_round``).

    Example
    -------
        agg = TimeBinAggregator()
        agg.start(TimeRange(t0, t1), edges, midnight_utc(t0))
        for batch in batches:
            agg.add_hologram_detections(batch.hologram_id, batch.capture_time,
                                        batch.detections)
        agg.normalize(config.sample_volume.total_m3)
        agg.compute_bulk_moments()
        result = agg.result()
    """

    def __init__(self, round_enabled: bool = False,
                 round_predicate: DetectionPredicate = is_accepted_round):
        self.round_enabled = round_enabled
        self.round_predicate = round_predicate
        self.state = AggregatorState.EMPTY
        self._lock = threading.Lock()
        self._seen: set = set()
        self._dropped = 0

        self.start_epoch: Optional[datetime] = None
        self.time_range: Optional[TimeRange] = None
        self.time: Optional[np.ndarray] = None
        self.bin_edges: Optional[np.ndarray] = None
        self.counts: Optional[np.ndarray] = None
        self.counts_round: Optional[np.ndarray] = None
        self.holograms: Optional[np.ndarray] = None
        self.concentration: Optional[np.ndarray] = None
        self.concentration_round: Optional[np.ndarray] = None
        self.moments: Optional[BulkMoments] = None
        self.moments_round: Optional[BulkMoments] = None

    def _require_state(self, expected: AggregatorState, action: str):
        require(
            self.state == expected,
            f"Cannot {action} in state {self.state.value}, expected {expected.value}"
        )

    def _offset_seconds(self, t: datetime) -> float:
        return (t - self.start_epoch).total_seconds()

    @property
    def bin_widths(self) -> np.ndarray:
        return np.diff(self.bin_edges)

    @property
    def dropped(self) -> int:
        """Holograms whose capture time fell outside the time axis."""
        return self._dropped

    def start(self, time_range: TimeRange, bin_edges, start_epoch: datetime):
        """Fix the time axis and diameter bins.

        The axis covers whole seconds ``floor(start)`` to ``floor(stop)``,
        counted from ``start_epoch``.
        """
        with self._lock:
            self._require_state(AggregatorState.EMPTY, "start")
            edges = assert_bin_edges(bin_edges)

            self.start_epoch = start_epoch
            self.time_range = time_range
            first = math.floor(self._offset_seconds(time_range.start))
            last = math.floor(self._offset_seconds(time_range.stop))
            self.time = np.arange(first, last + 1, dtype=np.float64)
            self.bin_edges = edges

            shape = (self.time.size, edges.size - 1)
            self.counts = np.zeros(shape)
            self.holograms = np.zeros(self.time.size, dtype=np.int64)
            if self.round_enabled:
                self.counts_round = np.zeros(shape)

            self.state = AggregatorState.ACCUMULATING
            logger.info("Aggregator started: %d seconds x %d bins (%.0f-%.0f um)",
                        shape[0], shape[1], edges[0], edges[-1])

    def _histogram(self, detections, predicate) -> np.ndarray:
        diameters = [d.major_diameter for d in detections if predicate(d)]
        counts, _ = np.histogram(diameters, bins=self.bin_edges)
        return counts

    def add_hologram_detections(self, hologram_id, capture_time: datetime,
                                detections: Iterable[ParticleDetection],
                                rejection_predicate: Optional[DetectionPredicate] = None) -> bool:
        """Add one hologram's particles to its second.

        Parameters
        ----------
        hologram_id : hashable
            Identifies the hologram; each may contribute only once.
        capture_time : datetime
            Hologram capture time.
        detections : iterable of ParticleDetection
            All particles found in the hologram, accepted or not.
        rejection_predicate : callable, optional
            Selects the particles that are counted (default
            ``detection.accepted``).

        Returns
        -------
        bool
            False when ``capture_time`` is outside the time axis and the
            hologram was dropped.

        Raises
        ------
        ContractViolation
            Aggregator not accumulating, or hologram already added.
        ValueError
            ``capture_time`` is naive.
        """
        predicate = rejection_predicate or is_accepted
        require_aware(capture_time, "Hologram capture time")
        detections = tuple(detections)

        with self._lock:
            self._require_state(AggregatorState.ACCUMULATING, "add detections")
            if hologram_id in self._seen:
                raise ContractViolation(f"Hologram {hologram_id} was already aggregated")

            second = math.floor(self._offset_seconds(capture_time))
            row = second - int(self.time[0])
            if row < 0 or row >= self.time.size:
                self._dropped += 1
                logger.warning("Hologram %s at %s is outside the time axis, dropped",
                               hologram_id, capture_time.isoformat())
                return False

            self._seen.add(hologram_id)
            self.counts[row] += self._histogram(detections, predicate)
            if self.round_enabled:
                self.counts_round[row] += self._histogram(detections, self.round_predicate)
            self.holograms[row] += 1
            return True

    def _normalized(self, counts: np.ndarray, sample_volume: float) -> np.ndarray:
        conc = np.zeros_like(counts)
        sampled = self.holograms > 0
        volume = self.holograms[sampled, None] * sample_volume
        conc[sampled] = counts[sampled] / (self.bin_widths / 1e6) / volume
        return conc

    def normalize(self, per_hologram_sample_volume: float):
        """Convert counts to concentration in #/m4.

        Seconds without holograms stay zero.
        """
        with self._lock:
            self._require_state(AggregatorState.ACCUMULATING, "normalize")
            require(per_hologram_sample_volume > 0,
                    f"Sample volume must be positive, got {per_hologram_sample_volume}")

            self.concentration = self._normalized(self.counts, per_hologram_sample_volume)
            if self.round_enabled:
                self.concentration_round = self._normalized(self.counts_round,
                                                            per_hologram_sample_volume)
            self.state = AggregatorState.NORMALIZED
            logger.info("Normalized %d holograms over %d seconds (%d seconds sampled)",
                        int(self.holograms.sum()), self.time.size,
                        int(np.count_nonzero(self.holograms)))

    def compute_bulk_moments(self):
        """Compute bulk moments for every second."""
        with self._lock:
            self._require_state(AggregatorState.NORMALIZED, "compute bulk moments")
            self.moments = compute_bulk(self.concentration, self.bin_edges)
            if self.round_enabled:
                self.moments_round = compute_bulk(self.concentration_round, self.bin_edges)
            self.state = AggregatorState.FINALIZED

    def result(self) -> BinnedResult:
        """Frozen copy of the finalized arrays."""
        with self._lock:
            self._require_state(AggregatorState.FINALIZED, "read result")
            result = BinnedResult(
                start_epoch=self.start_epoch,
                time_range=self.time_range,
                time=self.time.copy(),
                bin_edges=self.bin_edges.copy(),
                concentration=self.concentration.copy(),
                holograms=self.holograms.copy(),
                moments=self.moments,
                concentration_round=(None if self.concentration_round is None
                                     else self.concentration_round.copy()),
                moments_round=self.moments_round,
            )
        assert_binned_result(result)
        return result
