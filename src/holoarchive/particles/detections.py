"""Particle detection data model.

A hologram is reconstructed and classified by an external engine; what
comes back is a ``DetectionBatch``: every particle found in one hologram
with its position, size, shape ratios and acceptance flags. The archive
stores only accepted particles, in columnar ``ParticleBatch`` form.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Literal, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

from holoarchive.sequence.decoder import FrameRecord
from holoarchive.sequence.naming import parse_frame_name

__all__ = [
    'ParticleDetection',
    'DetectionBatch',
    'HologramClassifier',
    'ParticleBatch',
    'DetectionPredicate',
    'is_accepted',
    'is_accepted_round',
    'within_size_range',
    'to_particle_batch',
    'batches_from_dataframe',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticleDetection:
    """One particle measured in a reconstructed hologram.

    Positions and diameter are in microns; x and y are relative to the
    hologram centre, z to the object plane.
    """

    capture_time: datetime
    hologram_id: int
    x: float
    y: float
    z: float
    major_diameter: float
    area_ratio: float
    aspect_ratio: float
    accepted: bool
    accepted_round: bool = False


@dataclass(frozen=True)
class DetectionBatch:
    """All detections from one hologram.

    A batch with status ``"error"`` means the classifier could not process
    the hologram; it contributes neither particles nor sample volume.
    """

    hologram_id: int
    capture_time: datetime
    detections: tuple = ()
    status: Literal["ok", "error"] = "ok"

    def __len__(self) -> int:
        return len(self.detections)


class HologramClassifier(Protocol):
    """External reconstruction and classification engine."""

    def classify(self, frame: FrameRecord) -> DetectionBatch:
        ...


DetectionPredicate = Callable[[ParticleDetection], bool]


def is_accepted(detection: ParticleDetection) -> bool:
    return detection.accepted


def is_accepted_round(detection: ParticleDetection) -> bool:
    return detection.accepted_round


def within_size_range(edges: Sequence[float],
                      base: DetectionPredicate = is_accepted) -> DetectionPredicate:
    """Compose ``base`` with the diameter limits of a bin grid.

    Returns a predicate that is true when ``base`` accepts the detection
    and its diameter lies in ``[edges[0], edges[-1]]``.
    """
    lo, hi = float(edges[0]), float(edges[-1])

    def predicate(detection: ParticleDetection) -> bool:
        return base(detection) and lo <= detection.major_diameter <= hi

    return predicate


@dataclass(frozen=True)
class ParticleBatch:
    """Columnar particle arrays ready to append to an archive.

    ``particletime`` is seconds since the archive start epoch; all other
    lengths are in microns.
    """

    particletime: np.ndarray
    hid: np.ndarray
    d: np.ndarray
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    ar: np.ndarray
    aspr: np.ndarray

    def __len__(self) -> int:
        return int(self.hid.size)

    @classmethod
    def empty(cls) -> "ParticleBatch":
        return cls(
            particletime=np.empty(0), hid=np.empty(0, dtype=np.int32),
            d=np.empty(0), x=np.empty(0), y=np.empty(0), z=np.empty(0),
            ar=np.empty(0), aspr=np.empty(0),
        )


def to_particle_batch(batch: DetectionBatch, start_epoch: datetime,
                      predicate: DetectionPredicate = is_accepted,
                      hologram_id: Optional[int] = None) -> ParticleBatch:
    """Select detections with ``predicate`` and lay them out by column.

    Parameters
    ----------
    batch : DetectionBatch
        Classifier output for one hologram.
    start_epoch : datetime
        Archive time origin (midnight UTC of the flight date).
    predicate : callable, optional
        Particle filter, ``is_accepted`` by default.
    hologram_id : int, optional
        Overrides ``batch.hologram_id`` (the archive writer numbers
        holograms in file-processing order).
    """
    kept = [d for d in batch.detections if predicate(d)]
    if not kept:
        return ParticleBatch.empty()

    hid = batch.hologram_id if hologram_id is None else hologram_id
    seconds = (batch.capture_time - start_epoch).total_seconds()
    n = len(kept)
    return ParticleBatch(
        particletime=np.full(n, seconds, dtype=np.float64),
        hid=np.full(n, hid, dtype=np.int32),
        d=np.array([p.major_diameter for p in kept], dtype=np.float64),
        x=np.array([p.x for p in kept], dtype=np.float64),
        y=np.array([p.y for p in kept], dtype=np.float64),
        z=np.array([p.z for p in kept], dtype=np.float64),
        ar=np.array([p.area_ratio for p in kept], dtype=np.float64),
        aspr=np.array([p.aspect_ratio for p in kept], dtype=np.float64),
    )


_LENGTH_COLUMNS = ("x", "y", "z", "d")


def _capture_times(df: pd.DataFrame, time_offset: float) -> pd.Series:
    if "capture_time" in df.columns:
        times = pd.to_datetime(df["capture_time"], utc=True)
        if time_offset:
            times = times + pd.Timedelta(seconds=time_offset)
        return times.map(lambda t: t.to_pydatetime())
    if "filename" in df.columns:
        return df["filename"].map(lambda name: parse_frame_name(str(name), time_offset)[0])
    raise KeyError("Detection table needs a 'capture_time' or 'filename' column")


def batches_from_dataframe(df: pd.DataFrame, time_offset: float = 0.0,
                           units: Literal["um", "m"] = "um") -> Iterator[DetectionBatch]:
    """Group a pre-classified detection table into per-hologram batches.

    Expected columns: ``hologram_id``; ``capture_time`` or ``filename``
    (a timestamped frame name); ``x, y, z, d, ar, aspr, accepted``; and
    optionally ``accepted_round`` and ``status``. A row whose diameter is
    NaN stands for a hologram with no particles, so that it still counts
    toward the sample volume.

    Parameters
    ----------
    df : pd.DataFrame
        Detection table, one row per particle.
    time_offset : float, optional
        Seconds added to every capture time.
    units : {"um", "m"}
        Units of the position and diameter columns.

    Yields
    ------
    DetectionBatch
        One per hologram, in order of first appearance.
    """
    if df.empty:
        return

    df = df.copy()
    if units == "m":
        for col in _LENGTH_COLUMNS:
            df[col] = df[col] * 1e6
    df["_time"] = _capture_times(df, time_offset)
    if "accepted_round" not in df.columns:
        df["accepted_round"] = False

    for hologram_id, group in df.groupby("hologram_id", sort=False):
        capture_time = group["_time"].iloc[0]
        status = "ok"
        if "status" in group.columns and (group["status"] == "error").any():
            status = "error"

        particles = group[group["d"].notna()]
        detections = tuple(
            ParticleDetection(
                capture_time=capture_time,
                hologram_id=int(hologram_id),
                x=float(row.x), y=float(row.y), z=float(row.z),
                major_diameter=float(row.d),
                area_ratio=float(row.ar),
                aspect_ratio=float(row.aspr),
                accepted=bool(row.accepted),
                accepted_round=bool(row.accepted_round),
            )
            for row in particles.itertuples(index=False)
        )
        yield DetectionBatch(
            hologram_id=int(hologram_id),
            capture_time=capture_time,
            detections=detections,
            status=status,
        )
