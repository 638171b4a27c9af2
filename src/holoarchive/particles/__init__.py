"""Particle statistics for holoarchive.

Submodules
----------
detections
    Per-hologram detection model and columnar particle batches.
bulk
    Bulk moments (LWC, Nt, MVD, mean diameters) of a size distribution.
aggregator
    1 Hz size distribution accumulation and normalization.
"""

from holoarchive.particles.detections import (
    ParticleDetection,
    DetectionBatch,
    HologramClassifier,
    ParticleBatch,
    is_accepted,
    is_accepted_round,
    within_size_range,
    to_particle_batch,
    batches_from_dataframe,
)
from holoarchive.particles.bulk import BulkMoments, compute_bulk
from holoarchive.particles.aggregator import (
    AggregatorState,
    TimeRange,
    BinnedResult,
    TimeBinAggregator,
    midnight_utc,
)

__all__ = [
    'ParticleDetection',
    'DetectionBatch',
    'HologramClassifier',
    'ParticleBatch',
    'is_accepted',
    'is_accepted_round',
    'within_size_range',
    'to_particle_batch',
    'batches_from_dataframe',
    'BulkMoments',
    'compute_bulk',
    'AggregatorState',
    'TimeRange',
    'BinnedResult',
    'TimeBinAggregator',
    'midnight_utc',
]
