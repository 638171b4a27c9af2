"""Archive writing stage.

Consumes classified holograms, feeds the 1 Hz aggregator and streams
accepted particles into the archive. Exactly one processor exists per
archive build, so hologram numbering and the particle cursor advance in
one place.
"""

import logging
import threading
import queue
from datetime import datetime, timedelta
from typing import Dict, Optional, TYPE_CHECKING

from holoarchive.contracts import ContractViolation
from holoarchive.particles.aggregator import TimeBinAggregator
from holoarchive.particles.detections import (
    DetectionBatch,
    DetectionPredicate,
    is_accepted,
    to_particle_batch,
)

if TYPE_CHECKING:
    from holoarchive.archive import ArchiveWriter

__all__ = ['ArchiveProcessor']

logger = logging.getLogger(__name__)


class ArchiveProcessor(threading.Thread):
    """Single writer thread for one archive.

    Pops ``(ordinal, DetectionBatch)`` items from ``input_queue`` until a
    ``None`` sentinel arrives or ``stop()`` is called. Ordinals are the
    positions of the frames in file-processing order, starting at 0; batches
    that arrive early are held until every lower ordinal has been archived.
    Holograms are numbered 1, 2, 3, ... in that order; the number is both the
    aggregator key and the ``hid`` written with each particle.

    Batches with status ``"error"`` are counted and skipped: they add no
    particles and no sample volume. A contract violation stops the thread
    and is kept in ``error`` for the orchestrator to re-raise.

    Parameters
    ----------
    input_queue : queue.Queue
        Classified holograms from the worker threads.
    aggregator : TimeBinAggregator
        Started aggregator (state ACCUMULATING).
    writer : ArchiveWriter
        Open archive writer.
    start_epoch : datetime
        Archive time origin.
    particle_predicate : callable, optional
        Selects particles written to the archive.
    time_offset : float, optional
        Seconds added to every capture time (probe clock correction).
    """

    def __init__(self, input_queue: queue.Queue, aggregator: TimeBinAggregator,
                 writer: "ArchiveWriter", start_epoch: datetime,
                 particle_predicate: DetectionPredicate = is_accepted,
                 time_offset: float = 0.0,
                 name: str = "ArchiveProcessor"):
        super().__init__(daemon=True, name=name)

        self.input_queue = input_queue
        self.aggregator = aggregator
        self.writer = writer
        self.start_epoch = start_epoch
        self.particle_predicate = particle_predicate
        self.time_offset = timedelta(seconds=time_offset)
        self._stop_event = threading.Event()

        self.error: Optional[BaseException] = None
        self.holograms = 0
        self.failed_holograms = 0
        self.dropped_holograms = 0
        self._next_hid = 1
        self._next_ordinal = 0
        self._pending: Dict[int, DetectionBatch] = {}

    def stop(self):
        """Signal thread to stop."""
        self._stop_event.set()

    def stopped(self):
        """Check if stop signal set."""
        return self._stop_event.is_set()

    def process_batch(self, batch: DetectionBatch) -> bool:
        """Aggregate one hologram and append its accepted particles.

        Returns
        -------
        bool
            True if the hologram was added to the archive.
        """
        if batch.status == "error":
            self.failed_holograms += 1
            logger.warning("Classifier error for hologram at %s, skipped",
                           batch.capture_time.isoformat())
            return False

        capture_time = batch.capture_time + self.time_offset
        hid = self._next_hid

        added = self.aggregator.add_hologram_detections(hid, capture_time, batch.detections)
        if not added:
            self.dropped_holograms += 1
            return False

        self._next_hid += 1
        self.holograms += 1

        shifted = DetectionBatch(hologram_id=hid, capture_time=capture_time,
                                 detections=batch.detections, status=batch.status)
        particles = to_particle_batch(shifted, self.start_epoch, self.particle_predicate)
        offset = self.writer.append_particles(particles)
        logger.debug("Hologram %d: %d of %d particles written (total %d)",
                     hid, len(particles), len(batch), offset)
        return True

    def submit(self, ordinal: int, batch: DetectionBatch) -> int:
        """Queue a batch by ordinal and archive every batch now in sequence.

        Returns
        -------
        int
            Number of batches archived by this call.
        """
        if ordinal < self._next_ordinal or ordinal in self._pending:
            raise ContractViolation(f"Hologram ordinal {ordinal} submitted twice")
        self._pending[ordinal] = batch

        released = 0
        while self._next_ordinal in self._pending:
            self.process_batch(self._pending.pop(self._next_ordinal))
            self._next_ordinal += 1
            released += 1
        return released

    def flush(self) -> int:
        """Archive held batches in ordinal order, skipping missing ordinals."""
        if self._pending:
            logger.warning("%d holograms archived past missing ordinals starting at %d",
                           len(self._pending), self._next_ordinal)
        released = 0
        for ordinal in sorted(self._pending):
            self.process_batch(self._pending.pop(ordinal))
            self._next_ordinal = ordinal + 1
            released += 1
        return released

    def run(self):
        """Main processor loop (runs in thread)."""
        logger.info("Archive processor started, waiting for holograms...")

        while not self.stopped():
            try:
                item = self.input_queue.get(timeout=1)
            except queue.Empty:
                continue

            try:
                if item is None:
                    self.flush()
                    break
                ordinal, batch = item
                self.submit(ordinal, batch)
            except ContractViolation as e:
                logger.error("Contract violation while archiving: %s", e)
                self.error = e
                break
            except Exception as e:
                logger.exception("Failed to archive hologram")
                self.error = e
                break
            finally:
                self.input_queue.task_done()

        logger.info("Archive processor stopped: %d holograms, %d failed, %d outside time range",
                    self.holograms, self.failed_holograms, self.dropped_holograms)
