"""Multi-threaded archive pipeline orchestration.

Coordinates the index pass, hologram worker threads and the single archive
processor thread, with queue-based inter-thread communication. Manages
logging, file tracking, archive lifecycle and cancellation.
"""

import queue
import threading
import time
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple, TYPE_CHECKING

from holoarchive.aircraft import AircraftData, read_aircraft
from holoarchive.archive import ArchiveMetadata, ArchiveSchema, ArchiveWriter
from holoarchive.particles.aggregator import TimeBinAggregator, TimeRange, midnight_utc
from holoarchive.particles.detections import (
    DetectionBatch,
    HologramClassifier,
    within_size_range,
)
from holoarchive.pipeline.file_tracker import FileProcessingTracker
from holoarchive.pipeline.processor import ArchiveProcessor
from holoarchive.sequence import (
    FormatError,
    FrameIndexEntry,
    FrameReadError,
    decode_frame,
    export_frame_png,
    index_all,
    open_header,
    screen_frames,
)
from holoarchive.setup_directories import get_archive_path, get_frames_dir

if TYPE_CHECKING:
    from holoarchive.schemas import InternalConfig

__all__ = ['SequenceIndexer', 'HologramWorker', 'ArchivePipeline']

logger = logging.getLogger(__name__)


class SequenceIndexer:
    """Parallel index pass over sequence containers.

    Worker threads pull files from a shared queue. Containers with an
    invalid header or unreadable data are logged, marked failed in the
    tracker and skipped.
    """

    def __init__(self, n_workers: int = 4, sample_bytes: int = 3000,
                 tracker: Optional[FileProcessingTracker] = None,
                 flight_id: str = ""):
        self.n_workers = n_workers
        self.sample_bytes = sample_bytes
        self.tracker = tracker
        self.flight_id = flight_id

    def _index_one(self, path: Path) -> Optional[list]:
        if self.tracker:
            self.tracker.register_file(path.name, self.flight_id, seq_path=path)
        try:
            entries = list(index_all(path, sample_bytes=self.sample_bytes))
        except (FormatError, OSError) as e:
            logger.warning("Skipping %s: %s", path.name, e)
            if self.tracker:
                self.tracker.mark_failed(path.name, str(e))
            return None

        if self.tracker:
            self.tracker.mark_stage_complete(path.name, "indexed", frame_count=len(entries))
        logger.debug("Indexed %s: %d frames", path.name, len(entries))
        return entries

    def index(self, paths: Iterable) -> list[FrameIndexEntry]:
        """Index all containers.

        Returns
        -------
        list of FrameIndexEntry
            Entries in input file order, then frame order.
        """
        paths = [Path(p) for p in paths]
        work = queue.Queue()
        for i, path in enumerate(paths):
            work.put((i, path))

        results = {}
        lock = threading.Lock()

        def worker():
            while True:
                try:
                    i, path = work.get_nowait()
                except queue.Empty:
                    return
                entries = self._index_one(path)
                if entries is not None:
                    with lock:
                        results[i] = entries

        threads = [
            threading.Thread(target=worker, name=f"SequenceIndexer-{k}", daemon=True)
            for k in range(max(1, min(self.n_workers, len(paths))))
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = [e for i in sorted(results) for e in results[i]]
        logger.info("Indexed %d of %d containers: %d frames", len(results), len(paths), len(entries))
        return entries


class HologramWorker(threading.Thread):
    """Decodes selected frames and runs the classifier on each.

    Work items are ``(path, frames)`` tuples, where ``frames`` lists
    ``(ordinal, FrameIndexEntry)`` pairs; ``None`` ends the thread. Every output
    item is ``(ordinal, DetectionBatch)``, and every ordinal of a work item
    is answered exactly once. A truncated container (FrameReadError) answers
    the rest of that container with ``"error"`` batches, as does a
    classifier exception for its hologram.
    """

    def __init__(self, input_queue: queue.Queue, output_queue: queue.Queue,
                 classifier: HologramClassifier, sample_bytes: int = 3000,
                 tracker: Optional[FileProcessingTracker] = None,
                 frames_dir: Optional[Path] = None, frame_prefix: str = "hologram",
                 name: str = "HologramWorker"):
        super().__init__(daemon=True, name=name)

        self.input_queue = input_queue
        self.output_queue = output_queue
        self.classifier = classifier
        self.sample_bytes = sample_bytes
        self.tracker = tracker
        self.frames_dir = frames_dir
        self.frame_prefix = frame_prefix
        self._stop_event = threading.Event()

        self.error: Optional[BaseException] = None
        self.frames_processed = 0

    def stop(self):
        """Signal thread to stop."""
        self._stop_event.set()

    def stopped(self):
        """Check if stop signal set."""
        return self._stop_event.is_set()

    def _put(self, ordinal: int, batch: DetectionBatch):
        while not self.stopped():
            try:
                self.output_queue.put((ordinal, batch), timeout=1)
                return
            except queue.Full:
                continue

    def _classify(self, frame) -> DetectionBatch:
        try:
            return self.classifier.classify(frame)
        except Exception as e:
            logger.warning("Classifier failed on frame %d at %s: %s",
                           frame.frame_index, frame.capture_time.isoformat(), e)
            return DetectionBatch(hologram_id=frame.frame_index,
                                  capture_time=frame.capture_time, status="error")

    def process_file(self, path: Path,
                     frames: Sequence[Tuple[int, FrameIndexEntry]]) -> int:
        """Decode and classify frames of one container; returns frames done."""
        header = open_header(path)
        done = 0
        for position, (ordinal, entry) in enumerate(frames):
            if self.stopped():
                break
            try:
                frame = decode_frame(path, entry.frame_index,
                                     sample_bytes=self.sample_bytes, header=header)
            except FrameReadError as e:
                logger.warning("Stopping %s at frame %d: %s", path.name, entry.frame_index, e)
                if self.tracker:
                    self.tracker.mark_failed(path.name, str(e))
                for missing, skipped in frames[position:]:
                    self._put(missing, DetectionBatch(hologram_id=skipped.frame_index,
                                                      capture_time=skipped.capture_time,
                                                      status="error"))
                return done

            if self.frames_dir is not None:
                export_frame_png(frame, self.frames_dir, self.frame_prefix)

            self._put(ordinal, self._classify(frame))
            done += 1

        if self.tracker:
            self.tracker.mark_stage_complete(path.name, "extracted",
                                             selected_frames=len(frames),
                                             num_holograms=done)
        return done

    def run(self):
        """Main worker loop (runs in thread)."""
        while not self.stopped():
            try:
                item = self.input_queue.get(timeout=1)
            except queue.Empty:
                continue

            try:
                if item is None:
                    break
                path, frames = item
                self.frames_processed += self.process_file(path, frames)
            except Exception as e:
                logger.exception("Hologram worker failed")
                self.error = e
                break
            finally:
                self.input_queue.task_done()


class ArchivePipeline:
    """Builds one HOLODEC archive from containers or classified holograms.

    **Stages (``run``):**

    1. Read aircraft data (optional) for the time range and cloud mask.
    2. Index all containers in parallel (timestamps and brightness).
    3. Screen frames by brightness and in-cloud seconds.
    4. Open the archive; a failure here ends the run before any work.
    5. Decode and classify frames in worker threads; one processor thread
       aggregates holograms in file-processing order and streams particles
       into the archive.
    6. Normalize, compute bulk moments, write 1 Hz arrays, close.

    Any exception or KeyboardInterrupt after the archive is opened aborts
    it (the partial file is deleted) and is re-raised.

    Example usage::

        config = resolve_config(ParamConfig(), UserConfig(RULESET=8, PREFIX="RF04"))
        output_dirs = setup_output_directories(config.base_dir)
        pipeline = ArchivePipeline(config, output_dirs)
        path = pipeline.run(sorted(Path("raw").glob("*.seq")), classifier)
    """

    def __init__(self, config: "InternalConfig", output_dirs: dict,
                 tracker: Optional[FileProcessingTracker] = None,
                 configure_logging: bool = True):
        self.config = config
        self.output_dirs = output_dirs
        self.tracker = tracker
        self.configure_logging = configure_logging
        self.prefix = config.archive.prefix

        self.aircraft: Optional[AircraftData] = None
        self.processor: Optional[ArchiveProcessor] = None
        self.workers: list = []
        self._start_time = None

    def _setup_logging(self):
        """Configure root logging to console and logs/pipeline_<prefix>.log."""
        log_level = getattr(logging, self.config.logging.level.upper(), logging.INFO)

        log_dir = Path(self.output_dirs.get("logs", "."))
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"pipeline_{self.prefix}.log"

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        root = logging.getLogger()
        root.setLevel(log_level)
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        logger.info("Logging: level=%s, file=%s", logging.getLevelName(log_level), log_path)

    def _setup(self):
        if self.configure_logging:
            self._setup_logging()
        if self.tracker is None:
            tracker_path = Path(self.output_dirs.get("logs", ".")) / f"{self.prefix}_file_tracker.db"
            self.tracker = FileProcessingTracker(tracker_path)
        self._start_time = time.time()

        logger.info("=" * 60)
        logger.info("Building HOLODEC archive for %s", self.prefix)
        logger.info("=" * 60)

        cfg = self.config.aircraft
        self.aircraft = read_aircraft(cfg.ncfile, cfg.reference_variable)

    def _time_range(self, capture_times: list) -> tuple[TimeRange, datetime]:
        if self.aircraft is not None:
            return self.aircraft.time_range, self.aircraft.start_epoch
        if not capture_times:
            raise ValueError("No holograms to archive and no aircraft data for a time range")
        time_range = TimeRange.from_times(capture_times)
        logger.info("No aircraft data, time range from holograms: %s to %s",
                    time_range.start.isoformat(), time_range.stop.isoformat())
        return time_range, midnight_utc(time_range.start)

    def _open(self, time_range: TimeRange, start_epoch) -> tuple[TimeBinAggregator, ArchiveWriter]:
        cfg = self.config
        aggregator = TimeBinAggregator(round_enabled=cfg.archive.round_enabled)
        aggregator.start(time_range, cfg.binning.bin_edges, start_epoch)

        schema = ArchiveSchema(
            time=aggregator.time,
            bin_edges=aggregator.bin_edges,
            round_enabled=cfg.archive.round_enabled,
            include_aircraft=self.aircraft is not None,
            compression_level=cfg.archive.compression_level,
        )
        path = get_archive_path(self.output_dirs, self.prefix, start_epoch)
        writer = ArchiveWriter.open(path, schema)
        return aggregator, writer

    def _metadata(self, time_range: TimeRange, start_epoch) -> ArchiveMetadata:
        cfg = self.config
        aircraft = self.aircraft
        return ArchiveMetadata(
            start_epoch=start_epoch,
            time_range=time_range,
            ruleset=cfg.archive.ruleset,
            round_ruleset=cfg.archive.round_ruleset,
            sample_volume=cfg.sample_volume,
            probe_name=cfg.archive.probe_name,
            source=cfg.archive.source,
            time_offset_seconds=cfg.archive.time_offset_seconds,
            project=aircraft.project if aircraft else None,
            platform=aircraft.platform if aircraft else None,
            flight_number=aircraft.flight_number if aircraft else None,
        )

    def _new_processor(self, result_queue, aggregator, writer, start_epoch, time_offset):
        return ArchiveProcessor(
            result_queue, aggregator, writer, start_epoch,
            particle_predicate=within_size_range(self.config.binning.bin_edges),
            time_offset=time_offset,
        )

    def _finalize(self, aggregator: TimeBinAggregator, writer: ArchiveWriter,
                  metadata: ArchiveMetadata) -> Path:
        aggregator.normalize(self.config.sample_volume.total_m3)
        aggregator.compute_bulk_moments()
        writer.write_binned_arrays(aggregator.result(), self.aircraft)
        return writer.close(metadata)

    def _stop_threads(self):
        for thread in self.workers + [self.processor]:
            if thread is not None and thread.is_alive():
                thread.stop()
        for thread in self.workers + [self.processor]:
            if thread is not None:
                thread.join(timeout=5)
                if thread.is_alive():
                    logger.warning("%s did not stop cleanly", thread.name)

    def _wait_for_workers(self):
        """Join workers, bailing out early if the processor dies."""
        for worker in self.workers:
            while worker.is_alive():
                worker.join(timeout=1)
                if self.processor.error is not None or not self.processor.is_alive():
                    raise self.processor.error or RuntimeError("Archive processor exited early")
            if worker.error is not None:
                raise worker.error

    def run(self, container_files: Iterable, classifier: HologramClassifier) -> Path:
        """Build the archive from sequence containers.

        Parameters
        ----------
        container_files : iterable of str or Path
            Sequence files for one flight.
        classifier : HologramClassifier
            Reconstruction and classification engine.

        Returns
        -------
        Path
            The closed archive.
        """
        self._setup()
        cfg = self.config
        time_offset = cfg.archive.time_offset_seconds

        indexer = SequenceIndexer(cfg.workers.n_workers, cfg.decoder.brightness_sample_bytes,
                                  tracker=self.tracker, flight_id=self.prefix)
        entries = indexer.index(container_files)
        selected = screen_frames(entries, cfg.screening, self.aircraft)

        offset = timedelta(seconds=time_offset)
        time_range, start_epoch = self._time_range([e.capture_time + offset for e in selected])
        aggregator, writer = self._open(time_range, start_epoch)

        try:
            by_file = OrderedDict()
            for ordinal, entry in enumerate(selected):
                by_file.setdefault(entry.path, []).append((ordinal, entry))

            work_queue = queue.Queue()
            result_queue = queue.Queue(maxsize=cfg.workers.max_queue_size)

            self.processor = self._new_processor(result_queue, aggregator, writer,
                                                 start_epoch, time_offset)
            self.processor.start()

            frames_dir = get_frames_dir(self.output_dirs, self.prefix) if cfg.export.write_frames else None
            n_workers = max(1, min(cfg.workers.n_workers, len(by_file)))
            self.workers = [
                HologramWorker(work_queue, result_queue, classifier,
                               sample_bytes=cfg.decoder.brightness_sample_bytes,
                               tracker=self.tracker, frames_dir=frames_dir,
                               frame_prefix=cfg.export.frame_prefix,
                               name=f"HologramWorker-{k}")
                for k in range(n_workers)
            ]
            for path, frames in by_file.items():
                work_queue.put((path, frames))
            for worker in self.workers:
                work_queue.put(None)
                worker.start()

            logger.info("Processing %d frames from %d containers with %d workers",
                        len(selected), len(by_file), n_workers)
            self._wait_for_workers()

            while self.processor.is_alive():
                try:
                    result_queue.put(None, timeout=1)
                    break
                except queue.Full:
                    continue
            self.processor.join()
            if self.processor.error is not None:
                raise self.processor.error

            metadata = self._metadata(time_range, start_epoch)
            path = self._finalize(aggregator, writer, metadata)
        except BaseException:
            logger.error("Archive build failed, aborting %s", writer.path.name)
            self._stop_threads()
            writer.abort()
            raise
        finally:
            self._finish()

        for record in self.tracker.get_files(self.prefix, status="processing"):
            self.tracker.mark_stage_complete(record["file_id"], "archived", archive_path=path)
        return path

    def run_batches(self, batches: Iterable[DetectionBatch]) -> Path:
        """Build the archive from already classified holograms.

        Capture times are used as given; apply any clock correction when
        building the batches (see ``batches_from_dataframe``).

        Returns
        -------
        Path
            The closed archive.
        """
        self._setup()
        batches = list(batches)
        time_range, start_epoch = self._time_range(
            [b.capture_time for b in batches if b.status == "ok"]
        )
        aggregator, writer = self._open(time_range, start_epoch)

        try:
            self.processor = self._new_processor(None, aggregator, writer, start_epoch, 0.0)
            for batch in batches:
                self.processor.process_batch(batch)
            logger.info("Archived %d holograms (%d failed, %d outside time range)",
                        self.processor.holograms, self.processor.failed_holograms,
                        self.processor.dropped_holograms)

            metadata = self._metadata(time_range, start_epoch)
            path = self._finalize(aggregator, writer, metadata)
        except BaseException:
            logger.error("Archive build failed, aborting %s", writer.path.name)
            writer.abort()
            raise
        finally:
            self._finish()
        return path

    def _finish(self):
        elapsed = time.time() - self._start_time if self._start_time else 0
        logger.info("=" * 60)
        logger.info("Pipeline finished. Runtime: %.1f seconds", elapsed)
        if self.tracker:
            stats = self.tracker.get_statistics(self.prefix)
            logger.info("Statistics: total=%d, indexed=%d, failed=%d, holograms=%d",
                        stats.get('total') or 0, stats.get('indexed') or 0,
                        stats.get('failed') or 0, stats.get('total_holograms') or 0)
        logger.info("=" * 60)

    def close(self):
        """Close the file tracker."""
        if self.tracker:
            self.tracker.close()
