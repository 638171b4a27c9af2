"""End-to-end archive builds through ArchivePipeline."""

import queue
import time

import pytest
import numpy as np
from datetime import timedelta

pytestmark = [pytest.mark.pipeline]

from holoarchive.archive import ArchiveWriter, read_archive
from holoarchive.archive.writer import partial_path
from holoarchive.pipeline import ArchivePipeline, HologramWorker, SequenceIndexer
from holoarchive.sequence import FormatError, index_all


@pytest.fixture
def containers(seq_builder, temp_dir, t0):
    """Two containers of ten frames each, 0.2 s apart, one over-exposed frame."""
    first = [t0 + timedelta(seconds=0.2 * i) for i in range(10)]
    second = [t0 + timedelta(seconds=2 + 0.2 * i) for i in range(10)]
    values = [100] * 10
    values_bright = [100] * 9 + [250]
    return [
        seq_builder(temp_dir / "RF04_a.seq", first, values=values),
        seq_builder(temp_dir / "RF04_b.seq", second, values=values_bright),
    ]


def _pipeline(config, output_dirs):
    return ArchivePipeline(config, output_dirs, configure_logging=False)


def test_run_builds_archive(make_config, pipeline_output_dirs, containers, fake_classifier, t0):
    config = make_config(N_WORKERS=2)
    pipeline = _pipeline(config, pipeline_output_dirs)

    path = pipeline.run(containers, fake_classifier())
    pipeline.close()

    assert path == pipeline_output_dirs["archive"] / "RF04_20210604_HOLODEC.nc"
    assert path.exists() and not partial_path(path).exists()

    contents = read_archive(path)
    # 19 frames pass screening; only the accepted 15 um particle of each is kept
    assert contents.total_particles == 19
    assert contents.particles.hid.tolist() == list(range(1, 20))
    assert np.all(np.diff(contents.particles.particletime) > 0)
    np.testing.assert_array_equal(contents.particles.d, 15.0)
    assert contents.time.size == 4
    assert contents.nt.sum() > 0
    assert contents.attrs["Ruleset"] == 8
    assert pipeline.processor.holograms == 19


def test_hologram_order_follows_files_not_thread_timing(make_config, pipeline_output_dirs,
                                                       containers, fake_classifier, t0):
    """A slow first container must not let the second one take the low hids."""
    class SlowFirstContainer(fake_classifier):
        def classify(self, frame):
            if frame.capture_time < t0 + timedelta(seconds=2):
                time.sleep(0.05)
            return super().classify(frame)

    pipeline = _pipeline(make_config(N_WORKERS=2), pipeline_output_dirs)
    path = pipeline.run(containers, SlowFirstContainer())
    pipeline.close()

    particles = read_archive(path).particles
    np.testing.assert_array_equal(particles.hid, np.arange(1, 20))
    assert np.all(np.diff(particles.particletime) > 0)
    # The first ten hids belong to the first container
    assert np.all(particles.particletime[:10] < particles.particletime[10])


def test_run_records_tracker_progress(make_config, pipeline_output_dirs, containers,
                                      fake_classifier, temp_dir):
    bad = temp_dir / "RF04_bad.seq"
    bad.write_bytes(b"\x00" * 10)
    pipeline = _pipeline(make_config(), pipeline_output_dirs)

    path = pipeline.run(containers + [bad], fake_classifier())

    tracker = pipeline.tracker
    assert tracker.get_file_status("RF04_a.seq")["status"] == "completed"
    assert tracker.get_file_status("RF04_a.seq")["archive_path"] == str(path)
    assert tracker.get_file_status("RF04_b.seq")["selected_frames"] == 9
    assert tracker.get_file_status("RF04_bad.seq")["status"] == "failed"
    stats = tracker.get_statistics("RF04")
    assert stats["total"] == 3
    assert stats["archived"] == 2
    assert stats["total_frames"] == 20
    assert (pipeline_output_dirs["logs"] / "RF04_file_tracker.db").exists()
    pipeline.close()


def test_classifier_errors_are_skipped(make_config, pipeline_output_dirs, containers, fake_classifier):
    pipeline = _pipeline(make_config(N_WORKERS=1), pipeline_output_dirs)

    path = pipeline.run(containers, fake_classifier(fail_on={3}))
    pipeline.close()

    # Frame 3 of both containers fails
    assert pipeline.processor.failed_holograms == 2
    assert read_archive(path).total_particles == 17


def test_frames_exported_when_enabled(make_config, pipeline_output_dirs, containers, fake_classifier):
    pipeline = _pipeline(make_config(WRITE_FRAMES=True), pipeline_output_dirs)

    pipeline.run(containers, fake_classifier())
    pipeline.close()

    pngs = sorted((pipeline_output_dirs["frames"] / "RF04").glob("RF04_*.png"))
    assert len(pngs) == 19


def test_run_with_aircraft(make_config, pipeline_output_dirs, containers, fake_classifier,
                           aircraft_builder, temp_dir):
    ncfile = aircraft_builder(temp_dir / "rf04.nc")
    pipeline = _pipeline(make_config(NCFILE=str(ncfile)), pipeline_output_dirs)

    path = pipeline.run(containers, fake_classifier())
    pipeline.close()

    contents = read_archive(path)
    # Time axis spans the aircraft record, 62700 to 62719
    assert contents.time[0] == 62700 and contents.time.size == 20
    assert set(contents.aircraft) == {"lat", "lon", "alt", "t"}
    np.testing.assert_allclose(contents.aircraft["alt"], 3000.0)
    assert contents.attrs["FlightNumber"] == "RF04"
    assert contents.total_particles == 19


def test_run_batches(make_config, pipeline_output_dirs, batch_factory, t0):
    batches = [
        batch_factory(10, t0, (15, 25)),
        batch_factory(11, t0 + timedelta(seconds=0.4), (15,), status="error"),
        batch_factory(12, t0 + timedelta(seconds=1.5), ()),
        batch_factory(13, t0 + timedelta(seconds=2.2), (28,)),
    ]
    pipeline = _pipeline(make_config(BIN_EDGES=[10, 20, 30]), pipeline_output_dirs)

    path = pipeline.run_batches(batches)
    pipeline.close()

    contents = read_archive(path)
    np.testing.assert_array_equal(contents.particles.hid, [1, 1, 3])
    np.testing.assert_array_equal(contents.particles.d, [15.0, 25.0, 28.0])
    assert contents.time.size == 3
    assert contents.concentration.shape == (3, 2)
    assert pipeline.processor.failed_holograms == 1


def test_run_batches_drops_particles_outside_bins(make_config, pipeline_output_dirs, batch_factory, t0):
    pipeline = _pipeline(make_config(BIN_EDGES=[10, 20, 30]), pipeline_output_dirs)

    path = pipeline.run_batches([batch_factory(1, t0, (5, 15, 45))])
    pipeline.close()

    np.testing.assert_array_equal(read_archive(path).particles.d, [15.0])


def test_failure_aborts_archive(make_config, pipeline_output_dirs, batch_factory, t0, monkeypatch):
    def broken(self, result, aircraft=None):
        raise RuntimeError("disk full")

    monkeypatch.setattr(ArchiveWriter, "write_binned_arrays", broken)
    pipeline = _pipeline(make_config(), pipeline_output_dirs)

    with pytest.raises(RuntimeError, match="disk full"):
        pipeline.run_batches([batch_factory(1, t0, (15,))])
    pipeline.close()

    assert list(pipeline_output_dirs["archive"].iterdir()) == []


def test_processor_failure_aborts_run(make_config, pipeline_output_dirs, containers,
                                      fake_classifier, monkeypatch):
    def broken(self, batch):
        raise RuntimeError("write failed")

    monkeypatch.setattr(ArchiveWriter, "append_particles", broken)
    pipeline = _pipeline(make_config(N_WORKERS=2), pipeline_output_dirs)

    with pytest.raises(RuntimeError, match="write failed"):
        pipeline.run(containers, fake_classifier())
    pipeline.close()

    assert list(pipeline_output_dirs["archive"].iterdir()) == []
    assert all(not w.is_alive() for w in pipeline.workers)


def test_no_holograms_and_no_aircraft(make_config, pipeline_output_dirs):
    pipeline = _pipeline(make_config(), pipeline_output_dirs)
    with pytest.raises(ValueError, match="No holograms"):
        pipeline.run_batches([])
    pipeline.close()


def test_setup_logging_writes_log_file(make_config, pipeline_output_dirs):
    import logging

    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        pipeline = ArchivePipeline(make_config(), pipeline_output_dirs)
        pipeline._setup_logging()
        logging.getLogger("holoarchive.test").info("hello")
        for handler in root.handlers:
            handler.flush()
        log_file = pipeline_output_dirs["logs"] / "pipeline_RF04.log"
        assert "hello" in log_file.read_text()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])


class TestSequenceIndexer:

    def test_entries_in_file_then_frame_order(self, containers):
        entries = SequenceIndexer(n_workers=3).index(containers)

        assert len(entries) == 20
        assert [e.path.name for e in entries[:10]] == ["RF04_a.seq"] * 10
        assert [e.frame_index for e in entries[10:]] == list(range(1, 11))

    def test_bad_files_are_skipped(self, containers, temp_dir, tracker):
        bad = temp_dir / "RF04_bad.seq"
        bad.write_bytes(b"\x00" * 10)

        entries = SequenceIndexer(n_workers=2, tracker=tracker, flight_id="RF04").index([bad] + containers)

        assert len(entries) == 20
        status = tracker.get_file_status("RF04_bad.seq")
        assert status["status"] == "failed"
        assert "shorter than" in status["error_message"]
        assert tracker.get_file_status("RF04_a.seq")["frame_count"] == 10


class TestHologramWorker:

    def test_truncated_container_answers_every_ordinal(self, seq_builder, temp_dir,
                                                       frame_times, fake_classifier):
        path = seq_builder(temp_dir / "RF04_cut.seq", frame_times)
        entries = list(index_all(path))
        # Container shrinks after the index pass
        seq_builder(path, frame_times, truncate=500)

        output = queue.Queue()
        worker = HologramWorker(queue.Queue(), output, fake_classifier())
        done = worker.process_file(path, [(100 + k, e) for k, e in enumerate(entries)])

        items = [output.get_nowait() for _ in range(output.qsize())]
        assert done == 9
        assert [ordinal for ordinal, _ in items] == list(range(100, 110))
        assert [batch.status for _, batch in items] == ["ok"] * 9 + ["error"]
        assert items[-1][1].capture_time == entries[-1].capture_time
