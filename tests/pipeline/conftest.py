import pytest
import queue
from pathlib import Path

from holoarchive.particles.detections import DetectionBatch, ParticleDetection
from holoarchive.pipeline.file_tracker import FileProcessingTracker
from holoarchive.setup_directories import setup_output_directories


@pytest.fixture
def tracker(temp_dir):
    db_path = temp_dir / "tracker.db"
    t = FileProcessingTracker(db_path)
    yield t
    t.close()


@pytest.fixture
def pipeline_output_dirs(temp_dir):
    """Output directories for pipeline tests."""
    return setup_output_directories(temp_dir / "output")


class FakeClassifier:
    """Finds one accepted 15 um particle and one rejected 40 um particle per frame.

    Frames listed in ``fail_on`` raise, as a crashing reconstruction would.
    """

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = 0

    def classify(self, frame):
        self.calls += 1
        if frame.frame_index in self.fail_on:
            raise RuntimeError(f"reconstruction failed for frame {frame.frame_index}")
        detections = tuple(
            ParticleDetection(
                capture_time=frame.capture_time, hologram_id=frame.frame_index,
                x=0.0, y=0.0, z=50000.0, major_diameter=d,
                area_ratio=0.9, aspect_ratio=1.0, accepted=accepted,
            )
            for d, accepted in ((15.0, True), (40.0, False))
        )
        return DetectionBatch(frame.frame_index, frame.capture_time, detections)


@pytest.fixture
def fake_classifier():
    return FakeClassifier


# made for processor tests
@pytest.fixture
def processor_queue():
    return queue.Queue()
