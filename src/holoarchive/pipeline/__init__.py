"""Pipeline modules.

- orchestrator: Archive pipeline controller, index pass and hologram workers
- processor: Archive writer thread
- file_tracker: SQLite-based container tracking
"""

from holoarchive.pipeline.orchestrator import ArchivePipeline, HologramWorker, SequenceIndexer
from holoarchive.pipeline.processor import ArchiveProcessor
from holoarchive.pipeline.file_tracker import FileProcessingTracker

__all__ = [
    "ArchivePipeline",
    "HologramWorker",
    "SequenceIndexer",
    "ArchiveProcessor",
    "FileProcessingTracker",
]
