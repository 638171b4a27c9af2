"""NetCDF particle archive for holoarchive.

Submodules
----------
writer
    Archive creation, particle streaming, 1 Hz arrays and metadata.
reader
    Archive loading with legacy variable names.
"""

from holoarchive.archive.writer import (
    ArchiveOpenError,
    ArchiveClosedError,
    ArchiveSchema,
    ArchiveMetadata,
    ArchiveWriter,
)
from holoarchive.archive.reader import ArchiveContents, read_archive

__all__ = [
    'ArchiveOpenError',
    'ArchiveClosedError',
    'ArchiveSchema',
    'ArchiveMetadata',
    'ArchiveWriter',
    'ArchiveContents',
    'read_archive',
]
