"""Sequence container access for holoarchive.

Submodules
----------
decoder
    Header parsing, frame index pass and full frame decoding.
naming
    Timestamped frame file names.
screening
    Brightness and in-cloud hologram pre-selection.
export
    PNG export of decoded frames.
"""

from holoarchive.sequence.decoder import (
    HEADER_LENGTH,
    FormatError,
    FrameReadError,
    ContainerHeader,
    FrameRecord,
    FrameIndexEntry,
    FrameIndex,
    open_header,
    index_all,
    decode_frame,
)
from holoarchive.sequence.naming import format_frame_name, parse_frame_name
from holoarchive.sequence.screening import screen_frames, cloud_mask, median_brightness
from holoarchive.sequence.export import export_frame_png, convert_sequence_files

__all__ = [
    'HEADER_LENGTH',
    'FormatError',
    'FrameReadError',
    'ContainerHeader',
    'FrameRecord',
    'FrameIndexEntry',
    'FrameIndex',
    'open_header',
    'index_all',
    'decode_frame',
    'format_frame_name',
    'parse_frame_name',
    'screen_frames',
    'cloud_mask',
    'median_brightness',
    'export_frame_png',
    'convert_sequence_files',
]
