"""Sequence container decoding.

A sequence ("seq") file is an 8192-byte little-endian header followed by
fixed-spacing frame records. Each record holds the raw pixel payload and an
8-byte timestamp trailer (uint32 seconds since the Unix epoch, uint16
milliseconds, uint16 microseconds) directly after the payload.

Two passes read the same records:

- ``index_all`` reads only the brightness sample and the trailer of each
  frame, which is enough to pre-select holograms.
- ``decode_frame`` reads a complete frame for reconstruction or export.

Both use ``ContainerHeader.frame_offset`` and ``ContainerHeader.sample_window``
so that a frame's brightness and timestamp agree between passes.
"""

import logging
import os
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

import numpy as np

__all__ = [
    'HEADER_LENGTH',
    'TRAILER_LENGTH',
    'FormatError',
    'FrameReadError',
    'ContainerHeader',
    'FrameRecord',
    'FrameIndexEntry',
    'FrameIndex',
    'open_header',
    'index_all',
    'decode_frame',
]

logger = logging.getLogger(__name__)

HEADER_LENGTH = 8192
TRAILER_LENGTH = 8
DEFAULT_SAMPLE_BYTES = 3000

# (offset, name) of the uint32 header fields
_HEADER_FIELDS = (
    (548, "width"),
    (552, "height"),
    (556, "bit_depth"),
    (560, "bit_depth_real"),
    (564, "raw_length"),
    (568, "image_format"),
    (580, "spacing"),
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

PathLike = Union[str, Path]


class FormatError(ValueError):
    """Container header is missing or internally inconsistent."""


class FrameReadError(OSError):
    """A frame record extends past the end of the file."""


@dataclass(frozen=True)
class ContainerHeader:
    """Geometry of a sequence container, parsed from its header."""

    path: Path
    width: int
    height: int
    bit_depth: int
    bit_depth_real: int
    raw_length: int
    image_format: int
    spacing: int
    file_size: int

    @property
    def bytes_per_pixel(self) -> int:
        return self.raw_length // (self.width * self.height)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.uint8) if self.bytes_per_pixel == 1 else np.dtype("<u2")

    @property
    def frame_count(self) -> int:
        """Number of complete records (payload plus trailer) in the file."""
        available = self.file_size - HEADER_LENGTH - self.raw_length - TRAILER_LENGTH
        if available < 0:
            return 0
        return available // self.spacing + 1

    def frame_offset(self, frame_index: int) -> int:
        """Byte offset of the payload of 1-based frame ``frame_index``."""
        if frame_index < 1:
            raise ValueError(f"frame_index must be >= 1, got {frame_index}")
        return HEADER_LENGTH + (frame_index - 1) * self.spacing

    def sample_window(self, sample_bytes: int = DEFAULT_SAMPLE_BYTES) -> tuple[int, int]:
        """Offset and length, relative to the payload, of the brightness sample.

        The sample is contiguous and centred in the payload, aligned to whole
        pixels; it covers the full payload when that is smaller than
        ``sample_bytes``.
        """
        bpp = self.bytes_per_pixel
        length = min(self.raw_length, max(bpp, sample_bytes - sample_bytes % bpp))
        start = (self.raw_length - length) // 2
        start -= start % bpp
        return start, length


@dataclass(frozen=True)
class FrameRecord:
    """A fully decoded frame."""

    frame_index: int
    capture_time: datetime
    brightness: float
    pixels: np.ndarray


@dataclass(frozen=True)
class FrameIndexEntry:
    """Timestamp and brightness of one frame, without its pixels."""

    path: Path
    frame_index: int
    capture_time: datetime
    brightness: float


def open_header(path: PathLike) -> ContainerHeader:
    """Read and validate the header of a sequence container.

    Parameters
    ----------
    path : str or Path
        Sequence file.

    Returns
    -------
    ContainerHeader

    Raises
    ------
    FormatError
        File shorter than the header, or header fields that cannot describe
        a valid frame layout.
    """
    path = Path(path)
    file_size = os.path.getsize(path)
    if file_size < HEADER_LENGTH:
        raise FormatError(f"{path}: {file_size} bytes is shorter than the {HEADER_LENGTH}-byte header")

    with open(path, "rb") as fh:
        raw = fh.read(HEADER_LENGTH)

    fields = {name: struct.unpack_from("<I", raw, offset)[0] for offset, name in _HEADER_FIELDS}

    for name in ("width", "height", "raw_length", "spacing"):
        if fields[name] == 0:
            raise FormatError(f"{path}: header field {name} is zero")

    npix = fields["width"] * fields["height"]
    if fields["raw_length"] not in (npix, 2 * npix):
        raise FormatError(
            f"{path}: raw frame length {fields['raw_length']} does not match "
            f"{fields['width']}x{fields['height']} pixels"
        )
    if fields["spacing"] < fields["raw_length"] + TRAILER_LENGTH:
        raise FormatError(
            f"{path}: record spacing {fields['spacing']} cannot hold "
            f"{fields['raw_length']} payload bytes and the timestamp trailer"
        )

    header = ContainerHeader(path=path, file_size=file_size, **fields)
    logger.debug("Opened %s: %dx%d, %d bytes/pixel, %d frames",
                 path.name, header.width, header.height,
                 header.bytes_per_pixel, header.frame_count)
    return header


def _decode_trailer(raw: bytes) -> datetime:
    seconds, millis, micros = struct.unpack("<IHH", raw)
    return _EPOCH + timedelta(seconds=seconds, milliseconds=millis, microseconds=micros)


def _sample_brightness(raw: bytes, dtype: np.dtype) -> float:
    return float(np.frombuffer(raw, dtype=dtype).mean())


def _read_exact(fh, offset: int, length: int, header: ContainerHeader, frame_index: int) -> bytes:
    fh.seek(offset)
    data = fh.read(length)
    if len(data) != length:
        raise FrameReadError(
            f"{header.path}: frame {frame_index} is truncated "
            f"(wanted {length} bytes at {offset}, got {len(data)})"
        )
    return data


def decode_frame(path: PathLike, frame_index: int,
                 sample_bytes: int = DEFAULT_SAMPLE_BYTES,
                 header: Optional[ContainerHeader] = None) -> FrameRecord:
    """Decode one frame from a sequence container.

    Parameters
    ----------
    path : str or Path
        Sequence file.
    frame_index : int
        1-based frame number.
    sample_bytes : int, optional
        Size of the brightness sample (default 3000 bytes).
    header : ContainerHeader, optional
        Already-parsed header, to avoid re-reading it for every frame.

    Returns
    -------
    FrameRecord
        Pixels shaped ``(height, width)``, capture time as an aware UTC
        datetime, and brightness over the same sample ``index_all`` uses.

    Raises
    ------
    ValueError
        ``frame_index`` < 1.
    FrameReadError
        The record (payload or trailer) extends past end-of-file.
    """
    if frame_index < 1:
        raise ValueError(f"frame_index must be >= 1, got {frame_index}")
    if header is None:
        header = open_header(path)

    offset = header.frame_offset(frame_index)
    with open(header.path, "rb") as fh:
        payload = _read_exact(fh, offset, header.raw_length, header, frame_index)
        trailer = _read_exact(fh, offset + header.raw_length, TRAILER_LENGTH, header, frame_index)

    pixels = np.frombuffer(payload, dtype=header.dtype).reshape(header.height, header.width)
    start, length = header.sample_window(sample_bytes)

    return FrameRecord(
        frame_index=frame_index,
        capture_time=_decode_trailer(trailer),
        brightness=_sample_brightness(payload[start:start + length], header.dtype),
        pixels=pixels,
    )


class FrameIndex:
    """Restartable iterable over the frames of one container.

    Every iteration re-opens the file and walks the complete records in
    order; ``len()`` is the frame count from the header and file size.
    """

    def __init__(self, header: ContainerHeader, sample_bytes: int = DEFAULT_SAMPLE_BYTES):
        self.header = header
        self.sample_bytes = sample_bytes

    def __len__(self) -> int:
        return self.header.frame_count

    def __iter__(self) -> Iterator[FrameIndexEntry]:
        header = self.header
        start, length = header.sample_window(self.sample_bytes)
        with open(header.path, "rb") as fh:
            for frame_index in range(1, header.frame_count + 1):
                offset = header.frame_offset(frame_index)
                sample = _read_exact(fh, offset + start, length, header, frame_index)
                trailer = _read_exact(fh, offset + header.raw_length, TRAILER_LENGTH,
                                      header, frame_index)
                yield FrameIndexEntry(
                    path=header.path,
                    frame_index=frame_index,
                    capture_time=_decode_trailer(trailer),
                    brightness=_sample_brightness(sample, header.dtype),
                )


def index_all(path: PathLike, sample_bytes: int = DEFAULT_SAMPLE_BYTES) -> FrameIndex:
    """Index timestamps and brightness of every frame in a container.

    Raises
    ------
    FormatError
        If the header is invalid (raised here, not on first iteration).
    """
    return FrameIndex(open_header(path), sample_bytes=sample_bytes)
