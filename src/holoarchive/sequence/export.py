"""PNG export of decoded frames.

Reconstruction software consumes holograms as individual image files named
by capture time. ``convert_sequence_files`` is the bulk path: index every
container, then write every frame.
"""

import logging
from pathlib import Path
from typing import Iterable, Union

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from holoarchive.sequence.decoder import (
    DEFAULT_SAMPLE_BYTES,
    FormatError,
    FrameReadError,
    FrameRecord,
    decode_frame,
    index_all,
)
from holoarchive.sequence.naming import format_frame_name

__all__ = ['export_frame_png', 'convert_sequence_files']

logger = logging.getLogger(__name__)

_COLUMNS = ["file", "frame", "capture_time", "brightness", "png"]


def export_frame_png(frame: FrameRecord, outdir: Union[str, Path], prefix: str) -> Path:
    """Write one frame as a grayscale PNG named by its capture time.

    Parameters
    ----------
    frame : FrameRecord
        Decoded frame.
    outdir : str or Path
        Destination directory (created if missing).
    prefix : str
        Flight or campaign prefix, e.g. ``RF04``.

    Returns
    -------
    Path
        Written file.
    """
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    path = outdir / format_frame_name(prefix, frame.capture_time)

    vmax = np.iinfo(frame.pixels.dtype).max
    plt.imsave(path, frame.pixels, cmap="gray", vmin=0, vmax=vmax)
    logger.debug("%d, %s", frame.frame_index, path.name)
    return path


def convert_sequence_files(paths: Iterable[Union[str, Path]],
                           outdir: Union[str, Path],
                           prefix: str = "hologram",
                           sample_bytes: int = DEFAULT_SAMPLE_BYTES) -> pd.DataFrame:
    """Export every frame of every container to PNG.

    Containers with an invalid header are skipped; a truncated container
    stops at the last complete frame.

    Returns
    -------
    pd.DataFrame
        One row per written frame with columns
        ``file, frame, capture_time, brightness, png``.
    """
    rows = []
    for path in paths:
        path = Path(path)
        try:
            index = index_all(path, sample_bytes=sample_bytes)
        except FormatError as e:
            logger.warning("Skipping %s: %s", path.name, e)
            continue

        logger.info("Converting %s (%d frames)", path.name, len(index))
        for entry in index:
            try:
                frame = decode_frame(path, entry.frame_index,
                                     sample_bytes=sample_bytes, header=index.header)
            except FrameReadError as e:
                logger.warning("Stopping %s at frame %d: %s", path.name, entry.frame_index, e)
                break
            png = export_frame_png(frame, outdir, prefix)
            rows.append((str(path), frame.frame_index, frame.capture_time, frame.brightness, str(png)))

    return pd.DataFrame(rows, columns=_COLUMNS)
