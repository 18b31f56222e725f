"""Exporting the frames of a ``.mcraw`` file as DNG images.

Exports go to a folder next to the source file named after it, for example
``clip.mcraw`` exports into ``clip_DNG_Exports``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, List, Tuple

from .container import MotionCamError
from .decoder import Decoder
from .dng import DngError, write_dng

logger = logging.getLogger(__name__)

_PROGRESS_EVERY = 20


def dng_export_dir(mcraw_path: Any) -> Path:
    """Folder that DNG exports of ``mcraw_path`` are written to."""
    source = Path(os.fspath(mcraw_path))
    return source.parent / f"{source.stem}_DNG_Exports"


def dng_filename(stem: str, index: int, timestamp: int) -> str:
    """File name of the DNG for the frame at ``index`` with ``timestamp``."""
    return f"{stem}_frame_{index:06d}_ts_{timestamp}.dng"


def _prepare_dir(mcraw_path: Any) -> Path:
    out_dir = dng_export_dir(mcraw_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def save_frame_as_dng(mcraw_path: Any, frame_index: int) -> Path:
    """Decode one frame of ``mcraw_path`` and save it as a DNG.

    Returns the path written.  Raises :class:`IndexError` when the file has
    no frame at ``frame_index``.
    """
    source = Path(os.fspath(mcraw_path))
    with Decoder(source) as decoder:
        frames = decoder.frames
        if not 0 <= frame_index < len(frames):
            raise IndexError(
                f"Frame index out of bounds. Index: {frame_index}, Total frames: {len(frames)}"
            )
        timestamp = frames[frame_index]
        pixels, metadata = decoder.load_frame(timestamp)
        out_dir = _prepare_dir(source)
        target = out_dir / dng_filename(source.stem, frame_index, timestamp)
        write_dng(target, pixels, metadata, decoder.container_metadata)
    logger.info("Saved DNG %s", target)
    return target


def convert_file_to_dngs(mcraw_path: Any) -> Tuple[List[Path], int]:
    """Save every frame of ``mcraw_path`` as a DNG.

    A frame that cannot be decoded or written is skipped.  Returns the paths
    written, in frame order, and the number of frames that failed.
    """
    source = Path(os.fspath(mcraw_path))
    written: List[Path] = []
    failed = 0
    with Decoder(source) as decoder:
        frames = decoder.frames
        container = decoder.container_metadata
        out_dir = _prepare_dir(source)
        logger.info("Starting DNG conversion for %d frames from %s", len(frames), source)

        for index, timestamp in enumerate(frames):
            target = out_dir / dng_filename(source.stem, index, timestamp)
            try:
                pixels, metadata = decoder.load_frame(timestamp)
                write_dng(target, pixels, metadata, container)
            except (MotionCamError, DngError) as exc:
                logger.warning("Failed to export frame %d: %s", index, exc)
                failed += 1
            else:
                written.append(target)
            if (index + 1) % _PROGRESS_EVERY == 0 or index == len(frames) - 1:
                logger.info(
                    "Converted %d/%d frames. Success: %d, Fail: %d",
                    index + 1, len(frames), len(written), failed,
                )
    return written, failed