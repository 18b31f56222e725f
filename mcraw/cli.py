"""Command line exporter: every frame of an ``.mcraw`` file as DNG plus its audio as WAV.

Files are written to the current directory as ``frame_NNNNNN.dng`` and
``audio.wav``.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from .audio import write_wav
from .container import MotionCamError
from .decoder import Decoder
from .dng import DngError, write_dng

CAMERA_MODEL = "MotionCam"
AUDIO_FILENAME = "audio.wav"


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcraw",
        description="Export the frames of an .mcraw file as DNG and its audio as WAV.",
    )
    parser.add_argument("input", help="input .mcraw file")
    parser.add_argument(
        "-n",
        dest="count",
        type=int,
        default=-1,
        help="number of frames to export (default: all)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the exporter and return the process exit status."""
    args = _parser().parse_args(argv)
    try:
        with Decoder(args.input) as decoder:
            frames = decoder.frames
            print(f"Found {len(frames)} frames")
            end = len(frames) if args.count < 0 else min(len(frames), args.count)

            rate = decoder.audio_sample_rate_hz
            channels = decoder.num_audio_channels
            if rate > 0 and channels > 0:
                write_wav(AUDIO_FILENAME, rate, channels, decoder.iter_audio())

            container = decoder.container_metadata
            for index, timestamp in enumerate(frames[:end]):
                pixels, metadata = decoder.load_frame(timestamp)
                path = f"frame_{index:06d}.dng"
                print(f"Writing {path}")
                write_dng(path, pixels, metadata, container, camera_model=CAMERA_MODEL)
    except (MotionCamError, DngError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())