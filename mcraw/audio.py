"""Writing the audio track of a MotionCam container as a WAV file."""

from __future__ import annotations

import os
import wave
from typing import Any, Iterable, List

import numpy as np


def _samples(chunk: Any) -> np.ndarray:
    return np.asarray(chunk[1], dtype=np.int16).ravel()


def channel_samples(chunks: Iterable[Any], num_channels: int) -> List[np.ndarray]:
    """Split interleaved audio chunks into one int16 array per channel.

    Mono and stereo audio are supported; for any other channel count the
    channels are returned empty.  A trailing unpaired stereo sample is dropped.
    """
    if num_channels <= 0:
        return []
    chunk_list = [_samples(chunk) for chunk in chunks]
    if num_channels == 1:
        joined = np.concatenate(chunk_list) if chunk_list else np.zeros(0, dtype=np.int16)
        return [joined.astype(np.int16)]
    if num_channels == 2:
        left: List[np.ndarray] = []
        right: List[np.ndarray] = []
        for samples in chunk_list:
            pairs = samples[: len(samples) // 2 * 2]
            left.append(pairs[0::2])
            right.append(pairs[1::2])
        empty = np.zeros(0, dtype=np.int16)
        return [
            np.concatenate(left).astype(np.int16) if left else empty,
            np.concatenate(right).astype(np.int16) if right else empty.copy(),
        ]
    return [np.zeros(0, dtype=np.int16) for _ in range(num_channels)]


def write_wav(path: Any, sample_rate_hz: int, num_channels: int, chunks: Iterable[Any]) -> None:
    """Write audio chunks to ``path`` as a 16-bit PCM WAV file."""
    if num_channels <= 0:
        raise ValueError(f"invalid number of audio channels: {num_channels}")
    if sample_rate_hz <= 0:
        raise ValueError(f"invalid audio sample rate: {sample_rate_hz}")

    channels = channel_samples(chunks, num_channels)
    frames = np.stack(channels, axis=1).astype("<i2").tobytes()
    with wave.open(os.fspath(path), "wb") as out:
        out.setnchannels(num_channels)
        out.setsampwidth(2)
        out.setframerate(int(sample_rate_hz))
        out.writeframes(frames)