"""Decoder for the legacy MotionCam raw frame compression (type 6).

Each row is split into 32-pixel runs.  A run is stored as two blocks of
sixteen values, one for the even and one for the odd columns.  Every block
starts with a two-byte header holding its bit depth (upper nibble) and a
12-bit reference value; the values follow as an MSB-first bit stream.
Depths above 10 bits are stored as big-endian 16-bit values.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .rawdata import RawDecodeError

BLOCK_SIZE = 16
ENCODING_BLOCK = BLOCK_SIZE * 2
HEADER_LENGTH = 2

# Bytes occupied by one block's values, indexed by its bit depth.
_BLOCK_LENGTH = (0, 2, 4, 6, 8, 10, 12, 14, 16, 18, 20, 32, 32, 32, 32, 32, 32)


def padded_width(width: int) -> int:
    """Round ``width`` up to a whole number of 32-pixel runs."""
    return ENCODING_BLOCK * ((width + ENCODING_BLOCK - 1) // ENCODING_BLOCK)


def _unpack(block: np.ndarray, bits: int) -> np.ndarray:
    if bits == 0:
        return np.zeros(BLOCK_SIZE, dtype=np.uint16)
    width = 16 if bits > 10 else bits
    stream = np.unpackbits(block).reshape(BLOCK_SIZE, width).astype(np.uint32)
    weights = np.left_shift(np.uint32(1), np.arange(width - 1, -1, -1, dtype=np.uint32))
    return (stream @ weights).astype(np.uint16)


def _decode_block(
    buf: np.ndarray, offset: int
) -> Tuple[Optional[np.ndarray], Optional[int], int]:
    size = len(buf)
    if offset + HEADER_LENGTH >= size:
        return None, None, max(size - offset, 0)

    first, second = int(buf[offset]), int(buf[offset + 1])
    bits = min((first >> 4) & 0x0F, 16)
    reference = ((first & 0x0F) << 8) | second

    length = _BLOCK_LENGTH[bits]
    start = offset + HEADER_LENGTH
    if start + length >= size:
        return None, reference, size - offset

    return _unpack(buf[start:start + length], bits), reference, HEADER_LENGTH + length


def decode_legacy_block(data, offset: int = 0) -> Tuple[Optional[np.ndarray], Optional[int], int]:
    """Decode the sixteen-value block whose header starts at ``offset``.

    Returns ``(values, reference, consumed)``.  Values are ``None`` when the
    block does not end before the last byte of ``data``; the reference is
    ``None`` when even the header does.  In both cases the rest of the input
    counts as consumed.
    """
    return _decode_block(np.frombuffer(data, dtype=np.uint8), offset)


def decode_legacy(data, width: int, height: int) -> np.ndarray:
    """Decode a legacy compressed frame into a ``(height, width)`` uint16 array.

    Once the input runs out, every remaining run repeats the last decoded
    blocks and references.
    """
    if width <= 0 or height <= 0:
        raise RawDecodeError(f"invalid frame dimensions {width}x{height}")
    buf = np.frombuffer(data, dtype=np.uint8)
    if len(buf) == 0:
        raise RawDecodeError("empty frame")

    padded = padded_width(width)
    output = np.empty((height, width), dtype=np.uint16)
    row = np.zeros(padded, dtype=np.uint16)
    even = np.zeros(BLOCK_SIZE, dtype=np.uint16)
    odd = np.zeros(BLOCK_SIZE, dtype=np.uint16)
    ref_even = ref_odd = 0
    offset = 0

    for y in range(height):
        for x in range(0, padded, ENCODING_BLOCK):
            values, reference, consumed = _decode_block(buf, offset)
            offset += consumed
            if reference is not None:
                ref_even = reference
            if values is not None:
                even = values

            values, reference, consumed = _decode_block(buf, offset)
            offset += consumed
            if reference is not None:
                ref_odd = reference
            if values is not None:
                odd = values

            row[x:x + ENCODING_BLOCK:2] = even + np.uint16(ref_even)
            row[x + 1:x + ENCODING_BLOCK:2] = odd + np.uint16(ref_odd)
        output[y] = row[:width]

    return output