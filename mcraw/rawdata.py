"""Decoder for the current MotionCam raw frame compression (type 7).

A compressed frame starts with a 16-byte little-endian header holding the
encoded width, the encoded height and the offsets of two metadata streams:
the bit depth of every block and the reference value of every block.  Pixel
data follows the header as a sequence of 64-value blocks, four blocks per
64-pixel-wide strip of four Bayer rows.
"""

from __future__ import annotations

import struct
from typing import Callable, Optional, Tuple

import numpy as np

ENCODING_BLOCK = 64
HEADER_LENGTH = 2
METADATA_OFFSET = 16

# Bytes occupied by one encoded block, indexed by its bit depth.
_BLOCK_LENGTH = (0, 8, 16, 24, 32, 40, 48, 64, 64, 80, 80, 128, 128, 128, 128, 128, 128)


class RawDecodeError(ValueError):
    """Raised when a compressed frame cannot be decoded."""


def _lanes(block: np.ndarray, start: int) -> np.ndarray:
    """Eight consecutive bytes widened to 16-bit lanes."""
    return block[start:start + 8].astype(np.uint16)


def _unpack1(block: np.ndarray) -> np.ndarray:
    p = _lanes(block, 0)
    return np.concatenate([(p >> shift) & 1 for shift in range(8)])


def _unpack2(block: np.ndarray) -> np.ndarray:
    return np.concatenate(
        [(_lanes(block, group) >> shift) & 3 for group in (0, 8) for shift in (0, 2, 4, 6)]
    )


def _unpack3(block: np.ndarray) -> np.ndarray:
    p0, p1, p2 = (_lanes(block, start) for start in (0, 8, 16))
    r2 = ((p0 >> 6) & 3) | (((p2 >> 6) & 1) << 2)
    r5 = ((p1 >> 6) & 3) | (((p2 >> 7) & 1) << 2)
    return np.concatenate(
        [p0 & 7, (p0 >> 3) & 7, r2, p1 & 7, (p1 >> 3) & 7, r5, p2 & 7, (p2 >> 3) & 7]
    )


def _unpack4(block: np.ndarray) -> np.ndarray:
    return np.concatenate(
        [(_lanes(block, group) >> shift) & 15 for group in (0, 8, 16, 24) for shift in (0, 4)]
    )


def _unpack5(block: np.ndarray) -> np.ndarray:
    p = [_lanes(block, start) for start in range(0, 40, 8)]
    low = [lane & 0x1F for lane in p]
    r5 = ((p[0] >> 5) & 7) | (((p[3] >> 5) & 3) << 3)
    r6 = ((p[1] >> 5) & 7) | (((p[4] >> 5) & 3) << 3)
    r7 = ((p[2] >> 5) & 7) | (((p[3] >> 7) & 1) << 3) | (((p[4] >> 7) & 1) << 4)
    return np.concatenate(low + [r5, r6, r7])


def _unpack6(block: np.ndarray) -> np.ndarray:
    p = [_lanes(block, start) for start in range(0, 48, 8)]
    low = [lane & 0x3F for lane in p]
    r6 = ((p[0] >> 6) & 3) | (((p[1] >> 6) & 3) << 2) | (((p[2] >> 6) & 3) << 4)
    r7 = ((p[3] >> 6) & 3) | (((p[4] >> 6) & 3) << 2) | (((p[5] >> 6) & 3) << 4)
    return np.concatenate(low + [r6, r7])


def _unpack8(block: np.ndarray) -> np.ndarray:
    return block[:64].astype(np.uint16)


def _unpack10(block: np.ndarray) -> np.ndarray:
    p = [_lanes(block, start) for start in range(0, 80, 8)]
    first = [p[i] | (((p[4] >> (2 * i)) & 3) << 8) for i in range(4)]
    second = [p[5 + i] | (((p[9] >> (2 * i)) & 3) << 8) for i in range(4)]
    return np.concatenate(first + second)


def _unpack16(block: np.ndarray) -> np.ndarray:
    return np.frombuffer(block[:128].tobytes(), dtype="<u2").astype(np.uint16)


_UNPACKERS: dict[int, Callable[[np.ndarray], np.ndarray]] = {
    1: _unpack1,
    2: _unpack2,
    3: _unpack3,
    4: _unpack4,
    5: _unpack5,
    6: _unpack6,
    7: _unpack8,
    8: _unpack8,
    9: _unpack10,
    10: _unpack10,
    **{bits: _unpack16 for bits in range(11, 17)},
}


def _as_buffer(data) -> np.ndarray:
    return np.frombuffer(data, dtype=np.uint8)


def _decode_block(bits: int, buf: np.ndarray, offset: int) -> Tuple[Optional[np.ndarray], int]:
    if not 0 <= bits <= 16:
        raise RawDecodeError(f"invalid block bit depth: {bits}")
    length = _BLOCK_LENGTH[bits]
    if offset + length > len(buf):
        return None, max(len(buf) - offset, 0)
    if bits == 0:
        return np.zeros(ENCODING_BLOCK, dtype=np.uint16), 0
    return _UNPACKERS[bits](buf[offset:offset + length]), length


def decode_block(bits: int, data, offset: int = 0) -> Tuple[Optional[np.ndarray], int]:
    """Decode one 64-value block of the given bit depth starting at ``offset``.

    Returns the decoded values and the number of bytes consumed.  When the
    block would run past the end of ``data`` the values are ``None`` and the
    rest of the input counts as consumed.
    """
    return _decode_block(bits, _as_buffer(data), offset)


def _read_u32(buf: np.ndarray, offset: int) -> int:
    if offset < 0 or offset + 4 > len(buf):
        raise RawDecodeError("truncated metadata length")
    return int.from_bytes(buf[offset:offset + 4].tobytes(), "little")


def _decode_metadata(buf: np.ndarray, offset: int) -> np.ndarray:
    count = _read_u32(buf, offset)
    offset += 4
    groups = -(-count // ENCODING_BLOCK)
    if groups * HEADER_LENGTH > len(buf) - offset:
        raise RawDecodeError("truncated metadata stream")

    values = np.zeros(groups * ENCODING_BLOCK, dtype=np.uint16)
    for start in range(0, groups * ENCODING_BLOCK, ENCODING_BLOCK):
        if offset + HEADER_LENGTH > len(buf):
            raise RawDecodeError("truncated metadata block header")
        first, second = int(buf[offset]), int(buf[offset + 1])
        bits = (first >> 4) & 0x0F
        reference = ((first & 0x0F) << 8) | second
        offset += HEADER_LENGTH

        block, consumed = _decode_block(bits, buf, offset)
        offset += consumed
        if block is not None:
            values[start:start + ENCODING_BLOCK] = block
        values[start:start + ENCODING_BLOCK] += np.uint16(reference)
    return values[:count]


def decode(data, width: int, height: int) -> np.ndarray:
    """Decode a compressed frame into a ``(height, width)`` array of uint16."""
    if width <= 0 or height <= 0:
        raise RawDecodeError(f"invalid frame dimensions {width}x{height}")

    buf = _as_buffer(data)
    if len(buf) < METADATA_OFFSET:
        raise RawDecodeError("frame shorter than its header")

    encoded_width, encoded_height, bits_offset, refs_offset = struct.unpack(
        "<4I", buf[:METADATA_OFFSET].tobytes()
    )
    if bits_offset > len(buf) or refs_offset > len(buf):
        raise RawDecodeError("metadata offset past end of frame")
    if encoded_width % ENCODING_BLOCK:
        raise RawDecodeError(f"encoded width {encoded_width} is not a multiple of {ENCODING_BLOCK}")
    if encoded_width < width:
        raise RawDecodeError(f"encoded width {encoded_width} is smaller than width {width}")

    block_bits = _decode_metadata(buf, bits_offset)
    block_refs = _decode_metadata(buf, refs_offset)

    bands = -(-encoded_height // 4)
    if bands == 0:
        raise RawDecodeError("frame has no rows")
    needed = bands * (encoded_width // ENCODING_BLOCK) * 4
    if len(block_bits) < needed or len(block_refs) < needed:
        raise RawDecodeError("metadata does not cover every block")

    output = np.zeros((height, width), dtype=np.uint16)
    rows = np.zeros((4, encoded_width), dtype=np.uint16)
    blocks = [np.zeros(ENCODING_BLOCK, dtype=np.uint16) for _ in range(4)]
    half = ENCODING_BLOCK // 2
    offset = METADATA_OFFSET
    index = 0

    for band in range(bands):
        for x in range(0, encoded_width, ENCODING_BLOCK):
            for k in range(4):
                values, consumed = _decode_block(int(block_bits[index + k]), buf, offset)
                offset += consumed
                if values is not None:
                    blocks[k] = values
            refs = block_refs[index:index + 4]
            end = x + ENCODING_BLOCK

            rows[0, x:end:2] = blocks[0][:half] + refs[0]
            rows[0, x + 1:end:2] = blocks[1][:half] + refs[1]
            rows[1, x:end:2] = blocks[2][:half] + refs[2]
            rows[1, x + 1:end:2] = blocks[3][:half] + refs[3]
            rows[2, x:end:2] = blocks[0][half:] + refs[0]
            rows[2, x + 1:end:2] = blocks[1][half:] + refs[1]
            rows[3, x:end:2] = blocks[2][half:] + refs[2]
            rows[3, x + 1:end:2] = blocks[3][half:] + refs[3]
            index += 4

        y = band * 4
        take = min(4, height - y)
        output[y:y + take] = rows[:take, :width]
        if y + 4 >= height:
            break

    return output