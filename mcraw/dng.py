"""Writing decoded MotionCam frames as DNG files.

A DNG is a little-endian TIFF with a single IFD that describes one CFA
(Bayer) image stored uncompressed as 16-bit samples, plus the colour
calibration the camera recorded in the container metadata.
"""

from __future__ import annotations

import math
import os
import struct
from fractions import Fraction
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import numpy as np

DEFAULT_CAMERA_MODEL = "MotionCam App Player Export"

ILLUMINANT_D65 = 21
ILLUMINANT_STANDARD_A = 17

TIFF_BYTE = 1
TIFF_ASCII = 2
TIFF_SHORT = 3
TIFF_LONG = 4
TIFF_RATIONAL = 5
TIFF_SRATIONAL = 10

TAG_NEW_SUBFILE_TYPE = 254
TAG_IMAGE_WIDTH = 256
TAG_IMAGE_LENGTH = 257
TAG_BITS_PER_SAMPLE = 258
TAG_COMPRESSION = 259
TAG_PHOTOMETRIC = 262
TAG_STRIP_OFFSETS = 273
TAG_SAMPLES_PER_PIXEL = 277
TAG_ROWS_PER_STRIP = 278
TAG_STRIP_BYTE_COUNTS = 279
TAG_PLANAR_CONFIG = 284
TAG_CFA_REPEAT_PATTERN_DIM = 33421
TAG_CFA_PATTERN = 33422
TAG_DNG_VERSION = 50706
TAG_DNG_BACKWARD_VERSION = 50707
TAG_UNIQUE_CAMERA_MODEL = 50708
TAG_CFA_LAYOUT = 50711
TAG_BLACK_LEVEL_REPEAT_DIM = 50713
TAG_BLACK_LEVEL = 50714
TAG_WHITE_LEVEL = 50717
TAG_COLOR_MATRIX1 = 50721
TAG_COLOR_MATRIX2 = 50722
TAG_AS_SHOT_NEUTRAL = 50728
TAG_CALIBRATION_ILLUMINANT1 = 50778
TAG_CALIBRATION_ILLUMINANT2 = 50779
TAG_ACTIVE_AREA = 50829
TAG_FORWARD_MATRIX1 = 50964
TAG_FORWARD_MATRIX2 = 50965

COMPRESSION_NONE = 1
PHOTOMETRIC_CFA = 32803
PLANARCONFIG_CONTIG = 1
CFA_LAYOUT_RECTANGULAR = 1

DNG_VERSION = (1, 4, 0, 0)
DNG_BACKWARD_VERSION = (1, 1, 0, 0)

_IDENTITY = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0)

_CFA_PATTERNS = {
    "RGGB": (0, 1, 1, 2),
    "BGGR": (2, 1, 1, 0),
    "GRBG": (1, 0, 2, 1),
    "GBRG": (1, 2, 0, 1),
}

_TYPE_SIZES = {
    TIFF_BYTE: 1,
    TIFF_ASCII: 1,
    TIFF_SHORT: 2,
    TIFF_LONG: 4,
    TIFF_RATIONAL: 8,
    TIFF_SRATIONAL: 8,
}

_INT32_MAX = 2**31 - 1
_UINT32_MAX = 2**32 - 1


class DngError(ValueError):
    """Raised when a frame cannot be written as a DNG."""


def cfa_pattern(arrangement: str) -> Tuple[int, int, int, int]:
    """Return the DNG CFA colour indices for a sensor arrangement such as ``"rggb"``."""
    try:
        return _CFA_PATTERNS[str(arrangement).upper()]
    except KeyError:
        raise DngError(
            f"Invalid or unsupported sensorArrangement for DNG CFA pattern: {arrangement}"
        ) from None


def _lookup(metadata: Mapping[str, Any], keys: Sequence[str], default: Any) -> Any:
    for key in keys:
        if key in metadata:
            return metadata[key]
    return default


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DngError(f"Invalid value for {name!r} in metadata")
    return float(value)


def _number_list(value: Any, name: str) -> List[float]:
    if not isinstance(value, (list, tuple)):
        raise DngError(f"Invalid value for {name!r} in metadata")
    return [_number(item, name) for item in value]


def _matrix(metadata: Mapping[str, Any], keys: Sequence[str]) -> List[float]:
    value = _lookup(metadata, keys, None)
    if isinstance(value, (list, tuple)) and len(value) == 9:
        return _number_list(value, keys[0])
    return list(_IDENTITY)


def _black_levels(container: Mapping[str, Any]) -> List[int]:
    levels = _number_list(_lookup(container, ("blackLevel",), [0.0] * 4), "blackLevel")
    if not levels:
        levels = [0.0] * 4
    elif len(levels) == 1:
        levels = levels * 4
    elif len(levels) != 4:
        levels = (levels + [levels[0]] * 4)[:4]

    result = []
    for level in levels:
        if level < 0.0:
            result.append(0)
        elif level > 65535.0:
            result.append(65535)
        else:
            result.append(int(math.floor(level + 0.5)))
    return result


def _rational(value: float, signed: bool) -> Tuple[int, int]:
    value = float(np.float32(value))
    if not math.isfinite(value):
        raise DngError(f"Cannot store {value} as a rational")
    if not signed and value < 0:
        raise DngError(f"Cannot store negative value {value} as an unsigned rational")
    limit = _INT32_MAX if signed else _UINT32_MAX
    max_den = max(1, min(1_000_000, int(limit / max(abs(value), 1.0))))
    frac = Fraction(value).limit_denominator(max_den)
    low = -_INT32_MAX - 1 if signed else 0
    return max(low, min(limit, frac.numerator)), frac.denominator


def _payload(type_: int, values: Sequence[Any]) -> bytes:
    count = len(values)
    if type_ == TIFF_BYTE:
        return bytes(values)
    if type_ == TIFF_SHORT:
        return struct.pack(f"<{count}H", *values)
    if type_ == TIFF_LONG:
        return struct.pack(f"<{count}I", *values)
    if type_ in (TIFF_RATIONAL, TIFF_SRATIONAL):
        signed = type_ == TIFF_SRATIONAL
        parts = [part for value in values for part in _rational(value, signed)]
        return struct.pack(f"<{2 * count}{'i' if signed else 'I'}", *parts)
    raise DngError(f"Unsupported TIFF type {type_}")


def _image_bytes(data: Any) -> bytes:
    if isinstance(data, np.ndarray):
        return np.ascontiguousarray(data, dtype="<u2").tobytes()
    return bytes(data)


def _serialize(entries: Dict[int, Tuple[int, int, bytes]], image: bytes) -> bytes:
    ifd_offset = 8
    ifd_size = 2 + 12 * (len(entries) + 1) + 4
    extra_start = ifd_offset + ifd_size
    extra_size = sum(
        len(payload) + len(payload) % 2
        for _, _, payload in entries.values()
        if len(payload) > 4
    )
    image_offset = extra_start + extra_size
    entries = dict(entries)
    entries[TAG_STRIP_OFFSETS] = (TIFF_LONG, 1, _payload(TIFF_LONG, [image_offset]))

    table = bytearray(struct.pack("<H", len(entries)))
    extra = bytearray()
    for tag in sorted(entries):
        type_, count, payload = entries[tag]
        if len(payload) <= 4:
            field = payload.ljust(4, b"\0")
        else:
            field = struct.pack("<I", extra_start + len(extra))
            extra += payload
            if len(payload) % 2:
                extra += b"\0"
        table += struct.pack("<HHI", tag, type_, count) + field
    table += struct.pack("<I", 0)

    return b"II*\x00" + struct.pack("<I", ifd_offset) + bytes(table) + bytes(extra) + image


def build_dng(
    data: Any,
    frame_metadata: Mapping[str, Any],
    container_metadata: Mapping[str, Any],
    camera_model: str = DEFAULT_CAMERA_MODEL,
) -> bytes:
    """Return the bytes of a DNG holding one decoded frame.

    ``data`` is the frame's 16-bit samples, either as a numpy array or as
    little-endian bytes.
    """
    width = int(_number(frame_metadata.get("width", 0), "width"))
    height = int(_number(frame_metadata.get("height", 0), "height"))
    if width <= 0 or height <= 0:
        raise DngError("Invalid frame dimensions (width or height is zero).")

    image = _image_bytes(data)
    expected = width * height * 2
    if len(image) < expected:
        raise DngError(
            f"Insufficient image data for given dimensions. Expected bytes: {expected}, "
            f"Got: {len(image)}"
        )

    neutral = _number_list(frame_metadata.get("asShotNeutral", [1.0, 1.0, 1.0]), "asShotNeutral")
    black = _black_levels(container_metadata)
    white = _number(_lookup(container_metadata, ("whiteLevel",), 65535.0), "whiteLevel")
    white_level = max(0, min(_UINT32_MAX, int(math.floor(float(np.float32(white)) + 0.5))))
    arrangement = _lookup(
        container_metadata, ("sensorArrangement", "sensorArrangment"), "BGGR"
    )
    pattern = cfa_pattern(arrangement)

    color1 = _matrix(container_metadata, ("ColorMatrix", "colorMatrix1"))
    color2 = _matrix(container_metadata, ("ColorMatrix2", "colorMatrix2"))
    forward1 = _matrix(container_metadata, ("ForwardMatrix1", "forwardMatrix1"))
    forward2 = _matrix(container_metadata, ("ForwardMatrix2", "forwardMatrix2"))

    model = str(camera_model).encode("ascii", errors="replace") + b"\0"

    fields: List[Tuple[int, int, Sequence[Any]]] = [
        (TAG_NEW_SUBFILE_TYPE, TIFF_LONG, [0]),
        (TAG_IMAGE_WIDTH, TIFF_LONG, [width]),
        (TAG_IMAGE_LENGTH, TIFF_LONG, [height]),
        (TAG_BITS_PER_SAMPLE, TIFF_SHORT, [16]),
        (TAG_COMPRESSION, TIFF_SHORT, [COMPRESSION_NONE]),
        (TAG_PHOTOMETRIC, TIFF_SHORT, [PHOTOMETRIC_CFA]),
        (TAG_SAMPLES_PER_PIXEL, TIFF_SHORT, [1]),
        (TAG_ROWS_PER_STRIP, TIFF_LONG, [height]),
        (TAG_STRIP_BYTE_COUNTS, TIFF_LONG, [len(image)]),
        (TAG_PLANAR_CONFIG, TIFF_SHORT, [PLANARCONFIG_CONTIG]),
        (TAG_CFA_REPEAT_PATTERN_DIM, TIFF_SHORT, [2, 2]),
        (TAG_CFA_PATTERN, TIFF_BYTE, pattern),
        (TAG_DNG_VERSION, TIFF_BYTE, DNG_VERSION),
        (TAG_DNG_BACKWARD_VERSION, TIFF_BYTE, DNG_BACKWARD_VERSION),
        (TAG_CFA_LAYOUT, TIFF_SHORT, [CFA_LAYOUT_RECTANGULAR]),
        (TAG_BLACK_LEVEL_REPEAT_DIM, TIFF_SHORT, [2, 2]),
        (TAG_BLACK_LEVEL, TIFF_SHORT, black),
        (TAG_WHITE_LEVEL, TIFF_LONG, [white_level]),
        (TAG_COLOR_MATRIX1, TIFF_SRATIONAL, color1),
        (TAG_COLOR_MATRIX2, TIFF_SRATIONAL, color2),
        (TAG_AS_SHOT_NEUTRAL, TIFF_RATIONAL, neutral),
        (TAG_CALIBRATION_ILLUMINANT1, TIFF_SHORT, [ILLUMINANT_D65]),
        (TAG_CALIBRATION_ILLUMINANT2, TIFF_SHORT, [ILLUMINANT_STANDARD_A]),
        (TAG_ACTIVE_AREA, TIFF_LONG, [0, 0, height, width]),
        (TAG_FORWARD_MATRIX1, TIFF_SRATIONAL, forward1),
        (TAG_FORWARD_MATRIX2, TIFF_SRATIONAL, forward2),
    ]
    entries = {tag: (type_, len(values), _payload(type_, values)) for tag, type_, values in fields}
    entries[TAG_UNIQUE_CAMERA_MODEL] = (TIFF_ASCII, len(model), model)
    return _serialize(entries, image)


def write_dng(
    path: Any,
    data: Any,
    frame_metadata: Mapping[str, Any],
    container_metadata: Mapping[str, Any],
    camera_model: str = DEFAULT_CAMERA_MODEL,
) -> None:
    """Write one decoded frame to ``path`` as a DNG."""
    blob = build_dng(data, frame_metadata, container_metadata, camera_model)
    try:
        with open(os.fspath(path), "wb") as handle:
            handle.write(blob)
    except OSError as exc:
        raise DngError(f"Failed to write {path}: {exc}") from exc