"""Binary layout of the MotionCam ``.mcraw`` container.

Every record is stored little-endian with no padding.  A file starts with a
:class:`Header`, followed by typed :class:`Item` records, and ends with a
buffer index that points at a table of :class:`BufferOffset` entries.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, NamedTuple, Union

import numpy as np

INDEX_MAGIC_NUMBER = 0x8A905612
CONTAINER_VERSION = 3
CONTAINER_ID = b"MOTION "


class MotionCamError(Exception):
    """Base class for errors raised while reading MotionCam data."""


class ContainerError(MotionCamError):
    """Raised when the container is malformed or cannot be read."""


class AudioChunk(NamedTuple):
    """A run of interleaved 16-bit audio samples and its timestamp in ns.

    The timestamp is -1 when the file carries no timing for the chunk.
    """

    timestamp: int
    samples: np.ndarray


class ItemType(IntEnum):
    """Kind of record stored in the container."""

    BUFFER_INDEX = 0
    BUFFER_INDEX_DATA = 1
    BUFFER = 2
    METADATA = 3
    AUDIO_INDEX = 4
    AUDIO_DATA = 5
    AUDIO_DATA_METADATA = 6


def _unpack(layout: struct.Struct, data, name: str) -> tuple:
    if len(data) < layout.size:
        raise ContainerError(
            f"{name} needs {layout.size} bytes, got {len(data)}"
        )
    return layout.unpack_from(bytes(data[:layout.size]))


@dataclass(frozen=True)
class Header:
    """File header: a seven-byte identifier and a format version."""

    ident: bytes
    version: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<7sB")
    SIZE: ClassVar[int] = STRUCT.size

    @classmethod
    def from_bytes(cls, data) -> "Header":
        ident, version = _unpack(cls.STRUCT, data, "header")
        return cls(ident, version)

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.ident, self.version)


@dataclass(frozen=True)
class Item:
    """Record header: its type and the size in bytes of the payload after it.

    Types the format does not define are kept as plain integers.
    """

    type: Union[ItemType, int]
    size: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<II")
    SIZE: ClassVar[int] = STRUCT.size

    @classmethod
    def from_bytes(cls, data) -> "Item":
        raw_type, size = _unpack(cls.STRUCT, data, "item")
        try:
            item_type: Union[ItemType, int] = ItemType(raw_type)
        except ValueError:
            item_type = raw_type
        return cls(item_type, size)

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(int(self.type), self.size)


@dataclass(frozen=True)
class BufferOffset:
    """File offset of a record together with its timestamp."""

    offset: int
    timestamp: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<qq")
    SIZE: ClassVar[int] = STRUCT.size

    @classmethod
    def from_bytes(cls, data) -> "BufferOffset":
        return cls(*_unpack(cls.STRUCT, data, "buffer offset"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.offset, self.timestamp)


@dataclass(frozen=True)
class BufferIndex:
    """Trailer locating the table of frame offsets."""

    magic_number: int
    num_offsets: int
    index_data_offset: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<Iiq")
    SIZE: ClassVar[int] = STRUCT.size

    @classmethod
    def from_bytes(cls, data) -> "BufferIndex":
        return cls(*_unpack(cls.STRUCT, data, "buffer index"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.magic_number, self.num_offsets, self.index_data_offset)


@dataclass(frozen=True)
class AudioIndex:
    """Header of the table of audio chunk offsets."""

    num_offsets: int
    start_timestamp_ms: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<qq")
    SIZE: ClassVar[int] = STRUCT.size

    @classmethod
    def from_bytes(cls, data) -> "AudioIndex":
        return cls(*_unpack(cls.STRUCT, data, "audio index"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.num_offsets, self.start_timestamp_ms)


@dataclass(frozen=True)
class AudioMetadata:
    """Timing that follows an audio chunk."""

    timestamp_ns: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<q")
    SIZE: ClassVar[int] = STRUCT.size

    @classmethod
    def from_bytes(cls, data) -> "AudioMetadata":
        return cls(*_unpack(cls.STRUCT, data, "audio metadata"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.timestamp_ns)