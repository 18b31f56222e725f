"""Reader for MotionCam ``.mcraw`` containers.

The file is memory mapped.  Opening it reads the camera metadata, the frame
index at the end of the file and, if present, the audio index that follows
the last frame.  Frames and audio chunks are then read on request.
"""

from __future__ import annotations

import json
import mmap
import os
import struct
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

import numpy as np

from .container import (
    CONTAINER_ID,
    CONTAINER_VERSION,
    INDEX_MAGIC_NUMBER,
    AudioChunk,
    AudioIndex,
    AudioMetadata,
    BufferIndex,
    BufferOffset,
    ContainerError,
    Header,
    Item,
    ItemType,
)
from .rawdata import RawDecodeError, decode
from .rawdata_legacy import decode_legacy

COMPRESSION_TYPE_LEGACY = 6
COMPRESSION_TYPE = 7

_T = TypeVar("_T")


@dataclass(frozen=True)
class RawFramePayload:
    """A frame's compressed pixels and raw JSON metadata, not yet decoded."""

    timestamp: int
    compressed: bytes
    metadata: bytes
    width: int
    height: int
    compression_type: int


def _parse_json(raw: bytes, what: str) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ContainerError(f"Invalid {what} JSON: {exc}") from exc


def _meta_int(metadata: Dict[str, Any], key: str, default: int) -> int:
    value = metadata.get(key, default)
    if isinstance(value, bool):
        raise ContainerError(f"Invalid value for {key!r} in metadata")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ContainerError(f"Invalid value for {key!r} in metadata") from exc


class Decoder:
    """Random access to the frames and audio of one ``.mcraw`` file."""

    def __init__(self, path) -> None:
        self._path = os.fspath(path)
        self._map: Optional[mmap.mmap] = None
        try:
            with open(self._path, "rb") as handle:
                self._map = mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as exc:
            raise ContainerError(f"Failed to memory map {self._path}") from exc

        self._metadata: Any = {}
        self._offsets: List[BufferOffset] = []
        self._audio_offsets: List[BufferOffset] = []
        self._frame_offsets: Dict[int, BufferOffset] = {}
        self._frames: List[int] = []
        try:
            self._init()
        except BaseException:
            self.close()
            raise

    # -- lifetime -----------------------------------------------------------

    def close(self) -> None:
        """Release the memory map."""
        if self._map is not None:
            self._map.close()
            self._map = None

    def __enter__(self) -> "Decoder":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # -- low level reads ----------------------------------------------------

    def _size(self) -> int:
        if self._map is None:
            raise ContainerError("Decoder is closed")
        return len(self._map)

    def _read(self, offset: int, size: int) -> bytes:
        """Read up to ``size`` bytes; fewer when the file ends first."""
        total = self._size()
        if offset < 0 or offset >= total or size <= 0:
            return b""
        return self._map[offset:offset + size]

    def _read_struct(self, cls: Type[_T], offset: int) -> Tuple[_T, int]:
        raw = self._read(offset, cls.SIZE)
        return cls.from_bytes(raw.ljust(cls.SIZE, b"\0")), len(raw)

    # -- opening ------------------------------------------------------------

    def _init(self) -> None:
        header, offset = self._read_struct(Header, 0)
        if header.version != CONTAINER_VERSION:
            raise ContainerError("Invalid container version")
        if header.ident != CONTAINER_ID:
            raise ContainerError("Invalid header id")

        item, read = self._read_struct(Item, offset)
        offset += read
        if item.type != ItemType.METADATA:
            raise ContainerError("Invalid camera metadata")
        raw = self._read(offset, item.size)
        self._metadata = _parse_json(raw.ljust(item.size, b"\0"), "camera metadata")

        self._read_index()
        self._reindex_offsets()
        self._read_extra()

    def _index_position(self) -> int:
        return self._size() - (BufferIndex.SIZE + Item.SIZE)

    def _read_index(self) -> None:
        offset = self._index_position()
        if offset < 0:
            raise ContainerError("Invalid file: Missing buffer index item or wrong type.")

        item, read = self._read_struct(Item, offset)
        offset += read
        if item.type != ItemType.BUFFER_INDEX:
            raise ContainerError("Invalid file: Missing buffer index item or wrong type.")

        index, _ = self._read_struct(BufferIndex, offset)
        if index.magic_number != INDEX_MAGIC_NUMBER:
            raise ContainerError("Corrupted file: Index magic number mismatch.")
        if index.num_offsets < 0:
            raise ContainerError("Corrupted file: Negative number of offsets in index.")

        wanted = BufferOffset.SIZE * index.num_offsets
        table = self._read(index.index_data_offset, wanted) if wanted else b""
        if len(table) != wanted:
            raise ContainerError("Corrupted file: Failed to read all offset data.")
        self._offsets = [BufferOffset(*v) for v in BufferOffset.STRUCT.iter_unpack(table)]

    def _reindex_offsets(self) -> None:
        self._offsets.sort(key=lambda entry: entry.timestamp)
        self._frames = [entry.timestamp for entry in self._offsets]
        self._frame_offsets = {}
        for entry in self._offsets:
            self._frame_offsets.setdefault(entry.timestamp, entry)

    def _read_extra(self) -> None:
        if not self._offsets:
            return

        last = max(self._offsets, key=lambda entry: entry.offset)
        cur = last.offset
        buffer_item, read = self._read_struct(Item, cur)
        cur += read + buffer_item.size
        metadata_item, read = self._read_struct(Item, cur)
        cur += read + metadata_item.size

        end = self._index_position()
        while cur < end:
            item, read = self._read_struct(Item, cur)
            if read != Item.SIZE:
                break
            cur += read

            if cur + item.size > end and item.type != ItemType.AUDIO_INDEX:
                break

            if item.type == ItemType.AUDIO_INDEX:
                index, read = self._read_struct(AudioIndex, cur)
                if read != AudioIndex.SIZE:
                    break
                cur += AudioIndex.SIZE
                if index.num_offsets < 0 or index.num_offsets > end // BufferOffset.SIZE:
                    break
                wanted = BufferOffset.SIZE * index.num_offsets
                table = self._read(cur, wanted) if wanted else b""
                if len(table) != wanted:
                    self._audio_offsets = []
                    break
                self._audio_offsets = [
                    BufferOffset(*v) for v in BufferOffset.STRUCT.iter_unpack(table)
                ]
                break
            if item.type in (
                ItemType.BUFFER,
                ItemType.METADATA,
                ItemType.AUDIO_DATA,
                ItemType.AUDIO_DATA_METADATA,
            ):
                cur += item.size
            else:
                break

    # -- container information ----------------------------------------------

    @property
    def frames(self) -> List[int]:
        """Frame timestamps in ascending order."""
        return list(self._frames)

    @property
    def container_metadata(self) -> Any:
        """Camera metadata stored at the start of the file."""
        return self._metadata

    def _extra_value(self, key: str) -> int:
        if not isinstance(self._metadata, dict):
            return 0
        extra = self._metadata.get("extraData")
        if not isinstance(extra, dict) or key not in extra:
            return 0
        return int(extra[key])

    @property
    def audio_sample_rate_hz(self) -> int:
        """Audio sample rate, or 0 when the file does not state it."""
        return self._extra_value("audioSampleRate")

    @property
    def num_audio_channels(self) -> int:
        """Number of audio channels, or 0 when the file does not state it."""
        return self._extra_value("audioChannels")

    # -- frames -------------------------------------------------------------

    def load_frame(self, timestamp: int) -> Tuple[np.ndarray, Dict[str, Any]]:
        """Decode the frame with ``timestamp``.

        Returns a ``(height, width)`` uint16 array and the frame's metadata.
        """
        entry = self._frame_offsets.get(timestamp)
        if entry is None:
            raise ContainerError(f"Frame not found (timestamp: {timestamp})")
        offset = entry.offset

        buffer_item, read = self._read_struct(Item, offset)
        offset += read
        if buffer_item.type != ItemType.BUFFER:
            raise ContainerError("Invalid buffer type")
        payload = self._read(offset, buffer_item.size)
        offset += len(payload)
        payload = payload.ljust(buffer_item.size, b"\0")

        metadata_item, read = self._read_struct(Item, offset)
        offset += read
        if metadata_item.type != ItemType.METADATA:
            raise ContainerError("Invalid metadata")
        raw = self._read(offset, metadata_item.size)
        metadata = _parse_json(raw.ljust(metadata_item.size, b"\0"), "frame metadata")
        if not isinstance(metadata, dict):
            raise ContainerError("Invalid frame metadata: not an object")

        width = _meta_int(metadata, "width", 0)
        height = _meta_int(metadata, "height", 0)
        compression = _meta_int(metadata, "compressionType", -1)
        if width <= 0 or height <= 0:
            raise ContainerError("Invalid frame dimensions in metadata.")

        if compression == COMPRESSION_TYPE:
            try:
                pixels = decode(payload, width, height)
            except RawDecodeError as exc:
                raise ContainerError("Failed to uncompress frame") from exc
        elif compression == COMPRESSION_TYPE_LEGACY:
            try:
                pixels = decode_legacy(payload, width, height)
            except RawDecodeError as exc:
                raise ContainerError("Failed to uncompress legacy frame") from exc
        else:
            raise ContainerError(f"Invalid compression type: {compression}")
        return pixels, metadata

    def raw_frame_payloads(self, timestamp: int) -> Optional[RawFramePayload]:
        """Return a frame's compressed data without decoding it.

        Returns ``None`` when the frame is missing, truncated, or its metadata
        lacks valid dimensions or a compression type.
        """
        entry = self._frame_offsets.get(timestamp)
        if entry is None:
            return None
        offset = entry.offset

        buffer_item, read = self._read_struct(Item, offset)
        offset += read
        if buffer_item.type != ItemType.BUFFER:
            return None
        compressed = self._read(offset, buffer_item.size)
        if len(compressed) != buffer_item.size:
            return None
        offset += buffer_item.size

        metadata_item, read = self._read_struct(Item, offset)
        offset += read
        if metadata_item.type != ItemType.METADATA:
            return None
        metadata_raw = self._read(offset, metadata_item.size)
        if len(metadata_raw) != metadata_item.size:
            return None

        try:
            metadata = _parse_json(metadata_raw, "frame metadata")
            if not isinstance(metadata, dict):
                return None
            width = _meta_int(metadata, "width", 0)
            height = _meta_int(metadata, "height", 0)
            compression = _meta_int(metadata, "compressionType", -1)
        except ContainerError:
            return None
        if width <= 0 or height <= 0 or compression == -1:
            return None

        return RawFramePayload(
            timestamp=timestamp,
            compressed=bytes(compressed),
            metadata=bytes(metadata_raw),
            width=width,
            height=height,
            compression_type=compression,
        )

    # -- audio --------------------------------------------------------------

    def _load_audio_chunk(self, entry: BufferOffset) -> AudioChunk:
        offset = entry.offset
        item, read = self._read_struct(Item, offset)
        offset += read
        if item.type != ItemType.AUDIO_DATA:
            raise ContainerError("Invalid audio data")

        raw = self._read(offset, item.size)
        offset += len(raw)
        buf = bytearray(((item.size + 1) // 2) * 2)
        buf[:len(raw)] = raw
        samples = np.frombuffer(bytes(buf), dtype="<i2").astype(np.int16)

        timestamp = -1
        meta_item, read = self._read_struct(Item, offset)
        offset += read
        if read == Item.SIZE and meta_item.type == ItemType.AUDIO_DATA_METADATA:
            metadata, _ = self._read_struct(AudioMetadata, offset)
            timestamp = metadata.timestamp_ns
        return AudioChunk(timestamp, samples)

    def iter_audio(self) -> Iterator[AudioChunk]:
        """Yield the audio chunks one at a time, in index order."""
        for entry in list(self._audio_offsets):
            yield self._load_audio_chunk(entry)

    def load_audio(self) -> List[AudioChunk]:
        """Read every audio chunk."""
        return list(self.iter_audio())