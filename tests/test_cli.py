import json
import struct
import wave
from pathlib import Path

import numpy as np
import pytest

from mcraw.cli import main
from mcraw.container import (
    CONTAINER_ID,
    CONTAINER_VERSION,
    INDEX_MAGIC_NUMBER,
    AudioIndex,
    AudioMetadata,
    BufferIndex,
    BufferOffset,
    Header,
    Item,
    ItemType,
)
from mcraw.decoder import Decoder
from mcraw.dng import build_dng

SAMPLE_RATE = 48000
AUDIO = [[1, 2, 3, 4], [-5, 6, 7, -8]]


def _frame_payload(level):
    header = struct.pack("<4I", 64, 4, 16, 22)
    bits = struct.pack("<I", 4) + bytes([0, 0])
    refs = struct.pack("<I", 4) + bytes([(level >> 8) & 0x0F, level & 0xFF])
    return header + bits + refs


def _write_mcraw(path, frames, with_audio=True):
    container_meta = {
        "blackLevel": [64],
        "whiteLevel": 1023,
        "sensorArrangment": "bggr",
        "colorMatrix1": [1, 0, 0, 0, 1, 0, 0, 0, 1],
        "colorMatrix2": [1, 0, 0, 0, 1, 0, 0, 0, 1],
        "forwardMatrix1": [1, 0, 0, 0, 1, 0, 0, 0, 1],
        "forwardMatrix2": [1, 0, 0, 0, 1, 0, 0, 0, 1],
    }
    if with_audio:
        container_meta["extraData"] = {"audioSampleRate": SAMPLE_RATE, "audioChannels": 2}
    out = bytearray(Header(CONTAINER_ID, CONTAINER_VERSION).to_bytes())
    meta = json.dumps(container_meta).encode()
    out += Item(ItemType.METADATA, len(meta)).to_bytes() + meta

    offsets = []
    for timestamp, level in frames:
        offsets.append(BufferOffset(len(out), timestamp))
        payload = _frame_payload(level)
        out += Item(ItemType.BUFFER, len(payload)).to_bytes() + payload
        frame_meta = json.dumps(
            {"width": 8, "height": 4, "compressionType": 7, "asShotNeutral": [0.5, 1.0, 0.5]}
        ).encode()
        out += Item(ItemType.METADATA, len(frame_meta)).to_bytes() + frame_meta

    if with_audio:
        audio_offsets = []
        for number, samples in enumerate(AUDIO):
            audio_offsets.append(BufferOffset(len(out), number))
            raw = np.array(samples, dtype="<i2").tobytes()
            out += Item(ItemType.AUDIO_DATA, len(raw)).to_bytes() + raw
            out += Item(ItemType.AUDIO_DATA_METADATA, AudioMetadata.SIZE).to_bytes()
            out += AudioMetadata(number * 1000).to_bytes()
        table = b"".join(entry.to_bytes() for entry in audio_offsets)
        out += Item(ItemType.AUDIO_INDEX, AudioIndex.SIZE + len(table)).to_bytes()
        out += AudioIndex(len(audio_offsets), 0).to_bytes() + table

    index_offset = len(out)
    for entry in offsets:
        out += entry.to_bytes()
    out += Item(ItemType.BUFFER_INDEX, BufferIndex.SIZE).to_bytes()
    out += BufferIndex(INDEX_MAGIC_NUMBER, len(offsets), index_offset).to_bytes()
    Path(path).write_bytes(bytes(out))
    return Path(path)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_exports_all_frames_and_audio(workdir, capsys):
    source = _write_mcraw(workdir / "clip.mcraw", [(100, 300), (200, 400)])
    assert main([str(source)]) == 0

    out = capsys.readouterr().out
    assert "Found 2 frames" in out
    assert "Writing frame_000001.dng" in out
    assert sorted(p.name for p in workdir.glob("*.dng")) == ["frame_000000.dng", "frame_000001.dng"]

    with Decoder(source) as decoder:
        pixels, metadata = decoder.load_frame(100)
        expected = build_dng(pixels, metadata, decoder.container_metadata, "MotionCam")
    assert (workdir / "frame_000000.dng").read_bytes() == expected


def test_audio_round_trip(workdir):
    source = _write_mcraw(workdir / "clip.mcraw", [(100, 300)])
    assert main([str(source)]) == 0
    with wave.open(str(workdir / "audio.wav"), "rb") as wav:
        assert wav.getnchannels() == 2
        assert wav.getframerate() == SAMPLE_RATE
        assert wav.getsampwidth() == 2
        data = wav.readframes(wav.getnframes())
    expected = np.array([s for chunk in AUDIO for s in chunk], dtype="<i2").tobytes()
    assert data == expected


def test_no_audio_written_without_audio_metadata(workdir):
    source = _write_mcraw(workdir / "clip.mcraw", [(100, 300)], with_audio=False)
    assert main([str(source)]) == 0
    assert not (workdir / "audio.wav").exists()
    assert (workdir / "frame_000000.dng").is_file()


def test_frame_limit(workdir):
    source = _write_mcraw(workdir / "clip.mcraw", [(100, 300), (200, 400), (300, 500)])
    assert main([str(source), "-n", "1"]) == 0
    assert [p.name for p in workdir.glob("*.dng")] == ["frame_000000.dng"]


def test_zero_frame_limit_writes_no_frames(workdir, capsys):
    source = _write_mcraw(workdir / "clip.mcraw", [(100, 300), (200, 400)])
    assert main([str(source), "-n", "0"]) == 0
    assert list(workdir.glob("*.dng")) == []
    assert "Found 2 frames" in capsys.readouterr().out


def test_negative_limit_exports_everything(workdir):
    source = _write_mcraw(workdir / "clip.mcraw", [(100, 300), (200, 400)])
    assert main([str(source), "-n", "-1"]) == 0
    assert len(list(workdir.glob("*.dng"))) == 2


def test_missing_file_reports_error(workdir, capsys):
    status = main([str(workdir / "missing.mcraw")])
    assert status == 1
    assert capsys.readouterr().err.startswith("Error:")


def test_missing_argument_exits():
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2