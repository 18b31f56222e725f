# mcraw

Read MotionCam `.mcraw` containers from Python: list frames, decode the
compressed Bayer data (current type 7 and legacy type 6 encodings), read the
audio track, and export frames as DNG files and audio as a WAV file.

## Install

```
pip install .
```

## Command line

```
mcraw <input file> [-n number of frames to export]
```

This prints the number of frames found and writes `frame_000000.dng`,
`frame_000001.dng`, … into the current directory. With `-n` only the first
frames are exported. When the file states an audio sample rate and channel
count, the audio is written to `audio.wav` as well. On a container or DNG
error the command prints `Error: …` and exits with status 1.

## Library

```python
from mcraw.decoder import Decoder
from mcraw.dng import write_dng
from mcraw.audio import write_wav

with Decoder("clip.mcraw") as decoder:
    timestamps = decoder.frames             # ascending frame timestamps
    meta = decoder.container_metadata       # camera metadata (parsed JSON)

    pixels, frame_meta = decoder.load_frame(timestamps[0])  # (height, width) uint16
    write_dng("first.dng", pixels, frame_meta, meta, "MotionCam")

    if decoder.audio_sample_rate_hz and decoder.num_audio_channels:
        write_wav(
            "audio.wav",
            decoder.audio_sample_rate_hz,
            decoder.num_audio_channels,
            decoder.load_audio(),
        )
```

`frames`, `container_metadata`, `audio_sample_rate_hz` and
`num_audio_channels` are properties. Other useful pieces:

- `Decoder.raw_frame_payloads(timestamp)` returns a `RawFramePayload` with the
  compressed bytes, raw metadata JSON, width, height and compression type, or
  `None` when the frame is missing or incomplete. `Decoder.iter_audio()` yields
  `AudioChunk(timestamp, samples)` tuples one at a time.
- `mcraw.rawdata.decode` and `mcraw.rawdata_legacy.decode_legacy` decode a
  single compressed frame payload into a `(height, width)` uint16 array;
  they raise `mcraw.rawdata.RawDecodeError` on bad input.
- `mcraw.dng.build_dng` returns DNG bytes; `mcraw.dng.cfa_pattern` maps a
  sensor arrangement such as `"rggb"` to its CFA indices. Both raise
  `mcraw.dng.DngError` on bad input.
- `mcraw.audio.channel_samples` splits interleaved mono or stereo chunks into
  per-channel arrays.
- `mcraw.export.save_frame_as_dng(path, index)` and
  `mcraw.export.convert_file_to_dngs(path)` write DNGs named
  `<stem>_frame_<index>_ts_<timestamp>.dng` into a `<stem>_DNG_Exports`
  folder next to the clip. The latter returns the paths written and the
  number of frames that failed.
- `mcraw.playlist.list_mcraw_files` lists the clips in a folder in order, and
  `mcraw.playlist.soft_delete` moves a clip into a `_deleted_mcraw_files_`
  folder instead of removing it.
- `mcraw.playlist.send_to_motioncam_fs` starts `motioncam-fs -f <file>` in
  the background for each clip if that executable is found, and returns the
  counts of launches that succeeded and failed.

Errors in the container raise `mcraw.container.ContainerError`, a subclass of
`mcraw.container.MotionCamError`.

## What it does not do

There is no viewer or player: the package does not display frames, play
audio, or keep playback in sync. It reads, decodes and exports only.

## Tests

```
pip install .[test]
pytest
```