import numpy as np
import pytest

from mcraw.rawdata import RawDecodeError
from mcraw.rawdata_legacy import decode_legacy, decode_legacy_block, padded_width


def _pack_block(values, bits, reference):
    """Encode sixteen values as one legacy block with its header."""
    header = bytes([(bits << 4) | (reference >> 8), reference & 0xFF])
    if bits == 0:
        return header
    width = 16 if bits > 10 else bits
    stream = [(int(v) >> (width - 1 - k)) & 1 for v in values for k in range(width)]
    return header + np.packbits(np.array(stream, dtype=np.uint8)).tobytes()


def _encode_image(image):
    """Encode a uint16 image (values < 4096) in the legacy layout."""
    height, width = image.shape
    padded = padded_width(width)
    out = bytearray()
    for y in range(height):
        row = np.zeros(padded, dtype=np.int64)
        row[:width] = image[y]
        for x in range(0, padded, 32):
            for column in (row[x:x + 32:2], row[x + 1:x + 32:2]):
                reference = int(column.min())
                deltas = column - reference
                bits = int(deltas.max()).bit_length()
                if bits > 10:
                    bits = 16
                out += _pack_block(deltas, bits, reference)
    out += b"\x00"
    return bytes(out)


@pytest.mark.parametrize("width", [1, 17, 31, 32, 33, 63, 64, 100])
def test_padded_width_is_smallest_multiple_of_run(width):
    padded = padded_width(width)
    assert padded % 32 == 0
    assert padded >= width
    assert padded - width < 32


def test_padded_width_keeps_exact_multiple():
    assert padded_width(32) == 32


def test_zero_bit_block_reads_reference_only():
    values, reference, consumed = decode_legacy_block(b"\x01\x23\x00")
    assert values.tolist() == [0] * 16
    assert reference == 0x123
    assert consumed == 2


def test_one_bit_block_is_msb_first():
    values, reference, consumed = decode_legacy_block(bytes([0x10, 0x00, 0b10100000, 0x00, 0x00]))
    assert values.tolist() == [1, 0, 1] + [0] * 13
    assert reference == 0
    assert consumed == 4


def test_sixteen_bit_block_is_big_endian():
    payload = bytes([0x01, 0x02]) + b"\x00" * 30
    values, _, consumed = decode_legacy_block(bytes([0xF0, 0x00]) + payload + b"\x00")
    assert values[0] == 0x0102
    assert consumed == 34


@pytest.mark.parametrize("bits", list(range(1, 17)))
def test_block_round_trip(bits):
    rng = np.random.default_rng(bits)
    limit = 1 << (16 if bits > 10 else bits)
    expected = rng.integers(0, limit, size=16)
    data = _pack_block(expected, bits, 0xABC) + b"\x00"
    values, reference, consumed = decode_legacy_block(data)
    assert values.tolist() == expected.tolist()
    assert reference == 0xABC
    assert consumed == len(data) - 1


def test_block_at_offset():
    block = _pack_block(list(range(16)), 4, 7)
    data = b"\xee\xee\xee" + block + b"\x00"
    values, reference, consumed = decode_legacy_block(data, 3)
    assert values.tolist() == list(range(16))
    assert reference == 7
    assert consumed == len(block)


def test_missing_header_consumes_rest():
    values, reference, consumed = decode_legacy_block(b"\x10\x00\x00", 1)
    assert values is None
    assert reference is None
    assert consumed == 2


def test_block_ending_at_last_byte_is_not_decoded():
    data = _pack_block([1] * 16, 1, 5)
    values, reference, consumed = decode_legacy_block(data)
    assert values is None
    assert reference == 5
    assert consumed == len(data)


@pytest.mark.parametrize("width,height", [(32, 1), (40, 3), (64, 2), (7, 5)])
def test_decode_round_trip(width, height):
    rng = np.random.default_rng(width * 100 + height)
    image = rng.integers(0, 4096, size=(height, width)).astype(np.uint16)
    decoded = decode_legacy(_encode_image(image), width, height)
    assert decoded.shape == (height, width)
    assert decoded.dtype == np.uint16
    assert np.array_equal(decoded, image)


def test_decode_smooth_image_uses_small_blocks():
    image = np.full((2, 32), 1000, dtype=np.uint16)
    image[:, ::3] += 3
    data = _encode_image(image)
    assert np.array_equal(decode_legacy(data, 32, 2), image)


def test_exhausted_input_repeats_last_run():
    rng = np.random.default_rng(3)
    first_row = rng.integers(0, 4096, size=(1, 32)).astype(np.uint16)
    decoded = decode_legacy(_encode_image(first_row), 32, 3)
    assert np.array_equal(decoded[0], first_row[0])
    assert np.array_equal(decoded[1], first_row[0])
    assert np.array_equal(decoded[2], first_row[0])


@pytest.mark.parametrize("width,height", [(0, 4), (4, 0), (-1, 4)])
def test_invalid_dimensions_raise(width, height):
    with pytest.raises(RawDecodeError):
        decode_legacy(b"\x00\x00\x00", width, height)


def test_empty_input_raises():
    with pytest.raises(RawDecodeError):
        decode_legacy(b"", 32, 1)