import io

import pytest

from wasmkit.wire import (
    ReadPos,
    read_bytes,
    read_bytes_uint,
    read_string_uint,
    read_u32,
    read_u64,
    write_bytes_uint,
    write_string_uint,
    write_u32,
    write_u64,
)

DATA = bytes([0, 1, 2, 3, 4, 5, 6, 7, 8, 9])


@pytest.mark.parametrize(
    "raw,size,want_data,want_pos",
    [
        (DATA, 0, b"", 0),
        (b"", 0, b"", 0),
        (b"", 2, b"", 0),
        (DATA, len(DATA), DATA, len(DATA)),
        (DATA[:1], 2, DATA[:1], 1),
    ],
)
def test_read_pos(raw, size, want_data, want_pos):
    r = ReadPos(io.BytesIO(raw))
    got = r.read(size)
    assert got == want_data
    assert r.cur_pos == want_pos


def test_read_pos_read_byte():
    r = ReadPos(io.BytesIO(b"\x05"))
    assert r.read_byte() == 5
    assert r.cur_pos == 1
    with pytest.raises(EOFError):
        r.read_byte()


def test_read_pos_counts_through_helpers():
    r = ReadPos(io.BytesIO(DATA))
    read_u32(r)
    assert r.cur_pos == 4


def test_write_u32_magic():
    buf = io.BytesIO()
    write_u32(buf, 0x6D736100)
    assert buf.getvalue() == b"\x00asm"


@pytest.mark.parametrize("value", [0, 1, 0x6D736100, 0xFFFFFFFF])
def test_u32_round_trip(value):
    buf = io.BytesIO()
    write_u32(buf, value)
    buf.seek(0)
    assert read_u32(buf) == value


@pytest.mark.parametrize("value", [0, 1, 2**40 + 7, 2**64 - 1])
def test_u64_round_trip(value):
    buf = io.BytesIO()
    write_u64(buf, value)
    assert len(buf.getvalue()) == 8
    buf.seek(0)
    assert read_u64(buf) == value


def test_read_bytes_short():
    with pytest.raises(EOFError):
        read_bytes(io.BytesIO(b"ab"), 3)


def test_read_u32_short():
    with pytest.raises(EOFError):
        read_u32(io.BytesIO(b"\x01\x02"))


def test_bytes_uint_round_trip():
    buf = io.BytesIO()
    write_bytes_uint(buf, b"hello")
    assert buf.getvalue()[0] == len(b"hello")
    buf.seek(0)
    assert read_bytes_uint(buf) == b"hello"


@pytest.mark.parametrize("text", ["", "env", "héllo wörld", "name"])
def test_string_uint_round_trip(text):
    buf = io.BytesIO()
    write_string_uint(buf, text)
    buf.seek(0)
    assert read_string_uint(buf) == text


def test_string_uint_preserves_invalid_utf8():
    buf = io.BytesIO()
    write_bytes_uint(buf, b"\xff\xfe")
    buf.seek(0)
    text = read_string_uint(buf)
    out = io.BytesIO()
    write_string_uint(out, text)
    assert out.getvalue() == buf.getvalue()