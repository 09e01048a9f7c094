"""Low-level binary reading and writing helpers for the module format."""

from __future__ import annotations

from typing import BinaryIO

from wasmkit.leb128 import read_var_uint32, write_var_uint32


class ReadPos:
    """A readable stream wrapper that counts the bytes read so far."""

    def __init__(self, raw: BinaryIO) -> None:
        self.raw = raw
        self.cur_pos = 0

    def read(self, size: int = -1) -> bytes:
        data = self.raw.read(size)
        self.cur_pos += len(data)
        return data

    def read_byte(self) -> int:
        data = self.read(1)
        if not data:
            raise EOFError("no more bytes to read")
        return data[0]


def read_bytes(r: BinaryIO, n: int) -> bytes:
    """Read exactly ``n`` bytes, raising EOFError if fewer are available."""
    buf = bytearray()
    while len(buf) < n:
        chunk = r.read(n - len(buf))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(buf)}")
        buf += chunk
    return bytes(buf)


def read_bytes_uint(r: BinaryIO) -> bytes:
    """Read a byte string prefixed by its LEB128 length."""
    return read_bytes(r, read_var_uint32(r))


def read_string_uint(r: BinaryIO) -> str:
    """Read a UTF-8 string prefixed by its LEB128 length."""
    return read_bytes_uint(r).decode("utf-8", errors="surrogateescape")


def read_u32(r: BinaryIO) -> int:
    return int.from_bytes(read_bytes(r, 4), "little")


def read_u64(r: BinaryIO) -> int:
    return int.from_bytes(read_bytes(r, 8), "little")


def write_bytes_uint(w: BinaryIO, data: bytes) -> None:
    """Write a byte string prefixed by its LEB128 length."""
    write_var_uint32(w, len(data))
    w.write(data)


def write_string_uint(w: BinaryIO, s: str) -> None:
    write_bytes_uint(w, s.encode("utf-8", errors="surrogateescape"))


def write_u32(w: BinaryIO, n: int) -> None:
    w.write((n & 0xFFFF_FFFF).to_bytes(4, "little"))


def write_u64(w: BinaryIO, n: int) -> None:
    w.write((n & 0xFFFF_FFFF_FFFF_FFFF).to_bytes(8, "little"))