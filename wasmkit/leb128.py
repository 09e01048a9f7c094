"""Reading and writing integers in the LEB128 variable-length encoding."""

from __future__ import annotations

from typing import BinaryIO

_MASK32 = 0xFFFF_FFFF
_MASK64 = 0xFFFF_FFFF_FFFF_FFFF


def _to_signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _read_byte(r: BinaryIO) -> int:
    data = r.read(1)
    if not data:
        raise EOFError("unexpected end of LEB128 data")
    return data[0]


def read_var_uint32(r: BinaryIO) -> int:
    """Read an unsigned LEB128 value, truncated to 32 bits."""
    result = 0
    shift = 0
    while True:
        cur = _read_byte(r)
        if shift < 32:
            result |= (cur & 0x7F) << shift
        if not cur & 0x80:
            return result & _MASK32
        shift += 7


def read_var_int64(r: BinaryIO) -> int:
    """Read a signed LEB128 value as a 64-bit signed integer."""
    result = 0
    shift = 0
    sign = -1
    while True:
        cur = _read_byte(r)
        if shift < 64:
            result |= (cur & 0x7F) << shift
        shift += 7
        sign = _to_signed(sign << 7, 64)
        if not cur & 0x80:
            break
    result &= _MASK64
    if (sign >> 1) & result:
        result |= sign
    return _to_signed(result, 64)


def read_var_int32(r: BinaryIO) -> int:
    """Read a signed LEB128 value, truncated to a 32-bit signed integer."""
    return _to_signed(read_var_int64(r), 32)


def append_uleb128(b: bytes, v: int) -> bytes:
    """Return ``b`` followed by the unsigned LEB128 encoding of ``v``."""
    v &= _MASK64
    out = bytearray(b)
    while True:
        c = v & 0x7F
        v >>= 7
        if v:
            c |= 0x80
        out.append(c)
        if not c & 0x80:
            return bytes(out)


def append_sleb128(b: bytes, v: int) -> bytes:
    """Return ``b`` followed by the signed LEB128 encoding of ``v``."""
    v = _to_signed(v, 64)
    out = bytearray(b)
    while True:
        c = v & 0x7F
        s = v & 0x40
        v >>= 7
        if (v != -1 or s == 0) and (v != 0 or s != 0):
            c |= 0x80
        out.append(c)
        if not c & 0x80:
            return bytes(out)


def write_var_uint32(w: BinaryIO, v: int) -> int:
    """Write ``v`` as an unsigned 32-bit LEB128 value; return the byte count."""
    data = append_uleb128(b"", v & _MASK32)
    w.write(data)
    return len(data)


def write_var_int64(w: BinaryIO, v: int) -> int:
    """Write ``v`` as a signed 64-bit LEB128 value; return the byte count."""
    data = append_sleb128(b"", v)
    w.write(data)
    return len(data)