import io
import struct

import pytest

from wasmkit.initexpr import (
    EmptyInitExprError,
    InvalidGlobalIndexError,
    InvalidInitExprOpError,
    exec_init_expr,
    read_init_expr,
)
from wasmkit.leb128 import append_sleb128, append_uleb128
from wasmkit.types import ValueType


def _no_globals(index):
    return None


GLOBAL_TYPES = [ValueType.I32, ValueType.F32]


def _globals(index):
    return GLOBAL_TYPES[index] if index < len(GLOBAL_TYPES) else None


def _i32(value):
    return append_sleb128(b"\x41", value)


def _i64(value):
    return append_sleb128(b"\x42", value)


def test_read_init_expr_stops_after_end():
    stream = io.BytesIO(_i32(5) + b"\x0b\xff")
    assert read_init_expr(stream) == _i32(5) + b"\x0b"
    assert stream.read() == b"\xff"


def test_read_init_expr_all_ops():
    expr = (
        _i32(-7)
        + _i64(2**40)
        + b"\x43" + struct.pack("<f", 1.5)
        + b"\x44" + struct.pack("<d", 2.25)
        + append_uleb128(b"\x23", 1)
        + b"\x0b"
    )
    assert read_init_expr(io.BytesIO(expr + b"rest")) == expr


def test_read_init_expr_invalid_op():
    with pytest.raises(InvalidInitExprOpError) as info:
        read_init_expr(io.BytesIO(b"\x99\x0b"))
    assert info.value.op == 0x99
    assert str(info.value) == "wasm: Invalid opcode in initializer expression: 0x99"


def test_read_init_expr_missing_end():
    with pytest.raises(EOFError):
        read_init_expr(io.BytesIO(_i32(5)))


@pytest.mark.parametrize("value", [0, 5, -1, 2**31 - 1, -(2**31)])
def test_exec_i32(value):
    assert exec_init_expr(_i32(value) + b"\x0b", _no_globals) == value


@pytest.mark.parametrize("value", [0, -1, 2**63 - 1, -(2**63)])
def test_exec_i64(value):
    assert exec_init_expr(_i64(value) + b"\x0b", _no_globals) == value


def test_exec_f32():
    expr = b"\x43" + struct.pack("<f", 1.5) + b"\x0b"
    assert exec_init_expr(expr, _no_globals) == 1.5


def test_exec_f64():
    expr = b"\x44" + struct.pack("<d", -0.125) + b"\x0b"
    assert exec_init_expr(expr, _no_globals) == -0.125


def test_exec_last_value_wins():
    expr = _i32(1) + b"\x0b" + _i64(-3) + b"\x0b"
    assert exec_init_expr(expr, _no_globals) == -3


def test_exec_empty():
    with pytest.raises(EmptyInitExprError):
        exec_init_expr(b"", _no_globals)


def test_exec_only_global_yields_none():
    assert exec_init_expr(append_uleb128(b"\x23", 0) + b"\x0b", _globals) is None


def test_exec_global_reinterprets_top_of_stack():
    bits = struct.unpack("<i", struct.pack("<f", 2.0))[0]
    expr = _i32(bits) + append_uleb128(b"\x23", 1) + b"\x0b"
    assert exec_init_expr(expr, _globals) == 2.0


def test_exec_invalid_global():
    with pytest.raises(InvalidGlobalIndexError) as info:
        exec_init_expr(append_uleb128(b"\x23", 4) + b"\x0b", _globals)
    assert info.value.index == 4


def test_exec_invalid_op():
    with pytest.raises(InvalidInitExprOpError):
        exec_init_expr(b"\x01\x0b", _no_globals)


def test_exec_read_result_round_trip():
    expr = read_init_expr(io.BytesIO(_i32(42) + b"\x0b"))
    assert exec_init_expr(expr, _no_globals) == 42