"""Reading and evaluating constant initializer expressions."""

from __future__ import annotations

import io
import struct
from typing import BinaryIO, Callable, Optional, Union

from wasmkit.leb128 import read_var_int32, read_var_int64, read_var_uint32
from wasmkit.types import ValueType, WasmError
from wasmkit.wire import read_bytes, read_u32, read_u64

_I32_CONST = 0x41
_I64_CONST = 0x42
_F32_CONST = 0x43
_F64_CONST = 0x44
_GET_GLOBAL = 0x23
_END = 0x0B

_MASK64 = 0xFFFF_FFFF_FFFF_FFFF


class EmptyInitExprError(WasmError):
    def __init__(self) -> None:
        super().__init__("wasm: Initializer expression produces no value")


class InvalidInitExprOpError(WasmError):
    def __init__(self, op: int) -> None:
        self.op = op
        super().__init__(f"wasm: Invalid opcode in initializer expression: {op:#x}")


class InvalidGlobalIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"wasm: Invalid index to global index space: {index:#x}")


class _Recorder:
    """Pass reads through to a stream while keeping a copy of the bytes."""

    def __init__(self, raw: BinaryIO) -> None:
        self._raw = raw
        self.recorded = bytearray()

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        self.recorded += data
        return data


def read_init_expr(r: BinaryIO) -> bytes:
    """Read an initializer expression up to and including its end opcode."""
    tee = _Recorder(r)
    while True:
        op = read_bytes(tee, 1)[0]
        if op == _I32_CONST:
            read_var_int32(tee)
        elif op == _I64_CONST:
            read_var_int64(tee)
        elif op == _F32_CONST:
            read_u32(tee)
        elif op == _F64_CONST:
            read_u64(tee)
        elif op == _GET_GLOBAL:
            read_var_uint32(tee)
        elif op == _END:
            break
        else:
            raise InvalidInitExprOpError(op)
    if not tee.recorded:
        raise EmptyInitExprError()
    return bytes(tee.recorded)


def _convert(bits: int, value_type: int) -> Union[int, float]:
    if value_type == ValueType.I32:
        return struct.unpack("<i", struct.pack("<I", bits & 0xFFFF_FFFF))[0]
    if value_type == ValueType.I64:
        return struct.unpack("<q", struct.pack("<Q", bits & _MASK64))[0]
    if value_type == ValueType.F32:
        return struct.unpack("<f", struct.pack("<I", bits & 0xFFFF_FFFF))[0]
    if value_type == ValueType.F64:
        return struct.unpack("<d", struct.pack("<Q", bits & _MASK64))[0]
    raise ValueError(f"invalid value type produced by initializer expression: {int(value_type)}")


def exec_init_expr(
    expr: bytes, get_global: Callable[[int], Optional[int]]
) -> Union[int, float, None]:
    """Evaluate an initializer expression.

    ``get_global`` maps a global index to that global's value type, or to
    None when the index is invalid. Returns None when the expression
    leaves no value.
    """
    if not expr:
        raise EmptyInitExprError()
    r = io.BytesIO(expr)
    stack: list[int] = []
    last_type: Optional[int] = None
    while b := r.read(1):
        op = b[0]
        if op == _I32_CONST:
            stack.append(read_var_int32(r) & _MASK64)
            last_type = ValueType.I32
        elif op == _I64_CONST:
            stack.append(read_var_int64(r) & _MASK64)
            last_type = ValueType.I64
        elif op == _F32_CONST:
            stack.append(read_u32(r))
            last_type = ValueType.F32
        elif op == _F64_CONST:
            stack.append(read_u64(r))
            last_type = ValueType.F64
        elif op == _GET_GLOBAL:
            index = read_var_uint32(r)
            value_type = get_global(index)
            if value_type is None:
                raise InvalidGlobalIndexError(index)
            last_type = value_type
        elif op == _END:
            continue
        else:
            raise InvalidInitExprOpError(op)

    if not stack:
        return None
    return _convert(stack[-1], last_type if last_type is not None else 0)