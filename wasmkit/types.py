"""Core value types and small structures of the WebAssembly binary format."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO

from wasmkit.leb128 import read_var_int32, read_var_uint32, write_var_int64, write_var_uint32
from wasmkit.wire import read_bytes

TYPE_FUNC = -0x20
BLOCK_TYPE_EMPTY = -0x40
ELEM_TYPE_ANY_FUNC = -0x10


class WasmError(Exception):
    """Base class for errors raised while handling modules."""


class InvalidTypeConstructorError(WasmError):
    def __init__(self, wanted: int, got: int) -> None:
        self.wanted = wanted
        self.got = got
        super().__init__(f"wasm: invalid type constructor: wanted {wanted}, got {got}")


class InvalidExternalError(WasmError):
    def __init__(self, kind: int) -> None:
        self.kind = kind
        super().__init__(f"wasm: invalid external_kind value {kind}")


class InvalidFunctionIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"wasm: invalid index to function index space: {index:#x}")


def _int8(v: int) -> int:
    return ((int(v) + 0x80) & 0xFF) - 0x80


class ValueType(enum.IntEnum):
    I32 = -0x01
    I64 = -0x02
    F32 = -0x03
    F64 = -0x04

    def __str__(self) -> str:
        return self.name.lower()


def _as_value_type(v: int) -> int:
    try:
        return ValueType(v)
    except ValueError:
        return v


def value_type_name(t: int) -> str:
    try:
        return str(ValueType(t))
    except ValueError:
        return f"<unknown value_type {_int8(t)}>"


def block_type_name(b: int) -> str:
    if b == BLOCK_TYPE_EMPTY:
        return "<empty block>"
    return value_type_name(b)


def elem_type_name(t: int) -> str:
    if t == ELEM_TYPE_ANY_FUNC:
        return "anyfunc"
    return "<unknown elem_type>"


def read_value_type(r: BinaryIO) -> int:
    """Read a value type; known types come back as ValueType members."""
    return _as_value_type(_int8(read_var_int32(r)))


def write_value_type(w: BinaryIO, t: int) -> None:
    write_var_int64(w, int(t))


def read_elem_type(r: BinaryIO) -> int:
    return read_var_int32(r)


def write_elem_type(w: BinaryIO, t: int) -> None:
    write_var_int64(w, int(t))


class External(enum.IntEnum):
    """The kind of an imported or exported entry."""

    FUNCTION = 0
    TABLE = 1
    MEMORY = 2
    GLOBAL = 3

    def __str__(self) -> str:
        return self.name.lower()


def read_external(r: BinaryIO) -> int:
    """Read an external kind byte; unknown kinds come back as plain ints."""
    kind = read_bytes(r, 1)[0]
    try:
        return External(kind)
    except ValueError:
        return kind


def write_external(w: BinaryIO, e: int) -> None:
    w.write(bytes([int(e) & 0xFF]))


@dataclass
class ResizableLimits:
    """Size limits of a table or linear memory."""

    flags: int = 0
    initial: int = 0
    maximum: int = 0

    @classmethod
    def read(cls, r: BinaryIO) -> ResizableLimits:
        flags = read_var_uint32(r)
        initial = read_var_uint32(r)
        maximum = read_var_uint32(r) if flags & 0x1 else 0
        return cls(flags, initial, maximum)

    def write(self, w: BinaryIO) -> None:
        write_var_uint32(w, self.flags)
        write_var_uint32(w, self.initial)
        if self.flags & 0x1:
            write_var_uint32(w, self.maximum)


@dataclass
class FunctionSig:
    """The signature of a function."""

    form: int = TYPE_FUNC
    param_types: list[int] = field(default_factory=list)
    return_types: list[int] = field(default_factory=list)

    @classmethod
    def read(cls, r: BinaryIO) -> FunctionSig:
        form = _int8(read_var_int32(r))
        params = [read_value_type(r) for _ in range(read_var_uint32(r))]
        returns = [read_value_type(r) for _ in range(read_var_uint32(r))]
        return cls(form, params, returns)

    def write(self, w: BinaryIO) -> None:
        write_var_int64(w, self.form)
        write_var_uint32(w, len(self.param_types))
        for p in self.param_types:
            write_value_type(w, p)
        write_var_uint32(w, len(self.return_types))
        for t in self.return_types:
            write_value_type(w, t)

    def __str__(self) -> str:
        params = " ".join(value_type_name(t) for t in self.param_types)
        returns = " ".join(value_type_name(t) for t in self.return_types)
        return f"<func [{params}] -> [{returns}]>"


@dataclass
class GlobalVar:
    """The type and mutability of a global variable."""

    type: int = ValueType.I32
    mutable: bool = False

    @classmethod
    def read(cls, r: BinaryIO) -> GlobalVar:
        value_type = read_value_type(r)
        mutable = read_var_uint32(r) == 1
        return cls(value_type, mutable)

    def write(self, w: BinaryIO) -> None:
        write_value_type(w, self.type)
        write_var_uint32(w, 1 if self.mutable else 0)


@dataclass
class Table:
    """A table declaration."""

    element_type: int = ELEM_TYPE_ANY_FUNC
    limits: ResizableLimits = field(default_factory=ResizableLimits)

    @classmethod
    def read(cls, r: BinaryIO) -> Table:
        element_type = read_elem_type(r)
        return cls(element_type, ResizableLimits.read(r))

    def write(self, w: BinaryIO) -> None:
        write_elem_type(w, self.element_type)
        self.limits.write(w)


@dataclass
class Memory:
    """A linear memory declaration."""

    limits: ResizableLimits = field(default_factory=ResizableLimits)

    @classmethod
    def read(cls, r: BinaryIO) -> Memory:
        return cls(ResizableLimits.read(r))

    def write(self, w: BinaryIO) -> None:
        self.limits.write(w)