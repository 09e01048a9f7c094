"""Decoding, encoding and index-space population of whole modules."""

from __future__ import annotations

import io
import logging
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Optional, Union

from wasmkit.initexpr import InvalidGlobalIndexError
from wasmkit.initexpr import exec_init_expr as _exec_init_expr
from wasmkit.leb128 import read_var_int32, read_var_int64, read_var_uint32, write_var_uint32
from wasmkit.operators import END, F32_CONST, F64_CONST, GET_GLOBAL, I32_CONST, I64_CONST
from wasmkit.sections import (
    FunctionBody,
    GlobalEntry,
    InvalidCodeIndexError,
    InvalidSectionIDError,
    MissingSectionError,
    RawSection,
    Section,
    SectionCode,
    SectionCustom,
    SectionData,
    SectionElements,
    SectionExports,
    SectionFunctions,
    SectionGlobals,
    SectionID,
    SectionImports,
    SectionMemories,
    SectionStartFunction,
    SectionTables,
    SectionTypes,
)
from wasmkit.types import (
    External,
    FunctionSig,
    InvalidExternalError,
    InvalidFunctionIndexError,
    ValueType,
    WasmError,
)
from wasmkit.wire import ReadPos, read_u32, read_u64, write_u32

MAGIC = 0x6D736100
VERSION = 0x1
_CURRENT_VERSION = 0x1

_logger = logging.getLogger(__name__)
_logger.addHandler(logging.NullHandler())
_debug_handler: Optional[logging.Handler] = None


def set_debug_mode(dbg: bool) -> None:
    """Turn debug logging of module reading to stderr on or off."""
    global _debug_handler
    if dbg:
        if _debug_handler is None:
            _debug_handler = logging.StreamHandler(sys.stderr)
            _logger.addHandler(_debug_handler)
        _logger.setLevel(logging.DEBUG)
    else:
        if _debug_handler is not None:
            _logger.removeHandler(_debug_handler)
            _debug_handler = None
        _logger.setLevel(logging.WARNING)


set_debug_mode(False)


def _external_name(kind: int) -> str:
    try:
        return str(External(kind))
    except ValueError:
        return "<unknown external_kind>"


class InvalidMagicError(WasmError):
    def __init__(self) -> None:
        super().__init__("wasm: Invalid magic number")


class ImportMutGlobalError(WasmError):
    def __init__(self) -> None:
        super().__init__("wasm: cannot import global mutable variable")


class NoExportsInImportedModuleError(WasmError):
    def __init__(self) -> None:
        super().__init__("wasm: imported module has no exports")


class ExportNotFoundError(WasmError):
    def __init__(self, module_name: str, field_name: str) -> None:
        self.module_name = module_name
        self.field_name = field_name
        super().__init__(
            f"wasm: couldn't find export with name {field_name} in module {module_name}"
        )


class KindMismatchError(WasmError):
    def __init__(self, module_name: str, field_name: str, import_kind: int, export_kind: int) -> None:
        self.module_name = module_name
        self.field_name = field_name
        self.import_kind = import_kind
        self.export_kind = export_kind
        super().__init__(
            "wasm: mismatching import and export external kind values for "
            f"{field_name}.{module_name} "
            f"({_external_name(import_kind)}, {_external_name(export_kind)})"
        )


class InvalidImportError(WasmError):
    """The export resolving an import does not match the import's signature."""

    def __init__(self, module_name: str, field_name: str, type_index: int) -> None:
        self.module_name = module_name
        self.field_name = field_name
        self.type_index = type_index
        super().__init__(
            f"wasm: invalid signature for import {type_index:#x} "
            f"with name '{field_name}' in module {module_name}"
        )


class InvalidTableIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"wasm: Invalid table to table index space: {index}")


class InvalidValueTypeInitExprError(WasmError):
    def __init__(self, wanted: str, got: str) -> None:
        self.wanted = wanted
        self.got = got
        super().__init__(
            f"wasm: Wanted initializer expression to return {wanted} value, got {got}"
        )


class InvalidLinearMemoryIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"wasm: Invalid linear memory index: {index}")


_KIND_NAMES = {
    ValueType.I32: "int32",
    ValueType.I64: "int64",
    ValueType.F32: "float32",
    ValueType.F64: "float64",
}


@dataclass
class Function:
    """An entry in the function index space of a module."""

    sig: FunctionSig
    body: FunctionBody
    host: Optional[Callable[..., object]] = None

    def is_host(self) -> bool:
        """Whether the function is provided by the host rather than bytecode."""
        return self.host is not None


@dataclass
class _ImportCounts:
    funcs: list[int] = field(default_factory=list)
    globals: int = 0
    tables: int = 0
    memories: int = 0


class _SectionReader:
    """Read at most ``limit`` bytes from a stream, keeping a copy of them."""

    def __init__(self, src: BinaryIO, limit: int) -> None:
        self._src = src
        self._remaining = limit
        self.recorded = bytearray()

    def _read_some(self, size: int) -> bytes:
        data = self._src.read(size)
        self._remaining -= len(data)
        self.recorded += data
        return data

    def read(self, size: Optional[int] = -1) -> bytes:
        if size is None or size < 0:
            out = bytearray()
            while self._remaining > 0:
                chunk = self._read_some(self._remaining)
                if not chunk:
                    break
                out += chunk
            return bytes(out)
        size = min(size, self._remaining)
        if size == 0:
            return b""
        return self._read_some(size)


_SECTION_ATTRS: dict[SectionID, tuple[str, type]] = {
    SectionID.TYPE: ("types", SectionTypes),
    SectionID.IMPORT: ("imports", SectionImports),
    SectionID.FUNCTION: ("functions", SectionFunctions),
    SectionID.TABLE: ("tables", SectionTables),
    SectionID.MEMORY: ("memories", SectionMemories),
    SectionID.GLOBAL: ("globals", SectionGlobals),
    SectionID.EXPORT: ("exports", SectionExports),
    SectionID.START: ("start", SectionStartFunction),
    SectionID.ELEMENT: ("elements", SectionElements),
    SectionID.CODE: ("code", SectionCode),
    SectionID.DATA: ("data", SectionData),
}


ResolveFunc = Callable[[str], "Module"]


@dataclass
class Module:
    """A decoded module, its sections and its index spaces."""

    version: int = 0
    sections: list[Section] = field(default_factory=list)

    types: Optional[SectionTypes] = None
    imports: Optional[SectionImports] = None
    functions: Optional[SectionFunctions] = None
    tables: Optional[SectionTables] = None
    memories: Optional[SectionMemories] = None
    globals: Optional[SectionGlobals] = None
    exports: Optional[SectionExports] = None
    start: Optional[SectionStartFunction] = None
    elements: Optional[SectionElements] = None
    code: Optional[SectionCode] = None
    data: Optional[SectionData] = None
    customs: list[SectionCustom] = field(default_factory=list)

    function_index_space: list[Function] = field(default_factory=list)
    global_index_space: list[GlobalEntry] = field(default_factory=list)
    table_index_space: list[list[int]] = field(default_factory=list)
    linear_memory_index_space: list[bytearray] = field(default_factory=list)

    _imported: _ImportCounts = field(default_factory=_ImportCounts, init=False, repr=False)

    def custom(self, name: str) -> Optional[SectionCustom]:
        """Return the custom section called ``name``, if there is one."""
        return next((s for s in self.customs if s.name == name), None)

    def get_function(self, i: int) -> Optional[Function]:
        if 0 <= i < len(self.function_index_space):
            return self.function_index_space[i]
        return None

    def get_global(self, i: int) -> Optional[GlobalEntry]:
        if 0 <= i < len(self.global_index_space):
            return self.global_index_space[i]
        return None

    def get_table_element(self, index: int) -> int:
        table = self.table_index_space[0] if self.table_index_space else []
        if not 0 <= index < len(table):
            raise InvalidTableIndexError(index)
        return table[index]

    def get_linear_memory_data(self, index: int) -> int:
        memory = self.linear_memory_index_space[0] if self.linear_memory_index_space else b""
        if not 0 <= index < len(memory):
            raise InvalidLinearMemoryIndexError(index & 0xFFFF_FFFF)
        return memory[index]

    def _global_type(self, index: int) -> Optional[int]:
        entry = self.get_global(index)
        return None if entry is None else entry.type.type

    def exec_init_expr(self, expr: bytes) -> Union[int, float, None]:
        """Evaluate an initializer expression against this module's globals."""
        return _exec_init_expr(expr, self._global_type)

    def _init_expr_type(self, expr: bytes) -> Optional[int]:
        r = io.BytesIO(expr)
        last: Optional[int] = None
        while b := r.read(1):
            op = b[0]
            if op == I32_CONST:
                read_var_int32(r)
                last = ValueType.I32
            elif op == I64_CONST:
                read_var_int64(r)
                last = ValueType.I64
            elif op == F32_CONST:
                read_u32(r)
                last = ValueType.F32
            elif op == F64_CONST:
                read_u64(r)
                last = ValueType.F64
            elif op == GET_GLOBAL:
                last = self._global_type(read_var_uint32(r))
            elif op != END:
                break
        return last

    def _exec_offset(self, expr: bytes) -> int:
        value = self.exec_init_expr(expr)
        kind = "invalid"
        if value is not None:
            kind = _KIND_NAMES.get(self._init_expr_type(expr), "invalid")
        if kind != "int32":
            raise InvalidValueTypeInitExprError("int32", kind)
        return int(value)

    # Reading

    def _read_section(self, r: ReadPos) -> bool:
        """Read one section; return True once the input is exhausted."""
        try:
            section_id = read_var_uint32(r)
        except EOFError:
            return True
        payload_len = read_var_uint32(r)
        _logger.debug("section %d, payload length %d", section_id, payload_len)
        start = r.cur_pos
        reader = _SectionReader(r, payload_len)

        sec: Section
        if section_id == SectionID.CUSTOM:
            sec = SectionCustom()
            self.customs.append(sec)
        else:
            try:
                attr, cls = _SECTION_ATTRS[SectionID(section_id)]
            except (ValueError, KeyError):
                raise InvalidSectionIDError(section_id) from None
            sec = cls()
            setattr(self, attr, sec)

        sec.read_payload(reader)
        sec.raw = RawSection(start, r.cur_pos, SectionID(section_id), bytes(reader.recorded))

        if section_id == SectionID.CODE:
            if self.functions is None or not self.functions.types:
                raise MissingSectionError(SectionID.FUNCTION)
            if len(self.functions.types) != len(self.code.bodies):
                raise WasmError(
                    "The number of entries in the function and code section are unequal"
                )
            if self.types is None:
                raise MissingSectionError(SectionID.TYPE)
            for body in self.code.bodies:
                body.module = self
        self.sections.append(sec)
        return False

    # Imports

    def _check_signature(self, fn: Function, module_name: str, field_name: str, index: int) -> None:
        if self.types is None or index >= len(self.types.entries):
            raise InvalidImportError(module_name, field_name, index)
        want = self.types.entries[index]
        if list(fn.sig.return_types) != list(want.return_types) or list(
            fn.sig.param_types
        ) != list(want.param_types):
            raise InvalidImportError(module_name, field_name, index)

    def _resolve_imports(self, resolve: ResolveFunc) -> None:
        if self.imports is None:
            return
        modules: dict[str, Module] = {}
        funcs = 0
        for entry in self.imports.entries:
            imported = modules.get(entry.module_name)
            if imported is None:
                imported = resolve(entry.module_name)
                modules[entry.module_name] = imported

            if imported.exports is None:
                raise NoExportsInImportedModuleError()
            export = imported.exports.entries.get(entry.field_name)
            if export is None:
                raise ExportNotFoundError(entry.module_name, entry.field_name)
            if export.kind != entry.type.kind:
                raise KindMismatchError(
                    entry.module_name, entry.field_name, entry.type.kind, export.kind
                )

            index = export.index
            if export.kind == External.FUNCTION:
                fn = imported.get_function(index)
                if fn is None:
                    raise InvalidFunctionIndexError(index)
                self._check_signature(fn, entry.module_name, entry.field_name, entry.type.type)
                self.function_index_space.append(fn)
                self.code.bodies.append(fn.body)
                self._imported.funcs.append(funcs)
                funcs += 1
            elif export.kind == External.GLOBAL:
                glb = imported.get_global(index)
                if glb is None:
                    raise InvalidGlobalIndexError(index)
                if glb.type.mutable:
                    raise ImportMutGlobalError()
                self.global_index_space.append(glb)
                self._imported.globals += 1
            elif export.kind == External.TABLE:
                if index >= len(imported.table_index_space):
                    raise InvalidTableIndexError(index)
                _set_first(self.table_index_space, imported.table_index_space[0])
                self._imported.tables += 1
            elif export.kind == External.MEMORY:
                if index >= len(imported.linear_memory_index_space):
                    raise InvalidLinearMemoryIndexError(index)
                _set_first(self.linear_memory_index_space, imported.linear_memory_index_space[0])
                self._imported.memories += 1
            else:
                raise InvalidExternalError(export.kind)

    # Index spaces

    def _populate_globals(self) -> None:
        if self.globals is None:
            return
        self.global_index_space.extend(self.globals.globals)
        _logger.debug("%d entries in the global index space", len(self.global_index_space))

    def _populate_functions(self) -> None:
        if self.types is None or self.functions is None:
            return
        for code_index, type_index in enumerate(self.functions.types):
            if type_index >= len(self.types.entries):
                raise InvalidFunctionIndexError(type_index)
            if self.code is None:
                raise MissingSectionError(SectionID.CODE)
            if code_index >= len(self.code.bodies):
                raise InvalidCodeIndexError(code_index)
            self.function_index_space.append(
                Function(sig=self.types.entries[type_index], body=self.code.bodies[code_index])
            )
        self.functions.types = [*self._imported.funcs, *self.functions.types]

    def _populate_tables(self) -> None:
        if not (self.tables and self.tables.entries and self.elements and self.elements.entries):
            return
        for elem in self.elements.entries:
            if elem.index >= len(self.table_index_space):
                raise InvalidTableIndexError(elem.index)
            offset = self._exec_offset(elem.offset)
            if offset < 0:
                raise InvalidTableIndexError(offset)
            table = self.table_index_space[elem.index]
            end = offset + len(elem.elems)
            if end > len(table):
                grown = [0] * end
                grown[offset:end] = elem.elems
                grown[: len(table)] = table
                self.table_index_space[elem.index] = grown
            else:
                table[offset:end] = elem.elems
        _logger.debug("%d entries in the table index space", len(self.table_index_space))

    def _populate_linear_memory(self) -> None:
        if not (self.data and self.data.entries):
            return
        for entry in self.data.entries:
            if entry.index != 0:
                raise InvalidLinearMemoryIndexError(entry.index)
            offset = self._exec_offset(entry.offset)
            if offset < 0:
                raise InvalidLinearMemoryIndexError(offset & 0xFFFF_FFFF)
            memory = self.linear_memory_index_space[entry.index]
            end = offset + len(entry.data)
            if end > len(memory):
                grown = bytearray(end)
                grown[: len(memory)] = memory
                grown[offset:end] = entry.data
                self.linear_memory_index_space[entry.index] = grown
            else:
                memory[offset:end] = entry.data


def _set_first(space: list, value: object) -> None:
    if space:
        space[0] = value
    else:
        space.append(value)


def new_module() -> Module:
    """Create an empty module with the commonly used sections present."""
    return Module(
        types=SectionTypes(),
        imports=SectionImports(),
        tables=SectionTables(),
        memories=SectionMemories(),
        globals=SectionGlobals(),
        exports=SectionExports(),
        start=SectionStartFunction(),
        elements=SectionElements(),
        data=SectionData(),
    )


def _as_stream(r: Union[BinaryIO, bytes, bytearray, memoryview]) -> BinaryIO:
    if isinstance(r, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(r))
    return r


def decode_module(r: Union[BinaryIO, bytes, bytearray, memoryview]) -> Module:
    """Decode a module without resolving imports or populating index spaces."""
    reader = ReadPos(_as_stream(r))
    if read_u32(reader) != MAGIC:
        raise InvalidMagicError()
    m = Module(version=read_u32(reader))
    while not m._read_section(reader):
        pass
    return m


def read_module(
    r: Union[BinaryIO, bytes, bytearray, memoryview], resolve: Optional[ResolveFunc] = None
) -> Module:
    """Decode a module, resolve its imports and populate its index spaces.

    ``resolve`` maps an imported module name to a Module; without it,
    imports are left unresolved.
    """
    m = decode_module(r)
    m.linear_memory_index_space = [bytearray()]
    if m.tables is not None:
        m.table_index_space = [[] for _ in m.tables.entries]

    if m.imports is not None and resolve is not None:
        if m.code is None:
            m.code = SectionCode()
        m._resolve_imports(resolve)

    m._populate_globals()
    m._populate_functions()
    m._populate_tables()
    m._populate_linear_memory()
    _logger.debug("%d entries in the function index space", len(m.function_index_space))
    return m


def encode_module(w: BinaryIO, m: Module) -> None:
    """Write the sections of ``m`` to ``w`` in the binary module format."""
    write_u32(w, MAGIC)
    write_u32(w, _CURRENT_VERSION)
    for section in m.sections:
        write_var_uint32(w, int(section.section_id))
        payload = io.BytesIO()
        section.write_payload(payload)
        data = payload.getvalue()
        write_var_uint32(w, len(data))
        w.write(data)