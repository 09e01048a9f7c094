"""The sections of a module and the entries they hold."""

from __future__ import annotations

import abc
import enum
import io
from dataclasses import dataclass, field
from typing import BinaryIO, ClassVar, Optional, Union

from wasmkit.initexpr import read_init_expr
from wasmkit.leb128 import read_var_uint32, write_var_uint32
from wasmkit.types import (
    External,
    GlobalVar,
    InvalidExternalError,
    Memory,
    Table,
    ValueType,
    WasmError,
    read_external,
    read_value_type,
    write_external,
    write_value_type,
)
from wasmkit.wire import (
    read_bytes,
    read_bytes_uint,
    read_string_uint,
    write_bytes_uint,
    write_string_uint,
)

_END = 0x0B


class SectionID(enum.IntEnum):
    """The one-byte code identifying a section."""

    CUSTOM = 0
    TYPE = 1
    IMPORT = 2
    FUNCTION = 3
    TABLE = 4
    MEMORY = 5
    GLOBAL = 6
    EXPORT = 7
    START = 8
    ELEMENT = 9
    CODE = 10
    DATA = 11

    def __str__(self) -> str:
        return self.name.lower()


def _section_name(section_id: int) -> str:
    try:
        return str(SectionID(section_id))
    except ValueError:
        return "unknown"


class InvalidSectionIDError(WasmError):
    def __init__(self, section_id: int) -> None:
        self.section_id = section_id
        super().__init__(f"wasm: invalid section ID {int(section_id)}")


class InvalidCodeIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"wasm: invalid index to code section: {index}")


class MissingSectionError(WasmError):
    def __init__(self, section_id: int) -> None:
        self.section_id = section_id
        super().__init__(f"wasm: missing section {_section_name(section_id)}")


class DuplicateExportError(WasmError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Duplicate export entry: {name}")


class FunctionNoEndError(WasmError):
    def __init__(self) -> None:
        super().__init__("Function body does not end with 0x0b (end)")


@dataclass
class RawSection:
    """Where a section lay in the input and the bytes of its payload."""

    start: int = 0
    end: int = 0
    id: int = SectionID.CUSTOM
    payload: bytes = b""


@dataclass
class Section(abc.ABC):
    """A section of a module."""

    section_id: ClassVar[SectionID]
    raw: RawSection = field(default_factory=RawSection, repr=False, compare=False, kw_only=True)

    @abc.abstractmethod
    def read_payload(self, r: BinaryIO) -> None:
        """Read the section payload; its size has already been consumed."""

    @abc.abstractmethod
    def write_payload(self, w: BinaryIO) -> None:
        """Write the section payload without its size prefix."""


# Imports


@dataclass
class FuncImport:
    """An imported function, given by the index of its signature."""

    type: int = 0
    kind: ClassVar[External] = External.FUNCTION

    def write(self, w: BinaryIO) -> None:
        write_var_uint32(w, self.type)


@dataclass
class TableImport:
    type: Table = field(default_factory=Table)
    kind: ClassVar[External] = External.TABLE

    def write(self, w: BinaryIO) -> None:
        self.type.write(w)


@dataclass
class MemoryImport:
    type: Memory = field(default_factory=Memory)
    kind: ClassVar[External] = External.MEMORY

    def write(self, w: BinaryIO) -> None:
        self.type.write(w)


@dataclass
class GlobalVarImport:
    type: GlobalVar = field(default_factory=GlobalVar)
    kind: ClassVar[External] = External.GLOBAL

    def write(self, w: BinaryIO) -> None:
        self.type.write(w)


Import = Union[FuncImport, TableImport, MemoryImport, GlobalVarImport]


@dataclass
class ImportEntry:
    """An import statement of a module."""

    module_name: str = ""
    field_name: str = ""
    type: Import = field(default_factory=FuncImport)

    @classmethod
    def read(cls, r: BinaryIO) -> ImportEntry:
        module_name = read_string_uint(r)
        field_name = read_string_uint(r)
        kind = read_external(r)
        imported: Import
        if kind == External.FUNCTION:
            imported = FuncImport(read_var_uint32(r))
        elif kind == External.TABLE:
            imported = TableImport(Table.read(r))
        elif kind == External.MEMORY:
            imported = MemoryImport(Memory.read(r))
        elif kind == External.GLOBAL:
            imported = GlobalVarImport(GlobalVar.read(r))
        else:
            raise InvalidExternalError(kind)
        return cls(module_name, field_name, imported)

    def write(self, w: BinaryIO) -> None:
        write_string_uint(w, self.module_name)
        write_string_uint(w, self.field_name)
        write_external(w, self.type.kind)
        self.type.write(w)


# Entries


@dataclass
class GlobalEntry:
    """A global variable and its initializer expression."""

    type: GlobalVar = field(default_factory=GlobalVar)
    init: bytes = b""

    @classmethod
    def read(cls, r: BinaryIO) -> GlobalEntry:
        var = GlobalVar.read(r)
        return cls(var, read_init_expr(r))

    def write(self, w: BinaryIO) -> None:
        self.type.write(w)
        w.write(self.init)


@dataclass
class ExportEntry:
    """An entry exported by a module."""

    field_str: str = ""
    kind: int = External.FUNCTION
    index: int = 0

    @classmethod
    def read(cls, r: BinaryIO) -> ExportEntry:
        name = read_string_uint(r)
        kind = read_external(r)
        return cls(name, kind, read_var_uint32(r))

    def write(self, w: BinaryIO) -> None:
        write_string_uint(w, self.field_str)
        write_external(w, self.kind)
        write_var_uint32(w, self.index)


@dataclass
class ElementSegment:
    """Function indices placed into a table at an offset."""

    index: int = 0
    offset: bytes = b""
    elems: list[int] = field(default_factory=list)

    @classmethod
    def read(cls, r: BinaryIO) -> ElementSegment:
        index = read_var_uint32(r)
        offset = read_init_expr(r)
        elems = [read_var_uint32(r) for _ in range(read_var_uint32(r))]
        return cls(index, offset, elems)

    def write(self, w: BinaryIO) -> None:
        write_var_uint32(w, self.index)
        w.write(self.offset)
        write_var_uint32(w, len(self.elems))
        for e in self.elems:
            write_var_uint32(w, e)


@dataclass
class LocalEntry:
    """A run of local variables sharing one type."""

    count: int = 0
    type: int = ValueType.I32

    @classmethod
    def read(cls, r: BinaryIO) -> LocalEntry:
        count = read_var_uint32(r)
        return cls(count, read_value_type(r))

    def write(self, w: BinaryIO) -> None:
        write_var_uint32(w, self.count)
        write_value_type(w, self.type)


@dataclass
class FunctionBody:
    """The locals and bytecode of a function, without the trailing end opcode."""

    locals: list[LocalEntry] = field(default_factory=list)
    code: bytes = b""
    module: Optional[object] = field(default=None, repr=False, compare=False)

    @classmethod
    def read(cls, r: BinaryIO) -> FunctionBody:
        body = io.BytesIO(read_bytes(r, read_var_uint32(r)))
        local_entries = [LocalEntry.read(body) for _ in range(read_var_uint32(body))]
        code = body.read()
        if not code or code[-1] != _END:
            raise FunctionNoEndError()
        return cls(local_entries, code[:-1])

    def write(self, w: BinaryIO) -> None:
        body = io.BytesIO()
        write_var_uint32(body, len(self.locals))
        for entry in self.locals:
            entry.write(body)
        body.write(self.code)
        body.write(bytes([_END]))
        write_bytes_uint(w, body.getvalue())


@dataclass
class DataSegment:
    """Bytes placed into linear memory at an offset."""

    index: int = 0
    offset: bytes = b""
    data: bytes = b""

    @classmethod
    def read(cls, r: BinaryIO) -> DataSegment:
        index = read_var_uint32(r)
        offset = read_init_expr(r)
        return cls(index, offset, read_bytes_uint(r))

    def write(self, w: BinaryIO) -> None:
        write_var_uint32(w, self.index)
        w.write(self.offset)
        write_bytes_uint(w, self.data)


# Sections


@dataclass
class SectionCustom(Section):
    section_id: ClassVar[SectionID] = SectionID.CUSTOM
    name: str = ""
    data: bytes = b""

    def read_payload(self, r: BinaryIO) -> None:
        self.name = read_string_uint(r)
        self.data = r.read()

    def write_payload(self, w: BinaryIO) -> None:
        write_string_uint(w, self.name)
        w.write(self.data)


@dataclass
class SectionTypes(Section):
    """The function signatures used in a module."""

    section_id: ClassVar[SectionID] = SectionID.TYPE
    entries: list = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        from wasmkit.types import FunctionSig

        self.entries = [FunctionSig.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for sig in self.entries:
            sig.write(w)


@dataclass
class SectionImports(Section):
    section_id: ClassVar[SectionID] = SectionID.IMPORT
    entries: list[ImportEntry] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.entries = [ImportEntry.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for entry in self.entries:
            entry.write(w)


@dataclass
class SectionFunctions(Section):
    """Signature indices of the functions defined in the code section."""

    section_id: ClassVar[SectionID] = SectionID.FUNCTION
    types: list[int] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.types = [read_var_uint32(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.types))
        for t in self.types:
            write_var_uint32(w, t)


@dataclass
class SectionTables(Section):
    section_id: ClassVar[SectionID] = SectionID.TABLE
    entries: list[Table] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.entries = [Table.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for entry in self.entries:
            entry.write(w)


@dataclass
class SectionMemories(Section):
    section_id: ClassVar[SectionID] = SectionID.MEMORY
    entries: list[Memory] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.entries = [Memory.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for entry in self.entries:
            entry.write(w)


@dataclass
class SectionGlobals(Section):
    section_id: ClassVar[SectionID] = SectionID.GLOBAL
    globals: list[GlobalEntry] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.globals = [GlobalEntry.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.globals))
        for entry in self.globals:
            entry.write(w)


@dataclass
class SectionExports(Section):
    """Exports keyed by name, with the names in the order they were read."""

    section_id: ClassVar[SectionID] = SectionID.EXPORT
    entries: dict[str, ExportEntry] = field(default_factory=dict)
    names: list[str] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.entries = {}
        self.names = []
        for _ in range(read_var_uint32(r)):
            entry = ExportEntry.read(r)
            if entry.field_str in self.entries:
                raise DuplicateExportError(entry.field_str)
            self.entries[entry.field_str] = entry
            self.names.append(entry.field_str)

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for entry in sorted(self.entries.values(), key=lambda e: e.index):
            entry.write(w)


@dataclass
class SectionStartFunction(Section):
    section_id: ClassVar[SectionID] = SectionID.START
    index: int = 0

    def read_payload(self, r: BinaryIO) -> None:
        self.index = read_var_uint32(r)

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, self.index)


@dataclass
class SectionElements(Section):
    section_id: ClassVar[SectionID] = SectionID.ELEMENT
    entries: list[ElementSegment] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.entries = [ElementSegment.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for entry in self.entries:
            entry.write(w)


@dataclass
class SectionCode(Section):
    section_id: ClassVar[SectionID] = SectionID.CODE
    bodies: list[FunctionBody] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.bodies = [FunctionBody.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.bodies))
        for body in self.bodies:
            body.write(w)


@dataclass
class SectionData(Section):
    section_id: ClassVar[SectionID] = SectionID.DATA
    entries: list[DataSegment] = field(default_factory=list)

    def read_payload(self, r: BinaryIO) -> None:
        self.entries = [DataSegment.read(r) for _ in range(read_var_uint32(r))]

    def write_payload(self, w: BinaryIO) -> None:
        write_var_uint32(w, len(self.entries))
        for entry in self.entries:
            entry.write(w)