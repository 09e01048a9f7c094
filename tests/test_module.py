import io
import logging

import pytest

from wasmkit.initexpr import InvalidGlobalIndexError
from wasmkit.module import (
    ExportNotFoundError,
    Function,
    ImportMutGlobalError,
    InvalidImportError,
    InvalidLinearMemoryIndexError,
    InvalidMagicError,
    InvalidTableIndexError,
    InvalidValueTypeInitExprError,
    KindMismatchError,
    Module,
    NoExportsInImportedModuleError,
    decode_module,
    encode_module,
    new_module,
    read_module,
    set_debug_mode,
)
from wasmkit.sections import (
    DataSegment,
    ElementSegment,
    ExportEntry,
    FuncImport,
    FunctionBody,
    GlobalEntry,
    GlobalVarImport,
    ImportEntry,
    InvalidSectionIDError,
    LocalEntry,
    MissingSectionError,
    SectionCode,
    SectionCustom,
    SectionData,
    SectionElements,
    SectionExports,
    SectionFunctions,
    SectionGlobals,
    SectionImports,
    SectionMemories,
    SectionStartFunction,
    SectionTables,
    SectionTypes,
)
from wasmkit.types import (
    External,
    FunctionSig,
    GlobalVar,
    Memory,
    ResizableLimits,
    Table,
    ValueType,
    WasmError,
)

I32 = ValueType.I32
I64 = ValueType.I64
HEADER = b"\x00asm\x01\x00\x00\x00"


def _encode(sections):
    buf = io.BytesIO()
    encode_module(buf, Module(sections=sections))
    return buf.getvalue()


def _full_sections():
    return [
        SectionTypes(entries=[FunctionSig(param_types=[I32], return_types=[I32])]),
        SectionImports(entries=[ImportEntry("env", "f", FuncImport(0))]),
        SectionFunctions(types=[0]),
        SectionTables(entries=[Table(limits=ResizableLimits(1, 2, 4))]),
        SectionMemories(entries=[Memory(ResizableLimits(0, 1, 0))]),
        SectionGlobals(globals=[GlobalEntry(GlobalVar(I32, True), b"\x41\x07\x0b")]),
        SectionExports(entries={"main": ExportEntry("main", External.FUNCTION, 1)}),
        SectionStartFunction(index=1),
        SectionElements(entries=[ElementSegment(0, b"\x41\x00\x0b", [1])]),
        SectionCode(bodies=[FunctionBody([LocalEntry(1, I64)], b"\x20\x00")]),
        SectionData(entries=[DataSegment(0, b"\x41\x04\x0b", b"abc")]),
        SectionCustom(name="extra", data=b"\x01\x02"),
    ]


def test_minimal_module_round_trip():
    m = decode_module(io.BytesIO(HEADER))
    assert m.version == 1
    assert m.sections == []
    buf = io.BytesIO()
    encode_module(buf, m)
    assert buf.getvalue() == HEADER


def test_encode_decode_round_trip():
    raw = _encode(_full_sections())
    m = decode_module(io.BytesIO(raw))
    buf = io.BytesIO()
    encode_module(buf, m)
    assert buf.getvalue() == raw
    assert m.types.entries[0].param_types == [I32]
    assert m.imports.entries[0].field_name == "f"
    assert m.exports.names == ["main"]
    assert m.start.index == 1
    assert m.code.bodies[0].code == b"\x20\x00"
    assert m.code.bodies[0].module is m
    assert m.data.entries[0].data == b"abc"
    assert len(m.sections) == 12


def test_decode_accepts_bytes():
    raw = _encode([SectionStartFunction(index=3)])
    assert decode_module(raw).start.index == 3


def test_raw_section_positions():
    raw = HEADER + b"\x08\x01\x00"
    m = decode_module(io.BytesIO(raw))
    assert (m.start.raw.start, m.start.raw.end) == (10, 11)
    assert m.start.raw.payload == b"\x00"


def test_invalid_magic():
    with pytest.raises(InvalidMagicError):
        decode_module(io.BytesIO(b"\x00asn\x01\x00\x00\x00"))


def test_invalid_section_id():
    with pytest.raises(InvalidSectionIDError):
        decode_module(io.BytesIO(HEADER + b"\x0c\x00"))


def test_code_without_function_section():
    raw = _encode([SectionTypes(entries=[FunctionSig()]), SectionCode(bodies=[FunctionBody()])])
    with pytest.raises(MissingSectionError):
        decode_module(io.BytesIO(raw))


def test_code_function_count_mismatch():
    raw = _encode(
        [
            SectionTypes(entries=[FunctionSig()]),
            SectionFunctions(types=[0, 0]),
            SectionCode(bodies=[FunctionBody()]),
        ]
    )
    with pytest.raises(WasmError, match="unequal"):
        decode_module(io.BytesIO(raw))


def test_custom_lookup():
    m = decode_module(_encode([SectionCustom(name="name", data=b"\x00")]))
    assert m.custom("name").data == b"\x00"
    assert m.custom("missing") is None


def test_read_module_populates_index_spaces():
    raw = _encode(
        [
            SectionTypes(entries=[FunctionSig()]),
            SectionFunctions(types=[0]),
            SectionTables(entries=[Table(limits=ResizableLimits(0, 2, 0))]),
            SectionGlobals(globals=[GlobalEntry(GlobalVar(I32, False), b"\x41\x07\x0b")]),
            SectionElements(entries=[ElementSegment(0, b"\x41\x01\x0b", [3])]),
            SectionCode(bodies=[FunctionBody([], b"\x01")]),
            SectionData(entries=[DataSegment(0, b"\x41\x02\x0b", b"hi")]),
        ]
    )
    m = read_module(io.BytesIO(raw))
    assert len(m.function_index_space) == 1
    assert m.get_function(0).body.code == b"\x01"
    assert m.get_function(1) is None
    assert m.get_function(-1) is None
    assert m.get_global(0).init == b"\x41\x07\x0b"
    assert m.get_global(1) is None
    assert m.table_index_space == [[0, 3]]
    assert m.get_table_element(1) == 3
    with pytest.raises(InvalidTableIndexError):
        m.get_table_element(2)
    assert bytes(m.linear_memory_index_space[0]) == b"\x00\x00hi"
    assert m.get_linear_memory_data(2) == ord("h")
    with pytest.raises(InvalidLinearMemoryIndexError):
        m.get_linear_memory_data(4)
    assert m.exec_init_expr(b"\x23\x00\x41\x05\x0b") == 5
    with pytest.raises(InvalidGlobalIndexError):
        m.exec_init_expr(b"\x23\x09\x0b")


def test_data_overwrites_within_memory():
    raw = _encode(
        [
            SectionData(
                entries=[
                    DataSegment(0, b"\x41\x00\x0b", b"abcd"),
                    DataSegment(0, b"\x41\x01\x0b", b"XY"),
                ]
            )
        ]
    )
    m = read_module(raw)
    assert bytes(m.linear_memory_index_space[0]) == b"aXYd"


def test_data_offset_must_be_i32():
    raw = _encode([SectionData(entries=[DataSegment(0, b"\x42\x01\x0b", b"x")])])
    with pytest.raises(InvalidValueTypeInitExprError) as exc:
        read_module(raw)
    assert str(exc.value) == "wasm: Wanted initializer expression to return int32 value, got int64"


def test_data_index_must_be_zero():
    raw = _encode([SectionData(entries=[DataSegment(1, b"\x41\x00\x0b", b"x")])])
    with pytest.raises(InvalidLinearMemoryIndexError):
        read_module(raw)


def _nofuncs():
    return _encode(
        [
            SectionTypes(entries=[FunctionSig(param_types=[I32, I32], return_types=[])]),
            SectionImports(entries=[ImportEntry("ethereum", "finish", FuncImport(0))]),
        ]
    )


def _resolver(params, returns, calls=None):
    def resolve(name):
        if calls is not None:
            calls.append(name)
        m = new_module()
        m.types = SectionTypes(entries=[FunctionSig(param_types=params, return_types=returns)])
        m.function_index_space = [
            Function(sig=m.types.entries[0], body=FunctionBody(), host=lambda *args: None)
        ]
        m.exports = SectionExports(
            entries={"finish": ExportEntry("finish", External.FUNCTION, 0)}
        )
        return m

    return resolve


@pytest.mark.parametrize(
    "params, returns",
    [
        ([I64], []),
        ([I64, I64], []),
        ([I32, I32], [I32]),
    ],
)
def test_module_signature_check(params, returns):
    with pytest.raises(InvalidImportError) as exc:
        read_module(io.BytesIO(_nofuncs()), _resolver(params, returns))
    assert (
        str(exc.value)
        == "wasm: invalid signature for import 0x0 with name 'finish' in module ethereum"
    )


def test_matching_import_resolves():
    m = read_module(io.BytesIO(_nofuncs()), _resolver([I32, I32], []))
    assert len(m.function_index_space) == 1
    assert m.get_function(0).is_host()
    assert len(m.code.bodies) == 1


def test_resolver_called_once_per_module():
    raw = _encode(
        [
            SectionTypes(entries=[FunctionSig(param_types=[I32, I32], return_types=[])]),
            SectionImports(
                entries=[
                    ImportEntry("ethereum", "finish", FuncImport(0)),
                    ImportEntry("ethereum", "finish", FuncImport(0)),
                ]
            ),
        ]
    )
    calls = []
    m = read_module(raw, _resolver([I32, I32], [], calls))
    assert calls == ["ethereum"]
    assert len(m.function_index_space) == 2


def test_export_not_found():
    raw = _encode(
        [
            SectionTypes(entries=[FunctionSig()]),
            SectionImports(entries=[ImportEntry("ethereum", "other", FuncImport(0))]),
        ]
    )
    with pytest.raises(ExportNotFoundError) as exc:
        read_module(raw, _resolver([], []))
    assert str(exc.value) == "wasm: couldn't find export with name other in module ethereum"


def test_no_exports_in_imported_module():
    def resolve(name):
        return Module()

    with pytest.raises(NoExportsInImportedModuleError):
        read_module(_nofuncs(), resolve)


def test_kind_mismatch():
    def resolve(name):
        m = new_module()
        m.exports = SectionExports(entries={"finish": ExportEntry("finish", External.GLOBAL, 0)})
        return m

    with pytest.raises(KindMismatchError) as exc:
        read_module(_nofuncs(), resolve)
    assert str(exc.value) == (
        "wasm: mismatching import and export external kind values "
        "for finish.ethereum (function, global)"
    )


def _global_import_module(mutable):
    raw = _encode(
        [SectionImports(entries=[ImportEntry("env", "g", GlobalVarImport(GlobalVar(I32, False)))])]
    )

    def resolve(name):
        m = new_module()
        m.global_index_space = [GlobalEntry(GlobalVar(I32, mutable), b"\x41\x00\x0b")]
        m.exports = SectionExports(entries={"g": ExportEntry("g", External.GLOBAL, 0)})
        return m

    return raw, resolve


def test_import_mutable_global_rejected():
    raw, resolve = _global_import_module(True)
    with pytest.raises(ImportMutGlobalError):
        read_module(raw, resolve)


def test_import_immutable_global():
    raw, resolve = _global_import_module(False)
    m = read_module(raw, resolve)
    assert len(m.global_index_space) == 1
    assert m.get_global(0).type.type == I32


def test_new_module_sections():
    m = new_module()
    assert m.types.entries == []
    assert m.functions is None
    assert m.code is None
    assert m.exports.entries == {}


def test_function_is_host():
    assert not Function(sig=FunctionSig(), body=FunctionBody()).is_host()
    assert Function(sig=FunctionSig(), body=FunctionBody(), host=print).is_host()


def test_set_debug_mode():
    logger = logging.getLogger("wasmkit.module")
    raw = _encode([SectionStartFunction(index=3)])
    try:
        set_debug_mode(True)
        assert logger.isEnabledFor(logging.DEBUG)
        assert decode_module(raw).start.index == 3
    finally:
        set_debug_mode(False)
    assert not logger.isEnabledFor(logging.DEBUG)
    assert decode_module(raw).start.index == 3