import pytest

from wasmkit import operators
from wasmkit.operators import InvalidOpcodeError, Op, OpTable, lookup
from wasmkit.types import BLOCK_TYPE_EMPTY, ValueType


def test_lookup_unreachable():
    op = lookup(operators.UNREACHABLE)
    assert op.name == "unreachable"
    assert op.is_valid()


def test_lookup_invalid_opcode_raises():
    with pytest.raises(InvalidOpcodeError) as info:
        lookup(0xFF)
    assert info.value.code == 0xFF
    assert str(info.value) == "Invalid opcode: 0xff"


def test_default_op_is_invalid():
    assert Op().is_valid() is False


@pytest.mark.parametrize(
    "name, args, returns",
    [
        ("i32.wrap/i64", (ValueType.I64,), ValueType.I32),
        ("i32.trunc_s/f32", (ValueType.F32,), ValueType.I32),
    ],
)
def test_add_conversion(name, args, returns):
    table = OpTable()
    code = table.add_conversion(3, name)
    op = table.lookup(code)
    assert op.args == args
    assert op.returns == returns
    assert op.name == name


def test_add_conversion_rejects_non_conversion_name():
    table = OpTable()
    with pytest.raises(ValueError):
        table.add_conversion(1, "i32.add")


def test_add_conversion_rejects_unknown_type():
    table = OpTable()
    with pytest.raises(ValueError):
        table.add_conversion(1, "i32.wrap/i128")


def test_duplicate_opcode_rejected():
    table = OpTable()
    table.add(0x10, "first", (), BLOCK_TYPE_EMPTY)
    with pytest.raises(ValueError, match="already assigned to first"):
        table.add_polymorphic(0x10, "second")


def test_internal_opcode_is_hidden():
    with pytest.raises(InvalidOpcodeError):
        lookup(operators.WAGON_NATIVE_EXEC)


def test_mark_internal_on_custom_table():
    table = OpTable()
    table.add(0x20, "x", (), BLOCK_TYPE_EMPTY)
    assert table.lookup(0x20).name == "x"
    table.mark_internal(0x20)
    with pytest.raises(InvalidOpcodeError):
        table.lookup(0x20)


@pytest.mark.parametrize("code", [0x06, 0x12, 0xC0, -1, 0x100])
def test_unassigned_or_out_of_range(code):
    with pytest.raises(InvalidOpcodeError):
        lookup(code)


@pytest.mark.parametrize(
    "code, name",
    [
        (operators.CALL, "call"),
        (operators.CALL_INDIRECT, "call_indirect"),
        (operators.DROP, "drop"),
        (operators.SELECT, "select"),
        (operators.GET_LOCAL, "get_local"),
        (operators.BR_TABLE, "br_table"),
        (operators.RETURN, "return"),
    ],
)
def test_polymorphic_ops(code, name):
    op = lookup(code)
    assert op.name == name
    assert op.polymorphic is True
    assert op.args == ()
    assert op.returns == 0


def test_store_op_signature():
    op = lookup(operators.I64_STORE)
    assert op.code == 0x37
    assert op.args == (ValueType.I64, ValueType.I32)
    assert op.returns == BLOCK_TYPE_EMPTY
    assert op.polymorphic is False


def test_memory_ops():
    assert lookup(operators.CURRENT_MEMORY).name == "memory.size"
    grow = lookup(operators.GROW_MEMORY)
    assert grow.args == (ValueType.I32,)
    assert grow.returns == ValueType.I32


def test_comparison_returns_i32():
    op = lookup(operators.F64_GE)
    assert op.name == "f64.ge"
    assert op.args == (ValueType.F64, ValueType.F64)
    assert op.returns == ValueType.I32


def test_builtin_conversion_and_reinterpret():
    promote = lookup(operators.F64_PROMOTE_F32)
    assert promote.args == (ValueType.F32,)
    assert promote.returns == ValueType.F64
    reinterp = lookup(operators.I32_REINTERPRET_F32)
    assert reinterp.code == 0xBC
    assert reinterp.args == (ValueType.F32,)
    assert reinterp.returns == ValueType.I32


def test_opcode_constants_match_codes():
    assert operators.END == 0x0B
    assert operators.I32_CONST == 0x41
    assert lookup(operators.I32_CONST).returns == ValueType.I32
    assert lookup(operators.IF).args == (ValueType.I32,)