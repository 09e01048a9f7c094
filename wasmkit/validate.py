"""Static validation of function bodies in a decoded module."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from wasmkit import operators as ops
from wasmkit.initexpr import InvalidGlobalIndexError
from wasmkit.leb128 import read_var_int32, read_var_int64, read_var_uint32
from wasmkit.sections import FunctionBody, SectionID
from wasmkit.types import (
    BLOCK_TYPE_EMPTY,
    FunctionSig,
    InvalidFunctionIndexError,
    ValueType,
    WasmError,
    value_type_name,
)
from wasmkit.wire import read_u32, read_u64

if TYPE_CHECKING:
    from wasmkit.module import Module

_logger = logging.getLogger(__name__)
_logger.addHandler(logging.NullHandler())

_BLOCK_SIGNATURES = (
    ValueType.I32,
    ValueType.I64,
    ValueType.F32,
    ValueType.F64,
    BLOCK_TYPE_EMPTY,
)

_MEMORY_OPS = frozenset(
    {
        ops.I32_LOAD, ops.I64_LOAD, ops.F32_LOAD, ops.F64_LOAD,
        ops.I32_LOAD8_S, ops.I32_LOAD8_U, ops.I32_LOAD16_S, ops.I32_LOAD16_U,
        ops.I64_LOAD8_S, ops.I64_LOAD8_U, ops.I64_LOAD16_S, ops.I64_LOAD16_U,
        ops.I64_LOAD32_S, ops.I64_LOAD32_U,
        ops.I32_STORE, ops.I64_STORE, ops.F32_STORE, ops.F64_STORE,
        ops.I32_STORE8, ops.I32_STORE16, ops.I64_STORE8, ops.I64_STORE16, ops.I64_STORE32,
    }
)


def _type_name(t: Optional[int]) -> str:
    return value_type_name(0 if t is None else t)


class ValidationError(WasmError):
    """A function body failed validation."""

    def __init__(self, offset: int, function: int, err: BaseException) -> None:
        self.offset = offset
        self.function = function
        self.err = err
        super().__init__(
            f"error while validating function {function} at offset {offset}: {err}"
        )


class StackUnderflowError(WasmError):
    def __init__(self) -> None:
        super().__init__("validate: stack underflow")


class InvalidImmediateError(WasmError):
    def __init__(self, imm_type: str, op_name: str) -> None:
        self.imm_type = imm_type
        self.op_name = op_name
        super().__init__(f"invalid immediate for op {op_name} at (should be {imm_type})")


class UnmatchedOpError(WasmError):
    def __init__(self, op: int) -> None:
        self.op = op
        super().__init__(f"encountered unmatched {ops.lookup(op).name}")


class InvalidLabelError(WasmError):
    def __init__(self, depth: int) -> None:
        self.depth = depth
        super().__init__(f"invalid nesting depth {depth}")


class InvalidLocalIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"invalid index for local variable {index}")


class InvalidTypeError(WasmError):
    def __init__(self, wanted: int, got: Optional[int]) -> None:
        self.wanted = wanted
        self.got = 0 if got is None else got
        super().__init__(f"invalid type, got: {_type_name(got)}, wanted: {_type_name(wanted)}")


class InvalidElementIndexError(WasmError):
    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"invalid element index {index}")


class NoSectionError(WasmError):
    def __init__(self, section_id: int) -> None:
        self.section_id = section_id
        super().__init__(
            f"reference to non existant section (id {int(section_id)}) in module"
        )


@dataclass
class _Block:
    """A control structure opened by block, loop or if."""

    pc: int
    stack_top: int
    block_type: int
    op: int
    polymorphic: bool
    loop: bool


class _MockVM:
    """Tracks operand types and open blocks while walking bytecode."""

    def __init__(self, sig: FunctionSig, code: bytes) -> None:
        self.stack: list[int] = []
        self.stack_top = 0
        self.code = io.BytesIO(code)
        self.polymorphic = False
        self.blocks: list[_Block] = []
        self.sig = sig

    @property
    def pc(self) -> int:
        return self.code.tell()

    def is_polymorphic(self) -> bool:
        if not self.blocks:
            return self.polymorphic
        return self.blocks[-1].polymorphic

    def set_polymorphic(self) -> None:
        """Mark the innermost block's stack as polymorphic; type checks are skipped."""
        if not self.blocks:
            self.polymorphic = True
        else:
            self.blocks[-1].polymorphic = True

    def push_block(self, op: int, block_type: int) -> None:
        _logger.debug("pushing block %d", block_type)
        self.blocks.append(
            _Block(
                pc=self.pc,
                stack_top=self.stack_top,
                block_type=block_type,
                op=op,
                polymorphic=self.is_polymorphic(),
                loop=op == ops.LOOP,
            )
        )

    def pop_block(self) -> Optional[_Block]:
        return self.blocks.pop() if self.blocks else None

    def top_block(self) -> Optional[_Block]:
        return self.blocks[-1] if self.blocks else None

    def top_operand(self) -> Optional[int]:
        if self.stack_top == 0:
            return None
        return self.stack[self.stack_top - 1]

    def pop_operand(self) -> Optional[int]:
        if self.stack_top == 0:
            return None
        self.stack_top -= 1
        return self.stack[self.stack_top]

    def push_operand(self, t: int) -> None:
        if self.stack_top == len(self.stack):
            self.stack.append(t)
        else:
            self.stack[self.stack_top] = t
        self.stack_top += 1

    def expect(self, wanted: int) -> None:
        """Pop an operand, which must have type ``wanted`` unless polymorphic."""
        got = self.pop_operand()
        if not self.is_polymorphic() and (got is None or got != wanted):
            raise InvalidTypeError(wanted, got)

    def adjust_stack(self, op: ops.Op) -> None:
        for t in op.args:
            self.expect(t)
        if op.returns != BLOCK_TYPE_EMPTY:
            self.push_operand(op.returns)

    def _branch_error(self, depth: int) -> Optional[WasmError]:
        block_type = BLOCK_TYPE_EMPTY
        if depth >= len(self.blocks):
            if depth != len(self.blocks):
                return InvalidLabelError(depth)
            # Branching out of the implicit function block acts as a return.
            if self.sig.return_types:
                block_type = self.sig.return_types[0]
        else:
            block = self.blocks[-1 - depth]
            # Jumping to the start of a loop pushes no value.
            if not block.loop:
                block_type = block.block_type
        if block_type != BLOCK_TYPE_EMPTY:
            top = self.top_operand()
            if top is None or top != block_type:
                return InvalidTypeError(block_type, top)
        return None

    def check_branch(self, depth: int) -> None:
        err = self._branch_error(depth)
        if err is not None and not self.is_polymorphic():
            raise err

    def operand_types(self) -> list[int]:
        return list(self.stack[: self.stack_top])


def _local_types(sig: FunctionSig, body: FunctionBody) -> list[int]:
    types = list(sig.param_types)
    for entry in body.locals:
        types.extend([entry.type] * entry.count)
    return types


def _pop_call_args(vm: _MockVM, sig: FunctionSig) -> None:
    for arg_type in reversed(sig.param_types):
        vm.expect(arg_type)
    if sig.return_types:
        vm.push_operand(sig.return_types[0])


def _run(vm: _MockVM, sig: FunctionSig, body: FunctionBody, module: Module) -> None:
    local_types = _local_types(sig, body)
    code = vm.code

    while raw := code.read(1):
        op = raw[0]
        info = ops.lookup(op)
        _logger.debug("pc %d op %s polymorphic %s", vm.pc, info.name, vm.is_polymorphic())

        if not info.polymorphic:
            vm.adjust_stack(info)

        if op in (ops.IF, ops.BLOCK, ops.LOOP):
            block_sig = read_var_int32(code)
            if block_sig in _BLOCK_SIGNATURES:
                vm.push_block(op, block_sig)
            elif not vm.is_polymorphic():
                raise InvalidImmediateError("block_type", info.name)

        elif op == ops.ELSE:
            block = vm.top_block()
            if block is None or block.op != ops.IF:
                raise UnmatchedOpError(op)
            if block.block_type != BLOCK_TYPE_EMPTY:
                top = vm.top_operand()
                if not vm.is_polymorphic() and (top is None or top != block.block_type):
                    raise InvalidTypeError(block.block_type, top)
                vm.push_operand(block.block_type)
            vm.stack_top = block.stack_top

        elif op == ops.END:
            polymorphic = vm.is_polymorphic()
            block = vm.pop_block()
            if block is None:
                raise UnmatchedOpError(op)
            if block.block_type != BLOCK_TYPE_EMPTY:
                top = vm.top_operand()
                if not polymorphic and (top is None or top != block.block_type):
                    raise InvalidTypeError(block.block_type, top)
                vm.stack_top = block.stack_top
                vm.push_operand(block.block_type)
            else:
                vm.stack_top = block.stack_top

        elif op in (ops.BR_IF, ops.BR):
            vm.check_branch(read_var_uint32(code))
            if op == ops.BR:
                vm.set_polymorphic()

        elif op == ops.BR_TABLE:
            vm.expect(ValueType.I32)
            for _ in range(read_var_uint32(code)):
                vm.check_branch(read_var_uint32(code))
            vm.check_branch(read_var_uint32(code))
            vm.set_polymorphic()

        elif op == ops.RETURN:
            if len(sig.return_types) > 1:
                raise WasmError("functions with more than one result are not supported")
            if sig.return_types:
                vm.expect(sig.return_types[0])
            vm.set_polymorphic()

        elif op == ops.UNREACHABLE:
            vm.set_polymorphic()

        elif op == ops.I32_CONST:
            read_var_uint32(code)
        elif op == ops.I64_CONST:
            read_var_int64(code)
        elif op == ops.F32_CONST:
            read_u32(code)
        elif op == ops.F64_CONST:
            read_u64(code)

        elif op in (ops.GET_LOCAL, ops.SET_LOCAL, ops.TEE_LOCAL):
            index = read_var_uint32(code)
            if index >= len(local_types):
                raise InvalidLocalIndexError(index)
            local_type = local_types[index]
            if op == ops.GET_LOCAL:
                vm.push_operand(local_type)
            else:
                vm.expect(local_type)
                if op == ops.TEE_LOCAL:
                    vm.push_operand(local_type)

        elif op in (ops.GET_GLOBAL, ops.SET_GLOBAL):
            index = read_var_uint32(code)
            entry = module.get_global(index)
            if entry is None:
                raise InvalidGlobalIndexError(index)
            if op == ops.GET_GLOBAL:
                vm.push_operand(entry.type.type)
            else:
                vm.expect(entry.type.type)

        elif op in _MEMORY_OPS:
            read_var_uint32(code)  # flags
            read_var_uint32(code)  # offset

        elif op in (ops.CURRENT_MEMORY, ops.GROW_MEMORY):
            read_var_uint32(code)

        elif op == ops.CALL:
            index = read_var_uint32(code)
            fn = module.get_function(index)
            if fn is None:
                raise InvalidFunctionIndexError(index)
            _logger.debug("calling function %s", fn.sig)
            _pop_call_args(vm, fn.sig)

        elif op == ops.CALL_INDIRECT:
            if module.tables is None or not module.tables.entries:
                raise NoSectionError(SectionID.TABLE)
            # Only the signature index can be checked statically; the
            # function index on the stack is known only at run time.
            index = read_var_uint32(code)
            if module.types is None or index >= len(module.types.entries):
                raise WasmError(f"invalid index to type section: {index}")
            expected = module.types.entries[index]
            vm.expect(ValueType.I32)
            _pop_call_args(vm, expected)

        elif op == ops.DROP:
            if vm.pop_operand() is None and not vm.is_polymorphic():
                raise StackUnderflowError()

        elif op == ops.SELECT:
            if vm.is_polymorphic():
                continue
            cond = vm.pop_operand()
            if cond is None or cond != ValueType.I32:
                raise InvalidTypeError(ValueType.I32, cond)
            first = vm.pop_operand()
            second = vm.pop_operand()
            if first is None or second is None:
                raise StackUnderflowError()
            if first != second:
                raise InvalidTypeError(second, first)
            vm.push_operand(second)


def verify_body(sig: FunctionSig, body: FunctionBody, module: Module) -> list[int]:
    """Check one function body against its signature.

    Return the operand types left on the stack at the end of the body.
    """
    vm = _MockVM(sig, body.code)
    _run(vm, sig, body, module)
    return vm.operand_types()


def verify_module(module: Module) -> None:
    """Validate every function in the module's function index space."""
    if module.functions is None or module.types is None or not module.types.entries:
        return
    if module.code is None:
        raise NoSectionError(SectionID.CODE)

    for i, fn in enumerate(module.function_index_space):
        vm = _MockVM(fn.sig, fn.body.code)
        try:
            _run(vm, fn.sig, fn.body, module)
        except (WasmError, EOFError) as err:
            raise ValidationError(vm.pc, i, err) from err
        _logger.debug("no errors in function %d", i)