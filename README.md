# wasmkit

A pure-Python library for working with WebAssembly binary modules (the MVP
format). It decodes `.wasm` data into plain Python objects, writes modules
back out in the binary format, resolves imports between modules, builds the
function, global, table and linear-memory index spaces, and statically
validates function bodies.

## Installation

```
pip install wasmkit
```

To run the test suite, install the test extra and run pytest from the
project directory:

```
pip install "wasmkit[test]"
pytest tests
```

## Decoding and re-encoding a module

```python
import io
from wasmkit.module import decode_module, encode_module

with open("program.wasm", "rb") as fh:
    module = decode_module(fh)

out = io.BytesIO()
encode_module(out, module)
```

`decode_module` accepts a binary stream or a `bytes` object and only parses
the sections; they are kept in `module.sections` in the order they were read,
and the known ones are also available as attributes (`module.types`,
`module.imports`, `module.functions`, `module.code`, `module.exports`, ...).
Custom sections are collected in `module.customs`, and `module.custom(name)`
finds one by name. `encode_module` writes the sections in that same order;
export entries are written sorted by their index.

`read_module` decodes the module too, then resolves its imports and fills in
the index spaces:

```python
from wasmkit.module import read_module

def resolve(name):
    with open(f"{name}.wasm", "rb") as fh:
        return read_module(fh)

with open("program.wasm", "rb") as fh:
    module = read_module(fh, resolve)

fn = module.get_function(0)
print(fn.sig)
```

Without a resolver, imports are left unresolved. After `read_module`,
`get_function`, `get_global`, `get_table_element` and
`get_linear_memory_data` look entries up in the index spaces, and
`exec_init_expr` evaluates a constant initializer expression against the
module's globals. Problems are reported as subclasses of
`wasmkit.types.WasmError`, such as `InvalidMagicError`,
`ExportNotFoundError` or `InvalidImportError`.

## Validating

Validation works on the function index space, so read the module with
`read_module` first:

```python
from wasmkit.validate import ValidationError, verify_module

try:
    verify_module(module)
except ValidationError as err:
    print(err)
```

A `ValidationError` carries the index of the function (`err.function`), the
byte offset in its code where checking stopped (`err.offset`) and the cause
(`err.err`): an `InvalidTypeError`, `UnmatchedOpError`, `InvalidLabelError`,
`InvalidLocalIndexError`, `InvalidImmediateError`, `StackUnderflowError`, and
so on. `verify_body(sig, body, module)` checks a single body and returns the
operand types left on the stack.

## Lower-level pieces

- `wasmkit.leb128`: LEB128 variable-length integers (`read_var_uint32`,
  `read_var_int32`, `read_var_int64`, `write_var_uint32`, `write_var_int64`,
  `append_uleb128`, `append_sleb128`).
- `wasmkit.wire`: fixed-width and length-prefixed reads and writes, and
  `ReadPos`, a stream wrapper that counts the bytes read.
- `wasmkit.types`: `ValueType`, `External`, `FunctionSig`, `GlobalVar`,
  `Table`, `Memory` and `ResizableLimits`, each with `read` and `write`.
- `wasmkit.operators`: the opcode table. `lookup(code)` returns an `Op`
  with its name, argument types and result type; `OpTable` builds a table of
  your own.
- `wasmkit.sections`: one class per section, with `read_payload` and
  `write_payload`, and the entries they hold.
- `wasmkit.initexpr`: reading (`read_init_expr`) and evaluating
  (`exec_init_expr`) constant initializer expressions.

Call `wasmkit.module.set_debug_mode(True)` to send decoder debug logging to
stderr.

## What it does not do

- It does not execute code: there is no interpreter or runtime, only
  decoding, encoding, linking of imports and static checking.
- It does not interpret custom sections: the `name` section and any other
  custom section is kept as a `SectionCustom` holding its name and raw bytes.
- It has no command-line tool and no text-format (`.wat`) reader or writer.