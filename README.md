# rhumb

A runtime for the Rhumb language: its value model (maps with legends,
versions, dates, durations, decimals, signals) and a stack-based bytecode
virtual machine that runs chunks of bytecode.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `rhumb.values`: the frozen `Value` dataclass (`type`, `integer`, `real`,
  `text`, `obj`) with `canonical()`, `content()`, `version_unpack()` and
  `key_id()`; constructors `new_empty`, `new_int`, `new_float`, `new_text`,
  `new_boolean`, `new_function`, `new_signal`, `new_version`, `new_key`,
  `new_map` and `new_legend`; heap objects `Map`, `Legend`, `FieldDesc`,
  `Tuple`, `Range`, `DecimalObject`, `Function`, `Closure`, `Upvalue`,
  `NativeFunction`; and `Chunk`, which holds bytecode, constants and line
  numbers (`write_byte`, `write_op`, `add_constant`).
  `Map.get` looks a key up locally and then through fields whose names start
  with `@`, returning `None` when nothing is found.
- `rhumb.opcodes`: the `OpCode` instruction set and `opcode_name`, which
  gives names such as `OP_ADD` or `OP_UNKNOWN(200)`.
- `rhumb.frames`: `CallFrame`, frames linked to their caller (a cactus
  stack), with `depth()`.
- `rhumb.arithmetic`: numeric promotion (integer, float, decimal), date and
  duration algebra, truthiness, strict and wildcard-aware equality, version
  comparison and ordering. Errors are raised as `VMError`.
- `rhumb.space`: structural operators (`coalesce`, `concat_values`,
  `make_range`, `bundle_payload`) and the machine operations for signals,
  replies, proclamations, subscriptions, realms, monitors, range iteration
  and tuple matching.
- `rhumb.machine`: the `VM`, with `VMConfig` (`trace_stack`, `trace_space`),
  `Result` (`OK`, `COMPILE_ERROR`, `RUNTIME_ERROR`, `HALT`) and the `Loader`
  protocol (`load(resolver, logical_path, constraint)`) used by the
  `RESOLVE` instruction.

## Running bytecode

```python
from rhumb.machine import VM, Result
from rhumb.opcodes import OpCode
from rhumb.values import Chunk, new_int

chunk = Chunk()
a = chunk.add_constant(new_int(1))
b = chunk.add_constant(new_int(2))
chunk.write_op(OpCode.LOAD_CONST, 1)
chunk.write_byte(a, 1)
chunk.write_op(OpCode.LOAD_CONST, 1)
chunk.write_byte(b, 1)
chunk.write_op(OpCode.ADD, 1)
chunk.write_op(OpCode.HALT, 1)

vm = VM()
assert vm.interpret(chunk) == Result.HALT
print(vm.peek(0).canonical())  # 3
```

`VM.interpret` runs a chunk as a top-level script until it halts;
`VM.continue_from(offset)` resumes the current frame at an offset;
`VM.call_and_return(chunk)` runs a chunk in a new frame and returns the value
it leaves. Runtime failures, including running past the end of the code,
raise `VMError`.

Values print in their canonical Rhumb form: `yes`/`no` for booleans, `___`
for empty, `'text'` for text, `1.2.-` for wildcard versions and
`2025/01/01@12:00:00` for dates.

## What this package does not do

- There is no parser or compiler: chunks are built by hand with `Chunk`.
- There is no command-line program.
- There is no library loader; `RESOLVE` needs a `Loader` passed to `VM`, and
  raises `VMError` without one.
- `LOAD_STATIC` and `MATCH_BIND` raise `VMError` as not implemented, and
  opcodes without a handler (such as `LET_FN`, `APPEND` or `FREEZE`) raise
  `VMError` as unknown. `DEV` and `PIPE` yield the empty value and
  `HAS_SUBFIELD` always answers `no`.