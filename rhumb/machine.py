"""The bytecode machine: stack, cactus-stack frames and instruction dispatch."""

import contextlib
from dataclasses import dataclass
from enum import IntEnum
from functools import partial
from typing import Callable, Protocol

from rhumb import space
from rhumb.arithmetic import (
    VMError,
    add_values,
    coerce_number,
    deviation,
    divide_values,
    greater_or_equal,
    greater_than,
    int_divide,
    is_equal,
    is_falsy,
    is_strict_equal,
    is_truthy,
    less_or_equal,
    less_than,
    modulo,
    multiply_values,
    negate_number,
    power,
    root,
    sci_not,
    subtract_values,
)
from rhumb.frames import CallFrame
from rhumb.opcodes import OpCode, opcode_name
from rhumb.values import (
    Chunk,
    Closure,
    Function,
    Map,
    Tuple,
    Upvalue,
    Value,
    ValueType,
    new_boolean,
    new_empty,
    new_map,
)

STACK_MAX = 2048
MAX_FRAMES = 64

_SEND_INDEX_PREFIX_DIGITS = "0123456789"


class Result(IntEnum):
    """Outcome of running the machine."""

    OK = 0
    COMPILE_ERROR = 1
    RUNTIME_ERROR = 2
    HALT = 3

    def __str__(self) -> str:
        return {
            Result.OK: "Ok",
            Result.COMPILE_ERROR: "CompileError",
            Result.RUNTIME_ERROR: "RuntimeError",
            Result.HALT: "Halt",
        }[self]


@dataclass
class VMConfig:
    """Tracing switches for the machine."""

    trace_stack: bool = False
    trace_space: bool = False


class Loader(Protocol):
    """Resolves library references into values."""

    def load(self, resolver: str, logical_path: str, constraint: Value) -> Value:
        """Load the library at ``logical_path`` through ``resolver``."""


def _leading_int(text: str) -> int | None:
    """The decimal integer at the start of ``text`` (after blanks), or None."""
    stripped = text.lstrip()
    sign = ""
    if stripped[:1] in ("+", "-"):
        sign, stripped = stripped[0], stripped[1:]
    digits = ""
    for ch in stripped:
        if ch not in _SEND_INDEX_PREFIX_DIGITS:
            break
        digits += ch
    if not digits:
        return None
    return int(sign + digits)


class VM:
    """A stack machine executing chunks of bytecode."""

    def __init__(self, config: VMConfig | None = None, loader: Loader | None = None) -> None:
        self.current_frame: CallFrame | None = None
        self.stack: list[Value] = [Value(ValueType.INTEGER)] * STACK_MAX
        self.sp = 0
        self.config = config if config is not None else VMConfig()
        self.loader = loader
        self._handlers: dict[OpCode, Callable[[], Result | None]] = self._build_handlers()

    # --- Entry points ---

    def interpret(self, chunk: Chunk) -> Result:
        """Run ``chunk`` as a top-level script until it halts."""
        closure = Closure(fn=Function(name="<script>", chunk=chunk))
        self.current_frame = CallFrame(closure=closure, parent=None, ip=0, base=0)
        return self.run()

    def call_and_return(self, chunk: Chunk) -> Value:
        """Run ``chunk`` in a fresh frame and return the value it leaves."""
        closure = Closure(fn=Function(name="<library>", chunk=chunk))
        self.push(Value(ValueType.OBJECT, obj=closure))
        self.current_frame = CallFrame(
            closure=closure, parent=self.current_frame, ip=0, base=self.sp
        )
        result = self.run_synchronous()
        if result not in (Result.OK, Result.HALT):
            raise VMError(f"library execution failed: {result}")
        if self.sp == 0:
            return new_empty()
        return self.pop()

    def continue_from(self, offset: int) -> Result:
        """Resume the current frame at ``offset``."""
        if self.current_frame is None:
            raise VMError("no active frame to continue")
        self.current_frame.ip = offset
        return self.run()

    # --- Stack ---

    def push(self, val: Value) -> None:
        if self.sp >= STACK_MAX:
            raise VMError("stack overflow")
        self.stack[self.sp] = val
        self.sp += 1

    def pop(self) -> Value:
        if self.sp == 0:
            raise VMError("stack underflow")
        self.sp -= 1
        return self.stack[self.sp]

    def peek(self, distance: int) -> Value:
        index = self.sp - 1 - distance
        if index < 0 or index >= self.sp:
            raise VMError("stack underflow")
        return self.stack[index]

    # --- Instruction stream ---

    def _frame(self) -> CallFrame:
        if self.current_frame is None:
            raise VMError("no active frame")
        return self.current_frame

    def read_byte(self) -> int:
        frame = self._frame()
        code = frame.closure.fn.chunk.code
        if frame.ip >= len(code):
            raise VMError("unexpected end of bytecode")
        b = code[frame.ip]
        frame.ip += 1
        return b

    def read_short(self) -> int:
        """Read a big-endian signed 16-bit operand."""
        high = self.read_byte()
        low = self.read_byte()
        value = (high << 8) | low
        return value - 0x10000 if value >= 0x8000 else value

    def _constant(self, index: int) -> Value:
        return self._frame().closure.fn.chunk.constants[index]

    # --- Execution loops ---

    def run_synchronous(self) -> Result:
        """Step until the frame active on entry returns or execution stops."""
        start_depth = self.current_frame.depth() if self.current_frame else 0
        while True:
            result = self.step()
            if result != Result.OK:
                return result
            depth = self.current_frame.depth() if self.current_frame else 0
            if depth < start_depth:
                return Result.OK

    def run(self) -> Result:
        """Step until execution stops."""
        while True:
            result = self.step()
            if result != Result.OK:
                return result

    def step(self) -> Result:
        """Execute one instruction."""
        frame = self._frame()
        code = frame.closure.fn.chunk.code
        if frame.ip >= len(code):
            raise VMError("IP out of bounds")

        if self.config.trace_stack:
            cells = "".join(f"[ {value} ]" for value in self.stack[: self.sp])
            print("          " + cells)
            print(f"{frame.ip:04d} {opcode_name(code[frame.ip])}")

        instruction = code[frame.ip]
        frame.ip += 1

        try:
            op = OpCode(instruction)
        except ValueError:
            raise VMError(f"unknown opcode: {instruction}") from None
        handler = self._handlers.get(op)
        if handler is None:
            raise VMError(f"unknown opcode: {instruction}")
        result = handler()
        return Result.OK if result is None else result

    # --- Dispatch table ---

    def _build_handlers(self) -> dict[OpCode, Callable[[], Result | None]]:
        binary = self._binary
        unary = self._unary
        return {
            OpCode.HALT: lambda: Result.HALT,
            OpCode.LOAD_CONST: self._op_load_const,
            OpCode.LOAD_LOC: self._op_load_loc,
            OpCode.STORE_LOC: self._op_store_loc,
            OpCode.LOAD_UPVALUE: self._op_load_upvalue,
            OpCode.STORE_UPVALUE: self._op_store_upvalue,
            OpCode.DUP: lambda: self.push(self.peek(0)),
            OpCode.POP: self._op_pop,
            OpCode.JUMP: self._op_jump,
            OpCode.JUMP_IF_FALSE: partial(self._op_conditional_jump, is_falsy),
            OpCode.JUMP_IF_TRUE: partial(self._op_conditional_jump, is_truthy),
            OpCode.CALL: self._op_call,
            OpCode.RETURN: self._op_return,
            OpCode.MAKE_FN: self._op_make_fn,
            OpCode.MAKE_MAP: lambda: self.push(Value(ValueType.OBJECT, obj=new_map())),
            OpCode.LOAD_STATIC: partial(self._not_implemented, "OP_LOAD_STATIC"),
            OpCode.MATCH_BIND: partial(self._not_implemented, "OP_MATCH_BIND"),
            OpCode.RESOLVE: self._op_resolve,
            OpCode.SEND: self._op_send,
            OpCode.SET_FIELD: self._op_set_field,
            OpCode.POST: partial(space.post, self),
            OpCode.INJECT: partial(space.inject, self),
            OpCode.WRITE: partial(space.write, self),
            OpCode.SUBSCRIBE: partial(space.subscribe, self),
            OpCode.NEW_REALM: partial(space.new_realm, self),
            OpCode.MONITOR: partial(space.monitor, self),
            OpCode.ADD: partial(binary, add_values),
            OpCode.SUB: partial(binary, subtract_values),
            OpCode.MULT: partial(binary, multiply_values),
            OpCode.DIV_FLOAT: partial(binary, divide_values),
            OpCode.DIV_INT: partial(binary, int_divide),
            OpCode.MOD: partial(binary, modulo),
            OpCode.POW: partial(binary, power),
            OpCode.ROOT: partial(binary, root),
            OpCode.SCI_NOT: partial(binary, sci_not),
            OpCode.DEV: partial(binary, deviation),
            OpCode.COERCE_NUM: partial(unary, coerce_number),
            OpCode.NUM_NEG: partial(unary, negate_number),
            OpCode.COALESCE: partial(binary, space.coalesce),
            OpCode.CONCAT: partial(binary, space.concat_values),
            OpCode.RANGE: partial(binary, space.make_range),
            OpCode.HAS_SUBFIELD: partial(space.has_subfield, self),
            OpCode.ACCESS_NESTED: partial(space.access_nested, self),
            OpCode.PIPE: partial(space.pipe, self),
            OpCode.FOREACH: self._op_foreach,
            OpCode.AND: partial(binary, lambda a, b: new_boolean(is_truthy(a) and is_truthy(b))),
            OpCode.OR: partial(binary, lambda a, b: new_boolean(is_truthy(a) or is_truthy(b))),
            OpCode.NOT: partial(unary, lambda v: new_boolean(is_falsy(v))),
            OpCode.EQ: partial(binary, lambda a, b: new_boolean(is_equal(a, b))),
            OpCode.NEQ: partial(binary, lambda a, b: new_boolean(not is_strict_equal(a, b))),
            OpCode.GT: partial(binary, greater_than),
            OpCode.LT: partial(binary, less_than),
            OpCode.GTE: partial(binary, greater_or_equal),
            OpCode.LTE: partial(binary, less_or_equal),
            OpCode.ASSERT_EQ: self._op_assert_eq,
            OpCode.INSPECT: self._op_inspect,
            OpCode.SELECT: lambda: None,
            OpCode.MATCH_STRUCT: partial(space.match_struct, self),
            OpCode.MATCH_TUPLE: partial(space.match_tuple, self),
        }

    def _binary(self, operation: Callable[[Value, Value], Value]) -> None:
        b = self.pop()
        a = self.pop()
        self.push(operation(a, b))

    def _unary(self, operation: Callable[[Value], Value]) -> None:
        self.push(operation(self.pop()))

    @staticmethod
    def _not_implemented(name: str) -> None:
        raise VMError(f"{name} not implemented")

    # --- Stack and scope instructions ---

    def _op_pop(self) -> None:
        self.pop()

    def _op_load_const(self) -> None:
        self.push(self._constant(self.read_byte()))

    def _op_load_loc(self) -> None:
        slot = self.read_byte()
        self.push(self.stack[self._frame().base + slot])

    def _op_store_loc(self) -> None:
        slot = self.read_byte()
        self.stack[self._frame().base + slot] = self.peek(0)

    def _upvalue(self, index: int) -> Upvalue:
        upvalues = self._frame().closure.upvalues
        if index >= len(upvalues):
            raise VMError(f"upvalue index {index} out of bounds (len {len(upvalues)})")
        return upvalues[index]

    def _op_load_upvalue(self) -> None:
        upvalue = self._upvalue(self.read_byte())
        if upvalue.location is not None:
            self.push(self.stack[upvalue.location])
        else:
            self.push(upvalue.closed)

    def _op_store_upvalue(self) -> None:
        upvalue = self._upvalue(self.read_byte())
        value = self.peek(0)
        if upvalue.location is not None:
            self.stack[upvalue.location] = value
        else:
            upvalue.closed = value

    # --- Flow instructions ---

    def _op_jump(self) -> None:
        offset = self.read_short()
        self._frame().ip += offset

    def _op_conditional_jump(self, should_jump: Callable[[Value], bool]) -> None:
        offset = self.read_short()
        if should_jump(self.pop()):
            self._frame().ip += offset

    # --- Function instructions ---

    def _op_make_fn(self) -> None:
        frame = self._frame()
        fn = self._constant(self.read_byte()).obj
        if not isinstance(fn, Function):
            raise VMError("constant is not a function")
        closure = Closure(fn=fn)
        for _ in range(fn.upvalue_count):
            is_local = self.read_byte()
            index = self.read_byte()
            if is_local == 1:
                closure.upvalues.append(Upvalue(location=frame.base + index))
            else:
                closure.upvalues.append(frame.closure.upvalues[index])
        self.push(Value(ValueType.OBJECT, obj=closure))

    def _op_call(self) -> None:
        arg_count = self.read_byte()
        callee = self.peek(arg_count)
        if callee.type != ValueType.OBJECT or not isinstance(callee.obj, Closure):
            raise VMError("can only call closures")
        closure = callee.obj
        if arg_count != closure.fn.arity:
            raise VMError(f"arity mismatch: expected {closure.fn.arity}, got {arg_count}")
        self.current_frame = CallFrame(
            closure=closure, parent=self.current_frame, ip=0, base=self.sp - arg_count
        )

    def _op_return(self) -> Result | None:
        result = self.pop()
        frame = self._frame()
        self.current_frame = frame.parent
        self.sp = frame.base - 1 if frame.base > 0 else frame.base
        self.push(result)
        if self.current_frame is None:
            return Result.HALT
        return None

    # --- Map and library instructions ---

    def _op_resolve(self) -> None:
        version = self.pop()
        path = self.pop()
        resolver = self.pop()
        if self.loader is None:
            raise VMError("no library loader configured")
        self.push(self.loader.load(resolver.text, path.text, version))

    def _op_send(self) -> None:
        key = self._constant(self.read_byte()).text
        receiver = self.pop()
        if receiver.type != ValueType.OBJECT:
            raise VMError("receiver is not an object")
        if isinstance(receiver.obj, Map):
            found = receiver.obj.get(key)
            self.push(new_empty() if found is None else found)
            return
        if isinstance(receiver.obj, Tuple):
            payload = receiver.obj.payload
            index = _leading_int(key)
            if index is not None and 0 < index <= len(payload):
                self.push(payload[index - 1])
                return
            raise VMError(f"tuple index out of bounds or invalid: {key}")
        raise VMError("receiver is not a map or tuple")

    def _op_set_field(self) -> None:
        index = self.read_byte()
        flags = self.read_byte()
        key = self._constant(index).text
        value = self.pop()
        receiver = self.pop()
        if receiver.type != ValueType.OBJECT:
            raise VMError("receiver is not an object")
        if not isinstance(receiver.obj, Map):
            raise VMError("receiver is not a map")
        receiver.obj.set(key, value, (flags & 1) == 1)
        self.push(value)

    def _op_foreach(self) -> None:
        # Failures inside an iteration are not reported by this instruction.
        with contextlib.suppress(VMError):
            space.foreach(self)

    # --- Testing instructions ---

    def _op_inspect(self) -> None:
        print(f"INSPECT: {self.pop().canonical()}")

    def _op_assert_eq(self) -> None:
        name_val = self.pop()
        expected = self.pop()
        actual = self.pop()
        expected_text = expected.text
        actual_text = actual.canonical()
        name = name_val.text if name_val.type == ValueType.TEXT else ""
        suffix = f" ({name})" if name else ""
        if actual_text != expected_text:
            print(f"FAIL: Expected '{expected_text}', got '{actual_text}'{suffix}")
        else:
            print(f"PASS: {actual_text}{suffix}")