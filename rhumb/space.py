"""Structural operators and the signal space: realms, listeners and monitors."""

import re

from rhumb.arithmetic import VMError
from rhumb.frames import CallFrame
from rhumb.values import (
    Closure,
    FieldDesc,
    FieldKind,
    Legend,
    LegendType,
    Map,
    Range,
    Tuple,
    Value,
    ValueType,
    new_boolean,
    new_empty,
    new_int,
    new_map,
    new_signal,
)

# The machine's Result.OK; run_synchronous reports anything else as a stop.
_OK = 0

_INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")


def _field_number(name: str) -> int | None:
    """The integer a field name spells, or None."""
    if not _INTEGER_TEXT.fullmatch(name):
        return None
    return int(name)


def _object_value(obj) -> Value:
    return Value(ValueType.OBJECT, obj=obj)


def _as_map(v: Value) -> Map | None:
    if v.type == ValueType.OBJECT and isinstance(v.obj, Map):
        return v.obj
    return None


def _as_closure(v: Value) -> Closure | None:
    if v.type == ValueType.OBJECT and isinstance(v.obj, Closure):
        return v.obj
    return None


def _constant_text(vm, index: int) -> str:
    return vm.current_frame.closure.fn.chunk.constants[index].text


def _pop_args(vm, count: int) -> list[Value]:
    args = [vm.pop() for _ in range(count)]
    args.reverse()
    return args


def _trace(vm, message: str) -> None:
    if vm.config.trace_space:
        print(message)


def _enter(vm, closure: Closure, base: int, monitor: Closure | None = None) -> None:
    vm.current_frame = CallFrame(
        closure=closure,
        parent=vm.current_frame,
        ip=0,
        base=base,
        monitor=monitor,
    )


def _call_with(vm, callee: Value, closure: Closure, arg: Value):
    """Push ``callee`` and ``arg``, run the closure to its return, give the result code."""
    vm.push(callee)
    vm.push(arg)
    _enter(vm, closure, vm.sp - 1)
    return vm.run_synchronous()


# --- Pure structural operators ---


def coalesce(a: Value, b: Value) -> Value:
    """``b`` when ``a`` is empty, otherwise ``a``."""
    return b if a.type == ValueType.EMPTY else a


def concat_values(a: Value, b: Value) -> Value:
    """Join two texts, or two maps renumbering the second map's positions."""
    if a.type == ValueType.TEXT and b.type == ValueType.TEXT:
        return Value(ValueType.TEXT, text=a.text + b.text)

    map_a, map_b = _as_map(a), _as_map(b)
    if map_a is None or map_b is None:
        return new_empty()

    joined = new_map()
    for desc, value in zip(map_a.legend.fields, map_a.fields):
        joined.legend.fields.append(FieldDesc(name=desc.name, kind=desc.kind))
        joined.fields.append(value)

    highest = max(
        (n for n in (_field_number(d.name) for d in map_a.legend.fields) if n is not None),
        default=0,
    )
    highest = max(highest, 0)

    for desc, value in zip(map_b.legend.fields, map_b.fields):
        name = desc.name
        position = _field_number(name)
        if position is not None and position > 0:
            name = str(highest + position)
        joined.legend.fields.append(FieldDesc(name=name, kind=desc.kind))
        joined.fields.append(value)

    return _object_value(joined)


def make_range(a: Value, b: Value) -> Value:
    """An inclusive range between two integers; empty for anything else."""
    if a.type != ValueType.INTEGER or b.type != ValueType.INTEGER:
        return new_empty()
    return Value(ValueType.RANGE, obj=Range(start=a.integer, end=b.integer))


def bundle_payload(args: list[Value]) -> Value:
    """Reply payload: empty, the single value, or a list map of all of them."""
    if not args:
        return new_empty()
    if len(args) == 1:
        return args[0]
    bundle = Map(
        legend=Legend(
            kind=LegendType.MAP,
            fields=[FieldDesc(name=str(i), kind=FieldKind.MUTABLE) for i in range(1, len(args) + 1)],
        ),
        fields=list(args),
    )
    return _object_value(bundle)


# --- Machine operations ---


def monitor(vm) -> None:
    """Run a closure target under a selector, or call the selector on the target."""
    selector_val = vm.pop()
    target = vm.peek(0)

    selector = _as_closure(selector_val)
    if selector is None:
        raise VMError("monitor must be a selector closure")

    target_closure = _as_closure(target)
    if target_closure is not None:
        _enter(vm, target_closure, vm.sp, monitor=selector)
        return

    vm.pop()
    vm.push(selector_val)
    vm.push(target)
    _enter(vm, selector, vm.sp - 1)


def post(vm) -> None:
    """Send a signal to the receiver's listeners, then bubble it up to monitors."""
    index = vm.read_byte()
    argc = vm.read_byte()
    args = _pop_args(vm, argc)
    receiver = vm.pop()

    frame = vm.current_frame
    name = _constant_text(vm, index)
    signal = new_signal(name, frame, args)

    _trace(vm, f"TRACE: Signal Posted: #{name} to {receiver}")

    receiver_map = _as_map(receiver)
    if receiver_map is not None:
        for listener in list(receiver_map.listeners):
            closure = _as_closure(listener)
            if closure is None:
                continue
            if _call_with(vm, listener, closure, signal) != _OK:
                continue

            result = vm.peek(0)
            chained = _as_closure(result)
            if chained is not None:
                _trace(vm, "TRACE: Listener returned Closure -> Executing Chain")
                vm.pop()
                _call_with(vm, result, chained, signal)
                result = vm.peek(0)

            if result.type != ValueType.EMPTY:
                _trace(vm, f"TRACE: Signal Consumed by Receiver: {result}")
                return
            vm.pop()

    current = vm.current_frame
    while current is not None:
        if current.monitor is not None:
            _trace(vm, f"TRACE: Bubbled to Monitor in Frame {id(current):#x}")
            watcher = current.monitor
            if _call_with(vm, _object_value(watcher), watcher, signal) == _OK:
                result = vm.peek(0)
                if result.type != ValueType.EMPTY:
                    _trace(vm, f"TRACE: Signal Consumed by Monitor: {result}")
                    return
                vm.pop()
        current = current.parent

    _trace(vm, "TRACE: Signal Unhandled (Dropped)")
    vm.push(new_empty())


def inject(vm) -> None:
    """Answer a signal: replace it on the stack with the reply payload."""
    index = vm.read_byte()
    argc = vm.read_byte()

    if vm.config.trace_space:
        print(f"DEBUG: opInject argc={argc} SP={vm.sp}")
        for position, value in enumerate(vm.stack[: vm.sp]):
            print(f"Stack[{position}]: {value}")

    args = _pop_args(vm, argc)
    receiver = vm.pop()

    if vm.config.trace_space:
        name = _constant_text(vm, index)
        print(f"TRACE: Reply {name} Injected to {receiver} (Type: {int(receiver.type)})")

    vm.push(bundle_payload(args))


def write(vm) -> None:
    """Write a proclamation; it is dropped and leaves the empty value."""
    vm.read_byte()
    argc = vm.read_byte()
    for _ in range(argc):
        vm.pop()
    vm.pop()
    _trace(vm, "TRACE: Proclamation Written")
    vm.push(new_empty())


def subscribe(vm) -> None:
    """Attach the selector on top of the stack as a listener of the map below it."""
    selector = vm.pop()
    receiver = vm.pop()
    receiver_map = _as_map(receiver)
    if receiver_map is None:
        raise VMError("can only subscribe to maps")
    receiver_map.listeners.append(selector)
    _trace(vm, "TRACE: Subscribed listener to map")
    vm.push(new_empty())


def new_realm(vm) -> None:
    """Push a fresh realm, which is an empty map; the flags byte is consumed."""
    vm.read_byte()
    _trace(vm, "TRACE: New Realm")
    vm.push(_object_value(new_map()))


def foreach(vm) -> None:
    """Subscribe a selector to a map, or call a closure for each number of a range."""
    rhs = vm.pop()
    lhs = vm.pop()

    if _as_map(lhs) is not None:
        vm.push(lhs)
        vm.push(rhs)
        subscribe(vm)
        return

    if lhs.type == ValueType.RANGE and rhs.type == ValueType.OBJECT:
        closure = _as_closure(rhs)
        if closure is not None:
            span = lhs.obj
            step = -1 if span.start > span.end else 1
            callee = _object_value(closure)
            for number in range(span.start, span.end + step, step):
                if _call_with(vm, callee, closure, new_int(number)) != _OK:
                    return
                vm.pop()
            vm.push(new_empty())
            return

    vm.push(new_empty())


def has_subfield(vm) -> None:
    """Subfield test; always answers ``no``."""
    vm.pop()
    vm.pop()
    vm.push(new_boolean(False))


def pipe(vm) -> None:
    """Functional pipe; yields the empty value."""
    vm.pop()
    vm.pop()
    vm.push(new_empty())


def access_nested(vm) -> None:
    """Nested access; yields the empty value."""
    vm.pop()
    vm.pop()
    vm.push(new_empty())


def match_struct(vm) -> None:
    """Structural match; consumes its operand byte and answers ``no``."""
    vm.read_byte()
    vm.push(new_boolean(False))


def match_tuple(vm) -> None:
    """Push whether the value on top is a tuple of the given kind and topic."""
    kind = vm.read_byte()
    topic_index = vm.read_short()
    subject = vm.peek(0)

    matched = False
    if subject.type == ValueType.OBJECT and isinstance(subject.obj, Tuple):
        if int(subject.obj.kind) == kind:
            matched = subject.obj.topic == _constant_text(vm, topic_index)
    vm.push(new_boolean(matched))