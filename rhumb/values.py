"""Runtime values, heap objects and bytecode chunks."""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable, ClassVar

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT64_MASK = (1 << 64) - 1
_WILDCARD_BIT = 1 << 63

_DAY_MS = 24 * 3600 * 1000
_YEAR_MS = 365 * _DAY_MS
_MONTH_MS = 30 * _DAY_MS

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")


class ValueType(IntEnum):
    INTEGER = 0
    FLOAT = 1
    DECIMAL = 2
    TEXT = 3
    OBJECT = 4
    EMPTY = 5
    BOOLEAN = 6
    DATETIME = 7
    DURATION = 8
    RANGE = 9
    VERSION = 10
    KEY = 11

    def __str__(self) -> str:
        return _VALUE_TYPE_LABELS[self]


_VALUE_TYPE_LABELS = {
    ValueType.INTEGER: "Integer",
    ValueType.FLOAT: "Float",
    ValueType.DECIMAL: "Decimal",
    ValueType.TEXT: "Text",
    ValueType.OBJECT: "Object",
    ValueType.EMPTY: "Empty",
    ValueType.BOOLEAN: "Boolean",
    ValueType.DATETIME: "DateTime",
    ValueType.DURATION: "Duration",
    ValueType.RANGE: "Range",
    ValueType.VERSION: "Version",
    ValueType.KEY: "Key",
}


class ObjectType(IntEnum):
    MAP = 0
    FUNCTION = 1
    CLOSURE = 2
    NATIVE = 3
    RANGE = 4
    TUPLE = 5
    DECIMAL = 6


class TupleKind(IntEnum):
    SIGNAL = 0
    REPLY = 1
    PROCLAMATION = 2


class FieldKind(IntEnum):
    IMMUTABLE = 0
    MUTABLE = 1


class LegendType(IntEnum):
    MAP = 0
    DICTIONARY = 1


def _atoi(text: str) -> int | None:
    """Parse a decimal integer the strict way; None when it is not one."""
    if not _INTEGER_TEXT.fullmatch(text):
        return None
    number = int(text)
    if number < _INT64_MIN or number > _INT64_MAX:
        return None
    return number


def _format_float(number: float) -> str:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "+Inf" if number > 0 else "-Inf"
    return f"{number:.6f}"


def _format_datetime(ms: int) -> str:
    if ms == 0:
        return "0000/00/00"
    moment = _EPOCH + timedelta(milliseconds=ms)
    date_part = f"{moment.year:04d}/{moment.month:02d}/{moment.day:02d}"
    clock = f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    if moment.hour == 0 and moment.minute == 0 and moment.second == 0 and moment.microsecond == 0:
        text = date_part
    elif moment.microsecond > 0:
        text = f"{date_part}@{clock}.{moment.microsecond // 1000:03d}"
    else:
        text = f"{date_part}@{clock}"
    epoch_prefix = "1970/01/01@"
    if (moment.year, moment.month, moment.day) == (1970, 1, 1) and text.startswith(epoch_prefix):
        return text[len(epoch_prefix):]
    return text


def _format_duration(ms: int) -> str:
    sign = "+"
    if ms < 0:
        sign = "-"
        ms = -ms

    years, rem = divmod(ms, _YEAR_MS)
    months, rem = divmod(rem, _MONTH_MS)
    days, rem = divmod(rem, _DAY_MS)
    date_text = f"{years:04d}/{months:02d}/{days:02d}" if (years or months or days) else ""

    hours, rem = divmod(rem, 3600 * 1000)
    minutes, rem = divmod(rem, 60 * 1000)
    seconds, millis = divmod(rem, 1000)
    time_text = ""
    if hours or minutes or seconds or millis:
        time_text = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
        if millis:
            time_text += f".{millis:03d}"

    if date_text and time_text:
        return sign + date_text + "@" + time_text
    if date_text or time_text:
        return sign + (date_text or time_text)
    return "+00:00:00"


@dataclass(frozen=True)
class Value:
    """A tagged runtime value; heap data lives in ``obj``."""

    type: ValueType
    integer: int = 0
    real: float = 0.0
    text: str = ""
    obj: Any = None

    def canonical(self) -> str:
        kind = self.type
        if kind == ValueType.INTEGER:
            return str(self.integer)
        if kind == ValueType.FLOAT:
            return _format_float(self.real)
        if kind == ValueType.DECIMAL:
            if not isinstance(self.obj, DecimalObject):
                raise TypeError("decimal value does not hold a decimal object")
            return self.obj.canonical()
        if kind == ValueType.TEXT:
            return f"'{self.text}'"
        if kind == ValueType.BOOLEAN:
            return "yes" if self.integer == 1 else "no"
        if kind == ValueType.EMPTY:
            return "___"
        if kind == ValueType.DATETIME:
            return _format_datetime(self.integer)
        if kind == ValueType.DURATION:
            return _format_duration(self.integer)
        if kind == ValueType.RANGE:
            return "<Range>"
        if kind == ValueType.OBJECT:
            return "nil" if self.obj is None else self.obj.canonical()
        if kind == ValueType.VERSION:
            return self._canonical_version()
        if kind == ValueType.KEY:
            return f":key({self.integer})"
        return f"?{int(kind)}"

    def _canonical_version(self) -> str:
        major, minor, patch, wildcard = self.version_unpack()
        if wildcard:
            if patch in (0xFFFFFFFF, 0):
                if minor in (0xFFFF, 0):
                    text = f"{major}.-"
                else:
                    text = f"{major}.{minor}.-"
            else:
                text = f"{major}.{minor}.{patch}.-"
        else:
            text = f"{major}.{minor}.{patch}"
        return text + self.text

    def __str__(self) -> str:
        return self.canonical()

    def content(self) -> str:
        """The raw text for text values, the canonical form otherwise."""
        if self.type == ValueType.TEXT:
            return self.text
        return self.canonical()

    def version_unpack(self) -> tuple[int, int, int, bool]:
        """Return (major, minor, patch, wildcard); zeros for non-versions."""
        if self.type != ValueType.VERSION:
            return 0, 0, 0, False
        raw = self.integer & _UINT64_MASK
        wildcard = bool(raw & _WILDCARD_BIT)
        major = (raw >> 48) & 0x7FFF
        minor = (raw >> 32) & 0xFFFF
        patch = raw & 0xFFFFFFFF
        return major, minor, patch, wildcard

    def key_id(self) -> int:
        """The interned id of a key value, or -1 for anything else."""
        if self.type != ValueType.KEY:
            return -1
        return self.integer


@dataclass(eq=False)
class DecimalObject:
    """Arbitrary-precision decimal held on the heap."""

    type: ClassVar[ObjectType] = ObjectType.DECIMAL
    raw: Decimal | None = None

    def canonical(self) -> str:
        if self.raw is None:
            return "00.0"
        return "0" + format(self.raw, "f")


@dataclass(eq=False)
class Tuple:
    """A signal, reply or proclamation message."""

    type: ClassVar[ObjectType] = ObjectType.TUPLE
    kind: TupleKind
    topic: str
    payload: list[Value] = field(default_factory=list)
    source: Any = None

    def canonical(self) -> str:
        marks = {TupleKind.SIGNAL: "#", TupleKind.REPLY: "^", TupleKind.PROCLAMATION: "$"}
        return f"<{marks.get(self.kind, '')}{self.topic}>"


@dataclass(eq=False)
class Range:
    """An inclusive integer range, iterated lazily."""

    type: ClassVar[ObjectType] = ObjectType.RANGE
    start: int
    end: int

    def canonical(self) -> str:
        return "<Range>"


@dataclass
class FieldDesc:
    name: str
    kind: FieldKind = FieldKind.IMMUTABLE


@dataclass(eq=False)
class Legend:
    """The field layout shared by a map."""

    kind: LegendType = LegendType.MAP
    fields: list[FieldDesc] = field(default_factory=list)
    lookup: dict[str, int] = field(default_factory=dict)

    def find_index(self, key: str) -> int | None:
        """Position of ``key`` among the fields, or None."""
        return next((i for i, desc in enumerate(self.fields) if desc.name == key), None)


@dataclass(eq=False)
class Map:
    """A prototype-style object: a legend plus values in matching order."""

    type: ClassVar[ObjectType] = ObjectType.MAP
    legend: Legend | None = field(default_factory=Legend)
    fields: list[Value] = field(default_factory=list)
    listeners: list[Value] = field(default_factory=list)

    def get(self, key: str) -> Value | None:
        """Look up ``key`` locally, then through ``@`` parent fields."""
        index = self.legend.find_index(key)
        if index is not None:
            return self.fields[index]
        for desc, value in zip(self.legend.fields, self.fields):
            if desc.name.startswith("@") and value.type == ValueType.OBJECT and isinstance(value.obj, Map):
                found = value.obj.get(key)
                if found is not None:
                    return found
        return None

    def set(self, key: str, val: Value, mutable: bool) -> None:
        """Update an existing field or append a new one."""
        index = self.legend.find_index(key)
        if index is not None:
            self.fields[index] = val
            return
        kind = FieldKind.MUTABLE if mutable else FieldKind.IMMUTABLE
        self.legend.fields.append(FieldDesc(name=key, kind=kind))
        self.fields.append(val)

    def canonical(self) -> str:
        if self.legend is None:
            return "[]"
        positionals: list[int] = []
        by_position: dict[int, Value] = {}
        named: list[FieldDesc] = []
        for desc, value in zip(self.legend.fields, self.fields):
            position = _atoi(desc.name)
            if position is not None and position > 0:
                positionals.append(position)
                by_position[position] = value
            else:
                named.append(desc)
        parts = [by_position[position].canonical() for position in sorted(positionals)]
        for desc in named:
            if desc.name.startswith("`"):
                continue
            prefix = ":" if desc.kind == FieldKind.MUTABLE else "."
            parts.append(prefix + desc.name)
        return "[" + "; ".join(parts) + "]"


@dataclass
class Chunk:
    """Bytecode with its constant pool and source line table."""

    code: bytearray = field(default_factory=bytearray)
    constants: list[Value] = field(default_factory=list)
    lines: list[int] = field(default_factory=list)

    def write_byte(self, b: int, line: int) -> None:
        self.code.append(b)
        self.lines.append(line)

    def write_op(self, op: int, line: int) -> None:
        self.code.append(int(op))
        self.lines.append(line)

    def add_constant(self, val: Value) -> int:
        """Add ``val`` to the pool and return its index."""
        self.constants.append(val)
        return len(self.constants) - 1


@dataclass(eq=False)
class Function:
    """Compiled code with its arity and upvalue count."""

    type: ClassVar[ObjectType] = ObjectType.FUNCTION
    name: str
    arity: int = 0
    upvalue_count: int = 0
    chunk: Chunk | None = None

    def canonical(self) -> str:
        return f"<{self.name}>"


@dataclass(eq=False)
class Upvalue:
    """A captured variable: an open stack slot or a closed-over value."""

    location: int | None = None
    closed: Value = field(default_factory=lambda: Value(ValueType.INTEGER))
    next: "Upvalue | None" = None


@dataclass(eq=False)
class Closure:
    """A function together with its captured upvalues."""

    type: ClassVar[ObjectType] = ObjectType.CLOSURE
    fn: Function
    upvalues: list[Upvalue] = field(default_factory=list)

    def canonical(self) -> str:
        return f"<{self.fn.name}>"


@dataclass(eq=False)
class NativeFunction:
    """A host callable taking and returning values."""

    type: ClassVar[ObjectType] = ObjectType.NATIVE
    fn: Callable[[list[Value]], Value]


def new_empty() -> Value:
    return Value(ValueType.EMPTY)


def new_int(i: int) -> Value:
    return Value(ValueType.INTEGER, integer=i)


def new_float(f: float) -> Value:
    return Value(ValueType.FLOAT, real=f)


def new_text(s: str) -> Value:
    return Value(ValueType.TEXT, text=s)


def new_boolean(b: bool) -> Value:
    return Value(ValueType.BOOLEAN, integer=1 if b else 0)


def new_function(f: Function) -> Value:
    return Value(ValueType.OBJECT, obj=f)


def new_signal(topic: str, source: Any, args) -> Value:
    return Value(
        ValueType.OBJECT,
        obj=Tuple(kind=TupleKind.SIGNAL, topic=topic, payload=list(args), source=source),
    )


def new_version(major: int, minor: int, patch: int, wildcard: bool) -> Value:
    """Pack a version: 15-bit major, 16-bit minor, 32-bit patch, top bit wildcard."""
    encoded = ((major & 0x7FFF) << 48) | ((minor & 0xFFFF) << 32) | (patch & 0xFFFFFFFF)
    if wildcard:
        encoded |= _WILDCARD_BIT
    if encoded >= _WILDCARD_BIT:
        encoded -= 1 << 64
    return Value(ValueType.VERSION, integer=encoded)


def new_key(key_id: int) -> Value:
    return Value(ValueType.KEY, integer=key_id)


def new_map() -> Map:
    return Map(legend=new_legend())


def new_legend() -> Legend:
    return Legend(kind=LegendType.MAP)