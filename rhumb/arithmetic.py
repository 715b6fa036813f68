"""Numeric, time and comparison semantics of runtime values."""

import decimal
import math
from decimal import Decimal

from rhumb.values import DecimalObject, Map, Tuple, Value, ValueType, new_boolean, new_empty, new_float, new_int

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_NUMERIC = frozenset({ValueType.INTEGER, ValueType.FLOAT, ValueType.DECIMAL})
_REAL = frozenset({ValueType.INTEGER, ValueType.FLOAT})
_TIME = frozenset({ValueType.DATETIME, ValueType.DURATION})

_DECIMAL_CONTEXT = decimal.Context(
    prec=20,
    rounding=decimal.ROUND_HALF_UP,
    traps=[decimal.DivisionByZero, decimal.InvalidOperation, decimal.Overflow],
)


class VMError(Exception):
    """A runtime error raised while executing bytecode."""


def _wrap64(number: int) -> int:
    """Wrap an integer into the signed 64-bit range."""
    return ((number - _INT64_MIN) % (1 << 64)) + _INT64_MIN


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return -quotient if (a < 0) != (b < 0) else quotient


def _float_div(a: float, b: float) -> float:
    if b != 0:
        return a / b
    if a == 0 or math.isnan(a):
        return math.nan
    sign = math.copysign(1.0, a) * math.copysign(1.0, b)
    return math.copysign(math.inf, sign)


def _is_odd_integer(y: float) -> bool:
    return math.isfinite(y) and y == math.floor(y) and abs(y) < 2**53 and int(y) % 2 == 1


def _pow(x: float, y: float) -> float:
    try:
        return math.pow(x, y)
    except OverflowError:
        if x < 0 and _is_odd_integer(y):
            return -math.inf
        return math.inf
    except ValueError:
        if x == 0:
            if _is_odd_integer(y) and math.copysign(1.0, x) < 0:
                return -math.inf
            return math.inf
        return math.nan


def _decimal_value(raw: Decimal) -> Value:
    return Value(ValueType.DECIMAL, obj=DecimalObject(raw=raw))


def _time_value(kind: ValueType, ms: int) -> Value:
    return Value(kind, integer=_wrap64(ms))


def is_numeric(v: Value) -> bool:
    """True for integers, floats and decimals."""
    return v.type in _NUMERIC


def as_float(v: Value) -> float:
    """Integers and floats as a float; anything else as zero."""
    if v.type == ValueType.INTEGER:
        return float(v.integer)
    if v.type == ValueType.FLOAT:
        return v.real
    return 0.0


def to_decimal(v: Value) -> Decimal:
    """Integers, floats and decimals as a Decimal; anything else as zero."""
    if v.type == ValueType.DECIMAL:
        raw = v.obj.raw if isinstance(v.obj, DecimalObject) else None
        return raw if raw is not None else Decimal(0)
    if v.type == ValueType.INTEGER:
        return Decimal(v.integer)
    if v.type == ValueType.FLOAT:
        return Decimal(repr(v.real))
    return Decimal(0)


def scalar_to_duration(v: Value) -> int | None:
    """Milliseconds for a number (integers are ms, others seconds); None otherwise."""
    if v.type == ValueType.INTEGER:
        return v.integer
    if v.type == ValueType.FLOAT:
        scaled = v.real * 1000
        if not math.isfinite(scaled):
            return _INT64_MIN
        return _wrap64(int(scaled))
    if v.type == ValueType.DECIMAL:
        try:
            scaled = _DECIMAL_CONTEXT.multiply(to_decimal(v), Decimal(1000))
        except decimal.DecimalException:
            return 0
        if not scaled.is_finite() or scaled != scaled.to_integral_value():
            return 0
        number = int(scaled)
        if number < _INT64_MIN or number > _INT64_MAX:
            return 0
        return number
    return None


def _milliseconds(v: Value) -> int:
    if v.type in _TIME:
        return v.integer
    ms = scalar_to_duration(v)
    return 0 if ms is None else ms


def numeric_op(op: str, a: Value, b: Value) -> Value:
    """Apply ``+``, ``-``, ``*`` or ``/`` with integer < float < decimal promotion."""
    if a.type == ValueType.DECIMAL or b.type == ValueType.DECIMAL:
        operations = {
            "+": _DECIMAL_CONTEXT.add,
            "-": _DECIMAL_CONTEXT.subtract,
            "*": _DECIMAL_CONTEXT.multiply,
            "/": _DECIMAL_CONTEXT.divide,
        }
        if op not in operations:
            raise VMError(f"unknown numeric operator {op}")
        try:
            result = operations[op](to_decimal(a), to_decimal(b))
        except decimal.DivisionByZero as exc:
            raise VMError("division by zero") from exc
        except decimal.DecimalException as exc:
            raise VMError(f"decimal error: {type(exc).__name__}") from exc
        return _decimal_value(result)

    if a.type == ValueType.FLOAT or b.type == ValueType.FLOAT:
        x, y = as_float(a), as_float(b)
        if op == "+":
            return new_float(x + y)
        if op == "-":
            return new_float(x - y)
        if op == "*":
            return new_float(x * y)
        if op == "/":
            return new_float(_float_div(x, y))

    x, y = a.integer, b.integer
    if op == "+":
        return new_int(_wrap64(x + y))
    if op == "-":
        return new_int(_wrap64(x - y))
    if op == "*":
        return new_int(_wrap64(x * y))
    if op == "/":
        if y == 0:
            raise VMError("division by zero")
        return new_float(float(x) / float(y))
    raise VMError(f"unknown numeric operator {op}")


def add_values(a: Value, b: Value) -> Value:
    """Numeric addition, or time algebra when a date or duration takes part."""
    if is_numeric(a) and is_numeric(b):
        return numeric_op("+", a, b)

    a_time = a.type in _TIME
    b_time = b.type in _TIME
    ms_a = _milliseconds(a)
    ms_b = _milliseconds(b)
    a_span = a.type == ValueType.DURATION or is_numeric(a)
    b_span = b.type == ValueType.DURATION or is_numeric(b)

    if (a.type == ValueType.DATETIME and b_span) or (b.type == ValueType.DATETIME and a_span):
        return _time_value(ValueType.DATETIME, ms_a + ms_b)
    if a_span and b_span and (a_time or b_time):
        return _time_value(ValueType.DURATION, ms_a + ms_b)
    if a.type == ValueType.DATETIME and b.type == ValueType.DATETIME:
        raise VMError("cannot add two dates")
    raise VMError(f"invalid operands for addition: {a} and {b}")


def subtract_values(a: Value, b: Value) -> Value:
    """Numeric subtraction, or time algebra when a date or duration takes part."""
    if is_numeric(a) and is_numeric(b):
        return numeric_op("-", a, b)

    ms_a = _milliseconds(a)
    ms_b = _milliseconds(b)
    a_span = a.type == ValueType.DURATION or is_numeric(a)
    b_span = b.type == ValueType.DURATION or is_numeric(b)

    if a.type == ValueType.DATETIME and b_span:
        return _time_value(ValueType.DATETIME, ms_a - ms_b)
    if a.type == ValueType.DATETIME and b.type == ValueType.DATETIME:
        return _time_value(ValueType.DURATION, ms_a - ms_b)
    if a_span and b_span and ValueType.DURATION in (a.type, b.type):
        return _time_value(ValueType.DURATION, ms_a - ms_b)
    if is_numeric(a) and b.type == ValueType.DATETIME:
        raise VMError("cannot subtract date from scalar")
    raise VMError("invalid operands for subtraction")


def multiply_values(a: Value, b: Value) -> Value:
    if is_numeric(a) and is_numeric(b):
        return numeric_op("*", a, b)
    raise VMError("invalid operands for multiplication")


def divide_values(a: Value, b: Value) -> Value:
    if is_numeric(a) and is_numeric(b):
        return numeric_op("/", a, b)
    raise VMError("invalid operands for division")


def int_divide(a: Value, b: Value) -> Value:
    """Whole division, truncating toward zero."""
    if a.type == ValueType.INTEGER and b.type == ValueType.INTEGER:
        if b.integer == 0:
            raise VMError("division by zero")
        return new_int(_wrap64(_trunc_div(a.integer, b.integer)))
    quotient = _float_div(as_float(a), as_float(b))
    if not math.isfinite(quotient):
        raise VMError("division by zero")
    return new_int(_wrap64(int(quotient)))


def modulo(a: Value, b: Value) -> Value:
    """Remainder whose sign follows the dividend."""
    if a.type == ValueType.INTEGER and b.type == ValueType.INTEGER:
        if b.integer == 0:
            raise VMError("division by zero")
        return new_int(a.integer - b.integer * _trunc_div(a.integer, b.integer))
    try:
        return new_float(math.fmod(as_float(a), as_float(b)))
    except ValueError:
        return new_float(math.nan)


def power(a: Value, b: Value) -> Value:
    return new_float(_pow(as_float(a), as_float(b)))


def root(a: Value, b: Value) -> Value:
    """The ``b``-th root of ``a``."""
    return new_float(_pow(as_float(a), _float_div(1.0, as_float(b))))


def sci_not(a: Value, b: Value) -> Value:
    """``a`` times ten to the power ``b``."""
    return new_float(as_float(a) * _pow(10.0, as_float(b)))


def deviation(a: Value, b: Value) -> Value:
    """The deviation operator yields the empty value."""
    return new_empty()


def coerce_number(v: Value) -> Value:
    """Numbers and durations pass through; a date becomes a duration."""
    if v.type == ValueType.DATETIME:
        return Value(ValueType.DURATION, integer=v.integer)
    if v.type in _NUMERIC or v.type == ValueType.DURATION:
        return v
    raise VMError(f"cannot coerce type {int(v.type)} to number")


def negate_number(v: Value) -> Value:
    """Arithmetic negation; dates negate into durations."""
    if v.type in _TIME:
        return _time_value(ValueType.DURATION, -v.integer)
    if v.type == ValueType.INTEGER:
        return new_int(_wrap64(-v.integer))
    if v.type == ValueType.FLOAT:
        return new_float(-v.real)
    if v.type == ValueType.DECIMAL:
        return _decimal_value(to_decimal(v).copy_negate())
    raise VMError(f"cannot negate type {int(v.type)}")


def is_falsy(v: Value) -> bool:
    """Empty, ``no`` and integer zero are false; everything else is true."""
    if v.type == ValueType.EMPTY:
        return True
    return v.type in (ValueType.BOOLEAN, ValueType.INTEGER) and v.integer == 0


def is_truthy(v: Value) -> bool:
    return not is_falsy(v)


def is_strict_equal(a: Value, b: Value) -> bool:
    """Equality with no version wildcards; integers and floats compare by value."""
    if a.type != b.type:
        if a.type in _REAL and b.type in _REAL:
            return as_float(a) == as_float(b)
        return False
    kind = a.type
    if kind in (ValueType.INTEGER, ValueType.BOOLEAN):
        return a.integer == b.integer
    if kind == ValueType.FLOAT:
        return a.real == b.real
    if kind == ValueType.EMPTY:
        return True
    if kind == ValueType.TEXT:
        return a.text == b.text
    if kind == ValueType.VERSION:
        return a.integer == b.integer and a.text == b.text
    if kind == ValueType.OBJECT:
        if isinstance(a.obj, Map) and isinstance(b.obj, Map):
            return len(a.obj.fields) == len(b.obj.fields) and all(
                is_strict_equal(x, y) for x, y in zip(a.obj.fields, b.obj.fields)
            )
        if isinstance(a.obj, Tuple) and isinstance(b.obj, Tuple):
            return a.obj.kind == b.obj.kind and a.obj.topic == b.obj.topic
        return a.obj is b.obj
    return False


def is_equal(a: Value, b: Value) -> bool:
    """Equality where version wildcards match."""
    if a.type == ValueType.VERSION and b.type == ValueType.VERSION:
        return compare_versions(a, b) == 0
    return is_strict_equal(a, b)


def compare_versions(a: Value, b: Value) -> int:
    """1, 0 or -1 by order; -2 when only the suffixes differ."""
    major1, minor1, patch1, wild1 = a.version_unpack()
    major2, minor2, patch2, wild2 = b.version_unpack()

    if major1 != major2:
        return 1 if major1 > major2 else -1
    if (wild1 and minor1 == 0xFFFF) or (wild2 and minor2 == 0xFFFF):
        return 0
    if minor1 != minor2:
        return 1 if minor1 > minor2 else -1
    if (wild1 and patch1 == 0xFFFFFFFF) or (wild2 and patch2 == 0xFFFFFFFF):
        return 0
    if patch1 != patch2:
        return 1 if patch1 > patch2 else -1
    if a.text != b.text:
        return -2
    return 0


def numeric_compare(a: Value, b: Value) -> int:
    """-1, 0 or 1 comparing two integers or floats."""
    if a.type not in _REAL or b.type not in _REAL:
        raise VMError("operands must be numbers for comparison")
    x, y = as_float(a), as_float(b)
    if x < y:
        return -1
    if x > y:
        return 1
    return 0


def _ordered(a: Value, b: Value, accepted: frozenset) -> Value:
    if a.type == ValueType.VERSION and b.type == ValueType.VERSION:
        return new_boolean(compare_versions(a, b) in accepted)
    return new_boolean(numeric_compare(a, b) in accepted)


def greater_than(a: Value, b: Value) -> Value:
    return _ordered(a, b, frozenset({1}))


def less_than(a: Value, b: Value) -> Value:
    return _ordered(a, b, frozenset({-1}))


def greater_or_equal(a: Value, b: Value) -> Value:
    return _ordered(a, b, frozenset({0, 1}))


def less_or_equal(a: Value, b: Value) -> Value:
    return _ordered(a, b, frozenset({-1, 0}))