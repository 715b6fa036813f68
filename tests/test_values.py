from dataclasses import replace
from decimal import Decimal

import pytest

from rhumb.values import (
    Chunk,
    Closure,
    DecimalObject,
    FieldKind,
    Function,
    Map,
    Range,
    Tuple,
    TupleKind,
    Value,
    ValueType,
    new_boolean,
    new_empty,
    new_float,
    new_function,
    new_int,
    new_key,
    new_map,
    new_signal,
    new_text,
    new_version,
)


def test_version_creation_and_unpack():
    v1 = new_version(1, 2, 3, False)
    assert v1.type == ValueType.VERSION
    assert v1.version_unpack() == (1, 2, 3, False)


def test_version_boundaries():
    v_max = new_version(65535, 65535, 4294967295, False)
    major, minor, patch, wildcard = v_max.version_unpack()
    assert major == 0x7FFF
    assert minor == 65535
    assert patch == 4294967295
    assert wildcard is False


def test_version_wildcard_bit():
    v = new_version(3, 4, 5, True)
    assert v.integer < 0
    assert v.version_unpack() == (3, 4, 5, True)


def test_version_equality():
    assert new_version(1, 0, 0, False) == new_version(1, 0, 0, False)
    assert not (new_version(1, 0, 0, False) == new_version(1, 0, 1, False))


def test_unpack_non_version():
    assert new_int(5).version_unpack() == (0, 0, 0, False)


def test_key_creation_and_equality():
    k1 = new_key(100)
    assert k1.type == ValueType.KEY
    assert k1.key_id() == 100
    assert k1 == new_key(100)
    assert not (k1 == new_key(101))
    assert new_key(0).key_id() == 0
    assert new_int(100).key_id() == -1


@pytest.mark.parametrize(
    "value, expected",
    [
        (new_int(42), "42"),
        (new_float(1.5), "1.500000"),
        (new_text("apples"), "'apples'"),
        (new_boolean(True), "yes"),
        (new_boolean(False), "no"),
        (new_empty(), "___"),
        (new_key(7), ":key(7)"),
        (Value(ValueType.RANGE, obj=Range(1, 3)), "<Range>"),
        (Value(ValueType.OBJECT), "nil"),
    ],
)
def test_scalar_canonical(value, expected):
    assert value.canonical() == expected
    assert str(value) == expected


@pytest.mark.parametrize(
    "ms, expected",
    [
        (0, "0000/00/00"),
        (86400000, "1970/01/02"),
        (3723000, "01:02:03"),
        (1500, "00:00:01.500"),
        (1735689600000, "2025/01/01"),
        (1735693200000, "2025/01/01@01:00:00"),
    ],
)
def test_datetime_canonical(ms, expected):
    assert Value(ValueType.DATETIME, integer=ms).canonical() == expected


@pytest.mark.parametrize(
    "ms, expected",
    [
        (0, "+00:00:00"),
        (1500, "+00:00:01.500"),
        (-3600000, "-01:00:00"),
        (86400000, "+0000/00/01"),
        (31536000001, "+0001/00/00@00:00:00.001"),
    ],
)
def test_duration_canonical(ms, expected):
    assert Value(ValueType.DURATION, integer=ms).canonical() == expected


def test_decimal_canonical():
    assert Value(ValueType.DECIMAL, obj=DecimalObject(Decimal("1.5"))).canonical() == "01.5"
    assert DecimalObject().canonical() == "00.0"


def test_decimal_without_object_raises():
    with pytest.raises(TypeError):
        Value(ValueType.DECIMAL).canonical()


@pytest.mark.parametrize(
    "value, expected",
    [
        (new_version(1, 2, 3, False), "1.2.3"),
        (new_version(1, 0xFFFF, 0xFFFFFFFF, True), "1.-"),
        (new_version(1, 2, 0xFFFFFFFF, True), "1.2.-"),
        (new_version(1, 2, 3, True), "1.2.3.-"),
        (replace(new_version(1, 2, 3, False), text="-pre"), "1.2.3-pre"),
    ],
)
def test_version_canonical(value, expected):
    assert value.canonical() == expected


def test_content():
    assert new_text("hi").content() == "hi"
    assert new_int(3).content() == "3"


def test_tuple_and_function_canonical():
    signal = new_signal("ping", None, [new_int(1)])
    assert signal.canonical() == "<#ping>"
    assert signal.obj.payload == [new_int(1)]
    assert Tuple(TupleKind.REPLY, "pong").canonical() == "<^pong>"
    assert Tuple(TupleKind.PROCLAMATION, "news").canonical() == "<$news>"
    fn = Function(name="adder", arity=2)
    assert new_function(fn).canonical() == "<adder>"
    assert Closure(fn=fn).canonical() == "<adder>"


def test_map_set_and_get():
    m = new_map()
    m.set("x", new_int(1), False)
    m.set("y", new_int(2), True)
    assert m.get("x") == new_int(1)
    assert m.get("missing") is None
    m.set("x", new_int(9), False)
    assert m.get("x") == new_int(9)
    assert len(m.fields) == 2
    assert m.legend.fields[1].kind == FieldKind.MUTABLE
    assert m.legend.find_index("y") == 1
    assert m.legend.find_index("z") is None


def test_map_delegation_through_parent():
    parent = new_map()
    parent.set("greeting", new_text("hello"), False)
    child = new_map()
    child.set("@proto", Value(ValueType.OBJECT, obj=parent), False)
    assert child.get("greeting") == new_text("hello")
    child.set("greeting", new_text("hi"), False)
    assert child.get("greeting") == new_text("hi")


def test_map_canonical():
    m = new_map()
    m.set("2", new_text("b"), True)
    m.set("1", new_text("a"), True)
    m.set("name", new_int(0), False)
    m.set("count", new_int(0), True)
    m.set("`k", new_int(0), False)
    assert m.canonical() == "['a'; 'b'; .name; :count]"
    assert new_map().canonical() == "[]"
    assert Map(legend=None).canonical() == "[]"
    assert Value(ValueType.OBJECT, obj=m).canonical() == "['a'; 'b'; .name; :count]"


def test_map_canonical_non_positive_numbers_are_named():
    m = new_map()
    m.set("0", new_int(5), False)
    assert m.canonical() == "[.0]"


def test_objects_compare_by_identity():
    assert new_map() is not new_map()
    a = Value(ValueType.OBJECT, obj=new_map())
    b = Value(ValueType.OBJECT, obj=new_map())
    assert not (a == b)
    assert a == Value(ValueType.OBJECT, obj=a.obj)


def test_chunk_writes():
    chunk = Chunk()
    chunk.write_op(9, 1)
    chunk.write_byte(0, 1)
    assert bytes(chunk.code) == b"\x09\x00"
    assert chunk.lines == [1, 1]
    assert chunk.add_constant(new_int(5)) == 0
    assert chunk.add_constant(new_int(6)) == 1
    assert chunk.constants[1] == new_int(6)


def test_chunk_rejects_oversized_byte():
    with pytest.raises(ValueError):
        Chunk().write_byte(256, 1)


def test_value_type_labels():
    assert str(Value(ValueType.DATETIME, integer=0).type) == "DateTime"
    assert str(new_key(1).type) == "Key"
    assert str(new_int(1).type) == "Integer"