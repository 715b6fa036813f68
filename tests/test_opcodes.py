import pytest

from rhumb.opcodes import OpCode, opcode_name
from rhumb.values import Chunk


def test_halt_is_zero():
    assert opcode_name(0) == "OP_HALT"


def test_codes_are_contiguous_from_zero():
    count = len(OpCode)
    names = [opcode_name(i) for i in range(count)]
    assert not any(name.startswith("OP_UNKNOWN") for name in names)
    assert opcode_name(count) == f"OP_UNKNOWN({count})"


def test_every_code_fits_in_a_byte():
    chunk = Chunk()
    for op in OpCode:
        chunk.write_op(op, 1)
    assert list(chunk.code) == [int(op) for op in OpCode]


@pytest.mark.parametrize("op", list(OpCode))
def test_name_matches_member(op):
    assert opcode_name(op) == "OP_" + op.name
    assert str(op) == opcode_name(int(op))


@pytest.mark.parametrize(
    "op, name",
    [
        (OpCode.ADD, "OP_ADD"),
        (OpCode.LOAD_CONST, "OP_LOAD_CONST"),
        (OpCode.JUMP_IF_FALSE, "OP_JUMP_IF_FALSE"),
        (OpCode.INSPECT, "OP_INSPECT"),
    ],
)
def test_known_names(op, name):
    assert opcode_name(op) == name


def test_unknown_code():
    assert opcode_name(255) == "OP_UNKNOWN(255)"


def test_bank_order():
    assert opcode_name(int(OpCode.MATCH_STRUCT) + 1) == "OP_LOAD_CONST"
    assert opcode_name(int(OpCode.RESOLVE) + 1) == "OP_SEND"
    assert opcode_name(int(OpCode.MAKE_MAP) + 1) == "OP_POST"
    assert opcode_name(int(OpCode.COERCE_KEY) + 1) == "OP_ASSERT_EQ"
    assert opcode_name(int(OpCode.ASSERT_EQ) + 1) == "OP_INSPECT"


def test_write_op_round_trip():
    chunk = Chunk()
    chunk.write_op(OpCode.MULT, 3)
    chunk.write_op(OpCode.RETURN, 4)
    assert [OpCode(b) for b in chunk.code] == [OpCode.MULT, OpCode.RETURN]
    assert chunk.lines == [3, 4]