"""Instruction set of the bytecode machine."""

from enum import IntEnum


class OpCode(IntEnum):
    """One-byte instruction codes, numbered in bank order from zero."""

    # Bank 0: control flow and selectors
    HALT = 0
    JUMP = 1
    DUP = 2
    POP = 3
    CALL = 4
    RETURN = 5
    MAKE_FN = 6
    SELECT = 7
    MATCH_STRUCT = 8

    # Bank 1: lexical scope
    LOAD_CONST = 9
    LOAD_LOC = 10
    STORE_LOC = 11
    LOAD_UPVALUE = 12
    STORE_UPVALUE = 13
    LOAD_STATIC = 14
    MATCH_BIND = 15
    RESOLVE = 16

    # Bank 2: maps and inheritance
    SEND = 17
    SET_FIELD = 18
    SELF = 19
    LOAD_PARENT = 20
    MAKE_MAP = 21

    # Bank 3: space and concurrency
    POST = 22
    INJECT = 23
    WRITE = 24
    SUBSCRIBE = 25
    NEW_REALM = 26
    MONITOR = 27
    MATCH_TUPLE = 28

    # Function operators
    LET_FN = 29
    BIND_FN = 30
    REBIND = 31
    REF_FN = 32
    CURRY = 33

    # Math
    ADD = 34
    SUB = 35
    MULT = 36
    POW = 37
    DIV_FLOAT = 38
    DIV_INT = 39
    MOD = 40
    SCI_NOT = 41
    ROOT = 42
    DEV = 43

    # Logic
    EQ = 44
    NEQ = 45
    GT = 46
    LT = 47
    GTE = 48
    LTE = 49
    AND = 50
    OR = 51
    NOT = 52

    # Maps and structure
    RANGE = 53
    HAS_SUBFIELD = 54
    NOT_HAS_SUB = 55
    HAS_FIELD = 56
    NOT_HAS_FLD = 57
    TEMP_SUBFIELD = 58
    CONCAT = 59
    ACCESS_NESTED = 60

    # Control flow in operator form
    ASSIGN_IMM = 61
    ASSIGN_MUT = 62
    DESTRUCT = 63
    JUMP_IF_FALSE = 64
    JUMP_IF_TRUE = 65
    WHILE = 66
    FOREACH = 67
    PIPE = 68
    COALESCE = 69
    MATCH_CONS = 70
    MATCH_PEEK = 71

    # Postfix field operators
    APPEND = 72
    UNSHIFT = 73
    LENGTH = 74
    IS_EMPTY = 75
    ALL_SUB = 76
    ALL_FIELDS = 77
    ALL_POS = 78
    FREEZE = 79
    COPY = 80
    COERCE_DATE = 81
    GET_PARAMS = 82
    GET_CTOR = 83
    GET_BASE = 84
    COERCE_NUM = 85
    NUM_NEG = 86
    COERCE_BOOL = 87
    BOOL_NEG = 88
    SPREAD = 89
    COERCE_KEY = 90

    # Testing
    ASSERT_EQ = 91
    INSPECT = 92

    def __str__(self) -> str:
        return f"OP_{self.name}"


def opcode_name(op: int) -> str:
    """Display name of an instruction byte, e.g. ``OP_ADD`` or ``OP_UNKNOWN(200)``."""
    try:
        return str(OpCode(op))
    except ValueError:
        return f"OP_UNKNOWN({int(op)})"