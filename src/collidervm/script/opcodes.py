"""
Opcode Table

Byte values follow Bitcoin Script. The machine implements the Tapscript
subset needed by stage programs plus three extensions:

- OP_CAT (0x7e): concatenation, as re-enabled by BIP-347
- OP_SPLIT (0x7f): split a byte string at a position (the old OP_SUBSTR slot)
- OP_BLAKE3 (0xb3): BLAKE3 digest, assigned to the OP_NOP4 slot

There is no multiply, no loop and no branch instruction.
"""

from enum import IntEnum


class Opcode(IntEnum):
    """Stack machine opcodes."""

    # Constants
    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_2 = 0x52
    OP_3 = 0x53
    OP_4 = 0x54
    OP_5 = 0x55
    OP_6 = 0x56
    OP_7 = 0x57
    OP_8 = 0x58
    OP_9 = 0x59
    OP_10 = 0x5a
    OP_11 = 0x5b
    OP_12 = 0x5c
    OP_13 = 0x5d
    OP_14 = 0x5e
    OP_15 = 0x5f
    OP_16 = 0x60

    # Flow
    OP_NOP = 0x61
    OP_VERIFY = 0x69
    OP_RETURN = 0x6a

    # Stack
    OP_TOALTSTACK = 0x6b
    OP_FROMALTSTACK = 0x6c
    OP_2DROP = 0x6d
    OP_2DUP = 0x6e
    OP_DEPTH = 0x74
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_NIP = 0x77
    OP_OVER = 0x78
    OP_PICK = 0x79
    OP_ROLL = 0x7a
    OP_ROT = 0x7b
    OP_SWAP = 0x7c
    OP_TUCK = 0x7d

    # Splice
    OP_CAT = 0x7e
    OP_SPLIT = 0x7f
    OP_SIZE = 0x82

    # Bitwise logic
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88

    # Arithmetic
    OP_1ADD = 0x8b
    OP_1SUB = 0x8c
    OP_NEGATE = 0x8f
    OP_ABS = 0x90
    OP_NOT = 0x91
    OP_0NOTEQUAL = 0x92
    OP_ADD = 0x93
    OP_SUB = 0x94
    OP_BOOLAND = 0x9a
    OP_BOOLOR = 0x9b
    OP_NUMEQUAL = 0x9c
    OP_NUMEQUALVERIFY = 0x9d
    OP_NUMNOTEQUAL = 0x9e
    OP_LESSTHAN = 0x9f
    OP_GREATERTHAN = 0xa0
    OP_LESSTHANOREQUAL = 0xa1
    OP_GREATERTHANOREQUAL = 0xa2
    OP_MIN = 0xa3
    OP_MAX = 0xa4
    OP_WITHIN = 0xa5

    # Crypto
    OP_SHA256 = 0xa8
    OP_CHECKSIG = 0xac
    OP_CHECKSIGVERIFY = 0xad
    OP_BLAKE3 = 0xb3


OP_TRUE = Opcode.OP_1
OP_FALSE = Opcode.OP_0

MAX_DIRECT_PUSH = 0x4b
"""Opcodes 0x01-0x4b push that many following bytes."""


def small_int_opcode(value: int) -> Opcode:
    """Opcode pushing a small integer in [-1, 16]."""
    if value == 0:
        return Opcode.OP_0
    if value == -1:
        return Opcode.OP_1NEGATE
    if 1 <= value <= 16:
        return Opcode(Opcode.OP_1 + value - 1)
    raise ValueError(f"{value} has no small-integer opcode")


def small_int_value(opcode: int) -> int:
    """Value pushed by OP_1NEGATE, OP_1..OP_16."""
    if opcode == Opcode.OP_1NEGATE:
        return -1
    if Opcode.OP_1 <= opcode <= Opcode.OP_16:
        return opcode - Opcode.OP_1 + 1
    raise ValueError(f"0x{opcode:02x} is not a small-integer opcode")


def opcode_name(opcode: int) -> str:
    """Human-readable name, OP_PUSHBYTES_n for direct pushes."""
    if 0x01 <= opcode <= MAX_DIRECT_PUSH:
        return f"OP_PUSHBYTES_{opcode}"
    try:
        return Opcode(opcode).name
    except ValueError:
        return f"OP_UNKNOWN_0x{opcode:02x}"
