"""
Stack-Program Micro-Builders

Small script fragments that compose by concatenation. Each assumes the
stack left by the fragment before it:

    signature_check      [nibbles..., sig]      -> [nibbles...]
    reconstruct_value    [nibbles...]           -> [nibbles..., x]
    greater_than / less_than  [..., x]          -> [...]        (or abort)
    prefix_equalverify   [..., p0, ..., pN-1]   -> [...]        (or abort)
    success              [...]                  -> [..., 1]
"""

from typing import Sequence

from .script import Opcode, Script, ScriptBuilder, combine


def signature_check(pubkey: bytes) -> Script:
    """Push the signer key and verify the signature beneath it, else abort."""
    return (
        ScriptBuilder()
        .push_bytes(pubkey)
        .push_opcode(Opcode.OP_CHECKSIGVERIFY)
        .build()
    )


def multiply_by_16() -> Script:
    """acc*16 as four doublings; the machine has no multiply."""
    b = ScriptBuilder()
    for _ in range(4):
        b.push_opcode(Opcode.OP_DUP).push_opcode(Opcode.OP_ADD)
    return b.build()


def reconstruct_value(nibble_count: int = 8) -> Script:
    """
    Accumulate the bottom nibble_count stack items into one number.

    Item i from the bottom is fetched with DEPTH-1-i PICK, so the witness
    stays untouched; the accumulator lives on the alt stack between steps:

        acc = 0
        for i in 0..nibble_count-1:  acc = acc*16 + item[i]

    Leaves the value on top of the stack.
    """
    b = ScriptBuilder().push_int(0).push_opcode(Opcode.OP_TOALTSTACK)

    for i in range(nibble_count):
        (
            b.push_opcode(Opcode.OP_DEPTH)
            .push_opcode(Opcode.OP_1SUB)
            .push_int(i)
            .push_opcode(Opcode.OP_SUB)
            .push_opcode(Opcode.OP_PICK)
            .push_opcode(Opcode.OP_FROMALTSTACK)   # nib acc
        )
        b.extend(multiply_by_16())
        (
            b.push_opcode(Opcode.OP_SWAP)          # acc nib -> nib acc
            .push_opcode(Opcode.OP_ADD)
            .push_opcode(Opcode.OP_TOALTSTACK)
        )

    return b.push_opcode(Opcode.OP_FROMALTSTACK).build()


def greater_than(threshold: int) -> Script:
    """Consume x; abort unless x > threshold."""
    return (
        ScriptBuilder()
        .push_int(threshold)
        .push_opcode(Opcode.OP_GREATERTHAN)
        .push_opcode(Opcode.OP_VERIFY)
        .build()
    )


def less_than(threshold: int) -> Script:
    """Consume x; abort unless x < threshold."""
    return (
        ScriptBuilder()
        .push_int(threshold)
        .push_opcode(Opcode.OP_LESSTHAN)
        .push_opcode(Opcode.OP_VERIFY)
        .build()
    )


def prefix_equalverify(prefix: Sequence[int]) -> Script:
    """
    Check the top len(prefix) items against prefix, consuming them.

    prefix[0] is the deepest item, so the last nibble is compared first:
    the expected sequence is emitted in reverse.
    """
    b = ScriptBuilder()
    for nibble in reversed(prefix):
        b.push_int(nibble).push_opcode(Opcode.OP_EQUALVERIFY)
    return b.build()


def drop_items(count: int) -> Script:
    b = ScriptBuilder()
    for _ in range(count):
        b.push_opcode(Opcode.OP_DROP)
    return b.build()


def success() -> Script:
    return ScriptBuilder().push_opcode(Opcode.OP_1).build()


__all__ = [
    'signature_check',
    'multiply_by_16',
    'reconstruct_value',
    'greater_than',
    'less_than',
    'prefix_equalverify',
    'drop_items',
    'success',
    'combine',
]
