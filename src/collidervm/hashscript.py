"""
On-chain Hash Sub-Program

Computes H(message) inside the stack machine from a witness-supplied
message, so a stage program can recheck the routing digest.

Witness layout (bottom to top): the message split into little-endian limbs
of limb_len bytes, limbs in message order, each limb pushed as 2*limb_len
nibbles most significant first.

After compute_script the stack holds the 64 digest nibbles: digest byte 0
deepest, high nibble first within each byte. drop_script then discards the
top nibbles so only the first (prefix) nibbles remain.

Byte handling uses only stack arithmetic and splicing:

    pair -> byte      v = hi*16 + lo;  (v + 256) encodes as [v, 0x01];  split off [v]
    byte -> pair      v = [b, 0x00] as a number;  hi = sum(v >= 16k);  lo = v - 16*hi
"""

from functools import lru_cache
import logging

from .builders import drop_items, multiply_by_16, prefix_equalverify, success
from .codec import digest_nibbles, message_limbs, value_nibbles
from .errors import InvalidParameters
from .params import DIGEST_SIZE, HashFunction
from .script import Opcode, Script, ScriptBuilder, encode_num, optimize


logger = logging.getLogger(__name__)


DIGEST_NIBBLES = 2 * DIGEST_SIZE

_HASH_OPCODES = {
    HashFunction.BLAKE3: Opcode.OP_BLAKE3,
    HashFunction.SHA256: Opcode.OP_SHA256,
}


def message_stack(message: bytes, limb_len: int = 4) -> list:
    """Witness stack items for message, first item deepest."""
    items = []
    for limb in message_limbs(message, limb_len):
        items.extend(encode_num(nibble) for nibble in value_nibbles(limb, limb_len))
    return items


def push_message_script(message: bytes, limb_len: int = 4) -> Script:
    """Script pushing the same items as message_stack."""
    b = ScriptBuilder()
    for limb in message_limbs(message, limb_len):
        for nibble in value_nibbles(limb, limb_len):
            b.push_int(nibble)
    return b.build()


def _pair_to_byte(b: ScriptBuilder) -> None:
    """[hi lo] -> [one-byte element]"""
    b.push_opcode(Opcode.OP_SWAP)
    b.extend(multiply_by_16())
    (
        b.push_opcode(Opcode.OP_ADD)
        .push_int(256)
        .push_opcode(Opcode.OP_ADD)
        .push_int(1)
        .push_opcode(Opcode.OP_SPLIT)
        .push_opcode(Opcode.OP_DROP)
    )


def _byte_to_pair(b: ScriptBuilder) -> None:
    """[one-byte element] -> [hi lo]"""
    b.push_bytes(b'\x00').push_opcode(Opcode.OP_CAT)
    b.push_int(0)
    for k in range(1, 16):
        (
            b.push_opcode(Opcode.OP_OVER)
            .push_int(16 * k)
            .push_opcode(Opcode.OP_GREATERTHANOREQUAL)
            .push_opcode(Opcode.OP_ADD)
        )
    b.push_opcode(Opcode.OP_TUCK)
    b.extend(multiply_by_16())
    b.push_opcode(Opcode.OP_SUB)


@lru_cache(maxsize=None)
def compute_script(
    message_len: int,
    limb_len: int = 4,
    hash_function: HashFunction = HashFunction.BLAKE3,
) -> Script:
    """
    Hash a witness message of exactly message_len bytes.

    Args:
        message_len: Message length in bytes
        limb_len: Bytes per witness limb
        hash_function: Routing hash; selects OP_BLAKE3 or OP_SHA256

    Returns:
        Optimized script leaving the 64 digest nibbles on the stack
    """
    if limb_len < 1 or message_len < limb_len or message_len % limb_len != 0:
        raise InvalidParameters(
            f"message_len={message_len} must be a positive multiple of limb_len={limb_len}"
        )
    if hash_function not in _HASH_OPCODES:
        raise InvalidParameters(f"No hash opcode for {hash_function}")
    limbs = message_len // limb_len

    b = ScriptBuilder()

    # Pack nibbles into limb strings, last limb first (it is on top).
    # Within a limb the top pair is its least significant byte, which is
    # byte 0 of the little-endian encoding.
    for _ in range(limbs):
        for byte_index in range(limb_len):
            _pair_to_byte(b)
            if byte_index > 0:
                (
                    b.push_opcode(Opcode.OP_FROMALTSTACK)
                    .push_opcode(Opcode.OP_SWAP)
                    .push_opcode(Opcode.OP_CAT)
                )
            b.push_opcode(Opcode.OP_TOALTSTACK)

    # Alt stack holds limb 0 on top
    b.push_opcode(Opcode.OP_FROMALTSTACK)
    for _ in range(limbs - 1):
        b.push_opcode(Opcode.OP_FROMALTSTACK).push_opcode(Opcode.OP_CAT)

    b.push_opcode(_HASH_OPCODES[hash_function])

    # Expand the digest: split off one byte at a time, keep the rest on top
    for _ in range(DIGEST_SIZE - 1):
        b.push_int(1).push_opcode(Opcode.OP_SPLIT).push_opcode(Opcode.OP_SWAP)
        _byte_to_pair(b)
        b.push_opcode(Opcode.OP_ROT)
    _byte_to_pair(b)

    raw = b.build()
    optimized = optimize(raw)
    logger.debug(
        "Hash sub-program for %d-byte message: %d -> %d instructions after optimization",
        message_len, len(raw), len(optimized),
    )
    return optimized


def drop_script(keep_nibbles: int) -> Script:
    """Discard all digest nibbles except the first keep_nibbles."""
    if not 0 <= keep_nibbles <= DIGEST_NIBBLES:
        raise InvalidParameters(f"Cannot keep {keep_nibbles} of {DIGEST_NIBBLES} nibbles")
    return drop_items(DIGEST_NIBBLES - keep_nibbles)


def verify_output_script(digest: bytes) -> Script:
    """Check all 64 digest nibbles against digest, then succeed."""
    return prefix_equalverify(digest_nibbles(digest)) + success()
