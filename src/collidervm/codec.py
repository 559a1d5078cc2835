"""
Prefix/Nonce Codec

Pure functions shared by the off-chain nonce search and the on-chain
verification scripts:

    digest   = H(LE32(x) || LE64(r))
    index    = LE32(digest[0:4]) & (2^B - 1)        accepted iff index < 2^L
    prefix   = nibbles of LE bytes of index, high nibble first

The stage programs recompute the same digest from witness nibbles, so every
byte and nibble order here is a contract with hashscript.py and builders.py.
"""

import hashlib
from typing import Sequence, Tuple

import blake3

from .errors import InvalidParameters, OutOfRange
from .params import DIGEST_SIZE, HashFunction, check_prefix_params


U32_MAX = (1 << 32) - 1
U64_MAX = (1 << 64) - 1


def _check_u32(value: int, name: str = 'x') -> None:
    if not 0 <= value <= U32_MAX:
        raise InvalidParameters(f"{name}={value} is not an unsigned 32-bit integer")


def _check_u64(value: int, name: str = 'r') -> None:
    if not 0 <= value <= U64_MAX:
        raise InvalidParameters(f"{name}={value} is not an unsigned 64-bit integer")


def message_bytes(x: int, r: int) -> bytes:
    """
    Witness message LE32(x) || LE64(r).

    Identical to LE32(x) || LE32(r_lo) || LE32(r_hi), the three 4-byte limbs
    the stage programs hash.
    """
    _check_u32(x)
    _check_u64(r)
    return x.to_bytes(4, 'little') + r.to_bytes(8, 'little')


def hash_bytes(data: bytes, hash_function: HashFunction = HashFunction.BLAKE3) -> bytes:
    """32-byte digest of data under the routing hash."""
    if hash_function is HashFunction.BLAKE3:
        return blake3.blake3(data).digest()
    if hash_function is HashFunction.SHA256:
        return hashlib.sha256(data).digest()
    raise InvalidParameters(f"Unknown hash function: {hash_function}")


def routing_digest(x: int, r: int, hash_function: HashFunction = HashFunction.BLAKE3) -> bytes:
    """H(x || r) over the exact witness message layout."""
    return hash_bytes(message_bytes(x, r), hash_function)


def candidate_index(digest: bytes, b_bits: int) -> int:
    """Low B bits of the first 4 digest bytes read little-endian."""
    value = int.from_bytes(digest[:4], 'little')
    return value & ((1 << b_bits) - 1)


def derive_routing_index(
    x: int,
    r: int,
    b_bits: int,
    l_bits: int,
    hash_function: HashFunction = HashFunction.BLAKE3,
) -> Tuple[int, bytes]:
    """
    Calculate H(x || r)|_B => flow_id.

    Args:
        x: Input value (u32)
        r: Nonce (u64)
        b_bits: Prefix width B
        l_bits: log2 of the accepted set size L

    Returns:
        (flow_id, digest) with flow_id < 2^L

    Raises:
        OutOfRange: the candidate index is >= 2^L
        InvalidParameters: bad (B, L) or out-of-range x / r
    """
    check_prefix_params(b_bits, l_bits)
    digest = routing_digest(x, r, hash_function)
    index = candidate_index(digest, b_bits)
    limit = 1 << l_bits
    if index >= limit:
        raise OutOfRange(index, limit, digest)
    return index, digest


def encode_routing_prefix(index: int, b_bits: int) -> Tuple[int, ...]:
    """
    Convert flow_id => nibbles of its low B/8 little-endian bytes.

    Each byte contributes (high nibble, low nibble) in that order:
        13, B=16      -> bytes [0x0d, 0x00] -> (0x0, 0xd, 0x0, 0x0)
        0x1234, B=16  -> bytes [0x34, 0x12] -> (0x3, 0x4, 0x1, 0x2)
    """
    if b_bits > 32 or b_bits % 8 != 0 or b_bits < 0:
        raise InvalidParameters(f"B={b_bits} must be a multiple of 8 and <= 32")
    _check_u32(index, 'index')
    prefix_bytes = index.to_bytes(4, 'little')[:b_bits // 8]
    nibbles = []
    for byte in prefix_bytes:
        nibbles.append((byte >> 4) & 0x0F)
        nibbles.append(byte & 0x0F)
    return tuple(nibbles)


def decode_routing_prefix(nibbles: Sequence[int]) -> int:
    """Inverse of encode_routing_prefix: the low B bits of the index."""
    if len(nibbles) % 2 != 0:
        raise InvalidParameters(f"Prefix of {len(nibbles)} nibbles is not whole bytes")
    for nibble in nibbles:
        if not 0 <= nibble <= 15:
            raise InvalidParameters(f"Prefix nibble {nibble} outside [0, 15]")
    raw = bytes(
        (nibbles[i] << 4) | nibbles[i + 1]
        for i in range(0, len(nibbles), 2)
    )
    return int.from_bytes(raw, 'little')


def value_nibbles(value: int, width_bytes: int = 4) -> Tuple[int, ...]:
    """
    Nibbles of an unsigned limb, most significant first.

    This is the order the witness pushes a limb, so the deepest of the
    limb's stack items is its most significant nibble.
    """
    if not 0 <= value < (1 << (8 * width_bytes)):
        raise InvalidParameters(f"{value} does not fit in {width_bytes} bytes")
    count = 2 * width_bytes
    return tuple((value >> (4 * (count - 1 - i))) & 0x0F for i in range(count))


def message_limbs(message: bytes, limb_len: int = 4) -> Tuple[int, ...]:
    """Split a message into little-endian unsigned limbs."""
    if limb_len < 1 or len(message) % limb_len != 0:
        raise InvalidParameters(
            f"Message of {len(message)} bytes is not a whole number of {limb_len}-byte limbs"
        )
    return tuple(
        int.from_bytes(message[i:i + limb_len], 'little')
        for i in range(0, len(message), limb_len)
    )


def digest_nibbles(digest: bytes) -> Tuple[int, ...]:
    """
    Nibble layout the hash sub-program leaves on the stack.

    Byte order, high nibble first; element 0 is deepest on the stack.
    """
    if len(digest) != DIGEST_SIZE:
        raise InvalidParameters(f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
    nibbles = []
    for byte in digest:
        nibbles.append(byte >> 4)
        nibbles.append(byte & 0x0F)
    return tuple(nibbles)
