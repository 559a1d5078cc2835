"""
ColliderVM Parameters

ColliderVMConfig holds the flow parameters {n, m, l, b, k} together with
the constants of the reference scenario (stage thresholds, witness message
shape, routing hash). Thresholds and message shape are configuration, not
protocol law, but any change to the message shape changes the nibble
layout every stage program depends on.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import InvalidParameters


MAX_PREFIX_BITS = 32
"""Routing prefixes are read from the first 4 digest bytes."""

DIGEST_SIZE = 32
"""Every supported routing hash produces 32 bytes (64 nibbles)."""


class HashFunction(Enum):
    """Routing hash. Each has a matching opcode in the stack machine."""
    BLAKE3 = 'blake3'
    SHA256 = 'sha256'


def check_prefix_params(b_bits: int, l_bits: int) -> None:
    """
    Reject (B, L) pairs before any search or compile work.

    Raises:
        InvalidParameters: if B > 32, B not a multiple of 8 or L > B
    """
    if b_bits < 0 or l_bits < 0:
        raise InvalidParameters(f"B and L must be non-negative (B={b_bits}, L={l_bits})")
    if b_bits > MAX_PREFIX_BITS:
        raise InvalidParameters(f"B={b_bits} exceeds {MAX_PREFIX_BITS} bits")
    if b_bits % 8 != 0:
        raise InvalidParameters(f"B={b_bits} must be a multiple of 8")
    if l_bits > b_bits:
        raise InvalidParameters(f"L={l_bits} must not exceed B={b_bits}")


@dataclass(frozen=True)
class ColliderVMConfig:
    """
    Public parameters of a ColliderVM instance.

    All parameters are immutable and hashable, so a config can key caches.
    """

    # ==========================================================================
    # Flow Parameters
    # ==========================================================================

    n: int = 1
    """Committee size (number of signers)."""

    m: int = 2
    """Programs per flow (F1 and F2 here)."""

    l: int = 4
    """log2 of the accepted routing set size: 2^L flows."""

    b: int = 16
    """Routing prefix width in bits. Multiple of 8, at most 32."""

    k: int = 1
    """Signature threshold."""

    # ==========================================================================
    # Reference Scenario Constants
    # ==========================================================================

    f1_threshold: int = 100
    """F1 accepts x strictly greater than this."""

    f2_threshold: int = 200
    """F2 accepts x strictly less than this."""

    message_len: int = 12
    """Witness message bytes: 4-byte input + two 4-byte nonce halves."""

    limb_len: int = 4
    """Bytes per witness limb."""

    hash_function: HashFunction = HashFunction.BLAKE3

    attempt_multiple: int = 100
    """Search gives up after this many times the expected attempts."""

    def validate(self) -> 'ColliderVMConfig':
        """Check invariants, returning self so calls can chain."""
        check_prefix_params(self.b, self.l)
        if self.n < 1 or self.m < 1:
            raise InvalidParameters(f"n={self.n} and m={self.m} must be positive")
        if not 1 <= self.k <= self.n:
            raise InvalidParameters(f"k={self.k} must be within [1, n={self.n}]")
        if self.message_len != 12:
            # x (4 bytes) followed by the 8-byte nonce
            raise InvalidParameters(f"message_len={self.message_len} must be 12")
        if self.limb_len != 4:
            # Value reconstruction reads exactly one 4-byte limb
            raise InvalidParameters(f"limb_len={self.limb_len} must be 4")
        if self.attempt_multiple < 1:
            raise InvalidParameters("attempt_multiple must be positive")
        return self

    @property
    def flow_count(self) -> int:
        """Number of accepted flows, 2^L."""
        return 1 << self.l

    @property
    def prefix_nibbles(self) -> int:
        """Nibbles checked on-chain, B/4."""
        return self.b // 4

    @property
    def expected_attempts(self) -> int:
        """Expected nonce attempts, 2^(B-L)."""
        return 1 << max(self.b - self.l, 0)


# =============================================================================
# Preset Configurations
# =============================================================================

# Toy: the reference scenario (16 flows, 16-bit prefix, ~4096 hashes)
CONFIG_TOY = ColliderVMConfig(l=4, b=16)

# Small: For testing (4 flows, 8-bit prefix, ~64 hashes)
CONFIG_SMALL = ColliderVMConfig(l=2, b=8)

# Wide: full 32-bit prefix, ~2^24 hashes
CONFIG_WIDE = ColliderVMConfig(l=8, b=32)
