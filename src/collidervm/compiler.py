"""
Verification-Script Compiler

Composes the micro-builders and the hash sub-program into the two stage
programs of a flow:

    F1 (LOWER_BOUND): sig, reconstruct x, x > f1_threshold, hash, drop, prefix, OP_1
    F2 (UPPER_BOUND): sig, reconstruct x, x < f2_threshold, hash, drop, prefix, OP_1

The order is fixed; each fragment consumes the stack its predecessor left.
Execution is a linear state machine:

    INIT -> SIG_CHECKED -> VALUE_RECONSTRUCTED -> THRESHOLD_PASSED
         -> HASH_COMPUTED -> PREFIX_REDUCED -> PREFIX_MATCHED -> ACCEPTED

with REJECTED reachable from every step. StageProgram keeps the fragment
boundaries so a failed run reports where it was rejected.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional, Sequence, Tuple
import logging

from .builders import (
    greater_than,
    less_than,
    prefix_equalverify,
    reconstruct_value,
    signature_check,
    success,
)
from .errors import CompilerError
from .hashscript import compute_script, drop_script
from .params import ColliderVMConfig
from .script import ExecutionContext, ExecutionResult, Script, combine, execute


logger = logging.getLogger(__name__)


class Stage(Enum):
    """Which bound a stage program enforces on x."""
    LOWER_BOUND = 'f1'
    UPPER_BOUND = 'f2'


class ProgramState(Enum):
    """Position of an execution in the stage state machine."""
    INIT = 0
    SIG_CHECKED = 1
    VALUE_RECONSTRUCTED = 2
    THRESHOLD_PASSED = 3
    HASH_COMPUTED = 4
    PREFIX_REDUCED = 5
    PREFIX_MATCHED = 6
    ACCEPTED = 7
    REJECTED = 8


# State reached once each fragment completes, in composition order
_FRAGMENT_STATES = (
    ProgramState.SIG_CHECKED,
    ProgramState.VALUE_RECONSTRUCTED,
    ProgramState.THRESHOLD_PASSED,
    ProgramState.HASH_COMPUTED,
    ProgramState.PREFIX_REDUCED,
    ProgramState.PREFIX_MATCHED,
    ProgramState.ACCEPTED,
)


@dataclass(frozen=True)
class StageOutcome:
    """
    Result of running a stage program against a witness.

    - state: ACCEPTED or REJECTED
    - last_state: last state fully reached before acceptance or rejection
    """
    accepted: bool
    state: ProgramState
    last_state: ProgramState
    result: ExecutionResult


@dataclass(frozen=True)
class StageProgram:
    """
    A compiled locking script plus its fragment layout.

    fragment_ends[i] is the instruction index one past fragment i.
    """
    stage: Stage
    script: Script
    prefix: Tuple[int, ...]
    fragment_ends: Tuple[int, ...]

    def to_bytes(self) -> bytes:
        return self.script.to_bytes()

    def __len__(self) -> int:
        return len(self.script)

    def state_before(self, instruction_index: int) -> ProgramState:
        """Last state completed before the instruction at instruction_index."""
        state = ProgramState.INIT
        for end, reached in zip(self.fragment_ends, _FRAGMENT_STATES):
            if instruction_index < end:
                return state
            state = reached
        return state

    def run(self, witness: Sequence[bytes], context: Optional[ExecutionContext] = None) -> StageOutcome:
        """Execute against witness items (first deepest)."""
        result = execute(self.script, witness, context)
        if result.success:
            return StageOutcome(True, ProgramState.ACCEPTED, ProgramState.ACCEPTED, result)
        if result.failed_at is None:
            # Ran to the end without a clean true stack
            last_state = ProgramState.PREFIX_MATCHED
        else:
            last_state = self.state_before(result.failed_at)
        return StageOutcome(False, ProgramState.REJECTED, last_state, result)


def _check_prefix(expected_prefix: Sequence[int], b_bits: int) -> Tuple[int, ...]:
    if b_bits % 8 != 0 or not 0 <= b_bits <= 32:
        raise CompilerError(f"B={b_bits} must be a multiple of 8 and <= 32")
    prefix = tuple(expected_prefix)
    if len(prefix) != b_bits // 4:
        raise CompilerError(
            f"Prefix has {len(prefix)} nibbles but B={b_bits} needs {b_bits // 4}"
        )
    for nibble in prefix:
        if not 0 <= nibble <= 15:
            raise CompilerError(f"Prefix nibble {nibble} outside [0, 15]")
    return prefix


def compile_stage_program(
    stage: Stage,
    signer_pubkey: bytes,
    expected_prefix: Sequence[int],
    b_bits: int,
    config: Optional[ColliderVMConfig] = None,
) -> StageProgram:
    """
    Build a stage locking script.

    Args:
        stage: LOWER_BOUND (F1) or UPPER_BOUND (F2)
        signer_pubkey: 32-byte x-only key checked first
        expected_prefix: encode_routing_prefix(flow_id, b_bits)
        b_bits: Prefix width B
        config: Thresholds, message shape and hash; defaults to the toy config

    Returns:
        StageProgram; identical inputs give identical programs

    Raises:
        CompilerError: prefix length or nibble values inconsistent with B
        InvalidParameters: config outside the supported message layout
    """
    prefix = _check_prefix(expected_prefix, b_bits)
    if len(signer_pubkey) != 32:
        raise CompilerError(f"Signer key must be 32 bytes, got {len(signer_pubkey)}")
    config = (config or ColliderVMConfig()).validate()
    return _compile(stage, bytes(signer_pubkey), prefix, b_bits, config)


@lru_cache(maxsize=256)
def _compile(
    stage: Stage,
    signer_pubkey: bytes,
    prefix: Tuple[int, ...],
    b_bits: int,
    config: ColliderVMConfig,
) -> StageProgram:
    if stage is Stage.LOWER_BOUND:
        threshold_check = greater_than(config.f1_threshold)
    else:
        threshold_check = less_than(config.f2_threshold)

    fragments = (
        signature_check(signer_pubkey),
        reconstruct_value(2 * config.limb_len),
        threshold_check,
        compute_script(config.message_len, config.limb_len, config.hash_function),
        drop_script(b_bits // 4),
        prefix_equalverify(prefix),
        success(),
    )

    ends = []
    total = 0
    for fragment in fragments:
        total += len(fragment)
        ends.append(total)

    script = combine(*fragments)
    logger.debug(
        "Compiled %s program: %d instructions, %d bytes",
        stage.name, len(script), script.byte_size,
    )
    return StageProgram(stage, script, prefix, tuple(ends))


def build_f1_program(
    signer_pubkey: bytes,
    flow_id_prefix: Sequence[int],
    b_bits: int,
    config: Optional[ColliderVMConfig] = None,
) -> StageProgram:
    """F1: x > f1_threshold and the routing prefix matches."""
    return compile_stage_program(Stage.LOWER_BOUND, signer_pubkey, flow_id_prefix, b_bits, config)


def build_f2_program(
    signer_pubkey: bytes,
    flow_id_prefix: Sequence[int],
    b_bits: int,
    config: Optional[ColliderVMConfig] = None,
) -> StageProgram:
    """F2: x < f2_threshold and the routing prefix matches."""
    return compile_stage_program(Stage.UPPER_BOUND, signer_pubkey, flow_id_prefix, b_bits, config)
