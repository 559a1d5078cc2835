"""
Flows, Sessions and Witnesses

Offline phase: for every flow id d in [0, 2^L) the signers compile the F1
and F2 programs committed to encode_routing_prefix(d) and presign each
step's challenge message.

Online phase: the operator picks an input x, searches a nonce routing x to
some flow d, then spends d's steps with the witness

    [nibbles(x), nibbles(r_lo), nibbles(r_hi), signature]    (bottom -> top)

so every step recomputes the same H(x || r) and checks the same prefix.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from .codec import encode_routing_prefix, message_bytes
from .compiler import Stage, StageOutcome, StageProgram, compile_stage_program
from .errors import InvalidParameters
from .hashscript import message_stack
from .params import ColliderVMConfig
from .script import ExecutionContext, Script, ScriptBuilder
from .selector import NonceSearchResult, find_routing_nonce
from .signing import SignerKey, challenge_message


logger = logging.getLogger(__name__)


DEFAULT_AMOUNT_SAT = 1_000

STAGES = (Stage.LOWER_BOUND, Stage.UPPER_BOUND)


# =============================================================================
# Online Phase
# =============================================================================

@dataclass(frozen=True)
class RoutingSession:
    """An input bound to the flow its nonce routes to."""
    x: int
    nonce: int
    flow_id: int
    digest: bytes
    prefix: Tuple[int, ...]


def open_session(x: int, config: Optional[ColliderVMConfig] = None, **search_kwargs) -> RoutingSession:
    """
    Validate the configuration, then search a nonce for x.

    Extra keyword arguments go to find_routing_nonce (observer,
    should_stop, max_attempts, ...).
    """
    config = (config or ColliderVMConfig()).validate()
    search_kwargs.setdefault('hash_function', config.hash_function)
    search_kwargs.setdefault('attempt_multiple', config.attempt_multiple)
    found: NonceSearchResult = find_routing_nonce(x, config.b, config.l, **search_kwargs)
    return RoutingSession(
        x=x,
        nonce=found.nonce,
        flow_id=found.flow_id,
        digest=found.digest,
        prefix=encode_routing_prefix(found.flow_id, config.b),
    )


def witness_stack(
    signature: bytes,
    x: int,
    nonce: int,
    config: Optional[ColliderVMConfig] = None,
) -> List[bytes]:
    """Witness items for one step, first item deepest."""
    config = config or ColliderVMConfig()
    items = message_stack(message_bytes(x, nonce), config.limb_len)
    items.append(bytes(signature))
    return items


def witness_script(
    signature: bytes,
    x: int,
    nonce: int,
    config: Optional[ColliderVMConfig] = None,
) -> Script:
    """The same witness as a push-only script."""
    b = ScriptBuilder()
    for item in witness_stack(signature, x, nonce, config):
        b.push_bytes(item)
    return b.build()


# =============================================================================
# Offline Phase
# =============================================================================

@dataclass
class PresignedStep:
    """One stage program of a flow plus the signatures over its challenge."""
    stage: Stage
    program: StageProgram
    challenge: bytes
    amount_sat: int
    signatures: Dict[bytes, bytes] = field(default_factory=dict)

    def context(self) -> ExecutionContext:
        return ExecutionContext(challenge=self.challenge)

    def spend(
        self,
        signer_pubkey: bytes,
        x: int,
        nonce: int,
        config: Optional[ColliderVMConfig] = None,
    ) -> StageOutcome:
        """Run the program with signer_pubkey's presigned signature."""
        try:
            signature = self.signatures[signer_pubkey]
        except KeyError:
            raise InvalidParameters(
                f"No {self.stage.name} signature for key {signer_pubkey.hex()}"
            ) from None
        witness = witness_stack(signature, x, nonce, config)
        return self.program.run(witness, self.context())


@dataclass
class PresignedFlow:
    """All steps of flow flow_id, in execution order."""
    flow_id: int
    steps: List[PresignedStep]

    def step(self, stage: Stage) -> PresignedStep:
        for step in self.steps:
            if step.stage is stage:
                return step
        raise KeyError(stage)

    def spend(
        self,
        signer_pubkey: bytes,
        session: RoutingSession,
        config: Optional[ColliderVMConfig] = None,
    ) -> List[StageOutcome]:
        """Run every step for the session; later steps run even if one rejects."""
        outcomes = []
        for step in self.steps:
            outcome = step.spend(signer_pubkey, session.x, session.nonce, config)
            logger.info(
                "Flow %d %s: %s",
                self.flow_id, step.stage.name, "accepted" if outcome.accepted else
                f"rejected after {outcome.last_state.name} ({outcome.result.error.value})",
            )
            outcomes.append(outcome)
        return outcomes


def build_flow(
    flow_id: int,
    signer_pubkey: bytes,
    config: Optional[ColliderVMConfig] = None,
    amount_sat: int = DEFAULT_AMOUNT_SAT,
) -> PresignedFlow:
    """
    Compile both stages for flow_id, without signatures.

    Raises:
        InvalidParameters: flow_id outside [0, 2^L) or invalid config
    """
    config = (config or ColliderVMConfig()).validate()
    if not 0 <= flow_id < config.flow_count:
        raise InvalidParameters(f"flow_id={flow_id} outside [0, {config.flow_count})")
    prefix = encode_routing_prefix(flow_id, config.b)

    steps = []
    for stage in STAGES[:config.m]:
        program = compile_stage_program(stage, signer_pubkey, prefix, config.b, config)
        challenge = challenge_message(program.script, amount_sat)
        steps.append(PresignedStep(stage, program, challenge, amount_sat))
    return PresignedFlow(flow_id, steps)


def build_flow_table(
    signer_pubkey: bytes,
    config: Optional[ColliderVMConfig] = None,
    amount_sat: int = DEFAULT_AMOUNT_SAT,
) -> List[PresignedFlow]:
    """Flows for every accepted flow id, indexed by flow id."""
    config = (config or ColliderVMConfig()).validate()
    logger.info("Building %d flows (L=%d, B=%d)", config.flow_count, config.l, config.b)
    return [build_flow(d, signer_pubkey, config, amount_sat) for d in range(config.flow_count)]


def presign_flow(flow: PresignedFlow, signers: Sequence[SignerKey]) -> PresignedFlow:
    """Add every signer's signature to every step, in place; returns flow."""
    for step in flow.steps:
        for signer in signers:
            step.signatures[signer.xonly_pubkey] = signer.sign(step.challenge)
    return flow
