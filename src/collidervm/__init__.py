"""
ColliderVM: Hash-Prefix Flow Selection for Stateless Script Verification

A toy ColliderVM instance:
- Route an input x to one of 2^L presigned flows by searching a nonce r
  with H(x || r)|_B < 2^L
- Compile stage programs (F1: x > 100, F2: x < 200) for a Bitcoin-Script-like
  stack machine, each rechecking the signature, the bound and the routing prefix
- Every step recomputes the same hash, so an operator cannot switch inputs
  between steps without finding a prefix collision

Usage:
    from collidervm import CONFIG_TOY, SignerKey, build_flow, open_session, presign_flow

    signer = SignerKey.generate()
    session = open_session(123, CONFIG_TOY)
    flow = presign_flow(build_flow(session.flow_id, signer.xonly_pubkey, CONFIG_TOY), [signer])
    outcomes = flow.spend(signer.xonly_pubkey, session, CONFIG_TOY)
"""

# Parameters and errors
from .params import (
    ColliderVMConfig,
    HashFunction,
    CONFIG_TOY,
    CONFIG_SMALL,
    CONFIG_WIDE,
    check_prefix_params,
)
from .errors import (
    ColliderVMError,
    InvalidParameters,
    OutOfRange,
    SearchExhausted,
    SearchCancelled,
    CompilerError,
)

# Codec
from .codec import (
    message_bytes,
    routing_digest,
    derive_routing_index,
    encode_routing_prefix,
    decode_routing_prefix,
    value_nibbles,
    digest_nibbles,
)

# Flow selection
from .selector import (
    NonceSearchResult,
    SearchProgress,
    LoggingProgressObserver,
    expected_attempts,
    find_routing_nonce,
    find_routing_nonce_parallel,
    benchmark_hash_rate,
)

# Script compilation
from .hashscript import compute_script, drop_script, push_message_script, verify_output_script
from .compiler import (
    Stage,
    ProgramState,
    StageProgram,
    StageOutcome,
    compile_stage_program,
    build_f1_program,
    build_f2_program,
)

# Signing and flows
from .signing import SignerKey, challenge_message, generate_signers, verify_signature
from .flow import (
    RoutingSession,
    PresignedStep,
    PresignedFlow,
    open_session,
    witness_stack,
    witness_script,
    build_flow,
    build_flow_table,
    presign_flow,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Parameters
    "ColliderVMConfig",
    "HashFunction",
    "CONFIG_TOY",
    "CONFIG_SMALL",
    "CONFIG_WIDE",
    "check_prefix_params",
    # Errors
    "ColliderVMError",
    "InvalidParameters",
    "OutOfRange",
    "SearchExhausted",
    "SearchCancelled",
    "CompilerError",
    # Codec
    "message_bytes",
    "routing_digest",
    "derive_routing_index",
    "encode_routing_prefix",
    "decode_routing_prefix",
    "value_nibbles",
    "digest_nibbles",
    # Flow selection
    "NonceSearchResult",
    "SearchProgress",
    "LoggingProgressObserver",
    "expected_attempts",
    "find_routing_nonce",
    "find_routing_nonce_parallel",
    "benchmark_hash_rate",
    # Script compilation
    "compute_script",
    "drop_script",
    "push_message_script",
    "verify_output_script",
    "Stage",
    "ProgramState",
    "StageProgram",
    "StageOutcome",
    "compile_stage_program",
    "build_f1_program",
    "build_f2_program",
    # Signing and flows
    "SignerKey",
    "challenge_message",
    "generate_signers",
    "verify_signature",
    "RoutingSession",
    "PresignedStep",
    "PresignedFlow",
    "open_session",
    "witness_stack",
    "witness_script",
    "build_flow",
    "build_flow_table",
    "presign_flow",
]
