"""
Tests for the Verification-Script Compiler

End-to-end stage executions with real signatures:
- F1 accepts x = 123 and rejects x = 100 at the threshold
- F2 accepts x = 123 and rejects x = 200 at the threshold
- A witness routed to a different flow fails the prefix check
- Inconsistent compiler inputs raise CompilerError
"""

import pytest

from collidervm.codec import candidate_index, encode_routing_prefix, routing_digest
from collidervm.compiler import (
    ProgramState,
    Stage,
    build_f1_program,
    build_f2_program,
    compile_stage_program,
)
from collidervm.errors import CompilerError, InvalidParameters
from collidervm.flow import open_session, witness_stack
from collidervm.params import CONFIG_SMALL, CONFIG_TOY, ColliderVMConfig, HashFunction
from collidervm.script import ExecutionContext, ScriptError
from collidervm.signing import SignerKey, challenge_message


SIGNER = SignerKey.from_secret(bytes(range(1, 33)))
AMOUNT = 1_000


def spend(program, x, nonce, config=CONFIG_TOY, signer=SIGNER, signature=None):
    """Sign the program's challenge and run it against the witness for (x, nonce)."""
    challenge = challenge_message(program.script, AMOUNT)
    if signature is None:
        signature = signer.sign(challenge)
    witness = witness_stack(signature, x, nonce, config)
    return program.run(witness, ExecutionContext(challenge))


@pytest.fixture(scope="module")
def session_123():
    return open_session(123, CONFIG_TOY)


class TestReferenceScenario:
    """Tests for the two stage programs on the toy configuration."""

    def test_f1_accepts_123(self, session_123):
        program = build_f1_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        outcome = spend(program, 123, session_123.nonce)
        assert outcome.accepted
        assert outcome.state is ProgramState.ACCEPTED

    def test_f2_accepts_123(self, session_123):
        program = build_f2_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        assert spend(program, 123, session_123.nonce).accepted

    def test_f1_rejects_100(self):
        session = open_session(100, CONFIG_TOY)
        program = build_f1_program(SIGNER.xonly_pubkey, session.prefix, 16)
        outcome = spend(program, 100, session.nonce)
        assert not outcome.accepted
        assert outcome.state is ProgramState.REJECTED
        assert outcome.last_state is ProgramState.VALUE_RECONSTRUCTED
        assert outcome.result.error is ScriptError.VERIFY

        # The same routing is fine for the upper bound
        program = build_f2_program(SIGNER.xonly_pubkey, session.prefix, 16)
        assert spend(program, 100, session.nonce).accepted

    def test_f2_rejects_200(self):
        session = open_session(200, CONFIG_TOY)
        program = build_f2_program(SIGNER.xonly_pubkey, session.prefix, 16)
        outcome = spend(program, 200, session.nonce)
        assert not outcome.accepted
        assert outcome.last_state is ProgramState.VALUE_RECONSTRUCTED

        program = build_f1_program(SIGNER.xonly_pubkey, session.prefix, 16)
        assert spend(program, 200, session.nonce).accepted

    def test_small_config(self):
        session = open_session(150, CONFIG_SMALL)
        program = build_f1_program(SIGNER.xonly_pubkey, session.prefix, 8, CONFIG_SMALL)
        assert spend(program, 150, session.nonce, CONFIG_SMALL).accepted

    def test_sha256_config(self):
        config = ColliderVMConfig(l=2, b=8, hash_function=HashFunction.SHA256)
        session = open_session(150, config)
        program = build_f2_program(SIGNER.xonly_pubkey, session.prefix, 8, config)
        assert spend(program, 150, session.nonce, config).accepted


class TestRejections:
    """Tests for witnesses that must not pass."""

    def test_prefix_mismatch(self, session_123):
        """A program committed to another flow rejects the routed witness."""
        other = encode_routing_prefix((session_123.flow_id + 1) % 16, 16)
        program = build_f1_program(SIGNER.xonly_pubkey, other, 16)
        outcome = spend(program, 123, session_123.nonce)
        assert not outcome.accepted
        assert outcome.last_state is ProgramState.PREFIX_REDUCED
        assert outcome.result.error is ScriptError.EQUALVERIFY

    def test_different_nonce(self, session_123):
        """A nonce routing elsewhere fails the committed prefix."""
        program = build_f1_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        nonce = next(
            r for r in range(session_123.nonce + 1, session_123.nonce + 1000)
            if encode_routing_prefix(candidate_index(routing_digest(123, r), 16), 16) != session_123.prefix
        )
        outcome = spend(program, 123, nonce)
        assert outcome.last_state is ProgramState.PREFIX_REDUCED

    def test_wrong_signer(self, session_123):
        program = build_f1_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        other = SignerKey.from_secret(bytes(range(2, 34)))
        outcome = spend(program, 123, session_123.nonce, signer=other)
        assert outcome.last_state is ProgramState.INIT
        assert outcome.result.error is ScriptError.SCHNORR_SIG

    def test_empty_signature(self, session_123):
        program = build_f1_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        outcome = spend(program, 123, session_123.nonce, signature=b'')
        assert outcome.last_state is ProgramState.INIT
        assert outcome.result.error is ScriptError.CHECKSIGVERIFY

    def test_signature_over_other_program(self, session_123):
        """Signatures are bound to the script they unlock."""
        f1 = build_f1_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        f2 = build_f2_program(SIGNER.xonly_pubkey, session_123.prefix, 16)
        signature = SIGNER.sign(challenge_message(f1.script, AMOUNT))
        outcome = spend(f2, 123, session_123.nonce, signature=signature)
        assert outcome.result.error is ScriptError.SCHNORR_SIG

    def test_input_above_31_bits(self):
        """x >= 2^31 cannot be reconstructed into a script number."""
        session = open_session(2**31 + 5, CONFIG_SMALL)
        program = build_f1_program(SIGNER.xonly_pubkey, session.prefix, 8, CONFIG_SMALL)
        outcome = spend(program, 2**31 + 5, session.nonce, CONFIG_SMALL)
        assert outcome.last_state is ProgramState.SIG_CHECKED
        assert outcome.result.error is ScriptError.NUM_OVERFLOW


class TestCompilation:
    """Tests for compiler preconditions and program structure."""

    def test_prefix_length_mismatch(self):
        with pytest.raises(CompilerError):
            build_f1_program(SIGNER.xonly_pubkey, (0, 1, 2), 16)

    def test_nibble_out_of_range(self):
        with pytest.raises(CompilerError):
            build_f1_program(SIGNER.xonly_pubkey, (0, 16, 0, 0), 16)

    def test_bad_width(self):
        with pytest.raises(CompilerError):
            build_f1_program(SIGNER.xonly_pubkey, (0, 0, 0), 12)

    def test_bad_key(self):
        with pytest.raises(CompilerError):
            build_f1_program(b'\x01' * 33, (0, 13, 0, 0), 16)

    def test_compiler_error_is_assertion(self):
        with pytest.raises(AssertionError):
            build_f2_program(SIGNER.xonly_pubkey, (), 16)

    def test_deterministic(self):
        a = compile_stage_program(Stage.LOWER_BOUND, SIGNER.xonly_pubkey, (0, 13, 0, 0), 16)
        b = compile_stage_program(Stage.LOWER_BOUND, SIGNER.xonly_pubkey, [0, 13, 0, 0], 16)
        assert a == b
        assert a.to_bytes() == b.to_bytes()

    def test_stages_differ(self):
        f1 = build_f1_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16)
        f2 = build_f2_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16)
        assert f1.to_bytes() != f2.to_bytes()
        assert f1.stage is Stage.LOWER_BOUND
        assert f2.stage is Stage.UPPER_BOUND

    def test_fragment_layout(self):
        program = build_f1_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16)
        assert len(program.fragment_ends) == 7
        assert program.fragment_ends[-1] == len(program)
        assert list(program.fragment_ends) == sorted(program.fragment_ends)
        assert program.state_before(0) is ProgramState.INIT
        assert program.state_before(program.fragment_ends[1]) is ProgramState.VALUE_RECONSTRUCTED
        assert program.state_before(len(program) - 1) is ProgramState.PREFIX_MATCHED

    def test_prefix_fragment_tail(self):
        """The program ends with the reversed prefix checks and OP_1."""
        program = build_f1_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16)
        tail = [str(inst) for inst in program.script[-9:]]
        assert tail == [
            "OP_0", "OP_EQUALVERIFY",
            "OP_0", "OP_EQUALVERIFY",
            "OP_13", "OP_EQUALVERIFY",
            "OP_0", "OP_EQUALVERIFY",
            "OP_1",
        ]

    def test_thresholds_from_config(self):
        config = ColliderVMConfig(f1_threshold=500)
        program = build_f1_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16, config)
        default = build_f1_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16)
        assert program.to_bytes() != default.to_bytes()

    @pytest.mark.parametrize("config", [
        ColliderVMConfig(message_len=8),
        ColliderVMConfig(limb_len=2),
        ColliderVMConfig(b=12),
    ])
    def test_unsupported_config(self, config):
        """Configs outside the 12-byte, 4-byte-limb layout do not compile."""
        with pytest.raises(InvalidParameters):
            build_f1_program(SIGNER.xonly_pubkey, (0, 13, 0, 0), 16, config)
