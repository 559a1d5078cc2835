"""
Stack Machine Interpreter

Executes a Script over a main stack and an alt stack with Tapscript-style
semantics:

- every element is a byte string; numeric opcodes decode script numbers
  and reject operands longer than 4 bytes
- any failed check aborts the whole script (no partial success)
- success requires a clean stack holding a single true element

The initial stack holds the witness, first item deepest. Signatures are
checked against the challenge message of the ExecutionContext.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence
import hashlib
import logging

import blake3

from ..signing import verify_signature
from .opcodes import Opcode, opcode_name, small_int_value
from .script import Script, decode_num, encode_num


logger = logging.getLogger(__name__)


MAX_STACK_SIZE = 1000
"""Combined main and alt stack items."""

MAX_ELEMENT_SIZE = 520
"""Largest byte string an element may hold."""

MAX_NUM_SIZE = 4
"""Largest numeric operand in bytes."""


class ScriptError(Enum):
    """Why an execution was rejected."""
    OK = 'ok'
    EVAL_FALSE = 'eval_false'
    CLEAN_STACK = 'clean_stack'
    VERIFY = 'verify'
    EQUALVERIFY = 'equalverify'
    NUMEQUALVERIFY = 'numequalverify'
    CHECKSIGVERIFY = 'checksigverify'
    OP_RETURN = 'op_return'
    BAD_OPCODE = 'bad_opcode'
    INVALID_STACK_OPERATION = 'invalid_stack_operation'
    INVALID_ALTSTACK_OPERATION = 'invalid_altstack_operation'
    STACK_SIZE = 'stack_size'
    PUSH_SIZE = 'push_size'
    NUM_OVERFLOW = 'num_overflow'
    INVALID_SPLIT_RANGE = 'invalid_split_range'
    PUBKEY_TYPE = 'pubkey_type'
    SCHNORR_SIG = 'schnorr_sig'


class ScriptFailure(Exception):
    """Raised inside the interpreter loop; callers see an ExecutionResult."""

    def __init__(self, error: ScriptError, detail: str = ''):
        self.error = error
        self.detail = detail
        super().__init__(f"{error.value}: {detail}" if detail else error.value)


@dataclass(frozen=True)
class ExecutionContext:
    """Data implicit to a spend: the message signatures commit to."""
    challenge: bytes = b'\x00' * 32


@dataclass
class ExecStats:
    """Execution statistics."""
    opcodes_executed: int = 0
    max_stack_items: int = 0
    script_size: int = 0


@dataclass
class ExecutionResult:
    """
    Result of running a script.

    failed_at is the instruction index that aborted execution, or None for
    failures detected after the last instruction (clean stack, false top).
    """
    success: bool
    error: ScriptError
    final_stack: List[bytes] = field(default_factory=list)
    failed_at: Optional[int] = None
    last_opcode: Optional[int] = None
    detail: str = ''
    stats: ExecStats = field(default_factory=ExecStats)

    @property
    def last_opcode_name(self) -> Optional[str]:
        if self.last_opcode is None:
            return None
        return opcode_name(self.last_opcode)


def cast_to_bool(data: bytes) -> bool:
    """Any non-zero byte is true, except a lone sign bit (negative zero)."""
    for i, byte in enumerate(data):
        if byte != 0:
            if i == len(data) - 1 and byte == 0x80:
                return False
            return True
    return False


_TRUE = encode_num(1)
_FALSE = encode_num(0)


class Interpreter:
    """
    A single-use machine for one script execution.

    State includes:
    - stack: main stack, top at the end of the list
    - altstack: alt stack, top at the end of the list
    - pc: index of the instruction being executed
    """

    def __init__(self, script: Script, stack: Sequence[bytes] = (), context: Optional[ExecutionContext] = None):
        self.script = script
        self.context = context or ExecutionContext()
        self.stack: List[bytes] = [bytes(item) for item in stack]
        self.altstack: List[bytes] = []
        self.pc = 0
        self.stats = ExecStats(script_size=script.byte_size)

    # =========================================================================
    # Stack helpers
    # =========================================================================

    def push(self, item: bytes) -> None:
        if len(item) > MAX_ELEMENT_SIZE:
            raise ScriptFailure(ScriptError.PUSH_SIZE, f"{len(item)} byte element")
        self.stack.append(item)

    def pop(self) -> bytes:
        if not self.stack:
            raise ScriptFailure(ScriptError.INVALID_STACK_OPERATION, "pop from empty stack")
        return self.stack.pop()

    def top(self, depth: int = 0) -> bytes:
        if depth >= len(self.stack):
            raise ScriptFailure(
                ScriptError.INVALID_STACK_OPERATION,
                f"depth {depth} with {len(self.stack)} items",
            )
        return self.stack[-1 - depth]

    def pop_num(self) -> int:
        data = self.pop()
        try:
            return decode_num(data, MAX_NUM_SIZE)
        except ValueError as e:
            raise ScriptFailure(ScriptError.NUM_OVERFLOW, str(e)) from e

    def push_num(self, value: int) -> None:
        self.push(encode_num(value))

    def push_bool(self, value: bool) -> None:
        self.push(_TRUE if value else _FALSE)

    # =========================================================================
    # Execution
    # =========================================================================

    def run(self) -> ExecutionResult:
        """Execute every instruction, then apply the clean-stack rule."""
        last_opcode = None
        try:
            for index, inst in enumerate(self.script):
                self.pc = index
                last_opcode = inst.opcode
                self.step(inst)
                self.stats.opcodes_executed += 1
                depth = len(self.stack) + len(self.altstack)
                if depth > MAX_STACK_SIZE:
                    raise ScriptFailure(ScriptError.STACK_SIZE, f"{depth} items")
                self.stats.max_stack_items = max(self.stats.max_stack_items, depth)
        except ScriptFailure as failure:
            logger.debug(
                "Script failed at instruction %d (%s): %s",
                self.pc, opcode_name(last_opcode), failure,
            )
            return ExecutionResult(
                success=False,
                error=failure.error,
                final_stack=list(self.stack),
                failed_at=self.pc,
                last_opcode=last_opcode,
                detail=failure.detail,
                stats=self.stats,
            )

        if len(self.stack) != 1:
            error = ScriptError.CLEAN_STACK if self.stack else ScriptError.EVAL_FALSE
        elif not cast_to_bool(self.stack[0]):
            error = ScriptError.EVAL_FALSE
        else:
            error = ScriptError.OK

        return ExecutionResult(
            success=error is ScriptError.OK,
            error=error,
            final_stack=list(self.stack),
            last_opcode=last_opcode,
            stats=self.stats,
        )

    def step(self, inst) -> None:
        """Execute one instruction."""
        op = inst.opcode

        if inst.data is not None:
            self.push(inst.data)

        elif op == Opcode.OP_0:
            self.push(b'')

        elif op == Opcode.OP_1NEGATE or Opcode.OP_1 <= op <= Opcode.OP_16:
            self.push_num(small_int_value(op))

        elif op == Opcode.OP_NOP:
            pass

        elif op == Opcode.OP_VERIFY:
            if not cast_to_bool(self.pop()):
                raise ScriptFailure(ScriptError.VERIFY)

        elif op == Opcode.OP_RETURN:
            raise ScriptFailure(ScriptError.OP_RETURN)

        # Stack
        elif op == Opcode.OP_TOALTSTACK:
            self.altstack.append(self.pop())

        elif op == Opcode.OP_FROMALTSTACK:
            if not self.altstack:
                raise ScriptFailure(ScriptError.INVALID_ALTSTACK_OPERATION)
            self.push(self.altstack.pop())

        elif op == Opcode.OP_2DROP:
            self.pop()
            self.pop()

        elif op == Opcode.OP_2DUP:
            a, b = self.top(1), self.top(0)
            self.push(a)
            self.push(b)

        elif op == Opcode.OP_DEPTH:
            self.push_num(len(self.stack))

        elif op == Opcode.OP_DROP:
            self.pop()

        elif op == Opcode.OP_DUP:
            self.push(self.top())

        elif op == Opcode.OP_NIP:
            b = self.pop()
            self.pop()
            self.push(b)

        elif op == Opcode.OP_OVER:
            self.push(self.top(1))

        elif op in (Opcode.OP_PICK, Opcode.OP_ROLL):
            n = self.pop_num()
            if n < 0 or n >= len(self.stack):
                raise ScriptFailure(
                    ScriptError.INVALID_STACK_OPERATION,
                    f"{opcode_name(op)} {n} with {len(self.stack)} items",
                )
            if op == Opcode.OP_PICK:
                self.push(self.stack[-1 - n])
            else:
                self.push(self.stack.pop(-1 - n))

        elif op == Opcode.OP_ROT:
            self.top(2)
            self.stack.append(self.stack.pop(-3))

        elif op == Opcode.OP_SWAP:
            self.top(1)
            self.stack[-1], self.stack[-2] = self.stack[-2], self.stack[-1]

        elif op == Opcode.OP_TUCK:
            self.top(1)
            self.stack.insert(-2, self.stack[-1])

        # Splice
        elif op == Opcode.OP_CAT:
            b = self.pop()
            a = self.pop()
            self.push(a + b)

        elif op == Opcode.OP_SPLIT:
            n = self.pop_num()
            data = self.pop()
            if n < 0 or n > len(data):
                raise ScriptFailure(
                    ScriptError.INVALID_SPLIT_RANGE,
                    f"split {len(data)} bytes at {n}",
                )
            self.push(data[:n])
            self.push(data[n:])

        elif op == Opcode.OP_SIZE:
            self.push_num(len(self.top()))

        # Equality
        elif op in (Opcode.OP_EQUAL, Opcode.OP_EQUALVERIFY):
            b = self.pop()
            a = self.pop()
            if op == Opcode.OP_EQUAL:
                self.push_bool(a == b)
            elif a != b:
                raise ScriptFailure(
                    ScriptError.EQUALVERIFY, f"{a.hex() or '0'} != {b.hex() or '0'}"
                )

        # Unary arithmetic
        elif op == Opcode.OP_1ADD:
            self.push_num(self.pop_num() + 1)

        elif op == Opcode.OP_1SUB:
            self.push_num(self.pop_num() - 1)

        elif op == Opcode.OP_NEGATE:
            self.push_num(-self.pop_num())

        elif op == Opcode.OP_ABS:
            self.push_num(abs(self.pop_num()))

        elif op == Opcode.OP_NOT:
            self.push_bool(self.pop_num() == 0)

        elif op == Opcode.OP_0NOTEQUAL:
            self.push_bool(self.pop_num() != 0)

        # Binary arithmetic
        elif op in _BINARY_OPS:
            b = self.pop_num()
            a = self.pop_num()
            if op == Opcode.OP_NUMEQUALVERIFY:
                if a != b:
                    raise ScriptFailure(ScriptError.NUMEQUALVERIFY, f"{a} != {b}")
            else:
                result = _BINARY_OPS[op](a, b)
                if isinstance(result, bool):
                    self.push_bool(result)
                else:
                    self.push_num(result)

        elif op == Opcode.OP_WITHIN:
            upper = self.pop_num()
            lower = self.pop_num()
            x = self.pop_num()
            self.push_bool(lower <= x < upper)

        # Crypto
        elif op == Opcode.OP_SHA256:
            self.push(hashlib.sha256(self.pop()).digest())

        elif op == Opcode.OP_BLAKE3:
            self.push(blake3.blake3(self.pop()).digest())

        elif op in (Opcode.OP_CHECKSIG, Opcode.OP_CHECKSIGVERIFY):
            pubkey = self.pop()
            signature = self.pop()
            valid = self._check_signature(pubkey, signature)
            if op == Opcode.OP_CHECKSIG:
                self.push_bool(valid)
            elif not valid:
                raise ScriptFailure(ScriptError.CHECKSIGVERIFY)

        else:
            raise ScriptFailure(ScriptError.BAD_OPCODE, opcode_name(op))

    def _check_signature(self, pubkey: bytes, signature: bytes) -> bool:
        """
        BIP340 check against the context challenge.

        An empty signature is a plain false; a non-empty invalid one aborts.
        """
        if len(pubkey) != 32:
            raise ScriptFailure(ScriptError.PUBKEY_TYPE, f"{len(pubkey)} byte key")
        if not signature:
            return False
        if len(signature) != 64 or not verify_signature(pubkey, signature, self.context.challenge):
            raise ScriptFailure(ScriptError.SCHNORR_SIG)
        return True


_BINARY_OPS = {
    Opcode.OP_ADD: lambda a, b: a + b,
    Opcode.OP_SUB: lambda a, b: a - b,
    Opcode.OP_BOOLAND: lambda a, b: a != 0 and b != 0,
    Opcode.OP_BOOLOR: lambda a, b: a != 0 or b != 0,
    Opcode.OP_NUMEQUAL: lambda a, b: a == b,
    Opcode.OP_NUMEQUALVERIFY: lambda a, b: a == b,
    Opcode.OP_NUMNOTEQUAL: lambda a, b: a != b,
    Opcode.OP_LESSTHAN: lambda a, b: a < b,
    Opcode.OP_GREATERTHAN: lambda a, b: a > b,
    Opcode.OP_LESSTHANOREQUAL: lambda a, b: a <= b,
    Opcode.OP_GREATERTHANOREQUAL: lambda a, b: a >= b,
    Opcode.OP_MIN: lambda a, b: min(a, b),
    Opcode.OP_MAX: lambda a, b: max(a, b),
}


def execute(
    script: Script,
    stack: Sequence[bytes] = (),
    context: Optional[ExecutionContext] = None,
) -> ExecutionResult:
    """
    Run script on an initial stack (first item deepest).

    Args:
        script: Program to execute
        stack: Witness items pushed before execution
        context: Challenge message for signature opcodes

    Returns:
        ExecutionResult; never raises for script-level failures
    """
    return Interpreter(script, stack, context).run()
