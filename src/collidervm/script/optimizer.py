"""
Peephole Size Optimizer

Rewrites short instruction windows into shorter equivalents until a fixed
point is reached. Every rewrite leaves the result of a successful execution
unchanged; the doubling chains used for multiplication by 16 are left alone
because the machine has no cheaper equivalent.
"""

from typing import Callable, List, Optional, Sequence, Tuple

from .opcodes import Opcode, small_int_value
from .script import Instruction, Script, decode_num


def pushed_int(inst: Instruction) -> Optional[int]:
    """Number pushed by inst, or None if it is not a numeric push."""
    if inst.data is not None:
        try:
            return decode_num(inst.data)
        except ValueError:
            return None
    if inst.opcode == Opcode.OP_0:
        return 0
    try:
        return small_int_value(inst.opcode)
    except ValueError:
        return None


def _is(inst: Instruction, opcode: Opcode) -> bool:
    return inst.data is None and inst.opcode == opcode


def _is_push(inst: Instruction) -> bool:
    return inst.data is not None or pushed_int(inst) is not None


def _op(opcode: Opcode) -> Tuple[Instruction, ...]:
    return (Instruction.op(opcode),)


# (first matches, second matches, replacement)
_PairRule = Tuple[Callable[[Instruction], bool], Callable[[Instruction], bool], Tuple[Instruction, ...]]


def _opcode_is(opcode: Opcode) -> Callable[[Instruction], bool]:
    return lambda inst: _is(inst, opcode)


def _int_is(value: int) -> Callable[[Instruction], bool]:
    return lambda inst: pushed_int(inst) == value


PAIR_RULES: Sequence[_PairRule] = (
    (_opcode_is(Opcode.OP_TOALTSTACK), _opcode_is(Opcode.OP_FROMALTSTACK), ()),
    (_opcode_is(Opcode.OP_SWAP), _opcode_is(Opcode.OP_SWAP), ()),
    (_opcode_is(Opcode.OP_DUP), _opcode_is(Opcode.OP_DROP), ()),
    (_is_push, _opcode_is(Opcode.OP_DROP), ()),
    (_int_is(0), _opcode_is(Opcode.OP_ROLL), ()),
    (_int_is(0), _opcode_is(Opcode.OP_PICK), _op(Opcode.OP_DUP)),
    (_int_is(1), _opcode_is(Opcode.OP_PICK), _op(Opcode.OP_OVER)),
    (_int_is(1), _opcode_is(Opcode.OP_ROLL), _op(Opcode.OP_SWAP)),
    (_int_is(2), _opcode_is(Opcode.OP_ROLL), _op(Opcode.OP_ROT)),
    (_int_is(1), _opcode_is(Opcode.OP_ADD), _op(Opcode.OP_1ADD)),
    (_int_is(1), _opcode_is(Opcode.OP_SUB), _op(Opcode.OP_1SUB)),
    (_opcode_is(Opcode.OP_DROP), _opcode_is(Opcode.OP_DROP), _op(Opcode.OP_2DROP)),
    (_opcode_is(Opcode.OP_OVER), _opcode_is(Opcode.OP_OVER), _op(Opcode.OP_2DUP)),
    (_opcode_is(Opcode.OP_EQUAL), _opcode_is(Opcode.OP_VERIFY), _op(Opcode.OP_EQUALVERIFY)),
    (_opcode_is(Opcode.OP_NUMEQUAL), _opcode_is(Opcode.OP_VERIFY), _op(Opcode.OP_NUMEQUALVERIFY)),
    (_opcode_is(Opcode.OP_CHECKSIG), _opcode_is(Opcode.OP_VERIFY), _op(Opcode.OP_CHECKSIGVERIFY)),
)


def _pass(instructions: List[Instruction]) -> Tuple[List[Instruction], bool]:
    """One left-to-right rewrite pass."""
    out: List[Instruction] = []
    changed = False
    i = 0
    while i < len(instructions):
        if i + 1 < len(instructions):
            first, second = instructions[i], instructions[i + 1]
            for match_first, match_second, replacement in PAIR_RULES:
                if match_first(first) and match_second(second):
                    out.extend(replacement)
                    i += 2
                    changed = True
                    break
            else:
                out.append(first)
                i += 1
            continue
        out.append(instructions[i])
        i += 1
    return out, changed


def optimize(script: Script) -> Script:
    """Apply peephole rules until nothing changes."""
    instructions = list(script.instructions)
    changed = True
    while changed:
        instructions, changed = _pass(instructions)
    return Script(instructions)
