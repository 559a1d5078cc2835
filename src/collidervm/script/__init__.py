"""
Bitcoin-Script-like Stack Machine

The execution target of ColliderVM stage programs: byte-string stack
elements, 32-bit signed arithmetic, no multiply, no loops, no branches.

- opcodes: opcode table (Bitcoin byte values plus OP_CAT/OP_SPLIT/OP_BLAKE3)
- script: Instruction, Script, ScriptBuilder, script-number codec
- interpreter: execute() with clean-stack success rule
- optimizer: peephole size reduction
"""

from .opcodes import Opcode, OP_TRUE, OP_FALSE, opcode_name
from .script import (
    Instruction,
    Script,
    ScriptBuilder,
    combine,
    encode_num,
    decode_num,
)
from .interpreter import (
    ExecutionContext,
    ExecutionResult,
    ExecStats,
    Interpreter,
    ScriptError,
    cast_to_bool,
    execute,
)
from .optimizer import optimize

__all__ = [
    # Opcodes
    'Opcode',
    'OP_TRUE',
    'OP_FALSE',
    'opcode_name',

    # Scripts
    'Instruction',
    'Script',
    'ScriptBuilder',
    'combine',
    'encode_num',
    'decode_num',

    # Interpreter
    'ExecutionContext',
    'ExecutionResult',
    'ExecStats',
    'Interpreter',
    'ScriptError',
    'cast_to_bool',
    'execute',

    # Optimizer
    'optimize',
]
