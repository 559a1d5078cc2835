"""
Scripts for the Stack Machine

A Script is an immutable sequence of instructions. Instructions are either
a bare opcode or a data push; scripts serialize to the Bitcoin byte format
and compose by concatenation:

    locking = builder_a.build() + builder_b.build()

Script numbers use the Bitcoin encoding: little-endian magnitude with the
sign in the top bit of the last byte, zero encoded as the empty string.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple, Union
import struct

from .opcodes import (
    MAX_DIRECT_PUSH,
    Opcode,
    opcode_name,
    small_int_opcode,
)


# =============================================================================
# Script Numbers
# =============================================================================

def encode_num(value: int) -> bytes:
    """Minimal script-number encoding of value."""
    if value == 0:
        return b''
    negative = value < 0
    magnitude = abs(value)
    out = bytearray()
    while magnitude:
        out.append(magnitude & 0xFF)
        magnitude >>= 8
    if out[-1] & 0x80:
        out.append(0x80 if negative else 0x00)
    elif negative:
        out[-1] |= 0x80
    return bytes(out)


def decode_num(data: bytes, max_size: int = 4) -> int:
    """
    Decode a script number.

    Non-minimal encodings are accepted; operands longer than max_size are not.

    Raises:
        ValueError: if data is longer than max_size
    """
    if len(data) > max_size:
        raise ValueError(f"Script number of {len(data)} bytes exceeds {max_size}")
    if not data:
        return 0
    value = int.from_bytes(data, 'little')
    sign_bit = 0x80 << (8 * (len(data) - 1))
    if value & sign_bit:
        return -(value & ~sign_bit)
    return value


# =============================================================================
# Instructions
# =============================================================================

@dataclass(frozen=True)
class Instruction:
    """A single opcode, or a data push when data is not None."""
    opcode: int
    data: Optional[bytes] = None

    @classmethod
    def op(cls, opcode: Union[Opcode, int]) -> 'Instruction':
        return cls(int(opcode))

    @classmethod
    def push(cls, data: bytes) -> 'Instruction':
        """Push data with the shortest push opcode for its length."""
        size = len(data)
        if size == 0:
            return cls(Opcode.OP_0)
        if size <= MAX_DIRECT_PUSH:
            return cls(size, bytes(data))
        if size <= 0xFF:
            return cls(Opcode.OP_PUSHDATA1, bytes(data))
        if size <= 0xFFFF:
            return cls(Opcode.OP_PUSHDATA2, bytes(data))
        return cls(Opcode.OP_PUSHDATA4, bytes(data))

    @property
    def is_push(self) -> bool:
        return self.data is not None

    def serialize(self) -> bytes:
        """Serialize instruction to bytes."""
        if self.data is None:
            return bytes([self.opcode])
        if self.opcode <= MAX_DIRECT_PUSH:
            return bytes([self.opcode]) + self.data
        if self.opcode == Opcode.OP_PUSHDATA1:
            return bytes([self.opcode, len(self.data)]) + self.data
        if self.opcode == Opcode.OP_PUSHDATA2:
            return bytes([self.opcode]) + struct.pack('<H', len(self.data)) + self.data
        return bytes([self.opcode]) + struct.pack('<I', len(self.data)) + self.data

    @classmethod
    def deserialize(cls, data: bytes, offset: int = 0) -> Tuple['Instruction', int]:
        """Deserialize instruction from bytes."""
        opcode = data[offset]
        offset += 1

        if 0x01 <= opcode <= MAX_DIRECT_PUSH:
            size = opcode
        elif opcode == Opcode.OP_PUSHDATA1:
            size = data[offset]
            offset += 1
        elif opcode == Opcode.OP_PUSHDATA2:
            size = struct.unpack('<H', data[offset:offset+2])[0]
            offset += 2
        elif opcode == Opcode.OP_PUSHDATA4:
            size = struct.unpack('<I', data[offset:offset+4])[0]
            offset += 4
        else:
            return cls(opcode), offset

        if offset + size > len(data):
            raise ValueError(f"Push of {size} bytes runs past end of script")
        return cls(opcode, data[offset:offset+size]), offset + size

    def __str__(self) -> str:
        if self.data is not None:
            return f"<{self.data.hex()}>" if self.data else "OP_0"
        return opcode_name(self.opcode)


# =============================================================================
# Scripts
# =============================================================================

class Script:
    """Immutable instruction sequence."""

    __slots__ = ('_instructions',)

    def __init__(self, instructions: Iterable[Instruction] = ()):
        self._instructions: Tuple[Instruction, ...] = tuple(instructions)

    @property
    def instructions(self) -> Tuple[Instruction, ...]:
        return self._instructions

    def __len__(self) -> int:
        return len(self._instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._instructions)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Script(self._instructions[index])
        return self._instructions[index]

    def __add__(self, other: 'Script') -> 'Script':
        if not isinstance(other, Script):
            return NotImplemented
        return Script(self._instructions + other._instructions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Script):
            return NotImplemented
        return self._instructions == other._instructions

    def __hash__(self) -> int:
        return hash(self._instructions)

    def __repr__(self) -> str:
        return f"Script({len(self)} instructions, {self.byte_size} bytes)"

    def __str__(self) -> str:
        return ' '.join(str(inst) for inst in self._instructions)

    def to_bytes(self) -> bytes:
        """Serialize to the Bitcoin script byte format."""
        return b''.join(inst.serialize() for inst in self._instructions)

    @property
    def byte_size(self) -> int:
        return len(self.to_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Script':
        """Parse serialized script bytes."""
        instructions = []
        offset = 0
        while offset < len(data):
            inst, offset = Instruction.deserialize(data, offset)
            instructions.append(inst)
        return cls(instructions)


def combine(*fragments: Script) -> Script:
    """Concatenate script fragments in order."""
    instructions: List[Instruction] = []
    for fragment in fragments:
        instructions.extend(fragment.instructions)
    return Script(instructions)


class ScriptBuilder:
    """
    Fluent builder for scripts.

        ScriptBuilder().push_int(100).push_opcode(Opcode.OP_GREATERTHAN).build()
    """

    def __init__(self):
        self._instructions: List[Instruction] = []

    def push_opcode(self, opcode: Union[Opcode, int]) -> 'ScriptBuilder':
        self._instructions.append(Instruction.op(opcode))
        return self

    def push_int(self, value: int) -> 'ScriptBuilder':
        """Push a number, using OP_0/OP_1NEGATE/OP_1..OP_16 when possible."""
        if -1 <= value <= 16:
            self._instructions.append(Instruction.op(small_int_opcode(value)))
        else:
            self._instructions.append(Instruction.push(encode_num(value)))
        return self

    def push_bytes(self, data: bytes) -> 'ScriptBuilder':
        """Push raw bytes. A single zero byte stays a one-byte push."""
        self._instructions.append(Instruction.push(data))
        return self

    def extend(self, script: Script) -> 'ScriptBuilder':
        self._instructions.extend(script.instructions)
        return self

    def build(self) -> Script:
        return Script(self._instructions)
