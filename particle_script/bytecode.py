"""
Particle Script Bytecode Format

Defines instructions, their operands (data streams) and the per-phase code
blob container with its binary encoding.
"""

from enum import IntEnum
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple
import struct

from .errors import EncodingError


class OpCode(IntEnum):
    """Particle VM opcodes."""

    END = 0x00
    MOV = 0x01

    # Arithmetic
    ADD = 0x02
    SUB = 0x03
    MUL = 0x04
    DIV = 0x05
    MOD = 0x06

    # Comparison and logic
    LT = 0x07
    GT = 0x08
    AND = 0x09
    OR = 0x0A
    NOT = 0x0B

    # Builtin functions
    SIN = 0x10
    COS = 0x11
    SQRT = 0x12
    MIN = 0x13
    MAX = 0x14
    NOISE = 0x15
    RAND = 0x16
    GRADIENT = 0x17     # dst, u8 argument count, arguments
    MESH = 0x18

    # Particle control
    KILL = 0x20
    EMIT = 0x21         # u32 emitter index, condition
    BLOCK_END = 0x22

    # Conditionals
    CMP = 0x30          # condition, u16 then size, then block
    CMP_ELSE = 0x31     # condition, u16 then size, u16 else size, then block, else block


# Number of data stream operands, destination first. None = variadic.
OPERAND_COUNTS = {
    OpCode.END: 0,
    OpCode.MOV: 2,
    OpCode.ADD: 3,
    OpCode.SUB: 3,
    OpCode.MUL: 3,
    OpCode.DIV: 3,
    OpCode.MOD: 3,
    OpCode.LT: 3,
    OpCode.GT: 3,
    OpCode.AND: 3,
    OpCode.OR: 3,
    OpCode.NOT: 2,
    OpCode.SIN: 2,
    OpCode.COS: 2,
    OpCode.SQRT: 2,
    OpCode.MIN: 3,
    OpCode.MAX: 3,
    OpCode.NOISE: 2,
    OpCode.RAND: 3,
    OpCode.GRADIENT: None,
    OpCode.MESH: 1,
    OpCode.KILL: 0,
    OpCode.EMIT: 1,
    OpCode.BLOCK_END: 0,
    OpCode.CMP: 1,
    OpCode.CMP_ELSE: 1,
}

# Opcodes whose first operand is written
WRITES_DESTINATION = {
    OpCode.MOV, OpCode.ADD, OpCode.SUB, OpCode.MUL, OpCode.DIV, OpCode.MOD,
    OpCode.LT, OpCode.GT, OpCode.AND, OpCode.OR, OpCode.NOT,
    OpCode.SIN, OpCode.COS, OpCode.SQRT, OpCode.MIN, OpCode.MAX,
    OpCode.NOISE, OpCode.RAND, OpCode.GRADIENT, OpCode.MESH,
}


class StreamKind(IntEnum):
    """Where an operand lives."""

    NONE = 0
    LITERAL = 1
    REGISTER = 2
    CHANNEL = 3         # per-particle var
    OUT = 4             # output slot, or target input inside emit()
    PARAM = 5           # global parameter
    SYSTEM_VALUE = 6


STREAM_PREFIXES = {
    StreamKind.REGISTER: 'r',
    StreamKind.CHANNEL: 'ch',
    StreamKind.OUT: 'out',
    StreamKind.PARAM: 'param',
    StreamKind.SYSTEM_VALUE: 'sys',
}

STREAM_SIZE = 5     # u8 kind + u32 index or f32 value


@dataclass(frozen=True)
class DataStream:
    """A single scalar operand."""

    kind: StreamKind
    index: int = 0
    value: float = 0.0

    @classmethod
    def literal(cls, value: float) -> 'DataStream':
        return cls(StreamKind.LITERAL, value=value)

    @classmethod
    def register(cls, index: int) -> 'DataStream':
        return cls(StreamKind.REGISTER, index)

    @classmethod
    def channel(cls, index: int) -> 'DataStream':
        return cls(StreamKind.CHANNEL, index)

    @classmethod
    def out(cls, index: int) -> 'DataStream':
        return cls(StreamKind.OUT, index)

    @classmethod
    def param(cls, index: int) -> 'DataStream':
        return cls(StreamKind.PARAM, index)

    @classmethod
    def system_value(cls, index: int) -> 'DataStream':
        return cls(StreamKind.SYSTEM_VALUE, int(index))

    def encode(self) -> bytes:
        if self.kind == StreamKind.LITERAL:
            return struct.pack('<Bf', self.kind, self.value)
        return struct.pack('<BI', self.kind, self.index)

    @classmethod
    def decode(cls, data: bytes, offset: int) -> Tuple['DataStream', int]:
        kind = StreamKind(data[offset])
        if kind == StreamKind.LITERAL:
            value = struct.unpack_from('<f', data, offset + 1)[0]
            return cls.literal(value), offset + STREAM_SIZE
        index = struct.unpack_from('<I', data, offset + 1)[0]
        return cls(kind, index), offset + STREAM_SIZE

    def __str__(self) -> str:
        if self.kind == StreamKind.LITERAL:
            return f"{self.value:g}"
        if self.kind == StreamKind.NONE:
            return "none"
        return f"{STREAM_PREFIXES[self.kind]}{self.index}"


@dataclass
class Instruction:
    opcode: OpCode
    operands: List[DataStream] = field(default_factory=list)
    emitter_index: int = 0                  # EMIT
    then_code: Optional['CodeBlob'] = None  # CMP, CMP_ELSE
    else_code: Optional['CodeBlob'] = None  # CMP_ELSE

    @property
    def destination(self) -> Optional[DataStream]:
        if self.opcode in WRITES_DESTINATION and self.operands:
            return self.operands[0]
        return None


class CodeBlob:
    """Instruction list of one phase function or one conditional block."""

    def __init__(self, instructions: Optional[List[Instruction]] = None):
        self.instructions: List[Instruction] = instructions or []

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    @property
    def last(self) -> Optional[Instruction]:
        return self.instructions[-1] if self.instructions else None

    def emit(self, opcode: OpCode, *operands: DataStream) -> Instruction:
        """Append an instruction and return it."""
        instruction = Instruction(opcode, list(operands))
        self.instructions.append(instruction)
        return instruction

    def append(self, instruction: Instruction) -> Instruction:
        self.instructions.append(instruction)
        return instruction

    def walk(self) -> Iterator[Instruction]:
        """Yield every instruction, including those of nested blocks."""
        for instruction in self.instructions:
            yield instruction
            if instruction.then_code is not None:
                yield from instruction.then_code.walk()
            if instruction.else_code is not None:
                yield from instruction.else_code.walk()

    def opcodes(self) -> List[OpCode]:
        return [instruction.opcode for instruction in self.walk()]

    @property
    def instruction_count(self) -> int:
        return sum(1 for _ in self.walk())

    # =========================================================================
    # Encoding
    # =========================================================================

    def serialize(self) -> bytes:
        """Encode the instructions followed by an END marker."""
        output = bytearray()
        for instruction in self.instructions:
            self._encode(instruction, output)
        output.append(OpCode.END)
        return bytes(output)

    def _encode(self, instruction: Instruction, output: bytearray) -> None:
        opcode = instruction.opcode
        operands = instruction.operands
        expected = OPERAND_COUNTS[opcode]

        if expected is None:
            if len(operands) < 2 or len(operands) - 1 > 0xFF:
                raise EncodingError(f"{opcode.name} has {len(operands)} operands")
        elif len(operands) != expected:
            raise EncodingError(f"{opcode.name} expects {expected} operand(s), got {len(operands)}")

        output.append(opcode)

        if opcode == OpCode.EMIT:
            output.extend(struct.pack('<I', instruction.emitter_index))
            output.extend(operands[0].encode())
        elif opcode == OpCode.GRADIENT:
            output.extend(operands[0].encode())
            output.append(len(operands) - 1)
            for operand in operands[1:]:
                output.extend(operand.encode())
        elif opcode in (OpCode.CMP, OpCode.CMP_ELSE):
            self._encode_conditional(instruction, output)
        else:
            for operand in operands:
                output.extend(operand.encode())

    def _encode_conditional(self, instruction: Instruction, output: bytearray) -> None:
        if instruction.then_code is None:
            raise EncodingError(f"{instruction.opcode.name} without a block")
        blocks = [instruction.then_code.serialize()]
        if instruction.opcode == OpCode.CMP_ELSE:
            if instruction.else_code is None:
                raise EncodingError("CMP_ELSE without an else block")
            blocks.append(instruction.else_code.serialize())

        output.extend(instruction.operands[0].encode())
        for block in blocks:
            if len(block) > 0xFFFF:
                raise EncodingError("Conditional block is too large")
            output.extend(struct.pack('<H', len(block)))
        for block in blocks:
            output.extend(block)

    @classmethod
    def deserialize(cls, data: bytes) -> 'CodeBlob':
        """Decode instructions up to the first top-level END."""
        blob, _ = cls._decode(data, 0)
        return blob

    @classmethod
    def _decode(cls, data: bytes, offset: int) -> Tuple['CodeBlob', int]:
        blob = cls()
        while True:
            opcode = OpCode(data[offset])
            offset += 1
            if opcode == OpCode.END:
                return blob, offset

            instruction = Instruction(opcode)
            if opcode == OpCode.EMIT:
                instruction.emitter_index = struct.unpack_from('<I', data, offset)[0]
                offset += 4
                count = 1
            elif opcode == OpCode.GRADIENT:
                destination, offset = DataStream.decode(data, offset)
                instruction.operands.append(destination)
                count = data[offset]
                offset += 1
            else:
                count = OPERAND_COUNTS[opcode]

            for _ in range(count):
                operand, offset = DataStream.decode(data, offset)
                instruction.operands.append(operand)

            if opcode in (OpCode.CMP, OpCode.CMP_ELSE):
                size_count = 2 if opcode == OpCode.CMP_ELSE else 1
                sizes = struct.unpack_from(f'<{size_count}H', data, offset)
                offset += 2 * size_count
                instruction.then_code, _ = cls._decode(data, offset)
                offset += sizes[0]
                if opcode == OpCode.CMP_ELSE:
                    instruction.else_code, _ = cls._decode(data, offset)
                    offset += sizes[1]

            blob.instructions.append(instruction)

    # =========================================================================
    # Disassembly
    # =========================================================================

    def disassemble(self, indent: int = 1) -> str:
        """Disassemble to human-readable format."""
        lines = []
        pad = "  " * indent
        for instruction in self.instructions:
            name = instruction.opcode.name
            operands = ", ".join(str(operand) for operand in instruction.operands)

            if instruction.opcode == OpCode.EMIT:
                lines.append(f"{pad}{name:10s} emitter={instruction.emitter_index}, {operands}")
            else:
                lines.append(f"{pad}{name:10s} {operands}".rstrip())

            if instruction.then_code is not None:
                lines.append(instruction.then_code.disassemble(indent + 1))
            if instruction.else_code is not None:
                lines.append(f"{pad}ELSE")
                lines.append(instruction.else_code.disassemble(indent + 1))
        return "\n".join(line for line in lines if line)
