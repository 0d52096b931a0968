"""
Particle Script Resource Format

The compiled blob consumed by the particle runtime: a header, one record per
emitter (vertex layout, asset paths, code and sizes) and the global parameter
table. All values are little-endian.
"""

from enum import IntEnum
from dataclasses import dataclass, field
from typing import List, Tuple
import struct

from .bytecode import CodeBlob
from .codegen import EmitterCode
from .model import Emitter, Phase, Script


MAGIC = b'PSC\x00'
VERSION = 1

ATTRIBUTE_INSTANCED = 1 << 0


class AttributeType(IntEnum):
    FLOAT = 0


@dataclass
class VertexAttribute:
    """One instanced vertex attribute fed from an `out` variable."""
    offset: int
    components: int
    type: AttributeType = AttributeType.FLOAT
    flags: int = ATTRIBUTE_INSTANCED


@dataclass
class EmitterRecord:
    attributes: List[VertexAttribute] = field(default_factory=list)
    material: str = ""
    mesh: str = ""
    update_code: bytes = b""
    emit_code: bytes = b""
    output_code: bytes = b""
    var_lanes: int = 0
    update_registers: int = 0
    emit_registers: int = 0
    output_registers: int = 0
    update_instructions: int = 0
    emit_instructions: int = 0
    output_instructions: int = 0
    output_lanes: int = 0
    init_emit_count: int = 0
    emit_per_second: float = 0.0
    input_lanes: int = 0
    max_ribbons: int = 0
    max_ribbon_length: int = 0
    init_ribbons_count: int = 0
    tube_segments: int = 0
    emit_move_distance: float = -1.0

    @property
    def code(self) -> bytes:
        return self.update_code + self.emit_code + self.output_code

    @property
    def emit_offset(self) -> int:
        return len(self.update_code)

    @property
    def output_offset(self) -> int:
        return len(self.update_code) + len(self.emit_code)


@dataclass
class ParamRecord:
    name: str
    lanes: int


def vertex_layout(emitter: Emitter) -> List[VertexAttribute]:
    """Walk the outputs in declaration order, accumulating byte offsets."""
    attributes = []
    offset = 0
    for output in emitter.outputs:
        attributes.append(VertexAttribute(offset, output.lanes))
        offset += 4 * output.lanes
    return attributes


class _Reader:
    """Sequential little-endian reader over a byte buffer."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def unpack(self, fmt: str) -> Tuple:
        values = struct.unpack_from('<' + fmt, self.data, self.offset)
        self.offset += struct.calcsize('<' + fmt)
        return values

    def u32(self) -> int:
        return self.unpack('I')[0]

    def f32(self) -> float:
        return self.unpack('f')[0]

    def read(self, length: int) -> bytes:
        data = self.data[self.offset:self.offset + length]
        if len(data) != length:
            raise ValueError("Unexpected end of particle resource")
        self.offset += length
        return data

    def string(self) -> str:
        return self.read(self.u32()).decode('utf-8')


def _pack_string(output: bytearray, text: str) -> None:
    encoded = text.encode('utf-8')
    output.extend(struct.pack('<I', len(encoded)))
    output.extend(encoded)


@dataclass
class ParticleResource:
    """Container for a compiled particle script."""

    flags: int = 0
    emitters: List[EmitterRecord] = field(default_factory=list)
    params: List[ParamRecord] = field(default_factory=list)

    @classmethod
    def from_script(cls, script: Script, emitter_codes: List[EmitterCode]) -> 'ParticleResource':
        """Build the resource from parsed declarations and their compiled phases."""
        resource = cls(flags=script.flags)

        for compiled in emitter_codes:
            emitter = compiled.emitter
            update = compiled.phase(Phase.UPDATE)
            emit = compiled.phase(Phase.EMIT)
            output = compiled.phase(Phase.OUTPUT)

            resource.emitters.append(EmitterRecord(
                attributes=vertex_layout(emitter),
                material=emitter.material,
                mesh=emitter.mesh,
                update_code=update.code.serialize(),
                emit_code=emit.code.serialize(),
                output_code=output.code.serialize(),
                var_lanes=Emitter.lane_count(emitter.vars),
                update_registers=update.register_count,
                emit_registers=emit.register_count,
                output_registers=output.register_count,
                update_instructions=update.instruction_count,
                emit_instructions=emit.instruction_count,
                output_instructions=output.instruction_count,
                output_lanes=Emitter.lane_count(emitter.outputs),
                init_emit_count=emitter.init_emit_count,
                emit_per_second=emitter.emit_per_second,
                input_lanes=Emitter.lane_count(emitter.inputs),
                max_ribbons=emitter.max_ribbons,
                max_ribbon_length=emitter.max_ribbon_length,
                init_ribbons_count=emitter.init_ribbons_count,
                tube_segments=emitter.tube_segments,
                emit_move_distance=emitter.emit_move_distance,
            ))

        for param in script.params:
            resource.params.append(ParamRecord(param.name, param.lanes))
        return resource

    def serialize(self) -> bytes:
        """Serialize to the runtime's binary format."""
        output = bytearray()

        # Header
        output.extend(MAGIC)
        output.extend(struct.pack('<III', VERSION, self.flags, len(self.emitters)))

        for emitter in self.emitters:
            output.extend(struct.pack('<I', len(emitter.attributes)))
            for attribute in emitter.attributes:
                output.extend(struct.pack('<IBBB', attribute.offset, attribute.components,
                                          attribute.type, attribute.flags))

            _pack_string(output, emitter.material)
            _pack_string(output, emitter.mesh)

            code = emitter.code
            output.extend(struct.pack('<I', len(code)))
            output.extend(code)
            output.extend(struct.pack('<II', emitter.emit_offset, emitter.output_offset))

            output.extend(struct.pack(
                '<7I', emitter.var_lanes,
                emitter.update_registers, emitter.emit_registers, emitter.output_registers,
                emitter.update_instructions, emitter.emit_instructions,
                emitter.output_instructions))
            output.extend(struct.pack('<II', emitter.output_lanes, emitter.init_emit_count))
            output.extend(struct.pack('<f', emitter.emit_per_second))
            output.extend(struct.pack(
                '<5I', emitter.input_lanes, emitter.max_ribbons, emitter.max_ribbon_length,
                emitter.init_ribbons_count, emitter.tube_segments))
            output.extend(struct.pack('<f', emitter.emit_move_distance))

        # Global parameters
        output.extend(struct.pack('<I', len(self.params)))
        for param in self.params:
            _pack_string(output, param.name)
            output.extend(struct.pack('<I', param.lanes))

        return bytes(output)

    @classmethod
    def deserialize(cls, data: bytes) -> 'ParticleResource':
        """Deserialize a resource from its binary format."""
        reader = _Reader(data)

        if reader.read(4) != MAGIC:
            raise ValueError("Invalid particle resource magic number")
        version = reader.u32()
        if version != VERSION:
            raise ValueError(f"Unsupported particle resource version: {version}")

        resource = cls(flags=reader.u32())
        emitter_count = reader.u32()

        for _ in range(emitter_count):
            record = EmitterRecord()
            for _ in range(reader.u32()):
                offset, components, type, flags = reader.unpack('IBBB')
                record.attributes.append(
                    VertexAttribute(offset, components, AttributeType(type), flags))

            record.material = reader.string()
            record.mesh = reader.string()

            code = reader.read(reader.u32())
            emit_offset, output_offset = reader.unpack('II')
            record.update_code = code[:emit_offset]
            record.emit_code = code[emit_offset:output_offset]
            record.output_code = code[output_offset:]

            (record.var_lanes,
             record.update_registers, record.emit_registers, record.output_registers,
             record.update_instructions, record.emit_instructions,
             record.output_instructions) = reader.unpack('7I')
            record.output_lanes, record.init_emit_count = reader.unpack('II')
            record.emit_per_second = reader.f32()
            (record.input_lanes, record.max_ribbons, record.max_ribbon_length,
             record.init_ribbons_count, record.tube_segments) = reader.unpack('5I')
            record.emit_move_distance = reader.f32()

            resource.emitters.append(record)

        for _ in range(reader.u32()):
            name = reader.string()
            resource.params.append(ParamRecord(name, reader.u32()))

        return resource

    # =========================================================================
    # Disassembly
    # =========================================================================

    def disassemble(self) -> str:
        """Disassemble to human-readable format."""
        lines = [
            "=== Particle Resource ===",
            f"Version: {VERSION}",
            f"Flags: {self.flags:#x}",
            "Params: " + ", ".join(f"{p.name}[{p.lanes}]" for p in self.params),
            "",
        ]

        for index, emitter in enumerate(self.emitters):
            lines.append(f"=== Emitter {index} ===")
            lines.append(f"  material: {emitter.material!r}  mesh: {emitter.mesh!r}")
            lines.append(f"  lanes: var={emitter.var_lanes} in={emitter.input_lanes} "
                         f"out={emitter.output_lanes}")
            for attribute in emitter.attributes:
                lines.append(f"  attribute @{attribute.offset}: "
                             f"{attribute.type.name.lower()} x{attribute.components}")

            phases = (
                ("update", emitter.update_code, emitter.update_registers),
                ("emit", emitter.emit_code, emitter.emit_registers),
                ("output", emitter.output_code, emitter.output_registers),
            )
            for name, code, registers in phases:
                lines.append(f"  fn {name}() [{registers} registers]")
                listing = CodeBlob.deserialize(code).disassemble(indent=2)
                if listing:
                    lines.append(listing)
            lines.append("")

        return "\n".join(lines)
