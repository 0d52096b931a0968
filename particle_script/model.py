"""
Particle Script Program Model

Declarations collected by the parser: value types, variables, constants,
user functions, emitters, and the builtin and system value tables.
"""

from enum import Enum, IntEnum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .ast import Block, Expression, Local
    from .tokens import Token


MAX_VECTOR_LANES = 4


class ValueType(Enum):
    """The script's value types; each is compiled as 1, 3 or 4 scalar lanes."""

    FLOAT = 1
    FLOAT3 = 3
    FLOAT4 = 4

    @property
    def lanes(self) -> int:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> Optional['ValueType']:
        return TYPE_NAMES.get(name)

    @classmethod
    def from_lanes(cls, lanes: int) -> Optional['ValueType']:
        for value_type in cls:
            if value_type.lanes == lanes:
                return value_type
        return None


TYPE_NAMES = {
    'float': ValueType.FLOAT,
    'float3': ValueType.FLOAT3,
    'float4': ValueType.FLOAT4,
}


class VariableFamily(Enum):
    """Which container owns a variable."""

    CHANNEL = "var"
    INPUT = "in"
    OUTPUT = "out"
    PARAM = "global"
    EMIT_INPUT = "emit input"   # target emitter input inside an emit() block


class Phase(Enum):
    """Entry points of an emitter, in code blob order."""

    UPDATE = "update"
    EMIT = "emit"
    OUTPUT = "output"


class SystemValue(IntEnum):
    """Values provided by the runtime; the index is the SYSTEM_VALUE operand."""

    TIME_DELTA = 0
    TOTAL_TIME = 1
    EMIT_INDEX = 2
    RIBBON_INDEX = 3
    ENTITY_POSITION_X = 4
    ENTITY_POSITION_Y = 5
    ENTITY_POSITION_Z = 6


SYSTEM_VALUES: Dict[str, Tuple[SystemValue, ...]] = {
    'time_delta': (SystemValue.TIME_DELTA,),
    'total_time': (SystemValue.TOTAL_TIME,),
    'emit_index': (SystemValue.EMIT_INDEX,),
    'ribbon_index': (SystemValue.RIBBON_INDEX,),
    'entity_position': (
        SystemValue.ENTITY_POSITION_X,
        SystemValue.ENTITY_POSITION_Y,
        SystemValue.ENTITY_POSITION_Z,
    ),
}


@dataclass(frozen=True)
class Builtin:
    """A builtin function and the constraints on its call sites."""

    name: str
    min_args: int
    max_args: int
    returns_value: bool = True
    lane_wise: bool = False
    phase: Optional[Phase] = None   # only callable from this phase

    def accepts(self, count: int) -> bool:
        if not self.min_args <= count <= self.max_args:
            return False
        if self.name in ('curve', 'gradient'):
            return count % 2 == 1
        return True

    def arity_text(self) -> str:
        if self.name in ('curve', 'gradient'):
            return "t followed by key/value pairs"
        if self.min_args == self.max_args:
            return f"{self.min_args} argument(s)"
        return f"{self.min_args} to {self.max_args} arguments"


MAX_CURVE_ARGS = 255

BUILTINS: Dict[str, Builtin] = {
    'cos': Builtin('cos', 1, 1, lane_wise=True),
    'sin': Builtin('sin', 1, 1, lane_wise=True),
    'sqrt': Builtin('sqrt', 1, 1, lane_wise=True),
    'noise': Builtin('noise', 1, 1, lane_wise=True),
    'min': Builtin('min', 2, 2, lane_wise=True),
    'max': Builtin('max', 2, 2, lane_wise=True),
    'random': Builtin('random', 2, 2),
    'curve': Builtin('curve', 3, MAX_CURVE_ARGS),
    'gradient': Builtin('gradient', 3, MAX_CURVE_ARGS),
    'mesh': Builtin('mesh', 0, 0),
    'kill': Builtin('kill', 0, 0, returns_value=False, phase=Phase.UPDATE),
    'emit': Builtin('emit', 1, 2, returns_value=False, phase=Phase.UPDATE),
}


# =============================================================================
# Declarations
# =============================================================================

@dataclass(eq=False)
class Variable:
    """An emitter var/in/out or a global param, at a lane offset in its container."""

    name: str
    type: ValueType
    offset: int
    family: VariableFamily
    token: Optional['Token'] = None

    @property
    def lanes(self) -> int:
        return self.type.lanes


@dataclass(eq=False)
class Constant:
    name: str
    type: ValueType
    values: Tuple[float, ...]
    token: Optional['Token'] = None


@dataclass(eq=False)
class FunctionDecl:
    """A user function; calls are inlined so it owns no code of its own."""

    name: str
    params: List[str]
    body: Optional['Block'] = None
    token: Optional['Token'] = None
    result: Optional['Local'] = None   # implicit `result` variable of the body

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass(eq=False)
class Emitter:
    """A particle emitter and everything declared inside its braces."""

    name: str
    index: int
    token: Optional['Token'] = None
    material: str = ""
    mesh: str = ""
    vars: List[Variable] = field(default_factory=list)
    inputs: List[Variable] = field(default_factory=list)
    outputs: List[Variable] = field(default_factory=list)
    phases: Dict[Phase, 'Block'] = field(default_factory=dict)
    init_emit_count: int = 0
    emit_per_second: float = 0.0
    max_ribbons: int = 0
    max_ribbon_length: int = 0
    init_ribbons_count: int = 0
    tube_segments: int = 0
    emit_move_distance: float = -1.0

    def container(self, family: VariableFamily) -> List[Variable]:
        if family == VariableFamily.CHANNEL:
            return self.vars
        if family == VariableFamily.INPUT:
            return self.inputs
        if family == VariableFamily.OUTPUT:
            return self.outputs
        raise ValueError(f"Emitters do not own {family.value} variables")

    def find_variable(self, name: str) -> Optional[Variable]:
        for variable in self.inputs + self.outputs + self.vars:
            if variable.name == name:
                return variable
        return None

    def find_input(self, name: str) -> Optional[Variable]:
        for variable in self.inputs:
            if variable.name == name:
                return variable
        return None

    def add_variable(self, name: str, type: ValueType, family: VariableFamily,
                     token: Optional['Token'] = None) -> Variable:
        container = self.container(family)
        offset = sum(v.lanes for v in container)
        variable = Variable(name, type, offset, family, token)
        container.append(variable)
        return variable

    @staticmethod
    def lane_count(variables: List[Variable]) -> int:
        return sum(v.lanes for v in variables)


class Feature(IntEnum):
    """Bits of the feature flags word."""

    WORLD_SPACE = 1 << 0


@dataclass
class Script:
    """Everything the parser collected from a source file and its imports."""

    constants: Dict[str, Constant] = field(default_factory=dict)
    params: List[Variable] = field(default_factory=list)
    functions: Dict[str, FunctionDecl] = field(default_factory=dict)
    emitters: List[Emitter] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    flags: int = 0

    def find_param(self, name: str) -> Optional[Variable]:
        for param in self.params:
            if param.name == name:
                return param
        return None

    def find_emitter(self, name: str) -> Optional[Emitter]:
        for emitter in self.emitters:
            if emitter.name == name:
                return emitter
        return None

    def add_param(self, name: str, type: ValueType, token: Optional['Token'] = None) -> Variable:
        offset = sum(p.lanes for p in self.params)
        param = Variable(name, type, offset, VariableFamily.PARAM, token)
        self.params.append(param)
        return param

    def is_defined(self, name: str) -> bool:
        """True if a top-level declaration already uses this name."""
        return (name in self.constants or name in self.functions
                or self.find_param(name) is not None
                or self.find_emitter(name) is not None)

    @property
    def world_space(self) -> bool:
        return bool(self.flags & Feature.WORLD_SPACE)
