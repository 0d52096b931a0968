"""
Particle Script Code Generator

Lowers the folded AST of each emitter phase to register bytecode. Every
scalar lane of an expression becomes one DataStream; user function calls are
inlined at the call site.
"""

from typing import Dict, List, Optional, Set, Tuple
from dataclasses import dataclass, field
from .tokens import Token, TokenType
from .ast import *
from .model import BUILTINS, Builtin, Emitter, FunctionDecl, Phase, Script, ValueType, VariableFamily
from .bytecode import CodeBlob, DataStream, Instruction, OpCode, StreamKind
from .registers import REGISTER_COUNT, RegisterAllocator
from .errors import CompileError, RegisterError


# One DataStream per scalar lane
Value = Tuple[DataStream, ...]

BINARY_OPCODES = {
    TokenType.PLUS: OpCode.ADD,
    TokenType.MINUS: OpCode.SUB,
    TokenType.STAR: OpCode.MUL,
    TokenType.SLASH: OpCode.DIV,
    TokenType.PERCENT: OpCode.MOD,
    TokenType.LT: OpCode.LT,
    TokenType.GT: OpCode.GT,
    TokenType.AND: OpCode.AND,
    TokenType.OR: OpCode.OR,
}

BUILTIN_OPCODES = {
    'sin': OpCode.SIN,
    'cos': OpCode.COS,
    'sqrt': OpCode.SQRT,
    'noise': OpCode.NOISE,
    'min': OpCode.MIN,
    'max': OpCode.MAX,
    'random': OpCode.RAND,
    'curve': OpCode.GRADIENT,
    'gradient': OpCode.GRADIENT,
    'mesh': OpCode.MESH,
    'kill': OpCode.KILL,
}


def has_side_effects(node: Expression) -> bool:
    """True if removing the expression would change what the program does."""
    if isinstance(node, UserCall):
        return True
    if isinstance(node, BuiltinCall):
        return node.builtin.name == 'random' or any(has_side_effects(arg) for arg in node.args)
    if isinstance(node, BinaryOp):
        return has_side_effects(node.left) or has_side_effects(node.right)
    if isinstance(node, (Negate, Not)):
        return has_side_effects(node.operand)
    if isinstance(node, Compound):
        return any(has_side_effects(element) for element in node.elements)
    if isinstance(node, Swizzle):
        return has_side_effects(node.target)
    return False


@dataclass
class PhaseCode:
    """Compiled code of one emitter phase."""
    code: CodeBlob = field(default_factory=CodeBlob)
    register_count: int = 0

    @property
    def instruction_count(self) -> int:
        return self.code.instruction_count


@dataclass
class EmitterCode:
    emitter: Emitter
    phases: Dict[Phase, PhaseCode] = field(default_factory=dict)

    def phase(self, phase: Phase) -> PhaseCode:
        return self.phases.get(phase) or PhaseCode()


@dataclass
class InlineFrame:
    """A user function being inlined, with its arguments bound."""
    function: FunctionDecl
    args: List[Value]
    result: Optional[Value] = None     # registers of `result`, sized by the first write


class CodeGenerator(ASTVisitor):
    """Generates bytecode for every emitter phase of a script."""

    def __init__(self):
        self.emitter: Optional[Emitter] = None
        self.phase: Optional[Phase] = None
        self.code = CodeBlob()
        self.registers = RegisterAllocator()
        self.temps: Set[int] = set()
        self.local_slots: Dict[Local, Value] = {}
        self.frames: List[InlineFrame] = []

    def generate(self, script: Script) -> List[EmitterCode]:
        """Compile every phase of every emitter, in declaration order."""
        result = []
        for emitter in script.emitters:
            compiled = EmitterCode(emitter)
            for phase, body in emitter.phases.items():
                compiled.phases[phase] = self.compile_phase(emitter, phase, body)
            result.append(compiled)
        return result

    def compile_phase(self, emitter: Emitter, phase: Phase, body: Block) -> PhaseCode:
        self.emitter = emitter
        self.phase = phase
        self.code = CodeBlob()
        self.registers = RegisterAllocator()
        self.temps = set()
        self.local_slots = {}
        self.frames = []

        # The runtime preloads the emitter's inputs into the first registers
        if phase == Phase.EMIT:
            input_lanes = Emitter.lane_count(emitter.inputs)
            if input_lanes > REGISTER_COUNT:
                raise self.error(f"Emitter '{emitter.name}' has {input_lanes} input lanes, "
                                 f"the limit is {REGISTER_COUNT}", emitter.token, RegisterError)
            self.registers.reserve(input_lanes)

        body.accept(self)
        return PhaseCode(self.code, self.registers.high_water)

    # =========================================================================
    # Register Management
    # =========================================================================

    def error(self, message: str, token: Optional[Token], kind=CompileError) -> CompileError:
        if token is None:
            return kind(message)
        return kind(message, token.line, token.column)

    def alloc(self, token: Token) -> int:
        try:
            return self.registers.alloc()
        except RegisterError as e:
            raise self.error(e.message, token, RegisterError) from e

    def temp(self, token: Token) -> DataStream:
        """Allocate a temporary register, freed by the instruction consuming it."""
        index = self.alloc(token)
        self.temps.add(index)
        return DataStream.register(index)

    def is_temp(self, stream: DataStream) -> bool:
        return stream.kind == StreamKind.REGISTER and stream.index in self.temps

    def release(self, *streams: DataStream) -> None:
        for stream in streams:
            if self.is_temp(stream):
                self.temps.discard(stream.index)
                self.registers.free(stream.index)

    def value(self, node: Expression) -> Value:
        """Compile an expression that must produce a value."""
        value = node.accept(self)
        if not value:
            raise self.error(f"'{node.token.lexeme}' does not return a value", node.token)
        return value

    def scalar(self, node: Expression, what: str) -> DataStream:
        value = self.value(node)
        if len(value) != 1:
            raise self.error(f"{what} must be a scalar, got {len(value)} lanes", node.token)
        return value[0]

    @staticmethod
    def lane(value: Value, index: int) -> DataStream:
        return value[0] if len(value) == 1 else value[index]

    def broadcast(self, token: Token, *values: Value) -> int:
        """Lane count of a lane-wise operation; scalars broadcast."""
        sizes = {len(value) for value in values}
        if len(sizes - {1}) > 1:
            sizes_text = " and ".join(str(len(value)) for value in values)
            raise self.error(f"Vector sizes don't match: {sizes_text} lanes", token)
        return max(sizes)

    def lane_wise(self, opcode: OpCode, token: Token, *operands: Value) -> Value:
        """Emit one instruction per lane, then release the operands."""
        result = []
        for i in range(self.broadcast(token, *operands)):
            destination = self.temp(token)
            self.code.emit(opcode, destination, *(self.lane(value, i) for value in operands))
            result.append(destination)
        self.release(*(stream for value in operands for stream in value))
        return tuple(result)

    def store(self, target: Value, value: Value, token: Token) -> None:
        """Copy `value` into the writable streams of `target` lane by lane."""
        if len(target) == 1:
            destination, source = target[0], value[0]
            last = self.code.last
            if self.is_temp(source) and last is not None and last.destination == source:
                last.operands[0] = destination
            elif destination != source:
                self.code.emit(OpCode.MOV, destination, source)
            self.release(source)
            return

        # A later lane must not read a location an earlier lane already wrote
        hazard = any(value[j] == target[i]
                     for i in range(len(target)) for j in range(i + 1, len(value)))
        if hazard:
            staged = []
            for source in value:
                if self.is_temp(source) or source.kind == StreamKind.LITERAL:
                    staged.append(source)
                else:
                    copy = self.temp(token)
                    self.code.emit(OpCode.MOV, copy, source)
                    staged.append(copy)
            value = tuple(staged)

        for destination, source in zip(target, value):
            if destination != source:
                self.code.emit(OpCode.MOV, destination, source)
        self.release(*value)

    def adopt(self, value: Value, token: Token) -> Value:
        """Registers owned by a variable; temporaries holding the value are reused."""
        slots = []
        for stream in value:
            if self.is_temp(stream) and stream not in slots:
                self.temps.discard(stream.index)
                slots.append(stream)
            else:
                register = DataStream.register(self.alloc(token))
                self.code.emit(OpCode.MOV, register, stream)
                slots.append(register)
        return tuple(slots)

    def discard(self, node: Expression) -> int:
        """
        Compile a value nobody reads and return its lane count.

        Code is kept only when dropping it would change behaviour; otherwise
        neither its instructions nor its registers reach the output.
        """
        if has_side_effects(node):
            value = self.value(node)
            self.release(*value)
            return len(value)

        saved_code, saved_high_water = self.code, self.registers.high_water
        self.code = CodeBlob()
        value = self.value(node)
        self.release(*value)
        self.code = saved_code
        self.registers.high_water = saved_high_water
        return len(value)

    def is_result(self, node: Expression) -> bool:
        return (isinstance(node, LocalRef) and bool(self.frames)
                and node.local is self.frames[-1].function.result)

    def assign_result(self, value: Value, token: Token) -> None:
        """Write the value of the function being inlined; the first write sizes it."""
        frame = self.frames[-1]
        if frame.result is None:
            if ValueType.from_lanes(len(value)) is None:
                raise self.error(f"'{frame.function.name}' cannot return a {len(value)}-lane value",
                                 token)
            frame.result = self.adopt(value, token)
        elif len(frame.result) != len(value):
            raise self.error(f"Cannot assign a {len(value)}-lane value to a "
                             f"{len(frame.result)}-lane target", token)
        else:
            self.store(frame.result, value, token)

    def compile_block(self, code: CodeBlob, node: Statement) -> None:
        """Compile a statement into a nested code blob."""
        saved = self.code
        self.code = code
        node.accept(self)
        self.code = saved

    def check_phase(self, builtin: Builtin, token: Token) -> None:
        if builtin.phase is not None and self.phase != builtin.phase:
            raise self.error(f"'{builtin.name}' can only be used in the "
                             f"{builtin.phase.value} function", token)

    # =========================================================================
    # Expression Visitors
    # =========================================================================

    def visit_literal(self, node: Literal) -> Value:
        return (DataStream.literal(node.value),)

    def visit_compound(self, node: Compound) -> Value:
        lanes = []
        for element in node.elements:
            lanes.extend(self.value(element))
        if len(lanes) > 4:
            raise self.error(f"Vector has {len(lanes)} lanes, at most 4 are allowed", node.token)
        return tuple(lanes)

    def visit_binary(self, node: BinaryOp) -> Value:
        left = self.value(node.left)
        right = self.value(node.right)
        return self.lane_wise(BINARY_OPCODES[node.operator], node.token, left, right)

    def visit_negate(self, node: Negate) -> Value:
        operand = self.value(node.operand)
        return self.lane_wise(OpCode.MUL, node.token, operand, (DataStream.literal(-1.0),))

    def visit_not(self, node: Not) -> Value:
        operand = self.value(node.operand)
        return self.lane_wise(OpCode.NOT, node.token, operand)

    def visit_builtin_call(self, node: BuiltinCall) -> Value:
        builtin = node.builtin
        self.check_phase(builtin, node.token)
        opcode = BUILTIN_OPCODES[builtin.name]

        if not builtin.returns_value:
            self.code.emit(opcode)
            return ()

        args = [self.value(arg) for arg in node.args]
        if builtin.lane_wise:
            return self.lane_wise(opcode, node.token, *args)

        for arg, value in zip(node.args, args):
            if len(value) != 1:
                raise self.error(f"Arguments of '{builtin.name}' must be scalars", arg.token)
        destination = self.temp(node.token)
        self.code.emit(opcode, destination, *(value[0] for value in args))
        self.release(*(value[0] for value in args))
        return (destination,)

    def visit_user_call(self, node: UserCall) -> Value:
        """Inline the callee with its parameters bound to the argument streams."""
        function = node.function
        if any(frame.function is function for frame in self.frames):
            raise self.error(f"{function.name} is called recursively. "
                             f"Recursion is not supported.", node.token)

        args = [self.value(arg) for arg in node.args]

        # Arguments stay live for the whole body, however often it reads them
        pinned = {s.index for value in args for s in value if self.is_temp(s)}
        self.temps -= pinned

        self.frames.append(InlineFrame(function, args))
        function.body.accept(self)
        frame = self.frames.pop()

        for index in pinned:
            self.registers.free(index)

        # The caller consumes the result like any other temporary
        result = frame.result or ()
        self.temps.update(stream.index for stream in result)
        return result

    def visit_variable(self, node: VariableRef) -> Value:
        variable = node.variable
        lanes = range(variable.offset, variable.offset + variable.lanes)

        if node.emit_target:
            return tuple(DataStream.out(i) for i in lanes)

        family = variable.family
        if family == VariableFamily.CHANNEL:
            return tuple(DataStream.channel(i) for i in lanes)
        if family == VariableFamily.PARAM:
            return tuple(DataStream.param(i) for i in lanes)
        if family == VariableFamily.INPUT:
            if self.phase != Phase.EMIT:
                raise self.error(f"Input '{variable.name}' is only accessible in the emit function",
                                 node.token)
            return tuple(DataStream.register(i) for i in lanes)
        if family == VariableFamily.OUTPUT:
            if self.phase != Phase.OUTPUT:
                raise self.error(f"Output '{variable.name}' is only accessible in the output function",
                                 node.token)
            return tuple(DataStream.out(i) for i in lanes)
        raise self.error(f"Unexpected variable '{variable.name}'", node.token)

    def visit_system_value(self, node: SystemValueRef) -> Value:
        return tuple(DataStream.system_value(value) for value in node.values)

    def visit_function_arg(self, node: FunctionArgRef) -> Value:
        return self.frames[-1].args[node.index]

    def visit_local(self, node: LocalRef) -> Value:
        if self.is_result(node):
            if self.frames[-1].result is None:
                raise self.error("'result' is used before it is assigned", node.token)
            return self.frames[-1].result

        slots = self.local_slots.get(node.local)
        if slots is None:
            raise self.error(f"Variable '{node.local.name}' is used before it is declared", node.token)
        return slots

    def visit_emitter_ref(self, node: EmitterRef) -> Value:
        raise self.error(f"Emitter '{node.emitter.name}' is not a value", node.token)

    def visit_swizzle(self, node: Swizzle) -> Value:
        value = self.value(node.target)
        if len(value) == 1:
            raise self.error(f"Cannot subscript a scalar value with '.{node.components}'", node.token)
        if max(node.lanes) >= len(value):
            raise self.error(f"Subscript '.{node.components}' is out of range "
                             f"for a {len(value)}-lane value", node.token)

        selected = tuple(value[i] for i in node.lanes)
        self.release(*(set(value) - set(selected)))
        return selected

    # =========================================================================
    # Statement Visitors
    # =========================================================================

    def visit_block(self, node: Block) -> None:
        for statement in node.statements:
            statement.accept(self)

        for local in node.locals:
            for stream in self.local_slots.pop(local, ()):
                self.registers.free(stream.index)

    def visit_let(self, node: Let) -> None:
        local = node.local

        if not local.read:
            if node.value is not None:
                self.check_let(local, self.discard(node.value), node.token)
            return

        if node.value is None:
            slots = tuple(DataStream.register(self.alloc(node.token)) for _ in range(local.type.lanes))
        else:
            value = self.value(node.value)
            self.check_let(local, len(value), node.token)
            slots = self.adopt(value, node.token)
        self.local_slots[local] = slots

    def check_let(self, local: Local, lanes: int, token: Token) -> None:
        if local.type is not None and local.type.lanes != lanes:
            raise self.error(f"Cannot assign a {lanes}-lane value to "
                             f"'{local.name}' of type {local.type.name.lower()}", token)
        if ValueType.from_lanes(lanes) is None:
            raise self.error(f"Cannot declare '{local.name}' from a {lanes}-lane value", token)

    def visit_assign(self, node: Assign) -> None:
        target_node = node.target.target if isinstance(node.target, Swizzle) else node.target

        if self.is_result(target_node) and self.frames[-1].result is None:
            if target_node is not node.target:
                raise self.error("'result' must be assigned before its components", node.token)
            self.assign_result(self.value(node.value), node.token)
            return

        if isinstance(target_node, LocalRef) and not target_node.local.read \
                and not self.is_result(target_node):
            lanes = self.discard(node.value)
            local = target_node.local
            if target_node is node.target and local.type is not None and local.type.lanes != lanes:
                raise self.error(f"Cannot assign a {lanes}-lane value to a "
                                 f"{local.type.lanes}-lane target", node.token)
            return

        target = node.target.accept(self)
        value = self.value(node.value)
        if len(target) != len(value):
            raise self.error(f"Cannot assign a {len(value)}-lane value to a "
                             f"{len(target)}-lane target", node.token)
        self.store(target, value, node.token)

    def visit_return(self, node: Return) -> None:
        self.assign_result(self.value(node.value), node.token)

    def visit_if(self, node: If) -> None:
        condition = self.scalar(node.condition, "Condition")

        instruction = Instruction(OpCode.CMP, [condition], then_code=CodeBlob())
        if node.else_branch is not None:
            instruction.opcode = OpCode.CMP_ELSE
            instruction.else_code = CodeBlob()
        self.code.append(instruction)
        self.release(condition)

        self.compile_block(instruction.then_code, node.then_block)
        if node.else_branch is not None:
            self.compile_block(instruction.else_code, node.else_branch)

    def visit_emit(self, node: Emit) -> None:
        self.check_phase(BUILTINS['emit'], node.token)
        condition = self.scalar(node.condition, "Emit condition")

        if node.overrides is not None:
            node.overrides.accept(self)
        self.code.emit(OpCode.BLOCK_END)

        self.code.append(Instruction(OpCode.EMIT, [condition], emitter_index=node.emitter.index))
        self.release(condition)

    def visit_call_statement(self, node: CallStatement) -> None:
        result = node.call.accept(self)
        self.release(*result)
