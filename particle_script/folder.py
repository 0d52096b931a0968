"""
Particle Script Constant Folder

Collapses literal-only subtrees. Arithmetic is done in float32 with numpy so
a folded value is bit-identical to what the particle VM computes at runtime.
Comparisons and logic operators are never folded in place; a user function
called with literal arguments is run by ConstantEvaluator and replaced by
its value.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .tokens import Token, TokenType
from .ast import *
from .model import FunctionDecl, Script


ARITHMETIC = {
    TokenType.PLUS: np.add,
    TokenType.MINUS: np.subtract,
    TokenType.STAR: np.multiply,
    TokenType.SLASH: np.divide,
    TokenType.PERCENT: np.fmod,
}

# Only evaluated when running a user function, never folded in place
LOGIC = {
    TokenType.LT: np.less,
    TokenType.GT: np.greater,
    TokenType.AND: np.logical_and,
    TokenType.OR: np.logical_or,
}

PURE_BUILTINS = {
    'sqrt': np.sqrt,
    'sin': np.sin,
    'cos': np.cos,
    'min': np.minimum,
    'max': np.maximum,
}


def to_float32(value) -> float:
    """Round a number (or numeric text) to the nearest float32."""
    return float(np.float32(value))


def literal_lanes(node: Expression) -> Optional[np.ndarray]:
    """float32 lanes of a Literal or an all-literal Compound, else None."""
    if isinstance(node, Literal):
        return np.array([node.value], dtype=np.float32)
    if isinstance(node, Compound):
        values = node.literal_values()
        if values is not None:
            return np.array(values, dtype=np.float32)
    return None


def make_literal(lanes: np.ndarray, token: Token) -> Expression:
    if len(lanes) == 1:
        return Literal(float(lanes[0]), token)
    return Compound([Literal(float(v), token) for v in lanes], token)


def broadcastable(*lanes: np.ndarray) -> bool:
    sizes = {len(l) for l in lanes} - {1}
    return len(sizes) <= 1


class ConstantFolder(ASTVisitor):
    """Rewrites expressions in place, returning the (possibly replaced) node."""

    def fold(self, node: ASTNode) -> ASTNode:
        return node.accept(self)

    def fold_script(self, script: Script) -> None:
        """Fold every user function and emitter phase body."""
        for function in script.functions.values():
            if function.body is not None:
                function.body = self.fold(function.body)
        for emitter in script.emitters:
            for phase, body in emitter.phases.items():
                emitter.phases[phase] = self.fold(body)

    def _evaluate(self, function, token: Token, *operands: np.ndarray) -> Expression:
        with np.errstate(all='ignore'):
            result = function(*operands)
        return make_literal(np.asarray(result, dtype=np.float32), token)

    # =========================================================================
    # Expressions
    # =========================================================================

    def visit_literal(self, node: Literal) -> Expression:
        return node

    def visit_compound(self, node: Compound) -> Expression:
        elements = []
        for element in node.elements:
            element = self.fold(element)
            if isinstance(element, Compound):
                elements.extend(element.elements)
            else:
                elements.append(element)
        if len(elements) == 1:
            return elements[0]
        node.elements = elements
        return node

    def visit_binary(self, node: BinaryOp) -> Expression:
        node.left = self.fold(node.left)
        node.right = self.fold(node.right)

        function = ARITHMETIC.get(node.operator)
        if function is None:
            return node

        left = literal_lanes(node.left)
        right = literal_lanes(node.right)
        if left is None or right is None or not broadcastable(left, right):
            return node
        return self._evaluate(function, node.token, left, right)

    def visit_negate(self, node: Negate) -> Expression:
        node.operand = self.fold(node.operand)
        lanes = literal_lanes(node.operand)
        if lanes is None:
            return node
        return self._evaluate(np.negative, node.token, lanes)

    def visit_not(self, node: Not) -> Expression:
        node.operand = self.fold(node.operand)
        return node

    def visit_builtin_call(self, node: BuiltinCall) -> Expression:
        node.args = [self.fold(arg) for arg in node.args]

        function = PURE_BUILTINS.get(node.builtin.name)
        if function is None:
            return node

        lanes = [literal_lanes(arg) for arg in node.args]
        if any(l is None for l in lanes) or not broadcastable(*lanes):
            return node
        return self._evaluate(function, node.token, *lanes)

    def visit_user_call(self, node: UserCall) -> Expression:
        """Evaluate calls whose arguments are all literals."""
        node.args = [self.fold(arg) for arg in node.args]

        args = [literal_lanes(arg) for arg in node.args]
        if any(a is None for a in args):
            return node
        value = ConstantEvaluator().call(node.function, args)
        if value is None:
            return node
        return make_literal(value, node.token)

    def visit_variable(self, node: VariableRef) -> Expression:
        return node

    def visit_system_value(self, node: SystemValueRef) -> Expression:
        return node

    def visit_function_arg(self, node: FunctionArgRef) -> Expression:
        return node

    def visit_local(self, node: LocalRef) -> Expression:
        return node

    def visit_emitter_ref(self, node: EmitterRef) -> Expression:
        return node

    def visit_swizzle(self, node: Swizzle) -> Expression:
        node.target = self.fold(node.target)
        lanes = literal_lanes(node.target)
        if lanes is None or len(lanes) == 1 or max(node.lanes) >= len(lanes):
            return node
        return make_literal(lanes[node.lanes], node.token)

    # =========================================================================
    # Statements
    # =========================================================================

    def visit_block(self, node: Block) -> Block:
        node.statements = [self.fold(statement) for statement in node.statements]
        return node

    def visit_let(self, node: Let) -> Let:
        if node.value is not None:
            node.value = self.fold(node.value)
        return node

    def visit_assign(self, node: Assign) -> Assign:
        node.value = self.fold(node.value)
        return node

    def visit_return(self, node: Return) -> Return:
        node.value = self.fold(node.value)
        return node

    def visit_if(self, node: If) -> If:
        node.condition = self.fold(node.condition)
        node.then_block = self.fold(node.then_block)
        if node.else_branch is not None:
            node.else_branch = self.fold(node.else_branch)
        return node

    def visit_emit(self, node: Emit) -> Emit:
        node.condition = self.fold(node.condition)
        if node.overrides is not None:
            node.overrides = self.fold(node.overrides)
        return node

    def visit_call_statement(self, node: CallStatement) -> CallStatement:
        node.call = self.fold(node.call)
        return node


class _NotConstant(Exception):
    """The call depends on something only known at runtime."""


@dataclass
class _Frame:
    function: FunctionDecl
    args: List[np.ndarray]
    locals: Dict[Local, np.ndarray] = field(default_factory=dict)
    result: Optional[np.ndarray] = None
    returned: bool = False


class ConstantEvaluator(ASTVisitor):
    """
    Runs a user function on literal arguments at compile time.

    Unlike the folder this interprets control flow, so comparisons are
    evaluated here. Anything that reads runtime state makes the whole call
    non-constant.
    """

    def __init__(self):
        self.frames: List[_Frame] = []

    def call(self, function: FunctionDecl, args: List[np.ndarray]) -> Optional[np.ndarray]:
        """The value of `function(*args)`, or None if it is not a constant."""
        try:
            return self._call(function, args)
        except _NotConstant:
            return None

    def _call(self, function: FunctionDecl, args: List[np.ndarray]) -> np.ndarray:
        if function.body is None or any(f.function is function for f in self.frames):
            raise _NotConstant()

        self.frames.append(_Frame(function, args))
        function.body.accept(self)
        frame = self.frames.pop()
        if frame.result is None:
            raise _NotConstant()
        return frame.result

    def _value(self, node: Expression) -> np.ndarray:
        return node.accept(self)

    def _apply(self, function, *operands: np.ndarray) -> np.ndarray:
        if not broadcastable(*operands):
            raise _NotConstant()
        with np.errstate(all='ignore'):
            return np.asarray(function(*operands), dtype=np.float32)

    def _write(self, target: Expression, value: np.ndarray) -> None:
        frame = self.frames[-1]
        lanes = None
        if isinstance(target, Swizzle):
            lanes, target = target.lanes, target.target
        if not isinstance(target, LocalRef):
            raise _NotConstant()

        local = target.local
        current = frame.result if local is frame.function.result else frame.locals.get(local)
        if lanes is not None:
            if current is None or max(lanes) >= len(current) or len(value) != len(lanes):
                raise _NotConstant()
            updated = current.copy()
            updated[lanes] = value
            value = updated
        elif current is not None and len(current) != len(value):
            raise _NotConstant()

        if local is frame.function.result:
            frame.result = value
        else:
            frame.locals[local] = value

    # =========================================================================
    # Expressions
    # =========================================================================

    def visit_literal(self, node: Literal) -> np.ndarray:
        return np.array([node.value], dtype=np.float32)

    def visit_compound(self, node: Compound) -> np.ndarray:
        return np.concatenate([self._value(element) for element in node.elements])

    def visit_binary(self, node: BinaryOp) -> np.ndarray:
        left = self._value(node.left)
        right = self._value(node.right)
        function = ARITHMETIC.get(node.operator) or LOGIC[node.operator]
        return self._apply(function, left, right)

    def visit_negate(self, node: Negate) -> np.ndarray:
        return self._apply(np.negative, self._value(node.operand))

    def visit_not(self, node: Not) -> np.ndarray:
        return self._apply(np.logical_not, self._value(node.operand))

    def visit_builtin_call(self, node: BuiltinCall) -> np.ndarray:
        function = PURE_BUILTINS.get(node.builtin.name)
        if function is None:
            raise _NotConstant()
        return self._apply(function, *(self._value(arg) for arg in node.args))

    def visit_user_call(self, node: UserCall) -> np.ndarray:
        return self._call(node.function, [self._value(arg) for arg in node.args])

    def visit_variable(self, node: VariableRef) -> np.ndarray:
        raise _NotConstant()

    def visit_system_value(self, node: SystemValueRef) -> np.ndarray:
        raise _NotConstant()

    def visit_function_arg(self, node: FunctionArgRef) -> np.ndarray:
        return self.frames[-1].args[node.index]

    def visit_local(self, node: LocalRef) -> np.ndarray:
        frame = self.frames[-1]
        if node.local is frame.function.result:
            value = frame.result
        else:
            value = frame.locals.get(node.local)
        if value is None:
            raise _NotConstant()
        return value

    def visit_emitter_ref(self, node: EmitterRef) -> np.ndarray:
        raise _NotConstant()

    def visit_swizzle(self, node: Swizzle) -> np.ndarray:
        value = self._value(node.target)
        if len(value) == 1 or max(node.lanes) >= len(value):
            raise _NotConstant()
        return value[node.lanes]

    # =========================================================================
    # Statements
    # =========================================================================

    def visit_block(self, node: Block) -> None:
        for statement in node.statements:
            if self.frames[-1].returned:
                return
            statement.accept(self)

    def visit_let(self, node: Let) -> None:
        local = node.local
        if node.value is None:
            value = np.zeros(local.type.lanes, dtype=np.float32)
        else:
            value = self._value(node.value)
            if local.type is not None and local.type.lanes != len(value):
                raise _NotConstant()
        self.frames[-1].locals[local] = value

    def visit_assign(self, node: Assign) -> None:
        self._write(node.target, self._value(node.value))

    def visit_return(self, node: Return) -> None:
        frame = self.frames[-1]
        value = self._value(node.value)
        if frame.result is not None and len(frame.result) != len(value):
            raise _NotConstant()
        frame.result = value
        frame.returned = True

    def visit_if(self, node: If) -> None:
        condition = self._value(node.condition)
        if len(condition) != 1:
            raise _NotConstant()
        if condition[0] != 0:
            node.then_block.accept(self)
        elif node.else_branch is not None:
            node.else_branch.accept(self)

    def visit_emit(self, node: Emit) -> None:
        raise _NotConstant()

    def visit_call_statement(self, node: CallStatement) -> None:
        raise _NotConstant()


def fold(node: ASTNode) -> ASTNode:
    """Fold constants in a single expression or statement tree."""
    return ConstantFolder().fold(node)
