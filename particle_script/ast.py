"""
Particle Script Abstract Syntax Tree

Defines AST node classes. Identifiers are resolved while parsing, so the
tree references declarations (variables, functions, emitters) directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple
from .tokens import Token, TokenType
from .model import Builtin, Emitter, FunctionDecl, SystemValue, ValueType, Variable


SWIZZLE_LANES = {
    'x': 0, 'y': 1, 'z': 2, 'w': 3,
    'r': 0, 'g': 1, 'b': 2, 'a': 3,
}


# =============================================================================
# Base Classes
# =============================================================================

class ASTNode(ABC):
    """Base class for all AST nodes."""

    @abstractmethod
    def accept(self, visitor: 'ASTVisitor') -> Any:
        """Accept a visitor for traversal."""
        pass


class Expression(ASTNode):
    """Base class for expression nodes."""
    pass


class Statement(ASTNode):
    """Base class for statement nodes."""
    pass


@dataclass(eq=False)
class Local:
    """A `let` variable of a block. Its type may be inferred at compile time."""
    name: str
    type: Optional[ValueType]
    token: Token
    read: bool = False      # set when an expression reads it


# =============================================================================
# Expressions
# =============================================================================

@dataclass
class Literal(Expression):
    """Scalar number literal."""
    value: float
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_literal(self)


@dataclass
class Compound(Expression):
    """Vector literal {a, b, c}."""
    elements: List[Expression]
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_compound(self)

    def literal_values(self) -> Optional[Tuple[float, ...]]:
        """Lane values if every element is a scalar Literal."""
        if all(isinstance(e, Literal) for e in self.elements):
            return tuple(e.value for e in self.elements)
        return None


@dataclass
class BinaryOp(Expression):
    left: Expression
    operator: TokenType
    right: Expression
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_binary(self)


@dataclass
class Negate(Expression):
    operand: Expression
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_negate(self)


@dataclass
class Not(Expression):
    operand: Expression
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_not(self)


@dataclass
class BuiltinCall(Expression):
    builtin: Builtin
    args: List[Expression]
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_builtin_call(self)


@dataclass
class UserCall(Expression):
    """Call of a user function, inlined by the code generator."""
    function: FunctionDecl
    args: List[Expression]
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_user_call(self)


@dataclass
class VariableRef(Expression):
    """Reference to an emitter var/in/out or a global param."""
    variable: Variable
    token: Token
    emit_target: bool = False   # input of the emitter named by emit()

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_variable(self)


@dataclass
class SystemValueRef(Expression):
    values: Tuple[SystemValue, ...]
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_system_value(self)


@dataclass
class FunctionArgRef(Expression):
    function: FunctionDecl
    index: int
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_function_arg(self)


@dataclass
class LocalRef(Expression):
    local: Local
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_local(self)


@dataclass
class EmitterRef(Expression):
    """An emitter name; only meaningful as the target of emit()."""
    emitter: Emitter
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_emitter_ref(self)


@dataclass
class Swizzle(Expression):
    """Lane selection such as v.x, v.zyx or c.rgb."""
    target: Expression
    components: str
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_swizzle(self)

    @property
    def lanes(self) -> List[int]:
        return [SWIZZLE_LANES[c] for c in self.components]


# =============================================================================
# Statements
# =============================================================================

@dataclass
class Block(Statement):
    statements: List[Statement]
    token: Token
    locals: List[Local] = field(default_factory=list)

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_block(self)

    def find_local(self, name: str) -> Optional[Local]:
        for local in self.locals:
            if local.name == name:
                return local
        return None


@dataclass
class Let(Statement):
    local: Local
    value: Optional[Expression]
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_let(self)


@dataclass
class Assign(Statement):
    target: Expression
    value: Expression
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_assign(self)


@dataclass
class Return(Statement):
    value: Expression
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_return(self)


@dataclass
class If(Statement):
    condition: Expression
    then_block: Block
    else_branch: Optional[Statement]    # Block or a chained If
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_if(self)


@dataclass
class Emit(Statement):
    """emit(target, condition) { overrides of the target's inputs }"""
    emitter: Emitter
    condition: Expression
    overrides: Optional[Block]
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_emit(self)


@dataclass
class CallStatement(Statement):
    call: Expression
    token: Token

    def accept(self, visitor: 'ASTVisitor') -> Any:
        return visitor.visit_call_statement(self)


# =============================================================================
# Visitor Interface
# =============================================================================

class ASTVisitor(ABC):
    """Visitor interface for AST traversal."""

    # Expressions
    @abstractmethod
    def visit_literal(self, node: Literal) -> Any:
        pass

    @abstractmethod
    def visit_compound(self, node: Compound) -> Any:
        pass

    @abstractmethod
    def visit_binary(self, node: BinaryOp) -> Any:
        pass

    @abstractmethod
    def visit_negate(self, node: Negate) -> Any:
        pass

    @abstractmethod
    def visit_not(self, node: Not) -> Any:
        pass

    @abstractmethod
    def visit_builtin_call(self, node: BuiltinCall) -> Any:
        pass

    @abstractmethod
    def visit_user_call(self, node: UserCall) -> Any:
        pass

    @abstractmethod
    def visit_variable(self, node: VariableRef) -> Any:
        pass

    @abstractmethod
    def visit_system_value(self, node: SystemValueRef) -> Any:
        pass

    @abstractmethod
    def visit_function_arg(self, node: FunctionArgRef) -> Any:
        pass

    @abstractmethod
    def visit_local(self, node: LocalRef) -> Any:
        pass

    @abstractmethod
    def visit_emitter_ref(self, node: EmitterRef) -> Any:
        pass

    @abstractmethod
    def visit_swizzle(self, node: Swizzle) -> Any:
        pass

    # Statements
    @abstractmethod
    def visit_block(self, node: Block) -> Any:
        pass

    @abstractmethod
    def visit_let(self, node: Let) -> Any:
        pass

    @abstractmethod
    def visit_assign(self, node: Assign) -> Any:
        pass

    @abstractmethod
    def visit_return(self, node: Return) -> Any:
        pass

    @abstractmethod
    def visit_if(self, node: If) -> Any:
        pass

    @abstractmethod
    def visit_emit(self, node: Emit) -> Any:
        pass

    @abstractmethod
    def visit_call_statement(self, node: CallStatement) -> Any:
        pass


# =============================================================================
# AST Printer (for debugging)
# =============================================================================

OPERATOR_SYMBOLS = {
    TokenType.PLUS: '+',
    TokenType.MINUS: '-',
    TokenType.STAR: '*',
    TokenType.SLASH: '/',
    TokenType.PERCENT: '%',
    TokenType.LT: '<',
    TokenType.GT: '>',
    TokenType.AND: 'and',
    TokenType.OR: 'or',
}


class ASTPrinter(ASTVisitor):
    """Prints AST for debugging."""

    def __init__(self):
        self.indent = 0

    def print(self, node: ASTNode) -> str:
        return node.accept(self)

    def _indent(self) -> str:
        return "  " * self.indent

    def _children(self, header: str, *nodes: ASTNode) -> str:
        self.indent += 1
        children = [node.accept(self) for node in nodes]
        self.indent -= 1
        return "\n".join([f"{self._indent()}{header}"] + children)

    def visit_literal(self, node: Literal) -> str:
        return f"{self._indent()}Literal({node.value!r})"

    def visit_compound(self, node: Compound) -> str:
        return self._children("Compound", *node.elements)

    def visit_binary(self, node: BinaryOp) -> str:
        return self._children(f"Binary({OPERATOR_SYMBOLS[node.operator]})", node.left, node.right)

    def visit_negate(self, node: Negate) -> str:
        return self._children("Negate", node.operand)

    def visit_not(self, node: Not) -> str:
        return self._children("Not", node.operand)

    def visit_builtin_call(self, node: BuiltinCall) -> str:
        return self._children(f"Builtin({node.builtin.name})", *node.args)

    def visit_user_call(self, node: UserCall) -> str:
        return self._children(f"Call({node.function.name})", *node.args)

    def visit_variable(self, node: VariableRef) -> str:
        variable = node.variable
        return f"{self._indent()}{variable.family.value.title()}({variable.name})"

    def visit_system_value(self, node: SystemValueRef) -> str:
        names = ", ".join(value.name.lower() for value in node.values)
        return f"{self._indent()}SystemValue({names})"

    def visit_function_arg(self, node: FunctionArgRef) -> str:
        return f"{self._indent()}Arg({node.function.params[node.index]})"

    def visit_local(self, node: LocalRef) -> str:
        return f"{self._indent()}Local({node.local.name})"

    def visit_emitter_ref(self, node: EmitterRef) -> str:
        return f"{self._indent()}Emitter({node.emitter.name})"

    def visit_swizzle(self, node: Swizzle) -> str:
        return self._children(f"Swizzle(.{node.components})", node.target)

    def visit_block(self, node: Block) -> str:
        return self._children("Block", *node.statements)

    def visit_let(self, node: Let) -> str:
        header = f"Let({node.local.name})"
        if node.value is None:
            return f"{self._indent()}{header}"
        return self._children(header, node.value)

    def visit_assign(self, node: Assign) -> str:
        return self._children("Assign", node.target, node.value)

    def visit_return(self, node: Return) -> str:
        return self._children("Return", node.value)

    def visit_if(self, node: If) -> str:
        branches = [node.condition, node.then_block]
        if node.else_branch is not None:
            branches.append(node.else_branch)
        return self._children("If", *branches)

    def visit_emit(self, node: Emit) -> str:
        children = [node.condition]
        if node.overrides is not None:
            children.append(node.overrides)
        return self._children(f"Emit({node.emitter.name})", *children)

    def visit_call_statement(self, node: CallStatement) -> str:
        return node.call.accept(self)
