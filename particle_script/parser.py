"""
Particle Script Parser

Recursive descent parser that produces the program model and AST from a
token stream. Identifiers are resolved while parsing against the
declarations seen so far, so scripts are declare-before-use.
"""

from typing import List, Optional, Sequence, Set
from .tokens import Token, TokenType, get_precedence
from .lexer import Tokenizer
from .ast import *
from .model import (
    BUILTINS, MAX_VECTOR_LANES, SYSTEM_VALUES, Builtin, Constant, Emitter,
    Feature, FunctionDecl, Phase, Script, ValueType, VariableFamily,
)
from .filesystem import FileSystem
from .folder import fold, to_float32
from .errors import LexError, ParseError


PHASES = {phase.value: phase for phase in Phase}

INTEGER_KNOBS = (
    'init_emit_count',
    'max_ribbons',
    'max_ribbon_length',
    'init_ribbons_count',
    'tube_segments',
)

FLOAT_KNOBS = (
    'emit_per_second',
    'emit_move_distance',
)

MAX_U32 = 0xFFFFFFFF

# Implicit variable holding the value of a user function
RESULT = 'result'


def describe(token: Token) -> str:
    if token.type == TokenType.EOF:
        return "end of file"
    return f"'{token.lexeme}'"


def may_return(statement: Statement) -> bool:
    if isinstance(statement, Return):
        return True
    if isinstance(statement, Block):
        return any(may_return(s) for s in statement.statements)
    if isinstance(statement, If):
        return may_return(statement.then_block) or (
            statement.else_branch is not None and may_return(statement.else_branch))
    return False


def open_ends(statement: Statement) -> List[Block]:
    """Blocks whose end is reached without returning, once `statement` has run."""
    if isinstance(statement, If):
        if statement.else_branch is None:
            statement.else_branch = Block([], statement.token)
        ends = open_ends(statement.then_block) + open_ends(statement.else_branch)
        return list({id(block): block for block in ends}.values())
    if isinstance(statement, Block):
        if statement.statements and may_return(statement.statements[-1]):
            return open_ends(statement.statements[-1])
        return [statement]
    return []


class Parser:
    """Recursive descent parser for particle script."""

    def __init__(self, source: str, path: str = "<script>",
                 file_system: Optional[FileSystem] = None,
                 script: Optional[Script] = None,
                 imported: Optional[Set[str]] = None):
        """
        Initialize the parser.

        Args:
            source: Source text to parse
            path: Name used in diagnostics and as the import key of this file
            file_system: Provider for `import` statements
            script: Declarations to extend (used when parsing imports)
            imported: Paths already imported into `script`
        """
        self.path = path
        self.file_system = file_system
        self.script = script if script is not None else Script()
        self.imported = imported if imported is not None else {path}
        self.tokenizer = Tokenizer(source)
        self._current: Optional[Token] = None
        self._previous: Optional[Token] = None

        # Resolution context
        self.emitter: Optional[Emitter] = None
        self.function: Optional[FunctionDecl] = None
        self.emit_target: Optional[Emitter] = None
        self.blocks: List[Block] = []

    def parse(self) -> Script:
        """
        Parse the whole source.

        Returns:
            The Script holding every declaration

        Raises:
            LexError, ParseError: At the first problem found
        """
        while not self.is_at_end():
            self.declaration()
        return self.script

    def parse_expression(self) -> Expression:
        """Parse the source as a single standalone expression."""
        expr = self.expression()
        if not self.is_at_end():
            raise self.error(f"Unexpected {describe(self.peek())} after expression")
        return expr

    # =========================================================================
    # Declarations
    # =========================================================================

    def declaration(self) -> None:
        """Parse a top-level declaration."""
        if self.match(TokenType.IMPORT):
            self.import_declaration()
        elif self.match(TokenType.CONST):
            self.const_declaration()
        elif self.match(TokenType.GLOBAL):
            self.param_declaration()
        elif self.check(TokenType.IDENTIFIER) and self.peek().lexeme == 'param':
            self.advance()
            self.param_declaration()
        elif self.match(TokenType.WORLD_SPACE):
            self.script.flags |= Feature.WORLD_SPACE
            self.match(TokenType.SEMICOLON)
        elif self.match(TokenType.FN):
            self.function_declaration()
        elif self.match(TokenType.EMITTER):
            self.emitter_declaration()
        else:
            raise self.error(f"Unexpected {describe(self.peek())}")

    def import_declaration(self) -> None:
        path_token = self.consume(TokenType.STRING, "Expected a path string after 'import'")
        self.match(TokenType.SEMICOLON)

        path = path_token.lexeme
        if path in self.imported:
            return
        self.imported.add(path)

        source = self.file_system.read(path) if self.file_system is not None else None
        if source is None:
            raise self.error(f"Failed to open import '{path}'", path_token)

        self.script.imports.append(path)
        Parser(source, path, self.file_system, self.script, self.imported).parse()

    def const_declaration(self) -> None:
        name = self.consume(TokenType.IDENTIFIER, "Expected constant name")
        self.check_unique(name)
        self.consume(TokenType.ASSIGN, "Expected '=' after constant name")
        value = fold(self.expression())
        self.consume(TokenType.SEMICOLON, "Expected ';' after constant value")

        if isinstance(value, Literal):
            values = (value.value,)
        elif isinstance(value, Compound) and value.literal_values() is not None:
            values = value.literal_values()
        else:
            raise self.error("Expected a constant expression", name)

        value_type = ValueType.from_lanes(len(values))
        if value_type is None:
            raise self.error(f"Constant '{name.lexeme}' has {len(values)} lanes, "
                             f"expected 1, 3 or 4", name)
        self.script.constants[name.lexeme] = Constant(name.lexeme, value_type, values, name)

    def param_declaration(self) -> None:
        name = self.consume(TokenType.IDENTIFIER, "Expected parameter name")
        self.check_unique(name)
        self.consume(TokenType.COLON, "Expected ':' after parameter name")
        value_type = self.parse_type()
        self.match(TokenType.SEMICOLON)
        self.script.add_param(name.lexeme, value_type, name)

    def function_declaration(self) -> None:
        """Parse a user function; it is visible inside its own body."""
        name = self.consume(TokenType.IDENTIFIER, "Expected function name")
        self.check_unique(name)

        self.consume(TokenType.LPAREN, "Expected '(' after function name")
        params: List[str] = []
        if not self.check(TokenType.RPAREN):
            while True:
                param = self.consume(TokenType.IDENTIFIER, "Expected parameter name")
                if param.lexeme == RESULT:
                    raise self.error(f"'{RESULT}' cannot be used as a parameter name", param)
                if param.lexeme in params:
                    raise self.error(f"Duplicate parameter '{param.lexeme}'", param)
                params.append(param.lexeme)
                if not self.match(TokenType.COMMA):
                    break
        self.consume(TokenType.RPAREN, "Expected ')' after parameters")

        function = FunctionDecl(name.lexeme, params, token=name)
        function.result = Local(RESULT, None, name)
        self.script.functions[name.lexeme] = function

        self.function = function
        function.body = self.function_body([function.result])
        self.function = None

    def emitter_declaration(self) -> None:
        name = self.consume(TokenType.IDENTIFIER, "Expected emitter name")
        self.check_unique(name)

        emitter = Emitter(name.lexeme, len(self.script.emitters), token=name)
        self.script.emitters.append(emitter)

        self.consume(TokenType.LBRACE, "Expected '{' after emitter name")
        self.emitter = emitter
        while not self.check(TokenType.RBRACE) and not self.is_at_end():
            self.emitter_item(emitter)
        self.consume(TokenType.RBRACE, "Expected '}' after emitter body")
        self.emitter = None

        if emitter.max_ribbons > 0 and emitter.max_ribbon_length == 0:
            raise self.error("max_ribbon_length must be set when max_ribbons is used", name)
        if not emitter.material and not emitter.mesh:
            raise self.error("Either material or mesh must be provided.", name)

    def emitter_item(self, emitter: Emitter) -> None:
        if self.match(TokenType.VAR):
            self.emitter_variable(emitter, VariableFamily.CHANNEL)
        elif self.match(TokenType.IN):
            self.emitter_variable(emitter, VariableFamily.INPUT)
        elif self.match(TokenType.OUT):
            self.emitter_variable(emitter, VariableFamily.OUTPUT)
        elif self.match(TokenType.FN):
            self.phase_function(emitter)
        elif self.match(TokenType.IDENTIFIER):
            self.emitter_property(emitter, self.previous())
        else:
            raise self.error(f"Unexpected {describe(self.peek())} in emitter")

    def emitter_property(self, emitter: Emitter, word: Token) -> None:
        """Parse material/mesh paths and numeric knobs."""
        name = word.lexeme
        if name == 'material':
            emitter.material = self.consume(TokenType.STRING, "Expected material path").lexeme
        elif name == 'mesh':
            emitter.mesh = self.consume(TokenType.STRING, "Expected mesh path").lexeme
        elif name in INTEGER_KNOBS:
            setattr(emitter, name, self.parse_u32())
        elif name in FLOAT_KNOBS:
            setattr(emitter, name, self.parse_float())
        else:
            raise self.error(f"Unknown emitter property '{name}'", word)
        self.match(TokenType.SEMICOLON)

    def emitter_variable(self, emitter: Emitter, family: VariableFamily) -> None:
        name = self.consume(TokenType.IDENTIFIER, "Expected variable name")
        if emitter.find_variable(name.lexeme) is not None:
            raise self.error(f"Variable '{name.lexeme}' already exists.", name)
        self.consume(TokenType.COLON, "Expected ':' after variable name")
        value_type = self.parse_type()
        self.match(TokenType.SEMICOLON)
        emitter.add_variable(name.lexeme, value_type, family, name)

    def phase_function(self, emitter: Emitter) -> None:
        name = self.consume(TokenType.IDENTIFIER, "Expected function name")
        phase = PHASES.get(name.lexeme)
        if phase is None:
            raise self.error(f"Unknown emitter function '{name.lexeme}', "
                             f"expected update, emit or output", name)
        if phase in emitter.phases:
            raise self.error(f"Function '{name.lexeme}' already exists.", name)

        self.consume(TokenType.LPAREN, "Expected '(' after function name")
        self.consume(TokenType.RPAREN, "Emitter functions take no arguments")
        emitter.phases[phase] = self.function_body()

    def function_body(self, locals: Sequence[Local] = ()) -> Block:
        brace = self.consume(TokenType.LBRACE, "Expected '{' before function body")
        return self.block(brace, locals)

    def parse_type(self) -> ValueType:
        token = self.consume(TokenType.IDENTIFIER, "Expected a type")
        value_type = ValueType.from_name(token.lexeme)
        if value_type is None:
            raise self.error(f"Unknown type '{token.lexeme}'", token)
        return value_type

    def parse_u32(self) -> int:
        token = self.consume(TokenType.NUMBER, "Expected a number")
        if '.' in token.lexeme:
            raise self.error(f"Expected an integer, got {token.lexeme}", token)
        value = int(token.lexeme)
        if value > MAX_U32:
            raise self.error(f"{token.lexeme} is too large", token)
        return value

    def parse_float(self) -> float:
        negative = self.match(TokenType.MINUS)
        token = self.consume(TokenType.NUMBER, "Expected a number")
        value = to_float32(token.lexeme)
        return -value if negative else value

    def check_unique(self, name: Token) -> None:
        text = name.lexeme
        if self.script.is_defined(text) or text in BUILTINS or text in SYSTEM_VALUES:
            raise self.error(f"'{text}' already exists.", name)

    # =========================================================================
    # Statements
    # =========================================================================

    def block(self, brace: Token, locals: Sequence[Local] = ()) -> Block:
        """Parse statements up to the closing brace; `brace` is already consumed."""
        block = Block([], brace, list(locals))
        self.statements(block)
        self.consume(TokenType.RBRACE, "Expected '}' after block")
        return block

    def statements(self, block: Block) -> None:
        """
        Parse statements into `block` up to a closing brace.

        The VM has no jumps, so the statements following an `if` that may
        return are moved to the end of every path through it that did not.
        """
        self.blocks.append(block)
        while not self.check(TokenType.RBRACE) and not self.is_at_end():
            statement = self.statement()
            block.statements.append(statement)
            if self.check(TokenType.RBRACE) or not may_return(statement):
                continue

            ends = open_ends(statement)
            if not ends:
                raise self.error("Unreachable statement after 'return'")
            rest = Block([], self.peek())
            self.statements(rest)
            for end in ends:
                end.statements.append(rest)
        self.blocks.pop()

    def statement(self) -> Statement:
        if self.match(TokenType.LBRACE):
            return self.block(self.previous())
        if self.match(TokenType.LET):
            return self.let_statement()
        if self.match(TokenType.IF):
            return self.if_statement()
        if self.match(TokenType.RETURN):
            return self.return_statement()
        if self.check(TokenType.IDENTIFIER):
            return self.identifier_statement()
        raise self.error(f"Unexpected {describe(self.peek())}")

    def let_statement(self) -> Let:
        keyword = self.previous()
        name = self.consume(TokenType.IDENTIFIER, "Expected variable name after 'let'")
        if self.is_visible(name.lexeme):
            raise self.error(f"'{name.lexeme}' already exists.", name)

        value_type = None
        if self.match(TokenType.COLON):
            value_type = self.parse_type()

        value = None
        if self.match(TokenType.ASSIGN):
            value = self.expression()
        elif value_type is None:
            raise self.error("Expected ':' or '=' after variable name")

        self.consume(TokenType.SEMICOLON, "Expected ';' after variable declaration")

        # Declared after its initializer so `let a = a;` does not see itself
        local = Local(name.lexeme, value_type, name)
        self.blocks[-1].locals.append(local)
        return Let(local, value, keyword)

    def if_statement(self) -> If:
        keyword = self.previous()
        condition = self.expression()
        then_block = self.block(self.consume(TokenType.LBRACE, "Expected '{' after if condition"))

        else_branch = None
        if self.match(TokenType.ELSE):
            if self.match(TokenType.IF):
                else_branch = self.if_statement()
            else:
                else_branch = self.block(self.consume(TokenType.LBRACE, "Expected '{' after 'else'"))

        return If(condition, then_block, else_branch, keyword)

    def return_statement(self) -> Return:
        keyword = self.previous()
        if self.function is None:
            raise self.error("'return' is only allowed in user functions", keyword)
        if self.emit_target is not None:
            raise self.error("'return' cannot be used inside emit()", keyword)

        value = self.expression()
        self.consume(TokenType.SEMICOLON, "Expected ';' after return value")
        return Return(value, keyword)

    def identifier_statement(self) -> Statement:
        """Parse an assignment, a call statement or emit()."""
        token = self.peek()
        node = self.postfix(self.identifier(read=False))

        if isinstance(node, Emit):
            if node.overrides is None:
                self.consume(TokenType.SEMICOLON, "Expected ';' after emit()")
            else:
                self.match(TokenType.SEMICOLON)
            return node

        if self.match(TokenType.ASSIGN):
            self.check_assignable(node, token)
            value = self.expression()
            self.consume(TokenType.SEMICOLON, "Expected ';' after assignment")
            return Assign(node, value, token)

        if isinstance(node, (BuiltinCall, UserCall)):
            self.consume(TokenType.SEMICOLON, "Expected ';' after call")
            return CallStatement(node, token)

        raise self.error("Expected an assignment or a call", token)

    def check_assignable(self, node: Expression, token: Token) -> None:
        target = node.target if isinstance(node, Swizzle) else node

        if isinstance(target, LocalRef):
            pass
        elif isinstance(target, VariableRef) and (
                target.emit_target
                or target.variable.family in (VariableFamily.CHANNEL, VariableFamily.OUTPUT)):
            pass
        else:
            raise self.error(f"'{token.lexeme}' cannot be assigned to", token)

        if isinstance(node, Swizzle) and len(set(node.lanes)) != len(node.lanes):
            raise self.error(f"Duplicate component in '.{node.components}'", node.token)

    # =========================================================================
    # Expressions
    # =========================================================================

    def expression(self, min_precedence: int = 1) -> Expression:
        """Precedence climbing over binary operators, left associative."""
        left = self.unary()

        while get_precedence(self.peek().type) >= min_precedence:
            operator = self.advance()
            right = self.expression(get_precedence(operator.type) + 1)
            left = BinaryOp(left, operator.type, right, operator)

        return left

    def unary(self) -> Expression:
        if self.match(TokenType.MINUS):
            token = self.previous()
            return Negate(self.unary(), token)
        if self.match(TokenType.NOT):
            token = self.previous()
            return Not(self.unary(), token)
        return self.value(self.postfix(self.primary()))

    def value(self, node: ASTNode) -> Expression:
        """Reject nodes that cannot be used as a value."""
        if isinstance(node, EmitterRef):
            raise self.error(f"Emitter '{node.emitter.name}' is not a value", node.token)
        if isinstance(node, Emit) or (
                isinstance(node, BuiltinCall) and not node.builtin.returns_value):
            raise self.error(f"'{node.token.lexeme}' does not return a value", node.token)
        return node

    def primary(self) -> ASTNode:
        if self.match(TokenType.NUMBER):
            token = self.previous()
            return Literal(to_float32(token.lexeme), token)

        if self.match(TokenType.LPAREN):
            expr = self.expression()
            self.consume(TokenType.RPAREN, "Expected ')' after expression")
            return expr

        if self.match(TokenType.LBRACE):
            return self.compound()

        if self.check(TokenType.IDENTIFIER):
            return self.identifier()

        raise self.error(f"Expected an expression, got {describe(self.peek())}")

    def compound(self) -> Compound:
        brace = self.previous()
        elements = [self.expression()]
        while self.match(TokenType.COMMA):
            elements.append(self.expression())
        self.consume(TokenType.RBRACE, "Expected '}' after vector elements")

        if len(elements) > MAX_VECTOR_LANES:
            raise self.error(f"Vector literals have at most {MAX_VECTOR_LANES} elements", brace)
        return Compound(elements, brace)

    def postfix(self, node: ASTNode) -> ASTNode:
        """Parse subscripts such as .x or .rgb."""
        while isinstance(node, Expression) and self.match(TokenType.DOT):
            name = self.consume(TokenType.IDENTIFIER, "Expected a subscript after '.'")
            components = name.lexeme
            if len(components) > MAX_VECTOR_LANES or any(c not in SWIZZLE_LANES for c in components):
                raise self.error(f"Invalid subscript '.{components}'", name)

            lanes = self.static_lanes(node)
            if lanes == 1:
                raise self.error(f"Cannot subscript a scalar value with '.{components}'", name)
            if lanes is not None and max(SWIZZLE_LANES[c] for c in components) >= lanes:
                raise self.error(f"Subscript '.{components}' is out of range "
                                 f"for a {lanes}-lane value", name)

            node = Swizzle(node, components, name)
        return node

    def static_lanes(self, node: Expression) -> Optional[int]:
        """Lane count when known without compiling, else None."""
        if isinstance(node, VariableRef):
            return node.variable.lanes
        if isinstance(node, LocalRef) and node.local.type is not None:
            return node.local.type.lanes
        if isinstance(node, SystemValueRef):
            return len(node.values)
        if isinstance(node, Literal):
            return 1
        if isinstance(node, Swizzle):
            return len(node.components)
        return None

    def identifier(self, read: bool = True) -> ASTNode:
        """
        Resolve an identifier and parse the call that follows a function name.

        `read` is False for assignment targets, which do not count as uses of
        a local.
        """
        token = self.consume(TokenType.IDENTIFIER, "Expected an identifier")
        name = token.lexeme

        builtin = BUILTINS.get(name)
        if builtin is not None:
            return self.builtin_call(builtin, token)

        if name in SYSTEM_VALUES:
            return SystemValueRef(SYSTEM_VALUES[name], token)

        function = self.script.functions.get(name)
        if function is not None:
            return self.user_call(function, token)

        if self.emit_target is not None:
            variable = self.emit_target.find_input(name)
            if variable is not None:
                return VariableRef(variable, token, emit_target=True)

        if self.emitter is not None:
            variable = self.emitter.find_variable(name)
            if variable is not None:
                return VariableRef(variable, token)

        constant = self.script.constants.get(name)
        if constant is not None:
            return self.constant_node(constant, token)

        param = self.script.find_param(name)
        if param is not None:
            return VariableRef(param, token)

        if self.function is not None and name in self.function.params:
            return FunctionArgRef(self.function, self.function.params.index(name), token)

        local = self.find_local(name)
        if local is not None:
            local.read = local.read or read
            return LocalRef(local, token)

        emitter = self.script.find_emitter(name)
        if emitter is not None:
            return EmitterRef(emitter, token)

        raise self.error(f"Unknown identifier '{name}'", token)

    def is_visible(self, name: str) -> bool:
        """True if `name` already resolves to something in the current context."""
        if name in BUILTINS or name in SYSTEM_VALUES or self.script.is_defined(name):
            return True
        if self.emit_target is not None and self.emit_target.find_input(name) is not None:
            return True
        if self.emitter is not None and self.emitter.find_variable(name) is not None:
            return True
        if self.function is not None and name in self.function.params:
            return True
        return self.find_local(name) is not None

    def find_local(self, name: str) -> Optional[Local]:
        for block in reversed(self.blocks):
            local = block.find_local(name)
            if local is not None:
                return local
        return None

    def constant_node(self, constant: Constant, token: Token) -> Expression:
        if len(constant.values) == 1:
            return Literal(constant.values[0], token)
        return Compound([Literal(v, token) for v in constant.values], token)

    def arguments(self) -> List[Expression]:
        """Parse call arguments; the '(' is already consumed."""
        args = []
        if not self.check(TokenType.RPAREN):
            args.append(self.expression())
            while self.match(TokenType.COMMA):
                args.append(self.expression())
        self.consume(TokenType.RPAREN, "Expected ')' after arguments")
        return args

    def builtin_call(self, builtin: Builtin, token: Token) -> ASTNode:
        self.consume(TokenType.LPAREN, f"Expected '(' after '{builtin.name}'")
        if builtin.name == 'emit':
            return self.emit_call(token)

        args = self.arguments()
        if not builtin.accepts(len(args)):
            raise self.error(f"'{builtin.name}' expects {builtin.arity_text()}, "
                             f"got {len(args)}", token)
        return BuiltinCall(builtin, args, token)

    def emit_call(self, token: Token) -> Emit:
        """emit(target[, condition]) with an optional block overriding target inputs."""
        target = self.consume(TokenType.IDENTIFIER, "Expected an emitter name in emit()")
        emitter = self.script.find_emitter(target.lexeme)
        if emitter is None:
            raise self.error(f"Unknown emitter '{target.lexeme}'", target)

        condition: Expression = Literal(1.0, token)
        if self.match(TokenType.COMMA):
            condition = self.expression()
        self.consume(TokenType.RPAREN, "Expected ')' after emit arguments")

        overrides = None
        if self.match(TokenType.LBRACE):
            saved = self.emit_target
            self.emit_target = emitter
            overrides = self.block(self.previous())
            self.emit_target = saved

        return Emit(emitter, condition, overrides, token)

    def user_call(self, function: FunctionDecl, token: Token) -> UserCall:
        self.consume(TokenType.LPAREN, f"Expected '(' after '{function.name}'")
        args = self.arguments()
        if len(args) != function.arity:
            raise self.error(f"Function '{function.name}' expects {function.arity} "
                             f"argument(s), got {len(args)}", token)
        return UserCall(function, args, token)

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def match(self, *types: TokenType) -> bool:
        """Check if current token matches any of the given types and advance."""
        for type in types:
            if self.check(type):
                self.advance()
                return True
        return False

    def check(self, type: TokenType) -> bool:
        """Check if current token is of given type."""
        return self.peek().type == type

    def advance(self) -> Token:
        """Consume and return the current token."""
        self._previous = self.peek()
        if self._previous.type != TokenType.EOF:
            self._current = self._next_token()
        return self._previous

    def is_at_end(self) -> bool:
        """Check if we've reached the end of tokens."""
        return self.peek().type == TokenType.EOF

    def peek(self) -> Token:
        """Return the current token."""
        if self._current is None:
            self._current = self._next_token()
        return self._current

    def previous(self) -> Token:
        """Return the previous token."""
        return self._previous

    def consume(self, type: TokenType, message: str) -> Token:
        """Consume a token of the expected type or raise an error."""
        if self.check(type):
            return self.advance()
        raise self.error(f"{message}, got {describe(self.peek())}")

    def error(self, message: str, token: Optional[Token] = None) -> ParseError:
        """Build a ParseError located at `token` (default: the current token)."""
        token = token or self.peek()
        return ParseError(message, token.line, token.column, self.path)

    def _next_token(self) -> Token:
        token = self.tokenizer.next_token()
        if token.type == TokenType.ERROR:
            raise LexError(token.message, token.line, token.column, self.path)
        return token


def parse_expression(source: str) -> Expression:
    """Parse a standalone expression using only builtins and system values."""
    return Parser(source).parse_expression()
