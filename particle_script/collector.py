"""
Particle Script Symbol Collector

A lenient scan for editor autocomplete. It never fails: an incomplete or
malformed buffer yields whatever was declared before the problem, and every
call is a fresh, stateless pass over the text.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import List, Optional

from .tokens import Token, TokenType
from .lexer import Tokenizer


DEFAULT_MAX_SYMBOLS = 4096

GLOBAL_SCOPE_ID = 0


class SymbolKind(Enum):
    FUNCTION = "Function"
    CONSTANT = "Constant"
    GLOBAL = "Global"
    EMITTER = "Emitter"
    EMITTER_FIELD = "EmitterField"
    VARIABLE = "Variable"


class ScopeKind(Enum):
    GLOBAL = "Global"
    EMITTER = "Emitter"
    FUNCTION = "Function"
    BLOCK = "Block"


@dataclass
class Symbol:
    """A declared name; the span is that of the name token."""
    name: str
    kind: SymbolKind
    scope_id: int
    start: int
    end: int


@dataclass
class Scope:
    """A region of the buffer, [start, end)."""
    id: int
    kind: ScopeKind
    parent_id: int
    start: int
    end: int


@dataclass
class CollectorOptions:
    stop_at_cursor_only: bool = False
    max_symbols: int = DEFAULT_MAX_SYMBOLS


@dataclass
class CollectorResult:
    symbols: List[Symbol] = field(default_factory=list)
    scopes: List[Scope] = field(default_factory=list)
    cursor_scope_id: int = -1
    truncated: bool = False

    def scope(self, scope_id: int) -> Optional[Scope]:
        if 0 <= scope_id < len(self.scopes):
            return self.scopes[scope_id]
        return None

    def find(self, name: str) -> List[Symbol]:
        return [symbol for symbol in self.symbols if symbol.name == name]


class _Halt(Exception):
    """Ends the scan once the symbol cap is reached."""
    pass


class SymbolCollector:
    """Collects declarations and scopes from a possibly incomplete buffer."""

    def __init__(self, buffer: str, cursor_offset: int,
                 options: Optional[CollectorOptions] = None):
        self.buffer = buffer
        self.cursor = cursor_offset
        self.options = options or CollectorOptions()
        self.result = CollectorResult()
        self.tokens: List[Token] = []
        self.index = 0

        self.stack: List[int] = []
        self.terminated = set()     # ids of scopes whose closing brace was seen
        self.pending_function: Optional[int] = None
        self.stopped = False
        self.ghost_depth = 0        # braces opened after the cutoff

    def collect(self) -> CollectorResult:
        """Scan the whole buffer and resolve the cursor scope."""
        tokens = Tokenizer(self.buffer).tokenize()
        # A lexical error ends the scan; what came before it still counts
        self.tokens = [token for token in tokens if token.type not in (TokenType.EOF, TokenType.ERROR)]

        self.open_scope(ScopeKind.GLOBAL, 0)
        self.result.scopes[GLOBAL_SCOPE_ID].end = len(self.buffer)

        try:
            while self.index < len(self.tokens):
                if self.stopped:
                    if not self.track_brace(self.advance()):
                        break
                else:
                    self.scan(self.advance())
        except _Halt:
            self.result.truncated = True

        self.result.cursor_scope_id = self.cursor_scope()
        return self.result

    # =========================================================================
    # Scanning
    # =========================================================================

    def scan(self, token: Token) -> None:
        if self.pending_function is not None and token.type != TokenType.LBRACE:
            # `fn name(...)` without a body
            self.close_scope(self.pending_function, self.previous_end())
            self.pending_function = None

        if token.type in (TokenType.FN, TokenType.CONST, TokenType.GLOBAL, TokenType.EMITTER,
                          TokenType.VAR, TokenType.IN, TokenType.OUT, TokenType.LET) \
                or self.is_param_keyword(token):
            if self.options.stop_at_cursor_only and token.start > self.cursor:
                self.stopped = True
                return
            self.declaration(token)
        elif token.type == TokenType.LBRACE:
            if self.pending_function is not None:
                self.pending_function = None
            else:
                self.open_scope(ScopeKind.BLOCK, token.start)
        elif token.type == TokenType.RBRACE:
            self.pop_scope(token.end)

    def declaration(self, keyword: Token) -> None:
        name = self.peek()
        if name is None or name.type != TokenType.IDENTIFIER:
            return
        self.advance()

        kind = keyword.type
        if kind == TokenType.FN:
            self.add_symbol(name, SymbolKind.FUNCTION)
            self.function(name)
        elif kind == TokenType.CONST:
            self.add_symbol(name, SymbolKind.CONSTANT)
        elif kind == TokenType.GLOBAL or kind == TokenType.IDENTIFIER:
            self.add_symbol(name, SymbolKind.GLOBAL)
        elif kind == TokenType.EMITTER:
            self.add_symbol(name, SymbolKind.EMITTER)
            brace = self.peek()
            if brace is not None and brace.type == TokenType.LBRACE:
                self.advance()
                self.open_scope(ScopeKind.EMITTER, brace.start)
        elif kind == TokenType.LET:
            self.add_symbol(name, SymbolKind.VARIABLE)
        elif self.current_scope().kind == ScopeKind.EMITTER:
            self.add_symbol(name, SymbolKind.EMITTER_FIELD)
        else:
            self.add_symbol(name, SymbolKind.VARIABLE)

    def function(self, name: Token) -> None:
        """Open the function scope at '(' and collect the parameter names."""
        paren = self.peek()
        if paren is None or paren.type != TokenType.LPAREN:
            return
        self.advance()
        scope_id = self.open_scope(ScopeKind.FUNCTION, paren.start)

        while True:
            token = self.peek()
            if token is None:
                return
            if token.type == TokenType.IDENTIFIER:
                self.advance()
                self.add_symbol(token, SymbolKind.VARIABLE)
            elif token.type == TokenType.COMMA:
                self.advance()
            elif token.type == TokenType.RPAREN:
                self.advance()
                break
            else:
                break

        # The body brace continues this scope instead of opening a new one
        self.pending_function = scope_id

    def track_brace(self, token: Token) -> bool:
        """Keep closing the scopes open at the cutoff; False once all are closed."""
        if token.type == TokenType.LBRACE:
            self.ghost_depth += 1
        elif token.type == TokenType.RBRACE:
            if self.ghost_depth > 0:
                self.ghost_depth -= 1
            else:
                self.pop_scope(token.end)
        return len(self.stack) > 1

    def is_param_keyword(self, token: Token) -> bool:
        following = self.peek()
        return (token.type == TokenType.IDENTIFIER and token.lexeme == 'param'
                and self.current_scope().kind == ScopeKind.GLOBAL
                and following is not None and following.type == TokenType.IDENTIFIER)

    # =========================================================================
    # Scopes and Symbols
    # =========================================================================

    def open_scope(self, kind: ScopeKind, start: int) -> int:
        scope_id = len(self.result.scopes)
        parent_id = self.stack[-1] if self.stack else -1
        self.result.scopes.append(Scope(scope_id, kind, parent_id, start, len(self.buffer)))
        self.stack.append(scope_id)
        return scope_id

    def close_scope(self, scope_id: int, end: int) -> None:
        self.result.scopes[scope_id].end = end
        self.terminated.add(scope_id)
        if self.stack and self.stack[-1] == scope_id:
            self.stack.pop()

    def pop_scope(self, end: int) -> None:
        # A stray '}' never closes the global scope
        if len(self.stack) > 1:
            self.close_scope(self.stack[-1], end)

    def current_scope(self) -> Scope:
        return self.result.scopes[self.stack[-1]]

    def add_symbol(self, name: Token, kind: SymbolKind) -> None:
        if len(self.result.symbols) >= self.options.max_symbols:
            raise _Halt()
        self.result.symbols.append(Symbol(name.lexeme, kind, self.stack[-1], name.start, name.end))

    def cursor_scope(self) -> int:
        """Innermost scope containing the cursor, -1 outside the buffer."""
        if not 0 <= self.cursor <= len(self.buffer):
            return -1

        best = GLOBAL_SCOPE_ID
        for scope in self.result.scopes[1:]:
            if scope.id in self.terminated:
                inside = scope.start < self.cursor < scope.end
            else:
                inside = scope.start < self.cursor <= scope.end
            if inside and scope.start >= self.result.scopes[best].start:
                best = scope.id
        return best

    # =========================================================================
    # Token Helpers
    # =========================================================================

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def peek(self) -> Optional[Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def previous_end(self) -> int:
        return self.tokens[self.index - 2].end if self.index >= 2 else 0


def collect_symbols_from_buffer(buffer: str, cursor_offset: int,
                                options: Optional[CollectorOptions] = None) -> CollectorResult:
    """
    Collect declarations and scopes for autocomplete.

    Args:
        buffer: Source text, usually mid-edit
        cursor_offset: Character offset of the editor cursor
        options: Cutoff and size limits

    Returns:
        The collected symbols and scopes; never raises
    """
    return SymbolCollector(buffer, cursor_offset, options).collect()
