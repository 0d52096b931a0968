"""
Particle Script Token Definitions

Defines all token types and the Token class for lexical analysis.
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional


class TokenType(Enum):
    """All token types in particle script."""

    # Literals
    NUMBER = auto()
    STRING = auto()
    IDENTIFIER = auto()

    # Keywords
    CONST = auto()
    GLOBAL = auto()
    EMITTER = auto()
    FN = auto()
    VAR = auto()
    OUT = auto()
    IN = auto()
    LET = auto()
    RETURN = auto()
    IMPORT = auto()
    IF = auto()
    ELSE = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    WORLD_SPACE = auto()

    # Operators
    PLUS = auto()          # +
    MINUS = auto()         # -
    STAR = auto()          # *
    SLASH = auto()         # /
    PERCENT = auto()       # %
    LT = auto()            # <
    GT = auto()            # >
    ASSIGN = auto()        # =

    # Delimiters
    LPAREN = auto()        # (
    RPAREN = auto()        # )
    LBRACE = auto()        # {
    RBRACE = auto()        # }
    COMMA = auto()         # ,
    DOT = auto()           # .
    COLON = auto()         # :
    SEMICOLON = auto()     # ;

    # Special
    EOF = auto()
    ERROR = auto()


# Keyword mapping
KEYWORDS = {
    'const': TokenType.CONST,
    'global': TokenType.GLOBAL,
    'emitter': TokenType.EMITTER,
    'fn': TokenType.FN,
    'var': TokenType.VAR,
    'out': TokenType.OUT,
    'in': TokenType.IN,
    'let': TokenType.LET,
    'return': TokenType.RETURN,
    'import': TokenType.IMPORT,
    'if': TokenType.IF,
    'else': TokenType.ELSE,
    'and': TokenType.AND,
    'or': TokenType.OR,
    'not': TokenType.NOT,
    'world_space': TokenType.WORLD_SPACE,
}


# Single-character punctuation
PUNCTUATION = {
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '{': TokenType.LBRACE,
    '}': TokenType.RBRACE,
    ',': TokenType.COMMA,
    '.': TokenType.DOT,
    ':': TokenType.COLON,
    ';': TokenType.SEMICOLON,
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.STAR,
    '/': TokenType.SLASH,
    '%': TokenType.PERCENT,
    '<': TokenType.LT,
    '>': TokenType.GT,
    '=': TokenType.ASSIGN,
}


@dataclass(frozen=True)
class Token:
    """
    A single token. The text is never copied: start/end index into the
    source buffer the token was scanned from.
    """

    type: TokenType
    start: int
    end: int
    source: str = field(repr=False, compare=False)
    message: Optional[str] = None  # set on ERROR tokens

    @property
    def lexeme(self) -> str:
        return self.source[self.start:self.end]

    @property
    def line(self) -> int:
        """1-based line number of the token start."""
        return self.source.count('\n', 0, self.start) + 1

    @property
    def column(self) -> int:
        return self.start - (self.source.rfind('\n', 0, self.start) + 1) + 1

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.lexeme!r}, line={self.line})"


# Operator precedence (higher = binds tighter)
PRECEDENCE = {
    TokenType.OR: 1,
    TokenType.AND: 1,
    TokenType.LT: 2,
    TokenType.GT: 2,
    TokenType.PLUS: 3,
    TokenType.MINUS: 3,
    TokenType.STAR: 4,
    TokenType.SLASH: 4,
    TokenType.PERCENT: 4,
}


def get_precedence(token_type: TokenType) -> int:
    """Get the precedence of an operator token type."""
    return PRECEDENCE.get(token_type, 0)
