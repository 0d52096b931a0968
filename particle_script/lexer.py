"""
Particle Script Lexer

Tokenizes particle script source code into a lazy stream of tokens.
"""

from typing import Iterator, List, Optional
from .tokens import Token, TokenType, KEYWORDS, PUNCTUATION


WHITESPACE = ' \t\r\n'


def is_letter(c: str) -> bool:
    return c.isascii() and (c.isalpha() or c == '_')


def is_digit(c: str) -> bool:
    return '0' <= c <= '9'


class Tokenizer:
    """
    Lexical analyzer for particle script source code.

    Tokens are produced on demand by next_token(). Once an ERROR token has
    been produced every following call returns an ERROR token again, and
    once the end is reached every call returns EOF.
    """

    def __init__(self, source: str):
        """
        Initialize the tokenizer.

        Args:
            source: Particle script source code to tokenize
        """
        self.source = source
        self.start = 0      # Start of current token
        self.current = 0    # Current position
        self.error: Optional[Token] = None

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type in (TokenType.EOF, TokenType.ERROR):
                return

    def tokenize(self) -> List[Token]:
        """
        Tokenize the entire source code.

        Returns:
            List of tokens, ending with EOF or ERROR
        """
        return list(self)

    def next_token(self) -> Token:
        """Scan and return the next token."""
        if self.error is not None:
            return self.error

        self.skip_whitespace()
        self.start = self.current

        if self.is_at_end():
            return self.make_token(TokenType.EOF)

        c = self.advance()

        if c in PUNCTUATION:
            return self.make_token(PUNCTUATION[c])
        if c == '"':
            return self.string()
        if is_digit(c):
            return self.number()
        if is_letter(c):
            return self.identifier()

        return self.error_token(f"Unexpected character {c!r}")

    def skip_whitespace(self) -> None:
        """Skip whitespace and // comments."""
        while not self.is_at_end():
            c = self.peek()
            if c in WHITESPACE:
                self.advance()
            elif c == '/' and self.peek_next() == '/':
                while self.peek() != '\n' and not self.is_at_end():
                    self.advance()
            else:
                return

    def advance(self) -> str:
        """Consume and return the current character."""
        c = self.source[self.current]
        self.current += 1
        return c

    def peek(self) -> str:
        """Return the current character without consuming it."""
        if self.is_at_end():
            return '\0'
        return self.source[self.current]

    def peek_next(self) -> str:
        """Return the next character without consuming it."""
        if self.current + 1 >= len(self.source):
            return '\0'
        return self.source[self.current + 1]

    def is_at_end(self) -> bool:
        """Check if we've reached the end of the source."""
        return self.current >= len(self.source)

    def make_token(self, type: TokenType) -> Token:
        return Token(type, self.start, self.current, self.source)

    def error_token(self, message: str) -> Token:
        self.error = Token(TokenType.ERROR, self.start, self.current, self.source, message)
        return self.error

    def string(self) -> Token:
        """Scan a string literal. The token span excludes the quotes."""
        while self.peek() != '"' and not self.is_at_end():
            self.advance()

        if self.is_at_end():
            return self.error_token("Unterminated string")

        token = Token(TokenType.STRING, self.start + 1, self.current, self.source)
        self.advance()  # Consume closing quote
        return token

    def number(self) -> Token:
        """Scan a number literal: digits with an optional fractional part."""
        while is_digit(self.peek()):
            self.advance()

        if self.peek() == '.':
            self.advance()
            if not is_digit(self.peek()):
                return self.error_token("Malformed number, expected a digit after '.'")
            while is_digit(self.peek()):
                self.advance()

        return self.make_token(TokenType.NUMBER)

    def identifier(self) -> Token:
        """Scan an identifier or keyword."""
        while is_letter(self.peek()) or is_digit(self.peek()):
            self.advance()

        text = self.source[self.start:self.current]
        return self.make_token(KEYWORDS.get(text, TokenType.IDENTIFIER))
