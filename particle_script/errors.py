"""
Particle Script Compiler Errors

Defines exception classes for compilation errors.
"""

from typing import Optional


class ScriptError(Exception):
    """Base exception for all particle script errors."""

    def __init__(self, message: str, line: Optional[int] = None,
                 column: Optional[int] = None, filename: Optional[str] = None):
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename
        super().__init__(self._format_message())

    def locate(self, filename: str) -> 'ScriptError':
        """Attach the file the error belongs to and refresh the message."""
        self.filename = filename
        self.args = (self._format_message(),)
        return self

    def _format_message(self) -> str:
        """Format the error message with location information."""
        parts = []

        if self.filename:
            parts.append(self.filename)

        if self.line is not None:
            if parts:
                parts.append(f"({self.line})")
            else:
                parts.append(f"line {self.line}")

        if parts:
            return f"{''.join(parts)}: {self.message}"
        return self.message


class LexError(ScriptError):
    """Raised when the tokenizer produced an ERROR token."""
    pass


class ParseError(ScriptError):
    """Raised for syntax, resolution, arity and declaration errors."""
    pass


class CompileError(ScriptError):
    """Raised for semantic errors during bytecode generation."""
    pass


class RegisterError(CompileError):
    """Raised when a function needs more live registers than exist."""
    pass


class EncodingError(CompileError):
    """Raised when an instruction cannot be encoded."""
    pass
