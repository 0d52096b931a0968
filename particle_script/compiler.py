"""
Particle Script Compiler Driver

Runs the passes in order (parse, fold, generate, encode) and forwards the
first diagnostic to a log sink.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .parser import Parser
from .folder import ConstantFolder
from .codegen import CodeGenerator, EmitterCode
from .resource import ParticleResource
from .filesystem import FileSystem
from .model import Script
from .errors import ParseError, ScriptError


logger = logging.getLogger(__name__)


class LogSink(ABC):
    """Receives compile diagnostics."""

    @abstractmethod
    def report(self, path: str, line: int, message: str) -> None:
        pass


class LoggingSink(LogSink):
    """Forwards diagnostics to the module logger."""

    def report(self, path: str, line: int, message: str) -> None:
        logger.error("%s(%d): %s", path, line, message)


class ParticleScriptCompiler:
    """
    Compiles one particle script to a runtime resource blob.

    A compiler instance owns all state of a single compile and should not be
    shared between threads.
    """

    def __init__(self, file_system: Optional[FileSystem] = None,
                 sink: Optional[LogSink] = None):
        self.file_system = file_system
        self.sink = sink if sink is not None else LoggingSink()
        self.script: Optional[Script] = None
        self.emitters: List[EmitterCode] = []
        self.error: Optional[ScriptError] = None

    def compile(self, path: str, source: str) -> Tuple[bool, bytes]:
        """
        Compile source text.

        Args:
            path: Name of the source, used for imports and diagnostics
            source: Script text

        Returns:
            (True, blob) on success, (False, b"") after reporting the error
        """
        try:
            blob = self.build(path, source)
        except ScriptError as e:
            self.error = e
            self.sink.report(e.filename or path, e.line or 0, e.message)
            return False, b""
        return True, blob

    def build(self, path: str, source: str) -> bytes:
        """Compile source text, raising the first ScriptError."""
        self.error = None
        try:
            blob = self._build(path, source)
        except ScriptError as e:
            if e.filename is None:
                e.locate(path)
            raise
        except RecursionError as e:
            raise ParseError("Expression is nested too deeply", filename=path) from e

        logger.debug("%s: compiled to %d bytes", path, len(blob))
        return blob

    def _build(self, path: str, source: str) -> bytes:
        self.script = Parser(source, path, self.file_system).parse()
        logger.debug("%s: parsed %d emitter(s), %d function(s), %d import(s)", path,
                     len(self.script.emitters), len(self.script.functions),
                     len(self.script.imports))

        ConstantFolder().fold_script(self.script)
        self.emitters = CodeGenerator().generate(self.script)
        return ParticleResource.from_script(self.script, self.emitters).serialize()
