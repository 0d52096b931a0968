"""
Particle Script Compiler Package

Compiles particle script, a small language describing GPU particle emitters,
to the register bytecode resource consumed by the particle runtime. Also
provides the lenient symbol collector used for editor autocomplete.
"""

from pathlib import Path
from typing import Optional

from .tokens import Token, TokenType
from .lexer import Tokenizer
from .ast import *
from .parser import Parser, parse_expression
from .folder import ConstantEvaluator, ConstantFolder, fold
from .codegen import CodeGenerator
from .bytecode import CodeBlob, DataStream, OpCode, StreamKind
from .registers import REGISTER_COUNT, RegisterAllocator
from .resource import ParticleResource
from .filesystem import DiskFileSystem, FileSystem, MemoryFileSystem
from .compiler import LoggingSink, LogSink, ParticleScriptCompiler
from .collector import (
    CollectorOptions, CollectorResult, ScopeKind, SymbolKind, collect_symbols_from_buffer,
)
from .errors import (
    CompileError, EncodingError, LexError, ParseError, RegisterError, ScriptError,
)

__version__ = "0.1.0"
__all__ = [
    "Token",
    "TokenType",
    "Tokenizer",
    "Parser",
    "parse_expression",
    "ConstantEvaluator",
    "ConstantFolder",
    "fold",
    "CodeGenerator",
    "CodeBlob",
    "DataStream",
    "OpCode",
    "StreamKind",
    "REGISTER_COUNT",
    "RegisterAllocator",
    "ParticleResource",
    "FileSystem",
    "DiskFileSystem",
    "MemoryFileSystem",
    "LogSink",
    "LoggingSink",
    "ParticleScriptCompiler",
    "CollectorOptions",
    "CollectorResult",
    "ScopeKind",
    "SymbolKind",
    "collect_symbols_from_buffer",
    "ScriptError",
    "LexError",
    "ParseError",
    "CompileError",
    "RegisterError",
    "EncodingError",
    "compile_source",
    "compile_file",
]


def compile_source(source: str, path: str = "<script>",
                   file_system: Optional[FileSystem] = None) -> bytes:
    """
    Compile particle script source to a resource blob.

    Args:
        source: Particle script source code
        path: Name used in error messages
        file_system: Provider for `import` statements

    Returns:
        The serialized ParticleResource

    Raises:
        ScriptError: At the first error
    """
    return ParticleScriptCompiler(file_system).build(path, source)


def compile_file(filepath: str) -> bytes:
    """
    Compile a particle script file; imports resolve relative to it.

    Args:
        filepath: Path to the script

    Returns:
        The serialized ParticleResource
    """
    path = Path(filepath)
    source = path.read_text(encoding='utf-8')
    return compile_source(source, path.name, DiskFileSystem(path.parent))
