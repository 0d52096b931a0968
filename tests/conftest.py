"""
Shared fixtures for the particle script tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from particle_script import MemoryFileSystem, ParticleScriptCompiler
from particle_script.compiler import LogSink
from particle_script.model import Phase


class RecordingSink(LogSink):
    """Keeps every reported diagnostic."""

    def __init__(self):
        self.reports = []

    def report(self, path, line, message):
        self.reports.append((path, line, message))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def compile_script(sink):
    """Compile source and return the compiler; raises on failure."""

    def compile_script(source, files=None, path="main.ps"):
        compiler = ParticleScriptCompiler(MemoryFileSystem(files), sink)
        compiler.build(path, source)
        return compiler

    return compile_script


@pytest.fixture
def phase_code(compile_script):
    """Compile source and return the CodeBlob of one emitter phase."""

    def phase_code(source, phase=Phase.UPDATE, emitter=0):
        compiler = compile_script(source)
        return compiler.emitters[emitter].phase(phase).code

    return phase_code
