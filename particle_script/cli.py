"""
Particle Script Command Line

Usage: pscc INPUT [-o OUTPUT] [--disassemble] [--ast] [-v]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .ast import ASTPrinter
from .compiler import ParticleScriptCompiler
from .filesystem import DiskFileSystem
from .model import Phase
from .resource import ParticleResource


logger = logging.getLogger(__name__)


def print_ast(compiler: ParticleScriptCompiler) -> None:
    printer = ASTPrinter()
    for function in compiler.script.functions.values():
        print(f"fn {function.name}({', '.join(function.params)})")
        print(printer.print(function.body))
    for emitter in compiler.script.emitters:
        for phase in Phase:
            body = emitter.phases.get(phase)
            if body is not None:
                print(f"{emitter.name}.{phase.value}()")
                print(printer.print(body))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="pscc", description="Particle script compiler")
    parser.add_argument("input", help="Input particle script")
    parser.add_argument("-o", "--output", default=None,
                        help="Output file (default: INPUT with a .pbin suffix)")
    parser.add_argument("--disassemble", action="store_true", help="Print the compiled code")
    parser.add_argument("--ast", action="store_true", help="Print the folded AST")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(message)s",
    )

    input_path = Path(args.input)
    try:
        source = input_path.read_text(encoding='utf-8')
    except OSError as e:
        logger.error("Could not read %s: %s", input_path, e)
        return 1

    compiler = ParticleScriptCompiler(DiskFileSystem(input_path.parent))
    success, blob = compiler.compile(input_path.name, source)
    if not success:
        return 1

    if args.ast:
        print_ast(compiler)
    if args.disassemble:
        print(ParticleResource.deserialize(blob).disassemble())

    output_path = Path(args.output) if args.output else input_path.with_suffix(".pbin")
    try:
        output_path.write_bytes(blob)
    except OSError as e:
        logger.error("Could not write %s: %s", output_path, e)
        return 1

    logger.info("Wrote %s (%d bytes)", output_path, len(blob))
    return 0


if __name__ == "__main__":
    sys.exit(main())
