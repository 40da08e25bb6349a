"""
vm16cc: ahead-of-time translator for the 16-bit virtual machine
=================================================================
Turns a binary program image for the 16-bit VM (8 registers, a stack,
15-bit arithmetic, character I/O) into an equivalent Python program,
then packages that program as a standalone executable.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌───────────┐    ┌───────────┐
    │  Image   │───>│  Loader  │───>│ Decoder  │───>│  CodeGen  │───>│  Backend  │
    │ (.bin)   │    │ (words)  │    │ (instrs) │    │ (py text) │    │ (.py/.pyz)│
    └──────────┘    └──────────┘    └──────────┘    └───────────┘    └───────────┘

    - loader.py:       little-endian words, patch table
    - isa.py:          opcode table + operand decoder (literal / register)
    - decoder.py:      variable-width instruction walk
    - codegen.py:      one block per instruction + address dispatch table
    - skeleton.py:     runtime text wrapped around the blocks
    - backend.py:      compile check + executable output

    Side tools: assembler.py (text -> image), disassembler.py (image ->
    text), interpreter.py (reference VM used to check translations).
"""

__version__ = "0.1.0"

import sys
from pathlib import Path
from typing import Optional, Sequence, Union

from .isa import TranslationError, InvalidOperandError
from .loader import MalformedImageError, load_image
from .decoder import Instruction, decode_instruction, decode_program
from .config import TranslatorConfig, TARGET_PROFILES
from .codegen import CodeGenerator
from .backend import BackendCompilationError, Diagnostic, PythonBackend, load_program
from .assembler import Assembler, AssemblerError, assemble
from .disassembler import disassemble
from .interpreter import VirtualMachine, VMRuntimeError, StopReason


def translate(words: Sequence[int], config: Optional[TranslatorConfig] = None) -> str:
    """Translate a program image into Python source.

    Raises MalformedImageError / InvalidOperandError with the offending address.
    """
    return CodeGenerator(config, version=__version__).generate(words)


def compile_image(words: Sequence[int], output_path: Union[str, Path],
                  config: Optional[TranslatorConfig] = None,
                  backend: Optional[PythonBackend] = None) -> bool:
    """Translate ``words`` and write an executable at ``output_path``.

    Translation errors propagate. If the backend rejects the generated
    source, each error diagnostic is written to stderr, nothing is
    written, and False is returned.
    """
    source = translate(words, config)
    backend = backend or PythonBackend()
    try:
        backend.build(source, output_path)
    except BackendCompilationError as e:
        print("Backend compilation errors:", file=sys.stderr)
        for d in e.diagnostics:
            print(f"\t{d}", file=sys.stderr)
        return False
    return True


def compile_file(input_path: Union[str, Path], output_path: Union[str, Path],
                 config: Optional[TranslatorConfig] = None, *, strict: bool = True) -> bool:
    """Load an image file and compile it (see compile_image)."""
    words = load_image(input_path, strict=strict)
    if config is None:
        config = TranslatorConfig(name=Path(input_path).name)
    return compile_image(words, output_path, config)
