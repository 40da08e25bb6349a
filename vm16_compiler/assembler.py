"""
Two-pass assembler for the 16-bit VM.

Assembles mnemonic text into a program image (list of words).

Syntax:
  label:  set r0, 'A'      ; comment
  10:     out r0           # comment, numeric label checks the address
          jmp label
          data 1, 2, 0x7FFF

  Labels     name followed by ':' as the first token on a line. A numeric
             label must equal the current address; this lets the output
             of the disassembler be assembled again.
  Operands   separated by commas and/or whitespace:
               123, 0x7B       numbers (0..65535)
               'A', '\\n'        character literals
               r0 .. r7        registers
               name            label address
  data       emits its operands as raw words.

How the two-pass algorithm works:
  Pass 1: Walk the lines, assign the current address to each label and
          advance by the width of each instruction (fixed per mnemonic).
  Pass 2: Encode every instruction now that all labels are known.
  Errors are collected per pass and raised together.
"""

from __future__ import annotations
from typing import Dict, List, Optional
from dataclasses import dataclass, field
import re

from .isa import MAX_WORD, MNEMONICS, NUM_REGISTERS, REGISTER_BASE
from .loader import words_to_bytes

__all__ = ['Assembler', 'AssemblerError', 'assemble']


class AssemblerError(Exception):
    """Raised on assembly errors."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


DATA = 'data'

_TOKEN_RE = re.compile(r"'(?:\\.|[^'\\])'|[^\s,]+")
_LABEL_RE = re.compile(r"^[A-Za-z_.][A-Za-z0-9_.]*$")
_REGISTER_RE = re.compile(r"^[rR]([0-9]+)$")
_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '\\': '\\', "'": "'"}


# ──────────────────────────────────────────────
# Line Parser
# ──────────────────────────────────────────────

@dataclass
class AsmLine:
    """Parsed assembly source line."""
    label: Optional[str] = None
    mnemonic: Optional[str] = None
    operands: List[str] = field(default_factory=list)
    comment: Optional[str] = None
    line_num: int = 0
    raw: str = ""


def _parse_line(line: str, line_num: int) -> AsmLine:
    """Parse one line of assembly into label, mnemonic, operands, comment."""
    result = AsmLine(line_num=line_num, raw=line)

    # Strip comment (';' or '#' outside a character literal)
    text = line
    in_char = False
    escaped = False
    for i, ch in enumerate(text):
        if in_char:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == "'":
                in_char = False
        elif ch == "'":
            in_char = True
        elif ch in ';#':
            result.comment = text[i + 1:].strip()
            text = text[:i]
            break

    tokens = _TOKEN_RE.findall(text)
    if not tokens:
        return result

    if tokens[0].endswith(':'):
        result.label = tokens[0][:-1]
        tokens = tokens[1:]
        if tokens and tokens[0].endswith(':'):
            raise AssemblerError("only one label per line", line_num)
    if tokens:
        result.mnemonic = tokens[0].lower()
        result.operands = tokens[1:]
    return result


# ──────────────────────────────────────────────
# Operand Analysis
# ──────────────────────────────────────────────

def _parse_char(text: str, line_num: int) -> int:
    body = text[1:-1]
    if body.startswith('\\'):
        if body[1:] not in _ESCAPES:
            raise AssemblerError(f"unknown escape in character literal {text}", line_num)
        return ord(_ESCAPES[body[1:]])
    if len(body) != 1:
        raise AssemblerError(f"bad character literal {text}", line_num)
    return ord(body)


def _parse_value(text: str, symbols: Dict[str, int], line_num: int) -> int:
    """Parse a number, character literal, register or label reference.
    Supports: 0x7FFF (hex), 123 (decimal), 'A' (char), r0..r7, SYMBOL
    """
    text = text.strip()

    if len(text) >= 3 and text[0] == "'" and text[-1] == "'":
        value = _parse_char(text, line_num)
    elif text.startswith('0x') or text.startswith('0X'):
        value = int(text, 16)
    elif text.isdigit():
        value = int(text)
    else:
        reg = _REGISTER_RE.match(text)
        if reg:
            index = int(reg.group(1))
            if index >= NUM_REGISTERS:
                raise AssemblerError(f"no such register: {text}", line_num)
            return REGISTER_BASE + index
        if text in symbols:
            return symbols[text]
        raise AssemblerError(f"Undefined symbol: '{text}'", line_num)

    if not 0 <= value <= MAX_WORD:
        raise AssemblerError(f"value {value} does not fit in 16 bits", line_num)
    return value


# ──────────────────────────────────────────────
# The Assembler
# ──────────────────────────────────────────────

class Assembler:
    """Two-pass VM assembler.

    Usage:
        asm = Assembler()
        words = asm.assemble(source_text)
        image = asm.to_bytes()
    """

    def __init__(self):
        self.symbols: Dict[str, int] = {}     # Label table: name -> address
        self.pc: int = 0                       # Current address in words
        self.words: List[int] = []             # Assembled image
        self.errors: List[str] = []            # Accumulated error messages
        self._lines: List[AsmLine] = []
        self._addresses: Dict[int, int] = {}   # line number -> address of its first word

    def assemble(self, source: str) -> List[int]:
        """Assemble source text into a list of words."""
        self.symbols = {}
        self.errors = []
        self.words = []
        self._lines = []
        self._addresses = {}

        for i, line in enumerate(source.split('\n'), 1):
            try:
                self._lines.append(_parse_line(line, i))
            except AssemblerError as e:
                self.errors.append(str(e))

        if not self.errors:
            self._pass1()
        if self.errors:
            raise AssemblerError("Pass 1 errors:\n" + "\n".join(self.errors))

        self._pass2()
        if self.errors:
            raise AssemblerError("Pass 2 errors:\n" + "\n".join(self.errors))

        return self.words

    def _pass1(self):
        """Pass 1: compute label addresses by tracking the address through all lines."""
        self.pc = 0
        for line in self._lines:
            try:
                self._pass1_line(line)
            except AssemblerError as e:
                self.errors.append(str(e))

    def _pass1_line(self, line: AsmLine):
        """Register the line's label and advance by its size."""
        if line.label is not None:
            if line.label.isdigit():
                if int(line.label) != self.pc:
                    raise AssemblerError(
                        f"address label {line.label} but current address is {self.pc}",
                        line.line_num)
            elif not _LABEL_RE.match(line.label):
                raise AssemblerError(f"invalid label name: '{line.label}'", line.line_num)
            elif line.label in self.symbols or _REGISTER_RE.match(line.label):
                raise AssemblerError(f"label '{line.label}' is already defined", line.line_num)
            else:
                self.symbols[line.label] = self.pc

        mnem = line.mnemonic
        if mnem is None:
            return
        self._addresses[line.line_num] = self.pc

        if mnem == DATA:
            if not line.operands:
                raise AssemblerError("data: missing operand", line.line_num)
            self.pc += len(line.operands)
            return

        if mnem not in MNEMONICS:
            raise AssemblerError(f"Unknown mnemonic: {mnem}", line.line_num)
        info = MNEMONICS[mnem]
        if len(line.operands) != len(info.operands):
            raise AssemblerError(
                f"{mnem} takes {len(info.operands)} operand(s), got {len(line.operands)}",
                line.line_num)
        self.pc += info.width

    def _pass2(self):
        """Pass 2: encode all lines with the complete symbol table."""
        self.pc = 0
        self.words = []
        for line in self._lines:
            try:
                self._pass2_line(line)
            except AssemblerError as e:
                self.errors.append(str(e))

    def _pass2_line(self, line: AsmLine):
        mnem = line.mnemonic
        if mnem is None:
            return
        values = [_parse_value(op, self.symbols, line.line_num) for op in line.operands]
        if mnem == DATA:
            self._emit(values)
        else:
            self._emit([MNEMONICS[mnem].opcode] + values)

    def _emit(self, data: List[int]):
        """Append words at the current address and advance."""
        self.words.extend(data)
        self.pc += len(data)

    def to_bytes(self) -> bytes:
        """The assembled image in the little-endian file format."""
        return words_to_bytes(self.words)

    def get_listing(self) -> str:
        """Return a human-readable listing showing address, words, and source."""
        lines = [f"{'ADDR':>6}  {'WORDS':<24}  SOURCE", "-" * 60]
        for asmline in self._lines:
            raw = asmline.raw.strip()
            if asmline.line_num in self._addresses:
                addr = self._addresses[asmline.line_num]
                size = (len(asmline.operands) if asmline.mnemonic == DATA
                        else MNEMONICS[asmline.mnemonic].width)
                words = ' '.join(str(w) for w in self.words[addr:addr + size])
                lines.append(f"{addr:>6}  {words:<24}  {raw}")
            elif raw:
                lines.append(f"{'':>6}  {'':<24}  {raw}")
        return '\n'.join(lines)


# ──────────────────────────────────────────────
# Convenience functions
# ──────────────────────────────────────────────

def assemble(source: str) -> List[int]:
    """Assemble source text, return the program image as words."""
    return Assembler().assemble(source)
