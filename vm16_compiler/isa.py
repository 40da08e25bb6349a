"""
Instruction set of the 16-bit virtual machine.

Everything the rest of the toolchain knows about the ISA lives here:
the opcode table (mnemonic, width, operand roles) and the operand decoder
that classifies a raw word as a literal or a register reference.

Word encoding:
  0     .. 32767   literal value
  32768 .. 32775   register r0 .. r7
  32776 .. 65535   invalid

Instruction widths include the opcode word. Opcodes with no table entry
are 1-word no-ops.
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple, Union
from dataclasses import dataclass

__all__ = [
    'MODULUS', 'MAX_LITERAL', 'REGISTER_BASE', 'NUM_REGISTERS', 'MAX_WORD',
    'MEMORY_WORDS', 'DST', 'VAL', 'OpcodeInfo', 'OPCODES', 'MNEMONICS',
    'lookup', 'instruction_width', 'Literal', 'Register', 'Operand',
    'decode_operand', 'TranslationError', 'InvalidOperandError',
]


MODULUS = 32768
MAX_LITERAL = MODULUS - 1
REGISTER_BASE = 32768
NUM_REGISTERS = 8
MAX_WORD = 0xFFFF
MEMORY_WORDS = 32768


class TranslationError(Exception):
    """Base class for errors that stop translation of a program image."""
    def __init__(self, message: str, address: Optional[int] = None):
        self.address = address
        super().__init__(f"Address {address}: {message}" if address is not None else message)


class InvalidOperandError(TranslationError):
    """Raised for an operand word outside the literal/register range."""
    def __init__(self, value: int, address: Optional[int] = None):
        self.value = value
        super().__init__(f"invalid operand word {value}", address)


# ──────────────────────────────────────────────
# Opcode table
# ──────────────────────────────────────────────
# Operand roles:
#   DST: must name a register, written by the instruction
#   VAL: read as a value (literal or register contents)

DST = 'dst'
VAL = 'val'


@dataclass(frozen=True)
class OpcodeInfo:
    opcode: int
    mnemonic: str
    operands: Tuple[str, ...] = ()
    falls_through: bool = True

    @property
    def width(self) -> int:
        return 1 + len(self.operands)


OPCODES: Dict[int, OpcodeInfo] = {}
MNEMONICS: Dict[str, OpcodeInfo] = {}


def _op(opcode: int, mnemonic: str, *operands: str, falls_through: bool = True):
    """Register an opcode entry."""
    info = OpcodeInfo(opcode, mnemonic, tuple(operands), falls_through)
    OPCODES[opcode] = info
    MNEMONICS[mnemonic] = info


_op(0,  'halt', falls_through=False)
_op(1,  'set',  DST, VAL)
_op(2,  'push', VAL)
_op(3,  'pop',  DST)
_op(4,  'eq',   DST, VAL, VAL)
_op(5,  'gt',   DST, VAL, VAL)
_op(6,  'jmp',  VAL, falls_through=False)
_op(7,  'jt',   VAL, VAL)
_op(8,  'jf',   VAL, VAL)
_op(9,  'add',  DST, VAL, VAL)
_op(10, 'mult', DST, VAL, VAL)
_op(11, 'mod',  DST, VAL, VAL)
_op(12, 'and',  DST, VAL, VAL)
_op(13, 'or',   DST, VAL, VAL)
_op(14, 'not',  DST, VAL)
_op(15, 'rmem', DST, VAL)
_op(16, 'wmem', VAL, VAL)
_op(17, 'call', VAL)
_op(18, 'ret',  falls_through=False)
_op(19, 'out',  VAL)
_op(20, 'in',   DST)
_op(21, 'noop')


def lookup(opcode: int) -> Optional[OpcodeInfo]:
    """Return the table entry for an opcode, or None for an unknown one."""
    return OPCODES.get(opcode)


def instruction_width(opcode: int) -> int:
    """Width in words of the instruction starting with this opcode."""
    info = OPCODES.get(opcode)
    return info.width if info else 1


# ──────────────────────────────────────────────
# Operand decoding
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Literal:
    value: int

    @property
    def expr(self) -> str:
        """Python expression for the emitted program."""
        return str(self.value)

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Register:
    index: int

    @property
    def word(self) -> int:
        return REGISTER_BASE + self.index

    @property
    def expr(self) -> str:
        return f"m.registers[{self.index}]"

    def __str__(self) -> str:
        return f"r{self.index}"


Operand = Union[Literal, Register]


def decode_operand(word: int, address: Optional[int] = None) -> Operand:
    """Classify a raw word in argument position.

    ``address`` is only used to locate the error for an invalid word.
    """
    if not isinstance(word, int) or word < 0:
        raise InvalidOperandError(word, address)
    if word <= MAX_LITERAL:
        return Literal(word)
    if word < REGISTER_BASE + NUM_REGISTERS:
        return Register(word - REGISTER_BASE)
    raise InvalidOperandError(word, address)
