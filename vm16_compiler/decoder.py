"""
Instruction decoder.

Walks a program image from address 0, recognising variable-width
instructions. Instruction boundaries can only be found sequentially:
the width of each instruction comes from its opcode, and the next
instruction starts right after it.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from .isa import OpcodeInfo, Operand, decode_operand, instruction_width, lookup
from .loader import MalformedImageError

__all__ = ['Instruction', 'decode_instruction', 'decode_program', 'program_end']


@dataclass(frozen=True)
class Instruction:
    """One decoded instruction: opcode word plus its raw operand words."""
    address: int
    opcode: int
    operands: Tuple[int, ...] = ()

    @property
    def info(self) -> Optional[OpcodeInfo]:
        return lookup(self.opcode)

    @property
    def mnemonic(self) -> Optional[str]:
        info = self.info
        return info.mnemonic if info else None

    @property
    def width(self) -> int:
        return 1 + len(self.operands)

    @property
    def next_address(self) -> int:
        return self.address + self.width

    @property
    def falls_through(self) -> bool:
        info = self.info
        return info.falls_through if info else True

    def decoded_operands(self) -> List[Operand]:
        """Operands as Literal/Register values. Raises InvalidOperandError."""
        return [decode_operand(w, self.address) for w in self.operands]


def decode_instruction(image: Sequence[int], address: int,
                       end: Optional[int] = None,
                       validate: bool = True) -> Instruction:
    """Decode the instruction starting at ``address``.

    ``end`` bounds the readable part of the image (defaults to its length).
    With ``validate`` every operand word must be a literal or register.
    """
    if end is None:
        end = len(image)
    opcode = image[address]
    width = instruction_width(opcode)
    if address + width > end:
        raise MalformedImageError(
            f"instruction of width {width} (opcode {opcode}) runs past end of image "
            f"at {end}", address)
    ins = Instruction(address, opcode, tuple(image[address + 1:address + width]))
    if validate:
        ins.decoded_operands()
    return ins


def program_end(image: Sequence[int], limit: Optional[int] = None) -> int:
    """Address where decoding stops: end of image or the address ceiling."""
    if limit is None:
        return len(image)
    return min(len(image), limit)


def decode_program(image: Sequence[int], limit: Optional[int] = None,
                   validate: bool = True) -> Iterator[Instruction]:
    """Yield instructions in address order from 0 until the image (or limit) ends."""
    end = program_end(image, limit)
    address = 0
    while address < end:
        ins = decode_instruction(image, address, validate=validate)
        yield ins
        address = ins.next_address
