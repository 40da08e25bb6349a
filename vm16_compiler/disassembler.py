"""
Disassembler: program image -> readable listing.

One line per instruction::

    <address>:\t<mnemonic>\t<operand>\t...

Registers print as r0..r7. Unknown opcodes, and words left over when
the last instruction would run past the end of the image, print as
``data <value>``. The listing is valid input for the text assembler,
so a disassembly reassembles to the same words.
"""

from __future__ import annotations
from typing import Iterator, Optional, Sequence, Tuple

from .decoder import decode_instruction, program_end
from .isa import InvalidOperandError, decode_operand, instruction_width

__all__ = ['disassemble', 'iter_listing', 'format_operand']


def format_operand(word: int) -> str:
    """Assembly spelling of an operand word (raw number if invalid)."""
    try:
        return str(decode_operand(word))
    except InvalidOperandError:
        return str(word)


def iter_listing(image: Sequence[int], limit: Optional[int] = None) -> Iterator[Tuple[int, str]]:
    """Yield (address, text) for every instruction or data word."""
    end = program_end(image, limit)
    address = 0
    while address < end:
        opcode = image[address]
        if address + instruction_width(opcode) > len(image):
            # Truncated tail: dump the remaining words as data.
            for addr in range(address, end):
                yield addr, f"data\t{image[addr]}"
            return
        ins = decode_instruction(image, address, validate=False)
        if ins.mnemonic is None:
            yield address, f"data\t{opcode}"
        else:
            parts = [ins.mnemonic] + [format_operand(w) for w in ins.operands]
            yield address, "\t".join(parts)
        address = ins.next_address


def disassemble(image: Sequence[int], limit: Optional[int] = None) -> str:
    """Return the full listing as text."""
    return "".join(f"{addr}:\t{text}\n" for addr, text in iter_listing(image, limit))
