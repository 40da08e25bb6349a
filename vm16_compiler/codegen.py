"""
Code generator: program image -> Python source.

Each decoded instruction becomes one function ``_block_<address>`` that
takes the Machine state object and returns the address of the next
block to run, or None to halt. Control never falls off a block
implicitly: straight-line instructions end in ``return <next address>``.

The BLOCKS table maps every instruction address to its block, so jumps
to computed addresses (register or memory contents) dispatch through the
same path as literal ones.

Emission rules per opcode:
  halt            return None
  set/eq/gt/...   assign to m.registers[n], then fall through
  push/pop        m.stack.append(...) / m.pop()
  jmp/jt/jf       return <target> (conditionally for jt/jf)
  call            push return address (address + 2), return <target>
  ret             return popped address, or None on an empty stack
  out/in          m.putc(...) / m.getc(), EOF on input halts
  other           no-op, fall through
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .config import TranslatorConfig, INVALID_OPERAND_POLICIES
from .decoder import Instruction, decode_program, program_end
from .isa import DST, MODULUS, InvalidOperandError, Literal, Operand, Register
from .loader import apply_patches
from . import skeleton

__all__ = ['CodeGenerator', 'MEMORY_MNEMONICS']

logger = logging.getLogger(__name__)

MEMORY_MNEMONICS = frozenset(('rmem', 'wmem'))
JUMP_MNEMONICS = {'jmp': 0, 'jt': 1, 'jf': 1, 'call': 0}


class CodeGenerator:
    """Generates a Python program from a VM program image."""

    INDENT = "    "

    def __init__(self, config: Optional[TranslatorConfig] = None, version: str = "0.0.0"):
        self.config = config or TranslatorConfig()
        if self.config.invalid_operands not in INVALID_OPERAND_POLICIES:
            raise ValueError(
                f"unknown invalid operand policy '{self.config.invalid_operands}' "
                f"(expected one of {', '.join(INVALID_OPERAND_POLICIES)})")
        self.version = version

        # Output sections
        self._block_lines: List[str] = []
        self._table_lines: List[str] = []

        # State
        self.instructions: List[Instruction] = []
        self.warnings: List[str] = []
        self._end = 0
        self._boundaries = set()

        self._rules: Dict[str, Callable[[Instruction, List[Operand]], None]] = {
            'halt': self._gen_halt,
            'set':  self._gen_set,
            'push': self._gen_push,
            'pop':  self._gen_pop,
            'eq':   self._gen_compare,
            'gt':   self._gen_compare,
            'jmp':  self._gen_jmp,
            'jt':   self._gen_branch,
            'jf':   self._gen_branch,
            'add':  self._gen_arith,
            'mult': self._gen_arith,
            'mod':  self._gen_mod,
            'and':  self._gen_bitwise,
            'or':   self._gen_bitwise,
            'not':  self._gen_not,
            'rmem': self._gen_rmem,
            'wmem': self._gen_wmem,
            'call': self._gen_call,
            'ret':  self._gen_ret,
            'out':  self._gen_out,
            'in':   self._gen_in,
            'noop': self._gen_noop,
        }

    # ── Output helpers ────────────────────────

    def _emit(self, line: str, depth: int = 1):
        """Emit one statement line inside the current block."""
        self._block_lines.append(f"{self.INDENT * depth}{line}")

    def _emit_label(self, address: int):
        """Open the block for the instruction at ``address``."""
        self._block_lines.append("")
        self._block_lines.append("")
        self._block_lines.append(f"def _block_{address}(m):")

    def _emit_comment(self, text: str):
        self._emit(f"# {text}")

    def _emit_fallthrough(self, ins: Instruction):
        """Explicit transfer to the next block (halt past the last one)."""
        if ins.next_address >= self._end:
            self._emit("return None")
        else:
            self._emit(f"return {ins.next_address}")

    def _emit_fault(self, message: str, depth: int = 1):
        self._emit(f"m.fault({message!r})", depth)

    # ── Top level ─────────────────────────────

    def generate(self, image: Sequence[int]) -> str:
        """Translate a program image into the source of a runnable program."""
        cfg = self.config
        words = apply_patches(list(image), cfg.patches)
        self._end = program_end(words, cfg.limit)
        self._block_lines = []
        self._table_lines = []
        self.warnings = []

        validate = cfg.invalid_operands == 'reject'
        self.instructions = list(decode_program(words, cfg.limit, validate=validate))
        self._boundaries = {ins.address for ins in self.instructions}
        logger.info("Decoded %d instructions from %d words (end %d)",
                    len(self.instructions), len(words), self._end)

        for ins in self.instructions:
            self._gen_block(ins)
        self._check_jump_targets()

        uses_memory = any(ins.mnemonic in MEMORY_MNEMONICS for ins in self.instructions)
        header = skeleton.render_header(
            version=self.version,
            name=" ".join(cfg.name.split()),
            instructions=len(self.instructions),
            words=len(words),
            memory_image=cfg.memory_image,
            uses_memory=uses_memory,
        )

        self._table_lines.append("")
        self._table_lines.append("")
        self._table_lines.append("BLOCKS = {")
        for ins in self.instructions:
            self._table_lines.append(f"{self.INDENT}{ins.address}: _block_{ins.address},")
        self._table_lines.append("}")

        return (header
                + "\n".join(self._block_lines)
                + "\n".join(self._table_lines)
                + "\n"
                + skeleton.FOOTER)

    def _gen_block(self, ins: Instruction):
        """Emit the labelled block for one instruction."""
        self._emit_label(ins.address)
        mnemonic = ins.mnemonic
        words = " ".join(str(w) for w in (ins.opcode,) + ins.operands)
        self._emit_comment(f"{mnemonic or 'unknown'}: {words}")

        try:
            operands = ins.decoded_operands()
        except InvalidOperandError as e:
            # Only reachable with the 'fault' policy: 'reject' fails while decoding.
            logger.debug("Deferring invalid operand to runtime: %s", e)
            self._emit_fault(f"invalid operand word {e.value}")
            return

        for role, op in zip(ins.info.operands if ins.info else (), operands):
            if role == DST and not isinstance(op, Register):
                self._emit_fault(f"{mnemonic} destination {op} is not a register")
                return

        rule = self._rules.get(mnemonic)
        if rule is None:
            self._gen_noop(ins, operands)
            return
        rule(ins, operands)

    def _check_jump_targets(self):
        """Warn about literal jump targets that do not start an instruction."""
        for ins in self.instructions:
            slot = JUMP_MNEMONICS.get(ins.mnemonic)
            if slot is None:
                continue
            target = ins.operands[slot]
            if target < MODULUS and target not in self._boundaries:
                msg = f"{ins.mnemonic} at {ins.address} targets {target}, which is not an instruction boundary"
                self.warnings.append(msg)
                logger.warning(msg)

    # ── Emission rules ────────────────────────

    def _gen_halt(self, ins: Instruction, ops: List[Operand]):
        self._emit("return None")

    def _gen_noop(self, ins: Instruction, ops: List[Operand]):
        self._emit_fallthrough(ins)

    def _gen_set(self, ins: Instruction, ops: List[Operand]):
        dst, a = ops
        self._emit(f"{dst.expr} = {a.expr}")
        self._emit_fallthrough(ins)

    def _gen_push(self, ins: Instruction, ops: List[Operand]):
        self._emit(f"m.stack.append({ops[0].expr})")
        self._emit_fallthrough(ins)

    def _gen_pop(self, ins: Instruction, ops: List[Operand]):
        self._emit(f"{ops[0].expr} = m.pop()")
        self._emit_fallthrough(ins)

    def _gen_compare(self, ins: Instruction, ops: List[Operand]):
        dst, a, b = ops
        op = "==" if ins.mnemonic == 'eq' else ">"
        self._emit(f"{dst.expr} = 1 if {a.expr} {op} {b.expr} else 0")
        self._emit_fallthrough(ins)

    def _gen_jmp(self, ins: Instruction, ops: List[Operand]):
        self._emit(f"return {ops[0].expr}")

    def _gen_branch(self, ins: Instruction, ops: List[Operand]):
        cond, target = ops
        op = "!=" if ins.mnemonic == 'jt' else "=="
        self._emit(f"if {cond.expr} {op} 0:")
        self._emit(f"return {target.expr}", 2)
        self._emit_fallthrough(ins)

    def _gen_arith(self, ins: Instruction, ops: List[Operand]):
        dst, a, b = ops
        op = "+" if ins.mnemonic == 'add' else "*"
        # Python's % is non-negative for a positive modulus.
        self._emit(f"{dst.expr} = ({a.expr} {op} {b.expr}) % {MODULUS}")
        self._emit_fallthrough(ins)

    def _gen_mod(self, ins: Instruction, ops: List[Operand]):
        dst, a, b = ops
        if isinstance(b, Literal) and b.value != 0:
            self._emit(f"{dst.expr} = {a.expr} % {b.expr}")
        else:
            self._emit(f"{dst.expr} = m.modulo({a.expr}, {b.expr})")
        self._emit_fallthrough(ins)

    def _gen_bitwise(self, ins: Instruction, ops: List[Operand]):
        dst, a, b = ops
        op = "&" if ins.mnemonic == 'and' else "|"
        self._emit(f"{dst.expr} = {a.expr} {op} {b.expr}")
        self._emit_fallthrough(ins)

    def _gen_not(self, ins: Instruction, ops: List[Operand]):
        dst, a = ops
        self._emit(f"{dst.expr} = 0x7FFF ^ {a.expr}")
        self._emit_fallthrough(ins)

    def _gen_rmem(self, ins: Instruction, ops: List[Operand]):
        dst, addr = ops
        self._emit(f"{dst.expr} = m.read({addr.expr})")
        self._emit_fallthrough(ins)

    def _gen_wmem(self, ins: Instruction, ops: List[Operand]):
        addr, value = ops
        self._emit(f"m.write({addr.expr}, {value.expr})")
        self._emit_fallthrough(ins)

    def _gen_call(self, ins: Instruction, ops: List[Operand]):
        self._emit(f"m.stack.append({ins.next_address})")
        self._emit(f"return {ops[0].expr}")

    def _gen_ret(self, ins: Instruction, ops: List[Operand]):
        self._emit("if not m.stack:")
        self._emit("return None", 2)
        self._emit("return m.stack.pop()")

    def _gen_out(self, ins: Instruction, ops: List[Operand]):
        self._emit(f"m.putc({ops[0].expr})")
        self._emit_fallthrough(ins)

    def _gen_in(self, ins: Instruction, ops: List[Operand]):
        self._emit("ch = m.getc()")
        self._emit("if ch is None:")
        self._emit("return None", 2)
        self._emit(f"{ops[0].expr} = ch")
        self._emit_fallthrough(ins)
