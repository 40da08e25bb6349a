"""
Reference interpreter for the 16-bit VM.

Executes a program image directly, one instruction per step, from a
32768-word memory initialised with the image. It shares the opcode
table with the translator and is the oracle translated programs are
checked against.

Execution model:
  1. Fetch opcode at ip from memory
  2. Decode operands (literal or register) by table width
  3. Execute the handler, which returns the next ip or a StopReason
  4. Count the step, check the step limit

Termination reasons:
  HALT        halt, or ret with an empty stack
  EOF         in with no more input
  STEP_LIMIT  max_steps exceeded
"""

from __future__ import annotations
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, TextIO, Union
import io
import logging

from .isa import (
    MEMORY_WORDS, MODULUS, NUM_REGISTERS, InvalidOperandError, Literal,
    Register, decode_operand, lookup,
)

__all__ = ['VirtualMachine', 'VMRuntimeError', 'StopReason']

logger = logging.getLogger(__name__)


class VMRuntimeError(Exception):
    """Fatal error while executing a program."""
    def __init__(self, message: str, address: int):
        self.address = address
        super().__init__(f"address {address}: {message}")


class StopReason(Enum):
    HALT = 'HALT'
    EOF = 'EOF'
    STEP_LIMIT = 'STEP_LIMIT'


Next = Union[int, StopReason]


class VirtualMachine:
    """Interpreter state: registers, stack, memory, instruction pointer.

    Usage:
        vm = VirtualMachine(words, stdin=io.StringIO("north\\n"))
        reason = vm.run(max_steps=1_000_000)
        print(vm.stdout.getvalue())
    """

    def __init__(self, image: Sequence[int], stdin: Optional[TextIO] = None,
                 stdout: Optional[TextIO] = None):
        if len(image) > MEMORY_WORDS:
            raise ValueError(f"image of {len(image)} words does not fit in memory")
        self.memory: List[int] = list(image) + [0] * (MEMORY_WORDS - len(image))
        self.registers: List[int] = [0] * NUM_REGISTERS
        self.stack: List[int] = []
        self.ip = 0
        self.steps = 0
        self.stdin = stdin if stdin is not None else io.StringIO()
        self.stdout = stdout if stdout is not None else io.StringIO()
        self._dispatch: Dict[str, Callable[[List], Next]] = {
            'halt': self._op_halt,
            'set':  self._op_set,
            'push': self._op_push,
            'pop':  self._op_pop,
            'eq':   self._op_eq,
            'gt':   self._op_gt,
            'jmp':  self._op_jmp,
            'jt':   self._op_jt,
            'jf':   self._op_jf,
            'add':  self._op_add,
            'mult': self._op_mult,
            'mod':  self._op_mod,
            'and':  self._op_and,
            'or':   self._op_or,
            'not':  self._op_not,
            'rmem': self._op_rmem,
            'wmem': self._op_wmem,
            'call': self._op_call,
            'ret':  self._op_ret,
            'out':  self._op_out,
            'in':   self._op_in,
            'noop': self._op_noop,
        }
        self._next_ip = 0
        self._text_out = isinstance(self.stdout, io.TextIOBase)
        self._pending = b""

    # ══════════════════════════════════════════════
    # Execution loop
    # ══════════════════════════════════════════════

    def step(self) -> Optional[StopReason]:
        """Execute one instruction. Returns a StopReason when execution ends."""
        if not 0 <= self.ip < MEMORY_WORDS:
            raise VMRuntimeError("instruction pointer out of memory", self.ip)
        opcode = self.memory[self.ip]
        info = lookup(opcode)
        width = info.width if info else 1
        if self.ip + width > MEMORY_WORDS:
            raise VMRuntimeError("instruction runs past end of memory", self.ip)
        self._next_ip = self.ip + width
        self.steps += 1

        if info is None:
            self.ip = self._next_ip
            return None

        try:
            ops = [decode_operand(w, self.ip) for w in self.memory[self.ip + 1:self._next_ip]]
        except InvalidOperandError as e:
            raise VMRuntimeError(f"invalid operand word {e.value}", self.ip)

        result = self._dispatch[info.mnemonic](ops)
        if isinstance(result, StopReason):
            return result
        self.ip = result
        return None

    def run(self, max_steps: Optional[int] = None) -> StopReason:
        """Run until the program stops or ``max_steps`` instructions have executed."""
        while max_steps is None or self.steps < max_steps:
            reason = self.step()
            if reason is not None:
                logger.debug("Stopped at %d after %d steps: %s", self.ip, self.steps, reason.value)
                return reason
        return StopReason.STEP_LIMIT

    # ══════════════════════════════════════════════
    # Operand access
    # ══════════════════════════════════════════════

    def _value(self, op) -> int:
        if isinstance(op, Register):
            return self.registers[op.index]
        return op.value

    def _store(self, op, value: int):
        if isinstance(op, Literal):
            raise VMRuntimeError(f"destination {op} is not a register", self.ip)
        self.registers[op.index] = value

    def _pop(self) -> int:
        if not self.stack:
            raise VMRuntimeError("pop from empty stack", self.ip)
        return self.stack.pop()

    def _check_address(self, address: int, what: str):
        if not 0 <= address < MEMORY_WORDS:
            raise VMRuntimeError(f"memory {what} out of bounds: {address}", self.ip)

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════

    def _op_halt(self, ops) -> Next:
        return StopReason.HALT

    def _op_noop(self, ops) -> Next:
        return self._next_ip

    def _op_set(self, ops) -> Next:
        self._store(ops[0], self._value(ops[1]))
        return self._next_ip

    def _op_push(self, ops) -> Next:
        self.stack.append(self._value(ops[0]))
        return self._next_ip

    def _op_pop(self, ops) -> Next:
        self._store(ops[0], self._pop())
        return self._next_ip

    def _op_eq(self, ops) -> Next:
        self._store(ops[0], int(self._value(ops[1]) == self._value(ops[2])))
        return self._next_ip

    def _op_gt(self, ops) -> Next:
        self._store(ops[0], int(self._value(ops[1]) > self._value(ops[2])))
        return self._next_ip

    def _op_jmp(self, ops) -> Next:
        return self._value(ops[0])

    def _op_jt(self, ops) -> Next:
        return self._value(ops[1]) if self._value(ops[0]) != 0 else self._next_ip

    def _op_jf(self, ops) -> Next:
        return self._value(ops[1]) if self._value(ops[0]) == 0 else self._next_ip

    def _op_add(self, ops) -> Next:
        self._store(ops[0], (self._value(ops[1]) + self._value(ops[2])) % MODULUS)
        return self._next_ip

    def _op_mult(self, ops) -> Next:
        self._store(ops[0], (self._value(ops[1]) * self._value(ops[2])) % MODULUS)
        return self._next_ip

    def _op_mod(self, ops) -> Next:
        b = self._value(ops[2])
        if b == 0:
            raise VMRuntimeError("modulo by zero", self.ip)
        self._store(ops[0], self._value(ops[1]) % b)
        return self._next_ip

    def _op_and(self, ops) -> Next:
        self._store(ops[0], self._value(ops[1]) & self._value(ops[2]))
        return self._next_ip

    def _op_or(self, ops) -> Next:
        self._store(ops[0], self._value(ops[1]) | self._value(ops[2]))
        return self._next_ip

    def _op_not(self, ops) -> Next:
        self._store(ops[0], 0x7FFF ^ self._value(ops[1]))
        return self._next_ip

    def _op_rmem(self, ops) -> Next:
        address = self._value(ops[1])
        self._check_address(address, "read")
        self._store(ops[0], self.memory[address])
        return self._next_ip

    def _op_wmem(self, ops) -> Next:
        address = self._value(ops[0])
        self._check_address(address, "write")
        self.memory[address] = self._value(ops[1])
        return self._next_ip

    def _op_call(self, ops) -> Next:
        self.stack.append(self._next_ip)
        return self._value(ops[0])

    def _op_ret(self, ops) -> Next:
        if not self.stack:
            return StopReason.HALT
        return self.stack.pop()

    def _op_out(self, ops) -> Next:
        ch = chr(self._value(ops[0]))
        self.stdout.write(ch if self._text_out else ch.encode('utf-8'))
        return self._next_ip

    def _read_byte(self) -> Optional[int]:
        """One input byte; text streams are read as their UTF-8 bytes."""
        if not self._pending:
            data = self.stdin.read(1)
            if not data:
                return None
            if isinstance(data, str):
                data = data.encode('utf-8', 'surrogateescape')
            self._pending = data
        byte, self._pending = self._pending[0], self._pending[1:]
        return byte

    def _op_in(self, ops) -> Next:
        while True:
            byte = self._read_byte()
            if byte is None:
                return StopReason.EOF
            if byte != 13:
                break
        self._store(ops[0], byte)
        return self._next_ip
