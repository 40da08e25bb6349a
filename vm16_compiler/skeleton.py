"""
Fixed text that wraps the emitted instruction blocks.

The emitted program is plain Python with no dependency on this package:
a small runtime (Machine state object, memory loader, dispatch loop)
followed by one function per instruction and the BLOCKS table.
"""

from __future__ import annotations

from .isa import MEMORY_WORDS, MODULUS, NUM_REGISTERS

HEADER_TEMPLATE = '''\
#!/usr/bin/env python3
# Generated by vm16cc {version} from {name}. Do not edit.
# {instructions} instructions, {words} words.

import io
import struct
import sys

MODULUS = {modulus}
NUM_REGISTERS = {registers}
MEMORY_WORDS = {memory_words}
MEMORY_IMAGE = {memory_image!r}
USES_MEMORY = {uses_memory!r}
'''

RUNTIME = '''

class VMRuntimeError(Exception):
    pass


class Machine:
    """Execution state shared by every block."""

    def __init__(self, memory=None, stdin=None, stdout=None):
        self.registers = [0] * NUM_REGISTERS
        self.stack = []
        self.memory = memory
        self.ip = 0
        # Console I/O is bytes: one input byte per character read.
        self.stdin = stdin if stdin is not None else getattr(sys.stdin, "buffer", sys.stdin)
        self.stdout = stdout if stdout is not None else getattr(sys.stdout, "buffer", sys.stdout)
        self._text_out = isinstance(self.stdout, io.TextIOBase)
        self._pending = b""

    def fault(self, message):
        raise VMRuntimeError(f"address {self.ip}: {message}")

    def pop(self):
        if not self.stack:
            self.fault("pop from empty stack")
        return self.stack.pop()

    def read(self, address):
        if self.memory is None:
            self.fault("no memory image loaded")
        if not 0 <= address < len(self.memory):
            self.fault(f"memory read out of bounds: {address}")
        return self.memory[address]

    def write(self, address, value):
        if self.memory is None:
            self.fault("no memory image loaded")
        if not 0 <= address < len(self.memory):
            self.fault(f"memory write out of bounds: {address}")
        self.memory[address] = value

    def modulo(self, a, b):
        if b == 0:
            self.fault("modulo by zero")
        return a % b

    def getc(self):
        """Next input byte, skipping carriage returns. None at end of input."""
        self.stdout.flush()
        while True:
            if not self._pending:
                data = self.stdin.read(1)
                if not data:
                    return None
                if isinstance(data, str):
                    data = data.encode("utf-8", "surrogateescape")
                self._pending = data
            byte, self._pending = self._pending[0], self._pending[1:]
            if byte != 13:
                return byte

    def putc(self, value):
        # Values are at most 0x7FFF, so never a lone surrogate.
        if self._text_out:
            self.stdout.write(chr(value))
        else:
            self.stdout.write(chr(value).encode("utf-8"))


def load_memory(path):
    with open(path, "rb") as f:
        data = f.read()
    count = len(data) // 2
    if count > MEMORY_WORDS:
        raise VMRuntimeError(f"memory image {path} has {count} words, limit is {MEMORY_WORDS}")
    words = list(struct.unpack_from(f"<{count}H", data))
    return words + [0] * (MEMORY_WORDS - count)


def run(m):
    # An empty program halts immediately.
    ip = 0 if BLOCKS else None
    while ip is not None:
        m.ip = ip
        block = BLOCKS.get(ip)
        if block is None:
            m.fault(f"no instruction at address {ip}")
        ip = block(m)


def main():
    memory = None
    try:
        if USES_MEMORY:
            memory = load_memory(MEMORY_IMAGE)
        run(Machine(memory))
    except (VMRuntimeError, OSError) as e:
        sys.stdout.flush()
        print(f"runtime error: {e}", file=sys.stderr)
        return 1
    finally:
        sys.stdout.flush()
    return 0

'''

FOOTER = '''

if __name__ == "__main__":
    sys.exit(main())
'''


def render_header(*, version: str, name: str, instructions: int, words: int,
                  memory_image: str, uses_memory: bool) -> str:
    """Header lines plus the runtime, ready to be followed by blocks."""
    header = HEADER_TEMPLATE.format(
        version=version,
        name=name,
        instructions=instructions,
        words=words,
        modulus=MODULUS,
        registers=NUM_REGISTERS,
        memory_words=MEMORY_WORDS,
        memory_image=memory_image,
        uses_memory=uses_memory,
    )
    return header + RUNTIME
