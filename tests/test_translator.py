"""
Test suite for the vm16cc translator.

Tests cover:
  - Operand decoding (literal / register / invalid)
  - Instruction widths and decoding
  - Per-opcode semantics of the translated program (run in-process)
  - Control flow: explicit fall-through, branches, call/ret, computed jumps
  - Program assembly: labels, patch table, address ceiling, memory use
  - Translation-time and runtime errors
"""

import io
import re

import pytest
from vm16_compiler import (
    CodeGenerator, InvalidOperandError, MalformedImageError, TranslatorConfig,
    assemble, load_program, translate,
)
from vm16_compiler.isa import (
    MNEMONICS, OPCODES, Literal, Register, decode_operand, instruction_width,
)
from vm16_compiler.decoder import decode_instruction, decode_program
from vm16_compiler.loader import words_from_bytes


def _load(words, **kw):
    """Translate words and return the generated program as a module."""
    return load_program(translate(words, TranslatorConfig(**kw)))


def _run(words, stdin="", memory=None, **kw):
    """Translate and run; return (stdout text, machine)."""
    program = _load(words, **kw)
    out = io.StringIO()
    machine = program.Machine(memory=memory, stdin=io.StringIO(stdin), stdout=out)
    program.run(machine)
    return out.getvalue(), machine


def _run_asm(source, stdin="", memory=None):
    return _run(assemble(source), stdin=stdin, memory=memory)


def _memory_for(words):
    return list(words) + [0] * (32768 - len(words))


# ─── Operand decoding ──────────────────────

class TestOperandDecoder:
    @pytest.mark.parametrize("word", [0, 1, 65, 12345, 32767])
    def test_literal_unchanged(self, word):
        assert decode_operand(word) == Literal(word)

    def test_registers_bijection(self):
        regs = [decode_operand(w) for w in range(32768, 32776)]
        assert all(isinstance(r, Register) for r in regs)
        assert [r.index for r in regs] == list(range(8))
        assert [r.word for r in regs] == list(range(32768, 32776))

    @pytest.mark.parametrize("word", [32776, 40000, 65535])
    def test_invalid_word_rejected(self, word):
        with pytest.raises(InvalidOperandError) as exc:
            decode_operand(word, address=12)
        assert exc.value.value == word
        assert exc.value.address == 12

    def test_rendering(self):
        assert Literal(65).expr == "65"
        assert Register(3).expr == "m.registers[3]"
        assert str(Register(3)) == "r3"


# ─── Instruction decoding ──────────────────

EXPECTED_WIDTHS = {
    0: 1, 1: 3, 2: 2, 3: 2, 4: 4, 5: 4, 6: 2, 7: 3, 8: 3, 9: 4, 10: 4,
    11: 4, 12: 4, 13: 4, 14: 3, 15: 3, 16: 3, 17: 2, 18: 1, 19: 2, 20: 2,
}


class TestInstructionDecoder:
    def test_width_table(self):
        for opcode, width in EXPECTED_WIDTHS.items():
            assert instruction_width(opcode) == width, OPCODES[opcode].mnemonic
            ins = decode_instruction([opcode, 1, 2, 3], 0)
            assert ins.width == width
            assert ins.next_address == width

    def test_unknown_opcode_is_one_word(self):
        assert instruction_width(99) == 1
        assert instruction_width(21) == 1
        assert decode_instruction([99, 19, 65], 0).width == 1

    def test_mnemonic_table(self):
        assert MNEMONICS['add'].opcode == 9
        assert MNEMONICS['mult'].width == 4
        assert not MNEMONICS['jmp'].falls_through
        assert MNEMONICS['call'].falls_through

    def test_decode_program_addresses(self):
        words = [1, 32768, 65, 19, 32768, 0]
        assert [i.address for i in decode_program(words)] == [0, 3, 5]

    def test_decoding_stops_at_limit(self):
        words = [19, 65, 19, 66, 0]
        assert [i.address for i in decode_program(words, limit=2)] == [0]

    def test_truncated_instruction(self):
        with pytest.raises(MalformedImageError) as exc:
            list(decode_program([0, 9, 1]))
        assert exc.value.address == 1

    def test_odd_byte_count(self):
        with pytest.raises(MalformedImageError):
            words_from_bytes(b"\x13\x00\x41")

    def test_odd_byte_count_lenient(self):
        assert words_from_bytes(b"\x13\x00\x41", strict=False) == [19]


# ─── Opcode semantics ──────────────────────

class TestArithmetic:
    def test_set_and_out(self):
        out, _ = _run([1, 32768, 65, 19, 32768, 0])
        assert out == "A"

    def test_add_wraps(self):
        _, m = _run([9, 32768, 32767, 2, 0])
        assert m.registers[0] == 1

    def test_mult_wraps(self):
        _, m = _run([10, 32768, 20000, 20000, 0])
        assert m.registers[0] == (20000 * 20000) % 32768 == 1024

    def test_mod(self):
        _, m = _run([11, 32768, 17, 5, 0])
        assert m.registers[0] == 2

    def test_mod_by_zero_register(self):
        program = _load([11, 32768, 17, 32769, 0])
        with pytest.raises(program.VMRuntimeError, match="modulo by zero"):
            program.run(program.Machine(stdout=io.StringIO()))

    def test_and_or(self):
        _, m = _run([12, 32768, 0b1100, 0b1010, 13, 32769, 0b1100, 0b1010, 0])
        assert m.registers[0] == 0b1000
        assert m.registers[1] == 0b1110

    @pytest.mark.parametrize("value,expected", [(0, 32767), (32767, 0), (0x1234, 0x7FFF ^ 0x1234)])
    def test_not(self, value, expected):
        _, m = _run([14, 32768, value, 0])
        assert m.registers[0] == expected

    def test_eq_gt(self):
        _, m = _run([4, 32768, 7, 7, 4, 32769, 7, 8, 5, 32770, 9, 8, 5, 32771, 8, 9, 0])
        assert m.registers[:4] == [1, 0, 1, 0]

    def test_register_operands(self):
        out, _ = _run_asm("""
                set r0, 60
                set r1, 5
                add r2, r0, r1
                out r2
                halt
        """)
        assert out == "A"

    def test_literal_destination_faults_when_run(self):
        program = _load([1, 5, 65, 0])
        with pytest.raises(program.VMRuntimeError, match="not a register"):
            program.run(program.Machine(stdout=io.StringIO()))


class TestStack:
    def test_push_pop(self):
        _, m = _run_asm("""
                push 1
                push 2
                pop r0
                pop r1
                halt
        """)
        assert m.registers[:2] == [2, 1]
        assert m.stack == []

    def test_pop_underflow(self):
        program = _load([3, 32768, 0])
        with pytest.raises(program.VMRuntimeError, match="empty stack"):
            program.run(program.Machine(stdout=io.StringIO()))


# ─── Control flow ──────────────────────────

BRANCH_PROGRAM = """
        {op} {cond}, yes
        out 'N'
        halt
yes:    out 'Y'
        halt
"""


class TestControlFlow:
    @pytest.mark.parametrize("op,cond,expected", [
        ("jf", 0, "Y"), ("jt", 0, "N"), ("jf", 1, "N"), ("jt", 1, "Y"), ("jt", 32767, "Y"),
    ])
    def test_conditional_jumps(self, op, cond, expected):
        out, _ = _run_asm(BRANCH_PROGRAM.format(op=op, cond=cond))
        assert out == expected

    def test_jmp(self):
        out, _ = _run_asm("""
                jmp over
                out 'N'
        over:   out 'Y'
                halt
        """)
        assert out == "Y"

    def test_call_then_ret_resumes_after_call(self):
        out, _ = _run_asm("""
                call sub
                out 'B'
                halt
        sub:    out 'A'
                ret
        """)
        assert out == "AB"

    def test_call_pushes_address_plus_two(self):
        _, m = _run_asm("""
                call sub
                halt
        sub:    pop r0
                halt
        """)
        assert m.registers[0] == 2

    def test_ret_on_empty_stack_halts(self):
        out, _ = _run([18, 19, 65])
        assert out == ""

    def test_computed_jump(self):
        out, _ = _run_asm("""
                set r1, target
                jmp r1
                out 'N'
        target: out 'Y'
                halt
        """)
        assert out == "Y"

    def test_jump_into_operand_faults(self):
        program = _load([1, 32769, 1, 6, 32769, 0])
        with pytest.raises(program.VMRuntimeError, match="no instruction at address 1"):
            program.run(program.Machine(stdout=io.StringIO()))

    def test_loop(self):
        out, _ = _run_asm("""
                set r0, 5
        loop:   add r1, r0, 48
                out r1
                add r0, r0, 32767
                jt r0, loop
                out '\\n'
                halt
        """)
        assert out == "54321\n"

    def test_falling_off_the_end_halts(self):
        out, _ = _run([19, 65])
        assert out == "A"

    def test_empty_image_halts(self):
        out, _ = _run([])
        assert out == ""

    def test_unknown_opcode_is_noop(self):
        out, _ = _run([99, 19, 65, 0])
        assert out == "A"

    def test_noop(self):
        out, _ = _run([21, 21, 19, 66, 0])
        assert out == "B"


# ─── I/O ───────────────────────────────────

class TestIO:
    def test_in_skips_carriage_return(self):
        _, m = _run_asm("""
                in r0
                in r1
                halt
        """, stdin="a\r\nb")
        assert m.registers[:2] == [ord("a"), ord("\n")]

    def test_in_at_eof_halts(self):
        out, _ = _run_asm("""
                in r0
                out 'X'
                halt
        """, stdin="")
        assert out == ""

    def test_echo(self):
        out, _ = _run_asm("""
        loop:   in r0
                out r0
                jmp loop
        """, stdin="hi\r\n")
        assert out == "hi\n"

    READ_FOUR = """
                in r0
                in r1
                in r2
                in r3
                halt
    """

    def test_non_ascii_text_input_is_read_as_bytes(self):
        _, m = _run_asm(self.READ_FOUR, stdin="\U0001F600")
        assert m.registers[:4] == [0xF0, 0x9F, 0x98, 0x80]

    def test_binary_input(self):
        program = _load(assemble(self.READ_FOUR))
        m = program.Machine(stdin=io.BytesIO(b"\xff\r\x00\x80z"), stdout=io.BytesIO())
        program.run(m)
        assert m.registers[:4] == [255, 0, 128, ord("z")]

    def test_binary_output(self):
        program = _load(assemble("out 'A'\nout 200\nhalt"))
        out = io.BytesIO()
        program.run(program.Machine(stdin=io.BytesIO(), stdout=out))
        assert out.getvalue() == b"A" + "È".encode("utf-8")

    def test_text_output_above_ascii(self):
        out, _ = _run_asm("out 200\nout 0x3A9\nhalt")
        assert out == "ÈΩ"


# ─── Memory ────────────────────────────────

class TestMemory:
    def test_wmem_rmem(self):
        words = assemble("""
                wmem 100, 42
                rmem r0, 100
                halt
        """)
        _, m = _run(words, memory=_memory_for(words))
        assert m.registers[0] == 42
        assert m.memory[100] == 42

    def test_rmem_reads_image(self):
        words = assemble("""
                rmem r0, msg
                out r0
                halt
        msg:    data 'Q'
        """)
        out, _ = _run(words, memory=_memory_for(words))
        assert out == "Q"

    def test_rmem_without_memory_image(self):
        program = _load([15, 32768, 0, 0])
        with pytest.raises(program.VMRuntimeError, match="no memory image"):
            program.run(program.Machine(stdout=io.StringIO()))

    def test_out_of_bounds_address(self):
        words = [15, 32768, 5, 15, 32769, 32768, 0]
        memory = _memory_for(words)
        memory[5] = 40000
        program = _load(words)
        with pytest.raises(program.VMRuntimeError, match="out of bounds: 40000"):
            program.run(program.Machine(memory=memory, stdout=io.StringIO()))

    def test_memory_flag(self):
        assert "USES_MEMORY = False" in translate([19, 65, 0])
        assert "USES_MEMORY = True" in translate([16, 1, 2, 0])


# ─── Program assembly ──────────────────────

class TestProgramAssembly:
    def test_labels_unique_and_increasing(self):
        words = assemble("""
                set r0, 1
                add r0, r0, r0
                jt r0, end
                out r0
        end:    halt
        """)
        source = translate(words)
        labels = [int(x) for x in re.findall(r"^def _block_(\d+)\(m\):", source, re.M)]
        assert labels == [0, 3, 7, 10, 12]
        for addr in labels:
            assert f"    {addr}: _block_{addr}," in source

    def test_explicit_fallthrough(self):
        source = translate([1, 32768, 65, 19, 32768, 0])
        assert "    return 3\n" in source
        assert "    return 5\n" in source

    def test_patch_table(self):
        words = [0, 19, 65, 0]
        out, _ = _run(words, patches={0: 21})
        assert out == "A"
        assert words == [0, 19, 65, 0]

    def test_no_patch_by_default(self):
        assert TranslatorConfig().patches == {}
        out, _ = _run([0, 19, 65, 0])
        assert out == ""

    def test_patch_outside_image(self):
        with pytest.raises(MalformedImageError):
            translate([0], TranslatorConfig(patches={5: 0}))

    def test_limit(self):
        out, _ = _run([19, 65, 19, 66, 0], limit=2)
        assert out == "A"

    def test_jump_target_warning(self):
        gen = CodeGenerator()
        gen.generate([6, 1, 0])
        assert len(gen.warnings) == 1
        assert "not an instruction boundary" in gen.warnings[0]

    def test_generator_is_deterministic(self):
        words = assemble("set r0, 'x'\nout r0\nhalt")
        assert translate(words) == translate(words)

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            CodeGenerator(TranslatorConfig(invalid_operands="ignore"))


# ─── Translation errors ────────────────────

class TestTranslationErrors:
    def test_invalid_operand_rejected(self):
        with pytest.raises(InvalidOperandError) as exc:
            translate([0, 19, 32776])
        assert exc.value.address == 1
        assert exc.value.value == 32776

    def test_invalid_operand_fault_policy(self):
        program = _load([19, 32776, 0], invalid_operands="fault")
        with pytest.raises(program.VMRuntimeError, match="invalid operand word 32776"):
            program.run(program.Machine(stdout=io.StringIO()))

    def test_truncated_final_instruction(self):
        with pytest.raises(MalformedImageError) as exc:
            translate([19, 65, 1, 32768])
        assert exc.value.address == 2
