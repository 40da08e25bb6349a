#!/usr/bin/env python3
"""
vm16cc: 16-bit VM program translator CLI

Usage:
    python vm16cc.py <input> [-o output] [--profile generic|challenge]
                     [--patch ADDR=VALUE]... [--limit N] [--memory-image PATH]
                     [--invalid-operands reject|fault] [--run] [--verbose]

Input is assembled first when it ends in .asm or .s, otherwise it is read
as a binary image (little-endian 16-bit words).

Output format is auto-detected from file extension:
    .py        → standalone Python script
    .pyz       → executable zipapp (also used for any other extension)
    .lst       → disassembly listing
    .bin       → program image (useful with .asm input)

Examples:
    python vm16cc.py challenge.bin -o program.pyz --profile challenge
    python vm16cc.py hello.asm -o hello.py
    python vm16cc.py challenge.bin -o challenge.lst
    python vm16cc.py hello.asm --run
    python vm16cc.py challenge.bin                    # generated source to stdout
"""

import argparse
import logging
import os
import sys

# Allow running from project root or as module
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from vm16_compiler import __version__, compile_image, translate
from vm16_compiler.assembler import Assembler, AssemblerError
from vm16_compiler.backend import load_program
from vm16_compiler.config import INVALID_OPERAND_POLICIES, TARGET_PROFILES, TranslatorConfig
from vm16_compiler.disassembler import disassemble
from vm16_compiler.isa import InvalidOperandError
from vm16_compiler.loader import MalformedImageError, load_image, patch_table, words_to_bytes
from vm16_compiler.log import setup_logging

FORMATS = ["py", "pyz", "listing", "bin"]
EXTENSION_FORMATS = {".py": "py", ".pyz": "pyz", ".lst": "listing", ".bin": "bin"}


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x...) or decimal."""
    return int(value.strip(), 0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vm16cc",
        description="Ahead-of-time translator for 16-bit VM program images",
        epilog="Profiles: " + ", ".join(TARGET_PROFILES.keys()),
    )
    parser.add_argument("input", help="Input image (.bin) or assembly source (.asm/.s)")
    parser.add_argument("-o", "--output", help="Output file (default: generated source to stdout)")
    parser.add_argument("--profile", default="generic", choices=list(TARGET_PROFILES.keys()),
                        help="Named target profile (default: generic)")
    parser.add_argument("--patch", action="append", default=[], metavar="ADDR=VALUE",
                        help="Override one image word before translation (repeatable)")
    parser.add_argument("--limit", default=None,
                        help="Address ceiling: no instruction is decoded at or past it")
    parser.add_argument("--memory-image", default=None,
                        help="Memory image the generated program loads for rmem/wmem")
    parser.add_argument("--invalid-operands", default=None, choices=INVALID_OPERAND_POLICIES,
                        help="Policy for operand words >= 32776 (default: reject)")
    parser.add_argument("--format", choices=FORMATS, default=None,
                        help="Output format (auto-detected from -o extension if not set)")
    parser.add_argument("--lenient", action="store_true",
                        help="Drop a trailing odd byte instead of rejecting the image")
    parser.add_argument("--run", action="store_true",
                        help="Translate and run the program in-process")
    parser.add_argument("--log-file", default=None, help="Also write a DEBUG log to this file")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print translation details to stderr")
    parser.add_argument("--version", action="version", version=f"vm16cc {__version__}")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(console_level=logging.DEBUG if args.verbose else logging.WARNING,
                  log_file=args.log_file)
    log = logging.getLogger("vm16_compiler.cli")

    try:
        # Read input
        ext = os.path.splitext(args.input)[1].lower()
        if ext in (".asm", ".s"):
            with open(args.input, "r", encoding="utf-8") as f:
                words = Assembler().assemble(f.read())
        else:
            words = load_image(args.input, strict=not args.lenient)
        log.info("Input: %s (%d words)", args.input, len(words))

        config = TranslatorConfig.from_profile(
            args.profile,
            patches=patch_table(args.patch),
            limit=parse_int_arg(args.limit) if args.limit else None,
            memory_image=args.memory_image,
            invalid_operands=args.invalid_operands,
            name=os.path.basename(args.input),
        )
        if args.verbose:
            print(f"[vm16cc] Input:   {args.input} ({len(words)} words)", file=sys.stderr)
            print(f"[vm16cc] Profile: {args.profile}: "
                  f"{TARGET_PROFILES[args.profile]['description']}", file=sys.stderr)
            print(f"[vm16cc] Limit:   {config.limit}", file=sys.stderr)
            print(f"[vm16cc] Patches: {config.patches or 'none'}", file=sys.stderr)

        if args.run:
            program = load_program(translate(words, config))
            try:
                memory = None
                if program.USES_MEMORY:
                    # Without an explicit memory image the program's own words are its memory.
                    if args.memory_image:
                        memory = program.load_memory(args.memory_image)
                    else:
                        memory = list(words[:program.MEMORY_WORDS])
                        memory += [0] * (program.MEMORY_WORDS - len(memory))
                program.run(program.Machine(memory))
            except (program.VMRuntimeError, OSError) as e:
                sys.stdout.flush()
                print(f"Runtime error: {e}", file=sys.stderr)
                return 1
            finally:
                sys.stdout.flush()
            return 0

        # Determine output format from --format flag, file extension, or default
        if args.format:
            out_format = args.format
        elif args.output:
            out_format = EXTENSION_FORMATS.get(os.path.splitext(args.output)[1].lower(), "pyz")
        else:
            out_format = "py"

        if out_format == "listing":
            text = disassemble(words, config.limit)
            _write_text(args.output, text)
        elif out_format == "bin":
            if not args.output:
                print("Error: binary output needs -o", file=sys.stderr)
                return 1
            with open(args.output, "wb") as f:
                f.write(words_to_bytes(words))
        elif not args.output:
            print(translate(words, config), end="")
        else:
            if out_format == "py" and not args.output.endswith(".py"):
                print("Error: script output must end in .py", file=sys.stderr)
                return 1
            if not compile_image(words, args.output, config):
                return 1

        if args.verbose and args.output:
            print(f"[vm16cc] Output:  {args.output} ({out_format})", file=sys.stderr)

    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except AssemblerError as e:
        print(f"Assembler error: {e}", file=sys.stderr)
        return 1
    except MalformedImageError as e:
        print(f"Malformed image: {e}", file=sys.stderr)
        return 1
    except InvalidOperandError as e:
        print(f"Invalid operand: {e}", file=sys.stderr)
        return 1
    except (KeyError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Internal translator error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 2
    return 0


def _write_text(path, text: str):
    if path:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        sys.stdout.write(text)


if __name__ == "__main__":
    sys.exit(main())
