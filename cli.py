#!/usr/bin/env python3
"""
CHIP-8 Command-Line Interface
==============================
Runs a ROM in a pygame window, or without one, and doubles as a
development tool.

Provides:
  - ROM loading and execution at a chosen instruction rate
  - Headless runs that print the final screen (CI / smoke tests)
  - Disassembly of a ROM image
  - Assembly of source into a ROM image

Usage:
  python cli.py ROM [--ips N] [--headless FRAMES] [--disasm] [-v]
  python cli.py --assemble SRC.asm OUT.ch8 [--listing]
"""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Optional

from chip8 import Chip8Error, Instruction, PROGRAM_START
from asm import assemble, AsmError
from system import Chip8System, DEFAULT_IPS

# ---------------------------------------------------------------------------
#  Disassembler (same mnemonics asm.py accepts)
# ---------------------------------------------------------------------------

ALU_NAMES = {
    0x0: "LD", 0x1: "OR", 0x2: "AND", 0x3: "XOR", 0x4: "ADD",
    0x5: "SUB", 0x6: "SHR", 0x7: "SUBN", 0xE: "SHL",
}

MISC_FORMS = {
    0x07: "LD V{x:X}, DT",
    0x0A: "LD V{x:X}, K",
    0x15: "LD DT, V{x:X}",
    0x18: "LD ST, V{x:X}",
    0x1E: "ADD I, V{x:X}",
    0x29: "LD F, V{x:X}",
    0x33: "LD B, V{x:X}",
    0x55: "LD [I], V{x:X}",
    0x65: "LD V{x:X}, [I]",
}


def disasm_one(word: int) -> str:
    """Disassemble one instruction word.  Unknown words come out as .dw."""
    ins = Instruction.decode(word)
    f = ins.raw >> 12
    x, y = ins.x, ins.y

    if f == 0x0:
        if ins.kk == 0xE0:
            return "CLS"
        if ins.kk == 0xEE:
            return "RET"
        return f"SYS {ins.nnn:#05x}"
    elif f == 0x1:
        return f"JP {ins.nnn:#05x}"
    elif f == 0x2:
        return f"CALL {ins.nnn:#05x}"
    elif f == 0x3:
        return f"SE V{x:X}, {ins.kk:#04x}"
    elif f == 0x4:
        return f"SNE V{x:X}, {ins.kk:#04x}"
    elif f == 0x5:
        return f"SE V{x:X}, V{y:X}"
    elif f == 0x6:
        return f"LD V{x:X}, {ins.kk:#04x}"
    elif f == 0x7:
        return f"ADD V{x:X}, {ins.kk:#04x}"
    elif f == 0x8:
        name = ALU_NAMES.get(ins.n)
        if name is not None:
            return f"{name} V{x:X}, V{y:X}"
    elif f == 0x9:
        return f"SNE V{x:X}, V{y:X}"
    elif f == 0xA:
        return f"LD I, {ins.nnn:#05x}"
    elif f == 0xB:
        return f"JP V0, {ins.nnn:#05x}"
    elif f == 0xC:
        return f"RND V{x:X}, {ins.kk:#04x}"
    elif f == 0xD:
        return f"DRW V{x:X}, V{y:X}, {ins.n}"
    elif f == 0xE:
        if ins.kk == 0x9E:
            return f"SKP V{x:X}"
        if ins.kk == 0xA1:
            return f"SKNP V{x:X}"
    elif f == 0xF:
        form = MISC_FORMS.get(ins.kk)
        if form is not None:
            return form.format(x=x)

    return f".dw {ins.raw:#06x}"


def disassemble(data: bytes | bytearray, base: int = PROGRAM_START) -> list[str]:
    """One line per 2-byte word: address, raw word, mnemonic."""
    lines = []
    for off in range(0, len(data) - 1, 2):
        word = (data[off] << 8) | data[off + 1]
        lines.append(f"  {base + off:04X}  {word:04X}  {disasm_one(word)}")
    if len(data) % 2:
        lines.append(f"  {base + len(data) - 1:04X}  {data[-1]:02X}    "
                     f".db {data[-1]:#04x}")
    return lines


# ---------------------------------------------------------------------------
#  Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="CHIP-8 interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py roms/pong.ch8\n"
               "  python cli.py roms/pong.ch8 --ips 1000\n"
               "  python cli.py roms/ibm.ch8 --headless 60\n"
               "  python cli.py roms/ibm.ch8 --disasm\n"
               "  python cli.py --assemble demo.asm demo.ch8 -l\n"
    )
    parser.add_argument("rom", nargs="?", default=None,
                        help="ROM image to run")
    parser.add_argument("--ips", type=int, default=DEFAULT_IPS,
                        help=f"Instructions per second (default: {DEFAULT_IPS})")
    parser.add_argument("--headless", type=int, default=None, metavar="FRAMES",
                        help="Run FRAMES frames without a window, then print "
                             "the screen")
    parser.add_argument("--disasm", action="store_true",
                        help="Disassemble the ROM and exit")
    parser.add_argument("--assemble", nargs=2, metavar=("SRC", "OUT"),
                        help="Assemble SRC to the ROM image OUT and exit")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print assembly listing (with --assemble)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    # ---- Assemble-only mode -------------------------------------------
    if args.assemble:
        src_path, out_path = args.assemble
        try:
            with open(src_path, "r") as f:
                source = f.read()
            code = assemble(source, PROGRAM_START, listing=args.listing)
            with open(out_path, "wb") as f:
                f.write(code)
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            return 1
        except OSError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        print(f"Assembled {src_path} → {out_path} ({len(code)} bytes)")
        return 0

    if args.rom is None:
        parser.error("a ROM file is required")
    if args.ips <= 0:
        parser.error("--ips must be positive")

    try:
        with open(args.rom, "rb") as f:
            data = f.read()
    except OSError as e:
        print(f"ERROR: cannot read ROM '{args.rom}': {e.strerror or e}",
              file=sys.stderr)
        return 1

    # ---- Disassemble-only mode ----------------------------------------
    if args.disasm:
        for line in disassemble(data):
            print(line)
        return 0

    sys_emu = Chip8System(ips=args.ips)
    try:
        sys_emu.load_rom(data)
    except Chip8Error as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    try:
        if args.headless is not None:
            from display import HeadlessDisplay
            HeadlessDisplay(sys_emu).run(args.headless)
            print(sys_emu.fb.render_text())
        else:
            from display import Chip8Display
            try:
                Chip8Display(sys_emu).run()
            except ImportError as e:
                print(f"[display] pygame not available: {e}", file=sys.stderr)
                print("[display] Install with: pip install pygame",
                      file=sys.stderr)
                return 1
    except Chip8Error as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print(sys_emu.dump_state(), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted. Goodbye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
