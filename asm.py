"""
CHIP-8 Assembler
=================
Translates assembly text into a CHIP-8 ROM image.

Supports:
  - Labels (terminated with ':')
  - All 35 instructions, Cowgod-style mnemonics (CLS, LD Vx, byte, DRW ...)
  - Immediate literals (decimal, hex with 0x or # prefix, binary with 0b)
  - Comments (';' to end of line)
  - .org, .db, .dw directives (.dw is big-endian, like instruction words)

Usage:
  from asm import assemble
  rom = assemble(source_text)          # origin defaults to 0x200
"""

from __future__ import annotations

PROGRAM_START = 0x200

# ---------------------------------------------------------------------------
#  Opcode templates
# ---------------------------------------------------------------------------

# Register-register ALU ops (8XYn)
ALU_SUB = {
    "or":   0x1, "and":  0x2, "xor": 0x3,
    "sub":  0x5, "subn": 0x7,
}

# Shifts (8XY6 / 8XYE), Vy optional
SHIFT_SUB = {"shr": 0x6, "shl": 0xE}

# "LD special, Vx" forms (FX..)
LD_FROM_REG = {"dt": 0x15, "st": 0x18, "f": 0x29, "b": 0x33, "[i]": 0x55}

# "LD Vx, special" forms (FX..)
LD_TO_REG = {"dt": 0x07, "k": 0x0A, "[i]": 0x65}

# ---------------------------------------------------------------------------
#  Parser helpers
# ---------------------------------------------------------------------------

def _is_reg(tok: str) -> bool:
    tok = tok.strip().lower()
    return (len(tok) == 2 and tok[0] == "v"
            and tok[1] in "0123456789abcdef")

def _parse_reg(tok: str) -> int:
    """Parse 'V0'-'VF' (any case). Returns register index."""
    if not _is_reg(tok):
        raise ValueError(f"Invalid register: {tok!r}")
    return int(tok.strip()[1], 16)

def _parse_imm(tok: str) -> int:
    """Parse an immediate value (decimal, 0x / # hex, 0b binary)."""
    tok = tok.strip()
    if tok.startswith("#"):
        return int(tok[1:], 16)
    return int(tok, 0)

def _split_ops(rest: str) -> list[str]:
    """Split operand string by comma, trimming whitespace."""
    return [s.strip() for s in rest.split(",") if s.strip()]

def _split_mnemonic(text: str) -> tuple[str, str]:
    """Split 'MNEM operands' → (mnem, operands_str)."""
    parts = text.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]

# ---------------------------------------------------------------------------
#  Assembler
# ---------------------------------------------------------------------------

class AsmError(Exception):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}")


def assemble(source: str, base_addr: int = PROGRAM_START,
             listing: bool = False) -> bytearray:
    """
    Two-pass assembler.
    Pass 1: collect labels, compute sizes.
    Pass 2: emit bytes with resolved addresses.
    If listing=True, print an address/hex/source listing to stdout.
    """

    cleaned: list[tuple[int, str]] = []
    for i, raw in enumerate(source.split("\n"), 1):
        stripped = raw.split(";", 1)[0].strip()
        if stripped:
            cleaned.append((i, stripped))

    # ---- Pass 1: label collection and size computation ----
    labels: dict[str, int] = {}
    sizes: list[tuple[int, str, int]] = []  # (line_no, text, size_bytes)
    pc = base_addr

    for lineno, text in cleaned:
        # "label:" alone, or "label: instruction"
        if ":" in text:
            lbl, _, rest = text.partition(":")
            lbl = lbl.strip()
            if not lbl.isidentifier():
                raise AsmError(lineno, f"Bad label: {lbl!r}")
            if lbl in labels:
                raise AsmError(lineno, f"Duplicate label: {lbl}")
            labels[lbl] = pc
            text = rest.strip()
            if not text:
                continue

        lower = text.lower()
        if lower.startswith(".org"):
            try:
                target = _parse_imm(text[4:])
            except ValueError:
                raise AsmError(lineno, f"Bad .org address: {text[4:].strip()!r}")
            if target < pc:
                raise AsmError(lineno, f".org {target:#x} is behind current "
                                       f"address {pc:#x}")
            sizes.append((lineno, text, target - pc))
            pc = target
            continue
        if lower.startswith(".db"):
            n = len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue
        if lower.startswith(".dw"):
            n = 2 * len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue

        sizes.append((lineno, text, 2))
        pc += 2

    # ---- Pass 2: emit bytes ----
    code = bytearray()
    pc = base_addr
    listing_lines = []  # (addr, hex_bytes, source_text)

    for lineno, text, sz in sizes:
        start_pc = pc
        lower = text.lower()

        if lower.startswith(".org"):
            code.extend(bytes(sz))
            pc += sz
            if listing:
                listing_lines.append((start_pc, "", text))
            continue

        if lower.startswith(".db"):
            emitted = bytearray()
            for tok in _split_ops(text[3:]):
                emitted.append(_resolve(lineno, tok, labels, 8))
        elif lower.startswith(".dw"):
            emitted = bytearray()
            for tok in _split_ops(text[3:]):
                v = _resolve(lineno, tok, labels, 16)
                emitted.append((v >> 8) & 0xFF)
                emitted.append(v & 0xFF)
        else:
            word = _emit_instruction(lineno, text, labels)
            emitted = bytearray([(word >> 8) & 0xFF, word & 0xFF])

        assert len(emitted) == sz, f"Size mismatch line {lineno}: expected {sz}, got {len(emitted)}"
        if listing:
            hexstr = " ".join(f"{b:02X}" for b in emitted[:8])
            if len(emitted) > 8:
                hexstr += " ..."
            listing_lines.append((start_pc, hexstr, text))
        code.extend(emitted)
        pc += sz

    if listing:
        addr_labels: dict[int, list[str]] = {}
        for lbl, addr in labels.items():
            addr_labels.setdefault(addr, []).append(lbl)
        for addr, hexstr, src in listing_lines:
            for lbl in addr_labels.pop(addr, []):
                print(f"                    {lbl}:")
            print(f"  {addr:04X}  {hexstr:<24s}  {src}")
        for addr in sorted(addr_labels):
            for lbl in addr_labels[addr]:
                print(f"                    {lbl}:")

    if pc > 0x1000:
        raise AsmError(sizes[-1][0] if sizes else 0,
                       f"Program ends at {pc:#x}, past the 4 KiB address space")
    return code


# ---------------------------------------------------------------------------
#  Operand resolution
# ---------------------------------------------------------------------------

def _resolve(lineno: int, tok: str, labels: dict[str, int], bits: int) -> int:
    """Resolve a token that is either an immediate or a label reference."""
    tok = tok.strip()
    if tok in labels:
        val = labels[tok]
    else:
        try:
            val = _parse_imm(tok)
        except ValueError:
            raise AsmError(lineno, f"Unknown label or bad number: {tok!r}")
    if not 0 <= val < (1 << bits):
        raise AsmError(lineno, f"Value {tok!r} does not fit in {bits} bits")
    return val


def _reg(lineno: int, tok: str) -> int:
    try:
        return _parse_reg(tok)
    except ValueError as e:
        raise AsmError(lineno, str(e))


def _expect(lineno: int, mnem: str, ops: list[str], *counts: int):
    if len(ops) not in counts:
        want = " or ".join(str(c) for c in counts)
        raise AsmError(lineno, f"{mnem.upper()} takes {want} operand(s), "
                               f"got {len(ops)}")


# ---------------------------------------------------------------------------
#  Instruction encoding (pass 2)
# ---------------------------------------------------------------------------

def _emit_instruction(lineno: int, text: str, labels: dict[str, int]) -> int:
    """Encode one instruction as a 16-bit word."""
    mnem, rest = _split_mnemonic(text)
    m = mnem.lower()
    ops = _split_ops(rest)
    low = [o.lower() for o in ops]

    def addr(tok: str) -> int:
        return _resolve(lineno, tok, labels, 12)

    def byte(tok: str) -> int:
        return _resolve(lineno, tok, labels, 8)

    # ---- No operands ----
    if m == "cls":
        _expect(lineno, m, ops, 0)
        return 0x00E0
    if m == "ret":
        _expect(lineno, m, ops, 0)
        return 0x00EE

    # ---- Flow control ----
    if m == "sys":
        _expect(lineno, m, ops, 1)
        return addr(ops[0])
    if m == "jp":
        _expect(lineno, m, ops, 1, 2)
        if len(ops) == 2:
            if low[0] != "v0":
                raise AsmError(lineno, "Indexed JP must use V0")
            return 0xB000 | addr(ops[1])
        return 0x1000 | addr(ops[0])
    if m == "call":
        _expect(lineno, m, ops, 1)
        return 0x2000 | addr(ops[0])

    # ---- Skips ----
    if m in ("se", "sne"):
        _expect(lineno, m, ops, 2)
        x = _reg(lineno, ops[0])
        if _is_reg(ops[1]):
            base = 0x5000 if m == "se" else 0x9000
            return base | (x << 8) | (_reg(lineno, ops[1]) << 4)
        base = 0x3000 if m == "se" else 0x4000
        return base | (x << 8) | byte(ops[1])
    if m in ("skp", "sknp"):
        _expect(lineno, m, ops, 1)
        x = _reg(lineno, ops[0])
        return 0xE000 | (x << 8) | (0x9E if m == "skp" else 0xA1)

    # ---- Loads ----
    if m == "ld":
        _expect(lineno, m, ops, 2)
        dst, src = low
        if dst == "i":
            return 0xA000 | addr(ops[1])
        if dst in LD_FROM_REG:
            return 0xF000 | (_reg(lineno, ops[1]) << 8) | LD_FROM_REG[dst]
        x = _reg(lineno, ops[0])
        if src in LD_TO_REG:
            return 0xF000 | (x << 8) | LD_TO_REG[src]
        if _is_reg(src):
            return 0x8000 | (x << 8) | (_reg(lineno, ops[1]) << 4)
        return 0x6000 | (x << 8) | byte(ops[1])

    # ---- Arithmetic / logic ----
    if m == "add":
        _expect(lineno, m, ops, 2)
        if low[0] == "i":
            return 0xF01E | (_reg(lineno, ops[1]) << 8)
        x = _reg(lineno, ops[0])
        if _is_reg(ops[1]):
            return 0x8004 | (x << 8) | (_reg(lineno, ops[1]) << 4)
        return 0x7000 | (x << 8) | byte(ops[1])
    if m in ALU_SUB:
        _expect(lineno, m, ops, 2)
        x = _reg(lineno, ops[0])
        y = _reg(lineno, ops[1])
        return 0x8000 | (x << 8) | (y << 4) | ALU_SUB[m]
    if m in SHIFT_SUB:
        _expect(lineno, m, ops, 1, 2)
        x = _reg(lineno, ops[0])
        y = _reg(lineno, ops[1]) if len(ops) == 2 else 0
        return 0x8000 | (x << 8) | (y << 4) | SHIFT_SUB[m]
    if m == "rnd":
        _expect(lineno, m, ops, 2)
        return 0xC000 | (_reg(lineno, ops[0]) << 8) | byte(ops[1])

    # ---- Graphics ----
    if m == "drw":
        _expect(lineno, m, ops, 3)
        x = _reg(lineno, ops[0])
        y = _reg(lineno, ops[1])
        n = _resolve(lineno, ops[2], labels, 4)
        return 0xD000 | (x << 8) | (y << 4) | n

    raise AsmError(lineno, f"Unknown mnemonic: {mnem!r}")
