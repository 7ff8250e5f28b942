"""
CHIP-8 Interpreter Core
========================
Fetch/decode/execute for the 35-opcode CHIP-8 instruction set.

The CPU owns the 4 KiB address space, the sixteen V registers, the index
register, the program counter and the call stack.  The display buffer,
keypad and timers are peripherals (devices.py) handed in by the system
(system.py); the CPU only reads and writes them, it never paces itself.

Every instruction is two bytes, big-endian.  The top nibble selects one of
sixteen families; families 0x0, 0x8, 0xE and 0xF dispatch a second time on
the low byte or low nibble.
"""

from __future__ import annotations
import logging
import random
from typing import NamedTuple, Optional

from devices import FrameBuffer, Keypad, TimerUnit

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE      = 0x1000   # 4 KiB
NUM_REGS      = 16
STACK_DEPTH   = 64
PROGRAM_START = 0x200
FONT_ADDR     = 0x000
GLYPH_BYTES   = 5
MAX_ROM_SIZE  = MEM_SIZE - PROGRAM_START

VF = 0xF   # carry / borrow / collision flag register

# Key-wait phases (FX0A)
WAIT_NONE    = 0   # not inside FX0A
WAIT_PRESS   = 1   # no key seen yet
WAIT_RELEASE = 2   # wait_key is down, waiting for it to come up

# 16 glyphs x 5 bytes, glyph k at [5k, 5k+5)
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for interpreter-generated faults."""
    pass

class StackOverflowError(Chip8Error):
    def __init__(self, pc: int):
        self.pc = pc
        super().__init__(f"Call stack overflow ({STACK_DEPTH} frames) "
                         f"at {pc:#05x}")

class StackUnderflowError(Chip8Error):
    def __init__(self, pc: int):
        self.pc = pc
        super().__init__(f"Return with empty call stack at {pc:#05x}")

class HaltError(Chip8Error):
    pass

class RomError(Chip8Error):
    pass

# ---------------------------------------------------------------------------
#  Decoded instruction
# ---------------------------------------------------------------------------

class Instruction(NamedTuple):
    raw: int   # full 16-bit word
    nnn: int   # low 12 bits (address)
    n: int     # low nibble
    x: int     # nibble at bit 8
    y: int     # nibble at bit 4
    kk: int    # low byte (immediate)

    @classmethod
    def decode(cls, word: int) -> "Instruction":
        word &= 0xFFFF
        return cls(
            raw=word,
            nnn=word & 0x0FFF,
            n=word & 0x000F,
            x=(word >> 8) & 0x000F,
            y=(word >> 4) & 0x000F,
            kk=word & 0x00FF,
        )

    def __str__(self) -> str:
        return f"{self.raw:04X}"

# ---------------------------------------------------------------------------
#  CPU
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 CPU: register file, memory and the opcode executor."""

    def __init__(self, fb: Optional[FrameBuffer] = None,
                 keypad: Optional[Keypad] = None,
                 timers: Optional[TimerUnit] = None,
                 rng: Optional[random.Random] = None):
        self.fb = fb if fb is not None else FrameBuffer()
        self.keypad = keypad if keypad is not None else Keypad()
        self.timers = timers if timers is not None else TimerUnit()
        self.rng = rng if rng is not None else random.Random()

        self.mem = bytearray(MEM_SIZE)
        self.v: list[int] = [0] * NUM_REGS
        self.i: int = 0                  # 16-bit index register
        self.pc: int = PROGRAM_START
        self.stack: list[int] = []

        # FX0A latch; survives across step() calls
        self.wait_state: int = WAIT_NONE
        self.wait_key: Optional[int] = None

        self.instruction: Optional[Instruction] = None  # last decoded
        self.cycle_count: int = 0

        self._build_dispatch()
        self.load_font()

    # -- Dispatch tables --

    def _build_dispatch(self):
        self._families = [
            self._exec_sys,     # 0x0
            self._op_jp,        # 0x1 JP addr
            self._op_call,      # 0x2 CALL addr
            self._op_se_imm,    # 0x3 SE Vx, byte
            self._op_sne_imm,   # 0x4 SNE Vx, byte
            self._op_se_reg,    # 0x5 SE Vx, Vy
            self._op_ld_imm,    # 0x6 LD Vx, byte
            self._op_add_imm,   # 0x7 ADD Vx, byte
            self._exec_alu,     # 0x8
            self._op_sne_reg,   # 0x9 SNE Vx, Vy
            self._op_ld_i,      # 0xA LD I, addr
            self._op_jp_v0,     # 0xB JP V0, addr
            self._op_rnd,       # 0xC RND Vx, byte
            self._op_drw,       # 0xD DRW Vx, Vy, n
            self._exec_key,     # 0xE
            self._exec_misc,    # 0xF
        ]
        # keyed on kk
        self._sys_ops = {
            0xE0: self._op_cls,
            0xEE: self._op_ret,
        }
        # keyed on n
        self._alu_ops = {
            0x0: self._op_ld_reg,
            0x1: self._op_or,
            0x2: self._op_and,
            0x3: self._op_xor,
            0x4: self._op_add_reg,
            0x5: self._op_sub,
            0x6: self._op_shr,
            0x7: self._op_subn,
            0xE: self._op_shl,
        }
        # keyed on kk
        self._key_ops = {
            0x9E: self._op_skp,
            0xA1: self._op_sknp,
        }
        # keyed on kk
        self._misc_ops = {
            0x07: self._op_ld_vx_dt,
            0x0A: self._op_ld_vx_k,
            0x15: self._op_ld_dt_vx,
            0x18: self._op_ld_st_vx,
            0x1E: self._op_add_i,
            0x29: self._op_ld_f,
            0x33: self._op_ld_b,
            0x55: self._op_ld_mem_regs,
            0x65: self._op_ld_regs_mem,
        }

    # -- Memory access --

    def mem_read8(self, addr: int) -> int:
        return self.mem[addr % MEM_SIZE]

    def mem_write8(self, addr: int, val: int):
        self.mem[addr % MEM_SIZE] = val & 0xFF

    def load_bytes(self, addr: int, data: bytes | bytearray):
        """Write raw bytes into memory at the given address."""
        for i, b in enumerate(data):
            self.mem[(addr + i) % MEM_SIZE] = b

    def load_font(self):
        self.load_bytes(FONT_ADDR, FONT)

    def load_rom(self, data: bytes | bytearray):
        """Copy a program to 0x200 and point PC at it.

        The call stack and any pending key wait belong to the previous
        program and are dropped.
        """
        if len(data) > MAX_ROM_SIZE:
            raise RomError(f"ROM is {len(data)} bytes, "
                           f"at most {MAX_ROM_SIZE} fit above {PROGRAM_START:#x}")
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data
        self.pc = PROGRAM_START
        self.stack = []
        self.wait_state = WAIT_NONE
        self.wait_key = None

    # -- Fetch / decode --

    def fetch(self) -> Instruction:
        """Read the big-endian word at PC, advance PC by 2 and decode it."""
        word = (self.mem_read8(self.pc) << 8) | self.mem_read8(self.pc + 1)
        self.pc = (self.pc + 2) & 0xFFFF
        self.instruction = Instruction.decode(word)
        return self.instruction

    def _skip(self):
        self.pc = (self.pc + 2) & 0xFFFF

    # =====================================================================
    #  STEP
    # =====================================================================

    def step(self) -> Instruction:
        """Execute one instruction.  Returns the decoded instruction."""
        ins = self.fetch()
        self._families[ins.raw >> 12](ins)
        self.cycle_count += 1
        return ins

    def _unknown(self, ins: Instruction):
        # PC has already moved past the word
        log.warning("Unknown instruction %04X at %#05x",
                    ins.raw, (self.pc - 2) & 0xFFFF)

    # =====================================================================
    #  Family executors
    # =====================================================================

    # -- 0x0: CLS / RET / SYS --
    def _exec_sys(self, ins: Instruction):
        op = self._sys_ops.get(ins.kk)
        if op is None:
            self._op_sys(ins)
        else:
            op(ins)

    # -- 0x8: register ALU --
    def _exec_alu(self, ins: Instruction):
        op = self._alu_ops.get(ins.n)
        if op is None:
            self._unknown(ins)
        else:
            op(ins)

    # -- 0xE: key skips --
    def _exec_key(self, ins: Instruction):
        op = self._key_ops.get(ins.kk)
        if op is None:
            self._unknown(ins)
        else:
            op(ins)

    # -- 0xF: timers, index register, memory blocks --
    def _exec_misc(self, ins: Instruction):
        op = self._misc_ops.get(ins.kk)
        if op is None:
            self._unknown(ins)
        else:
            op(ins)

    # =====================================================================
    #  Opcodes
    # =====================================================================

    # 00E0
    def _op_cls(self, ins: Instruction):
        self.fb.clear()

    # 00EE
    def _op_ret(self, ins: Instruction):
        if not self.stack:
            raise StackUnderflowError((self.pc - 2) & 0xFFFF)
        self.pc = self.stack.pop()

    # 0NNN: machine-code routine on real hardware; ignored
    def _op_sys(self, ins: Instruction):
        log.debug("Ignoring SYS %03X", ins.nnn)

    # 1NNN
    def _op_jp(self, ins: Instruction):
        self.pc = ins.nnn

    # 2NNN
    def _op_call(self, ins: Instruction):
        if len(self.stack) >= STACK_DEPTH:
            raise StackOverflowError((self.pc - 2) & 0xFFFF)
        self.stack.append(self.pc)
        self.pc = ins.nnn

    # 3XKK
    def _op_se_imm(self, ins: Instruction):
        if self.v[ins.x] == ins.kk:
            self._skip()

    # 4XKK
    def _op_sne_imm(self, ins: Instruction):
        if self.v[ins.x] != ins.kk:
            self._skip()

    # 5XY0
    def _op_se_reg(self, ins: Instruction):
        if self.v[ins.x] == self.v[ins.y]:
            self._skip()

    # 6XKK
    def _op_ld_imm(self, ins: Instruction):
        self.v[ins.x] = ins.kk

    # 7XKK: no carry
    def _op_add_imm(self, ins: Instruction):
        self.v[ins.x] = (self.v[ins.x] + ins.kk) & 0xFF

    # 8XY0
    def _op_ld_reg(self, ins: Instruction):
        self.v[ins.x] = self.v[ins.y]

    # 8XY1
    def _op_or(self, ins: Instruction):
        self.v[ins.x] |= self.v[ins.y]

    # 8XY2
    def _op_and(self, ins: Instruction):
        self.v[ins.x] &= self.v[ins.y]

    # 8XY3
    def _op_xor(self, ins: Instruction):
        self.v[ins.x] ^= self.v[ins.y]

    # The flag is computed from the operands before Vx changes and written
    # after it, so VF holds the flag even when x == F.

    # 8XY4
    def _op_add_reg(self, ins: Instruction):
        total = self.v[ins.x] + self.v[ins.y]
        self.v[ins.x] = total & 0xFF
        self.v[VF] = 1 if total > 0xFF else 0

    # 8XY5
    def _op_sub(self, ins: Instruction):
        a, b = self.v[ins.x], self.v[ins.y]
        self.v[ins.x] = (a - b) & 0xFF
        self.v[VF] = 1 if a > b else 0

    # 8XY6: shifts Vx in place, Vy unused
    def _op_shr(self, ins: Instruction):
        a = self.v[ins.x]
        self.v[ins.x] = a >> 1
        self.v[VF] = a & 1

    # 8XY7
    def _op_subn(self, ins: Instruction):
        a, b = self.v[ins.x], self.v[ins.y]
        self.v[ins.x] = (b - a) & 0xFF
        self.v[VF] = 1 if b > a else 0

    # 8XYE
    def _op_shl(self, ins: Instruction):
        a = self.v[ins.x]
        self.v[ins.x] = (a << 1) & 0xFF
        self.v[VF] = (a >> 7) & 1

    # 9XY0
    def _op_sne_reg(self, ins: Instruction):
        if self.v[ins.x] != self.v[ins.y]:
            self._skip()

    # ANNN
    def _op_ld_i(self, ins: Instruction):
        self.i = ins.nnn

    # BNNN
    def _op_jp_v0(self, ins: Instruction):
        self.pc = ins.nnn + self.v[0]

    # CXKK
    def _op_rnd(self, ins: Instruction):
        self.v[ins.x] = self.rng.randrange(256) & ins.kk

    # DXYN
    def _op_drw(self, ins: Instruction):
        sprite = bytes(self.mem_read8(self.i + row) for row in range(ins.n))
        hit = self.fb.draw_sprite(self.v[ins.x], self.v[ins.y], sprite)
        self.v[VF] = 1 if hit else 0

    # EX9E
    def _op_skp(self, ins: Instruction):
        if self.keypad.is_down(self.v[ins.x]):
            self._skip()

    # EXA1
    def _op_sknp(self, ins: Instruction):
        if not self.keypad.is_down(self.v[ins.x]):
            self._skip()

    # FX07
    def _op_ld_vx_dt(self, ins: Instruction):
        self.v[ins.x] = self.timers.delay

    # FX0A
    def _op_ld_vx_k(self, ins: Instruction):
        """Block until a key is pressed and released; Vx = that key.

        Blocking means rewinding PC so the same word is fetched again on
        the next step.  The key seen going down is latched in wait_key and
        only that key's release completes the wait.
        """
        if self.wait_state == WAIT_RELEASE:
            if self.keypad.is_down(self.wait_key):
                self._rewind()
                return
            self.v[ins.x] = self.wait_key
            log.debug("Key wait done: V%X = %X", ins.x, self.wait_key)
            self.wait_state = WAIT_NONE
            self.wait_key = None
            return

        key = self.keypad.first_down()
        if key is None:
            self.wait_state = WAIT_PRESS
        else:
            self.wait_state = WAIT_RELEASE
            self.wait_key = key
        self._rewind()

    def _rewind(self):
        self.pc = (self.pc - 2) & 0xFFFF

    # FX15
    def _op_ld_dt_vx(self, ins: Instruction):
        self.timers.delay = self.v[ins.x]

    # FX18
    def _op_ld_st_vx(self, ins: Instruction):
        self.timers.sound = self.v[ins.x]

    # FX1E: I stays 16-bit, accesses through it wrap at 4 KiB
    def _op_add_i(self, ins: Instruction):
        self.i = (self.i + self.v[ins.x]) & 0xFFFF

    # FX29
    def _op_ld_f(self, ins: Instruction):
        self.i = FONT_ADDR + self.v[ins.x] * GLYPH_BYTES

    # FX33
    def _op_ld_b(self, ins: Instruction):
        val = self.v[ins.x]
        self.mem_write8(self.i, val // 100)
        self.mem_write8(self.i + 1, (val // 10) % 10)
        self.mem_write8(self.i + 2, val % 10)

    # FX55: I is left unchanged
    def _op_ld_mem_regs(self, ins: Instruction):
        for r in range(ins.x + 1):
            self.mem_write8(self.i + r, self.v[r])

    # FX65
    def _op_ld_regs_mem(self, ins: Instruction):
        for r in range(ins.x + 1):
            self.v[r] = self.mem_read8(self.i + r)

    # -- Reset helper --

    def reset(self):
        self.mem = bytearray(MEM_SIZE)
        self.v = [0] * NUM_REGS
        self.i = 0
        self.pc = PROGRAM_START
        self.stack = []
        self.wait_state = WAIT_NONE
        self.wait_key = None
        self.instruction = None
        self.cycle_count = 0
        self.load_font()

    # -- Debug / introspection --

    @property
    def waiting_for_key(self) -> bool:
        return self.wait_state != WAIT_NONE

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 8):
            lines.append("  " + "  ".join(
                f"V{r:X}={self.v[r]:02X}" for r in range(row, row + 8)))
        lines.append(f"  PC={self.pc:04X}  I={self.i:04X}  "
                     f"DT={self.timers.delay:02X}  ST={self.timers.sound:02X}  "
                     f"SP={len(self.stack)}")
        if self.waiting_for_key:
            key = "-" if self.wait_key is None else f"{self.wait_key:X}"
            lines.append(f"  waiting for key (latched: {key})")
        return "\n".join(lines)
