"""
CHIP-8 System Emulator
=======================
Wires together:
  - the Chip8 CPU (chip8.py)
  - the peripherals (devices.py): FrameBuffer, Keypad, TimerUnit
  - the run state (Running / Paused / Halted) and the frame cadence

An external frame driver (display.py) calls run_frame() sixty times a
second.  Each frame executes ips // 60 instructions and then ticks the
timers once; the system itself never sleeps.
"""

from __future__ import annotations
import logging
import random
from typing import Optional

from chip8 import Chip8, Chip8Error, HaltError, Instruction
from devices import FrameBuffer, Keypad, TimerUnit

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

FRAME_RATE  = 60      # timer / display refresh, Hz
DEFAULT_IPS = 700     # instructions per second

# Run states
STATE_HALTED  = 0
STATE_PAUSED  = 1
STATE_RUNNING = 2

STATE_NAMES = {
    STATE_HALTED: "halted",
    STATE_PAUSED: "paused",
    STATE_RUNNING: "running",
}


class Chip8System:
    """A complete CHIP-8 machine: CPU + display + keypad + timers."""

    def __init__(self, ips: int = DEFAULT_IPS, sprite_wrap: bool = False,
                 seed: Optional[int] = None):
        if ips <= 0:
            raise ValueError(f"Instruction rate must be positive, got {ips}")
        self.ips = ips
        self.seed = seed

        self.fb = FrameBuffer(wrap=sprite_wrap)
        self.keypad = Keypad()
        self.timers = TimerUnit()
        self.devices = [self.fb, self.keypad, self.timers]

        self.cpu = Chip8(fb=self.fb, keypad=self.keypad, timers=self.timers,
                         rng=random.Random(seed))

        self.state: int = STATE_RUNNING
        self.frame_count: int = 0

    # -- Loading --

    def load_rom(self, data: bytes | bytearray):
        """Copy a program to 0x200 and point PC at it."""
        self.cpu.load_rom(data)
        log.debug("Loaded %d-byte ROM", len(data))

    def load_rom_file(self, path: str):
        with open(path, "rb") as f:
            data = f.read()
        self.load_rom(data)
        return len(data)

    # -- Execution --

    @property
    def steps_per_frame(self) -> int:
        return max(1, self.ips // FRAME_RATE)

    def step(self) -> Instruction:
        """Execute one instruction.

        A fault raised by the CPU (stack over/underflow) halts the machine
        and propagates to the caller.
        """
        if self.state == STATE_HALTED:
            raise HaltError("Machine is halted")
        try:
            return self.cpu.step()
        except Chip8Error as e:
            log.error("Fatal: %s", e)
            self.state = STATE_HALTED
            raise

    def tick(self):
        """Advance every device by one 60 Hz frame."""
        for dev in self.devices:
            dev.tick(1)
        self.frame_count += 1

    def run_frame(self) -> int:
        """One 1/60 s frame: steps_per_frame steps then one tick().

        Does nothing unless running.  Returns the number of instructions
        executed.
        """
        if self.state != STATE_RUNNING:
            return 0
        n = self.steps_per_frame
        for _ in range(n):
            self.step()
        self.tick()
        return n

    def run_frames(self, frames: int) -> int:
        """Run up to *frames* frames, stopping early if halted."""
        total = 0
        for _ in range(frames):
            if self.state == STATE_HALTED:
                break
            total += self.run_frame()
        return total

    # -- Run state --

    def toggle_pause(self):
        if self.state == STATE_RUNNING:
            self.state = STATE_PAUSED
        elif self.state == STATE_PAUSED:
            self.state = STATE_RUNNING

    def halt(self):
        self.state = STATE_HALTED

    @property
    def halted(self) -> bool:
        return self.state == STATE_HALTED

    @property
    def paused(self) -> bool:
        return self.state == STATE_PAUSED

    @property
    def sound_on(self) -> bool:
        return self.timers.sound_active

    def reset(self):
        """Power-on state.  The ROM has to be loaded again.

        A seeded machine restarts its random stream from the same seed.
        """
        self.cpu.reset()
        self.cpu.rng.seed(self.seed)
        for dev in self.devices:
            dev.reset()
        self.state = STATE_RUNNING
        self.frame_count = 0

    # -- Debug / introspection --

    def dump_state(self) -> str:
        lines = [f"  state={STATE_NAMES[self.state]}  frame={self.frame_count}  "
                 f"cycles={self.cpu.cycle_count}  ips={self.ips}"]
        lines.append(self.cpu.dump_regs())
        return "\n".join(lines)
