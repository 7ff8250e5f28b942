"""
CHIP-8 Peripheral / Device Layer
=================================
The three peripherals the CPU talks to:

  FrameBuffer  - 64 x 32 monochrome pixel grid, XOR sprite drawing,
                 collision detection and a dirty flag for the presenter
  Keypad       - 16 key states, written by the input collaborator
  TimerUnit    - delay and sound countdown timers, decremented at 60 Hz

Devices are pure state.  The system (system.py) advances them with
tick(); the CPU (chip8.py) reads and writes them while executing.
"""

from __future__ import annotations
from typing import Iterable, Iterator, Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

SCREEN_WIDTH  = 64
SCREEN_HEIGHT = 32
SPRITE_WIDTH  = 8
NUM_KEYS      = 16


# ---------------------------------------------------------------------------
#  Device base class
# ---------------------------------------------------------------------------

class Device:
    """Abstract peripheral."""

    def __init__(self, name: str):
        self.name = name

    def reset(self):
        """Return to power-on state."""
        pass

    def tick(self, frames: int = 1):
        """Advance the device by N 60 Hz frames. Override for timers etc."""
        pass


# ---------------------------------------------------------------------------
#  FrameBuffer: Display Buffer
# ---------------------------------------------------------------------------
# One byte per pixel (0 = off, 1 = on), row-major, index = y * width + x.
#
# Sprites are clipped at the right and bottom edges: a row stops at the
# first column past the edge and drawing stops at the first row past the
# bottom.  Only the origin wraps.  wrap=True switches to toroidal drawing
# for ROMs that expect it.

class FrameBuffer(Device):
    """64 x 32 XOR-drawn monochrome display buffer."""

    def __init__(self, width: int = SCREEN_WIDTH, height: int = SCREEN_HEIGHT,
                 wrap: bool = False):
        super().__init__("FrameBuffer")
        self.width = width
        self.height = height
        self.wrap = wrap
        self.pixels = bytearray(width * height)
        self.dirty: bool = False

    def reset(self):
        self.pixels = bytearray(self.width * self.height)
        self.dirty = True

    def get(self, x: int, y: int) -> bool:
        return bool(self.pixels[y * self.width + x])

    def set(self, x: int, y: int, on: bool):
        self.pixels[y * self.width + x] = 1 if on else 0
        self.dirty = True

    def clear(self):
        """Turn every pixel off."""
        for i in range(len(self.pixels)):
            self.pixels[i] = 0
        self.dirty = True

    def draw_sprite(self, x: int, y: int, sprite: bytes | bytearray) -> bool:
        """XOR an 8-pixel-wide sprite onto the grid at (x, y).

        Each byte of *sprite* is one row, most-significant bit leftmost.
        Returns True if any lit pixel was turned off.
        """
        w, h = self.width, self.height
        x0 = x % w
        y0 = y % h
        collision = False

        for row, bits in enumerate(sprite):
            py = y0 + row
            if py >= h:
                if not self.wrap:
                    break
                py %= h
            base = py * w
            for col in range(SPRITE_WIDTH):
                px = x0 + col
                if px >= w:
                    if not self.wrap:
                        break
                    px %= w
                if not (bits >> (7 - col)) & 1:
                    continue
                idx = base + px
                if self.pixels[idx]:
                    collision = True
                self.pixels[idx] ^= 1

        self.dirty = True
        return collision

    def consume_dirty(self) -> bool:
        """Return the dirty flag and clear it (one presentation per change)."""
        was = self.dirty
        self.dirty = False
        return was

    def lit_count(self) -> int:
        return sum(self.pixels)

    def rows(self) -> Iterator[bytes]:
        """Yield each row as bytes of 0/1."""
        for y in range(self.height):
            yield bytes(self.pixels[y * self.width:(y + 1) * self.width])

    def snapshot(self) -> bytes:
        return bytes(self.pixels)

    def render_text(self, on: str = "#", off: str = ".") -> str:
        return "\n".join(
            "".join(on if p else off for p in row) for row in self.rows()
        )


# ---------------------------------------------------------------------------
#  Keypad: Input State
# ---------------------------------------------------------------------------
# Keys 0x0-0xF.  Indices outside that range (a register can hold up to
# 0xFF) read as "not down".

class Keypad(Device):
    """16-key hex keypad state."""

    def __init__(self):
        super().__init__("Keypad")
        self.keys: list[bool] = [False] * NUM_KEYS

    def reset(self):
        self.keys = [False] * NUM_KEYS

    def press(self, key: int):
        self.keys[key] = True

    def release(self, key: int):
        self.keys[key] = False

    def set_state(self, states: Iterable[bool]):
        """Replace all 16 key states at once (e.g. from a polled keyboard)."""
        states = [bool(s) for s in states]
        if len(states) != NUM_KEYS:
            raise ValueError(f"Expected {NUM_KEYS} key states, got {len(states)}")
        self.keys = states

    def is_down(self, key: int) -> bool:
        return 0 <= key < NUM_KEYS and self.keys[key]

    def first_down(self) -> Optional[int]:
        """Lowest-numbered key currently down, or None."""
        for k, down in enumerate(self.keys):
            if down:
                return k
        return None


# ---------------------------------------------------------------------------
#  TimerUnit: Delay / Sound timers
# ---------------------------------------------------------------------------
# Both are 8-bit and count down once per tick() toward zero.  Only the CPU
# (FX15 / FX18) loads them; only tick() decrements them.

class TimerUnit(Device):
    """Delay and sound countdown timers (60 Hz)."""

    def __init__(self):
        super().__init__("TimerUnit")
        self._delay: int = 0
        self._sound: int = 0

    def reset(self):
        self._delay = 0
        self._sound = 0

    @property
    def delay(self) -> int:
        return self._delay

    @delay.setter
    def delay(self, value: int):
        self._delay = value & 0xFF

    @property
    def sound(self) -> int:
        return self._sound

    @sound.setter
    def sound(self, value: int):
        self._sound = value & 0xFF

    @property
    def sound_active(self) -> bool:
        """True while the tone should be playing."""
        return self._sound > 0

    def tick(self, frames: int = 1):
        if frames <= 0:
            return
        self._delay = max(0, self._delay - frames)
        self._sound = max(0, self._sound - frames)
