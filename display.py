"""
CHIP-8 Window, Keyboard and Beeper
===================================
The frame driver and the three outside-world collaborators of the
interpreter, in one pygame window:

  - presentation: the 64 x 32 buffer scaled up, redrawn only when dirty
  - audio: a looping 440 Hz square wave while the sound timer is nonzero
  - input: host keyboard → 16-key pad, space = pause, escape = quit

Everything runs on the calling thread.  Each pass of the loop is one
1/60 s frame: poll events, run_frame() (N steps + one timer tick),
present, update the tone, then let pygame's clock pace the frame.

Keyboard layout:

    1 2 3 4        1 2 3 C
    q w e r   →    4 5 6 D
    a s d f        7 8 9 E
    z x c v        A 0 B F

Usage (programmatic):
    from display import Chip8Display
    Chip8Display(sys_emu).run()        # returns when the machine halts
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from system import FRAME_RATE

if TYPE_CHECKING:
    from system import Chip8System

SCALE = 10

FG_COLOR = (0xD1, 0x69, 0xB6)   # pink
BG_COLOR = (0x38, 0x37, 0x4C)   # dark blue

# Beeper
SAMPLE_RATE    = 44100
SAMPLE_BUFFER  = 2048
TONE_HZ        = 440
TONE_AMPLITUDE = 5000

# pygame key name → CHIP-8 key
KEY_MAP = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}
PAUSE_KEY = "space"
QUIT_KEY  = "escape"


def square_wave(sample_rate: int = SAMPLE_RATE, freq: int = TONE_HZ,
                amplitude: int = TONE_AMPLITUDE):
    """One period of a signed 16-bit square wave, for looping playback."""
    import numpy as np

    period = max(2, sample_rate // freq)
    samples = np.full(period, -amplitude, dtype=np.int16)
    samples[period // 2:] = amplitude
    return samples


def framebuffer_rgb(fb, fg=FG_COLOR, bg=BG_COLOR):
    """Buffer → (width, height, 3) uint8 array, the layout surfarray wants."""
    import numpy as np

    grid = np.frombuffer(bytes(fb.pixels), dtype=np.uint8)
    grid = grid.reshape(fb.height, fb.width).T
    rgb = np.empty((fb.width, fb.height, 3), dtype=np.uint8)
    rgb[:, :] = bg
    rgb[grid != 0] = fg
    return rgb


class _InputMixin:
    """Host key → machine action, shared by the window and headless drivers."""

    system: "Chip8System"

    def handle_key(self, name: str, down: bool):
        if down and name == QUIT_KEY:
            self.system.halt()
        elif down and name == PAUSE_KEY:
            self.system.toggle_pause()
        elif name in KEY_MAP:
            if down:
                self.system.keypad.press(KEY_MAP[name])
            else:
                self.system.keypad.release(KEY_MAP[name])


class Chip8Display(_InputMixin):
    """pygame window driving a Chip8System at 60 frames per second."""

    def __init__(self, sys_emu: "Chip8System", scale: int = SCALE,
                 title: str = "CHIP-8"):
        self.system = sys_emu
        self.scale = max(1, scale)
        self.title = title
        self._tone = None
        self._tone_playing = False

    # -- public API -------------------------------------------------------

    def run(self):
        """Frame loop.  Returns once the machine is halted or the window closes."""
        import pygame

        fb = self.system.fb
        pygame.init()
        pygame.display.set_caption(self.title)
        screen = pygame.display.set_mode(
            (fb.width * self.scale, fb.height * self.scale))
        surface = pygame.Surface((fb.width, fb.height))
        clock = pygame.time.Clock()
        self._tone = self._init_audio(pygame)

        self._present(pygame, screen, surface)
        try:
            while not self.system.halted:
                for event in pygame.event.get():
                    self.handle_event(pygame, event)
                if self.system.halted:
                    break

                self.system.run_frame()

                if fb.consume_dirty():
                    self._present(pygame, screen, surface)
                self._update_tone()

                clock.tick(FRAME_RATE)
        finally:
            if self._tone is not None:
                self._tone.stop()
            pygame.quit()

    def handle_event(self, pygame, event):
        if event.type == pygame.QUIT:
            self.system.halt()
        elif event.type == pygame.KEYDOWN:
            self.handle_key(pygame.key.name(event.key), True)
        elif event.type == pygame.KEYUP:
            self.handle_key(pygame.key.name(event.key), False)

    # -- internals --------------------------------------------------------

    def _init_audio(self, pygame):
        try:
            import numpy as np

            pygame.mixer.init(frequency=SAMPLE_RATE, size=-16, channels=1,
                              buffer=SAMPLE_BUFFER)
            rate, _, channels = pygame.mixer.get_init()
            wave = square_wave(sample_rate=rate)
            if channels > 1:
                # the device may not grant mono
                wave = np.ascontiguousarray(np.column_stack([wave] * channels))
            return pygame.sndarray.make_sound(wave)
        except pygame.error as e:
            print(f"[display] audio unavailable, running silent: {e}",
                  file=sys.stderr)
            return None

    def _present(self, pygame, screen, surface):
        pygame.surfarray.blit_array(surface, framebuffer_rgb(self.system.fb))
        pygame.transform.scale(surface, screen.get_size(), screen)
        pygame.display.flip()

    def _update_tone(self):
        if self._tone is None:
            return
        if self.system.sound_on and not self._tone_playing:
            self._tone.play(loops=-1)
            self._tone_playing = True
        elif not self.system.sound_on and self._tone_playing:
            self._tone.stop()
            self._tone_playing = False


class HeadlessDisplay(_InputMixin):
    """Windowless frame driver; records what a real display would show."""

    def __init__(self, sys_emu: "Chip8System"):
        self.system = sys_emu
        self.snapshots: list[bytes] = []
        self.tone_log: list[tuple[int, bool]] = []   # (frame, tone on?)
        self._tone_on = False

    def run(self, frames: int) -> int:
        """Drive up to *frames* frames.  Returns how many were driven."""
        fb = self.system.fb
        done = 0
        for _ in range(frames):
            if self.system.halted:
                break
            self.system.run_frame()
            if fb.consume_dirty():
                self.snapshots.append(fb.snapshot())
            if self.system.sound_on != self._tone_on:
                self._tone_on = self.system.sound_on
                self.tone_log.append((self.system.frame_count, self._tone_on))
            done += 1
        return done

    @property
    def tone_on(self) -> bool:
        return self._tone_on

    def screen_text(self) -> str:
        return self.system.fb.render_text()
