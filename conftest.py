"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest              # everything
    python -m pytest -m "not display"

SDL is pointed at its dummy video and audio drivers before anything can
import pygame, so the window paths run on machines without a display.
"""

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests that open a (dummy) pygame window")
