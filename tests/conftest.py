"""Shared test doubles for the GPIO line and the audio player."""
import asyncio
import sys
from pathlib import Path

import pytest


class FakeLine:
    """Records every level written to the pin."""

    def __init__(self, pin: int):
        self.pin = pin
        self.level = False
        self.writes = []
        self.closed = False

    def write(self, high: bool):
        if self.closed:
            raise RuntimeError("line closed")
        self.level = high
        self.writes.append(high)

    def close(self):
        self.level = False
        self.closed = True


class FlakyLine(FakeLine):
    """Opens fine, then fails every time it is driven high."""

    def write(self, high: bool):
        if high:
            raise OSError("pin write failed")
        super().write(high)


class LineFactory:
    """Line factory that keeps the lines it hands out."""

    def __init__(self, line_cls=FakeLine):
        self.line_cls = line_cls
        self.lines = []

    def __call__(self, pin: int):
        line = self.line_cls(pin)
        self.lines.append(line)
        return line

    @property
    def line(self) -> FakeLine:
        return self.lines[-1]


def broken_factory(pin: int):
    raise RuntimeError("This module can only be run on a Raspberry Pi!")


def sleeper_command(seconds: float):
    """Player command that 'plays' for ``seconds``. The clip path is ignored."""
    return [sys.executable, "-c", f"import time; time.sleep({seconds})"]


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll ``predicate`` on the running loop until it is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def line_factory():
    return LineFactory()


@pytest.fixture
def clip(tmp_path) -> Path:
    """A placeholder sound file; the fake players never read it."""
    path = tmp_path / "seek.wav"
    path.write_bytes(b"RIFF\x00\x00\x00\x00WAVE")
    return path
