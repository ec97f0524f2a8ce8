"""
Indicator Driver — fakes drive-activity LED flicker on a GPIO line.

While pulsing, a background task drives the line through an irregular
high/low pattern, each phase lasting a random time between
``min_interval`` and ``max_interval``. Stopping cancels that task, waits
(bounded) for it to exit and then forces the line low, so the LED is never
left lit once ``stop()`` returns.

On hosts without GPIO (laptops, CI, a Pi without permissions) the driver
degrades to a no-op and logs one warning; the sound side keeps working.
"""

import asyncio
import logging
import random
from typing import Callable, Optional

from diskchatter.types import IndicatorState

logger = logging.getLogger("diskchatter.indicator")

DEFAULT_MIN_INTERVAL = 0.1
DEFAULT_MAX_INTERVAL = 0.5
DEFAULT_STOP_TIMEOUT = 2.0


class GpioLine:
    """A single BCM-numbered output pin driven through RPi.GPIO."""

    def __init__(self, pin: int):
        # Imported here: RPi.GPIO raises at import time on non-Pi hosts.
        import RPi.GPIO as GPIO

        self._gpio = GPIO
        self.pin = pin
        GPIO.setwarnings(False)
        GPIO.setmode(GPIO.BCM)
        GPIO.setup(pin, GPIO.OUT, initial=GPIO.LOW)
        self.level = False

    def write(self, high: bool):
        self._gpio.output(self.pin, self._gpio.HIGH if high else self._gpio.LOW)
        self.level = high

    def close(self):
        try:
            self.write(False)
        finally:
            self._gpio.cleanup(self.pin)


class NullLine:
    """Stands in for the pin when hardware is unavailable."""

    def __init__(self, pin: int = -1):
        self.pin = pin
        self.level = False

    def write(self, high: bool):
        self.level = high

    def close(self):
        self.level = False


LineFactory = Callable[[int], object]


class IndicatorDriver:
    """Owns one output line and the pulse task that flickers it."""

    def __init__(
        self,
        pin: int,
        line_factory: LineFactory = GpioLine,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        rng: Optional[random.Random] = None,
    ):
        if min_interval <= 0 or max_interval < min_interval:
            raise ValueError(f"invalid pulse interval [{min_interval}, {max_interval}]")
        self.pin = pin
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.stop_timeout = stop_timeout
        self._rng = rng or random.Random()
        self._state = IndicatorState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._closed = False
        self.available = True

        try:
            self._line = line_factory(pin)
            self._line.write(False)
            logger.info(f"GPIO indicator initialized on pin {pin}")
        except Exception as e:
            self._degrade(f"Failed to initialize GPIO on pin {pin}: {e}")

    @property
    def state(self) -> IndicatorState:
        return self._state

    @property
    def level(self) -> bool:
        """Last level written to the line (True = high)."""
        return bool(getattr(self._line, "level", False))

    async def start(self):
        """Begin pulsing. Restarts the pulse task if one is already running."""
        if not self.available or self._closed:
            return
        async with self._lock:
            if self._task is not None:
                await self._stop_locked()
            self._task = asyncio.create_task(self._pulse_loop(), name=f"indicator-pulse-{self.pin}")
            self._state = IndicatorState.PULSING
            logger.debug(f"Started fake activity on pin {self.pin}")

    async def stop(self):
        """Cancel the pulse task (bounded wait) and force the line low."""
        async with self._lock:
            await self._stop_locked()

    async def close(self):
        """Stop pulsing and release the line."""
        if self._closed:
            return
        await self.stop()
        self._closed = True
        try:
            self._line.close()
            logger.info(f"GPIO indicator on pin {self.pin} released")
        except Exception as e:
            logger.warning(f"Error releasing GPIO pin {self.pin}: {e}")

    async def _stop_locked(self):
        task, self._task = self._task, None
        try:
            if task is not None and not task.done():
                task.cancel()
                done, _ = await asyncio.wait({task}, timeout=self.stop_timeout)
                if not done:
                    logger.warning(
                        f"Pulse task on pin {self.pin} did not exit within {self.stop_timeout}s"
                    )
        finally:
            self._write(False)
            if self._state is IndicatorState.PULSING:
                logger.debug(f"Stopped fake activity on pin {self.pin}")
            self._state = IndicatorState.IDLE

    async def _pulse_loop(self):
        try:
            while True:
                self._write(True)
                await asyncio.sleep(self._phase())
                self._write(False)
                await asyncio.sleep(self._phase())
        except Exception as e:
            logger.error(f"Error in fake GPIO activity: {e}", exc_info=True)

    def _phase(self) -> float:
        return self._rng.uniform(self.min_interval, self.max_interval)

    def _write(self, high: bool):
        try:
            self._line.write(high)
        except Exception as e:
            self._degrade(f"GPIO write to pin {self.pin} failed: {e}")

    def _degrade(self, reason: str):
        """Switch to a no-op line. Logs once per driver."""
        if self.available:
            logger.warning(f"{reason}. GPIO indicator disabled.")
        self.available = False
        line = getattr(self, "_line", None)
        if line is not None and not isinstance(line, NullLine):
            try:
                line.close()
            except Exception as e:
                logger.debug(f"Could not release GPIO pin {self.pin} after failure: {e}")
        self._line = NullLine(self.pin)
