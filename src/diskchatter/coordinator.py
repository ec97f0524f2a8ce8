"""
Activity Coordinator — turns filesystem notifications into feedback cycles.

A feedback cycle is: classify the notification, start the LED flicker,
play the short or long seek clip to completion, stop the flicker. Only
one cycle runs at a time. Notifications that arrive mid-cycle are
dropped rather than queued, so a burst of writes yields one cycle instead
of a backlog of overlapping ones.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from diskchatter.indicator import IndicatorDriver
from diskchatter.playback import PlaybackSlot
from diskchatter.types import ActivityClass, ActivityEvent, CoordinatorState
from diskchatter.window import ActivityWindow

logger = logging.getLogger("diskchatter.coordinator")

DEFAULT_SHUTDOWN_TIMEOUT = 5.0


class ActivityCoordinator:
    """Single-flight sequencing of the indicator and the playback slot."""

    def __init__(
        self,
        indicator: IndicatorDriver,
        playback: PlaybackSlot,
        short_sound: str,
        long_sound: str,
        window: Optional[ActivityWindow] = None,
        clock: Callable[[], float] = time.monotonic,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ):
        self.indicator = indicator
        self.playback = playback
        self.short_sound = short_sound
        self.long_sound = long_sound
        self.window = window or ActivityWindow()
        self.clock = clock
        self.shutdown_timeout = shutdown_timeout
        self._lock = asyncio.Lock()
        self._state = CoordinatorState.IDLE
        self._cycle_task: Optional[asyncio.Task] = None
        self._closed = False
        self._cycles_completed = 0
        self._events_dropped = 0

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed

    @property
    def events_dropped(self) -> int:
        return self._events_dropped

    @property
    def closed(self) -> bool:
        return self._closed

    async def notify(self, event: Optional[ActivityEvent] = None) -> bool:
        """Run one feedback cycle for ``event``, or drop it if one is in flight.

        Returns True when a cycle ran. Never raises for cycle failures.
        """
        if self._closed:
            logger.debug("Coordinator shut down, ignoring event")
            return False
        if self._lock.locked():
            self._events_dropped += 1
            logger.debug("Activity already being processed, ignoring event")
            return False

        async with self._lock:
            self._cycle_task = asyncio.current_task()
            self._state = CoordinatorState.CYCLING
            try:
                await self._run_cycle(event)
                self._cycles_completed += 1
            except Exception as e:
                logger.error(f"Error handling filesystem activity: {e}", exc_info=True)
            finally:
                try:
                    await self.indicator.stop()
                except Exception as e:
                    logger.warning(f"Could not stop indicator after cycle: {e}")
                finally:
                    self._state = CoordinatorState.IDLE
                    self._cycle_task = None
        return True

    async def _run_cycle(self, event: Optional[ActivityEvent]):
        now = event.timestamp if event is not None else self.clock()
        activity = self.window.record(now)
        count = self.window.count
        sound = self.long_sound if activity is ActivityClass.SUSTAINED else self.short_sound

        if event is not None:
            logger.info(f"File system activity detected: {event.kind} - {event.path}")
        logger.info(
            f"Playing {activity.value} activity sound ({count} events in window)",
            extra={"event": "cycle", "activity": activity.value, "events_in_window": count, "sound": sound},
        )

        await self.indicator.start()
        duration = await self.playback.play(sound)
        logger.debug(f"Cycle finished after ~{duration:.1f}s of audio")

    async def shutdown(self):
        """Stop accepting events, abort any cycle and release both channels."""
        if self._closed:
            return
        self._closed = True
        logger.info("Stopping activity coordinator")

        await self.playback.stop_current()

        task = self._cycle_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            done, _ = await asyncio.wait({task}, timeout=self.shutdown_timeout)
            if not done:
                logger.warning(f"Feedback cycle did not finish within {self.shutdown_timeout}s")

        try:
            await self.indicator.close()
        except Exception as e:
            logger.warning(f"Error closing indicator: {e}")
        try:
            await self.playback.close()
        except Exception as e:
            logger.warning(f"Error closing playback: {e}")
        logger.info(
            f"Coordinator stopped — {self._cycles_completed} cycles, {self._events_dropped} events dropped"
        )
