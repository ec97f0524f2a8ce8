"""Tests for the activity coordinator — single-flight feedback cycles."""

import asyncio
import random

from conftest import sleeper_command, wait_until
from diskchatter.coordinator import ActivityCoordinator
from diskchatter.indicator import IndicatorDriver
from diskchatter.playback import PlaybackSlot
from diskchatter.types import ActivityEvent, CoordinatorState, IndicatorState, SlotState
from diskchatter.window import ActivityWindow


class FakePlayback:
    """Stands in for PlaybackSlot; records what the indicator looked like."""

    def __init__(self, indicator: IndicatorDriver, gate: asyncio.Event = None, error: Exception = None):
        self.indicator = indicator
        self.gate = gate
        self.error = error
        self.played = []
        self.indicator_during_play = []
        self.stopped = 0
        self.closed = False

    async def play(self, sound: str) -> float:
        self.played.append(sound)
        self.indicator_during_play.append(self.indicator.state)
        if self.error:
            raise self.error
        if self.gate is not None:
            await self.gate.wait()
        return 1.5

    async def stop_current(self):
        self.stopped += 1

    async def close(self):
        self.closed = True


class CountingIndicator(IndicatorDriver):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.starts = 0
        self.stops = 0
        self.transitions = []

    async def start(self):
        self.starts += 1
        before = self.state
        await super().start()
        self.transitions.append((before, self.state))

    async def stop(self):
        self.stops += 1
        before = self.state
        await super().stop()
        self.transitions.append((before, self.state))


class ExplodingIndicator(CountingIndicator):
    async def start(self):
        await super().start()
        raise RuntimeError("indicator blew up")


def _indicator(line_factory, cls=CountingIndicator):
    return cls(4, line_factory=line_factory, min_interval=0.01, max_interval=0.02, rng=random.Random(3))


def _coordinator(indicator, playback, **kwargs) -> ActivityCoordinator:
    return ActivityCoordinator(
        indicator=indicator,
        playback=playback,
        short_sound="short.wav",
        long_sound="long.wav",
        **kwargs,
    )


def _event(t: float) -> ActivityEvent:
    return ActivityEvent(timestamp=t, kind="modified", path="/dos/C/GAME.SAV")


class TestCycle:
    def test_single_event_plays_short_clip(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback)
            ran = await coordinator.notify(_event(0.0))
            return coordinator, indicator, playback, ran

        coordinator, indicator, playback, ran = asyncio.run(_run())
        assert ran is True
        assert playback.played == ["short.wav"]
        assert playback.indicator_during_play == [IndicatorState.PULSING]
        assert indicator.state is IndicatorState.IDLE
        assert line_factory.line.level is False
        assert coordinator.state is CoordinatorState.IDLE
        assert coordinator.cycles_completed == 1

    def test_burst_plays_long_clip(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback)
            for t in (100.0, 100.6, 101.8):
                await coordinator.notify(_event(t))
            return indicator, playback

        indicator, playback = asyncio.run(_run())
        assert playback.played == ["short.wav", "short.wav", "long.wav"]
        # Idle -> Pulsing on start, Pulsing -> Idle on stop, every cycle
        assert indicator.transitions == [
            (IndicatorState.IDLE, IndicatorState.PULSING),
            (IndicatorState.PULSING, IndicatorState.IDLE),
        ] * 3
        assert line_factory.line.level is False

    def test_event_without_timestamp_uses_clock(self, line_factory):
        times = iter([5.0, 5.1, 5.2])

        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback, clock=lambda: next(times))
            for _ in range(3):
                await coordinator.notify()
            return coordinator, playback

        coordinator, playback = asyncio.run(_run())
        assert playback.played[-1] == "long.wav"
        assert coordinator.window.timestamps() == [5.0, 5.1, 5.2]

    def test_custom_window(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback,
                                       window=ActivityWindow(window_seconds=1.0, burst_threshold=2))
            await coordinator.notify(_event(0.0))
            await coordinator.notify(_event(0.5))
            return playback

        assert asyncio.run(_run()).played == ["short.wav", "long.wav"]


class TestSingleFlight:
    def test_notify_during_cycle_is_dropped(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            gate = asyncio.Event()
            playback = FakePlayback(indicator, gate=gate)
            coordinator = _coordinator(indicator, playback)

            first = asyncio.create_task(coordinator.notify(_event(0.0)))
            await wait_until(lambda: coordinator.state is CoordinatorState.CYCLING and playback.played)
            dropped = await coordinator.notify(_event(0.1))
            also_dropped = await coordinator.notify(_event(0.2))
            gate.set()
            return coordinator, indicator, playback, await first, dropped, also_dropped

        coordinator, indicator, playback, first, dropped, also_dropped = asyncio.run(_run())
        assert first is True
        assert dropped is False and also_dropped is False
        assert indicator.starts == 1
        assert playback.played == ["short.wav"]
        assert coordinator.events_dropped == 2
        # dropped notifications never reach the window
        assert coordinator.window.timestamps() == [0.0]

    def test_second_cycle_after_first_finishes(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback)
            await coordinator.notify(_event(0.0))
            await coordinator.notify(_event(10.0))
            return coordinator

        coordinator = asyncio.run(_run())
        assert coordinator.cycles_completed == 2
        assert coordinator.events_dropped == 0


class TestCleanup:
    def test_playback_error_still_stops_indicator(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator, error=RuntimeError("boom"))
            coordinator = _coordinator(indicator, playback)
            ran = await coordinator.notify(_event(0.0))
            # lock released: a later event gets its own cycle
            playback.error = None
            again = await coordinator.notify(_event(10.0))
            return coordinator, indicator, ran, again

        coordinator, indicator, ran, again = asyncio.run(_run())
        assert ran is True and again is True
        assert indicator.state is IndicatorState.IDLE
        assert line_factory.line.level is False
        assert coordinator.cycles_completed == 1
        assert coordinator.state is CoordinatorState.IDLE

    def test_indicator_error_still_forces_low(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory, cls=ExplodingIndicator)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback)
            await coordinator.notify(_event(0.0))
            return indicator, playback

        indicator, playback = asyncio.run(_run())
        assert playback.played == []
        assert indicator.stops == 1
        assert indicator.state is IndicatorState.IDLE
        assert line_factory.line.level is False


class TestShutdown:
    def test_shutdown_mid_cycle(self, tmp_path, clip, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = PlaybackSlot(base_path=str(tmp_path), probe=False,
                                    player_command=sleeper_command(10))
            coordinator = ActivityCoordinator(indicator, playback, clip.name, clip.name)
            task = asyncio.create_task(coordinator.notify(_event(0.0)))
            await wait_until(lambda: playback.is_playing)
            proc = playback._proc
            await asyncio.wait_for(coordinator.shutdown(), timeout=5)
            late = await coordinator.notify(_event(1.0))
            return coordinator, indicator, playback, proc, task, late

        coordinator, indicator, playback, proc, task, late = asyncio.run(_run())
        assert task.done()
        assert proc.returncode is not None
        assert playback._proc is None
        assert playback.state is SlotState.EMPTY
        assert indicator.state is IndicatorState.IDLE
        assert line_factory.line.level is False
        assert line_factory.line.closed
        assert late is False
        assert coordinator.closed

    def test_shutdown_when_idle_is_idempotent(self, line_factory):
        async def _run():
            indicator = _indicator(line_factory)
            playback = FakePlayback(indicator)
            coordinator = _coordinator(indicator, playback)
            await coordinator.shutdown()
            await coordinator.shutdown()
            return playback

        playback = asyncio.run(_run())
        assert playback.stopped == 1
        assert playback.closed
        assert line_factory.line.closed
