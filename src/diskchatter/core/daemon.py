"""
DiskChatter Daemon — process lifetime around the activity coordinator.

Resolves the watch directories, builds the indicator, the playback slot and
the coordinator, starts the filesystem sensor and then idles until SIGINT
or SIGTERM. Shutdown stops the sensor first so no new cycle can begin,
then tears down the coordinator with a bounded wait.
"""

import asyncio
import fcntl
import logging
import os
import signal
import time
from pathlib import Path
from typing import Optional

from diskchatter.coordinator import ActivityCoordinator
from diskchatter.core.config import DiskChatterConfig
from diskchatter.indicator import GpioLine, IndicatorDriver, LineFactory
from diskchatter.playback import PlaybackSlot
from diskchatter.sensors.filesystem import FileSystemSensor, resolve_watch_targets
from diskchatter.window import ActivityWindow

logger = logging.getLogger("diskchatter")

EXIT_OK = 0
EXIT_NO_TARGETS = 1
EXIT_ALREADY_RUNNING = 1


class AlreadyRunningError(RuntimeError):
    pass


class DiskChatterDaemon:
    """Main daemon process."""

    def __init__(self, config: Optional[DiskChatterConfig] = None, config_path: Optional[str] = None,
                 line_factory: LineFactory = GpioLine):
        self.config = config or DiskChatterConfig.load(config_path)
        self.line_factory = line_factory
        self.start_time: Optional[float] = None
        self.coordinator: Optional[ActivityCoordinator] = None
        self.sensor: Optional[FileSystemSensor] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._pid_fd = None

    def run(self) -> int:
        """Start the daemon. Blocks until shutdown and returns the exit code."""
        try:
            self._write_pid()
        except AlreadyRunningError as e:
            logger.error(str(e))
            return EXIT_ALREADY_RUNNING

        self.start_time = time.time()
        logger.info("DiskChatter starting")
        logger.info(f"   GPIO pin: {self.config.config.gpio_pin}")
        logger.info(f"   Short clip: {self.config.sounds.short_activity or '(none)'}")
        logger.info(f"   Long clip: {self.config.sounds.long_activity or '(none)'}")

        try:
            return asyncio.run(self.serve())
        except KeyboardInterrupt:
            logger.info("DiskChatter interrupted — shutting down")
            return EXIT_OK
        finally:
            self._release_pid()
            logger.info("DiskChatter stopped")

    async def serve(self) -> int:
        """Run until a shutdown is requested."""
        loop = asyncio.get_running_loop()
        self._shutdown = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not on the main thread, or no signal support on this loop.
                pass

        if not resolve_watch_targets(self.config.config.directories):
            logger.error("No valid directories to monitor. Service will exit.")
            return EXIT_NO_TARGETS

        self.coordinator = self._build_coordinator()
        self.sensor = FileSystemSensor(self.config, self.coordinator.notify)
        try:
            if self.sensor.start(loop) == 0:
                return EXIT_NO_TARGETS
            logger.info(f"DiskChatter started. Monitoring {self.sensor.watch_count} directories.")
            await self._shutdown.wait()
            logger.info("File system monitor is stopping...")
        finally:
            self.sensor.stop()
            # Internally bounded by daemon.shutdown_timeout.
            await self.coordinator.shutdown()
        return EXIT_OK

    def request_shutdown(self):
        """Handle shutdown signal from asyncio loop."""
        logger.info("Received shutdown signal — initiating shutdown")
        if self._shutdown is not None:
            self._shutdown.set()

    def _build_coordinator(self) -> ActivityCoordinator:
        cfg = self.config
        indicator = IndicatorDriver(
            pin=cfg.config.gpio_pin,
            line_factory=self.line_factory,
            min_interval=cfg.indicator.min_interval,
            max_interval=cfg.indicator.max_interval,
            stop_timeout=cfg.indicator.stop_timeout,
        )
        playback = PlaybackSlot(
            base_path=str(cfg.sound_base_path()),
            volume=cfg.config.volume,
            default_duration=cfg.playback.default_duration,
            stop_timeout=cfg.playback.stop_timeout,
            probe=cfg.playback.probe,
            mixer_control=cfg.playback.mixer_control,
            player_command=cfg.playback.player_command or None,
        )
        window = ActivityWindow(
            window_seconds=cfg.activity.window_seconds,
            burst_threshold=cfg.activity.burst_threshold,
        )
        return ActivityCoordinator(
            indicator=indicator,
            playback=playback,
            short_sound=cfg.sounds.short_activity,
            long_sound=cfg.sounds.long_activity,
            window=window,
            shutdown_timeout=cfg.daemon.shutdown_timeout,
        )

    def _write_pid(self):
        """Write PID file with exclusive lock to prevent two daemons sharing the pin."""
        pid_path = Path(self.config.daemon.pid_file).expanduser()
        pid_path.parent.mkdir(parents=True, exist_ok=True)

        # Check for stale PID
        if pid_path.exists():
            try:
                old_pid = int(pid_path.read_text().strip())
                os.kill(old_pid, 0)  # signal 0 = check if alive
                if old_pid != os.getpid():
                    raise AlreadyRunningError(f"Another DiskChatter instance is running (PID {old_pid}).")
            except (ValueError, ProcessLookupError, PermissionError):
                logger.info("Removing stale PID file")
                pid_path.unlink(missing_ok=True)

        # Open with exclusive lock (held for daemon lifetime)
        self._pid_fd = open(pid_path, "w")
        try:
            fcntl.flock(self._pid_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            self._pid_fd.close()
            self._pid_fd = None
            raise AlreadyRunningError("Could not acquire PID lock — another instance running?")

        self._pid_fd.write(str(os.getpid()))
        self._pid_fd.flush()

    def _release_pid(self):
        """Release PID lock and remove file."""
        if not self._pid_fd:
            return
        pid_path = Path(self.config.daemon.pid_file).expanduser()
        try:
            fcntl.flock(self._pid_fd, fcntl.LOCK_UN)
            self._pid_fd.close()
        except OSError as e:
            logger.warning(f"Could not release PID lock: {e}")
        self._pid_fd = None
        pid_path.unlink(missing_ok=True)
