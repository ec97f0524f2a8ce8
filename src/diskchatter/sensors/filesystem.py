"""
Filesystem Sensor — recursive directory watch feeding the coordinator.

watchdog delivers events on its observer thread; each one is stamped and
handed to the event loop, where the coordinator decides whether it starts
a feedback cycle.
"""

import asyncio
import fnmatch
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from diskchatter.core.config import DiskChatterConfig
from diskchatter.types import ActivityEvent

logger = logging.getLogger("diskchatter.sensors")

Notify = Callable[[ActivityEvent], Awaitable[object]]

# watchdog event type -> our event kind
EVENT_KINDS = {
    "created": "created",
    "modified": "modified",
    "deleted": "deleted",
    "moved": "renamed",
    "closed": "modified",
}


def resolve_watch_targets(directories: List[str]) -> List[Path]:
    """Expand configured directories and keep the ones that exist."""
    targets = []
    for directory in directories:
        resolved = DiskChatterConfig.expand_directory(directory)
        if resolved.is_dir():
            targets.append(resolved)
        else:
            logger.warning(f"Directory not found: {resolved}")
    return targets


class _WatchdogHandler(FileSystemEventHandler):
    """Stamps watchdog events and forwards them to a callback."""

    def __init__(self, dispatch: Callable[[ActivityEvent], None],
                 ignore_patterns: List[str], include_directories: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self._dispatch = dispatch
        self._ignore_patterns = ignore_patterns
        self._include_directories = include_directories
        self._clock = clock

    def _should_ignore(self, path: str) -> bool:
        name = Path(path).name
        for pattern in self._ignore_patterns:
            if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(path, pattern):
                return True
        return False

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory and not self._include_directories:
            return
        kind = EVENT_KINDS.get(event.event_type)
        if not kind:
            return
        src = event.src_path
        if isinstance(src, bytes):
            src = src.decode(errors="replace")
        if self._should_ignore(src):
            return
        self._dispatch(ActivityEvent(timestamp=self._clock(), kind=kind, path=src))


class FileSystemSensor:
    """Watch directories with watchdog (event-driven, not polling)."""
    name = "filesystem"

    def __init__(self, config: DiskChatterConfig, notify: Notify,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._notify = notify
        self._clock = clock
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Optional[Observer] = None
        self._handler: Optional[_WatchdogHandler] = None
        self.targets: List[Path] = []

    @property
    def watch_count(self) -> int:
        return len(self.targets)

    @property
    def has_targets(self) -> bool:
        return bool(self.targets)

    def start(self, loop: asyncio.AbstractEventLoop) -> int:
        """Schedule a recursive watch per existing directory. Returns the count.

        Zero means there is nothing to watch; no observer is started then.
        """
        self._loop = loop
        self.targets = resolve_watch_targets(self.config.config.directories)
        if not self.targets:
            logger.error("No valid directories to monitor")
            return 0

        self._handler = _WatchdogHandler(
            dispatch=self._dispatch,
            ignore_patterns=self.config.watch.ignore_patterns,
            include_directories=self.config.watch.include_directories,
            clock=self._clock,
        )
        self._observer = Observer()
        scheduled = []
        for target in self.targets:
            try:
                self._observer.schedule(self._handler, str(target), recursive=True)
                scheduled.append(target)
                logger.info(f"Monitoring directory: {target}")
            except OSError as e:
                logger.error(f"Failed to create watcher for directory {target}: {e}")
        self.targets = scheduled
        if not self.targets:
            self._observer = None
            return 0

        self._observer.daemon = True
        self._observer.start()
        logger.info(f"FileSystem sensor watching {len(self.targets)} directories via watchdog")
        return len(self.targets)

    def _dispatch(self, event: ActivityEvent):
        """Called on the watchdog thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        coro = self._notify(event)
        try:
            asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError as e:
            coro.close()
            logger.debug(f"Dropping event, loop unavailable: {e}")

    def stop(self):
        """Stop the watchdog observer."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("FileSystem sensor stopped")
