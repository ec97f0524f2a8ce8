"""
Playback Slot — exclusive owner of one audio-player subprocess.

Clips are played by spawning the platform's stock player (aplay, afplay,
PowerShell SoundPlayer) and waiting for it to exit. Only one clip plays at
a time: a request that arrives while a clip is playing is rejected, never
queued. Playback problems are logged and reported as a zero-length play;
they never propagate to the caller.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from diskchatter.types import SlotState

logger = logging.getLogger("diskchatter.playback")

DEFAULT_DURATION = 2.0
DEFAULT_STOP_TIMEOUT = 1.0
PROBE_TIMEOUT = 5.0


def build_play_command(path: Path, volume: Optional[int] = None,
                       platform: str = sys.platform) -> Optional[List[str]]:
    """Command line that plays ``path`` to completion, or None if unsupported."""
    if platform.startswith("linux"):
        return ["aplay", "-q", str(path)]
    if platform == "darwin":
        cmd = ["afplay"]
        if volume is not None:
            cmd += ["-v", f"{volume / 100:.2f}"]
        return cmd + [str(path)]
    if platform.startswith("win"):
        quoted = str(path).replace("'", "''")
        return [
            "powershell.exe", "-NoProfile", "-NonInteractive", "-Command",
            f"(New-Object System.Media.SoundPlayer '{quoted}').PlaySync()",
        ]
    return None


def build_volume_command(volume: Optional[int], mixer_control: str = "PCM",
                         platform: str = sys.platform) -> Optional[List[str]]:
    """ALSA mixer command to run before each clip (Linux only)."""
    if volume is None or not platform.startswith("linux"):
        return None
    return ["amixer", "-q", "sset", mixer_control, f"{volume}%"]


def _kill(proc):
    """Kill a helper process that may already have exited."""
    try:
        if proc.returncode is None:
            proc.kill()
    except ProcessLookupError:
        pass


async def probe_duration(path: Path, timeout: float = PROBE_TIMEOUT) -> Optional[float]:
    """Ask ffprobe for the clip length in seconds. None when unknown."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "ffprobe", "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        return None
    except asyncio.CancelledError:
        _kill(proc)
        raise

    if proc.returncode != 0:
        return None
    try:
        duration = float(stdout.decode().strip().splitlines()[0])
    except (ValueError, IndexError):
        return None
    return duration if duration >= 0 else None


class PlaybackSlot:
    """Plays one clip at a time through an external player process."""

    def __init__(
        self,
        base_path: str = ".",
        volume: Optional[int] = None,
        default_duration: float = DEFAULT_DURATION,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        probe: bool = True,
        mixer_control: str = "PCM",
        player_command: Optional[List[str]] = None,
        platform: str = sys.platform,
    ):
        self.base_path = Path(base_path).expanduser()
        self.volume = None if volume is None else max(0, min(100, int(volume)))
        self.default_duration = default_duration
        self.stop_timeout = stop_timeout
        self.probe = probe
        self.mixer_control = mixer_control
        self.player_command = list(player_command) if player_command else None
        self.platform = platform
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._state = SlotState.EMPTY
        self._lock = asyncio.Lock()
        self._preempted = False
        self._closed = False

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is SlotState.PLAYING

    def resolve(self, file_ref: str) -> Path:
        path = Path(file_ref).expanduser()
        if not path.is_absolute():
            path = self.base_path / path
        return path.resolve()

    async def play(self, file_ref: str) -> float:
        """Play ``file_ref`` to completion and return its estimated length.

        Returns 0.0 without spawning anything when a clip is already
        playing, the file is missing or the platform has no player. Also
        returns 0.0 when the clip is pre-empted, cancelled or fails.
        """
        if self._closed or self._lock.locked():
            logger.debug("Audio already playing, skipping")
            return 0.0

        async with self._lock:
            self._preempted = False
            try:
                return await self._play_locked(file_ref)
            except asyncio.CancelledError:
                logger.debug(f"Playback of {file_ref} cancelled")
                await self.stop_current()
                return 0.0
            except Exception as e:
                logger.error(f"Error playing audio file {file_ref}: {e}")
                return 0.0
            finally:
                self._proc = None
                self._state = SlotState.EMPTY

    async def _play_locked(self, file_ref: str) -> float:
        if not file_ref:
            logger.warning("No audio file configured")
            return 0.0
        full_path = self.resolve(file_ref)
        if not full_path.is_file():
            logger.warning(f"Audio file not found: {full_path}")
            return 0.0

        if self.player_command:
            command = self.player_command + [str(full_path)]
        else:
            command = build_play_command(full_path, self.volume, self.platform)
        if command is None:
            logger.warning(f"Unsupported platform for audio playback: {self.platform}")
            return 0.0

        duration = await self._estimate_duration(full_path)
        await self._apply_volume()
        if self._closed or self._preempted:
            logger.debug(f"Playback of {full_path.name} stopped before the player started")
            return 0.0

        self._proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        # stop_current() or close() may have run while the player was spawning
        if self._closed or self._preempted:
            await self.stop_current()
            return 0.0
        self._state = SlotState.PLAYING
        logger.info(f"Playing audio: {full_path.name} (~{duration:.1f}s)")

        returncode = await self._proc.wait()
        if self._preempted:
            return 0.0
        if returncode != 0:
            logger.warning(f"Audio player exited with status {returncode} for {full_path.name}")
        return duration

    async def _estimate_duration(self, path: Path) -> float:
        if not self.probe:
            return self.default_duration
        duration = await probe_duration(path)
        if duration is None:
            logger.debug(f"Could not probe {path.name}, assuming {self.default_duration}s")
            return self.default_duration
        return duration

    async def _apply_volume(self):
        cmd = build_volume_command(self.volume, self.mixer_control, self.platform)
        if cmd is None:
            return
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Could not set volume: {e}")
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=PROBE_TIMEOUT)
        except asyncio.TimeoutError:
            _kill(proc)
            logger.debug(f"amixer did not finish within {PROBE_TIMEOUT}s")
            return
        except asyncio.CancelledError:
            _kill(proc)
            raise
        if proc.returncode != 0:
            logger.debug(f"amixer exited with status {proc.returncode}")

    async def stop_current(self):
        """Kill the running player, if any. Safe to call repeatedly.

        A play() that has not spawned its player yet is stopped before it
        does.
        """
        self._preempted = True
        proc = self._proc
        if proc is None:
            return
        try:
            if proc.returncode is None:
                proc.kill()
                await asyncio.wait_for(proc.wait(), timeout=self.stop_timeout)
                logger.debug("Stopped current audio playback")
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning(f"Audio player did not exit within {self.stop_timeout}s, abandoning it")
        except Exception as e:
            logger.warning(f"Error stopping audio: {e}")
        finally:
            self._proc = None
            self._state = SlotState.EMPTY

    async def close(self):
        """Stop any playback and refuse further requests."""
        self._closed = True
        await self.stop_current()
