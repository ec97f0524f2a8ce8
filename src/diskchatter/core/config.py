"""
DiskChatter Configuration — loads and validates config.yaml
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

logger = logging.getLogger("diskchatter.config")

SECTIONS = ("config", "sounds", "activity", "indicator", "playback", "watch", "logging", "daemon")


@dataclass
class AppConfig:
    directories: List[str] = field(default_factory=list)
    gpio_pin: int = 4  # BCM numbering
    volume: Optional[int] = None  # 0-100, None = leave the mixer alone


@dataclass
class SoundsConfig:
    long_activity: str = ""
    short_activity: str = ""


@dataclass
class ActivityConfig:
    window_seconds: float = 3.0
    burst_threshold: int = 3


@dataclass
class IndicatorConfig:
    min_interval: float = 0.1  # seconds per pulse phase
    max_interval: float = 0.5
    stop_timeout: float = 2.0


@dataclass
class PlaybackConfig:
    base_path: str = ""  # relative clips resolve here; "" = config file directory
    default_duration: float = 2.0
    stop_timeout: float = 1.0
    probe: bool = True
    mixer_control: str = "PCM"
    player_command: List[str] = field(default_factory=list)  # overrides the platform player


@dataclass
class WatchConfig:
    include_directories: bool = True
    ignore_patterns: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "~/.diskchatter/logs/diskchatter.log"


@dataclass
class DaemonConfig:
    pid_file: str = "~/.diskchatter/diskchatter.pid"
    shutdown_timeout: float = 5.0


@dataclass
class DiskChatterConfig:
    config: AppConfig = field(default_factory=AppConfig)
    sounds: SoundsConfig = field(default_factory=SoundsConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    indicator: IndicatorConfig = field(default_factory=IndicatorConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    source_path: Optional[str] = None

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "DiskChatterConfig":
        """Load config from YAML file, falling back to defaults."""
        if config_path is None:
            # Search order: ./config.yaml, ~/.diskchatter/config.yaml, config/config.yaml
            candidates = [
                Path("config.yaml"),
                Path("~/.diskchatter/config.yaml").expanduser(),
                Path(__file__).parent.parent.parent.parent / "config" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = str(candidate)
                    break

        if config_path and Path(config_path).exists():
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
            config = cls._from_dict(raw)
            config.source_path = str(Path(config_path).resolve())
            return config

        if config_path:
            logger.warning(f"Config file not found: {config_path} — using defaults")
        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "DiskChatterConfig":
        """Build config from a parsed YAML dict, applying env var substitution."""
        cls._check_sections(data)
        config = cls()

        if "config" in data:
            app = data["config"] or {}
            volume = app.get("volume", config.config.volume)
            config.config = AppConfig(
                directories=[cls._resolve_env(str(d)) for d in (app.get("directories") or [])],
                gpio_pin=int(app.get("gpio_pin", config.config.gpio_pin)),
                volume=int(volume) if volume is not None else None,
            )

        if "sounds" in data:
            s = data["sounds"] or {}
            config.sounds = SoundsConfig(
                long_activity=cls._resolve_env(s.get("long_activity", config.sounds.long_activity)),
                short_activity=cls._resolve_env(s.get("short_activity", config.sounds.short_activity)),
            )

        if "activity" in data:
            a = data["activity"] or {}
            config.activity = ActivityConfig(
                window_seconds=float(a.get("window_seconds", config.activity.window_seconds)),
                burst_threshold=int(a.get("burst_threshold", config.activity.burst_threshold)),
            )

        if "indicator" in data:
            ind = data["indicator"] or {}
            config.indicator = IndicatorConfig(**{
                k: float(ind.get(k, getattr(config.indicator, k)))
                for k in IndicatorConfig.__dataclass_fields__
            })

        if "playback" in data:
            p = data["playback"] or {}
            config.playback = PlaybackConfig(
                base_path=cls._resolve_env(p.get("base_path", config.playback.base_path)),
                default_duration=float(p.get("default_duration", config.playback.default_duration)),
                stop_timeout=float(p.get("stop_timeout", config.playback.stop_timeout)),
                probe=bool(p.get("probe", config.playback.probe)),
                mixer_control=p.get("mixer_control", config.playback.mixer_control),
                player_command=[str(c) for c in (p.get("player_command") or [])],
            )

        if "watch" in data:
            w = data["watch"] or {}
            config.watch = WatchConfig(
                include_directories=bool(w.get("include_directories", config.watch.include_directories)),
                ignore_patterns=list(w.get("ignore_patterns") or []),
            )

        if "logging" in data:
            lg = data["logging"] or {}
            config.logging = LoggingConfig(
                level=lg.get("level", config.logging.level),
                file=cls._resolve_env(lg.get("file", config.logging.file)),
            )

        if "daemon" in data:
            dm = data["daemon"] or {}
            config.daemon = DaemonConfig(
                pid_file=cls._resolve_env(dm.get("pid_file", config.daemon.pid_file)),
                shutdown_timeout=float(dm.get("shutdown_timeout", config.daemon.shutdown_timeout)),
            )

        config._validate()
        return config

    @staticmethod
    def _check_sections(data):
        """Every top-level section must be a mapping (or empty)."""
        if not isinstance(data, dict):
            raise ValueError(
                f"Config validation errors:\n  - top level must be a mapping, got {type(data).__name__}"
            )
        errors = [
            f"{name} must be a mapping, got {type(data[name]).__name__}"
            for name in SECTIONS
            if data.get(name) is not None and not isinstance(data[name], dict)
        ]
        if errors:
            raise ValueError("Config validation errors:\n" + "\n".join(f"  - {e}" for e in errors))

    def _validate(self):
        """Validate config values."""
        errors = []

        if self.config.gpio_pin < 0:
            errors.append(f"config.gpio_pin must be >= 0, got {self.config.gpio_pin}")
        if self.config.volume is not None and not (0 <= self.config.volume <= 100):
            errors.append(f"config.volume must be 0-100, got {self.config.volume}")
        if self.activity.window_seconds <= 0:
            errors.append("activity.window_seconds must be positive")
        if self.activity.burst_threshold < 1:
            errors.append("activity.burst_threshold must be >= 1")
        if self.indicator.min_interval <= 0:
            errors.append("indicator.min_interval must be positive")
        if self.indicator.max_interval < self.indicator.min_interval:
            errors.append("indicator.max_interval must be >= indicator.min_interval")
        if self.indicator.stop_timeout <= 0:
            errors.append("indicator.stop_timeout must be positive")
        if self.playback.stop_timeout <= 0:
            errors.append("playback.stop_timeout must be positive")
        if self.playback.default_duration < 0:
            errors.append("playback.default_duration must be non-negative")
        if self.daemon.shutdown_timeout <= 0:
            errors.append("daemon.shutdown_timeout must be positive")

        if not self.sounds.short_activity or not self.sounds.long_activity:
            logger.warning("sounds.short_activity / sounds.long_activity not set — cycles will be silent")

        if errors:
            raise ValueError("Config validation errors:\n" + "\n".join(f"  - {e}" for e in errors))

    def sound_base_path(self) -> Path:
        """Directory that relative sound clip references resolve against."""
        if self.playback.base_path:
            return Path(self.playback.base_path).expanduser()
        if self.source_path:
            return Path(self.source_path).parent
        return Path.cwd()

    @staticmethod
    def expand_directory(path: str) -> Path:
        """Expand ``~`` and environment variables in a watch directory."""
        return Path(os.path.expandvars(os.path.expanduser(path)))

    @classmethod
    def _resolve_env(cls, value: str) -> str:
        """Replace ${ENV_VAR} patterns with environment variable values.

        Unknown variables are left as-is.
        """
        if not isinstance(value, str):
            return value

        def _replace(match):
            env_val = os.environ.get(match.group(1))
            return match.group(0) if env_val is None else env_val

        return re.sub(r'\$\{([^}]+)\}', _replace, value)
