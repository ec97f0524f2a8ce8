"""Logging setup: file + console handlers with structured extras."""

import json
import logging
import os
import sys
from pathlib import Path

from diskchatter.core.config import DiskChatterConfig

STRUCTURED_KEYS = ("event", "activity", "events_in_window", "sound", "duration", "pin")


class StructuredFormatter(logging.Formatter):
    """Formatter that appends structured extra fields as JSON when present."""
    def format(self, record):
        base = super().format(record)
        event = getattr(record, 'event', None)
        if event:
            extras = {k: v for k, v in record.__dict__.items() if k in STRUCTURED_KEYS}
            base += f" | {json.dumps(extras, default=str)}"
        return base


def setup_logging(config: DiskChatterConfig):
    """Configure logging with file + console handlers."""
    fmt = StructuredFormatter(
        fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers = []
    if config.logging.file:
        log_path = Path(config.logging.file).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setFormatter(fmt)
            handlers.append(file_handler)
        except OSError as e:
            print(f"diskchatter: cannot open log file {log_path}: {e}", file=sys.stderr)

    # Only add console handler if stdout is a TTY (avoid duplicates when a service manager redirects to file)
    if sys.stdout.isatty() or not handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(fmt)
        handlers.append(console_handler)

    logging.basicConfig(
        level=getattr(logging, os.environ.get("DISKCHATTER_LOG_LEVEL", config.logging.level).upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )
