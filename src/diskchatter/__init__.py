"""DiskChatter — hard-disk activity theatre for emulated drives."""

__version__ = "0.3.0"
