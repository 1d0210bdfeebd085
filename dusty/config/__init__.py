"""
Policy source for the dusty notification daemon.

Modules:
- loader: parse config.toml into a DaemonConfig
- file_watcher: watch the config directory and trigger reloads
"""

from .file_watcher import FileWatcher
from .loader import ConfigLoader

__all__ = ["ConfigLoader", "FileWatcher"]
