"""Centralized paths and protocol constants for the dusty notification daemon.

Single source of truth for file locations and the fixed
org.freedesktop.Notifications contract values.
"""

import os
from pathlib import Path
from typing import Final, Tuple

from . import __version__


class ConfigPaths:
    """Centralized configuration paths.

    Paths are computed once at import time from the user's home directory
    and the XDG base directory variables.
    """

    HOME: Final[Path] = Path.home()
    CONFIG_DIR: Final[Path] = Path(os.environ.get("XDG_CONFIG_HOME", HOME / ".config")) / "dusty"
    CACHE_DIR: Final[Path] = Path(os.environ.get("XDG_CACHE_HOME", HOME / ".cache")) / "dusty"
    STATE_DIR: Final[Path] = Path(os.environ.get("XDG_STATE_HOME", HOME / ".local" / "state")) / "dusty"

    CONFIG_FILE: Final[Path] = CONFIG_DIR / "config.toml"
    HISTORY_FILE: Final[Path] = STATE_DIR / "history.json"
    IPC_SOCKET_PATH: Final[Path] = CACHE_DIR / "ipc.sock"

    @classmethod
    def ensure_dirs(cls) -> None:
        """Create the cache and state directories if they don't exist."""
        for d in (cls.CACHE_DIR, cls.STATE_DIR):
            d.mkdir(parents=True, exist_ok=True)


# D-Bus contract
BUS_NAME: Final[str] = "org.freedesktop.Notifications"
OBJECT_PATH: Final[str] = "/org/freedesktop/Notifications"
INTERFACE_NAME: Final[str] = "org.freedesktop.Notifications"

SERVER_NAME: Final[str] = "Dusty"
SERVER_VENDOR: Final[str] = "fullzer4"
SPEC_VERSION: Final[str] = "1.2"
SERVER_INFO: Final[Tuple[str, str, str, str]] = (SERVER_NAME, SERVER_VENDOR, __version__, SPEC_VERSION)

CAPABILITIES: Final[Tuple[str, ...]] = ("actions", "body", "body-markup", "persistence")

# Notification ids are D-Bus uint32 values; 0 means "no id"
MAX_NOTIFICATION_ID: Final[int] = 0xFFFFFFFF
MIN_EXPIRE_TIMEOUT: Final[int] = -(2 ** 31)
MAX_EXPIRE_TIMEOUT: Final[int] = 2 ** 31 - 1

# Hints that carry a stacking/grouping key
STACK_TAG_HINTS: Final[Tuple[str, ...]] = ("x-dunst-stack-tag", "x-canonical-private-synchronous")

STATUS_LOG_INTERVAL: Final[float] = 600.0
DND_SCHEDULE_INTERVAL: Final[float] = 30.0
