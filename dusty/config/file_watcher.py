"""
File watcher for the daemon configuration.

Monitors config.toml for changes and triggers a debounced reload on the
daemon's event loop.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ReloadCallback = Callable[[Path], Awaitable[None]]


class ConfigFileHandler(FileSystemEventHandler):
    """Handles file system events for the config file.

    Watchdog delivers events on its observer thread; they are handed to the
    event loop with call_soon_threadsafe before any asyncio object is touched.
    """

    def __init__(
        self,
        config_path: Path,
        callback: ReloadCallback,
        loop: asyncio.AbstractEventLoop,
        debounce_ms: int = 500,
    ):
        """
        Initialize file handler.

        Args:
            config_path: Config file to react to
            callback: Async function called with the config path after changes settle
            loop: Event loop running the daemon
            debounce_ms: Debounce delay in milliseconds
        """
        super().__init__()
        self.config_path = config_path
        self.callback = callback
        self.loop = loop
        self.debounce_ms = debounce_ms
        self.debounce_task: Optional[asyncio.Task] = None

    def _is_config(self, path: str) -> bool:
        return Path(path).name == self.config_path.name

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory and self._is_config(event.src_path):
            self._changed()

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory and self._is_config(event.src_path):
            self._changed()

    def on_moved(self, event: FileSystemEvent):
        # Editors that save via rename produce a move onto the config file
        if not event.is_directory and self._is_config(getattr(event, "dest_path", "")):
            self._changed()

    def _changed(self) -> None:
        logger.debug(f"Config file changed: {self.config_path}")
        self.loop.call_soon_threadsafe(self.restart_debounce)

    def restart_debounce(self) -> None:
        """Restart the debounce timer (event loop thread only)."""
        if self.debounce_task:
            self.debounce_task.cancel()
        self.debounce_task = self.loop.create_task(self._debounced_reload())

    async def _debounced_reload(self):
        """Execute reload once no change arrived for the debounce period."""
        try:
            await asyncio.sleep(self.debounce_ms / 1000.0)
            logger.info(f"Triggering reload for {self.config_path}")
            await self.callback(self.config_path)

        except asyncio.CancelledError:
            # Superseded by a newer change
            pass
        except Exception as e:
            logger.error(f"Error in debounced reload: {e}")


class FileWatcher:
    """Watches the config file and triggers reloads."""

    def __init__(self, config_path: Path, reload_callback: ReloadCallback, debounce_ms: int = 500):
        """
        Initialize file watcher.

        Args:
            config_path: Config file to watch (its directory is observed)
            reload_callback: Async function to call on changes
            debounce_ms: Debounce delay in milliseconds
        """
        self.config_path = config_path
        self.reload_callback = reload_callback
        self.debounce_ms = debounce_ms

        self.observer: Optional[Observer] = None
        self.handler: Optional[ConfigFileHandler] = None
        self.running = False

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
        """
        Start file watcher.

        Returns:
            True if the watcher is running
        """
        if self.running:
            logger.warning("File watcher already running")
            return True

        config_dir = self.config_path.parent
        if not config_dir.is_dir():
            logger.warning(f"Config directory {config_dir} does not exist, hot reload disabled")
            return False

        logger.info(f"Starting file watcher for {self.config_path}")

        self.handler = ConfigFileHandler(
            config_path=self.config_path,
            callback=self.reload_callback,
            loop=loop or asyncio.get_running_loop(),
            debounce_ms=self.debounce_ms,
        )

        self.observer = Observer()
        self.observer.schedule(self.handler, path=str(config_dir), recursive=False)
        self.observer.start()
        self.running = True

        logger.info("File watcher started")
        return True

    def stop(self):
        """Stop file watcher."""
        if not self.running:
            return

        logger.info("Stopping file watcher")

        if self.handler and self.handler.debounce_task:
            self.handler.debounce_task.cancel()

        if self.observer:
            self.observer.stop()
            self.observer.join()

        self.running = False
        logger.info("File watcher stopped")

    def is_running(self) -> bool:
        return self.running
