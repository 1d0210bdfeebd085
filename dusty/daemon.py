"""Main daemon entry point with systemd integration.

Wires the lifecycle manager to the session bus, the control socket, the
renderer and the policy source, and runs until SIGTERM/SIGINT or until the
bus connection drops.
"""

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from systemd import journal, daemon as sd_daemon
    SYSTEMD_AVAILABLE = True
except ImportError:
    SYSTEMD_AVAILABLE = False

from dbus_next.aio import MessageBus

from . import __version__
from .config import ConfigLoader, FileWatcher
from .constants import ConfigPaths, STATUS_LOG_INTERVAL
from .dbus_service import NotificationService, connect_session_bus
from .dnd import DndScheduler
from .errors import BusError, PolicyError
from .history import NotificationHistory
from .ipc_server import IPCServer
from .lifecycle import LifecycleManager
from .models import DaemonConfig, HistoryConfig
from .protocol import ProtocolHandler
from .renderers import Renderer, create_renderer

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _quiet_stderr():
    """Silence fd 2 for the duration; systemd-python warns there directly."""
    saved = os.dup(2)
    with open(os.devnull, "wb") as devnull:
        os.dup2(devnull.fileno(), 2)
    try:
        yield
    finally:
        os.dup2(saved, 2)
        os.close(saved)


class SystemdNotifier:
    """sd_notify(3) wrapper. Every call is a no-op when not started by systemd."""

    def __init__(self) -> None:
        self.enabled = SYSTEMD_AVAILABLE and bool(os.environ.get("NOTIFY_SOCKET"))

        # Ping at a third of the watchdog timeout
        watchdog_usec = os.environ.get("WATCHDOG_USEC") if self.enabled else None
        self.watchdog_interval: Optional[float] = int(watchdog_usec) / 3_000_000 if watchdog_usec else None

    def notify(self, *states: str) -> None:
        if not self.enabled:
            return
        with _quiet_stderr():
            sd_daemon.notify("\n".join(states))
        logger.debug(f"sd_notify: {', '.join(states)}")

    def status(self, engine: LifecycleManager) -> str:
        stats = engine.stats()
        dnd = ", do-not-disturb" if stats["do_not_disturb"] else ""
        return f"STATUS={stats['live']} live, {stats['visible']} visible{dnd}"


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    """--config, then $DUSTY_CONFIG, then ~/.config/dusty/config.toml."""
    if config_path is not None:
        return config_path
    env_path = os.environ.get("DUSTY_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return ConfigPaths.CONFIG_FILE


def build_history(config: HistoryConfig) -> NotificationHistory:
    path = None
    if config.persist:
        path = (config.path or ConfigPaths.HISTORY_FILE).expanduser()
    return NotificationHistory(max_size=config.max_entries, persistence_path=path)


class DustyDaemon:
    """Main daemon class."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        socket_path: Optional[Path] = None,
        use_dbus: bool = True,
    ) -> None:
        """
        Initialize daemon.

        Args:
            config_path: Config file (see resolve_config_path)
            socket_path: Control socket path (defaults to ~/.cache/dusty/ipc.sock)
            use_dbus: Claim org.freedesktop.Notifications on the session bus
        """
        self.config_path = resolve_config_path(config_path)
        self.socket_path = socket_path
        self.use_dbus = use_dbus

        self.loader = ConfigLoader(self.config_path)
        self.config = DaemonConfig()
        self.engine: Optional[LifecycleManager] = None
        self.history: Optional[NotificationHistory] = None
        self.protocol: Optional[ProtocolHandler] = None
        self.renderer: Optional[Renderer] = None
        self.bus: Optional[MessageBus] = None
        self.service: Optional[NotificationService] = None
        self.ipc_server: Optional[IPCServer] = None
        self.file_watcher: Optional[FileWatcher] = None
        self.dnd_scheduler: Optional[DndScheduler] = None
        self.notifier = SystemdNotifier()

        self.shutdown_event = asyncio.Event()
        self.start_time = time.monotonic()
        self._tasks: List[asyncio.Task] = []

    async def initialize(self) -> None:
        """Initialize daemon components.

        Raises:
            BusError: If the session bus is unavailable or another daemon owns the name
        """
        ConfigPaths.ensure_dirs()

        self.config = self.loader.load_or_default()

        self.history = build_history(self.config.history)
        self.history.load()

        self.engine = LifecycleManager(self.config.to_policy(), history=self.history)
        self.engine.restore_next_id(self.history.next_id)

        self.renderer = create_renderer(self.config.renderer)
        self.engine.add_listener(self.renderer)
        logger.info(f"Renderer: {type(self.renderer).__name__}")

        self.protocol = ProtocolHandler(self.engine)
        if self.use_dbus:
            self.bus, self.service = await connect_session_bus(self.protocol)

        self.ipc_server = IPCServer(self, self.socket_path)
        await self.ipc_server.start()

        self.file_watcher = FileWatcher(self.config_path, self._on_config_file_changed, debounce_ms=500)
        self.file_watcher.start()

        self.dnd_scheduler = DndScheduler(self.engine, self.config.dnd_schedule)

        self.notifier.notify("READY=1", self.notifier.status(self.engine))
        logger.info("Daemon initialized")

    async def reload_config(self) -> Dict[str, Any]:
        """
        Reload config.toml and install the new policy atomically.

        A malformed config keeps the previously installed policy.

        Returns:
            Reload result for the control socket
        """
        try:
            config = self.loader.load()
        except PolicyError as e:
            logger.error(f"{e.message}; keeping current policy")
            return {"success": False, "error": e.message, "errors": e.context.get("errors", [])}

        if config.history != self.config.history or config.renderer != self.config.renderer:
            logger.warning("[history] and [renderer] changes take effect after restart")

        self.config = config
        self.engine.install_policy(config.to_policy())
        if self.dnd_scheduler:
            self.dnd_scheduler.update_schedule(config.dnd_schedule)

        return {"success": True, "rules": len(config.rules)}

    async def _on_config_file_changed(self, path: Path) -> None:
        await self.reload_config()

    def persist_history(self) -> None:
        if self.history and self.engine:
            self.history.save(next_id=self.engine.next_id)

    async def _status_loop(self) -> None:
        """Periodic status line, invariant check and history flush."""
        while True:
            await asyncio.sleep(STATUS_LOG_INTERVAL)
            try:
                stats = self.engine.stats()
                logger.info(
                    f"Status: {stats['live']} active notifications "
                    f"({stats['visible']} visible), next id {stats['next_id']}, "
                    f"do-not-disturb {'on' if stats['do_not_disturb'] else 'off'}"
                )

                repaired = await self.engine.enforce_invariants()
                if repaired:
                    logger.warning(f"Force-closed {repaired} inconsistent notifications")

                self.persist_history()
                self.notifier.notify(self.notifier.status(self.engine))
            except Exception as e:
                logger.error(f"Status check failed: {e}", exc_info=True)

    async def _watchdog_loop(self) -> None:
        logger.info(f"Systemd watchdog enabled: {self.notifier.watchdog_interval:.1f}s interval")
        while True:
            await asyncio.sleep(self.notifier.watchdog_interval)
            self.notifier.notify("WATCHDOG=1")

    async def run(self) -> None:
        """Run until shutdown is requested or the bus connection drops."""
        self._tasks = [
            asyncio.create_task(self.dnd_scheduler.run(), name="dnd-schedule"),
            asyncio.create_task(self._status_loop(), name="status-log"),
        ]
        if self.notifier.watchdog_interval:
            self._tasks.append(asyncio.create_task(self._watchdog_loop(), name="watchdog"))

        waiters = [asyncio.create_task(self.shutdown_event.wait(), name="shutdown")]
        if self.bus is not None:
            waiters.append(asyncio.create_task(self.bus.wait_for_disconnect(), name="bus"))

        logger.info("Daemon running")
        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

        for task in done:
            if task.get_name() == "bus":
                logger.error("Lost connection to the session bus")

    async def shutdown(self) -> None:
        """Graceful shutdown with timeouts to prevent hanging."""
        logger.info("Shutting down daemon...")

        self.notifier.notify("STOPPING=1")

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self.file_watcher:
            try:
                self.file_watcher.stop()
            except Exception as e:
                logger.error(f"Error stopping file watcher: {e}")

        if self.ipc_server:
            try:
                await asyncio.wait_for(self.ipc_server.stop(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("IPC server shutdown timed out after 5s (continuing)")

        if self.engine:
            await self.engine.shutdown()

        if self.renderer:
            try:
                await asyncio.wait_for(self.renderer.close(), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning("Renderer flush timed out after 2s (continuing)")

        self.persist_history()

        if self.bus:
            self.bus.disconnect()

        logger.info("Daemon shutdown complete")

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def shutdown_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            loop.call_soon_threadsafe(self.shutdown_event.set)

        def debug_handler(signum, frame):
            logger.info("=== DEBUG INFO (USR1) ===")
            logger.info(f"PID: {os.getpid()}")
            if self.engine:
                logger.info(f"Stats: {self.engine.stats()}")
            logger.info(f"Active tasks: {len(asyncio.all_tasks(loop))}")

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)
        signal.signal(signal.SIGUSR1, debug_handler)


def setup_logging(level: Optional[str] = None) -> None:
    """Setup logging to systemd journal or stderr."""
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if SYSTEMD_AVAILABLE:
        with _quiet_stderr():
            handler = journal.JournalHandler(SYSLOG_IDENTIFIER="dusty")
    else:
        handler = logging.StreamHandler(sys.stderr)

    formatter = logging.Formatter(
        "%(levelname)s [%(name)s] %(message)s"
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logger.info(f"Logging configured: level={log_level}")


async def main_async(args: argparse.Namespace) -> int:
    """Async main function.

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    daemon = DustyDaemon(
        config_path=args.config,
        socket_path=args.socket,
        use_dbus=not args.no_dbus,
    )

    try:
        daemon.setup_signal_handlers()
        await daemon.initialize()
        await daemon.run()
        return 0

    except BusError as e:
        logger.error(e.message)
        if e.suggestion:
            logger.error(e.suggestion)
        return 1

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        await daemon.shutdown()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dusty", description="Desktop notification daemon")
    parser.add_argument("--config", type=Path, help="Config file (default: $DUSTY_CONFIG or ~/.config/dusty/config.toml)")
    parser.add_argument("--socket", type=Path, help="Control socket path")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level (default: $LOG_LEVEL or INFO)")
    parser.add_argument("--no-dbus", action="store_true", help="Run without claiming the session bus name")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point."""
    args = parse_args()
    setup_logging(args.log_level)

    logger.info(f"Dusty notification daemon {__version__} starting...")
    logger.info(f"PID: {os.getpid()}")

    try:
        exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
