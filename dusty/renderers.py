"""Rendering collaborators.

A renderer is a lifecycle listener that receives every recomputed visible
queue. ``LogRenderer`` writes it to the log; ``EwwRenderer`` pushes it as
JSON into an eww variable via the ``eww update`` CLI.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .models import LifecycleEvent, Notification, RendererConfig, VisibleQueueChanged

logger = logging.getLogger(__name__)

EWW_UPDATE_TIMEOUT = 2.0


class Renderer:
    """Base renderer: dispatches visible-queue snapshots to ``update``."""

    def __call__(self, event: LifecycleEvent) -> None:
        if isinstance(event, VisibleQueueChanged):
            self.update(list(event.visible))

    def update(self, visible: List[Notification]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Flush pending output."""


class LogRenderer(Renderer):
    """Logs the visible queue; the default when no widget is configured."""

    def update(self, visible: List[Notification]) -> None:
        if not visible:
            logger.info("Visible queue empty")
            return

        lines = ", ".join(
            f"#{n.id} [{n.urgency.name.lower()}] {n.app_name}: {n.summary}" for n in visible
        )
        logger.info(f"Visible queue ({len(visible)}): {lines}")


def notification_payload(visible: Sequence[Notification]) -> str:
    """Serialize the visible queue for widgets."""
    return json.dumps([
        {
            "id": n.id,
            "app_name": n.app_name,
            "summary": n.summary,
            "body": n.body,
            "icon": n.icon,
            "urgency": n.urgency.name.lower(),
            "actions": [{"key": a.key, "label": a.label} for a in n.actions],
            "count": n.duplicate_count + 1,
        }
        for n in visible
    ], separators=(",", ":"))


class EwwRenderer(Renderer):
    """Publishes the visible queue to an eww variable."""

    def __init__(self, config_dir: Optional[Path] = None, variable: str = "notifications", command: str = "eww"):
        """
        Initialize eww renderer.

        Args:
            config_dir: eww config directory (eww default when None)
            variable: eww variable receiving the JSON array
            command: eww executable
        """
        self.config_dir = config_dir
        self.variable = variable
        self.command = command
        self._last_payload: Optional[str] = None
        self._pending: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    def update(self, visible: List[Notification]) -> None:
        payload = notification_payload(visible)
        if payload == self._last_payload:
            return

        self._last_payload = payload
        self._pending = payload
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._flush())

    async def _flush(self) -> None:
        # Only the newest snapshot matters; intermediate ones are coalesced
        while self._pending is not None:
            payload, self._pending = self._pending, None
            await self.publish(payload)

    def build_command(self, payload: str) -> List[str]:
        args = [self.command]
        if self.config_dir is not None:
            args += ["--config", str(self.config_dir)]
        return args + ["update", f"{self.variable}={payload}"]

    async def publish(self, payload: str) -> bool:
        """
        Run ``eww update`` once.

        Returns:
            True if eww accepted the update
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(payload),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error(f"{self.command} command not found in PATH")
            return False

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=EWW_UPDATE_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(f"Eww update timeout after {EWW_UPDATE_TIMEOUT}s for {self.variable}")
            return False

        if proc.returncode != 0:
            logger.warning(f"Eww update failed (exit {proc.returncode}): {stderr.decode(errors='replace').strip()}")
            return False

        logger.debug(f"Updated Eww variable {self.variable}")
        return True

    async def close(self) -> None:
        if self._task is not None:
            await self._task


def create_renderer(config: RendererConfig) -> Renderer:
    match config.kind:
        case "eww":
            return EwwRenderer(config.eww_config_dir, config.eww_variable)
        case _:
            return LogRenderer()
