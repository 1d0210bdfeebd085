"""Scheduled do-not-disturb.

Toggles do-not-disturb at the edges of the configured daily window. Between
edges the scheduler leaves the state alone, so a manual toggle (dustyctl dnd)
holds until the next edge.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from .constants import DND_SCHEDULE_INTERVAL
from .lifecycle import LifecycleManager
from .models import DndSchedule

logger = logging.getLogger(__name__)


class DndScheduler:
    """Applies a DndSchedule to the lifecycle manager."""

    def __init__(
        self,
        engine: LifecycleManager,
        schedule: DndSchedule,
        interval: float = DND_SCHEDULE_INTERVAL,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.engine = engine
        self.schedule = schedule
        self.interval = interval
        self._now = now
        self._inside: Optional[bool] = None

    def update_schedule(self, schedule: DndSchedule) -> None:
        """Install a new schedule; the next tick re-evaluates from scratch."""
        if schedule != self.schedule:
            logger.info(f"Do-not-disturb schedule changed: {schedule.start} - {schedule.end}")
        self.schedule = schedule
        self._inside = None

    async def tick(self) -> Optional[bool]:
        """
        Evaluate the schedule once.

        Returns:
            The do-not-disturb state applied, or None if nothing changed
        """
        if not self.schedule.enabled:
            self._inside = None
            return None

        inside = self.schedule.covers(self._now().time())
        previous, self._inside = self._inside, inside

        # First evaluation only switches on; it never overrides a manual enable
        if previous is None and not inside:
            return None
        if previous == inside:
            return None

        await self.engine.set_do_not_disturb(inside)
        logger.info(f"Scheduled do-not-disturb {'started' if inside else 'ended'}")
        return inside

    async def run(self) -> None:
        """Evaluate the schedule every ``interval`` seconds until cancelled."""
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Do-not-disturb schedule check failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
