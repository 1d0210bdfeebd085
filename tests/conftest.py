"""Pytest configuration and fixtures for dusty tests.

Timers run on a manual clock so expiry is driven by simulated time.
"""

import heapq
import itertools
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import pytest

# Make the dusty package importable without installing it
package_root = Path(__file__).parent.parent
if str(package_root) not in sys.path:
    sys.path.insert(0, str(package_root))

from dusty.history import NotificationHistory  # noqa: E402
from dusty.lifecycle import LifecycleManager  # noqa: E402
from dusty.models import (  # noqa: E402
    ActionInvokedEvent,
    CloseReason,
    DisplayPolicy,
    NotificationClosedEvent,
    NotificationRequest,
    Policy,
    Rule,
    VisibleQueueChanged,
)


class ManualTimer:
    """Cancellable callback registered on the manual clock."""

    def __init__(self, when: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Stand-in for the event loop's time()/call_later()."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self._heap: List[Tuple[float, int, ManualTimer]] = []
        self._counter = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback, args)
        heapq.heappush(self._heap, (timer.when, next(self._counter), timer))
        return timer

    def next_deadline(self) -> Optional[float]:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def fire_due(self) -> int:
        """Run every callback whose deadline has passed."""
        fired = 0
        while self._heap and self._heap[0][0] <= self.now:
            _, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            timer.callback(*timer.args)
            fired += 1
        return fired

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._heap if not timer.cancelled)


class EngineHarness:
    """Lifecycle manager on a manual clock with every emitted event recorded."""

    def __init__(self, policy: Optional[Policy] = None, history: Optional[NotificationHistory] = None):
        self.clock = ManualClock()
        self.engine = LifecycleManager(policy, clock=self.clock, history=history)
        self.events: List[Any] = []
        self.engine.add_listener(self.events.append)

    async def advance(self, ms: int) -> None:
        """Advance simulated time, firing timers in deadline order."""
        target = self.clock.now + ms / 1000.0
        while True:
            deadline = self.clock.next_deadline()
            if deadline is None or deadline > target:
                break
            self.clock.now = max(self.clock.now, deadline)
            self.clock.fire_due()
            await self.engine.timers.drain()
        self.clock.now = target

    def closed(self) -> List[Tuple[int, CloseReason]]:
        return [(e.notification_id, e.reason) for e in self.events if isinstance(e, NotificationClosedEvent)]

    def actions(self) -> List[Tuple[int, str]]:
        return [(e.notification_id, e.action_key) for e in self.events if isinstance(e, ActionInvokedEvent)]

    def last_visible_ids(self) -> Optional[List[int]]:
        for event in reversed(self.events):
            if isinstance(event, VisibleQueueChanged):
                return [n.id for n in event.visible]
        return None

    def visible_ids(self) -> List[int]:
        return [n.id for n in self.engine.visible_queue()]


def make_request(**kwargs) -> NotificationRequest:
    """NotificationRequest with sensible defaults."""
    defaults = {"app_name": "mail", "summary": "New message", "body": ""}
    defaults.update(kwargs)
    return NotificationRequest(**defaults)


def make_policy(rules: Optional[List[dict]] = None, **display) -> Policy:
    """Policy from display settings and rule dicts in config.toml shape."""
    return Policy(
        display=DisplayPolicy(**display),
        rules=tuple(Rule.model_validate(rule) for rule in rules or []),
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def harness() -> EngineHarness:
    """Engine with default policy, duplicate stacking disabled."""
    return EngineHarness(make_policy(stack_duplicates=False))


@pytest.fixture
def temp_config_dir(tmp_path) -> Path:
    """Temporary configuration directory."""
    config_dir = tmp_path / "dusty"
    config_dir.mkdir()
    return config_dir
