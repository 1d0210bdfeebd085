"""Timer subsystem for notification expiration.

Schedules one cancellable expiry per displayed notification on the event
loop. Each timer carries the generation token it was scheduled with; the
lifecycle manager compares that token against the live entry before acting,
so a timer that fires after a replace or close can never touch newer state.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[int, int], Awaitable[None]]


class Clock(Protocol):
    """The subset of the asyncio event loop the timer subsystem needs."""

    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any: ...


class TimerHandle:
    """Handle for a scheduled expiry."""

    __slots__ = ("notification_id", "token", "deadline", "fired", "cancelled", "_loop_handle")

    def __init__(self, notification_id: int, token: int, deadline: float) -> None:
        self.notification_id = notification_id
        self.token = token
        self.deadline = deadline
        self.fired = False
        self.cancelled = False
        self._loop_handle: Any = None

    @property
    def active(self) -> bool:
        return not (self.fired or self.cancelled)

    def __repr__(self) -> str:
        return (
            f"TimerHandle(id={self.notification_id}, token={self.token}, "
            f"deadline={self.deadline:.3f}, active={self.active})"
        )


class TimerSubsystem:
    """Schedules and cancels notification expiry callbacks."""

    def __init__(self, on_expire: ExpiryCallback, clock: Optional[Clock] = None) -> None:
        """
        Initialize timer subsystem.

        Args:
            on_expire: Coroutine function called as on_expire(notification_id, token)
            clock: Event loop (or compatible clock) to schedule on; defaults to the running loop
        """
        self._on_expire = on_expire
        self._clock = clock
        self._active: Dict[int, TimerHandle] = {}
        self._inflight: Set[asyncio.Task] = set()

    @property
    def clock(self) -> Clock:
        if self._clock is None:
            self._clock = asyncio.get_running_loop()
        return self._clock

    def time(self) -> float:
        """Current monotonic time in seconds."""
        return self.clock.time()

    @property
    def active_count(self) -> int:
        return len(self._active)

    def schedule(self, notification_id: int, duration_ms: int, token: int) -> TimerHandle:
        """
        Schedule an expiry for a notification.

        Args:
            notification_id: Notification id
            duration_ms: Delay in milliseconds (never-expiring notifications are not scheduled)
            token: Generation token of the entry the timer belongs to

        Returns:
            TimerHandle for cancellation
        """
        if duration_ms is None:
            raise ValueError("Never-expiring notifications must not be scheduled")

        delay = max(duration_ms, 0) / 1000.0
        handle = TimerHandle(notification_id, token, self.time() + delay)

        # Only one timer per id is tracked; the caller cancels the old one first
        previous = self._active.pop(notification_id, None)
        if previous is not None:
            logger.debug(f"Replacing untracked timer {previous!r}")
            self._cancel_handle(previous)

        handle._loop_handle = self.clock.call_later(delay, self._fire, handle)
        self._active[notification_id] = handle
        logger.debug(f"Scheduled expiry for #{notification_id} in {delay:.3f}s (token={token})")
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> bool:
        """
        Cancel a scheduled expiry.

        Best effort: returns False when the timer already fired (its callback
        may still be in flight) or was cancelled before.
        """
        if handle is None or not handle.active:
            return False

        if self._active.get(handle.notification_id) is handle:
            del self._active[handle.notification_id]

        self._cancel_handle(handle)
        logger.debug(f"Cancelled expiry for #{handle.notification_id} (token={handle.token})")
        return True

    def cancel_all(self) -> int:
        """Cancel every scheduled expiry. Returns the number cancelled."""
        handles = list(self._active.values())
        for handle in handles:
            self.cancel(handle)
        return len(handles)

    def remaining_ms(self, handle: TimerHandle) -> int:
        """Milliseconds until the handle fires (0 when due or inactive)."""
        if not handle.active:
            return 0
        return max(0, int((handle.deadline - self.time()) * 1000))

    async def drain(self) -> None:
        """Wait for in-flight expiry callbacks to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _cancel_handle(self, handle: TimerHandle) -> None:
        handle.cancelled = True
        if handle._loop_handle is not None:
            handle._loop_handle.cancel()

    def _fire(self, handle: TimerHandle) -> None:
        """Loop callback: hand the expiry to the lifecycle manager as a task."""
        if handle.cancelled:
            return

        handle.fired = True
        if self._active.get(handle.notification_id) is handle:
            del self._active[handle.notification_id]

        task = asyncio.get_running_loop().create_task(
            self._on_expire(handle.notification_id, handle.token)
        )
        self._inflight.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Expiry callback failed: {exc}", exc_info=exc)
