"""Lifecycle manager for live notifications.

Owns the live notification table and is the only code that mutates it.
Every mutation runs inside one asyncio lock that is never held across an
await, so submit/close/expire/action/do-not-disturb transitions are applied
one at a time and in arrival order. Events produced by a transition are
delivered to listeners after the lock is released, in the order produced.
"""

import asyncio
import logging
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .constants import CAPABILITIES, MAX_NOTIFICATION_ID, SERVER_INFO
from .errors import InternalInvariantViolation, NotFound
from .history import NotificationHistory
from .models import (
    ActionInvokedEvent,
    CloseReason,
    DisplayPolicy,
    LifecycleEvent,
    Notification,
    NotificationClosedEvent,
    NotificationRequest,
    NotificationState,
    Policy,
    PolicyOverrides,
    Urgency,
    VisibleQueueChanged,
)
from .rules import evaluate, strip_markup
from .timers import Clock, TimerHandle, TimerSubsystem

logger = logging.getLogger(__name__)

Listener = Callable[[LifecycleEvent], None]


def compute_visible_queue(entries: Iterable[Notification], limit: Optional[int] = None) -> List[Notification]:
    """
    Derive the visible queue from live entries.

    Displayed entries sorted by urgency (highest first), then arrival.

    Args:
        entries: Live notifications
        limit: Maximum number of visible notifications (None = unlimited)

    Returns:
        Ordered list of notifications to show
    """
    displayed = [n for n in entries if n.state == NotificationState.DISPLAYED]
    displayed.sort(key=lambda n: (-int(n.urgency), n.created_at, n.sequence))
    if limit is not None:
        displayed = displayed[:limit]
    return displayed


class LifecycleManager:
    """Authoritative owner of notification identity, state and timing."""

    def __init__(
        self,
        policy: Optional[Policy] = None,
        clock: Optional[Clock] = None,
        history: Optional[NotificationHistory] = None,
        first_id: int = 1,
    ) -> None:
        """
        Initialize lifecycle manager.

        Args:
            policy: Initial policy (defaults when None)
            clock: Event loop or compatible clock for timers (running loop when None)
            history: History buffer receiving closed notifications
            first_id: First notification id to hand out
        """
        self._policy = policy or Policy()
        self._table: Dict[int, Notification] = {}
        self._timers: Dict[int, TimerHandle] = {}
        self._lock = asyncio.Lock()
        self._listeners: List[Listener] = []

        self._next_id = first_id if 0 < first_id <= MAX_NOTIFICATION_ID else 1
        self._generation = 0
        self._sequence = 0
        self._dnd = self._policy.display.do_not_disturb

        self._published: Tuple[Tuple[int, int], ...] = ()
        self._closed_totals: Counter = Counter()
        self._violations = 0

        self.timers = TimerSubsystem(self.on_timer_expired, clock)
        self.history = history

    # Accessors

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def do_not_disturb(self) -> bool:
        return self._dnd

    @property
    def next_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, notification_id: int) -> bool:
        return notification_id in self._table

    def get(self, notification_id: int) -> Notification:
        """
        Get a live notification.

        Raises:
            NotFound: If the id is not live
        """
        try:
            return self._table[notification_id]
        except KeyError:
            raise NotFound(notification_id)

    def snapshot(self) -> List[Notification]:
        """All live notifications ordered by arrival."""
        return sorted(self._table.values(), key=lambda n: n.sequence)

    def remaining_ms(self, notification_id: int) -> Optional[int]:
        """Milliseconds until the notification expires (None when no timer runs)."""
        handle = self._timers.get(notification_id)
        if handle is None or not handle.active:
            return None
        return self.timers.remaining_ms(handle)

    def visible_queue(self) -> List[Notification]:
        """Recompute the visible queue from the live table."""
        return compute_visible_queue(self._table.values(), self._policy.display.max_visible)

    def list_capabilities(self) -> List[str]:
        return list(CAPABILITIES)

    def server_info(self) -> Tuple[str, str, str, str]:
        return SERVER_INFO

    def stats(self) -> dict:
        states = Counter(n.state for n in self._table.values())
        return {
            "live": len(self._table),
            "displayed": states[NotificationState.DISPLAYED],
            "pending": states[NotificationState.PENDING],
            "visible": len(self.visible_queue()),
            "next_id": self._next_id,
            "do_not_disturb": self._dnd,
            "active_timers": self.timers.active_count,
            "rules": len(self._policy.rules),
            "closed": {reason.value: count for reason, count in self._closed_totals.items()},
            "invariant_violations": self._violations,
        }

    # Configuration

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def install_policy(self, policy: Policy) -> None:
        """
        Atomically replace the policy.

        Rules apply to notifications submitted afterwards; live entries keep
        the timeouts they were created with. The visible queue is republished
        in case the display limit changed.
        """
        self._policy = policy
        logger.info(
            f"Installed policy: {len(policy.rules)} rules, "
            f"max_visible={policy.display.max_visible}"
        )
        self._publish_visible()

    def restore_next_id(self, next_id: Optional[int]) -> None:
        """Resume the id counter (e.g. from persisted history)."""
        if next_id is None or not 0 < next_id <= MAX_NOTIFICATION_ID:
            return
        self._next_id = next_id
        logger.info(f"Resuming notification ids at {next_id}")

    # Operations

    async def submit(self, request: NotificationRequest) -> int:
        """
        Create or replace a notification.

        Never fails for a validated request. Suppressed notifications still
        get an id, which is returned to the caller.

        Args:
            request: Validated request from the protocol handler

        Returns:
            Assigned or reused notification id
        """
        policy = self._policy
        overrides = evaluate(request, policy.rules)

        events: List[LifecycleEvent] = []
        async with self._lock:
            notification = self._create_locked(request, policy, overrides, events)

        self._dispatch(events)
        return notification.id

    async def close(self, notification_id: int, reason: CloseReason = CloseReason.CLOSED) -> bool:
        """
        Close a notification.

        Idempotent: closing an id that is not live is a no-op.

        Returns:
            True if a live notification was closed
        """
        events: List[LifecycleEvent] = []
        async with self._lock:
            closed = self._close_locked(notification_id, reason, events)

        if closed is None:
            logger.debug(f"Close of #{notification_id} ignored: not live")

        self._dispatch(events)
        return closed is not None

    async def dismiss(self, notification_id: int) -> bool:
        """User dismissal from the rendering side."""
        return await self.close(notification_id, CloseReason.DISMISSED)

    async def dismiss_all(self) -> int:
        events: List[LifecycleEvent] = []
        async with self._lock:
            for notification_id in list(self._table):
                self._close_locked(notification_id, CloseReason.DISMISSED, events)

        self._dispatch(events)
        return sum(1 for event in events if isinstance(event, NotificationClosedEvent))

    async def on_timer_expired(self, notification_id: int, token: int) -> None:
        """
        Timer callback: expire the notification if the token is current.

        A token that does not match the live entry belongs to content that
        was replaced, closed, paused or resumed since the timer was scheduled
        and is ignored.
        """
        events: List[LifecycleEvent] = []
        async with self._lock:
            notification = self._table.get(notification_id)

            if (
                notification is None
                or notification.generation != token
                or notification.state != NotificationState.DISPLAYED
            ):
                logger.debug(f"Stale expiry for #{notification_id} ignored (token={token})")
            else:
                handle = self._timers.get(notification_id)
                if handle is None or handle.token != token:
                    self._recover_locked(
                        InternalInvariantViolation(
                            notification_id,
                            "expiry fired without a matching timer",
                        ),
                        events,
                    )
                else:
                    self._close_locked(notification_id, CloseReason.EXPIRED, events)

        self._dispatch(events)

    async def invoke_action(self, notification_id: int, action_key: str) -> bool:
        """
        Invoke one of a notification's declared actions.

        Non-resident notifications are closed (dismissed) afterwards.

        Returns:
            True if the action was invoked
        """
        events: List[LifecycleEvent] = []
        invoked = False
        async with self._lock:
            notification = self._table.get(notification_id)

            if notification is None:
                logger.warning(f"Action '{action_key}' on #{notification_id} ignored: not live")
            elif action_key not in notification.action_keys:
                logger.warning(
                    f"Action '{action_key}' not declared by #{notification_id} "
                    f"(declared: {list(notification.action_keys)})"
                )
            else:
                invoked = True
                events.append(ActionInvokedEvent(notification_id, action_key))
                logger.info(f"Action '{action_key}' invoked on #{notification_id}")

                if not notification.resident:
                    self._close_locked(notification_id, CloseReason.DISMISSED, events)

        self._dispatch(events)
        return invoked

    async def set_do_not_disturb(self, active: bool) -> bool:
        """
        Enable or disable do-not-disturb.

        Enabling hides displayed notifications and stops their timers.
        Disabling displays everything held back, with timers set to the time
        remaining since creation.

        Returns:
            True if the state changed
        """
        events: List[LifecycleEvent] = []
        async with self._lock:
            if active == self._dnd:
                return False
            self._apply_dnd_locked(active)

        self._dispatch(events)
        return True

    async def toggle_do_not_disturb(self) -> bool:
        """Flip do-not-disturb. Returns the new state."""
        events: List[LifecycleEvent] = []
        async with self._lock:
            active = not self._dnd
            self._apply_dnd_locked(active)

        self._dispatch(events)
        return active

    async def enforce_invariants(self) -> int:
        """
        Force-close entries that violate table invariants.

        Returns:
            Number of entries closed
        """
        events: List[LifecycleEvent] = []
        async with self._lock:
            violations = self.check_invariants()
            for violation in violations:
                self._recover_locked(violation, events)

        self._dispatch(events)
        return len(violations)

    def check_invariants(self) -> List[InternalInvariantViolation]:
        """Inspect the live table and return every invariant violation found."""
        violations = []
        for notification_id, notification in self._table.items():
            handle = self._timers.get(notification_id)
            needs_timer = (
                notification.state == NotificationState.DISPLAYED
                and not notification.never_expires
                and not notification.resident
            )

            if notification.id != notification_id:
                reason = f"stored under id {notification_id} but carries id {notification.id}"
            elif notification.state == NotificationState.CLOSED:
                reason = "closed entry left in the live table"
            elif needs_timer and (handle is None or not (handle.active or handle.fired)):
                reason = "displayed without an expiry timer"
            elif not needs_timer and handle is not None and handle.active:
                reason = f"timer running while {notification.state.value}"
            elif handle is not None and handle.token != notification.generation:
                reason = f"timer token {handle.token} != generation {notification.generation}"
            else:
                continue

            violations.append(InternalInvariantViolation(notification_id, reason))
        return violations

    async def shutdown(self) -> None:
        """Cancel every timer and wait for in-flight expiry callbacks."""
        async with self._lock:
            cancelled = self.timers.cancel_all()
            self._timers.clear()
        await self.timers.drain()
        logger.info(f"Lifecycle manager stopped ({cancelled} timers cancelled, {len(self._table)} live)")

    # Internals (callers hold the lock)

    def _allocate_id(self) -> int:
        """Next free id; wraps at uint32 max and skips ids that are still live."""
        for _ in range(MAX_NOTIFICATION_ID):
            candidate = self._next_id
            self._next_id = candidate + 1 if candidate < MAX_NOTIFICATION_ID else 1
            if candidate not in self._table:
                return candidate
        raise InternalInvariantViolation(0, "notification id space exhausted")

    def _find_replace_target(
        self,
        request: NotificationRequest,
        body: str,
        urgency: Urgency,
        group_key: Optional[str],
        display: DisplayPolicy,
    ) -> Tuple[Optional[int], bool]:
        """Return (live id to replace, is_duplicate)."""
        if request.replaces_id:
            return (request.replaces_id if request.replaces_id in self._table else None), False

        if group_key:
            for notification in self._table.values():
                if notification.group_key == group_key and notification.app_name == request.app_name:
                    return notification.id, False

        if display.stack_duplicates:
            for notification in self._table.values():
                if (
                    notification.app_name == request.app_name
                    and notification.summary == request.summary
                    and notification.body == body
                    and notification.urgency == urgency
                ):
                    return notification.id, True

        return None, False

    def _effective_timeout(
        self,
        request: NotificationRequest,
        overrides: PolicyOverrides,
        urgency: Urgency,
        display: DisplayPolicy,
    ) -> Optional[int]:
        """Timeout in ms, or None for never."""
        if overrides.timeout_ms is not None:
            timeout_ms = overrides.timeout_ms
        elif request.expire_timeout >= 0:
            timeout_ms = request.expire_timeout
        else:
            timeout_ms = display.default_timeout_ms(urgency)
        return None if timeout_ms == 0 else timeout_ms

    def _create_locked(
        self,
        request: NotificationRequest,
        policy: Policy,
        overrides: PolicyOverrides,
        events: List[LifecycleEvent],
    ) -> Notification:
        display = policy.display
        urgency = overrides.urgency if overrides.urgency is not None else request.urgency
        body = strip_markup(request.body) if overrides.strip_markup else request.body
        group_key = overrides.group_key or request.stack_tag

        target, duplicate = self._find_replace_target(request, body, urgency, group_key, display)
        duplicate_count = 0
        if target is not None:
            previous = self._close_locked(target, CloseReason.REPLACED, events)
            if duplicate and previous is not None:
                duplicate_count = previous.duplicate_count + 1
            notification_id = target
        elif request.replaces_id:
            notification_id = request.replaces_id
        else:
            notification_id = self._allocate_id()

        self._generation += 1
        self._sequence += 1

        notification = Notification(
            id=notification_id,
            app_name=request.app_name,
            summary=request.summary,
            body=body,
            icon=request.icon,
            actions=request.actions,
            hints=request.hints,
            urgency=urgency,
            category=request.category,
            resident=request.resident,
            transient=request.transient,
            group_key=group_key,
            requested_timeout=request.expire_timeout if request.expire_timeout >= 0 else None,
            effective_timeout=self._effective_timeout(request, overrides, urgency, display),
            replaces_id=request.replaces_id,
            generation=self._generation,
            sequence=self._sequence,
            created_at=self.timers.time(),
            duplicate_count=duplicate_count,
            matched_rules=overrides.matched_rules,
        )

        if overrides.suppress:
            notification.state = NotificationState.CLOSED
            notification.close_reason = CloseReason.SUPPRESSED
            self._closed_totals[CloseReason.SUPPRESSED] += 1
            events.append(NotificationClosedEvent(notification_id, CloseReason.SUPPRESSED))
            logger.info(
                f"Notification #{notification_id} from {request.app_name} suppressed "
                f"by rules {list(overrides.matched_rules)}"
            )
            return notification

        self._table[notification_id] = notification
        logger.info(f"Notification #{notification_id} from {request.app_name}: {notification.summary} - {body}")

        if self._dnd and not (display.dnd_bypass_critical and urgency == Urgency.CRITICAL):
            logger.info(f"Notification #{notification_id} held: do-not-disturb active")
        else:
            self._display_locked(notification, notification.effective_timeout)

        return notification

    def _display_locked(self, notification: Notification, duration_ms: Optional[int]) -> None:
        notification.state = NotificationState.DISPLAYED

        if duration_ms is None or notification.resident:
            logger.debug(f"Notification #{notification.id} displayed without expiry")
            return

        self.timers.cancel(self._timers.pop(notification.id, None))
        self._timers[notification.id] = self.timers.schedule(
            notification.id, duration_ms, notification.generation
        )

    def _close_locked(
        self,
        notification_id: int,
        reason: CloseReason,
        events: List[LifecycleEvent],
    ) -> Optional[Notification]:
        notification = self._table.pop(notification_id, None)
        if notification is None:
            return None

        self.timers.cancel(self._timers.pop(notification_id, None))
        notification.state = NotificationState.CLOSED
        notification.close_reason = reason
        self._closed_totals[reason] += 1

        if self.history is not None:
            self.history.record(notification, reason)

        events.append(NotificationClosedEvent(notification_id, reason))
        logger.info(f"Closing notification #{notification_id} ({reason.value}): {notification.summary}")
        return notification

    def _recover_locked(self, violation: InternalInvariantViolation, events: List[LifecycleEvent]) -> None:
        self._violations += 1
        logger.error(f"{violation.message}; force-closing")
        self._close_locked(violation.notification_id, CloseReason.UNDEFINED, events)

    def _apply_dnd_locked(self, active: bool) -> None:
        self._dnd = active
        display = self._policy.display
        if active:
            self._pause_locked(display)
        else:
            self._resume_locked(display)

    def _pause_locked(self, display: DisplayPolicy) -> None:
        paused = 0
        for notification in self._table.values():
            if notification.state != NotificationState.DISPLAYED:
                continue
            if display.dnd_bypass_critical and notification.urgency == Urgency.CRITICAL:
                continue

            self.timers.cancel(self._timers.pop(notification.id, None))
            self._retoken_locked(notification)
            notification.state = NotificationState.PENDING
            paused += 1

        logger.info(f"Do-not-disturb enabled: {paused} notifications paused")

    def _resume_locked(self, display: DisplayPolicy) -> None:
        now = self.timers.time()
        pending = sorted(
            (n for n in self._table.values() if n.state == NotificationState.PENDING),
            key=lambda n: n.sequence,
        )

        for notification in pending:
            self._retoken_locked(notification)
            self._display_locked(notification, self._resume_duration_ms(notification, now, display.resume_grace_ms))

        logger.info(f"Do-not-disturb disabled: {len(pending)} notifications displayed")

    def _retoken_locked(self, notification: Notification) -> None:
        """Invalidate any expiry already in flight for this entry."""
        self._generation += 1
        notification.generation = self._generation

    @staticmethod
    def _resume_duration_ms(notification: Notification, now: float, grace_ms: int) -> Optional[int]:
        """Time left of the effective timeout, never less than the grace period."""
        if notification.effective_timeout is None:
            return None

        elapsed_ms = int((now - notification.created_at) * 1000)
        remaining = notification.effective_timeout - elapsed_ms
        return max(remaining, min(grace_ms, notification.effective_timeout))

    # Event delivery (lock released)

    def _dispatch(self, events: List[LifecycleEvent]) -> None:
        for event in events:
            self._notify(event)
        self._publish_visible()

    def _publish_visible(self) -> None:
        visible = tuple(self.visible_queue())
        key = tuple((n.id, n.generation) for n in visible)
        if key == self._published:
            return

        self._published = key
        self._notify(VisibleQueueChanged(visible))

    def _notify(self, event: LifecycleEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed on {type(event).__name__}: {e}", exc_info=True)
