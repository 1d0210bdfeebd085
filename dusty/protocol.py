"""Protocol handler for the org.freedesktop.Notifications contract.

Validates and normalizes inbound method arguments before they reach the
lifecycle manager, and forwards lifecycle events to a signal sink owned by
the transport binding. The handler itself is transport-agnostic.
"""

import logging
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

from .constants import MAX_EXPIRE_TIMEOUT, MAX_NOTIFICATION_ID, MIN_EXPIRE_TIMEOUT
from .errors import ErrorCode, ValidationError
from .lifecycle import LifecycleManager
from .models import (
    Action,
    ActionInvokedEvent,
    CloseReason,
    LifecycleEvent,
    NotificationClosedEvent,
    NotificationRequest,
)

logger = logging.getLogger(__name__)

# Expected Python types of the hints this daemon interprets
KNOWN_HINT_TYPES: Dict[str, type] = {
    "urgency": int,
    "category": str,
    "desktop-entry": str,
    "image-path": str,
    "image_path": str,
    "sound-file": str,
    "sound-name": str,
    "resident": bool,
    "transient": bool,
    "suppress-sound": bool,
    "action-icons": bool,
    "x": int,
    "y": int,
    "x-dunst-stack-tag": str,
    "x-canonical-private-synchronous": str,
}


class SignalSink(Protocol):
    """Outbound side of the transport binding."""

    def notification_closed(self, notification_id: int, reason_code: int) -> None: ...

    def action_invoked(self, notification_id: int, action_key: str) -> None: ...


def _require_str(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(
            f"'{field}' must be a string, got {type(value).__name__}",
            field=field,
            code=ErrorCode.INVALID_FIELD_TYPE,
        )
    return value


def _require_uint32(value: Any, field: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(
            f"'{field}' must be an unsigned integer, got {type(value).__name__}",
            field=field,
            code=ErrorCode.INVALID_FIELD_TYPE,
        )
    if not 0 <= value <= MAX_NOTIFICATION_ID:
        raise ValidationError(
            f"'{field}' out of range: {value}",
            field=field,
            code=ErrorCode.VALUE_OUT_OF_RANGE,
        )
    return value


def parse_actions(actions: Any) -> Tuple[Action, ...]:
    """
    Parse the flat [key, label, key, label, ...] action list.

    Raises:
        ValidationError: If the list is not an even-length list of strings
    """
    if not isinstance(actions, (list, tuple)):
        raise ValidationError(
            f"'actions' must be a list of strings, got {type(actions).__name__}",
            field="actions",
            code=ErrorCode.MALFORMED_ACTIONS,
        )
    if len(actions) % 2 != 0:
        raise ValidationError(
            f"'actions' must alternate key and label, got {len(actions)} items",
            field="actions",
            code=ErrorCode.MALFORMED_ACTIONS,
            suggestion="Send actions as [key1, label1, key2, label2, ...]",
        )
    if not all(isinstance(item, str) for item in actions):
        raise ValidationError(
            "'actions' must contain only strings",
            field="actions",
            code=ErrorCode.MALFORMED_ACTIONS,
        )

    return tuple(Action(key=actions[i], label=actions[i + 1]) for i in range(0, len(actions), 2))


def normalize_hints(hints: Any) -> Dict[str, Any]:
    """
    Check hint types.

    Known hints with the wrong type (or an urgency outside 0-2) are dropped
    with a warning. Unknown hints pass through untouched.

    Raises:
        ValidationError: If hints is not a mapping with string keys
    """
    if not isinstance(hints, Mapping):
        raise ValidationError(
            f"'hints' must be a dictionary, got {type(hints).__name__}",
            field="hints",
            code=ErrorCode.INVALID_FIELD_TYPE,
        )

    normalized: Dict[str, Any] = {}
    for key, value in hints.items():
        if not isinstance(key, str):
            raise ValidationError(
                f"Hint keys must be strings, got {type(key).__name__}",
                field="hints",
                code=ErrorCode.INVALID_FIELD_TYPE,
            )

        expected = KNOWN_HINT_TYPES.get(key)
        if expected is not None:
            if (expected is int and isinstance(value, bool)) or not isinstance(value, expected):
                logger.warning(f"Dropping hint '{key}': expected {expected.__name__}, got {type(value).__name__}")
                continue
            if key == "urgency" and not 0 <= value <= 2:
                logger.warning(f"Dropping hint 'urgency': out of range ({value})")
                continue

        normalized[key] = value

    return normalized


def normalize_timeout(expire_timeout: Any) -> int:
    """Validate expire_timeout; negative values other than -1 are treated as -1."""
    if not isinstance(expire_timeout, int) or isinstance(expire_timeout, bool):
        raise ValidationError(
            f"'expire_timeout' must be an integer, got {type(expire_timeout).__name__}",
            field="expire_timeout",
            code=ErrorCode.INVALID_FIELD_TYPE,
        )
    if not MIN_EXPIRE_TIMEOUT <= expire_timeout <= MAX_EXPIRE_TIMEOUT:
        raise ValidationError(
            f"'expire_timeout' out of range: {expire_timeout}",
            field="expire_timeout",
            code=ErrorCode.VALUE_OUT_OF_RANGE,
        )
    return max(expire_timeout, -1)


def build_request(
    app_name: Any,
    replaces_id: Any,
    app_icon: Any,
    summary: Any,
    body: Any,
    actions: Any,
    hints: Any,
    expire_timeout: Any,
) -> NotificationRequest:
    """
    Validate raw Notify arguments into a NotificationRequest.

    Raises:
        ValidationError: On any malformed argument; nothing is mutated
    """
    return NotificationRequest(
        app_name=_require_str(app_name, "app_name"),
        replaces_id=_require_uint32(replaces_id, "replaces_id"),
        icon=_require_str(app_icon, "app_icon"),
        summary=_require_str(summary, "summary"),
        body=_require_str(body, "body"),
        actions=parse_actions(actions),
        hints=normalize_hints(hints),
        expire_timeout=normalize_timeout(expire_timeout),
    )


class ProtocolHandler:
    """Single boundary between the wire contract and the lifecycle manager."""

    def __init__(self, engine: LifecycleManager) -> None:
        self.engine = engine
        self._sinks: List[SignalSink] = []
        engine.add_listener(self._forward)

    def attach(self, sink: SignalSink) -> None:
        """Register a transport that emits NotificationClosed/ActionInvoked."""
        self._sinks.append(sink)

    def detach(self, sink: SignalSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    async def notify(
        self,
        app_name: str,
        replaces_id: int,
        app_icon: str,
        summary: str,
        body: str,
        actions: Sequence[str],
        hints: Mapping[str, Any],
        expire_timeout: int,
    ) -> int:
        """
        Notify method.

        Returns:
            Assigned or reused notification id (never 0)

        Raises:
            ValidationError: If any argument is malformed
        """
        try:
            request = build_request(app_name, replaces_id, app_icon, summary, body, actions, hints, expire_timeout)
        except ValidationError as e:
            logger.warning(f"Rejected Notify from {app_name!r}: {e.message}")
            raise

        return await self.engine.submit(request)

    async def close_notification(self, notification_id: int) -> None:
        """CloseNotification method. A no-op for ids that are not live."""
        notification_id = _require_uint32(notification_id, "id")
        await self.engine.close(notification_id, CloseReason.CLOSED)

    def get_capabilities(self) -> List[str]:
        return self.engine.list_capabilities()

    def get_server_information(self) -> Tuple[str, str, str, str]:
        return self.engine.server_info()

    def _forward(self, event: LifecycleEvent) -> None:
        """Translate lifecycle events into outbound signals."""
        match event:
            case NotificationClosedEvent(notification_id=notification_id, reason=reason):
                for sink in list(self._sinks):
                    sink.notification_closed(notification_id, reason.wire_code)
            case ActionInvokedEvent(notification_id=notification_id, action_key=action_key):
                for sink in list(self._sinks):
                    sink.action_invoked(notification_id, action_key)
            case _:
                pass

