"""Session bus binding for org.freedesktop.Notifications.

Exports the notification interface with dbus-next and delegates every method
to the protocol handler. The exported object is also the handler's signal
sink, so lifecycle events come back out as NotificationClosed/ActionInvoked.
"""

import logging
from typing import Any, Dict, Tuple

from dbus_next import BusType, DBusError, ErrorType, NameFlag, RequestNameReply, Variant
from dbus_next.aio import MessageBus
from dbus_next.service import ServiceInterface, method, signal

from .constants import BUS_NAME, INTERFACE_NAME, OBJECT_PATH
from .errors import BusError, ErrorCode, ValidationError
from .protocol import ProtocolHandler

logger = logging.getLogger(__name__)


def unwrap_hints(hints: Dict[str, Any]) -> Dict[str, Any]:
    """Replace Variant hint values by their Python values."""
    return {key: value.value if isinstance(value, Variant) else value for key, value in hints.items()}


class NotificationService(ServiceInterface):
    """D-Bus object at /org/freedesktop/Notifications."""

    def __init__(self, handler: ProtocolHandler):
        super().__init__(INTERFACE_NAME)
        self.handler = handler

    @method()
    async def Notify(self, app_name: 's', replaces_id: 'u', app_icon: 's',
                     summary: 's', body: 's', actions: 'as', hints: 'a{sv}',
                     expire_timeout: 'i') -> 'u':
        try:
            return await self.handler.notify(
                app_name, replaces_id, app_icon, summary, body,
                actions, unwrap_hints(hints), expire_timeout,
            )
        except ValidationError as e:
            raise DBusError(ErrorType.INVALID_ARGS, e.message)

    @method()
    async def CloseNotification(self, id: 'u'):
        try:
            await self.handler.close_notification(id)
        except ValidationError as e:
            raise DBusError(ErrorType.INVALID_ARGS, e.message)

    @method()
    def GetCapabilities(self) -> 'as':
        return self.handler.get_capabilities()

    @method()
    def GetServerInformation(self) -> 'ssss':
        return list(self.handler.get_server_information())

    @signal()
    def NotificationClosed(self, id, reason) -> 'uu':
        return [id, reason]

    @signal()
    def ActionInvoked(self, id, action_key) -> 'us':
        return [id, action_key]

    # Signal sink for the protocol handler

    def notification_closed(self, notification_id: int, reason_code: int) -> None:
        logger.debug(f"Emitting NotificationClosed({notification_id}, {reason_code})")
        self.NotificationClosed(notification_id, reason_code)

    def action_invoked(self, notification_id: int, action_key: str) -> None:
        logger.debug(f"Emitting ActionInvoked({notification_id}, {action_key!r})")
        self.ActionInvoked(notification_id, action_key)


async def connect_session_bus(
    handler: ProtocolHandler,
    bus_name: str = BUS_NAME,
) -> Tuple[MessageBus, NotificationService]:
    """
    Connect to the session bus, export the service and claim the bus name.

    Args:
        handler: Protocol handler the service delegates to
        bus_name: Well-known name to own

    Returns:
        (bus, service) tuple

    Raises:
        BusError: If the bus is unreachable or the name is owned by another daemon
    """
    try:
        bus = await MessageBus(bus_type=BusType.SESSION).connect()
    except Exception as e:
        raise BusError("connect", str(e)) from e

    service = NotificationService(handler)
    bus.export(OBJECT_PATH, service)

    reply = await bus.request_name(bus_name, NameFlag.DO_NOT_QUEUE)
    if reply not in (RequestNameReply.PRIMARY_OWNER, RequestNameReply.ALREADY_OWNER):
        bus.disconnect()
        raise BusError(
            "request_name",
            f"{bus_name} is owned by another process",
            code=ErrorCode.BUS_NAME_TAKEN,
        )

    handler.attach(service)
    logger.info(f"Acquired {bus_name} on the session bus")
    return bus, service
