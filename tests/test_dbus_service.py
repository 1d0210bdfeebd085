"""Tests for the session bus binding (no bus connection required)."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from dbus_next import RequestNameReply, Variant

from conftest import EngineHarness, make_policy
from dusty.constants import BUS_NAME, OBJECT_PATH
from dusty.dbus_service import NotificationService, connect_session_bus, unwrap_hints
from dusty.errors import BusError, ErrorCode
from dusty.protocol import ProtocolHandler


@pytest.fixture
def service():
    harness = EngineHarness(make_policy(stack_duplicates=False))
    handler = ProtocolHandler(harness.engine)
    service = NotificationService(handler)
    handler.attach(service)
    return harness, handler, service


def fake_bus(reply):
    bus = MagicMock()
    bus.connect = AsyncMock(return_value=bus)
    bus.request_name = AsyncMock(return_value=reply)
    return bus


class TestHints:

    def test_variants_unwrapped(self):
        hints = unwrap_hints({
            "urgency": Variant("y", 2),
            "category": Variant("s", "im.received"),
            "plain": 5,
        })

        assert hints == {"urgency": 2, "category": "im.received", "plain": 5}


class TestSignals:

    @pytest.mark.asyncio
    async def test_close_emits_notification_closed(self, service):
        harness, handler, svc = service
        with patch.object(svc, "NotificationClosed") as closed:
            await handler.notify("mail", 0, "", "hi", "", [], {}, -1)
            await handler.close_notification(1)

        closed.assert_called_once_with(1, 3)

    @pytest.mark.asyncio
    async def test_action_emits_action_invoked(self, service):
        harness, handler, svc = service
        with patch.object(svc, "ActionInvoked") as invoked, \
                patch.object(svc, "NotificationClosed") as closed:
            await handler.notify("mail", 0, "", "hi", "", ["default", "Open"], {}, -1)
            await harness.engine.invoke_action(1, "default")

        invoked.assert_called_once_with(1, "default")
        closed.assert_called_once_with(1, 2)


class TestConnect:

    @pytest.mark.asyncio
    async def test_claims_name_and_attaches(self):
        handler = MagicMock()
        bus = fake_bus(RequestNameReply.PRIMARY_OWNER)

        with patch("dusty.dbus_service.MessageBus", return_value=bus):
            result_bus, service = await connect_session_bus(handler)

        assert result_bus is bus
        bus.export.assert_called_once_with(OBJECT_PATH, service)
        assert bus.request_name.await_args.args[0] == BUS_NAME
        handler.attach.assert_called_once_with(service)

    @pytest.mark.asyncio
    async def test_name_taken(self):
        handler = MagicMock()
        bus = fake_bus(RequestNameReply.EXISTS)

        with patch("dusty.dbus_service.MessageBus", return_value=bus):
            with pytest.raises(BusError) as exc_info:
                await connect_session_bus(handler)

        assert exc_info.value.code == ErrorCode.BUS_NAME_TAKEN
        bus.disconnect.assert_called_once()
        handler.attach.assert_not_called()

    @pytest.mark.asyncio
    async def test_bus_unreachable(self):
        bus = MagicMock()
        bus.connect = AsyncMock(side_effect=FileNotFoundError("no session bus"))

        with patch("dusty.dbus_service.MessageBus", return_value=bus):
            with pytest.raises(BusError) as exc_info:
                await connect_session_bus(MagicMock())

        assert exc_info.value.code == ErrorCode.BUS_CONNECTION_FAILED
