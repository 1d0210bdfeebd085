"""Tests for the JSON-RPC control socket."""

import asyncio
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import EngineHarness, make_policy, make_request
from dusty.cli import DustyCLI, RPCError
from dusty.errors import ErrorCode
from dusty.history import NotificationHistory
from dusty.ipc_server import IPCServer
from dusty.models import Action, CloseReason


@pytest.fixture
def harness():
    return EngineHarness(make_policy(stack_duplicates=False), history=NotificationHistory())


@pytest.fixture
def daemon(harness, tmp_path):
    daemon = MagicMock()
    daemon.engine = harness.engine
    daemon.history = harness.engine.history
    daemon.start_time = time.monotonic()
    daemon.config_path = tmp_path / "config.toml"
    daemon.reload_config = AsyncMock(return_value={"success": True, "rules": 0})
    return daemon


@pytest.fixture
def server(daemon, tmp_path):
    return IPCServer(daemon, socket_path=tmp_path / "ipc.sock")


async def call(server, method, params=None, request_id=1):
    return await server.handle_request({"jsonrpc": "2.0", "method": method, "params": params or {}, "id": request_id})


class TestRequests:

    @pytest.mark.asyncio
    async def test_ping(self, server):
        response = await call(server, "ping")

        assert response == {"jsonrpc": "2.0", "result": {"status": "ok", "daemon": "dusty"}, "id": 1}

    @pytest.mark.asyncio
    async def test_unknown_method(self, server):
        response = await call(server, "explode")

        assert response["error"]["code"] == ErrorCode.METHOD_NOT_FOUND.value
        assert "ping" in response["error"]["context"]["available_methods"]

    @pytest.mark.asyncio
    async def test_missing_method(self, server):
        response = await server.handle_request({"id": 3})

        assert response["error"]["code"] == ErrorCode.INVALID_REQUEST.value
        assert response["id"] == 3

    @pytest.mark.asyncio
    async def test_non_object_request(self, server):
        response = await server.handle_request([1, 2])

        assert response["error"]["code"] == ErrorCode.INVALID_REQUEST.value

    @pytest.mark.asyncio
    async def test_status(self, server, harness):
        await harness.engine.submit(make_request())

        result = (await call(server, "status"))["result"]

        assert result["live"] == 1
        assert result["next_id"] == 2
        assert "uptime_seconds" in result

    @pytest.mark.asyncio
    async def test_list_and_visible(self, server, harness):
        await harness.engine.submit(make_request(summary="a"))
        await harness.engine.set_do_not_disturb(True)
        await harness.engine.submit(make_request(summary="b"))

        listed = (await call(server, "list"))["result"]
        visible = (await call(server, "visible"))["result"]

        assert [n["summary"] for n in listed["notifications"]] == ["a", "b"]
        assert visible["count"] == 0

    @pytest.mark.asyncio
    async def test_dismiss(self, server, harness):
        await harness.engine.submit(make_request())

        assert (await call(server, "dismiss", {"id": 1}))["result"] == {"dismissed": 1}
        assert harness.closed() == [(1, CloseReason.DISMISSED)]

        response = await call(server, "dismiss", {"id": 1})
        assert response["error"]["code"] == ErrorCode.NOTIFICATION_NOT_FOUND.value

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{}, {"id": "1"}, {"id": 0}, {"id": 1, "extra": True}])
    async def test_dismiss_invalid_params(self, server, params):
        response = await call(server, "dismiss", params)

        assert response["error"]["code"] == ErrorCode.INVALID_PARAMS.value

    @pytest.mark.asyncio
    async def test_dismiss_all(self, server, harness):
        await harness.engine.submit(make_request(summary="a"))
        await harness.engine.submit(make_request(summary="b"))

        assert (await call(server, "dismiss_all"))["result"] == {"dismissed": 2}

    @pytest.mark.asyncio
    async def test_invoke_action(self, server, harness):
        await harness.engine.submit(make_request(actions=(Action(key="default", label="Open"),)))

        missing = await call(server, "invoke_action", {"id": 1, "action": "reply"})
        assert missing["error"]["code"] == ErrorCode.ACTION_NOT_FOUND.value

        result = (await call(server, "invoke_action", {"id": 1}))["result"]
        assert result == {"id": 1, "action": "default"}
        assert harness.actions() == [(1, "default")]

    @pytest.mark.asyncio
    async def test_do_not_disturb(self, server, harness):
        assert (await call(server, "dnd_get"))["result"] == {"do_not_disturb": False}

        assert (await call(server, "dnd_set", {"enabled": True}))["result"]["changed"] is True
        assert harness.engine.do_not_disturb is True

        assert (await call(server, "dnd_toggle"))["result"]["do_not_disturb"] is False
        assert harness.engine.do_not_disturb is False

        response = await call(server, "dnd_set", {"enabled": "yes"})
        assert response["error"]["code"] == ErrorCode.INVALID_PARAMS.value

    @pytest.mark.asyncio
    async def test_concurrent_toggles_report_distinct_states(self, server, harness):
        first, second = await asyncio.gather(call(server, "dnd_toggle"), call(server, "dnd_toggle"))

        states = sorted(r["result"]["do_not_disturb"] for r in (first, second))
        assert states == [False, True]
        assert harness.engine.do_not_disturb is False

    @pytest.mark.asyncio
    async def test_list_reports_time_left(self, server, harness):
        await harness.engine.submit(make_request(summary="a", expire_timeout=5000))
        await harness.engine.submit(make_request(summary="b", expire_timeout=0))
        harness.clock.now += 2.0

        notifications = (await call(server, "list"))["result"]["notifications"]

        assert [n["expires_in_ms"] for n in notifications] == [3000, None]

    @pytest.mark.asyncio
    async def test_history(self, server, harness):
        await harness.engine.submit(make_request(summary="a"))
        await harness.engine.submit(make_request(summary="b"))
        await harness.engine.dismiss_all()

        result = (await call(server, "history", {"limit": 1}))["result"]
        assert result["count"] == 1

        assert (await call(server, "history", {"clear": True}))["result"] == {"cleared": 2}
        assert (await call(server, "history"))["result"]["count"] == 0

    @pytest.mark.asyncio
    async def test_reload_delegates_to_daemon(self, server, daemon):
        result = (await call(server, "reload"))["result"]

        assert result == {"success": True, "rules": 0}
        daemon.reload_config.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_uninitialized_daemon(self, server, daemon):
        daemon.engine = None

        response = await call(server, "status")

        assert response["error"]["code"] == ErrorCode.DAEMON_NOT_INITIALIZED.value


class TestSocket:

    @pytest.mark.asyncio
    async def test_cli_round_trip(self, server, harness, tmp_path):
        await harness.engine.submit(make_request())
        await server.start()
        try:
            cli = DustyCLI(socket_path=tmp_path / "ipc.sock")

            assert (await cli.send_request("ping"))["status"] == "ok"
            assert (await cli.send_request("list"))["count"] == 1

            with pytest.raises(RPCError) as exc_info:
                await cli.send_request("dismiss", {"id": 99})
            assert exc_info.value.suggestion
        finally:
            await server.stop()

        assert not Path(tmp_path / "ipc.sock").exists()

    @pytest.mark.asyncio
    async def test_cli_without_daemon(self, tmp_path):
        cli = DustyCLI(socket_path=tmp_path / "missing.sock")

        with pytest.raises(ConnectionError):
            await cli.send_request("ping")
