"""Tests for rendering collaborators."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import EngineHarness, make_policy, make_request
from dusty.models import Action, Notification, RendererConfig, Urgency, VisibleQueueChanged
from dusty.renderers import EwwRenderer, LogRenderer, create_renderer, notification_payload


def notification(notification_id: int, **kwargs) -> Notification:
    return Notification(id=notification_id, app_name="mail", summary=f"msg {notification_id}", **kwargs)


class TestPayload:

    def test_payload_fields(self):
        payload = json.loads(notification_payload([
            notification(1, urgency=Urgency.CRITICAL, actions=(Action(key="default", label="Open"),), duplicate_count=2),
        ]))

        assert payload == [{
            "id": 1,
            "app_name": "mail",
            "summary": "msg 1",
            "body": "",
            "icon": "",
            "urgency": "critical",
            "actions": [{"key": "default", "label": "Open"}],
            "count": 3,
        }]


class TestLogRenderer:

    def test_logs_visible_queue(self, caplog):
        caplog.set_level("INFO")
        renderer = LogRenderer()

        renderer(VisibleQueueChanged((notification(1), notification(2))))

        assert "Visible queue (2)" in caplog.text
        assert "#1 [normal] mail: msg 1" in caplog.text

    def test_ignores_other_events(self):
        renderer = LogRenderer()
        renderer.update = MagicMock()

        renderer(object())

        renderer.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_receives_engine_updates(self):
        harness = EngineHarness(make_policy())
        renderer = LogRenderer()
        renderer.update = MagicMock()
        harness.engine.add_listener(renderer)

        await harness.engine.submit(make_request())

        visible = renderer.update.call_args[0][0]
        assert [n.id for n in visible] == [1]


class TestEwwRenderer:

    def test_command(self):
        renderer = EwwRenderer(Path("/tmp/eww"), "notifs")

        assert renderer.build_command("[]") == ["eww", "--config", "/tmp/eww", "update", "notifs=[]"]
        assert EwwRenderer().build_command("[]") == ["eww", "update", "notifications=[]"]

    @pytest.mark.asyncio
    async def test_unchanged_payload_published_once(self):
        renderer = EwwRenderer()
        renderer.publish = AsyncMock(return_value=True)

        renderer.update([notification(1)])
        renderer.update([notification(1)])
        await renderer.close()

        renderer.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_latest_snapshot_wins(self):
        renderer = EwwRenderer()
        renderer.publish = AsyncMock(return_value=True)

        renderer.update([notification(1)])
        renderer.update([notification(1), notification(2)])
        renderer.update([])
        await renderer.close()

        published = [c.args[0] for c in renderer.publish.await_args_list]
        assert published[-1] == "[]"
        assert len(published) <= 2

    @pytest.mark.asyncio
    async def test_publish_runs_eww(self):
        proc = MagicMock()
        proc.returncode = 0
        proc.communicate = AsyncMock(return_value=(b"", b""))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as exec_mock:
            assert await EwwRenderer(variable="n").publish("[]") is True

        assert exec_mock.await_args.args == ("eww", "update", "n=[]")

    @pytest.mark.asyncio
    async def test_publish_failure(self):
        proc = MagicMock()
        proc.returncode = 1
        proc.communicate = AsyncMock(return_value=(b"", b"daemon not running"))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            assert await EwwRenderer().publish("[]") is False

    @pytest.mark.asyncio
    async def test_missing_eww_binary(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError)):
            assert await EwwRenderer().publish("[]") is False


def test_create_renderer():
    assert isinstance(create_renderer(RendererConfig()), LogRenderer)
    assert isinstance(create_renderer(RendererConfig(kind="eww")), EwwRenderer)
