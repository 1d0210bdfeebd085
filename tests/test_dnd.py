"""Tests for scheduled do-not-disturb."""

from datetime import datetime, time

import pytest

from conftest import EngineHarness, make_policy
from dusty.dnd import DndScheduler
from dusty.models import DndSchedule

NIGHT = DndSchedule(start=time(22, 0), end=time(7, 0))


class FakeNow:
    def __init__(self, hour: int, minute: int = 0):
        self.set(hour, minute)

    def set(self, hour: int, minute: int = 0) -> None:
        self.value = datetime(2026, 3, 14, hour, minute)

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture
def engine():
    return EngineHarness(make_policy()).engine


class TestDndScheduler:

    @pytest.mark.asyncio
    async def test_disabled_schedule_does_nothing(self, engine):
        scheduler = DndScheduler(engine, DndSchedule(), now=FakeNow(23))

        assert await scheduler.tick() is None
        assert engine.do_not_disturb is False

    @pytest.mark.asyncio
    async def test_first_tick_inside_window_enables(self, engine):
        scheduler = DndScheduler(engine, NIGHT, now=FakeNow(23))

        assert await scheduler.tick() is True
        assert engine.do_not_disturb is True

    @pytest.mark.asyncio
    async def test_first_tick_outside_window_keeps_manual_state(self, engine):
        await engine.set_do_not_disturb(True)
        scheduler = DndScheduler(engine, NIGHT, now=FakeNow(12))

        assert await scheduler.tick() is None
        assert engine.do_not_disturb is True

    @pytest.mark.asyncio
    async def test_window_end_disables(self, engine):
        now = FakeNow(6, 59)
        scheduler = DndScheduler(engine, NIGHT, now=now)
        await scheduler.tick()

        now.set(7, 0)
        assert await scheduler.tick() is False
        assert engine.do_not_disturb is False

    @pytest.mark.asyncio
    async def test_manual_toggle_holds_until_next_edge(self, engine):
        now = FakeNow(22, 30)
        scheduler = DndScheduler(engine, NIGHT, now=now)
        await scheduler.tick()

        await engine.set_do_not_disturb(False)
        now.set(23, 30)
        assert await scheduler.tick() is None
        assert engine.do_not_disturb is False

        now.set(12, 0)
        await scheduler.tick()
        now.set(22, 0)
        assert await scheduler.tick() is True
        assert engine.do_not_disturb is True

    @pytest.mark.asyncio
    async def test_update_schedule_reevaluates(self, engine):
        now = FakeNow(13)
        scheduler = DndScheduler(engine, NIGHT, now=now)
        await scheduler.tick()

        scheduler.update_schedule(DndSchedule(start=time(12, 0), end=time(14, 0)))

        assert await scheduler.tick() is True
        assert engine.do_not_disturb is True
