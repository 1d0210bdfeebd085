"""Tests for config file change detection."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileMovedEvent

from dusty.config import FileWatcher
from dusty.config.file_watcher import ConfigFileHandler


@pytest.fixture
def handler(temp_config_dir):
    return ConfigFileHandler(temp_config_dir / "config.toml", AsyncMock(), MagicMock(), debounce_ms=10)


class TestConfigFileHandler:

    def test_config_modification_scheduled_on_loop(self, handler, temp_config_dir):
        handler.on_modified(FileModifiedEvent(str(temp_config_dir / "config.toml")))

        handler.loop.call_soon_threadsafe.assert_called_once_with(handler.restart_debounce)

    def test_other_files_ignored(self, handler, temp_config_dir):
        handler.on_modified(FileModifiedEvent(str(temp_config_dir / "notes.txt")))
        handler.on_modified(DirModifiedEvent(str(temp_config_dir)))

        handler.loop.call_soon_threadsafe.assert_not_called()

    def test_rename_onto_config(self, handler, temp_config_dir):
        handler.on_moved(FileMovedEvent(str(temp_config_dir / ".config.toml.swp"), str(temp_config_dir / "config.toml")))

        handler.loop.call_soon_threadsafe.assert_called_once()

    @pytest.mark.asyncio
    async def test_burst_of_changes_reloads_once(self, temp_config_dir):
        callback = AsyncMock()
        handler = ConfigFileHandler(temp_config_dir / "config.toml", callback, asyncio.get_running_loop(), debounce_ms=10)

        for _ in range(3):
            handler.restart_debounce()
        await asyncio.sleep(0.05)

        callback.assert_awaited_once_with(temp_config_dir / "config.toml")


class TestFileWatcher:

    @pytest.mark.asyncio
    async def test_missing_directory_not_watched(self, tmp_path):
        watcher = FileWatcher(tmp_path / "absent" / "config.toml", AsyncMock())

        assert watcher.start() is False
        assert not watcher.is_running()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, temp_config_dir):
        watcher = FileWatcher(temp_config_dir / "config.toml", AsyncMock())

        assert watcher.start() is True
        assert watcher.is_running()
        watcher.stop()
        assert not watcher.is_running()
