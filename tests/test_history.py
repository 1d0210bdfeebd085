"""Tests for the notification history buffer and its persistence."""

import json

from dusty.history import NotificationHistory
from dusty.models import CloseReason, Notification


def closed(notification_id: int, **kwargs) -> Notification:
    return Notification(id=notification_id, app_name="mail", summary=f"msg {notification_id}", **kwargs)


class TestRecord:

    def test_records_newest_first(self):
        history = NotificationHistory(max_size=10)
        for i in (1, 2, 3):
            history.record(closed(i), CloseReason.EXPIRED)

        assert [e.id for e in history.recent()] == [3, 2, 1]
        assert [e.id for e in history.recent(2)] == [3, 2]

    def test_evicts_oldest(self):
        history = NotificationHistory(max_size=2)
        for i in (1, 2, 3):
            history.record(closed(i), CloseReason.DISMISSED)

        assert [e.id for e in history.recent()] == [3, 2]

    def test_transient_skipped(self):
        history = NotificationHistory()

        assert history.record(closed(1, transient=True), CloseReason.EXPIRED) is None
        assert len(history) == 0

    def test_replaced_and_suppressed_skipped(self):
        history = NotificationHistory()

        history.record(closed(1), CloseReason.REPLACED)
        history.record(closed(2), CloseReason.SUPPRESSED)

        assert len(history) == 0

    def test_clear(self):
        history = NotificationHistory()
        history.record(closed(1), CloseReason.CLOSED)

        assert history.clear() == 1
        assert history.recent() == []


class TestPersistence:

    def test_save_and_load_round_trip(self, tmp_path):
        path = tmp_path / "history.json"
        history = NotificationHistory(persistence_path=path)
        history.record(closed(1, body="hello"), CloseReason.EXPIRED)

        assert history.save(next_id=2) is True

        restored = NotificationHistory(persistence_path=path)
        assert restored.load() is True
        assert restored.next_id == 2
        entry = restored.recent()[0]
        assert (entry.id, entry.body, entry.reason) == (1, "hello", CloseReason.EXPIRED)

    def test_save_skipped_when_unchanged(self, tmp_path):
        history = NotificationHistory(persistence_path=tmp_path / "history.json")
        history.record(closed(1), CloseReason.EXPIRED)
        history.save(next_id=2)

        assert history.save(next_id=2) is False
        assert history.save(next_id=2, force=True) is True

    def test_save_disabled_without_path(self):
        history = NotificationHistory()
        history.record(closed(1), CloseReason.EXPIRED)

        assert history.save(next_id=5) is False

    def test_load_missing_file(self, tmp_path):
        assert NotificationHistory(persistence_path=tmp_path / "none.json").load() is False

    def test_load_corrupt_file(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json")

        history = NotificationHistory(persistence_path=path)

        assert history.load() is False
        assert history.next_id is None

    def test_load_ignores_invalid_next_id(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(json.dumps({"next_id": -3, "entries": []}))

        history = NotificationHistory(persistence_path=path)

        assert history.load() is True
        assert history.next_id is None
