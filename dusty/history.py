"""Notification history buffer.

Keeps the most recent closed notifications in memory, oldest evicted first.
When persistence is enabled the buffer and the id counter are written to a
JSON file so ids resume after a restart. Only summary fields are persisted;
live notifications and their timers are never restored.
"""

import json
import logging
import os
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .models import CloseReason, HistoryEntry, Notification

logger = logging.getLogger(__name__)


class NotificationHistory:
    """Circular buffer of closed notifications."""

    # Reasons that do not end a notification from the user's point of view
    SKIPPED_REASONS = frozenset({CloseReason.REPLACED, CloseReason.SUPPRESSED})

    def __init__(self, max_size: int = 100, persistence_path: Optional[Path] = None) -> None:
        """
        Initialize history buffer.

        Args:
            max_size: Maximum number of entries to keep
            persistence_path: JSON file for persistence (None disables persistence)
        """
        self.entries: Deque[HistoryEntry] = deque(maxlen=max_size)
        self.max_size = max_size
        self.persistence_path = persistence_path
        self.next_id: Optional[int] = None
        self._dirty = False

    def __len__(self) -> int:
        return len(self.entries)

    def record(self, notification: Notification, reason: CloseReason) -> Optional[HistoryEntry]:
        """
        Record a closed notification.

        Transient notifications and replace/suppress closes are not recorded.

        Returns:
            The recorded entry, or None if skipped
        """
        if notification.transient or reason in self.SKIPPED_REASONS:
            return None

        entry = HistoryEntry(
            id=notification.id,
            app_name=notification.app_name,
            summary=notification.summary,
            body=notification.body,
            urgency=notification.urgency,
            reason=reason,
            received_at=notification.received_at,
            closed_at=datetime.now(),
        )
        self.entries.append(entry)
        self._dirty = True
        return entry

    def recent(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Most recent entries first."""
        items = list(reversed(self.entries))
        if limit is not None:
            items = items[:limit]
        return items

    def clear(self) -> int:
        count = len(self.entries)
        self.entries.clear()
        self._dirty = True
        return count

    def load(self) -> bool:
        """
        Load persisted history.

        Returns:
            True if a history file was loaded
        """
        if self.persistence_path is None or not self.persistence_path.exists():
            return False

        try:
            with open(self.persistence_path, "r") as f:
                data = json.load(f)

            entries = [HistoryEntry.model_validate(item) for item in data.get("entries", [])]
            self.entries.clear()
            self.entries.extend(entries[-self.max_size:])

            next_id = data.get("next_id")
            self.next_id = next_id if isinstance(next_id, int) and next_id > 0 else None

            self._dirty = False
            logger.info(f"Loaded {len(self.entries)} history entries from {self.persistence_path}")
            return True

        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Failed to load history from {self.persistence_path}: {e}")
            return False

    def save(self, next_id: Optional[int] = None, force: bool = False) -> bool:
        """
        Persist history atomically (write to temp file, then rename).

        Args:
            next_id: Id counter to resume from after restart
            force: Write even if nothing changed

        Returns:
            True if written
        """
        if self.persistence_path is None:
            return False

        if next_id is not None and next_id != self.next_id:
            self.next_id = next_id
            self._dirty = True

        if not (self._dirty or force):
            return False

        payload = {
            "next_id": self.next_id,
            "entries": [entry.model_dump(mode="json") for entry in self.entries],
        }

        try:
            self.persistence_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.persistence_path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.persistence_path)

            self._dirty = False
            logger.debug(f"Saved {len(self.entries)} history entries to {self.persistence_path}")
            return True

        except OSError as e:
            logger.error(f"Failed to save history to {self.persistence_path}: {e}")
            return False
