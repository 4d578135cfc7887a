"""Per-bot structured event stream polled by the dashboard log view."""
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Iterable, List, Optional

from src.models.bot_models import LogEntry, LogLevel

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class EventLog:
    """Append-only, id-ordered log for one bot.

    Entries are mirrored to the `bot.<id>` logger. Only the newest
    `max_entries` stay in memory; durable history belongs to the store.
    """

    def __init__(self, bot_id: int, max_entries: int = 5000,
                 clock: Optional[Callable[[], datetime]] = None):
        self.bot_id = bot_id
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)
        self._next_id = 1
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(f"bot.{bot_id}")

    def append(self, level: LogLevel, message: str) -> LogEntry:
        entry = LogEntry(id=self._next_id, timestamp=self._clock(), level=LogLevel(level), message=message)
        self._next_id += 1
        self._entries.append(entry)
        self._logger.log(_PY_LEVELS[entry.level], "[%s] %s", entry.level.value, message)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.append(LogLevel.INFO, message)

    def warn(self, message: str) -> LogEntry:
        return self.append(LogLevel.WARN, message)

    def error(self, message: str) -> LogEntry:
        return self.append(LogLevel.ERROR, message)

    def success(self, message: str) -> LogEntry:
        return self.append(LogLevel.SUCCESS, message)

    def entries(self, after_id: Optional[int] = None, limit: int = 100,
                level: Optional[LogLevel] = None) -> List[LogEntry]:
        """Entries in id order.

        With `after_id` this pages forward: the oldest `limit` entries newer
        than `after_id`. Without it, the newest `limit` entries (tail).
        `limit=0` means no limit.
        """
        floor = after_id or 0
        selected = [e for e in self._entries if e.id > floor and (level is None or e.level == level)]
        if not limit:
            return selected
        return selected[:limit] if after_id is not None else selected[-limit:]

    def restore(self, entries: Iterable[LogEntry]):
        """Load previously persisted entries and continue numbering after them."""
        for entry in sorted(entries, key=lambda e: e.id):
            self._entries.append(entry)
            self._next_id = max(self._next_id, entry.id + 1)

    @property
    def last_id(self) -> int:
        return self._next_id - 1

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["EventLog"]
