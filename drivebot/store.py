"""In-memory per-user bookkeeping: usage counters and recent downloads."""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Tuple

MAX_FILE_HISTORY = 50
ACTIVE_WINDOW = 24 * 60 * 60


@dataclass
class UserStats:
    message_count: int = 0
    download_count: int = 0
    first_seen: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)


@dataclass
class FileRecord:
    """A file delivered to a user"""
    record_id: str
    name: str
    size: int
    mime_type: str
    drive_file_id: str
    downloaded_at: float = field(default_factory=time.time)


@dataclass
class Totals:
    users: int
    messages: int
    downloads: int
    active_users: int


class BotStore:
    """Holds user statistics and file history for one bot instance.

    Nothing here is persisted; a restart starts from empty.
    """

    def __init__(self, admin_user_ids: Iterable[int] = (), history_limit: int = MAX_FILE_HISTORY):
        self.admin_user_ids = frozenset(admin_user_ids)
        self.history_limit = history_limit
        self._stats: Dict[int, UserStats] = {}
        self._files: Dict[int, Deque[FileRecord]] = {}
        self._counter = 0

    def _touch(self, user_id: int) -> UserStats:
        stats = self._stats.get(user_id)
        if stats is None:
            stats = self._stats[user_id] = UserStats()
        stats.last_activity = time.time()
        return stats

    def record_message(self, user_id: int) -> UserStats:
        stats = self._touch(user_id)
        stats.message_count += 1
        return stats

    def record_download(self, user_id: int) -> UserStats:
        stats = self._touch(user_id)
        stats.download_count += 1
        return stats

    def get_stats(self, user_id: int) -> UserStats:
        return self._stats.get(user_id) or UserStats()

    def all_stats(self) -> List[Tuple[int, UserStats]]:
        """All users, most downloads first"""
        return sorted(self._stats.items(), key=lambda item: item[1].download_count, reverse=True)

    def add_file(self, user_id: int, name: str, size: int, mime_type: str, drive_file_id: str) -> FileRecord:
        self._counter += 1
        record = FileRecord(f"{self._counter:x}", name, size, mime_type, drive_file_id)
        history = self._files.setdefault(user_id, deque(maxlen=self.history_limit))
        history.appendleft(record)
        return record

    def get_files(self, user_id: int) -> List[FileRecord]:
        """Newest first"""
        return list(self._files.get(user_id, ()))

    def find_file(self, user_id: int, record_id: str) -> Optional[FileRecord]:
        for record in self._files.get(user_id, ()):
            if record.record_id == record_id:
                return record
        return None

    def remove_file_record(self, user_id: int, record_id: str) -> bool:
        record = self.find_file(user_id, record_id)
        if record is None:
            return False
        self._files[user_id].remove(record)
        return True

    def clear_history(self, user_id: int) -> int:
        history = self._files.pop(user_id, None)
        return len(history) if history else 0

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_user_ids

    def totals(self, now: Optional[float] = None) -> Totals:
        now = time.time() if now is None else now
        stats = list(self._stats.values())
        return Totals(
            users=len(stats),
            messages=sum(s.message_count for s in stats),
            downloads=sum(s.download_count for s in stats),
            active_users=sum(1 for s in stats if now - s.last_activity < ACTIVE_WINDOW),
        )
