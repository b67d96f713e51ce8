# wager/history.py
from collections import deque
from typing import Tuple

from .models import HistoryEntry


class HistoryLedger:
    """固定容量、新的在前的結算紀錄"""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("history capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque = deque(maxlen=capacity)

    def append(self, entry: HistoryEntry) -> bool:
        if any(e.transaction_id == entry.transaction_id for e in self._entries):
            return False
        # maxlen 會從右邊（最舊）擠掉
        self._entries.appendleft(entry)
        return True

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
