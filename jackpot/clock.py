# jackpot/clock.py
from datetime import datetime, timedelta
from typing import Optional, Tuple

ZERO = timedelta(0)


class DeadlineClock:
    """倒數一律由「截止時間 - 現在」重算，最小為 0。"""

    def __init__(self, deadline: Optional[datetime] = None):
        self.deadline = deadline

    def remaining(self, now: datetime) -> timedelta:
        if self.deadline is None:
            return ZERO
        left = self.deadline - now
        return left if left > ZERO else ZERO

    def expired(self, now: datetime) -> bool:
        return self.deadline is not None and now >= self.deadline


def split(remaining: timedelta) -> Tuple[int, int, int]:
    secs = int(remaining.total_seconds())
    return secs // 3600, (secs % 3600) // 60, secs % 60
