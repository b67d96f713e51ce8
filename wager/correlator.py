# wager/correlator.py
import logging
from collections import deque
from typing import Iterable, List, Optional

from .models import ResultNotification

logger = logging.getLogger(__name__)


class EventCorrelator:
    """
    Picks the result notification that belongs to the tracked transaction.

    Delivery upstream is at-least-once, so every matched transaction id is
    remembered and later deliveries of it are ignored.
    """

    def __init__(self, identity: str, memory: int = 64):
        self.identity = identity
        self._tracked: Optional[str] = None
        self._consumed: deque = deque(maxlen=memory)

    @property
    def tracked(self) -> Optional[str]:
        return self._tracked

    def track(self, transaction_id: str) -> None:
        self._tracked = transaction_id

    def release(self) -> None:
        self._tracked = None

    def _mine(self, n: ResultNotification) -> bool:
        return n.player is None or n.player.lower() == self.identity.lower()

    def match(self, batch: Iterable[ResultNotification]) -> Optional[ResultNotification]:
        tx = self._tracked
        if tx is None or tx in self._consumed:
            return None
        found = None
        for n in batch:
            if n.transaction_id == tx and self._mine(n):
                found = n  # 同批多筆取最後一筆
        if found is None:
            logger.debug("no result for %s in batch", tx)
            return None
        self._consumed.append(tx)
        return found

    def orphans(self, batch: Iterable[ResultNotification]) -> List[ResultNotification]:
        """Own notifications for transactions this session is not tracking."""
        return [
            n for n in batch
            if n.player is not None
            and self._mine(n)
            and n.transaction_id != self._tracked
            and n.transaction_id not in self._consumed
        ]
