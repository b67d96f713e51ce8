# wager/ledger.py
"""
帳本（智能合約）協作者介面。

引擎只依賴這裡的 Protocol：送單、等確認、訂閱結果事件、讀值、讀餘額。
錢包簽名與 ABI 編碼都在實作端。
"""
from __future__ import annotations

from typing import Any, AsyncIterator, List, Optional, Protocol

from .models import GameKind, ResultNotification, Wager

# 各遊戲的結果事件
DICE_RESULT = "DiceRollResult"
FLIP_RESULT = "FlipResult"
LIGHTNING_RESULT = "LightningRaceResolved"
SLOTS_RESULT = "SlotsResult"
JACKPOT_ENTERED = "JackpotEntered"
JACKPOT_DRAWN = "JackpotDrawn"
NEW_JACKPOT_ROUND = "NewJackpotRound"

# read_value 查詢名稱
Q_ROUND_ID = "currentJackpotRoundId"
Q_POOL = "currentJackpotPool"
Q_DRAW_TIME = "nextJackpotDrawTime"
Q_PLAYER_TOTAL = "jackpotPlayerTotalEntries"

Batch = List[ResultNotification]


class LedgerClient(Protocol):
    async def submit_wager(self, kind: GameKind, parameters: dict, stake: int) -> str:
        """Return the transaction id, or raise SubmissionError. Single attempt."""
        ...

    async def await_confirmation(self, transaction_id: str) -> None:
        """Return once mined, or raise ConfirmationError."""
        ...

    def subscribe_results(self, event: str) -> AsyncIterator[Batch]:
        """Long-lived stream of batches; at-least-once, unordered across transactions.
        Closing the stream ends the subscription."""
        ...

    async def read_value(self, query: str, *args: Any) -> Any:
        ...

    async def read_balance(self, identity: str) -> int:
        ...


class WagerJournal(Protocol):
    """Durable record of submitted wagers, used to recover after a restart."""

    async def record(self, wager: Wager) -> None:
        ...

    async def pending(self, identity: str, kind: GameKind) -> Optional[Wager]:
        ...
