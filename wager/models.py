# wager/models.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from util.clock import utc_now

GameKind = Literal["dice", "flip", "lightning", "slots", "jackpot"]

# 鏈上最小單位 (wei) -> 整數單位
UNIT = 10**18


def to_units(amount: int) -> Decimal:
    return Decimal(int(amount)) / Decimal(UNIT)


def to_wei(units) -> int:
    return int(Decimal(str(units)) * UNIT)


class WagerStatus(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_RESOLUTION = "awaiting_resolution"
    RESOLVED = "resolved"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (WagerStatus.RESOLVED, WagerStatus.FAILED)


class Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    won: bool
    payout: int = 0
    detail: Dict[str, Any] = Field(default_factory=dict)


class Wager(BaseModel):
    """One placed bet. Replaced on every transition, never edited in place."""

    model_config = ConfigDict(frozen=True)

    kind: GameKind
    stake: int = Field(..., gt=0)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    identity: str
    status: WagerStatus = WagerStatus.IDLE
    transaction_id: Optional[str] = None
    round_id: Optional[int] = None  # 彩池局號（下注當下）
    outcome: Optional[Outcome] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def terminal(self) -> bool:
        return self.status.terminal


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    kind: GameKind
    stake: int
    parameters: Dict[str, Any] = Field(default_factory=dict)
    won: bool
    payout: int
    detail: Dict[str, Any] = Field(default_factory=dict)
    round_id: Optional[int] = None
    resolved_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_wager(cls, wager: Wager) -> "HistoryEntry":
        return cls(
            transaction_id=wager.transaction_id,
            kind=wager.kind,
            stake=wager.stake,
            parameters=dict(wager.parameters),
            won=wager.outcome.won,
            payout=wager.outcome.payout,
            detail=dict(wager.outcome.detail),
            round_id=wager.round_id,
        )

    def summary(self) -> Dict[str, Any]:
        from wager.games import summarize

        return summarize(self)


class ResultNotification(BaseModel):
    """One decoded ledger event log."""

    model_config = ConfigDict(frozen=True)

    event: str
    transaction_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    player: Optional[str] = None
    round_id: Optional[int] = None
    log_index: Optional[int] = None
