# arcade/schema.py
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PlaceWagerReq(BaseModel):
    stake: int = Field(..., ge=1)  # wei
    parameters: Dict[str, Any] = Field(default_factory=dict)


class GameResp(BaseModel):
    game: str
    wager: Optional[Dict[str, Any]] = None
    slow: bool = False        # 等太久的提示，不代表失敗
    error: Optional[str] = None
    potential_payout: Optional[Decimal] = None  # 只有閃電賽跑有
    history: List[Dict[str, Any]] = []


class Countdown(BaseModel):
    hours: int
    minutes: int
    seconds: int


class RoundResp(BaseModel):
    round_id: Optional[int]
    pool_total: int
    pool: Decimal
    deadline: Optional[str]
    remaining_seconds: int
    countdown: Countdown
    user_total: int
    win_chance: Decimal       # 百分比，小數兩位
    contributions: List[Dict[str, Any]] = []
    recent_winners: List[Dict[str, Any]] = []


class ChanceResp(BaseModel):
    amount: int
    pool_total: int
    win_chance: Decimal
