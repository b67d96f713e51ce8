# jackpot/round.py
"""
彩池（jackpot）局狀態。

局號以帳本為準：看到不同的局號（NewJackpotRound 事件或輪詢讀值）就整份換掉，
舊局的入池事件之後再到也只會被丟棄。
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from util.clock import from_timestamp, utc_now
from wager import ledger as q
from wager.errors import ValidationError
from wager.models import ResultNotification

from .clock import DeadlineClock

logger = logging.getLogger(__name__)


class Contribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    round_id: int
    contributor: str
    amount: int
    entry_index: Optional[int] = None

    @property
    def key(self):
        return (self.contributor.lower(), self.amount, self.entry_index)


class Winner(BaseModel):
    model_config = ConfigDict(frozen=True)

    round_id: int
    winner: str
    prize: int


class RoundSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    round_id: Optional[int] = None
    pool_total: int = 0
    deadline: Optional[datetime] = None
    contributions: Tuple[Contribution, ...] = ()
    user_total: int = 0
    recent_winners: Tuple[Winner, ...] = ()

    @property
    def win_chance(self) -> float:
        if self.pool_total <= 0:
            return 0.0
        return self.user_total / self.pool_total


class TickResult(NamedTuple):
    remaining: timedelta
    closed: bool  # 只在歸零的那一次 tick 為 True


def win_chance(amount: int, pool_total: int) -> float:
    """Chance a not-yet-submitted contribution would have after it lands."""
    denom = pool_total + amount
    if amount <= 0 or denom <= 0:
        return 0.0
    return amount / denom


def chance_percent(chance: float) -> Decimal:
    return (Decimal(str(chance)) * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class RoundController:
    def __init__(self, identity: str, ledger, winners_capacity: int = 5):
        self.identity = identity
        self.ledger = ledger
        self.winners_capacity = winners_capacity
        self._round = RoundSnapshot()
        self._clock = DeadlineClock()
        self._closed_for = None
        # 帳本讀到的本人累計入池（本局），事件漏接時以它為下限
        self._player_total = 0
        self._drawn_round = None

    @property
    def round(self) -> RoundSnapshot:
        return self._round

    def _is_me(self, who: Optional[str]) -> bool:
        return bool(who) and bool(self.identity) and who.lower() == self.identity.lower()

    def _user_total(self, contributions: Iterable[Contribution]) -> int:
        seen = sum(c.amount for c in contributions if self._is_me(c.contributor))
        return max(seen, self._player_total)

    def _replace(self, round_id: int, pool_total: int, deadline: Optional[datetime]) -> None:
        old = self._round
        self._round = RoundSnapshot(
            round_id=round_id,
            pool_total=pool_total,
            deadline=deadline,
            recent_winners=old.recent_winners,
        )
        self._clock = DeadlineClock(deadline)
        self._player_total = 0
        logger.info("jackpot round %s -> %s (pool=%s)", old.round_id, round_id, pool_total)

    # ===== 讀值 =====

    async def refresh(self) -> RoundSnapshot:
        round_id = int(await self.ledger.read_value(q.Q_ROUND_ID))
        pool = await self.ledger.read_value(q.Q_POOL)
        draw_time = await self.ledger.read_value(q.Q_DRAW_TIME)
        player_total = None
        if self.identity:
            player_total = await self.ledger.read_value(q.Q_PLAYER_TOTAL, round_id, self.identity)
        return self.apply_read(
            round_id,
            int(pool or 0),
            from_timestamp(draw_time),
            None if player_total is None else int(player_total),
        )

    def apply_read(
        self,
        round_id: int,
        pool_total: int,
        deadline: Optional[datetime],
        player_total: Optional[int] = None,
    ) -> RoundSnapshot:
        held = self._round.round_id
        # 讀值途中可能已經收到新局事件：局號只進不退
        if held is not None and round_id < held:
            logger.debug("stale jackpot read for round %s (held %s)", round_id, held)
            return self._round
        if round_id != held:
            self._replace(round_id, pool_total, deadline)
        else:
            self._round = self._round.model_copy(update={
                "pool_total": max(self._round.pool_total, pool_total),
                "deadline": deadline,
            })
            self._clock = DeadlineClock(deadline)
        if player_total is not None and self._drawn_round != round_id:
            self._player_total = max(self._player_total, player_total)
            self._round = self._round.model_copy(update={
                "user_total": self._user_total(self._round.contributions),
            })
        return self._round

    # ===== 事件 =====

    def on_round_started(self, batch: Iterable[ResultNotification]) -> None:
        newest = None
        for n in batch:
            rid = int(n.payload["roundId"])
            if newest is None or rid > int(newest.payload["roundId"]):
                newest = n
        if newest is None:
            return
        rid = int(newest.payload["roundId"])
        held = self._round.round_id
        if held is not None and rid <= held:
            logger.debug("stale NewJackpotRound %s (held %s)", rid, held)
            return
        self._replace(rid, 0, from_timestamp(newest.payload.get("drawTime")))

    def on_contributions(self, batch: Iterable[ResultNotification]) -> None:
        for n in batch:
            p = n.payload
            rid = int(p["roundId"])
            r = self._round
            if rid != r.round_id:
                logger.debug("stale JackpotEntered for round %s (held %s)", rid, r.round_id)
                continue
            c = Contribution(
                round_id=rid,
                contributor=str(p["player"]),
                amount=int(p["amount"]),
                entry_index=None if p.get("entryIndex") is None else int(p["entryIndex"]),
            )
            if any(x.key == c.key for x in r.contributions):
                continue
            contributions = r.contributions + (c,)
            if p.get("totalPool") is not None:
                pool = max(r.pool_total, int(p["totalPool"]))
            else:
                pool = r.pool_total + c.amount
            self._round = r.model_copy(update={
                "contributions": contributions,
                "pool_total": pool,
                "user_total": self._user_total(contributions),
            })

    def on_draws(self, batch: Iterable[ResultNotification]) -> None:
        for n in batch:
            p = n.payload
            w = Winner(round_id=int(p["roundId"]), winner=str(p["winner"]), prize=int(p.get("prizeAmount") or 0))
            r = self._round
            winners = r.recent_winners
            if not any(x.round_id == w.round_id and x.winner.lower() == w.winner.lower() for x in winners):
                winners = ((w,) + winners)[: self.winners_capacity]
                if self._is_me(w.winner):
                    logger.info("jackpot round %s won by this session: %s", w.round_id, w.prize)
            update = {"recent_winners": winners}
            # 開獎後到新局事件之前，不要繼續顯示舊局的入池
            if w.round_id == r.round_id:
                update.update(contributions=(), user_total=0)
                self._player_total = 0
                self._drawn_round = w.round_id
            self._round = r.model_copy(update=update)

    # ===== 倒數 =====

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        return self._clock.remaining(now or utc_now())

    def tick(self, now: Optional[datetime] = None) -> TickResult:
        now = now or utc_now()
        left = self._clock.remaining(now)
        closed = False
        if self._clock.expired(now):
            mark = (self._round.round_id, self._round.deadline)
            if mark != self._closed_for:
                self._closed_for = mark
                closed = True
        return TickResult(left, closed)

    # ===== 下注前檢查 =====

    def win_chance(self, amount: int) -> float:
        return win_chance(amount, self._round.pool_total)

    async def check_contribution(self, amount: int, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        if self._round.round_id is None:
            raise ValidationError("jackpot round not loaded yet")
        if self._clock.expired(now):
            raise ValidationError("jackpot round has ended, wait for the next round")
        if amount <= 0:
            raise ValidationError("amount must be positive")
        try:
            balance = await self.ledger.read_balance(self.identity)
        except Exception:
            logger.exception("balance read failed for %s", self.identity)
            raise ValidationError("balance unavailable, try again")
        if int(balance) < amount:
            raise ValidationError("insufficient balance")
