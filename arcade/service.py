# arcade/service.py
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from jackpot.clock import split
from jackpot.round import RoundController, chance_percent
from util.clock import to_local, utc_now
from wager import ledger as q
from wager.errors import ValidationError
from wager.games import GAMES, get_game, potential_payout
from wager.history import HistoryLedger
from wager.models import Wager, to_units
from wager.session import WagerSession

from . import config
from .simulator import SimulatedChain, SimulatedLedger

logger = logging.getLogger(__name__)

# 結果事件 -> 遊戲
RESULT_EVENTS = {g.result_event: kind for kind, g in GAMES.items()}
ROUND_EVENTS = [q.JACKPOT_DRAWN, q.NEW_JACKPOT_ROUND]


class Arcade:
    """
    單一 session（一個錢包地址）的所有遊戲狀態。
    所有狀態變更都在同一個 event loop 上執行，不需要鎖。
    """

    def __init__(
        self,
        identity: str,
        ledger,
        journal=None,
        tick_seconds: float = config.TICK_SECONDS,
        poll_seconds: float = config.POLL_SECONDS,
    ):
        self.identity = identity
        self.ledger = ledger
        self.tick_seconds = tick_seconds
        self.poll_seconds = poll_seconds
        self.controller = RoundController(identity, ledger, winners_capacity=config.RECENT_WINNERS)
        self.sessions: Dict[str, WagerSession] = {}
        for kind in config.GAMES:
            self.sessions[kind] = WagerSession(
                kind,
                ledger,
                HistoryLedger(config.HISTORY_CAPACITY[kind]),
                identity,
                round_controller=self.controller if get_game(kind).pooled else None,
                journal=journal,
                on_refresh=self.refresh_round,
            )
        self._tasks: List[asyncio.Task] = []
        self._streams: List[Any] = []
        self.last_seen = utc_now()

    # ===== 啟動 / 停止 =====

    async def start(self) -> None:
        # 先訂閱，避免漏掉啟動期間的事件
        for event in list(RESULT_EVENTS) + ROUND_EVENTS:
            stream = self.ledger.subscribe_results(event)
            self._streams.append(stream)
            self._spawn(self._pump(event, stream))
        await self.refresh_round()
        for session in self.sessions.values():
            self._spawn(session.recover())
        self._spawn(self._tick_loop())
        self._spawn(self._poll_loop())

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        # 退訂
        for stream in self._streams:
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()
        self._streams = []
        for session in self.sessions.values():
            await session.flush()

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_seen = now or utc_now()

    def idle_for(self, now: Optional[datetime] = None) -> float:
        """Seconds since the last request, 0 while any wager is in flight."""
        if any(s.in_flight for s in self.sessions.values()):
            return 0.0
        return max(0.0, ((now or utc_now()) - self.last_seen).total_seconds())

    def _spawn(self, coro) -> None:
        self._tasks.append(asyncio.ensure_future(coro))

    # ===== 事件分派 =====

    def dispatch(self, event: str, batch) -> None:
        if event == q.JACKPOT_ENTERED:
            self.controller.on_contributions(batch)
        elif event == q.JACKPOT_DRAWN:
            self.controller.on_draws(batch)
        elif event == q.NEW_JACKPOT_ROUND:
            self.controller.on_round_started(batch)
        kind = RESULT_EVENTS.get(event)
        if kind is not None:
            self.sessions[kind].on_results(batch)

    async def _pump(self, event: str, stream) -> None:
        async for batch in stream:
            try:
                self.dispatch(event, batch)
            except Exception:
                logger.exception("[ARCADE][%s] delivery of %s failed", self.identity, event)

    async def _tick_loop(self) -> None:
        while True:
            try:
                result = self.controller.tick()
                if result.closed:
                    # 截止後主動讀一次，不等下一輪輪詢
                    logger.info("[ARCADE] jackpot round %s closed", self.controller.round.round_id)
                    await self.refresh_round()
            except Exception:
                logger.exception("[ARCADE] tick error")
            await asyncio.sleep(self.tick_seconds)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_seconds)
            await self.refresh_round()

    async def refresh_round(self, round_id: Optional[int] = None) -> None:
        try:
            await self.controller.refresh()
        except Exception:
            logger.exception("[ARCADE] jackpot refresh failed")

    # ===== 對外 =====

    def session(self, kind: str) -> WagerSession:
        get_game(kind)
        return self.sessions[kind]

    async def place_wager(self, kind: str, stake: int, parameters: Optional[dict] = None) -> Wager:
        return await self.session(kind).place_wager(stake, parameters)

    def leave(self, kind: str) -> None:
        self.session(kind).reset()

    def game_state(self, kind: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        s = self.session(kind)
        w = s.current
        payout = potential_payout(kind, w.stake, w.parameters) if w else None
        return {
            "game": kind,
            "wager": w.model_dump(mode="json") if w else None,
            "potential_payout": to_units(payout) if payout is not None else None,
            "slow": s.pending_for(now) > config.SLOW_AFTER_SECONDS,
            "error": w.error if w else None,
            "history": [e.summary() for e in s.history.entries],
        }

    def round_state(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        r = self.controller.round
        left = self.controller.remaining(now or utc_now())
        hours, minutes, seconds = split(left)
        return {
            "round_id": r.round_id,
            "pool_total": r.pool_total,
            "pool": to_units(r.pool_total),
            "deadline": to_local(r.deadline).isoformat() if r.deadline else None,
            "remaining_seconds": int(left.total_seconds()),
            "countdown": {"hours": hours, "minutes": minutes, "seconds": seconds},
            "user_total": r.user_total,
            "win_chance": chance_percent(r.win_chance),
            "contributions": [c.model_dump() for c in reversed(r.contributions)],
            "recent_winners": [w.model_dump() for w in r.recent_winners],
        }

    def prospective_chance(self, amount: int) -> Dict[str, Any]:
        if amount <= 0:
            raise ValidationError("amount must be positive")
        chance = self.controller.win_chance(amount)
        return {"amount": amount, "pool_total": self.controller.round.pool_total, "win_chance": chance_percent(chance)}


# ===== 每個地址一個 Arcade =====

_arcades: Dict[str, Arcade] = {}
_chain: Optional[SimulatedChain] = None
_chain_task: Optional[asyncio.Task] = None
_journal = None
_sweeper: Optional[asyncio.Task] = None


def simulated_ledger(identity: str):
    global _chain, _chain_task
    if _chain is None:
        _chain = SimulatedChain()
        _chain_task = asyncio.ensure_future(_chain.run_rounds())
    return SimulatedLedger(_chain, identity)


ledger_factory: Callable[[str], Any] = simulated_ledger


def use_journal(journal) -> None:
    global _journal
    _journal = journal


async def get_arcade(identity: str) -> Arcade:
    global _sweeper
    if not identity:
        raise ValidationError("no active session identity")
    key = identity.lower()
    arcade = _arcades.get(key)
    if arcade is None:
        arcade = Arcade(identity, ledger_factory(identity), journal=_journal)
        _arcades[key] = arcade
        await arcade.start()
        logger.info("[ARCADE] session started for %s", identity)
    arcade.touch()
    if _sweeper is None or _sweeper.done():
        _sweeper = asyncio.ensure_future(_sweep_loop())
    return arcade


async def evict_idle(now: Optional[datetime] = None, idle_seconds: float = config.IDLE_SECONDS) -> List[str]:
    """Stop arcades with no request for `idle_seconds` and no wager in flight."""
    now = now or utc_now()
    gone = [key for key, a in _arcades.items() if a.idle_for(now) >= idle_seconds]
    for key in gone:
        arcade = _arcades.pop(key)
        await arcade.stop()
        logger.info("[ARCADE] session for %s evicted after idling", arcade.identity)
    return gone


async def _sweep_loop() -> None:
    while True:
        await asyncio.sleep(config.SWEEP_SECONDS)
        try:
            await evict_idle()
        except Exception:
            logger.exception("[ARCADE] idle sweep failed")


async def shutdown_all() -> None:
    global _chain, _chain_task, _sweeper
    if _sweeper is not None:
        _sweeper.cancel()
        await asyncio.gather(_sweeper, return_exceptions=True)
        _sweeper = None
    for arcade in list(_arcades.values()):
        await arcade.stop()
    _arcades.clear()
    if _chain_task is not None:
        _chain_task.cancel()
        await asyncio.gather(_chain_task, return_exceptions=True)
    _chain, _chain_task = None, None
