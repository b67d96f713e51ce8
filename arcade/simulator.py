# arcade/simulator.py
"""
In-process ledger for local runs and integration tests.

`SimulatedChain` holds shared state (balances, pending transactions, the
jackpot round, event subscribers); `SimulatedLedger` is one wallet's view of
it and implements the LedgerClient protocol. Outcomes are plain `random`
draws: fairness is not this module's concern.
"""
import asyncio
import logging
import random
import secrets
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from util.clock import utc_now
from wager import ledger as q
from wager.errors import ConfirmationError, SubmissionError
from wager.games import RACERS, SYMBOLS, Face, GameResult, slots_multiplier
from wager.models import ResultNotification

from . import config

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# 骰子：over / under 1.5 倍，exactly 5 倍
DICE_MULT = {"over": Decimal("1.5"), "under": Decimal("1.5"), "exactly": Decimal("5")}
# 硬幣：抽 5% 水（同百家樂莊家 0.95）
FLIP_MULT = Decimal("1.95")


def new_tx() -> str:
    return "0x" + secrets.token_hex(32)


def roll_dice(rng) -> int:
    return rng.randint(1, 6) + rng.randint(1, 6)


def dice_won(direction: str, target: int, roll: int) -> bool:
    if direction == "over":
        return roll > target
    if direction == "under":
        return roll < target
    return roll == target


def race_winner(rng) -> int:
    # 賠率越高越難贏
    lanes = list(RACERS.keys())
    weights = [float(1 / RACERS[lane][1]) for lane in lanes]
    return rng.choices(lanes, weights=weights, k=1)[0]


def spin_reels(rng) -> List[int]:
    # "any" 只出現在賠率表，不會出現在輪上
    return [rng.randrange(len(SYMBOLS) - 1) for _ in range(3)]


class Subscription:
    """One event stream; `aclose()` detaches it from the chain."""

    def __init__(self, chain: "SimulatedChain", event: str, queue: asyncio.Queue):
        self.chain = chain
        self.event = event
        self.queue = queue
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    async def aclose(self) -> None:
        if not self.closed:
            self.closed = True
            self.chain.unsubscribe(self.event, self.queue)


class SimulatedChain:
    def __init__(
        self,
        confirm_seconds: float = config.SIM_CONFIRM_SECONDS,
        resolve_seconds: float = config.SIM_RESOLVE_SECONDS,
        round_seconds: int = config.JACKPOT_ROUND_SECONDS,
        start_balance: int = config.SIM_START_BALANCE,
        duplicate_delivery: bool = False,
        rng: Optional[random.Random] = None,
    ):
        self.confirm_seconds = confirm_seconds
        self.resolve_seconds = resolve_seconds
        self.round_seconds = round_seconds
        self.start_balance = start_balance
        self.duplicate_delivery = duplicate_delivery
        self.rng = rng or random.Random()

        self.balances: Dict[str, int] = {}
        self.reject_next: Optional[str] = None
        self.fail_next_confirmation: Optional[str] = None

        self._subs: Dict[str, List[asyncio.Queue]] = {}
        self._mined: Dict[str, asyncio.Event] = {}
        self._reverted: Dict[str, str] = {}
        self._tasks: set = set()
        self._game_id = 0
        self._log_index = 0

        self.round_id = 1
        self.pool = 0
        self.entries: List[tuple] = []  # (player, amount)
        self.draw_time = utc_now() + timedelta(seconds=round_seconds)

    # ===== 訂閱 =====

    def subscribe(self, event: str) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue()
        self._subs.setdefault(event, []).append(queue)
        return Subscription(self, event, queue)

    def unsubscribe(self, event: str, queue: asyncio.Queue) -> None:
        subs = self._subs.get(event, [])
        if queue in subs:
            subs.remove(queue)
        if not subs:
            self._subs.pop(event, None)

    def subscriber_count(self) -> int:
        return sum(len(v) for v in self._subs.values())

    def publish(self, event: str, tx: str, payload: dict, player: Optional[str] = None) -> None:
        self._log_index += 1
        n = ResultNotification(
            event=event,
            transaction_id=tx,
            payload=payload,
            player=player,
            round_id=payload.get("roundId"),
            log_index=self._log_index,
        )
        for queue in self._subs.get(event, []):
            queue.put_nowait([n])
            if self.duplicate_delivery:
                queue.put_nowait([n])

    # ===== 帳戶 =====

    def balance(self, who: str) -> int:
        return self.balances.setdefault(who.lower(), self.start_balance)

    def credit(self, who: str, amount: int) -> None:
        self.balances[who.lower()] = self.balance(who) + amount

    # ===== 交易 =====

    def submit(self, player: str, kind: str, parameters: dict, stake: int) -> str:
        if self.reject_next:
            msg, self.reject_next = self.reject_next, None
            raise SubmissionError(msg)
        if self.balance(player) < stake:
            raise SubmissionError("insufficient funds for gas * price + value")
        if kind == "jackpot" and utc_now() >= self.draw_time:
            raise SubmissionError("execution reverted: jackpot round closed")
        self.credit(player, -stake)
        tx = new_tx()
        self._mined[tx] = asyncio.Event()
        task = asyncio.ensure_future(self._mine(tx, player, kind, parameters, stake))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return tx

    async def confirmation(self, tx: str) -> None:
        mined = self._mined.get(tx)
        if mined is None:
            raise ConfirmationError(f"unknown transaction {tx}")
        await mined.wait()
        if tx in self._reverted:
            raise ConfirmationError(self._reverted[tx])

    async def _mine(self, tx, player, kind, parameters, stake):
        await asyncio.sleep(self.confirm_seconds)
        if self.fail_next_confirmation:
            self._reverted[tx], self.fail_next_confirmation = self.fail_next_confirmation, None
            self.credit(player, stake)
            self._mined[tx].set()
            return
        self._mined[tx].set()
        await asyncio.sleep(self.resolve_seconds)
        try:
            self.settle(tx, player, kind, parameters, stake)
        except Exception:
            logger.exception("[SIM] settle %s failed", tx)

    def settle(self, tx, player, kind, parameters, stake):
        self._game_id += 1
        gid = self._game_id
        if kind == "dice":
            roll = roll_dice(self.rng)
            won = dice_won(parameters["direction"], parameters["target"], roll)
            payout = int(stake * DICE_MULT[parameters["direction"]]) if won else 0
            self.credit(player, payout)
            self.publish(q.DICE_RESULT, tx, {
                "gameId": gid, "roll": roll,
                "result": int(GameResult.WIN if won else GameResult.LOSE),
                "payout": payout,
            }, player)
        elif kind == "flip":
            landed = self.rng.choice([Face.HEADS, Face.TAILS])
            won = landed.name.lower() == parameters["face"]
            payout = int(stake * FLIP_MULT) if won else 0
            self.credit(player, payout)
            self.publish(q.FLIP_RESULT, tx, {
                "gameId": gid, "player": player, "betAmount": stake,
                "prediction": int(Face[parameters["face"].upper()]),
                "result": int(landed),
                "outcome": int(GameResult.WIN if won else GameResult.LOSE),
                "payout": payout,
            }, player)
        elif kind == "lightning":
            winner = race_winner(self.rng)
            won = winner == parameters["lane_id"]
            payout = int(stake * RACERS[winner][1]) if won else 0
            self.credit(player, payout)
            self.publish(q.LIGHTNING_RESULT, tx, {
                "gameId": gid, "winnerRacerId": winner,
                "winnerAddress": player if won else ZERO_ADDRESS,
                "payout": payout,
            }, player)
        elif kind == "slots":
            reels = spin_reels(self.rng)
            mult = slots_multiplier([SYMBOLS[r] for r in reels])
            payout = int(stake * mult)
            self.credit(player, payout)
            self.publish(q.SLOTS_RESULT, tx, {
                "gameId": gid, "player": player, "reelResults": reels,
                "outcome": int(GameResult.WIN if payout > 0 else GameResult.LOSE),
                "payout": payout,
            }, player)
        elif kind == "jackpot":
            self.entries.append((player, stake))
            self.pool += stake
            self.publish(q.JACKPOT_ENTERED, tx, {
                "roundId": self.round_id, "entryIndex": len(self.entries) - 1,
                "player": player, "amount": stake, "totalPool": self.pool,
            }, player)
        else:
            raise ValueError(f"unknown game {kind}")

    # ===== 彩池開獎迴圈 =====

    def draw(self) -> Optional[str]:
        winner = None
        if self.entries:
            players = [p for p, _ in self.entries]
            weights = [a for _, a in self.entries]
            winner = self.rng.choices(players, weights=weights, k=1)[0]
            self.credit(winner, self.pool)
            self.publish(q.JACKPOT_DRAWN, new_tx(), {
                "roundId": self.round_id, "winner": winner, "prizeAmount": self.pool,
            })
        start = utc_now()
        self.round_id += 1
        self.pool = 0
        self.entries = []
        self.draw_time = start + timedelta(seconds=self.round_seconds)
        self.publish(q.NEW_JACKPOT_ROUND, new_tx(), {
            "roundId": self.round_id,
            "startTime": int(start.timestamp()),
            "drawTime": int(self.draw_time.timestamp()),
        })
        return winner

    async def run_rounds(self):
        while True:
            try:
                wait = (self.draw_time - utc_now()).total_seconds()
                if wait > 0:
                    await asyncio.sleep(wait)
                winner = self.draw()
                logger.info("[SIM] jackpot drawn, winner=%s, next round %s", winner, self.round_id)
            except Exception:
                # 記錄錯誤但不中斷循環
                logger.exception("[SIM] jackpot loop error")
                await asyncio.sleep(2)

    # ===== 讀值 =====

    def read(self, query: str, *args):
        if query == q.Q_ROUND_ID:
            return self.round_id
        if query == q.Q_POOL:
            return self.pool
        if query == q.Q_DRAW_TIME:
            return int(self.draw_time.timestamp())
        if query == q.Q_PLAYER_TOTAL:
            round_id, who = args
            if round_id != self.round_id:
                return 0
            return sum(a for p, a in self.entries if p.lower() == str(who).lower())
        raise KeyError(query)


class SimulatedLedger:
    """One wallet's client against a SimulatedChain."""

    def __init__(self, chain: SimulatedChain, identity: str):
        self.chain = chain
        self.identity = identity

    async def submit_wager(self, kind, parameters, stake) -> str:
        await asyncio.sleep(0)
        return self.chain.submit(self.identity, kind, parameters, stake)

    async def await_confirmation(self, transaction_id: str) -> None:
        await self.chain.confirmation(transaction_id)

    def subscribe_results(self, event: str):
        return self.chain.subscribe(event)

    async def read_value(self, query: str, *args):
        return self.chain.read(query, *args)

    async def read_balance(self, identity: str) -> int:
        return self.chain.balance(identity)
