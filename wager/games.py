# wager/games.py
"""
五種遊戲的差異都集中在這裡：
  - 下注參數檢查
  - 結果事件名稱
  - 事件 payload -> Outcome 的解碼
  - 歷史紀錄的顯示摘要
狀態機本身（wager/session.py）對所有遊戲都一樣。
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable, Dict, Literal, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from . import ledger
from .errors import ValidationError
from .models import GameKind, HistoryEntry, Outcome, to_units


class GameResult(IntEnum):
    PENDING = 0
    WIN = 1
    LOSE = 2


class Face(IntEnum):
    HEADS = 0
    TAILS = 1


class DiceDirection(IntEnum):
    OVER = 0
    UNDER = 1
    EXACTLY = 2


# 合約 SymbolType 順序
SYMBOLS = ["btc", "eth", "mon", "usdc", "star", "any"]

# (符號, 符號, 符號) -> 倍數；"any" 代表任意
PAY_TABLE = [
    (("btc", "btc", "btc"), Decimal("50")),
    (("eth", "eth", "eth"), Decimal("25")),
    (("mon", "mon", "mon"), Decimal("15")),
    (("usdc", "usdc", "usdc"), Decimal("10")),
    (("star", "star", "star"), Decimal("5")),
    (("btc", "btc", "any"), Decimal("4")),
    (("eth", "eth", "any"), Decimal("3")),
    (("mon", "mon", "any"), Decimal("2")),
    (("usdc", "usdc", "any"), Decimal("1.5")),
    (("star", "star", "any"), Decimal("1")),
]

# 閃電賽跑：跑道 -> (名稱, 賠率)
RACERS = {
    1: ("Blue Bolt", Decimal("2.5")),
    2: ("Red Flash", Decimal("3.0")),
    3: ("Green Spark", Decimal("2.0")),
    4: ("Purple Surge", Decimal("4.0")),
    5: ("Yellow Strike", Decimal("3.5")),
}


# ===== 下注參數 =====

class DiceParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    direction: Literal["over", "under", "exactly"]
    target: int = Field(..., ge=2, le=12)


class FlipParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    face: Literal["heads", "tails"]


class LightningParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lane_id: int = Field(..., ge=1, le=len(RACERS))


class NoParams(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ===== 解碼 =====

def _payout(payload: Dict[str, Any]) -> int:
    return int(payload.get("payout") or 0)


def _decode_dice(payload: Dict[str, Any], identity: str) -> Outcome:
    return Outcome(
        won=GameResult(payload["result"]) == GameResult.WIN,
        payout=_payout(payload),
        detail={"game_id": payload.get("gameId"), "roll": int(payload["roll"])},
    )


def _decode_flip(payload: Dict[str, Any], identity: str) -> Outcome:
    landed = Face(payload["result"]).name.lower()
    return Outcome(
        won=GameResult(payload["outcome"]) == GameResult.WIN,
        payout=_payout(payload),
        detail={"game_id": payload.get("gameId"), "landed": landed},
    )


def _decode_lightning(payload: Dict[str, Any], identity: str) -> Outcome:
    # 贏家以地址判斷，不看跑道
    winner = str(payload["winnerAddress"])
    return Outcome(
        won=winner.lower() == identity.lower(),
        payout=int(payload["payout"]),
        detail={
            "game_id": payload.get("gameId"),
            "winner_lane": int(payload["winnerRacerId"]),
            "winner_address": winner,
        },
    )


def _decode_slots(payload: Dict[str, Any], identity: str) -> Outcome:
    reels = [SYMBOLS[int(v)] for v in payload["reelResults"]]
    return Outcome(
        won=GameResult(payload["outcome"]) == GameResult.WIN,
        payout=_payout(payload),
        detail={"game_id": payload.get("gameId"), "reels": reels},
    )


def _decode_jackpot(payload: Dict[str, Any], identity: str) -> Outcome:
    # 彩池下注：結果 = 入池紀錄；輸贏要等開獎 (JackpotDrawn)
    return Outcome(
        won=False,
        payout=0,
        detail={
            "round_id": int(payload["roundId"]),
            "entry_index": payload.get("entryIndex"),
            "total_pool": int(payload.get("totalPool") or 0),
        },
    )


@dataclass(frozen=True)
class Game:
    kind: GameKind
    result_event: str
    params: Type[BaseModel]
    decode: Callable[[Dict[str, Any], str], Outcome]
    pooled: bool = False


GAMES: Dict[str, Game] = {
    "dice": Game("dice", ledger.DICE_RESULT, DiceParams, _decode_dice),
    "flip": Game("flip", ledger.FLIP_RESULT, FlipParams, _decode_flip),
    "lightning": Game("lightning", ledger.LIGHTNING_RESULT, LightningParams, _decode_lightning),
    "slots": Game("slots", ledger.SLOTS_RESULT, NoParams, _decode_slots),
    "jackpot": Game("jackpot", ledger.JACKPOT_ENTERED, NoParams, _decode_jackpot, pooled=True),
}


def get_game(kind: str) -> Game:
    try:
        return GAMES[kind]
    except KeyError:
        raise ValidationError(f"unknown game: {kind}")


def validate_parameters(kind: str, raw: Dict[str, Any] | None) -> Dict[str, Any]:
    game = get_game(kind)
    try:
        return game.params.model_validate(raw or {}).model_dump()
    except PydanticValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "parameters"
        raise ValidationError(f"invalid {kind} parameters: {where}: {first.get('msg')}")


def slots_multiplier(reels) -> Decimal:
    for combo, mult in PAY_TABLE:
        if all(c == "any" or c == r for c, r in zip(combo, reels)):
            return mult
    return Decimal("0")


def potential_payout(kind: str, stake: int, parameters: Dict[str, Any]) -> int | None:
    """只有賠率固定的遊戲（閃電賽跑）能事先算出派彩"""
    if kind != "lightning":
        return None
    _name, odds = RACERS[int(parameters["lane_id"])]
    return int(Decimal(stake) * odds)


# ===== 歷史摘要 =====

def summarize(entry: HistoryEntry) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "tx": entry.transaction_id,
        "bet": to_units(entry.stake),
        "result": "win" if entry.won else "lose",
        "payout": to_units(entry.payout),
        "time": entry.resolved_at.isoformat(),
    }
    d, p = entry.detail, entry.parameters
    if entry.kind == "dice":
        out.update(roll=d["roll"], type=p["direction"], target=p["target"])
    elif entry.kind == "flip":
        out.update(prediction=p["face"], landed=d["landed"])
    elif entry.kind == "lightning":
        lane, winner = p["lane_id"], d["winner_lane"]
        out.update(
            racer=RACERS[lane][0],
            winner=RACERS.get(winner, ("Unknown", None))[0],
        )
    elif entry.kind == "slots":
        mult = Decimal(entry.payout) / Decimal(entry.stake) if entry.stake else Decimal(0)
        out.update(reels=d["reels"], multiplier=mult)
    elif entry.kind == "jackpot":
        out.pop("result")
        out.update(round_id=d["round_id"], entry_index=d["entry_index"])
    return out
