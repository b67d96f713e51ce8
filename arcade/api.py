# arcade/api.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from auth.api import require_identity
from wager.errors import ValidationError

from . import config
from .schema import ChanceResp, GameResp, PlaceWagerReq, RoundResp
from .service import Arcade, get_arcade

router = APIRouter()


async def current_arcade(address: str = Depends(require_identity)) -> Arcade:
    return await get_arcade(address)


def check_game(kind: str) -> str:
    if kind not in config.GAMES:
        raise HTTPException(404, detail="unknown game")
    return kind


# ===== 遊戲狀態 / 歷史 =====

@router.get("/games/{kind}", response_model=GameResp)
async def game_state(kind: str, arcade: Arcade = Depends(current_arcade)) -> Dict[str, Any]:
    return arcade.game_state(check_game(kind))


# ===== 下注 =====

@router.post("/games/{kind}/wager", response_model=GameResp)
async def place_wager(
    kind: str,
    body: PlaceWagerReq,
    arcade: Arcade = Depends(current_arcade),
) -> Dict[str, Any]:
    """
    送單 + 等確認後回傳；開獎結果之後由 GET /games/{kind} 取得
    送單/確認失敗不是 HTTP 錯誤，會以 failed 狀態回傳
    """
    check_game(kind)
    try:
        await arcade.place_wager(kind, body.stake, body.parameters)
    except ValidationError as e:
        raise HTTPException(400, detail=str(e))
    return arcade.game_state(kind)


@router.post("/games/{kind}/leave")
async def leave(kind: str, arcade: Arcade = Depends(current_arcade)) -> Dict[str, Any]:
    arcade.leave(check_game(kind))
    return {"ok": True}


# ===== 彩池 =====

@router.get("/jackpot", response_model=RoundResp)
async def jackpot_state(arcade: Arcade = Depends(current_arcade)) -> Dict[str, Any]:
    return arcade.round_state()


@router.get("/jackpot/chance", response_model=ChanceResp)
async def jackpot_chance(
    amount: int = Query(..., ge=1),
    arcade: Arcade = Depends(current_arcade),
) -> Dict[str, Any]:
    return arcade.prospective_chance(amount)
