# auth/api.py
"""
Session identity. Wallet signing happens in the browser; here the connected
address is only carried in an HS256 bearer token so every route knows which
session it talks to.
"""
import re
import time
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from arcade import config

router = APIRouter()

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
TOKEN_TTL = 12 * 3600


def make_token(address: str, secret: Optional[str] = None, ttl: int = TOKEN_TTL) -> str:
    now = int(time.time())
    payload = {"sub": address, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, secret or config.SECRET_KEY, algorithm="HS256")


def parse_token(token: str, secret: Optional[str] = None) -> Optional[str]:
    try:
        payload = jwt.decode(token, secret or config.SECRET_KEY, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    sub = payload.get("sub")
    if not sub or not ADDRESS_RE.match(sub):
        return None
    return sub


def require_identity(authorization: Optional[str] = Header(None)) -> str:
    """
    從 Authorization: Bearer <jwt> 解析出錢包地址
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    address = parse_token(authorization.split(" ", 1)[1])
    if not address:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return address


class SessionBody(BaseModel):
    address: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")


@router.post("/session")
def start_session(body: SessionBody):
    return {"ok": True, "token": make_token(body.address), "address": body.address}


@router.get("/me")
def me(address: str = Depends(require_identity)):
    return {"address": address}
