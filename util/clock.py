# util/clock.py
import os
from datetime import datetime

import pytz

# 引擎內部一律用 UTC；顯示用 ARCADE_TZ
TZ = pytz.timezone(os.getenv("ARCADE_TZ", "Asia/Taipei"))


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def from_timestamp(ts) -> datetime | None:
    """鏈上時間戳（秒）-> aware UTC datetime；0 / None 視為未設定"""
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), pytz.utc)


def to_local(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.astimezone(TZ)
