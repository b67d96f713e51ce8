# arcade/config.py
import os

APP_NAME = "Arcade Backend"

DATABASE_URL = os.getenv("DATABASE_URL")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# 允許的前端網域
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

# 倒數每秒重算一次；鏈上狀態輪詢較慢
TICK_SECONDS = float(os.getenv("TICK_SECONDS", "1"))
POLL_SECONDS = float(os.getenv("POLL_SECONDS", "5"))
# 等待超過這個秒數只顯示「比平常久」，不改狀態
SLOW_AFTER_SECONDS = float(os.getenv("SLOW_AFTER_SECONDS", "30"))

GAMES = ["dice", "flip", "lightning", "slots", "jackpot"]

HISTORY_CAPACITY = {
    "dice": int(os.getenv("HISTORY_DICE", "5")),
    "flip": int(os.getenv("HISTORY_FLIP", "4")),
    "lightning": int(os.getenv("HISTORY_LIGHTNING", "3")),
    "slots": int(os.getenv("HISTORY_SLOTS", "4")),
    "jackpot": int(os.getenv("HISTORY_JACKPOT", "10")),
}

RECENT_WINNERS = int(os.getenv("RECENT_WINNERS", "5"))

# 多久沒有請求就收掉該地址的 Arcade
IDLE_SECONDS = float(os.getenv("IDLE_SECONDS", "1800"))
SWEEP_SECONDS = float(os.getenv("SWEEP_SECONDS", "60"))

# 模擬帳本
JACKPOT_ROUND_SECONDS = int(os.getenv("JACKPOT_ROUND_SECONDS", "300"))
SIM_CONFIRM_SECONDS = float(os.getenv("SIM_CONFIRM_SECONDS", "1"))
SIM_RESOLVE_SECONDS = float(os.getenv("SIM_RESOLVE_SECONDS", "2"))
SIM_START_BALANCE = int(os.getenv("SIM_START_BALANCE", str(10 * 10**18)))
