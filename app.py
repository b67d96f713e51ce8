# app.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from arcade import config
from arcade import service
from arcade.api import router as arcade_router
from auth.api import router as auth_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("arcade")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 有 DATABASE_URL 才啟用注單日誌（重啟後可接續未完成的注單）
    if config.DATABASE_URL:
        from util.db import WagerJournal, ensure_schema

        await asyncio.to_thread(ensure_schema)
        service.use_journal(WagerJournal())
        logger.info("wager journal enabled")
    yield
    await service.shutdown_all()


app = FastAPI(title=config.APP_NAME, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/auth")
app.include_router(arcade_router)


@app.get("/health")
def health():
    return {"ok": True}
