# util/db.py
import asyncio
import logging
import os
from typing import Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from wager.models import Wager, WagerStatus

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")

PENDING = (WagerStatus.AWAITING_CONFIRMATION.value, WagerStatus.AWAITING_RESOLUTION.value)


def db(dsn: Optional[str] = None):
    dsn = dsn or DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL not set")
    return psycopg.connect(dsn, row_factory=dict_row)


def ensure_schema(dsn: Optional[str] = None):
    with db(dsn) as conn, conn.cursor() as cur:
        cur.execute("""
        CREATE TABLE IF NOT EXISTS wagers (
          transaction_id TEXT PRIMARY KEY,
          identity TEXT NOT NULL,
          kind TEXT NOT NULL,          -- dice | flip | lightning | slots | jackpot
          status TEXT NOT NULL,
          doc JSONB NOT NULL,
          created_at TIMESTAMPTZ DEFAULT now(),
          updated_at TIMESTAMPTZ DEFAULT now()
        );
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_wagers_pending ON wagers (identity, kind, status, updated_at);")
        conn.commit()


class WagerJournal:
    """
    送出後的每次狀態變化都寫一筆，重啟後可接續未完成的注單。
    同步的 psycopg 連線一律在 worker thread 上執行。
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or DATABASE_URL

    async def record(self, wager: Wager) -> None:
        await asyncio.to_thread(self._record, wager)

    async def pending(self, identity: str, kind: str) -> Optional[Wager]:
        return await asyncio.to_thread(self._pending, identity, kind)

    def _record(self, wager: Wager) -> None:
        with db(self.dsn) as conn, conn.cursor() as cur:
            cur.execute("""
              INSERT INTO wagers (transaction_id, identity, kind, status, doc)
              VALUES (%s, %s, %s, %s, %s)
              ON CONFLICT (transaction_id) DO UPDATE
              SET status = EXCLUDED.status, doc = EXCLUDED.doc, updated_at = now();
            """, (
                wager.transaction_id,
                wager.identity.lower(),
                wager.kind,
                wager.status.value,
                Jsonb(wager.model_dump(mode="json")),
            ))
            conn.commit()
        logger.debug("journal %s -> %s", wager.transaction_id, wager.status.value)

    def _pending(self, identity: str, kind: str) -> Optional[Wager]:
        with db(self.dsn) as conn, conn.cursor() as cur:
            cur.execute("""
              SELECT doc
              FROM wagers
              WHERE identity=%s AND kind=%s AND status = ANY(%s)
              ORDER BY updated_at DESC
              LIMIT 1;
            """, (identity.lower(), kind, list(PENDING)))
            row = cur.fetchone()
        if not row:
            return None
        return Wager.model_validate(row["doc"])
