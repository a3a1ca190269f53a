"""
SQLite persistence for finished crawls: one compressed JSON document per crawl id.
"""
from __future__ import annotations
import base64
import json
import time
import zlib
from typing import Dict, List, Optional
import aiosqlite
from .config import get_store_path
from .models import CrawlResult

STORE_SCHEMA = """
CREATE TABLE IF NOT EXISTS crawls (
    id TEXT PRIMARY KEY,
    start_url TEXT,
    status TEXT NOT NULL,
    page_count INTEGER NOT NULL DEFAULT 0,
    saved_at REAL NOT NULL,
    data BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_crawls_saved_at ON crawls(saved_at);
"""


def compress_document(document: dict) -> bytes:
    """Compress a JSON document with maximum zlib compression."""
    return base64.b64encode(zlib.compress(json.dumps(document, ensure_ascii=False).encode("utf-8"), level=9))


def decompress_document(encoded: bytes) -> dict:
    return json.loads(zlib.decompress(base64.b64decode(encoded)).decode("utf-8"))


class CrawlStore:
    """Key-value store of CrawlResults: save(id, result) / load(id)."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_store_path()
        self._initialized = False

    async def init(self):
        async with aiosqlite.connect(self.db_path) as db:
            for stmt in STORE_SCHEMA.split(";\n"):
                if stmt.strip():
                    await db.execute(stmt)
            await db.commit()
        self._initialized = True

    async def _ensure_schema(self):
        if not self._initialized:
            await self.init()

    async def save(self, crawl_id: str, result: CrawlResult):
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO crawls (id, start_url, status, page_count, saved_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (crawl_id, result.start_url, result.status.value, len(result.pages), time.time(),
                 compress_document(result.to_dict())),
            )
            await db.commit()

    async def load(self, crawl_id: str) -> Optional[CrawlResult]:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT data FROM crawls WHERE id = ?", (crawl_id,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return CrawlResult.from_dict(decompress_document(row[0]))

    async def list_crawls(self) -> List[Dict]:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT id, start_url, status, page_count, saved_at FROM crawls ORDER BY saved_at DESC"
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {"id": row[0], "start_url": row[1], "status": row[2], "page_count": row[3], "saved_at": row[4]}
            for row in rows
        ]

    async def delete(self, crawl_id: str) -> bool:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM crawls WHERE id = ?", (crawl_id,))
            await db.commit()
            return cursor.rowcount > 0
