from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from pupu.core.config import get_settings


@asynccontextmanager
async def open_db(db_path: str | Path | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Open the configured SQLite database with WAL enabled."""
    path = Path(db_path or get_settings().db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    try:
        yield db
    finally:
        await db.close()
