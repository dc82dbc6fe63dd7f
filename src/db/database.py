# manages the connection to the local profile database, internal to db package
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional, Set

import aiosqlite

from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = "data/storefront.sqlite"

SCHEMA = """
CREATE TABLE IF NOT EXISTS storage (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

_initialized: Set[str] = set()
_init_lock = asyncio.Lock()


async def _init_db(conn: aiosqlite.Connection) -> None:
    await conn.executescript(SCHEMA)
    await conn.commit()


@asynccontextmanager
async def connect(path: Optional[str] = None) -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection to the profile file.

    Creates the parent directory and the storage table on first use of a path.
    """
    path = path or DB_PATH
    parent = os.path.dirname(path)
    if parent and not os.path.isdir(parent):
        os.makedirs(parent, exist_ok=True)

    conn = await aiosqlite.connect(path)
    try:
        if path not in _initialized:
            async with _init_lock:
                if path not in _initialized:
                    _logger.info(f"Initializing profile store at {path}...")
                    await _init_db(conn)
                    _initialized.add(path)
        yield conn
    finally:
        await conn.close()
