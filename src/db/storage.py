# keyed text records for one browser-like profile, with a cross-instance change signal
from __future__ import annotations

import weakref
from typing import Any, Callable, Dict, Optional

from db.database import DB_PATH, connect
from utils.events import EventEmitter, Unsubscribe
from utils.logger import get_logger
from utils.messages import StorageChanged

_logger = get_logger(__name__)

# every live LocalStorage, grouped by profile path
_instances: Dict[str, "weakref.WeakSet[LocalStorage]"] = {}


class LocalStorage:
    """
    Persistent string records (session, cart) stored in an aiosqlite file.

    Several instances may be bound to the same file, each standing in for an
    open tab. A write through one instance is signalled to every other
    instance on that path as a StorageChanged message; the writer itself is
    not notified.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or DB_PATH
        self._changes: EventEmitter[StorageChanged] = EventEmitter()
        _instances.setdefault(self.path, weakref.WeakSet()).add(self)

    def subscribe(self, listener: Callable[[StorageChanged], Any]) -> Unsubscribe:
        return self._changes.subscribe(listener)

    async def get_item(self, key: str) -> Optional[str]:
        async with connect(self.path) as conn:
            cur = await conn.execute("SELECT value FROM storage WHERE key = ?;", (key,))
            row = await cur.fetchone()
            await cur.close()
        return row[0] if row else None

    async def set_item(self, key: str, value: str) -> None:
        async with connect(self.path) as conn:
            cur = await conn.execute("SELECT value FROM storage WHERE key = ?;", (key,))
            row = await cur.fetchone()
            await cur.close()
            await conn.execute(
                """
                INSERT INTO storage(key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at;
                """,
                (key, value),
            )
            await conn.commit()
        old_value = row[0] if row else None
        if old_value != value:
            await self._broadcast(StorageChanged(key, old_value, value))

    async def remove_item(self, key: str) -> None:
        async with connect(self.path) as conn:
            cur = await conn.execute("SELECT value FROM storage WHERE key = ?;", (key,))
            row = await cur.fetchone()
            await cur.close()
            if not row:
                return
            await conn.execute("DELETE FROM storage WHERE key = ?;", (key,))
            await conn.commit()
        await self._broadcast(StorageChanged(key, row[0], None))

    async def _broadcast(self, message: StorageChanged) -> None:
        peers = [p for p in _instances.get(self.path, ()) if p is not self]
        for peer in peers:
            _logger.debug(f"Signalling change of '{message.key}' to peer {id(peer):x}")
            await peer._changes.emit(message)
