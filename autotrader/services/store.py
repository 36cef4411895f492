"""User-record storage.

The engine reads currency, trade amount, feature flags and the persisted
ladder from here, and writes stats and ladder state back after every
settlement. Records are plain dicts; `update_user` merges top-level keys.
"""
import copy
import json
import sqlite3
from typing import Optional, Protocol

class UserStore(Protocol):
    async def get_user(self, user_id: str) -> Optional[dict]: ...

    async def update_user(self, user_id: str, fields: dict) -> dict: ...

    async def get_active_channels(self) -> list[dict]: ...

class InMemoryUserStore:
    def __init__(self, users: Optional[dict] = None, channels: Optional[list] = None):
        self._users: dict[str, dict] = {str(k): dict(v) for k, v in (users or {}).items()}
        self._channels: list[dict] = list(channels or [])

    async def get_user(self, user_id: str) -> Optional[dict]:
        user = self._users.get(str(user_id))
        return copy.deepcopy(user) if user is not None else None

    async def update_user(self, user_id: str, fields: dict) -> dict:
        user = self._users.setdefault(str(user_id), {})
        user.update(copy.deepcopy(fields))
        return copy.deepcopy(user)

    async def get_active_channels(self) -> list[dict]:
        return [dict(c) for c in self._channels if c.get("active", True)]

    def add_channel(self, chat_id, title: str = "", active: bool = True) -> None:
        self._channels.append({"chat_id": chat_id, "title": title, "active": active})

    def close(self):
        pass

class SqliteUserStore:
    """One JSON document per user plus a channel table."""

    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path)
        self._init_db()

    def _init_db(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id      TEXT PRIMARY KEY,
                data    TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS channels (
                chat_id TEXT PRIMARY KEY,
                title   TEXT,
                active  INTEGER DEFAULT 1
            )
        """)
        self.conn.commit()

    async def get_user(self, user_id: str) -> Optional[dict]:
        row = self.conn.execute("SELECT data FROM users WHERE id = ?", (str(user_id),)).fetchone()
        return json.loads(row[0]) if row else None

    async def update_user(self, user_id: str, fields: dict) -> dict:
        user = await self.get_user(user_id) or {}
        user.update(fields)
        self.conn.execute(
            "INSERT OR REPLACE INTO users (id, data) VALUES (?, ?)",
            (str(user_id), json.dumps(user)),
        )
        self.conn.commit()
        return user

    async def get_active_channels(self) -> list[dict]:
        cur = self.conn.execute("SELECT chat_id, title FROM channels WHERE active = 1")
        return [{"chat_id": chat_id, "title": title, "active": True} for chat_id, title in cur.fetchall()]

    def add_channel(self, chat_id, title: str = "", active: bool = True) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO channels VALUES (?,?,?)",
            (str(chat_id), title, int(active)),
        )
        self.conn.commit()

    def close(self):
        self.conn.close()
