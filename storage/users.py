"""Persistence for per-user activation state."""
from __future__ import annotations

import asyncio

from exam.types import utcnow

from .sqlite import get_conn, iso


def set_user_active(user_id: int, active: bool) -> None:
    with get_conn() as conn:
        conn.execute(
            """INSERT INTO chat_users (user_id, is_active, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET is_active = excluded.is_active,
                                                  updated_at = excluded.updated_at""",
            (user_id, int(active), iso(utcnow())),
        )


def is_user_active(user_id: int) -> bool:
    with get_conn() as conn:
        row = conn.execute("SELECT is_active FROM chat_users WHERE user_id = ?", (user_id,)).fetchone()
    return bool(row and row["is_active"])


class SqliteUserRepository:
    async def set_active(self, user_id: int, active: bool) -> None:
        await asyncio.to_thread(set_user_active, user_id, active)

    async def is_active(self, user_id: int) -> bool:
        return await asyncio.to_thread(is_user_active, user_id)


__all__ = ["SqliteUserRepository", "set_user_active", "is_user_active"]
