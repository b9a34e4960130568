"""Persistence for join prompts and the user's response to them."""
from __future__ import annotations

import asyncio
from typing import Optional

from exam.types import ResponseRecord, ResponseType, utcnow

from .sqlite import get_conn, iso


def insert_response(chat_id: int, user_id: int, prompt_message_id: int) -> int:
    """Insert a pending response row and return its primary key."""

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """INSERT INTO welcome_responses (chat_id, user_id, prompt_message_id, response, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (chat_id, user_id, prompt_message_id, ResponseType.PENDING.value, iso(utcnow())),
        )
        return int(cur.lastrowid)


def fetch_response(user_id: int, chat_id: int) -> Optional[ResponseRecord]:
    with get_conn() as conn:
        row = conn.execute(
            """SELECT id, chat_id, user_id, prompt_message_id, response
               FROM welcome_responses
               WHERE user_id = ? AND chat_id = ?
               ORDER BY id DESC LIMIT 1""",
            (user_id, chat_id),
        ).fetchone()
    if row is None:
        return None
    return ResponseRecord(
        id=row["id"],
        chat_id=row["chat_id"],
        user_id=row["user_id"],
        prompt_message_id=row["prompt_message_id"],
        response=ResponseType(row["response"]),
    )


def update_response(record_id: int, response: ResponseType) -> None:
    with get_conn() as conn:
        conn.execute(
            "UPDATE welcome_responses SET response = ?, responded_at = ? WHERE id = ?",
            (response.value, iso(utcnow()), record_id),
        )


class SqliteResponsesRepository:
    async def create_response(self, chat_id: int, user_id: int, prompt_message_id: int) -> int:
        return await asyncio.to_thread(insert_response, chat_id, user_id, prompt_message_id)

    async def get_by_user_and_chat(self, user_id: int, chat_id: int) -> Optional[ResponseRecord]:
        return await asyncio.to_thread(fetch_response, user_id, chat_id)

    async def update_response(self, record_id: int, response: ResponseType) -> None:
        await asyncio.to_thread(update_response, record_id, response)


__all__ = ["SqliteResponsesRepository", "insert_response", "fetch_response", "update_response"]
