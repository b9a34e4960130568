"""Persistence for in-flight exam sessions."""
from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from typing import Callable, List, Optional

from exam.types import ExamSession, Permutation, ShuffleState, utcnow

from .sqlite import get_conn, iso

_COLUMNS = (
    "id, chat_id, user_id, started_at, expires_at, current_question_index, "
    "mc_answers, shuffle_state, open_ended_answer"
)


def _row_to_session(row: sqlite3.Row) -> ExamSession:
    return ExamSession(
        id=row["id"],
        chat_id=row["chat_id"],
        user_id=row["user_id"],
        started_at=datetime.fromisoformat(row["started_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
        current_question_index=row["current_question_index"],
        mc_answers=json.loads(row["mc_answers"]),
        shuffle_state=ShuffleState.model_validate_json(row["shuffle_state"]),
        open_ended_answer=row["open_ended_answer"],
    )


def insert_session(chat_id: int, user_id: int, started_at: datetime, expires_at: datetime) -> int:
    """Insert a fresh session row and return its primary key."""

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """INSERT INTO exam_sessions (chat_id, user_id, started_at, expires_at)
               VALUES (?, ?, ?, ?)""",
            (chat_id, user_id, iso(started_at), iso(expires_at)),
        )
        return int(cur.lastrowid)


def fetch_session(session_id: int) -> Optional[ExamSession]:
    with get_conn() as conn:
        row = conn.execute(f"SELECT {_COLUMNS} FROM exam_sessions WHERE id = ?", (session_id,)).fetchone()
    return _row_to_session(row) if row else None


def fetch_session_for_chat_and_user(chat_id: int, user_id: int) -> Optional[ExamSession]:
    with get_conn() as conn:
        row = conn.execute(
            f"""SELECT {_COLUMNS} FROM exam_sessions
                WHERE chat_id = ? AND user_id = ?
                ORDER BY id DESC LIMIT 1""",
            (chat_id, user_id),
        ).fetchone()
    return _row_to_session(row) if row else None


def fetch_active_session_for_user(user_id: int, now: datetime) -> Optional[ExamSession]:
    with get_conn() as conn:
        row = conn.execute(
            f"""SELECT {_COLUMNS} FROM exam_sessions
                WHERE user_id = ? AND expires_at > ?
                ORDER BY started_at DESC, id DESC LIMIT 1""",
            (user_id, iso(now)),
        ).fetchone()
    return _row_to_session(row) if row else None


def fetch_expired_sessions(now: datetime) -> List[ExamSession]:
    with get_conn() as conn:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM exam_sessions WHERE expires_at <= ? ORDER BY expires_at",
            (iso(now),),
        ).fetchall()
    return [_row_to_session(row) for row in rows]


def session_exists(chat_id: int, user_id: int, now: datetime) -> bool:
    with get_conn() as conn:
        row = conn.execute(
            """SELECT 1 FROM exam_sessions
               WHERE chat_id = ? AND user_id = ? AND expires_at > ? LIMIT 1""",
            (chat_id, user_id, iso(now)),
        ).fetchone()
    return row is not None


def write_mc_answer(session_id: int, question_index: int, letter: str, permutation: Permutation) -> bool:
    """Record ``letter`` for ``question_index`` and advance the session.

    Runs under the write lock and re-checks the current index, so only one of
    two concurrent submissions for the same question is stored.
    """

    with get_conn(immediate=True) as conn:
        row = conn.execute(
            "SELECT current_question_index, mc_answers, shuffle_state FROM exam_sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        if row is None or row["current_question_index"] != question_index:
            return False

        answers = json.loads(row["mc_answers"])
        answers[str(question_index)] = letter
        state = ShuffleState.model_validate_json(row["shuffle_state"])
        state.record(question_index, permutation)

        conn.execute(
            """UPDATE exam_sessions
               SET mc_answers = ?, shuffle_state = ?, current_question_index = ?
               WHERE id = ?""",
            (json.dumps(answers), state.model_dump_json(), question_index + 1, session_id),
        )
        return True


def write_open_ended_answer(session_id: int, answer: str) -> bool:
    with get_conn() as conn:
        cur = conn.execute(
            "UPDATE exam_sessions SET open_ended_answer = ? WHERE id = ? AND open_ended_answer IS NULL",
            (answer, session_id),
        )
        return cur.rowcount > 0


def remove_session(session_id: int) -> bool:
    with get_conn() as conn:
        cur = conn.execute("DELETE FROM exam_sessions WHERE id = ?", (session_id,))
        return cur.rowcount > 0


def remove_sessions_for_chat_and_user(chat_id: int, user_id: int) -> bool:
    with get_conn() as conn:
        cur = conn.execute(
            "DELETE FROM exam_sessions WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        return cur.rowcount > 0


class SqliteSessionStore:
    """Async ``SessionStore`` backed by the ``exam_sessions`` table."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    async def create_session(self, chat_id: int, user_id: int, expires_at: datetime) -> int:
        return await asyncio.to_thread(insert_session, chat_id, user_id, self._clock(), expires_at)

    async def get_by_id(self, session_id: int) -> Optional[ExamSession]:
        return await asyncio.to_thread(fetch_session, session_id)

    async def get_by_chat_and_user(self, chat_id: int, user_id: int) -> Optional[ExamSession]:
        return await asyncio.to_thread(fetch_session_for_chat_and_user, chat_id, user_id)

    async def get_active_for_user(self, user_id: int) -> Optional[ExamSession]:
        return await asyncio.to_thread(fetch_active_session_for_user, user_id, self._clock())

    async def record_mc_answer(
        self,
        session_id: int,
        question_index: int,
        letter: str,
        permutation: Permutation,
    ) -> bool:
        return await asyncio.to_thread(write_mc_answer, session_id, question_index, letter, permutation)

    async def record_open_ended_answer(self, session_id: int, answer: str) -> bool:
        return await asyncio.to_thread(write_open_ended_answer, session_id, answer)

    async def delete_session(self, session_id: int) -> bool:
        return await asyncio.to_thread(remove_session, session_id)

    async def delete_for_chat_and_user(self, chat_id: int, user_id: int) -> bool:
        return await asyncio.to_thread(remove_sessions_for_chat_and_user, chat_id, user_id)

    async def has_active_session(self, chat_id: int, user_id: int) -> bool:
        return await asyncio.to_thread(session_exists, chat_id, user_id, self._clock())

    async def list_expired(self, now: datetime) -> List[ExamSession]:
        return await asyncio.to_thread(fetch_expired_sessions, now)


__all__ = [
    "SqliteSessionStore",
    "insert_session",
    "fetch_session",
    "write_mc_answer",
    "remove_session",
]
