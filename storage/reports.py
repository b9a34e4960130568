"""Persistence for failed exams awaiting admin review."""
from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from exam.types import Actor, ChatIdentity, ExamFailureRecord, ShuffleState, UserIdentity, utcnow

from .sqlite import get_conn, iso


class StoredExamFailure(BaseModel):
    id: int
    record: ExamFailureRecord
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    action_taken: Optional[str] = None

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None


def _row_to_failure(row: sqlite3.Row) -> StoredExamFailure:
    record = ExamFailureRecord(
        user=UserIdentity.model_validate_json(row["user_json"]),
        chat=ChatIdentity.model_validate_json(row["chat_json"]),
        mc_answers=json.loads(row["mc_answers"]),
        shuffle_state=ShuffleState.model_validate_json(row["shuffle_state"]),
        open_ended_answer=row["open_ended_answer"],
        score=row["score"],
        passing_threshold=row["passing_threshold"],
        ai_evaluation=row["ai_evaluation"],
        failed_at=datetime.fromisoformat(row["failed_at"]),
    )
    return StoredExamFailure(
        id=row["id"],
        record=record,
        reviewed_by=row["reviewed_by"],
        reviewed_at=datetime.fromisoformat(row["reviewed_at"]) if row["reviewed_at"] else None,
        action_taken=row["action_taken"],
    )


def insert_exam_failure(record: ExamFailureRecord) -> int:
    """Insert an exam failure row and return its primary key."""

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """INSERT INTO exam_failures
               (user_id, chat_id, user_json, chat_json, mc_answers, shuffle_state,
                open_ended_answer, score, passing_threshold, ai_evaluation, failed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.user.id,
                record.chat.id,
                record.user.model_dump_json(),
                record.chat.model_dump_json(),
                json.dumps({str(k): v for k, v in record.mc_answers.items()}),
                record.shuffle_state.model_dump_json(),
                record.open_ended_answer,
                record.score,
                record.passing_threshold,
                record.ai_evaluation,
                iso(record.failed_at),
            ),
        )
        return int(cur.lastrowid)


def fetch_exam_failure(failure_id: int) -> Optional[StoredExamFailure]:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM exam_failures WHERE id = ?", (failure_id,)).fetchone()
    return _row_to_failure(row) if row else None


def fetch_pending_failures(limit: int = 20) -> List[StoredExamFailure]:
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT * FROM exam_failures WHERE reviewed_at IS NULL ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [_row_to_failure(row) for row in rows]


def stamp_review(failure_id: int, reviewer: str, action: str, reviewed_at: datetime) -> bool:
    """Fill the reviewer columns once; later stamps leave the first one intact.

    The one exception is a ban following a kick, which replaces the stamp.
    """

    with get_conn() as conn:
        cur = conn.execute(
            """UPDATE exam_failures
               SET reviewed_by = ?, reviewed_at = ?, action_taken = ?
               WHERE id = ?
                 AND (reviewed_at IS NULL
                      OR (action_taken = 'denied' AND ? = 'denied_and_banned'))""",
            (reviewer, iso(reviewed_at), action, failure_id, action),
        )
        return cur.rowcount > 0


class SqliteReportsRepository:
    async def insert_exam_failure(self, record: ExamFailureRecord) -> int:
        return await asyncio.to_thread(insert_exam_failure, record)

    async def mark_reviewed(self, failure_id: int, actor: Actor, action: str) -> bool:
        return await asyncio.to_thread(stamp_review, failure_id, actor.display_name, action, utcnow())

    async def get_exam_failure(self, failure_id: int) -> Optional[StoredExamFailure]:
        return await asyncio.to_thread(fetch_exam_failure, failure_id)


__all__ = [
    "StoredExamFailure",
    "SqliteReportsRepository",
    "insert_exam_failure",
    "fetch_exam_failure",
    "fetch_pending_failures",
    "stamp_review",
]
