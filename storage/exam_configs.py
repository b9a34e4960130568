"""Per-chat exam configuration stored as JSON."""
from __future__ import annotations

import asyncio
from typing import Optional

from pydantic import ValidationError

from exam.errors import ExamConfigError
from exam.types import ExamConfig, utcnow

from .sqlite import get_conn, iso


def save_exam_config(chat_id: int, config: ExamConfig) -> None:
    with get_conn() as conn:
        conn.execute(
            """INSERT INTO exam_configs (chat_id, config_json, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(chat_id) DO UPDATE SET config_json = excluded.config_json,
                                                  updated_at = excluded.updated_at""",
            (chat_id, config.model_dump_json(), iso(utcnow())),
        )


def load_exam_config(chat_id: int) -> Optional[ExamConfig]:
    """Return the chat's exam config, ``None`` when unset.

    Raises ``ExamConfigError`` when the stored JSON does not parse.
    """

    with get_conn() as conn:
        row = conn.execute("SELECT config_json FROM exam_configs WHERE chat_id = ?", (chat_id,)).fetchone()
    if row is None:
        return None
    try:
        return ExamConfig.model_validate_json(row["config_json"])
    except ValidationError as exc:
        raise ExamConfigError(f"Invalid exam config for chat {chat_id}: {exc}") from exc


class SqliteExamConfigStore:
    async def get_exam_config(self, chat_id: int) -> Optional[ExamConfig]:
        return await asyncio.to_thread(load_exam_config, chat_id)

    async def save_exam_config(self, chat_id: int, config: ExamConfig) -> None:
        await asyncio.to_thread(save_exam_config, chat_id, config)


__all__ = ["SqliteExamConfigStore", "save_exam_config", "load_exam_config"]
