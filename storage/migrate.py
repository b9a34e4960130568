"""SQLite schema migrations."""
from __future__ import annotations

import os
import sqlite3
from typing import Iterable

SCHEMA: Iterable[str] = [
    """
CREATE TABLE IF NOT EXISTS exam_sessions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  chat_id INTEGER NOT NULL,
  user_id INTEGER NOT NULL,
  started_at TEXT NOT NULL,
  expires_at TEXT NOT NULL,
  current_question_index INTEGER NOT NULL DEFAULT 0,
  mc_answers TEXT NOT NULL DEFAULT '{}',
  shuffle_state TEXT NOT NULL DEFAULT '{}',
  open_ended_answer TEXT
);
""",
    """
CREATE INDEX IF NOT EXISTS idx_exam_sessions_chat_user
  ON exam_sessions (chat_id, user_id);
""",
    """
CREATE INDEX IF NOT EXISTS idx_exam_sessions_expires
  ON exam_sessions (expires_at);
""",
    """
CREATE TABLE IF NOT EXISTS exam_failures (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL,
  chat_id INTEGER NOT NULL,
  user_json TEXT NOT NULL,
  chat_json TEXT NOT NULL,
  mc_answers TEXT NOT NULL,
  shuffle_state TEXT NOT NULL,
  open_ended_answer TEXT,
  score INTEGER NOT NULL,
  passing_threshold INTEGER NOT NULL,
  ai_evaluation TEXT,
  failed_at TEXT NOT NULL,
  reviewed_by TEXT,
  reviewed_at TEXT,
  action_taken TEXT
);
""",
    """
CREATE TABLE IF NOT EXISTS welcome_responses (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  chat_id INTEGER NOT NULL,
  user_id INTEGER NOT NULL,
  prompt_message_id INTEGER NOT NULL,
  response TEXT NOT NULL DEFAULT 'pending',
  created_at TEXT NOT NULL,
  responded_at TEXT
);
""",
    """
CREATE TABLE IF NOT EXISTS chat_users (
  user_id INTEGER PRIMARY KEY,
  is_active INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL
);
""",
    """
CREATE TABLE IF NOT EXISTS exam_configs (
  chat_id INTEGER PRIMARY KEY,
  config_json TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
""",
]


def migrate(db_path: str = "data/exam_gate.db") -> None:
    """Apply schema migrations to the SQLite database."""

    directory = os.path.dirname(db_path) or "."
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for stmt in SCHEMA:
            cur.execute(stmt)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    migrate()
