"""Lightweight CLI helpers for inspecting exam sessions and failures."""
from __future__ import annotations

import argparse
import sqlite3
from typing import Optional, Sequence

from config.settings import settings


def tail_failures(limit: int = 20, *, pending_only: bool = False) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        cursor = conn.cursor()
        where = "WHERE reviewed_at IS NULL" if pending_only else ""
        cursor.execute(
            f"""
            SELECT id, failed_at, chat_id, user_id, score, passing_threshold, ai_evaluation,
                   reviewed_by, action_taken
            FROM exam_failures
            {where}
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            fid, ts, chat_id, user_id, score, threshold, ai, reviewer, action = row
            review = f"{action} by {reviewer}" if reviewer else "pending"
            print(f"#{fid} [{ts}] chat={chat_id} user={user_id} score={score}/{threshold} review={review} ai={ai}")
    finally:
        conn.close()


def tail_sessions(limit: int = 20) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT id, chat_id, user_id, current_question_index, started_at, expires_at, mc_answers
            FROM exam_sessions
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            sid, chat_id, user_id, index, started, expires, answers = row
            print(f"#{sid} chat={chat_id} user={user_id} q={index} started={started} expires={expires} answers={answers}")
    finally:
        conn.close()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--tail-failures", type=int, help="Show the latest exam failures")
    parser.add_argument("--pending", action="store_true", help="Only failures not yet reviewed")
    parser.add_argument("--tail-sessions", type=int, help="Show the latest in-flight exam sessions")
    args = parser.parse_args(argv)

    if args.tail_failures:
        tail_failures(args.tail_failures, pending_only=args.pending)
    if args.tail_sessions:
        tail_sessions(args.tail_sessions)


if __name__ == "__main__":
    main()
