"""Callback tokens attached to exam answer buttons."""
from __future__ import annotations

from typing import NamedTuple, Optional

EXAM_CALLBACK_PREFIX = "exam:"


class ExamCallback(NamedTuple):
    session_id: int
    question_index: int
    answer_index: int


def is_exam_callback(data: str) -> bool:
    return data.startswith(EXAM_CALLBACK_PREFIX)


def format_exam_callback(session_id: int, question_index: int, answer_index: int) -> str:
    return f"{EXAM_CALLBACK_PREFIX}{session_id}:{question_index}:{answer_index}"


def _parse_int(text: str) -> Optional[int]:
    body = text[1:] if text.startswith("-") else text
    if not (body.isascii() and body.isdigit()):
        return None
    return int(text)


def parse_exam_callback(data: str) -> Optional[ExamCallback]:
    """Parse ``exam:{session}:{question}:{answer}``; anything else yields ``None``."""

    if not is_exam_callback(data):
        return None
    parts = data[len(EXAM_CALLBACK_PREFIX):].split(":")
    if len(parts) != 3:
        return None
    values = [_parse_int(part) for part in parts]
    if any(value is None for value in values):
        return None
    session_id, question_index, answer_index = values
    return ExamCallback(session_id, question_index, answer_index)  # type: ignore[arg-type]


def index_to_letter(index: int) -> str:
    return chr(ord("A") + index)


def letter_to_index(letter: str) -> int:
    return ord(letter[0].upper()) - ord("A")


__all__ = [
    "EXAM_CALLBACK_PREFIX",
    "ExamCallback",
    "is_exam_callback",
    "format_exam_callback",
    "parse_exam_callback",
    "index_to_letter",
    "letter_to_index",
]
