"""Message text for exam prompts and outcome notices."""
from __future__ import annotations

from typing import List, Optional

from .callbacks import format_exam_callback, index_to_letter
from .types import ExamMcQuestion, Permutation, QuestionButton, UserIdentity


def display_name(user: UserIdentity) -> str:
    full = " ".join(part for part in (user.first_name, user.last_name) if part)
    if full:
        return full
    if user.username:
        return f"@{user.username}"
    return f"User {user.id}"


def mention(user: UserIdentity) -> str:
    if user.username:
        return f"@{user.username}"
    return display_name(user)


def format_exam_intro(user: UserIdentity, chat_name: str) -> str:
    return (
        f"👋 Hi {mention(user)}! Before you can post in {chat_name}, "
        "please answer a few short questions."
    )


def format_mc_question(user: UserIdentity, number: int, total: int, question: str) -> str:
    return f"{mention(user)}, question {number}/{total}:\n\n{question}"


def format_open_ended_question(user: UserIdentity, question: str) -> str:
    return f"{mention(user)}, one last question. Please reply with your answer:\n\n{question}"


def build_answer_buttons(
    session_id: int,
    question_index: int,
    question: ExamMcQuestion,
    permutation: Permutation,
) -> List[QuestionButton]:
    """One button per displayed position, labelled with the shuffled answer text."""

    buttons: List[QuestionButton] = []
    for position, original_index in enumerate(permutation):
        buttons.append(
            QuestionButton(
                text=f"{index_to_letter(position)}) {question.answers[original_index]}",
                callback_data=format_exam_callback(session_id, question_index, position),
            )
        )
    return buttons


def return_to_chat_button(chat_name: str, link: str) -> QuestionButton:
    return QuestionButton(text=f"Return to {chat_name}", url=link)


def approval_text(chat_name: str, *, manual: bool) -> str:
    if manual:
        return f"✅ Good news! An admin has approved your entrance exam. You can now participate in {chat_name}."
    return f"✅ Welcome! You've passed the entrance exam and can now participate in {chat_name}."


def denial_text(chat_name: str, *, banned: bool) -> str:
    if banned:
        return f"❌ Your request to join {chat_name} has been denied and you have been banned."
    return f"❌ Your request to join {chat_name} has been denied after admin review. You may try joining again later."


def failure_report(
    *,
    user: UserIdentity,
    chat_name: str,
    correct: int,
    total_questions: int,
    score: int,
    threshold: int,
    open_ended_question: Optional[str],
    open_ended_answer: Optional[str],
    ai_reasoning: Optional[str],
) -> str:
    lines = [
        f"User: {display_name(user)} ({user.id})",
        f"Chat: {chat_name}",
        "",
        f"Answered: {correct}/{total_questions} correct",
        f"Score: {score}% (Required: {threshold}%)",
    ]
    if open_ended_question and open_ended_answer:
        lines += ["", f"Question: {open_ended_question}", f"Answer: {open_ended_answer}"]
        if ai_reasoning:
            lines += ["", f"AI: {ai_reasoning}"]
    return "\n".join(lines)


__all__ = [
    "display_name",
    "mention",
    "format_exam_intro",
    "format_mc_question",
    "format_open_ended_question",
    "build_answer_buttons",
    "return_to_chat_button",
    "approval_text",
    "denial_text",
    "failure_report",
]
