"""Collaborator contracts consumed by the exam flow.

Everything here is I/O owned by someone else: storage, the chat platform,
moderation, notifications and the answer judge.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence

from .types import (
    Actor,
    BanIntent,
    ChatIdentity,
    DeleteMessageIntent,
    EvaluationOutcome,
    ExamConfig,
    ExamFailureRecord,
    ExamSession,
    KickIntent,
    ModerationResult,
    Permutation,
    QuestionButton,
    ResponseRecord,
    ResponseType,
    RestorePermissionsIntent,
)

if TYPE_CHECKING:
    from storage.reports import StoredExamFailure


class SessionStore(Protocol):
    async def create_session(self, chat_id: int, user_id: int, expires_at: datetime) -> int: ...

    async def get_by_id(self, session_id: int) -> Optional[ExamSession]: ...

    async def get_by_chat_and_user(self, chat_id: int, user_id: int) -> Optional[ExamSession]: ...

    async def get_active_for_user(self, user_id: int) -> Optional[ExamSession]: ...

    async def record_mc_answer(
        self,
        session_id: int,
        question_index: int,
        letter: str,
        permutation: Permutation,
    ) -> bool:
        """Record an answer only if the session is still at ``question_index``."""
        ...

    async def record_open_ended_answer(self, session_id: int, answer: str) -> bool: ...

    async def delete_session(self, session_id: int) -> bool:
        """Return ``True`` only for the call that actually removed the row."""
        ...

    async def delete_for_chat_and_user(self, chat_id: int, user_id: int) -> bool: ...

    async def has_active_session(self, chat_id: int, user_id: int) -> bool: ...

    async def list_expired(self, now: datetime) -> List[ExamSession]: ...


class EvaluationGateway(Protocol):
    async def evaluate_answer(self, question: str, answer: str, criteria: str, topic: str) -> EvaluationOutcome: ...


class ModerationOrchestrator(Protocol):
    async def restore_permissions(self, intent: RestorePermissionsIntent) -> ModerationResult: ...

    async def kick_user_from_chat(self, intent: KickIntent) -> ModerationResult: ...

    async def ban_user(self, intent: BanIntent) -> ModerationResult: ...

    async def delete_message(self, intent: DeleteMessageIntent) -> ModerationResult: ...


class MessagingGateway(Protocol):
    async def send_question(self, chat_id: int, text: str, buttons: Sequence[QuestionButton]) -> int: ...

    async def send_notice(self, chat_id: int, text: str, buttons: Sequence[QuestionButton] = ()) -> Optional[int]: ...

    async def delete_message(self, chat_id: int, message_id: int) -> None: ...


class ReportsRepository(Protocol):
    async def insert_exam_failure(self, record: ExamFailureRecord) -> int: ...

    async def mark_reviewed(self, failure_id: int, actor: Actor, action: str) -> bool: ...

    async def get_exam_failure(self, failure_id: int) -> Optional[StoredExamFailure]: ...


class ResponsesRepository(Protocol):
    async def get_by_user_and_chat(self, user_id: int, chat_id: int) -> Optional[ResponseRecord]: ...

    async def update_response(self, record_id: int, response: ResponseType) -> None: ...


class UserRepository(Protocol):
    async def set_active(self, user_id: int, active: bool) -> None: ...


class ChatDirectory(Protocol):
    async def get_chat(self, chat_id: int) -> Optional[ChatIdentity]: ...

    async def get_invite_link(self, chat_id: int) -> Optional[str]: ...


class Notifier(Protocol):
    async def send_chat_notification(
        self,
        chat: ChatIdentity,
        *,
        subject: str,
        message: str,
        report_id: Optional[int] = None,
        reported_user_id: Optional[int] = None,
    ) -> None: ...


class ExamConfigProvider(Protocol):
    async def get_exam_config(self, chat_id: int) -> Optional[ExamConfig]: ...


__all__ = [
    "SessionStore",
    "EvaluationGateway",
    "ModerationOrchestrator",
    "MessagingGateway",
    "ReportsRepository",
    "ResponsesRepository",
    "UserRepository",
    "ChatDirectory",
    "Notifier",
    "ExamConfigProvider",
]
