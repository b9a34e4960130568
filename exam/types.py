"""Shared type definitions for the entrance exam flow."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel

Permutation = List[int]

MIN_ANSWERS = 2
MAX_ANSWERS = 4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ShuffleState(RootModel[Dict[int, Permutation]]):
    """Per-question answer order, keyed by question index.

    An entry is only written once the user has answered that question; the
    render path never stores anything.
    """

    root: Dict[int, Permutation] = Field(default_factory=dict)

    def record(self, question_index: int, permutation: Permutation) -> None:
        self.root[question_index] = list(permutation)

    def get(self, question_index: int) -> Optional[Permutation]:
        return self.root.get(question_index)

    def original_index(self, question_index: int, position: int) -> Optional[int]:
        permutation = self.root.get(question_index)
        if permutation is None or not 0 <= position < len(permutation):
            return None
        return permutation[position]

    def __contains__(self, question_index: object) -> bool:
        return question_index in self.root

    def __iter__(self) -> Iterator[int]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)


class ExamMcQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    answers: List[str]  # answers[0] is always the correct one


class ExamConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    mc_questions: List[ExamMcQuestion] = Field(default_factory=list)
    open_ended_question: Optional[str] = None
    evaluation_criteria: Optional[str] = None
    group_topic: Optional[str] = None
    mc_passing_threshold: int = Field(default=80, ge=0, le=100)
    require_both_to_pass: bool = False
    timeout_seconds: int = 300

    @property
    def has_mc_questions(self) -> bool:
        return len(self.mc_questions) > 0

    @property
    def has_open_ended_question(self) -> bool:
        return bool(self.open_ended_question and self.open_ended_question.strip())

    @property
    def is_valid(self) -> bool:
        if not (self.has_mc_questions or self.has_open_ended_question):
            return False
        if self.timeout_seconds <= 0:
            return False
        for question in self.mc_questions:
            if not question.question.strip():
                return False
            if not MIN_ANSWERS <= len(question.answers) <= MAX_ANSWERS:
                return False
            if any(not answer.strip() for answer in question.answers):
                return False
        return True


class ExamSession(BaseModel):
    id: int
    chat_id: int
    user_id: int
    current_question_index: int = 0
    mc_answers: Dict[int, str] = Field(default_factory=dict)
    shuffle_state: ShuffleState = Field(default_factory=ShuffleState)
    open_ended_answer: Optional[str] = None
    started_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = as_utc(now) if now else utcnow()
        return current >= as_utc(self.expires_at)


class UserIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


class ChatIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    chat_name: Optional[str] = None
    username: Optional[str] = None


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["system", "exam_flow", "web_user", "telegram_user"]
    display_name: str

    @classmethod
    def exam_flow(cls) -> "Actor":
        return cls(kind="exam_flow", display_name="Exam Flow")

    @classmethod
    def system(cls) -> "Actor":
        return cls(kind="system", display_name="System")


class ChatPermissions(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_send_messages: bool
    can_send_media: bool
    can_send_polls: bool
    can_add_web_page_previews: bool
    can_invite_users: bool


DEFAULT_MEMBER_PERMISSIONS = ChatPermissions(
    can_send_messages=True,
    can_send_media=True,
    can_send_polls=True,
    can_add_web_page_previews=True,
    can_invite_users=True,
)


class RestorePermissionsIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserIdentity
    chat: ChatIdentity
    executor: Actor
    reason: str
    permissions: ChatPermissions = DEFAULT_MEMBER_PERMISSIONS


class KickIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserIdentity
    chat: ChatIdentity
    executor: Actor
    reason: str


class BanIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserIdentity
    executor: Actor
    reason: str


class DeleteMessageIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: int
    chat: ChatIdentity
    user: UserIdentity
    executor: Actor
    reason: str


class ResponseType(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DENIED = "denied"
    BANNED = "banned"
    TIMEOUT = "timeout"


class ResponseRecord(BaseModel):
    id: int
    chat_id: int
    user_id: int
    prompt_message_id: int
    response: ResponseType = ResponseType.PENDING


class ExamFailureRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserIdentity
    chat: ChatIdentity
    mc_answers: Dict[int, str] = Field(default_factory=dict)
    shuffle_state: ShuffleState = Field(default_factory=ShuffleState)
    open_ended_answer: Optional[str] = None
    score: int
    passing_threshold: int
    ai_evaluation: Optional[str] = None
    failed_at: datetime = Field(default_factory=utcnow)


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    UNAVAILABLE = "unavailable"


class EvaluationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    reasoning: Optional[str] = None
    confidence: float = 0.0

    @property
    def passed(self) -> Optional[bool]:
        """``True``/``False`` for a verdict, ``None`` when the judge was unavailable."""
        if self.verdict is Verdict.UNAVAILABLE:
            return None
        return self.verdict is Verdict.PASS

    @classmethod
    def unavailable(cls, reasoning: Optional[str] = None) -> "EvaluationOutcome":
        return cls(verdict=Verdict.UNAVAILABLE, reasoning=reasoning)


class ExamStartResult(BaseModel):
    success: bool
    prompt_message_id: int = 0


class ExamAnswerResult(BaseModel):
    complete: bool
    passed: Optional[bool] = None
    sent_to_review: bool = False
    group_chat_id: Optional[int] = None

    @classmethod
    def pending(cls) -> "ExamAnswerResult":
        return cls(complete=False, passed=None, sent_to_review=False)


class ModerationResult(BaseModel):
    success: bool
    error_message: Optional[str] = None

    @classmethod
    def ok(cls) -> "ModerationResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error_message: str) -> "ModerationResult":
        return cls(success=False, error_message=error_message)


class ActiveExamContext(BaseModel):
    group_chat_id: int
    awaiting_open_ended: bool


class QuestionButton(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    callback_data: Optional[str] = None
    url: Optional[str] = None
