import itertools
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENABLE_FILE_LOGS", "0")

from storage.migrate import migrate
from config.settings import settings
from config.registry import EVAL_KEY, unbind_model
from exam.flow import ExamFlowService
from exam.review import ExamReviewActions
from exam.shuffle import generate_shuffle
from exam.types import (
    ChatIdentity,
    EvaluationOutcome,
    ExamConfig,
    ExamMcQuestion,
    ModerationResult,
    UserIdentity,
    Verdict,
)
from storage.exam_configs import SqliteExamConfigStore, save_exam_config
from storage.reports import SqliteReportsRepository
from storage.responses import SqliteResponsesRepository
from storage.sessions import SqliteSessionStore
from storage.users import SqliteUserRepository


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield
    finally:
        td.cleanup()


@pytest.fixture(autouse=True)
def _unbind_evaluator():
    yield
    unbind_model(EVAL_KEY)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def user():
    return UserIdentity(id=4242, first_name="Ada", last_name="Lovelace", username="ada")


@pytest.fixture
def chat():
    return ChatIdentity(id=-100123, chat_name="Rust Learners")


@pytest.fixture
def mc_questions():
    return [
        ExamMcQuestion(question="Which keyword declares an immutable binding?", answers=["let", "var", "const", "val"]),
        ExamMcQuestion(question="Which type owns a heap string?", answers=["String", "&str", "char"]),
        ExamMcQuestion(question="Is Rust memory safe without a GC?", answers=["Yes", "No"]),
    ]


@pytest.fixture
def exam_config(mc_questions):
    return ExamConfig(mc_questions=mc_questions, mc_passing_threshold=60, timeout_seconds=300)


def correct_position(session_id: int, question_index: int, answer_count: int) -> int:
    return generate_shuffle(session_id, question_index, answer_count).index(0)


def wrong_position(session_id: int, question_index: int, answer_count: int) -> int:
    permutation = generate_shuffle(session_id, question_index, answer_count)
    return next(pos for pos, original in enumerate(permutation) if original != 0)


@pytest.fixture
def positions():
    return SimpleNamespace(correct=correct_position, wrong=wrong_position)


def build_harness(clock, chat, config=None):
    if config is not None:
        save_exam_config(chat.id, config)

    message_ids = itertools.count(100)
    messaging = AsyncMock()
    messaging.send_question.side_effect = lambda *args, **kwargs: next(message_ids)
    messaging.send_notice.return_value = 1

    orchestrator = AsyncMock()
    orchestrator.restore_permissions.return_value = ModerationResult.ok()
    orchestrator.kick_user_from_chat.return_value = ModerationResult.ok()
    orchestrator.ban_user.return_value = ModerationResult.ok()
    orchestrator.delete_message.return_value = ModerationResult.ok()

    chats = AsyncMock()
    chats.get_chat.return_value = chat
    chats.get_invite_link.return_value = "https://t.me/+invite"

    evaluator = AsyncMock()
    evaluator.evaluate_answer.return_value = EvaluationOutcome(
        verdict=Verdict.PASS, reasoning="Specific and on topic", confidence=0.9
    )

    notifier = AsyncMock()
    sessions = SqliteSessionStore(clock=clock)
    reports = SqliteReportsRepository()
    responses = SqliteResponsesRepository()
    users = SqliteUserRepository()
    configs = SqliteExamConfigStore()

    review = ExamReviewActions(
        orchestrator=orchestrator,
        responses=responses,
        users=users,
        chats=chats,
        messaging=messaging,
        reports=reports,
    )
    flow = ExamFlowService(
        sessions=sessions,
        configs=configs,
        messaging=messaging,
        evaluator=evaluator,
        reports=reports,
        notifier=notifier,
        chats=chats,
        review=review,
        clock=clock,
    )
    return SimpleNamespace(
        flow=flow,
        review=review,
        messaging=messaging,
        orchestrator=orchestrator,
        chats=chats,
        evaluator=evaluator,
        notifier=notifier,
        sessions=sessions,
        reports=reports,
        responses=responses,
        users=users,
        configs=configs,
        clock=clock,
    )


@pytest.fixture
def harness(clock, chat, exam_config):
    return build_harness(clock, chat, exam_config)


@pytest.fixture
def make_harness(clock, chat):
    def _make(config):
        return build_harness(clock, chat, config)

    return _make
