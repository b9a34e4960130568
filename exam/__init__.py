"""Entrance exam flow: shuffling, sessions, scoring and review actions."""
from .callbacks import ExamCallback, format_exam_callback, parse_exam_callback
from .errors import ExamConfigError
from .evaluation import LlmExamEvaluator, bind_llm_evaluator
from .flow import ExamFlowService
from .review import ExamReviewActions
from .scoring import combine, count_correct, mc_score, score_mc
from .shuffle import generate_shuffle
from .types import (
    ActiveExamContext,
    Actor,
    ChatIdentity,
    EvaluationOutcome,
    ExamAnswerResult,
    ExamConfig,
    ExamFailureRecord,
    ExamMcQuestion,
    ExamSession,
    ExamStartResult,
    ModerationResult,
    ShuffleState,
    UserIdentity,
    Verdict,
)

__all__ = [
    "ExamCallback",
    "format_exam_callback",
    "parse_exam_callback",
    "ExamConfigError",
    "LlmExamEvaluator",
    "bind_llm_evaluator",
    "ExamFlowService",
    "ExamReviewActions",
    "combine",
    "count_correct",
    "mc_score",
    "score_mc",
    "generate_shuffle",
    "ActiveExamContext",
    "Actor",
    "ChatIdentity",
    "EvaluationOutcome",
    "ExamAnswerResult",
    "ExamConfig",
    "ExamFailureRecord",
    "ExamMcQuestion",
    "ExamSession",
    "ExamStartResult",
    "ModerationResult",
    "ShuffleState",
    "UserIdentity",
    "Verdict",
]
