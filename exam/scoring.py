"""MC scoring and pass/fail combination for entrance exams."""
from __future__ import annotations

from typing import Mapping, NamedTuple, Optional

from .callbacks import letter_to_index
from .types import EvaluationOutcome, ExamConfig, ShuffleState

CORRECT_ORIGINAL_INDEX = 0


class McScore(NamedTuple):
    correct: int
    total: int
    score: int
    passed: bool


def count_correct(answers: Mapping[int, str], shuffle_state: ShuffleState) -> int:
    """Count answers whose displayed position maps back to original index 0."""

    correct = 0
    for question_index, letter in answers.items():
        if not letter:
            continue
        original = shuffle_state.original_index(question_index, letter_to_index(letter))
        if original == CORRECT_ORIGINAL_INDEX:
            correct += 1
    return correct


def mc_score(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(round(100.0 * correct / total))


def score_mc(answers: Mapping[int, str], shuffle_state: ShuffleState, threshold: int) -> McScore:
    correct = count_correct(answers, shuffle_state)
    total = len(answers)
    score = mc_score(correct, total)
    return McScore(correct=correct, total=total, score=score, passed=score >= threshold)


def combine(
    config: ExamConfig,
    mc_passed: Optional[bool],
    open_ended: Optional[EvaluationOutcome],
) -> bool:
    """Final verdict for a finished exam.

    ``mc_passed`` is ``None`` when no MC answer was scored; ``open_ended`` is
    ``None`` when no free-text answer was judged. An open-ended question with
    no verdict always fails, whatever the MC score.
    """

    open_passed = open_ended.passed if open_ended is not None else None

    if config.require_both_to_pass:
        mc_ok = not config.has_mc_questions or mc_passed is True
        open_ok = not config.has_open_ended_question or open_passed is True
        passed = mc_ok and open_ok
    else:
        passed = mc_passed is True or open_passed is True

    if config.has_open_ended_question and open_passed is None:
        passed = False
    return passed


__all__ = ["McScore", "count_correct", "mc_score", "score_mc", "combine", "CORRECT_ORIGINAL_INDEX"]
