"""LLM-backed judge for open-ended exam answers."""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from textwrap import dedent
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from config.llm import LlmRoute
from config.registry import EVAL_KEY, bind_model, get_model
from config.settings import settings
from llm_gateway import HttpClient, chat, strip_code_fences

from .types import EvaluationOutcome, Verdict

logger = logging.getLogger(__name__)

NO_ANSWER_REASONING = "No answer provided"
NO_REASONING = "No reasoning provided"

SYSTEM_PROMPT = dedent(
    """
    You review answers submitted by people who want to join a group chat.
    Decide whether the answer meets the admins' criteria for the group's topic.
    Be lenient with spelling and grammar; reject generic, evasive or off-topic answers.
    Respond with JSON only: {"passed": true|false, "reasoning": "<one sentence>", "confidence": 0.0-1.0}
    """
).strip()


class EvaluationReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    passed: bool = Field(validation_alias=AliasChoices("passed", "Passed"))
    reasoning: Optional[str] = Field(default=None, validation_alias=AliasChoices("reasoning", "Reasoning"))
    confidence: float = Field(default=0.0, validation_alias=AliasChoices("confidence", "Confidence"))


def build_user_prompt(question: str, answer: str, criteria: str, topic: str) -> str:
    return (
        f"Group topic: {topic}\n"
        f"Evaluation criteria: {criteria}\n\n"
        f"Question: {question}\n"
        f"Answer: {answer}"
    )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _lower_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key).lower(): value for key, value in data.items()}


def parse_reply(raw: Any) -> EvaluationOutcome:
    """Turn whatever the model returned into a verdict; unusable replies are ``unavailable``."""

    if raw is None:
        return EvaluationOutcome.unavailable("evaluator returned nothing")

    if isinstance(raw, EvaluationReply):
        reply = raw
    else:
        if isinstance(raw, str):
            text = strip_code_fences(raw)
            if not text:
                return EvaluationOutcome.unavailable("evaluator returned an empty reply")
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Exam evaluator reply was not JSON: %.80s", text)
                return EvaluationOutcome.unavailable("evaluator reply was not JSON")
        if not isinstance(raw, dict):
            return EvaluationOutcome.unavailable("evaluator reply was not an object")
        try:
            reply = EvaluationReply.model_validate(_lower_keys(raw))
        except ValidationError as exc:
            logger.warning("Exam evaluator reply failed validation: %s", exc)
            return EvaluationOutcome.unavailable("evaluator reply failed validation")

    return EvaluationOutcome(
        verdict=Verdict.PASS if reply.passed else Verdict.FAIL,
        reasoning=reply.reasoning or NO_REASONING,
        confidence=_clamp(reply.confidence),
    )


class LlmExamEvaluator:
    """Evaluation gateway backed by the model bound under ``EVAL_KEY``.

    The bound callable receives ``system_prompt`` and ``user_prompt`` keyword
    arguments and may be sync or async. It can return an ``EvaluationReply``,
    a dict, or raw JSON text.
    """

    def __init__(self, *, timeout_s: Optional[float] = None) -> None:
        self._timeout_s = timeout_s

    async def evaluate_answer(
        self,
        question: str,
        answer: str,
        criteria: str,
        topic: str,
    ) -> EvaluationOutcome:
        if not answer or not answer.strip():
            return EvaluationOutcome(verdict=Verdict.FAIL, reasoning=NO_ANSWER_REASONING, confidence=1.0)

        try:
            model = get_model(EVAL_KEY)
        except KeyError:
            logger.warning("No exam evaluator bound; open-ended answer cannot be judged")
            return EvaluationOutcome.unavailable("evaluator not configured")

        timeout = self._timeout_s if self._timeout_s is not None else settings.EXAM_EVAL_TIMEOUT_S
        try:
            raw = model(system_prompt=SYSTEM_PROMPT, user_prompt=build_user_prompt(question, answer, criteria, topic))
            if inspect.isawaitable(raw):
                raw = await asyncio.wait_for(raw, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Exam evaluator timed out after %.1fs", timeout)
            return EvaluationOutcome.unavailable("evaluator timed out")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Exam evaluator call failed: %s", exc)
            return EvaluationOutcome.unavailable("evaluator call failed")

        return parse_reply(raw)


def bind_llm_evaluator(route: LlmRoute, *, client: Optional[HttpClient] = None) -> None:
    """Bind ``EVAL_KEY`` to the chat-completions route in ``route``."""

    async def _evaluate(*, system_prompt: str, user_prompt: str) -> EvaluationReply:
        return await chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            EvaluationReply,
            cfg=route,
            client=client,
        )

    bind_model(EVAL_KEY, _evaluate)


__all__ = [
    "EvaluationReply",
    "LlmExamEvaluator",
    "bind_llm_evaluator",
    "build_user_prompt",
    "parse_reply",
    "NO_ANSWER_REASONING",
    "NO_REASONING",
]
