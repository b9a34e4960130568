"""Entrance exam session state machine.

A session moves through the MC questions one index at a time, then to the
optional open-ended prompt, then to evaluation. Every terminal transition
(pass, fail, expiry, cancel) deletes the session row first; side effects only
run for the caller whose delete actually removed it.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.settings import settings
from observability import log_event, span

from . import messages
from .callbacks import index_to_letter
from .errors import ExamConfigError
from .ports import (
    ChatDirectory,
    EvaluationGateway,
    ExamConfigProvider,
    MessagingGateway,
    Notifier,
    ReportsRepository,
    SessionStore,
)
from .review import DEFAULT_CHAT_NAME, ExamReviewActions
from .scoring import McScore, combine, score_mc
from .shuffle import generate_shuffle
from .types import (
    ActiveExamContext,
    Actor,
    ChatIdentity,
    EvaluationOutcome,
    ExamAnswerResult,
    ExamConfig,
    ExamFailureRecord,
    ExamSession,
    ExamStartResult,
    UserIdentity,
    utcnow,
)

logger = logging.getLogger(__name__)

FAILURE_SUBJECT = "Exam Failed - Review Required"


class ExamFlowService:
    def __init__(
        self,
        *,
        sessions: SessionStore,
        configs: ExamConfigProvider,
        messaging: MessagingGateway,
        evaluator: EvaluationGateway,
        reports: ReportsRepository,
        notifier: Notifier,
        chats: ChatDirectory,
        review: ExamReviewActions,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._configs = configs
        self._messaging = messaging
        self._evaluator = evaluator
        self._reports = reports
        self._notifier = notifier
        self._chats = chats
        self._review = review
        self._clock = clock

    # Starting

    async def start_exam(
        self,
        chat: ChatIdentity,
        user: UserIdentity,
        config: Optional[ExamConfig],
    ) -> ExamStartResult:
        """Create a session and render the first question in the group chat."""

        return await self._start(chat.id, user, config, target_chat_id=chat.id, mode="group")

    async def start_exam_in_dm(
        self,
        group_chat_id: int,
        user: UserIdentity,
        dm_chat_id: int,
        config: Optional[ExamConfig],
        chat_title: Optional[str] = None,
    ) -> ExamStartResult:
        """Run the exam in a private chat; the session still belongs to the group."""

        if self._usable(config, group_chat_id) is None:
            return ExamStartResult(success=False)
        try:
            await self._messaging.send_notice(
                dm_chat_id,
                messages.format_exam_intro(user, chat_title or DEFAULT_CHAT_NAME),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to send exam intro to user %s: %s", user.id, exc)
            return ExamStartResult(success=False)
        return await self._start(group_chat_id, user, config, target_chat_id=dm_chat_id, mode="dm")

    async def _start(
        self,
        group_chat_id: int,
        user: UserIdentity,
        config: Optional[ExamConfig],
        *,
        target_chat_id: int,
        mode: str,
    ) -> ExamStartResult:
        config = self._usable(config, group_chat_id)
        if config is None:
            return ExamStartResult(success=False)

        expires_at = self._clock() + timedelta(seconds=config.timeout_seconds)
        session_id = await self._sessions.create_session(group_chat_id, user.id, expires_at)
        try:
            message_id = await self._render(session_id, 0, target_chat_id, user, config)
        except Exception:
            logger.exception("Failed to render first exam question for user %s in chat %s", user.id, group_chat_id)
            await self._sessions.delete_session(session_id)
            return ExamStartResult(success=False)

        logger.info("Started exam session %s for user %s in chat %s", session_id, user.id, group_chat_id)
        log_event(
            "exam_started",
            session_id,
            chat_id=group_chat_id,
            user_id=user.id,
            mode=mode,
            mc_questions=len(config.mc_questions),
            open_ended=config.has_open_ended_question,
        )
        return ExamStartResult(success=True, prompt_message_id=message_id)

    @staticmethod
    def _usable(config: Optional[ExamConfig], chat_id: int) -> Optional[ExamConfig]:
        if config is None:
            logger.warning("No exam config for chat %s", chat_id)
            return None
        if not config.is_valid:
            logger.warning("Exam config for chat %s is not valid", chat_id)
            return None
        return config

    async def _load_config(self, chat_id: int) -> Optional[ExamConfig]:
        try:
            return await self._configs.get_exam_config(chat_id)
        except ExamConfigError as exc:
            logger.error("Unreadable exam config for chat %s: %s", chat_id, exc)
            return None

    async def _render(
        self,
        session_id: int,
        question_index: int,
        target_chat_id: int,
        user: UserIdentity,
        config: ExamConfig,
    ) -> int:
        if question_index < len(config.mc_questions):
            question = config.mc_questions[question_index]
            permutation = generate_shuffle(session_id, question_index, len(question.answers))
            text = messages.format_mc_question(
                user, question_index + 1, len(config.mc_questions), question.question
            )
            buttons = messages.build_answer_buttons(session_id, question_index, question, permutation)
            return await self._messaging.send_question(target_chat_id, text, buttons)
        text = messages.format_open_ended_question(user, config.open_ended_question or "")
        return await self._messaging.send_question(target_chat_id, text, [])

    # Answers

    async def handle_mc_answer(
        self,
        session_id: int,
        question_index: int,
        answer_index: int,
        user: UserIdentity,
        *,
        message_chat_id: Optional[int] = None,
        message_id: Optional[int] = None,
    ) -> ExamAnswerResult:
        """Record a button press and move the session forward.

        ``message_chat_id`` and ``message_id`` identify the rendered question
        the press came from; the next prompt goes to the same chat.
        """

        session = await self._sessions.get_by_id(session_id)
        if session is None:
            logger.debug("Exam session %s not found", session_id)
            return ExamAnswerResult.pending()
        if session.user_id != user.id:
            logger.warning("User %s answered exam session %s owned by %s", user.id, session_id, session.user_id)
            return ExamAnswerResult.pending()
        if session.current_question_index != question_index:
            logger.debug(
                "Stale answer for session %s: question %s, current %s",
                session_id,
                question_index,
                session.current_question_index,
            )
            return ExamAnswerResult.pending()
        if session.is_expired(self._clock()):
            await self._expire(session)
            return ExamAnswerResult(complete=True, passed=False, sent_to_review=False, group_chat_id=session.chat_id)

        config = await self._load_config(session.chat_id)
        if config is None or question_index >= len(config.mc_questions):
            logger.warning("No MC question %s configured for chat %s", question_index, session.chat_id)
            return ExamAnswerResult.pending()
        question = config.mc_questions[question_index]
        if not 0 <= answer_index < len(question.answers):
            logger.warning("Answer index %s out of range for session %s", answer_index, session_id)
            return ExamAnswerResult.pending()

        permutation = generate_shuffle(session.id, question_index, len(question.answers))
        letter = index_to_letter(answer_index)
        recorded = await self._sessions.record_mc_answer(session.id, question_index, letter, permutation)
        if not recorded:
            logger.debug("Answer for session %s question %s lost a race", session_id, question_index)
            return ExamAnswerResult.pending()
        log_event("answer_recorded", session.id, question_index=question_index, answer=letter)

        target_chat_id = message_chat_id if message_chat_id is not None else session.chat_id
        if message_id is not None:
            await self._delete_rendered(target_chat_id, message_id)

        next_index = question_index + 1
        if next_index < len(config.mc_questions) or config.has_open_ended_question:
            try:
                await self._render(session.id, next_index, target_chat_id, user, config)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to render question %s for session %s: %s", next_index, session.id, exc)
            return ExamAnswerResult.pending()

        finished = await self._sessions.get_by_id(session.id)
        if finished is None:
            return ExamAnswerResult.pending()
        return await self._evaluate(finished, config, user)

    async def handle_open_ended_answer(self, chat_id: int, user: UserIdentity, text: str) -> ExamAnswerResult:
        session = await self._sessions.get_by_chat_and_user(chat_id, user.id)
        if session is None:
            return ExamAnswerResult.pending()
        if session.is_expired(self._clock()):
            await self._expire(session)
            return ExamAnswerResult(complete=True, passed=False, sent_to_review=False, group_chat_id=session.chat_id)

        config = await self._load_config(chat_id)
        if config is None or not config.has_open_ended_question:
            return ExamAnswerResult.pending()
        if session.current_question_index < len(config.mc_questions) or session.open_ended_answer is not None:
            return ExamAnswerResult.pending()

        if not await self._sessions.record_open_ended_answer(session.id, text):
            return ExamAnswerResult.pending()
        log_event("answer_recorded", session.id, question_index="open_ended", chars=len(text))

        session = session.model_copy(update={"open_ended_answer": text})
        return await self._evaluate(session, config, user)

    async def _delete_rendered(self, chat_id: int, message_id: int) -> None:
        try:
            await self._messaging.delete_message(chat_id, message_id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Could not delete exam question message %s: %s", message_id, exc)

    # Evaluation

    async def _evaluate(self, session: ExamSession, config: ExamConfig, user: UserIdentity) -> ExamAnswerResult:
        mc: Optional[McScore] = None
        if config.has_mc_questions:
            mc = score_mc(session.mc_answers, session.shuffle_state, config.mc_passing_threshold)

        outcome: Optional[EvaluationOutcome] = None
        if config.has_open_ended_question:
            with span("open_ended_evaluation", session.id):
                outcome = await self._judge(config, session.open_ended_answer or "")

        passed = combine(config, mc.passed if mc else None, outcome)
        log_event(
            "exam_evaluated",
            session.id,
            chat_id=session.chat_id,
            user_id=user.id,
            score=mc.score if mc else None,
            verdict=outcome.verdict.value if outcome else None,
            outcome="passed" if passed else "failed",
        )

        if not await self._sessions.delete_session(session.id):
            logger.info("Exam session %s was closed before evaluation finished", session.id)
            return ExamAnswerResult(complete=True, passed=False, sent_to_review=False, group_chat_id=session.chat_id)

        if passed:
            result = await self._review.execute_approval(
                user,
                ChatIdentity(id=session.chat_id),
                Actor.exam_flow(),
                "Passed entrance exam",
                manual=False,
            )
            if not result.success:
                logger.warning(
                    "Approval after passed exam failed for user %s in chat %s: %s",
                    user.id,
                    session.chat_id,
                    result.error_message,
                )
            return ExamAnswerResult(complete=True, passed=True, sent_to_review=False, group_chat_id=session.chat_id)

        await self._send_to_review(session, config, user, mc, outcome)
        return ExamAnswerResult(complete=True, passed=False, sent_to_review=True, group_chat_id=session.chat_id)

    async def _judge(self, config: ExamConfig, answer: str) -> EvaluationOutcome:
        criteria = config.evaluation_criteria or settings.DEFAULT_EVALUATION_CRITERIA
        topic = config.group_topic or settings.DEFAULT_GROUP_TOPIC
        try:
            return await self._evaluator.evaluate_answer(config.open_ended_question or "", answer, criteria, topic)
        except asyncio.CancelledError:
            logger.warning("Open-ended evaluation was cancelled")
            return EvaluationOutcome.unavailable("Evaluation cancelled")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Open-ended evaluation failed: %s", exc)
            return EvaluationOutcome.unavailable(f"Evaluation error: {exc}")

    async def _send_to_review(
        self,
        session: ExamSession,
        config: ExamConfig,
        user: UserIdentity,
        mc: Optional[McScore],
        outcome: Optional[EvaluationOutcome],
    ) -> None:
        chat = await self._resolve_chat(session.chat_id)
        chat_name = chat.chat_name or DEFAULT_CHAT_NAME
        ai_reasoning = outcome.reasoning if outcome else None

        record = ExamFailureRecord(
            user=user,
            chat=chat,
            mc_answers=dict(session.mc_answers),
            shuffle_state=session.shuffle_state.model_copy(deep=True),
            open_ended_answer=session.open_ended_answer,
            score=mc.score if mc else 0,
            passing_threshold=config.mc_passing_threshold,
            ai_evaluation=ai_reasoning,
            failed_at=self._clock(),
        )
        failure_id = await self._reports.insert_exam_failure(record)
        logger.info("Exam failure #%s recorded for user %s in chat %s", failure_id, user.id, session.chat_id)

        report = messages.failure_report(
            user=user,
            chat_name=chat_name,
            correct=mc.correct if mc else 0,
            total_questions=len(config.mc_questions),
            score=mc.score if mc else 0,
            threshold=config.mc_passing_threshold,
            open_ended_question=config.open_ended_question,
            open_ended_answer=session.open_ended_answer,
            ai_reasoning=ai_reasoning,
        )
        try:
            await self._notifier.send_chat_notification(
                chat,
                subject=FAILURE_SUBJECT,
                message=report,
                report_id=failure_id,
                reported_user_id=user.id,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to notify admins about exam failure #%s: %s", failure_id, exc)

        try:
            await self._messaging.send_notice(user.id, settings.PENDING_REVIEW_TEXT)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to send pending review notice to user %s: %s", user.id, exc)

    async def _resolve_chat(self, chat_id: int) -> ChatIdentity:
        try:
            chat = await self._chats.get_chat(chat_id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Chat lookup failed for %s: %s", chat_id, exc)
            chat = None
        return chat or ChatIdentity(id=chat_id)

    # Lookups and lifecycle

    async def has_active_session(self, chat_id: int, user_id: int) -> bool:
        return await self._sessions.has_active_session(chat_id, user_id)

    async def cancel_session(self, chat_id: int, user_id: int) -> bool:
        cancelled = await self._sessions.delete_for_chat_and_user(chat_id, user_id)
        if cancelled:
            logger.info("Cancelled exam session for user %s in chat %s", user_id, chat_id)
        return cancelled

    async def get_active_exam_context(self, user_id: int) -> Optional[ActiveExamContext]:
        """Which group a private-chat message from ``user_id`` belongs to, if any."""

        session = await self._sessions.get_active_for_user(user_id)
        if session is None:
            return None
        config = await self._load_config(session.chat_id)
        awaiting = bool(
            config is not None
            and config.has_open_ended_question
            and session.current_question_index >= len(config.mc_questions)
            and session.open_ended_answer is None
        )
        return ActiveExamContext(group_chat_id=session.chat_id, awaiting_open_ended=awaiting)

    async def expire_session(self, session_id: int) -> bool:
        """Timeout path: returns ``True`` only for the call that closed the session."""

        session = await self._sessions.get_by_id(session_id)
        if session is None:
            return False
        return await self._expire(session)

    async def _expire(self, session: ExamSession) -> bool:
        if not await self._sessions.delete_session(session.id):
            return False
        log_event("exam_expired", session.id, chat_id=session.chat_id, user_id=session.user_id)

        chat = await self._resolve_chat(session.chat_id)
        result = await self._review.execute_timeout(UserIdentity(id=session.user_id), chat)
        if not result.success:
            logger.warning(
                "Timeout kick failed for user %s in chat %s: %s",
                session.user_id,
                session.chat_id,
                result.error_message,
            )
        return True


__all__ = ["ExamFlowService", "FAILURE_SUBJECT"]
