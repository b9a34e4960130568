"""Approval and denial procedures shared by automatic and manual exam outcomes.

The exam flow calls :meth:`ExamReviewActions.execute_approval` when a user
passes, and admins reach the very same procedures through :meth:`approve`,
:meth:`deny` and :meth:`deny_and_ban`. Only the acting identity and the
reason differ between the two paths.
"""
from __future__ import annotations

import logging
from typing import Optional

from config.settings import settings
from observability import log_event

from . import messages
from .ports import (
    ChatDirectory,
    MessagingGateway,
    ModerationOrchestrator,
    ReportsRepository,
    ResponsesRepository,
    UserRepository,
)
from .types import (
    Actor,
    BanIntent,
    ChatIdentity,
    DeleteMessageIntent,
    KickIntent,
    ModerationResult,
    QuestionButton,
    ResponseRecord,
    ResponseType,
    RestorePermissionsIntent,
    UserIdentity,
)

logger = logging.getLogger(__name__)

DEFAULT_CHAT_NAME = "the chat"

# denial severity, kick < ban
_RESPONSE_SEVERITY = {ResponseType.DENIED: 1, ResponseType.BANNED: 2}
_REVIEW_SEVERITY = {"denied": 1, "denied_and_banned": 2}


class ExamReviewActions:
    def __init__(
        self,
        *,
        orchestrator: ModerationOrchestrator,
        responses: ResponsesRepository,
        users: UserRepository,
        chats: ChatDirectory,
        messaging: MessagingGateway,
        reports: ReportsRepository,
    ) -> None:
        self._orchestrator = orchestrator
        self._responses = responses
        self._users = users
        self._chats = chats
        self._messaging = messaging
        self._reports = reports

    # Manual review entry points

    async def approve(
        self,
        user: UserIdentity,
        chat: ChatIdentity,
        executor: Actor,
        exam_failure_id: Optional[int] = None,
    ) -> ModerationResult:
        if exam_failure_id is not None:
            reason = f"Exam failure #{exam_failure_id} - manually approved after review"
        else:
            reason = "Entrance exam manually approved after review"
        result = await self.execute_approval(user, chat, executor, reason, manual=True)
        await self._stamp_review(result, exam_failure_id, executor, "approved")
        return result

    async def deny(
        self,
        user: UserIdentity,
        chat: ChatIdentity,
        executor: Actor,
        exam_failure_id: Optional[int] = None,
    ) -> ModerationResult:
        result = await self.execute_denial(user, chat, executor, ban=False, exam_failure_id=exam_failure_id)
        await self._stamp_review(result, exam_failure_id, executor, "denied")
        return result

    async def deny_and_ban(
        self,
        user: UserIdentity,
        chat: ChatIdentity,
        executor: Actor,
        exam_failure_id: Optional[int] = None,
    ) -> ModerationResult:
        result = await self.execute_denial(user, chat, executor, ban=True, exam_failure_id=exam_failure_id)
        await self._stamp_review(result, exam_failure_id, executor, "denied_and_banned")
        return result

    # Shared procedures

    async def execute_approval(
        self,
        user: UserIdentity,
        chat: ChatIdentity,
        executor: Actor,
        reason: str,
        *,
        manual: bool,
    ) -> ModerationResult:
        """Restore permissions, clean up the prompt, activate the user, tell them.

        Only the permission restore can fail the approval; everything after it
        is best effort.
        """

        restored = await self._orchestrator.restore_permissions(
            RestorePermissionsIntent(user=user, chat=chat, executor=executor, reason=reason)
        )
        if not restored.success:
            logger.warning(
                "Permission restore failed for user %s in chat %s: %s",
                user.id,
                chat.id,
                restored.error_message,
            )
            return restored

        chat = await self._resolve_chat(chat)
        chat_name = chat.chat_name or DEFAULT_CHAT_NAME

        await self._teardown_prompt(
            user,
            chat,
            executor,
            ResponseType.ACCEPTED,
            reason="Exam prompt cleanup after approval",
        )
        await self._users.set_active(user.id, True)

        link = await self._return_link(chat)
        buttons = [messages.return_to_chat_button(chat_name, link)] if link else []
        await self._notify_user(user, messages.approval_text(chat_name, manual=manual), buttons)

        logger.info("Exam approved for user %s in chat %s by %s", user.id, chat.id, executor.display_name)
        log_event(
            "exam_approved",
            None,
            chat_id=chat.id,
            user_id=user.id,
            actor=executor.display_name,
            manual=manual,
        )
        return ModerationResult.ok()

    async def execute_denial(
        self,
        user: UserIdentity,
        chat: ChatIdentity,
        executor: Actor,
        *,
        ban: bool,
        exam_failure_id: Optional[int] = None,
    ) -> ModerationResult:
        """Tear down the prompt, then kick (rejoin allowed) or ban globally.

        Skipped when the response record or the reviewed exam failure shows a
        denial at least as severe as the one requested, so a kick followed by a
        ban still bans.
        """

        requested = 2 if ban else 1
        record = await self._responses.get_by_user_and_chat(user.id, chat.id)
        if await self._prior_denial(record, exam_failure_id) >= requested:
            logger.info(
                "Exam for user %s in chat %s was already %s; skipping",
                user.id,
                chat.id,
                "banned" if ban else "denied",
            )
            return ModerationResult.ok()

        chat = await self._resolve_chat(chat)
        chat_name = chat.chat_name or DEFAULT_CHAT_NAME

        await self._teardown_prompt(
            user,
            chat,
            executor,
            ResponseType.BANNED if ban else ResponseType.DENIED,
            reason="Exam prompt cleanup after denial",
        )

        if ban:
            result = await self._orchestrator.ban_user(
                BanIntent(
                    user=user,
                    executor=executor,
                    reason="Exam failed - banned to prevent repeat join spam",
                )
            )
        else:
            result = await self._orchestrator.kick_user_from_chat(
                KickIntent(user=user, chat=chat, executor=executor, reason="Exam denied - kicked from chat")
            )
        if not result.success:
            logger.warning(
                "%s failed for user %s in chat %s: %s",
                "Ban" if ban else "Kick",
                user.id,
                chat.id,
                result.error_message,
            )
            # leave the record retryable
            if record is not None:
                await self._restore_response(record.id, record.response)
            return result

        await self._notify_user(user, messages.denial_text(chat_name, banned=ban))

        action = "denied and banned" if ban else "denied (kicked)"
        logger.info("Exam %s for user %s in chat %s by %s", action, user.id, chat.id, executor.display_name)
        log_event(
            "exam_denied",
            None,
            chat_id=chat.id,
            user_id=user.id,
            actor=executor.display_name,
            action="ban" if ban else "kick",
        )
        return ModerationResult.ok()

    async def execute_timeout(self, user: UserIdentity, chat: ChatIdentity) -> ModerationResult:
        """Kick a user whose exam ran out of time; they are free to rejoin."""

        executor = Actor.system()
        await self._teardown_prompt(
            user,
            chat,
            executor,
            ResponseType.TIMEOUT,
            reason="Exam prompt cleanup after timeout",
        )
        return await self._orchestrator.kick_user_from_chat(
            KickIntent(user=user, chat=chat, executor=executor, reason="Entrance exam timed out")
        )

    # Helpers

    async def _prior_denial(self, record: Optional[ResponseRecord], exam_failure_id: Optional[int]) -> int:
        severity = _RESPONSE_SEVERITY.get(record.response, 0) if record is not None else 0
        if exam_failure_id is not None:
            failure = await self._reports.get_exam_failure(exam_failure_id)
            if failure is not None and failure.action_taken:
                severity = max(severity, _REVIEW_SEVERITY.get(failure.action_taken, 0))
        return severity

    async def _teardown_prompt(
        self,
        user: UserIdentity,
        chat: ChatIdentity,
        executor: Actor,
        response: ResponseType,
        *,
        reason: str,
    ) -> None:
        try:
            record = await self._responses.get_by_user_and_chat(user.id, chat.id)
            if record is None:
                return
            await self._orchestrator.delete_message(
                DeleteMessageIntent(
                    message_id=record.prompt_message_id,
                    chat=chat,
                    user=user,
                    executor=executor,
                    reason=reason,
                )
            )
            await self._responses.update_response(record.id, response)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prompt cleanup failed for user %s in chat %s: %s", user.id, chat.id, exc)

    async def _restore_response(self, record_id: int, response: ResponseType) -> None:
        try:
            await self._responses.update_response(record_id, response)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not restore response #%s to %s: %s", record_id, response.value, exc)

    async def _resolve_chat(self, chat: ChatIdentity) -> ChatIdentity:
        if chat.chat_name:
            return chat
        try:
            found = await self._chats.get_chat(chat.id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Chat lookup failed for %s: %s", chat.id, exc)
            return chat
        return found or chat

    async def _return_link(self, chat: ChatIdentity) -> Optional[str]:
        if chat.username:
            return f"{settings.PUBLIC_LINK_BASE}{chat.username}"
        try:
            return await self._chats.get_invite_link(chat.id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Invite link lookup failed for chat %s: %s", chat.id, exc)
            return None

    async def _notify_user(self, user: UserIdentity, text: str, buttons: Optional[list[QuestionButton]] = None) -> None:
        # private chat id == user id
        try:
            await self._messaging.send_notice(user.id, text, buttons or [])
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to send exam notice to user %s: %s", user.id, exc)

    async def _stamp_review(
        self,
        result: ModerationResult,
        exam_failure_id: Optional[int],
        executor: Actor,
        action: str,
    ) -> None:
        if not result.success or exam_failure_id is None:
            return
        try:
            await self._reports.mark_reviewed(exam_failure_id, executor, action)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not mark exam failure #%s reviewed: %s", exam_failure_id, exc)


__all__ = ["ExamReviewActions", "DEFAULT_CHAT_NAME"]
