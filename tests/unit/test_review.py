import pytest

from exam.types import (
    Actor,
    ChatIdentity,
    ExamFailureRecord,
    ModerationResult,
    ResponseType,
)
from storage.reports import fetch_exam_failure
from storage.responses import fetch_response, insert_response

ADMIN = Actor(kind="web_user", display_name="admin@example.com")


@pytest.fixture
def prompt(chat, user):
    return insert_response(chat.id, user.id, 555)


async def _failure(harness, chat, user) -> int:
    return await harness.reports.insert_exam_failure(
        ExamFailureRecord(user=user, chat=chat, score=33, passing_threshold=80)
    )


@pytest.mark.asyncio
async def test_manual_approve_runs_full_procedure(harness, chat, user, prompt):
    result = await harness.review.approve(user, chat, ADMIN)

    assert result.success is True
    intent = harness.orchestrator.restore_permissions.await_args.args[0]
    assert intent.executor == ADMIN
    assert intent.permissions.can_send_messages is True

    delete_intent = harness.orchestrator.delete_message.await_args.args[0]
    assert delete_intent.message_id == 555
    assert fetch_response(user.id, chat.id).response is ResponseType.ACCEPTED
    assert await harness.users.is_active(user.id) is True

    user_id, text, buttons = harness.messaging.send_notice.await_args.args
    assert user_id == user.id
    assert "An admin has approved" in text
    assert buttons[0].url == "https://t.me/+invite"


@pytest.mark.asyncio
async def test_public_chat_gets_username_link(harness, user):
    public = ChatIdentity(id=-100555, chat_name="Rust Learners", username="rustlearners")

    await harness.review.approve(user, public, ADMIN)

    _, _, buttons = harness.messaging.send_notice.await_args.args
    assert buttons[0].url == "https://t.me/rustlearners"
    harness.chats.get_invite_link.assert_not_awaited()


@pytest.mark.asyncio
async def test_approve_aborts_when_permission_restore_fails(harness, chat, user, prompt):
    harness.orchestrator.restore_permissions.return_value = ModerationResult.failed("not enough rights")

    result = await harness.review.approve(user, chat, ADMIN)

    assert result.success is False
    assert result.error_message == "not enough rights"
    harness.orchestrator.delete_message.assert_not_awaited()
    harness.messaging.send_notice.assert_not_awaited()
    assert await harness.users.is_active(user.id) is False
    assert fetch_response(user.id, chat.id).response is ResponseType.PENDING


@pytest.mark.asyncio
async def test_orchestrator_exception_propagates(harness, chat, user):
    harness.orchestrator.restore_permissions.side_effect = RuntimeError("platform error")

    with pytest.raises(RuntimeError):
        await harness.review.approve(user, chat, ADMIN)


@pytest.mark.asyncio
async def test_approval_survives_cleanup_and_dm_failures(harness, chat, user, prompt):
    harness.orchestrator.delete_message.side_effect = RuntimeError("already deleted")
    harness.messaging.send_notice.side_effect = RuntimeError("bot blocked")
    harness.chats.get_invite_link.side_effect = RuntimeError("no rights")

    result = await harness.review.approve(user, chat, ADMIN)

    assert result.success is True
    assert await harness.users.is_active(user.id) is True


@pytest.mark.asyncio
async def test_approve_stamps_review(harness, chat, user):
    failure_id = await _failure(harness, chat, user)

    await harness.review.approve(user, chat, ADMIN, exam_failure_id=failure_id)

    stored = fetch_exam_failure(failure_id)
    assert stored.reviewed_by == "admin@example.com"
    assert stored.action_taken == "approved"
    assert stored.is_reviewed
    reason = harness.orchestrator.restore_permissions.await_args.args[0].reason
    assert f"#{failure_id}" in reason


@pytest.mark.asyncio
async def test_deny_kicks_and_notifies(harness, chat, user, prompt):
    result = await harness.review.deny(user, chat, ADMIN)

    assert result.success is True
    kick = harness.orchestrator.kick_user_from_chat.await_args.args[0]
    assert kick.user.id == user.id and kick.chat.id == chat.id
    harness.orchestrator.ban_user.assert_not_awaited()
    assert fetch_response(user.id, chat.id).response is ResponseType.DENIED
    _, text, _ = harness.messaging.send_notice.await_args.args
    assert "You may try joining again later" in text


@pytest.mark.asyncio
async def test_deny_and_ban_bans_globally(harness, chat, user, prompt):
    failure_id = await _failure(harness, chat, user)

    result = await harness.review.deny_and_ban(user, chat, ADMIN, exam_failure_id=failure_id)

    assert result.success is True
    ban = harness.orchestrator.ban_user.await_args.args[0]
    assert ban.user.id == user.id
    harness.orchestrator.kick_user_from_chat.assert_not_awaited()
    assert fetch_exam_failure(failure_id).action_taken == "denied_and_banned"
    _, text, _ = harness.messaging.send_notice.await_args.args
    assert "banned" in text


@pytest.mark.asyncio
async def test_deny_twice_kicks_once(harness, chat, user, prompt):
    first = await harness.review.deny(user, chat, ADMIN)
    second = await harness.review.deny(user, chat, ADMIN)

    assert first.success is True and second.success is True
    assert harness.orchestrator.kick_user_from_chat.await_count == 1
    assert harness.messaging.send_notice.await_count == 1


@pytest.mark.asyncio
async def test_failed_kick_is_returned_and_not_stamped(harness, chat, user, prompt):
    harness.orchestrator.kick_user_from_chat.return_value = ModerationResult.failed("user is admin")
    failure_id = await _failure(harness, chat, user)

    result = await harness.review.deny(user, chat, ADMIN, exam_failure_id=failure_id)

    assert result.success is False
    assert result.error_message == "user is admin"
    harness.messaging.send_notice.assert_not_awaited()
    assert fetch_exam_failure(failure_id).is_reviewed is False


@pytest.mark.asyncio
async def test_deny_can_be_retried_after_failed_kick(harness, chat, user, prompt):
    harness.orchestrator.kick_user_from_chat.return_value = ModerationResult.failed("flood wait")
    await harness.review.deny(user, chat, ADMIN)
    assert fetch_response(user.id, chat.id).response is ResponseType.PENDING

    harness.orchestrator.kick_user_from_chat.return_value = ModerationResult.ok()
    retry = await harness.review.deny(user, chat, ADMIN)

    assert retry.success is True
    assert harness.orchestrator.kick_user_from_chat.await_count == 2
    assert fetch_response(user.id, chat.id).response is ResponseType.DENIED


@pytest.mark.asyncio
async def test_automatic_and_manual_paths_share_procedure(harness, chat, user):
    automatic = await harness.review.execute_approval(user, chat, Actor.exam_flow(), "Passed entrance exam", manual=False)
    manual = await harness.review.approve(user, chat, ADMIN)

    assert automatic.success and manual.success
    executors = [c.args[0].executor.kind for c in harness.orchestrator.restore_permissions.await_args_list]
    assert executors == ["exam_flow", "web_user"]
    texts = [c.args[1] for c in harness.messaging.send_notice.await_args_list]
    assert "passed the entrance exam" in texts[0]
    assert "An admin has approved" in texts[1]


@pytest.mark.asyncio
async def test_timeout_marks_response_and_kicks(harness, chat, user, prompt):
    result = await harness.review.execute_timeout(user, chat)

    assert result.success is True
    assert fetch_response(user.id, chat.id).response is ResponseType.TIMEOUT
    assert harness.orchestrator.kick_user_from_chat.await_args.args[0].executor.kind == "system"


@pytest.mark.asyncio
async def test_ban_after_kick_still_bans(harness, chat, user, prompt):
    await harness.review.deny(user, chat, ADMIN)
    banned = await harness.review.deny_and_ban(user, chat, ADMIN)
    again = await harness.review.deny_and_ban(user, chat, ADMIN)

    assert banned.success is True and again.success is True
    assert harness.orchestrator.kick_user_from_chat.await_count == 1
    assert harness.orchestrator.ban_user.await_count == 1
    assert fetch_response(user.id, chat.id).response is ResponseType.BANNED


@pytest.mark.asyncio
async def test_kick_after_ban_is_skipped(harness, chat, user, prompt):
    await harness.review.deny_and_ban(user, chat, ADMIN)
    result = await harness.review.deny(user, chat, ADMIN)

    assert result.success is True
    harness.orchestrator.kick_user_from_chat.assert_not_awaited()
    assert fetch_response(user.id, chat.id).response is ResponseType.BANNED


@pytest.mark.asyncio
async def test_reviewed_failure_is_not_denied_twice_without_prompt(harness, chat, user):
    failure_id = await _failure(harness, chat, user)

    await harness.review.deny(user, chat, ADMIN, exam_failure_id=failure_id)
    second = await harness.review.deny(user, chat, ADMIN, exam_failure_id=failure_id)

    assert second.success is True
    assert harness.orchestrator.kick_user_from_chat.await_count == 1
    assert harness.messaging.send_notice.await_count == 1


@pytest.mark.asyncio
async def test_reviewed_kick_upgrades_to_ban_without_prompt(harness, chat, user):
    failure_id = await _failure(harness, chat, user)

    await harness.review.deny(user, chat, ADMIN, exam_failure_id=failure_id)
    await harness.review.deny_and_ban(user, chat, ADMIN, exam_failure_id=failure_id)
    await harness.review.deny_and_ban(user, chat, ADMIN, exam_failure_id=failure_id)

    assert harness.orchestrator.ban_user.await_count == 1
    assert fetch_exam_failure(failure_id).action_taken == "denied_and_banned"
