"""Tests for bot command handlers."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from aiogram.exceptions import TelegramForbiddenError
from aiogram.methods import SendMessage

from conftest import BOT_USERNAME, CHANNEL_ID, OWNER_ID, SECRET
from bot.handlers import CommandHandlers, parse_new_contest_args
from bot.updates import CommandName, CommandReceived, Sender
from core.constants import ContestState, RunMode
from core.exceptions import AuthorizationError, FeatureUnavailable, ValidationError
from services.broadcast import DeliveryReport
from services.contests import ContestLifecycleManager
from services.invitations import InvitationIssuer


@pytest.fixture
def issuer(store):
    return InvitationIssuer(store, SECRET, BOT_USERNAME)


@pytest.fixture
def handlers(bot, store, issuer):
    return CommandHandlers(bot, store, issuer, ContestLifecycleManager(store))


def _command(sender_id, command, *args, chat_id=None):
    return CommandReceived(
        update_id=1,
        chat_id=chat_id or sender_id,
        sender=Sender(sender_id, f"User{sender_id}"),
        command=command,
        raw_command=command.value,
        args=tuple(args),
        text=" ".join(args),
    )


def _last_text(bot, chat_id):
    texts = [call.args[1] for call in bot.send_message.await_args_list if call.args[0] == chat_id]
    return texts[-1]


def test_parse_new_contest_args_with_end_and_name():
    channel_id, prizes, end_at, name = parse_new_contest_args(
        ("-1001", "3", "2026-05-01", "10:30", "Spring", "giveaway")
    )

    assert (channel_id, prizes, name) == (-1001, 3, "Spring giveaway")
    assert end_at == datetime(2026, 5, 1, 10, 30, tzinfo=timezone.utc)


def test_parse_new_contest_args_name_only():
    assert parse_new_contest_args(("-1001", "1", "Weekly", "draw")) == (-1001, 1, None, "Weekly draw")
    assert parse_new_contest_args(("-1001", "1")) == (-1001, 1, None, None)


@pytest.mark.parametrize("args", [(), ("-1001",), ("abc", "1"), ("-1001", "many")])
def test_parse_new_contest_args_rejects_bad_input(args):
    with pytest.raises(ValidationError):
        parse_new_contest_args(args)


@pytest.mark.asyncio
async def test_start_with_contest_payload_sends_personal_link(bot, store, handlers, active_contest):
    await handlers.handle(_command(7, CommandName.START, f"c{active_contest.id}"))

    invitation = (await store.list_invitations(active_contest.id))[0]
    assert invitation.participant_id == 7
    assert f"https://t.me/{BOT_USERNAME}?start={invitation.token}" in _last_text(bot, 7)


@pytest.mark.asyncio
async def test_start_with_public_channel_uses_channel_link(bot, store, issuer, handlers, active_contest):
    await store.upsert_channel(CHANNEL_ID, OWNER_ID, "Test channel", "https://t.me/testchannel")
    invitation = await issuer.issue(active_contest.id, 7)

    await handlers.handle(_command(42, CommandName.START, invitation.token))

    bot.create_chat_invite_link.assert_not_awaited()
    assert "https://t.me/testchannel" in _last_text(bot, 42)


@pytest.mark.asyncio
async def test_start_with_own_invitation(bot, store, issuer, handlers, active_contest):
    invitation = await issuer.issue(active_contest.id, 7)

    await handlers.handle(_command(7, CommandName.START, invitation.token))

    assert "your own invitation" in _last_text(bot, 7)
    assert await store.get_referral_intent(CHANNEL_ID, 7) is None


@pytest.mark.asyncio
async def test_start_with_ended_contest_invitation(bot, store, issuer, handlers, active_contest):
    invitation = await issuer.issue(active_contest.id, 7)
    await store.end_contest(active_contest.id)

    await handlers.handle(_command(42, CommandName.START, invitation.token))

    assert "is ended" in _last_text(bot, 42)
    assert await store.get_referral_intent(CHANNEL_ID, 42) is None


@pytest.mark.asyncio
async def test_start_without_payload_welcomes(bot, handlers):
    await handlers.handle(_command(42, CommandName.START))

    assert "Hi User42" in _last_text(bot, 42)


@pytest.mark.asyncio
async def test_owner_runs_contest_through_commands(bot, store, issuer, handlers, channel):
    await handlers.handle(_command(OWNER_ID, CommandName.NEWCONTEST, str(CHANNEL_ID), "1", "Launch"))
    contest = (await store.list_channel_contests(CHANNEL_ID))[0]
    assert contest.name == "Launch"
    assert f"/startcontest {contest.id}" in _last_text(bot, OWNER_ID)

    await handlers.handle(_command(OWNER_ID, CommandName.STARTCONTEST, str(contest.id)))
    assert f"?start=c{contest.id}" in _last_text(bot, CHANNEL_ID)

    invitation = await issuer.issue(contest.id, 7)
    await store.upsert_user(7, "Alice")
    await store.execute("UPDATE invitations SET credited_count=4 WHERE id=?", (invitation.id,))

    await handlers.handle(_command(OWNER_ID, CommandName.RANK, str(contest.id)))
    assert "1. Alice: 4" in _last_text(bot, OWNER_ID)

    await handlers.handle(_command(OWNER_ID, CommandName.ENDCONTEST, str(contest.id)))
    assert "has ended" in _last_text(bot, CHANNEL_ID)

    await handlers.handle(_command(OWNER_ID, CommandName.CLOSECONTEST, str(contest.id)))
    assert "1. Alice with 4 invited" in _last_text(bot, CHANNEL_ID)
    assert (await store.get_contest(contest.id)).state is ContestState.CLOSED


@pytest.mark.asyncio
async def test_channel_refusing_announcement_does_not_fail_command(bot, store, handlers, channel):
    contest = await store.create_contest(CHANNEL_ID, "Quiet", 1)

    async def send_message(chat_id, text, **kwargs):
        if chat_id == CHANNEL_ID:
            raise TelegramForbiddenError(SendMessage(chat_id=chat_id, text=text), "Forbidden")

    bot.send_message.side_effect = send_message

    await handlers.handle(_command(OWNER_ID, CommandName.STARTCONTEST, str(contest.id)))

    assert (await store.get_contest(contest.id)).state is ContestState.ACTIVE
    assert "is running" in _last_text(bot, OWNER_ID)


@pytest.mark.asyncio
async def test_invalid_transition_reports_current_state(bot, handlers, active_contest):
    await handlers.handle(_command(OWNER_ID, CommandName.CLOSECONTEST, str(active_contest.id)))

    assert "current state: <b>active</b>" in _last_text(bot, OWNER_ID)


@pytest.mark.asyncio
async def test_missing_argument_reports_usage(bot, handlers):
    await handlers.handle(_command(OWNER_ID, CommandName.ENDCONTEST))

    assert "Usage: /endcontest" in _last_text(bot, OWNER_ID)


@pytest.mark.asyncio
async def test_non_owner_cannot_manage(bot, store, handlers, active_contest):
    await handlers.handle(_command(555, CommandName.ENDCONTEST, str(active_contest.id)))

    assert "not the owner" in _last_text(bot, 555)
    assert (await store.get_contest(active_contest.id)).state is ContestState.ACTIVE


@pytest.mark.asyncio
async def test_list_shows_owned_channels(bot, handlers, active_contest):
    await handlers.handle(_command(OWNER_ID, CommandName.LIST))

    text = _last_text(bot, OWNER_ID)
    assert "Test channel" in text
    assert "Spring contest" in text


@pytest.mark.asyncio
async def test_unexpected_error_gets_generic_reply(bot, store, issuer):
    contests = AsyncMock()
    contests.end.side_effect = RuntimeError("boom")
    handlers = CommandHandlers(bot, store, issuer, contests)

    await handlers.handle(_command(OWNER_ID, CommandName.ENDCONTEST, "1"))

    assert "Something went wrong" in _last_text(bot, OWNER_ID)


@pytest.mark.asyncio
async def test_broadcast_requires_broadcast_mode(handlers):
    with pytest.raises(FeatureUnavailable):
        await handlers.broadcast(_command(OWNER_ID, CommandName.BROADCAST, "hello"))


@pytest.mark.asyncio
async def test_broadcast_command_in_broadcast_mode(bot, store, issuer):
    runner = AsyncMock()
    runner.run.return_value = DeliveryReport(succeeded=[1, 2], failed=[])
    handlers = CommandHandlers(
        bot, store, issuer, ContestLifecycleManager(store),
        mode=RunMode.BROADCAST, broadcast_runner=runner, admin_ids=[OWNER_ID],
    )

    with pytest.raises(AuthorizationError):
        await handlers.broadcast(_command(42, CommandName.BROADCAST, "hello"))

    await handlers.broadcast(_command(OWNER_ID, CommandName.BROADCAST, "hello", "all"))

    runner.run.assert_awaited_once_with("hello all")
    assert "2 delivered" in _last_text(bot, OWNER_ID)


def test_every_command_has_a_route(bot, store, issuer):
    handlers = CommandHandlers(bot, store, issuer, ContestLifecycleManager(store))

    assert set(handlers._routes) == set(CommandName)


@pytest.mark.asyncio
async def test_bare_rank_shows_own_positions(bot, store, issuer, handlers, active_contest):
    mine = await issuer.issue(active_contest.id, 7)
    leader = await issuer.issue(active_contest.id, 8)
    await store.execute("UPDATE invitations SET credited_count=3 WHERE id=?", (leader.id,))
    await store.execute("UPDATE invitations SET credited_count=1 WHERE id=?", (mine.id,))

    await handlers.handle(_command(7, CommandName.RANK))
    assert "Spring contest" in _last_text(bot, 7)
    assert "#2 with 1 invited" in _last_text(bot, 7)

    await handlers.handle(_command(8, CommandName.RANK))
    assert "🥇 #1 with 3 invited" in _last_text(bot, 8)


@pytest.mark.asyncio
async def test_bare_rank_without_invitations(bot, handlers):
    await handlers.handle(_command(42, CommandName.RANK))

    assert "haven't taken part" in _last_text(bot, 42)


@pytest.mark.asyncio
async def test_delete_contest_command(bot, store, handlers, active_contest):
    draft = await store.create_contest(CHANNEL_ID, "Scrapped", 1)

    await handlers.handle(_command(OWNER_ID, CommandName.DELETECONTEST, str(draft.id)))
    assert "was deleted" in _last_text(bot, OWNER_ID)
    assert await store.get_contest(draft.id) is None

    await handlers.handle(_command(OWNER_ID, CommandName.DELETECONTEST, str(active_contest.id)))
    assert "current state: <b>active</b>" in _last_text(bot, OWNER_ID)
    assert await store.get_contest(active_contest.id) is not None

    await handlers.handle(_command(OWNER_ID, CommandName.DELETECONTEST))
    assert "Usage: /deletecontest" in _last_text(bot, OWNER_ID)


@pytest.mark.asyncio
async def test_join_link_is_sent_only_after_intent_is_stored(bot, store, issuer, handlers, active_contest):
    invitation = await issuer.issue(active_contest.id, 7)
    intents_at_send = []

    async def send_message(chat_id, text, **kwargs):
        intents_at_send.append(await store.get_referral_intent(CHANNEL_ID, chat_id))

    bot.send_message.side_effect = send_message

    await handlers.handle(_command(42, CommandName.START, invitation.token))

    assert intents_at_send == [invitation.token]
