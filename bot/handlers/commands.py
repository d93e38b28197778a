"""Bot command handlers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from aiogram import Bot

from bot import messages
from bot.error_handler import handle_command_errors, reply_safely
from bot.updates import CommandName, CommandReceived
from core import get_logger
from core.constants import ContestDefaults, ContestState, RunMode
from core.exceptions import (
    AuthorizationError,
    ContestNotActive,
    FeatureUnavailable,
    ValidationError,
)
from database.models import Contest, Invitation
from database.repositories import EntityStore
from services.broadcast import BroadcastRunner
from services.contests import ContestLifecycleManager
from services.invitations import InvitationIssuer, parse_start_payload

logger = get_logger(__name__)

CommandHandler = Callable[[CommandReceived], Awaitable[None]]

RANKING_SIZE = 10


def _int_arg(event: CommandReceived, index: int, name: str) -> int:
    try:
        return int(event.args[index])
    except (IndexError, ValueError):
        raise ValidationError(f"Usage: /{event.raw_command} <{name}>") from None


def parse_new_contest_args(args: Tuple[str, ...]) -> Tuple[int, int, Optional[datetime], Optional[str]]:
    """Split ``/newcontest`` arguments.

    Format: ``<channel_id> <prizes> [YYYY-MM-DD HH:MM] [name...]``, the end
    time is read as UTC.

    Returns:
        Tuple of (channel_id, prize_count, end_at, name)
    """
    if len(args) < 2:
        raise ValidationError("Usage: /newcontest <channel_id> <prizes> [YYYY-MM-DD HH:MM] [name]")
    try:
        channel_id = int(args[0])
        prize_count = int(args[1])
    except ValueError:
        raise ValidationError("Channel id and prize count must be numbers") from None

    rest = list(args[2:])
    end_at = None
    if len(rest) >= 2:
        try:
            end_at = datetime.strptime(f"{rest[0]} {rest[1]}", ContestDefaults.END_FORMAT)
        except ValueError:
            end_at = None
        else:
            end_at = end_at.replace(tzinfo=timezone.utc)
            rest = rest[2:]

    name = " ".join(rest) or None
    return channel_id, prize_count, end_at, name


class CommandHandlers:
    """Routes each :class:`CommandName` to its handler.

    The route table must cover every command; a missing entry fails at
    construction time.
    """

    def __init__(
        self,
        bot: Bot,
        store: EntityStore,
        invitations: InvitationIssuer,
        contests: ContestLifecycleManager,
        mode: RunMode = RunMode.NORMAL,
        broadcast_runner: Optional[BroadcastRunner] = None,
        admin_ids: Iterable[int] = (),
    ) -> None:
        self.bot = bot
        self.store = store
        self.invitations = invitations
        self.contests = contests
        self.mode = mode
        self.broadcast_runner = broadcast_runner
        self.admin_ids = frozenset(admin_ids)

        self._routes: Dict[CommandName, CommandHandler] = {
            CommandName.START: self.start,
            CommandName.HELP: self.help,
            CommandName.LIST: self.list_channels,
            CommandName.NEWCONTEST: self.new_contest,
            CommandName.STARTCONTEST: self.start_contest,
            CommandName.ENDCONTEST: self.end_contest,
            CommandName.CLOSECONTEST: self.close_contest,
            CommandName.DELETECONTEST: self.delete_contest,
            CommandName.RANK: self.rank,
            CommandName.BROADCAST: self.broadcast,
        }
        missing = set(CommandName) - set(self._routes)
        if missing:
            raise RuntimeError(f"Commands without handler: {sorted(c.value for c in missing)}")

    @handle_command_errors
    async def handle(self, event: CommandReceived) -> None:
        sender = event.sender
        await self.store.upsert_user(sender.id, sender.first_name, sender.last_name, sender.username)

        if event.command is None:
            await self.reply(event, messages.unknown_command(event.raw_command))
            return
        await self._routes[event.command](event)

    async def reply(self, event: CommandReceived, text: str) -> None:
        await self.bot.send_message(event.chat_id, text)

    async def announce(self, chat_id: int, text: str) -> bool:
        """Post to a channel; a refusal is logged, the command still succeeds."""
        return await reply_safely(self.bot, chat_id, text)

    async def start(self, event: CommandReceived) -> None:
        kind, value = parse_start_payload(event.args[0] if event.args else None)
        if kind == "contest":
            await self._send_invitation(event, value)
        elif kind == "invitation":
            await self._accept_invitation(event, value)
        else:
            await self.reply(event, messages.welcome(event.sender.first_name))

    async def _send_invitation(self, event: CommandReceived, contest_id: int) -> None:
        invitation = await self.invitations.issue(contest_id, event.sender.id)
        contest = await self.store.get_contest(contest_id)
        channel = await self.store.get_channel(contest.channel_id)
        link = self.invitations.deep_link(invitation.token)
        await self.reply(event, messages.invitation_issued(contest, channel, invitation, link))

    async def _accept_invitation(self, event: CommandReceived, token: str) -> None:
        invitation = await self.store.get_invitation_by_token(token)
        if invitation is None:
            raise ValidationError("This invitation link is not valid")
        contest = await self.store.get_contest(invitation.contest_id)
        if contest.state is not ContestState.ACTIVE:
            raise ContestNotActive(f"Contest #{contest.id} is {contest.state.value}")
        if invitation.participant_id == event.sender.id:
            await self.reply(event, messages.own_invitation())
            return

        channel = await self.store.get_channel(contest.channel_id)
        await self.store.save_referral_intent(event.sender.id, channel.id, token)

        link = channel.link
        if link is None:
            # Private chat: a link named after the token identifies the referral on join
            invite = await self.bot.create_chat_invite_link(channel.id, name=token)
            link = invite.invite_link
        await self.reply(event, messages.join_channel(channel, link))

    async def help(self, event: CommandReceived) -> None:
        await self.reply(event, messages.HELP)

    async def list_channels(self, event: CommandReceived) -> None:
        channels = await self.store.list_owner_channels(event.sender.id)
        contests: Dict[int, List[Contest]] = {}
        for channel in channels:
            contests[channel.id] = await self.store.list_channel_contests(channel.id)
        await self.reply(event, messages.channels_overview(channels, contests))

    async def new_contest(self, event: CommandReceived) -> None:
        channel_id, prize_count, end_at, name = parse_new_contest_args(event.args)
        contest = await self.contests.create(event.sender.id, channel_id, prize_count, end_at, name)
        await self.reply(event, messages.contest_created(contest))

    async def start_contest(self, event: CommandReceived) -> None:
        contest = await self.contests.start(event.sender.id, _int_arg(event, 0, "contest_id"))
        link = self.invitations.contest_link(contest.id)
        await self.announce(contest.channel_id, messages.contest_announcement(contest, link))
        await self.reply(event, messages.contest_started_owner(contest))

    async def end_contest(self, event: CommandReceived) -> None:
        contest = await self.contests.end(event.sender.id, _int_arg(event, 0, "contest_id"))
        await self.announce(contest.channel_id, messages.contest_ended(contest))
        await self.reply(event, messages.contest_ended_owner(contest))

    async def close_contest(self, event: CommandReceived) -> None:
        contest, winners = await self.contests.close(event.sender.id, _int_arg(event, 0, "contest_id"))
        text = messages.winners(contest, winners, await self._participant_names(winners))
        await self.announce(contest.channel_id, text)
        await self.reply(event, text)

    async def delete_contest(self, event: CommandReceived) -> None:
        contest = await self.contests.delete(event.sender.id, _int_arg(event, 0, "contest_id"))
        await self.reply(event, messages.contest_deleted(contest))

    async def rank(self, event: CommandReceived) -> None:
        if not event.args:
            # Bare /rank: the sender's own position in each contest
            ranks = await self.contests.participant_ranks(event.sender.id)
            await self.reply(event, messages.my_ranks(ranks))
            return

        contest_id = _int_arg(event, 0, "contest_id")
        entries = await self.contests.ranking(contest_id, RANKING_SIZE)
        contest = await self.store.get_contest(contest_id)
        await self.reply(event, messages.ranking(contest, entries, await self._participant_names(entries)))

    async def broadcast(self, event: CommandReceived) -> None:
        if self.mode is not RunMode.BROADCAST or self.broadcast_runner is None:
            raise FeatureUnavailable("Broadcasts are only available when the bot runs in broadcast mode")
        if event.sender.id not in self.admin_ids:
            raise AuthorizationError("Only bot administrators can broadcast")

        report = await self.broadcast_runner.run(event.text)
        await self.reply(event, messages.broadcast_summary(len(report.succeeded), len(report.failed)))

    async def _participant_names(self, invitations: Iterable[Invitation]) -> Dict[int, str]:
        names: Dict[int, str] = {}
        for invitation in invitations:
            user = await self.store.get_user(invitation.participant_id)
            if user is not None:
                names[user.id] = user.display_name
        return names
