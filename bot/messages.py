"""User-facing texts. Everything is HTML; user-provided values are escaped."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from aiogram.utils.markdown import hbold, hcode, hlink
from aiogram.utils.text_decorations import html_decoration

from core.constants import ContestDefaults, ContestState
from core.exceptions import ApplicationError, InvalidTransition
from database.models import Channel, Contest, Invitation

GENERIC_ERROR = "❌ Something went wrong, please try again later."

HELP = "\n".join(
    [
        hbold("Referral contests"),
        "",
        "Owners: add the bot as an administrator of your channel or group, it registers the chat automatically.",
        "",
        f"/newcontest {hcode('<channel_id> <prizes> [YYYY-MM-DD HH:MM] [name]')} create a contest (UTC end time)",
        f"/startcontest {hcode('<id>')} start it and announce it in the channel",
        f"/endcontest {hcode('<id>')} stop accepting new referrals",
        f"/closecontest {hcode('<id>')} reveal the winners",
        f"/deletecontest {hcode('<id>')} delete a contest that was never started",
        "/list your channels and contests",
        "",
        "Participants: open the link posted in the channel to get your personal invitation link.",
        "/rank your position in the contests you take part in",
        f"/rank {hcode('<id>')} current ranking of a contest",
    ]
)

_STATE_LABELS = {
    ContestState.DRAFT: "📝 draft",
    ContestState.ACTIVE: "🟢 active",
    ContestState.ENDED: "⏹ ended",
    ContestState.CLOSED: "🏁 closed",
}


def quote(value: str) -> str:
    return html_decoration.quote(value)


def error_text(error: ApplicationError) -> str:
    if isinstance(error, InvalidTransition):
        return f"⚠️ {quote(error.message)} (current state: {hbold(error.current_state)})"
    return f"⚠️ {quote(error.message)}"


def format_end(contest: Contest) -> str:
    if contest.end_at is None:
        return "no end time"
    return contest.end_at.strftime(ContestDefaults.END_FORMAT) + " UTC"


def contest_line(contest: Contest) -> str:
    return (
        f"#{contest.id} {quote(contest.name)}: {_STATE_LABELS[contest.state]}, "
        f"{contest.prize_count} prizes, {format_end(contest)}"
    )


def welcome(first_name: str) -> str:
    return f"👋 Hi {quote(first_name)}!\n\n{HELP}"


def invitation_issued(contest: Contest, channel: Optional[Channel], invitation: Invitation, link: str) -> str:
    title = channel.title if channel else str(contest.channel_id)
    return (
        f"🎟 Your invitation link for {hbold(contest.name)} in {hbold(title)}:\n"
        f"{link}\n\n"
        f"Friends who open it and then join the channel count for you.\n"
        f"Credited joins so far: {hbold(invitation.credited_count)}"
    )


def own_invitation() -> str:
    return "ℹ️ This is your own invitation link, share it with your friends."


def join_channel(channel: Channel, link: str) -> str:
    return f"👉 Join {hlink(channel.title, link)} to take part in the contest."


def channel_registered(channel: Channel) -> str:
    return (
        f"✅ {hbold(channel.title)} is registered, its id is {hcode(channel.id)}.\n"
        f"Create a contest with /newcontest {channel.id} &lt;prizes&gt;"
    )


def channels_overview(channels: Sequence[Channel], contests: Dict[int, List[Contest]]) -> str:
    if not channels:
        return "You have no registered channels yet. Add the bot as an administrator of your channel first."

    lines: List[str] = []
    for channel in channels:
        lines.append(f"📣 {hbold(channel.title)} ({hcode(channel.id)})")
        channel_contests = contests.get(channel.id, [])
        if not channel_contests:
            lines.append("    no contests")
        for contest in channel_contests:
            lines.append(f"    {contest_line(contest)}")
    return "\n".join(lines)


def contest_created(contest: Contest) -> str:
    return f"✅ Created {contest_line(contest)}\nStart it with /startcontest {contest.id}"


def contest_started_owner(contest: Contest) -> str:
    return f"🚀 Contest #{contest.id} is running, the announcement was posted to the channel."


def contest_announcement(contest: Contest, link: str) -> str:
    return (
        f"🎉 {hbold(contest.name)} has started!\n\n"
        f"Invite your friends: the {contest.prize_count} members bringing the most new people win.\n"
        f"Ends: {format_end(contest)}\n\n"
        f"{hlink('Get your invitation link', link)}"
    )


def contest_ended(contest: Contest) -> str:
    return (
        f"⏹ {hbold(contest.name)} has ended, new joins no longer count.\n"
        f"Winners will be announced soon."
    )


def contest_ended_owner(contest: Contest) -> str:
    return f"⏹ Contest #{contest.id} ended. Reveal the winners with /closecontest {contest.id}"


def ranking(contest: Contest, entries: Iterable[Invitation], names: Dict[int, str]) -> str:
    lines = [f"📊 {hbold(contest.name)} ({_STATE_LABELS[contest.state]})"]
    for position, invitation in enumerate(entries, start=1):
        name = names.get(invitation.participant_id, str(invitation.participant_id))
        lines.append(f"{position}. {quote(name)}: {invitation.credited_count}")
    if len(lines) == 1:
        lines.append("Nobody has an invitation link yet.")
    return "\n".join(lines)


def _position_label(position: int) -> str:
    if position == 1:
        return "🥇 #1"
    if position <= 3:
        return f"🏆 #{position}"
    return f"#{position}"


def my_ranks(ranks: Sequence[Tuple[Contest, int, Invitation]]) -> str:
    if not ranks:
        return "You haven't taken part in any contest yet."

    lines = [hbold("Your rankings"), ""]
    for contest, position, invitation in ranks:
        lines.append(
            f"{quote(contest.name)} ({_STATE_LABELS[contest.state]}): "
            f"{_position_label(position)} with {invitation.credited_count} invited"
        )
    return "\n".join(lines)


def contest_deleted(contest: Contest) -> str:
    return f"🗑 Draft contest #{contest.id} {quote(contest.name)} was deleted."


def winners(contest: Contest, entries: Sequence[Invitation], names: Dict[int, str]) -> str:
    if not entries:
        return f"🏁 {hbold(contest.name)} is closed. There were no participants."

    lines = [f"🏆 Winners of {hbold(contest.name)}:"]
    for position, invitation in enumerate(entries, start=1):
        name = names.get(invitation.participant_id, str(invitation.participant_id))
        lines.append(f"{position}. {quote(name)} with {invitation.credited_count} invited")
    return "\n".join(lines)


def unknown_command(raw_command: str) -> str:
    return f"🤔 Unknown command /{quote(raw_command)}. Send /help for the list."


def broadcast_summary(succeeded: int, failed: int) -> str:
    return f"📬 Broadcast finished: {succeeded} delivered, {failed} failed."
