"""Closed set of inbound events the dispatcher understands."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from aiogram.enums import ChatMemberStatus, ChatType
from aiogram.types import ChatMemberUnion, ChatMemberUpdated, Message, Update, User


class CommandName(str, Enum):
    """Bot commands, without the leading slash."""
    START = "start"
    HELP = "help"
    LIST = "list"
    NEWCONTEST = "newcontest"
    STARTCONTEST = "startcontest"
    ENDCONTEST = "endcontest"
    CLOSECONTEST = "closecontest"
    DELETECONTEST = "deletecontest"
    RANK = "rank"
    BROADCAST = "broadcast"


@dataclass(frozen=True, slots=True)
class Sender:
    id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Sender":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            username=user.username,
        )


@dataclass(frozen=True, slots=True)
class MembershipChanged:
    """A user joined or left a chat the bot administers."""
    update_id: int
    channel_id: int
    channel_title: str
    user: Sender
    joined: bool
    invite_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BotMembershipChanged:
    """The bot was promoted in, or removed from, a channel or group."""
    update_id: int
    chat_id: int
    chat_title: str
    chat_username: Optional[str]
    actor: Sender
    added: bool


@dataclass(frozen=True, slots=True)
class CommandReceived:
    update_id: int
    chat_id: int
    sender: Sender
    # None for commands the bot does not know
    command: Optional[CommandName]
    raw_command: str
    args: Tuple[str, ...] = ()
    text: str = ""


@dataclass(frozen=True, slots=True)
class OtherUpdate:
    update_id: int


InboundEvent = Union[MembershipChanged, BotMembershipChanged, CommandReceived, OtherUpdate]

_PRESENT_STATUSES = {
    ChatMemberStatus.CREATOR.value,
    ChatMemberStatus.ADMINISTRATOR.value,
    ChatMemberStatus.MEMBER.value,
}
_MANAGED_CHAT_TYPES = {ChatType.CHANNEL.value, ChatType.GROUP.value, ChatType.SUPERGROUP.value}


def is_present(member: ChatMemberUnion) -> bool:
    """Whether a chat member counts as being in the chat."""
    if member.status in _PRESENT_STATUSES:
        return True
    if member.status == ChatMemberStatus.RESTRICTED:
        return bool(getattr(member, "is_member", False))
    return False


def _parse_member(update_id: int, event: ChatMemberUpdated) -> InboundEvent:
    was_present = is_present(event.old_chat_member)
    now_present = is_present(event.new_chat_member)
    if was_present == now_present:
        # Promotions, restrictions and other in-place changes
        return OtherUpdate(update_id)

    invite_name = event.invite_link.name if event.invite_link else None
    return MembershipChanged(
        update_id=update_id,
        channel_id=event.chat.id,
        channel_title=event.chat.title or str(event.chat.id),
        user=Sender.from_user(event.new_chat_member.user),
        joined=now_present,
        invite_name=invite_name,
    )


def _parse_my_member(update_id: int, event: ChatMemberUpdated) -> InboundEvent:
    if event.chat.type not in _MANAGED_CHAT_TYPES:
        # Private chat: the user blocked or unblocked the bot
        return OtherUpdate(update_id)

    was_admin = event.old_chat_member.status == ChatMemberStatus.ADMINISTRATOR
    is_admin = event.new_chat_member.status == ChatMemberStatus.ADMINISTRATOR
    if was_admin == is_admin:
        return OtherUpdate(update_id)

    return BotMembershipChanged(
        update_id=update_id,
        chat_id=event.chat.id,
        chat_title=event.chat.title or str(event.chat.id),
        chat_username=event.chat.username,
        actor=Sender.from_user(event.from_user),
        added=is_admin,
    )


def _parse_command(update_id: int, message: Message, bot_username: Optional[str]) -> InboundEvent:
    text = message.text or ""
    if not text.startswith("/") or message.from_user is None:
        return OtherUpdate(update_id)

    head, *tail = text.split(maxsplit=1)
    rest = tail[0] if tail else ""
    name, _, mention = head[1:].partition("@")
    if mention and bot_username and mention.lower() != bot_username.lower():
        # Addressed to another bot in a group
        return OtherUpdate(update_id)

    name = name.lower()
    try:
        command: Optional[CommandName] = CommandName(name)
    except ValueError:
        command = None

    rest = rest.strip()
    return CommandReceived(
        update_id=update_id,
        chat_id=message.chat.id,
        sender=Sender.from_user(message.from_user),
        command=command,
        raw_command=name,
        args=tuple(rest.split()),
        text=rest,
    )


def parse_update(update: Update, bot_username: Optional[str] = None) -> InboundEvent:
    """Convert a raw aiogram update into one of the inbound event variants."""
    if update.chat_member is not None:
        return _parse_member(update.update_id, update.chat_member)
    if update.my_chat_member is not None:
        return _parse_my_member(update.update_id, update.my_chat_member)
    if update.message is not None:
        return _parse_command(update.update_id, update.message, bot_username)
    return OtherUpdate(update.update_id)
