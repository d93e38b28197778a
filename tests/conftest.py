"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.types import (
    Chat,
    ChatInviteLink,
    ChatMemberLeft,
    ChatMemberMember,
    ChatMemberUpdated,
    Message,
    Update,
    User,
)

from database import EntityStore, close_db_pool, init_db_pool, run_migrations

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
OWNER_ID = 100
CHANNEL_ID = -1001234
SECRET = "test-secret"
BOT_USERNAME = "contest_test_bot"


@pytest.fixture
async def pool(tmp_path):
    """Migrated sqlite database in a temporary directory."""
    pool = await init_db_pool(str(tmp_path / "contests.sqlite"), pool_size=3, busy_timeout_ms=2000)
    await run_migrations(pool)
    yield pool
    await close_db_pool()


@pytest.fixture
async def store(pool):
    return EntityStore(pool)


@pytest.fixture
async def channel(store):
    """A channel registered by OWNER_ID."""
    await store.upsert_user(OWNER_ID, "Owner", now=T0)
    return await store.upsert_channel(CHANNEL_ID, OWNER_ID, "Test channel", now=T0)


@pytest.fixture
async def active_contest(store, channel):
    contest = await store.create_contest(CHANNEL_ID, "Spring contest", 2, now=T0)
    return await store.activate_contest(contest.id, now=T0)


@pytest.fixture
def bot():
    """Fake aiogram bot recording every call."""
    bot = AsyncMock()
    invite = MagicMock()
    invite.invite_link = "https://t.me/+private"
    bot.create_chat_invite_link.return_value = invite
    return bot


def make_user(user_id: int, first_name: str = "User", username: Optional[str] = None) -> User:
    return User(id=user_id, is_bot=False, first_name=first_name, username=username)


def member_update(
    update_id: int,
    user_id: int,
    joined: bool = True,
    chat_id: int = CHANNEL_ID,
    invite_name: Optional[str] = None,
) -> Update:
    """Build a chat_member update for a user joining or leaving."""
    user = make_user(user_id)
    present = ChatMemberMember(user=user)
    absent = ChatMemberLeft(user=user)
    invite = None
    if invite_name is not None:
        invite = ChatInviteLink(
            invite_link="https://t.me/+named",
            creator=make_user(OWNER_ID),
            creates_join_request=False,
            is_primary=False,
            is_revoked=False,
            name=invite_name,
        )
    return Update(
        update_id=update_id,
        chat_member=ChatMemberUpdated(
            chat=Chat(id=chat_id, type="channel", title="Test channel"),
            from_user=user,
            date=T0,
            old_chat_member=absent if joined else present,
            new_chat_member=present if joined else absent,
            invite_link=invite,
        ),
    )


def command_update(update_id: int, user_id: int, text: str, chat_id: Optional[int] = None) -> Update:
    """Build a private text message update."""
    return Update(
        update_id=update_id,
        message=Message(
            message_id=update_id,
            date=T0,
            chat=Chat(id=chat_id or user_id, type="private"),
            from_user=make_user(user_id, first_name=f"User{user_id}"),
            text=text,
        ),
    )
