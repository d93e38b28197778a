"""Database schema migrations."""

from __future__ import annotations

from .connection import SQLitePool


SCHEMA_SQL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT,
        username TEXT,
        created_at TIMESTAMP NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS channels (
        id INTEGER PRIMARY KEY NOT NULL,
        owner_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        link TEXT,
        registered_at TIMESTAMP NOT NULL,
        FOREIGN KEY(owner_id) REFERENCES users(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_channels_owner ON channels(owner_id);",
    """
    CREATE TABLE IF NOT EXISTS contests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        prize_count INTEGER NOT NULL CHECK (prize_count > 0),
        state TEXT NOT NULL DEFAULT 'draft'
            CHECK (state IN ('draft', 'active', 'ended', 'closed')),
        created_at TIMESTAMP NOT NULL,
        end_at TIMESTAMP,
        started_at TIMESTAMP,
        ended_at TIMESTAMP,
        closed_at TIMESTAMP,
        FOREIGN KEY(channel_id) REFERENCES channels(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_contests_channel ON contests(channel_id, state);",
    # At most one Active contest per channel
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_contests_one_active
        ON contests(channel_id) WHERE state = 'active';
    """,
    """
    CREATE TABLE IF NOT EXISTS invitations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        contest_id INTEGER NOT NULL,
        participant_id INTEGER NOT NULL,
        token TEXT NOT NULL UNIQUE,
        created_at TIMESTAMP NOT NULL,
        credited_count INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY(contest_id) REFERENCES contests(id),
        UNIQUE(contest_id, participant_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS memberships (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        invitation_id INTEGER,
        joined_at TIMESTAMP NOT NULL,
        left_at TIMESTAMP,
        active INTEGER NOT NULL DEFAULT 1,
        FOREIGN KEY(invitation_id) REFERENCES invitations(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_memberships_lookup ON memberships(channel_id, user_id, active);",
    "CREATE INDEX IF NOT EXISTS idx_memberships_invitation ON memberships(invitation_id);",
    # At most one active membership per (channel, user)
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_memberships_one_active
        ON memberships(channel_id, user_id) WHERE active = 1;
    """,
    """
    CREATE TABLE IF NOT EXISTS contest_winners (
        contest_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        invitation_id INTEGER NOT NULL,
        participant_id INTEGER NOT NULL,
        credited_count INTEGER NOT NULL,
        PRIMARY KEY (contest_id, position),
        FOREIGN KEY(contest_id) REFERENCES contests(id),
        FOREIGN KEY(invitation_id) REFERENCES invitations(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS referral_intents (
        user_id INTEGER NOT NULL,
        channel_id INTEGER NOT NULL,
        token TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL,
        PRIMARY KEY (user_id, channel_id)
    );
    """,
)


async def run_migrations(pool: SQLitePool) -> None:
    async with pool.transaction() as conn:
        for statement in SCHEMA_SQL:
            await conn.execute(statement)
