"""Entity store: transactional access to channels, contests, invitations and memberships."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

import aiosqlite

from core.constants import ContestState, JoinOutcome
from core.exceptions import ContestNotActive, InvalidTransition, ValidationError
from database.base_repository import BaseRepository
from database.models import (
    Channel,
    Contest,
    Invitation,
    JoinResult,
    Membership,
    User,
    Winner,
    to_db_time,
    utcnow,
)

_TRANSITION_TIMESTAMPS = {
    ContestState.ACTIVE: "started_at",
    ContestState.ENDED: "ended_at",
    ContestState.CLOSED: "closed_at",
}


@dataclass(slots=True)
class JoinFacts:
    """Everything the attribution rules need, read inside the join transaction."""
    channel_id: int
    user_id: int
    token: Optional[str]
    contest: Optional[Contest]
    invitation: Optional[Invitation]
    active_membership: Optional[Membership]
    previous_membership: Optional[Membership]
    credited_before: bool


JoinDecision = Callable[[JoinFacts], JoinOutcome]


class EntityStore(BaseRepository):
    """Repository for every referral contest entity.

    All attribution writes (membership insert or flag flip plus the credit
    delta on the invitation) happen in one ``BEGIN IMMEDIATE`` transaction.
    """

    # Users and channels

    async def upsert_user(
        self,
        user_id: int,
        first_name: str,
        last_name: Optional[str] = None,
        username: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        await self.execute(
            """
            INSERT INTO users (id, first_name, last_name, username, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                first_name=excluded.first_name,
                last_name=excluded.last_name,
                username=excluded.username
            """,
            (user_id, first_name or str(user_id), last_name, username, to_db_time(now or utcnow())),
        )

    async def get_user(self, user_id: int) -> Optional[User]:
        row = await self.fetch_one("SELECT * FROM users WHERE id=?", (user_id,))
        return User.from_row(row) if row else None

    async def upsert_channel(
        self,
        channel_id: int,
        owner_id: int,
        title: str,
        link: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Channel:
        """Register a channel; a later registration moves it to the new owner."""
        async with self.transaction() as conn:
            row = await self.fetch_one_in(
                conn,
                """
                INSERT INTO channels (id, owner_id, title, link, registered_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    owner_id=excluded.owner_id,
                    title=excluded.title,
                    link=COALESCE(excluded.link, channels.link)
                RETURNING *
                """,
                (channel_id, owner_id, title, link, to_db_time(now or utcnow())),
            )
        return Channel.from_row(row)

    async def get_channel(self, channel_id: int) -> Optional[Channel]:
        row = await self.fetch_one("SELECT * FROM channels WHERE id=?", (channel_id,))
        return Channel.from_row(row) if row else None

    async def list_owner_channels(self, owner_id: int) -> List[Channel]:
        rows = await self.fetch_all(
            "SELECT * FROM channels WHERE owner_id=? ORDER BY title", (owner_id,)
        )
        return [Channel.from_row(row) for row in rows]

    # Contests

    async def create_contest(
        self,
        channel_id: int,
        name: str,
        prize_count: int,
        end_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Contest:
        async with self.transaction() as conn:
            row = await self.fetch_one_in(
                conn,
                """
                INSERT INTO contests (channel_id, name, prize_count, state, created_at, end_at)
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING *
                """,
                (
                    channel_id,
                    name,
                    prize_count,
                    ContestState.DRAFT.value,
                    to_db_time(now or utcnow()),
                    to_db_time(end_at),
                ),
            )
        return Contest.from_row(row)

    async def get_contest(self, contest_id: int) -> Optional[Contest]:
        row = await self.fetch_one("SELECT * FROM contests WHERE id=?", (contest_id,))
        return Contest.from_row(row) if row else None

    async def list_channel_contests(self, channel_id: int) -> List[Contest]:
        rows = await self.fetch_all(
            "SELECT * FROM contests WHERE channel_id=? ORDER BY id DESC", (channel_id,)
        )
        return [Contest.from_row(row) for row in rows]

    async def get_active_contest(self, channel_id: int) -> Optional[Contest]:
        row = await self.fetch_one(
            "SELECT * FROM contests WHERE channel_id=? AND state=?",
            (channel_id, ContestState.ACTIVE.value),
        )
        return Contest.from_row(row) if row else None

    async def list_due_contests(self, now: datetime) -> List[Contest]:
        """Active contests whose scheduled end time has passed."""
        rows = await self.fetch_all(
            """
            SELECT * FROM contests
            WHERE state=? AND end_at IS NOT NULL AND end_at <= ?
            ORDER BY end_at
            """,
            (ContestState.ACTIVE.value, to_db_time(now)),
        )
        return [Contest.from_row(row) for row in rows]

    async def transition_contest(
        self,
        contest_id: int,
        expected: ContestState,
        target: ContestState,
        now: Optional[datetime] = None,
    ) -> Contest:
        """Move a contest from ``expected`` to ``target`` state atomically.

        Raises:
            ValidationError: unknown contest
            InvalidTransition: contest is not in ``expected`` state, or the
                channel already has another Active contest
        """
        async with self.transaction() as conn:
            contest = await self._load_contest(conn, contest_id)
            if contest.state is not expected:
                raise InvalidTransition(contest.state.value)

            if target is ContestState.ACTIVE:
                other = await self.fetch_one_in(
                    conn,
                    "SELECT id FROM contests WHERE channel_id=? AND state=? AND id<>?",
                    (contest.channel_id, ContestState.ACTIVE.value, contest_id),
                )
                if other:
                    raise InvalidTransition(
                        contest.state.value,
                        f"Contest #{other['id']} is already active in this channel",
                    )

            column = _TRANSITION_TIMESTAMPS[target]
            row = await self.fetch_one_in(
                conn,
                f"UPDATE contests SET state=?, {column}=? WHERE id=? RETURNING *",
                (target.value, to_db_time(now or utcnow()), contest_id),
            )
        return Contest.from_row(row)

    async def activate_contest(self, contest_id: int, now: Optional[datetime] = None) -> Contest:
        return await self.transition_contest(contest_id, ContestState.DRAFT, ContestState.ACTIVE, now)

    async def end_contest(self, contest_id: int, now: Optional[datetime] = None) -> Contest:
        return await self.transition_contest(contest_id, ContestState.ACTIVE, ContestState.ENDED, now)

    async def close_contest(
        self,
        contest_id: int,
        winners: Sequence[Invitation],
        now: Optional[datetime] = None,
    ) -> Contest:
        """Persist the winner list and move an Ended contest to Closed."""
        async with self.transaction() as conn:
            contest = await self._load_contest(conn, contest_id)
            if contest.state is not ContestState.ENDED:
                raise InvalidTransition(contest.state.value)

            await conn.executemany(
                """
                INSERT INTO contest_winners
                    (contest_id, position, invitation_id, participant_id, credited_count)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (contest_id, position, inv.id, inv.participant_id, inv.credited_count)
                    for position, inv in enumerate(winners, start=1)
                ],
            )
            row = await self.fetch_one_in(
                conn,
                "UPDATE contests SET state=?, closed_at=? WHERE id=? RETURNING *",
                (ContestState.CLOSED.value, to_db_time(now or utcnow()), contest_id),
            )
        return Contest.from_row(row)

    async def delete_contest(self, contest_id: int) -> Contest:
        """Remove a Draft contest. Started contests keep their history.

        Raises:
            ValidationError: unknown contest
            InvalidTransition: contest is no longer a Draft
        """
        async with self.transaction() as conn:
            contest = await self._load_contest(conn, contest_id)
            if contest.state is not ContestState.DRAFT:
                raise InvalidTransition(contest.state.value, "Only draft contests can be deleted")
            await conn.execute("DELETE FROM contests WHERE id=?", (contest_id,))
        return contest

    async def list_winners(self, contest_id: int) -> List[Winner]:
        rows = await self.fetch_all(
            "SELECT * FROM contest_winners WHERE contest_id=? ORDER BY position",
            (contest_id,),
        )
        return [Winner.from_row(row) for row in rows]

    async def _load_contest(self, conn: aiosqlite.Connection, contest_id: int) -> Contest:
        row = await self.fetch_one_in(conn, "SELECT * FROM contests WHERE id=?", (contest_id,))
        if row is None:
            raise ValidationError(f"Contest #{contest_id} does not exist")
        return Contest.from_row(row)

    # Invitations

    async def find_or_create_invitation(
        self,
        contest_id: int,
        participant_id: int,
        token: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Invitation, bool]:
        """Return the (contest, participant) invitation, creating it on first request.

        Returns:
            Tuple of (invitation, created)

        Raises:
            ContestNotActive: the contest is not Active
        """
        async with self.transaction() as conn:
            contest = await self._load_contest(conn, contest_id)
            if contest.state is not ContestState.ACTIVE:
                raise ContestNotActive(f"Contest #{contest_id} is {contest.state.value}")

            row = await self.fetch_one_in(
                conn,
                "SELECT * FROM invitations WHERE contest_id=? AND participant_id=?",
                (contest_id, participant_id),
            )
            if row:
                return Invitation.from_row(row), False

            row = await self.fetch_one_in(
                conn,
                """
                INSERT INTO invitations (contest_id, participant_id, token, created_at)
                VALUES (?, ?, ?, ?)
                RETURNING *
                """,
                (contest_id, participant_id, token, to_db_time(now or utcnow())),
            )
        return Invitation.from_row(row), True

    async def get_invitation_by_token(self, token: str) -> Optional[Invitation]:
        row = await self.fetch_one("SELECT * FROM invitations WHERE token=?", (token,))
        return Invitation.from_row(row) if row else None

    async def get_invitation(self, invitation_id: int) -> Optional[Invitation]:
        row = await self.fetch_one("SELECT * FROM invitations WHERE id=?", (invitation_id,))
        return Invitation.from_row(row) if row else None

    async def list_invitations(self, contest_id: int) -> List[Invitation]:
        rows = await self.fetch_all(
            "SELECT * FROM invitations WHERE contest_id=? ORDER BY created_at, id",
            (contest_id,),
        )
        return [Invitation.from_row(row) for row in rows]

    async def list_participant_invitations(self, participant_id: int) -> List[Invitation]:
        rows = await self.fetch_all(
            "SELECT * FROM invitations WHERE participant_id=? ORDER BY contest_id DESC",
            (participant_id,),
        )
        return [Invitation.from_row(row) for row in rows]

    # Memberships

    async def record_join(
        self,
        channel_id: int,
        user_id: int,
        token: Optional[str],
        decide: JoinDecision,
        now: Optional[datetime] = None,
    ) -> JoinResult:
        """Apply a join event.

        Facts are read and the outcome chosen by ``decide`` is written inside
        one transaction, so no concurrent writer can slip between the checks
        and the credit increment.
        """
        now = now or utcnow()
        async with self.transaction() as conn:
            facts = await self._join_facts(conn, channel_id, user_id, token, now)
            outcome = decide(facts)

            if outcome is JoinOutcome.ALREADY_MEMBER:
                return JoinResult(outcome, facts.active_membership, contest=facts.contest)

            if outcome in (JoinOutcome.REJOINED, JoinOutcome.CREDITED_BEFORE):
                row = await self.fetch_one_in(
                    conn,
                    "UPDATE memberships SET active=1, left_at=NULL WHERE id=? RETURNING *",
                    (facts.previous_membership.id,),
                )
                return JoinResult(outcome, Membership.from_row(row), contest=facts.contest)

            invitation = facts.invitation if outcome.credited else None
            row = await self.fetch_one_in(
                conn,
                """
                INSERT INTO memberships (channel_id, user_id, invitation_id, joined_at, active)
                VALUES (?, ?, ?, ?, 1)
                RETURNING *
                """,
                (channel_id, user_id, invitation.id if invitation else None, to_db_time(now)),
            )
            membership = Membership.from_row(row)

            if invitation is not None:
                row = await self.fetch_one_in(
                    conn,
                    """
                    UPDATE invitations SET credited_count = credited_count + 1
                    WHERE id=? RETURNING *
                    """,
                    (invitation.id,),
                )
                invitation = Invitation.from_row(row)

        return JoinResult(outcome, membership, invitation=invitation, contest=facts.contest)

    async def _join_facts(
        self,
        conn: aiosqlite.Connection,
        channel_id: int,
        user_id: int,
        token: Optional[str],
        now: datetime,
    ) -> JoinFacts:
        contest = None
        row = await self.fetch_one_in(
            conn,
            "SELECT * FROM contests WHERE channel_id=? AND state=?",
            (channel_id, ContestState.ACTIVE.value),
        )
        if row:
            contest = Contest.from_row(row)
            # Past its end time but not yet swept by the scheduler
            if contest.is_due(now):
                contest = None

        invitation = None
        if token:
            row = await self.fetch_one_in(conn, "SELECT * FROM invitations WHERE token=?", (token,))
            invitation = Invitation.from_row(row) if row else None

        row = await self.fetch_one_in(
            conn,
            "SELECT * FROM memberships WHERE channel_id=? AND user_id=? AND active=1",
            (channel_id, user_id),
        )
        active_membership = Membership.from_row(row) if row else None

        row = await self.fetch_one_in(
            conn,
            """
            SELECT * FROM memberships WHERE channel_id=? AND user_id=? AND active=0
            ORDER BY id DESC LIMIT 1
            """,
            (channel_id, user_id),
        )
        previous_membership = Membership.from_row(row) if row else None

        credited_before = await self.fetch_one_in(
            conn,
            """
            SELECT 1 FROM memberships
            WHERE channel_id=? AND user_id=? AND invitation_id IS NOT NULL LIMIT 1
            """,
            (channel_id, user_id),
        )

        return JoinFacts(
            channel_id=channel_id,
            user_id=user_id,
            token=token,
            contest=contest,
            invitation=invitation,
            active_membership=active_membership,
            previous_membership=previous_membership,
            credited_before=credited_before is not None,
        )

    async def record_leave(
        self,
        channel_id: int,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[Membership]:
        """Flag the active membership as left; credit counters are not touched."""
        async with self.transaction() as conn:
            row = await self.fetch_one_in(
                conn,
                """
                UPDATE memberships SET active=0, left_at=?
                WHERE channel_id=? AND user_id=? AND active=1
                RETURNING *
                """,
                (to_db_time(now or utcnow()), channel_id, user_id),
            )
        return Membership.from_row(row) if row else None

    async def list_memberships_for_invitation(self, invitation_id: int) -> List[Membership]:
        rows = await self.fetch_all(
            "SELECT * FROM memberships WHERE invitation_id=? ORDER BY joined_at, id",
            (invitation_id,),
        )
        return [Membership.from_row(row) for row in rows]

    async def list_channel_memberships(self, channel_id: int, user_id: int) -> List[Membership]:
        rows = await self.fetch_all(
            "SELECT * FROM memberships WHERE channel_id=? AND user_id=? ORDER BY id",
            (channel_id, user_id),
        )
        return [Membership.from_row(row) for row in rows]

    # Referral intents

    async def save_referral_intent(
        self,
        user_id: int,
        channel_id: int,
        token: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Remember which link a user opened before joining; latest link wins."""
        await self.execute(
            """
            INSERT INTO referral_intents (user_id, channel_id, token, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, channel_id) DO UPDATE SET
                token=excluded.token,
                created_at=excluded.created_at
            """,
            (user_id, channel_id, token, to_db_time(now or utcnow())),
        )

    async def get_referral_intent(self, channel_id: int, user_id: int) -> Optional[str]:
        return await self.fetch_value(
            "SELECT token FROM referral_intents WHERE channel_id=? AND user_id=?",
            (channel_id, user_id),
        )

    async def delete_referral_intent(self, channel_id: int, user_id: int) -> None:
        await self.execute(
            "DELETE FROM referral_intents WHERE channel_id=? AND user_id=?",
            (channel_id, user_id),
        )

    # Broadcast

    async def list_broadcast_targets(self) -> List[int]:
        """Every distinct chat the bot knows: registered channels and users."""
        return await self.fetch_column(
            "SELECT id FROM channels UNION SELECT id FROM users ORDER BY id"
        )
