"""Contest lifecycle: Draft -> Active -> Ended -> Closed, and winner selection."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from core import get_logger
from core.constants import ContestDefaults, ContestState
from core.exceptions import AuthorizationError, InvalidTransition, ValidationError
from database.models import Contest, Invitation, utcnow
from database.repositories import EntityStore

logger = get_logger(__name__)


def rank_invitations(invitations: Iterable[Invitation], limit: Optional[int] = None) -> List[Invitation]:
    """Order invitations for prize assignment.

    Most credited joins first; ties go to the invitation created earlier, then
    to the lower id so the order is total.

    Args:
        invitations: Invitations of one contest
        limit: Keep only the first ``limit`` entries (prize count)

    Returns:
        Ranked invitations
    """
    ranked = sorted(invitations, key=lambda inv: (-inv.credited_count, inv.created_at, inv.id))
    if limit is not None:
        return ranked[:limit]
    return ranked


class ContestLifecycleManager:
    """Owner-facing contest operations.

    State checks and writes happen in the store's transaction, so a command
    racing the scheduler fails with :class:`InvalidTransition` instead of
    applying twice.
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    async def create(
        self,
        owner_id: int,
        channel_id: int,
        prize_count: int,
        end_at: Optional[datetime] = None,
        name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Contest:
        now = now or utcnow()
        await self._owned_channel(owner_id, channel_id)

        if not 1 <= prize_count <= ContestDefaults.MAX_PRIZES:
            raise ValidationError(f"Prize count must be between 1 and {ContestDefaults.MAX_PRIZES}")
        if end_at is not None and end_at <= now:
            raise ValidationError("End time must be in the future")

        contest = await self.store.create_contest(
            channel_id,
            name or f"Contest in {channel_id}",
            prize_count,
            end_at=end_at,
            now=now,
        )
        logger.info(f"Owner {owner_id} created contest {contest.id} in channel {channel_id}")
        return contest

    async def start(self, owner_id: int, contest_id: int, now: Optional[datetime] = None) -> Contest:
        contest = await self._owned_contest(owner_id, contest_id)
        now = now or utcnow()
        if contest.is_due(now):
            raise ValidationError("The scheduled end time of this contest has already passed")

        contest = await self.store.activate_contest(contest_id, now=now)
        logger.info(f"Contest {contest_id} started")
        return contest

    async def end(self, owner_id: int, contest_id: int, now: Optional[datetime] = None) -> Contest:
        await self._owned_contest(owner_id, contest_id)
        contest = await self.store.end_contest(contest_id, now=now)
        logger.info(f"Contest {contest_id} ended by owner")
        return contest

    async def close(
        self,
        owner_id: int,
        contest_id: int,
        now: Optional[datetime] = None,
    ) -> Tuple[Contest, List[Invitation]]:
        """Compute and persist winners, then move the contest to Closed.

        Returns:
            Tuple of (closed contest, winners in prize order)
        """
        contest = await self._owned_contest(owner_id, contest_id)
        if contest.state is not ContestState.ENDED:
            raise InvalidTransition(contest.state.value)

        # Credit is frozen once Ended, the snapshot cannot move under us
        winners = rank_invitations(await self.store.list_invitations(contest_id), contest.prize_count)
        contest = await self.store.close_contest(contest_id, winners, now=now)

        logger.info(f"Contest {contest_id} closed with {len(winners)} winners")
        return contest, winners

    async def expire_due(self, now: Optional[datetime] = None) -> List[Contest]:
        """End every Active contest whose end time has passed."""
        now = now or utcnow()
        ended: List[Contest] = []
        for contest in await self.store.list_due_contests(now):
            try:
                ended.append(await self.store.end_contest(contest.id, now=now))
            except InvalidTransition as exc:
                logger.info(f"Contest {contest.id} changed state before expiry: {exc.current_state}")
                continue
            logger.info(f"Contest {contest.id} reached its end time")
        return ended

    async def ranking(self, contest_id: int, limit: Optional[int] = None) -> List[Invitation]:
        contest = await self.store.get_contest(contest_id)
        if contest is None:
            raise ValidationError(f"Contest #{contest_id} does not exist")
        return rank_invitations(await self.store.list_invitations(contest_id), limit)

    async def delete(self, owner_id: int, contest_id: int) -> Contest:
        """Delete a contest that was never started."""
        await self._owned_contest(owner_id, contest_id)
        contest = await self.store.delete_contest(contest_id)
        logger.info(f"Draft contest {contest_id} deleted by owner {owner_id}")
        return contest

    async def participant_ranks(self, participant_id: int) -> List[Tuple[Contest, int, Invitation]]:
        """Position of a participant in every contest they hold an invitation for.

        Returns:
            List of (contest, 1-based position, the participant's invitation),
            newest contest first
        """
        ranks: List[Tuple[Contest, int, Invitation]] = []
        for invitation in await self.store.list_participant_invitations(participant_id):
            contest = await self.store.get_contest(invitation.contest_id)
            ranked = rank_invitations(await self.store.list_invitations(invitation.contest_id))
            position = next(i for i, inv in enumerate(ranked, start=1) if inv.id == invitation.id)
            ranks.append((contest, position, invitation))
        return ranks

    async def _owned_channel(self, owner_id: int, channel_id: int) -> None:
        channel = await self.store.get_channel(channel_id)
        if channel is None:
            raise ValidationError(
                f"Channel {channel_id} is not registered, add the bot as an administrator first"
            )
        if channel.owner_id != owner_id:
            raise AuthorizationError()

    async def _owned_contest(self, owner_id: int, contest_id: int) -> Contest:
        contest = await self.store.get_contest(contest_id)
        if contest is None:
            raise ValidationError(f"Contest #{contest_id} does not exist")
        await self._owned_channel(owner_id, contest.channel_id)
        return contest
