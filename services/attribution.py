"""Join/leave attribution: who gets credit for a new channel member."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from core import get_logger
from core.constants import JoinOutcome
from database.models import JoinResult, Membership
from database.repositories import EntityStore, JoinFacts

logger = get_logger(__name__)


class AttributionEngine:
    """Applies membership events to the store.

    Uncredited outcomes are normal results, not errors: the joining user is
    never told why a referral did not count.
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    @staticmethod
    def decide(facts: JoinFacts) -> JoinOutcome:
        """Pick the outcome of a join from facts read inside the join transaction."""
        if facts.active_membership is not None:
            return JoinOutcome.ALREADY_MEMBER

        # Any earlier row means this pair was seen before; rejoining never adds credit
        if facts.previous_membership is not None:
            if facts.credited_before:
                return JoinOutcome.CREDITED_BEFORE
            return JoinOutcome.REJOINED

        if facts.contest is None:
            return JoinOutcome.NO_ACTIVE_CONTEST
        if not facts.token:
            return JoinOutcome.NO_TOKEN
        if facts.invitation is None:
            return JoinOutcome.INVALID_TOKEN
        if facts.invitation.contest_id != facts.contest.id:
            return JoinOutcome.FOREIGN_TOKEN
        if facts.invitation.participant_id == facts.user_id:
            return JoinOutcome.SELF_REFERRAL
        return JoinOutcome.CREDITED

    async def on_join(
        self,
        channel_id: int,
        user_id: int,
        token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> JoinResult:
        result = await self.store.record_join(
            channel_id, user_id, token, decide=self.decide, now=now
        )

        if result.outcome.credited:
            logger.info(
                f"Join of {user_id} to {channel_id} credited to invitation {result.invitation.id} "
                f"(now {result.invitation.credited_count})"
            )
        else:
            logger.info(f"Join of {user_id} to {channel_id} not credited: {result.outcome.value}")
        return result

    async def on_leave(
        self,
        channel_id: int,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[Membership]:
        membership = await self.store.record_leave(channel_id, user_id, now=now)
        if membership is None:
            logger.debug(f"Leave of {user_id} from {channel_id} without an active membership")
        else:
            logger.info(f"User {user_id} left {channel_id}")
        return membership
