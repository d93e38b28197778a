"""Tests for join/leave attribution rules."""

from datetime import timedelta

import pytest

from conftest import BOT_USERNAME, CHANNEL_ID, SECRET, T0
from core.constants import ContestState, JoinOutcome
from database.models import Contest, Invitation, Membership
from database.repositories import JoinFacts
from services.attribution import AttributionEngine
from services.invitations import InvitationIssuer

INVITER = 7
NEWCOMER = 42


@pytest.fixture
def engine(store):
    return AttributionEngine(store)


@pytest.fixture
def issuer(store):
    return InvitationIssuer(store, SECRET, BOT_USERNAME)


@pytest.fixture
async def invitation(issuer, active_contest):
    return await issuer.issue(active_contest.id, INVITER, now=T0)


def _facts(**overrides):
    contest = Contest(id=1, channel_id=CHANNEL_ID, name="c", prize_count=1, state=ContestState.ACTIVE, created_at=T0)
    invitation = Invitation(id=5, contest_id=1, participant_id=INVITER, token="itok", created_at=T0)
    values = dict(
        channel_id=CHANNEL_ID,
        user_id=NEWCOMER,
        token="itok",
        contest=contest,
        invitation=invitation,
        active_membership=None,
        previous_membership=None,
        credited_before=False,
    )
    values.update(overrides)
    return JoinFacts(**values)


def _membership(active):
    return Membership(
        id=1, channel_id=CHANNEL_ID, user_id=NEWCOMER, invitation_id=5,
        joined_at=T0, left_at=None, active=active,
    )


def test_decide_credits_valid_referral():
    assert AttributionEngine.decide(_facts()) is JoinOutcome.CREDITED


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({"contest": None}, JoinOutcome.NO_ACTIVE_CONTEST),
        ({"token": None, "invitation": None}, JoinOutcome.NO_TOKEN),
        ({"invitation": None}, JoinOutcome.INVALID_TOKEN),
        ({"user_id": INVITER}, JoinOutcome.SELF_REFERRAL),
        ({"active_membership": _membership(True)}, JoinOutcome.ALREADY_MEMBER),
        ({"previous_membership": _membership(False)}, JoinOutcome.REJOINED),
        ({"previous_membership": _membership(False), "credited_before": True}, JoinOutcome.CREDITED_BEFORE),
    ],
)
def test_decide_uncredited_outcomes(overrides, expected):
    assert AttributionEngine.decide(_facts(**overrides)) is expected


def test_decide_foreign_token():
    foreign = Invitation(id=9, contest_id=2, participant_id=INVITER, token="itok", created_at=T0)
    assert AttributionEngine.decide(_facts(invitation=foreign)) is JoinOutcome.FOREIGN_TOKEN


@pytest.mark.asyncio
async def test_credited_join_increments_invitation(store, engine, invitation):
    result = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)

    assert result.outcome is JoinOutcome.CREDITED
    assert result.membership.invitation_id == invitation.id
    assert result.invitation.credited_count == 1
    assert (await store.get_invitation(invitation.id)).credited_count == 1
    assert [m.user_id for m in await store.list_memberships_for_invitation(invitation.id)] == [NEWCOMER]


@pytest.mark.asyncio
async def test_self_referral_is_never_credited(store, engine, invitation):
    result = await engine.on_join(CHANNEL_ID, INVITER, invitation.token, now=T0)

    assert result.outcome is JoinOutcome.SELF_REFERRAL
    assert result.membership.invitation_id is None
    assert (await store.get_invitation(invitation.id)).credited_count == 0


@pytest.mark.asyncio
async def test_rejoining_never_adds_second_credit(store, engine, issuer, active_contest, invitation):
    other = await issuer.issue(active_contest.id, 8, now=T0)

    first = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)
    await engine.on_leave(CHANNEL_ID, NEWCOMER, now=T0 + timedelta(minutes=1))
    same_link = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0 + timedelta(minutes=2))
    await engine.on_leave(CHANNEL_ID, NEWCOMER, now=T0 + timedelta(minutes=3))
    other_link = await engine.on_join(CHANNEL_ID, NEWCOMER, other.token, now=T0 + timedelta(minutes=4))

    assert first.outcome is JoinOutcome.CREDITED
    assert same_link.outcome is JoinOutcome.CREDITED_BEFORE
    assert other_link.outcome is JoinOutcome.CREDITED_BEFORE
    assert (await store.get_invitation(invitation.id)).credited_count == 1
    assert (await store.get_invitation(other.id)).credited_count == 0

    history = await store.list_channel_memberships(CHANNEL_ID, NEWCOMER)
    assert len(history) == 1
    assert history[0].active is True


@pytest.mark.asyncio
async def test_duplicate_join_while_member(store, engine, invitation):
    await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)
    again = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)

    assert again.outcome is JoinOutcome.ALREADY_MEMBER
    assert (await store.get_invitation(invitation.id)).credited_count == 1


@pytest.mark.asyncio
async def test_member_who_joined_without_link_cannot_be_credited_later(store, engine, invitation):
    plain = await engine.on_join(CHANNEL_ID, NEWCOMER, None, now=T0)
    await engine.on_leave(CHANNEL_ID, NEWCOMER, now=T0)
    rejoin = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)

    assert plain.outcome is JoinOutcome.NO_TOKEN
    assert rejoin.outcome is JoinOutcome.REJOINED
    assert (await store.get_invitation(invitation.id)).credited_count == 0


@pytest.mark.asyncio
async def test_leave_keeps_credit(store, engine, invitation):
    await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)
    membership = await engine.on_leave(CHANNEL_ID, NEWCOMER, now=T0)

    assert membership.active is False
    assert (await store.get_invitation(invitation.id)).credited_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("close", [False, True])
async def test_no_credit_after_contest_ended(store, engine, invitation, active_contest, close):
    await store.end_contest(active_contest.id)
    if close:
        await store.close_contest(active_contest.id, [invitation])

    result = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0)

    assert result.outcome is JoinOutcome.NO_ACTIVE_CONTEST
    assert result.membership.invitation_id is None
    assert (await store.get_invitation(invitation.id)).credited_count == 0


@pytest.mark.asyncio
async def test_no_credit_past_end_time_before_scheduler_runs(store, engine, issuer, channel):
    contest = await store.create_contest(CHANNEL_ID, "Short", 1, end_at=T0 + timedelta(hours=1), now=T0)
    await store.activate_contest(contest.id, now=T0)
    invitation = await issuer.issue(contest.id, INVITER, now=T0)

    result = await engine.on_join(CHANNEL_ID, NEWCOMER, invitation.token, now=T0 + timedelta(hours=2))

    assert result.outcome is JoinOutcome.NO_ACTIVE_CONTEST
    assert (await store.get_invitation(invitation.id)).credited_count == 0


@pytest.mark.asyncio
async def test_token_of_another_channel_is_foreign(store, engine, issuer, invitation):
    await store.upsert_user(300, "Other owner")
    await store.upsert_channel(-1009, 300, "Other channel")
    other_contest = await store.create_contest(-1009, "Other", 1, now=T0)
    await store.activate_contest(other_contest.id, now=T0)

    result = await engine.on_join(-1009, NEWCOMER, invitation.token, now=T0)

    assert result.outcome is JoinOutcome.FOREIGN_TOKEN
    assert (await store.get_invitation(invitation.id)).credited_count == 0


@pytest.mark.asyncio
async def test_unknown_token_is_recorded_uncredited(store, engine, active_contest):
    result = await engine.on_join(CHANNEL_ID, NEWCOMER, "i" + "x" * 22, now=T0)

    assert result.outcome is JoinOutcome.INVALID_TOKEN
    assert result.membership.active is True
    assert result.membership.invitation_id is None


@pytest.mark.asyncio
async def test_join_in_channel_without_contest(store, engine):
    result = await engine.on_join(-1777, NEWCOMER, None, now=T0)

    assert result.outcome is JoinOutcome.NO_ACTIVE_CONTEST
    assert (await store.list_channel_memberships(-1777, NEWCOMER))[0].active is True
