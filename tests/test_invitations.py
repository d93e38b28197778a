"""Tests for invitation issuance and deep links."""

import re

import pytest

from conftest import BOT_USERNAME, CHANNEL_ID, OWNER_ID, SECRET, T0
from core.constants import TelegramLimits
from core.exceptions import ContestNotActive, ValidationError
from services.invitations import InvitationIssuer, is_invitation_token, parse_start_payload


@pytest.fixture
def issuer(store):
    return InvitationIssuer(store, SECRET, BOT_USERNAME)


def test_token_is_deterministic_and_valid_start_parameter(issuer):
    token = issuer.derive_token(1, 7)

    assert token == issuer.derive_token(1, 7)
    assert token.startswith("i")
    assert len(token) <= TelegramLimits.START_PARAMETER_MAX_LENGTH
    assert re.fullmatch(r"[A-Za-z0-9_-]+", token)
    assert is_invitation_token(token)


def test_token_differs_per_pair_and_secret(store, issuer):
    tokens = {issuer.derive_token(c, p) for c in (1, 2) for p in (7, 8)}
    other = InvitationIssuer(store, "another-secret", BOT_USERNAME)

    assert len(tokens) == 4
    assert other.derive_token(1, 7) != issuer.derive_token(1, 7)


@pytest.mark.asyncio
async def test_issue_twice_returns_same_invitation(store, issuer, active_contest):
    first = await issuer.issue(active_contest.id, 7, now=T0)
    second = await issuer.issue(active_contest.id, 7)

    assert first.token == second.token
    assert first.id == second.id
    assert len(await store.list_invitations(active_contest.id)) == 1


@pytest.mark.asyncio
async def test_issue_requires_active_contest(store, issuer, channel):
    draft = await store.create_contest(CHANNEL_ID, "Draft", 1, now=T0)

    with pytest.raises(ContestNotActive):
        await issuer.issue(draft.id, 7)

    assert await store.list_invitations(draft.id) == []


@pytest.mark.asyncio
async def test_issue_rejects_channel_owner(issuer, active_contest):
    with pytest.raises(ValidationError):
        await issuer.issue(active_contest.id, OWNER_ID)


@pytest.mark.asyncio
async def test_issue_unknown_contest(issuer):
    with pytest.raises(ValidationError):
        await issuer.issue(404, 7)


def test_links(issuer):
    assert issuer.deep_link("iabc") == f"https://t.me/{BOT_USERNAME}?start=iabc"
    assert issuer.contest_link(12) == f"https://t.me/{BOT_USERNAME}?start=c12"


def test_parse_start_payload(issuer):
    token = issuer.derive_token(3, 9)

    assert parse_start_payload(None) == ("none", None)
    assert parse_start_payload("c12") == ("contest", 12)
    assert parse_start_payload(token) == ("invitation", token)


@pytest.mark.parametrize("payload", ["c", "cabc", "ishort", "hello"])
def test_parse_start_payload_rejects_garbage(payload):
    with pytest.raises(ValidationError):
        parse_start_payload(payload)
