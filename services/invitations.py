"""Per-participant invitation tokens and deep links."""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime
from typing import Optional, Tuple

from core import get_logger
from core.constants import DeepLink
from core.exceptions import ValidationError
from database.models import Invitation
from database.repositories import EntityStore

logger = get_logger(__name__)


class InvitationIssuer:
    """Mints one invitation per (contest, participant).

    Tokens are derived from the contest and participant ids with a keyed hash,
    so they are known before anything is written and never need a Telegram
    round trip. The unique index on ``invitations.token`` backs global
    uniqueness.
    """

    def __init__(self, store: EntityStore, secret: str, bot_username: str) -> None:
        self.store = store
        self._secret = secret.encode()
        self.bot_username = bot_username

    def derive_token(self, contest_id: int, participant_id: int) -> str:
        digest = hmac.new(
            self._secret, f"{contest_id}:{participant_id}".encode(), hashlib.sha256
        ).digest()
        encoded = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        return DeepLink.INVITATION_PREFIX + encoded[:DeepLink.TOKEN_BYTES]

    async def issue(
        self,
        contest_id: int,
        participant_id: int,
        now: Optional[datetime] = None,
    ) -> Invitation:
        """Return the participant's invitation, creating it on the first request.

        Raises:
            ValidationError: unknown contest, or the participant owns the channel
            ContestNotActive: the contest is not Active
        """
        contest = await self.store.get_contest(contest_id)
        if contest is None:
            raise ValidationError(f"Contest #{contest_id} does not exist")
        channel = await self.store.get_channel(contest.channel_id)
        if channel is not None and channel.owner_id == participant_id:
            raise ValidationError("Channel owners cannot take part in their own contests")

        token = self.derive_token(contest_id, participant_id)
        invitation, created = await self.store.find_or_create_invitation(
            contest_id, participant_id, token, now=now
        )
        if created:
            logger.info(f"Issued invitation {invitation.id} for contest {contest_id} to {participant_id}")
        return invitation

    def deep_link(self, token: str) -> str:
        return f"https://t.me/{self.bot_username}?start={token}"

    def contest_link(self, contest_id: int) -> str:
        return f"https://t.me/{self.bot_username}?start={DeepLink.CONTEST_PREFIX}{contest_id}"


def is_invitation_token(value: Optional[str]) -> bool:
    if not value or not value.startswith(DeepLink.INVITATION_PREFIX):
        return False
    return len(value) == len(DeepLink.INVITATION_PREFIX) + DeepLink.TOKEN_BYTES


def parse_start_payload(payload: Optional[str]) -> Tuple[str, Optional[object]]:
    """Classify a ``/start`` payload.

    Returns:
        ``("invitation", token)``, ``("contest", contest_id)`` or ``("none", None)``
    """
    if not payload:
        return "none", None
    if is_invitation_token(payload):
        return "invitation", payload
    if payload.startswith(DeepLink.CONTEST_PREFIX) and payload[1:].isdigit():
        return "contest", int(payload[1:])
    raise ValidationError("This link is not valid")
