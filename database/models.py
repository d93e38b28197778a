"""Data access layer models implemented with handcrafted queries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from core.constants import ContestState, JoinOutcome


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class User:
    id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.username:
            return f"@{self.username}"
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            username=row["username"],
        )


@dataclass(slots=True)
class Channel:
    """A channel or (super)group registered by its owner."""
    id: int
    owner_id: int
    title: str
    link: Optional[str]
    registered_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Channel":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            link=row["link"],
            registered_at=from_db_time(row["registered_at"]),
        )


@dataclass(slots=True)
class Contest:
    id: int
    channel_id: int
    name: str
    prize_count: int
    state: ContestState
    created_at: datetime
    end_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        """True once the scheduled end time has been reached."""
        return self.end_at is not None and now >= self.end_at

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Contest":
        return cls(
            id=row["id"],
            channel_id=row["channel_id"],
            name=row["name"],
            prize_count=row["prize_count"],
            state=ContestState(row["state"]),
            created_at=from_db_time(row["created_at"]),
            end_at=from_db_time(row["end_at"]),
            started_at=from_db_time(row["started_at"]),
            ended_at=from_db_time(row["ended_at"]),
            closed_at=from_db_time(row["closed_at"]),
        )


@dataclass(slots=True)
class Invitation:
    id: int
    contest_id: int
    participant_id: int
    token: str
    created_at: datetime
    credited_count: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Invitation":
        return cls(
            id=row["id"],
            contest_id=row["contest_id"],
            participant_id=row["participant_id"],
            token=row["token"],
            created_at=from_db_time(row["created_at"]),
            credited_count=row["credited_count"],
        )


@dataclass(slots=True)
class Membership:
    id: int
    channel_id: int
    user_id: int
    invitation_id: Optional[int]
    joined_at: datetime
    left_at: Optional[datetime]
    active: bool

    @property
    def credited(self) -> bool:
        return self.invitation_id is not None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Membership":
        return cls(
            id=row["id"],
            channel_id=row["channel_id"],
            user_id=row["user_id"],
            invitation_id=row["invitation_id"],
            joined_at=from_db_time(row["joined_at"]),
            left_at=from_db_time(row["left_at"]),
            active=bool(row["active"]),
        )


@dataclass(slots=True)
class Winner:
    position: int
    invitation_id: int
    participant_id: int
    credited_count: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Winner":
        return cls(
            position=row["position"],
            invitation_id=row["invitation_id"],
            participant_id=row["participant_id"],
            credited_count=row["credited_count"],
        )


@dataclass(slots=True)
class JoinResult:
    """What the store did with a join event."""
    outcome: JoinOutcome
    membership: Membership
    invitation: Optional[Invitation] = None
    contest: Optional[Contest] = None
