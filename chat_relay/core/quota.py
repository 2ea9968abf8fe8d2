"""
Quota rules and level table.

Implements the pure side of quota enforcement. The repository loads a user
record, hands it to these functions and persists whatever comes back.

Decision Order:
1. Daily rollover - usage from a previous day is reset before any decision
2. Daily allowance - consumed while count < allowance
3. Bonus balance - consumed only once the allowance is spent
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, Tuple, Union

from chat_relay.storage.models import DailyUsage, UserRecord

Clock = Callable[[], date]


def utc_today() -> date:
    """Current calendar day in UTC."""
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class Bounded:
    """A fixed number of requests per day."""
    requests_per_day: int

    def __post_init__(self):
        """Validate the allowance is non-negative."""
        if self.requests_per_day < 0:
            raise ValueError("requests_per_day must be >= 0")


@dataclass(frozen=True)
class Unbounded:
    """No daily limit."""


Allowance = Union[Bounded, Unbounded]

UNBOUNDED = Unbounded()


@dataclass(frozen=True)
class LevelConfig:
    """Daily allowance and downstream model of a membership level."""
    allowance: Allowance
    model: str


@dataclass(frozen=True)
class LevelTable:
    """Static mapping of level ids to their configuration."""
    levels: Dict[str, LevelConfig]
    default_level: str

    def __post_init__(self):
        """Validate the default level is part of the table."""
        if self.default_level not in self.levels:
            raise ValueError(f"default level '{self.default_level}' is not defined")

    def __contains__(self, level: str) -> bool:
        return level in self.levels

    def resolve(self, level: str) -> LevelConfig:
        """Get configuration for a level, falling back to the default level."""
        return self.levels.get(level, self.levels[self.default_level])


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a single quota consumption attempt.

    ``remaining`` is None for unbounded levels.
    ``source`` names what paid for the request: "allowance", "bonus" or
    "unbounded". It is None when the request was refused.
    """
    allowed: bool
    model: str
    remaining: Optional[int] = 0
    reason: Optional[str] = None
    source: Optional[str] = None

    @property
    def unlimited(self) -> bool:
        return self.allowed and self.remaining is None


QUOTA_EXHAUSTED = "quota_exhausted"


def new_user(user_id: str, level: str, today: date) -> UserRecord:
    """Build the record of a user seen for the first time."""
    return UserRecord(
        user_id=user_id,
        level=level,
        bonus_requests=0,
        usage=DailyUsage(date=today, count=0),
    )


def roll_over(user: UserRecord, today: date) -> UserRecord:
    """Reset the usage counter if it belongs to another day.

    Returns the same record when no reset is needed.
    """
    if user.usage.date == today:
        return user
    return replace(user, usage=DailyUsage(date=today, count=0))


def evaluate_quota(user: UserRecord, level: LevelConfig) -> Tuple[QuotaDecision, UserRecord]:
    """Decide whether one more request is allowed and charge it.

    The daily allowance is always spent before the bonus balance. Bonus
    consumption does not increment the daily counter.

    Args:
        user: User record, already rolled over to today
        level: Resolved configuration of the user's level

    Returns:
        The decision and the record to persist (unchanged when nothing was charged)
    """
    allowance = level.allowance

    if isinstance(allowance, Unbounded):
        return QuotaDecision(allowed=True, model=level.model, remaining=None, source="unbounded"), user

    limit = allowance.requests_per_day
    if user.usage.count < limit:
        usage = replace(user.usage, count=user.usage.count + 1)
        charged = replace(user, usage=usage)
        return QuotaDecision(
            allowed=True,
            model=level.model,
            remaining=limit - usage.count,
            source="allowance",
        ), charged

    if user.bonus_requests > 0:
        charged = replace(user, bonus_requests=user.bonus_requests - 1)
        return QuotaDecision(allowed=True, model=level.model, remaining=0, source="bonus"), charged

    return QuotaDecision(allowed=False, model=level.model, remaining=0, reason=QUOTA_EXHAUSTED), user
