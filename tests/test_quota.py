"""
Tests for quota rules.

Covers daily rollover, the allowance-then-bonus decision order and the
level table.
"""
from datetime import date

import pytest

from chat_relay.core.quota import (
    QUOTA_EXHAUSTED,
    UNBOUNDED,
    Bounded,
    LevelConfig,
    LevelTable,
    evaluate_quota,
    new_user,
    roll_over,
)
from chat_relay.storage.models import DailyUsage, UserRecord

TODAY = date(2024, 3, 2)
YESTERDAY = date(2024, 3, 1)


def make_user(count=0, bonus=0, day=TODAY, level="free"):
    """Create a test user record."""
    return UserRecord(
        user_id="alice",
        level=level,
        bonus_requests=bonus,
        usage=DailyUsage(date=day, count=count)
    )


class TestRollover:
    """Test lazy daily rollover."""

    def test_same_day_is_untouched(self):
        """A record from today is returned as-is."""
        user = make_user(count=3)
        assert roll_over(user, TODAY) is user

    def test_previous_day_is_reset(self):
        """A record from another day gets a zeroed counter for today."""
        user = make_user(count=5, bonus=2, day=YESTERDAY)
        rolled = roll_over(user, TODAY)

        assert rolled.usage == DailyUsage(date=TODAY, count=0)
        assert rolled.bonus_requests == 2
        assert rolled.level == "free"

    def test_new_user_defaults(self):
        """New users start with zero bonus and zero usage."""
        user = new_user("bob", "free", TODAY)
        assert user.bonus_requests == 0
        assert user.usage == DailyUsage(date=TODAY, count=0)


class TestEvaluateQuota:
    """Test the quota decision."""

    level = LevelConfig(allowance=Bounded(3), model="small-model")

    def test_allowance_consumed_first(self):
        """Allowance is spent while count is below the limit, bonus untouched."""
        decision, charged = evaluate_quota(make_user(count=0, bonus=4), self.level)

        assert decision.allowed
        assert decision.remaining == 2
        assert decision.source == "allowance"
        assert decision.model == "small-model"
        assert charged.usage.count == 1
        assert charged.bonus_requests == 4

    def test_bonus_after_allowance(self):
        """Bonus is spent once the allowance is gone, count unchanged."""
        decision, charged = evaluate_quota(make_user(count=3, bonus=2), self.level)

        assert decision.allowed
        assert decision.remaining == 0
        assert decision.source == "bonus"
        assert charged.usage.count == 3
        assert charged.bonus_requests == 1

    def test_exhausted(self):
        """No allowance and no bonus refuses the request without charging."""
        user = make_user(count=3, bonus=0)
        decision, charged = evaluate_quota(user, self.level)

        assert not decision.allowed
        assert decision.reason == QUOTA_EXHAUSTED
        assert decision.remaining == 0
        assert decision.source is None
        assert charged is user

    def test_unbounded_never_charges(self):
        """Unbounded levels are always allowed and never touch the counter."""
        level = LevelConfig(allowance=UNBOUNDED, model="big-model")
        user = make_user(count=0)
        decision, charged = evaluate_quota(user, level)

        assert decision.allowed
        assert decision.unlimited
        assert decision.remaining is None
        assert charged is user

    def test_zero_allowance_goes_straight_to_bonus(self):
        """A zero allowance level only runs on bonus requests."""
        level = LevelConfig(allowance=Bounded(0), model="m")
        decision, charged = evaluate_quota(make_user(bonus=1), level)

        assert decision.source == "bonus"
        assert charged.bonus_requests == 0

    def test_remaining_strictly_decreases(self):
        """Consecutive consumptions report remaining N-1 down to 0."""
        user = make_user()
        remaining = []
        for _ in range(3):
            decision, user = evaluate_quota(user, self.level)
            remaining.append(decision.remaining)
        assert remaining == [2, 1, 0]

        decision, _ = evaluate_quota(user, self.level)
        assert not decision.allowed


class TestLevelTable:
    """Test the level table."""

    def test_negative_allowance_rejected(self):
        with pytest.raises(ValueError, match="requests_per_day"):
            Bounded(-1)

    def test_default_level_must_exist(self):
        with pytest.raises(ValueError, match="default level"):
            LevelTable(levels={"free": LevelConfig(Bounded(1), "m")}, default_level="gold")

    def test_resolve_falls_back_to_default(self):
        """Unknown levels resolve to the default level's configuration."""
        free = LevelConfig(Bounded(1), "m")
        table = LevelTable(levels={"free": free}, default_level="free")

        assert "free" in table
        assert "legacy" not in table
        assert table.resolve("legacy") == free
