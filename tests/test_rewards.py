"""
Tests for reward accrual and distribution math.

Covers:
  - Emission-derived reward rate
  - Empty-pool guard
  - Accrual capped at end_time
  - Checkpoint idempotence
  - C-Share weight
  - Pro-rata splitting and distribution round sizing
"""

import pytest

from escrowstake_core import rewards
from escrowstake_core.bonus import total_bonus
from escrowstake_core.ledger import Stake
from escrowstake_core.precision import MAX_SUPPLY, SECONDS_PER_DAY, tokens

T0 = 1_700_000_000
RATE = 10 ** 15


@pytest.fixture
def stake():
    return Stake.open(1, "alice", tokens(1000), 30, T0)


class TestRewardRate:
    def test_default_emission(self):
        rate = rewards.reward_rate_from_emission(MAX_SUPPLY, rewards.DEFAULT_DAILY_EMISSION_PPM)
        assert rate == (MAX_SUPPLY // 10_000) // SECONDS_PER_DAY

    def test_zero_emission(self):
        assert rewards.reward_rate_from_emission(MAX_SUPPLY, 0) == 0

    def test_per_second_empty_pool(self):
        assert rewards.reward_per_second(tokens(1), 0, RATE) == 0


class TestPending:
    def test_empty_pool_accrues_nothing(self, stake):
        assert rewards.pending_reward(stake, 0, RATE, T0 + 10 * SECONDS_PER_DAY) == 0

    def test_sole_staker_earns_whole_rate(self, stake):
        now = T0 + 5 * SECONDS_PER_DAY
        assert rewards.pending_reward(stake, stake.principal, RATE, now) == 5 * SECONDS_PER_DAY * RATE

    def test_half_share(self, stake):
        now = T0 + 1000
        assert rewards.pending_reward(stake, 2 * stake.principal, RATE, now) == 1000 * RATE // 2

    def test_stops_at_end_time(self, stake):
        at_end = rewards.pending_reward(stake, stake.principal, RATE, stake.end_time)
        later = rewards.pending_reward(stake, stake.principal, RATE, stake.end_time + 90 * SECONDS_PER_DAY)
        assert at_end == later == 30 * SECONDS_PER_DAY * RATE

    def test_includes_accrued(self, stake):
        stake.accrued_reward = 42
        assert rewards.pending_reward(stake, stake.principal, RATE, T0) == 42


class TestCheckpoint:
    def test_folds_pending(self, stake):
        now = T0 + 100
        total = rewards.checkpoint(stake, stake.principal, RATE, now)
        assert total == 100 * RATE
        assert stake.accrued_reward == 100 * RATE
        assert stake.last_accrual_time == now

    def test_idempotent_at_same_timestamp(self, stake):
        now = T0 + 100
        rewards.checkpoint(stake, stake.principal, RATE, now)
        before = stake.accrued_reward
        rewards.checkpoint(stake, stake.principal, RATE, now)
        assert stake.accrued_reward == before

    def test_caps_last_accrual_at_end(self, stake):
        rewards.checkpoint(stake, stake.principal, RATE, stake.end_time + 5000)
        assert stake.last_accrual_time == stake.end_time

    def test_pending_unchanged_by_checkpoint(self, stake):
        now = T0 + 12345
        expected = rewards.pending_reward(stake, stake.principal, RATE, now)
        rewards.checkpoint(stake, stake.principal, RATE, now)
        assert rewards.pending_reward(stake, stake.principal, RATE, now) == expected


class TestShares:
    def test_effective_shares(self, stake):
        now = T0 + 10
        expected = 10 * RATE + total_bonus(stake.principal, stake.days_committed)
        assert rewards.effective_shares(stake, stake.principal, RATE, now) == expected


class TestDistribution:
    def test_daily_amount_from_rate(self):
        assert rewards.daily_pool_amount(RATE, tokens(5)) == RATE * SECONDS_PER_DAY

    def test_daily_amount_from_percentage(self):
        assert rewards.daily_pool_amount(RATE, tokens(10_000), 100) == tokens(100)

    def test_pro_rata_equal(self):
        assert rewards.pro_rata(100, {"a": 5, "b": 5}) == {"a": 50, "b": 50}

    def test_pro_rata_truncates(self):
        split = rewards.pro_rata(100, {"a": 1, "b": 2})
        assert split == {"a": 33, "b": 66}
        assert sum(split.values()) <= 100

    def test_pro_rata_no_weight(self):
        assert rewards.pro_rata(100, {"a": 0}) == {}
        assert rewards.pro_rata(100, {}) == {}
