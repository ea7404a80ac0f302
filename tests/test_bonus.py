"""
Tests for quantity / time bonuses.

Covers:
  - Quantity bonus below, at and above the cap for both policies
  - Time bonus at 1 day, linear range and beyond the cap
  - No overflow at max supply
"""

import pytest

from escrowstake_core.bonus import (
    MAX_TIME_BONUS_DAYS,
    QUANTITY_BONUS_CAP,
    QuantityBonusPolicy,
    quantity_bonus,
    time_bonus,
    total_bonus,
)
from escrowstake_core.precision import MAX_SUPPLY, tokens


class TestQuantityBonus:
    def test_small_stake(self):
        # 1000 tokens: 10**21 * 10**21 // (1.5 * 10**27)
        assert quantity_bonus(tokens(1000)) == 10**16 // 15

    def test_zero(self):
        assert quantity_bonus(0) == 0

    def test_at_cap_is_ten_percent(self):
        assert quantity_bonus(QUANTITY_BONUS_CAP) == QUANTITY_BONUS_CAP // 10

    def test_grows_with_size_below_cap(self):
        assert quantity_bonus(tokens(2_000_000)) > quantity_bonus(tokens(1_000_000))

    def test_flat_above_cap(self):
        principal = QUANTITY_BONUS_CAP * 2
        assert quantity_bonus(principal, QuantityBonusPolicy.FLAT_ABOVE_CAP) == principal // 10

    def test_clamp_above_cap(self):
        principal = QUANTITY_BONUS_CAP * 2
        assert quantity_bonus(principal, QuantityBonusPolicy.CLAMP_AT_CAP) == QUANTITY_BONUS_CAP // 10

    def test_policy_accepts_string(self):
        assert quantity_bonus(QUANTITY_BONUS_CAP + 1, "clamp_at_cap") == QUANTITY_BONUS_CAP // 10

    def test_max_supply_does_not_overflow(self):
        assert quantity_bonus(MAX_SUPPLY) == MAX_SUPPLY // 10


class TestTimeBonus:
    @pytest.mark.parametrize("days", [0, 1])
    def test_no_bonus_for_one_day(self, days):
        assert time_bonus(tokens(1000), days) == 0

    def test_linear(self):
        p = tokens(1000)
        assert time_bonus(p, 1821) == p
        assert time_bonus(p, 911) == p * 910 // 1820

    def test_at_cap(self):
        p = tokens(1000)
        assert time_bonus(p, MAX_TIME_BONUS_DAYS) == 2 * p

    def test_beyond_cap_flat(self):
        p = tokens(1000)
        assert time_bonus(p, MAX_TIME_BONUS_DAYS + 500) == 2 * p

    def test_truncates(self):
        assert time_bonus(1, 2) == 0


def test_total_bonus_is_sum():
    p = tokens(5000)
    assert total_bonus(p, 365) == quantity_bonus(p) + time_bonus(p, 365)
