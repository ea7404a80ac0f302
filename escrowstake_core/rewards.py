"""
Time-prorated reward accrual and pro-rata distribution.

Every open stake earns a slice of the pool-wide emission proportional
to its share of ``total_staked``:

    reward_per_second = REWARD_RATE × principal × SCALE / total_staked
    pending           = elapsed × reward_per_second / SCALE + accrued

    elapsed = min(now, end_time) − last_accrual_time

Accrual stops at the stake's committed end time even when the unstake
happens later.  An empty pool (``total_staked == 0``) accrues nothing.

A stake's *C-Shares* (its weight in daily distributions) are its
pending reward plus its quantity and time bonuses.
"""

from __future__ import annotations

from escrowstake_core import uint256
from escrowstake_core.bonus import QuantityBonusPolicy, total_bonus
from escrowstake_core.ledger import Stake
from escrowstake_core.precision import SCALE, SECONDS_PER_DAY

PPM: int = 1_000_000
BPS: int = 10_000

# 0.01 % of total supply per day.
DEFAULT_DAILY_EMISSION_PPM: int = 100


def reward_rate_from_emission(total_supply: int, daily_emission_ppm: int) -> int:
    """Pool-wide emission in base units per second."""
    daily = uint256.mul_div(total_supply, daily_emission_ppm, PPM)
    return uint256.div(daily, SECONDS_PER_DAY)


def reward_per_second(principal: int, total_staked: int, reward_rate: int) -> int:
    """Scaled per-second reward of *principal*; 0 when the pool is empty."""
    if total_staked == 0:
        return 0
    return uint256.div(uint256.mul(uint256.mul(reward_rate, principal), SCALE), total_staked)


def accrual_horizon(stake: Stake, now: int) -> int:
    return min(now, stake.end_time)


def pending_reward(stake: Stake, total_staked: int, reward_rate: int, now: int) -> int:
    """Accrued plus not-yet-checkpointed reward of *stake* at *now*."""
    if total_staked == 0:
        return 0
    elapsed = max(0, accrual_horizon(stake, now) - stake.last_accrual_time)
    rps = reward_per_second(stake.principal, total_staked, reward_rate)
    fresh = uint256.div(uint256.mul(elapsed, rps), SCALE)
    return uint256.add(fresh, stake.accrued_reward)


def checkpoint(stake: Stake, total_staked: int, reward_rate: int, now: int) -> int:
    """Fold pending reward into ``accrued_reward``; returns the new total.

    Calling it twice at the same timestamp is a no-op the second time.
    """
    horizon = accrual_horizon(stake, now)
    if horizon <= stake.last_accrual_time:
        return stake.accrued_reward
    stake.accrued_reward = pending_reward(stake, total_staked, reward_rate, now)
    stake.last_accrual_time = horizon
    return stake.accrued_reward


def effective_shares(
    stake: Stake,
    total_staked: int,
    reward_rate: int,
    now: int,
    policy: QuantityBonusPolicy = QuantityBonusPolicy.FLAT_ABOVE_CAP,
) -> int:
    """C-Shares of *stake*: pending reward + quantity bonus + time bonus."""
    pending = pending_reward(stake, total_staked, reward_rate, now)
    return uint256.add(pending, total_bonus(stake.principal, stake.days_committed, policy))


def daily_pool_amount(
    reward_rate: int,
    pool_balance: int,
    percentage_bps: int | None = None,
) -> int:
    """Size of one distribution round.

    With an explicit *percentage_bps* the round pays that fraction of the
    pool's token balance; otherwise it pays one day of configured emission.
    """
    if percentage_bps is None:
        return uint256.mul(reward_rate, SECONDS_PER_DAY)
    return uint256.mul_div(pool_balance, percentage_bps, BPS)


def pro_rata(amount: int, weights: dict[str, int]) -> dict[str, int]:
    """Split *amount* by weight; truncation dust stays undistributed."""
    total = sum(weights.values())
    if total == 0:
        return {}
    return {
        account: uint256.mul_div(amount, weight, total)
        for account, weight in weights.items()
    }
