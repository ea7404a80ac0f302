"""
Early / late unstake penalties.

Timing classification at unstake
────────────────────────────────
    EARLY    now <  end_time
    ON_TIME  end_time <= now <= end_time + GRACE_PERIOD
    LATE     now >  end_time + GRACE_PERIOD

Early penalty (reward only, never principal)
────────────────────────────────────────────
    threshold = 90                       if days_committed < 180
              = days_committed / 2       otherwise

    days_elapsed == 0          → 0
    days_elapsed <  threshold  → reward × threshold / days_elapsed
    days_elapsed == threshold  → reward
    days_elapsed >  threshold  → (reward / days_elapsed) × threshold

    then clamped to ``reward``.  The TokenStaking variant instead charges
    a flat ``early_fee_bps`` of the reward.

Late penalty (on the whole remaining payout)
────────────────────────────────────────────
    days_late = (now − end_time − GRACE_PERIOD) / 1 day
    penalty   = min(amount, amount × LATE_RATE / 100 000 × days_late)

Penalty split
─────────────
    burn 25 %, keep 50 % in the pool, treasury gets the remainder.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from escrowstake_core import uint256
from escrowstake_core.ledger import Stake
from escrowstake_core.precision import SECONDS_PER_DAY

GRACE_PERIOD_DAYS: int = 14
LATE_PENALTY_RATE_PER_DAY: int = 143
LATE_PENALTY_DENOMINATOR: int = 100_000

SHORT_STAKE_DAYS: int = 180
SHORT_STAKE_THRESHOLD_DAYS: int = 90

DEFAULT_EARLY_FEE_BPS: int = 500
BURN_PERCENT: int = 25
POOL_PERCENT: int = 50


class UnstakeTiming(str, Enum):
    EARLY = "early"
    ON_TIME = "on_time"
    LATE = "late"


class EarlyPenaltyPolicy(str, Enum):
    PIECEWISE = "piecewise"
    FLAT_FEE = "flat_fee"


def classify(stake: Stake, now: int, grace_days: int = GRACE_PERIOD_DAYS) -> UnstakeTiming:
    if now < stake.end_time:
        return UnstakeTiming.EARLY
    if now > stake.end_time + grace_days * SECONDS_PER_DAY:
        return UnstakeTiming.LATE
    return UnstakeTiming.ON_TIME


def early_threshold_days(days_committed: int) -> int:
    if days_committed < SHORT_STAKE_DAYS:
        return SHORT_STAKE_THRESHOLD_DAYS
    return days_committed // 2


def early_penalty(reward: int, days_committed: int, days_elapsed: int) -> int:
    """Piecewise early-exit penalty, clamped to *reward*."""
    if days_elapsed == 0:
        return 0
    threshold = early_threshold_days(days_committed)
    if days_elapsed < threshold:
        penalty = uint256.mul_div(reward, threshold, days_elapsed)
    elif days_elapsed == threshold:
        penalty = reward
    else:
        penalty = uint256.mul(uint256.div(reward, days_elapsed), threshold)
    return uint256.clamp(penalty, reward)


def flat_early_fee(reward: int, fee_bps: int = DEFAULT_EARLY_FEE_BPS) -> int:
    return uint256.clamp(uint256.mul_div(reward, fee_bps, 10_000), reward)


def late_penalty(
    amount: int,
    end_time: int,
    now: int,
    grace_days: int = GRACE_PERIOD_DAYS,
    rate_per_day: int = LATE_PENALTY_RATE_PER_DAY,
) -> int:
    """Linear late penalty on *amount*, capped at 100 %."""
    grace_end = end_time + grace_days * SECONDS_PER_DAY
    if now <= grace_end:
        return 0
    days_late = (now - grace_end) // SECONDS_PER_DAY
    per_day = uint256.mul_div(amount, rate_per_day, LATE_PENALTY_DENOMINATOR)
    return uint256.clamp(uint256.mul(per_day, days_late), amount)


@dataclass(frozen=True)
class PenaltyAssessment:
    """Outcome of pricing an unstake at a given instant."""
    timing: UnstakeTiming
    principal: int
    reward: int
    early: int
    late: int

    @property
    def total(self) -> int:
        return self.early + self.late

    @property
    def payout(self) -> int:
        return self.principal + self.reward - self.total

    @property
    def reward_paid(self) -> int:
        """Portion of the payout that is reward rather than principal."""
        return max(0, self.payout - self.principal)

    def to_dict(self) -> dict:
        return {
            "timing": self.timing.value,
            "principal": self.principal,
            "reward": self.reward,
            "early_penalty": self.early,
            "late_penalty": self.late,
            "total_penalty": self.total,
            "payout": self.payout,
        }


def assess(
    stake: Stake,
    reward: int,
    now: int,
    *,
    grace_days: int = GRACE_PERIOD_DAYS,
    late_rate_per_day: int = LATE_PENALTY_RATE_PER_DAY,
    policy: EarlyPenaltyPolicy = EarlyPenaltyPolicy.PIECEWISE,
    early_fee_bps: int = DEFAULT_EARLY_FEE_BPS,
) -> PenaltyAssessment:
    """Price the unstake of *stake* with *reward* pending at *now*."""
    timing = classify(stake, now, grace_days)
    early = late = 0
    if timing is UnstakeTiming.EARLY:
        if EarlyPenaltyPolicy(policy) is EarlyPenaltyPolicy.FLAT_FEE:
            early = flat_early_fee(reward, early_fee_bps)
        else:
            early = early_penalty(reward, stake.days_committed, stake.days_elapsed(now))
    remaining = uint256.sub(uint256.add(stake.principal, reward), early)
    if timing is UnstakeTiming.LATE:
        late = late_penalty(remaining, stake.end_time, now, grace_days, late_rate_per_day)
    # early <= reward and late <= remaining keep the total within the payout
    return PenaltyAssessment(timing, stake.principal, reward, early, late)


def split_penalty(penalty: int) -> tuple[int, int, int]:
    """Return ``(burn, pool, treasury)``; treasury absorbs rounding dust."""
    burn = uint256.mul_div(penalty, BURN_PERCENT, 100)
    pool = uint256.mul_div(penalty, POOL_PERCENT, 100)
    return burn, pool, penalty - burn - pool
