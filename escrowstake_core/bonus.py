"""
Quantity and time bonuses for stakes.

Both bonuses are additive C-Share terms computed from a stake's
principal and committed duration:

Quantity bonus
──────────────
    principal <= CAP :  principal × principal / DIVISOR
                        (reaches +10 % of principal exactly at the cap)

Above the cap the two staking contract variants disagree, so both are
kept as named policies:

    FLAT_ABOVE_CAP  (EscrowStaking)  principal / 10        (flat +10 %)
    CLAMP_AT_CAP    (TokenStaking)   CAP × CAP / DIVISOR   (stops growing)

Time bonus
──────────
    days <= 1               :  0
    1 < days <= 3641        :  principal × (days − 1) / 1820
    days > 3641             :  principal × 2

All divisions truncate.  Intermediates go through checked uint256 math.
"""

from __future__ import annotations

from enum import Enum

from escrowstake_core import uint256
from escrowstake_core.precision import UNITS_PER_TOKEN

QUANTITY_BONUS_CAP: int = 150_000_000 * UNITS_PER_TOKEN
QUANTITY_BONUS_DIVISOR: int = 1_500_000_000 * UNITS_PER_TOKEN

MAX_TIME_BONUS_DAYS: int = 3641
TIME_BONUS_DIVISOR: int = 1820

# Multiple of principal granted past MAX_TIME_BONUS_DAYS
# ((3641 - 1) / 1820 == 2).
MAX_TIME_BONUS_MULTIPLE: int = (MAX_TIME_BONUS_DAYS - 1) // TIME_BONUS_DIVISOR


class QuantityBonusPolicy(str, Enum):
    FLAT_ABOVE_CAP = "flat_above_cap"
    CLAMP_AT_CAP = "clamp_at_cap"


def quantity_bonus(
    principal: int,
    policy: QuantityBonusPolicy = QuantityBonusPolicy.FLAT_ABOVE_CAP,
) -> int:
    """Bonus C-Shares proportional to stake size."""
    if principal <= QUANTITY_BONUS_CAP:
        return uint256.mul_div(principal, principal, QUANTITY_BONUS_DIVISOR)
    if QuantityBonusPolicy(policy) is QuantityBonusPolicy.FLAT_ABOVE_CAP:
        return uint256.div(principal, 10)
    return uint256.mul_div(QUANTITY_BONUS_CAP, QUANTITY_BONUS_CAP, QUANTITY_BONUS_DIVISOR)


def time_bonus(principal: int, days_committed: int) -> int:
    """Bonus C-Shares rewarding longer commitments."""
    if days_committed <= 1:
        return 0
    if days_committed <= MAX_TIME_BONUS_DAYS:
        return uint256.mul_div(principal, days_committed - 1, TIME_BONUS_DIVISOR)
    return uint256.mul(principal, MAX_TIME_BONUS_MULTIPLE)


def total_bonus(
    principal: int,
    days_committed: int,
    policy: QuantityBonusPolicy = QuantityBonusPolicy.FLAT_ABOVE_CAP,
) -> int:
    return uint256.add(quantity_bonus(principal, policy), time_bonus(principal, days_committed))
