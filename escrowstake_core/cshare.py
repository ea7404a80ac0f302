"""
C-Share exchange rate oracle.

Each unstake offers the closed stake as a sample point.  A candidate
rate is derived from what the stake paid out, its C-Shares and how long
it ran:

    rate = ((QD + min(paid, QCAP)) × paid)
           / (((TD × shares) / (TD + min(days, DCAP) − 1)) × (QD / SCALE))

The stored rate only moves up.
"""

from __future__ import annotations

import logging
from typing import Optional

from escrowstake_core import uint256
from escrowstake_core.bonus import (
    MAX_TIME_BONUS_DAYS,
    QUANTITY_BONUS_CAP,
    QUANTITY_BONUS_DIVISOR,
    TIME_BONUS_DIVISOR,
)
from escrowstake_core.precision import SCALE, UNITS_PER_TOKEN

logger = logging.getLogger("escrowstake.cshare")

INITIAL_CSHARE_RATE: int = 10_000 * UNITS_PER_TOKEN


def candidate_rate(paid: int, shares: int, days_staked: int) -> Optional[int]:
    """Rate implied by one closed stake, or ``None`` if undefined."""
    if paid == 0 or shares == 0:
        return None
    days = min(days_staked, MAX_TIME_BONUS_DAYS)
    numerator = uint256.mul(
        uint256.add(QUANTITY_BONUS_DIVISOR, uint256.clamp(paid, QUANTITY_BONUS_CAP)),
        paid,
    )
    weighted = uint256.div(
        uint256.mul(TIME_BONUS_DIVISOR, shares),
        TIME_BONUS_DIVISOR + days - 1,
    )
    denominator = uint256.mul(weighted, QUANTITY_BONUS_DIVISOR // SCALE)
    if denominator == 0:
        return None
    return uint256.div(numerator, denominator)


class CShareRateOracle:
    """Monotonically non-decreasing global C-Share rate."""

    def __init__(self, rate: int = INITIAL_CSHARE_RATE):
        self.rate = rate

    def observe(self, paid: int, shares: int, days_staked: int) -> bool:
        """Offer a closed stake as a sample; True if the rate rose."""
        candidate = candidate_rate(paid, shares, days_staked)
        if candidate is None or candidate <= self.rate:
            return False
        logger.debug(f"C-Share rate {self.rate} -> {candidate}")
        self.rate = candidate
        return True
