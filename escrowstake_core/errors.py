"""
Error taxonomy for the EscrowStake engine.

Every rejected operation raises one of these.  Each class carries a
stable ``code`` (the custom-error name used by the on-chain contracts)
so the API layer can report failures without leaking internal state.

All failures are local and non-retryable: the operation is rejected as
a whole and the caller must correct its input and resubmit.
"""

from __future__ import annotations


class StakingError(ValueError):
    """Base class for every rejected staking / treasury operation."""

    code: str = "StakingError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)


# ── arithmetic ──────────────────────────────────────────────────────────

class ArithmeticFault(StakingError):
    code = "ArithmeticFault"


class ArithmeticOverflow(ArithmeticFault):
    code = "ArithmeticOverflow"


class ArithmeticUnderflow(ArithmeticFault):
    code = "ArithmeticUnderflow"


class DivisionByZero(ArithmeticFault):
    code = "DivisionByZero"


# ── staking ─────────────────────────────────────────────────────────────

class InvalidAmount(StakingError):
    code = "InvalidAmount"


class InvalidDuration(StakingError):
    code = "InvalidDuration"


class StakeNotFound(StakingError):
    code = "StakeNotFound"


class InvalidStakeIndex(StakeNotFound):
    code = "InvalidStakeIndex"


class InsufficientTreasury(StakingError):
    code = "InsufficientTreasury"


class StakingPaused(StakingError):
    code = "StakingPaused"


class NoRewardsAvailable(StakingError):
    code = "NoRewardsAvailable"


class Unauthorized(StakingError):
    code = "OwnableUnauthorizedAccount"


class InvariantViolation(StakingError):
    code = "InvariantViolation"


# ── token ───────────────────────────────────────────────────────────────

class InsufficientBalance(StakingError):
    code = "InsufficientBalance"


class SupplyCapExceeded(StakingError):
    code = "SupplyCapExceeded"


# ── team treasury ───────────────────────────────────────────────────────

class TreasuryAlreadyFunded(StakingError):
    code = "TreasuryAlreadyFunded"


class AlreadyAllocated(StakingError):
    code = "AlreadyAllocated"


class ExceedsTotalAllocation(StakingError):
    code = "ExceedsTotalAllocation"


class AllocationsAlreadyLocked(StakingError):
    code = "AllocationsAlreadyLocked"


class NoTokensAvailable(StakingError):
    code = "NoTokensAvailable"


class TreasuryPaused(StakingError):
    code = "EnforcedPause"


class BeneficiaryNotFound(StakingError):
    code = "BeneficiaryNotFound"
