"""
Team treasury vesting.

A fixed pool of 1 billion tokens is locked for three years, then
released to each beneficiary in five equal milestones six months apart:

    unlock[i] = start_time + LOCK_DAYS + i × INTERVAL_DAYS     i = 0..4
    vested    = allocation × MILESTONE_PERCENT × reached / 100
    claimable = vested − claimed

Lifecycle: ``fund()`` once, add / update / remove beneficiaries while
allocations are open, ``lock_allocations()``, then beneficiaries (or
anyone on their behalf) ``claim()`` as milestones unlock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from escrowstake_core import uint256
from escrowstake_core.errors import (
    AllocationsAlreadyLocked,
    AlreadyAllocated,
    BeneficiaryNotFound,
    ExceedsTotalAllocation,
    InsufficientBalance,
    InvalidAmount,
    NoTokensAvailable,
    TreasuryAlreadyFunded,
    TreasuryPaused,
    Unauthorized,
)
from escrowstake_core.precision import SECONDS_PER_DAY, UNITS_PER_TOKEN
from escrowstake_core.token import TokenTransfer

logger = logging.getLogger("escrowstake.vesting")

TOTAL_ALLOCATION: int = 1_000_000_000 * UNITS_PER_TOKEN
LOCK_DAYS: int = 1095
INTERVAL_DAYS: int = 180
MILESTONES: int = 5
MILESTONE_PERCENT: int = 20


@dataclass
class Beneficiary:
    address: str
    total_allocation: int
    claimed_amount: int = 0
    is_active: bool = True
    revoked: bool = False

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "total_allocation": self.total_allocation,
            "claimed_amount": self.claimed_amount,
            "is_active": self.is_active,
            "revoked": self.revoked,
        }


class TeamTreasury:
    """Milestone vesting of the team allocation."""

    def __init__(
        self,
        token: TokenTransfer,
        address: str = "team-treasury",
        owner: Optional[str] = None,
        start_time: int = 0,
    ):
        self.token = token
        self.address = address
        self.owner = owner
        self.start_time = start_time
        self.funded = False
        self.allocations_locked = False
        self.paused = False
        self.total_allocated: int = 0
        self.total_claimed: int = 0
        self._beneficiaries: dict[str, Beneficiary] = {}
        self._lock = threading.RLock()

    def _require_owner(self, caller: Optional[str]) -> None:
        if self.owner is not None and caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner")

    def _require_open(self) -> None:
        if self.allocations_locked:
            raise AllocationsAlreadyLocked("Allocations are locked")

    def _active(self, address: str) -> Beneficiary:
        b = self._beneficiaries.get(address)
        if b is None or not b.is_active:
            raise BeneficiaryNotFound(f"{address} is not a beneficiary")
        return b

    # ── setup ───────────────────────────────────────────────────────

    def fund(self, funder: str) -> None:
        """Pull the full allocation from *funder* (once)."""
        with self._lock:
            if self.funded:
                raise TreasuryAlreadyFunded("Treasury already funded")
            if self.token.balance_of(funder) < TOTAL_ALLOCATION:
                raise InsufficientBalance(f"{funder} cannot fund {TOTAL_ALLOCATION}")
            self.token.transfer_in(self.address, funder, TOTAL_ALLOCATION)
            self.funded = True
        logger.info(f"Team treasury funded by {funder}")

    def add_beneficiary(self, address: str, allocation: int, caller: Optional[str] = None) -> Beneficiary:
        with self._lock:
            self._require_owner(caller)
            self._require_open()
            if allocation <= 0:
                raise InvalidAmount("Allocation must be positive")
            existing = self._beneficiaries.get(address)
            if existing is not None and existing.is_active:
                raise AlreadyAllocated(f"{address} already has an allocation")
            if self.total_allocated + allocation > TOTAL_ALLOCATION:
                raise ExceedsTotalAllocation(
                    f"{allocation} exceeds remaining {TOTAL_ALLOCATION - self.total_allocated}"
                )
            b = Beneficiary(address, allocation)
            self._beneficiaries[address] = b
            self.total_allocated += allocation
        logger.info(f"Beneficiary {address} allocated {allocation}")
        return b

    def update_beneficiary(self, address: str, allocation: int, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self._require_open()
            if allocation <= 0:
                raise InvalidAmount("Allocation must be positive")
            b = self._active(address)
            new_total = self.total_allocated - b.total_allocation + allocation
            if new_total > TOTAL_ALLOCATION:
                raise ExceedsTotalAllocation(f"Update to {allocation} exceeds total allocation")
            b.total_allocation = allocation
            self.total_allocated = new_total

    def remove_beneficiary(self, address: str, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self._require_open()
            b = self._active(address)
            b.is_active = False
            self.total_allocated -= b.total_allocation
        logger.info(f"Beneficiary {address} removed")

    def lock_allocations(self, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self._require_open()
            self.allocations_locked = True
        logger.info("Team allocations locked")

    # ── vesting ─────────────────────────────────────────────────────

    def unlock_times(self) -> list[int]:
        first = self.start_time + LOCK_DAYS * SECONDS_PER_DAY
        return [first + i * INTERVAL_DAYS * SECONDS_PER_DAY for i in range(MILESTONES)]

    def milestones_reached(self, now: int) -> int:
        return sum(1 for t in self.unlock_times() if now >= t)

    def vested(self, address: str, now: int) -> int:
        b = self._beneficiaries.get(address)
        if b is None or not b.is_active:
            return 0
        reached = self.milestones_reached(now)
        if reached >= MILESTONES:
            return b.total_allocation
        return uint256.mul_div(b.total_allocation, MILESTONE_PERCENT * reached, 100)

    def claimable(self, address: str, now: int) -> int:
        with self._lock:
            b = self._beneficiaries.get(address)
            if b is None or b.revoked:
                return 0
            return max(0, self.vested(address, now) - b.claimed_amount)

    def claim(self, address: str, now: int) -> int:
        """Pay *address* everything vested and not yet claimed."""
        with self._lock:
            if self.paused:
                raise TreasuryPaused("Treasury is paused")
            amount = self.claimable(address, now)
            if amount == 0:
                raise NoTokensAvailable(f"Nothing claimable for {address}")
            self.token.transfer_out(self.address, address, amount)
            self._beneficiaries[address].claimed_amount += amount
            self.total_claimed += amount
        logger.info(f"Vesting claim: {address} received {amount}")
        return amount

    def claim_for(self, address: str, now: int) -> int:
        """Anyone may trigger a claim; tokens always go to the beneficiary."""
        return self.claim(address, now)

    # ── admin ───────────────────────────────────────────────────────

    def revoke_allocation(self, address: str, caller: Optional[str] = None) -> int:
        """Stop further vesting for *address*; returns the released amount."""
        with self._lock:
            self._require_owner(caller)
            b = self._active(address)
            if b.revoked:
                return 0
            released = b.total_allocation - b.claimed_amount
            b.revoked = True
            self.total_allocated -= released
        logger.warning(f"Allocation of {address} revoked, {released} released")
        return released

    def pause(self, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self.paused = True

    def unpause(self, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self.paused = False

    def emergency_withdraw(self, caller: Optional[str] = None) -> int:
        """Return tokens not owed to any beneficiary to the owner."""
        with self._lock:
            self._require_owner(caller)
            recipient = self.owner or caller
            if not recipient:
                raise Unauthorized("Emergency withdrawal needs an owner or a caller")
            owed = self.total_allocated - self.total_claimed
            amount = self.token.balance_of(self.address) - owed
            if amount <= 0:
                raise NoTokensAvailable("No unallocated tokens to withdraw")
            self.token.transfer_out(self.address, recipient, amount)
        logger.warning(f"Team treasury emergency withdrawal of {amount}")
        return amount

    # ── views ───────────────────────────────────────────────────────

    def beneficiary(self, address: str) -> Beneficiary:
        b = self._beneficiaries.get(address)
        if b is None:
            raise BeneficiaryNotFound(f"{address} is not a beneficiary")
        return b

    def beneficiaries(self) -> list[Beneficiary]:
        return [b for b in self._beneficiaries.values() if b.is_active]

    def vesting_schedule(self) -> dict:
        return {
            "total_milestones": MILESTONES,
            "interval_days": INTERVAL_DAYS,
            "lock_days": LOCK_DAYS,
            "milestone_percent": MILESTONE_PERCENT,
            "unlock_times": self.unlock_times(),
        }

    def stats(self) -> dict:
        return {
            "total_allocation": self.total_allocated,
            "total_claimed": self.total_claimed,
            "beneficiary_count": len(self.beneficiaries()),
            "locked": self.allocations_locked,
            "funded": self.funded,
            "paused": self.paused,
            "balance": self.token.balance_of(self.address),
        }
