"""
The staking pool: multi-stake accounting with bonus / penalty economics.

A ``StakingPool`` is the single owned aggregate holding every account's
stake ledger, the active-user registry and the global totals.  Every
entry point takes the current time ``now`` explicitly, so simulations
and tests replay deterministically.

Entry points
────────────
  ``stake()``                              open a stake (gated by pause)
  ``unstake()`` / ``unstake_specific()``   close a stake by id / index
  ``claim_rewards()``                      pay a stake's accrued reward
  ``distribute_daily_rewards()``           pro-rata round across active users
  admin: ``set_limits()``, ``set_treasury()``, ``set_early_fee()``,
         ``pause()``, ``unpause()``, ``emergency_withdraw()``

Atomicity
─────────
All operations run under one re-entrant lock.  Each validates first,
mutates pool state, then runs the invariant checker; any failure
restores the pre-operation state.  Token movements are staged and only
executed once the pool state is committed, after every guard (balances,
treasury cover) has already passed.
"""

from __future__ import annotations

import contextlib
import copy
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from escrowstake_core import rewards
from escrowstake_core.bonus import QuantityBonusPolicy
from escrowstake_core.cshare import INITIAL_CSHARE_RATE, CShareRateOracle
from escrowstake_core.errors import (
    InsufficientBalance,
    InsufficientTreasury,
    InvalidAmount,
    InvalidDuration,
    InvariantViolation,
    NoRewardsAvailable,
    StakingPaused,
    Unauthorized,
)
from escrowstake_core.invariants import InvariantChecker
from escrowstake_core.ledger import ActiveUserRegistry, Stake, StakeLedger
from escrowstake_core.penalty import (
    DEFAULT_EARLY_FEE_BPS,
    GRACE_PERIOD_DAYS,
    LATE_PENALTY_RATE_PER_DAY,
    EarlyPenaltyPolicy,
    PenaltyAssessment,
    assess,
    split_penalty,
)
from escrowstake_core.precision import MAX_SUPPLY, UNITS_PER_TOKEN
from escrowstake_core.token import TokenTransfer

if TYPE_CHECKING:
    from escrowstake_core.config import EscrowStakeConfig

logger = logging.getLogger("escrowstake.staking")

# ── Default limits ──────────────────────────────────────────────────────

MIN_STAKE_AMOUNT: int = 1_000 * UNITS_PER_TOKEN
MAX_STAKE_AMOUNT: int = 1_000_000_000 * UNITS_PER_TOKEN
MIN_STAKE_DAYS: int = 1
MAX_STAKE_DAYS: int = 3641

POOL_ADDRESS: str = "staking-pool"
TREASURY_ADDRESS: str = "treasury"


@dataclass(frozen=True)
class UnstakeResult:
    """Everything an unstake moved, for callers and event logs."""
    stake: Stake
    assessment: PenaltyAssessment
    burned: int
    retained: int
    to_treasury: int
    cshare_updated: bool

    @property
    def payout(self) -> int:
        return self.assessment.payout

    def to_dict(self) -> dict:
        d = self.assessment.to_dict()
        d.update({
            "stake_id": self.stake.stake_id,
            "account": self.stake.account,
            "burned": self.burned,
            "retained": self.retained,
            "to_treasury": self.to_treasury,
            "cshare_updated": self.cshare_updated,
        })
        return d


class StakingPool:
    """Owns all stakes, totals and configuration of one staking contract."""

    def __init__(
        self,
        token: TokenTransfer,
        *,
        address: str = POOL_ADDRESS,
        treasury: str = TREASURY_ADDRESS,
        owner: Optional[str] = None,
        reward_rate: Optional[int] = None,
        total_supply: int = MAX_SUPPLY,
        daily_emission_ppm: int = rewards.DEFAULT_DAILY_EMISSION_PPM,
        min_stake_amount: int = MIN_STAKE_AMOUNT,
        max_stake_amount: int = MAX_STAKE_AMOUNT,
        min_stake_days: int = MIN_STAKE_DAYS,
        max_stake_days: int = MAX_STAKE_DAYS,
        grace_days: int = GRACE_PERIOD_DAYS,
        late_rate_per_day: int = LATE_PENALTY_RATE_PER_DAY,
        early_policy: EarlyPenaltyPolicy = EarlyPenaltyPolicy.PIECEWISE,
        early_fee_bps: int = DEFAULT_EARLY_FEE_BPS,
        quantity_policy: QuantityBonusPolicy = QuantityBonusPolicy.FLAT_ABOVE_CAP,
        distribute_penalties: bool = True,
        paused: bool = False,
    ) -> None:
        self.token = token
        self.address = address
        self.treasury = treasury
        self.owner = owner
        if reward_rate is None:
            reward_rate = rewards.reward_rate_from_emission(total_supply, daily_emission_ppm)
        self.reward_rate = reward_rate

        self.min_stake_amount = min_stake_amount
        self.max_stake_amount = max_stake_amount
        self.min_stake_days = min_stake_days
        self.max_stake_days = max_stake_days
        self.grace_days = grace_days
        self.late_rate_per_day = late_rate_per_day
        self.early_policy = EarlyPenaltyPolicy(early_policy)
        self.early_fee_bps = early_fee_bps
        self.quantity_policy = QuantityBonusPolicy(quantity_policy)
        self.distribute_penalties = distribute_penalties
        self.paused = paused

        self.ledger = StakeLedger()
        self.active_users = ActiveUserRegistry()
        self.total_staked: int = 0
        self.total_users: int = 0
        self.total_paid: int = 0
        self.cshare = CShareRateOracle(INITIAL_CSHARE_RATE)

        self._lock = threading.RLock()
        self._checker = InvariantChecker()

    @classmethod
    def from_config(cls, cfg: EscrowStakeConfig, token: TokenTransfer) -> StakingPool:
        s, r, p = cfg.staking, cfg.rewards, cfg.penalty
        return cls(
            token,
            address=cfg.treasury.pool_address,
            treasury=cfg.treasury.treasury_address,
            owner=cfg.treasury.owner or None,
            reward_rate=r.reward_rate or None,
            total_supply=r.total_supply,
            daily_emission_ppm=r.daily_emission_ppm,
            min_stake_amount=s.min_stake_amount,
            max_stake_amount=s.max_stake_amount,
            min_stake_days=s.min_stake_days,
            max_stake_days=s.max_stake_days,
            grace_days=p.grace_days,
            late_rate_per_day=p.late_rate_per_day,
            early_policy=EarlyPenaltyPolicy(p.early_policy),
            early_fee_bps=p.early_fee_bps,
            quantity_policy=QuantityBonusPolicy(cfg.bonus.quantity_policy),
            distribute_penalties=p.distribute_penalties,
            paused=s.paused,
        )

    # ── atomic operation scope ──────────────────────────────────────

    _STATE_FIELDS = ("ledger", "active_users", "total_staked", "total_users", "total_paid", "cshare")

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[list[Callable[[], None]]]:
        """Serialize, snapshot, verify, then run staged token effects."""
        with self._lock:
            saved = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE_FIELDS}
            effects: list[Callable[[], None]] = []
            self._checker.capture(self)
            try:
                yield effects
                ok, msg = self._checker.verify(self)
                if not ok:
                    raise InvariantViolation(msg)
                for effect in effects:
                    effect()
            except Exception:
                for name, value in saved.items():
                    setattr(self, name, value)
                raise

    def _checkpoint_all(self, now: int) -> None:
        """Fold pending rewards before ``total_staked`` changes."""
        for stake in self.ledger.all():
            rewards.checkpoint(stake, self.total_staked, self.reward_rate, now)

    def _require_owner(self, caller: Optional[str]) -> None:
        if self.owner is not None and caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner")

    # ── core operations ─────────────────────────────────────────────

    def stake(self, account: str, amount: int, days: int, now: int) -> Stake:
        """Open a new stake of *amount* base units for *days* days."""
        with self._transaction() as effects:
            if self.paused:
                raise StakingPaused("Staking is paused")
            if not self.min_stake_amount <= amount <= self.max_stake_amount:
                raise InvalidAmount(
                    f"Stake amount must be within "
                    f"[{self.min_stake_amount}, {self.max_stake_amount}]"
                )
            if not self.min_stake_days <= days <= self.max_stake_days:
                raise InvalidDuration(
                    f"Stake days must be within "
                    f"[{self.min_stake_days}, {self.max_stake_days}]"
                )
            if self.token.balance_of(account) < amount:
                raise InsufficientBalance(f"{account} cannot cover {amount}")

            self._checkpoint_all(now)
            record = self.ledger.add(
                Stake.open(self.ledger.allocate_id(), account, amount, days, now)
            )
            if self.active_users.add(account):
                self.total_users += 1
            self.total_staked += amount
            effects.append(lambda: self.token.burn(account, amount))

        logger.info(
            f"Stake #{record.stake_id}: {account} locked {amount} for {days}d"
        )
        return record

    def unstake(self, account: str, stake_id: int, now: int) -> UnstakeResult:
        """Close stake *stake_id* of *account*; never gated by pause."""
        with self._lock:
            return self._close(self.ledger.get(stake_id, account), now)

    def unstake_specific(self, account: str, index: int, now: int) -> UnstakeResult:
        """Close the stake at position *index* of *account*'s ledger.

        Removal swaps the account's last stake into *index*; re-fetch by
        index afterwards.
        """
        with self._lock:
            return self._close(self.ledger.at(account, index), now)

    def _close(self, record: Stake, now: int) -> UnstakeResult:
        with self._transaction() as effects:
            self._checkpoint_all(now)
            reward = record.accrued_reward
            shares = rewards.effective_shares(
                record, self.total_staked, self.reward_rate, now, self.quantity_policy,
            )
            assessment = assess(
                record,
                reward,
                now,
                grace_days=self.grace_days,
                late_rate_per_day=self.late_rate_per_day,
                policy=self.early_policy,
                early_fee_bps=self.early_fee_bps,
            )
            if self.distribute_penalties:
                burned, retained, to_treasury = split_penalty(assessment.total)
            else:
                burned, retained, to_treasury = 0, assessment.total, 0

            # principal is re-minted into the pool before anything leaves it
            outflow = assessment.payout + burned + to_treasury
            available = self.token.balance_of(self.address) + record.principal
            if outflow > available:
                raise InsufficientTreasury(
                    f"Pool holds {available}, unstake needs {outflow}"
                )

            self.ledger.remove_by_id(record.stake_id)
            self.total_staked -= record.principal
            if self.ledger.count(record.account) == 0:
                self.active_users.remove(record.account)
                self.total_users -= 1
            self.total_paid += assessment.reward_paid
            updated = self.cshare.observe(assessment.payout, shares, record.days_elapsed(now))

            pool, account = self.address, record.account
            effects.append(lambda: self.token.mint(pool, record.principal))
            effects.append(lambda: self.token.transfer_out(pool, account, assessment.payout))
            if burned:
                effects.append(lambda: self.token.burn(pool, burned))
            if to_treasury:
                treasury = self.treasury
                effects.append(lambda: self.token.transfer_out(pool, treasury, to_treasury))

        if assessment.total:
            logger.info(
                f"Unstake #{record.stake_id} ({assessment.timing.value}): "
                f"{record.account} paid {assessment.payout}, "
                f"penalty {assessment.total}"
            )
        else:
            logger.info(
                f"Unstake #{record.stake_id}: {record.account} paid {assessment.payout}"
            )
        return UnstakeResult(record, assessment, burned, retained, to_treasury, updated)

    def claim_rewards(self, account: str, stake_id: int, now: int) -> int:
        """Pay out the reward accrued so far on one stake."""
        with self._transaction() as effects:
            record = self.ledger.get(stake_id, account)
            reward = rewards.checkpoint(record, self.total_staked, self.reward_rate, now)
            if reward == 0:
                raise NoRewardsAvailable(f"Stake {stake_id} has no rewards")
            if self.token.balance_of(self.address) < reward:
                raise InsufficientTreasury(f"Pool cannot cover claim of {reward}")
            record.accrued_reward = 0
            self.total_paid += reward
            pool = self.address
            effects.append(lambda: self.token.transfer_out(pool, account, reward))

        logger.info(f"Claim on stake #{stake_id}: {account} received {reward}")
        return reward

    def distribute_daily_rewards(
        self, now: int, percentage_bps: Optional[int] = None,
    ) -> dict[str, int]:
        """
        Pay one distribution round to every active user, pro rata to
        their C-Shares.

        The round is one day of configured emission, or
        ``percentage_bps`` of the pool's balance when given.  Either every
        user is paid or nobody is.
        """
        if percentage_bps is not None and not 0 < percentage_bps <= rewards.BPS:
            raise InvalidAmount(f"percentage_bps must be in (0, {rewards.BPS}]")
        with self._transaction() as effects:
            weights = {
                account: self.user_total_shares(account, now)
                for account in self.active_users
            }
            balance = self.token.balance_of(self.address)
            amount = rewards.daily_pool_amount(self.reward_rate, balance, percentage_bps)
            payouts = {
                acct: paid for acct, paid in rewards.pro_rata(amount, weights).items() if paid
            }
            total = sum(payouts.values())
            if total > balance:
                raise InsufficientTreasury(
                    f"Pool holds {balance}, distribution needs {total}"
                )
            self.total_paid += total
            pool = self.address
            for acct, paid in payouts.items():
                effects.append(
                    lambda acct=acct, paid=paid: self.token.transfer_out(pool, acct, paid)
                )

        logger.info(f"Distributed {total} to {len(payouts)} stakers")
        return payouts

    # ── queries ─────────────────────────────────────────────────────

    def pending_reward(
        self, account: str, now: int, stake_id: Optional[int] = None,
    ) -> int:
        """Pending reward of one stake, or of all *account*'s stakes."""
        with self._lock:
            if stake_id is not None:
                stakes = [self.ledger.get(stake_id, account)]
            else:
                stakes = self.ledger.stakes_of(account)
            return sum(
                rewards.pending_reward(s, self.total_staked, self.reward_rate, now)
                for s in stakes
            )

    def preview_unstake(self, account: str, stake_id: int, now: int) -> PenaltyAssessment:
        """Price an unstake without performing it."""
        with self._lock:
            record = self.ledger.get(stake_id, account)
            reward = rewards.pending_reward(record, self.total_staked, self.reward_rate, now)
            return assess(
                record,
                reward,
                now,
                grace_days=self.grace_days,
                late_rate_per_day=self.late_rate_per_day,
                policy=self.early_policy,
                early_fee_bps=self.early_fee_bps,
            )

    def get_stake(self, account: str, index: int) -> Stake:
        return self.ledger.at(account, index)

    def get_stakes(self, account: str) -> list[Stake]:
        return self.ledger.stakes_of(account)

    def user_total_shares(self, account: str, now: int) -> int:
        with self._lock:
            return sum(
                rewards.effective_shares(
                    s, self.total_staked, self.reward_rate, now, self.quantity_policy,
                )
                for s in self.ledger.stakes_of(account)
            )

    def verify_invariants(self) -> tuple[bool, str]:
        with self._lock:
            return InvariantChecker().verify(self)

    def get_staking_stats(self, now: Optional[int] = None) -> dict:
        with self._lock:
            stats = {
                "total_staked": self.total_staked,
                "total_users": self.total_users,
                "total_paid": self.total_paid,
                "cshare_rate": self.cshare.rate,
                "open_stakes": len(self.ledger),
                "reward_rate": self.reward_rate,
                "pool_balance": self.token.balance_of(self.address),
                "paused": self.paused,
            }
            if now is not None:
                stats["total_shares"] = sum(
                    self.user_total_shares(a, now) for a in self.active_users
                )
            return stats

    # ── admin ───────────────────────────────────────────────────────

    def set_limits(
        self,
        min_amount: int,
        max_amount: int,
        min_days: int,
        max_days: int,
        caller: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._require_owner(caller)
            if min_amount <= 0 or min_amount > max_amount:
                raise InvalidAmount(f"Invalid amount limits [{min_amount}, {max_amount}]")
            if min_days < 1 or min_days > max_days:
                raise InvalidDuration(f"Invalid day limits [{min_days}, {max_days}]")
            self.min_stake_amount, self.max_stake_amount = min_amount, max_amount
            self.min_stake_days, self.max_stake_days = min_days, max_days
        logger.info(f"Limits set: amount [{min_amount}, {max_amount}], days [{min_days}, {max_days}]")

    def set_treasury(self, address: str, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            if not address:
                raise ValueError("Treasury address required")
            self.treasury = address
        logger.info(f"Treasury set to {address}")

    def set_early_fee(self, fee_bps: int, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            if not 0 <= fee_bps <= rewards.BPS:
                raise InvalidAmount(f"fee_bps must be in [0, {rewards.BPS}]")
            self.early_fee_bps = fee_bps

    def pause(self, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self.paused = True
        logger.warning("Staking paused")

    def unpause(self, caller: Optional[str] = None) -> None:
        with self._lock:
            self._require_owner(caller)
            self.paused = False
        logger.info("Staking unpaused")

    def emergency_withdraw(self, amount: int, caller: Optional[str] = None) -> None:
        """Move *amount* of the pool's tokens to the owner."""
        with self._lock:
            self._require_owner(caller)
            recipient = self.owner or self.treasury
            if amount > self.token.balance_of(self.address):
                raise InsufficientTreasury(f"Pool cannot cover withdrawal of {amount}")
            self.token.transfer_out(self.address, recipient, amount)
        logger.warning(f"Emergency withdrawal of {amount} to {recipient}")

    # ── persistence ─────────────────────────────────────────────────

    def to_state(self) -> dict:
        """Everything a serialization format must capture."""
        with self._lock:
            return {
                "stakes": [
                    s.to_dict()
                    for account in self.ledger.accounts()
                    for s in self.ledger.stakes_of(account)
                ],
                "next_stake_id": self.ledger.next_stake_id,
                "active_users": list(self.active_users),
                "total_staked": self.total_staked,
                "total_users": self.total_users,
                "total_paid": self.total_paid,
                "cshare_rate": self.cshare.rate,
                "config": {
                    "min_stake_amount": self.min_stake_amount,
                    "max_stake_amount": self.max_stake_amount,
                    "min_stake_days": self.min_stake_days,
                    "max_stake_days": self.max_stake_days,
                    "early_fee_bps": self.early_fee_bps,
                    "paused": self.paused,
                    "treasury": self.treasury,
                },
            }

    def restore_state(self, state: dict) -> None:
        """Replace pool state with a snapshot produced by ``to_state``."""
        with self._lock:
            ledger = StakeLedger()
            for row in state["stakes"]:
                ledger.add(Stake.from_dict(row))
            ledger.next_stake_id = max(ledger.next_stake_id, state["next_stake_id"])
            users = ActiveUserRegistry()
            for account in state["active_users"]:
                users.add(account)

            self.ledger = ledger
            self.active_users = users
            self.total_staked = state["total_staked"]
            self.total_users = state["total_users"]
            self.total_paid = state["total_paid"]
            self.cshare = CShareRateOracle(state["cshare_rate"])
            for key, value in state.get("config", {}).items():
                setattr(self, key, value)

            ok, msg = self._checker.verify(self)
            if not ok:
                raise InvariantViolation(f"Restored state is inconsistent: {msg}")
