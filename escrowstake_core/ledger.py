"""
Stake records, the per-account stake ledger, and the active-user set.

Stakes live in a single arena keyed by a stable, monotonically
increasing ``stake_id``.  Each account additionally keeps an ordered
list of its open stake ids.  Removing a stake swaps the account's last
id into the vacated slot and pops, exactly like the on-chain
swap-and-pop, so *positional* indices are unstable after a removal
while ids never change.  Callers that hold an index must re-resolve it
after any mutation of the same account.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterator, Optional

from escrowstake_core.errors import InvalidStakeIndex, StakeNotFound
from escrowstake_core.precision import SECONDS_PER_DAY


@dataclass
class Stake:
    """One principal deposit committed for a fixed number of days."""
    stake_id: int
    account: str
    principal: int
    start_time: int
    end_time: int
    days_committed: int
    last_accrual_time: int
    accrued_reward: int = 0

    @classmethod
    def open(
        cls, stake_id: int, account: str, principal: int, days_committed: int, now: int,
    ) -> Stake:
        return cls(
            stake_id=stake_id,
            account=account,
            principal=principal,
            start_time=now,
            end_time=now + days_committed * SECONDS_PER_DAY,
            days_committed=days_committed,
            last_accrual_time=now,
        )

    def days_elapsed(self, now: int) -> int:
        return max(0, now - self.start_time) // SECONDS_PER_DAY

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Stake:
        return cls(**{k: data[k] for k in cls.__dataclass_fields__})


class StakeLedger:
    """Arena of open stakes with per-account swap-remove ordering."""

    def __init__(self) -> None:
        self._stakes: dict[int, Stake] = {}
        self._by_account: dict[str, list[int]] = {}
        self.next_stake_id: int = 1

    def allocate_id(self) -> int:
        sid = self.next_stake_id
        self.next_stake_id += 1
        return sid

    def add(self, stake: Stake) -> Stake:
        if stake.stake_id in self._stakes:
            raise ValueError(f"Stake {stake.stake_id} already recorded")
        self._stakes[stake.stake_id] = stake
        self._by_account.setdefault(stake.account, []).append(stake.stake_id)
        if stake.stake_id >= self.next_stake_id:
            self.next_stake_id = stake.stake_id + 1
        return stake

    def get(self, stake_id: int, account: Optional[str] = None) -> Stake:
        stake = self._stakes.get(stake_id)
        if stake is None or (account is not None and stake.account != account):
            raise StakeNotFound(f"Stake {stake_id} not found")
        return stake

    def at(self, account: str, index: int) -> Stake:
        ids = self._by_account.get(account, [])
        if index < 0 or index >= len(ids):
            raise InvalidStakeIndex(
                f"Index {index} out of range for {account} ({len(ids)} stakes)"
            )
        return self._stakes[ids[index]]

    def remove_by_id(self, stake_id: int) -> Stake:
        """Remove a stake; the account's last stake takes its slot."""
        stake = self.get(stake_id)
        ids = self._by_account[stake.account]
        pos = ids.index(stake_id)
        ids[pos] = ids[-1]
        ids.pop()
        if not ids:
            del self._by_account[stake.account]
        del self._stakes[stake_id]
        return stake

    def stakes_of(self, account: str) -> list[Stake]:
        return [self._stakes[sid] for sid in self._by_account.get(account, [])]

    def count(self, account: str) -> int:
        return len(self._by_account.get(account, []))

    def accounts(self) -> list[str]:
        return list(self._by_account)

    def all(self) -> list[Stake]:
        return list(self._stakes.values())

    def total_principal(self) -> int:
        return sum(s.principal for s in self._stakes.values())

    def __len__(self) -> int:
        return len(self._stakes)


class ActiveUserRegistry:
    """Addresses with at least one open stake (swap-remove set)."""

    def __init__(self) -> None:
        self._users: list[str] = []
        self._index: dict[str, int] = {}

    def add(self, account: str) -> bool:
        if account in self._index:
            return False
        self._index[account] = len(self._users)
        self._users.append(account)
        return True

    def remove(self, account: str) -> bool:
        pos = self._index.pop(account, None)
        if pos is None:
            return False
        last = self._users.pop()
        if last != account:
            self._users[pos] = last
            self._index[last] = pos
        return True

    def __contains__(self, account: object) -> bool:
        return account in self._index

    def __len__(self) -> int:
        return len(self._users)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._users))
