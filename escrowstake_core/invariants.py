"""
Post-operation invariant checks for the staking pool.

  - ``total_staked`` equals the sum of open principals
  - ``total_users`` equals the number of accounts with open stakes,
    and the active-user registry holds exactly those accounts
  - ``total_paid`` never decreases
  - the C-Share rate never decreases
  - no stake accrues past its end time or before its start

These checks run after every pool mutation.  If any invariant fails,
the operation is rolled back and rejected.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PoolSnapshot:
    """Snapshot of monotonic pool fields before an operation."""
    total_paid: int = 0
    cshare_rate: int = 0


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the pool and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: PoolSnapshot | None = None

    def capture(self, pool) -> None:
        """Take a snapshot of the pool before an operation."""
        self._snapshot = PoolSnapshot(
            total_paid=pool.total_paid,
            cshare_rate=pool.cshare.rate,
        )

    def verify(self, pool) -> tuple[bool, str]:
        """
        Verify all invariants against the current pool state.
        Returns (passed, error_message).
        """
        errors: list[str] = []
        for check in (
            self._check_total_staked,
            self._check_users,
            self._check_monotonic,
            self._check_accrual_window,
        ):
            ok, msg = check(pool)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_total_staked(self, pool) -> tuple[bool, str]:
        actual = pool.ledger.total_principal()
        if pool.total_staked != actual:
            return (False,
                    f"Staking pool mismatch: total_staked={pool.total_staked} "
                    f"but open principal sum={actual}")
        return True, ""

    def _check_users(self, pool) -> tuple[bool, str]:
        holders = set(pool.ledger.accounts())
        if pool.total_users != len(holders):
            return (False,
                    f"total_users={pool.total_users} but {len(holders)} "
                    f"accounts hold stakes")
        if set(pool.active_users) != holders:
            return False, "Active-user registry out of sync with ledger"
        return True, ""

    def _check_monotonic(self, pool) -> tuple[bool, str]:
        snap = self._snapshot
        if snap is None:
            return True, ""
        if pool.total_paid < snap.total_paid:
            return (False,
                    f"total_paid decreased: {snap.total_paid} -> {pool.total_paid}")
        if pool.cshare.rate < snap.cshare_rate:
            return (False,
                    f"C-Share rate decreased: {snap.cshare_rate} -> {pool.cshare.rate}")
        return True, ""

    def _check_accrual_window(self, pool) -> tuple[bool, str]:
        for stake in pool.ledger.all():
            if not stake.start_time <= stake.last_accrual_time <= stake.end_time:
                return (False,
                        f"Stake {stake.stake_id} accrual time "
                        f"{stake.last_accrual_time} outside "
                        f"[{stake.start_time}, {stake.end_time}]")
        return True, ""
