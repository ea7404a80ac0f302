"""Tests for the invariant checker module."""

import pytest

from escrowstake_core.cshare import CShareRateOracle
from escrowstake_core.invariants import InvariantChecker, PoolSnapshot
from escrowstake_core.ledger import ActiveUserRegistry, Stake, StakeLedger

T0 = 1_700_000_000


class MockPool:
    """Minimal pool mock for invariant testing."""
    def __init__(self, total_paid=0, cshare_rate=10_000):
        self.ledger = StakeLedger()
        self.active_users = ActiveUserRegistry()
        self.total_staked = 0
        self.total_users = 0
        self.total_paid = total_paid
        self.cshare = CShareRateOracle(cshare_rate)

    def add_stake(self, account, principal, days=30):
        stake = Stake.open(self.ledger.allocate_id(), account, principal, days, T0)
        self.ledger.add(stake)
        if self.active_users.add(account):
            self.total_users += 1
        self.total_staked += principal
        return stake


@pytest.fixture
def checker():
    return InvariantChecker()


class TestPoolSnapshot:
    def test_capture(self, checker):
        pool = MockPool(total_paid=5, cshare_rate=7)
        result = checker.capture(pool)
        assert result is None  # capture stores internally
        assert checker._snapshot == PoolSnapshot(total_paid=5, cshare_rate=7)

    def test_verify_clears_snapshot(self, checker):
        pool = MockPool()
        checker.capture(pool)
        checker.verify(pool)
        assert checker._snapshot is None


class TestInvariantVerification:
    def test_consistent_pool_passes(self, checker):
        pool = MockPool()
        pool.add_stake("alice", 100)
        pool.add_stake("alice", 50)
        pool.add_stake("bob", 10)
        checker.capture(pool)
        passed, msg = checker.verify(pool)
        assert passed
        assert msg == ""

    def test_empty_pool_passes_without_capture(self, checker):
        passed, _ = checker.verify(MockPool())
        assert passed

    def test_total_staked_drift(self, checker):
        pool = MockPool()
        pool.add_stake("alice", 100)
        pool.total_staked += 1
        passed, msg = checker.verify(pool)
        assert not passed
        assert "total_staked" in msg

    def test_user_count_drift(self, checker):
        pool = MockPool()
        pool.add_stake("alice", 100)
        pool.total_users = 2
        passed, msg = checker.verify(pool)
        assert not passed
        assert "total_users" in msg

    def test_registry_out_of_sync(self, checker):
        pool = MockPool()
        pool.add_stake("alice", 100)
        pool.active_users.remove("alice")
        pool.active_users.add("bob")
        passed, msg = checker.verify(pool)
        assert not passed
        assert "registry" in msg

    def test_total_paid_decrease(self, checker):
        pool = MockPool(total_paid=100)
        checker.capture(pool)
        pool.total_paid = 99
        passed, msg = checker.verify(pool)
        assert not passed
        assert "total_paid decreased" in msg

    def test_cshare_decrease(self, checker):
        pool = MockPool(cshare_rate=500)
        checker.capture(pool)
        pool.cshare.rate = 499
        passed, msg = checker.verify(pool)
        assert not passed
        assert "C-Share" in msg

    def test_accrual_past_end(self, checker):
        pool = MockPool()
        stake = pool.add_stake("alice", 100, days=1)
        stake.last_accrual_time = stake.end_time + 1
        passed, msg = checker.verify(pool)
        assert not passed
        assert f"Stake {stake.stake_id}" in msg

    def test_multiple_errors_joined(self, checker):
        pool = MockPool(total_paid=10)
        pool.add_stake("alice", 100)
        checker.capture(pool)
        pool.total_staked = 0
        pool.total_paid = 0
        passed, msg = checker.verify(pool)
        assert not passed
        assert "; " in msg
