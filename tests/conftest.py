"""
Shared pytest fixtures for the EscrowStake test suite.
"""

import pytest

from escrowstake_core.precision import tokens
from escrowstake_core.staking import StakingPool
from escrowstake_core.token import CappedToken

# Fixed clock origin for deterministic tests.
T0 = 1_700_000_000

# 0.001 token per second (86.4 tokens per day), pool-wide.
REWARD_RATE = 10 ** 15

STAKER_FUNDS = tokens(10_000_000)
POOL_FUNDS = tokens(10_000_000)


@pytest.fixture
def token():
    """Token with three funded stakers and nothing in the pool."""
    t = CappedToken()
    for who in ("alice", "bob", "carol"):
        t.mint(who, STAKER_FUNDS)
    return t


@pytest.fixture
def pool(token):
    """Pool with a funded reward balance."""
    token.mint("staking-pool", POOL_FUNDS)
    return StakingPool(token, reward_rate=REWARD_RATE)


@pytest.fixture
def unfunded_pool(token):
    """Pool whose reward balance is empty."""
    return StakingPool(token, reward_rate=REWARD_RATE)


@pytest.fixture
def owned_pool(token):
    """Funded pool whose admin operations are gated to ``owner``."""
    token.mint("staking-pool", POOL_FUNDS)
    return StakingPool(token, reward_rate=REWARD_RATE, owner="owner")
