"""
EscrowStake - off-chain accounting engine for the ESCROW staking contracts.

Key features:
- Bit-exact 256-bit integer reward, bonus and penalty math
- Multi-stake ledger with swap-remove ordering and stable stake ids
- Monotonic C-Share rate oracle
- Pro-rata daily distributions across active stakers
- Team treasury milestone vesting
- SQLite persistence, aiohttp API and scenario replay
"""

__version__ = "1.0.0"
__all__ = [
    "uint256",
    "bonus",
    "rewards",
    "penalty",
    "cshare",
    "ledger",
    "token",
    "staking",
    "vesting",
    "accounts",
]
