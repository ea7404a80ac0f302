"""
Token collaborator used by the staking engine and treasuries.

The engine never does token accounting itself; it talks to anything
satisfying ``TokenTransfer``.  ``CappedToken`` is the in-memory stand-in
used by simulations and tests: a capped, mintable, burnable balance map
with the same failure modes the ERC-20 contract has.
"""

from __future__ import annotations

import logging
from typing import Protocol

from escrowstake_core import uint256
from escrowstake_core.errors import InsufficientBalance, InvalidAmount, SupplyCapExceeded
from escrowstake_core.precision import MAX_SUPPLY

logger = logging.getLogger("escrowstake.token")


class TokenTransfer(Protocol):
    """What a staking pool needs from the token, seen from *holder*."""

    def transfer_in(self, holder: str, sender: str, amount: int) -> None: ...
    def transfer_out(self, holder: str, recipient: str, amount: int) -> None: ...
    def mint(self, recipient: str, amount: int) -> None: ...
    def burn(self, holder: str, amount: int) -> None: ...
    def balance_of(self, address: str) -> int: ...


class CappedToken:
    """In-memory ERC-20 with a hard supply cap."""

    def __init__(self, symbol: str = "ESCROW", cap: int = MAX_SUPPLY):
        self.symbol = symbol
        self.cap = cap
        self.balances: dict[str, int] = {}
        self.total_supply: int = 0
        self.total_burned: int = 0

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def mint(self, recipient: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount(f"negative mint: {amount}")
        if self.total_supply + amount > self.cap:
            raise SupplyCapExceeded(
                f"minting {amount} would exceed cap {self.cap}"
            )
        self.balances[recipient] = uint256.add(self.balance_of(recipient), amount)
        self.total_supply += amount

    def burn(self, holder: str, amount: int) -> None:
        self._debit(holder, amount)
        self.total_supply -= amount
        self.total_burned += amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._debit(sender, amount)
        self.balances[recipient] = uint256.add(self.balance_of(recipient), amount)

    # ``TokenTransfer`` surface, named from the pool's point of view.

    def transfer_in(self, holder: str, sender: str, amount: int) -> None:
        self.transfer(sender, holder, amount)

    def transfer_out(self, holder: str, recipient: str, amount: int) -> None:
        self.transfer(holder, recipient, amount)

    def _debit(self, address: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount(f"negative amount: {amount}")
        have = self.balance_of(address)
        if amount > have:
            raise InsufficientBalance(f"{address} has {have}, needs {amount}")
        self.balances[address] = have - amount

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "cap": self.cap,
            "total_supply": self.total_supply,
            "total_burned": self.total_burned,
            "holders": len([b for b in self.balances.values() if b > 0]),
        }
