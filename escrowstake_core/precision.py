"""
Precision constants and helpers for EscrowStake.

The ESCROW token uses 18 decimal places, like ether:

    1 ESCROW = 10**18 base units (smallest indivisible unit)

The engine only ever handles integer base units.  These helpers exist
for the edges (config files, the CLI, the HTTP API) where humans type
token amounts.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

# Number of decimal places of the token.
TOKEN_DECIMALS: int = 18

# Base units per whole token.
UNITS_PER_TOKEN: int = 10 ** TOKEN_DECIMALS

# Fixed-point scale used by reward-per-second and the C-Share oracle.
SCALE: int = 10 ** 18

SECONDS_PER_DAY: int = 86_400

# Hard cap of the token: 100 billion tokens.
MAX_SUPPLY: int = 100_000_000_000 * UNITS_PER_TOKEN


def tokens(value: int | str) -> int:
    """Whole (or decimal-string) tokens to base units.

    >>> tokens(1000)
    1000000000000000000000
    >>> tokens("0.5")
    500000000000000000
    """
    try:
        d = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a token amount: {value!r}") from exc
    if not d.is_finite() or d < 0:
        raise ValueError(f"not a token amount: {value!r}")
    with localcontext() as ctx:
        ctx.prec = 100
        units = d * UNITS_PER_TOKEN
    if units != units.to_integral_value():
        raise ValueError(f"more than {TOKEN_DECIMALS} decimals: {value!r}")
    return int(units)


def days(n: int) -> int:
    """Whole days to seconds."""
    return n * SECONDS_PER_DAY


def format_amount(units: int, symbol: str = "ESCROW") -> str:
    """Return a human-readable token amount with full precision."""
    whole, frac = divmod(units, UNITS_PER_TOKEN)
    if frac == 0:
        return f"{whole:,} {symbol}"
    frac_str = f"{frac:0{TOKEN_DECIMALS}d}".rstrip("0")
    return f"{whole:,}.{frac_str} {symbol}"
