"""
Checked 256-bit unsigned arithmetic.

Mirrors EVM checked-math semantics on plain Python ints: every result
must fit in ``[0, 2**256 - 1]`` or the operation fails with an explicit
error instead of wrapping.  Division truncates toward zero, which for
non-negative operands is exactly Python's ``//``.

All ratios in the engine are expressed as integer numerator/denominator
pairs and evaluated multiply-before-divide through these helpers.
"""

from __future__ import annotations

from escrowstake_core.errors import ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero

UINT256_MAX: int = 2**256 - 1


def check(value: int) -> int:
    """Return *value* if it is a valid uint256, else raise."""
    if value < 0:
        raise ArithmeticUnderflow(f"value below zero: {value}")
    if value > UINT256_MAX:
        raise ArithmeticOverflow("value exceeds uint256")
    return value


def add(a: int, b: int) -> int:
    return check(check(a) + check(b))


def sub(a: int, b: int) -> int:
    """``a - b``; raises ``ArithmeticUnderflow`` when ``b > a``."""
    check(a)
    check(b)
    if b > a:
        raise ArithmeticUnderflow(f"{a} - {b} underflows")
    return a - b


def mul(a: int, b: int) -> int:
    return check(check(a) * check(b))


def div(a: int, b: int) -> int:
    """Truncating division; raises ``DivisionByZero`` when ``b == 0``."""
    check(a)
    if check(b) == 0:
        raise DivisionByZero()
    return a // b


def mul_div(a: int, b: int, c: int) -> int:
    """``a * b // c`` with the intermediate product range-checked."""
    return div(mul(a, b), c)


def clamp(value: int, upper: int) -> int:
    return value if value <= upper else upper
