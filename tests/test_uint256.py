"""Tests for checked 256-bit arithmetic."""

import pytest

from escrowstake_core import uint256
from escrowstake_core.errors import (
    ArithmeticFault,
    ArithmeticOverflow,
    ArithmeticUnderflow,
    DivisionByZero,
)
from escrowstake_core.precision import MAX_SUPPLY


class TestChecked:
    def test_add_within_range(self):
        assert uint256.add(2, 3) == 5

    def test_add_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            uint256.add(uint256.UINT256_MAX, 1)

    def test_sub_underflow(self):
        with pytest.raises(ArithmeticUnderflow):
            uint256.sub(1, 2)

    def test_sub_to_zero(self):
        assert uint256.sub(7, 7) == 0

    def test_negative_operand_rejected(self):
        with pytest.raises(ArithmeticUnderflow):
            uint256.mul(-1, 5)

    def test_mul_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            uint256.mul(2**200, 2**60)

    def test_div_truncates(self):
        assert uint256.div(7, 2) == 3
        assert uint256.div(1, 3) == 0

    def test_div_by_zero(self):
        with pytest.raises(DivisionByZero):
            uint256.div(1, 0)

    def test_errors_share_base(self):
        assert issubclass(DivisionByZero, ArithmeticFault)
        assert issubclass(ArithmeticFault, ValueError)


class TestMulDiv:
    def test_multiply_before_divide(self):
        # 10 * 3 // 4 keeps precision that 10 // 4 * 3 loses
        assert uint256.mul_div(10, 3, 4) == 7
        assert uint256.div(10, 4) * 3 == 6

    def test_max_supply_squared_fits(self):
        assert uint256.mul_div(MAX_SUPPLY, MAX_SUPPLY, MAX_SUPPLY) == MAX_SUPPLY

    def test_clamp(self):
        assert uint256.clamp(5, 3) == 3
        assert uint256.clamp(2, 3) == 2
