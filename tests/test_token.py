"""Tests for the in-memory capped token."""

import pytest

from escrowstake_core.errors import InsufficientBalance, InvalidAmount, SupplyCapExceeded
from escrowstake_core.token import CappedToken


@pytest.fixture
def token():
    return CappedToken(cap=1_000)


class TestMintBurn:
    def test_mint_credits_and_counts(self, token):
        token.mint("alice", 400)
        assert token.balance_of("alice") == 400
        assert token.total_supply == 400

    def test_mint_up_to_cap(self, token):
        token.mint("alice", 1_000)
        with pytest.raises(SupplyCapExceeded):
            token.mint("bob", 1)
        assert token.balance_of("bob") == 0

    def test_burn_frees_cap(self, token):
        token.mint("alice", 1_000)
        token.burn("alice", 300)
        assert token.total_supply == 700
        assert token.total_burned == 300
        token.mint("bob", 300)
        assert token.total_supply == 1_000

    def test_burn_more_than_balance(self, token):
        token.mint("alice", 10)
        with pytest.raises(InsufficientBalance):
            token.burn("alice", 11)
        assert token.balance_of("alice") == 10
        assert token.total_burned == 0

    def test_negative_amounts(self, token):
        with pytest.raises(InvalidAmount):
            token.mint("alice", -1)
        with pytest.raises(InvalidAmount):
            token.burn("alice", -1)


class TestTransfer:
    def test_transfer(self, token):
        token.mint("alice", 100)
        token.transfer("alice", "bob", 60)
        assert token.balance_of("alice") == 40
        assert token.balance_of("bob") == 60
        assert token.total_supply == 100

    def test_transfer_insufficient(self, token):
        token.mint("alice", 5)
        with pytest.raises(InsufficientBalance):
            token.transfer("alice", "bob", 6)
        assert token.balance_of("bob") == 0

    def test_pool_facing_names(self, token):
        token.mint("alice", 100)
        token.transfer_in("pool", "alice", 30)
        assert token.balance_of("pool") == 30
        token.transfer_out("pool", "carol", 10)
        assert token.balance_of("carol") == 10
        assert token.balance_of("pool") == 20

    def test_unknown_address_has_zero(self, token):
        assert token.balance_of("nobody") == 0

    def test_to_dict(self, token):
        token.mint("alice", 100)
        token.transfer("alice", "bob", 100)
        d = token.to_dict()
        assert d["total_supply"] == 100
        assert d["holders"] == 1
        assert d["cap"] == 1_000
